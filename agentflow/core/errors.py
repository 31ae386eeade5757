"""Error taxonomy shared by the scheduler, webhook gate and version engine.

Every error carries a fixed, machine-readable ``reason`` string that is
returned verbatim to API callers.
"""
from typing import Optional


class AgentFlowError(Exception):
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class NotFoundError(AgentFlowError):
    status_code = 404


class UnauthorizedError(AgentFlowError):
    status_code = 401


class RateLimitedError(AgentFlowError):
    status_code = 429

    def __init__(self, reason: str = "Rate limit exceeded", retry_after: Optional[int] = None):
        super().__init__(reason)
        self.retry_after = retry_after


class InvalidInputError(AgentFlowError):
    status_code = 422


class DownstreamFailureError(AgentFlowError):
    status_code = 502
