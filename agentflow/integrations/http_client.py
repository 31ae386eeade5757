"""Shared outbound HTTP client used to reach the workflow executor."""
from typing import Any, Dict, Optional
import httpx

from agentflow.config import settings
from agentflow.core.errors import DownstreamFailureError
from agentflow.core.logging import get_logger, log_fields

logger = get_logger("http")

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=5.0)


class HttpClient:
    """Process-wide AsyncClient, opened lazily and closed in the app lifespan."""
    _client: Optional[httpx.AsyncClient] = None

    @classmethod
    async def get_client(cls) -> httpx.AsyncClient:
        if cls._client is None or cls._client.is_closed:
            logger.info("Opening shared HTTP client")
            cls._client = httpx.AsyncClient(
                timeout=DEFAULT_TIMEOUT,
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=50),
                headers={"User-Agent": settings.PROJECT_NAME},
            )
        return cls._client

    @classmethod
    async def close_client(cls) -> None:
        if cls._client and not cls._client.is_closed:
            logger.info("Closing shared HTTP client")
            await cls._client.aclose()
        cls._client = None


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    payload: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """POST ``payload`` and return the decoded body.

    Transport errors, non-2xx statuses and undecodable bodies all surface as
    ``DownstreamFailureError``.
    """
    try:
        response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        status_code = e.response.status_code
        logger.error("Downstream returned an error status", extra=log_fields(url=url, status_code=status_code))
        raise DownstreamFailureError(f"Downstream returned {status_code}") from e
    except httpx.HTTPError as e:
        logger.error(f"Downstream request failed: {e}", extra=log_fields(url=url))
        raise DownstreamFailureError("Downstream unreachable") from e
    except ValueError as e:
        raise DownstreamFailureError("Invalid downstream response") from e
