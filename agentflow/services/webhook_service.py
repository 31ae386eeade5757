"""Webhook security gate and webhook management.

Inbound triggers go through an ordered pipeline; the first failing check
raises with its fixed reason string:

1. webhook exists for the workflow           -> "Webhook not found"
2. webhook is enabled                        -> "Webhook is disabled"
3. secret matches (constant time)            -> "Invalid secret key"
4. caller IP is whitelisted, if a list is set -> "IP address not whitelisted"
5. HMAC signature, when supplied or required -> "Invalid signature"
6. sliding-window rate limit                 -> "Rate limit exceeded"
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import asyncio
import hashlib
import hmac
import ipaddress
import json
import secrets

from agentflow.config import settings
from agentflow.core.clock import Clock
from agentflow.core.errors import (
    DownstreamFailureError,
    InvalidInputError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
)
from agentflow.core.logging import get_logger, log_fields
from agentflow.integrations.broadcast import Broadcaster, LoggingBroadcaster
from agentflow.integrations.dispatcher import BaseExecutionDispatcher
from agentflow.models import WorkflowWebhook
from agentflow.services.call_log import CallLog
from agentflow.services.rate_limit import SlidingWindowRateLimiter
from agentflow.services.transformer import transform_payload, validate_transformer

logger = get_logger("webhooks")

SECRET_BYTES = 32  # 64 hex chars
SIGNATURE_PREFIX = "sha256="


def generate_secret() -> str:
    return secrets.token_hex(SECRET_BYTES)


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().lower().encode("utf-8"))


def _normalize_ip(value: str) -> str:
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return value.strip()


def ip_allowed(client_ip: Optional[str], whitelist: Optional[List[str]]) -> bool:
    if not whitelist:
        return True
    if not client_ip:
        return False
    return _normalize_ip(client_ip) in {_normalize_ip(ip) for ip in whitelist}


def decode_body(raw_body: bytes) -> Dict[str, Any]:
    """Decode a webhook request body. An empty body is an empty object."""
    if not raw_body:
        return {}
    try:
        payload = json.loads(raw_body)
    except ValueError:
        # JSONDecodeError and UnicodeDecodeError both derive from ValueError
        raise InvalidInputError("Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return payload


@dataclass
class TriggerResult:
    accepted: bool
    webhook_id: str
    execution_id: Optional[str] = None


class WebhookService:
    def __init__(
        self,
        storage,
        dispatcher: BaseExecutionDispatcher,
        clock: Optional[Clock] = None,
        broadcaster: Optional[Broadcaster] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        base_url: str = settings.PUBLIC_BASE_URL,
        call_log_size: int = settings.WEBHOOK_CALL_LOG_SIZE,
        require_signature: bool = settings.WEBHOOK_REQUIRE_SIGNATURE,
    ):
        self.storage = storage
        self.dispatcher = dispatcher
        self.clock = clock or Clock()
        self.broadcaster = broadcaster or LoggingBroadcaster()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.base_url = base_url.rstrip("/")
        self.call_log_size = call_log_size
        self.require_signature = require_signature
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, webhook_id: str) -> asyncio.Lock:
        lock = self._locks.get(webhook_id)
        if lock is None:
            lock = self._locks[webhook_id] = asyncio.Lock()
        return lock

    def build_url(self, workflow_id: str, secret_key: str) -> str:
        return f"{self.base_url}{settings.API_V1_STR}/webhooks/trigger/{workflow_id}/{secret_key}"

    # Management

    async def create_webhook(
        self,
        workflow_id: str,
        ip_whitelist: Optional[List[str]] = None,
        payload_transformer: Optional[Dict[str, str]] = None,
        enabled: bool = True,
    ) -> WorkflowWebhook:
        workflow = await self.storage.get_workflow(workflow_id)
        if not workflow:
            raise NotFoundError("Workflow not found")
        if await self.storage.get_webhook_by_workflow(workflow_id):
            raise InvalidInputError("Webhook already exists for this workflow")
        validate_transformer(payload_transformer)
        for ip in ip_whitelist or []:
            try:
                ipaddress.ip_address(ip.strip())
            except ValueError:
                raise InvalidInputError(f"Invalid IP address in whitelist: {ip}")

        secret_key = generate_secret()
        webhook = await self.storage.create_webhook(
            workflow_id,
            {
                "webhook_url": self.build_url(workflow_id, secret_key),
                "secret_key": secret_key,
                "enabled": enabled,
                "ip_whitelist": ip_whitelist or None,
                "payload_transformer": payload_transformer or None,
                "trigger_count": 0,
                "call_logs": [],
            },
        )
        logger.info("Webhook created", extra=log_fields(webhook_id=webhook.id, workflow_id=workflow_id))
        return webhook

    async def regenerate_secret(self, webhook_id: str) -> WorkflowWebhook:
        async with self._lock_for(webhook_id):
            webhook = await self.storage.get_webhook(webhook_id)
            if not webhook:
                raise NotFoundError("Webhook not found")
            secret_key = generate_secret()
            # Secret and URL change in a single row update
            await self.storage.update_webhook(
                webhook_id,
                {"secret_key": secret_key, "webhook_url": self.build_url(webhook.workflow_id, secret_key)},
            )
            logger.info("Webhook secret regenerated", extra=log_fields(webhook_id=webhook_id))
            return await self.storage.get_webhook(webhook_id)

    async def get_call_logs(self, webhook_id: str) -> List[Dict[str, Any]]:
        webhook = await self.storage.get_webhook(webhook_id)
        if not webhook:
            raise NotFoundError("Webhook not found")
        return CallLog(webhook.call_logs, self.call_log_size).to_list()

    async def test_webhook(self, webhook_id: str, sample_payload: Dict[str, Any]) -> Dict[str, Any]:
        """Preview the input a trigger with ``sample_payload`` would produce. Nothing is dispatched."""
        webhook = await self.storage.get_webhook(webhook_id)
        if not webhook:
            raise NotFoundError("Webhook not found")
        return self._build_input(webhook, sample_payload)

    # Trigger path

    def _build_input(self, webhook: WorkflowWebhook, payload: Dict[str, Any]) -> Dict[str, Any]:
        transformed = transform_payload(payload, webhook.payload_transformer)
        return {**transformed, "webhook": True, "webhookId": webhook.id}

    def _check(
        self,
        webhook: Optional[WorkflowWebhook],
        secret_key: str,
        client_ip: Optional[str],
        raw_body: bytes,
        signature: Optional[str],
    ) -> WorkflowWebhook:
        if not webhook:
            raise NotFoundError("Webhook not found")
        if not webhook.enabled:
            raise UnauthorizedError("Webhook is disabled")
        if not hmac.compare_digest(secret_key.encode("utf-8"), webhook.secret_key.encode("utf-8")):
            raise UnauthorizedError("Invalid secret key")
        if not ip_allowed(client_ip, webhook.ip_whitelist):
            raise UnauthorizedError("IP address not whitelisted")
        if signature:
            if not verify_signature(webhook.secret_key, raw_body, signature):
                raise UnauthorizedError("Invalid signature")
        elif self.require_signature:
            raise UnauthorizedError("Invalid signature")
        return webhook

    async def _record_call(
        self,
        webhook_id: str,
        payload: Optional[Dict[str, Any]],
        success: bool,
        execution_id: Optional[str] = None,
        error: Optional[str] = None,
        count_trigger: bool = True,
    ) -> None:
        now = self.clock.now()
        entry: Dict[str, Any] = {"timestamp": now.isoformat(), "payload": payload, "success": success}
        if execution_id:
            entry["execution_id"] = execution_id
        if error:
            entry["error"] = error

        async with self._lock_for(webhook_id):
            current = await self.storage.get_webhook(webhook_id)
            if current is None:
                return
            log = CallLog(current.call_logs, self.call_log_size)
            log.record(entry)
            if count_trigger:
                await self.storage.increment_webhook_trigger(webhook_id, now, log.to_list())
            else:
                await self.storage.update_webhook(webhook_id, {"call_logs": log.to_list()})

    async def trigger(
        self,
        workflow_id: str,
        secret_key: str,
        payload: Optional[Dict[str, Any]] = None,
        client_ip: Optional[str] = None,
        raw_body: Optional[bytes] = None,
        signature: Optional[str] = None,
    ) -> TriggerResult:
        """Run the gate, then dispatch.

        HTTP callers pass only ``raw_body``; it is decoded once the gate and the
        rate limit have passed, so a malformed body never changes the rejection
        reason of an unauthorized call.
        """
        if raw_body is None:
            payload = payload if payload is not None else {}
            raw_body = json.dumps(payload, separators=(",", ":")).encode("utf-8")

        webhook = await self.storage.get_webhook_by_workflow(workflow_id)
        lock_key = webhook.id if webhook else workflow_id
        async with self._lock_for(lock_key):
            # Re-read under the lock so a concurrent secret regeneration is observed
            if webhook is not None:
                webhook = await self.storage.get_webhook(webhook.id)
            try:
                webhook = self._check(webhook, secret_key, client_ip, raw_body, signature)
            except (NotFoundError, UnauthorizedError) as e:
                logger.warning(
                    f"Webhook rejected: {e.reason}",
                    extra=log_fields(workflow_id=workflow_id, client_ip=client_ip, reason=e.reason),
                )
                raise
            decision = await self.rate_limiter.hit(webhook.id, self.clock.now())

        if not decision.allowed:
            logger.warning(
                "Webhook rate limit exceeded",
                extra=log_fields(webhook_id=webhook.id, workflow_id=workflow_id, retry_after=decision.retry_after),
            )
            await self._record_call(webhook.id, payload, False, error="Rate limit exceeded", count_trigger=False)
            raise RateLimitedError("Rate limit exceeded", retry_after=decision.retry_after)

        if payload is None:
            try:
                payload = decode_body(raw_body)
            except InvalidInputError as e:
                await self._record_call(webhook.id, None, False, error=e.reason, count_trigger=False)
                raise

        workflow = await self.storage.get_workflow(workflow_id)
        if not workflow:
            await self._record_call(webhook.id, payload, False, error="Workflow not found", count_trigger=False)
            raise NotFoundError("Workflow not found")

        inputs = self._build_input(webhook, payload)
        try:
            execution_id = await self.dispatcher.execute_workflow(workflow_id, inputs, trigger="webhook")
        except Exception as e:
            logger.exception(
                f"Webhook-triggered execution failed for workflow {workflow_id}",
                extra=log_fields(webhook_id=webhook.id, workflow_id=workflow_id),
            )
            await self._record_call(webhook.id, payload, False, error=str(e) or "Execution failed")
            raise DownstreamFailureError("Execution failed") from e

        await self._record_call(webhook.id, payload, True, execution_id=execution_id)
        self.broadcaster.emit(execution_id, "execution_started", {"workflowName": workflow.name, "status": "pending"})
        logger.info(
            "Webhook triggered workflow",
            extra=log_fields(webhook_id=webhook.id, workflow_id=workflow_id, execution_id=execution_id),
        )
        return TriggerResult(accepted=True, webhook_id=webhook.id, execution_id=execution_id)
