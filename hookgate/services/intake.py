"""
Intake pipeline - turns one inbound webhook request into a persisted
IncomingEvent plus one IncomingEventAction per matching handler.

Checks run in order and short-circuit on the first failure:
1. Provider lookup (404)
2. Routing token, constant-time (401)
3. Active flag (403)
4. Payload size, before parsing (413)
5. Rate limit (429)
6. Signature + replay window (401)
7. JSON parse (400) - neither the body nor the parser error is ever echoed or logged
8. Idempotent insert on (provider, external_id) - duplicates return 200
9. Action rows in handler priority order, then enqueue (or run inline)
"""
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.incoming_event import (
    ActionStatus,
    DedupState,
    EventStatus,
    IncomingEvent,
    IncomingEventAction,
)
from hookgate.models.provider import Provider
from hookgate.services.container import GatewayServices
from hookgate.services.dispatch import DispatchEngine
from hookgate.services.rate_limiter import check_provider_rate_limit
from hookgate.services.task_dispatch import enqueue_action, notify_workers
from hookgate.utils import instrumentation
from hookgate.utils.logging import get_correlation_id
from hookgate.utils.signatures import secure_compare
from hookgate.verifiers.base import Verifier
from hookgate.verifiers.registry import UnknownVerifierError

logger = logging.getLogger(__name__)

# Never persisted alongside the event
_UNSTORED_HEADERS = frozenset({"authorization", "cookie", "proxy-authorization"})


class IntakeRejected(Exception):
    """A request the gateway refuses. Carries the HTTP status and client-safe message."""

    def __init__(self, status_code: int, message: str, headers: Optional[dict] = None):
        self.status_code = status_code
        self.message = message
        self.headers = headers or {}
        super().__init__(f"{status_code} {message}")


@dataclass
class IntakeResult:
    status_code: int
    status: str
    event_id: uuid.UUID
    action_ids: list[uuid.UUID] = field(default_factory=list)

    def body(self) -> dict:
        return {"status": self.status, "id": str(self.event_id)}


class IntakePipeline:
    def __init__(self, services: GatewayServices, dispatcher: Optional[DispatchEngine] = None):
        self._services = services
        self._dispatcher = dispatcher or DispatchEngine(services.handlers, services.session_factory)

    async def receive(
        self,
        db: AsyncSession,
        provider_name: str,
        token: str,
        body: bytes,
        headers: Mapping[str, str],
    ) -> IntakeResult:
        provider = await self._resolve_provider(db, provider_name)
        self._authenticate(provider, token)
        if not provider.active:
            raise IntakeRejected(403, "Provider is inactive")
        self._enforce_payload_size(provider, body)
        self._enforce_rate_limit(provider)
        verifier = self._verify(provider, body, headers)
        payload = self._parse(provider, body)

        # Plain values only from here; a rollback on a dedup race expires ORM state
        name = provider.name
        external_id = verifier.extract_event_id(payload)
        event_type = verifier.extract_event_type(payload)
        metadata = {
            "verifier": verifier.name,
            "content_length": len(body),
            "timestamp": verifier.extract_timestamp(headers),
            "received_at": datetime.now(timezone.utc).isoformat(),
        }

        existing = await find_event(db, name, external_id)
        if existing is not None:
            return await self._mark_duplicate(db, existing)

        event = IncomingEvent(
            provider=name,
            external_id=external_id,
            event_type=event_type,
            payload=payload,
            headers=_storable_headers(headers),
            event_metadata=metadata,
            status=EventStatus.RECEIVED,
            dedup_state=DedupState.UNIQUE,
            request_id=get_correlation_id(),
        )
        if not await insert_event(db, event):
            # Lost the race to a concurrent request for the same event
            existing = await find_event(db, name, external_id)
            return await self._mark_duplicate(db, existing)

        return await self._create_actions(db, event)

    async def _resolve_provider(self, db: AsyncSession, provider_name: str) -> Provider:
        result = await db.execute(
            select(Provider).where(Provider.name == (provider_name or "").lower())
        )
        provider = result.scalar_one_or_none()
        if provider is None:
            logger.info("Webhook for unknown provider rejected")
            raise IntakeRejected(404, "Unknown provider")
        return provider

    def _authenticate(self, provider: Provider, token: str) -> None:
        if not secure_compare(token, provider.token):
            logger.warning("Invalid token for provider %s", provider.name, extra={"provider": provider.name})
            raise IntakeRejected(401, "Invalid token")

    def _enforce_payload_size(self, provider: Provider, body: bytes) -> None:
        if provider.payload_size_limit_enabled and len(body) > provider.max_payload_size_bytes:
            logger.warning(
                "Payload too large for provider %s: %d > %d bytes",
                provider.name, len(body), provider.max_payload_size_bytes,
                extra={"provider": provider.name},
            )
            raise IntakeRejected(413, "Payload too large")

    def _enforce_rate_limit(self, provider: Provider) -> None:
        exceeded = check_provider_rate_limit(self._services.rate_limiter, provider)
        if exceeded is None:
            return
        instrumentation.emit(
            instrumentation.RATE_LIMIT_EXCEEDED,
            provider=provider.name, count=exceeded.current_count,
            limit=exceeded.limit, period=exceeded.period,
        )
        raise IntakeRejected(429, "Rate limit exceeded", {"Retry-After": str(exceeded.retry_after)})

    def _verify(self, provider: Provider, body: bytes, headers: Mapping[str, str]) -> Verifier:
        try:
            verifier = self._services.verifiers.get(provider.verifier)
        except UnknownVerifierError:
            logger.error(
                "Provider %s configured with unknown verifier %r",
                provider.name, provider.verifier, extra={"provider": provider.name},
            )
            instrumentation.emit(instrumentation.SIGNATURE_FAILED, provider=provider.name, reason="unknown_verifier")
            raise IntakeRejected(401, "Invalid signature")

        if not verifier.verify_signature(body, headers, provider):
            instrumentation.emit(instrumentation.SIGNATURE_FAILED, provider=provider.name, reason="signature")
            raise IntakeRejected(401, "Invalid signature")

        window = verifier.validate_timestamp(headers, provider)
        if not window.valid:
            instrumentation.emit(instrumentation.SIGNATURE_FAILED, provider=provider.name, reason=window.error)
            raise IntakeRejected(401, "Invalid signature")

        instrumentation.emit(instrumentation.SIGNATURE_VERIFIED, provider=provider.name, verifier=verifier.name)
        return verifier

    def _parse(self, provider: Provider, body: bytes) -> dict:
        try:
            payload = json.loads(body)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            logger.warning("Invalid JSON payload from provider %s", provider.name, extra={"provider": provider.name})
            raise IntakeRejected(400, "Invalid JSON")
        return payload

    async def _mark_duplicate(self, db: AsyncSession, event: IncomingEvent) -> IntakeResult:
        event.dedup_state = DedupState.DUPLICATE
        await db.commit()
        logger.info(
            "Duplicate webhook %s:%s", event.provider, event.external_id,
            extra={"provider": event.provider, "event_id": str(event.id)},
        )
        return IntakeResult(200, "duplicate", event.id)

    async def _create_actions(self, db: AsyncSession, event: IncomingEvent) -> IntakeResult:
        configs = self._services.handlers.handlers_for(event.provider, event.event_type)

        actions = []
        for config in configs:
            action = IncomingEventAction(
                incoming_event_id=event.id,
                handler=config.name,
                priority=config.priority,
                status=ActionStatus.PENDING,
                attempt_count=0,
                max_attempts=config.max_attempts,
                retry_delays=list(config.retry_delays),
            )
            db.add(action)
            actions.append((action, config))
        await db.flush()

        tasks = []
        for action, config in actions:
            if config.run_async:
                tasks.append(await enqueue_action(db, action.id))
        await db.commit()

        instrumentation.emit(
            instrumentation.INCOMING_EVENT_RECEIVED,
            provider=event.provider, event_type=event.event_type,
            event_id=str(event.id), actions=len(actions),
        )
        await notify_workers(tasks)

        for action, config in actions:
            if not config.run_async:
                await self._run_inline(action)

        return IntakeResult(201, "received", event.id, [action.id for action, _ in actions])

    async def _run_inline(self, action: IncomingEventAction) -> None:
        """Synchronous handlers run inside the request. Failures are already
        recorded (and retried) by the dispatch engine, so the request still succeeds."""
        try:
            await self._dispatcher.process_action(action.id)
        except Exception as e:
            logger.warning(
                "Inline handler %s failed: %s", action.handler, type(e).__name__,
                extra={"action_id": str(action.id), "handler": action.handler},
            )


async def find_event(db: AsyncSession, provider: str, external_id: str) -> Optional[IncomingEvent]:
    result = await db.execute(
        select(IncomingEvent).where(
            IncomingEvent.provider == provider,
            IncomingEvent.external_id == external_id,
        )
    )
    return result.scalar_one_or_none()


async def insert_event(db: AsyncSession, event: IncomingEvent) -> bool:
    """
    Insert relying on the (provider, external_id) unique constraint.
    Returns False when the row already exists. The event is the first write
    of the transaction, so rolling back on conflict discards nothing else.
    """
    db.add(event)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        return False
    return True


def _storable_headers(headers: Mapping[str, str]) -> dict:
    return {
        str(k).lower(): str(v)
        for k, v in (headers or {}).items()
        if str(k).lower() not in _UNSTORED_HEADERS
    }
