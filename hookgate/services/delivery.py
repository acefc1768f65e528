"""
Outgoing delivery engine - sends one OutgoingEvent per call.

State machine: pending -> processing -> {delivered, failed}. A retryable
failure with attempts left goes straight back to pending with a delayed
task; the failed attempt stays visible through error_message,
response_code and last_attempt_at.

Response classification:
- 2xx: delivered, breaker success
- 4xx: failed, terminal, no breaker penalty
- anything else / network error: retryable, breaker failure
- unsafe target URL: failed, terminal, no breaker penalty
"""
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

import httpx
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.outgoing_event import OutgoingEvent, OutgoingStatus
from hookgate.services.circuit_breaker import CircuitBreaker, CircuitOpenError
from hookgate.services.endpoints import EndpointRegistry, OutgoingEndpoint
from hookgate.services.task_dispatch import enqueue_delivery, notify_workers
from hookgate.utils import instrumentation
from hookgate.utils.alerting import AlertType, send_alert
from hookgate.utils.metrics import Timer
from hookgate.utils.signatures import sign_payload
from hookgate.utils.url_safety import UnsafeURLError, validate_target_url

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_CHARS = 1000


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    RETRY_SCHEDULED = "retry_scheduled"
    CIRCUIT_OPEN = "circuit_open"
    NO_ENDPOINT = "no_endpoint"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"


async def enqueue_outgoing_event(
    db: AsyncSession,
    provider: str,
    event_type: str,
    target_url: str,
    payload: dict,
    headers: Optional[dict] = None,
) -> OutgoingEvent:
    """Create a pending OutgoingEvent and queue its first delivery attempt. Commits."""
    event = OutgoingEvent(
        provider=provider,
        event_type=event_type,
        target_url=target_url,
        payload=payload,
        headers=headers or {},
        status=OutgoingStatus.PENDING,
        attempt_count=0,
    )
    db.add(event)
    await db.flush()
    task = await enqueue_delivery(db, event.id)
    await db.commit()
    await notify_workers([task])

    logger.info(
        "Outgoing event queued: %s %s -> %s", provider, event_type, target_url,
        extra={"provider": provider, "event_type": event_type, "event_id": str(event.id)},
    )
    return event


class OutgoingDeliveryEngine:
    def __init__(
        self,
        endpoints: EndpointRegistry,
        circuit_breaker: CircuitBreaker,
        session_factory: Callable[[], AsyncSession],
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ):
        # Connect/read timeouts come from the client (GatewayServices.get_http_client)
        self._endpoints = endpoints
        self._breaker = circuit_breaker
        self._session_factory = session_factory
        self._client = http_client
        self._clock = clock

    async def claim(self, db: AsyncSession, event: OutgoingEvent) -> bool:
        """
        Move a pending event to processing and count the attempt, in one
        conditional UPDATE. Only one caller can win for a given pending row.
        """
        event_id = event.id
        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(OutgoingEvent)
            .where(OutgoingEvent.id == event_id, OutgoingEvent.status == OutgoingStatus.PENDING)
            .values(
                status=OutgoingStatus.PROCESSING,
                attempt_count=OutgoingEvent.attempt_count + 1,
                first_attempt_at=func.coalesce(OutgoingEvent.first_attempt_at, now),
                last_attempt_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            logger.info("Outgoing event %s already claimed by another worker", str(event_id)[:8])
            return False

        await db.commit()
        await db.refresh(event)
        return True

    async def deliver(self, outgoing_event_id) -> DeliveryOutcome:
        async with self._session_factory() as db:
            event_id = outgoing_event_id if isinstance(outgoing_event_id, uuid.UUID) else uuid.UUID(str(outgoing_event_id))
            event = await db.get(OutgoingEvent, event_id)
            if event is None:
                logger.warning("Outgoing event %s not found", outgoing_event_id)
                return DeliveryOutcome.NOT_FOUND
            if event.status != OutgoingStatus.PENDING:
                logger.info("Outgoing event %s is %s, skipping", str(event.id)[:8], event.status)
                return DeliveryOutcome.SKIPPED

            endpoint = self._endpoints.get(event.provider)
            if endpoint is None:
                logger.info(
                    "No outgoing endpoint configured for %s; nothing to deliver against",
                    event.provider, extra={"provider": event.provider},
                )
                return DeliveryOutcome.NO_ENDPOINT

            if endpoint.circuit_breaker_enabled:
                try:
                    self._breaker.check(event.target_url, endpoint.cooldown_seconds)
                except CircuitOpenError as e:
                    return await self._defer_for_circuit(db, event, e)

            if not await self.claim(db, event):
                return DeliveryOutcome.SKIPPED

            log_extra = {
                "event_id": str(event.id),
                "provider": event.provider,
                "target_url": event.target_url,
                "attempt": event.attempt_count,
            }
            instrumentation.emit(instrumentation.OUTGOING_EVENT_SENDING, **log_extra)

            timer = Timer().start()
            try:
                await validate_target_url(event.target_url)
                body = json.dumps(event.payload or {})
                headers = self._build_headers(endpoint, event, body)
                response = await self._client.post(event.target_url, content=body.encode("utf-8"), headers=headers)
            except UnsafeURLError as e:
                event.status = OutgoingStatus.FAILED
                event.error_message = str(e)[:ERROR_MESSAGE_MAX_CHARS]
                await db.commit()
                instrumentation.emit(instrumentation.OUTGOING_EVENT_FAILED, reason="unsafe_url", **log_extra)
                return DeliveryOutcome.FAILED
            except httpx.HTTPError as e:
                self._record_send_error(event, e, timer)
                return await self._handle_retryable(db, event, endpoint, log_extra)
            except Exception as e:
                # Never leave the row in processing; record, schedule the retry, then surface
                self._record_send_error(event, e, timer)
                await self._handle_retryable(db, event, endpoint, log_extra)
                raise

            event.response_time_ms = timer.stop()
            event.response_code = response.status_code
            event.response_body = OutgoingEvent.truncate_body(response.text)

            if OutgoingEvent.is_success(response.status_code):
                event.status = OutgoingStatus.DELIVERED
                event.delivered_at = datetime.now(timezone.utc)
                event.error_message = None
                await db.commit()
                if endpoint.circuit_breaker_enabled:
                    self._breaker.record_success(event.target_url)
                instrumentation.emit(
                    instrumentation.OUTGOING_EVENT_DELIVERED,
                    status_code=response.status_code, response_time_ms=event.response_time_ms, **log_extra,
                )
                return DeliveryOutcome.DELIVERED

            event.error_message = f"HTTP {response.status_code}"
            if OutgoingEvent.is_client_error(response.status_code):
                event.status = OutgoingStatus.FAILED
                await db.commit()
                instrumentation.emit(
                    instrumentation.OUTGOING_EVENT_FAILED,
                    status_code=response.status_code, retryable=False, **log_extra,
                )
                return DeliveryOutcome.FAILED

            return await self._handle_retryable(db, event, endpoint, log_extra)

    @staticmethod
    def _record_send_error(event: OutgoingEvent, error: Exception, timer: Timer) -> None:
        event.response_time_ms = timer.stop()
        event.response_code = None
        event.response_body = None
        event.error_message = f"{type(error).__name__}: {error}"[:ERROR_MESSAGE_MAX_CHARS]

    def _build_headers(self, endpoint: OutgoingEndpoint, event: OutgoingEvent, body: str) -> dict:
        headers = {**endpoint.default_headers, **(event.headers or {})}
        if endpoint.signing_enabled:
            headers[endpoint.signature_header] = sign_payload(endpoint.signing_secret, body)
            headers[endpoint.timestamp_header] = str(int(self._clock()))
        return headers

    async def _handle_retryable(
        self, db: AsyncSession, event: OutgoingEvent, endpoint: OutgoingEndpoint, log_extra: dict,
    ) -> DeliveryOutcome:
        if endpoint.circuit_breaker_enabled:
            opened = self._breaker.record_failure(event.target_url, endpoint.failure_threshold)
            if opened:
                instrumentation.emit(
                    instrumentation.CIRCUIT_OPENED,
                    endpoint=event.target_url, failures=endpoint.failure_threshold,
                )
                await send_alert(
                    AlertType.CIRCUIT_OPENED,
                    f"Circuit opened for {event.target_url}",
                    severity="warning",
                    dedup_key=event.target_url,
                )

        if event.attempt_count >= endpoint.max_attempts:
            event.status = OutgoingStatus.FAILED
            await db.commit()
            instrumentation.emit(
                instrumentation.OUTGOING_EVENT_FAILED,
                status_code=event.response_code, retryable=False, **log_extra,
            )
            await send_alert(
                AlertType.DELIVERY_EXHAUSTED,
                f"Delivery to {event.target_url} failed after {event.attempt_count} attempts",
                severity="warning",
                extra={"outgoing_event_id": str(event.id), "error": event.error_message},
                dedup_key=event.target_url,
            )
            return DeliveryOutcome.FAILED

        delay = endpoint.delay_for_attempt(event.attempt_count)
        event.status = OutgoingStatus.PENDING
        task = await enqueue_delivery(db, event.id, delay_seconds=delay)
        await db.commit()
        instrumentation.emit(
            instrumentation.OUTGOING_EVENT_FAILED,
            status_code=event.response_code, retryable=True, retry_in=delay, **log_extra,
        )
        await notify_workers([task])
        return DeliveryOutcome.RETRY_SCHEDULED

    async def _defer_for_circuit(self, db: AsyncSession, event: OutgoingEvent, error: CircuitOpenError) -> DeliveryOutcome:
        delay = max(error.retry_in, 1)
        await enqueue_delivery(db, event.id, delay_seconds=delay)
        await db.commit()
        logger.info(
            "Circuit open for %s, delivery deferred %ds", event.target_url, delay,
            extra={"event_id": str(event.id), "target_url": event.target_url},
        )
        return DeliveryOutcome.CIRCUIT_OPEN
