"""
Dispatch engine - runs one IncomingEventAction per call.

State machine: pending -> processing -> {processed, pending_retry, failed},
pending_retry -> processing (loop).

The lock is a compare-and-swap UPDATE on (id, lock_version, runnable status).
Any number of workers may race the same action; exactly one UPDATE matches
and the others get LOCK_NOT_ACQUIRED back as a normal result.

Handler errors are recorded on the action (and a retry enqueued when attempts
remain) before being re-raised, so the task processor sees the failure too.
"""
import asyncio
import inspect
import logging
import os
import socket
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.incoming_event import (
    ActionStatus,
    EventStatus,
    IncomingEvent,
    IncomingEventAction,
)
from hookgate.services.handler_registry import HandlerConfig, HandlerRegistry
from hookgate.services.task_dispatch import enqueue_action, notify_workers
from hookgate.utils import instrumentation
from hookgate.utils.alerting import AlertType, send_alert
from hookgate.utils.metrics import Timer

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_CHARS = 1000


class DispatchOutcome(str, Enum):
    PROCESSED = "processed"
    LOCK_NOT_ACQUIRED = "lock_not_acquired"
    CONFIG_NOT_FOUND = "config_not_found"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def truncate_error(exc: BaseException) -> str:
    message = f"{type(exc).__name__}: {exc}"
    return message[:ERROR_MESSAGE_MAX_CHARS]


def aggregate_status(statuses: Iterable[str]) -> Optional[str]:
    """
    Parent event status from its action statuses.
    None when there are no actions (the event keeps its current status).
    """
    statuses = list(statuses)
    if not statuses:
        return None
    if all(s == ActionStatus.PROCESSED for s in statuses):
        return EventStatus.PROCESSED
    if all(s == ActionStatus.FAILED for s in statuses):
        return EventStatus.FAILED
    if any(s == ActionStatus.FAILED for s in statuses):
        return EventStatus.PARTIALLY_PROCESSED
    return EventStatus.PROCESSING


async def recalculate_event_status(db: AsyncSession, event: IncomingEvent) -> str:
    result = await db.execute(
        select(IncomingEventAction.status)
        .where(IncomingEventAction.incoming_event_id == event.id)
    )
    new_status = aggregate_status(result.scalars().all())
    if new_status is not None and new_status != event.status:
        logger.debug("Event %s status %s -> %s", str(event.id)[:8], event.status, new_status)
        event.status = new_status
    return event.status


def _as_uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class DispatchEngine:
    def __init__(
        self,
        handlers: HandlerRegistry,
        session_factory: Callable[[], AsyncSession],
        worker_id: Optional[str] = None,
    ):
        self._handlers = handlers
        self._session_factory = session_factory
        self.worker_id = worker_id or default_worker_id()

    async def acquire_lock(self, db: AsyncSession, action: IncomingEventAction, worker_id: str) -> bool:
        """
        Compare-and-swap lock. Succeeds only if the row still has the
        lock_version we read and is in a runnable state.
        """
        action_id = action.id
        expected_version = action.lock_version
        result = await db.execute(
            update(IncomingEventAction)
            .where(
                IncomingEventAction.id == action_id,
                IncomingEventAction.lock_version == expected_version,
                IncomingEventAction.status.in_(ActionStatus.RUNNABLE),
            )
            .values(
                status=ActionStatus.PROCESSING,
                locked_by=worker_id,
                locked_at=datetime.now(timezone.utc),
                lock_version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            logger.info(
                "Lock not acquired for action %s (another worker won)",
                str(action_id)[:8], extra={"action_id": str(action_id), "worker_id": worker_id},
            )
            return False

        await db.commit()
        await db.refresh(action)
        return True

    async def process_action(self, action_id, worker_id: Optional[str] = None) -> DispatchOutcome:
        """
        Run one action to its next state. Returns the outcome, or re-raises
        the handler's exception after the failure has been recorded.
        """
        worker_id = worker_id or self.worker_id

        async with self._session_factory() as db:
            action = await db.get(IncomingEventAction, _as_uuid(action_id))
            if action is None:
                logger.warning("Action %s not found", action_id)
                return DispatchOutcome.NOT_FOUND
            if action.status not in ActionStatus.RUNNABLE:
                logger.info("Action %s is %s, skipping", str(action.id)[:8], action.status)
                return DispatchOutcome.SKIPPED

            previous_status = action.status
            if not await self.acquire_lock(db, action, worker_id):
                return DispatchOutcome.LOCK_NOT_ACQUIRED

            event = await db.get(IncomingEvent, action.incoming_event_id)
            config = self._handlers.find(event.provider, event.event_type, action.handler)
            if config is None:
                await self._release_unconfigured(db, action, event, previous_status)
                return DispatchOutcome.CONFIG_NOT_FOUND

            action.attempt_count += 1
            action.last_attempt_at = datetime.now(timezone.utc)
            action.max_attempts = config.max_attempts
            action.retry_delays = list(config.retry_delays)
            if event.status == EventStatus.RECEIVED:
                event.status = EventStatus.PROCESSING
            await db.commit()

            log_extra = {
                "action_id": str(action.id),
                "handler": action.handler,
                "attempt": action.attempt_count,
                "provider": event.provider,
                "event_type": event.event_type,
            }
            instrumentation.emit(instrumentation.ACTION_STARTED, **log_extra)
            timer = Timer().start()

            try:
                await self._invoke(config, event, action)
            except Exception as exc:
                await self._record_failure(db, action, event, config, exc, timer.stop())
                raise

            await self._record_success(db, action, event, timer.stop())
            return DispatchOutcome.PROCESSED

    async def _invoke(self, config: HandlerConfig, event: IncomingEvent, action: IncomingEventAction) -> None:
        target = config.target()
        payload = dict(event.payload or {})
        metadata = {
            "provider": event.provider,
            "event_type": event.event_type,
            "external_id": event.external_id,
            "event_id": str(event.id),
            "action_id": str(action.id),
            "attempt": action.attempt_count,
            "request_id": event.request_id,
            "dedup_state": event.dedup_state,
            "headers": dict(event.headers or {}),
            "metadata": dict(event.event_metadata or {}),
        }

        if inspect.iscoroutinefunction(target):
            await target(event, payload, metadata)
            return

        # Sync handlers must not block the event loop
        result = await asyncio.to_thread(target, event, payload, metadata)
        if inspect.isawaitable(result):
            await result

    async def _record_success(
        self, db: AsyncSession, action: IncomingEventAction, event: IncomingEvent, duration_ms: int,
    ) -> None:
        now = datetime.now(timezone.utc)
        action.status = ActionStatus.PROCESSED
        action.error_message = None
        action.processed_at = now
        action.locked_by = None
        action.locked_at = None
        await recalculate_event_status(db, event)
        await db.commit()

        instrumentation.emit(
            instrumentation.ACTION_COMPLETED,
            action_id=str(action.id), handler=action.handler,
            attempt=action.attempt_count, duration_ms=duration_ms,
        )

    async def _record_failure(
        self,
        db: AsyncSession,
        action: IncomingEventAction,
        event: IncomingEvent,
        config: HandlerConfig,
        exc: Exception,
        duration_ms: int,
    ) -> None:
        action.error_message = truncate_error(exc)
        action.locked_by = None
        action.locked_at = None

        retry_task = None
        delay = None
        if action.attempt_count >= config.max_attempts:
            action.status = ActionStatus.FAILED
        else:
            action.status = ActionStatus.PENDING_RETRY
            delay = config.delay_for_attempt(action.attempt_count)
            retry_task = await enqueue_action(db, action.id, delay_seconds=delay)

        await recalculate_event_status(db, event)
        await db.commit()

        instrumentation.emit(
            instrumentation.ACTION_FAILED,
            action_id=str(action.id), handler=action.handler, attempt=action.attempt_count,
            status=action.status, retry_in=delay, duration_ms=duration_ms,
            error=type(exc).__name__,
        )

        if retry_task is not None:
            await notify_workers([retry_task])
        else:
            await send_alert(
                AlertType.ACTION_EXHAUSTED,
                f"Handler {action.handler} failed {action.attempt_count} times for "
                f"{event.provider}:{event.external_id}",
                severity="warning",
                extra={"action_id": str(action.id), "error": action.error_message[:200]},
                dedup_key=action.handler,
            )

    async def _release_unconfigured(
        self,
        db: AsyncSession,
        action: IncomingEventAction,
        event: IncomingEvent,
        previous_status: str,
    ) -> None:
        """
        No registration for (provider, event_type, handler): put the row back
        the way we found it and tell an operator. The attempt is not counted.
        """
        action.status = previous_status
        action.locked_by = None
        action.locked_at = None
        await db.commit()

        logger.error(
            "No handler registered for %s/%s/%s; action %s released",
            event.provider, event.event_type, action.handler, str(action.id)[:8],
            extra={"action_id": str(action.id), "handler": action.handler},
        )
        await send_alert(
            AlertType.HANDLER_NOT_REGISTERED,
            f"No handler registered for {event.provider}/{event.event_type}/{action.handler}",
            extra={"action_id": str(action.id)},
            dedup_key=f"{event.provider}:{event.event_type}:{action.handler}",
        )


async def reclaim_stale_locks(db: AsyncSession, older_than_seconds: int) -> int:
    """
    Return actions abandoned in `processing` (worker died mid-invocation)
    to pending_retry and enqueue them again. Returns the number reclaimed.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
    result = await db.execute(
        select(IncomingEventAction)
        .where(
            IncomingEventAction.status == ActionStatus.PROCESSING,
            IncomingEventAction.locked_at.is_not(None),
            IncomingEventAction.locked_at < cutoff,
        )
        .order_by(IncomingEventAction.locked_at)
    )
    stale = result.scalars().all()
    if not stale:
        return 0

    tasks = []
    for action in stale:
        logger.warning(
            "Reclaiming stale lock on action %s (locked_by=%s)",
            str(action.id)[:8], action.locked_by,
            extra={"action_id": str(action.id), "handler": action.handler},
        )
        action.status = ActionStatus.PENDING_RETRY
        action.locked_by = None
        action.locked_at = None
        action.lock_version += 1
        tasks.append(await enqueue_action(db, action.id))

    await db.commit()
    await notify_workers(tasks)
    return len(stale)
