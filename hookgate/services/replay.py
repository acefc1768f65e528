"""
Replay - deliberate reprocessing of a stored IncomingEvent.
"""
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.incoming_event import (
    ActionStatus,
    DedupState,
    EventStatus,
    IncomingEvent,
    IncomingEventAction,
)
from hookgate.services.task_dispatch import enqueue_action, notify_workers

logger = logging.getLogger(__name__)


class EventNotFound(LookupError):
    pass


async def replay_event(db: AsyncSession, event_id) -> list[uuid.UUID]:
    """
    Mark the event replayed, give its failed actions a fresh attempt budget
    and enqueue them. Processed and in-flight actions are left alone.
    Returns the ids of the re-queued actions.
    """
    event_uuid = event_id if isinstance(event_id, uuid.UUID) else uuid.UUID(str(event_id))
    event = await db.get(IncomingEvent, event_uuid)
    if event is None:
        raise EventNotFound(f"Incoming event {event_id} not found")

    result = await db.execute(
        select(IncomingEventAction)
        .where(
            IncomingEventAction.incoming_event_id == event.id,
            IncomingEventAction.status == ActionStatus.FAILED,
        )
        .order_by(IncomingEventAction.priority, IncomingEventAction.handler)
    )
    failed = result.scalars().all()

    event.dedup_state = DedupState.REPLAYED
    tasks = []
    for action in failed:
        action.status = ActionStatus.PENDING
        action.attempt_count = 0
        action.error_message = None
        action.locked_by = None
        action.locked_at = None
        action.processed_at = None
        tasks.append(await enqueue_action(db, action.id))

    if failed:
        event.status = EventStatus.PROCESSING
    await db.commit()
    await notify_workers(tasks)

    logger.info(
        "Replayed event %s:%s (%d actions re-queued)", event.provider, event.external_id, len(failed),
        extra={"provider": event.provider, "event_id": str(event.id)},
    )
    return [action.id for action in failed]
