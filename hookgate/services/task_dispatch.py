"""
Task dispatch service - enqueue work units for the task processor.

Tasks are added to the caller's session so they commit atomically with the
rows they point at. After the commit, notify_workers() pushes the task ids
to Redis so the task processor can wake immediately via BRPOP instead of
waiting for its next poll.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.task_queue import TaskQueue, TaskType
from hookgate.utils.redis_client import get_redis

logger = logging.getLogger(__name__)

TASK_NOTIFY_KEY = "hookgate:task_notify"

TASK_INCOMING_ACTION = TaskType.INCOMING_ACTION
TASK_OUTGOING_DELIVERY = TaskType.OUTGOING_DELIVERY


async def enqueue_task(
    db: AsyncSession,
    task_type: str,
    payload: Optional[dict] = None,
    priority: int = 5,
    delay_seconds: int = 0,
    max_retries: int = 1,
) -> TaskQueue:
    """
    Add a task to the queue inside the caller's transaction.

    Args:
        task_type: incoming_action or outgoing_delivery
        payload: Task-specific data as JSON-serializable dict
        priority: 0=low, 5=normal, 10=high
        delay_seconds: Delay before task becomes eligible for processing
        max_retries: Task-level attempts; domain retries are scheduled as new tasks
    """
    scheduled_at = datetime.now(timezone.utc)
    if delay_seconds > 0:
        scheduled_at = scheduled_at + timedelta(seconds=delay_seconds)

    task = TaskQueue(
        task_type=task_type,
        payload=payload or {},
        priority=priority,
        max_retries=max_retries,
        scheduled_at=scheduled_at,
    )
    db.add(task)
    await db.flush()

    logger.info(
        "Task enqueued: type=%s priority=%d delay=%ds id=%s",
        task_type, priority, delay_seconds, str(task.id)[:8],
    )
    return task


async def enqueue_action(db: AsyncSession, action_id, delay_seconds: int = 0) -> TaskQueue:
    return await enqueue_task(
        db, TASK_INCOMING_ACTION, {"action_id": str(action_id)}, delay_seconds=delay_seconds,
    )


async def enqueue_delivery(db: AsyncSession, outgoing_event_id, delay_seconds: int = 0) -> TaskQueue:
    return await enqueue_task(
        db, TASK_OUTGOING_DELIVERY, {"outgoing_event_id": str(outgoing_event_id)}, delay_seconds=delay_seconds,
    )


async def notify_workers(tasks: Iterable[TaskQueue]) -> None:
    """Wake the task processor for immediately-due tasks (best-effort)."""
    now = datetime.now(timezone.utc)
    due = [str(task.id) for task in tasks if _is_due(task, now)]
    if not due:
        return
    try:
        redis = await get_redis()
        await redis.lpush(TASK_NOTIFY_KEY, *due)
    except Exception as e:
        logger.debug("Failed to notify task processor: %s", str(e))


def _is_due(task: TaskQueue, now: datetime) -> bool:
    scheduled_at = task.scheduled_at
    if scheduled_at is None:
        return True
    if scheduled_at.tzinfo is None:
        scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)
    return scheduled_at <= now
