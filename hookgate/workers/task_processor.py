"""
Task processor worker.

Claims due rows from task_queue and routes them: incoming_action tasks go to
the dispatch engine, outgoing_delivery tasks to the delivery engine. The
loop wakes on a Redis list push from notify_workers() and otherwise polls.

Handler and delivery backoff are scheduled by the engines as new tasks, so
a row's own retry budget only covers failures of the task plumbing.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.task_queue import TaskQueue, TaskStatus
from hookgate.services.container import GatewayServices
from hookgate.services.delivery import OutgoingDeliveryEngine
from hookgate.services.dispatch import DispatchEngine
from hookgate.services.task_dispatch import (
    TASK_INCOMING_ACTION,
    TASK_NOTIFY_KEY,
    TASK_OUTGOING_DELIVERY,
)
from hookgate.utils.redis_client import get_redis

logger = logging.getLogger(__name__)

HEARTBEAT_KEY = "hookgate:worker_health:task_processor"


def task_backoff_seconds(retry_count: int) -> int:
    """30s, 120s, 480s, ... for failures of the task plumbing itself."""
    return 30 * 4 ** max(retry_count - 1, 0)


class TaskProcessor:
    def __init__(self, services: GatewayServices, dispatcher=None, delivery=None):
        settings = services.settings
        self._services = services
        self._session_factory = services.session_factory
        self._dispatcher = dispatcher or DispatchEngine(services.handlers, services.session_factory)
        self._delivery = delivery or OutgoingDeliveryEngine(
            services.endpoints,
            services.circuit_breaker,
            services.session_factory,
            services.get_http_client(),
        )
        self.poll_interval = settings.task_poll_interval_seconds
        self.max_tasks_per_cycle = settings.max_tasks_per_cycle

    async def run(self) -> None:
        logger.info("Task processor started (wake key %s, poll %ds)", TASK_NOTIFY_KEY, self.poll_interval)
        while True:
            try:
                await self.process_cycle()
            except Exception as e:
                logger.error("Task processor cycle error: %s", str(e), exc_info=True)
            await self._heartbeat()
            await self._wait_for_work()

    async def _wait_for_work(self) -> None:
        """Block until a wake-up arrives on Redis or the poll interval elapses."""
        try:
            redis = await get_redis()
            if await redis.brpop(TASK_NOTIFY_KEY, timeout=self.poll_interval):
                # One cycle serves every pending wake-up
                while await redis.rpop(TASK_NOTIFY_KEY):
                    pass
        except Exception as e:
            logger.debug("Wake-up key unavailable, sleeping instead: %s", str(e))
            await asyncio.sleep(self.poll_interval)

    async def process_cycle(self) -> int:
        """Run every task that is due, highest priority first. Returns how many ran."""
        async with self._session_factory() as db:
            due = (
                await db.execute(
                    select(TaskQueue)
                    .where(
                        TaskQueue.status == TaskStatus.PENDING,
                        TaskQueue.scheduled_at <= datetime.now(timezone.utc),
                    )
                    .order_by(TaskQueue.priority.desc(), TaskQueue.created_at)
                    .limit(self.max_tasks_per_cycle)
                )
            ).scalars().all()

            if due:
                logger.info("Task cycle: %d due", len(due))
            for task in due:
                await self._execute_task(db, task)
                await db.commit()
            return len(due)

    async def _execute_task(self, db: AsyncSession, task: TaskQueue) -> None:
        task.status = TaskStatus.PROCESSING
        task.started_at = datetime.now(timezone.utc)
        await db.commit()

        try:
            task.result_data = await self._dispatch_task(task.task_type, task.payload or {})
        except Exception as e:
            self._mark_failed_attempt(task, f"{type(e).__name__}: {e}"[:1000])
            return

        task.status = TaskStatus.COMPLETED
        task.completed_at = datetime.now(timezone.utc)
        logger.info("Task %s done: %s -> %s", task.task_type, task.target_id, task.result_data)

    def _mark_failed_attempt(self, task: TaskQueue, error: str) -> None:
        task.retry_count = (task.retry_count or 0) + 1
        task.error_message = error

        if task.retry_count >= (task.max_retries or 1):
            task.status = TaskStatus.FAILED
            task.completed_at = datetime.now(timezone.utc)
            logger.warning("Task %s %s gave up: %s", task.task_type, task.target_id, error)
            return

        backoff = task_backoff_seconds(task.retry_count)
        task.status = TaskStatus.PENDING
        task.scheduled_at = datetime.now(timezone.utc) + timedelta(seconds=backoff)
        logger.warning(
            "Task %s %s attempt %d/%d failed, retrying in %ds: %s",
            task.task_type, task.target_id, task.retry_count, task.max_retries, backoff, error,
        )

    async def _dispatch_task(self, task_type: str, payload: dict) -> dict:
        route = {
            TASK_INCOMING_ACTION: self._handle_incoming_action,
            TASK_OUTGOING_DELIVERY: self._handle_outgoing_delivery,
        }.get(task_type)
        if route is None:
            logger.warning("Skipping task with unknown type %r", task_type)
            return {"status": "skipped", "reason": f"unknown task type: {task_type}"}
        return await route(payload)

    async def _handle_incoming_action(self, payload: dict) -> dict:
        action_id = payload.get("action_id")
        if not action_id:
            return {"status": "skipped", "reason": "no action_id"}
        outcome = await self._dispatcher.process_action(action_id)
        return {"status": outcome.value}

    async def _handle_outgoing_delivery(self, payload: dict) -> dict:
        outgoing_event_id = payload.get("outgoing_event_id")
        if not outgoing_event_id:
            return {"status": "skipped", "reason": "no outgoing_event_id"}
        outcome = await self._delivery.deliver(outgoing_event_id)
        return {"status": outcome.value}

    async def _heartbeat(self) -> None:
        try:
            redis = await get_redis()
            await redis.set(HEARTBEAT_KEY, datetime.now(timezone.utc).isoformat(), ex=120)
        except Exception as e:
            logger.debug("Heartbeat write failed: %s", str(e))


async def run_task_processor(services: GatewayServices) -> None:
    await TaskProcessor(services).run()
