"""
Durable work items for the task processor.

Each row points at one unit of gateway work: running an action through its
handler, or attempting one outbound delivery. Retries of the *work* are new
rows scheduled in the future; retry_count here only covers failures of the
task plumbing itself.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from hookgate.database import Base


class TaskType:
    INCOMING_ACTION = "incoming_action"
    OUTGOING_DELIVERY = "outgoing_delivery"


class TaskStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskQueue(Base):
    __tablename__ = "task_queue"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    task_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # {"action_id": ...} or {"outgoing_event_id": ...}
    payload: Mapped[Optional[dict]] = mapped_column(JSONB)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TaskStatus.PENDING)
    # Higher runs first
    priority: Mapped[Optional[int]] = mapped_column(Integer, default=5)
    retry_count: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    max_retries: Mapped[Optional[int]] = mapped_column(Integer, default=1)

    # Not claimable before this instant
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=_utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    error_message: Mapped[Optional[str]] = mapped_column(Text)
    result_data: Mapped[Optional[dict]] = mapped_column(JSONB)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_task_queue_processing", "status", "scheduled_at", "priority"),
    )

    @property
    def target_id(self) -> Optional[str]:
        payload = self.payload or {}
        return payload.get("action_id") or payload.get("outgoing_event_id")

    def __repr__(self) -> str:
        return f"<TaskQueue {self.task_type} {self.target_id} ({self.status})>"
