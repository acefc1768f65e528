"""
Incoming webhook events and their per-handler actions.

IncomingEvent is unique on (provider, external_id) - the database constraint
is the idempotency boundary, not any application-level check.
IncomingEventAction is one (event, handler) pairing owned by the dispatch engine;
lock_version backs the compare-and-swap lock acquisition.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from hookgate.database import Base


class EventStatus:
    RECEIVED = "received"
    PROCESSING = "processing"
    PROCESSED = "processed"
    PARTIALLY_PROCESSED = "partially_processed"
    FAILED = "failed"


class DedupState:
    UNIQUE = "unique"
    DUPLICATE = "duplicate"
    REPLAYED = "replayed"


class ActionStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    PENDING_RETRY = "pending_retry"
    FAILED = "failed"

    # States a worker may lock from
    RUNNABLE = (PENDING, PENDING_RETRY)


class IncomingEvent(Base):
    __tablename__ = "incoming_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    provider: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    headers: Mapped[Optional[dict]] = mapped_column(JSONB)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONB)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=EventStatus.RECEIVED
    )
    dedup_state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DedupState.UNIQUE
    )
    request_id: Mapped[Optional[str]] = mapped_column(String(64))

    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="uq_incoming_events_provider_external_id"),
    )

    @property
    def archived(self) -> bool:
        return self.archived_at is not None

    def __repr__(self) -> str:
        return f"<IncomingEvent {self.provider}:{self.external_id} ({self.status})>"


class IncomingEventAction(Base):
    __tablename__ = "incoming_event_actions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    incoming_event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("incoming_events.id"), nullable=False, index=True
    )
    handler: Mapped[str] = mapped_column(String(255), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ActionStatus.PENDING
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Snapshot of the handler registration at creation time
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    retry_delays: Mapped[Optional[list]] = mapped_column(JSONB)

    locked_by: Mapped[Optional[str]] = mapped_column(String(64))
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    lock_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[Optional[str]] = mapped_column(Text)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_incoming_event_actions_processing_order", "status", "priority", "handler"),
    )

    @property
    def locked(self) -> bool:
        return self.locked_at is not None

    def __repr__(self) -> str:
        return f"<IncomingEventAction {self.handler} ({self.status}, attempt {self.attempt_count})>"
