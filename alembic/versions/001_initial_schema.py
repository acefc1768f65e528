"""Initial schema: providers, incoming events and actions, outgoing events, task queue

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "providers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("token", sa.String(128), nullable=False, unique=True),
        sa.Column("signing_secret", sa.Text, nullable=True),
        sa.Column("verifier", sa.String(50), nullable=False, server_default="default"),
        sa.Column("timestamp_tolerance_seconds", sa.Integer, nullable=True),
        sa.Column("max_payload_size_bytes", sa.Integer, nullable=True),
        sa.Column("rate_limit_requests", sa.Integer, nullable=True),
        sa.Column("rate_limit_period", sa.Integer, nullable=True),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    # Unique (provider, external_id) is the idempotency boundary for intake
    op.create_table(
        "incoming_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("provider", sa.String(100), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("headers", postgresql.JSONB, nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="received"),
        sa.Column("dedup_state", sa.String(20), nullable=False, server_default="unique"),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("provider", "external_id", name="uq_incoming_events_provider_external_id"),
    )
    op.create_index("ix_incoming_events_provider", "incoming_events", ["provider"])
    op.create_index("ix_incoming_events_event_type", "incoming_events", ["event_type"])
    op.create_index("ix_incoming_events_created_at", "incoming_events", ["created_at"])

    op.create_table(
        "incoming_event_actions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "incoming_event_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("incoming_events.id"), nullable=False,
        ),
        sa.Column("handler", sa.String(255), nullable=False),
        sa.Column("priority", sa.Integer, nullable=False, server_default="100"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="5"),
        sa.Column("retry_delays", postgresql.JSONB, nullable=True),
        sa.Column("locked_by", sa.String(64), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lock_version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_incoming_event_actions_incoming_event_id", "incoming_event_actions", ["incoming_event_id"],
    )
    op.create_index("ix_incoming_event_actions_locked_at", "incoming_event_actions", ["locked_at"])
    op.create_index(
        "ix_incoming_event_actions_processing_order", "incoming_event_actions",
        ["status", "priority", "handler"],
    )

    op.create_table(
        "outgoing_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("provider", sa.String(100), nullable=False),
        sa.Column("event_type", sa.String(255), nullable=False),
        sa.Column("target_url", sa.Text, nullable=False),
        sa.Column("headers", postgresql.JSONB, nullable=True),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("first_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("response_code", sa.Integer, nullable=True),
        sa.Column("response_body", sa.Text, nullable=True),
        sa.Column("response_time_ms", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_outgoing_events_provider", "outgoing_events", ["provider"])
    op.create_index("ix_outgoing_events_created_at", "outgoing_events", ["created_at"])
    op.create_index("ix_outgoing_events_status_created", "outgoing_events", ["status", "created_at"])

    op.create_table(
        "task_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("task_type", sa.String(50), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer, nullable=True, server_default="5"),
        sa.Column("retry_count", sa.Integer, nullable=True, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=True, server_default="1"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("result_data", postgresql.JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
    )
    op.create_index("ix_task_queue_processing", "task_queue", ["status", "scheduled_at", "priority"])


def downgrade() -> None:
    op.drop_index("ix_task_queue_processing", table_name="task_queue")
    op.drop_table("task_queue")

    op.drop_index("ix_outgoing_events_status_created", table_name="outgoing_events")
    op.drop_index("ix_outgoing_events_created_at", table_name="outgoing_events")
    op.drop_index("ix_outgoing_events_provider", table_name="outgoing_events")
    op.drop_table("outgoing_events")

    op.drop_index("ix_incoming_event_actions_processing_order", table_name="incoming_event_actions")
    op.drop_index("ix_incoming_event_actions_locked_at", table_name="incoming_event_actions")
    op.drop_index("ix_incoming_event_actions_incoming_event_id", table_name="incoming_event_actions")
    op.drop_table("incoming_event_actions")

    op.drop_index("ix_incoming_events_created_at", table_name="incoming_events")
    op.drop_index("ix_incoming_events_event_type", table_name="incoming_events")
    op.drop_index("ix_incoming_events_provider", table_name="incoming_events")
    op.drop_table("incoming_events")

    op.drop_table("providers")
