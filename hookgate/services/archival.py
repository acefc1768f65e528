"""
Event archival - marks incoming and outgoing events older than the retention
window as archived. Rows are never deleted; terminal failures stay queryable.
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.incoming_event import IncomingEvent
from hookgate.models.outgoing_event import OutgoingEvent

logger = logging.getLogger(__name__)


async def _archive_model(db: AsyncSession, model, cutoff: datetime, batch_size: int) -> int:
    archived_at = datetime.now(timezone.utc)
    total = 0
    while True:
        batch_ids = (
            select(model.id)
            .where(model.archived_at.is_(None), model.created_at < cutoff)
            .limit(batch_size)
            .scalar_subquery()
        )
        result = await db.execute(
            update(model)
            .where(model.id.in_(batch_ids))
            .values(archived_at=archived_at)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        total += result.rowcount or 0
        if not result.rowcount or result.rowcount < batch_size:
            return total


async def archive_events(db: AsyncSession, retention_days: int = 90, batch_size: int = 1000) -> dict:
    """
    Archive events created more than retention_days ago, batch_size rows
    per transaction. Returns counts per table.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)

    incoming = await _archive_model(db, IncomingEvent, cutoff, batch_size)
    outgoing = await _archive_model(db, OutgoingEvent, cutoff, batch_size)

    if incoming or outgoing:
        logger.info(
            "Archived %d incoming and %d outgoing events older than %d days",
            incoming, outgoing, retention_days,
        )
    return {"incoming": incoming, "outgoing": outgoing}
