"""
Maintenance worker - periodic archival and, when enabled, the stale lock sweep.
"""
import asyncio
import logging

from hookgate.services.archival import archive_events
from hookgate.services.container import GatewayServices
from hookgate.services.dispatch import reclaim_stale_locks
from hookgate.utils.alerting import AlertType, send_alert

logger = logging.getLogger(__name__)


async def maintenance_cycle(services: GatewayServices) -> dict:
    settings = services.settings
    summary: dict = {}

    async with services.session_factory() as db:
        summary["archived"] = await archive_events(
            db, settings.retention_days, settings.archival_batch_size,
        )

    if settings.stale_lock_sweep_enabled:
        async with services.session_factory() as db:
            reclaimed = await reclaim_stale_locks(db, settings.action_lock_timeout_seconds)
        summary["reclaimed"] = reclaimed
        if reclaimed:
            await send_alert(
                AlertType.STALE_LOCKS_RECLAIMED,
                f"Reclaimed {reclaimed} actions stuck in processing",
                severity="warning",
            )

    return summary


async def run_maintenance(services: GatewayServices) -> None:
    interval = services.settings.maintenance_interval_seconds
    logger.info("Maintenance worker started (interval %ds)", interval)

    while True:
        try:
            summary = await maintenance_cycle(services)
            logger.debug("Maintenance cycle complete: %s", summary)
        except Exception as e:
            logger.error("Maintenance cycle error: %s", str(e))

        await asyncio.sleep(interval)
