"""
Operator alerts for conditions the gateway cannot resolve by itself:
exhausted retries, unregistered handlers, open circuits and reclaimed locks.

Every alert is logged. When ALERT_WEBHOOK_URL is set it is also posted to
a Slack/Discord-compatible webhook. Each alert type (optionally narrowed by
a dedup key, e.g. the endpoint URL) has a cooldown held in Redis so that
all gateway instances share it; if Redis is unreachable a process-local
table takes over.
"""
import logging
import time
from typing import Optional

import httpx

from hookgate.config import get_settings
from hookgate.utils.logging import get_correlation_id
from hookgate.utils.redis_client import get_redis

logger = logging.getLogger(__name__)


class AlertType:
    HANDLER_NOT_REGISTERED = "handler_not_registered"
    ACTION_EXHAUSTED = "action_exhausted"
    DELIVERY_EXHAUSTED = "delivery_exhausted"
    CIRCUIT_OPENED = "circuit_opened"
    UNKNOWN_VERIFIER = "unknown_verifier"
    STALE_LOCKS_RECLAIMED = "stale_locks_reclaimed"
    WORKER_ERROR = "worker_error"


DEFAULT_COOLDOWN_SECONDS = 300
COOLDOWNS: dict[str, int] = {
    AlertType.HANDLER_NOT_REGISTERED: 900,
    AlertType.CIRCUIT_OPENED: 600,
}
COOLDOWN_KEY_PREFIX = "hookgate:alert_cooldown:"

_SEVERITY_LEVELS = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
}

# cooldown key -> monotonic expiry, used only while Redis is unreachable
_local_cooldowns: dict[str, float] = {}


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    extra: Optional[dict] = None,
    dedup_key: Optional[str] = None,
) -> bool:
    """Log and forward an alert. Returns False when a cooldown suppressed it."""
    scope = f"{alert_type}:{dedup_key}" if dedup_key else alert_type
    if not await _claim_cooldown(scope, COOLDOWNS.get(alert_type, DEFAULT_COOLDOWN_SECONDS)):
        return False

    cid = correlation_id or get_correlation_id()
    suffix = f" (correlation_id={cid})" if cid else ""
    logger.log(
        _SEVERITY_LEVELS.get(severity, logging.ERROR),
        "ALERT [%s]: %s%s", alert_type, message, suffix,
    )

    webhook_url = get_settings().alert_webhook_url
    if webhook_url:
        await _post_alert(webhook_url, _render(alert_type, message, severity, cid, extra))
    return True


async def _claim_cooldown(scope: str, seconds: int) -> bool:
    try:
        redis = await get_redis()
        return bool(await redis.set(COOLDOWN_KEY_PREFIX + scope, "1", nx=True, ex=seconds))
    except Exception as e:
        logger.debug("Alert cooldown falling back to local table: %s", str(e))

    now = time.monotonic()
    if _local_cooldowns.get(scope, 0) > now:
        return False
    _local_cooldowns[scope] = now + seconds
    return True


def _render(alert_type: str, message: str, severity: str, cid: Optional[str], extra: Optional[dict]) -> str:
    lines = [f"[{severity.upper()}] **{alert_type}**", message]
    if cid:
        lines.append(f"`correlation_id: {cid}`")
    lines.extend(f"`{key}: {value}`" for key, value in (extra or {}).items())
    return "\n".join(lines)


async def _post_alert(url: str, content: str) -> None:
    # Slack reads "text", Discord reads "content"
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(url, json={"content": content, "text": content})
    except Exception as e:
        logger.warning("Alert webhook post failed: %s", str(e))
