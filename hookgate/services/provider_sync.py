"""
Provider configuration sync - upserts provider definitions into the
providers table. Reading definition files is the caller's job
(see scripts/sync_providers.py); this only takes plain dicts.

A definition looks like:
    {"name": "stripe", "verifier": "stripe", "signing_secret": "ENV[STRIPE_WEBHOOK_SECRET]",
     "timestamp_tolerance_seconds": 300, "max_payload_size_bytes": 1048576,
     "rate_limit_requests": 100, "rate_limit_period": 60, "active": true}
"""
import logging
import secrets
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.provider import Provider

logger = logging.getLogger(__name__)

SYNCED_FIELDS = (
    "signing_secret",
    "verifier",
    "timestamp_tolerance_seconds",
    "max_payload_size_bytes",
    "rate_limit_requests",
    "rate_limit_period",
    "active",
)


def generate_token() -> str:
    return secrets.token_urlsafe(32)


async def sync_providers(db: AsyncSession, definitions: Iterable[dict]) -> dict:
    """
    Create or update providers by name. Existing tokens are kept unless the
    definition supplies one. Returns {"created": [...], "updated": [...]}.
    """
    created, updated = [], []

    for definition in definitions:
        name = (definition.get("name") or "").strip().lower()
        if not name:
            raise ValueError("Provider definition is missing a name")

        result = await db.execute(select(Provider).where(Provider.name == name))
        provider = result.scalar_one_or_none()

        if provider is None:
            provider = Provider(name=name, token=definition.get("token") or generate_token())
            db.add(provider)
            created.append(name)
        else:
            if definition.get("token"):
                provider.token = definition["token"]
            updated.append(name)

        for field_name in SYNCED_FIELDS:
            if field_name in definition:
                setattr(provider, field_name, definition[field_name])

    await db.commit()
    logger.info("Provider sync complete: %d created, %d updated", len(created), len(updated))
    return {"created": created, "updated": updated}
