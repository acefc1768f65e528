"""
Sync provider definitions from a JSON file into the providers table.

The file holds a list of provider objects (or {"providers": [...]}), e.g.:

    [
      {"name": "stripe", "verifier": "stripe", "signing_secret": "ENV[STRIPE_WEBHOOK_SECRET]"},
      {"name": "square", "verifier": "square", "signing_secret": "ENV[SQUARE_SIGNATURE_KEY]"}
    ]

Usage:
    python -m scripts.sync_providers providers.json
    python -m scripts.sync_providers providers.json --show-tokens
"""
import argparse
import asyncio
import json
import logging

from sqlalchemy import select

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def load_definitions(path: str) -> list[dict]:
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    if isinstance(data, dict):
        data = data.get("providers", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of provider definitions")
    return data


async def sync(path: str, show_tokens: bool = False) -> None:
    from hookgate.config import get_settings
    from hookgate.database import async_session_factory
    from hookgate.models.provider import Provider
    from hookgate.services.provider_sync import sync_providers

    definitions = load_definitions(path)
    async with async_session_factory() as db:
        summary = await sync_providers(db, definitions)

        logger.info("Created: %s", ", ".join(summary["created"]) or "-")
        logger.info("Updated: %s", ", ".join(summary["updated"]) or "-")

        if show_tokens:
            base_url = get_settings().webhook_base_url.rstrip("/")
            result = await db.execute(select(Provider).order_by(Provider.name))
            for provider in result.scalars().all():
                logger.info("  %s -> %s/webhooks/%s/%s", provider.name, base_url, provider.name, provider.token)


def main():
    parser = argparse.ArgumentParser(description="Sync webhook provider definitions")
    parser.add_argument("path", help="JSON file with provider definitions")
    parser.add_argument(
        "--show-tokens", action="store_true",
        help="Print each provider's inbound webhook URL",
    )
    args = parser.parse_args()
    asyncio.run(sync(args.path, show_tokens=args.show_tokens))


if __name__ == "__main__":
    main()
