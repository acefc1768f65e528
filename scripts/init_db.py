"""
Create the hookgate tables in the configured database.

Usage:
    python -m scripts.init_db
"""
import asyncio
import logging

from hookgate.database import create_all

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def main():
    asyncio.run(create_all())


if __name__ == "__main__":
    main()
