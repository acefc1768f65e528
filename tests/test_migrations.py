"""
The initial migration must produce the same tables, columns and indexes
as the ORM models.
"""
import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine

import hookgate.models  # noqa: F401
from hookgate.database import Base

MIGRATION = Path(__file__).resolve().parent.parent / "alembic" / "versions" / "001_initial_schema.py"


def _load_migration():
    spec = importlib.util.spec_from_file_location("migration_001", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _run(connection, step: str) -> None:
    migration = _load_migration()
    context = MigrationContext.configure(connection)
    with Operations.context(context):
        getattr(migration, step)()


def _schema(connection) -> dict:
    inspector = inspect(connection)
    return {
        table: {
            "columns": {c["name"] for c in inspector.get_columns(table)},
            "indexes": {i["name"] for i in inspector.get_indexes(table)},
        }
        for table in inspector.get_table_names()
    }


@pytest.fixture
async def migration_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'migrations.db'}")
    yield engine
    await engine.dispose()


async def test_upgrade_matches_models(migration_engine):
    async with migration_engine.begin() as conn:
        await conn.run_sync(_run, "upgrade")
        migrated = await conn.run_sync(_schema)

    expected = {
        table.name: {
            "columns": {c.name for c in table.columns},
            "indexes": {i.name for i in table.indexes},
        }
        for table in Base.metadata.sorted_tables
    }
    assert migrated == expected


async def test_downgrade_removes_everything(migration_engine):
    async with migration_engine.begin() as conn:
        await conn.run_sync(_run, "upgrade")
        await conn.run_sync(_run, "downgrade")
        remaining = await conn.run_sync(lambda c: inspect(c).get_table_names())
    assert remaining == []
