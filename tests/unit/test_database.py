"""Unit tests for DatabaseManager schema setup."""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from octoprint_manager.models.database import DatabaseManager, build_db_url


def test_build_db_url():
    """Test that paths and plain sqlite URLs use the aiosqlite driver."""
    assert build_db_url("/var/lib/octo/state.db") == "sqlite+aiosqlite:////var/lib/octo/state.db"
    assert build_db_url("sqlite:///state.db") == "sqlite+aiosqlite:///state.db"
    assert build_db_url("sqlite+aiosqlite:///state.db") == "sqlite+aiosqlite:///state.db"


@pytest.mark.asyncio
async def test_create_tables_adds_port_index_to_existing_table(tmp_path):
    """Test that a containers table created without the port index gains it."""
    manager = DatabaseManager(db_url=f"sqlite+aiosqlite:///{tmp_path / 'legacy.db'}")
    engine = manager.get_engine()
    async with engine.begin() as conn:
        await conn.execute(
            text(
                "CREATE TABLE containers ("
                "id TEXT PRIMARY KEY, device TEXT NOT NULL, "
                "port INTEGER NOT NULL, name VARCHAR)"
            )
        )

    await manager.create_tables()

    async with engine.connect() as conn:
        indexes = (await conn.execute(text("PRAGMA index_list('containers')"))).fetchall()
        assert "ix_containers_port" in [row[1] for row in indexes]

    with pytest.raises(IntegrityError):
        async with engine.begin() as conn:
            await conn.execute(
                text("INSERT INTO containers (id, device, port) VALUES ('a', 'usbA', 2000)")
            )
            await conn.execute(
                text("INSERT INTO containers (id, device, port) VALUES ('b', 'usbB', 2000)")
            )

    await manager.close()


@pytest.mark.asyncio
async def test_create_tables_is_repeatable(tmp_path):
    """Test that running schema setup twice on the same store succeeds."""
    manager = DatabaseManager(db_url=f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")

    await manager.create_tables()
    await manager.create_tables()

    await manager.close()
