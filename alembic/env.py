"""Alembic environment for the OctoPrint Manager state database."""

from alembic import context
from sqlalchemy import engine_from_config, pool

from octoprint_manager.config import get_settings
from octoprint_manager.models import Base

config = context.config
target_metadata = Base.metadata


def _sync_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    state_db = get_settings().state_db
    if state_db.startswith("sqlite"):
        return state_db.replace("sqlite+aiosqlite://", "sqlite://")
    return f"sqlite:///{state_db}"


def run_migrations_offline() -> None:
    context.configure(url=_sync_url(), target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        {"sqlalchemy.url": _sync_url()},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
