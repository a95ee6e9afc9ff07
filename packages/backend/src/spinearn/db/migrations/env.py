"""Alembic environment configuration.

Learn: The database is shared with the hosted backend, which owns tables we
never model here (reports, spin history, lottery games). Autogenerate only
compares the tables declared in models.py, so a revision never proposes
dropping someone else's table. The admin_messages NOTIFY trigger lives in
a hand-written revision; Alembic does not reflect triggers.

Run from packages/backend:  alembic upgrade head
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from spinearn.config import settings
from spinearn.db.models import Base

config = context.config

# SPINEARN_DATABASE_URL wins over whatever alembic.ini says
config.set_main_option("sqlalchemy.url", settings.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
OWNED_TABLES = frozenset(target_metadata.tables)


def include_object(obj, name, type_, reflected, compare_to):
    """Skip reflected tables (and their indexes) that models.py doesn't own."""
    if type_ == "table":
        return name in OWNED_TABLES or not reflected
    table = getattr(obj, "table", None)
    if table is not None and reflected:
        return table.name in OWNED_TABLES
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL for a DBA instead of connecting."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
