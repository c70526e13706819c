"""
Alembic Migration Environment
===============================

What:  Configures Alembic for the async SQLAlchemy setup.
How:   Takes the database URL from pawmatch settings and runs migrations on
       an async engine through connection.run_sync().
Who:   Called by `alembic` CLI commands (upgrade, downgrade, revision).

Only the conversation subsystem's tables are managed here. The animals,
shelters and users tables are mapped for reads but owned elsewhere; their
Table.info carries {"external": True} and include_object() skips them.
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context

from pawmatch.config import settings
from pawmatch.database import Base

# Registers every model on Base.metadata for --autogenerate
import pawmatch.models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

config.set_main_option("sqlalchemy.url", settings.database_url)


def include_object(obj, name, type_, reflected, compare_to):
    """Leave collaborator-owned tables (and their indexes) alone."""
    table = obj if type_ == "table" else getattr(obj, "table", None)
    if table is not None and table.info.get("external"):
        return False
    if type_ == "table" and reflected and compare_to is None:
        # Present in the database but not mapped by us
        return False
    return True


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout without connecting."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
    )

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


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
