"""
Alembic Migration Environment
===============================

What:  Configures Alembic to work with our async SQLAlchemy setup.
How:   The target database is the registry's default client: the same
       document is discovered the same way (or the DB_* fallback applies),
       and the entry the registry would make the default is migrated.
Who:   Called by `alembic` CLI commands (upgrade, downgrade, revision).
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine
from alembic import context

from authgate.config import settings
from authgate.database import Base, build_connection_url
from authgate.registry import ConnectionRegistry, select_default_config

# Import all models so Alembic can detect them for --autogenerate
from authgate.models.user import User  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def resolve_target():
    """Returns the ConnectionTarget of the default client entry."""
    entries = ConnectionRegistry(settings=settings).load_entries(settings.db_config_path)
    client_config = select_default_config(entries)
    if client_config is None:
        raise RuntimeError("No valid database client entry to migrate")
    return build_connection_url(client_config)


def run_migrations_offline() -> None:
    """Emits SQL to stdout without connecting."""
    target = resolve_target()
    context.configure(
        url=target.url.render_as_string(hide_password=False),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """
    Connects to the default client's database and applies pending migrations
    in a sync context via connection.run_sync().
    """
    target = resolve_target()
    connect_args = {
        "ssl": target.sslmode,
        "timeout": target.connect_timeout or settings.db_connect_timeout,
    }
    if target.server_settings:
        connect_args["server_settings"] = target.server_settings
    connectable = create_async_engine(
        target.url,
        poolclass=pool.NullPool,
        connect_args=connect_args,
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
