"""Alembic environment.

Migrations are hand-written SQL (`op.execute`). The ORM metadata is attached
only so `alembic check` can report drift between the models and the schema.
Override the target database with `alembic -x db_url=postgresql+asyncpg://... upgrade head`.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from config.settings import settings
from src.vc_common.database import Base

# Register every table on Base.metadata
import src.vc_card.infrastructure.db_models  # noqa: F401
import src.vc_gateway.user.db_models  # noqa: F401
import src.vc_ledger.infrastructure.db_models  # noqa: F401
import src.vc_transaction.infrastructure.db_models  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    return context.get_x_argument(as_dictionary=True).get("db_url", settings.DATABASE_URL)


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of executing it."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):  # type: ignore[no-untyped-def]
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        # each revision commits on its own so a failed seed does not roll back the tables
        transaction_per_migration=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = create_async_engine(_database_url(), poolclass=NullPool)
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
