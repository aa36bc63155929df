import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from chain_indexer.app.config import settings
from chain_indexer.app.infrastructure.db.db_base import BaseDB
from chain_indexer.app.infrastructure.db.engine import create_app_async_engine
import chain_indexer.app.infrastructure.db.models  # noqa: F401  (register tables on BaseDB.metadata)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = BaseDB.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=settings.database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_app_async_engine()
    async with engine.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
