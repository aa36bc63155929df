from __future__ import annotations

import logging

from chain_indexer.app.infrastructure.adapters.sqlalchemy_gateway import SqlAlchemyPersistenceGateway
from chain_indexer.app.infrastructure.db.engine import create_app_async_engine

logger = logging.getLogger(__name__)


async def init_db_task(*, url: str | None = None) -> None:
    """Task: create all tables directly from the ORM models (dev databases)."""
    engine = create_app_async_engine(url=url)
    try:
        await SqlAlchemyPersistenceGateway(engine).create_schema()
        logger.info("Database schema created")
    finally:
        await engine.dispose()
