from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from chain_indexer.app.config import settings
from chain_indexer.app.infrastructure.db.engine import create_app_async_engine
from chain_indexer.app.infrastructure.factories.indexer_runtime_factory import (
    IndexerRuntime,
    build_indexer_runtime,
)


@asynccontextmanager
async def open_runtime(*, backend: str | None = None) -> AsyncIterator[IndexerRuntime]:
    """Build the indexing stack for one task and dispose the engine afterwards."""
    backend = backend or settings.persistence_backend
    engine = create_app_async_engine() if backend == "sqlalchemy" else None
    try:
        yield build_indexer_runtime(backend=backend, engine=engine)
    finally:
        if engine is not None:
            await engine.dispose()
