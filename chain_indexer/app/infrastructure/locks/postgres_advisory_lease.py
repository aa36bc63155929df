from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Final

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from chain_indexer.app.domain.errors import IndexerBusyError
from chain_indexer.app.domain.ports.out import IndexerLeaseManager

logger = logging.getLogger(__name__)

# First key of the two-int advisory lock; keeps our locks apart from other apps.
_LOCK_NAMESPACE: Final[int] = 0x1D3C

_TRY_LOCK_SQL = text("SELECT pg_try_advisory_lock(:ns, :key)")
_UNLOCK_SQL = text("SELECT pg_advisory_unlock(:ns, :key)")


class PostgresAdvisoryLeaseManager(IndexerLeaseManager):
    """
    Cross-process lease on a session-level PostgreSQL advisory lock.

    The lock lives as long as the dedicated connection opened in lease(),
    so a crashed worker releases it when its connection drops.
    """

    def __init__(self, *, engine: AsyncEngine) -> None:
        self._engine = engine

    @asynccontextmanager
    async def lease(self, indexer_id: int) -> AsyncIterator[None]:
        params = {"ns": _LOCK_NAMESPACE, "key": indexer_id}
        async with self._engine.connect() as conn:
            acquired = (await conn.execute(_TRY_LOCK_SQL, params)).scalar_one()
            await conn.commit()
            if not acquired:
                raise IndexerBusyError(indexer_id)
            logger.debug("Advisory lock acquired for indexer %s", indexer_id)
            try:
                yield
            finally:
                await conn.execute(_UNLOCK_SQL, params)
                await conn.commit()
                logger.debug("Advisory lock released for indexer %s", indexer_id)
