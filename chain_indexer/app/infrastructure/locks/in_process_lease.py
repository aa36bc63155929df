from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from chain_indexer.app.domain.errors import IndexerBusyError
from chain_indexer.app.domain.ports.out import IndexerLeaseManager

logger = logging.getLogger(__name__)


class InProcessLeaseManager(IndexerLeaseManager):
    """
    Single-process lease: a set of indexer ids with a run in flight.

    Check-and-claim happens without an await in between, so it is atomic
    on one event loop. Does not protect against a second process; use
    PostgresAdvisoryLeaseManager for that.
    """

    def __init__(self) -> None:
        self._held: set[int] = set()

    def is_leased(self, indexer_id: int) -> bool:
        return indexer_id in self._held

    @asynccontextmanager
    async def lease(self, indexer_id: int) -> AsyncIterator[None]:
        if indexer_id in self._held:
            raise IndexerBusyError(indexer_id)
        self._held.add(indexer_id)
        logger.debug("Lease acquired for indexer %s", indexer_id)
        try:
            yield
        finally:
            self._held.discard(indexer_id)
            logger.debug("Lease released for indexer %s", indexer_id)
