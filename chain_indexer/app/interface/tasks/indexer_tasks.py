from __future__ import annotations

import logging
from typing import Sequence

from chain_indexer.app.application.services.indexer_admin import (
    IndexerStatusReport,
    create_indexer,
    get_indexer_status,
    set_indexer_status,
)
from chain_indexer.app.domain.indexer_settings import LogSource
from chain_indexer.app.domain.models import Indexer, IndexerJob, IndexerStatus
from chain_indexer.app.interface.tasks.runtime import open_runtime

logger = logging.getLogger(__name__)


async def run_indexer_task(
    *,
    indexer_id: int,
    backend: str | None = None,
) -> IndexerJob:
    """
    Task: one job for one indexer, from its checkpoint up to the chain head.

    The job row records the outcome; a failed run leaves the indexer in
    status=error with the checkpoint at the last completed chunk.
    """
    async with open_runtime(backend=backend) as runtime:
        job = await runtime.runner.run(indexer_id)

    if job.error:
        logger.error("Indexer %s job %s failed: %s", indexer_id, job.id, job.error)
    else:
        logger.info("Indexer %s job %s completed: %s", indexer_id, job.id, job.result)
    return job


async def create_indexer_task(
    *,
    name: str,
    owner: str,
    start_block: int,
    description: str | None = None,
    batch_size: int | None = None,
    log_source: LogSource | None = None,
    contract_addresses: Sequence[str] = (),
    backend: str | None = None,
) -> Indexer:
    async with open_runtime(backend=backend) as runtime:
        return await create_indexer(
            gateway=runtime.gateway,
            name=name,
            owner=owner,
            start_block=start_block,
            description=description,
            batch_size=batch_size,
            log_source=log_source,
            contract_addresses=contract_addresses,
        )


async def set_indexer_status_task(
    *,
    indexer_id: int,
    status: IndexerStatus,
    backend: str | None = None,
) -> Indexer:
    async with open_runtime(backend=backend) as runtime:
        indexer = await set_indexer_status(gateway=runtime.gateway, indexer_id=indexer_id, status=status)
    logger.info("Indexer %s is now %s", indexer.id, indexer.status.value)
    return indexer


async def indexer_status_task(
    *,
    indexer_id: int,
    backend: str | None = None,
) -> IndexerStatusReport:
    async with open_runtime(backend=backend) as runtime:
        return await get_indexer_status(
            gateway=runtime.gateway,
            chain=runtime.chain,
            indexer_id=indexer_id,
        )
