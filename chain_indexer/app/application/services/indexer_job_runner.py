from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from chain_indexer.app.application.services.block_range_synchronizer import BlockRangeSynchronizer
from chain_indexer.app.domain.errors import JobFailure, NotFoundError
from chain_indexer.app.domain.indexer_settings import LAST_PROCESSED_BLOCK_KEY, IndexerSettings
from chain_indexer.app.domain.models import Indexer, IndexerJob, IndexerStatus, JobStatus
from chain_indexer.app.domain.ports.out import ChainClient, IndexerLeaseManager, PersistenceGateway

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IndexerJobRunner:
    """
    Runs one job of one indexer: pending -> running -> completed | failed.

    The whole run holds the indexer's lease, so a concurrent run of the same
    indexer raises IndexerBusyError before it creates a job row. Errors
    during the run are recorded on the job and the indexer (status=error)
    and are not retried here; the scheduler picks the indexer up again on a
    later tick.
    """

    def __init__(
        self,
        *,
        gateway: PersistenceGateway,
        chain: ChainClient,
        synchronizer: BlockRangeSynchronizer,
        leases: IndexerLeaseManager,
        default_start_block: int = 0,
        default_batch_size: int = 100,
        clock: Clock = utcnow,
    ) -> None:
        self._gateway = gateway
        self._chain = chain
        self._synchronizer = synchronizer
        self._leases = leases
        self._default_start_block = default_start_block
        self._default_batch_size = default_batch_size
        self._clock = clock

    async def run(self, indexer_id: int) -> IndexerJob:
        indexer = await self._gateway.get_indexer_by_id(indexer_id)
        if indexer is None:
            raise NotFoundError("Indexer", indexer_id)

        async with self._leases.lease(indexer.id):
            return await self._run_leased(indexer)

    async def _run_leased(self, indexer: Indexer) -> IndexerJob:
        job = await self._gateway.create_indexer_job(indexer_id=indexer.id, status=JobStatus.PENDING)
        job = await self._gateway.update_indexer_job(
            job.id,
            status=JobStatus.RUNNING,
            started_at=self._clock(),
        )
        logger.info("Job %s started for indexer %s (%s)", job.id, indexer.id, indexer.name)

        try:
            result = await self._execute(indexer.id)
        except asyncio.CancelledError:
            await self._fail(job, indexer, "cancelled")
            raise
        except Exception as exc:
            logger.exception("Job %s for indexer %s failed", job.id, indexer.id)
            return await self._fail(job, indexer, str(exc) or type(exc).__name__)

        now = self._clock()
        job = await self._gateway.update_indexer_job(
            job.id,
            status=JobStatus.COMPLETED,
            completed_at=now,
            result=result,
        )
        await self._gateway.update_indexer(indexer.id, status=IndexerStatus.ACTIVE, last_run=now)
        logger.info("Job %s for indexer %s completed: %s", job.id, indexer.id, result)
        return job

    async def _execute(self, indexer_id: int) -> dict[str, Any]:
        configs = await self._gateway.get_indexer_configs(indexer_id)
        cfg = IndexerSettings.from_config_map(
            configs,
            default_start_block=self._default_start_block,
            default_batch_size=self._default_batch_size,
        )

        head = await self._chain.get_head_block_number()
        last_processed = cfg.checkpoint

        if last_processed >= head:
            logger.info(
                "Indexer %s up to date (checkpoint=%s, head=%s)", indexer_id, last_processed, head
            )
            return {
                "blocksProcessed": 0,
                "transactions": 0,
                "events": 0,
                "chunks": 0,
                "fromBlock": last_processed + 1,
                "toBlock": head,
            }

        committed = last_processed

        async def _advance_checkpoint(block_number: int) -> None:
            nonlocal committed
            if block_number <= committed:
                return
            await self._gateway.upsert_indexer_config(
                indexer_id=indexer_id,
                key=LAST_PROCESSED_BLOCK_KEY,
                value=str(block_number),
            )
            committed = block_number

        try:
            stats = await self._synchronizer.sync_range(
                from_block=last_processed + 1,
                to_block=head,
                batch_size=cfg.batch_size,
                checkpoint=_advance_checkpoint,
                log_source=cfg.log_source,
                addresses=cfg.contract_addresses,
            )
        except Exception as exc:
            raise JobFailure(
                f"Sync of blocks [{last_processed + 1}, {head}] stopped after block {committed}: "
                f"{type(exc).__name__}: {exc}",
                last_checkpoint=committed,
            ) from exc

        return {**stats.as_result(), "fromBlock": last_processed + 1, "toBlock": head}

    async def _fail(self, job: IndexerJob, indexer: Indexer, message: str) -> IndexerJob:
        now = self._clock()
        failed = await self._gateway.update_indexer_job(
            job.id,
            status=JobStatus.FAILED,
            completed_at=now,
            error=message,
        )
        await self._gateway.update_indexer(indexer.id, status=IndexerStatus.ERROR, last_run=now)
        return failed
