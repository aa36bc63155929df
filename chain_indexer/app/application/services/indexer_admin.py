from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from chain_indexer.app.domain.errors import InvalidIndexerConfig, NotFoundError, TransientChainError
from chain_indexer.app.domain.indexer_settings import (
    BATCH_SIZE_KEY,
    CONTRACT_ADDRESSES_KEY,
    LAST_PROCESSED_BLOCK_KEY,
    LOG_SOURCE_KEY,
    START_BLOCK_KEY,
    IndexerSettings,
    LogSource,
)
from chain_indexer.app.domain.models import Indexer, IndexerJob, IndexerStatus, JobStatus
from chain_indexer.app.domain.ports.out import ChainClient, PersistenceGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexerStatusReport:
    indexer: Indexer
    jobs: list[IndexerJob]
    configs: dict[str, str]
    checkpoint: int | None
    head_block: int | None

    @property
    def lag(self) -> int | None:
        """Blocks between the chain head and the checkpoint."""
        if self.checkpoint is None or self.head_block is None:
            return None
        return max(self.head_block - self.checkpoint, 0)

    @property
    def error_rate(self) -> float:
        """Percentage of failed jobs among the reported ones; 0 with no jobs."""
        if not self.jobs:
            return 0.0
        failed = sum(1 for job in self.jobs if job.status is JobStatus.FAILED)
        return failed / len(self.jobs) * 100


async def create_indexer(
    *,
    gateway: PersistenceGateway,
    name: str,
    owner: str,
    start_block: int,
    description: str | None = None,
    batch_size: int | None = None,
    log_source: LogSource | None = None,
    contract_addresses: Sequence[str] = (),
) -> Indexer:
    """
    Register an inactive indexer and seed its config rows.

    Settings are validated before anything is written.
    """
    if not name.strip():
        raise ValueError("name must not be empty")
    if start_block < 0:
        raise ValueError("start_block must be non-negative")
    if batch_size is not None and batch_size <= 0:
        raise ValueError("batch_size must be positive when provided")
    extra: dict[str, str] = {}
    if log_source is not None:
        extra[LOG_SOURCE_KEY] = log_source.value
    if contract_addresses:
        extra[CONTRACT_ADDRESSES_KEY] = ",".join(contract_addresses)
    try:
        validated = IndexerSettings.from_config_map(
            extra, default_start_block=start_block, default_batch_size=batch_size or 1
        )
    except InvalidIndexerConfig as exc:
        raise ValueError(str(exc)) from exc
    if validated.contract_addresses:
        extra[CONTRACT_ADDRESSES_KEY] = ",".join(validated.contract_addresses)

    indexer = await gateway.create_indexer(
        name=name.strip(),
        owner=owner,
        description=description,
        status=IndexerStatus.INACTIVE,
    )
    await gateway.upsert_indexer_config(indexer_id=indexer.id, key=START_BLOCK_KEY, value=str(start_block))
    if batch_size is not None:
        await gateway.upsert_indexer_config(indexer_id=indexer.id, key=BATCH_SIZE_KEY, value=str(batch_size))
    for key, value in extra.items():
        await gateway.upsert_indexer_config(indexer_id=indexer.id, key=key, value=value)

    logger.info("Created indexer %s (%s) from block %s", indexer.id, indexer.name, start_block)
    return indexer


async def set_indexer_status(
    *,
    gateway: PersistenceGateway,
    indexer_id: int,
    status: IndexerStatus,
) -> Indexer:
    if await gateway.get_indexer_by_id(indexer_id) is None:
        raise NotFoundError("Indexer", indexer_id)
    return await gateway.update_indexer(indexer_id, status=status)


async def get_indexer_status(
    *,
    gateway: PersistenceGateway,
    indexer_id: int,
    chain: ChainClient | None = None,
    job_limit: int = 5,
) -> IndexerStatusReport:
    """
    Indexer row, its latest jobs and configs, plus the chain head when a
    chain client is given. An unreachable node leaves head_block empty.
    """
    indexer = await gateway.get_indexer_by_id(indexer_id)
    if indexer is None:
        raise NotFoundError("Indexer", indexer_id)

    jobs = await gateway.get_indexer_jobs(indexer_id, job_limit)
    configs = await gateway.get_indexer_configs(indexer_id)

    raw_checkpoint = configs.get(LAST_PROCESSED_BLOCK_KEY) or configs.get(START_BLOCK_KEY)
    checkpoint = int(raw_checkpoint) if raw_checkpoint and raw_checkpoint.isdigit() else None

    head_block = None
    if chain is not None:
        try:
            head_block = await chain.get_head_block_number()
        except TransientChainError as exc:
            logger.warning("Could not read chain head for status of indexer %s: %s", indexer_id, exc)

    return IndexerStatusReport(
        indexer=indexer,
        jobs=jobs,
        configs=configs,
        checkpoint=checkpoint,
        head_block=head_block,
    )


async def activate_indexer(*, gateway: PersistenceGateway, indexer_id: int) -> Indexer:
    return await set_indexer_status(gateway=gateway, indexer_id=indexer_id, status=IndexerStatus.ACTIVE)


async def deactivate_indexer(*, gateway: PersistenceGateway, indexer_id: int) -> Indexer:
    return await set_indexer_status(gateway=gateway, indexer_id=indexer_id, status=IndexerStatus.INACTIVE)
