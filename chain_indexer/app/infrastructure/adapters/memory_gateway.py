from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable

from chain_indexer.app.domain.errors import NotFoundError, PersistenceConflict
from chain_indexer.app.domain.models import (
    BlockRecord,
    EventRecord,
    Indexer,
    IndexerJob,
    IndexerStatus,
    JobStatus,
    TokenTransfer,
    TransactionRecord,
    check_job_transition,
)
from chain_indexer.app.domain.ports.out import PersistenceGateway


class InMemoryPersistenceGateway(PersistenceGateway):
    """
    Dict-backed PersistenceGateway.

    Follows the same idempotency rules as the SQL adapter; used by tests and
    `PERSISTENCE_BACKEND=memory` dry runs. Not shared across processes.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.indexers: dict[int, Indexer] = {}
        self.configs: dict[int, dict[str, str]] = {}
        self.jobs: dict[int, IndexerJob] = {}
        self.blocks: dict[int, BlockRecord] = {}
        self.transactions: dict[str, TransactionRecord] = {}
        self.events: dict[str, EventRecord] = {}
        self._event_keys: set[tuple[int, int]] = set()
        self.token_transfers: dict[str, TokenTransfer] = {}

    def _next_id(self) -> int:
        return next(self._ids)

    # Indexers ---------------------------------------------------------------

    async def get_indexer_by_id(self, indexer_id: int) -> Indexer | None:
        return self.indexers.get(indexer_id)

    async def get_indexers(self, owner: str | None = None) -> list[Indexer]:
        return [i for i in self.indexers.values() if owner is None or i.owner == owner]

    async def get_eligible_indexers(
        self,
        *,
        last_run_before: datetime,
        statuses: Iterable[IndexerStatus] = (IndexerStatus.ACTIVE,),
    ) -> list[Indexer]:
        wanted = set(statuses)
        return [
            i
            for i in self.indexers.values()
            if i.status in wanted and (i.last_run is None or i.last_run < last_run_before)
        ]

    async def create_indexer(
        self,
        *,
        name: str,
        owner: str,
        description: str | None = None,
        status: IndexerStatus = IndexerStatus.INACTIVE,
    ) -> Indexer:
        indexer = Indexer(
            id=self._next_id(),
            name=name,
            owner=owner,
            description=description,
            status=status,
            created_at=datetime.now(timezone.utc),
        )
        self.indexers[indexer.id] = indexer
        return indexer

    async def update_indexer(
        self,
        indexer_id: int,
        *,
        status: IndexerStatus | None = None,
        last_run: datetime | None = None,
    ) -> Indexer:
        indexer = self.indexers.get(indexer_id)
        if indexer is None:
            raise NotFoundError("Indexer", indexer_id)
        patch: dict[str, Any] = {}
        if status is not None:
            patch["status"] = status
        if last_run is not None:
            patch["last_run"] = last_run
        indexer = replace(indexer, **patch)
        self.indexers[indexer_id] = indexer
        return indexer

    # Indexer config ---------------------------------------------------------

    async def get_indexer_configs(self, indexer_id: int) -> dict[str, str]:
        return dict(self.configs.get(indexer_id, {}))

    async def upsert_indexer_config(self, *, indexer_id: int, key: str, value: str) -> None:
        self.configs.setdefault(indexer_id, {})[key] = value

    # Jobs -------------------------------------------------------------------

    async def create_indexer_job(self, *, indexer_id: int, status: JobStatus = JobStatus.PENDING) -> IndexerJob:
        job = IndexerJob(
            id=self._next_id(),
            indexer_id=indexer_id,
            status=status,
            created_at=datetime.now(timezone.utc),
        )
        self.jobs[job.id] = job
        return job

    async def update_indexer_job(
        self,
        job_id: int,
        *,
        status: JobStatus | None = None,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> IndexerJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise NotFoundError("IndexerJob", job_id)
        if status is not None:
            check_job_transition(job.status, status)
        elif job.status.is_terminal:
            check_job_transition(job.status, job.status)

        patch: dict[str, Any] = {
            k: v
            for k, v in {
                "status": status,
                "started_at": started_at,
                "completed_at": completed_at,
                "result": result,
                "error": error,
            }.items()
            if v is not None
        }
        job = replace(job, **patch)
        self.jobs[job_id] = job
        return job

    async def get_indexer_jobs(self, indexer_id: int, limit: int = 10) -> list[IndexerJob]:
        jobs = [j for j in self.jobs.values() if j.indexer_id == indexer_id]
        jobs.sort(key=lambda j: j.id, reverse=True)
        return jobs[:limit]

    # Chain data -------------------------------------------------------------

    async def create_block(
        self,
        *,
        block_number: int,
        block_hash: str,
        parent_hash: str | None,
        timestamp: datetime,
    ) -> BlockRecord:
        existing = self.blocks.get(block_number)
        if existing is not None:
            updated = replace(existing, block_hash=block_hash, parent_hash=parent_hash, timestamp=timestamp)
            self.blocks[block_number] = updated
            return updated
        record = BlockRecord(
            id=self._next_id(),
            block_number=block_number,
            block_hash=block_hash,
            parent_hash=parent_hash,
            timestamp=timestamp,
        )
        self.blocks[block_number] = record
        return record

    async def get_blocks(
        self,
        *,
        block_number: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[BlockRecord]:
        blocks = sorted(self.blocks.values(), key=lambda b: b.block_number, reverse=True)
        if block_number is not None:
            blocks = [b for b in blocks if b.block_number == block_number]
        blocks = blocks[offset:]
        return blocks if limit is None else blocks[:limit]

    async def create_transaction(
        self,
        *,
        block_id: int,
        tx_hash: str,
        transaction_index: int,
        from_address: str,
        to_address: str | None,
        value: int,
        gas_price: int | None,
        gas_used: int | None,
        status: int | None,
        input: str,
    ) -> TransactionRecord:
        fields = dict(
            block_id=block_id,
            tx_hash=tx_hash,
            transaction_index=transaction_index,
            from_address=from_address,
            to_address=to_address,
            value=value,
            gas_price=gas_price,
            gas_used=gas_used,
            status=status,
            input=input,
        )
        existing = self.transactions.get(tx_hash)
        record = (
            replace(existing, **fields)
            if existing is not None
            else TransactionRecord(id=self._next_id(), **fields)
        )
        self.transactions[tx_hash] = record
        return record

    async def get_transactions(self, *, tx_hash: str | None = None) -> list[TransactionRecord]:
        if tx_hash is not None:
            tx = self.transactions.get(tx_hash)
            return [tx] if tx is not None else []
        return list(self.transactions.values())

    def _check_event_keys(self, event: EventRecord) -> None:
        if event.id in self.events or (event.transaction_id, event.log_index) in self._event_keys:
            raise PersistenceConflict(f"Event {event.id} already stored")

    async def insert_event_or_ignore(self, event: EventRecord) -> bool:
        try:
            self._check_event_keys(event)
        except PersistenceConflict:
            return False
        self.events[event.id] = event
        self._event_keys.add((event.transaction_id, event.log_index))
        return True

    async def get_events(self, *, transaction_id: int | None = None) -> list[EventRecord]:
        events = [e for e in self.events.values() if transaction_id is None or e.transaction_id == transaction_id]
        return sorted(events, key=lambda e: (e.transaction_id, e.log_index))

    async def insert_token_transfer_or_ignore(self, transfer: TokenTransfer) -> bool:
        if transfer.event_id in self.token_transfers:
            return False
        self.token_transfers[transfer.event_id] = transfer
        return True

    # Monitoring -------------------------------------------------------------

    async def ping(self) -> None:
        return None

    async def count_blocks(self) -> int:
        return len(self.blocks)

    async def count_transactions(self) -> int:
        return len(self.transactions)

    async def count_events(self) -> int:
        return len(self.events)

    async def count_token_transfers(self) -> int:
        return len(self.token_transfers)
