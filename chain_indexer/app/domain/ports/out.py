from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Iterable, Protocol

from chain_indexer.app.domain.models import (
    BlockRecord,
    ChainBlock,
    ChainLog,
    ChainReceipt,
    ChainTransaction,
    DecodedEvent,
    EventRecord,
    Indexer,
    IndexerJob,
    IndexerStatus,
    JobStatus,
    LogFilter,
    TokenTransfer,
    TransactionRecord,
)


class ChainClient(Protocol):
    """
    Port for reading an EVM chain over JSON-RPC.

    Implementations must bound every call with a timeout and raise
    TransientChainError for retryable failures. get_logs raises
    RangeTooLargeError when the provider caps the result size; callers
    are expected to bisect (see application.services.log_bisection).
    Lookups that find nothing return None.
    """

    async def get_head_block_number(self) -> int: ...

    async def get_block(self, number: int, *, full_transactions: bool = True) -> ChainBlock | None: ...

    async def get_transaction(self, tx_hash: str) -> ChainTransaction | None: ...

    async def get_transaction_receipt(self, tx_hash: str) -> ChainReceipt | None: ...

    async def get_logs(self, log_filter: LogFilter) -> list[ChainLog]: ...


class EventDecoder(Protocol):
    def register_abi(self, address: str, abi: Any) -> None:
        """Attach a contract interface to an address (case-insensitive)."""
        ...

    def decode(self, log: ChainLog) -> DecodedEvent:
        """
        Decode a raw log.

        Never raises for undecodable input; returns an "Unknown" event that
        carries the raw address/topics/data instead.
        """
        ...


class EventHandler(Protocol):
    """
    Best-effort projection applied to decoded events.

    handle() may raise; the registry logs and skips the failure.
    """

    def can_handle(self, event: DecodedEvent) -> bool: ...

    async def handle(self, event: DecodedEvent) -> None: ...


class PersistenceGateway(Protocol):
    """
    Narrow CRUD contract the indexing core writes through.

    Idempotency rules:
      - create_block is update-or-skip on block_number,
      - create_transaction is update-or-skip on tx_hash,
      - insert_event_or_ignore / insert_token_transfer_or_ignore swallow
        unique-key conflicts and report whether a row was inserted,
      - upsert_indexer_config keeps one value per (indexer_id, key).
    """

    # Indexers ---------------------------------------------------------------
    async def get_indexer_by_id(self, indexer_id: int) -> Indexer | None: ...

    async def get_indexers(self, owner: str | None = None) -> list[Indexer]: ...

    async def get_eligible_indexers(
        self,
        *,
        last_run_before: datetime,
        statuses: Iterable[IndexerStatus] = (IndexerStatus.ACTIVE,),
    ) -> list[Indexer]:
        """Indexers in `statuses` whose last_run is NULL or older than last_run_before."""
        ...

    async def create_indexer(
        self,
        *,
        name: str,
        owner: str,
        description: str | None = None,
        status: IndexerStatus = IndexerStatus.INACTIVE,
    ) -> Indexer: ...

    async def update_indexer(
        self,
        indexer_id: int,
        *,
        status: IndexerStatus | None = None,
        last_run: datetime | None = None,
    ) -> Indexer: ...

    # Indexer config ---------------------------------------------------------
    async def get_indexer_configs(self, indexer_id: int) -> dict[str, str]: ...

    async def upsert_indexer_config(self, *, indexer_id: int, key: str, value: str) -> None: ...

    # Jobs -------------------------------------------------------------------
    async def create_indexer_job(self, *, indexer_id: int, status: JobStatus = JobStatus.PENDING) -> IndexerJob: ...

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
        """Raises InvalidJobTransition when the job is terminal or the edge is not allowed."""
        ...

    async def get_indexer_jobs(self, indexer_id: int, limit: int = 10) -> list[IndexerJob]:
        """Most recent first."""
        ...

    # Chain data -------------------------------------------------------------
    async def create_block(
        self,
        *,
        block_number: int,
        block_hash: str,
        parent_hash: str | None,
        timestamp: datetime,
    ) -> BlockRecord: ...

    async def get_blocks(
        self,
        *,
        block_number: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[BlockRecord]:
        """Highest block_number first."""
        ...

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
    ) -> TransactionRecord: ...

    async def get_transactions(self, *, tx_hash: str | None = None) -> list[TransactionRecord]: ...

    async def insert_event_or_ignore(self, event: EventRecord) -> bool: ...

    async def get_events(self, *, transaction_id: int | None = None) -> list[EventRecord]: ...

    async def insert_token_transfer_or_ignore(self, transfer: TokenTransfer) -> bool: ...

    # Monitoring -------------------------------------------------------------
    async def ping(self) -> None:
        """Round-trip to the store; raises when it is unreachable."""
        ...

    async def count_blocks(self) -> int: ...

    async def count_transactions(self) -> int: ...

    async def count_events(self) -> int: ...


class IndexerLeaseManager(Protocol):
    """
    Guarantees at most one in-flight run per indexer.

    lease() raises IndexerBusyError immediately (it does not wait) when the
    indexer is already leased.
    """

    def lease(self, indexer_id: int) -> AbstractAsyncContextManager[None]: ...


