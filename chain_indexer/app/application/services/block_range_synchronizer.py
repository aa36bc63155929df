from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Final, Iterator

from chain_indexer.app.application.handlers import EventHandlerRegistry
from chain_indexer.app.application.services.log_bisection import fetch_logs_bisected
from chain_indexer.app.domain.errors import TransientChainError
from chain_indexer.app.domain.indexer_settings import LogSource
from chain_indexer.app.domain.models import (
    ChainBlock,
    ChainLog,
    ChainReceipt,
    EventRecord,
    LogFilter,
)
from chain_indexer.app.domain.ports.out import ChainClient, EventDecoder, PersistenceGateway
from chain_indexer.app.utils.retries import with_retries

logger = logging.getLogger(__name__)

_DEFAULT_BATCH_SIZE: Final[int] = 100

CheckpointFn = Callable[[int], Awaitable[None]]


@dataclass(frozen=True)
class BlockRange:
    from_block: int
    to_block: int

    def validate(self) -> None:
        if self.from_block < 0 or self.to_block < 0:
            raise ValueError("Block numbers must be non-negative")
        if self.from_block > self.to_block:
            raise ValueError("from_block must be <= to_block")

    def chunks(self, size: int) -> Iterator[BlockRange]:
        if size <= 0:
            raise ValueError("batch_size must be positive")
        current = self.from_block
        while current <= self.to_block:
            end = min(current + size - 1, self.to_block)
            yield BlockRange(current, end)
            current = end + 1


@dataclass
class SyncStats:
    blocks: int = 0
    transactions: int = 0
    events: int = 0
    chunks: int = 0
    last_block: int | None = None

    def add(self, other: SyncStats) -> None:
        self.blocks += other.blocks
        self.transactions += other.transactions
        self.events += other.events
        self.chunks += other.chunks
        if other.last_block is not None:
            self.last_block = other.last_block

    def as_result(self) -> dict[str, Any]:
        return {
            "blocksProcessed": self.blocks,
            "transactions": self.transactions,
            "events": self.events,
            "chunks": self.chunks,
        }


@dataclass(frozen=True)
class _FetchedBlock:
    block: ChainBlock
    receipts: dict[str, ChainReceipt]
    # None: take logs from receipts; otherwise logs per tx hash from eth_getLogs
    logs_by_tx: dict[str, list[ChainLog]] | None = field(default=None)


class BlockRangeSynchronizer:
    """
    Synchronizes a closed block interval into the persistence gateway.

    The interval is split into chunks of `batch_size` blocks. Per chunk:
      1. raw data is fetched (block with transactions + one receipt per
         transaction, and in `range` mode one bisected eth_getLogs for the
         whole chunk), up to `concurrency` blocks at a time,
      2. blocks are written in ascending order: Block -> for each tx
         (by transaction_index) Transaction -> its Events -> handlers,
      3. the checkpoint callback is awaited with the chunk end.

    `addresses` narrows the eth_getLogs query in `range` mode only; in
    `receipts` mode every log of every transaction is stored.

    A chunk that hits TransientChainError is retried from its start; any
    other error, or exhausted retries, propagates and the checkpoint stays at
    the last completed chunk. Writes are idempotent so reprocessing a chunk is
    safe (at-least-once).
    """

    def __init__(
        self,
        *,
        chain: ChainClient,
        gateway: PersistenceGateway,
        decoder: EventDecoder,
        handlers: EventHandlerRegistry | None = None,
        concurrency: int = 1,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        self._chain = chain
        self._gateway = gateway
        self._decoder = decoder
        self._handlers = handlers or EventHandlerRegistry()
        self._concurrency = concurrency
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay

    async def sync_range(
        self,
        *,
        from_block: int,
        to_block: int,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        checkpoint: CheckpointFn | None = None,
        log_source: LogSource = LogSource.RECEIPTS,
        addresses: tuple[str, ...] = (),
    ) -> SyncStats:
        block_range = BlockRange(from_block, to_block)
        block_range.validate()
        addresses = tuple(a.lower() for a in addresses)

        logger.info(
            "Syncing blocks [%s, %s], batch_size=%s, log_source=%s",
            from_block,
            to_block,
            batch_size,
            log_source.value,
        )

        stats = SyncStats()
        for chunk in block_range.chunks(batch_size):
            chunk_stats = await with_retries(
                lambda chunk=chunk: self._sync_chunk(chunk, log_source=log_source, addresses=addresses),
                log=logger,
                what=f"chunk [{chunk.from_block}, {chunk.to_block}]",
                max_attempts=self._retry_attempts,
                delay=self._retry_delay,
            )
            stats.add(chunk_stats)

            if checkpoint is not None:
                await checkpoint(chunk.to_block)

            logger.info(
                "Chunk done: blocks=[%s, %s], txs=%s, events=%s (%s/%s blocks)",
                chunk.from_block,
                chunk.to_block,
                chunk_stats.transactions,
                chunk_stats.events,
                stats.blocks,
                to_block - from_block + 1,
            )

        return stats

    # ---------------------------------------------------------------------
    # Chunk
    # ---------------------------------------------------------------------

    async def _sync_chunk(
        self,
        chunk: BlockRange,
        *,
        log_source: LogSource,
        addresses: tuple[str, ...],
    ) -> SyncStats:
        fetched = await self._fetch_chunk(chunk, log_source=log_source, addresses=addresses)

        stats = SyncStats(chunks=1)
        for number in range(chunk.from_block, chunk.to_block + 1):
            await self._persist_block(fetched[number], stats)
            stats.blocks += 1
            stats.last_block = number
        return stats

    async def _fetch_chunk(
        self,
        chunk: BlockRange,
        *,
        log_source: LogSource,
        addresses: tuple[str, ...],
    ) -> dict[int, _FetchedBlock]:
        sem = asyncio.Semaphore(self._concurrency)

        async def _bounded(number: int) -> _FetchedBlock:
            async with sem:
                return await self._fetch_block(number)

        tasks = [
            asyncio.create_task(_bounded(n))
            for n in range(chunk.from_block, chunk.to_block + 1)
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        by_number = {fb.block.number: fb for fb in results}
        missing = [n for n in range(chunk.from_block, chunk.to_block + 1) if n not in by_number]
        if missing:
            raise TransientChainError(f"Node returned mismatched blocks, missing {missing}")

        if log_source is LogSource.RANGE:
            logs = await fetch_logs_bisected(
                chain=self._chain,
                log_filter=LogFilter(
                    from_block=chunk.from_block,
                    to_block=chunk.to_block,
                    address=addresses or None,
                ),
            )
            grouped: dict[int, dict[str, list[ChainLog]]] = defaultdict(lambda: defaultdict(list))
            for log in logs:
                grouped[log.block_number][log.transaction_hash].append(log)
            by_number = {
                n: _FetchedBlock(fb.block, fb.receipts, dict(grouped.get(n, {})))
                for n, fb in by_number.items()
            }

        return by_number

    async def _fetch_block(self, number: int) -> _FetchedBlock:
        block = await self._chain.get_block(number, full_transactions=True)
        if block is None:
            # node lagging behind its own head; never skip a block
            raise TransientChainError(f"Block {number} not available from node")

        receipts: dict[str, ChainReceipt] = {}
        for tx in block.transactions:
            receipt = await self._chain.get_transaction_receipt(tx.hash)
            if receipt is None:
                raise TransientChainError(f"Receipt for {tx.hash} (block {number}) not available")
            receipts[tx.hash] = receipt
        return _FetchedBlock(block=block, receipts=receipts)

    # ---------------------------------------------------------------------
    # Writes
    # ---------------------------------------------------------------------

    async def _persist_block(
        self,
        fetched: _FetchedBlock,
        stats: SyncStats,
    ) -> None:
        block = fetched.block
        block_record = await self._gateway.create_block(
            block_number=block.number,
            block_hash=block.hash,
            parent_hash=block.parent_hash,
            timestamp=datetime.fromtimestamp(block.timestamp, tz=timezone.utc),
        )

        for tx in sorted(block.transactions, key=lambda t: t.transaction_index):
            receipt = fetched.receipts[tx.hash]
            tx_record = await self._gateway.create_transaction(
                block_id=block_record.id,
                tx_hash=tx.hash,
                transaction_index=tx.transaction_index,
                from_address=tx.from_address,
                to_address=tx.to_address,
                value=tx.value,
                gas_price=tx.gas_price,
                gas_used=receipt.gas_used,
                status=receipt.status,
                input=tx.input,
            )
            stats.transactions += 1

            # receipts keep every log; range logs were already filtered by address
            if fetched.logs_by_tx is None:
                logs = list(receipt.logs)
            else:
                logs = fetched.logs_by_tx.get(tx.hash, [])

            for log in sorted(logs, key=lambda entry: entry.log_index):
                decoded = self._decoder.decode(log)
                await self._gateway.insert_event_or_ignore(
                    EventRecord(
                        id=EventRecord.make_id(tx.hash, log.log_index),
                        transaction_id=tx_record.id,
                        address=log.address.lower(),
                        event_name=decoded.event_name,
                        topics=tuple(log.topics),
                        data=log.data,
                        log_index=log.log_index,
                    )
                )
                stats.events += 1
                await self._handlers.dispatch(decoded)
