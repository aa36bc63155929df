from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from chain_indexer.app.domain.errors import InvalidJobTransition

UNKNOWN_EVENT_NAME = "Unknown"


class IndexerStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    ERROR = "error"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_ALLOWED_JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def check_job_transition(current: JobStatus, new: JobStatus) -> None:
    """
    Raise InvalidJobTransition unless current -> new is an edge of
    pending -> running -> {completed | failed}.

    pending -> failed is allowed so a run cancelled before it starts can
    still be closed out.
    """
    if new not in _ALLOWED_JOB_TRANSITIONS[current]:
        raise InvalidJobTransition(f"IndexerJob cannot move from {current.value!r} to {new.value!r}")


# -----------------------------------------------------------------------------
# Persisted entities
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Indexer:
    id: int
    name: str
    owner: str
    status: IndexerStatus = IndexerStatus.INACTIVE
    description: str | None = None
    last_run: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class IndexerJob:
    id: int
    indexer_id: int
    status: JobStatus
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None


@dataclass(frozen=True)
class BlockRecord:
    id: int
    block_number: int
    block_hash: str
    parent_hash: str | None
    timestamp: datetime


@dataclass(frozen=True)
class TransactionRecord:
    id: int
    block_id: int
    tx_hash: str
    transaction_index: int
    from_address: str
    to_address: str | None
    value: int
    gas_price: int | None
    gas_used: int | None
    status: int | None
    input: str


@dataclass(frozen=True)
class EventRecord:
    """One persisted log. `id` is "<tx_hash>-<log_index>"."""

    id: str
    transaction_id: int
    address: str
    event_name: str
    topics: tuple[str, ...]
    data: str
    log_index: int

    @staticmethod
    def make_id(tx_hash: str, log_index: int) -> str:
        return f"{tx_hash}-{log_index}"


@dataclass(frozen=True)
class TokenTransfer:
    """ERC-20 Transfer projection, keyed by the originating event id."""

    event_id: str
    token_address: str
    from_address: str
    to_address: str
    value: int
    transaction_hash: str
    block_number: int


# -----------------------------------------------------------------------------
# Chain-side values (as returned by the chain client)
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainLog:
    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    transaction_index: int
    log_index: int


@dataclass(frozen=True)
class ChainTransaction:
    hash: str
    block_number: int
    transaction_index: int
    from_address: str
    to_address: str | None
    value: int
    gas_price: int | None
    input: str


@dataclass(frozen=True)
class ChainReceipt:
    transaction_hash: str
    status: int | None
    gas_used: int | None
    logs: tuple[ChainLog, ...] = ()


@dataclass(frozen=True)
class ChainBlock:
    number: int
    hash: str
    parent_hash: str | None
    timestamp: int
    transactions: tuple[ChainTransaction, ...] = ()


@dataclass(frozen=True)
class LogFilter:
    """
    eth_getLogs filter. Either a block range or a single block_hash.
    """

    from_block: int | None = None
    to_block: int | None = None
    address: tuple[str, ...] | None = None
    topics: tuple[str | None, ...] | None = None
    block_hash: str | None = None

    def __post_init__(self) -> None:
        if self.block_hash is None and (self.from_block is None or self.to_block is None):
            raise ValueError("LogFilter needs from_block/to_block or block_hash")
        if self.block_hash is not None and (self.from_block is not None or self.to_block is not None):
            raise ValueError("LogFilter block_hash excludes from_block/to_block")
        if self.from_block is not None and self.to_block is not None and self.from_block > self.to_block:
            raise ValueError("from_block must be <= to_block")


@dataclass(frozen=True)
class DecodedEvent:
    """A log mapped to a named event. event_name == "Unknown" when undecodable."""

    address: str
    event_name: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    log_index: int
    signature: str | None = None
    args: dict[str, Any] = field(default_factory=dict)

    @property
    def is_unknown(self) -> bool:
        return self.event_name == UNKNOWN_EVENT_NAME
