from __future__ import annotations


class IndexerError(Exception):
    """Base class for every error raised by the indexing core."""


class NotFoundError(IndexerError):
    """Referenced Indexer / Job / Block / Transaction is absent."""

    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f"{entity} not found: {key!r}")
        self.entity = entity
        self.key = key


class TransientChainError(IndexerError):
    """RPC timeout, connection reset, rate limit, or a block the node does not serve yet."""


class RangeTooLargeError(IndexerError):
    """The provider refused an eth_getLogs query because the result set is capped."""

    def __init__(self, from_block: int, to_block: int, message: str = "") -> None:
        super().__init__(
            f"eth_getLogs range [{from_block}, {to_block}] too large" + (f": {message}" if message else "")
        )
        self.from_block = from_block
        self.to_block = to_block


class PersistenceConflict(IndexerError):
    """Unique-key violation. Insert-or-ignore operations never let this escape."""


class JobFailure(IndexerError):
    """Unrecovered error inside a chunk; terminates the job as failed."""

    def __init__(self, message: str, *, last_checkpoint: int | None = None) -> None:
        super().__init__(message)
        self.last_checkpoint = last_checkpoint


class HandlerFailure(IndexerError):
    """An event handler raised. Logged and skipped, never escalated."""


class IndexerBusyError(IndexerError):
    """Another run of the same indexer is already in flight."""

    def __init__(self, indexer_id: int) -> None:
        super().__init__(f"Indexer {indexer_id} already has a run in progress")
        self.indexer_id = indexer_id


class InvalidIndexerConfig(IndexerError):
    """Per-indexer key/value configuration failed validation."""


class InvalidJobTransition(IndexerError):
    """Attempted to move an IndexerJob along a forbidden edge (e.g. out of a terminal state)."""
