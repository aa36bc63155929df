from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from chain_indexer.app.infrastructure.db.db_base import BaseDB


class BlockDB(BaseDB):
    """
    Canonical table for indexed blocks.

    Hashes are stored as lowercase 0x-prefixed hex text.
    """

    __tablename__ = "blocks"
    __table_args__ = (
        UniqueConstraint("block_number", name="uq_blocks_block_number"),
        Index("ix_blocks_block_hash", "block_hash"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[str] = mapped_column(Text, nullable=False)
    parent_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Canonical block timestamp (UTC)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TransactionDB(BaseDB):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("tx_hash", name="uq_transactions_tx_hash"),
        Index("ix_transactions_block_id", "block_id"),
        Index("ix_transactions_from_address", "from_address"),
        Index("ix_transactions_to_address", "to_address"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    block_id: Mapped[int] = mapped_column(ForeignKey("blocks.id", ondelete="CASCADE"), nullable=False)
    tx_hash: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_index: Mapped[int] = mapped_column(Integer, nullable=False)
    from_address: Mapped[str] = mapped_column(Text, nullable=False)
    # NULL for contract creation
    to_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    value: Mapped[int] = mapped_column(Numeric(78, 0), nullable=False)
    gas_price: Mapped[int | None] = mapped_column(Numeric(78, 0), nullable=True)
    gas_used: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    input: Mapped[str] = mapped_column(Text, nullable=False)


class EventDB(BaseDB):
    """
    One row per log, decoded or not.

    Undecodable logs keep event_name = 'Unknown' with raw topics/data so
    they can be re-decoded once an ABI is registered.
    """

    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("transaction_id", "log_index", name="uq_events_transaction_log_index"),
        Index("ix_events_address_event_name", "address", "event_name"),
    )

    # "<tx_hash>-<log_index>"
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    address: Mapped[str] = mapped_column(Text, nullable=False)
    event_name: Mapped[str] = mapped_column(Text, nullable=False)
    topics: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    data: Mapped[str] = mapped_column(Text, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)


class TokenTransferDB(BaseDB):
    """ERC-20 Transfer projection written by TransferEventHandler."""

    __tablename__ = "token_transfers"
    __table_args__ = (
        Index("ix_token_transfers_token_block", "token_address", "block_number"),
        Index("ix_token_transfers_from", "from_address"),
        Index("ix_token_transfers_to", "to_address"),
    )

    event_id: Mapped[str] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), primary_key=True)
    token_address: Mapped[str] = mapped_column(Text, nullable=False)
    from_address: Mapped[str] = mapped_column(Text, nullable=False)
    to_address: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[int] = mapped_column(Numeric(78, 0), nullable=False)
    transaction_hash: Mapped[str] = mapped_column(Text, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
