from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from chain_indexer.app.infrastructure.db.db_base import BaseDB


class IndexerDB(BaseDB):
    """
    Registered indexers.

    `status` is one of inactive / active / error; the scheduler picks up
    active rows whose last_run is NULL or older than the cooldown.
    """

    __tablename__ = "indexers"
    __table_args__ = (
        Index("ix_indexers_status_last_run", "status", "last_run"),
        Index("ix_indexers_owner", "owner"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="inactive")
    last_run: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class IndexerConfigDB(BaseDB):
    """String key/value settings per indexer (startBlock, lastProcessedBlock, ...)."""

    __tablename__ = "indexer_configs"
    __table_args__ = (UniqueConstraint("indexer_id", "key", name="uq_indexer_configs_indexer_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    indexer_id: Mapped[int] = mapped_column(
        ForeignKey("indexers.id", ondelete="CASCADE"),
        nullable=False,
    )
    key: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class IndexerJobDB(BaseDB):
    __tablename__ = "indexer_jobs"
    __table_args__ = (Index("ix_indexer_jobs_indexer_created", "indexer_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    indexer_id: Mapped[int] = mapped_column(
        ForeignKey("indexers.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
