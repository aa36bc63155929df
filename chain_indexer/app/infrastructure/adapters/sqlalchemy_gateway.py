from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import Row, Table, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine

from chain_indexer.app.domain.errors import NotFoundError
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
from chain_indexer.app.infrastructure.db.db_base import BaseDB
from chain_indexer.app.infrastructure.db.models import (
    BlockDB,
    EventDB,
    IndexerConfigDB,
    IndexerDB,
    IndexerJobDB,
    TokenTransferDB,
    TransactionDB,
)

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes; everything is stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _int_or_none(value: Any) -> int | None:
    return None if value is None else int(value)


def _to_indexer(row: Row[Any]) -> Indexer:
    return Indexer(
        id=row.id,
        name=row.name,
        owner=row.owner,
        status=IndexerStatus(row.status),
        description=row.description,
        last_run=_aware(row.last_run),
        created_at=_aware(row.created_at),
    )


def _to_job(row: Row[Any]) -> IndexerJob:
    return IndexerJob(
        id=row.id,
        indexer_id=row.indexer_id,
        status=JobStatus(row.status),
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        result=row.result,
        error=row.error,
    )


def _to_block(row: Row[Any]) -> BlockRecord:
    return BlockRecord(
        id=row.id,
        block_number=row.block_number,
        block_hash=row.block_hash,
        parent_hash=row.parent_hash,
        timestamp=_aware(row.timestamp),
    )


def _to_transaction(row: Row[Any]) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        block_id=row.block_id,
        tx_hash=row.tx_hash,
        transaction_index=row.transaction_index,
        from_address=row.from_address,
        to_address=row.to_address,
        value=int(row.value),
        gas_price=_int_or_none(row.gas_price),
        gas_used=row.gas_used,
        status=row.status,
        input=row.input,
    )


def _to_event(row: Row[Any]) -> EventRecord:
    return EventRecord(
        id=row.id,
        transaction_id=row.transaction_id,
        address=row.address,
        event_name=row.event_name,
        topics=tuple(row.topics or ()),
        data=row.data,
        log_index=row.log_index,
    )


class SqlAlchemyPersistenceGateway(PersistenceGateway):
    """
    PersistenceGateway over an AsyncEngine.

    Every method runs in its own transaction (engine.begin()). Natural-key
    writes (blocks, transactions, events, token transfers, configs) use
    INSERT ... ON CONFLICT so a re-sync of an already indexed range is a
    no-op. Supports postgresql+asyncpg and sqlite+aiosqlite.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    def _insert(self, table: Table):
        if self._engine.dialect.name == "postgresql":
            return pg_insert(table)
        if self._engine.dialect.name == "sqlite":
            return sqlite_insert(table)
        raise ValueError(f"Unsupported SQL dialect: {self._engine.dialect.name!r}")

    async def create_schema(self) -> None:
        """Create all tables (dev / tests). Production uses alembic migrations."""
        async with self._engine.begin() as conn:
            await conn.run_sync(BaseDB.metadata.create_all)

    # Indexers ---------------------------------------------------------------

    async def get_indexer_by_id(self, indexer_id: int) -> Indexer | None:
        async with self._engine.connect() as conn:
            row = (await conn.execute(select(IndexerDB).where(IndexerDB.id == indexer_id))).first()
        return _to_indexer(row) if row is not None else None

    async def get_indexers(self, owner: str | None = None) -> list[Indexer]:
        stmt = select(IndexerDB).order_by(IndexerDB.id)
        if owner is not None:
            stmt = stmt.where(IndexerDB.owner == owner)
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_to_indexer(r) for r in rows]

    async def get_eligible_indexers(
        self,
        *,
        last_run_before: datetime,
        statuses: Iterable[IndexerStatus] = (IndexerStatus.ACTIVE,),
    ) -> list[Indexer]:
        stmt = (
            select(IndexerDB)
            .where(IndexerDB.status.in_([s.value for s in statuses]))
            .where((IndexerDB.last_run.is_(None)) | (IndexerDB.last_run < last_run_before))
            .order_by(IndexerDB.id)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_to_indexer(r) for r in rows]

    async def create_indexer(
        self,
        *,
        name: str,
        owner: str,
        description: str | None = None,
        status: IndexerStatus = IndexerStatus.INACTIVE,
    ) -> Indexer:
        stmt = (
            self._insert(IndexerDB.__table__)
            .values(
                name=name,
                owner=owner,
                description=description,
                status=status.value,
                created_at=datetime.now(timezone.utc),
            )
            .returning(*IndexerDB.__table__.c)
        )
        async with self._engine.begin() as conn:
            row = (await conn.execute(stmt)).one()
        return _to_indexer(row)

    async def update_indexer(
        self,
        indexer_id: int,
        *,
        status: IndexerStatus | None = None,
        last_run: datetime | None = None,
    ) -> Indexer:
        values: dict[str, Any] = {}
        if status is not None:
            values["status"] = status.value
        if last_run is not None:
            values["last_run"] = last_run

        async with self._engine.begin() as conn:
            if values:
                await conn.execute(update(IndexerDB).where(IndexerDB.id == indexer_id).values(**values))
            row = (await conn.execute(select(IndexerDB).where(IndexerDB.id == indexer_id))).first()
        if row is None:
            raise NotFoundError("Indexer", indexer_id)
        return _to_indexer(row)

    # Indexer config ---------------------------------------------------------

    async def get_indexer_configs(self, indexer_id: int) -> dict[str, str]:
        stmt = select(IndexerConfigDB.key, IndexerConfigDB.value).where(IndexerConfigDB.indexer_id == indexer_id)
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return {r.key: r.value for r in rows}

    async def upsert_indexer_config(self, *, indexer_id: int, key: str, value: str) -> None:
        stmt = self._insert(IndexerConfigDB.__table__).values(indexer_id=indexer_id, key=key, value=value)
        stmt = stmt.on_conflict_do_update(
            index_elements=["indexer_id", "key"],
            set_={"value": stmt.excluded.value},
        )
        async with self._engine.begin() as conn:
            await conn.execute(stmt)

    # Jobs -------------------------------------------------------------------

    async def create_indexer_job(self, *, indexer_id: int, status: JobStatus = JobStatus.PENDING) -> IndexerJob:
        stmt = (
            self._insert(IndexerJobDB.__table__)
            .values(indexer_id=indexer_id, status=status.value, created_at=datetime.now(timezone.utc))
            .returning(*IndexerJobDB.__table__.c)
        )
        async with self._engine.begin() as conn:
            row = (await conn.execute(stmt)).one()
        return _to_job(row)

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
        values = {
            k: v
            for k, v in {
                "status": status.value if status is not None else None,
                "started_at": started_at,
                "completed_at": completed_at,
                "result": result,
                "error": error,
            }.items()
            if v is not None
        }

        async with self._engine.begin() as conn:
            current = (
                await conn.execute(select(IndexerJobDB.status).where(IndexerJobDB.id == job_id).with_for_update())
            ).scalar_one_or_none()
            if current is None:
                raise NotFoundError("IndexerJob", job_id)

            current_status = JobStatus(current)
            if status is not None:
                check_job_transition(current_status, status)
            elif current_status.is_terminal:
                check_job_transition(current_status, current_status)

            if values:
                await conn.execute(update(IndexerJobDB).where(IndexerJobDB.id == job_id).values(**values))
            row = (await conn.execute(select(IndexerJobDB).where(IndexerJobDB.id == job_id))).one()
        return _to_job(row)

    async def get_indexer_jobs(self, indexer_id: int, limit: int = 10) -> list[IndexerJob]:
        stmt = (
            select(IndexerJobDB)
            .where(IndexerJobDB.indexer_id == indexer_id)
            .order_by(IndexerJobDB.created_at.desc(), IndexerJobDB.id.desc())
            .limit(limit)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_to_job(r) for r in rows]

    # Chain data -------------------------------------------------------------

    async def create_block(
        self,
        *,
        block_number: int,
        block_hash: str,
        parent_hash: str | None,
        timestamp: datetime,
    ) -> BlockRecord:
        stmt = self._insert(BlockDB.__table__).values(
            block_number=block_number,
            block_hash=block_hash,
            parent_hash=parent_hash,
            timestamp=timestamp,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["block_number"],
            set_={
                "block_hash": stmt.excluded.block_hash,
                "parent_hash": stmt.excluded.parent_hash,
                "timestamp": stmt.excluded.timestamp,
            },
        ).returning(*BlockDB.__table__.c)
        async with self._engine.begin() as conn:
            row = (await conn.execute(stmt)).one()
        return _to_block(row)

    async def get_blocks(
        self,
        *,
        block_number: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[BlockRecord]:
        stmt = select(BlockDB).order_by(BlockDB.block_number.desc()).offset(offset)
        if block_number is not None:
            stmt = stmt.where(BlockDB.block_number == block_number)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_to_block(r) for r in rows]

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
        values = {
            "block_id": block_id,
            "tx_hash": tx_hash,
            "transaction_index": transaction_index,
            "from_address": from_address,
            "to_address": to_address,
            "value": value,
            "gas_price": gas_price,
            "gas_used": gas_used,
            "status": status,
            "input": input,
        }
        stmt = self._insert(TransactionDB.__table__).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["tx_hash"],
            set_={k: getattr(stmt.excluded, k) for k in values if k != "tx_hash"},
        ).returning(*TransactionDB.__table__.c)
        async with self._engine.begin() as conn:
            row = (await conn.execute(stmt)).one()
        return _to_transaction(row)

    async def get_transactions(self, *, tx_hash: str | None = None) -> list[TransactionRecord]:
        stmt = select(TransactionDB).order_by(TransactionDB.block_id, TransactionDB.transaction_index)
        if tx_hash is not None:
            stmt = stmt.where(TransactionDB.tx_hash == tx_hash)
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_to_transaction(r) for r in rows]

    async def insert_event_or_ignore(self, event: EventRecord) -> bool:
        stmt = (
            self._insert(EventDB.__table__)
            .values(
                id=event.id,
                transaction_id=event.transaction_id,
                address=event.address,
                event_name=event.event_name,
                topics=list(event.topics),
                data=event.data,
                log_index=event.log_index,
            )
            .on_conflict_do_nothing()
        )
        async with self._engine.begin() as conn:
            res = await conn.execute(stmt)
        return res.rowcount > 0

    async def get_events(self, *, transaction_id: int | None = None) -> list[EventRecord]:
        stmt = select(EventDB).order_by(EventDB.transaction_id, EventDB.log_index)
        if transaction_id is not None:
            stmt = stmt.where(EventDB.transaction_id == transaction_id)
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_to_event(r) for r in rows]

    async def insert_token_transfer_or_ignore(self, transfer: TokenTransfer) -> bool:
        stmt = (
            self._insert(TokenTransferDB.__table__)
            .values(
                event_id=transfer.event_id,
                token_address=transfer.token_address,
                from_address=transfer.from_address,
                to_address=transfer.to_address,
                value=transfer.value,
                transaction_hash=transfer.transaction_hash,
                block_number=transfer.block_number,
            )
            .on_conflict_do_nothing(index_elements=["event_id"])
        )
        async with self._engine.begin() as conn:
            res = await conn.execute(stmt)
        return res.rowcount > 0

    # Monitoring -------------------------------------------------------------

    async def ping(self) -> None:
        async with self._engine.connect() as conn:
            await conn.execute(select(1))

    async def _count(self, model: type[BaseDB]) -> int:
        async with self._engine.connect() as conn:
            return (await conn.execute(select(func.count()).select_from(model))).scalar_one()

    async def count_blocks(self) -> int:
        return await self._count(BlockDB)

    async def count_transactions(self) -> int:
        return await self._count(TransactionDB)

    async def count_events(self) -> int:
        return await self._count(EventDB)

    async def count_token_transfers(self) -> int:
        return await self._count(TokenTransferDB)
