"""Integration tests for SqlAlchemyPersistenceGateway on sqlite+aiosqlite."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from chain_indexer.app.config import Settings
from chain_indexer.app.domain.errors import InvalidJobTransition, NotFoundError
from chain_indexer.app.domain.indexer_settings import LAST_PROCESSED_BLOCK_KEY
from chain_indexer.app.domain.models import EventRecord, IndexerStatus, JobStatus, TokenTransfer
from chain_indexer.app.infrastructure.adapters.sqlalchemy_gateway import SqlAlchemyPersistenceGateway
from chain_indexer.app.infrastructure.db.engine import create_app_async_engine
from chain_indexer.app.infrastructure.factories.indexer_runtime_factory import build_indexer_runtime

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_app_async_engine(url=f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}")
    await SqlAlchemyPersistenceGateway(engine).create_schema()
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_gateway(engine) -> SqlAlchemyPersistenceGateway:
    return SqlAlchemyPersistenceGateway(engine)


async def _block_and_tx(gw: SqlAlchemyPersistenceGateway, number: int = 1):
    block = await gw.create_block(block_number=number, block_hash=f"0x{number:064x}", parent_hash=None, timestamp=T0)
    tx = await gw.create_transaction(
        block_id=block.id,
        tx_hash=f"0x{number:064x}",
        transaction_index=0,
        from_address="0x" + "11" * 20,
        to_address=None,
        value=5,
        gas_price=7,
        gas_used=21000,
        status=1,
        input="0x",
    )
    return block, tx


class TestIndexers:
    @pytest.mark.asyncio
    async def test_create_get_update(self, sql_gateway):
        created = await sql_gateway.create_indexer(name="weth", owner="ops", description="WETH transfers")

        fetched = await sql_gateway.get_indexer_by_id(created.id)
        assert fetched == created
        assert fetched.status is IndexerStatus.INACTIVE
        assert fetched.created_at.tzinfo is not None

        updated = await sql_gateway.update_indexer(created.id, status=IndexerStatus.ACTIVE, last_run=T0)
        assert updated.status is IndexerStatus.ACTIVE
        assert updated.last_run == T0

        assert [i.id for i in await sql_gateway.get_indexers(owner="ops")] == [created.id]
        assert await sql_gateway.get_indexers(owner="nobody") == []

    @pytest.mark.asyncio
    async def test_update_missing_indexer(self, sql_gateway):
        with pytest.raises(NotFoundError):
            await sql_gateway.update_indexer(404, status=IndexerStatus.ACTIVE)

    @pytest.mark.asyncio
    async def test_eligible_indexers(self, sql_gateway):
        never = await sql_gateway.create_indexer(name="never", owner="ops", status=IndexerStatus.ACTIVE)
        recent = await sql_gateway.create_indexer(name="recent", owner="ops", status=IndexerStatus.ACTIVE)
        stale = await sql_gateway.create_indexer(name="stale", owner="ops", status=IndexerStatus.ACTIVE)
        await sql_gateway.create_indexer(name="off", owner="ops")
        await sql_gateway.update_indexer(recent.id, last_run=T0 - timedelta(minutes=30))
        await sql_gateway.update_indexer(stale.id, last_run=T0 - timedelta(minutes=90))

        eligible = await sql_gateway.get_eligible_indexers(last_run_before=T0 - timedelta(hours=1))

        assert [i.id for i in eligible] == [never.id, stale.id]

    @pytest.mark.asyncio
    async def test_config_upsert(self, sql_gateway):
        indexer = await sql_gateway.create_indexer(name="x", owner="ops")

        await sql_gateway.upsert_indexer_config(indexer_id=indexer.id, key=LAST_PROCESSED_BLOCK_KEY, value="10")
        await sql_gateway.upsert_indexer_config(indexer_id=indexer.id, key=LAST_PROCESSED_BLOCK_KEY, value="20")

        assert await sql_gateway.get_indexer_configs(indexer.id) == {LAST_PROCESSED_BLOCK_KEY: "20"}


class TestJobs:
    @pytest.mark.asyncio
    async def test_lifecycle_and_terminal_immutability(self, sql_gateway):
        indexer = await sql_gateway.create_indexer(name="x", owner="ops")
        job = await sql_gateway.create_indexer_job(indexer_id=indexer.id)
        assert job.status is JobStatus.PENDING

        job = await sql_gateway.update_indexer_job(job.id, status=JobStatus.RUNNING, started_at=T0)
        job = await sql_gateway.update_indexer_job(
            job.id, status=JobStatus.COMPLETED, completed_at=T0, result={"blocksProcessed": 3}
        )
        assert job.result == {"blocksProcessed": 3}
        assert job.started_at == T0

        with pytest.raises(InvalidJobTransition):
            await sql_gateway.update_indexer_job(job.id, status=JobStatus.FAILED, error="late")
        assert (await sql_gateway.get_indexer_jobs(indexer.id))[0].status is JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_jobs_most_recent_first(self, sql_gateway):
        indexer = await sql_gateway.create_indexer(name="x", owner="ops")
        ids = [(await sql_gateway.create_indexer_job(indexer_id=indexer.id)).id for _ in range(4)]

        jobs = await sql_gateway.get_indexer_jobs(indexer.id, limit=3)

        assert [j.id for j in jobs] == list(reversed(ids))[:3]

    @pytest.mark.asyncio
    async def test_missing_job(self, sql_gateway):
        with pytest.raises(NotFoundError):
            await sql_gateway.update_indexer_job(1, status=JobStatus.RUNNING)


class TestChainData:
    @pytest.mark.asyncio
    async def test_blocks_and_transactions_are_idempotent(self, sql_gateway):
        block, tx = await _block_and_tx(sql_gateway, 1)
        again_block, again_tx = await _block_and_tx(sql_gateway, 1)

        assert again_block.id == block.id
        assert again_tx.id == tx.id
        assert len(await sql_gateway.get_blocks()) == 1
        assert (await sql_gateway.get_transactions(tx_hash=tx.tx_hash))[0].value == 5

    @pytest.mark.asyncio
    async def test_blocks_highest_first(self, sql_gateway):
        for n in (3, 1, 2):
            await _block_and_tx(sql_gateway, n)

        blocks = await sql_gateway.get_blocks(limit=2)

        assert [b.block_number for b in blocks] == [3, 2]
        assert [b.block_number for b in await sql_gateway.get_blocks(block_number=1)] == [1]

    @pytest.mark.asyncio
    async def test_event_and_transfer_insert_or_ignore(self, sql_gateway):
        _, tx = await _block_and_tx(sql_gateway, 1)
        event = EventRecord(
            id=EventRecord.make_id(tx.tx_hash, 0),
            transaction_id=tx.id,
            address="0x" + "aa" * 20,
            event_name="Unknown",
            topics=("0x" + "cd" * 32,),
            data="0xdeadbeef",
            log_index=0,
        )
        transfer = TokenTransfer(
            event_id=event.id,
            token_address=event.address,
            from_address="0x" + "11" * 20,
            to_address="0x" + "22" * 20,
            value=1000,
            transaction_hash=tx.tx_hash,
            block_number=1,
        )

        assert await sql_gateway.insert_event_or_ignore(event) is True
        assert await sql_gateway.insert_event_or_ignore(event) is False
        assert await sql_gateway.insert_token_transfer_or_ignore(transfer) is True
        assert await sql_gateway.insert_token_transfer_or_ignore(transfer) is False

        (stored,) = await sql_gateway.get_events(transaction_id=tx.id)
        assert stored == event
        assert await sql_gateway.count_token_transfers() == 1


class TestRunnerOnSqlAlchemy:
    @pytest.mark.asyncio
    async def test_run_and_resync(self, engine, make_chain, chain_helpers):
        cfg = Settings(_env_file=None, ERC20_TOKENS=chain_helpers.TOKEN_ADDRESS, BATCH_SIZE=2)
        chain = make_chain(head=5, txs_per_block=2)
        runtime = build_indexer_runtime(backend="sqlalchemy", engine=engine, chain=chain, cfg=cfg)
        indexer = await runtime.gateway.create_indexer(name="x", owner="ops", status=IndexerStatus.ACTIVE)

        job = await runtime.runner.run(indexer.id)

        assert job.status is JobStatus.COMPLETED
        assert job.result["blocksProcessed"] == 5
        assert (await runtime.gateway.get_indexer_configs(indexer.id))[LAST_PROCESSED_BLOCK_KEY] == "5"
        assert len(await runtime.gateway.get_events()) == 20
        assert await runtime.gateway.count_token_transfers() == 10
        await runtime.gateway.ping()
        assert (
            await runtime.gateway.count_blocks(),
            await runtime.gateway.count_transactions(),
            await runtime.gateway.count_events(),
        ) == (5, 10, 20)

        # re-ingesting the same range changes nothing
        await runtime.synchronizer.sync_range(from_block=1, to_block=5, batch_size=5)
        assert len(await runtime.gateway.get_blocks()) == 5
        assert len(await runtime.gateway.get_transactions()) == 10
        assert len(await runtime.gateway.get_events()) == 20
        assert await runtime.gateway.count_token_transfers() == 10
