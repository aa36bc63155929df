"""Tests for backend factories and runtime wiring."""

import pytest

from chain_indexer.app.config import Settings
from chain_indexer.app.infrastructure.adapters.memory_gateway import InMemoryPersistenceGateway
from chain_indexer.app.infrastructure.factories.indexer_runtime_factory import build_indexer_runtime
from chain_indexer.app.infrastructure.factories.persistence_gateway_factory import persistence_gateway_factory


class TestPersistenceGatewayFactory:
    def test_memory_backend(self):
        assert isinstance(persistence_gateway_factory(backend="memory"), InMemoryPersistenceGateway)

    def test_sqlalchemy_needs_engine(self):
        with pytest.raises(ValueError):
            persistence_gateway_factory(backend="sqlalchemy")

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            persistence_gateway_factory(backend="mongo")


class TestBuildIndexerRuntime:
    @pytest.mark.asyncio
    async def test_memory_runtime_runs_an_indexer(self, make_chain, chain_helpers):
        cfg = Settings(_env_file=None, ERC20_TOKENS=chain_helpers.TOKEN_ADDRESS, BATCH_SIZE=3)
        runtime = build_indexer_runtime(backend="memory", chain=make_chain(head=4), cfg=cfg)
        indexer = await runtime.gateway.create_indexer(name="x", owner="ops")

        job = await runtime.runner.run(indexer.id)

        assert job.result["blocksProcessed"] == 4
        assert job.result["chunks"] == 2
        assert chain_helpers.TOKEN_ADDRESS in runtime.decoder.registered_addresses
        assert len(runtime.gateway.token_transfers) == 4
