"""
Tests for system metrics and the health rollup.

Covers:
- indexer and stored-row counters
- healthy / degraded / unhealthy states
"""

from datetime import datetime, timedelta, timezone

import pytest

from chain_indexer.app.application.services.block_range_synchronizer import BlockRangeSynchronizer
from chain_indexer.app.application.services.monitoring import (
    HealthState,
    get_health_status,
    get_system_metrics,
)
from chain_indexer.app.config import Settings
from chain_indexer.app.domain.models import IndexerStatus
from chain_indexer.app.infrastructure.adapters.memory_gateway import InMemoryPersistenceGateway
from chain_indexer.app.infrastructure.factories.indexer_runtime_factory import build_event_decoder

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class UnreachableGateway(InMemoryPersistenceGateway):
    async def ping(self) -> None:
        raise ConnectionError("connection refused")

    async def get_indexers(self, owner=None):
        raise ConnectionError("connection refused")


def _checks(report) -> dict[str, bool]:
    return {c.name: c.passed for c in report.checks}


class TestSystemMetrics:
    @pytest.mark.asyncio
    async def test_counts_indexers_and_stored_rows(self, gateway, make_chain, chain_helpers):
        await gateway.create_indexer(name="a", owner="ops", status=IndexerStatus.ACTIVE)
        await gateway.create_indexer(name="b", owner="ops", status=IndexerStatus.ERROR)
        await gateway.create_indexer(name="c", owner="ops")
        synchronizer = BlockRangeSynchronizer(
            chain=make_chain(head=2, txs_per_block=2),
            gateway=gateway,
            decoder=build_event_decoder(Settings(ERC20_TOKENS=chain_helpers.TOKEN_ADDRESS)),
            retry_delay=0,
        )
        await synchronizer.sync_range(from_block=0, to_block=2)

        metrics = await get_system_metrics(gateway=gateway)

        assert (metrics.total_indexers, metrics.active_indexers, metrics.error_indexers) == (3, 1, 1)
        assert (metrics.total_blocks, metrics.total_transactions, metrics.total_events) == (3, 6, 12)


class TestHealthStatus:
    @pytest.mark.asyncio
    async def test_healthy_with_active_recent_indexer(self, gateway):
        indexer = await gateway.create_indexer(name="a", owner="ops", status=IndexerStatus.ACTIVE)
        await gateway.update_indexer(indexer.id, last_run=NOW - timedelta(minutes=2))

        report = await get_health_status(gateway=gateway, clock=lambda: NOW)

        assert report.status is HealthState.HEALTHY
        assert _checks(report) == {"database": True, "indexers": True, "recent_activity": True}

    @pytest.mark.asyncio
    async def test_stale_activity_degrades(self, gateway):
        indexer = await gateway.create_indexer(name="a", owner="ops", status=IndexerStatus.ACTIVE)
        await gateway.update_indexer(indexer.id, last_run=NOW - timedelta(hours=1))

        report = await get_health_status(gateway=gateway, clock=lambda: NOW)

        assert report.status is HealthState.DEGRADED
        assert _checks(report)["recent_activity"] is False

    @pytest.mark.asyncio
    async def test_no_active_indexers_degrades(self, gateway):
        await gateway.create_indexer(name="off", owner="ops")

        report = await get_health_status(gateway=gateway, clock=lambda: NOW)

        assert report.status is HealthState.DEGRADED
        assert _checks(report)["indexers"] is False

    @pytest.mark.asyncio
    async def test_unreachable_store_is_unhealthy(self):
        report = await get_health_status(gateway=UnreachableGateway(), clock=lambda: NOW)

        assert report.status is HealthState.UNHEALTHY
        assert _checks(report) == {"database": False, "indexers": False, "recent_activity": False}
