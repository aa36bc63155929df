"""
Tests for IndexerScheduler.

Covers:
- eligibility by status and cooldown
- per-indexer failures do not stop a tick
- re-arming the loop replaces the previous one
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from chain_indexer.app.application.services.scheduler import IndexerScheduler
from chain_indexer.app.domain.errors import IndexerBusyError
from chain_indexer.app.domain.models import IndexerJob, IndexerStatus, JobStatus

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class StubRunner:
    def __init__(self, *, failing: set[int] = frozenset(), busy: set[int] = frozenset()) -> None:
        self.failing = failing
        self.busy = busy
        self.runs: list[int] = []

    async def run(self, indexer_id: int) -> IndexerJob:
        self.runs.append(indexer_id)
        if indexer_id in self.busy:
            raise IndexerBusyError(indexer_id)
        if indexer_id in self.failing:
            raise RuntimeError("boom")
        return IndexerJob(id=len(self.runs), indexer_id=indexer_id, status=JobStatus.COMPLETED, result={})


async def _seed(gateway) -> dict[str, int]:
    ids = {}
    for name, status, last_run in [
        ("never-run", IndexerStatus.ACTIVE, None),
        ("recent", IndexerStatus.ACTIVE, NOW - timedelta(minutes=30)),
        ("stale", IndexerStatus.ACTIVE, NOW - timedelta(minutes=90)),
        ("inactive", IndexerStatus.INACTIVE, None),
        ("errored", IndexerStatus.ERROR, NOW - timedelta(hours=2)),
    ]:
        indexer = await gateway.create_indexer(name=name, owner="ops", status=status)
        if last_run is not None:
            await gateway.update_indexer(indexer.id, last_run=last_run)
        ids[name] = indexer.id
    return ids


def _scheduler(gateway, runner, **kwargs) -> IndexerScheduler:
    return IndexerScheduler(
        gateway=gateway,
        runner=runner,
        cooldown=timedelta(hours=1),
        clock=lambda: NOW,
        **kwargs,
    )


class TestEligibility:
    @pytest.mark.asyncio
    async def test_active_and_outside_cooldown_only(self, gateway):
        ids = await _seed(gateway)

        eligible = await _scheduler(gateway, StubRunner()).eligible_indexers()

        assert {i.id for i in eligible} == {ids["never-run"], ids["stale"]}

    @pytest.mark.asyncio
    async def test_retry_errored_includes_error_status(self, gateway):
        ids = await _seed(gateway)

        eligible = await _scheduler(gateway, StubRunner(), retry_errored=True).eligible_indexers()

        assert {i.id for i in eligible} == {ids["never-run"], ids["stale"], ids["errored"]}


class TestTick:
    @pytest.mark.asyncio
    async def test_runs_every_eligible_indexer(self, gateway):
        ids = await _seed(gateway)
        runner = StubRunner()

        outcomes = await _scheduler(gateway, runner, concurrency=2).tick()

        assert sorted(runner.runs) == sorted([ids["never-run"], ids["stale"]])
        assert all(o.error is None for o in outcomes)

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, gateway):
        ids = await _seed(gateway)
        runner = StubRunner(failing={ids["never-run"]}, busy={ids["stale"]})

        outcomes = await _scheduler(gateway, runner).tick()

        by_id = {o.indexer_id: o for o in outcomes}
        assert by_id[ids["never-run"]].error == "boom"
        assert "already has a run in progress" in by_id[ids["stale"]].error
        assert len(runner.runs) == 2

    @pytest.mark.asyncio
    async def test_empty_tick(self, gateway):
        assert await _scheduler(gateway, StubRunner()).tick() == []

    def test_rejects_non_positive_concurrency(self, gateway):
        with pytest.raises(ValueError):
            _scheduler(gateway, StubRunner(), concurrency=0)


class TestLoop:
    @pytest.mark.asyncio
    async def test_restart_replaces_previous_loop(self, gateway):
        ids = await _seed(gateway)
        runner = StubRunner()
        scheduler = _scheduler(gateway, runner)

        scheduler.start(interval=100)
        await asyncio.sleep(0.01)
        scheduler.start(interval=100)
        await asyncio.sleep(0.01)

        assert scheduler.is_running
        # one immediate tick per start, no leftover timer from the first one
        assert runner.runs.count(ids["never-run"]) == 2
        others = [t for t in asyncio.all_tasks() if t is not asyncio.current_task() and not t.done()]
        assert len(others) == 1

        await scheduler.stop()

        assert not scheduler.is_running
        assert [t for t in asyncio.all_tasks() if t is not asyncio.current_task() and not t.done()] == []

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, gateway):
        scheduler = _scheduler(gateway, StubRunner())

        await scheduler.stop()

        assert not scheduler.is_running

    def test_rejects_non_positive_interval(self, gateway):
        with pytest.raises(ValueError):
            _scheduler(gateway, StubRunner()).start(interval=0)
