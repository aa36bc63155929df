from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

from chain_indexer.app.application.services.indexer_job_runner import Clock, IndexerJobRunner, utcnow
from chain_indexer.app.domain.errors import IndexerBusyError
from chain_indexer.app.domain.models import Indexer, IndexerJob, IndexerStatus
from chain_indexer.app.domain.ports.out import PersistenceGateway

logger = logging.getLogger(__name__)

_DEFAULT_INTERVAL_S = 60.0
_DEFAULT_COOLDOWN = timedelta(hours=1)


@dataclass(frozen=True)
class TickOutcome:
    indexer_id: int
    job: IndexerJob | None = None
    error: str | None = None


class IndexerScheduler:
    """
    Periodic driver: every `interval` seconds, run each eligible indexer.

    Eligible = status in `statuses` (active by default) and last_run is NULL
    or older than `cooldown`. Indexers run concurrently, at most
    `concurrency` at a time. A failure of one indexer is logged and never
    stops the tick.
    """

    def __init__(
        self,
        *,
        gateway: PersistenceGateway,
        runner: IndexerJobRunner,
        cooldown: timedelta = _DEFAULT_COOLDOWN,
        concurrency: int = 1,
        retry_errored: bool = False,
        clock: Clock = utcnow,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        self._gateway = gateway
        self._runner = runner
        self._cooldown = cooldown
        self._concurrency = concurrency
        self._statuses: tuple[IndexerStatus, ...] = (
            (IndexerStatus.ACTIVE, IndexerStatus.ERROR) if retry_errored else (IndexerStatus.ACTIVE,)
        )
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def eligible_indexers(self) -> list[Indexer]:
        return await self._gateway.get_eligible_indexers(
            last_run_before=self._clock() - self._cooldown,
            statuses=self._statuses,
        )

    async def tick(self) -> list[TickOutcome]:
        indexers = await self.eligible_indexers()
        if not indexers:
            logger.debug("Scheduler tick: no eligible indexers")
            return []

        logger.info("Scheduler tick: %s eligible indexer(s)", len(indexers))
        sem = asyncio.Semaphore(self._concurrency)

        async def _run_one(indexer: Indexer) -> TickOutcome:
            async with sem:
                try:
                    logger.info("Starting indexer %s (%s)", indexer.name, indexer.id)
                    job = await self._runner.run(indexer.id)
                    return TickOutcome(indexer_id=indexer.id, job=job, error=job.error)
                except IndexerBusyError as exc:
                    logger.info("Skipping indexer %s: %s", indexer.id, exc)
                    return TickOutcome(indexer_id=indexer.id, error=str(exc))
                except Exception as exc:
                    logger.exception("Error running indexer %s", indexer.id)
                    return TickOutcome(indexer_id=indexer.id, error=str(exc))

        return list(await asyncio.gather(*(_run_one(i) for i in indexers)))

    def start(self, interval: float = _DEFAULT_INTERVAL_S) -> None:
        """Arm the periodic loop (first tick runs immediately). Re-arming replaces the old loop."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        if self._task is not None:
            self._task.cancel()
            self._task = None

        logger.info("Starting indexer scheduler every %ss", interval)
        self._task = asyncio.get_running_loop().create_task(self._loop(interval))

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Indexer scheduler stopped")

    async def wait(self) -> None:
        """Block until the loop ends (stop() or an unhandled error)."""
        if self._task is not None:
            await self._task

    async def _loop(self, interval: float) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in indexer scheduler tick")
            await asyncio.sleep(interval)
