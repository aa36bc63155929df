from __future__ import annotations

import logging

from chain_indexer.app.config import settings
from chain_indexer.app.interface.tasks.runtime import open_runtime

logger = logging.getLogger(__name__)


async def scheduler_task(
    *,
    interval: float | None = None,
    backend: str | None = None,
) -> None:
    """
    Task: run the indexer scheduler until cancelled (Ctrl+C).

    Every tick runs each active indexer whose last run is older than
    SCHEDULER_COOLDOWN.
    """
    interval = interval or settings.scheduler_interval
    async with open_runtime(backend=backend) as runtime:
        runtime.scheduler.start(interval)
        try:
            await runtime.scheduler.wait()
        finally:
            await runtime.scheduler.stop()
