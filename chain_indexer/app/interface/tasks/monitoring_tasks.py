from __future__ import annotations

import logging

from chain_indexer.app.application.services.monitoring import (
    HealthReport,
    HealthState,
    SystemMetrics,
    get_health_status,
    get_system_metrics,
)
from chain_indexer.app.interface.tasks.runtime import open_runtime

logger = logging.getLogger(__name__)


async def health_task(
    *,
    backend: str | None = None,
) -> tuple[HealthReport, SystemMetrics | None]:
    """
    Task: health checks plus system-wide counters.

    Metrics are skipped when the store is unhealthy.
    """
    async with open_runtime(backend=backend) as runtime:
        report = await get_health_status(gateway=runtime.gateway)
        metrics = None
        if report.status is not HealthState.UNHEALTHY:
            metrics = await get_system_metrics(gateway=runtime.gateway)

    logger.info("Health: %s", report.status.value)
    return report, metrics
