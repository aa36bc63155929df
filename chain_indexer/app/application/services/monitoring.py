from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from chain_indexer.app.domain.models import IndexerStatus
from chain_indexer.app.domain.ports.out import PersistenceGateway

logger = logging.getLogger(__name__)

_DEFAULT_ACTIVITY_WINDOW = timedelta(minutes=10)


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthCheck:
    name: str
    passed: bool
    message: str | None = None


@dataclass(frozen=True)
class HealthReport:
    status: HealthState
    checks: list[HealthCheck] = field(default_factory=list)


@dataclass(frozen=True)
class SystemMetrics:
    total_indexers: int
    active_indexers: int
    error_indexers: int
    total_blocks: int
    total_transactions: int
    total_events: int


async def get_system_metrics(*, gateway: PersistenceGateway) -> SystemMetrics:
    indexers = await gateway.get_indexers()
    return SystemMetrics(
        total_indexers=len(indexers),
        active_indexers=sum(1 for i in indexers if i.status is IndexerStatus.ACTIVE),
        error_indexers=sum(1 for i in indexers if i.status is IndexerStatus.ERROR),
        total_blocks=await gateway.count_blocks(),
        total_transactions=await gateway.count_transactions(),
        total_events=await gateway.count_events(),
    )


async def get_health_status(
    *,
    gateway: PersistenceGateway,
    activity_window: timedelta = _DEFAULT_ACTIVITY_WINDOW,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> HealthReport:
    """
    Roll three checks up into one state.

    database:        the store answers a round-trip; failing makes it unhealthy.
    indexers:        at least one indexer is active; failing degrades.
    recent_activity: some indexer finished a run within `activity_window`;
                     failing degrades.

    A store error while reading indexers also makes it unhealthy.
    """
    checks: list[HealthCheck] = []
    status = HealthState.HEALTHY

    try:
        await gateway.ping()
        checks.append(HealthCheck("database", True))
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        checks.append(HealthCheck("database", False, "Database connection failed"))
        status = HealthState.UNHEALTHY

    try:
        indexers = await gateway.get_indexers()
    except Exception as exc:
        logger.warning("Could not read indexers for health check: %s", exc)
        checks.append(HealthCheck("indexers", False, "Failed to check indexer status"))
        checks.append(HealthCheck("recent_activity", False, "Failed to check recent activity"))
        return HealthReport(status=HealthState.UNHEALTHY, checks=checks)

    if any(i.status is IndexerStatus.ACTIVE for i in indexers):
        checks.append(HealthCheck("indexers", True))
    else:
        checks.append(HealthCheck("indexers", False, "No active indexers"))
        if status is HealthState.HEALTHY:
            status = HealthState.DEGRADED

    since = clock() - activity_window
    if any(i.last_run is not None and i.last_run >= since for i in indexers):
        checks.append(HealthCheck("recent_activity", True))
    else:
        checks.append(HealthCheck("recent_activity", False, "No recent processing activity"))
        if status is HealthState.HEALTHY:
            status = HealthState.DEGRADED

    return HealthReport(status=status, checks=checks)
