from typing import Callable, Dict

from sqlalchemy.ext.asyncio import AsyncEngine

from chain_indexer.app.domain.ports.out import IndexerLeaseManager
from chain_indexer.app.infrastructure.locks.in_process_lease import InProcessLeaseManager
from chain_indexer.app.infrastructure.locks.postgres_advisory_lease import PostgresAdvisoryLeaseManager

LeaseManagerFactory = Callable[[AsyncEngine | None], IndexerLeaseManager]


def _make_sqlalchemy_leases(engine: AsyncEngine | None) -> IndexerLeaseManager:
    # Advisory locks only exist on postgres; other dialects (sqlite in tests)
    # fall back to a per-process lease.
    if engine is not None and engine.dialect.name == "postgresql":
        return PostgresAdvisoryLeaseManager(engine=engine)
    return InProcessLeaseManager()


_LEASE_MANAGER_REGISTRY: Dict[str, LeaseManagerFactory] = {
    "sqlalchemy": _make_sqlalchemy_leases,
    "memory": lambda engine: InProcessLeaseManager(),
}


def lease_manager_factory(
    *,
    backend: str,
    engine: AsyncEngine | None = None,
) -> IndexerLeaseManager:
    try:
        factory = _LEASE_MANAGER_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported lease backend: {backend!r}")
    return factory(engine)
