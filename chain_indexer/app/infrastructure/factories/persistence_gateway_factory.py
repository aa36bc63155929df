from typing import Callable, Dict

from sqlalchemy.ext.asyncio import AsyncEngine

from chain_indexer.app.domain.ports.out import PersistenceGateway
from chain_indexer.app.infrastructure.adapters.memory_gateway import InMemoryPersistenceGateway
from chain_indexer.app.infrastructure.adapters.sqlalchemy_gateway import SqlAlchemyPersistenceGateway

PersistenceGatewayFactory = Callable[[AsyncEngine | None], PersistenceGateway]


def _make_sqlalchemy_gateway(engine: AsyncEngine | None) -> PersistenceGateway:
    if engine is None:
        raise ValueError("The sqlalchemy persistence backend needs an AsyncEngine")
    return SqlAlchemyPersistenceGateway(engine)


_PERSISTENCE_GATEWAY_REGISTRY: Dict[str, PersistenceGatewayFactory] = {
    "sqlalchemy": _make_sqlalchemy_gateway,
    # in-memory backend: dry runs and tests, nothing survives the process
    "memory": lambda engine: InMemoryPersistenceGateway(),
}


def persistence_gateway_factory(
    *,
    backend: str,
    engine: AsyncEngine | None = None,
) -> PersistenceGateway:
    try:
        factory = _PERSISTENCE_GATEWAY_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported persistence backend: {backend!r}")
    return factory(engine)
