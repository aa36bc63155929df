from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from chain_indexer.app.config import settings


def create_app_async_engine(*, echo: bool = False, url: str | None = None) -> AsyncEngine:
    """
    Factory for the AsyncEngine used by the CLI, runner and scheduler.

    `url` overrides DATABASE_URL (tests point it at sqlite+aiosqlite).
    """
    url = url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,  # postgresql+asyncpg://...
        echo=echo,
        pool_pre_ping=True,
    )
