from __future__ import annotations

import logging
from dataclasses import replace

from chain_indexer.app.domain.errors import RangeTooLargeError
from chain_indexer.app.domain.models import ChainLog, LogFilter
from chain_indexer.app.domain.ports.out import ChainClient

logger = logging.getLogger(__name__)


async def fetch_logs_bisected(
    *,
    chain: ChainClient,
    log_filter: LogFilter,
) -> list[ChainLog]:
    """
    eth_getLogs over [from_block, to_block], halving the range whenever the
    provider answers with RangeTooLargeError.

    [a, b] splits into [a, mid] and [mid + 1, b] with mid = (a + b) // 2;
    each half is retried recursively. A single block that is still too large
    re-raises. The result is sorted by (block_number, log_index).
    """
    if log_filter.block_hash is not None:
        return await chain.get_logs(log_filter)

    logs = await _fetch(chain, log_filter)
    return sorted(logs, key=lambda log: (log.block_number, log.log_index))


async def _fetch(chain: ChainClient, log_filter: LogFilter) -> list[ChainLog]:
    a = log_filter.from_block
    b = log_filter.to_block
    assert a is not None and b is not None

    try:
        return await chain.get_logs(log_filter)
    except RangeTooLargeError:
        if a >= b:
            raise
        mid = (a + b) // 2
        logger.debug("eth_getLogs [%s, %s] too large, bisecting at %s", a, b, mid)
        left = await _fetch(chain, replace(log_filter, from_block=a, to_block=mid))
        right = await _fetch(chain, replace(log_filter, from_block=mid + 1, to_block=b))
        return left + right
