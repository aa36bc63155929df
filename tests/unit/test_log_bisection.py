"""
Tests for bisected eth_getLogs.

Covers:
- ranges the provider accepts are fetched in one call
- oversized ranges split at mid = (a + b) // 2 until each half fits
- a single block that is still too large re-raises
- results come back ordered by (block_number, log_index)
"""

import pytest

from chain_indexer.app.application.services.log_bisection import fetch_logs_bisected
from chain_indexer.app.domain.errors import RangeTooLargeError
from chain_indexer.app.domain.models import LogFilter


class TestFetchLogsBisected:
    @pytest.mark.asyncio
    async def test_small_range_is_single_call(self, make_chain):
        chain = make_chain(head=5)

        logs = await fetch_logs_bisected(chain=chain, log_filter=LogFilter(from_block=0, to_block=5))

        assert chain.log_calls == [(0, 5)]
        assert len(logs) == 12

    @pytest.mark.asyncio
    async def test_bisects_until_halves_fit(self, make_chain):
        """Provider caps spans at 2 blocks: a 10-block query still returns every log exactly once."""
        chain = make_chain(head=109, first=100)
        chain.max_log_span = 2

        logs = await fetch_logs_bisected(chain=chain, log_filter=LogFilter(from_block=100, to_block=109))

        assert len(logs) == len(chain.all_logs)
        assert len({(log.transaction_hash, log.log_index) for log in logs}) == len(logs)
        # first split is [100, 104] / [105, 109]
        assert chain.log_calls[0] == (100, 109)
        assert chain.log_calls[1] == (100, 104)
        fitting = sorted(c for c in chain.log_calls if c[1] - c[0] + 1 <= 2)
        covered = [n for a, b in fitting for n in range(a, b + 1)]
        assert covered == list(range(100, 110))

    @pytest.mark.asyncio
    async def test_results_are_ordered(self, make_chain):
        chain = make_chain(head=3, txs_per_block=2)

        logs = await fetch_logs_bisected(chain=chain, log_filter=LogFilter(from_block=0, to_block=3))

        keys = [(log.block_number, log.log_index) for log in logs]
        assert keys == sorted(keys)

    @pytest.mark.asyncio
    async def test_single_block_too_large_reraises(self, make_chain):
        chain = make_chain(head=4)
        chain.max_log_span = 0

        with pytest.raises(RangeTooLargeError):
            await fetch_logs_bisected(chain=chain, log_filter=LogFilter(from_block=0, to_block=4))

    @pytest.mark.asyncio
    async def test_address_filter_is_kept_across_splits(self, make_chain, chain_helpers):
        chain = make_chain(head=7)
        chain.max_log_span = 3

        logs = await fetch_logs_bisected(
            chain=chain,
            log_filter=LogFilter(from_block=0, to_block=7, address=(chain_helpers.TOKEN_ADDRESS,)),
        )

        assert len(logs) == 8
        assert {log.address for log in logs} == {chain_helpers.TOKEN_ADDRESS}
