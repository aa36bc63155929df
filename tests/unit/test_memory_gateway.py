"""Tests for the in-memory gateway's uniqueness rules."""

import pytest

from chain_indexer.app.domain.models import EventRecord


def _event(*, event_id: str, transaction_id: int = 1, log_index: int = 0) -> EventRecord:
    return EventRecord(
        id=event_id,
        transaction_id=transaction_id,
        address="0x" + "aa" * 20,
        event_name="Unknown",
        topics=(),
        data="0x",
        log_index=log_index,
    )


class TestEventUniqueness:
    @pytest.mark.asyncio
    async def test_same_transaction_and_log_index_under_new_id_is_ignored(self, gateway):
        assert await gateway.insert_event_or_ignore(_event(event_id="0xabc-0")) is True
        assert await gateway.insert_event_or_ignore(_event(event_id="0xdef-0")) is False

        assert list(gateway.events) == ["0xabc-0"]
        assert await gateway.count_events() == 1

    @pytest.mark.asyncio
    async def test_other_log_index_is_stored(self, gateway):
        await gateway.insert_event_or_ignore(_event(event_id="0xabc-0"))

        assert await gateway.insert_event_or_ignore(_event(event_id="0xabc-1", log_index=1)) is True
        assert await gateway.count_events() == 2
