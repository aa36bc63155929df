from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable

from chain_indexer.app.domain.errors import HandlerFailure
from chain_indexer.app.domain.models import DecodedEvent, EventRecord, TokenTransfer
from chain_indexer.app.domain.ports.out import EventHandler, PersistenceGateway

logger = logging.getLogger(__name__)


class BaseEventHandler(ABC):
    """Base class for decoded-event projections."""

    @abstractmethod
    def can_handle(self, event: DecodedEvent) -> bool: ...

    @abstractmethod
    async def handle(self, event: DecodedEvent) -> None: ...


class TransferEventHandler(BaseEventHandler):
    """
    Materializes ERC-20 Transfer(address,address,uint256) events as
    TokenTransfer rows.

    ERC-721 shares the event name but indexes tokenId, so it shows up with
    four topics and a different arg layout; those are left alone.
    """

    _SIGNATURE = "Transfer(address,address,uint256)"

    def __init__(self, *, gateway: PersistenceGateway) -> None:
        self._gateway = gateway

    def can_handle(self, event: DecodedEvent) -> bool:
        return event.signature == self._SIGNATURE and len(event.topics) == 3

    async def handle(self, event: DecodedEvent) -> None:
        # arg names vary (from/to/value, src/dst/wad, ...); args follow ABI declaration order
        sender, recipient, amount = list(event.args.values())
        inserted = await self._gateway.insert_token_transfer_or_ignore(
            TokenTransfer(
                event_id=EventRecord.make_id(event.transaction_hash, event.log_index),
                token_address=event.address,
                from_address=sender,
                to_address=recipient,
                value=int(amount),
                transaction_hash=event.transaction_hash,
                block_number=event.block_number,
            )
        )
        if inserted:
            logger.debug(
                "Token transfer %s: %s -> %s (%s)",
                event.address,
                sender,
                recipient,
                amount,
            )


class EventHandlerRegistry:
    """
    Ordered set of handlers.

    dispatch() calls every handler whose can_handle() is true, in
    registration order. Handler errors are logged and skipped: projections
    are enrichments, the Event row is already persisted.
    """

    def __init__(self, handlers: Iterable[EventHandler] = ()) -> None:
        self._handlers: list[EventHandler] = list(handlers)

    def register(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    @property
    def handlers(self) -> tuple[EventHandler, ...]:
        return tuple(self._handlers)

    async def dispatch(self, event: DecodedEvent) -> int:
        handled = 0
        for handler in self._handlers:
            try:
                if await self._run(handler, event):
                    handled += 1
            except HandlerFailure:
                logger.exception("Skipping failed event handler")
        return handled

    @staticmethod
    async def _run(handler: EventHandler, event: DecodedEvent) -> bool:
        try:
            if not handler.can_handle(event):
                return False
            await handler.handle(event)
        except Exception as exc:
            raise HandlerFailure(
                f"{type(handler).__name__} failed for {event.event_name} "
                f"at {event.transaction_hash}:{event.log_index}: {exc}"
            ) from exc
        return True
