from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Final, Mapping, TypeVar

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import BlockNotFound, TransactionNotFound, Web3Exception

from chain_indexer.app.domain.errors import RangeTooLargeError, TransientChainError
from chain_indexer.app.domain.models import (
    ChainBlock,
    ChainLog,
    ChainReceipt,
    ChainTransaction,
    LogFilter,
)
from chain_indexer.app.domain.ports.out import ChainClient
from chain_indexer.app.utils.retries import with_retries

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_TIMEOUT_S: Final[float] = 30.0

# Substrings providers use when eth_getLogs hits a result-count / span cap.
_RANGE_TOO_LARGE_MARKERS: Final[tuple[str, ...]] = (
    "query returned more than",
    "too many results",
    "response size exceeded",
    "limit exceeded",
    "block range",
    "range is too large",
    "-32005",
)


def _hex(value: Any) -> str:
    """Normalize HexBytes / bytes / str into a lowercase 0x-prefixed string."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    s = str(value).lower()
    return s if s.startswith("0x") else "0x" + s


def _address(value: Any) -> str | None:
    if value is None:
        return None
    return _hex(value)


def _int_or_none(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


def _is_range_too_large(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return any(marker in msg for marker in _RANGE_TOO_LARGE_MARKERS)


class Web3ChainClient(ChainClient):
    """
    ChainClient implementation on top of AsyncWeb3.

    Every RPC call:
      - is bounded by `timeout` seconds (asyncio.wait_for),
      - is retried with exponential backoff on transport / provider errors,
      - surfaces as TransientChainError once retries are exhausted.

    get_logs never retries a capped query; it raises RangeTooLargeError so
    the caller can bisect the range.
    """

    def __init__(
        self,
        *,
        w3: AsyncWeb3,
        timeout: float = _DEFAULT_TIMEOUT_S,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if retry_attempts <= 0:
            raise ValueError("retry_attempts must be positive")
        self._w3 = w3
        self._timeout = timeout
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay

    @classmethod
    def from_url(
        cls,
        rpc_url: str,
        *,
        timeout: float = _DEFAULT_TIMEOUT_S,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> Web3ChainClient:
        w3 = AsyncWeb3(
            AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": timeout},
            )
        )
        return cls(w3=w3, timeout=timeout, retry_attempts=retry_attempts, retry_delay=retry_delay)

    # ---------------------------------------------------------------------
    # ChainClient
    # ---------------------------------------------------------------------

    async def get_head_block_number(self) -> int:
        async def _call() -> int:
            return int(await self._w3.eth.block_number)

        return await self._call("eth_blockNumber", _call)

    async def get_block(self, number: int, *, full_transactions: bool = True) -> ChainBlock | None:
        async def _call() -> Mapping[str, Any] | None:
            try:
                return await self._w3.eth.get_block(number, full_transactions=full_transactions)
            except BlockNotFound:
                return None

        raw = await self._call(f"eth_getBlockByNumber({number})", _call)
        if raw is None:
            return None
        return self._to_block(raw, full_transactions=full_transactions)

    async def get_transaction(self, tx_hash: str) -> ChainTransaction | None:
        async def _call() -> Mapping[str, Any] | None:
            try:
                return await self._w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return None

        raw = await self._call(f"eth_getTransactionByHash({tx_hash})", _call)
        return None if raw is None else self._to_transaction(raw)

    async def get_transaction_receipt(self, tx_hash: str) -> ChainReceipt | None:
        async def _call() -> Mapping[str, Any] | None:
            try:
                return await self._w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        raw = await self._call(f"eth_getTransactionReceipt({tx_hash})", _call)
        return None if raw is None else self._to_receipt(raw)

    async def get_logs(self, log_filter: LogFilter) -> list[ChainLog]:
        params: dict[str, Any] = {}
        if log_filter.block_hash is not None:
            params["blockHash"] = log_filter.block_hash
        else:
            params["fromBlock"] = log_filter.from_block
            params["toBlock"] = log_filter.to_block
        if log_filter.address:
            params["address"] = [
                self._w3.to_checksum_address(a) for a in log_filter.address
            ]
        if log_filter.topics:
            params["topics"] = list(log_filter.topics)

        async def _call() -> list[Mapping[str, Any]]:
            try:
                return list(await self._w3.eth.get_logs(params))
            except (Web3Exception, ValueError) as exc:
                if _is_range_too_large(exc) and log_filter.from_block is not None:
                    raise RangeTooLargeError(
                        log_filter.from_block,
                        log_filter.to_block if log_filter.to_block is not None else log_filter.from_block,
                        str(exc),
                    ) from exc
                raise

        raw_logs = await self._call(
            f"eth_getLogs([{log_filter.from_block}, {log_filter.to_block}])", _call
        )
        return [self._to_log(raw) for raw in raw_logs]

    # ---------------------------------------------------------------------
    # Call wrapper: timeout + retry + error mapping
    # ---------------------------------------------------------------------

    async def _call(self, what: str, fn: Callable[[], Awaitable[T]]) -> T:
        async def _attempt() -> T:
            try:
                return await asyncio.wait_for(fn(), timeout=self._timeout)
            except RangeTooLargeError:
                raise
            except (asyncio.TimeoutError, aiohttp.ClientError, ConnectionError, OSError) as exc:
                raise TransientChainError(f"{what}: {type(exc).__name__}: {exc}") from exc
            except (Web3Exception, ValueError) as exc:
                # provider-side JSON-RPC error (rate limit, header not found, ...)
                raise TransientChainError(f"{what}: {exc}") from exc

        return await with_retries(
            _attempt,
            log=logger,
            what=what,
            max_attempts=self._retry_attempts,
            delay=self._retry_delay,
        )

    # ---------------------------------------------------------------------
    # Response normalization
    # ---------------------------------------------------------------------

    def _to_block(self, raw: Mapping[str, Any], *, full_transactions: bool) -> ChainBlock:
        txs: tuple[ChainTransaction, ...] = ()
        if full_transactions:
            txs = tuple(
                self._to_transaction(tx)
                for tx in raw.get("transactions", [])
                if isinstance(tx, Mapping)
            )
        parent = raw.get("parentHash")
        return ChainBlock(
            number=int(raw["number"]),
            hash=_hex(raw["hash"]),
            parent_hash=_hex(parent) if parent is not None else None,
            timestamp=int(raw["timestamp"]),
            transactions=txs,
        )

    def _to_transaction(self, raw: Mapping[str, Any]) -> ChainTransaction:
        return ChainTransaction(
            hash=_hex(raw["hash"]),
            block_number=int(raw["blockNumber"]),
            transaction_index=int(raw.get("transactionIndex") or 0),
            from_address=_hex(raw["from"]),
            to_address=_address(raw.get("to")),
            value=int(raw.get("value") or 0),
            gas_price=_int_or_none(raw.get("gasPrice")),
            input=_hex(raw.get("input") or b""),
        )

    def _to_receipt(self, raw: Mapping[str, Any]) -> ChainReceipt:
        return ChainReceipt(
            transaction_hash=_hex(raw["transactionHash"]),
            status=_int_or_none(raw.get("status")),
            gas_used=_int_or_none(raw.get("gasUsed")),
            logs=tuple(self._to_log(log) for log in raw.get("logs", [])),
        )

    def _to_log(self, raw: Mapping[str, Any]) -> ChainLog:
        return ChainLog(
            address=_hex(raw["address"]),
            topics=tuple(_hex(t) for t in raw.get("topics", [])),
            data=_hex(raw.get("data") or b""),
            block_number=int(raw["blockNumber"]),
            transaction_hash=_hex(raw["transactionHash"]),
            transaction_index=int(raw.get("transactionIndex") or 0),
            log_index=int(raw["logIndex"]),
        )
