"""Pytest configuration and shared fixtures for all tests."""

import os

# Settings are instantiated at import time; keep tests off real services
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RPC_URL", "http://localhost:8545")
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from typing import Callable

import pytest
from eth_abi import encode
from eth_utils import keccak

from chain_indexer.app.domain.errors import RangeTooLargeError, TransientChainError
from chain_indexer.app.domain.models import (
    ChainBlock,
    ChainLog,
    ChainReceipt,
    ChainTransaction,
    LogFilter,
)
from chain_indexer.app.infrastructure.adapters.memory_gateway import InMemoryPersistenceGateway

TOKEN_ADDRESS = "0x" + "aa" * 20
OTHER_CONTRACT = "0x" + "bb" * 20
ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20

TRANSFER_TOPIC0 = "0x" + keccak(text="Transfer(address,address,uint256)").hex()


def _topic_address(address: str) -> str:
    return "0x" + "00" * 12 + address[2:]


def tx_hash(block_number: int, index: int) -> str:
    return "0x" + f"{block_number:032x}{index:032x}"


def transfer_log(
    *,
    block_number: int,
    tx_index: int,
    log_index: int,
    address: str = TOKEN_ADDRESS,
    sender: str = ALICE,
    recipient: str = BOB,
    amount: int = 1000,
) -> ChainLog:
    return ChainLog(
        address=address,
        topics=(TRANSFER_TOPIC0, _topic_address(sender), _topic_address(recipient)),
        data="0x" + encode(["uint256"], [amount]).hex(),
        block_number=block_number,
        transaction_hash=tx_hash(block_number, tx_index),
        transaction_index=tx_index,
        log_index=log_index,
    )


def opaque_log(*, block_number: int, tx_index: int, log_index: int, address: str = OTHER_CONTRACT) -> ChainLog:
    return ChainLog(
        address=address,
        topics=("0x" + "cd" * 32,),
        data="0xdeadbeef",
        block_number=block_number,
        transaction_hash=tx_hash(block_number, tx_index),
        transaction_index=tx_index,
        log_index=log_index,
    )


class FakeChainClient:
    """
    Scripted ChainClient.

    Blocks [first, last] each carry `txs_per_block` transactions; every
    transaction emits one Transfer log from TOKEN_ADDRESS and one opaque log
    from OTHER_CONTRACT.
    """

    def __init__(self, *, head: int, first: int = 0, txs_per_block: int = 1) -> None:
        self.head = head
        self.blocks: dict[int, ChainBlock] = {}
        self.receipts: dict[str, ChainReceipt] = {}
        # block number -> number of transient failures still to raise
        self.flaky_blocks: dict[int, int] = {}
        self.broken_blocks: set[int] = set()
        self.max_log_span: int | None = None
        self.block_calls: list[int] = []
        self.log_calls: list[tuple[int, int]] = []

        for number in range(first, head + 1):
            self.add_block(number, txs_per_block=txs_per_block)

    def add_block(self, number: int, *, txs_per_block: int = 1) -> None:
        txs = []
        log_index = 0
        for i in range(txs_per_block):
            h = tx_hash(number, i)
            logs = (
                transfer_log(block_number=number, tx_index=i, log_index=log_index),
                opaque_log(block_number=number, tx_index=i, log_index=log_index + 1),
            )
            log_index += 2
            txs.append(
                ChainTransaction(
                    hash=h,
                    block_number=number,
                    transaction_index=i,
                    from_address=ALICE,
                    to_address=TOKEN_ADDRESS,
                    value=0,
                    gas_price=10,
                    input="0x",
                )
            )
            self.receipts[h] = ChainReceipt(transaction_hash=h, status=1, gas_used=21000, logs=logs)
        self.blocks[number] = ChainBlock(
            number=number,
            hash="0x" + f"{number:064x}",
            parent_hash="0x" + f"{max(number - 1, 0):064x}",
            timestamp=1_700_000_000 + number * 12,
            transactions=tuple(txs),
        )

    @property
    def all_logs(self) -> list[ChainLog]:
        return [log for receipt in self.receipts.values() for log in receipt.logs]

    async def get_head_block_number(self) -> int:
        return self.head

    async def get_block(self, number: int, *, full_transactions: bool = True) -> ChainBlock | None:
        self.block_calls.append(number)
        if number in self.broken_blocks:
            raise TransientChainError(f"block {number} unavailable")
        remaining = self.flaky_blocks.get(number, 0)
        if remaining:
            self.flaky_blocks[number] = remaining - 1
            raise TransientChainError(f"block {number} flaky")
        return self.blocks.get(number)

    async def get_transaction(self, tx_hash: str) -> ChainTransaction | None:
        for block in self.blocks.values():
            for tx in block.transactions:
                if tx.hash == tx_hash:
                    return tx
        return None

    async def get_transaction_receipt(self, tx_hash: str) -> ChainReceipt | None:
        return self.receipts.get(tx_hash)

    async def get_logs(self, log_filter: LogFilter) -> list[ChainLog]:
        a, b = log_filter.from_block, log_filter.to_block
        self.log_calls.append((a, b))
        if self.max_log_span is not None and b - a + 1 > self.max_log_span:
            raise RangeTooLargeError(a, b, "query returned more than 10000 results")
        wanted = {x.lower() for x in log_filter.address} if log_filter.address else None
        logs = [
            log
            for log in self.all_logs
            if a <= log.block_number <= b and (wanted is None or log.address in wanted)
        ]
        # providers do not promise ordering
        return list(reversed(logs))


@pytest.fixture
def gateway() -> InMemoryPersistenceGateway:
    return InMemoryPersistenceGateway()


@pytest.fixture
def make_chain() -> Callable[..., FakeChainClient]:
    return FakeChainClient


@pytest.fixture
def chain_helpers():
    """Builders for logs and hashes used by the fake chain."""

    class _Helpers:
        TOKEN_ADDRESS = TOKEN_ADDRESS
        OTHER_CONTRACT = OTHER_CONTRACT
        ALICE = ALICE
        BOB = BOB
        TRANSFER_TOPIC0 = TRANSFER_TOPIC0

    _Helpers.tx_hash = staticmethod(tx_hash)
    _Helpers.transfer_log = staticmethod(transfer_log)
    _Helpers.opaque_log = staticmethod(opaque_log)
    return _Helpers
