from __future__ import annotations

from enum import Enum
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from chain_indexer.app.domain.errors import InvalidIndexerConfig

LAST_PROCESSED_BLOCK_KEY = "lastProcessedBlock"
START_BLOCK_KEY = "startBlock"
BATCH_SIZE_KEY = "batchSize"
LOG_SOURCE_KEY = "logSource"
CONTRACT_ADDRESSES_KEY = "contractAddresses"


class LogSource(str, Enum):
    """
    Where the synchronizer takes event logs from.

    receipts: logs embedded in each transaction receipt (every log is kept).
    range:    one bisected eth_getLogs per chunk, optionally filtered by
              contract address.
    """

    RECEIPTS = "receipts"
    RANGE = "range"


class IndexerSettings(BaseModel):
    """
    Typed view over the string key/value IndexerConfig rows of one indexer.

    Unknown keys are ignored so operators can keep free-form notes next to
    the recognised ones.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    start_block: int = Field(alias=START_BLOCK_KEY, ge=0)
    last_processed_block: int | None = Field(None, alias=LAST_PROCESSED_BLOCK_KEY, ge=0)
    batch_size: int = Field(alias=BATCH_SIZE_KEY, gt=0)
    log_source: LogSource = Field(LogSource.RECEIPTS, alias=LOG_SOURCE_KEY)
    contract_addresses: tuple[str, ...] = Field((), alias=CONTRACT_ADDRESSES_KEY)

    @field_validator("contract_addresses", mode="before")
    @classmethod
    def _split_addresses(cls, value: object) -> object:
        if isinstance(value, str):
            value = [v for v in (part.strip() for part in value.split(",")) if v]
        if isinstance(value, (list, tuple)):
            out = []
            for addr in value:
                addr = str(addr).lower()
                if not addr.startswith("0x") or len(addr) != 42:
                    raise ValueError(f"invalid contract address: {addr!r}")
                out.append(addr)
            return tuple(out)
        return value

    @property
    def checkpoint(self) -> int:
        """Highest block considered done: lastProcessedBlock, else startBlock."""
        if self.last_processed_block is None:
            return self.start_block
        return self.last_processed_block

    @classmethod
    def from_config_map(
        cls,
        configs: Mapping[str, str],
        *,
        default_start_block: int,
        default_batch_size: int,
    ) -> IndexerSettings:
        data: dict[str, object] = {
            START_BLOCK_KEY: default_start_block,
            BATCH_SIZE_KEY: default_batch_size,
        }
        data.update({k: v for k, v in configs.items() if v is not None and v != ""})
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InvalidIndexerConfig(f"Invalid indexer configuration: {exc}") from exc
