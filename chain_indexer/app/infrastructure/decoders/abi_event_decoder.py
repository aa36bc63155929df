from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import is_address, keccak

from chain_indexer.app.domain.models import UNKNOWN_EVENT_NAME, ChainLog, DecodedEvent
from chain_indexer.app.domain.ports.out import EventDecoder

logger = logging.getLogger(__name__)

_STATIC_TOPIC_PREFIXES = ("address", "bool", "uint", "int", "bytes")


@dataclass(frozen=True)
class _EventSpec:
    name: str
    signature: str
    # declaration order, independent of which inputs are indexed
    arg_names: tuple[str, ...]
    indexed: tuple[tuple[str, str], ...]
    non_indexed_names: tuple[str, ...]
    non_indexed_types: tuple[str, ...]


class AbiEventDecoder(EventDecoder):
    """
    Address-scoped, ABI-based log decoder.

    For every registered address it:
    - finds the event ABIs,
    - computes topic0 = keccak("EventName(type1,type2,...)") per event,
    - decodes indexed args from topics (static types only; dynamic indexed
      args are hashed by the EVM and kept as the raw topic),
    - decodes non-indexed args from `data` with eth_abi.

    Logs from unregistered addresses, with an unknown topic0, or with a
    payload that doesn't match the ABI come back as "Unknown" events that
    keep the raw address/topics/data.
    """

    def __init__(self) -> None:
        self._by_address: dict[str, dict[str, _EventSpec]] = {}

    @property
    def registered_addresses(self) -> list[str]:
        return sorted(self._by_address)

    def register_abi(self, address: str, abi: Any) -> None:
        if not is_address(address):
            raise ValueError(f"Invalid contract address: {address!r}")
        entries = self._normalize_abi(abi)
        events: dict[str, _EventSpec] = {}
        for entry in entries:
            if entry.get("type") != "event" or entry.get("anonymous"):
                continue
            spec = self._build_spec(entry)
            events["0x" + keccak(text=spec.signature).hex()] = spec

        self._by_address[address.lower()] = events
        logger.debug("Registered ABI for %s with %s events", address.lower(), len(events))

    def register_abi_file(self, address: str, abi_path: Path) -> None:
        if not abi_path.exists():
            raise FileNotFoundError(f"ABI file not found: {abi_path}")
        self.register_abi(address, json.loads(abi_path.read_text(encoding="utf-8")))

    def register_abi_dir(self, abi_dir: Path) -> int:
        """Register every `<address>.json` in abi_dir; returns how many were loaded."""
        count = 0
        for path in sorted(abi_dir.glob("*.json")):
            if not is_address(path.stem):
                logger.warning("Skipping ABI file with non-address name: %s", path.name)
                continue
            self.register_abi_file(path.stem, path)
            count += 1
        return count

    def decode(self, log: ChainLog) -> DecodedEvent:
        events = self._by_address.get(log.address.lower())
        if events is None or not log.topics:
            return self._unknown(log)

        spec = events.get(log.topics[0].lower())
        if spec is None:
            return self._unknown(log)

        if len(log.topics) - 1 != len(spec.indexed):
            logger.debug(
                "Topic count mismatch for %s at %s:%s", spec.signature, log.transaction_hash, log.log_index
            )
            return self._unknown(log)

        try:
            args: dict[str, Any] = {}
            for (name, typ), topic in zip(spec.indexed, log.topics[1:], strict=True):
                args[name] = self._decode_topic(typ, topic)
            if spec.non_indexed_types:
                values = abi_decode(list(spec.non_indexed_types), _to_bytes(log.data))
                for name, typ, val in zip(spec.non_indexed_names, spec.non_indexed_types, values, strict=True):
                    args[name] = self._normalize_abi_value(typ, val)
            args = {name: args[name] for name in spec.arg_names}
        except (DecodingError, ValueError, TypeError) as exc:
            logger.warning(
                "Failed to decode %s at %s:%s: %s", spec.signature, log.transaction_hash, log.log_index, exc
            )
            return self._unknown(log)

        return DecodedEvent(
            address=log.address.lower(),
            event_name=spec.name,
            topics=log.topics,
            data=log.data,
            block_number=log.block_number,
            transaction_hash=log.transaction_hash,
            log_index=log.log_index,
            signature=spec.signature,
            args=args,
        )

    # ---------------------------------------------------------------------
    # ABI helpers
    # ---------------------------------------------------------------------

    @staticmethod
    def _normalize_abi(abi: Any) -> list[dict[str, Any]]:
        # Common formats:
        # - [ ... ] (ABI list)
        # - { "abi": [ ... ] } (artifact)
        if isinstance(abi, str):
            abi = json.loads(abi)
        if isinstance(abi, list):
            entries = abi
        elif isinstance(abi, dict) and isinstance(abi.get("abi"), list):
            entries = abi["abi"]
        else:
            raise ValueError("Unsupported ABI format. Expected list or dict with 'abi' list.")
        return [x for x in entries if isinstance(x, dict)]

    def _build_spec(self, event_abi: Mapping[str, Any]) -> _EventSpec:
        name = event_abi.get("name")
        inputs = event_abi.get("inputs", [])
        if not isinstance(name, str) or not isinstance(inputs, list):
            raise ValueError("Invalid event ABI: missing name/inputs")

        types = [_canonical_type(inp) for inp in inputs]
        arg_names = []
        indexed = []
        non_indexed_names = []
        non_indexed_types = []
        for position, (inp, typ) in enumerate(zip(inputs, types)):
            arg_name = inp.get("name") or f"arg{position}"
            arg_names.append(arg_name)
            if inp.get("indexed") is True:
                indexed.append((arg_name, typ))
            else:
                non_indexed_names.append(arg_name)
                non_indexed_types.append(typ)

        return _EventSpec(
            name=name,
            signature=f"{name}({','.join(types)})",
            arg_names=tuple(arg_names),
            indexed=tuple(indexed),
            non_indexed_names=tuple(non_indexed_names),
            non_indexed_types=tuple(non_indexed_types),
        )

    # ---------------------------------------------------------------------
    # Topic / ABI value normalization
    # ---------------------------------------------------------------------

    def _decode_topic(self, typ: str, topic: str) -> Any:
        raw = _to_bytes(topic)
        if len(raw) != 32:
            raise ValueError(f"Expected 32-byte topic, got len={len(raw)}")
        is_static = typ.startswith(_STATIC_TOPIC_PREFIXES) and "[" not in typ and typ != "bytes"
        if not is_static:
            # string / bytes / arrays / tuples: only keccak of the value is logged
            return topic.lower()
        (value,) = abi_decode([typ], raw)
        return self._normalize_abi_value(typ, value)

    def _normalize_abi_value(self, typ: str, val: Any) -> Any:
        if isinstance(val, (list, tuple)):
            inner = typ[: typ.rfind("[")] if typ.endswith("]") else None
            if inner is not None:
                return [self._normalize_abi_value(inner, v) for v in val]
            return [self._normalize_abi_value("", v) for v in val]

        if typ == "address" or (isinstance(val, str) and val.startswith("0x") and len(val) == 42):
            return str(val).lower()

        if isinstance(val, (bytes, bytearray, memoryview)):
            return "0x" + bytes(val).hex()

        return val

    @staticmethod
    def _unknown(log: ChainLog) -> DecodedEvent:
        return DecodedEvent(
            address=log.address.lower(),
            event_name=UNKNOWN_EVENT_NAME,
            topics=log.topics,
            data=log.data,
            block_number=log.block_number,
            transaction_hash=log.transaction_hash,
            log_index=log.log_index,
        )


def _canonical_type(inp: Mapping[str, Any]) -> str:
    if not isinstance(inp, Mapping) or "type" not in inp:
        raise ValueError("Invalid event ABI inputs")
    typ = str(inp["type"])
    if typ.startswith("tuple"):
        components = ",".join(_canonical_type(c) for c in inp.get("components", []))
        return f"({components}){typ[len('tuple'):]}"
    return typ


def _to_bytes(value: str) -> bytes:
    s = value[2:] if value.lower().startswith("0x") else value
    return bytes.fromhex(s)
