"""Decode NFPM logs into raw position events.

`decode_log` turns one `EventLog` into a `DecodedEvent` (name + typed
values) using an `EventRegistry`; `to_raw_position_event` maps the decoded
NFPM event onto the `RawEventPayloads` tagged union.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from eth_utils import to_checksum_address

from lpledger.core.models import EventLog, RawEventPayload, RawEventPayloads, RawPositionEvent
from lpledger.decoding.specs import EventRegistry, TopicFieldSpec

# ---------- ABI words ----------


def word_at(data: bytes, i: int) -> bytes:
    """Return the i-th 32-byte ABI word (zero-padded if out of range)."""
    start = 32 * i
    return data[start : start + 32] if start < len(data) else b"\x00" * 32


def parse_topic_field(topic_hex: str, spec: TopicFieldSpec) -> Any:
    h = topic_hex.lower()
    if spec.type == "address":
        return "0x" + h[-40:]
    if spec.type.startswith("uint") or spec.type.startswith("int"):
        return int(h, 16)
    return h


def parse_data_word(word: bytes, typ: str) -> Any:
    if typ == "address":
        return "0x" + word[-20:].hex()
    if typ.startswith("uint"):
        return int.from_bytes(word, "big", signed=False)
    if typ.startswith("int"):
        # ABI sign-extends every intN to 256 bits
        return int.from_bytes(word, "big", signed=True)
    return "0x" + word.hex()


# ---------- decoded event ----------


@dataclass(slots=True)
class DecodedEvent:
    name: str
    log: EventLog
    values: dict[str, Any]


def decode_log(log: EventLog, registry: EventRegistry) -> DecodedEvent | None:
    """Decode a log, or return None if its topic0 is unknown or it is malformed."""
    topics: Sequence[str] = log.topics
    if not topics:
        return None
    spec = registry.get(topics[0].lower())
    if spec is None:
        return None

    values: dict[str, Any] = {}
    for tf in spec.topic_fields:
        if tf.index >= len(topics):
            return None
        values[tf.name] = parse_topic_field(topics[tf.index], tf)

    data = bytes.fromhex(log.data_hex[2:] if log.data_hex.startswith("0x") else log.data_hex)
    if spec.data_fields and len(data) < 32 * (max(df.word_index for df in spec.data_fields) + 1):
        return None
    for df in spec.data_fields:
        values[df.name] = parse_data_word(word_at(data, df.word_index), df.type)

    return DecodedEvent(name=spec.name, log=log, values=values)


def _payload(decoded: DecodedEvent) -> RawEventPayload | None:
    v = decoded.values
    match decoded.name:
        case "IncreaseLiquidity":
            return RawEventPayloads.IncreaseLiquidity(
                liquidity=v["liquidity"], amount0=v["amount0"], amount1=v["amount1"]
            )
        case "DecreaseLiquidity":
            return RawEventPayloads.DecreaseLiquidity(
                liquidity=v["liquidity"], amount0=v["amount0"], amount1=v["amount1"]
            )
        case "Collect":
            return RawEventPayloads.Collect(
                recipient=to_checksum_address(v["recipient"]), amount0=v["amount0"], amount1=v["amount1"]
            )
    return None


def to_raw_position_event(decoded: DecodedEvent, *, chain_id: int, block_timestamp: datetime) -> RawPositionEvent | None:
    """Map a decoded NFPM event to a `RawPositionEvent`; None for other events."""
    payload = _payload(decoded)
    if payload is None:
        return None
    log = decoded.log
    return RawPositionEvent(
        chain_id=chain_id,
        nft_id=int(decoded.values["tokenId"]),
        block_number=log.block_number,
        tx_index=log.tx_index,
        log_index=log.log_index,
        tx_hash=log.tx_hash,
        block_timestamp=block_timestamp,
        payload=payload,
    )
