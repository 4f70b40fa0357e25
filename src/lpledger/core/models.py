"""Core data models for the position ledger.

This module defines:
- `RawEventPayloads`: the tagged union of NFPM event payloads
  (IncreaseLiquidity / DecreaseLiquidity / Collect).
- `EventLog`: minimal RPC log record used by the decoder.
- `RawPositionEvent`: one raw chain event with its ordering coordinates.
- `LedgerEvent`: one immutable, hash-chained ledger entry.
- `LedgerState`: the running totals carried from one event to the next.
- `AprPeriod`: a derived return-measurement window.
- Pydantic records for the persisted sync state (missing events).

Design notes
------------
- All token amounts, liquidity and quote values are Python ``int``; nothing
  financial ever passes through ``float``.
- Ordering is always ``(block_number, tx_index, log_index)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, Field

RawEventType = Literal["INCREASE_LIQUIDITY", "DECREASE_LIQUIDITY", "COLLECT"]
LedgerEventType = Literal["INCREASE_POSITION", "DECREASE_POSITION", "COLLECT"]

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# ---- Raw event payloads (tagged union) ----
#   - RawEventPayloads.IncreaseLiquidity  → liquidity added, amounts deposited
#   - RawEventPayloads.DecreaseLiquidity  → liquidity removed, amounts owed
#   - RawEventPayloads.Collect            → amounts transferred to recipient
class RawEventPayloads:
    @dataclass(frozen=True, kw_only=True)
    class IncreaseLiquidity:
        event_type: ClassVar[RawEventType] = "INCREASE_LIQUIDITY"
        liquidity: int
        amount0: int
        amount1: int

    @dataclass(frozen=True, kw_only=True)
    class DecreaseLiquidity:
        event_type: ClassVar[RawEventType] = "DECREASE_LIQUIDITY"
        liquidity: int
        amount0: int
        amount1: int

    @dataclass(frozen=True, kw_only=True)
    class Collect:
        event_type: ClassVar[RawEventType] = "COLLECT"
        recipient: str
        amount0: int
        amount1: int


RawEventPayload = RawEventPayloads.IncreaseLiquidity | RawEventPayloads.DecreaseLiquidity | RawEventPayloads.Collect


def payload_to_dict(payload: RawEventPayload) -> dict[str, Any]:
    """Serialize a payload with its tag; big ints become strings."""
    out: dict[str, Any] = {"eventType": payload.event_type}
    match payload:
        case RawEventPayloads.IncreaseLiquidity() | RawEventPayloads.DecreaseLiquidity():
            out["liquidity"] = str(payload.liquidity)
        case RawEventPayloads.Collect():
            out["recipient"] = payload.recipient
    out["amount0"] = str(payload.amount0)
    out["amount1"] = str(payload.amount1)
    return out


def payload_from_dict(data: dict[str, Any]) -> RawEventPayload:
    """Inverse of `payload_to_dict`."""
    amount0 = int(data.get("amount0") or 0)
    amount1 = int(data.get("amount1") or 0)
    match data.get("eventType"):
        case "INCREASE_LIQUIDITY":
            return RawEventPayloads.IncreaseLiquidity(
                liquidity=int(data.get("liquidity") or 0), amount0=amount0, amount1=amount1
            )
        case "DECREASE_LIQUIDITY":
            return RawEventPayloads.DecreaseLiquidity(
                liquidity=int(data.get("liquidity") or 0), amount0=amount0, amount1=amount1
            )
        case "COLLECT":
            return RawEventPayloads.Collect(
                recipient=data.get("recipient") or ZERO_ADDRESS, amount0=amount0, amount1=amount1
            )
    raise ValueError(f"Unknown event type: {data.get('eventType')!r}")


# === RPC record ===


@dataclass(slots=True, frozen=True)
class EventLog:
    """Raw log as fetched from RPC, minimally normalized."""

    address: str  # lowercased 0x...
    topics: tuple[str, ...]  # lowercased 0x...
    data_hex: str  # "0x..."
    block_number: int
    tx_hash: str  # lowercased 0x...
    tx_index: int
    log_index: int
    block_timestamp: int | None = None
    removed: bool = False


# === Raw chain event ===


@dataclass(slots=True, frozen=True)
class RawPositionEvent:
    """One NFPM event for a position, as delivered by the events provider."""

    chain_id: int
    nft_id: int
    block_number: int
    tx_index: int
    log_index: int
    tx_hash: str  # lowercased 0x...
    block_timestamp: datetime
    payload: RawEventPayload

    @property
    def event_type(self) -> RawEventType:
        return self.payload.event_type

    @property
    def coordinates(self) -> tuple[int, int, int]:
        return (self.block_number, self.tx_index, self.log_index)


# === Pool metadata and prices ===


@dataclass(slots=True, frozen=True)
class TokenInfo:
    address: str
    symbol: str
    decimals: int


@dataclass(slots=True, frozen=True)
class PoolMetadata:
    """Pool identity plus the token data needed to value amounts in quote."""

    pool_id: str
    chain_id: int
    token0: TokenInfo
    token1: TokenInfo
    token0_is_quote: bool = False
    fee: int = 0

    @property
    def quote_token(self) -> TokenInfo:
        return self.token0 if self.token0_is_quote else self.token1


@dataclass(slots=True, frozen=True)
class HistoricPoolPrice:
    sqrt_price_x96: int
    timestamp: datetime
    block_number: int


# === Ledger ===


@dataclass(slots=True, frozen=True)
class Reward:
    """Fee income for one token collected by a COLLECT event."""

    token_id: str
    token_amount: int
    token_value: int


@dataclass(slots=True, frozen=True)
class LedgerState:
    """Running totals after a ledger event (or the zero state)."""

    liquidity: int = 0
    cost_basis: int = 0
    pnl: int = 0
    uncollected_principal0: int = 0
    uncollected_principal1: int = 0

    @staticmethod
    def from_event(event: LedgerEvent | None) -> LedgerState:
        if event is None:
            return LedgerState()
        return LedgerState(
            liquidity=event.liquidity_after,
            cost_basis=event.cost_basis_after,
            pnl=event.pnl_after,
            uncollected_principal0=event.uncollected_principal0_after,
            uncollected_principal1=event.uncollected_principal1_after,
        )


@dataclass(slots=True, frozen=True, kw_only=True)
class LedgerEvent:
    """One immutable ledger entry, chained to its predecessor by `previous_id`."""

    # identity
    id: str
    position_id: str
    previous_id: str | None

    # ordering coordinates
    chain_id: int
    nft_id: int
    block_number: int
    tx_index: int
    log_index: int
    tx_hash: str
    timestamp: datetime

    event_type: LedgerEventType

    # deltas and running totals
    delta_liquidity: int
    liquidity_after: int
    delta_cost_basis: int
    cost_basis_after: int
    delta_pnl: int
    pnl_after: int
    uncollected_principal0_after: int
    uncollected_principal1_after: int
    fees_collected0: int = 0
    fees_collected1: int = 0

    # valuation
    token0_amount: int
    token1_amount: int
    token_value: int
    sqrt_price_x96: int
    pool_price: int
    rewards: tuple[Reward, ...] = ()

    state: RawEventPayload
    input_hash: str

    @property
    def coordinates(self) -> tuple[int, int, int]:
        return (self.block_number, self.tx_index, self.log_index)

    @property
    def rewards_value(self) -> int:
        return sum(r.token_value for r in self.rewards)


# === APR ===


@dataclass(slots=True, frozen=True, kw_only=True)
class AprPeriod:
    """A return-measurement window over a contiguous slice of the ledger."""

    position_id: str
    start_event_id: str
    end_event_id: str
    start_timestamp: datetime
    end_timestamp: datetime
    duration_seconds: int
    cost_basis: int
    collected_fee_value: int
    apr_bps: int
    event_count: int


# === Sync results ===


@dataclass(kw_only=True)
class SyncLedgerResult:
    """Outcome of one ledger sync pass."""

    events_added: int
    finalized_block: int
    from_block: int
    events_deleted: int = 0
    events_replayed: int = 0


# === Persisted sync state ===


class MissingEvent(BaseModel):
    """A user-submitted event not yet visible through the log source."""

    event_type: RawEventType = Field(alias="eventType")
    tx_hash: str = Field(alias="transactionHash")
    block_number: int = Field(alias="blockNumber")
    tx_index: int = Field(alias="transactionIndex")
    log_index: int = Field(alias="logIndex")
    timestamp: datetime
    liquidity: str | None = None
    amount0: str | None = None
    amount1: str | None = None
    recipient: str | None = None

    model_config = {"populate_by_name": True, "frozen": True}


class SyncStateRecord(BaseModel):
    """Persisted per-position sync bookkeeping."""

    position_id: str = Field(alias="positionId")
    missing_events: list[MissingEvent] = Field(default_factory=list, alias="missingEvents")
    last_sync_at: datetime | None = Field(default=None, alias="lastSyncAt")
    last_sync_by: str | None = Field(default=None, alias="lastSyncBy")

    model_config = {"populate_by_name": True}


def utc_from_timestamp(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


@dataclass(frozen=True)
class SyncTarget:
    """One position to sync: identity plus its on-chain coordinates."""

    position_id: str
    chain_id: int
    nft_id: int
    force_full_resync: bool = False
