"""Per-position sync bookkeeping: events the log source has not indexed yet.

When a user submits a transaction through their own wallet, the resulting
NFPM event is known before the log source can return it. Such events are
stored as *missing events* and merged into the next sync until the chain
confirms them or they fall behind the finalized block.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from lpledger.core.interfaces import ISyncStateRepository
from lpledger.core.models import (
    LedgerEvent,
    MissingEvent,
    RawEventPayloads,
    RawPositionEvent,
    SyncStateRecord,
    ZERO_ADDRESS,
)

DEFAULT_SYNC_BY = "user-refresh"


class PositionSyncState:
    """Mutable view over one position's `SyncStateRecord`."""

    def __init__(self, record: SyncStateRecord, *, persisted: bool = False) -> None:
        self._record = record
        self._persisted = persisted

    @classmethod
    async def load(cls, repo: ISyncStateRepository, position_id: str) -> PositionSyncState:
        """Load the stored state, or an empty one if none exists yet."""
        record = await repo.load_sync_state(position_id)
        if record is None:
            return cls(SyncStateRecord(position_id=position_id))
        return cls(record, persisted=True)

    # ---- read ----

    @property
    def position_id(self) -> str:
        return self._record.position_id

    @property
    def missing_events(self) -> list[MissingEvent]:
        return list(self._record.missing_events)

    @property
    def missing_event_count(self) -> int:
        return len(self._record.missing_events)

    @property
    def has_missing_events(self) -> bool:
        return bool(self._record.missing_events)

    @property
    def last_sync_at(self) -> datetime | None:
        return self._record.last_sync_at

    @property
    def last_sync_by(self) -> str | None:
        return self._record.last_sync_by

    @property
    def exists(self) -> bool:
        return self._persisted

    def missing_events_sorted(self) -> list[MissingEvent]:
        return sorted(
            self._record.missing_events,
            key=lambda e: (e.block_number, e.tx_index, e.log_index),
        )

    # ---- mutate ----

    def add_missing_event(self, event: MissingEvent) -> None:
        self._record.missing_events.append(event)

    def add_missing_events(self, events: Iterable[MissingEvent]) -> None:
        self._record.missing_events.extend(events)

    def remove_missing_event(self, tx_hash: str, log_index: int) -> bool:
        """Remove one event; return True if something was removed."""
        before = len(self._record.missing_events)
        self._record.missing_events = [
            e
            for e in self._record.missing_events
            if not (e.tx_hash == tx_hash and e.log_index == log_index)
        ]
        return len(self._record.missing_events) < before

    def remove_missing_events_by_tx_hash(self, tx_hash: str) -> int:
        before = len(self._record.missing_events)
        self._record.missing_events = [e for e in self._record.missing_events if e.tx_hash != tx_hash]
        return before - len(self._record.missing_events)

    def clear_missing_events(self) -> None:
        self._record.missing_events = []

    def prune_events(self, block_number: int) -> int:
        """Drop events at or below ``block_number``; return how many were dropped."""
        before = len(self._record.missing_events)
        self._record.missing_events = [e for e in self._record.missing_events if e.block_number > block_number]
        return before - len(self._record.missing_events)

    # ---- persistence ----

    async def save(self, repo: ISyncStateRepository, sync_by: str | None = None) -> None:
        self._record.last_sync_at = datetime.now(timezone.utc)
        self._record.last_sync_by = sync_by or self._record.last_sync_by or DEFAULT_SYNC_BY
        await repo.save_sync_state(self._record)
        self._persisted = True

    async def delete(self, repo: ISyncStateRepository) -> None:
        if not self._persisted:
            return
        await repo.delete_sync_state(self.position_id)
        self._persisted = False
        self._record.last_sync_at = None
        self._record.last_sync_by = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "positionId": self.position_id,
            "missingEventCount": self.missing_event_count,
            "missingEvents": [e.model_dump(mode="json", by_alias=True) for e in self._record.missing_events],
            "lastSyncAt": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "lastSyncBy": self.last_sync_by,
            "exists": self._persisted,
        }


# ---------------------------------------------------------------------------
# Missing-event helpers
# ---------------------------------------------------------------------------


def convert_missing_event_to_raw_event(event: MissingEvent, chain_id: int, nft_id: int) -> RawPositionEvent:
    amount0 = int(event.amount0 or 0)
    amount1 = int(event.amount1 or 0)
    match event.event_type:
        case "INCREASE_LIQUIDITY":
            payload = RawEventPayloads.IncreaseLiquidity(
                liquidity=int(event.liquidity or 0), amount0=amount0, amount1=amount1
            )
        case "DECREASE_LIQUIDITY":
            payload = RawEventPayloads.DecreaseLiquidity(
                liquidity=int(event.liquidity or 0), amount0=amount0, amount1=amount1
            )
        case _:
            payload = RawEventPayloads.Collect(
                recipient=event.recipient or ZERO_ADDRESS, amount0=amount0, amount1=amount1
            )
    return RawPositionEvent(
        chain_id=chain_id,
        nft_id=nft_id,
        block_number=event.block_number,
        tx_index=event.tx_index,
        log_index=event.log_index,
        tx_hash=event.tx_hash.lower(),
        block_timestamp=event.timestamp,
        payload=payload,
    )


def find_confirmed_missing_events(
    missing_events: Sequence[MissingEvent],
    confirmed: Iterable[RawPositionEvent | LedgerEvent],
) -> list[str]:
    """Return tx hashes of missing events whose transaction the chain has returned.

    A transaction is atomic, so a match on ``(block_number, tx_index)`` confirms
    every log it emitted.
    """
    seen = {(ev.block_number, ev.tx_index) for ev in confirmed}
    out: list[str] = []
    for missing in missing_events:
        if (missing.block_number, missing.tx_index) in seen and missing.tx_hash not in out:
            out.append(missing.tx_hash)
    return out
