"""In-memory ledger, sync-state and APR-period store.

Used by tests and one-off CLI runs. Transactions snapshot the position's
event list and restore it if the block raises.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from lpledger.core.errors import LedgerConsistencyError
from lpledger.core.models import AprPeriod, LedgerEvent, SyncStateRecord


class InMemoryLedgerStore:
    """Implements ILedgerRepository, ISyncStateRepository and IAprPeriodRepository."""

    def __init__(self) -> None:
        self._events: dict[str, list[LedgerEvent]] = defaultdict(list)
        self._sync_states: dict[str, SyncStateRecord] = {}
        self._periods: dict[str, list[AprPeriod]] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ---- ledger ----

    async def insert_event(self, event: LedgerEvent) -> None:
        events = self._events[event.position_id]
        if any(e.input_hash == event.input_hash for e in events):
            raise LedgerConsistencyError(
                f"Duplicate input hash {event.input_hash} for position {event.position_id}"
            )
        events.append(event)
        events.sort(key=lambda e: e.coordinates)

    async def delete_events_from_block(self, position_id: str, from_block: int) -> list[LedgerEvent]:
        events = self._events[position_id]
        deleted = [e for e in events if e.block_number >= from_block]
        self._events[position_id] = [e for e in events if e.block_number < from_block]
        return deleted

    async def find_last_event(self, position_id: str) -> LedgerEvent | None:
        events = self._events.get(position_id)
        return events[-1] if events else None

    async def find_all_events(self, position_id: str) -> list[LedgerEvent]:
        return list(self._events.get(position_id, []))

    @asynccontextmanager
    async def transaction(self, position_id: str) -> AsyncIterator[None]:
        async with self._locks[position_id]:
            snapshot = list(self._events[position_id])
            try:
                yield
            except BaseException:
                self._events[position_id] = snapshot
                raise

    # ---- sync state ----

    async def load_sync_state(self, position_id: str) -> SyncStateRecord | None:
        record = self._sync_states.get(position_id)
        return record.model_copy(deep=True) if record is not None else None

    async def save_sync_state(self, record: SyncStateRecord) -> None:
        self._sync_states[record.position_id] = record.model_copy(deep=True)

    async def delete_sync_state(self, position_id: str) -> None:
        self._sync_states.pop(position_id, None)

    # ---- APR periods ----

    async def replace_apr_periods(self, position_id: str, periods: Sequence[AprPeriod]) -> None:
        self._periods[position_id] = sorted(periods, key=lambda p: p.start_timestamp, reverse=True)

    async def find_apr_periods(self, position_id: str) -> list[AprPeriod]:
        return list(self._periods.get(position_id, []))
