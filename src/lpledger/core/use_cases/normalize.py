"""Deterministic ordering and merging of raw position events."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from lpledger.core.models import RawPositionEvent


def event_sort_key(event: RawPositionEvent) -> tuple[int, int, int]:
    return (event.block_number, event.tx_index, event.log_index)


def sort_raw_events(events: Iterable[RawPositionEvent]) -> list[RawPositionEvent]:
    """Return a new list ordered by ``(block_number, tx_index, log_index)``."""
    return sorted(events, key=event_sort_key)


def merge_events(
    chain_events: Sequence[RawPositionEvent],
    missing_events: Sequence[RawPositionEvent],
) -> list[RawPositionEvent]:
    """Concatenate chain events first so they win deduplication."""
    return [*chain_events, *missing_events]


def deduplicate_events(events: Iterable[RawPositionEvent]) -> list[RawPositionEvent]:
    """Drop repeated coordinates, keeping the first occurrence."""
    seen: set[tuple[int, int, int]] = set()
    out: list[RawPositionEvent] = []
    for ev in events:
        key = event_sort_key(ev)
        if key in seen:
            continue
        seen.add(key)
        out.append(ev)
    return out
