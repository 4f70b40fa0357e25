"""APR periodization: split a ledger into COLLECT-bounded windows.

Periods are a disposable projection of the ledger. Every recompute discards
the stored periods for the position and writes a fresh set.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from lpledger.core.apr_math import (
    calculate_apr_bps,
    calculate_duration_seconds,
    calculate_time_weighted_cost_basis,
    duration_ms,
)
from lpledger.core.errors import LedgerConsistencyError
from lpledger.core.interfaces import IAprPeriodRepository, ILedgerRepository
from lpledger.core.models import AprPeriod, LedgerEvent

logger = logging.getLogger(__name__)


def divide_events_into_periods(events: Sequence[LedgerEvent]) -> list[list[LedgerEvent]]:
    """Group chronologically ordered events into periods.

    A COLLECT closes the current period and also opens the next one. A trailing
    period holding only that opening COLLECT is dropped.
    """
    periods: list[list[LedgerEvent]] = []
    current: list[LedgerEvent] = []
    for event in events:
        current.append(event)
        if event.event_type == "COLLECT":
            periods.append(current)
            current = [event]
    if current:
        closed_by_collect = bool(periods) and periods[-1][-1] is current[0]
        if not closed_by_collect or len(current) > 1:
            periods.append(current)
    return periods


def build_apr_period(position_id: str, events: Sequence[LedgerEvent]) -> AprPeriod:
    """Compute one period.

    Fees are the reward value of COLLECT events after the first event of the
    period; a COLLECT opening the period belongs to the previous one. Periods
    spanning zero time or with no cost basis get an APR of 0.
    """
    if not events:
        raise ValueError("Cannot build an APR period from no events")
    start, end = events[0], events[-1]
    for a, b in zip(events, events[1:]):
        if duration_ms(a.timestamp, b.timestamp) < 0:
            raise LedgerConsistencyError(
                f"Ledger events out of chronological order for position {position_id}: {a.id} -> {b.id}"
            )

    fee_value = sum(e.rewards_value for e in events[1:] if e.event_type == "COLLECT")
    duration_seconds = calculate_duration_seconds(start.timestamp, end.timestamp)

    if len(events) > 1 and duration_ms(start.timestamp, end.timestamp) == 0:
        cost_basis = start.cost_basis_after
    else:
        cost_basis = calculate_time_weighted_cost_basis(events)

    if duration_seconds > 0 and cost_basis > 0:
        apr_bps = calculate_apr_bps(fee_value, cost_basis, duration_seconds)
    else:
        logger.debug(
            "Degenerate APR period position_id=%s start=%s end=%s duration_s=%d cost_basis=%d",
            position_id,
            start.id,
            end.id,
            duration_seconds,
            cost_basis,
        )
        apr_bps = 0

    return AprPeriod(
        position_id=position_id,
        start_event_id=start.id,
        end_event_id=end.id,
        start_timestamp=start.timestamp,
        end_timestamp=end.timestamp,
        duration_seconds=duration_seconds,
        cost_basis=cost_basis,
        collected_fee_value=fee_value,
        apr_bps=apr_bps,
        event_count=len(events),
    )


class AprPeriodService:
    """Recomputes and queries APR periods for positions."""

    def __init__(self, *, ledger: ILedgerRepository, periods: IAprPeriodRepository) -> None:
        self._ledger = ledger
        self._periods = periods

    async def calculate_apr_periods(self, position_id: str) -> list[AprPeriod]:
        """Rebuild every period of the position from its ledger; newest first."""
        events = await self._ledger.find_all_events(position_id)
        if not events:
            await self._periods.replace_apr_periods(position_id, [])
            logger.info("No ledger events, cleared APR periods position_id=%s", position_id)
            return []

        periods = [build_apr_period(position_id, chunk) for chunk in divide_events_into_periods(events)]
        periods.sort(key=lambda p: p.start_timestamp, reverse=True)
        await self._periods.replace_apr_periods(position_id, periods)
        logger.info(
            "APR periods recomputed position_id=%s events=%d periods=%d",
            position_id,
            len(events),
            len(periods),
        )
        return periods

    async def refresh(self, position_id: str) -> list[AprPeriod]:
        return await self.calculate_apr_periods(position_id)

    async def get_apr_periods(self, position_id: str) -> list[AprPeriod]:
        return await self._periods.find_apr_periods(position_id)

    async def get_current_apr(self, position_id: str) -> int | None:
        """APR of the most recent period, or None without periods."""
        periods = await self.get_apr_periods(position_id)
        return periods[0].apr_bps if periods else None

    async def get_average_apr(self, position_id: str) -> int | None:
        """Arithmetic mean of period APRs, rounded half up."""
        periods = await self.get_apr_periods(position_id)
        if not periods:
            return None
        total = sum(p.apr_bps for p in periods)
        return (2 * total + len(periods)) // (2 * len(periods))
