"""Integer APR arithmetic: durations, time-weighted cost basis, basis points."""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Protocol

from lpledger.constants import BASIS_POINTS_MULTIPLIER, SECONDS_PER_YEAR
from lpledger.core.errors import AprCalculationError, LedgerConsistencyError

_ONE_MS = timedelta(milliseconds=1)


class CostBasisPoint(Protocol):
    """Anything carrying a timestamp and the cost basis in effect after it."""

    @property
    def timestamp(self) -> datetime: ...

    @property
    def cost_basis_after(self) -> int: ...


def duration_ms(start: datetime, end: datetime) -> int:
    return (end - start) // _ONE_MS


def calculate_duration_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two timestamps; ``end`` must not precede ``start``."""
    ms = duration_ms(start, end)
    if ms < 0:
        raise AprCalculationError("End timestamp must be after start timestamp")
    return ms // 1000


def seconds_to_days(duration_seconds: int) -> float:
    return duration_seconds / 86_400


def calculate_time_weighted_cost_basis(points: Sequence[CostBasisPoint]) -> int:
    """Average cost basis weighted by how long each value was in effect.

    Each event's ``cost_basis_after`` is weighted by the milliseconds until the
    next event; the weighted sum is floor-divided by the total span. A single
    event returns its own cost basis.

    Raises
    ------
    AprCalculationError
        If ``points`` is empty or spans zero time.
    LedgerConsistencyError
        If the timestamps are not chronologically non-decreasing.
    """
    if not points:
        raise AprCalculationError("Cannot calculate time-weighted average from empty input")
    if len(points) == 1:
        return points[0].cost_basis_after

    weighted_sum = 0
    total_ms = 0
    for current, nxt in zip(points, points[1:]):
        ms = duration_ms(current.timestamp, nxt.timestamp)
        if ms < 0:
            raise LedgerConsistencyError("Events must be in chronological order")
        weighted_sum += current.cost_basis_after * ms
        total_ms += ms

    if total_ms == 0:
        raise AprCalculationError("Events must span non-zero time for a time-weighted average")
    return weighted_sum // total_ms


def calculate_apr_bps(collected_fee_value: int, cost_basis: int, duration_seconds: int) -> int:
    """Annualized return in basis points, floored.

    ``fee * SECONDS_PER_YEAR * 10_000 // (cost_basis * duration_seconds)``
    """
    if cost_basis <= 0:
        raise AprCalculationError(f"Cost basis must be positive, got {cost_basis}")
    if duration_seconds <= 0:
        raise AprCalculationError(f"Duration must be positive, got {duration_seconds}")
    if collected_fee_value < 0:
        raise AprCalculationError(f"Collected fee value cannot be negative, got {collected_fee_value}")
    if collected_fee_value == 0:
        return 0
    numerator = collected_fee_value * SECONDS_PER_YEAR * BASIS_POINTS_MULTIPLIER
    return numerator // (cost_basis * duration_seconds)


def apr_bps_to_percent(apr_bps: int) -> float:
    return apr_bps / 100


def apr_percent_to_bps(apr_percent: float) -> int:
    """Percent to basis points, rounding halves up."""
    return math.floor(apr_percent * 100 + 0.5)
