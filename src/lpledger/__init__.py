"""lpledger: position ledger engine for concentrated-liquidity positions."""

from __future__ import annotations

from .core.config import LedgerConfig
from .core.models import AprPeriod, LedgerEvent, RawPositionEvent, SyncLedgerResult
from .core.use_cases.apr_periods import AprPeriodService
from .core.use_cases.ledger_sync import LedgerSyncService

__all__ = [
    "LedgerConfig",
    "AprPeriod",
    "LedgerEvent",
    "RawPositionEvent",
    "SyncLedgerResult",
    "AprPeriodService",
    "LedgerSyncService",
]
