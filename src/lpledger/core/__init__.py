"""Core data models, configuration, arithmetic and errors.

This package provides:
- Data models (RawPositionEvent, LedgerEvent, AprPeriod, SyncStateRecord)
- Configuration classes (LedgerConfig, ChainConfig, FinalityConfig)
- Integer ledger and APR arithmetic
"""

from lpledger.core.config import ChainConfig, FinalityConfig, LedgerConfig
from lpledger.core.models import (
    AprPeriod,
    LedgerEvent,
    LedgerState,
    PoolMetadata,
    RawEventPayloads,
    RawPositionEvent,
    SyncLedgerResult,
)

__all__ = [
    "ChainConfig",
    "FinalityConfig",
    "LedgerConfig",
    "AprPeriod",
    "LedgerEvent",
    "LedgerState",
    "PoolMetadata",
    "RawEventPayloads",
    "RawPositionEvent",
    "SyncLedgerResult",
]
