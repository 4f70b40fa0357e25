"""Orchestration for syncing many positions and wiring concrete collaborators.

This package provides:
- `sync_positions` for bounded-concurrency multi-position syncs
- `PositionSyncGuard` to reject overlapping syncs of one position
- `open_runtime` to build RPC providers and services from a config
"""

from lpledger.orchestration.orchestrator import (
    LedgerRuntime,
    PositionSyncGuard,
    SyncBatchStats,
    open_runtime,
    position_id_for,
    sync_positions,
)

__all__ = [
    "LedgerRuntime",
    "PositionSyncGuard",
    "SyncBatchStats",
    "open_runtime",
    "position_id_for",
    "sync_positions",
]
