"""Application use cases: normalization, replay, sync and APR periodization."""

from lpledger.core.use_cases.apr_periods import AprPeriodService
from lpledger.core.use_cases.ledger_sync import LedgerSyncService, SyncProgress
from lpledger.core.use_cases.normalize import deduplicate_events, merge_events, sort_raw_events
from lpledger.core.use_cases.state_machine import build_ledger_event, generate_input_hash
from lpledger.core.use_cases.sync_state import PositionSyncState

__all__ = [
    "AprPeriodService",
    "LedgerSyncService",
    "SyncProgress",
    "deduplicate_events",
    "merge_events",
    "sort_raw_events",
    "build_ledger_event",
    "generate_input_hash",
    "PositionSyncState",
]
