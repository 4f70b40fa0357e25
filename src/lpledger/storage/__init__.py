"""Persistence: in-memory and DuckDB stores plus Parquet/pandas export."""

from lpledger.storage.duckdb_store import DuckDBLedgerStore
from lpledger.storage.export import (
    export_ledger_parquet,
    export_periods_parquet,
    fetch_ledger_frame,
    ledger_to_arrow_table,
)
from lpledger.storage.memory import InMemoryLedgerStore

__all__ = [
    "DuckDBLedgerStore",
    "InMemoryLedgerStore",
    "export_ledger_parquet",
    "export_periods_parquet",
    "fetch_ledger_frame",
    "ledger_to_arrow_table",
]
