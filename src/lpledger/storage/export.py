"""Ledger export: Arrow tables, Parquet files and pandas frames.

Big integers are written as strings for Arrow safety (uint256 does not fit
any Arrow integer type).
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from lpledger.core.models import AprPeriod, LedgerEvent, payload_to_dict
from lpledger.storage import sql_queries
from lpledger.storage.duckdb_store import DuckDBLedgerStore

_LEDGER_SCHEMA = pa.schema(
    [
        ("id", pa.string()),
        ("position_id", pa.string()),
        ("previous_id", pa.string()),
        ("chain_id", pa.uint64()),
        ("nft_id", pa.string()),
        ("block_number", pa.uint64()),
        ("tx_index", pa.uint32()),
        ("log_index", pa.uint32()),
        ("tx_hash", pa.string()),
        ("timestamp", pa.timestamp("ms", tz="UTC")),
        ("event_type", pa.string()),
        ("delta_liquidity", pa.string()),
        ("liquidity_after", pa.string()),
        ("delta_cost_basis", pa.string()),
        ("cost_basis_after", pa.string()),
        ("delta_pnl", pa.string()),
        ("pnl_after", pa.string()),
        ("uncollected_principal0_after", pa.string()),
        ("uncollected_principal1_after", pa.string()),
        ("fees_collected0", pa.string()),
        ("fees_collected1", pa.string()),
        ("token0_amount", pa.string()),
        ("token1_amount", pa.string()),
        ("token_value", pa.string()),
        ("sqrt_price_x96", pa.string()),
        ("rewards_value", pa.string()),
        ("raw_event_type", pa.string()),
        ("input_hash", pa.string()),
    ]
)

_BIG_INT_FIELDS = (
    "delta_liquidity",
    "liquidity_after",
    "delta_cost_basis",
    "cost_basis_after",
    "delta_pnl",
    "pnl_after",
    "uncollected_principal0_after",
    "uncollected_principal1_after",
    "fees_collected0",
    "fees_collected1",
    "token0_amount",
    "token1_amount",
    "token_value",
    "sqrt_price_x96",
)


def ledger_to_arrow_table(events: Sequence[LedgerEvent]) -> pa.Table:
    """Convert ledger events to an Arrow table ordered by chain position."""
    cols: dict[str, list] = {f.name: [] for f in _LEDGER_SCHEMA}
    for ev in events:
        cols["id"].append(ev.id)
        cols["position_id"].append(ev.position_id)
        cols["previous_id"].append(ev.previous_id)
        cols["chain_id"].append(ev.chain_id)
        cols["nft_id"].append(str(ev.nft_id))
        cols["block_number"].append(ev.block_number)
        cols["tx_index"].append(ev.tx_index)
        cols["log_index"].append(ev.log_index)
        cols["tx_hash"].append(ev.tx_hash)
        cols["timestamp"].append(ev.timestamp)
        cols["event_type"].append(ev.event_type)
        for name in _BIG_INT_FIELDS:
            cols[name].append(str(getattr(ev, name)))
        cols["rewards_value"].append(str(ev.rewards_value))
        cols["raw_event_type"].append(payload_to_dict(ev.state)["eventType"])
        cols["input_hash"].append(ev.input_hash)
    return pa.Table.from_pydict(cols, schema=_LEDGER_SCHEMA).sort_by(
        [("block_number", "ascending"), ("tx_index", "ascending"), ("log_index", "ascending")]
    )


def periods_to_arrow_table(periods: Sequence[AprPeriod]) -> pa.Table:
    return pa.Table.from_pydict(
        {
            "start_event_id": [p.start_event_id for p in periods],
            "end_event_id": [p.end_event_id for p in periods],
            "start_timestamp": [p.start_timestamp for p in periods],
            "end_timestamp": [p.end_timestamp for p in periods],
            "duration_seconds": [p.duration_seconds for p in periods],
            "cost_basis": [str(p.cost_basis) for p in periods],
            "collected_fee_value": [str(p.collected_fee_value) for p in periods],
            "apr_bps": [p.apr_bps for p in periods],
            "event_count": [p.event_count for p in periods],
        },
        schema=pa.schema(
            [
                ("start_event_id", pa.string()),
                ("end_event_id", pa.string()),
                ("start_timestamp", pa.timestamp("ms", tz="UTC")),
                ("end_timestamp", pa.timestamp("ms", tz="UTC")),
                ("duration_seconds", pa.int64()),
                ("cost_basis", pa.string()),
                ("collected_fee_value", pa.string()),
                ("apr_bps", pa.int64()),
                ("event_count", pa.int32()),
            ]
        ),
    )


def export_ledger_parquet(events: Sequence[LedgerEvent], out_path: str | Path) -> Path:
    """Write the ledger to a zstd-compressed Parquet file and return its path."""
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    pq.write_table(ledger_to_arrow_table(events), out, compression="zstd")
    return out


def fetch_ledger_frame(store: DuckDBLedgerStore, position_id: str) -> pd.DataFrame:
    """Return a pandas frame with the key running totals of a position's ledger."""
    cur = store.connection.cursor()
    try:
        return cur.execute(sql_queries.LEDGER_FRAME, [position_id]).df()
    finally:
        cur.close()


def export_periods_parquet(periods: Sequence[AprPeriod], out_path: str | Path) -> Path:
    """Write APR periods to a zstd-compressed Parquet file and return its path."""
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    pq.write_table(periods_to_arrow_table(periods), out, compression="zstd")
    return out
