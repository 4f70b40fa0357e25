"""DuckDB-backed ledger, sync-state and APR-period store.

All blocking DuckDB calls run through ``asyncio.to_thread``. A single store
lock serializes access to the connection; `transaction` holds it for the
whole block and routes every statement issued by the same task through the
transaction cursor, which is committed on success and rolled back on error.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, TypeVar

import duckdb

from lpledger.core.errors import LedgerConsistencyError
from lpledger.core.models import (
    AprPeriod,
    LedgerEvent,
    Reward,
    SyncStateRecord,
    payload_from_dict,
    payload_to_dict,
)
from lpledger.storage import sql_queries

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def to_ms(ts: datetime) -> int:
    return (ts - _EPOCH) // _ONE_MS


def from_ms(ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=ms)


# =====================================================================
# Connection setup
# =====================================================================


def connect(path: str | Path, memory_limit: str = "2GB", threads: int = 4) -> duckdb.DuckDBPyConnection:
    """Open a DuckDB database with the store's PRAGMAs and schema applied."""
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    con = duckdb.connect(str(path))
    con.execute(f"PRAGMA threads={threads}")
    con.execute(f"PRAGMA memory_limit='{memory_limit}'")
    for ddl in sql_queries.SCHEMA:
        con.execute(ddl)
    return con


# =====================================================================
# Row mapping
# =====================================================================


def event_to_row(ev: LedgerEvent) -> tuple[Any, ...]:
    rewards = [
        {"tokenId": r.token_id, "tokenAmount": str(r.token_amount), "tokenValue": str(r.token_value)}
        for r in ev.rewards
    ]
    return (
        ev.id,
        ev.position_id,
        ev.previous_id,
        ev.chain_id,
        str(ev.nft_id),
        ev.block_number,
        ev.tx_index,
        ev.log_index,
        ev.tx_hash,
        to_ms(ev.timestamp),
        ev.event_type,
        str(ev.delta_liquidity),
        str(ev.liquidity_after),
        str(ev.delta_cost_basis),
        str(ev.cost_basis_after),
        str(ev.delta_pnl),
        str(ev.pnl_after),
        str(ev.uncollected_principal0_after),
        str(ev.uncollected_principal1_after),
        str(ev.fees_collected0),
        str(ev.fees_collected1),
        str(ev.token0_amount),
        str(ev.token1_amount),
        str(ev.token_value),
        str(ev.sqrt_price_x96),
        str(ev.pool_price),
        json.dumps(rewards, separators=(",", ":")),
        json.dumps(payload_to_dict(ev.state), separators=(",", ":")),
        ev.input_hash,
    )


def row_to_event(row: Sequence[Any]) -> LedgerEvent:
    r = dict(zip(sql_queries.LEDGER_COLUMNS, row))
    rewards = tuple(
        Reward(token_id=x["tokenId"], token_amount=int(x["tokenAmount"]), token_value=int(x["tokenValue"]))
        for x in json.loads(r["rewards"])
    )
    return LedgerEvent(
        id=r["id"],
        position_id=r["position_id"],
        previous_id=r["previous_id"],
        chain_id=int(r["chain_id"]),
        nft_id=int(r["nft_id"]),
        block_number=int(r["block_number"]),
        tx_index=int(r["tx_index"]),
        log_index=int(r["log_index"]),
        tx_hash=r["tx_hash"],
        timestamp=from_ms(int(r["timestamp_ms"])),
        event_type=r["event_type"],
        delta_liquidity=int(r["delta_liquidity"]),
        liquidity_after=int(r["liquidity_after"]),
        delta_cost_basis=int(r["delta_cost_basis"]),
        cost_basis_after=int(r["cost_basis_after"]),
        delta_pnl=int(r["delta_pnl"]),
        pnl_after=int(r["pnl_after"]),
        uncollected_principal0_after=int(r["uncollected_principal0_after"]),
        uncollected_principal1_after=int(r["uncollected_principal1_after"]),
        fees_collected0=int(r["fees_collected0"]),
        fees_collected1=int(r["fees_collected1"]),
        token0_amount=int(r["token0_amount"]),
        token1_amount=int(r["token1_amount"]),
        token_value=int(r["token_value"]),
        sqrt_price_x96=int(r["sqrt_price_x96"]),
        pool_price=int(r["pool_price"]),
        rewards=rewards,
        state=payload_from_dict(json.loads(r["state"])),
        input_hash=r["input_hash"],
    )


def period_to_row(p: AprPeriod) -> tuple[Any, ...]:
    return (
        p.position_id,
        p.start_event_id,
        p.end_event_id,
        to_ms(p.start_timestamp),
        to_ms(p.end_timestamp),
        p.duration_seconds,
        str(p.cost_basis),
        str(p.collected_fee_value),
        p.apr_bps,
        p.event_count,
    )


def row_to_period(row: Sequence[Any]) -> AprPeriod:
    r = dict(zip(sql_queries.APR_COLUMNS, row))
    return AprPeriod(
        position_id=r["position_id"],
        start_event_id=r["start_event_id"],
        end_event_id=r["end_event_id"],
        start_timestamp=from_ms(int(r["start_timestamp_ms"])),
        end_timestamp=from_ms(int(r["end_timestamp_ms"])),
        duration_seconds=int(r["duration_seconds"]),
        cost_basis=int(r["cost_basis"]),
        collected_fee_value=int(r["collected_fee_value"]),
        apr_bps=int(r["apr_bps"]),
        event_count=int(r["event_count"]),
    )


# =====================================================================
# Store
# =====================================================================


class DuckDBLedgerStore:
    """Implements ILedgerRepository, ISyncStateRepository and IAprPeriodRepository."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        self._con = connect(self.path)
        self._lock = asyncio.Lock()
        self._tx_cursor: ContextVar[duckdb.DuckDBPyConnection | None] = ContextVar(
            f"lpledger_tx_{id(self)}", default=None
        )

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        return self._con

    async def _run(self, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        """Run ``fn`` on the active transaction cursor, or a fresh autocommit cursor."""
        tx = self._tx_cursor.get()
        if tx is not None:
            return await asyncio.to_thread(fn, tx)
        async with self._lock:
            cur = self._con.cursor()
            try:
                return await asyncio.to_thread(fn, cur)
            finally:
                cur.close()

    @asynccontextmanager
    async def transaction(self, position_id: str) -> AsyncIterator[None]:
        if self._tx_cursor.get() is not None:
            raise RuntimeError("Nested ledger transactions are not supported")
        async with self._lock:
            cur = self._con.cursor()
            token = self._tx_cursor.set(cur)
            await asyncio.to_thread(cur.execute, "BEGIN TRANSACTION")
            try:
                yield
            except BaseException:
                await asyncio.to_thread(cur.execute, "ROLLBACK")
                logger.warning("Rolled back ledger transaction position_id=%s", position_id)
                raise
            else:
                await asyncio.to_thread(cur.execute, "COMMIT")
            finally:
                self._tx_cursor.reset(token)
                cur.close()

    async def aclose(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._con.close)

    # ---- ledger ----

    async def insert_event(self, event: LedgerEvent) -> None:
        row = event_to_row(event)

        def _insert(cur: duckdb.DuckDBPyConnection) -> None:
            (count,) = cur.execute(sql_queries.COUNT_INPUT_HASH, [event.position_id, event.input_hash]).fetchone()
            if count:
                raise LedgerConsistencyError(
                    f"Duplicate input hash {event.input_hash} for position {event.position_id}"
                )
            cur.execute(sql_queries.INSERT_LEDGER_EVENT, list(row))

        await self._run(_insert)

    async def delete_events_from_block(self, position_id: str, from_block: int) -> list[LedgerEvent]:
        def _delete(cur: duckdb.DuckDBPyConnection) -> list[LedgerEvent]:
            rows = cur.execute(sql_queries.SELECT_EVENTS_FROM_BLOCK, [position_id, from_block]).fetchall()
            cur.execute(sql_queries.DELETE_EVENTS_FROM_BLOCK, [position_id, from_block])
            return [row_to_event(r) for r in rows]

        return await self._run(_delete)

    async def find_last_event(self, position_id: str) -> LedgerEvent | None:
        def _last(cur: duckdb.DuckDBPyConnection) -> LedgerEvent | None:
            row = cur.execute(sql_queries.SELECT_LAST_EVENT, [position_id]).fetchone()
            return row_to_event(row) if row is not None else None

        return await self._run(_last)

    async def find_all_events(self, position_id: str) -> list[LedgerEvent]:
        def _all(cur: duckdb.DuckDBPyConnection) -> list[LedgerEvent]:
            return [row_to_event(r) for r in cur.execute(sql_queries.SELECT_ALL_EVENTS, [position_id]).fetchall()]

        return await self._run(_all)

    # ---- sync state ----

    async def load_sync_state(self, position_id: str) -> SyncStateRecord | None:
        def _load(cur: duckdb.DuckDBPyConnection) -> SyncStateRecord | None:
            row = cur.execute(sql_queries.SELECT_SYNC_STATE, [position_id]).fetchone()
            if row is None:
                return None
            state, last_sync_at_ms, last_sync_by = row
            record = SyncStateRecord.model_validate_json(state)
            record.last_sync_at = from_ms(last_sync_at_ms) if last_sync_at_ms is not None else None
            record.last_sync_by = last_sync_by
            return record

        return await self._run(_load)

    async def save_sync_state(self, record: SyncStateRecord) -> None:
        payload = record.model_dump_json(by_alias=True)
        last_ms = to_ms(record.last_sync_at) if record.last_sync_at is not None else None

        def _save(cur: duckdb.DuckDBPyConnection) -> None:
            cur.execute(sql_queries.DELETE_SYNC_STATE, [record.position_id])
            cur.execute(
                sql_queries.INSERT_SYNC_STATE,
                [record.position_id, payload, last_ms, record.last_sync_by],
            )

        await self._run(_save)

    async def delete_sync_state(self, position_id: str) -> None:
        def _delete(cur: duckdb.DuckDBPyConnection) -> None:
            cur.execute(sql_queries.DELETE_SYNC_STATE, [position_id])

        await self._run(_delete)

    # ---- APR periods ----

    async def replace_apr_periods(self, position_id: str, periods: Sequence[AprPeriod]) -> None:
        rows = [list(period_to_row(p)) for p in periods]

        def _replace(cur: duckdb.DuckDBPyConnection) -> None:
            cur.execute(sql_queries.DELETE_APR_PERIODS, [position_id])
            if rows:
                cur.executemany(sql_queries.INSERT_APR_PERIOD, rows)

        await self._run(_replace)

    async def find_apr_periods(self, position_id: str) -> list[AprPeriod]:
        def _find(cur: duckdb.DuckDBPyConnection) -> list[AprPeriod]:
            return [row_to_period(r) for r in cur.execute(sql_queries.SELECT_APR_PERIODS, [position_id]).fetchall()]

        return await self._run(_find)
