"""DuckDB store: persistence, transactions and export."""

from datetime import timedelta

import pyarrow.parquet as pq
import pytest
import pytest_asyncio
from conftest import POSITION_ID, SQRT_PRICE_2500, T0, raw_event

from lpledger.core.errors import LedgerConsistencyError
from lpledger.core.models import SyncStateRecord
from lpledger.core.use_cases.apr_periods import AprPeriodService
from lpledger.core.use_cases.state_machine import build_ledger_event
from lpledger.storage.duckdb_store import DuckDBLedgerStore, from_ms, to_ms
from lpledger.storage.export import export_ledger_parquet, fetch_ledger_frame, ledger_to_arrow_table


@pytest.fixture
def events(pool):
    out = []
    previous = None
    for raw in [
        raw_event("increase", 150, liquidity=1_000, amount0=2_500_000_000, amount1=10**18, ts=T0),
        raw_event("decrease", 160, liquidity=500, amount0=1_000_000_000, amount1=6 * 10**17, ts=T0 + timedelta(days=1)),
        raw_event("collect", 170, amount0=1_010_000_000, amount1=6 * 10**17 + 2 * 10**15, ts=T0 + timedelta(days=2)),
    ]:
        previous = build_ledger_event(
            position_id=POSITION_ID, raw_event=raw, previous=previous, pool=pool, sqrt_price_x96=SQRT_PRICE_2500
        )
        out.append(previous)
    return out


@pytest_asyncio.fixture
async def db(tmp_path):
    store = DuckDBLedgerStore(tmp_path / "ledger.duckdb")
    yield store
    await store.aclose()


def test_ms_roundtrip() -> None:
    assert from_ms(to_ms(T0 + timedelta(milliseconds=1_234))) == T0 + timedelta(milliseconds=1_234)


@pytest.mark.asyncio
async def test_events_roundtrip(db, events) -> None:
    for ev in events:
        await db.insert_event(ev)

    assert await db.find_all_events(POSITION_ID) == events
    assert await db.find_last_event(POSITION_ID) == events[-1]
    assert await db.find_last_event("unknown") is None


@pytest.mark.asyncio
async def test_big_integers_survive(db, events) -> None:
    await db.insert_event(events[0])
    (stored,) = await db.find_all_events(POSITION_ID)
    assert stored.sqrt_price_x96 == SQRT_PRICE_2500
    assert stored.sqrt_price_x96 > 2**64


@pytest.mark.asyncio
async def test_duplicate_input_hash_rejected(db, events) -> None:
    await db.insert_event(events[0])
    with pytest.raises(LedgerConsistencyError):
        await db.insert_event(events[0])


@pytest.mark.asyncio
async def test_delete_from_block_returns_deleted(db, events) -> None:
    for ev in events:
        await db.insert_event(ev)

    deleted = await db.delete_events_from_block(POSITION_ID, 160)

    assert deleted == events[1:]
    assert await db.find_all_events(POSITION_ID) == events[:1]


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(db, events) -> None:
    for ev in events:
        await db.insert_event(ev)

    with pytest.raises(RuntimeError):
        async with db.transaction(POSITION_ID):
            await db.delete_events_from_block(POSITION_ID, 0)
            await db.insert_event(events[0])
            raise RuntimeError("boom")

    assert await db.find_all_events(POSITION_ID) == events


@pytest.mark.asyncio
async def test_transaction_allows_delete_and_reinsert(db, events) -> None:
    for ev in events:
        await db.insert_event(ev)

    async with db.transaction(POSITION_ID):
        await db.delete_events_from_block(POSITION_ID, 0)
        for ev in events:
            await db.insert_event(ev)

    assert await db.find_all_events(POSITION_ID) == events


@pytest.mark.asyncio
async def test_sync_state_roundtrip(db) -> None:
    record = SyncStateRecord.model_validate(
        {
            "positionId": POSITION_ID,
            "missingEvents": [
                {
                    "eventType": "COLLECT",
                    "transactionHash": "0xaa",
                    "blockNumber": 10,
                    "transactionIndex": 0,
                    "logIndex": 1,
                    "timestamp": T0.isoformat(),
                    "amount0": "5",
                    "amount1": "0",
                }
            ],
            "lastSyncAt": T0.isoformat(),
            "lastSyncBy": "user-refresh",
        }
    )

    await db.save_sync_state(record)
    loaded = await db.load_sync_state(POSITION_ID)

    assert loaded == record
    await db.delete_sync_state(POSITION_ID)
    assert await db.load_sync_state(POSITION_ID) is None


@pytest.mark.asyncio
async def test_apr_periods_roundtrip(db, events) -> None:
    for ev in events:
        await db.insert_event(ev)
    service = AprPeriodService(ledger=db, periods=db)

    computed = await service.calculate_apr_periods(POSITION_ID)

    assert await db.find_apr_periods(POSITION_ID) == computed
    assert computed[0].apr_bps == 7_305


@pytest.mark.asyncio
async def test_exports(db, events, tmp_path) -> None:
    for ev in events:
        await db.insert_event(ev)

    frame = fetch_ledger_frame(db, POSITION_ID)
    assert list(frame["event_type"]) == ["INCREASE_POSITION", "DECREASE_POSITION", "COLLECT"]

    out = export_ledger_parquet(await db.find_all_events(POSITION_ID), tmp_path / "out" / "ledger.parquet")
    table = pq.read_table(out)
    assert table.num_rows == 3
    assert table.column("cost_basis_after").to_pylist() == [str(e.cost_basis_after) for e in events]
    assert ledger_to_arrow_table(events).column("rewards_value").to_pylist()[-1] == "15000000"
