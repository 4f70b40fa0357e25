import asyncio

import pyarrow.parquet as pq
from click.testing import CliRunner
from conftest import POSITION_ID, SQRT_PRICE_2500, T0, raw_event

from lpledger.cli import cli
from lpledger.core.use_cases.apr_periods import AprPeriodService
from lpledger.core.use_cases.state_machine import build_ledger_event
from lpledger.storage.duckdb_store import DuckDBLedgerStore


def _seed(db_path, pool) -> None:
    async def run() -> None:
        store = DuckDBLedgerStore(db_path)
        previous = None
        for raw in [
            raw_event("increase", 150, liquidity=1_000, amount0=2_500_000_000, amount1=10**18, ts=T0),
            raw_event("collect", 300, amount0=5_000_000, amount1=0),
        ]:
            previous = build_ledger_event(
                position_id=POSITION_ID, raw_event=raw, previous=previous, pool=pool, sqrt_price_x96=SQRT_PRICE_2500
            )
            await store.insert_event(previous)
        await AprPeriodService(ledger=store, periods=store).refresh(POSITION_ID)
        await store.aclose()

    asyncio.run(run())


def test_show_periods_and_export(tmp_path, pool) -> None:
    db = tmp_path / "ledger.duckdb"
    _seed(db, pool)
    runner = CliRunner()

    show = runner.invoke(cli, ["--db", str(db), "show", "--position", POSITION_ID])
    assert show.exit_code == 0, show.output
    assert "Ledger" in show.output

    periods = runner.invoke(cli, ["--db", str(db), "periods", "--position", POSITION_ID])
    assert periods.exit_code == 0, periods.output
    assert "current=" in periods.output

    out = tmp_path / "ledger.parquet"
    periods_out = tmp_path / "periods.parquet"
    export = runner.invoke(
        cli,
        ["--db", str(db), "export", "--position", POSITION_ID, "--out", str(out), "--periods-out", str(periods_out)],
    )
    assert export.exit_code == 0, export.output
    assert pq.read_table(out).num_rows == 2
    assert pq.read_table(periods_out).num_rows == 1


def test_show_empty_position(tmp_path) -> None:
    result = CliRunner().invoke(cli, ["--db", str(tmp_path / "empty.duckdb"), "show", "--position", "nope"])
    assert result.exit_code == 0
    assert "no ledger events" in result.output


def test_sync_requires_rpc_url(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("RPC_URL_ETHEREUM", raising=False)
    result = CliRunner().invoke(cli, ["--db", str(tmp_path / "x.duckdb"), "sync", "--chain", "1", "--nft", "5"])
    assert result.exit_code != 0
    assert "RPC_URL_ETHEREUM" in result.output


def test_sync_rejects_mismatched_options(tmp_path) -> None:
    result = CliRunner().invoke(
        cli, ["--db", str(tmp_path / "x.duckdb"), "sync", "--chain", "1", "--chain", "8453", "--nft", "5"]
    )
    assert result.exit_code != 0
    assert "--chain per --nft" in result.output
