import asyncio
import time
from pathlib import Path

import click
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from .core.apr_math import apr_bps_to_percent
from .core.config import LedgerConfig
from .core.errors import LedgerError
from .core.models import SyncTarget
from .logging_setup import configure_logging
from .orchestration import open_runtime, position_id_for, sync_positions
from .storage import DuckDBLedgerStore, export_ledger_parquet, export_periods_parquet, fetch_ledger_frame

console = Console()


def _run(coro):
    try:
        return asyncio.run(coro)
    except (LedgerError, RuntimeError) as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("--db", "db_path", type=str, default="", help="DuckDB file (defaults to LPLEDGER_DB_PATH)")
@click.option("--log-level", default="WARNING", show_default=True)
@click.pass_context
def cli(ctx: click.Context, db_path: str, log_level: str) -> None:
    """lpledger: position ledgers and APR periods for Uniswap V3 positions."""
    configure_logging(log_level, console=console)
    config = LedgerConfig.from_env()
    ctx.obj = {"config": config, "db_path": Path(db_path) if db_path else config.db_path}


@cli.command("sync")
@click.option("--chain", "chain_ids", type=int, multiple=True, required=True, help="Chain id; repeat per position")
@click.option("--nft", "nft_ids", type=int, multiple=True, required=True, help="NFPM token id; repeat per position")
@click.option("--position", "position_ids", multiple=True, help="Position id (default uniswapv3:<chain>:<nft>)")
@click.option("--force-full/--no-force-full", default=False, show_default=True, help="Rebuild from deployment block")
@click.pass_obj
def sync_cmd(
    obj: dict,
    chain_ids: tuple[int, ...],
    nft_ids: tuple[int, ...],
    position_ids: tuple[str, ...],
    force_full: bool,
) -> None:
    """Sync one or more position ledgers up to the finalized block."""
    if len(chain_ids) != len(nft_ids):
        raise click.UsageError("Pass one --chain per --nft")
    if position_ids and len(position_ids) != len(nft_ids):
        raise click.UsageError("Pass one --position per --nft, or none")

    config: LedgerConfig = obj["config"]
    targets = [
        SyncTarget(
            position_id=position_ids[i] if position_ids else position_id_for(chain_id, nft_id),
            chain_id=chain_id,
            nft_id=nft_id,
            force_full_resync=force_full,
        )
        for i, (chain_id, nft_id) in enumerate(zip(chain_ids, nft_ids))
    ]
    for t in targets:
        try:
            chain = config.chain(t.chain_id)
        except LedgerError as e:
            raise click.UsageError(str(e)) from e
        if not chain.rpc_url:
            raise click.UsageError(f"Set RPC_URL_{chain.name.upper()} to sync chain {t.chain_id}")

    async def run() -> None:
        store = DuckDBLedgerStore(obj["db_path"])
        t0 = time.time()
        try:
            async with open_runtime(config, store, targets) as runtime:
                progress = Progress(
                    SpinnerColumn(),
                    TextColumn("[bold]syncing positions[/]"),
                    BarColumn(),
                    MofNCompleteColumn(),
                    TextColumn("•"),
                    TimeElapsedColumn(),
                    transient=True,
                )
                with progress:
                    task = progress.add_task("sync", total=len(targets))
                    stats = await sync_positions(runtime.sync, targets, concurrency=config.sync_concurrency)
                    progress.update(task, completed=len(targets))
        finally:
            await store.aclose()

        for position_id, result in stats.results.items():
            console.print(
                f"[green]{position_id}[/]: added={result.events_added} replayed={result.events_replayed} "
                f"deleted={result.events_deleted} blocks={result.from_block:,}-{result.finalized_block:,}"
            )
        for position_id, err in stats.errors.items():
            console.print(f"[red]{position_id}[/]: {type(err).__name__}: {err}")
        console.print(
            f"[bold]summary[/]: [green]processed_ok[/]={stats.processed_ok}  "
            f"[red]processed_failed[/]={stats.processed_failed}  "
            f"events_added={stats.events_added} • {time.time() - t0:.2f}s"
        )
        if stats.processed_failed:
            raise click.ClickException(f"{stats.processed_failed} position(s) failed to sync")

    _run(run())


@cli.command("periods")
@click.option("--position", "position_id", required=True)
@click.option("--recompute/--no-recompute", default=False, show_default=True)
@click.pass_obj
def periods_cmd(obj: dict, position_id: str, recompute: bool) -> None:
    """Show APR periods of a position, newest first."""
    from .core.use_cases.apr_periods import AprPeriodService

    async def run() -> None:
        store = DuckDBLedgerStore(obj["db_path"])
        try:
            service = AprPeriodService(ledger=store, periods=store)
            if recompute:
                await service.refresh(position_id)
            periods = await service.get_apr_periods(position_id)
            current = await service.get_current_apr(position_id)
            average = await service.get_average_apr(position_id)
        finally:
            await store.aclose()

        table = Table(title=f"APR periods • {position_id}")
        for col in ("start", "end", "days", "cost basis", "fees", "APR %", "events"):
            table.add_column(col, justify="right" if col not in ("start", "end") else "left")
        for p in periods:
            table.add_row(
                p.start_timestamp.isoformat(timespec="seconds"),
                p.end_timestamp.isoformat(timespec="seconds"),
                f"{p.duration_seconds / 86_400:.2f}",
                str(p.cost_basis),
                str(p.collected_fee_value),
                f"{apr_bps_to_percent(p.apr_bps):.2f}",
                str(p.event_count),
            )
        console.print(table)
        if current is not None and average is not None:
            console.print(
                f"current={apr_bps_to_percent(current):.2f}%  average={apr_bps_to_percent(average):.2f}%"
            )

    _run(run())


@cli.command("show")
@click.option("--position", "position_id", required=True)
@click.pass_obj
def show_cmd(obj: dict, position_id: str) -> None:
    """Print the ledger running totals of a position."""

    async def run() -> None:
        store = DuckDBLedgerStore(obj["db_path"])
        try:
            df = fetch_ledger_frame(store, position_id)
        finally:
            await store.aclose()
        if df.empty:
            console.print(f"[yellow]no ledger events[/] for {position_id}")
            return
        table = Table(title=f"Ledger • {position_id}")
        for col in df.columns:
            table.add_column(str(col))
        for row in df.itertuples(index=False):
            table.add_row(*(str(v) for v in row))
        console.print(table)

    _run(run())


@cli.command("export")
@click.option("--position", "position_id", required=True)
@click.option("--out", "out_path", required=True, help="Parquet output path")
@click.option("--periods-out", "periods_path", type=str, default="", help="Optional Parquet path for APR periods")
@click.pass_obj
def export_cmd(obj: dict, position_id: str, out_path: str, periods_path: str) -> None:
    """Export a position ledger (and optionally its APR periods) to Parquet."""

    async def run() -> None:
        store = DuckDBLedgerStore(obj["db_path"])
        try:
            events = await store.find_all_events(position_id)
            periods = await store.find_apr_periods(position_id) if periods_path else []
        finally:
            await store.aclose()
        out = export_ledger_parquet(events, out_path)
        console.print(f"[bold]done[/]: {len(events)} events → {out}")
        if periods_path:
            out = export_periods_parquet(periods, periods_path)
            console.print(f"[bold]done[/]: {len(periods)} periods → {out}")

    _run(run())


if __name__ == "__main__":
    cli()
