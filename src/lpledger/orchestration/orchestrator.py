"""Multi-position sync orchestration.

This module provides two layers:

1) `sync_positions(...)`:
   - Runs `LedgerSyncService.sync_ledger_events` for many positions with a
     bounded number of concurrent syncs.
   - Depends ONLY on the service; a `PositionSyncGuard` rejects a second
     concurrent sync of the same position.

2) `open_runtime(...)` (convenience wiring):
   - Builds RPC clients, RPC-backed providers and the services from a
     `LedgerConfig` and a store, and closes the clients on exit.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field

from lpledger.clients.providers import (
    RpcFinalityProvider,
    RpcPoolMetadataProvider,
    RpcPoolPriceProvider,
    RpcPositionEventsProvider,
)
from lpledger.clients.rpc import RPC
from lpledger.core.config import LedgerConfig
from lpledger.core.errors import SyncInProgressError
from lpledger.core.models import SyncLedgerResult, SyncTarget
from lpledger.core.use_cases.apr_periods import AprPeriodService
from lpledger.core.use_cases.ledger_sync import LedgerSyncService
from lpledger.storage.duckdb_store import DuckDBLedgerStore
from lpledger.storage.memory import InMemoryLedgerStore

logger = logging.getLogger(__name__)


def position_id_for(chain_id: int, nft_id: int) -> str:
    """Default position id for an NFPM token."""
    return f"uniswapv3:{chain_id}:{nft_id}"


# ---------------------------------------------------------------------------
# In-flight guard
# ---------------------------------------------------------------------------


class PositionSyncGuard:
    """Tracks positions with a sync in flight."""

    def __init__(self) -> None:
        self._in_flight: set[str] = set()

    @contextmanager
    def hold(self, position_id: str) -> Iterator[None]:
        if position_id in self._in_flight:
            raise SyncInProgressError(position_id)
        self._in_flight.add(position_id)
        try:
            yield
        finally:
            self._in_flight.discard(position_id)

    def is_running(self, position_id: str) -> bool:
        return position_id in self._in_flight


# ---------------------------------------------------------------------------
# Batch sync
# ---------------------------------------------------------------------------


@dataclass(kw_only=True)
class SyncBatchStats:
    """Aggregated counters for a multi-position sync."""

    processed_ok: int = 0
    processed_failed: int = 0
    events_added: int = 0
    results: dict[str, SyncLedgerResult] = field(default_factory=dict)
    errors: dict[str, Exception] = field(default_factory=dict)


async def sync_positions(
    service: LedgerSyncService,
    targets: Iterable[SyncTarget],
    *,
    concurrency: int = 4,
    guard: PositionSyncGuard | None = None,
) -> SyncBatchStats:
    """Sync many positions concurrently; one position never runs twice at once.

    Per-position failures are collected in ``stats.errors``; they do not stop
    the other positions.
    """
    guard = guard or PositionSyncGuard()
    stats = SyncBatchStats()
    sem = asyncio.Semaphore(concurrency)

    async def worker(target: SyncTarget) -> None:
        try:
            with guard.hold(target.position_id):
                async with sem:
                    result = await service.sync_ledger_events(
                        target.position_id,
                        target.chain_id,
                        target.nft_id,
                        target.force_full_resync,
                    )
        except Exception as e:
            stats.processed_failed += 1
            stats.errors[target.position_id] = e
            logger.warning(
                "Position sync failed position_id=%s error=%s: %s", target.position_id, type(e).__name__, e
            )
            return
        stats.processed_ok += 1
        stats.events_added += result.events_added
        stats.results[target.position_id] = result

    await asyncio.gather(*(worker(t) for t in targets))
    return stats


# ---------------------------------------------------------------------------
# Runtime wiring
# ---------------------------------------------------------------------------


@dataclass(kw_only=True)
class LedgerRuntime:
    sync: LedgerSyncService
    apr: AprPeriodService
    store: DuckDBLedgerStore | InMemoryLedgerStore


@asynccontextmanager
async def open_runtime(
    config: LedgerConfig,
    store: DuckDBLedgerStore | InMemoryLedgerStore,
    targets: Iterable[SyncTarget] = (),
) -> AsyncIterator[LedgerRuntime]:
    """Wire RPC providers and services for every chain with an RPC url."""
    rpcs = {
        chain_id: RPC(chain.rpc_url, timeout_s=config.timeout_s, max_connections=config.max_connections)
        for chain_id, chain in config.chains.items()
        if chain.rpc_url
    }
    pools = RpcPoolMetadataProvider(
        rpcs,
        config.chains,
        {t.position_id: (t.chain_id, t.nft_id) for t in targets},
    )
    apr = AprPeriodService(ledger=store, periods=store)
    sync = LedgerSyncService(
        chains=config.chains,
        events=RpcPositionEventsProvider(rpcs, config.chains),
        finality=RpcFinalityProvider(rpcs, config.chains),
        prices=RpcPoolPriceProvider(rpcs),
        pools=pools,
        ledger=store,
        sync_states=store,
        apr=apr,
    )
    try:
        yield LedgerRuntime(sync=sync, apr=apr, store=store)
    finally:
        await asyncio.gather(*(rpc.aclose() for rpc in rpcs.values()))
