from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from lpledger.core.config import ChainConfig
from lpledger.core.errors import FinalityUnavailableError, LedgerConsistencyError, NotFoundError
from lpledger.core.interfaces import (
    IFinalityProvider,
    ILedgerRepository,
    IPoolMetadataProvider,
    IPoolPriceProvider,
    IPositionEventsProvider,
    ISyncStateRepository,
)
from lpledger.core.models import LedgerEvent, RawPositionEvent, SyncLedgerResult
from lpledger.core.use_cases.apr_periods import AprPeriodService
from lpledger.core.use_cases.normalize import deduplicate_events, merge_events, sort_raw_events
from lpledger.core.use_cases.state_machine import build_ledger_event
from lpledger.core.use_cases.sync_state import (
    PositionSyncState,
    convert_missing_event_to_raw_event,
    find_confirmed_missing_events,
)

logger = logging.getLogger(__name__)

SyncPhase = Literal[
    "IDLE",
    "DETERMINING_WINDOW",
    "REBUILDING",
    "FETCHING",
    "REPLAYING",
    "PERIODIZING",
    "DONE",
    "FAILED",
]

LEDGER_SYNC_BY = "ledger-sync"


# ---------------------------------------------------------------------------
# Progress tracking
# ---------------------------------------------------------------------------


@dataclass(kw_only=True)
class SyncProgress:
    """
    Phase and counters of one sync pass.

    Mutated as the pass advances so a failure can report where it stopped.
    """

    position_id: str
    phase: SyncPhase = "IDLE"
    from_block: int | None = None
    finalized_block: int | None = None
    events_deleted: int = 0
    events_fetched: int = 0
    missing_merged: int = 0
    events_replayed: int = 0
    events_added: int = 0
    history: list[SyncPhase] = field(default_factory=list)

    def enter(self, phase: SyncPhase) -> None:
        self.phase = phase
        self.history.append(phase)
        logger.info("Ledger sync phase position_id=%s phase=%s", self.position_id, phase)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class LedgerSyncService:
    """
    Rebuilds a position's ledger tail against the chain's finality boundary.

    The pass deletes every ledger event at or after ``from_block``, refetches
    ``[from_block, finalized]``, replays the events in chain order and then
    recomputes APR periods. Deletion and replay run inside one ledger
    transaction, so a failure leaves the ledger as it was before the pass.

    Callers must not run two syncs for the same position concurrently.
    """

    def __init__(
        self,
        *,
        chains: dict[int, ChainConfig],
        events: IPositionEventsProvider,
        finality: IFinalityProvider,
        prices: IPoolPriceProvider,
        pools: IPoolMetadataProvider,
        ledger: ILedgerRepository,
        sync_states: ISyncStateRepository,
        apr: AprPeriodService,
    ) -> None:
        self._chains = chains
        self._events = events
        self._finality = finality
        self._prices = prices
        self._pools = pools
        self._ledger = ledger
        self._sync_states = sync_states
        self._apr = apr

    def _deployment_block(self, chain_id: int) -> int:
        chain = self._chains.get(chain_id)
        if chain is None:
            raise NotFoundError(f"Unsupported chain {chain_id}")
        return chain.nfpm_deployment_block

    async def _determine_from_block(
        self, position_id: str, chain_id: int, finalized: int, force_full_resync: bool
    ) -> int:
        deployment_block = self._deployment_block(chain_id)
        if force_full_resync:
            return deployment_block
        last = await self._ledger.find_last_event(position_id)
        start = last.block_number if last is not None else deployment_block
        return min(start, finalized)

    async def _replay(
        self,
        position_id: str,
        raw_events: list[RawPositionEvent],
        progress: SyncProgress,
        deleted_hashes: set[str],
    ) -> None:
        if not raw_events:
            return
        pool = await self._pools.get_pool_metadata(position_id)
        previous: LedgerEvent | None = await self._ledger.find_last_event(position_id)
        for raw in raw_events:
            price = await self._prices.get_historic_pool_price(pool, raw.block_number)
            event = build_ledger_event(
                position_id=position_id,
                raw_event=raw,
                previous=previous,
                pool=pool,
                sqrt_price_x96=price.sqrt_price_x96,
            )
            await self._ledger.insert_event(event)
            logger.debug(
                "Replayed event position_id=%s block=%d tx_index=%d log_index=%d type=%s cost_basis_after=%d",
                position_id,
                event.block_number,
                event.tx_index,
                event.log_index,
                event.event_type,
                event.cost_basis_after,
            )
            previous = event
            progress.events_replayed += 1
            if event.input_hash not in deleted_hashes:
                progress.events_added += 1

    async def sync_ledger_events(
        self,
        position_id: str,
        chain_id: int,
        nft_id: int,
        force_full_resync: bool = False,
    ) -> SyncLedgerResult:
        """
        Run one sync pass for a position.

        Returns
        -------
        SyncLedgerResult
            ``events_added`` counts replayed events that were not in the
            ledger before the pass, so an unchanged chain yields 0.

        Raises
        ------
        FinalityUnavailableError
            The finality boundary could not be determined (retryable).
        LedgerConsistencyError
            A replay invariant broke; the ledger is left untouched.
        """
        progress = SyncProgress(position_id=position_id)
        logger.info(
            "Starting ledger sync position_id=%s chain_id=%d nft_id=%d force_full_resync=%s",
            position_id,
            chain_id,
            nft_id,
            force_full_resync,
        )
        try:
            progress.enter("DETERMINING_WINDOW")
            self._deployment_block(chain_id)
            finalized = await self._finality.get_last_finalized_block_number(chain_id)
            if finalized is None:
                raise FinalityUnavailableError(chain_id)
            progress.finalized_block = finalized
            from_block = await self._determine_from_block(position_id, chain_id, finalized, force_full_resync)
            progress.from_block = from_block

            sync_state = await PositionSyncState.load(self._sync_states, position_id)
            missing = [
                convert_missing_event_to_raw_event(m, chain_id, nft_id)
                for m in sync_state.missing_events_sorted()
                if m.block_number >= from_block
            ]

            async with self._ledger.transaction(position_id):
                progress.enter("REBUILDING")
                deleted = await self._ledger.delete_events_from_block(position_id, from_block)
                progress.events_deleted = len(deleted)
                logger.info(
                    "Deleted ledger tail position_id=%s from_block=%d deleted=%d",
                    position_id,
                    from_block,
                    len(deleted),
                )

                progress.enter("FETCHING")
                if from_block <= finalized:
                    chain_events = await self._events.fetch_position_events(
                        chain_id, nft_id, from_block=from_block, to_block=finalized
                    )
                else:
                    chain_events = []
                progress.events_fetched = len(chain_events)
                merged = deduplicate_events(merge_events(chain_events, missing))
                progress.missing_merged = len(merged) - len(chain_events)
                logger.info(
                    "Fetched events position_id=%s chain=%d missing=%d merged=%d",
                    position_id,
                    len(chain_events),
                    len(missing),
                    len(merged),
                )

                progress.enter("REPLAYING")
                await self._replay(
                    position_id,
                    sort_raw_events(merged),
                    progress,
                    {e.input_hash for e in deleted},
                )

            self._settle_missing_events(sync_state, chain_events, finalized)
            await sync_state.save(self._sync_states, LEDGER_SYNC_BY)

            progress.enter("PERIODIZING")
            await self._apr.refresh(position_id)

            progress.enter("DONE")
        except Exception:
            progress.phase = "FAILED"
            logger.error(
                "Ledger sync failed position_id=%s chain_id=%d nft_id=%d phases=%s",
                position_id,
                chain_id,
                nft_id,
                "->".join(progress.history),
                exc_info=True,
            )
            raise

        logger.info(
            "Ledger sync completed position_id=%s from_block=%d finalized_block=%d added=%d replayed=%d deleted=%d",
            position_id,
            from_block,
            finalized,
            progress.events_added,
            progress.events_replayed,
            progress.events_deleted,
        )
        return SyncLedgerResult(
            events_added=progress.events_added,
            finalized_block=finalized,
            from_block=from_block,
            events_deleted=progress.events_deleted,
            events_replayed=progress.events_replayed,
        )

    @staticmethod
    def _settle_missing_events(
        sync_state: PositionSyncState,
        chain_events: list[RawPositionEvent],
        finalized: int,
    ) -> None:
        if not sync_state.has_missing_events:
            return
        removed = 0
        for tx_hash in find_confirmed_missing_events(sync_state.missing_events, chain_events):
            removed += sync_state.remove_missing_events_by_tx_hash(tx_hash)
        removed += sync_state.prune_events(finalized)
        logger.info(
            "Settled missing events position_id=%s removed=%d remaining=%d",
            sync_state.position_id,
            removed,
            sync_state.missing_event_count,
        )


def verify_chain(events: list[LedgerEvent]) -> None:
    """Check that ``previous_id`` links form a single ordered chain."""
    by_id = {e.id: e for e in events}
    if len(by_id) != len(events):
        raise LedgerConsistencyError("Duplicate ledger event ids")
    roots = [e for e in events if e.previous_id is None]
    if events and len(roots) != 1:
        raise LedgerConsistencyError(f"Expected exactly one root event, found {len(roots)}")
    for prev, cur in zip(events, events[1:]):
        if cur.previous_id != prev.id or cur.coordinates <= prev.coordinates:
            raise LedgerConsistencyError(f"Broken ledger chain at event {cur.id}")
