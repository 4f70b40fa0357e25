"""Tests for the ledger sync service against in-memory collaborators."""

from datetime import timedelta
from typing import Any

import pytest
from conftest import CHAIN_ID, DEPLOYMENT_BLOCK, NFT_ID, POSITION_ID, SQRT_PRICE_1600, T0, raw_event

from lpledger.clients.providers import RpcFinalityProvider
from lpledger.core.errors import CollaboratorError, FinalityUnavailableError, LedgerConsistencyError, NotFoundError
from lpledger.core.models import MissingEvent
from lpledger.core.use_cases.apr_periods import AprPeriodService
from lpledger.core.use_cases.ledger_sync import LEDGER_SYNC_BY, LedgerSyncService, verify_chain
from lpledger.core.use_cases.sync_state import PositionSyncState

DAY = timedelta(days=1)


def _seed(fake_chain: Any) -> None:
    fake_chain.events = [
        raw_event("increase", 150, liquidity=1_000, amount0=2_500_000_000, amount1=10**18, ts=T0),
        raw_event("decrease", 160, liquidity=500, amount0=1_000_000_000, amount1=6 * 10**17, ts=T0 + DAY),
        raw_event("collect", 160, log_index=1, amount0=1_010_000_000, amount1=6 * 10**17 + 2 * 10**15, ts=T0 + DAY),
        raw_event("collect", 200, amount0=3_000_000, ts=T0 + 3 * DAY),
    ]


@pytest.mark.asyncio
async def test_first_sync_builds_ledger_from_deployment_block(sync_service, fake_chain, store) -> None:
    _seed(fake_chain)

    result = await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    assert result.from_block == DEPLOYMENT_BLOCK
    assert result.finalized_block == 1_000
    assert result.events_added == 4
    assert fake_chain.fetch_calls == [(DEPLOYMENT_BLOCK, 1_000)]

    events = await store.find_all_events(POSITION_ID)
    assert [e.event_type for e in events] == ["INCREASE_POSITION", "DECREASE_POSITION", "COLLECT", "COLLECT"]
    verify_chain(events)
    last = events[-1]
    assert last.liquidity_after == 500
    assert last.cost_basis_after == 2_500_000_000
    assert last.uncollected_principal0_after == 0
    assert last.uncollected_principal1_after == 0

    periods = await store.find_apr_periods(POSITION_ID)
    assert len(periods) == 2


@pytest.mark.asyncio
async def test_events_arriving_out_of_order_are_replayed_in_chain_order(sync_service, fake_chain, store) -> None:
    _seed(fake_chain)
    fake_chain.events.reverse()

    await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    events = await store.find_all_events(POSITION_ID)
    assert [e.coordinates for e in events] == [(150, 0, 0), (160, 0, 0), (160, 0, 1), (200, 0, 0)]


@pytest.mark.asyncio
async def test_resync_without_new_events_adds_nothing(sync_service, fake_chain, store) -> None:
    _seed(fake_chain)
    await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)
    before = await store.find_all_events(POSITION_ID)

    result = await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    assert result.from_block == 200
    assert result.events_added == 0
    assert result.events_deleted == 1
    assert result.events_replayed == 1
    assert fake_chain.fetch_calls[-1] == (200, 1_000)
    assert await store.find_all_events(POSITION_ID) == before


@pytest.mark.asyncio
async def test_incremental_sync_appends_new_events(sync_service, fake_chain, store) -> None:
    _seed(fake_chain)
    await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    fake_chain.finalized = 2_000
    fake_chain.events.append(raw_event("increase", 1_500, liquidity=500, amount0=0, amount1=10**18, ts=T0 + 5 * DAY))
    result = await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    assert result.events_added == 1
    events = await store.find_all_events(POSITION_ID)
    assert len(events) == 5
    assert events[-1].liquidity_after == 1_000
    verify_chain(events)


@pytest.mark.asyncio
async def test_force_full_resync_rebuilds_identical_ledger(sync_service, fake_chain, store) -> None:
    _seed(fake_chain)
    await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)
    before = await store.find_all_events(POSITION_ID)

    result = await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID, force_full_resync=True)

    assert result.from_block == DEPLOYMENT_BLOCK
    assert result.events_deleted == 4
    assert result.events_added == 0
    assert await store.find_all_events(POSITION_ID) == before


@pytest.mark.asyncio
async def test_reorged_tail_is_replaced(sync_service, fake_chain, store) -> None:
    _seed(fake_chain)
    await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    # the final collect moved to another transaction index
    fake_chain.events[-1] = raw_event("collect", 200, tx_index=4, amount0=3_000_000, ts=T0 + 3 * DAY)
    result = await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    assert result.events_added == 1
    events = await store.find_all_events(POSITION_ID)
    assert events[-1].coordinates == (200, 4, 0)
    verify_chain(events)


@pytest.mark.asyncio
async def test_failure_mid_replay_leaves_ledger_untouched(sync_service, fake_chain, store) -> None:
    _seed(fake_chain)
    await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)
    before = await store.find_all_events(POSITION_ID)

    fake_chain.fail_price_at = 160
    with pytest.raises(CollaboratorError):
        await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID, force_full_resync=True)

    assert await store.find_all_events(POSITION_ID) == before


@pytest.mark.asyncio
async def test_consistency_fault_halts_without_partial_writes(sync_service, fake_chain, store) -> None:
    fake_chain.events = [
        raw_event("increase", 150, liquidity=100, amount0=1, ts=T0),
        raw_event("decrease", 160, liquidity=200, ts=T0 + DAY),
    ]

    with pytest.raises(LedgerConsistencyError):
        await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    assert await store.find_all_events(POSITION_ID) == []


@pytest.mark.asyncio
async def test_missing_finality_is_retryable(sync_service, fake_chain, store) -> None:
    fake_chain.finalized = None

    with pytest.raises(FinalityUnavailableError) as exc:
        await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    assert exc.value.retryable is True
    assert fake_chain.fetch_calls == []


@pytest.mark.asyncio
async def test_unconfigured_chain_is_not_found_rather_than_retryable(fake_chain, store) -> None:
    service = LedgerSyncService(
        chains={},
        events=fake_chain,
        finality=RpcFinalityProvider({}, {}),
        prices=fake_chain,
        pools=fake_chain,
        ledger=store,
        sync_states=store,
        apr=AprPeriodService(ledger=store, periods=store),
    )

    with pytest.raises(NotFoundError) as exc:
        await service.sync_ledger_events(POSITION_ID, 999, NFT_ID)

    assert exc.value.retryable is False
    assert fake_chain.fetch_calls == []


@pytest.mark.asyncio
async def test_finality_behind_last_event_rewinds_window(sync_service, fake_chain, store) -> None:
    _seed(fake_chain)
    await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)
    fake_chain.finalized = 180
    calls = len(fake_chain.fetch_calls)

    result = await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    assert result.from_block == 180
    assert fake_chain.fetch_calls[calls:] == [(180, 180)]
    assert len(await store.find_all_events(POSITION_ID)) == 3


@pytest.mark.asyncio
async def test_changed_price_rewrites_replayed_values(sync_service, fake_chain, store) -> None:
    _seed(fake_chain)
    await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    fake_chain.prices[200] = SQRT_PRICE_1600
    await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

    events = await store.find_all_events(POSITION_ID)
    assert events[-1].pool_price == 1_600_000_000


class TestMissingEvents:
    @pytest.mark.asyncio
    async def test_unindexed_event_is_merged_and_kept_until_confirmed(self, sync_service, fake_chain, store):
        _seed(fake_chain)
        fake_chain.events = fake_chain.events[:1]
        pending = raw_event("collect", 1_200, amount0=7_000_000, ts=T0 + 4 * DAY)
        state = await PositionSyncState.load(store, POSITION_ID)
        state.add_missing_event(
            MissingEvent(
                event_type="COLLECT",
                tx_hash=pending.tx_hash,
                block_number=1_200,
                tx_index=0,
                log_index=0,
                timestamp=pending.block_timestamp,
                amount0="7000000",
                amount1="0",
            )
        )
        await state.save(store)

        result = await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

        assert result.events_added == 2
        events = await store.find_all_events(POSITION_ID)
        assert events[-1].coordinates == (1_200, 0, 0)
        assert events[-1].fees_collected0 == 7_000_000
        record = await store.load_sync_state(POSITION_ID)
        assert record is not None
        assert len(record.missing_events) == 1
        assert record.last_sync_by == LEDGER_SYNC_BY

        # the log source catches up and the block finalizes
        fake_chain.events.append(pending)
        fake_chain.finalized = 1_500
        await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID)

        record = await store.load_sync_state(POSITION_ID)
        assert record is not None
        assert record.missing_events == []
        assert len(await store.find_all_events(POSITION_ID)) == 2


@pytest.mark.asyncio
async def test_empty_window_skips_fetch(sync_service, fake_chain, store) -> None:
    fake_chain.finalized = DEPLOYMENT_BLOCK - 10

    result = await sync_service.sync_ledger_events(POSITION_ID, CHAIN_ID, NFT_ID, force_full_resync=True)

    assert result.from_block == DEPLOYMENT_BLOCK
    assert result.events_added == 0
    assert fake_chain.fetch_calls == []
