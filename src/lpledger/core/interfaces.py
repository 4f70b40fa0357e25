from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Protocol, Sequence, runtime_checkable

from lpledger.core.models import (
    AprPeriod,
    HistoricPoolPrice,
    LedgerEvent,
    PoolMetadata,
    RawPositionEvent,
    SyncStateRecord,
)


# ---------------------------------------------------------------------------
# IPositionEventsProvider
# ---------------------------------------------------------------------------

@runtime_checkable
class IPositionEventsProvider(Protocol):
    """
    Source of raw NFPM events for one position.

    Domain expectations:
    - Events are returned in any order; the engine sorts them.
    - Only INCREASE_LIQUIDITY / DECREASE_LIQUIDITY / COLLECT are returned.
    - Network failures surface as retryable errors.
    """

    async def fetch_position_events(
        self,
        chain_id: int,
        nft_id: int,
        *,
        from_block: int,
        to_block: int,
    ) -> list[RawPositionEvent]:
        """Return all events for ``nft_id`` over the inclusive block range."""
        ...


# ---------------------------------------------------------------------------
# IFinalityProvider
# ---------------------------------------------------------------------------

@runtime_checkable
class IFinalityProvider(Protocol):
    """Reports the highest block considered irreversible on a chain."""

    async def get_last_finalized_block_number(self, chain_id: int) -> int | None:
        """Return the finalized block, or None if it cannot be determined.

        Raises NotFoundError for a chain the provider is not configured for.
        """
        ...


# ---------------------------------------------------------------------------
# IPoolPriceProvider
# ---------------------------------------------------------------------------

@runtime_checkable
class IPoolPriceProvider(Protocol):
    """Historic pool prices (``sqrtPriceX96``) at a given block."""

    async def get_historic_pool_price(self, pool: PoolMetadata, block_number: int) -> HistoricPoolPrice:
        ...


# ---------------------------------------------------------------------------
# IPoolMetadataProvider
# ---------------------------------------------------------------------------

@runtime_checkable
class IPoolMetadataProvider(Protocol):
    """Resolves the pool (tokens, decimals, quote side) a position lives in."""

    async def get_pool_metadata(self, position_id: str) -> PoolMetadata:
        """Raise `NotFoundError` for an unknown position."""
        ...


# ---------------------------------------------------------------------------
# ILedgerRepository
# ---------------------------------------------------------------------------

@runtime_checkable
class ILedgerRepository(Protocol):
    """
    Append-only store of ledger events.

    Domain expectations:
    - Events are never updated; the only mutation besides insert is the bulk
      delete of a block-range tail.
    - ``transaction(position_id)`` scopes a delete/insert sequence: either all
      of it becomes visible or, on exception, none of it does.
    """

    async def insert_event(self, event: LedgerEvent) -> None:
        """Insert one event. Raise `LedgerConsistencyError` on a duplicate input hash."""
        ...

    async def delete_events_from_block(self, position_id: str, from_block: int) -> list[LedgerEvent]:
        """Delete every event with ``block_number >= from_block`` and return them."""
        ...

    async def find_last_event(self, position_id: str) -> LedgerEvent | None:
        ...

    async def find_all_events(self, position_id: str) -> list[LedgerEvent]:
        """Return all events ordered by (block_number, tx_index, log_index)."""
        ...

    def transaction(self, position_id: str) -> AbstractAsyncContextManager[None]:
        ...


# ---------------------------------------------------------------------------
# ISyncStateRepository
# ---------------------------------------------------------------------------

@runtime_checkable
class ISyncStateRepository(Protocol):
    async def load_sync_state(self, position_id: str) -> SyncStateRecord | None:
        ...

    async def save_sync_state(self, record: SyncStateRecord) -> None:
        """Upsert the full record."""
        ...

    async def delete_sync_state(self, position_id: str) -> None:
        ...


# ---------------------------------------------------------------------------
# IAprPeriodRepository
# ---------------------------------------------------------------------------

@runtime_checkable
class IAprPeriodRepository(Protocol):
    async def replace_apr_periods(self, position_id: str, periods: Sequence[AprPeriod]) -> None:
        """Discard every stored period for the position and store ``periods``."""
        ...

    async def find_apr_periods(self, position_id: str) -> list[AprPeriod]:
        """Return stored periods, newest first."""
        ...
