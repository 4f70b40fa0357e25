import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from lpledger.core.config import ChainConfig
from lpledger.core.errors import CollaboratorError
from lpledger.core.models import (
    HistoricPoolPrice,
    PoolMetadata,
    RawEventPayloads,
    RawPositionEvent,
    TokenInfo,
)
from lpledger.core.use_cases.apr_periods import AprPeriodService
from lpledger.core.use_cases.ledger_sync import LedgerSyncService
from lpledger.storage.memory import InMemoryLedgerStore

CHAIN_ID = 1
NFT_ID = 4242
POSITION_ID = "uniswapv3:1:4242"
DEPLOYMENT_BLOCK = 100

USDC = TokenInfo(address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", symbol="USDC", decimals=6)
WETH = TokenInfo(address="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", symbol="WETH", decimals=18)

# sqrtPriceX96 = 20_000 * 2**96  ->  1 WETH = 2_500 USDC (token0 = USDC is the quote)
SQRT_PRICE_2500 = 20_000 * 2**96
SQRT_PRICE_1600 = 25_000 * 2**96

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def block_time(block: int) -> datetime:
    return T0 + timedelta(hours=block - DEPLOYMENT_BLOCK)


def raw_event(
    kind: str,
    block: int,
    *,
    tx_index: int = 0,
    log_index: int = 0,
    liquidity: int = 0,
    amount0: int = 0,
    amount1: int = 0,
    ts: datetime | None = None,
    nft_id: int = NFT_ID,
    tx_hash: str | None = None,
) -> RawPositionEvent:
    match kind:
        case "increase":
            payload = RawEventPayloads.IncreaseLiquidity(liquidity=liquidity, amount0=amount0, amount1=amount1)
        case "decrease":
            payload = RawEventPayloads.DecreaseLiquidity(liquidity=liquidity, amount0=amount0, amount1=amount1)
        case _:
            payload = RawEventPayloads.Collect(recipient="0x" + "11" * 20, amount0=amount0, amount1=amount1)
    return RawPositionEvent(
        chain_id=CHAIN_ID,
        nft_id=nft_id,
        block_number=block,
        tx_index=tx_index,
        log_index=log_index,
        tx_hash=tx_hash or f"0x{block:08x}{tx_index:04x}".ljust(66, "0"),
        block_timestamp=ts or block_time(block),
        payload=payload,
    )


class FakeChain:
    """Events, finality, prices and pool metadata served from memory."""

    def __init__(self, pool: PoolMetadata, finalized: int | None = 1_000) -> None:
        self.pool = pool
        self.finalized = finalized
        self.events: list[RawPositionEvent] = []
        self.prices: dict[int, int] = {}
        self.default_sqrt_price = SQRT_PRICE_2500
        self.fail_price_at: int | None = None
        self.fetch_calls: list[tuple[int, int]] = []

    async def fetch_position_events(self, chain_id, nft_id, *, from_block, to_block):
        self.fetch_calls.append((from_block, to_block))
        await asyncio.sleep(0)
        return [
            e
            for e in self.events
            if e.chain_id == chain_id and e.nft_id == nft_id and from_block <= e.block_number <= to_block
        ]

    async def get_last_finalized_block_number(self, chain_id):
        return self.finalized

    async def get_historic_pool_price(self, pool, block_number):
        if self.fail_price_at == block_number:
            raise CollaboratorError(f"price source down at block {block_number}")
        return HistoricPoolPrice(
            sqrt_price_x96=self.prices.get(block_number, self.default_sqrt_price),
            timestamp=block_time(block_number),
            block_number=block_number,
        )

    async def get_pool_metadata(self, position_id):
        return self.pool


@pytest.fixture
def mock_rpc():
    rpc = AsyncMock()
    rpc.get_logs = AsyncMock(return_value=[])
    rpc.latest_block = AsyncMock(return_value=100)
    rpc.block_number_by_tag = AsyncMock(return_value=90)
    rpc.block_timestamp = AsyncMock(return_value=1_700_000_000)
    rpc.eth_call = AsyncMock(return_value=b"")
    rpc.aclose = AsyncMock()
    return rpc


@pytest.fixture
def pool() -> PoolMetadata:
    return PoolMetadata(
        pool_id="0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640",
        chain_id=CHAIN_ID,
        token0=USDC,
        token1=WETH,
        token0_is_quote=True,
        fee=500,
    )


@pytest.fixture
def chain_config() -> ChainConfig:
    return ChainConfig(
        chain_id=CHAIN_ID,
        name="ethereum",
        rpc_url="http://localhost:8545",
        nfpm_address="0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
        factory_address="0x1F98431c8aD98523631AE4a59f267346ea31F984",
        nfpm_deployment_block=DEPLOYMENT_BLOCK,
    )


@pytest.fixture
def fake_chain(pool: PoolMetadata) -> FakeChain:
    return FakeChain(pool)


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def sync_service(chain_config: ChainConfig, fake_chain: FakeChain, store: InMemoryLedgerStore) -> LedgerSyncService:
    return LedgerSyncService(
        chains={CHAIN_ID: chain_config},
        events=fake_chain,
        finality=fake_chain,
        prices=fake_chain,
        pools=fake_chain,
        ledger=store,
        sync_states=store,
        apr=AprPeriodService(ledger=store, periods=store),
    )
