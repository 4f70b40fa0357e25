"""RPC-backed implementations of the ledger engine's collaborator interfaces.

- `RpcPositionEventsProvider`: NFPM logs filtered by tokenId, decoded into
  `RawPositionEvent`.
- `RpcFinalityProvider`: ``finalized`` block tag or a confirmation depth.
- `RpcPoolPriceProvider`: ``slot0()`` at a historic block.
- `RpcPoolMetadataProvider`: NFPM ``positions`` → factory ``getPool`` →
  ERC-20 ``decimals``/``symbol``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime

from eth_utils import to_checksum_address

from lpledger import constants
from lpledger.clients.rpc import RPC, encode_address, encode_uint, pad_topic
from lpledger.core.config import ChainConfig
from lpledger.core.errors import CollaboratorError, NotFoundError
from lpledger.core.models import (
    HistoricPoolPrice,
    PoolMetadata,
    RawPositionEvent,
    TokenInfo,
    utc_from_timestamp,
)
from lpledger.decoding.decoder import decode_log, parse_data_word, to_raw_position_event, word_at
from lpledger.decoding.registry import make_nfpm_registry
from lpledger.decoding.specs import EventRegistry, registry_topic0s

logger = logging.getLogger(__name__)


def iter_chunks(a: int, b: int, step: int):
    """Yield inclusive [start, end] sub-ranges of at most ``step`` blocks."""
    x = a
    while x <= b:
        y = min(b, x + step - 1)
        yield x, y
        x = y + 1


class _ChainRpcs:
    def __init__(self, rpcs: Mapping[int, RPC]) -> None:
        self._rpcs = dict(rpcs)

    def rpc(self, chain_id: int) -> RPC:
        try:
            return self._rpcs[chain_id]
        except KeyError:
            raise NotFoundError(f"No RPC endpoint configured for chain {chain_id}") from None


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class RpcPositionEventsProvider(_ChainRpcs):
    """Fetches NFPM events for one tokenId with chunked, bounded-concurrency getLogs."""

    def __init__(
        self,
        rpcs: Mapping[int, RPC],
        chains: Mapping[int, ChainConfig],
        *,
        registry: EventRegistry | None = None,
        step: int = 50_000,
        concurrency: int = 4,
    ) -> None:
        super().__init__(rpcs)
        self._chains = dict(chains)
        self._registry = registry or make_nfpm_registry()
        self._step = step
        self._concurrency = concurrency

    async def fetch_position_events(
        self,
        chain_id: int,
        nft_id: int,
        *,
        from_block: int,
        to_block: int,
    ) -> list[RawPositionEvent]:
        rpc = self.rpc(chain_id)
        chain = self._chains.get(chain_id)
        if chain is None:
            raise NotFoundError(f"Unsupported chain {chain_id}")
        topics = [registry_topic0s(self._registry), pad_topic(nft_id)]
        sem = asyncio.Semaphore(self._concurrency)
        # block timestamps seen during this fetch
        timestamps: dict[int, datetime] = {}

        async def block_time(block_number: int, hint: int | None) -> datetime:
            ts = timestamps.get(block_number)
            if ts is None:
                ts = utc_from_timestamp(hint if hint is not None else await rpc.block_timestamp(block_number))
                timestamps[block_number] = ts
            return ts

        async def worker(a: int, b: int) -> list[RawPositionEvent]:
            async with sem:
                logs = await rpc.get_logs(address=chain.nfpm_address, topics=topics, from_block=a, to_block=b)
            out: list[RawPositionEvent] = []
            for log in logs:
                if log.removed:
                    continue
                decoded = decode_log(log, self._registry)
                if decoded is None:
                    continue
                ts = await block_time(log.block_number, log.block_timestamp)
                raw = to_raw_position_event(decoded, chain_id=chain_id, block_timestamp=ts)
                if raw is not None and raw.nft_id == nft_id:
                    out.append(raw)
            return out

        chunks = await asyncio.gather(*(worker(a, b) for a, b in iter_chunks(from_block, to_block, self._step)))
        events = [ev for chunk in chunks for ev in chunk]
        logger.debug(
            "Fetched NFPM events chain_id=%d nft_id=%d from_block=%d to_block=%d count=%d",
            chain_id,
            nft_id,
            from_block,
            to_block,
            len(events),
        )
        return events


# ---------------------------------------------------------------------------
# Finality
# ---------------------------------------------------------------------------


class RpcFinalityProvider(_ChainRpcs):
    def __init__(self, rpcs: Mapping[int, RPC], chains: Mapping[int, ChainConfig]) -> None:
        super().__init__(rpcs)
        self._chains = dict(chains)

    async def get_last_finalized_block_number(self, chain_id: int) -> int | None:
        chain = self._chains.get(chain_id)
        if chain is None:
            raise NotFoundError(f"Unsupported chain {chain_id}")
        rpc = self.rpc(chain_id)
        if chain.finality.type == "blockTag":
            return await rpc.block_number_by_tag("finalized")
        finalized = await rpc.latest_block() - chain.finality.min_block_height
        return finalized if finalized >= 0 else None


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


class RpcPoolPriceProvider(_ChainRpcs):
    """Reads ``slot0().sqrtPriceX96`` of the pool at a block."""

    async def get_historic_pool_price(self, pool: PoolMetadata, block_number: int) -> HistoricPoolPrice:
        rpc = self.rpc(pool.chain_id)
        raw = await rpc.eth_call(to=pool.pool_id, data=constants.SLOT0_SELECTOR, block_number=block_number)
        if len(raw) < 32:
            raise CollaboratorError(f"Empty slot0 response for pool {pool.pool_id} at block {block_number}")
        sqrt_price_x96 = parse_data_word(word_at(raw, 0), "uint160")
        ts = await rpc.block_timestamp(block_number)
        return HistoricPoolPrice(
            sqrt_price_x96=sqrt_price_x96,
            timestamp=utc_from_timestamp(ts),
            block_number=block_number,
        )


# ---------------------------------------------------------------------------
# Pool metadata
# ---------------------------------------------------------------------------


def decode_abi_string(raw: bytes) -> str:
    """Decode an ABI string return value, tolerating legacy ``bytes32`` symbols."""
    if len(raw) == 32:
        return raw.rstrip(b"\x00").decode("utf-8", errors="replace")
    if len(raw) < 64:
        return ""
    offset = int.from_bytes(word_at(raw, 0), "big")
    length = int.from_bytes(raw[offset : offset + 32], "big")
    return raw[offset + 32 : offset + 32 + length].decode("utf-8", errors="replace")


def pick_token0_is_quote(token0: str, token1: str, quote_tokens: tuple[str, ...]) -> bool:
    """True if token0 is the preferred quote token; token1 is the default quote."""
    t0, t1 = token0.lower(), token1.lower()
    for candidate in quote_tokens:
        c = candidate.lower()
        if c == t0:
            return True
        if c == t1:
            return False
    return False


class RpcPoolMetadataProvider(_ChainRpcs):
    """Resolves a position's pool from chain state.

    ``positions`` maps position ids to ``(chain_id, nft_id)``.
    """

    def __init__(
        self,
        rpcs: Mapping[int, RPC],
        chains: Mapping[int, ChainConfig],
        positions: Mapping[str, tuple[int, int]],
    ) -> None:
        super().__init__(rpcs)
        self._chains = dict(chains)
        self._positions = dict(positions)
        self._cache: dict[str, PoolMetadata] = {}

    def register(self, position_id: str, chain_id: int, nft_id: int) -> None:
        self._positions[position_id] = (chain_id, nft_id)

    async def _token(self, rpc: RPC, address: str) -> TokenInfo:
        decimals_raw, symbol_raw = await asyncio.gather(
            rpc.eth_call(to=address, data=constants.DECIMALS_SELECTOR),
            rpc.eth_call(to=address, data=constants.SYMBOL_SELECTOR),
        )
        return TokenInfo(
            address=to_checksum_address(address),
            symbol=decode_abi_string(symbol_raw),
            decimals=int.from_bytes(word_at(decimals_raw, 0), "big"),
        )

    async def get_pool_metadata(self, position_id: str) -> PoolMetadata:
        cached = self._cache.get(position_id)
        if cached is not None:
            return cached
        try:
            chain_id, nft_id = self._positions[position_id]
        except KeyError:
            raise NotFoundError(f"Unknown position {position_id}") from None
        chain = self._chains.get(chain_id)
        if chain is None:
            raise NotFoundError(f"Unsupported chain {chain_id}")
        rpc = self.rpc(chain_id)

        pos = await rpc.eth_call(to=chain.nfpm_address, data=constants.POSITIONS_SELECTOR + encode_uint(nft_id))
        if len(pos) < 32 * 5:
            raise NotFoundError(f"NFPM has no position {nft_id} on chain {chain_id}")
        token0 = parse_data_word(word_at(pos, 2), "address")
        token1 = parse_data_word(word_at(pos, 3), "address")
        fee = parse_data_word(word_at(pos, 4), "uint24")

        pool_raw = await rpc.eth_call(
            to=chain.factory_address,
            data=constants.GET_POOL_SELECTOR + encode_address(token0) + encode_address(token1) + encode_uint(fee),
        )
        pool_address = parse_data_word(word_at(pool_raw, 0), "address")
        if int(pool_address, 16) == 0:
            raise NotFoundError(f"No pool for {token0}/{token1} fee {fee} on chain {chain_id}")

        t0, t1 = await asyncio.gather(self._token(rpc, token0), self._token(rpc, token1))
        meta = PoolMetadata(
            pool_id=to_checksum_address(pool_address),
            chain_id=chain_id,
            token0=t0,
            token1=t1,
            token0_is_quote=pick_token0_is_quote(token0, token1, chain.quote_tokens),
            fee=fee,
        )
        self._cache[position_id] = meta
        logger.info(
            "Resolved pool position_id=%s pool=%s pair=%s/%s quote=%s",
            position_id,
            meta.pool_id,
            t0.symbol,
            t1.symbol,
            meta.quote_token.symbol,
        )
        return meta
