"""Replay one raw event against the previous ledger state.

`build_ledger_event` is pure: given the previous ledger event (or None), one
normalized raw event, the pool metadata and the historic ``sqrtPriceX96`` at
the event's block, it returns the next immutable `LedgerEvent`.

Transitions
-----------
- IncreaseLiquidity: liquidity grows, the deposit's quote value is added to
  the cost basis. PnL and uncollected principal are untouched.
- DecreaseLiquidity: liquidity shrinks, the proportional share of the cost
  basis is realized against the quote value received, and the withdrawn
  amounts become uncollected principal.
- Collect: amounts are split into principal and fees; principal reduces the
  uncollected balance, fees become rewards. Cost basis and PnL are untouched.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass

from lpledger.core.errors import LedgerConsistencyError
from lpledger.core.ledger_math import (
    pool_price_in_quote,
    proportional_cost_basis,
    separate_fees_from_principal,
    token_value_in_quote,
)
from lpledger.core.models import (
    LedgerEvent,
    LedgerEventType,
    LedgerState,
    PoolMetadata,
    RawEventPayloads,
    RawPositionEvent,
    Reward,
)

LEDGER_NAMESPACE = uuid.UUID("6f1b7a52-3c1e-4b0f-9b7e-5d2f1c9a8e40")


def generate_input_hash(block_number: int, tx_index: int, log_index: int) -> str:
    """MD5 hex digest of ``"{block}-{tx_index}-{log_index}"``."""
    return hashlib.md5(f"{block_number}-{tx_index}-{log_index}".encode()).hexdigest()


def ledger_event_id(position_id: str, input_hash: str) -> str:
    return str(uuid.uuid5(LEDGER_NAMESPACE, f"{position_id}:{input_hash}"))


@dataclass(slots=True, frozen=True)
class _Transition:
    event_type: LedgerEventType
    delta_liquidity: int
    after: LedgerState
    delta_cost_basis: int = 0
    delta_pnl: int = 0
    fees_collected0: int = 0
    fees_collected1: int = 0
    rewards: tuple[Reward, ...] = ()


def _value(amount0: int, amount1: int, sqrt_price_x96: int, pool: PoolMetadata) -> int:
    return token_value_in_quote(
        amount0,
        amount1,
        sqrt_price_x96,
        pool.token0_is_quote,
        pool.token0.decimals,
        pool.token1.decimals,
    )


def _increase(
    prev: LedgerState, payload: RawEventPayloads.IncreaseLiquidity, sqrt_price_x96: int, pool: PoolMetadata
) -> _Transition:
    if payload.liquidity < 0 or payload.amount0 < 0 or payload.amount1 < 0:
        raise LedgerConsistencyError("IncreaseLiquidity carries negative values")
    deposit_value = _value(payload.amount0, payload.amount1, sqrt_price_x96, pool)
    return _Transition(
        event_type="INCREASE_POSITION",
        delta_liquidity=payload.liquidity,
        delta_cost_basis=deposit_value,
        after=LedgerState(
            liquidity=prev.liquidity + payload.liquidity,
            cost_basis=prev.cost_basis + deposit_value,
            pnl=prev.pnl,
            uncollected_principal0=prev.uncollected_principal0,
            uncollected_principal1=prev.uncollected_principal1,
        ),
    )


def _decrease(
    prev: LedgerState, payload: RawEventPayloads.DecreaseLiquidity, sqrt_price_x96: int, pool: PoolMetadata
) -> _Transition:
    if payload.amount0 < 0 or payload.amount1 < 0:
        raise LedgerConsistencyError("DecreaseLiquidity carries negative amounts")
    realized_basis = proportional_cost_basis(prev.cost_basis, payload.liquidity, prev.liquidity)
    received_value = _value(payload.amount0, payload.amount1, sqrt_price_x96, pool)
    delta_pnl = received_value - realized_basis
    return _Transition(
        event_type="DECREASE_POSITION",
        delta_liquidity=payload.liquidity,
        delta_cost_basis=-realized_basis,
        delta_pnl=delta_pnl,
        after=LedgerState(
            liquidity=prev.liquidity - payload.liquidity,
            cost_basis=prev.cost_basis - realized_basis,
            pnl=prev.pnl + delta_pnl,
            uncollected_principal0=prev.uncollected_principal0 + payload.amount0,
            uncollected_principal1=prev.uncollected_principal1 + payload.amount1,
        ),
    )


def _collect(
    prev: LedgerState, payload: RawEventPayloads.Collect, sqrt_price_x96: int, pool: PoolMetadata
) -> _Transition:
    split = separate_fees_from_principal(
        payload.amount0,
        payload.amount1,
        prev.uncollected_principal0,
        prev.uncollected_principal1,
    )
    rewards: list[Reward] = []
    if split.fee_amount0 > 0:
        rewards.append(
            Reward(
                token_id=pool.token0.address,
                token_amount=split.fee_amount0,
                token_value=_value(split.fee_amount0, 0, sqrt_price_x96, pool),
            )
        )
    if split.fee_amount1 > 0:
        rewards.append(
            Reward(
                token_id=pool.token1.address,
                token_amount=split.fee_amount1,
                token_value=_value(0, split.fee_amount1, sqrt_price_x96, pool),
            )
        )
    return _Transition(
        event_type="COLLECT",
        delta_liquidity=0,
        fees_collected0=split.fee_amount0,
        fees_collected1=split.fee_amount1,
        rewards=tuple(rewards),
        after=LedgerState(
            liquidity=prev.liquidity,
            cost_basis=prev.cost_basis,
            pnl=prev.pnl,
            uncollected_principal0=prev.uncollected_principal0 - split.principal_amount0,
            uncollected_principal1=prev.uncollected_principal1 - split.principal_amount1,
        ),
    )


def _check_non_negative(state: LedgerState, raw: RawPositionEvent) -> None:
    for name in ("liquidity", "cost_basis", "uncollected_principal0", "uncollected_principal1"):
        value = getattr(state, name)
        if value < 0:
            raise LedgerConsistencyError(
                f"{name} would become negative ({value}) at block {raw.block_number} "
                f"tx {raw.tx_index} log {raw.log_index}"
            )


def build_ledger_event(
    *,
    position_id: str,
    raw_event: RawPositionEvent,
    previous: LedgerEvent | None,
    pool: PoolMetadata,
    sqrt_price_x96: int,
) -> LedgerEvent:
    """Produce the ledger entry that follows ``previous`` for ``raw_event``.

    Raises
    ------
    LedgerConsistencyError
        If the price is not positive, the event would move liquidity, cost
        basis or uncollected principal below zero, or it does not follow
        ``previous`` in chain order.
    """
    if sqrt_price_x96 <= 0:
        raise LedgerConsistencyError(
            f"Missing or invalid historic price at block {raw_event.block_number}: {sqrt_price_x96}"
        )
    if previous is not None and raw_event.coordinates <= previous.coordinates:
        raise LedgerConsistencyError(
            f"Event {raw_event.coordinates} does not follow previous ledger event {previous.coordinates}"
        )

    prev_state = LedgerState.from_event(previous)
    payload = raw_event.payload
    match payload:
        case RawEventPayloads.IncreaseLiquidity():
            transition = _increase(prev_state, payload, sqrt_price_x96, pool)
        case RawEventPayloads.DecreaseLiquidity():
            transition = _decrease(prev_state, payload, sqrt_price_x96, pool)
        case RawEventPayloads.Collect():
            transition = _collect(prev_state, payload, sqrt_price_x96, pool)
        case _:
            raise LedgerConsistencyError(f"Unsupported payload: {payload!r}")

    after = transition.after
    _check_non_negative(after, raw_event)

    input_hash = generate_input_hash(raw_event.block_number, raw_event.tx_index, raw_event.log_index)
    return LedgerEvent(
        id=ledger_event_id(position_id, input_hash),
        position_id=position_id,
        previous_id=previous.id if previous is not None else None,
        chain_id=raw_event.chain_id,
        nft_id=raw_event.nft_id,
        block_number=raw_event.block_number,
        tx_index=raw_event.tx_index,
        log_index=raw_event.log_index,
        tx_hash=raw_event.tx_hash,
        timestamp=raw_event.block_timestamp,
        event_type=transition.event_type,
        delta_liquidity=transition.delta_liquidity,
        liquidity_after=after.liquidity,
        delta_cost_basis=transition.delta_cost_basis,
        cost_basis_after=after.cost_basis,
        delta_pnl=transition.delta_pnl,
        pnl_after=after.pnl,
        uncollected_principal0_after=after.uncollected_principal0,
        uncollected_principal1_after=after.uncollected_principal1,
        fees_collected0=transition.fees_collected0,
        fees_collected1=transition.fees_collected1,
        token0_amount=payload.amount0,
        token1_amount=payload.amount1,
        token_value=_value(payload.amount0, payload.amount1, sqrt_price_x96, pool),
        sqrt_price_x96=sqrt_price_x96,
        pool_price=pool_price_in_quote(
            sqrt_price_x96, pool.token0_is_quote, pool.token0.decimals, pool.token1.decimals
        ),
        rewards=transition.rewards,
        state=payload,
        input_hash=input_hash,
    )
