"""Exact integer arithmetic for position valuation and accounting.

Prices come from the pool's ``sqrtPriceX96`` (a Q64.96 fixed-point square
root of ``token1/token0`` in raw units). Every division is an integer floor
division; nothing here touches ``float``.
"""

from __future__ import annotations

from dataclasses import dataclass

from lpledger.constants import Q192
from lpledger.core.errors import LedgerConsistencyError


def price_token0_in_token1(sqrt_price_x96: int, token0_decimals: int) -> int:
    """Raw token1 units paid for one whole token0."""
    return sqrt_price_x96 * sqrt_price_x96 * 10**token0_decimals // Q192


def price_token1_in_token0(sqrt_price_x96: int, token1_decimals: int) -> int:
    """Raw token0 units paid for one whole token1."""
    return Q192 * 10**token1_decimals // (sqrt_price_x96 * sqrt_price_x96)


def pool_price_in_quote(
    sqrt_price_x96: int,
    token0_is_quote: bool,
    token0_decimals: int,
    token1_decimals: int,
) -> int:
    """Price of one whole base token, expressed in raw quote units."""
    if sqrt_price_x96 <= 0:
        raise LedgerConsistencyError(f"Invalid sqrtPriceX96: {sqrt_price_x96}")
    if token0_is_quote:
        return price_token1_in_token0(sqrt_price_x96, token1_decimals)
    return price_token0_in_token1(sqrt_price_x96, token0_decimals)


def token_value_in_quote(
    amount0: int,
    amount1: int,
    sqrt_price_x96: int,
    token0_is_quote: bool,
    token0_decimals: int,
    token1_decimals: int,
) -> int:
    """Total value of ``(amount0, amount1)`` in raw quote-token units."""
    price = pool_price_in_quote(sqrt_price_x96, token0_is_quote, token0_decimals, token1_decimals)
    if token0_is_quote:
        return amount0 + amount1 * price // 10**token1_decimals
    return amount1 + amount0 * price // 10**token0_decimals


def proportional_cost_basis(cost_basis: int, delta_liquidity: int, liquidity: int) -> int:
    """Share of ``cost_basis`` attributable to ``delta_liquidity`` out of ``liquidity``."""
    if delta_liquidity < 0:
        raise LedgerConsistencyError(f"Negative liquidity delta: {delta_liquidity}")
    if delta_liquidity == 0:
        return 0
    if liquidity == 0:
        raise LedgerConsistencyError("Cannot remove liquidity from an empty position")
    if delta_liquidity > liquidity:
        raise LedgerConsistencyError(
            f"Liquidity delta {delta_liquidity} exceeds current liquidity {liquidity}"
        )
    return cost_basis * delta_liquidity // liquidity


# ---- Fee / principal allocation ----


@dataclass(slots=True, frozen=True)
class FeeSeparation:
    """Per-token split of a collected amount into principal and fee."""

    principal_amount0: int
    principal_amount1: int
    fee_amount0: int
    fee_amount1: int


def separate_fees_from_principal(
    amount0: int,
    amount1: int,
    uncollected_principal0: int,
    uncollected_principal1: int,
) -> FeeSeparation:
    """Split withdrawn amounts into principal owed from prior decreases and fees.

    For each token the principal portion is ``min(withdrawn, uncollected)`` and
    the remainder is fee, so ``principal + fee == withdrawn`` always holds.
    """
    if amount0 < 0 or amount1 < 0:
        raise LedgerConsistencyError(f"Collected amounts cannot be negative: {amount0}, {amount1}")
    if uncollected_principal0 < 0 or uncollected_principal1 < 0:
        raise LedgerConsistencyError(
            f"Uncollected principal cannot be negative: {uncollected_principal0}, {uncollected_principal1}"
        )
    principal0 = min(amount0, uncollected_principal0)
    principal1 = min(amount1, uncollected_principal1)
    return FeeSeparation(
        principal_amount0=principal0,
        principal_amount1=principal1,
        fee_amount0=amount0 - principal0,
        fee_amount1=amount1 - principal1,
    )
