"""Unit tests for integer valuation and fee/principal allocation."""

import pytest
from conftest import SQRT_PRICE_1600, SQRT_PRICE_2500

from lpledger.constants import Q192
from lpledger.core.errors import LedgerConsistencyError
from lpledger.core.ledger_math import (
    pool_price_in_quote,
    price_token0_in_token1,
    proportional_cost_basis,
    separate_fees_from_principal,
    token_value_in_quote,
)


class TestSeparateFeesFromPrincipal:
    """Principal is capped by the uncollected balance; the rest is fee."""

    def test_all_principal(self):
        split = separate_fees_from_principal(100, 50, 100, 50)
        assert (split.principal_amount0, split.principal_amount1) == (100, 50)
        assert (split.fee_amount0, split.fee_amount1) == (0, 0)

    def test_all_fees_without_uncollected_principal(self):
        split = separate_fees_from_principal(7, 3, 0, 0)
        assert (split.principal_amount0, split.principal_amount1) == (0, 0)
        assert (split.fee_amount0, split.fee_amount1) == (7, 3)

    def test_mixed_per_token(self):
        split = separate_fees_from_principal(150, 20, 100, 50)
        assert (split.principal_amount0, split.fee_amount0) == (100, 50)
        assert (split.principal_amount1, split.fee_amount1) == (20, 0)

    @pytest.mark.parametrize(
        "amounts",
        [(0, 0, 0, 0), (1, 2**200, 5, 2**199), (10**30, 1, 10**31, 0), (3, 3, 2, 4)],
    )
    def test_conservation(self, amounts):
        a0, a1, u0, u1 = amounts
        split = separate_fees_from_principal(a0, a1, u0, u1)
        assert split.principal_amount0 + split.fee_amount0 == a0
        assert split.principal_amount1 + split.fee_amount1 == a1
        assert min(split.principal_amount0, split.principal_amount1, split.fee_amount0, split.fee_amount1) >= 0

    def test_negative_amount_rejected(self):
        with pytest.raises(LedgerConsistencyError):
            separate_fees_from_principal(-1, 0, 0, 0)


class TestValuation:
    def test_price_of_base_in_quote_when_token0_is_quote(self):
        assert pool_price_in_quote(SQRT_PRICE_2500, True, 6, 18) == 2_500_000_000
        assert pool_price_in_quote(SQRT_PRICE_1600, True, 6, 18) == 1_600_000_000

    def test_price_token0_in_token1_at_unit_price(self):
        assert price_token0_in_token1(2**96, 0) == 1
        assert price_token0_in_token1(2**96 * 3, 0) == 9

    def test_value_adds_quote_amount_and_converted_base_amount(self):
        value = token_value_in_quote(2_500_000_000, 10**18, SQRT_PRICE_2500, True, 6, 18)
        assert value == 5_000_000_000

    def test_value_when_token1_is_quote(self):
        # price 4 token1 per token0, no decimals
        assert token_value_in_quote(5, 7, 2 * 2**96, False, 0, 0) == 27

    def test_value_floors(self):
        assert token_value_in_quote(0, 1, SQRT_PRICE_2500, True, 6, 18) == 0

    def test_non_positive_price_rejected(self):
        with pytest.raises(LedgerConsistencyError):
            pool_price_in_quote(0, True, 6, 18)

    def test_q192(self):
        assert Q192 == (2**96) ** 2


class TestProportionalCostBasis:
    def test_half(self):
        assert proportional_cost_basis(5_000, 500, 1_000) == 2_500

    def test_floors(self):
        assert proportional_cost_basis(10, 1, 3) == 3

    def test_full_withdrawal_releases_everything(self):
        assert proportional_cost_basis(12_345, 77, 77) == 12_345

    def test_zero_delta(self):
        assert proportional_cost_basis(100, 0, 0) == 0

    @pytest.mark.parametrize("delta, liquidity", [(1, 0), (11, 10), (-1, 10)])
    def test_invalid(self, delta, liquidity):
        with pytest.raises(LedgerConsistencyError):
            proportional_cost_basis(100, delta, liquidity)
