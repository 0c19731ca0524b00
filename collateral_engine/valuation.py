"""
valuation.py - USD valuation of collateral

Converts token amounts to and from 18-decimal USD using canonical oracle
prices, and sums a user's collateral across every registered asset.

Formulas (all divisions truncate toward zero):
    usd_value            = amount * price / 1e18
    token_amount_for_usd = usd * 1e18 / price
"""

from __future__ import annotations
from typing import Mapping

from .core import PRECISION, InvalidPrice, mul_div
from .oracle import PriceOracleAdapter


def calculate_usd_value(amount: int, canonical_price: int) -> int:
    """
    USD value (18 decimals) of amount at an 18-decimal price.

    PURE FUNCTION - All inputs explicit, no hidden state.
    """
    return mul_div(canonical_price, amount, PRECISION)


def calculate_token_amount(usd_amount: int, canonical_price: int) -> int:
    """
    Token amount worth usd_amount at an 18-decimal price.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Raises:
        InvalidPrice: If the price is zero
    """
    if canonical_price == 0:
        raise InvalidPrice("Cannot convert USD to a token priced at zero")
    return mul_div(usd_amount, PRECISION, canonical_price)


class ValuationService:
    """Prices token amounts through a PriceOracleAdapter."""

    def __init__(self, oracle: PriceOracleAdapter):
        self.oracle = oracle

    @property
    def registry(self):
        return self.oracle.registry

    def usd_value(self, asset: str, amount: int) -> int:
        return calculate_usd_value(amount, self.oracle.get_canonical_price(asset))

    def token_amount_for_usd(self, asset: str, usd_amount: int) -> int:
        return calculate_token_amount(usd_amount, self.oracle.get_canonical_price(asset))

    def total_collateral_usd(self, balances: Mapping[str, int]) -> int:
        """
        Sum the USD value of balances over every registered asset.

        Iterates the registry's fixed asset order; assets missing from balances
        contribute zero but are still priced, so a stale feed fails the sum.
        """
        total = 0
        for asset in self.registry.assets:
            total += self.usd_value(asset, balances.get(asset, 0))
        return total
