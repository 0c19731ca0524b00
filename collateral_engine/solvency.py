"""
solvency.py - Health Factor and Liquidation Arithmetic

This module defines the solvency rules of the engine using the same split the
rest of the package follows:

1. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - No ledger, no oracle, no hidden state
   - Example: calculate_health_factor(minted_debt, collateral_usd) -> int

2. SolvencyCalculator:
   - Reads the PositionLedger and ValuationService once per call
   - Delegates to the pure functions
   - Raises HealthFactorBroken when a position is below the minimum

Key Formulas:
    adjusted_collateral = collateral_usd * LIQUIDATION_THRESHOLD / LIQUIDATION_PRECISION
    health_factor       = adjusted_collateral * 1e18 / minted_debt   (MAX if no debt)
    collateral_to_seize = debt_in_collateral * (1 + LIQUIDATION_BONUS / LIQUIDATION_PRECISION)
"""

from __future__ import annotations
import logging
from typing import Mapping, Optional

from .core import (
    PRECISION, LIQUIDATION_THRESHOLD, LIQUIDATION_BONUS, LIQUIDATION_PRECISION,
    MIN_HEALTH_FACTOR, MAX_HEALTH_FACTOR,
    HealthFactorBroken, AccountInformation,
    mul_div, format_units,
)
from .positions import PositionLedger
from .valuation import ValuationService

logger = logging.getLogger(__name__)


# ============================================================================
# PURE CALCULATION FUNCTIONS - All Inputs Explicit
# ============================================================================

def calculate_health_factor(total_debt_minted: int, collateral_value_in_usd: int) -> int:
    """
    Health factor of a position, 18-decimal fixed point.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Returns MAX_HEALTH_FACTOR when there is no debt: a position without debt
    is always solvent regardless of its collateral.

    Example:
        # $30,000 of collateral against 1,000 debt -> 15.0
        calculate_health_factor(1000 * 10**18, 30_000 * 10**18) == 15 * 10**18
    """
    if total_debt_minted == 0:
        return MAX_HEALTH_FACTOR
    collateral_adjusted_for_threshold = mul_div(
        collateral_value_in_usd, LIQUIDATION_THRESHOLD, LIQUIDATION_PRECISION
    )
    return mul_div(collateral_adjusted_for_threshold, PRECISION, total_debt_minted)


def calculate_liquidation_bonus(debt_in_collateral: int) -> int:
    """Bonus collateral paid to a liquidator on top of the debt-equivalent amount."""
    return mul_div(debt_in_collateral, LIQUIDATION_BONUS, LIQUIDATION_PRECISION)


def calculate_collateral_to_seize(debt_in_collateral: int) -> int:
    """
    Total collateral a liquidator receives for covering debt worth
    debt_in_collateral units of the collateral asset.

    PURE FUNCTION - All inputs explicit, no hidden state.
    """
    return debt_in_collateral + calculate_liquidation_bonus(debt_in_collateral)


def is_solvent(health_factor: int) -> bool:
    return health_factor >= MIN_HEALTH_FACTOR


def calculate_max_mintable(collateral_value_in_usd: int, total_debt_minted: int) -> int:
    """
    Additional debt a position can mint while staying at or above the minimum.

    Returns 0 if the position is already at or below its limit.
    """
    capacity = mul_div(collateral_value_in_usd, LIQUIDATION_THRESHOLD, LIQUIDATION_PRECISION)
    return max(0, capacity - total_debt_minted)


# ============================================================================
# SOLVENCY CALCULATOR - Ledger-backed
# ============================================================================

class SolvencyCalculator:
    """
    Computes health factors from current ledger state and enforces the minimum.

    Every call re-reads balances and re-prices collateral; nothing is cached.
    """

    def __init__(self, positions: PositionLedger, valuation: ValuationService):
        self.positions = positions
        self.valuation = valuation

    def get_account_information(self, user: str) -> AccountInformation:
        """Minted debt and total collateral USD value of user."""
        return AccountInformation(
            total_debt_minted=self.positions.get_minted_debt(user),
            collateral_value_in_usd=self.valuation.total_collateral_usd(
                self.positions.get_collateral_balances(user)
            ),
        )

    def health_factor(self, user: str) -> int:
        """
        Current health factor of user.

        A user without debt is reported at MAX_HEALTH_FACTOR without pricing
        collateral.
        """
        if self.positions.get_minted_debt(user) == 0:
            return MAX_HEALTH_FACTOR
        info = self.get_account_information(user)
        return calculate_health_factor(info.total_debt_minted, info.collateral_value_in_usd)

    def assert_solvent(self, user: str) -> int:
        """
        Raise HealthFactorBroken if user is below MIN_HEALTH_FACTOR.

        Returns:
            The health factor that passed the check
        """
        health_factor = self.health_factor(user)
        if not is_solvent(health_factor):
            logger.debug("Health factor broken for %s: %s", user, format_units(health_factor))
            raise HealthFactorBroken(health_factor, user)
        return health_factor

    def collateral_to_seize(self, asset: str, debt_to_cover: int) -> int:
        """Collateral of asset (including bonus) owed to a liquidator covering debt_to_cover."""
        debt_in_collateral = self.valuation.token_amount_for_usd(asset, debt_to_cover)
        return calculate_collateral_to_seize(debt_in_collateral)

    def projected_health_factor(self, user: str, debt_delta: int = 0,
                                collateral_delta: Optional[Mapping[str, int]] = None) -> int:
        """
        Health factor user would have after adding debt_delta to their debt and
        collateral_delta (asset -> signed amount) to their collateral.

        Raises:
            ValueError: If a delta would make a balance negative
        """
        debt = self.positions.get_minted_debt(user) + debt_delta
        if debt < 0:
            raise ValueError(f"Projected debt is negative: {debt}")
        balances = self.positions.get_collateral_balances(user)
        for asset, delta in (collateral_delta or {}).items():
            balances[asset] = balances.get(asset, 0) + delta
            if balances[asset] < 0:
                raise ValueError(f"Projected {asset} collateral is negative: {balances[asset]}")
        if debt == 0:
            return MAX_HEALTH_FACTOR
        return calculate_health_factor(debt, self.valuation.total_collateral_usd(balances))

    def max_mintable(self, user: str) -> int:
        info = self.get_account_information(user)
        return calculate_max_mintable(info.collateral_value_in_usd, info.total_debt_minted)
