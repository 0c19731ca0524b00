"""
liquidation.py - Third-party liquidation

A liquidator repays part of an under-collateralized user's debt and receives
the equivalent collateral plus a 10% bonus. The controller holds no state of
its own between calls; it composes PositionLedger.withdraw and
PositionLedger.burn and re-checks health at the end.

Call sequence:
    1. debt_to_cover must be positive
    2. target must be below MIN_HEALTH_FACTOR, else HealthFactorOk
    3. seize = token_amount_for_usd(asset, debt_to_cover) * 110%
    4. withdraw seize from target to liquidator (no intermediate check)
    5. burn debt_to_cover: liquidator pays, target's debt shrinks
    6. target must end strictly above MIN_HEALTH_FACTOR, else HealthFactorNotImproved
    7. liquidator must be solvent

When aggregate collateral value has fallen to or below the outstanding debt,
seizing a bonus cannot restore the target's health; such liquidations fail at
step 6 (or on insufficient collateral at step 4). This is a known limitation.

Run the sequence inside PositionLedger.atomic() (the engine does) so a failure
at step 6 or 7 discards steps 4 and 5.
"""

from __future__ import annotations
from dataclasses import dataclass
import logging

from .core import (
    MIN_HEALTH_FACTOR,
    HealthFactorNotImproved, HealthFactorOk, InsufficientCollateral, InsufficientDebt,
    NeedsMoreThanZero, Liquidation,
    format_units,
)
from .positions import PositionLedger
from .solvency import SolvencyCalculator, calculate_liquidation_bonus, is_solvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LiquidationQuote:
    """
    Outcome of a liquidation computed against current state, without applying it.

    Attributes:
        user: Position being liquidated
        token: Collateral asset seized
        debt_to_cover: Debt repaid by the liquidator (18 decimals)
        debt_in_collateral: Collateral equivalent of debt_to_cover
        bonus_collateral: Bonus paid on top of debt_in_collateral
        collateral_to_seize: debt_in_collateral + bonus_collateral
        starting_health_factor: Target's health factor now
        projected_health_factor: Target's health factor after the liquidation
    """
    user: str
    token: str
    debt_to_cover: int
    debt_in_collateral: int
    bonus_collateral: int
    collateral_to_seize: int
    starting_health_factor: int
    projected_health_factor: int

    @property
    def liquidatable(self) -> bool:
        return not is_solvent(self.starting_health_factor)

    @property
    def restores_health(self) -> bool:
        return self.projected_health_factor > MIN_HEALTH_FACTOR


class LiquidationController:
    """Applies liquidations against a PositionLedger through a SolvencyCalculator."""

    def __init__(self, positions: PositionLedger, solvency: SolvencyCalculator):
        self.positions = positions
        self.solvency = solvency

    @property
    def valuation(self):
        return self.solvency.valuation

    def preview_liquidation(self, asset: str, user: str, debt_to_cover: int) -> LiquidationQuote:
        """
        Quote a liquidation without changing any state.

        Raises:
            NeedsMoreThanZero: If debt_to_cover <= 0
            TokenNotAllowed: If asset is not registered
            InsufficientDebt: If debt_to_cover exceeds the user's debt
            InsufficientCollateral: If the user holds less than the seized amount
            OracleError: If a price is stale or unusable
        """
        if debt_to_cover <= 0:
            raise NeedsMoreThanZero(f"Debt to cover must be more than zero, got {debt_to_cover}")
        self.positions.registry.require_allowed(asset)

        debt = self.positions.get_minted_debt(user)
        if debt_to_cover > debt:
            raise InsufficientDebt(f"{user} owes {debt}, cannot cover {debt_to_cover}")

        debt_in_collateral = self.valuation.token_amount_for_usd(asset, debt_to_cover)
        bonus = calculate_liquidation_bonus(debt_in_collateral)
        seize = debt_in_collateral + bonus
        held = self.positions.get_collateral_balance(user, asset)
        if seize > held:
            raise InsufficientCollateral(
                f"{user} has {held} {asset} deposited, liquidation needs {seize}"
            )

        return LiquidationQuote(
            user=user,
            token=asset,
            debt_to_cover=debt_to_cover,
            debt_in_collateral=debt_in_collateral,
            bonus_collateral=bonus,
            collateral_to_seize=seize,
            starting_health_factor=self.solvency.health_factor(user),
            projected_health_factor=self.solvency.projected_health_factor(
                user, debt_delta=-debt_to_cover, collateral_delta={asset: -seize},
            ),
        )

    def liquidate(self, liquidator: str, asset: str, user: str, debt_to_cover: int) -> Liquidation:
        """
        Liquidate debt_to_cover of user's debt, paying the liquidator in asset.

        Returns:
            The Liquidation event recorded on the ledger

        Raises:
            NeedsMoreThanZero: If debt_to_cover <= 0
            HealthFactorOk: If user is at or above the minimum health factor
            HealthFactorNotImproved: If user does not end strictly above the minimum
            HealthFactorBroken: If the liquidator ends below the minimum
        """
        if debt_to_cover <= 0:
            raise NeedsMoreThanZero(f"Debt to cover must be more than zero, got {debt_to_cover}")
        self.positions.registry.require_allowed(asset)

        starting_health_factor = self.solvency.health_factor(user)
        if is_solvent(starting_health_factor):
            raise HealthFactorOk(starting_health_factor, user)

        seize = self.solvency.collateral_to_seize(asset, debt_to_cover)

        with self.positions.atomic():
            # Dust cover can round down to no collateral at all
            if seize > 0:
                self.positions.withdraw(user, asset, seize, recipient=liquidator)
            self.positions.burn(debt_to_cover, on_behalf_of=user, payer=liquidator)

            ending_health_factor = self.solvency.health_factor(user)
            if ending_health_factor <= MIN_HEALTH_FACTOR:
                raise HealthFactorNotImproved(starting_health_factor, ending_health_factor)

            self.solvency.assert_solvent(liquidator)

            event = Liquidation(
                liquidator=liquidator,
                user=user,
                token=asset,
                debt_covered=debt_to_cover,
                collateral_seized=seize,
                starting_health_factor=starting_health_factor,
                ending_health_factor=ending_health_factor,
            )
            self.positions.record_event(event)

        logger.debug("Liquidated %s of %s's debt for %s %s (health %s -> %s)",
                     format_units(debt_to_cover), user, format_units(seize), asset,
                     format_units(starting_health_factor), format_units(ending_health_factor))
        return event
