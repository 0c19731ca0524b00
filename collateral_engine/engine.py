"""
engine.py - Collateral Engine (public surface)

The CollateralEngine wires the registry, oracle, valuation, solvency, position
ledger and liquidation controller together and exposes the user-facing
operations. It is the only entry point that mutates state.

Key responsibilities:
    - Every mutating entry point is one indivisible transaction: position
      changes, events and token movements are all rolled back on failure
    - A reentrancy guard rejects any call into the engine made while another
      mutating call is in progress (for example from a token callback)
    - Solvency is the final gate of every debt-increasing or
      collateral-decreasing call
    - Views are side-effect free

The first argument of every mutating method is the calling account.

Example:
    engine = CollateralEngine(chain, ["WETH", "WBTC"], [eth_usd, btc_usd], dsc)
    dsc.transfer_ownership(deployer, engine.address)

    weth.approve("alice", engine.address, 10 * 10**18)
    engine.deposit_collateral_and_mint("alice", "WETH", 10 * 10**18, 100 * 10**18)
    engine.get_health_factor("alice")
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Iterator, List, Sequence
import logging

from .chain import Chain
from .core import (
    PRECISION, ADDITIONAL_FEED_PRECISION, LIQUIDATION_THRESHOLD, LIQUIDATION_BONUS,
    LIQUIDATION_PRECISION, MIN_HEALTH_FACTOR, ORACLE_TIMEOUT, ENGINE_ADDRESS,
    AccountInformation, DebtTokenLike, PriceFeed, Liquidation,
    MintFailed, ReentrancyError,
    format_units,
)
from .liquidation import LiquidationController, LiquidationQuote
from .oracle import PriceOracleAdapter
from .positions import PositionLedger
from .registry import CollateralRegistry
from .solvency import SolvencyCalculator, calculate_health_factor
from .valuation import ValuationService

logger = logging.getLogger(__name__)


class ReentrancyGuard:
    """
    Scoped "operation in progress" marker.

    Entering while already entered raises ReentrancyError. The marker is
    released on every exit path, including exceptions.
    """

    def __init__(self):
        self._entered = False

    @property
    def locked(self) -> bool:
        return self._entered

    def __enter__(self) -> ReentrancyGuard:
        if self._entered:
            raise ReentrancyError("Reentrant call into the engine")
        self._entered = True
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._entered = False
        return False


class CollateralEngine:
    """
    Overcollateralized debt engine over a set of registered collateral assets.

    Thread Safety:
        Not thread-safe. Callers must serialize access to one engine instance.
    """

    def __init__(
        self,
        chain: Chain,
        token_addresses: Sequence[str],
        price_feeds: Sequence[PriceFeed],
        debt_token: DebtTokenLike,
        *,
        address: str = ENGINE_ADDRESS,
        oracle_timeout: int = ORACLE_TIMEOUT,
        verbose: bool = False,
    ):
        """
        Create an engine.

        Args:
            chain: Chain holding the collateral and debt token balances
            token_addresses: Collateral assets, in their fixed order
            price_feeds: USD price feed of each collateral asset, same order
            debt_token: The debt token; the engine must own it before minting
            address: Wallet of the engine on the chain
            oracle_timeout: Maximum tolerated price age in seconds
            verbose: Log every APPLIED / REJECTED call at INFO

        Raises:
            TokenAddressesAndPriceFeedsMismatch: If the lists differ in length
            TokenNotRegistered: If a collateral asset has no token on the chain
        """
        self.chain = chain
        self.address = address
        self.verbose = verbose
        self.debt_token = debt_token
        self.registry = CollateralRegistry(token_addresses, price_feeds)
        self.oracle = PriceOracleAdapter(self.registry, chain, timeout=oracle_timeout)
        self.valuation = ValuationService(self.oracle)
        self.positions = PositionLedger(
            self.registry,
            {asset: chain.get_token(asset) for asset in self.registry.assets},
            debt_token,
            address=address,
            name=address,
            clock=chain,
        )
        self.solvency = SolvencyCalculator(self.positions, self.valuation)
        self.liquidations = LiquidationController(self.positions, self.solvency)
        self._guard = ReentrancyGuard()

    # ========================================================================
    # TRANSACTION SCOPE
    # ========================================================================

    @contextmanager
    def _transaction(self, operation: str, sender: str, **details: Any) -> Iterator[None]:
        """
        Guard, then run the block atomically against the chain and the ledger.

        The guard is taken first so a reentrant call is rejected before it can
        journal or touch any state.
        """
        args = ", ".join(f"{k}={_fmt(v)}" for k, v in details.items())
        with self._guard:
            try:
                with self.chain.atomic(), self.positions.atomic():
                    yield
            except Exception as e:
                logger.debug("%s(%s, %s) rejected: %r", operation, sender, args, e)
                if self.verbose:
                    logger.info("✗ REJECTED: %s by %s (%s): %s", operation, sender, args, e)
                raise
        logger.debug("%s(%s, %s) applied", operation, sender, args)
        if self.verbose:
            logger.info("✓ APPLIED: %s by %s (%s)", operation, sender, args)

    # ========================================================================
    # MUTATING ENTRY POINTS
    # ========================================================================

    def deposit_collateral(self, sender: str, token: str, amount: int) -> None:
        """
        Deposit amount of token as collateral. The engine must be approved.

        Raises:
            NeedsMoreThanZero, TokenNotAllowed, TransferFailed
        """
        with self._transaction("deposit_collateral", sender, token=token, amount=amount):
            self.positions.deposit(sender, token, amount)

    def redeem_collateral(self, sender: str, token: str, amount: int) -> None:
        """
        Withdraw amount of token back to the sender.

        Raises:
            NeedsMoreThanZero, TokenNotAllowed, InsufficientCollateral,
            TransferFailed, HealthFactorBroken, OracleError
        """
        with self._transaction("redeem_collateral", sender, token=token, amount=amount):
            self._redeem(sender, token, amount)

    def mint_debt(self, sender: str, amount: int) -> None:
        """
        Mint amount of debt token to the sender.

        Raises:
            NeedsMoreThanZero, HealthFactorBroken, MintFailed, OracleError
        """
        with self._transaction("mint_debt", sender, amount=amount):
            self._mint(sender, amount)

    def burn_debt(self, sender: str, amount: int) -> None:
        """
        Repay amount of the sender's debt with the sender's debt tokens.
        The engine must be approved to pull them.

        Raises:
            NeedsMoreThanZero, InsufficientDebt, TransferFailed
        """
        with self._transaction("burn_debt", sender, amount=amount):
            self._burn(sender, amount)

    def deposit_collateral_and_mint(
        self, sender: str, token: str, amount_collateral: int, amount_to_mint: int,
    ) -> None:
        """Deposit collateral and mint debt in one transaction."""
        with self._transaction("deposit_collateral_and_mint", sender, token=token,
                               amount_collateral=amount_collateral,
                               amount_to_mint=amount_to_mint):
            self.positions.deposit(sender, token, amount_collateral)
            self._mint(sender, amount_to_mint)

    def burn_debt_and_redeem_collateral(
        self, sender: str, token: str, amount_collateral: int, amount_to_burn: int,
    ) -> None:
        """Repay debt and withdraw collateral in one transaction."""
        with self._transaction("burn_debt_and_redeem_collateral", sender, token=token,
                               amount_collateral=amount_collateral,
                               amount_to_burn=amount_to_burn):
            self.positions.burn(amount_to_burn, on_behalf_of=sender, payer=sender)
            self._redeem(sender, token, amount_collateral)

    def liquidate(self, sender: str, collateral: str, user: str, debt_to_cover: int) -> Liquidation:
        """
        Repay debt_to_cover of user's debt and receive collateral plus a 10% bonus.

        The sender must hold and approve debt_to_cover of the debt token.

        Raises:
            NeedsMoreThanZero, TokenNotAllowed, HealthFactorOk,
            HealthFactorNotImproved, HealthFactorBroken, InsufficientCollateral,
            TransferFailed, OracleError
        """
        with self._transaction("liquidate", sender, collateral=collateral, user=user,
                               debt_to_cover=debt_to_cover):
            return self.liquidations.liquidate(sender, collateral, user, debt_to_cover)

    def _redeem(self, sender: str, token: str, amount: int) -> None:
        self.positions.withdraw(sender, token, amount, recipient=sender)
        self.solvency.assert_solvent(sender)

    def _mint(self, sender: str, amount: int) -> None:
        self.positions.mint(sender, amount)
        self.solvency.assert_solvent(sender)
        if not self.debt_token.mint(self.address, sender, amount):
            raise MintFailed(f"Minting {amount} debt to {sender} failed")

    def _burn(self, sender: str, amount: int) -> None:
        self.positions.burn(amount, on_behalf_of=sender, payer=sender)
        self.solvency.assert_solvent(sender)

    # ========================================================================
    # VIEWS
    # ========================================================================

    def get_account_information(self, user: str) -> AccountInformation:
        return self.solvency.get_account_information(user)

    def get_collateral_balance_of_user(self, user: str, token: str) -> int:
        return self.positions.get_collateral_balance(user, token)

    def get_health_factor(self, user: str) -> int:
        return self.solvency.health_factor(user)

    def calculate_health_factor(self, total_debt_minted: int, collateral_value_in_usd: int) -> int:
        return calculate_health_factor(total_debt_minted, collateral_value_in_usd)

    def get_usd_value(self, token: str, amount: int) -> int:
        return self.valuation.usd_value(token, amount)

    def get_token_amount_from_usd(self, token: str, usd_amount: int) -> int:
        return self.valuation.token_amount_for_usd(token, usd_amount)

    def get_account_collateral_value(self, user: str) -> int:
        return self.valuation.total_collateral_usd(self.positions.get_collateral_balances(user))

    def get_max_mintable(self, user: str) -> int:
        """Additional debt user could mint right now without breaking health."""
        return self.solvency.max_mintable(user)

    def preview_liquidation(self, collateral: str, user: str, debt_to_cover: int) -> LiquidationQuote:
        return self.liquidations.preview_liquidation(collateral, user, debt_to_cover)

    def get_collateral_tokens(self) -> List[str]:
        return list(self.registry.assets)

    def get_collateral_token_price_feed(self, token: str) -> PriceFeed:
        return self.registry.get_price_feed(token)

    def get_debt_token(self) -> DebtTokenLike:
        return self.debt_token

    def get_transaction_log(self):
        return list(self.positions.transaction_log)

    # ========================================================================
    # CONSTANTS
    # ========================================================================

    def get_precision(self) -> int:
        return PRECISION

    def get_additional_feed_precision(self) -> int:
        return ADDITIONAL_FEED_PRECISION

    def get_liquidation_threshold(self) -> int:
        return LIQUIDATION_THRESHOLD

    def get_liquidation_bonus(self) -> int:
        return LIQUIDATION_BONUS

    def get_liquidation_precision(self) -> int:
        return LIQUIDATION_PRECISION

    def get_min_health_factor(self) -> int:
        return MIN_HEALTH_FACTOR

    def __repr__(self) -> str:
        return (f"CollateralEngine({self.address}, collateral={list(self.registry.assets)}, "
                f"debt={self.debt_token!r})")


def _fmt(value: Any) -> str:
    # Amounts are 18-decimal fixed point; show them as decimals in log lines.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(format_units(value))
    return str(value)
