"""
Core types and pure functions for the collateral engine.

This module provides the foundational data structures and protocols for the engine:
1. Constants: fixed-point scales, liquidation parameters, oracle timeout
2. Fixed-point helpers: overflow-checked integer multiply / multiply-divide
3. Exceptions: EngineError and the domain-specific error taxonomy
4. Immutable data structures: PriceQuote, AccountInformation, events, records
5. Protocols: ChainView, PriceFeed, CollateralToken, DebtTokenLike

Amounts are plain Python ints in fixed point. Every division truncates toward
zero; all operands reaching a division are non-negative, so floor division is
used throughout.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Canonical scale for USD values, debt amounts and health factors (18 decimals).
PRECISION = 10**18

# Scale-up applied to 8-decimal feed answers to reach PRECISION.
ADDITIONAL_FEED_PRECISION = 10**10

# Only LIQUIDATION_THRESHOLD / LIQUIDATION_PRECISION of the collateral value
# backs debt: 50 / 100 is a 200% overcollateralization requirement.
LIQUIDATION_THRESHOLD = 50
LIQUIDATION_BONUS = 10
LIQUIDATION_PRECISION = 100

MIN_HEALTH_FACTOR = 1 * PRECISION

# Largest representable unsigned 256-bit value. Used as the health factor of a
# position with no debt.
MAX_UINT256 = 2**256 - 1
MAX_HEALTH_FACTOR = MAX_UINT256

# Maximum tolerated age of a price round, in seconds.
ORACLE_TIMEOUT = 3 * 60 * 60

# Decimals of the canonical price.
CANONICAL_DECIMALS = 18

# Address used as source of mints and destination of burns.
ZERO_ADDRESS = "0x0"

# Default wallet id of the engine on the chain.
ENGINE_ADDRESS = "engine"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class EngineError(Exception):
    """Base exception for all engine-related errors."""
    pass


class InputError(EngineError):
    """Raised on malformed input: non-positive amounts, bad configuration, underflows."""
    pass


class NeedsMoreThanZero(InputError):
    """Raised when an amount that must be positive is zero or negative."""
    pass


class TokenAddressesAndPriceFeedsMismatch(InputError):
    """Raised at construction when token and price feed lists differ in length."""
    pass


class InsufficientCollateral(InputError):
    """Raised when a withdrawal would take a collateral position below zero."""
    pass


class InsufficientDebt(InputError):
    """Raised when a burn would take a debt balance below zero."""
    pass


class FixedPointOverflow(InputError):
    """Raised when a fixed-point product exceeds the unsigned 256-bit range."""
    pass


class PolicyError(EngineError):
    """Raised when an operation targets an asset outside the allow-list."""
    pass


class TokenNotAllowed(PolicyError):
    """Raised when an asset is not registered as collateral."""

    def __init__(self, token: str):
        super().__init__(f"Token {token} is not allowed as collateral")
        self.token = token


class TransferError(EngineError):
    """Raised when an external token call reports failure."""
    pass


class TransferFailed(TransferError):
    """Raised when transfer / transfer_from returns False."""
    pass


class MintFailed(TransferError):
    """Raised when the debt token's mint returns False."""
    pass


class SolvencyError(EngineError):
    """Raised when a position ends an operation below the minimum health factor."""
    pass


class HealthFactorBroken(SolvencyError):
    """Carries the computed (sub-minimum) health factor for diagnostics."""

    def __init__(self, health_factor: int, user: Optional[str] = None):
        who = f" for {user}" if user else ""
        super().__init__(
            f"Health factor broken{who}: {format_units(health_factor)} "
            f"< {format_units(MIN_HEALTH_FACTOR)}"
        )
        self.health_factor = health_factor
        self.user = user


class LiquidationError(EngineError):
    """Raised when a liquidation is not permitted or does not restore health."""
    pass


class HealthFactorOk(LiquidationError):
    """Raised when the liquidation target is already at or above the minimum."""

    def __init__(self, health_factor: int, user: Optional[str] = None):
        super().__init__(
            f"Health factor of {user} is ok: {format_units(health_factor)}"
        )
        self.health_factor = health_factor
        self.user = user


class HealthFactorNotImproved(LiquidationError):
    """Raised when a liquidation leaves the target at or below the minimum."""

    def __init__(self, starting_health_factor: int, ending_health_factor: int):
        super().__init__(
            f"Health factor not improved: {format_units(starting_health_factor)} "
            f"-> {format_units(ending_health_factor)}"
        )
        self.starting_health_factor = starting_health_factor
        self.ending_health_factor = ending_health_factor


class OracleError(EngineError):
    """Raised when a price round is stale, inconsistent, or unusable."""
    pass


class StalePrice(OracleError):
    """Raised when the latest round is unpopulated, carried forward, or too old."""
    pass


class InvalidPrice(OracleError):
    """Raised when a feed answer cannot be used for valuation (negative or zero)."""
    pass


class ReentrancyError(EngineError):
    """Raised when a mutating entry point is re-entered mid-operation."""
    pass


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def check_uint256(value: int, label: str = "value") -> int:
    """Return value if it fits in an unsigned 256-bit integer, else raise FixedPointOverflow."""
    if value < 0:
        raise FixedPointOverflow(f"{label} is negative: {value}")
    if value > MAX_UINT256:
        raise FixedPointOverflow(f"{label} overflows uint256")
    return value


def mul(a: int, b: int) -> int:
    """Overflow-checked product of two unsigned fixed-point integers."""
    return check_uint256(a * b, "product")


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    Compute a * b / denominator with truncation toward zero.

    The intermediate product is checked against the uint256 range before the
    division, so results match an unsigned 256-bit implementation exactly.
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    return mul(a, b) // denominator


def format_units(value: int, decimals: int = CANONICAL_DECIMALS) -> Decimal:
    """
    Convert a fixed-point integer to a Decimal for display.

    Example:
        format_units(15 * 10**18) == Decimal("15")
    """
    if value == MAX_UINT256:
        return Decimal("Infinity")
    return Decimal(value).scaleb(-decimals)


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceQuote:
    """
    A single round returned by a price feed.

    Attributes:
        round_id: Identifier of the round.
        answer: Signed price in feed-native decimals.
        started_at: Round start time (seconds).
        updated_at: Time the answer was written (seconds); 0 means never populated.
        answered_in_round: Round in which the answer was computed.
    """
    round_id: int
    answer: int
    started_at: int
    updated_at: int
    answered_in_round: int

    def as_tuple(self) -> Tuple[int, int, int, int, int]:
        return (self.round_id, self.answer, self.started_at,
                self.updated_at, self.answered_in_round)


@dataclass(frozen=True, slots=True)
class AccountInformation:
    """Minted debt and total collateral value (USD, 18 decimals) of one user."""
    total_debt_minted: int
    collateral_value_in_usd: int

    def __iter__(self):
        yield self.total_debt_minted
        yield self.collateral_value_in_usd

    def __repr__(self) -> str:
        return (f"AccountInformation(debt={format_units(self.total_debt_minted)}, "
                f"collateral_usd={format_units(self.collateral_value_in_usd)})")


@dataclass(frozen=True, slots=True)
class BalanceChange:
    """
    Record of one balance change inside an atomic scope, for rollback and audit.

    Attributes:
        account: User whose balance changed
        key: Asset address for collateral balances, DEBT_KEY for minted debt
        old: Balance before the change
        new: Balance after the change
    """
    account: str
    key: str
    old: int
    new: int

    @property
    def delta(self) -> int:
        return self.new - self.old


# Balance key under which minted debt is journaled.
DEBT_KEY = "__debt__"


# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CollateralDeposited:
    user: str
    token: str
    amount: int


@dataclass(frozen=True, slots=True)
class CollateralRedeemed:
    redeemed_from: str
    redeemed_to: str
    token: str
    amount: int


@dataclass(frozen=True, slots=True)
class DebtMinted:
    user: str
    amount: int


@dataclass(frozen=True, slots=True)
class DebtBurned:
    on_behalf_of: str
    payer: str
    amount: int


@dataclass(frozen=True, slots=True)
class Liquidation:
    liquidator: str
    user: str
    token: str
    debt_covered: int
    collateral_seized: int
    starting_health_factor: int
    ending_health_factor: int


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class ChainView(Protocol):
    """Read-only access to the logical clock that price freshness is judged against."""

    @property
    def current_time(self) -> int:
        """Return the current time in seconds."""
        ...


@runtime_checkable
class PriceFeed(Protocol):
    """
    Interface of an external price feed.

    latest_round_data() returns the most recent round; decimals() the number
    of decimals in the answer.
    """

    def latest_round_data(self) -> PriceQuote:
        ...

    def decimals(self) -> int:
        ...


@runtime_checkable
class CollateralToken(Protocol):
    """
    Interface of a collateral token.

    Transfers report failure by returning False; the engine converts False into
    TransferFailed at the call boundary. `sender` is the calling account.
    """

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        ...

    def transfer_from(self, sender: str, source: str, dest: str, amount: int) -> bool:
        ...

    def balance_of(self, owner: str) -> int:
        ...


@runtime_checkable
class DebtTokenLike(CollateralToken, Protocol):
    """Interface of the debt token: a collateral-token surface plus mint and burn."""

    def mint(self, sender: str, to: str, amount: int) -> bool:
        ...

    def burn(self, sender: str, amount: int) -> None:
        ...

    def total_supply(self) -> int:
        ...


def event_fields(event: Any) -> Dict[str, Any]:
    """Return an event's fields as a plain dict (for logging and assertions)."""
    return {name: getattr(event, name) for name in event.__slots__}
