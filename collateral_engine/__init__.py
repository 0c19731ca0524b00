"""
collateral_engine - Overcollateralized Debt Engine

Users deposit approved collateral, mint a debt token against it, and must
keep their health factor at or above 1.0 or be liquidated by a third party
for a 10% bonus.

Usage:
    from collateral_engine import Chain, ERC20Token, DebtToken, MockPriceFeed, CollateralEngine

    chain = Chain("local")
    weth = ERC20Token(chain, "WETH", "Wrapped Ether")
    dsc = DebtToken(chain)
    eth_usd = MockPriceFeed(chain, 8, 2000_00000000, "ETH / USD")

    engine = CollateralEngine(chain, ["WETH"], [eth_usd], dsc)
    dsc.transfer_ownership("deployer", engine.address)

    weth.mint_to("alice", 10 * 10**18)
    weth.approve("alice", engine.address, 10 * 10**18)
    engine.deposit_collateral_and_mint("alice", "WETH", 10 * 10**18, 100 * 10**18)

    engine.get_health_factor("alice")    # 100e18
"""

# Core types
from .core import (
    PRECISION,
    ADDITIONAL_FEED_PRECISION,
    LIQUIDATION_THRESHOLD,
    LIQUIDATION_BONUS,
    LIQUIDATION_PRECISION,
    MIN_HEALTH_FACTOR,
    MAX_HEALTH_FACTOR,
    MAX_UINT256,
    ORACLE_TIMEOUT,
    ZERO_ADDRESS,
    ENGINE_ADDRESS,
    EngineError,
    InputError,
    NeedsMoreThanZero,
    TokenAddressesAndPriceFeedsMismatch,
    InsufficientCollateral,
    InsufficientDebt,
    FixedPointOverflow,
    PolicyError,
    TokenNotAllowed,
    TransferError,
    TransferFailed,
    MintFailed,
    SolvencyError,
    HealthFactorBroken,
    LiquidationError,
    HealthFactorOk,
    HealthFactorNotImproved,
    OracleError,
    StalePrice,
    InvalidPrice,
    ReentrancyError,
    PriceQuote,
    AccountInformation,
    BalanceChange,
    CollateralDeposited,
    CollateralRedeemed,
    DebtMinted,
    DebtBurned,
    Liquidation,
    ChainView,
    PriceFeed,
    CollateralToken,
    DebtTokenLike,
    mul,
    mul_div,
    format_units,
)

# Simulated chain, tokens and feeds
from .chain import Chain, ChainError, TokenNotRegistered, Unauthorized, Transfer
from .tokens import ERC20Token, DebtToken
from .feeds import MockPriceFeed, TimeSeriesPriceFeed

# Engine components
from .registry import CollateralRegistry
from .oracle import PriceOracleAdapter, stale_check_latest_round_data, normalize_answer
from .valuation import ValuationService, calculate_usd_value, calculate_token_amount
from .solvency import (
    SolvencyCalculator,
    calculate_health_factor,
    calculate_collateral_to_seize,
    calculate_liquidation_bonus,
    calculate_max_mintable,
)
from .positions import PositionLedger, PositionTransaction
from .liquidation import LiquidationController, LiquidationQuote
from .engine import CollateralEngine, ReentrancyGuard

# Configuration
from .config import EngineConfig, CollateralConfig, load_config, build_engine
from .logging_setup import configure_logging


__all__ = [
    # Constants
    'PRECISION', 'ADDITIONAL_FEED_PRECISION', 'LIQUIDATION_THRESHOLD', 'LIQUIDATION_BONUS',
    'LIQUIDATION_PRECISION', 'MIN_HEALTH_FACTOR', 'MAX_HEALTH_FACTOR', 'MAX_UINT256',
    'ORACLE_TIMEOUT', 'ZERO_ADDRESS', 'ENGINE_ADDRESS',
    # Exceptions
    'EngineError', 'InputError', 'NeedsMoreThanZero', 'TokenAddressesAndPriceFeedsMismatch',
    'InsufficientCollateral', 'InsufficientDebt', 'FixedPointOverflow',
    'PolicyError', 'TokenNotAllowed',
    'TransferError', 'TransferFailed', 'MintFailed',
    'SolvencyError', 'HealthFactorBroken',
    'LiquidationError', 'HealthFactorOk', 'HealthFactorNotImproved',
    'OracleError', 'StalePrice', 'InvalidPrice',
    'ReentrancyError',
    # Data structures and events
    'PriceQuote', 'AccountInformation', 'BalanceChange',
    'CollateralDeposited', 'CollateralRedeemed', 'DebtMinted', 'DebtBurned', 'Liquidation',
    # Protocols
    'ChainView', 'PriceFeed', 'CollateralToken', 'DebtTokenLike',
    # Fixed point
    'mul', 'mul_div', 'format_units',
    # Simulated collaborators
    'Chain', 'ChainError', 'TokenNotRegistered', 'Unauthorized', 'Transfer',
    'ERC20Token', 'DebtToken',
    'MockPriceFeed', 'TimeSeriesPriceFeed',
    # Engine components
    'CollateralRegistry',
    'PriceOracleAdapter', 'stale_check_latest_round_data', 'normalize_answer',
    'ValuationService', 'calculate_usd_value', 'calculate_token_amount',
    'SolvencyCalculator', 'calculate_health_factor', 'calculate_collateral_to_seize',
    'calculate_liquidation_bonus', 'calculate_max_mintable',
    'PositionLedger', 'PositionTransaction',
    'LiquidationController', 'LiquidationQuote',
    'CollateralEngine', 'ReentrancyGuard',
    # Configuration
    'EngineConfig', 'CollateralConfig', 'load_config', 'build_engine',
    'configure_logging',
]

__version__ = '1.0.0'
