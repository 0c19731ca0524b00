"""
conftest.py - Shared pytest fixtures for engine tests

Provides common fixtures used across unit, conformance and functional tests:
- A bare chain with tokens and feeds
- A deployed engine with a funded user
- A user with deposited collateral, and one with collateral and minted debt
- A liquidation already carried out after an ETH crash to $18
- Restoring the root logger level after tests that configure logging
"""

import logging

import pytest

from collateral_engine import Chain, ERC20Token, DebtToken, MockPriceFeed

from tests.deployment import (
    deploy, approve_and_deposit, approve_and_deposit_and_mint, set_eth_price,
    USER, LIQUIDATOR, AMOUNT_COLLATERAL, AMOUNT_TO_MINT, ETHER,
    FEED_DECIMALS, ETH_USD_PRICE,
)


# =============================================================================
# CHAIN-LEVEL FIXTURES
# =============================================================================

@pytest.fixture
def chain():
    """Fresh chain at the default genesis time."""
    return Chain("test")


@pytest.fixture
def weth(chain):
    return ERC20Token(chain, "WETH", "Wrapped Ether")


@pytest.fixture
def dsc(chain):
    """Debt token owned by 'owner'."""
    return DebtToken(chain, owner="owner")


@pytest.fixture
def eth_usd(chain):
    return MockPriceFeed(chain, FEED_DECIMALS, ETH_USD_PRICE, "ETH / USD")


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def deployment():
    """Engine over WETH ($2000) and WBTC ($1000); USER holds 10 of each."""
    return deploy()


@pytest.fixture
def engine(deployment):
    return deployment.engine


@pytest.fixture
def deposited(deployment):
    """USER has 10 WETH deposited and no debt."""
    approve_and_deposit(deployment, USER, "WETH", AMOUNT_COLLATERAL)
    return deployment


@pytest.fixture
def minted(deployment):
    """USER has 10 WETH deposited ($20,000) and 100 debt minted (health 100)."""
    approve_and_deposit_and_mint(deployment, USER, "WETH", AMOUNT_COLLATERAL, AMOUNT_TO_MINT)
    return deployment


@pytest.fixture
def crashed(minted):
    """
    ETH crashes to $18 after USER minted (USER health 0.9).

    LIQUIDATOR then deposits 20 WETH, mints 100 debt (health 1.8) and approves
    the engine to pull it.
    """
    d = minted
    set_eth_price(d, 18)
    collateral_to_cover = 20 * ETHER
    d.weth.mint_to(LIQUIDATOR, collateral_to_cover)
    approve_and_deposit_and_mint(d, LIQUIDATOR, "WETH", collateral_to_cover, AMOUNT_TO_MINT)
    d.dsc.approve(LIQUIDATOR, d.engine.address, AMOUNT_TO_MINT)
    return d


@pytest.fixture
def liquidated(crashed):
    """LIQUIDATOR has covered all 100 of USER's debt."""
    crashed.engine.liquidate(LIQUIDATOR, "WETH", USER, AMOUNT_TO_MINT)
    return crashed


# =============================================================================
# LOGGING FIXTURES
# =============================================================================

@pytest.fixture
def root_log_level():
    """Put the root logger level back after a test that calls configure_logging."""
    root = logging.getLogger()
    saved = root.level
    yield root
    root.setLevel(saved)
