"""
Health Conformance Tests

INVARIANT: No successful call leaves a debtor below the minimum health factor.

    ∀ successful call C by account a:
        debt(a) > 0 ⟹ health_factor(a) ≥ MIN_HEALTH_FACTOR

Price moves can push an account under water; only calls made by (or
liquidating) that account since the last price move are held to the
invariant. Every rejected call leaves the state untouched.
"""

import pytest
from hypothesis import given, settings, note
from hypothesis import strategies as st
from hypothesis.stateful import RuleBasedStateMachine, rule, invariant

from collateral_engine import (
    EngineError, MIN_HEALTH_FACTOR, MAX_HEALTH_FACTOR,
)

from tests.deployment import deploy, set_eth_price, state_snapshot, ETHER


ACCOUNTS = ["alice", "bob", "carol"]
SYMBOLS = ["WETH", "WBTC"]
FUNDING = 100 * ETHER

accounts = st.sampled_from(ACCOUNTS)
symbols = st.sampled_from(SYMBOLS)
collateral_amounts = st.integers(min_value=1, max_value=20 * ETHER)
debt_amounts = st.integers(min_value=1, max_value=20_000 * ETHER)


class EngineMachine(RuleBasedStateMachine):
    """Random deposits, mints, redemptions and burns at fixed prices."""

    def __init__(self):
        super().__init__()
        self.d = deploy(fund_user=False)
        self.touched = set()
        for account in ACCOUNTS:
            for symbol in SYMBOLS:
                token = self.d.token(symbol)
                token.mint_to(account, FUNDING)
                token.approve(account, self.d.engine.address, 2**255)
            self.d.dsc.approve(account, self.d.engine.address, 2**255)

    def attempt(self, accounts_touched, call, *args):
        """Run an engine call; a rejection must leave no trace."""
        before = state_snapshot(self.d)
        try:
            call(*args)
        except EngineError as e:
            note(f"rejected {call.__name__}{args}: {e!r}")
            assert state_snapshot(self.d) == before
            return False
        self.touched.update(accounts_touched)
        return True

    @rule(account=accounts, symbol=symbols, amount=collateral_amounts)
    def deposit(self, account, symbol, amount):
        # Deposits are not health-checked
        self.attempt([], self.d.engine.deposit_collateral, account, symbol, amount)

    @rule(account=accounts, amount=debt_amounts)
    def mint(self, account, amount):
        self.attempt([account], self.d.engine.mint_debt, account, amount)

    @rule(account=accounts, symbol=symbols, amount=collateral_amounts)
    def redeem(self, account, symbol, amount):
        self.attempt([account], self.d.engine.redeem_collateral, account, symbol, amount)

    @rule(account=accounts, amount=debt_amounts)
    def burn(self, account, amount):
        self.attempt([account], self.d.engine.burn_debt, account, amount)

    @rule(account=accounts, symbol=symbols, collateral=collateral_amounts, debt=debt_amounts)
    def deposit_and_mint(self, account, symbol, collateral, debt):
        self.attempt([account], self.d.engine.deposit_collateral_and_mint,
                     account, symbol, collateral, debt)

    @rule(account=accounts, symbol=symbols, collateral=collateral_amounts, debt=debt_amounts)
    def burn_and_redeem(self, account, symbol, collateral, debt):
        self.attempt([account], self.d.engine.burn_debt_and_redeem_collateral,
                     account, symbol, collateral, debt)

    @invariant()
    def touched_debtors_are_healthy(self):
        engine = self.d.engine
        for account in self.touched:
            if engine.get_account_information(account).total_debt_minted > 0:
                assert engine.get_health_factor(account) >= MIN_HEALTH_FACTOR

    @invariant()
    def debt_free_accounts_have_max_health(self):
        engine = self.d.engine
        for account in ACCOUNTS:
            if engine.get_account_information(account).total_debt_minted == 0:
                assert engine.get_health_factor(account) == MAX_HEALTH_FACTOR

    @invariant()
    def debt_supply_matches_positions(self):
        assert self.d.dsc.total_supply() == self.d.engine.positions.total_debt()


class PriceMovingEngineMachine(EngineMachine):
    """Adds ETH price moves and liquidations between accounts."""

    @rule(usd=st.integers(min_value=1, max_value=4000))
    def move_eth_price(self, usd):
        set_eth_price(self.d, usd)
        self.touched.clear()

    @rule(liquidator=accounts, user=accounts, symbol=symbols, amount=debt_amounts)
    def liquidate(self, liquidator, user, symbol, amount):
        if self.attempt([liquidator], self.d.engine.liquidate, liquidator, symbol, user, amount):
            assert self.d.engine.get_health_factor(user) > MIN_HEALTH_FACTOR
            self.touched.add(user)


TestEngineHealth = EngineMachine.TestCase
TestEngineHealth.settings = settings(max_examples=50, stateful_step_count=30, deadline=None)

TestPriceMovingEngineHealth = PriceMovingEngineMachine.TestCase
TestPriceMovingEngineHealth.settings = settings(
    max_examples=50, stateful_step_count=30, deadline=None,
)


class TestHealthProperties:
    """Single-call health properties."""

    @given(st.integers(min_value=1, max_value=20 * ETHER),
           st.integers(min_value=1, max_value=40_000 * ETHER))
    @settings(max_examples=100, deadline=None)
    def test_deposit_and_mint_succeeds_iff_healthy(self, collateral, debt):
        """
        PROPERTY: deposit_collateral_and_mint is accepted exactly when the
        resulting health factor reaches the minimum.
        """
        d = deploy(fund_user=False)
        d.weth.mint_to("alice", collateral)
        d.weth.approve("alice", d.engine.address, collateral)
        expected = d.engine.calculate_health_factor(debt, d.engine.get_usd_value("WETH", collateral))

        try:
            d.engine.deposit_collateral_and_mint("alice", "WETH", collateral, debt)
        except EngineError:
            assert expected < MIN_HEALTH_FACTOR
            assert d.engine.get_collateral_balance_of_user("alice", "WETH") == 0
        else:
            assert expected >= MIN_HEALTH_FACTOR
            assert d.engine.get_health_factor("alice") == expected

    @given(st.integers(min_value=1, max_value=20 * ETHER))
    @settings(max_examples=50, deadline=None)
    def test_max_mintable_is_exact(self, collateral):
        """PROPERTY: get_max_mintable can be minted, one more cannot."""
        d = deploy(fund_user=False)
        d.weth.mint_to("alice", collateral)
        d.weth.approve("alice", d.engine.address, collateral)
        d.engine.deposit_collateral("alice", "WETH", collateral)

        limit = d.engine.get_max_mintable("alice")
        if limit > 0:
            d.engine.mint_debt("alice", limit)
            assert d.engine.get_health_factor("alice") >= MIN_HEALTH_FACTOR
        with pytest.raises(EngineError):
            d.engine.mint_debt("alice", 1)
