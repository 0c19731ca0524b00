"""
positions.py - Position Ledger

The PositionLedger is the engine's owned state container: per-user collateral
balances by asset and per-user minted debt. It is the only module that mutates
positions, and every mutation is journaled so an enclosing atomic() scope can
undo it.

Key responsibilities:
    - Collateral and debt balances, zero on first touch, never negative
    - deposit / withdraw / mint / burn following checks-effects-interactions
    - Converts False results of external token calls into TransferFailed
    - Atomic scopes: a failed scope leaves balances and events untouched
    - Audit trail of committed scopes (transaction_log)

Solvency is NOT checked here. The engine gates solvency after the mutation
because withdraw() and burn() are reused by liquidation with different
recipients and payers.
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
import logging

from .core import (
    ENGINE_ADDRESS, DEBT_KEY,
    BalanceChange, ChainView, CollateralToken, DebtTokenLike,
    CollateralDeposited, CollateralRedeemed, DebtMinted, DebtBurned,
    NeedsMoreThanZero, InsufficientCollateral, InsufficientDebt, TransferFailed,
    check_uint256,
)
from .registry import CollateralRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PositionTransaction:
    """
    A committed atomic scope - represents FACT.

    Attributes:
        exec_id: Unique execution identifier (ledger + sequence + time)
        sequence_number: Monotonic sequence within the ledger
        timestamp: Clock time at commit (0 without a clock)
        changes: Balance changes in the order they were made
        events: Events emitted in the order they were emitted
    """
    exec_id: str
    sequence_number: int
    timestamp: int
    changes: Tuple[BalanceChange, ...]
    events: Tuple[Any, ...]

    def __repr__(self) -> str:
        kinds = ", ".join(type(e).__name__ for e in self.events)
        return f"PositionTransaction({self.exec_id}, {len(self.changes)} changes, [{kinds}])"


def _require_positive(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise NeedsMoreThanZero(f"Amount must be an int, got {type(amount).__name__}")
    if amount <= 0:
        raise NeedsMoreThanZero(f"Amount must be more than zero, got {amount}")


class PositionLedger:
    """
    Collateral and debt balances with journaled, all-or-nothing mutation.

    Thread Safety:
        Not thread-safe. Callers must serialize access (the engine does so with
        its reentrancy guard).

    Example:
        positions = PositionLedger(registry, tokens, debt_token)
        with positions.atomic():
            positions.deposit("alice", "WETH", 10 * 10**18)
            positions.mint("alice", 100 * 10**18)
    """

    def __init__(
        self,
        registry: CollateralRegistry,
        collateral_tokens: Mapping[str, CollateralToken],
        debt_token: DebtTokenLike,
        address: str = ENGINE_ADDRESS,
        name: str = "positions",
        clock: Optional[ChainView] = None,
    ):
        """
        Args:
            registry: Allow-list of collateral assets
            collateral_tokens: Token contract per registered asset
            debt_token: The debt token contract
            address: Wallet of the engine (holds deposited collateral)
            name: Ledger identifier used in exec ids
            clock: Optional time source for transaction timestamps
        """
        missing = [asset for asset in registry.assets if asset not in collateral_tokens]
        if missing:
            raise ValueError(f"No token contract for collateral: {', '.join(missing)}")
        self.registry = registry
        self.collateral_tokens = dict(collateral_tokens)
        self.debt_token = debt_token
        self.address = address
        self.name = name
        self.clock = clock
        self.collateral: Dict[str, Dict[str, int]] = defaultdict(dict)
        self.minted_debt: Dict[str, int] = {}
        self.transaction_log: List[PositionTransaction] = []
        self._journal: Optional[List[BalanceChange]] = None
        self._events: List[Any] = []
        self._next_sequence = 0

    # ========================================================================
    # READ-ONLY METHODS
    # ========================================================================

    def get_collateral_balance(self, user: str, asset: str) -> int:
        """
        Collateral of asset deposited by user (0 if never touched).

        Raises:
            TokenNotAllowed: If asset is not registered
        """
        self.registry.require_allowed(asset)
        return self.collateral.get(user, {}).get(asset, 0)

    def get_collateral_balances(self, user: str) -> Dict[str, int]:
        """Copy of user's collateral balances keyed by asset."""
        return dict(self.collateral.get(user, {}))

    def get_minted_debt(self, user: str) -> int:
        return self.minted_debt.get(user, 0)

    def total_collateral(self, asset: str) -> int:
        """Sum of every user's deposited collateral of asset."""
        self.registry.require_allowed(asset)
        return sum(bals.get(asset, 0) for _, bals in sorted(self.collateral.items()))

    def total_debt(self) -> int:
        return sum(self.minted_debt[u] for u in sorted(self.minted_debt))

    def list_users(self) -> List[str]:
        """Every user with a non-zero collateral or debt balance."""
        users = {u for u, bals in self.collateral.items() if any(bals.values())}
        users.update(u for u, debt in self.minted_debt.items() if debt)
        return sorted(users)

    @property
    def in_transaction(self) -> bool:
        return self._journal is not None

    # ========================================================================
    # ATOMIC SCOPES
    # ========================================================================

    @contextmanager
    def atomic(self) -> Iterator[PositionLedger]:
        """
        Run a block of mutations all-or-nothing.

        On exception every balance change and event made inside the block is
        undone and the exception propagates. Scopes nest; only the outermost
        scope commits a PositionTransaction to the transaction log.
        """
        outermost = self._journal is None
        if outermost:
            self._journal = []
            self._events = []
        journal_mark = len(self._journal)
        events_mark = len(self._events)
        try:
            yield self
        except BaseException:
            self._undo(journal_mark)
            del self._events[events_mark:]
            if outermost:
                self._journal = None
                self._events = []
            raise
        if outermost:
            changes, events = tuple(self._journal), tuple(self._events)
            self._journal = None
            self._events = []
            if changes or events:
                self._commit(changes, events)

    def _commit(self, changes: Tuple[BalanceChange, ...], events: Tuple[Any, ...]) -> None:
        sequence = self._next_sequence
        self._next_sequence += 1
        timestamp = self.clock.current_time if self.clock is not None else 0
        self.transaction_log.append(PositionTransaction(
            exec_id=f"exec:{self.name}:{sequence:012d}:{timestamp}",
            sequence_number=sequence,
            timestamp=timestamp,
            changes=changes,
            events=events,
        ))

    def _undo(self, journal_mark: int) -> None:
        while len(self._journal) > journal_mark:
            change = self._journal.pop()
            self._write(change.account, change.key, change.old)

    def _write(self, account: str, key: str, value: int) -> None:
        if key == DEBT_KEY:
            self.minted_debt[account] = value
        else:
            self.collateral[account][key] = value

    def _set(self, account: str, key: str, new: int) -> None:
        if key == DEBT_KEY:
            old = self.minted_debt.get(account, 0)
        else:
            old = self.collateral.get(account, {}).get(key, 0)
        check_uint256(new, f"{key} balance of {account}")
        self._journal.append(BalanceChange(account=account, key=key, old=old, new=new))
        self._write(account, key, new)

    def _emit(self, event: Any) -> None:
        self._events.append(event)
        logger.debug("event %r", event)

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def deposit(self, user: str, asset: str, amount: int) -> None:
        """
        Credit user with amount of asset and pull the tokens in.

        Raises:
            NeedsMoreThanZero: If amount <= 0
            TokenNotAllowed: If asset is not registered
            TransferFailed: If the token reports failure
        """
        _require_positive(amount)
        self.registry.require_allowed(asset)
        with self.atomic():
            self._set(user, asset, self.get_collateral_balance(user, asset) + amount)
            self._emit(CollateralDeposited(user=user, token=asset, amount=amount))
            token = self.collateral_tokens[asset]
            if not token.transfer_from(self.address, user, self.address, amount):
                raise TransferFailed(f"transfer_from of {amount} {asset} from {user} failed")

    def withdraw(self, user: str, asset: str, amount: int, recipient: str) -> None:
        """
        Debit user's collateral and send the tokens to recipient.

        Raises:
            NeedsMoreThanZero: If amount <= 0
            TokenNotAllowed: If asset is not registered
            InsufficientCollateral: If amount exceeds user's balance
            TransferFailed: If the token reports failure
        """
        _require_positive(amount)
        balance = self.get_collateral_balance(user, asset)
        if amount > balance:
            raise InsufficientCollateral(
                f"{user} has {balance} {asset} deposited, cannot withdraw {amount}"
            )
        with self.atomic():
            self._set(user, asset, balance - amount)
            self._emit(CollateralRedeemed(
                redeemed_from=user, redeemed_to=recipient, token=asset, amount=amount,
            ))
            token = self.collateral_tokens[asset]
            if not token.transfer(self.address, recipient, amount):
                raise TransferFailed(f"transfer of {amount} {asset} to {recipient} failed")

    def mint(self, user: str, amount: int) -> None:
        """
        Increase user's minted debt. Bookkeeping only: the caller checks
        solvency and then issues the debt token.

        Raises:
            NeedsMoreThanZero: If amount <= 0
        """
        _require_positive(amount)
        with self.atomic():
            self._set(user, DEBT_KEY, self.get_minted_debt(user) + amount)
            self._emit(DebtMinted(user=user, amount=amount))

    def burn(self, amount: int, on_behalf_of: str, payer: str) -> None:
        """
        Reduce on_behalf_of's debt, pull amount of debt token from payer and
        destroy it.

        Raises:
            NeedsMoreThanZero: If amount <= 0
            InsufficientDebt: If amount exceeds on_behalf_of's debt
            TransferFailed: If the debt token reports failure
        """
        _require_positive(amount)
        debt = self.get_minted_debt(on_behalf_of)
        if amount > debt:
            raise InsufficientDebt(f"{on_behalf_of} owes {debt}, cannot burn {amount}")
        with self.atomic():
            self._set(on_behalf_of, DEBT_KEY, debt - amount)
            self._emit(DebtBurned(on_behalf_of=on_behalf_of, payer=payer, amount=amount))
            if not self.debt_token.transfer_from(self.address, payer, self.address, amount):
                raise TransferFailed(f"transfer_from of {amount} debt from {payer} failed")
            self.debt_token.burn(self.address, amount)

    def record_event(self, event: Any) -> None:
        """Emit an event into the current scope (committed with it)."""
        with self.atomic():
            self._emit(event)

    def __repr__(self) -> str:
        return (f"PositionLedger({self.name}, {len(self.list_users())} users, "
                f"{len(self.transaction_log)} transactions)")
