"""
chain.py - In-Memory Token Chain

The Chain is the state container for everything outside the engine: token
balances, allowances, total supplies and the logical clock that price
freshness is measured against. Token contracts (see tokens.py) hold no state of
their own; they read and write through the Chain they are registered on.

Key responsibilities:
    - Implements the ChainView protocol (current_time) for oracles and feeds
    - Maintains per-wallet token balances with an inverted holder index
    - Records every balance movement in the transfer log
    - Provides atomic() so a failed engine call leaves no token movement behind
    - Tracks time, which can only move forward
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple, Any
import logging

from .core import ZERO_ADDRESS, format_units

logger = logging.getLogger(__name__)


# Default genesis time (2024-01-01T00:00:00Z) so freshly created rounds are never at time 0.
DEFAULT_GENESIS_TIME = 1_704_067_200


class ChainError(Exception):
    """Base exception for chain-level errors (misuse, not token failures)."""
    pass


class TokenNotRegistered(ChainError):
    """Raised when a token symbol is not registered on the chain."""
    pass


class Unauthorized(ChainError):
    """Raised when a privileged token operation is called by a non-owner."""
    pass


@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single recorded balance movement.

    Mints have source ZERO_ADDRESS; burns have dest ZERO_ADDRESS.

    Attributes:
        token: Symbol of the token moved
        source: Wallet debited
        dest: Wallet credited
        amount: Quantity moved (base units)
        sequence_number: Monotonic sequence within the chain
        timestamp: Chain time of the movement
    """
    token: str
    source: str
    dest: str
    amount: int
    sequence_number: int
    timestamp: int

    def __repr__(self) -> str:
        return f"Transfer({self.amount} {self.token}: {self.source}→{self.dest})"


class Chain:
    """
    In-memory token state with an audit trail and journaled rollback scopes.

    Wallets are implicit: any string is a valid wallet and starts with a zero
    balance of every token.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Chain instance.

    Example:
        chain = Chain("local")
        weth = ERC20Token(chain, "WETH", "Wrapped Ether")
        weth.mint_to("alice", 10 * 10**18)
        chain.get_balance("alice", "WETH")
    """

    def __init__(
        self,
        name: str = "local",
        initial_time: Optional[int] = None,
        verbose: bool = False,
    ):
        """
        Create a chain.

        Args:
            name: Chain identifier
            initial_time: Starting time in seconds (default: DEFAULT_GENESIS_TIME)
            verbose: Log every registration and movement at INFO
        """
        self.name = name
        self.verbose = verbose
        self.tokens: Dict[str, Any] = {}
        self.balances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self.supplies: Dict[str, int] = {}
        self.transfer_log: List[Transfer] = []
        self._current_time: int = DEFAULT_GENESIS_TIME if initial_time is None else initial_time
        self._next_sequence: int = 0
        # Inverted index mapping token -> {wallet -> balance} for holder lookups
        self._holders_by_token: Dict[str, Dict[str, int]] = defaultdict(dict)
        # Undo entries of the open atomic() scopes, None outside any scope
        self._undo_log: Optional[List[Tuple[str, Any, Any]]] = None

    # ========================================================================
    # ChainView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> int:
        """Current logical time of the chain, in seconds."""
        return self._current_time

    def get_balance(self, wallet_id: str, symbol: str) -> int:
        """
        Get the balance of a token in a wallet.

        Raises:
            TokenNotRegistered: If the token is not registered
        """
        self._require_token(symbol)
        return self.balances[wallet_id].get(symbol, 0) if wallet_id in self.balances else 0

    def get_allowance(self, owner: str, spender: str, symbol: str) -> int:
        """Get the amount spender may pull from owner."""
        self._require_token(symbol)
        return self.allowances.get((symbol, owner, spender), 0)

    def get_holders(self, symbol: str) -> Dict[str, int]:
        """Return all non-zero balances of a token, keyed by wallet."""
        return dict(self._holders_by_token.get(symbol, {}))

    def total_supply(self, symbol: str) -> int:
        """Total supply of a token (sum of mints minus burns)."""
        self._require_token(symbol)
        return self.supplies.get(symbol, 0)

    def get_token(self, symbol: str) -> Any:
        """Return the token contract registered under a symbol."""
        self._require_token(symbol)
        return self.tokens[symbol]

    def list_tokens(self) -> List[str]:
        """List all registered token symbols."""
        return sorted(self.tokens.keys())

    def verify_supplies(self) -> Dict[str, Any]:
        """
        Verify that every token's recorded supply equals the sum of its balances.

        Wallets are sorted before summation to ensure deterministic
        accumulation order.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every supply matches
            - 'supplies': Dict[str, int] - Recorded supply per token
            - 'discrepancies': List[Dict] - token, recorded, actual
        """
        supplies = {}
        discrepancies = []
        for symbol in self.tokens:
            recorded = self.supplies.get(symbol, 0)
            actual = sum(
                self.balances[w].get(symbol, 0) for w in sorted(self.balances)
            )
            supplies[symbol] = recorded
            if recorded != actual:
                discrepancies.append({
                    'token': symbol,
                    'recorded': recorded,
                    'actual': actual,
                })
        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: int) -> None:
        """
        Advance the chain's logical clock to a new time.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    def warp(self, seconds: int) -> None:
        """Advance the clock by a number of seconds."""
        self.advance_time(self._current_time + seconds)

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_token(self, token: Any) -> None:
        """
        Register a token contract under its symbol.

        Raises:
            ValueError: If the symbol is already registered
        """
        if token.symbol in self.tokens:
            raise ValueError(f"Token {token.symbol} already registered")
        self.tokens[token.symbol] = token
        self.supplies[token.symbol] = 0
        if self.verbose:
            logger.info("Registered: %s (%s) decimals=%d",
                        token.symbol, token.name, token.token_decimals)

    # ========================================================================
    # BALANCE MOVEMENTS (Mutating, used by token contracts)
    # ========================================================================

    def move(self, symbol: str, source: str, dest: str, amount: int) -> bool:
        """
        Move amount of a token from source to dest.

        Returns False (and changes nothing) if source holds less than amount.
        Mints use source ZERO_ADDRESS and burns dest ZERO_ADDRESS; both adjust
        the recorded supply.
        """
        self._require_token(symbol)
        if amount < 0:
            raise ValueError(f"Transfer amount cannot be negative, got {amount}")

        if source != ZERO_ADDRESS:
            available = self.balances[source][symbol]
            if available < amount:
                if self.verbose:
                    logger.info("✗ %s transfer: %s has %s < %s", symbol, source,
                                format_units(available), format_units(amount))
                return False
            self._set_balance(source, symbol, available - amount)
        else:
            self._journal_entry("supply", symbol, self.supplies[symbol])
            self.supplies[symbol] += amount

        if dest != ZERO_ADDRESS:
            self._set_balance(dest, symbol, self.balances[dest][symbol] + amount)
        else:
            self._journal_entry("supply", symbol, self.supplies[symbol])
            self.supplies[symbol] -= amount

        record = Transfer(
            token=symbol,
            source=source,
            dest=dest,
            amount=amount,
            sequence_number=self._next_sequence,
            timestamp=self._current_time,
        )
        self._next_sequence += 1
        self.transfer_log.append(record)
        if self.verbose:
            logger.info("✓ %r", record)
        return True

    def set_allowance(self, owner: str, spender: str, symbol: str, amount: int) -> None:
        """Set the amount spender may pull from owner."""
        self._require_token(symbol)
        if amount < 0:
            raise ValueError(f"Allowance cannot be negative, got {amount}")
        key = (symbol, owner, spender)
        self._journal_entry("allowance", key, self.allowances.get(key))
        self.allowances[key] = amount

    def _set_balance(self, wallet_id: str, symbol: str, amount: int) -> None:
        self._journal_entry("balance", (wallet_id, symbol), self.balances[wallet_id][symbol])
        self._write_balance(wallet_id, symbol, amount)

    def _write_balance(self, wallet_id: str, symbol: str, amount: int) -> None:
        self.balances[wallet_id][symbol] = amount
        if amount:
            self._holders_by_token[symbol][wallet_id] = amount
        else:
            # Remove zero positions from index
            self._holders_by_token[symbol].pop(wallet_id, None)

    def _require_token(self, symbol: str) -> None:
        if symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {symbol} not registered")

    # ========================================================================
    # UNDO JOURNAL
    # ========================================================================

    def _journal_entry(self, kind: str, key: Any, old: Any) -> None:
        if self._undo_log is not None:
            self._undo_log.append((kind, key, old))

    def _undo(self, mark: int) -> None:
        while len(self._undo_log) > mark:
            kind, key, old = self._undo_log.pop()
            if kind == "balance":
                wallet_id, symbol = key
                self._write_balance(wallet_id, symbol, old)
            elif kind == "supply":
                self.supplies[key] = old
            elif old is None:
                self.allowances.pop(key, None)
            else:
                self.allowances[key] = old

    @contextmanager
    def atomic(self) -> Iterator[Chain]:
        """
        Run a block of token movements all-or-nothing.

        If the block raises, balances, allowances, supplies and the transfer
        log are restored to their state on entry and the exception propagates.
        Scopes nest: an inner failure restores only the inner scope.

        Only entries written inside the block are journaled.
        """
        outermost = self._undo_log is None
        if outermost:
            self._undo_log = []
        mark = len(self._undo_log)
        log_length = len(self.transfer_log)
        sequence = self._next_sequence
        try:
            yield self
        except BaseException:
            self._undo(mark)
            del self.transfer_log[log_length:]
            self._next_sequence = sequence
            raise
        finally:
            if outermost:
                self._undo_log = None

    def clone(self) -> Chain:
        """
        Create a deep copy of this chain's state.

        Token contracts are shared by reference and stay bound to the original
        chain; the clone is for inspection and comparison.
        """
        cloned = Chain(self.name, initial_time=self._current_time, verbose=self.verbose)
        cloned.tokens = dict(self.tokens)
        cloned.transfer_log = list(self.transfer_log)
        cloned.allowances = dict(self.allowances)
        cloned.supplies = dict(self.supplies)
        cloned._next_sequence = self._next_sequence
        for wallet, bals in self.balances.items():
            cloned.balances[wallet] = defaultdict(int, bals)
        for symbol, holders in self._holders_by_token.items():
            cloned._holders_by_token[symbol] = dict(holders)
        return cloned

    def wallets(self) -> Set[str]:
        """Return every wallet that has ever held a balance."""
        return set(self.balances.keys())
