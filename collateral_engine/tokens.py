"""
tokens.py - Token Contracts on the In-Memory Chain

Token contracts are thin handles over a Chain: all balances, allowances and
supplies live in the Chain so that Chain.atomic() covers every token at once.

Classes:
- ERC20Token: fungible token whose transfers report failure by returning False
- DebtToken: the engine's debt token; only its owner may mint and burn

The first argument of every state-changing method is the calling account
(the implicit message sender of an on-chain call).
"""

from __future__ import annotations
from typing import Optional

from .chain import Chain, Unauthorized
from .core import ZERO_ADDRESS


class ERC20Token:
    """
    Fungible token with standard balance and allowance semantics.

    transfer() and transfer_from() return False instead of raising when the
    balance or allowance is insufficient. Negative amounts are programming
    errors and raise ValueError.
    """

    def __init__(self, chain: Chain, symbol: str, name: str, decimals: int = 18):
        if not symbol or not symbol.strip():
            raise ValueError("Token symbol cannot be empty")
        if decimals < 0:
            raise ValueError(f"Token decimals cannot be negative, got {decimals}")
        self.chain = chain
        self.symbol = symbol
        self.name = name
        self.token_decimals = decimals
        chain.register_token(self)

    @property
    def address(self) -> str:
        return self.symbol

    def decimals(self) -> int:
        return self.token_decimals

    def balance_of(self, owner: str) -> int:
        return self.chain.get_balance(owner, self.symbol)

    def total_supply(self) -> int:
        return self.chain.total_supply(self.symbol)

    def allowance(self, owner: str, spender: str) -> int:
        return self.chain.get_allowance(owner, spender, self.symbol)

    def approve(self, sender: str, spender: str, amount: int) -> bool:
        """Allow spender to pull up to amount from sender."""
        self.chain.set_allowance(sender, spender, self.symbol, amount)
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        """Move amount from sender to `to`; False if sender's balance is short."""
        _check_amount(amount)
        if to == ZERO_ADDRESS:
            return False
        return self.chain.move(self.symbol, sender, to, amount)

    def transfer_from(self, sender: str, source: str, dest: str, amount: int) -> bool:
        """
        Move amount from source to dest using sender's allowance.

        Returns False (and consumes no allowance) if the allowance or the
        source balance is insufficient.
        """
        _check_amount(amount)
        if dest == ZERO_ADDRESS:
            return False
        allowed = self.allowance(source, sender)
        if allowed < amount:
            return False
        if not self.chain.move(self.symbol, source, dest, amount):
            return False
        self.chain.set_allowance(source, sender, self.symbol, allowed - amount)
        return True

    def mint_to(self, to: str, amount: int) -> None:
        """Create amount of the token for `to` (test faucet; unrestricted)."""
        _check_amount(amount)
        self.chain.move(self.symbol, ZERO_ADDRESS, to, amount)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.symbol}, decimals={self.token_decimals})"


class DebtToken(ERC20Token):
    """
    The engine's debt token.

    mint() and burn() are restricted to the owner (the engine once ownership
    is transferred). burn() destroys tokens from the caller's own balance.
    """

    def __init__(
        self,
        chain: Chain,
        symbol: str = "DSC",
        name: str = "Decentralized Stable Coin",
        owner: Optional[str] = None,
    ):
        super().__init__(chain, symbol, name, decimals=18)
        self.owner = owner

    def transfer_ownership(self, sender: str, new_owner: str) -> None:
        if self.owner is not None and sender != self.owner:
            raise Unauthorized(f"{sender} is not the owner of {self.symbol}")
        self.owner = new_owner

    def mint(self, sender: str, to: str, amount: int) -> bool:
        """Mint amount to `to`. Returns False for a zero amount or the zero address."""
        self._require_owner(sender)
        _check_amount(amount)
        if amount == 0 or to == ZERO_ADDRESS:
            return False
        return self.chain.move(self.symbol, ZERO_ADDRESS, to, amount)

    def burn(self, sender: str, amount: int) -> None:
        """
        Destroy amount from sender's own balance.

        Raises:
            ValueError: If amount is not positive or exceeds the balance
        """
        self._require_owner(sender)
        if amount <= 0:
            raise ValueError(f"Burn amount must be positive, got {amount}")
        if not self.chain.move(self.symbol, sender, ZERO_ADDRESS, amount):
            raise ValueError(
                f"Burn amount exceeds balance: {amount} > {self.balance_of(sender)}"
            )

    def _require_owner(self, sender: str) -> None:
        if sender != self.owner:
            raise Unauthorized(f"{sender} is not the owner of {self.symbol}")


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValueError(f"Token amount must be int, got {type(amount)}")
    if amount < 0:
        raise ValueError(f"Token amount cannot be negative, got {amount}")
