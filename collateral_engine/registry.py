"""
registry.py - Collateral Registry

The fixed, ordered mapping of approved collateral assets to their price
feeds. The asset set is set at construction and never changes afterwards.
"""

from __future__ import annotations
from typing import Dict, List, Sequence, Tuple

from .core import (
    PriceFeed,
    TokenAddressesAndPriceFeedsMismatch, TokenNotAllowed,
)


class CollateralRegistry:
    """
    Allow-list of collateral assets in registration order.

    Example:
        registry = CollateralRegistry(["WETH", "WBTC"], [eth_usd, btc_usd])
        registry.is_allowed("WETH")   # True
        registry.assets                # ("WETH", "WBTC")
    """

    def __init__(self, token_addresses: Sequence[str], price_feeds: Sequence[PriceFeed]):
        """
        Raises:
            TokenAddressesAndPriceFeedsMismatch: If the lists differ in length
            ValueError: If an asset appears twice or is empty
        """
        if len(token_addresses) != len(price_feeds):
            raise TokenAddressesAndPriceFeedsMismatch(
                f"{len(token_addresses)} token addresses but {len(price_feeds)} price feeds"
            )
        self._price_feeds: Dict[str, PriceFeed] = {}
        for token, feed in zip(token_addresses, price_feeds):
            if not token or not token.strip():
                raise ValueError("Collateral token address cannot be empty")
            if token in self._price_feeds:
                raise ValueError(f"Collateral token {token} registered twice")
            self._price_feeds[token] = feed
        self._assets: Tuple[str, ...] = tuple(token_addresses)

    @property
    def assets(self) -> Tuple[str, ...]:
        """Registered assets in their fixed registration order."""
        return self._assets

    def is_allowed(self, asset: str) -> bool:
        return asset in self._price_feeds

    def require_allowed(self, asset: str) -> None:
        """Raise TokenNotAllowed unless asset is registered."""
        if asset not in self._price_feeds:
            raise TokenNotAllowed(asset)

    def get_price_feed(self, asset: str) -> PriceFeed:
        self.require_allowed(asset)
        return self._price_feeds[asset]

    def items(self) -> List[Tuple[str, PriceFeed]]:
        return [(asset, self._price_feeds[asset]) for asset in self._assets]

    def __len__(self) -> int:
        return len(self._assets)

    def __contains__(self, asset: object) -> bool:
        return asset in self._price_feeds

    def __repr__(self):
        return f"CollateralRegistry({', '.join(self._assets)})"
