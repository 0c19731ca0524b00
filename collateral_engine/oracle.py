"""
oracle.py - Price Oracle Adapter

Wraps external price feeds and turns their latest round into a canonical
18-decimal USD price, failing closed on stale or inconsistent data.

A round is rejected when:
    - updated_at == 0 (the round was never populated)
    - answered_in_round < round_id (a stale answer carried forward)
    - now - updated_at > timeout (older than the staleness window, 3 hours)

There is no retry and no fallback price: the caller's whole request fails.
"""

from __future__ import annotations
import logging

from .core import (
    CANONICAL_DECIMALS, ORACLE_TIMEOUT,
    ChainView, PriceFeed, PriceQuote,
    InvalidPrice, StalePrice,
)
from .registry import CollateralRegistry

logger = logging.getLogger(__name__)


def stale_check_latest_round_data(
    feed: PriceFeed,
    now: int,
    timeout: int = ORACLE_TIMEOUT,
) -> PriceQuote:
    """
    Fetch the latest round of a feed and validate its freshness.

    Args:
        feed: The price feed to query
        now: Current time in seconds
        timeout: Maximum tolerated age of the round in seconds

    Returns:
        The validated PriceQuote

    Raises:
        StalePrice: If the round is unpopulated, carried forward, or too old
    """
    quote = feed.latest_round_data()

    if quote.updated_at == 0:
        raise StalePrice(f"Round {quote.round_id} was never populated")
    if quote.answered_in_round < quote.round_id:
        raise StalePrice(
            f"Round {quote.round_id} answered in earlier round {quote.answered_in_round}"
        )
    seconds_since = now - quote.updated_at
    if seconds_since > timeout:
        raise StalePrice(
            f"Round {quote.round_id} is {seconds_since}s old (timeout {timeout}s)"
        )
    return quote


def normalize_answer(answer: int, feed_decimals: int) -> int:
    """
    Scale a feed answer to 18 decimals.

    Feeds with more than 18 decimals are scaled down with truncation.

    Raises:
        InvalidPrice: If the answer is negative
    """
    if answer < 0:
        raise InvalidPrice(f"Negative feed answer: {answer}")
    if feed_decimals <= CANONICAL_DECIMALS:
        return answer * 10 ** (CANONICAL_DECIMALS - feed_decimals)
    return answer // 10 ** (feed_decimals - CANONICAL_DECIMALS)


class PriceOracleAdapter:
    """
    Canonical price lookup for registered collateral assets.

    Prices are fetched on every call; nothing is cached.
    """

    def __init__(self, registry: CollateralRegistry, clock: ChainView, timeout: int = ORACLE_TIMEOUT):
        if timeout <= 0:
            raise ValueError(f"Oracle timeout must be positive, got {timeout}")
        self.registry = registry
        self.clock = clock
        self.timeout = timeout

    def get_quote(self, asset: str) -> PriceQuote:
        """Return the validated latest round for an asset's feed."""
        feed = self.registry.get_price_feed(asset)
        try:
            return stale_check_latest_round_data(feed, self.clock.current_time, self.timeout)
        except StalePrice as e:
            logger.warning("Stale price for %s: %s", asset, e)
            raise

    def get_canonical_price(self, asset: str) -> int:
        """
        Return the 18-decimal USD price of one whole unit of asset.

        Raises:
            TokenNotAllowed: If the asset is not registered
            StalePrice: If the feed's latest round fails validation
            InvalidPrice: If the answer is negative
        """
        quote = self.get_quote(asset)
        feed = self.registry.get_price_feed(asset)
        return normalize_answer(quote.answer, feed.decimals())
