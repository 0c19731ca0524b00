"""
feeds.py - Price feed implementations for collateral valuation

Provides round-based price feeds that satisfy the PriceFeed protocol.

Classes:
- MockPriceFeed: A settable feed; every update opens a new round at chain time
- TimeSeriesPriceFeed: Time-varying prices with historical data, resolved
  against the chain clock

All answers are signed integers in the feed's own decimals, USD per one whole
unit of the asset.
"""

from __future__ import annotations
from bisect import bisect_right
from typing import Dict, List, Optional, Tuple

from .core import ChainView, PriceQuote


class MockPriceFeed:
    """
    Price feed with a settable answer.

    Each update_answer() starts a new round stamped with the current chain
    time. update_round_data() writes an arbitrary round, which is how stale or
    inconsistent rounds are produced in tests.
    """

    def __init__(self, clock: ChainView, decimals: int, initial_answer: int, description: str = ""):
        """
        Initialize with a first round.

        Args:
            clock: Source of the current time for new rounds
            decimals: Number of decimals in the answer (8 for USD pairs)
            initial_answer: First answer, in feed decimals
            description: Human-readable pair name (e.g., "ETH / USD")
        """
        self.clock = clock
        self._decimals = decimals
        self.description = description
        self.rounds: Dict[int, PriceQuote] = {}
        self.latest_round = 0
        self.update_answer(initial_answer)

    def decimals(self) -> int:
        return self._decimals

    def update_answer(self, answer: int) -> None:
        """Open a new round with answer at the current chain time."""
        now = self.clock.current_time
        round_id = self.latest_round + 1
        self.rounds[round_id] = PriceQuote(
            round_id=round_id,
            answer=answer,
            started_at=now,
            updated_at=now,
            answered_in_round=round_id,
        )
        self.latest_round = round_id

    def update_round_data(
        self,
        round_id: int,
        answer: int,
        updated_at: int,
        started_at: Optional[int] = None,
        answered_in_round: Optional[int] = None,
    ) -> None:
        """Write a round verbatim and make it the latest round."""
        self.rounds[round_id] = PriceQuote(
            round_id=round_id,
            answer=answer,
            started_at=updated_at if started_at is None else started_at,
            updated_at=updated_at,
            answered_in_round=round_id if answered_in_round is None else answered_in_round,
        )
        self.latest_round = round_id

    def latest_answer(self) -> int:
        return self.rounds[self.latest_round].answer

    def latest_round_data(self) -> PriceQuote:
        return self.rounds[self.latest_round]

    def get_round_data(self, round_id: int) -> PriceQuote:
        if round_id not in self.rounds:
            raise KeyError(f"No data present for round {round_id}")
        return self.rounds[round_id]

    def __repr__(self):
        return (f"MockPriceFeed({self.description or 'unnamed'}, "
                f"answer={self.latest_answer()}, decimals={self._decimals})")


class TimeSeriesPriceFeed:
    """
    Price feed backed by a time-ordered price path.

    latest_round_data() returns the most recent observation at or before the
    chain's current time. Round ids are 1-based observation indices. Before the
    first observation the feed returns an unpopulated round (updated_at == 0).

    Example:
        feed = TimeSeriesPriceFeed(chain, 8, [(t0, 2000_00000000), (t1, 1800_00000000)])
    """

    def __init__(
        self,
        clock: ChainView,
        decimals: int,
        price_path: Optional[List[Tuple[int, int]]] = None,
        description: str = "",
    ):
        self.clock = clock
        self._decimals = decimals
        self.description = description
        # Sort by timestamp to ensure chronological order
        self.price_history: List[Tuple[int, int]] = sorted(price_path or [], key=lambda x: x[0])

    def decimals(self) -> int:
        return self._decimals

    def add_price(self, timestamp: int, answer: int) -> None:
        """Add an observation, keeping the history sorted by timestamp."""
        self.price_history.append((timestamp, answer))
        self.price_history.sort(key=lambda x: x[0])

    def latest_round_data(self) -> PriceQuote:
        # Binary search: rightmost observation with ts <= now
        timestamps = [ts for ts, _ in self.price_history]
        idx = bisect_right(timestamps, self.clock.current_time)

        if idx == 0:
            return PriceQuote(round_id=0, answer=0, started_at=0, updated_at=0, answered_in_round=0)

        timestamp, answer = self.price_history[idx - 1]
        return PriceQuote(
            round_id=idx,
            answer=answer,
            started_at=timestamp,
            updated_at=timestamp,
            answered_in_round=idx,
        )

    def get_all_timestamps(self) -> List[int]:
        return [ts for ts, _ in self.price_history]

    def __repr__(self):
        return (f"TimeSeriesPriceFeed({self.description or 'unnamed'}, "
                f"{len(self.price_history)} observations, decimals={self._decimals})")
