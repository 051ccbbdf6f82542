"""
oracle.py - Oracle price adapter and price feeds

Normalizes raw external quotes into OraclePrice values and enforces the
staleness and positivity requirements. Nothing is cached: every settlement
call re-fetches and re-validates its quote.

Classes:
- RawQuote: A quote as published by an external feed
- OraclePrice: Normalized, validated price (mantissa * 10^exponent)
- PriceFeed: Protocol for quote sources keyed by oracle id
- StaticPriceFeed: Latest quote per oracle, updated explicitly
- TimeSeriesPriceFeed: Historical quotes with point-in-time lookup
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .core import (
    I32_MAX, I32_MIN, MAX_PRICE_AGE_SEC,
    InvalidPriceRequirementError, OracleNotFound, StalePriceError,
)
from .decimal_math import from_scaled, scale_to_exponent, to_scaled


@dataclass(frozen=True, slots=True)
class RawQuote:
    """
    Quote as received from the external oracle transport.

    Value = price * 10^exponent. conf is the publisher's confidence interval
    in the same scale.
    """
    price: int
    exponent: int
    publish_time: int
    conf: int = 0


@dataclass(frozen=True, slots=True)
class OraclePrice:
    """Validated oracle price. Transient: derived per call, never persisted."""
    price: int
    exponent: int
    conf: int = 0
    published_at: int = 0

    def __post_init__(self):
        if isinstance(self.price, bool) or not isinstance(self.price, int):
            raise ValueError(f"price must be int, got {type(self.price).__name__}")
        if not I32_MIN <= self.exponent <= I32_MAX:
            raise ValueError(f"exponent out of range: {self.exponent}")

    @classmethod
    def from_decimal(cls, value: Decimal, exponent: int, published_at: int = 0) -> OraclePrice:
        """Build a price from a Decimal value at the given exponent (truncating)."""
        value = Decimal(str(value)) if not isinstance(value, Decimal) else value
        return cls(price=to_scaled(value, exponent), exponent=exponent, published_at=published_at)

    def scale_to_exponent(self, target_exponent: int) -> OraclePrice:
        """Re-express this price at target_exponent."""
        if target_exponent == self.exponent:
            return self
        return OraclePrice(
            price=scale_to_exponent(self.price, self.exponent, target_exponent),
            exponent=target_exponent,
            conf=scale_to_exponent(self.conf, self.exponent, target_exponent),
            published_at=self.published_at,
        )

    def get_price(self) -> Decimal:
        """Decimal value of this price. For display and pricing inputs only."""
        return from_scaled(self.price, self.exponent)


def new_from_quote(quote: RawQuote, current_time: int, max_age: int = MAX_PRICE_AGE_SEC) -> OraclePrice:
    """
    Validate a raw quote against the current time.

    Raises:
        StalePriceError: If current_time - publish_time exceeds max_age
        InvalidPriceRequirementError: If the quoted mantissa is not positive
    """
    age = current_time - quote.publish_time
    if age > max_age:
        raise StalePriceError(
            f"Stale oracle price: published at {quote.publish_time}, {age}s old (max {max_age}s)"
        )
    if quote.price <= 0:
        raise InvalidPriceRequirementError(f"Oracle price must be positive, got {quote.price}")
    return OraclePrice(
        price=quote.price,
        exponent=quote.exponent,
        conf=max(quote.conf, 0),
        published_at=quote.publish_time,
    )


@runtime_checkable
class PriceFeed(Protocol):
    """
    Protocol for quote sources.

    A feed returns the most recent quote it knows for an oracle id at the
    requested time, or None.
    """

    def get_quote(self, oracle_id: str, timestamp: int) -> Optional[RawQuote]:
        ...


def load_oracle_price(
    feed: PriceFeed,
    oracle_id: str,
    current_time: int,
    max_age: int = MAX_PRICE_AGE_SEC,
) -> OraclePrice:
    """
    Fetch and validate the price for oracle_id.

    Raises:
        OracleNotFound: If the feed has no quote for oracle_id
        StalePriceError: If the quote is too old
        InvalidPriceRequirementError: If the quote is not positive
    """
    quote = feed.get_quote(oracle_id, current_time)
    if quote is None:
        raise OracleNotFound(f"No quote for oracle {oracle_id}")
    return new_from_quote(quote, current_time, max_age)


class StaticPriceFeed:
    """
    Price feed holding the latest quote per oracle.

    The timestamp argument of get_quote() is ignored; staleness is judged
    from each quote's own publish_time.
    """

    def __init__(self, quotes: Optional[Dict[str, RawQuote]] = None):
        self.quotes: Dict[str, RawQuote] = dict(quotes or {})

    def get_quote(self, oracle_id: str, timestamp: int) -> Optional[RawQuote]:
        return self.quotes.get(oracle_id)

    def publish(self, oracle_id: str, quote: RawQuote) -> None:
        """Replace the latest quote for an oracle."""
        self.quotes[oracle_id] = quote

    def publish_price(
        self,
        oracle_id: str,
        price: Decimal,
        publish_time: int,
        exponent: int = -8,
    ) -> RawQuote:
        """Publish a Decimal price at the given exponent. Returns the stored quote."""
        price = Decimal(str(price)) if not isinstance(price, Decimal) else price
        quote = RawQuote(price=to_scaled(price, exponent), exponent=exponent, publish_time=publish_time)
        self.quotes[oracle_id] = quote
        return quote

    def __repr__(self):
        return f"StaticPriceFeed({len(self.quotes)} oracles)"


class TimeSeriesPriceFeed:
    """
    Price feed with historical quotes.

    get_quote() returns the most recent quote published at or before the
    requested timestamp. Histories are kept sorted by publish_time.

    Example:
        feed = TimeSeriesPriceFeed({
            'SOL/USD': [RawQuote(14_000_000_000, -8, 1_000), RawQuote(17_000_000_000, -8, 2_000)],
        })
        feed.get_quote('SOL/USD', 1_500)  # -> the 140.00 quote
    """

    def __init__(self, histories: Optional[Dict[str, List[RawQuote]]] = None):
        self.history: Dict[str, List[RawQuote]] = {}
        if histories:
            for oracle_id, quotes in histories.items():
                if not quotes:
                    continue
                self.history[oracle_id] = sorted(quotes, key=lambda q: q.publish_time)

    def add_quote(self, oracle_id: str, quote: RawQuote) -> None:
        """Add a quote, keeping the history ordered by publish_time."""
        quotes = self.history.setdefault(oracle_id, [])
        quotes.append(quote)
        quotes.sort(key=lambda q: q.publish_time)

    def get_quote(self, oracle_id: str, timestamp: int) -> Optional[RawQuote]:
        quotes = self.history.get(oracle_id)
        if not quotes:
            return None

        # Rightmost quote with publish_time <= timestamp
        times = [q.publish_time for q in quotes]
        idx = bisect_right(times, timestamp)
        if idx == 0:
            return None
        return quotes[idx - 1]

    def __repr__(self):
        total = sum(len(q) for q in self.history.values())
        return f"TimeSeriesPriceFeed({len(self.history)} oracles, {total} quotes)"


def price_pair(
    feed: PriceFeed,
    oracles: Tuple[str, str],
    current_time: int,
    max_age: int = MAX_PRICE_AGE_SEC,
) -> Tuple[OraclePrice, OraclePrice]:
    """Load two validated prices; the same oracle is only fetched once."""
    first = load_oracle_price(feed, oracles[0], current_time, max_age)
    if oracles[1] == oracles[0]:
        return first, first
    return first, load_oracle_price(feed, oracles[1], current_time, max_age)
