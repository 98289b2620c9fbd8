"""
Order Book Implementation for the FTX Stream
============================================

Maintains a local replica of one market's order book from ``partial``
snapshots and ``update`` diffs, and validates it against the CRC32 checksum
the exchange attaches to every book message.

State machine: NotReady -> Ready on the first snapshot, Ready -> Ready on every
applied diff, Ready -> NotReady on an out-of-sequence diff or an explicit
resync. Diffs are rejected while NotReady.
"""

import operator
import threading
import zlib
from datetime import datetime
from decimal import Decimal, InvalidOperation
from itertools import zip_longest
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from loguru import logger
from sortedcontainers import SortedDict

from .events import BookEvent, PriceLevel, Side, SnapshotEvent, UpdateEvent
from .exceptions import MalformedMessage, OutOfSequence

# The exchange checksums the best 100 bids and best 100 asks
CHECKSUM_DEPTH = 100

LevelInput = Union[PriceLevel, Tuple[object, object]]


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, bool):
        raise MalformedMessage(f"Boolean is not a number: {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        number = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise MalformedMessage(f"Not a number: {value!r}")
    if not number.is_finite():
        raise MalformedMessage(f"Non-finite number: {value!r}")
    return number


def _normalize_levels(levels: Iterable[LevelInput], side: str,
                      allow_duplicates: bool) -> List[PriceLevel]:
    """Validate raw (price, size) pairs without touching any book state"""
    normalized = []
    seen = set()
    for level in levels:
        try:
            raw_price, raw_size = level
        except (TypeError, ValueError):
            raise MalformedMessage(f"{side} level must be a (price, size) pair: {level!r}")

        price, size = _to_decimal(raw_price), _to_decimal(raw_size)
        if price <= 0:
            raise MalformedMessage(f"{side} price must be positive: {price}")
        if size < 0:
            raise MalformedMessage(f"{side} size must not be negative: {price}:{size}")
        if price in seen and not allow_duplicates:
            raise MalformedMessage(f"Duplicate {side} price in snapshot: {price}")

        seen.add(price)
        normalized.append(PriceLevel(price, size))
    return normalized


def format_checksum_value(value: Decimal) -> str:
    """
    Render a price or size exactly like the exchange's serializer.

    The exchange renders its float values in shortest round-trip form, so
    whole numbers keep one decimal ("100.0"), fractions carry no trailing
    zeros ("0.25") and values under 1e-4 switch to exponent form ("1e-05").
    """
    return repr(float(value))


class Ladder:
    """
    One side of the book: price -> size, iterated best price first.

    Bids are keyed through a negating key function so that index 0 is always
    the best level on either side. Zero sizes are never stored.
    """

    def __init__(self, descending: bool = False):
        self.descending = descending
        self._levels: SortedDict = SortedDict(operator.neg) if descending else SortedDict()

    def __len__(self) -> int:
        return len(self._levels)

    def __iter__(self) -> Iterator[PriceLevel]:
        for price, size in self._levels.items():
            yield PriceLevel(price, size)

    def __contains__(self, price) -> bool:
        return price in self._levels

    def get(self, price: Decimal) -> Optional[Decimal]:
        return self._levels.get(price)

    def best(self) -> Optional[PriceLevel]:
        if not self._levels:
            return None
        price, size = self._levels.peekitem(0)
        return PriceLevel(price, size)

    def top(self, depth: int) -> List[PriceLevel]:
        return [PriceLevel(price, self._levels[price]) for price in self._levels.islice(0, depth)]

    def set(self, price: Decimal, size: Decimal) -> None:
        if size == 0:
            self._levels.pop(price, None)  # removing an absent price is a no-op
        else:
            self._levels[price] = size

    def replace(self, levels: Iterable[PriceLevel]) -> None:
        self._levels.clear()
        for price, size in levels:
            if size != 0:
                self._levels[price] = size

    def clear(self) -> None:
        self._levels.clear()


class OrderBook:
    """
    Local replica of one market's order book.

    - Bid/ask ladders kept in price order (SortedDict) with Decimal keys
    - Snapshot/diff application validated up front, never partially applied
    - CRC32 checksum over the interleaved top 100 levels, as the exchange computes it
    - Re-entrant lock so queries always observe a single ladder state
    """

    def __init__(self, market: str, checksum_depth: int = CHECKSUM_DEPTH):
        self.market = market
        self.checksum_depth = checksum_depth

        self.bids = Ladder(descending=True)
        self.asks = Ladder()

        # Freshness marker
        self.sequence: int = 0
        self.last_update_time: Optional[datetime] = None
        self.is_ready: bool = False

        self._lock = threading.RLock()

        self.stats = {
            'snapshots': 0,
            'updates': 0,
            'rejected': 0,
            'out_of_sequence': 0,
            'checksum_mismatches': 0,
            'resyncs': 0
        }

        logger.debug(f"OrderBook created for {market}")

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply_snapshot(self, bids: Iterable[LevelInput], asks: Iterable[LevelInput],
                       timestamp: Optional[datetime] = None) -> None:
        """
        Replace both ladders wholesale and mark the book ready.

        Raises MalformedMessage (book left untouched) on duplicate prices or
        negative sizes.
        """
        with self._lock:
            try:
                bid_levels = _normalize_levels(bids, "bid", allow_duplicates=False)
                ask_levels = _normalize_levels(asks, "ask", allow_duplicates=False)
            except MalformedMessage:
                self.stats['rejected'] += 1
                raise

            self.bids.replace(bid_levels)
            self.asks.replace(ask_levels)

            self.sequence = 0
            self.last_update_time = timestamp
            self.is_ready = True
            self.stats['snapshots'] += 1

            logger.debug(f"Snapshot applied for {self.market}: {len(self.bids)} bids, {len(self.asks)} asks")

    def apply_update(self, bids: Iterable[LevelInput], asks: Iterable[LevelInput],
                     timestamp: Optional[datetime] = None) -> None:
        """
        Apply a diff: size 0 removes the price, anything else inserts/replaces it.

        Raises OutOfSequence while the book is not ready, or when the diff is
        older than the last applied message (the book drops to NotReady).
        """
        with self._lock:
            if not self.is_ready:
                self.stats['out_of_sequence'] += 1
                raise OutOfSequence(self.market)

            if (timestamp is not None and self.last_update_time is not None
                    and timestamp < self.last_update_time):
                self.stats['out_of_sequence'] += 1
                self.invalidate(f"update at {timestamp.isoformat()} precedes {self.last_update_time.isoformat()}")
                raise OutOfSequence(self.market, f"Stale update for {self.market}; book needs a fresh snapshot")

            try:
                bid_levels = _normalize_levels(bids, "bid", allow_duplicates=True)
                ask_levels = _normalize_levels(asks, "ask", allow_duplicates=True)
            except MalformedMessage:
                self.stats['rejected'] += 1
                raise

            for price, size in bid_levels:
                self.bids.set(price, size)
            for price, size in ask_levels:
                self.asks.set(price, size)

            self.sequence += 1
            if timestamp is not None:
                self.last_update_time = timestamp
            self.stats['updates'] += 1

    def apply(self, event: BookEvent) -> None:
        """Apply a decoded ``partial`` or ``update`` frame"""
        if isinstance(event, SnapshotEvent):
            self.apply_snapshot(event.bids, event.asks, event.time)
        elif isinstance(event, UpdateEvent):
            self.apply_update(event.bids, event.asks, event.time)
        else:
            raise TypeError(f"Not a book event: {type(event).__name__}")

    def invalidate(self, reason: str = "resync requested") -> None:
        """Ready -> NotReady; diffs are refused until the next snapshot"""
        with self._lock:
            was_ready = self.is_ready
            self.bids.clear()
            self.asks.clear()
            self.is_ready = False
            self.sequence = 0
            self.last_update_time = None
            if was_ready:
                self.stats['resyncs'] += 1
                logger.warning(f"OrderBook {self.market} invalidated: {reason}")

    # ------------------------------------------------------------------
    # Checksum
    # ------------------------------------------------------------------

    def checksum_payload(self, depth: Optional[int] = None) -> str:
        """Canonical ``bid:ask`` interleaved ladder string the checksum is computed over"""
        if depth is None:
            depth = self.checksum_depth
        with self._lock:
            bids = self.bids.top(depth)
            asks = self.asks.top(depth)

        parts = []
        for bid, ask in zip_longest(bids, asks):
            if bid is not None:
                parts.append(f"{format_checksum_value(bid.price)}:{format_checksum_value(bid.size)}")
            if ask is not None:
                parts.append(f"{format_checksum_value(ask.price)}:{format_checksum_value(ask.size)}")
        return ":".join(parts)

    def checksum(self, depth: Optional[int] = None) -> int:
        """CRC32 of the canonical ladder string, as an unsigned 32-bit integer"""
        return zlib.crc32(self.checksum_payload(depth).encode("utf-8")) & 0xFFFFFFFF

    def verify_checksum(self, expected: int) -> bool:
        """Compare against the exchange checksum. Never raises; resync policy is the caller's."""
        computed = self.checksum()
        if computed != expected:
            self.stats['checksum_mismatches'] += 1
            logger.warning(f"Checksum mismatch for {self.market}: expected {expected}, computed {computed}")
            return False
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def best_bid(self) -> Optional[PriceLevel]:
        with self._lock:
            return self.bids.best()

    def best_ask(self) -> Optional[PriceLevel]:
        with self._lock:
            return self.asks.best()

    def best_bid_and_ask(self) -> Optional[Tuple[PriceLevel, PriceLevel]]:
        with self._lock:
            bid, ask = self.bids.best(), self.asks.best()
        if bid is None or ask is None:
            return None
        return bid, ask

    def bid_price(self) -> Optional[Decimal]:
        bid = self.best_bid()
        return bid.price if bid is not None else None

    def ask_price(self) -> Optional[Decimal]:
        ask = self.best_ask()
        return ask.price if ask is not None else None

    def mid_price(self) -> Optional[Decimal]:
        """Midpoint of best bid and best ask, not rounded to the price increment"""
        best = self.best_bid_and_ask()
        if best is None:
            return None
        bid, ask = best
        return (bid.price + ask.price) / 2

    def spread(self) -> Optional[Decimal]:
        best = self.best_bid_and_ask()
        if best is None:
            return None
        bid, ask = best
        return ask.price - bid.price

    def quote(self, side: Side, size: Union[Decimal, int, str]) -> Optional[Decimal]:
        """
        Expected average execution price of a market order of ``size``.

        A buy walks the asks, a sell walks the bids, best price outward.
        Returns None when the side does not hold enough liquidity.
        """
        quantity = _to_decimal(size)
        if quantity <= 0:
            raise ValueError(f"Quote size must be positive, got {size}")

        side = Side(side)
        with self._lock:
            ladder = self.asks if side is Side.BUY else self.bids
            remaining = quantity
            notional = Decimal(0)
            for price, level_size in ladder:
                filled = min(level_size, remaining)
                notional += price * filled
                remaining -= filled
                if remaining == 0:
                    return notional / quantity
        return None

    def get_depth(self, levels: int = 5) -> Dict:
        """Top ``levels`` of each side, best first"""
        with self._lock:
            return {
                'bids': [[price, size] for price, size in self.bids.top(levels)],
                'asks': [[price, size] for price, size in self.asks.top(levels)],
                'market': self.market,
                'sequence': self.sequence,
                'time': self.last_update_time
            }

    def is_healthy(self) -> bool:
        """Ready, both sides populated and not crossed"""
        with self._lock:
            if not self.is_ready:
                return False

            best = self.best_bid_and_ask()
            if best is None:
                return False

            bid, ask = best
            if bid.price >= ask.price:
                logger.warning(f"Crossed book detected for {self.market}: bid={bid.price}, ask={ask.price}")
                return False

            return True

    def get_statistics(self) -> Dict:
        with self._lock:
            return {
                **self.stats,
                'market': self.market,
                'levels': {'bids': len(self.bids), 'asks': len(self.asks)},
                'is_ready': self.is_ready,
                'sequence': self.sequence,
                'is_healthy': self.is_healthy(),
                'mid_price': self.mid_price(),
                'spread': self.spread()
            }

    def __repr__(self) -> str:
        return (f"OrderBook(market={self.market!r}, ready={self.is_ready}, "
                f"bids={len(self.bids)}, asks={len(self.asks)}, sequence={self.sequence})")
