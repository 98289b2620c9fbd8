"""
Subscription Registry
=====================

Desired-state ledger of (channel, market) subscriptions. It performs no I/O;
the connector reads it on every (re)connect and reconciles it against what the
exchange has acknowledged on the live socket.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from loguru import logger


class Channel(str, Enum):
    ORDERBOOK = "orderbook"
    TRADES = "trades"
    TICKER = "ticker"
    FILLS = "fills"
    ORDERS = "orders"

    @property
    def is_private(self) -> bool:
        """Fills and orders need an authenticated socket and carry no market"""
        return self in (Channel.FILLS, Channel.ORDERS)


class SubscriptionState(Enum):
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBING = "unsubscribing"


SubscriptionKey = Tuple[Channel, Optional[str]]


def subscription_key(channel, market: Optional[str] = None) -> SubscriptionKey:
    """Normalize a (channel, market) pair; private channels never carry a market"""
    channel = Channel(channel)
    if channel.is_private:
        return channel, None
    if not market:
        raise ValueError(f"Channel '{channel.value}' requires a market")
    return channel, market


@dataclass
class SubscriptionEntry:
    channel: Channel
    market: Optional[str]
    state: SubscriptionState = SubscriptionState.SUBSCRIBED

    @property
    def key(self) -> SubscriptionKey:
        return self.channel, self.market


@dataclass(frozen=True)
class SubscriptionPlan:
    """Operations needed to bring a connection in line with the desired state"""
    to_subscribe: FrozenSet[SubscriptionKey] = field(default_factory=frozenset)
    to_unsubscribe: FrozenSet[SubscriptionKey] = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        return not self.to_subscribe and not self.to_unsubscribe


class SubscriptionRegistry:
    """Single source of truth for what should be subscribed after a reconnect"""

    def __init__(self, subscriptions: Iterable[SubscriptionKey] = ()):
        self._entries: Dict[SubscriptionKey, SubscriptionEntry] = {}
        self._lock = threading.Lock()
        for channel, market in subscriptions:
            self.subscribe(channel, market)

    def subscribe(self, channel, market: Optional[str] = None) -> bool:
        """Add to the desired set. Returns False if it was already there."""
        key = subscription_key(channel, market)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.state is SubscriptionState.SUBSCRIBED:
                return False
            self._entries[key] = SubscriptionEntry(*key)
        logger.debug(f"Subscription desired: {key[0].value} {key[1] or ''}".rstrip())
        return True

    def unsubscribe(self, channel, market: Optional[str] = None) -> bool:
        """Remove from the desired set. Returns False if it was not desired."""
        key = subscription_key(channel, market)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.state is SubscriptionState.UNSUBSCRIBING:
                return False
            entry.state = SubscriptionState.UNSUBSCRIBING
        logger.debug(f"Subscription released: {key[0].value} {key[1] or ''}".rstrip())
        return True

    def confirm_unsubscribed(self, channel, market: Optional[str] = None) -> None:
        """Drop an UNSUBSCRIBING entry once the exchange acknowledged it"""
        key = subscription_key(channel, market)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.state is SubscriptionState.UNSUBSCRIBING:
                del self._entries[key]

    def desired_state(self) -> Set[SubscriptionKey]:
        with self._lock:
            return {key for key, entry in self._entries.items()
                    if entry.state is SubscriptionState.SUBSCRIBED}

    def pending_unsubscribes(self) -> Set[SubscriptionKey]:
        with self._lock:
            return {key for key, entry in self._entries.items()
                    if entry.state is SubscriptionState.UNSUBSCRIBING}

    def is_subscribed(self, channel, market: Optional[str] = None) -> bool:
        return subscription_key(channel, market) in self.desired_state()

    def markets(self, channel) -> List[str]:
        """Markets with a desired subscription on ``channel``, sorted"""
        channel = Channel(channel)
        return sorted(market for ch, market in self.desired_state() if ch is channel and market)

    def reconcile(self, acknowledged: Iterable[SubscriptionKey]) -> SubscriptionPlan:
        """
        Diff the desired set against what a connection has acknowledged.

        A fresh connection has acknowledged nothing, so the plan replays the
        whole desired state.
        """
        acknowledged = {subscription_key(channel, market) for channel, market in acknowledged}
        desired = self.desired_state()
        return SubscriptionPlan(
            to_subscribe=frozenset(desired - acknowledged),
            to_unsubscribe=frozenset(acknowledged - desired)
        )

    def entries(self) -> List[SubscriptionEntry]:
        with self._lock:
            return [SubscriptionEntry(e.channel, e.market, e.state) for e in self._entries.values()]

    def __len__(self) -> int:
        return len(self.desired_state())

    def __contains__(self, key) -> bool:
        channel, market = key
        return self.is_subscribed(channel, market)
