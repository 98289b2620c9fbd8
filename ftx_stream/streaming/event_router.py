"""
Event Routers
=============

Push decoded events to registered listeners, per market or for all markets.
Delivery follows arrival order; nothing is buffered or reordered.
"""

import threading
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Set

from loguru import logger

from ..data_ingestion.events import FillEvent, OrderUpdateEvent, StreamEvent

Listener = Callable[[StreamEvent], None]


class EventRouter:
    """
    Routes events to listeners registered for the event's market, then to the
    global listeners (``market=None``), each group in registration order.
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self._market_listeners: Dict[str, List[Listener]] = {}
        self._global_listeners: List[Listener] = []
        self._lock = threading.Lock()
        self.stats = {
            'dispatched': 0,
            'delivered': 0,
            'listener_errors': 0
        }

    def add_listener(self, listener: Listener, market: Optional[str] = None) -> Listener:
        """Register ``listener`` for one market, or for every market when ``market`` is None"""
        with self._lock:
            if market is None:
                self._global_listeners.append(listener)
            else:
                self._market_listeners.setdefault(market, []).append(listener)
        return listener

    def remove_listener(self, listener: Listener, market: Optional[str] = None) -> bool:
        with self._lock:
            listeners = self._global_listeners if market is None else self._market_listeners.get(market, [])
            if listener not in listeners:
                return False
            listeners.remove(listener)
            if market is not None and not listeners:
                del self._market_listeners[market]
            return True

    def listeners_for(self, market: Optional[str]) -> List[Listener]:
        with self._lock:
            scoped = list(self._market_listeners.get(market, [])) if market else []
            return scoped + list(self._global_listeners)

    def dispatch(self, event: StreamEvent) -> int:
        """Deliver ``event``; returns the number of listeners that accepted it"""
        self.stats['dispatched'] += 1
        delivered = 0
        for listener in self.listeners_for(event.market):
            try:
                listener(event)
                delivered += 1
            except Exception:
                self.stats['listener_errors'] += 1
                logger.exception(f"{self.name} listener failed on {type(event).__name__} for {event.market}")
        self.stats['delivered'] += delivered
        return delivered


class PrivateStreamRouter(EventRouter):
    """
    Router for the authenticated ``fills`` and ``orders`` channels.

    Fills redelivered by the transport (same fill id) are dropped when a
    dedup window is configured.
    """

    def __init__(self, dedup_window: int = 1000):
        super().__init__(name="private stream")
        self.dedup_window = dedup_window
        self._recent_fill_ids: Deque[int] = deque()
        self._recent_fill_set: Set[int] = set()
        self.stats['duplicate_fills'] = 0

    def dispatch(self, event: StreamEvent) -> int:
        if not isinstance(event, (FillEvent, OrderUpdateEvent)):
            raise TypeError(f"Private stream router only routes fills and order updates, got {type(event).__name__}")

        if isinstance(event, FillEvent) and self._is_duplicate(event.fill.id):
            self.stats['duplicate_fills'] += 1
            logger.debug(f"Dropping redelivered fill {event.fill.id} on {event.market}")
            return 0

        return super().dispatch(event)

    def _is_duplicate(self, fill_id: int) -> bool:
        if self.dedup_window <= 0:
            return False
        if fill_id in self._recent_fill_set:
            return True

        self._recent_fill_ids.append(fill_id)
        self._recent_fill_set.add(fill_id)
        if len(self._recent_fill_ids) > self.dedup_window:
            self._recent_fill_set.discard(self._recent_fill_ids.popleft())
        return False
