"""
FTX WebSocket Connector
=======================

Connection supervisor for the FTX websocket API:
- Login, ping heartbeat and subscription replay on every (re)connect
- Strictly ordered frame handling: decode -> order book / routers
- Checksum verification with resubscribe-based resync
- Reconnection with exponential backoff; books drop to NotReady on disconnect
"""

import asyncio
import hashlib
import hmac
import json
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from loguru import logger

from ..data_ingestion.events import (
    BookEvent, ErrorEvent, FillEvent, HeartbeatEvent, InfoEvent, MalformedEvent,
    OrderUpdateEvent, SnapshotEvent, StreamEvent, SubscribedEvent, TickerEvent,
    TradesEvent, UnknownEvent, UnsubscribedEvent
)
from ..data_ingestion.exceptions import (
    ChecksumMismatch, FtxStreamError, MalformedMessage, MissingSubscriptionConfirmation,
    NotSubscribed, OutOfSequence, SocketNotAuthenticated, UnknownMessage
)
from ..data_ingestion.message_decoder import MessageDecoder
from ..data_ingestion.order_book import OrderBook
from ..data_ingestion.subscription_registry import (
    Channel, SubscriptionKey, SubscriptionRegistry, subscription_key
)
from ..utils.config import FtxConfig, StreamConfig, config
from .event_router import EventRouter, PrivateStreamRouter


def sign_login(secret: str, timestamp_ms: int) -> str:
    """HMAC-SHA256 signature of ``{timestamp}websocket_login``, hex encoded"""
    payload = f"{timestamp_ms}websocket_login".encode()
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class FtxConnector:
    """
    FTX websocket client that keeps one OrderBook per subscribed market.

    The subscription registry holds the desired state; on every connection the
    connector reconciles it against the subscriptions the exchange has
    acknowledged on that socket. All frames of a connection are handled in
    arrival order by a single task, so diffs are never reordered.
    """

    def __init__(self,
                 markets: Iterable[str] = (),
                 channels: Iterable[Channel] = (Channel.ORDERBOOK,),
                 ftx_config: Optional[FtxConfig] = None,
                 stream_config: Optional[StreamConfig] = None,
                 registry: Optional[SubscriptionRegistry] = None,
                 connect: Optional[Callable[..., Any]] = None):

        self.ftx_config = ftx_config or config.ftx
        self.stream_config = stream_config or config.stream
        self.ws_url = self.ftx_config.ws_url
        self._connect = connect or websockets.connect

        self.registry = registry if registry is not None else SubscriptionRegistry()
        for market in markets:
            for channel in channels:
                self.registry.subscribe(channel, market)

        private = sorted(c.value for c, _ in self.registry.desired_state() if c.is_private)
        if private and not self.ftx_config.has_credentials:
            raise SocketNotAuthenticated(f"Channels {private} require API credentials")

        self.decoder = MessageDecoder()
        self.private_router = PrivateStreamRouter(dedup_window=self.stream_config.fill_dedup_window)
        self.market_router = EventRouter(name="market data")

        # One book per desired orderbook subscription
        self.books: Dict[str, OrderBook] = {}
        for market in self.registry.markets(Channel.ORDERBOOK):
            self._ensure_book(market)

        # WebSocket connection state
        self.websocket = None
        self.is_connected = False
        self.is_running = False
        self.is_authenticated = False
        self.reconnect_count = 0
        self.reconnect_delay = self.stream_config.reconnect_delay

        # Incremented on every connect and disconnect; frames of an older epoch are dropped
        self.epoch = 0
        self._acknowledged: Set[SubscriptionKey] = set()
        self._pending_acks: Dict[SubscriptionKey, int] = {}
        self._resyncing: Set[str] = set()
        self._reconnect_requested = False
        self._ping_task: Optional[asyncio.Task] = None

        # Event loop and threading
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.thread: Optional[threading.Thread] = None

        self.callbacks: Dict[str, List[Callable]] = {
            'on_book_update': [],
            'on_resync': [],
            'on_error': [],
            'on_connection_change': []
        }

        self.stats = {
            'messages_received': 0,
            'messages_processed': 0,
            'stale_frames': 0,
            'checksum_mismatches': 0,
            'resyncs': 0,
            'connection_errors': 0,
            'reconnections': 0,
            'last_message_time': 0.0,
            'last_pong_time': 0.0
        }

        logger.info(f"FtxConnector initialized for {self.ws_url} with {len(self.registry)} subscriptions")

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def add_callback(self, event_type: str, callback: Callable):
        """Add callback for a connector event"""
        if event_type not in self.callbacks:
            raise ValueError(f"Unknown callback type: {event_type}")
        self.callbacks[event_type].append(callback)

    def remove_callback(self, event_type: str, callback: Callable):
        if event_type in self.callbacks and callback in self.callbacks[event_type]:
            self.callbacks[event_type].remove(callback)

    def _emit_event(self, event_type: str, data: Any):
        for callback in self.callbacks.get(event_type, []):
            try:
                callback(data)
            except Exception as e:
                logger.error(f"Callback error for {event_type}: {e}")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def _ensure_book(self, market: str) -> OrderBook:
        book = self.books.get(market)
        if book is None:
            book = OrderBook(market, checksum_depth=self.stream_config.checksum_depth)
            self.books[market] = book
        return book

    async def subscribe(self, channel, market: Optional[str] = None) -> None:
        """Add a subscription to the desired state and send it if connected"""
        key = subscription_key(channel, market)
        if key[0].is_private and not self.ftx_config.has_credentials:
            raise SocketNotAuthenticated(f"Channel '{key[0].value}' requires API credentials")

        if not self.registry.subscribe(*key):
            return
        if key[0] is Channel.ORDERBOOK:
            self._ensure_book(key[1])
        if self.is_connected:
            await self._reconcile_subscriptions()

    async def unsubscribe(self, channel, market: Optional[str] = None) -> None:
        """Remove a subscription; its order book is discarded"""
        key = subscription_key(channel, market)
        if not self.registry.unsubscribe(*key):
            return

        if key[0] is Channel.ORDERBOOK:
            book = self.books.pop(key[1], None)
            if book is not None:
                book.invalidate("unsubscribed")
            self._resyncing.discard(key[1])

        if self.is_connected and (key in self._acknowledged or key in self._pending_acks):
            await self._reconcile_subscriptions()
        else:
            self.registry.confirm_unsubscribed(*key)

    def order_book(self, market: str) -> OrderBook:
        """Order book of a subscribed market"""
        book = self.books.get(market)
        if book is None:
            raise NotSubscribed(f"No order book subscription for {market}")
        return book

    def get_order_book(self, market: str) -> Optional[OrderBook]:
        return self.books.get(market)

    async def _reconcile_subscriptions(self) -> None:
        """Send the operations that bring this socket in line with the registry"""
        in_flight = self._acknowledged | set(self._pending_acks)
        plan = self.registry.reconcile(in_flight)

        for key in sorted(plan.to_unsubscribe, key=self._sort_key):
            await self._send_subscription_op("unsubscribe", key)
            self._pending_acks.pop(key, None)

        for key in sorted(plan.to_subscribe, key=self._sort_key):
            channel, market = key
            if channel is Channel.ORDERBOOK:
                self._ensure_book(market)
            await self._send_subscription_op("subscribe", key)
            self._pending_acks[key] = 0

        if not plan.is_empty:
            logger.info(f"Subscriptions reconciled: +{len(plan.to_subscribe)} -{len(plan.to_unsubscribe)}")

    @staticmethod
    def _sort_key(key: SubscriptionKey):
        return key[0].value, key[1] or ""

    async def _send_subscription_op(self, op: str, key: SubscriptionKey) -> None:
        channel, market = key
        await self._send({"op": op, "channel": channel.value, "market": market or ""})

    async def _send(self, payload: Dict[str, Any]) -> None:
        await self.websocket.send(json.dumps(payload))

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """Open the socket, log in and replay the desired subscriptions"""
        try:
            logger.info(f"Connecting to FTX WebSocket: {self.ws_url}")

            self.websocket = await self._connect(
                self.ws_url,
                ping_interval=20,
                ping_timeout=10,
                close_timeout=10
            )

            self.epoch += 1
            self.is_connected = True
            self.reconnect_count = 0
            self.reconnect_delay = self.stream_config.reconnect_delay
            self._reconnect_requested = False
            self._acknowledged.clear()
            self._pending_acks.clear()

            if self.ftx_config.has_credentials:
                await self._login()

            # Every book needs a fresh partial from this connection
            for book in self.books.values():
                book.invalidate("new connection")

            await self._reconcile_subscriptions()

            logger.success(f"WebSocket connected (epoch {self.epoch})")
            self._emit_event('on_connection_change', True)
            return True

        except Exception as e:
            logger.error(f"Failed to connect: {e}")
            self.is_connected = False
            self.stats['connection_errors'] += 1
            return False

    async def _login(self) -> None:
        timestamp = int(time.time() * 1000)
        args = {
            "key": self.ftx_config.api_key,
            "sign": sign_login(self.ftx_config.secret_key, timestamp),
            "time": timestamp
        }
        if self.ftx_config.subaccount:
            args["subaccount"] = self.ftx_config.subaccount
        await self._send({"op": "login", "args": args})
        self.is_authenticated = True
        logger.info("Login sent" + (f" for subaccount {self.ftx_config.subaccount}" if self.ftx_config.subaccount else ""))

    async def handle_disconnect(self, reason: str = "connection lost") -> None:
        """
        Cancellation boundary: frames of the old connection are abandoned,
        every book drops to NotReady and acknowledgements are forgotten.
        """
        self.is_connected = False
        self.is_authenticated = False
        self.epoch += 1
        self._acknowledged.clear()
        self._pending_acks.clear()
        self._resyncing.clear()

        for book in self.books.values():
            book.invalidate(reason)

        # The next socket starts without any subscription, so nothing is left to unsubscribe
        for channel, market in self.registry.pending_unsubscribes():
            self.registry.confirm_unsubscribed(channel, market)

        if self.websocket is not None:
            try:
                await self.websocket.close()
            except (WebSocketException, OSError) as e:
                logger.debug(f"Error closing websocket: {e}")
            self.websocket = None

        logger.warning(f"Disconnected: {reason}")
        self._emit_event('on_connection_change', False)

    async def disconnect(self):
        """Gracefully disconnect WebSocket"""
        self.is_running = False
        await self._stop_ping()
        if self.websocket is not None:
            await self.handle_disconnect("client disconnect")
        logger.info("WebSocket disconnected")

    async def _ping_loop(self):
        """FTX closes sockets that do not ping at least every 15 seconds"""
        while self.is_connected and self.websocket is not None:
            await asyncio.sleep(self.stream_config.ping_interval)
            try:
                await self._send({"op": "ping"})
            except (ConnectionClosed, WebSocketException) as e:
                logger.warning(f"Ping failed: {e}")
                return

    async def _stop_ping(self):
        if self._ping_task is not None:
            self._ping_task.cancel()
            try:
                await self._ping_task
            except asyncio.CancelledError:
                pass
            self._ping_task = None

    async def _reconnect_loop(self) -> bool:
        """Handle reconnection with exponential backoff"""
        while self.is_running and self.reconnect_count < self.stream_config.max_reconnect_attempts:
            logger.info(f"Attempting reconnection #{self.reconnect_count + 1}")

            await asyncio.sleep(self.reconnect_delay)

            if await self.connect():
                logger.success("Reconnection successful")
                self.stats['reconnections'] += 1
                return True

            self.reconnect_count += 1
            self.reconnect_delay = min(
                self.reconnect_delay * 2,
                self.stream_config.max_reconnect_delay
            )

        logger.error("Max reconnection attempts reached")
        return False

    async def run(self):
        """Main run loop with automatic reconnection"""
        self.is_running = True

        while self.is_running:
            if not self.is_connected:
                if not await self.connect() and not await self._reconnect_loop():
                    self.is_running = False
                    break

            self._ping_task = asyncio.create_task(self._ping_loop())
            try:
                await self._message_handler()
            finally:
                await self._stop_ping()

            if self.is_running:
                await self.handle_disconnect("server restart" if self._reconnect_requested else "connection lost")

    async def _message_handler(self):
        """Read frames of the current connection until it drops"""
        epoch = self.epoch
        while self.is_running and self.websocket is not None and not self._reconnect_requested:
            try:
                message = await asyncio.wait_for(
                    self.websocket.recv(),
                    timeout=self.stream_config.receive_timeout
                )
            except asyncio.TimeoutError:
                logger.warning("WebSocket receive timeout")
                break
            except ConnectionClosed:
                logger.warning("WebSocket connection closed")
                break
            except WebSocketException as e:
                logger.error(f"WebSocket error: {e}")
                self.stats['connection_errors'] += 1
                break

            self.stats['messages_received'] += 1
            self.stats['last_message_time'] = time.time()

            try:
                await self.process_frame(message, epoch)
            except (ConnectionClosed, WebSocketException) as e:
                logger.warning(f"Connection dropped while handling frame: {e}")
                break

    # ------------------------------------------------------------------
    # Frame handling
    # ------------------------------------------------------------------

    async def process_frame(self, raw, epoch: Optional[int] = None) -> Optional[StreamEvent]:
        """Decode and handle one frame; frames from an abandoned connection are dropped"""
        if epoch is not None and epoch != self.epoch:
            self.stats['stale_frames'] += 1
            return None

        event = self.decoder.decode(raw)
        await self._age_pending_acks()
        await self.handle_event(event)
        self.stats['messages_processed'] += 1
        return event

    async def handle_event(self, event: StreamEvent) -> None:
        if isinstance(event, BookEvent):
            await self._handle_book_event(event)
        elif isinstance(event, (TradesEvent, TickerEvent)):
            self.market_router.dispatch(event)
        elif isinstance(event, (FillEvent, OrderUpdateEvent)):
            self.private_router.dispatch(event)
        elif isinstance(event, SubscribedEvent):
            self._on_subscribed(event)
        elif isinstance(event, UnsubscribedEvent):
            await self._on_unsubscribed(event)
        elif isinstance(event, HeartbeatEvent):
            self.stats['last_pong_time'] = time.time()
        elif isinstance(event, InfoEvent):
            logger.info(f"Exchange info {event.code}: {event.msg}")
            if event.requests_reconnect:
                self._reconnect_requested = True
        elif isinstance(event, ErrorEvent):
            logger.error(f"Exchange error {event.code}: {event.msg}")
            self._emit_event('on_error', FtxStreamError(f"Exchange error {event.code}: {event.msg}"))
        elif isinstance(event, UnknownEvent):
            self._emit_event('on_error', UnknownMessage(event.reason, raw=event.raw))
        elif isinstance(event, MalformedEvent):
            self._emit_event('on_error', event.error)

    def _event_key(self, event) -> Optional[SubscriptionKey]:
        try:
            return subscription_key(event.channel, event.market)
        except ValueError:
            logger.debug(f"Acknowledgement for unknown subscription: {event.channel} {event.market}")
            return None

    def _on_subscribed(self, event: SubscribedEvent) -> None:
        key = self._event_key(event)
        if key is None:
            return
        self._acknowledged.add(key)
        self._pending_acks.pop(key, None)
        logger.info(f"Subscribed to {key[0].value} {key[1] or ''}".rstrip())

    async def _on_unsubscribed(self, event: UnsubscribedEvent) -> None:
        key = self._event_key(event)
        if key is None:
            return
        self._acknowledged.discard(key)
        self.registry.confirm_unsubscribed(*key)
        logger.info(f"Unsubscribed from {key[0].value} {key[1] or ''}".rstrip())

        # Subscribed again while the unsubscribe was in flight
        if self.is_connected and self.registry.is_subscribed(*key):
            await self._reconcile_subscriptions()

    async def _age_pending_acks(self) -> None:
        """An acknowledgement must arrive within the configured number of frames"""
        expired = []
        for key in list(self._pending_acks):
            self._pending_acks[key] += 1
            if self._pending_acks[key] > self.stream_config.subscription_ack_window:
                expired.append(key)

        for key in expired:
            del self._pending_acks[key]
            error = MissingSubscriptionConfirmation(f"No confirmation for {key[0].value} {key[1] or ''}".rstrip())
            logger.error(str(error))
            self._emit_event('on_error', error)

        if expired and self.is_connected:
            await self._reconcile_subscriptions()

    async def _handle_book_event(self, event: BookEvent) -> None:
        book = self.books.get(event.market)
        if book is None:
            logger.debug(f"Order book frame for unsubscribed market {event.market}")
            return

        if event.market in self._resyncing and not isinstance(event, SnapshotEvent):
            # Leftover diffs of the subscription being replaced
            return

        try:
            book.apply(event)
        except OutOfSequence as e:
            logger.warning(str(e))
            await self.resync(event.market, str(e))
            return
        except MalformedMessage as e:
            logger.warning(f"Rejected order book frame for {event.market}: {e}")
            self._emit_event('on_error', e)
            await self.resync(event.market, str(e))
            return

        self._resyncing.discard(event.market)

        if not book.verify_checksum(event.checksum):
            self.stats['checksum_mismatches'] += 1
            self._emit_event('on_error', ChecksumMismatch(event.market, event.checksum, book.checksum()))
            if self.stream_config.resync_on_checksum_mismatch:
                await self.resync(event.market, "checksum mismatch")
            return

        self._emit_event('on_book_update', book)

    async def resync(self, market: str, reason: str = "resync requested") -> None:
        """Discard the book and resubscribe to get a fresh partial"""
        if market in self._resyncing or market not in self.books:
            return

        self._resyncing.add(market)
        self.books[market].invalidate(reason)
        self.stats['resyncs'] += 1
        self._emit_event('on_resync', market)

        if not self.is_connected:
            return

        key = (Channel.ORDERBOOK, market)
        await self._send_subscription_op("unsubscribe", key)
        self._acknowledged.discard(key)
        await self._send_subscription_op("subscribe", key)
        self._pending_acks[key] = 0

    # ------------------------------------------------------------------
    # Threading helpers
    # ------------------------------------------------------------------

    def start(self):
        """Start the connector in a separate thread"""
        if self.thread and self.thread.is_alive():
            logger.warning("Connector already running")
            return

        def run_in_thread():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self.loop = loop

            try:
                loop.run_until_complete(self.run())
            except Exception as e:
                logger.error(f"Error in connector thread: {e}")
            finally:
                loop.close()

        self.thread = threading.Thread(target=run_in_thread, daemon=True)
        self.thread.start()

        logger.info("FtxConnector started in background thread")

    def stop(self):
        """Stop the connector"""
        self.is_running = False

        if self.loop and not self.loop.is_closed():
            asyncio.run_coroutine_threadsafe(self.disconnect(), self.loop)

        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=5.0)

        logger.info("FtxConnector stopped")

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict:
        return {
            **self.stats,
            'is_connected': self.is_connected,
            'is_running': self.is_running,
            'epoch': self.epoch,
            'reconnect_count': self.reconnect_count,
            'subscriptions': sorted(f"{c.value}:{m or ''}" for c, m in self.registry.desired_state()),
            'acknowledged': len(self._acknowledged),
            'decoder': dict(self.decoder.stats),
            'books': {market: book.get_statistics() for market, book in self.books.items()}
        }

    def is_healthy(self) -> bool:
        return (
            self.is_connected and
            self.is_running and
            all(book.is_healthy() for book in self.books.values()) and
            (time.time() - self.stats['last_message_time']) < self.stream_config.receive_timeout
        )
