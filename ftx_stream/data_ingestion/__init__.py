"""
Data Ingestion Module for the FTX Stream Client
==============================================

Transport-free core of the client:
- Frame decoding into typed events
- Order book replication with checksum verification
- Subscription desired-state bookkeeping
"""

from .events import (
    PriceLevel, Side, OrderType, OrderStatus, Liquidity,
    Trade, Ticker, Fill, OrderInfo,
    StreamEvent, SubscribedEvent, UnsubscribedEvent, BookEvent, SnapshotEvent,
    UpdateEvent, TradesEvent, TickerEvent, FillEvent, OrderUpdateEvent,
    HeartbeatEvent, InfoEvent, ErrorEvent, UnknownEvent, MalformedEvent
)
from .exceptions import (
    FtxStreamError, MalformedMessage, OutOfSequence, ChecksumMismatch,
    UnknownMessage, NotSubscribed, SocketNotAuthenticated,
    MissingSubscriptionConfirmation
)
from .message_decoder import MessageDecoder, decode_message
from .order_book import OrderBook, Ladder, CHECKSUM_DEPTH
from .subscription_registry import (
    Channel, SubscriptionEntry, SubscriptionPlan, SubscriptionRegistry,
    SubscriptionState
)

__all__ = [
    'PriceLevel', 'Side', 'OrderType', 'OrderStatus', 'Liquidity',
    'Trade', 'Ticker', 'Fill', 'OrderInfo',
    'StreamEvent', 'SubscribedEvent', 'UnsubscribedEvent', 'BookEvent',
    'SnapshotEvent', 'UpdateEvent', 'TradesEvent', 'TickerEvent', 'FillEvent',
    'OrderUpdateEvent', 'HeartbeatEvent', 'InfoEvent', 'ErrorEvent',
    'UnknownEvent', 'MalformedEvent',
    'FtxStreamError', 'MalformedMessage', 'OutOfSequence', 'ChecksumMismatch',
    'UnknownMessage', 'NotSubscribed', 'SocketNotAuthenticated',
    'MissingSubscriptionConfirmation',
    'MessageDecoder', 'decode_message',
    'OrderBook', 'Ladder', 'CHECKSUM_DEPTH',
    'Channel', 'SubscriptionEntry', 'SubscriptionPlan', 'SubscriptionRegistry',
    'SubscriptionState'
]
