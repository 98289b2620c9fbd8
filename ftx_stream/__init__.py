"""
FTX Order Book Stream Client
============================

Streaming market-data client that replicates exchange order books from the
FTX websocket feed and validates them against the exchange checksums.

Project Structure:
- ftx_stream/data_ingestion: frame decoding, order book, subscription registry
- ftx_stream/streaming: websocket connector and event routers
- ftx_stream/utils: configuration and logging
"""

__version__ = "1.0.0"

from ftx_stream.data_ingestion.order_book import OrderBook
from ftx_stream.data_ingestion.message_decoder import MessageDecoder, decode_message
from ftx_stream.data_ingestion.subscription_registry import Channel, SubscriptionRegistry
from ftx_stream.streaming.ftx_connector import FtxConnector
from ftx_stream.streaming.event_router import PrivateStreamRouter

__all__ = [
    "OrderBook",
    "MessageDecoder",
    "decode_message",
    "Channel",
    "SubscriptionRegistry",
    "FtxConnector",
    "PrivateStreamRouter"
]
