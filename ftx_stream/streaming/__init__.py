"""
Streaming Module
================

Websocket connection supervision and event delivery:
- FTX connector with login, heartbeat, subscription replay and resync
- Per-market and global listener routing for market data and private events
"""

from .event_router import EventRouter, PrivateStreamRouter
from .ftx_connector import FtxConnector, sign_login

__all__ = [
    'EventRouter',
    'PrivateStreamRouter',
    'FtxConnector',
    'sign_login'
]
