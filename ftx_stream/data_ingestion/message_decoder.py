"""
Message Decoder
===============

Turns raw websocket frames into typed events. Every frame produces exactly
one event; decoding never raises. Malformed payloads become a
``MalformedEvent`` carrying the raw frame, unknown channel/type combinations
become an ``UnknownEvent`` so protocol additions do not break the stream.
"""

import json
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Union

from loguru import logger
from pydantic import ValidationError

from .events import (
    ErrorEvent, FillEvent, HeartbeatEvent, InfoEvent, MalformedEvent, OrderInfo,
    OrderUpdateEvent, PriceLevel, SnapshotEvent, StreamEvent, SubscribedEvent,
    Ticker, TickerEvent, Trade, TradesEvent, UnknownEvent, UnsubscribedEvent,
    UpdateEvent, Fill, epoch_to_datetime
)
from .exceptions import MalformedMessage

Frame = Union[str, bytes, Mapping[str, Any]]

MAX_CHECKSUM = 0xFFFFFFFF


def _decimal(value: Any) -> Decimal:
    # Frames handed over as already-parsed dicts may still carry floats
    return Decimal(repr(value)) if isinstance(value, float) else Decimal(value)


def _book_levels(raw_levels: Any, side: str) -> tuple:
    if not isinstance(raw_levels, list):
        raise MalformedMessage(f"'{side}' must be a list of [price, size] pairs")

    levels = []
    for entry in raw_levels:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            raise MalformedMessage(f"Bad {side} level: {entry!r}")
        price, size = entry
        if isinstance(price, bool) or isinstance(size, bool):
            raise MalformedMessage(f"Bad {side} level: {entry!r}")
        try:
            levels.append(PriceLevel(_decimal(price), _decimal(size)))
        except (InvalidOperation, TypeError, ValueError):
            raise MalformedMessage(f"Non-numeric {side} level: {entry!r}")
    return tuple(levels)


def _decode_orderbook(frame: Mapping[str, Any]) -> StreamEvent:
    market = frame.get("market")
    data = frame.get("data")
    if not market or not isinstance(data, Mapping):
        raise MalformedMessage("Order book frame needs a market and a data object")

    action = data.get("action", frame.get("type"))
    checksum = data.get("checksum")
    if isinstance(checksum, bool) or not isinstance(checksum, int) or not 0 <= checksum <= MAX_CHECKSUM:
        raise MalformedMessage(f"Checksum must be an unsigned 32-bit integer, got {checksum!r}")

    time = data.get("time")
    if time is not None:
        if isinstance(time, bool) or not isinstance(time, (int, float, Decimal)):
            raise MalformedMessage(f"Book time must be epoch seconds, got {time!r}")
        try:
            time = epoch_to_datetime(time)
        except (OverflowError, OSError, ValueError):
            raise MalformedMessage(f"Book time out of range: {time!r}")

    fields = dict(
        market=market,
        bids=_book_levels(data.get("bids"), "bids"),
        asks=_book_levels(data.get("asks"), "asks"),
        checksum=checksum,
        time=time,
    )
    if action == "partial":
        return SnapshotEvent(**fields)
    if action == "update":
        return UpdateEvent(**fields)
    return UnknownEvent(reason=f"Unknown order book action {action!r}", raw=frame)


def _decode_trades(frame: Mapping[str, Any]) -> StreamEvent:
    data = frame.get("data")
    if not isinstance(data, list):
        raise MalformedMessage("Trades frame data must be a list")
    return TradesEvent(market=frame.get("market"), trades=tuple(Trade.model_validate(t) for t in data))


def _decode_ticker(frame: Mapping[str, Any]) -> StreamEvent:
    return TickerEvent(market=frame.get("market"), ticker=Ticker.model_validate(frame.get("data")))


def _decode_fill(frame: Mapping[str, Any]) -> StreamEvent:
    return FillEvent(fill=Fill.model_validate(frame.get("data")))


def _decode_order(frame: Mapping[str, Any]) -> StreamEvent:
    return OrderUpdateEvent(order=OrderInfo.model_validate(frame.get("data")))


CHANNEL_DECODERS: Dict[str, Callable[[Mapping[str, Any]], StreamEvent]] = {
    "orderbook": _decode_orderbook,
    "trades": _decode_trades,
    "ticker": _decode_ticker,
    "fills": _decode_fill,
    "orders": _decode_order,
}


class MessageDecoder:
    """
    Stateless frame decoder with per-outcome counters.

    Numbers are parsed straight into Decimal so book prices keep the exact
    digits the exchange sent.
    """

    def __init__(self):
        self.stats = {
            'decoded': 0,
            'malformed': 0,
            'unknown': 0
        }

    def decode(self, raw: Frame) -> StreamEvent:
        try:
            event = self._decode(raw)
        except MalformedMessage as e:
            if e.raw is None:
                e.raw = raw
            event = MalformedEvent(error=e)
        except ValidationError as e:
            event = MalformedEvent(error=MalformedMessage(f"Invalid payload: {e.error_count()} validation error(s)", raw=raw))
        except (ValueError, TypeError, OverflowError) as e:
            event = MalformedEvent(error=MalformedMessage(f"Undecodable frame: {e}", raw=raw))

        if isinstance(event, MalformedEvent):
            self.stats['malformed'] += 1
            logger.warning(f"Dropping malformed frame: {event.error}")
        elif isinstance(event, UnknownEvent):
            self.stats['unknown'] += 1
            logger.debug(f"Unknown frame: {event.reason}")
        else:
            self.stats['decoded'] += 1
        return event

    def _decode(self, raw: Frame) -> StreamEvent:
        if isinstance(raw, (str, bytes, bytearray)):
            try:
                frame = json.loads(raw, parse_float=Decimal)
            except json.JSONDecodeError as e:
                raise MalformedMessage(f"Invalid JSON: {e}", raw=raw)
        else:
            frame = raw

        if not isinstance(frame, Mapping):
            raise MalformedMessage("Frame is not a JSON object", raw=raw)

        msg_type = frame.get("type")
        channel = frame.get("channel")
        market = frame.get("market") or None
        for name, value in (("type", msg_type), ("channel", channel), ("market", market)):
            if value is not None and not isinstance(value, str):
                raise MalformedMessage(f"'{name}' must be a string, got {value!r}", raw=raw)

        if msg_type == "pong":
            return HeartbeatEvent()
        if msg_type == "subscribed":
            return SubscribedEvent(channel=channel, market=market)
        if msg_type == "unsubscribed":
            return UnsubscribedEvent(channel=channel, market=market)
        if msg_type == "error":
            return ErrorEvent(code=frame.get("code"), msg=str(frame.get("msg", "")), channel=channel, market=market)
        if msg_type == "info":
            return InfoEvent(code=frame.get("code"), msg=str(frame.get("msg", "")))

        if msg_type in ("partial", "update"):
            decoder = CHANNEL_DECODERS.get(channel)
            if decoder is None:
                return UnknownEvent(reason=f"Unknown channel {channel!r}", raw=frame)
            return decoder(frame)

        return UnknownEvent(reason=f"Unknown message type {msg_type!r} on channel {channel!r}", raw=frame)


_default_decoder = MessageDecoder()


def decode_message(raw: Frame) -> StreamEvent:
    """Decode a single frame with the module-level decoder"""
    return _default_decoder.decode(raw)
