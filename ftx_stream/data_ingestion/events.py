"""
Typed Stream Events
===================

Every inbound websocket frame decodes into exactly one of the event classes
below. Payload records (trades, tickers, fills, orders) are immutable pydantic
models validated straight from the exchange's camelCase JSON.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, NamedTuple, Optional, Tuple

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from .exceptions import MalformedMessage


class PriceLevel(NamedTuple):
    """Resting size at one price. A size of 0 in a diff removes the price."""
    price: Decimal
    size: Decimal


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    TRAILING_STOP = "trailingStop"
    TAKE_PROFIT = "takeProfit"

    @classmethod
    def _missing_(cls, value):
        # The exchange uses snake_case for these two in some payloads
        aliases = {"trailing_stop": cls.TRAILING_STOP, "take_profit": cls.TAKE_PROFIT}
        return aliases.get(value)


class OrderStatus(str, Enum):
    """
    Websocket semantics differ from REST: the stream never reports ``new`` for
    an order that was rejected during processing, it reports ``closed``.
    ``open`` only appears in REST responses.
    """
    NEW = "new"
    OPEN = "open"
    CLOSED = "closed"


class Liquidity(str, Enum):
    MAKER = "maker"
    TAKER = "taker"


def epoch_to_datetime(value: Any) -> Any:
    """Book and ticker times are epoch seconds with a fraction, e.g. 1621740952.5079553"""
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    return value


EpochDatetime = Annotated[datetime, BeforeValidator(epoch_to_datetime)]


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Trade(_Payload):
    id: int
    price: Decimal
    size: Decimal
    side: Side
    liquidation: bool
    time: EpochDatetime


class Ticker(_Payload):
    bid: Optional[Decimal]
    ask: Optional[Decimal]
    bid_size: Optional[Decimal] = Field(alias="bidSize")
    ask_size: Optional[Decimal] = Field(alias="askSize")
    last: Optional[Decimal]
    time: EpochDatetime


class Fill(_Payload):
    id: int
    market: str
    future: Optional[str] = None
    base_currency: Optional[str] = Field(default=None, alias="baseCurrency")
    quote_currency: Optional[str] = Field(default=None, alias="quoteCurrency")
    type: str
    side: Side
    price: Decimal
    size: Decimal
    order_id: int = Field(alias="orderId")
    trade_id: Optional[int] = Field(alias="tradeId")
    time: EpochDatetime
    fee: Decimal
    fee_rate: Decimal = Field(alias="feeRate")
    fee_currency: str = Field(alias="feeCurrency")
    liquidity: Liquidity


class OrderInfo(_Payload):
    id: int
    market: str
    future: Optional[str] = None
    type: OrderType
    side: Side
    price: Optional[Decimal]  # null for market orders
    size: Decimal
    reduce_only: bool = Field(alias="reduceOnly")
    ioc: bool
    post_only: bool = Field(alias="postOnly")
    status: OrderStatus
    filled_size: Decimal = Field(alias="filledSize")
    remaining_size: Decimal = Field(alias="remainingSize")
    avg_fill_price: Optional[Decimal] = Field(alias="avgFillPrice")
    liquidation: Optional[bool] = None
    created_at: EpochDatetime = Field(alias="createdAt")
    client_id: Optional[str] = Field(default=None, alias="clientId")


class StreamEvent:
    """
    Marker base class for decoded frames.

    Every event exposes ``market``; frames that are not tied to one market
    report None.
    """


@dataclass(frozen=True)
class SubscribedEvent(StreamEvent):
    channel: str
    market: Optional[str]


@dataclass(frozen=True)
class UnsubscribedEvent(StreamEvent):
    channel: str
    market: Optional[str]


@dataclass(frozen=True)
class BookEvent(StreamEvent):
    market: str
    bids: Tuple[PriceLevel, ...]
    asks: Tuple[PriceLevel, ...]
    checksum: int
    time: Optional[datetime] = None


@dataclass(frozen=True)
class SnapshotEvent(BookEvent):
    """``partial`` frame: full replacement of both ladders"""


@dataclass(frozen=True)
class UpdateEvent(BookEvent):
    """``update`` frame: only the levels that changed"""


@dataclass(frozen=True)
class TradesEvent(StreamEvent):
    market: str
    trades: Tuple[Trade, ...]


@dataclass(frozen=True)
class TickerEvent(StreamEvent):
    market: str
    ticker: Ticker


@dataclass(frozen=True)
class FillEvent(StreamEvent):
    fill: Fill

    @property
    def market(self) -> str:
        return self.fill.market


@dataclass(frozen=True)
class OrderUpdateEvent(StreamEvent):
    order: OrderInfo

    @property
    def market(self) -> str:
        return self.order.market


@dataclass(frozen=True)
class HeartbeatEvent(StreamEvent):
    """``pong`` reply to our ping"""

    @property
    def market(self) -> None:
        return None


@dataclass(frozen=True)
class InfoEvent(StreamEvent):
    code: Optional[int]
    msg: str

    # Server is about to restart; clients must reconnect
    RECONNECT_CODE = 20001

    @property
    def market(self) -> None:
        return None

    @property
    def requests_reconnect(self) -> bool:
        return self.code == self.RECONNECT_CODE


@dataclass(frozen=True)
class ErrorEvent(StreamEvent):
    code: Optional[int]
    msg: str
    channel: Optional[str] = None
    market: Optional[str] = None


@dataclass(frozen=True)
class UnknownEvent(StreamEvent):
    reason: str
    raw: Any = None

    @property
    def market(self) -> None:
        return None


@dataclass(frozen=True)
class MalformedEvent(StreamEvent):
    error: MalformedMessage

    @property
    def market(self) -> None:
        return None

    @property
    def raw(self) -> Any:
        return self.error.raw
