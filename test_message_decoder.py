"""Decoding of raw FTX websocket frames into typed events"""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ftx_stream.data_ingestion import (
    ErrorEvent, FillEvent, HeartbeatEvent, InfoEvent, Liquidity, MalformedEvent,
    MessageDecoder, OrderStatus, OrderType, OrderUpdateEvent, PriceLevel, Side,
    SnapshotEvent, SubscribedEvent, TickerEvent, TradesEvent, UnknownEvent,
    UnsubscribedEvent, UpdateEvent, decode_message
)

FILL = {
    "fee": 78.05799225, "feeRate": 0.0014, "feeCurrency": "USD", "future": "BTC-PERP",
    "id": 7828307, "liquidity": "taker", "market": "BTC-PERP", "baseCurrency": None,
    "quoteCurrency": None, "orderId": 38065410, "tradeId": 19129310, "price": 3723.75,
    "side": "buy", "size": 14.973, "time": "2019-05-07T16:40:58.358438+00:00", "type": "order"
}

ORDER = {
    "id": 24852229, "clientId": None, "market": "XRP-PERP", "type": "limit", "side": "buy",
    "size": 42353.0, "price": 0.2977, "reduceOnly": False, "ioc": False, "postOnly": False,
    "status": "closed", "filledSize": 42353.0, "remainingSize": 0.0, "avgFillPrice": 0.2977,
    "createdAt": "2021-05-02T19:40:07.128451+00:00"
}


def book_frame(action="partial", **data):
    payload = {"time": 1621740952.5079553, "checksum": 1653762209,
               "bids": [[57123.0, 1.2345]], "asks": [[57124.0, 2.0]], "action": action}
    payload.update(data)
    return json.dumps({"channel": "orderbook", "market": "BTC-PERP", "type": action, "data": payload})


@pytest.fixture
def decoder():
    return MessageDecoder()


class TestOrderBookFrames:

    def test_partial_becomes_snapshot(self, decoder):
        event = decoder.decode(book_frame("partial"))
        assert isinstance(event, SnapshotEvent)
        assert event.market == "BTC-PERP"
        assert event.checksum == 1653762209
        assert event.bids == (PriceLevel(Decimal("57123.0"), Decimal("1.2345")),)
        assert event.asks == (PriceLevel(Decimal("57124.0"), Decimal("2.0")),)
        assert event.time.tzinfo == timezone.utc
        assert event.time.year == 2021

    def test_update_becomes_update(self, decoder):
        event = decoder.decode(book_frame("update", bids=[], asks=[[57124.0, 0.0]]))
        assert isinstance(event, UpdateEvent)
        assert event.bids == ()
        assert event.asks[0].size == 0

    def test_prices_keep_exchange_digits(self, decoder):
        event = decoder.decode(book_frame(bids=[[0.1, 0.00001]]))
        assert event.bids[0] == PriceLevel(Decimal("0.1"), Decimal("0.00001"))

    def test_already_parsed_frame_with_floats(self, decoder):
        event = decoder.decode(json.loads(book_frame(bids=[[0.1, 3]])))
        assert isinstance(event, SnapshotEvent)
        assert event.bids[0] == PriceLevel(Decimal("0.1"), Decimal(3))

    def test_bytes_frame(self, decoder):
        assert isinstance(decoder.decode(book_frame().encode()), SnapshotEvent)

    @pytest.mark.parametrize("checksum", [None, -1, 2 ** 32, "1653762209", True, 1.5])
    def test_bad_checksum_is_malformed(self, decoder, checksum):
        event = decoder.decode(book_frame(checksum=checksum))
        assert isinstance(event, MalformedEvent)

    @pytest.mark.parametrize("bids", [
        [["abc", 1.0]],
        [[57123.0]],
        [[57123.0, 1.0, 2.0]],
        [[57123.0, True]],
        "57123.0:1.0",
        None,
    ])
    def test_bad_levels_are_malformed(self, decoder, bids):
        event = decoder.decode(book_frame(bids=bids))
        assert isinstance(event, MalformedEvent)
        assert event.raw is not None

    def test_missing_market_is_malformed(self, decoder):
        frame = json.loads(book_frame())
        del frame["market"]
        assert isinstance(decoder.decode(frame), MalformedEvent)

    def test_bad_time_is_malformed(self, decoder):
        assert isinstance(decoder.decode(book_frame(time="yesterday")), MalformedEvent)

    def test_unknown_action_is_unknown(self, decoder):
        frame = json.loads(book_frame())
        frame["data"]["action"] = "snapshot"
        assert isinstance(decoder.decode(frame), UnknownEvent)


class TestControlFrames:

    def test_pong(self, decoder):
        assert isinstance(decoder.decode('{"type": "pong"}'), HeartbeatEvent)

    def test_subscribed_public(self, decoder):
        event = decoder.decode('{"type": "subscribed", "channel": "orderbook", "market": "BTC-PERP"}')
        assert event == SubscribedEvent(channel="orderbook", market="BTC-PERP")

    def test_unsubscribed_private_has_no_market(self, decoder):
        event = decoder.decode('{"type": "unsubscribed", "channel": "fills"}')
        assert isinstance(event, UnsubscribedEvent)
        assert event.market is None

    def test_error(self, decoder):
        event = decoder.decode('{"type": "error", "code": 400, "msg": "Invalid login credentials"}')
        assert event == ErrorEvent(code=400, msg="Invalid login credentials")

    def test_info_reconnect(self, decoder):
        event = decoder.decode('{"type": "info", "code": 20001, "msg": "Server restarting"}')
        assert isinstance(event, InfoEvent)
        assert event.requests_reconnect

    def test_info_other(self, decoder):
        assert not decoder.decode('{"type": "info", "code": 1, "msg": "hello"}').requests_reconnect


class TestMarketDataFrames:

    def test_trades(self, decoder):
        frame = {"channel": "trades", "market": "BTC-PERP", "type": "update", "data": [
            {"id": 1, "price": 57123.5, "size": 0.01, "side": "buy", "liquidation": False,
             "time": "2021-05-23T05:24:24.315884+00:00"},
            {"id": 2, "price": 57123.0, "size": 0.5, "side": "sell", "liquidation": True,
             "time": "2021-05-23T05:24:24.415884+00:00"},
        ]}
        event = decoder.decode(json.dumps(frame))
        assert isinstance(event, TradesEvent)
        assert [t.side for t in event.trades] == [Side.BUY, Side.SELL]
        assert event.trades[0].price == Decimal("57123.5")
        assert event.trades[1].liquidation is True

    def test_ticker(self, decoder):
        frame = {"channel": "ticker", "market": "BTC-PERP", "type": "update", "data": {
            "bid": 57123.0, "ask": 57124.0, "bidSize": 1.2, "askSize": 2.0, "last": None,
            "time": 1621740952.51}}
        event = decoder.decode(json.dumps(frame))
        assert isinstance(event, TickerEvent)
        assert event.ticker.bid_size == Decimal("1.2")
        assert event.ticker.last is None
        assert event.ticker.time == datetime.fromtimestamp(1621740952.51, tz=timezone.utc)

    def test_ticker_missing_time_is_malformed(self, decoder):
        frame = {"channel": "ticker", "market": "BTC-PERP", "type": "update", "data": {
            "bid": 1.0, "ask": 2.0, "bidSize": 1.0, "askSize": 1.0, "last": 1.5}}
        assert isinstance(decoder.decode(json.dumps(frame)), MalformedEvent)

    def test_trades_data_must_be_a_list(self, decoder):
        frame = {"channel": "trades", "market": "BTC-PERP", "type": "update", "data": {}}
        assert isinstance(decoder.decode(json.dumps(frame)), MalformedEvent)


class TestPrivateFrames:

    def test_fill(self, decoder):
        event = decoder.decode(json.dumps({"channel": "fills", "type": "update", "data": FILL}))
        assert isinstance(event, FillEvent)
        assert event.market == "BTC-PERP"
        assert event.fill.order_id == 38065410
        assert event.fill.fee_rate == Decimal("0.0014")
        assert event.fill.liquidity is Liquidity.TAKER

    def test_fill_without_trade_id_field_is_malformed(self, decoder):
        data = {k: v for k, v in FILL.items() if k != "tradeId"}
        event = decoder.decode(json.dumps({"channel": "fills", "type": "update", "data": data}))
        assert isinstance(event, MalformedEvent)

    def test_order(self, decoder):
        event = decoder.decode(json.dumps({"channel": "orders", "type": "update", "data": ORDER}))
        assert isinstance(event, OrderUpdateEvent)
        assert event.market == "XRP-PERP"
        assert event.order.type is OrderType.LIMIT
        assert event.order.status is OrderStatus.CLOSED
        assert event.order.remaining_size == 0
        assert event.order.client_id is None

    def test_market_order_has_no_price(self, decoder):
        data = dict(ORDER, type="market", price=None)
        event = decoder.decode(json.dumps({"channel": "orders", "type": "update", "data": data}))
        assert event.order.price is None

    def test_order_type_snake_case_alias(self):
        assert OrderType("trailing_stop") is OrderType.TRAILING_STOP
        assert OrderType("takeProfit") is OrderType.TAKE_PROFIT


class TestFailureModes:

    def test_invalid_json(self, decoder):
        event = decoder.decode("{not json")
        assert isinstance(event, MalformedEvent)
        assert event.raw == "{not json"
        assert decoder.stats['malformed'] == 1

    def test_non_object_frame(self, decoder):
        assert isinstance(decoder.decode("[1, 2, 3]"), MalformedEvent)

    def test_unknown_channel(self, decoder):
        event = decoder.decode('{"type": "update", "channel": "markets", "data": {}}')
        assert isinstance(event, UnknownEvent)
        assert event.raw["channel"] == "markets"

    def test_unknown_type(self, decoder):
        assert isinstance(decoder.decode('{"type": "surprise"}'), UnknownEvent)
        assert decoder.stats['unknown'] == 1

    def test_every_frame_yields_one_event(self, book_fixture, decoder):
        events = [decoder.decode(json.dumps(frame)) for frame in book_fixture["frames"]]
        assert len(events) == len(book_fixture["frames"])
        assert decoder.stats['decoded'] == len(events)

    def test_module_level_decoder(self):
        assert isinstance(decode_message('{"type": "pong"}'), HeartbeatEvent)


class TestFieldTypes:

    @pytest.mark.parametrize("market", [["BTC-PERP"], {"m": 1}, 7])
    def test_non_string_market_is_malformed(self, decoder, market):
        for frame in (
            json.loads(book_frame()),
            {"channel": "trades", "type": "update", "data": []},
            {"channel": "orderbook", "type": "subscribed"},
        ):
            frame["market"] = market
            event = decoder.decode(json.dumps(frame))
            assert isinstance(event, MalformedEvent)
            assert event.market is None

    def test_non_string_channel_is_malformed(self, decoder):
        event = decoder.decode('{"type": "subscribed", "channel": ["orderbook"], "market": "BTC-PERP"}')
        assert isinstance(event, MalformedEvent)


def test_every_event_type_can_be_built():
    import ftx_stream
    from ftx_stream.data_ingestion import events

    level = PriceLevel(Decimal(1), Decimal(1))
    fill = decode_message(json.dumps({"channel": "fills", "type": "update", "data": FILL})).fill
    order = decode_message(json.dumps({"channel": "orders", "type": "update", "data": ORDER})).order
    built = [
        events.SubscribedEvent(channel="orderbook", market="BTC-PERP"),
        events.UnsubscribedEvent(channel="fills", market=None),
        events.SnapshotEvent(market="BTC-PERP", bids=(level,), asks=(), checksum=0),
        events.UpdateEvent(market="BTC-PERP", bids=(), asks=(level,), checksum=1),
        events.TradesEvent(market="BTC-PERP", trades=()),
        events.TickerEvent(market="BTC-PERP", ticker=events.Ticker(
            bid=None, ask=None, bidSize=None, askSize=None, last=None, time=0)),
        events.FillEvent(fill=fill),
        events.OrderUpdateEvent(order=order),
        events.HeartbeatEvent(),
        events.InfoEvent(code=20001, msg="restart"),
        events.ErrorEvent(code=400, msg="bad"),
        events.UnknownEvent(reason="new channel"),
        events.MalformedEvent(error=events.MalformedMessage("bad frame")),
    ]

    assert ftx_stream.__version__
    assert [e.market for e in built] == [
        "BTC-PERP", None, "BTC-PERP", "BTC-PERP", "BTC-PERP", "BTC-PERP",
        "BTC-PERP", "XRP-PERP", None, None, None, None, None
    ]
