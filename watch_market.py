"""
FTX Stream Client Example
=========================

Replays the recorded BTC-PERP order book session through the decoder and
order book, then (with ``--live``) streams books from the exchange.

    python watch_market.py
    python watch_market.py --live BTC-PERP ETH-PERP
"""

import asyncio
import json
import sys
from pathlib import Path

from ftx_stream import FtxConnector, MessageDecoder, OrderBook
from ftx_stream.data_ingestion import BookEvent, Side
from ftx_stream.utils.logger import get_logger, setup_development_logging, setup_production_logging

log = get_logger("watch_market")

FIXTURE = Path(__file__).parent / "fixtures" / "ftx_orderbook_btc_perp.json"


def print_book(book: OrderBook, levels: int = 3):
    depth = book.get_depth(levels)
    print(f"{book.market} seq={book.sequence} checksum={book.checksum()}")
    for price, size in reversed(depth['asks']):
        print(f"    ask {price:>12} x {size}")
    for price, size in depth['bids']:
        print(f"    bid {price:>12} x {size}")


def replay_recorded_session():
    """Apply the recorded frames and verify every checksum"""
    print("\n📼 Replaying recorded session")
    print("-" * 30)

    with open(FIXTURE) as f:
        frames = json.load(f)["frames"]

    decoder = MessageDecoder()
    book = OrderBook("BTC-PERP")

    for frame in frames:
        event = decoder.decode(json.dumps(frame))
        if not isinstance(event, BookEvent):
            print(f"{type(event).__name__}: {frame.get('channel')} {frame.get('market', '')}")
            continue

        book.apply(event)
        verified = book.verify_checksum(event.checksum)
        print(f"{type(event).__name__}: checksum {event.checksum} {'✅' if verified else '❌'}")

    print_book(book)
    print(f"Mid: {book.mid_price()}  Spread: {book.spread()}")
    print(f"Buying 2 BTC averages {book.quote(Side.BUY, 2)}")


async def stream_live(markets):
    print(f"\n📡 Streaming {', '.join(markets)} (Ctrl+C to stop)")
    print("-" * 30)

    connector = FtxConnector(markets=markets)
    connector.add_callback('on_book_update', lambda book: print_book(book, levels=1))
    connector.add_callback('on_resync', lambda market: print(f"🔄 Resyncing {market}"))
    connector.add_callback('on_error', lambda error: log.warning(f"Stream error: {error}"))

    try:
        await connector.run()
    finally:
        await connector.disconnect()


def main():
    print("🚀 FTX Order Book Stream Demonstration")
    print("=" * 60)

    args = sys.argv[1:]
    if "--live" in args:
        setup_production_logging()
        markets = [a for a in args if a != "--live"] or ["BTC-PERP"]
        try:
            asyncio.run(stream_live(markets))
        except KeyboardInterrupt:
            print("\nStopped")
    else:
        setup_development_logging()
        replay_recorded_session()


if __name__ == "__main__":
    main()
