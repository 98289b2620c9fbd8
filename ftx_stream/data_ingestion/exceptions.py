"""
Error taxonomy for the stream client.

None of these are fatal: a malformed frame is dropped, an out-of-sequence
book waits for a fresh snapshot, and the reading loop keeps going.
"""

from typing import Any, Optional


class FtxStreamError(Exception):
    """Base class for every error raised by the stream client"""


class MalformedMessage(FtxStreamError):
    """A payload failed to parse or violates the ladder invariants"""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class OutOfSequence(FtxStreamError):
    """A diff reached a book that has no trusted snapshot"""

    def __init__(self, market: str, message: Optional[str] = None):
        super().__init__(message or f"Order book for {market} is not ready; a fresh snapshot is required")
        self.market = market


class ChecksumMismatch(FtxStreamError):
    """Local ladder disagrees with the exchange checksum"""

    def __init__(self, market: str, expected: int, computed: int):
        super().__init__(f"Checksum mismatch for {market}: expected {expected}, computed {computed}")
        self.market = market
        self.expected = expected
        self.computed = computed


class UnknownMessage(FtxStreamError):
    """Channel/type combination this client does not understand"""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class NotSubscribed(FtxStreamError):
    """Operation requires a subscription that does not exist"""


class SocketNotAuthenticated(FtxStreamError):
    """Private channels (fills, orders) need a logged-in socket"""


class MissingSubscriptionConfirmation(FtxStreamError):
    """The exchange did not acknowledge a (un)subscribe request in time"""
