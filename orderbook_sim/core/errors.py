"""Error taxonomy for the book pipeline.

Only ``ExhaustedRetries`` is meant to reach callers, and even that one is
normally observed as a ``failed`` connection status rather than raised.
Everything else is handled where it occurs and logged.
"""


class OrderbookSimError(Exception):
    """Base class for all pipeline errors."""
    pass


class TransportError(OrderbookSimError, ConnectionError):
    """Connect / send / receive failure at the network layer (recoverable)."""
    pass


class DecodeError(OrderbookSimError):
    """Payload is not valid JSON or matches none of the venue's message kinds."""
    pass


class NormalizationError(OrderbookSimError):
    """Book message for the subscribed channel is missing or has bad fields."""
    pass


class InvariantViolation(OrderbookSimError):
    """Snapshot is unsorted, crossed, duplicated or carries empty levels."""

    def __init__(self, key: str, problems):
        self.key = key
        self.problems = list(problems)
        super().__init__(f"{key}: {'; '.join(self.problems)}")


class ExhaustedRetries(OrderbookSimError):
    """A venue stopped reconnecting after ``max_reconnect_attempts`` failures."""

    def __init__(self, venue: str, attempts: int, last_error: str | None = None):
        self.venue = venue
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{venue}: gave up after {attempts} reconnect attempts (last error: {last_error})")


__all__ = [
    "OrderbookSimError",
    "TransportError",
    "DecodeError",
    "NormalizationError",
    "InvariantViolation",
    "ExhaustedRetries",
]
