"""
Error types raised by the data engine.

NetworkError wraps transport failures (ccxt errors, timeouts), ParseError
covers malformed exchange payloads and StreamError covers live subscription
failures.
"""

from typing import Optional


class ScreenerError(Exception):
    """Base class for all data engine errors."""

    def __init__(self, message: str, symbol: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol


class NetworkError(ScreenerError):
    """Raised when an exchange request fails, returns an error status or times out."""


class ParseError(ScreenerError):
    """Raised when an exchange payload has malformed numeric, date or JSON fields."""


class StreamError(ScreenerError):
    """Raised when a live subscription cannot be set up or a message cannot be handled."""
