"""Exception types raised by the bus bridge."""
from __future__ import annotations


class BusError(Exception):
    """Base class for every error raised by robobus."""


class NotConnected(BusError):
    """Raised when a frame is sent or published while the connection is not CONNECTED."""

    def __init__(self, message: str = "Not connected", state: object = None) -> None:
        super().__init__(message)
        self.state = state


class ConnectionClosed(NotConnected):
    """Raised by send() after the connection was explicitly closed."""

    def __init__(self, message: str = "Connection closed", state: object = None) -> None:
        super().__init__(message, state)


class OutOfRange(BusError, ValueError):
    """Raised when a control value falls outside its configured range."""

    def __init__(self, value: object, low: float, high: float) -> None:
        super().__init__(f"Value {value!r} outside range [{low}, {high}]")
        self.value = value
        self.low = low
        self.high = high


class CodecError(BusError, ValueError):
    """Raised when a frame cannot be encoded or decoded."""


class ConfigError(BusError, ValueError):
    """Raised when configuration values are invalid."""


class SessionStopped(BusError):
    """Raised when a stopped session is asked to subscribe, publish or restart."""
