class BingoClientError(Exception):
    """Base class for errors raised by the bingo client."""


class TransportError(BingoClientError):
    """A connection attempt or send failed at the transport level."""


class ConnectionLostError(TransportError):
    """Reconnection budget exhausted; the session needs a user-initiated retry."""

    def __init__(self, attempts: int, last_error: Exception = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ''
        super().__init__(f"connection lost after {attempts} reconnect attempts{detail}")
