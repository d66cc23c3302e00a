# infra/errors.py
class WSClientError(Exception):
    """Base stream client error."""
    def __init__(self, msg: str = ""):
        super().__init__(msg)
        self.msg = msg

    def __str__(self):
        return self.msg or self.__class__.__name__

class DialError(WSClientError):
    """Transport could not be opened."""

    def __init__(self, msg: str = "", url: str = ""):
        super().__init__(msg)
        self.url = url

class AuthError(WSClientError):
    """Auth ack rejected or not received in time."""

class WriteError(WSClientError):
    """Frame could not be written to the transport."""

class ReadError(WSClientError):
    """Receive loop ended: peer close or transport error."""

class ReconnectExhausted(WSClientError):
    """Every reconnection attempt failed."""

    def __init__(self, msg: str = "", attempts: int = 0, last_error: Exception | None = None):
        super().__init__(msg)
        self.attempts = attempts
        self.last_error = last_error

class ClosedConnectionError(WSClientError):
    """Client was closed; no further sends or subscriptions are accepted."""

class NoAvailableConnectionError(WSClientError):
    """No transport is currently held (not connected yet, or mid reconnect)."""

class AlreadyConnectedError(WSClientError):
    """connect() called while a connection is being made or is up."""

class StaleRequestError(WSClientError):
    """Pending request belonged to a connection epoch that no longer exists."""

class DecodeError(WSClientError):
    """Topic payload does not match the expected shape."""

    def __init__(self, msg: str = "", topic: str = ""):
        super().__init__(msg)
        self.topic = topic

    def __str__(self):
        base = super().__str__()
        return f"{base} [topic={self.topic}]" if self.topic else base
