# infra/enums.py
from enum import Enum

class ChannelType(Enum):
    PUBLIC = "public"
    PRIVATE = "private"

class ConnState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSING = "closing"
    CLOSED = "closed"

class RequestKind(Enum):
    AUTH = "auth"
    PING = "ping"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
