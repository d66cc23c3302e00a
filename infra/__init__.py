# infra/__init__.py
"""
Bybit v5 stream core: connection lifecycle, subscription registry, frame routing
and request signing. Topic adapters live in ``datafeed``.
"""
from infra.config import BybitSettings, WSSettings, settings_from_cfg
from infra.enums import ChannelType, ConnState
from infra.errors import (
    AlreadyConnectedError,
    AuthError,
    ClosedConnectionError,
    DecodeError,
    DialError,
    NoAvailableConnectionError,
    ReadError,
    ReconnectExhausted,
    StaleRequestError,
    WriteError,
    WSClientError,
)
from infra.registry import Subscription, SubscriptionRegistry
from infra.router import MessageRouter
from infra.ws_client import WSClient

__all__ = [
    "BybitSettings", "WSSettings", "settings_from_cfg",
    "ChannelType", "ConnState",
    "WSClientError", "DialError", "AuthError", "WriteError", "ReadError",
    "ReconnectExhausted", "ClosedConnectionError", "NoAvailableConnectionError",
    "AlreadyConnectedError", "StaleRequestError", "DecodeError",
    "Subscription", "SubscriptionRegistry", "MessageRouter", "WSClient",
]
