"""Core modules for wificonnect."""

from wificonnect.core.errors import WifiConnectError, ChannelError
from wificonnect.core.messages import (
    Activate,
    Timeout,
    Connect,
    AccessPointSsids,
    ExitResult,
    Channel,
)

__all__ = [
    "WifiConnectError",
    "ChannelError",
    "Activate",
    "Timeout",
    "Connect",
    "AccessPointSsids",
    "ExitResult",
    "Channel",
]
