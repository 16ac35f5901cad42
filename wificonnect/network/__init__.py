"""Network service capability and backends."""

from wificonnect.network.base import (
    AccessPoint,
    Connection,
    ConnectionSettings,
    ConnectionState,
    Connectivity,
    Device,
    DeviceType,
    NetworkService,
    ServiceState,
)
from wificonnect.network.nmcli import NmcliNetworkService

__all__ = [
    "AccessPoint",
    "Connection",
    "ConnectionSettings",
    "ConnectionState",
    "Connectivity",
    "Device",
    "DeviceType",
    "NetworkService",
    "ServiceState",
    "NmcliNetworkService",
]
