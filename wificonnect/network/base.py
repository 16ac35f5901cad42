"""
Network service interface for wificonnect.

The orchestrator never talks to NetworkManager directly. It is handed a
NetworkService capability and plain Device/AccessPoint/Connection values,
so the backend can be swapped (nmcli today, a fake in tests).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

WIRELESS_KIND = "802-11-wireless"
AP_MODE = "ap"


class DeviceType(str, Enum):
    """Kind of network device."""

    WIFI = "wifi"
    ETHERNET = "ethernet"
    OTHER = "other"


class Connectivity(str, Enum):
    """Global connectivity state reported by the service."""

    UNKNOWN = "unknown"
    NONE = "none"
    PORTAL = "portal"
    LIMITED = "limited"
    FULL = "full"


class ConnectionState(str, Enum):
    """Activation state of a connection."""

    UNKNOWN = "unknown"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    DEACTIVATING = "deactivating"
    DEACTIVATED = "deactivated"


class ServiceState(str, Enum):
    """State of the network management service itself."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ACTIVATING = "activating"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Device:
    """Handle to one network interface."""

    interface: str
    device_type: DeviceType

    @property
    def is_wifi(self) -> bool:
        return self.device_type == DeviceType.WIFI


@dataclass(frozen=True)
class AccessPoint:
    """An observed network. The ssid is raw bytes as broadcast."""

    ssid: bytes
    signal: int = 0
    security: str = ""

    def ssid_text(self) -> str | None:
        """Decoded ssid, or None when it is not valid UTF-8."""
        try:
            return self.ssid.decode("utf-8")
        except UnicodeDecodeError:
            return None


@dataclass(frozen=True)
class ConnectionSettings:
    """Subset of connection profile settings the core looks at."""

    kind: str = ""
    mode: str = ""
    ssid: str = ""

    @property
    def is_access_point(self) -> bool:
        return self.kind == WIRELESS_KIND and self.mode == AP_MODE


@dataclass(frozen=True)
class Connection:
    """A connection profile known to the service."""

    uuid: str
    name: str = ""
    settings: ConnectionSettings = field(default_factory=ConnectionSettings)


class NetworkService(ABC):
    """
    Capability for the network management service.

    Every primitive raises NetworkServiceError on failure with the
    backend's error text. Calls are issued one at a time by their owner.
    """

    @abstractmethod
    async def get_devices(self) -> list[Device]:
        """Enumerate all devices."""

    @abstractmethod
    async def get_device_by_interface(self, interface: str) -> Device:
        """Fetch a device by interface name."""

    @abstractmethod
    async def get_connectivity(self) -> Connectivity:
        """Read the global connectivity state."""

    @abstractmethod
    async def get_access_points(self, device: Device) -> list[AccessPoint]:
        """Scan for access points visible to a Wi-Fi device."""

    @abstractmethod
    async def connect(
        self,
        device: Device,
        access_point: AccessPoint,
        passphrase: str,
    ) -> tuple[Connection, ConnectionState]:
        """Join an access point, returning the new connection and its state."""

    @abstractmethod
    async def create_hotspot(
        self,
        device: Device,
        ssid: str,
        passphrase: str | None,
        gateway: str,
    ) -> Connection:
        """Create and activate an access-point mode connection."""

    @abstractmethod
    async def activate(self, connection: Connection) -> ConnectionState:
        """Activate a connection."""

    @abstractmethod
    async def deactivate(self, connection: Connection) -> ConnectionState:
        """Deactivate a connection."""

    @abstractmethod
    async def delete(self, connection: Connection) -> None:
        """Delete a connection profile."""

    @abstractmethod
    async def get_active_connections(self) -> list[Connection]:
        """List active connections with their settings."""

    @abstractmethod
    async def get_service_state(self) -> ServiceState:
        """Read the state of the service itself."""

    @abstractmethod
    async def start_service(self, timeout: float) -> ServiceState:
        """Start the service and wait up to timeout seconds for it."""


def access_point_ssids(access_points: Iterable[AccessPoint]) -> list[str]:
    """Ssids that decode as text, in scan order, duplicates kept."""
    ssids = []
    for access_point in access_points:
        ssid = access_point.ssid_text()
        if ssid is not None:
            ssids.append(ssid)
    return ssids


def find_access_point(
    access_points: Iterable[AccessPoint],
    ssid: str,
) -> AccessPoint | None:
    """First access point whose decoded ssid equals ssid."""
    for access_point in access_points:
        if access_point.ssid_text() == ssid:
            return access_point
    return None
