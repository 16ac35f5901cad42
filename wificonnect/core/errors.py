"""
Error taxonomy for wificonnect.

Collaborators raise these at their boundary; the orchestrator decides whether
a given failure ends the session or is logged and absorbed.
"""

from __future__ import annotations


class WifiConnectError(Exception):
    """Base class for all onboarding errors."""


class NetworkServiceError(WifiConnectError):
    """A network service primitive failed. Carries the backend's error text."""


# ============================================================================
# Setup errors (fatal before any UI is shown)
# ============================================================================


class DeviceNotFound(WifiConnectError):
    """The requested interface does not exist or is not a Wi-Fi device."""


class NoWifiDevice(WifiConnectError):
    """No Wi-Fi capable device was found."""


class HelperStartError(WifiConnectError):
    """The DHCP/DNS helper process could not be started."""


class ServiceStartError(WifiConnectError):
    """The network management service is not running and could not be started."""


# ============================================================================
# Steady-state errors
# ============================================================================


class AccessPointScanError(WifiConnectError):
    """Scanning for access points failed."""


class AccessPointNotFound(WifiConnectError):
    """The requested ssid is not among the latest scan results."""

    def __init__(self, ssid: str):
        super().__init__(f"Access point '{ssid}' not found")
        self.ssid = ssid


class PortalCreationError(WifiConnectError):
    """The hotspot connection profile could not be created."""


class PortalTeardownError(WifiConnectError):
    """The hotspot connection profile could not be deactivated or deleted."""


class ConnectError(WifiConnectError):
    """Joining the target network failed."""


class ConnectivityCheckError(WifiConnectError):
    """Reading the connectivity state failed."""


class ChannelError(WifiConnectError):
    """A channel endpoint is closed; the context on the other side is gone."""
