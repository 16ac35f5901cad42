"""
Startup checks for wificonnect.

Decides whether an onboarding session is needed at all and prepares the
network service for one: the service must be running, and hotspot profiles
left active by an earlier run are removed.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import NamedTuple

from wificonnect.core.config import StartupConfig
from wificonnect.core.errors import (
    NetworkServiceError,
    ServiceStartError,
    WifiConnectError,
)
from wificonnect.network.base import NetworkService, ServiceState, WIRELESS_KIND
from wificonnect.setup.hotspot import PortalManager

logger = logging.getLogger(__name__)


class PreflightState(Enum):
    """Outcome of the startup checks."""

    READY = auto()  # Start the portal
    ALREADY_CONNECTED = auto()  # A Wi-Fi connection is active, nothing to do
    FAILED = auto()  # The service cannot be used


class PreflightResult(NamedTuple):
    """Startup check outcome with diagnostic info."""

    state: PreflightState
    stale_hotspots_removed: int
    message: str

    @property
    def proceed(self) -> bool:
        return self.state == PreflightState.READY


async def ensure_service_running(service: NetworkService, timeout: float) -> None:
    """
    Start the network management service if it is not active.

    Raises:
        ServiceStartError: if it cannot be started within timeout seconds
    """
    try:
        state = await service.get_service_state()
    except NetworkServiceError as e:
        raise ServiceStartError(f"Getting the NetworkManager service state failed: {e}") from e

    if state == ServiceState.ACTIVE:
        logger.debug("NetworkManager service already running")
        return

    logger.info(f"NetworkManager service is {state.value}, starting it")
    try:
        state = await service.start_service(timeout)
    except NetworkServiceError as e:
        raise ServiceStartError(f"Starting the NetworkManager service failed: {e}") from e

    if state != ServiceState.ACTIVE:
        raise ServiceStartError(
            f"Cannot start the NetworkManager service, state: {state.value}"
        )

    logger.info("NetworkManager service started successfully")


async def has_active_wifi_connection(service: NetworkService) -> bool:
    """True if a Wi-Fi connection other than a hotspot is active."""
    try:
        connections = await service.get_active_connections()
    except NetworkServiceError as e:
        logger.warning(f"Could not list active connections: {e}")
        return False

    for connection in connections:
        if connection.settings.kind == WIRELESS_KIND and not connection.settings.is_access_point:
            logger.info(f"Active WiFi connection: '{connection.settings.ssid or connection.name}'")
            return True
    return False


async def run_preflight(
    service: NetworkService,
    config: StartupConfig,
    portal_manager: PortalManager,
) -> PreflightResult:
    """
    Run the startup checks.

    Args:
        service: Network service capability
        config: Startup options
        portal_manager: Used to remove stale hotspot profiles

    Returns:
        PreflightResult telling the caller whether to start a session
    """
    if config.start_service:
        try:
            await ensure_service_running(service, config.service_start_timeout)
        except ServiceStartError as e:
            return PreflightResult(PreflightState.FAILED, 0, str(e))

    if config.skip_if_connected and await has_active_wifi_connection(service):
        return PreflightResult(
            PreflightState.ALREADY_CONNECTED,
            0,
            "WiFi already connected - skipping the portal",
        )

    removed = 0
    if config.clear_stale_hotspots:
        try:
            removed = await portal_manager.clear_stale_hotspots()
        except WifiConnectError as e:
            return PreflightResult(PreflightState.FAILED, 0, f"Stopping access point failed: {e}")
        if removed:
            logger.info(f"Removed {removed} stale access point profile(s)")

    return PreflightResult(PreflightState.READY, removed, "Ready to start the portal")
