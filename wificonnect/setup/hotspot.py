"""
WiFi hotspot management for wificonnect.

Creates and removes the access-point connection profile the captive portal is
served on. Only one profile exists at a time: the caller destroys the old one
before creating another.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from wificonnect.core.errors import (
    NetworkServiceError,
    PortalCreationError,
    PortalTeardownError,
)
from wificonnect.network.base import Connection, Device, NetworkService

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY = 1.0


@dataclass
class PortalManager:
    """
    Manages the hotspot connection profile.

    After a teardown the device is left alone for settle_delay seconds so
    that the next scan or hotspot creation sees a quiet radio.
    """

    service: NetworkService
    settle_delay: float = DEFAULT_SETTLE_DELAY

    async def create(
        self,
        device: Device,
        ssid: str,
        gateway: str,
        passphrase: str | None = None,
    ) -> Connection:
        """
        Create and activate the hotspot.

        Args:
            device: Wi-Fi device to broadcast on
            ssid: Hotspot network name
            gateway: IPv4 address of the device on the hotspot network
            passphrase: WPA2 passphrase (open network if None)

        Returns:
            The active hotspot connection

        Raises:
            PortalCreationError: if the profile cannot be created or activated
        """
        logger.info("Starting access point...")
        try:
            connection = await self.service.create_hotspot(device, ssid, passphrase, gateway)
        except NetworkServiceError as e:
            raise PortalCreationError(f"Creating the access point failed: {e}") from e

        logger.info(f"Access point '{ssid}' created")
        return connection

    async def destroy(self, connection: Connection, ssid: str) -> None:
        """
        Deactivate and delete the hotspot, then let the radio settle.

        Raises:
            PortalTeardownError: if deactivation or deletion fails
        """
        logger.info(f"Stopping access point '{ssid}'...")
        try:
            await self.service.deactivate(connection)
            await self.service.delete(connection)
        except NetworkServiceError as e:
            raise PortalTeardownError(f"Stopping the access point failed: {e}") from e

        await asyncio.sleep(self.settle_delay)
        logger.info(f"Access point '{ssid}' stopped")

    async def clear_stale_hotspots(self) -> int:
        """
        Delete access-point profiles left active by an earlier run.

        Returns:
            Number of profiles deleted

        Raises:
            PortalTeardownError: if they cannot be listed or deleted
        """
        try:
            connections = await self.service.get_active_connections()
        except NetworkServiceError as e:
            raise PortalTeardownError(f"Listing active connections failed: {e}") from e

        removed = 0
        for connection in connections:
            if not connection.settings.is_access_point:
                continue

            logger.debug(
                f"Deleting active access point connection profile to '{connection.settings.ssid}'"
            )
            try:
                await self.service.delete(connection)
            except NetworkServiceError as e:
                raise PortalTeardownError(
                    f"Deleting stale access point '{connection.settings.ssid}' failed: {e}"
                ) from e
            removed += 1

        return removed
