"""Access point scanning with a fixed-delay retry."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from wificonnect.core.errors import AccessPointScanError, NetworkServiceError
from wificonnect.network.base import AccessPoint, Device, NetworkService, access_point_ssids

logger = logging.getLogger(__name__)

DEFAULT_SCAN_RETRIES = 10
DEFAULT_SCAN_RETRY_DELAY = 1.0


@dataclass
class AccessPointScanner:
    """
    Retrying wrapper around the raw scan primitive.

    Right after the hotspot is torn down the radio may report nothing for a
    while, so empty results are retried. Running out of retries is not an
    error: the portal can still come up with an empty list.
    """

    service: NetworkService
    retries: int = DEFAULT_SCAN_RETRIES
    delay: float = DEFAULT_SCAN_RETRY_DELAY

    async def scan(self, device: Device) -> list[AccessPoint]:
        """
        Scan for access points whose ssid decodes as text.

        Returns:
            The first non-empty result, or [] after all retries

        Raises:
            AccessPointScanError: if the scan primitive itself fails
        """
        for attempt in range(1, self.retries + 1):
            try:
                found = await self.service.get_access_points(device)
            except NetworkServiceError as e:
                raise AccessPointScanError(f"Getting access points failed: {e}") from e

            access_points = [ap for ap in found if ap.ssid_text() is not None]
            if access_points:
                logger.info(f"Access points: {access_point_ssids(access_points)}")
                return access_points

            if attempt < self.retries:
                logger.debug(f"No access points found - retry #{attempt}")
                await asyncio.sleep(self.delay)

        logger.warning("No access points found - giving up...")
        return []
