"""Connectivity polling after a join."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from wificonnect.core.errors import ConnectivityCheckError, NetworkServiceError
from wificonnect.network.base import Connectivity, NetworkService

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0

CONNECTED_STATES = (Connectivity.FULL, Connectivity.LIMITED)


@dataclass
class ConnectivityProbe:
    """Polls the service's connectivity state at a fixed interval."""

    service: NetworkService
    interval: float = DEFAULT_POLL_INTERVAL

    async def poll(self, timeout: float) -> bool:
        """
        Wait for full or limited connectivity.

        Args:
            timeout: Seconds to keep polling

        Returns:
            True as soon as connectivity is full or limited, False once
            timeout seconds have elapsed without it

        Raises:
            ConnectivityCheckError: if the state cannot be read
        """
        elapsed = 0.0

        while True:
            try:
                connectivity = await self.service.get_connectivity()
            except NetworkServiceError as e:
                raise ConnectivityCheckError(f"Getting connectivity failed: {e}") from e

            if connectivity in CONNECTED_STATES:
                logger.debug(f"Connectivity established: {connectivity.value} / {elapsed:g}s elapsed")
                return True

            if elapsed >= timeout:
                logger.debug(
                    f"Timeout reached in waiting for connectivity: "
                    f"{connectivity.value} / {elapsed:g}s elapsed"
                )
                return False

            await asyncio.sleep(self.interval)
            elapsed += self.interval

            logger.debug(f"Still waiting for connectivity: {connectivity.value} / {elapsed:g}s elapsed")
