"""
DHCP/DNS helper for the captive portal.

Runs dnsmasq on the hotspot interface so that portal clients get an address
and every DNS lookup resolves to the gateway, which makes phones and laptops
pop up the captive portal page.
"""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from wificonnect.core.config import PortalConfig
from wificonnect.core.errors import HelperStartError

logger = logging.getLogger(__name__)

DNSMASQ = "dnsmasq"
STARTUP_GRACE_SECONDS = 0.5
TERMINATE_TIMEOUT_SECONDS = 5


@dataclass
class HelperProcessGuard:
    """
    Owns the dnsmasq process bound to the hotspot.

    kill() takes effect exactly once; later calls do nothing. It never
    raises, so it is safe on every exit path.
    """

    config: PortalConfig
    interface: str
    _process: subprocess.Popen | None = field(default=None, init=False)
    _config_path: Path | None = field(default=None, init=False)
    _killed: bool = field(default=False, init=False)
    kill_count: int = field(default=0, init=False)

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    async def start(self) -> None:
        """
        Start dnsmasq.

        Raises:
            HelperStartError: if dnsmasq is missing or exits right away
        """
        if self._process is not None:
            logger.warning("dnsmasq already started")
            return

        try:
            self._config_path = self._write_config()
        except OSError as e:
            raise HelperStartError(f"Writing dnsmasq config failed: {e}") from e

        cmd = [DNSMASQ, "-C", str(self._config_path), "-k"]  # -k = keep in foreground
        logger.debug(f"Starting dnsmasq: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            self._remove_config()
            raise HelperStartError(f"Starting dnsmasq failed: {e}") from e

        # Give it a moment to bind its sockets
        await asyncio.sleep(STARTUP_GRACE_SECONDS)

        if process.poll() is not None:
            _, stderr = process.communicate()
            self._remove_config()
            raise HelperStartError(f"dnsmasq failed to start: {stderr.decode().strip()}")

        self._process = process
        logger.info(f"dnsmasq running on {self.interface} (pid {process.pid})")

    def kill(self) -> None:
        """Stop dnsmasq and remove its config file."""
        if self._killed:
            return
        self._killed = True
        self.kill_count += 1

        process = self._process
        self._process = None

        if process is not None:
            try:
                process.terminate()
                try:
                    process.wait(timeout=TERMINATE_TIMEOUT_SECONDS)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
                logger.debug("dnsmasq stopped")
            except OSError as e:
                logger.warning(f"Could not stop dnsmasq: {e}")

        self._remove_config()

    def _write_config(self) -> Path:
        """Generate and write dnsmasq configuration for DHCP and DNS."""
        gateway = self.config.gateway
        config_content = f"""# wificonnect dnsmasq configuration
interface={self.interface}
bind-interfaces
except-interface=lo
no-hosts
no-resolv
dhcp-range={self.config.dhcp_range_start},{self.config.dhcp_range_end},{self.config.dhcp_lease_time}
dhcp-option=option:router,{gateway}

# Resolve every name to the portal
address=/#/{gateway}
"""
        fd, name = tempfile.mkstemp(prefix="wificonnect_dnsmasq_", suffix=".conf")
        with os.fdopen(fd, "w") as f:
            f.write(config_content)
        return Path(name)

    def _remove_config(self) -> None:
        if self._config_path is None:
            return
        try:
            self._config_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove temp file {self._config_path}: {e}")
        self._config_path = None
