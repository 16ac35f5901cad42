"""
NetworkManager backend driven through nmcli.

Implements the NetworkService capability by shelling out to `nmcli` and
`systemctl`. Output is requested in terse mode (-t) or value mode (-g) and
parsed here, so nothing above this module sees nmcli text.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time

from wificonnect.core.errors import NetworkServiceError
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
    WIRELESS_KIND,
)

logger = logging.getLogger(__name__)

NMCLI = "nmcli"
SYSTEMCTL = "systemctl"
SERVICE_UNIT = "NetworkManager"

DEFAULT_COMMAND_TIMEOUT = 60.0
DEFAULT_ACTIVATION_WAIT = 30  # seconds nmcli waits for activation

_UUID = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
_ACTIVATED_WITH = re.compile(rf"activated with '({_UUID})'")
_ADDED = re.compile(rf"\(({_UUID})\) successfully added")


def split_terse_line(line: str) -> list[str]:
    """Split one line of `nmcli -t` output, honouring `\\:` and `\\\\` escapes."""
    fields: list[str] = []
    current: list[str] = []
    escaped = False

    for char in line:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)

    fields.append("".join(current))
    return fields


def parse_ssid_hex(value: str) -> bytes | None:
    """Decode the SSID-HEX column into raw bytes."""
    value = value.strip()
    if value.lower().startswith("0x"):
        value = value[2:]
    if not value:
        return None
    try:
        return bytes.fromhex(value)
    except ValueError:
        return None


def _parse_device_type(value: str) -> DeviceType:
    if value == "wifi":
        return DeviceType.WIFI
    if value == "ethernet":
        return DeviceType.ETHERNET
    return DeviceType.OTHER


def _parse_connection_state(value: str) -> ConnectionState:
    try:
        return ConnectionState(value.strip().lower())
    except ValueError:
        return ConnectionState.UNKNOWN


class NmcliNetworkService(NetworkService):
    """NetworkService backed by the nmcli command line client."""

    def __init__(
        self,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        activation_wait: int = DEFAULT_ACTIVATION_WAIT,
    ):
        self._command_timeout = command_timeout
        self._activation_wait = activation_wait

    # ========================================================================
    # Devices and connectivity
    # ========================================================================

    async def get_devices(self) -> list[Device]:
        output = await self._nmcli("-t", "-f", "DEVICE,TYPE", "device")
        devices = []
        for line in output.splitlines():
            if not line.strip():
                continue
            fields = split_terse_line(line)
            if len(fields) < 2:
                continue
            devices.append(Device(interface=fields[0], device_type=_parse_device_type(fields[1])))
        return devices

    async def get_device_by_interface(self, interface: str) -> Device:
        for device in await self.get_devices():
            if device.interface == interface:
                return device
        raise NetworkServiceError(f"No device with interface '{interface}'")

    async def get_connectivity(self) -> Connectivity:
        output = await self._nmcli("-t", "-f", "CONNECTIVITY", "general")
        value = output.strip().lower()
        try:
            return Connectivity(value)
        except ValueError:
            logger.debug(f"Unrecognised connectivity state: {value!r}")
            return Connectivity.UNKNOWN

    # ========================================================================
    # Wi-Fi primitives
    # ========================================================================

    async def get_access_points(self, device: Device) -> list[AccessPoint]:
        output = await self._nmcli(
            "-t", "-f", "SSID-HEX,SIGNAL,SECURITY",
            "device", "wifi", "list",
            "ifname", device.interface,
            "--rescan", "auto",
        )

        access_points = []
        for line in output.splitlines():
            if not line.strip():
                continue
            fields = split_terse_line(line)
            ssid = parse_ssid_hex(fields[0])
            if ssid is None:
                # Hidden network
                continue
            try:
                signal = int(fields[1]) if len(fields) > 1 and fields[1] else 0
            except ValueError:
                signal = 0
            security = fields[2] if len(fields) > 2 else ""
            access_points.append(AccessPoint(ssid=ssid, signal=signal, security=security))

        return access_points

    async def connect(
        self,
        device: Device,
        access_point: AccessPoint,
        passphrase: str,
    ) -> tuple[Connection, ConnectionState]:
        ssid = access_point.ssid_text()
        if ssid is None:
            raise NetworkServiceError("Cannot join an access point without a text ssid")

        known_before = await self._connection_uuids()

        cmd = [
            "-w", str(self._activation_wait),
            "device", "wifi", "connect", ssid,
            "ifname", device.interface,
        ]
        if passphrase:
            cmd += ["password", passphrase]

        stdout, stderr, returncode = await self._run([NMCLI, *cmd], check=False)

        if returncode == 0:
            match = _ACTIVATED_WITH.search(stdout)
            if match is None:
                raise NetworkServiceError(f"Unexpected nmcli output: {stdout.strip()}")
            connection = Connection(uuid=match.group(1), name=ssid)
            return connection, await self._connection_state(connection)

        # A failed activation can leave the new profile behind; hand it back
        # so the caller can delete it.
        created = (await self._connection_uuids()) - known_before
        if created:
            uuid = sorted(created)[0]
            logger.debug(f"Activation of '{ssid}' failed, profile {uuid} left behind")
            return Connection(uuid=uuid, name=ssid), ConnectionState.DEACTIVATED

        raise NetworkServiceError(stderr.strip() or stdout.strip() or "Connection failed")

    async def create_hotspot(
        self,
        device: Device,
        ssid: str,
        passphrase: str | None,
        gateway: str,
    ) -> Connection:
        cmd = [
            "connection", "add",
            "type", "wifi",
            "ifname", device.interface,
            "con-name", ssid,
            "autoconnect", "no",
            "ssid", ssid,
            "802-11-wireless.mode", "ap",
            "802-11-wireless.band", "bg",
            "ipv4.method", "manual",
            "ipv4.addresses", f"{gateway}/24",
            "ipv6.method", "ignore",
        ]
        if passphrase:
            cmd += [
                "802-11-wireless-security.key-mgmt", "wpa-psk",
                "802-11-wireless-security.psk", passphrase,
            ]

        output = await self._nmcli(*cmd)
        match = _ADDED.search(output)
        if match is None:
            raise NetworkServiceError(f"Unexpected nmcli output: {output.strip()}")

        connection = Connection(
            uuid=match.group(1),
            name=ssid,
            settings=ConnectionSettings(kind=WIRELESS_KIND, mode="ap", ssid=ssid),
        )

        try:
            await self.activate(connection)
        except NetworkServiceError:
            try:
                await self.delete(connection)
            except NetworkServiceError as e:
                logger.warning(f"Could not remove unactivated hotspot profile: {e}")
            raise

        return connection

    # ========================================================================
    # Connection primitives
    # ========================================================================

    async def activate(self, connection: Connection) -> ConnectionState:
        await self._nmcli("-w", str(self._activation_wait), "connection", "up", "uuid", connection.uuid)
        return await self._connection_state(connection)

    async def deactivate(self, connection: Connection) -> ConnectionState:
        await self._nmcli("connection", "down", "uuid", connection.uuid)
        return ConnectionState.DEACTIVATED

    async def delete(self, connection: Connection) -> None:
        await self._nmcli("connection", "delete", "uuid", connection.uuid)

    async def get_active_connections(self) -> list[Connection]:
        output = await self._nmcli("-t", "-f", "UUID,NAME,TYPE", "connection", "show", "--active")

        connections = []
        for line in output.splitlines():
            if not line.strip():
                continue
            fields = split_terse_line(line)
            if len(fields) < 3:
                continue
            uuid, name, kind = fields[0], fields[1], fields[2]

            settings = ConnectionSettings(kind=kind)
            if kind == WIRELESS_KIND:
                mode = await self._connection_field(uuid, "802-11-wireless.mode")
                ssid = await self._connection_field(uuid, "802-11-wireless.ssid")
                settings = ConnectionSettings(kind=kind, mode=mode, ssid=ssid)

            connections.append(Connection(uuid=uuid, name=name, settings=settings))

        return connections

    # ========================================================================
    # Service
    # ========================================================================

    async def get_service_state(self) -> ServiceState:
        stdout, _, _ = await self._run([SYSTEMCTL, "is-active", SERVICE_UNIT], check=False)
        try:
            return ServiceState(stdout.strip())
        except ValueError:
            return ServiceState.UNKNOWN

    async def start_service(self, timeout: float) -> ServiceState:
        await self._run([SYSTEMCTL, "start", SERVICE_UNIT])

        deadline = time.monotonic() + timeout
        state = await self.get_service_state()
        while state != ServiceState.ACTIVE and time.monotonic() < deadline:
            await asyncio.sleep(1)
            state = await self.get_service_state()
        return state

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _connection_uuids(self) -> set[str]:
        output = await self._nmcli("-t", "-f", "UUID", "connection", "show")
        return {line.strip() for line in output.splitlines() if line.strip()}

    async def _connection_field(self, uuid: str, name: str) -> str:
        output = await self._nmcli("-g", name, "connection", "show", "uuid", uuid)
        return output.strip()

    async def _connection_state(self, connection: Connection) -> ConnectionState:
        stdout, _, returncode = await self._run(
            [NMCLI, "-g", "GENERAL.STATE", "connection", "show", "uuid", connection.uuid],
            check=False,
        )
        if returncode != 0:
            # Inactive profiles have no GENERAL section
            return ConnectionState.DEACTIVATED
        return _parse_connection_state(stdout)

    async def _nmcli(self, *args: str) -> str:
        stdout, _, _ = await self._run([NMCLI, *args])
        return stdout

    async def _run(self, cmd: list[str], check: bool = True) -> tuple[str, str, int]:
        """Run a command and return (stdout, stderr, returncode)."""
        logger.debug(f"Running: {' '.join(self._redact(cmd))}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise NetworkServiceError(f"Command not found: {cmd[0]}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._command_timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise NetworkServiceError(f"Command timed out: {' '.join(cmd[:2])}") from e

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        returncode = process.returncode or 0

        if check and returncode != 0:
            raise NetworkServiceError(err.strip() or out.strip() or f"{cmd[0]} exited with {returncode}")

        return out, err, returncode

    @staticmethod
    def _redact(cmd: list[str]) -> list[str]:
        redacted = list(cmd)
        for index, arg in enumerate(redacted[:-1]):
            if arg in ("password", "802-11-wireless-security.psk"):
                redacted[index + 1] = "********"
        return redacted
