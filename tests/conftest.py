"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Awaitable, Callable

import pytest

from wificonnect.core.config import Config
from wificonnect.core.errors import HelperStartError, NetworkServiceError
from wificonnect.core.messages import AccessPointSsids, Activate, Channel
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


class FakeNetworkService(NetworkService):
    """
    In-memory NetworkService.

    Every call is appended to `events` as a tuple. Scan, connect and
    connectivity results are consumed from their lists in order, falling back
    to the defaults once a list is empty. `errors[name]` makes the named
    method raise, starting with call number `error_from[name]` (default 1).
    """

    def __init__(self):
        self.devices = [
            Device(interface="eth0", device_type=DeviceType.ETHERNET),
            Device(interface="wlan0", device_type=DeviceType.WIFI),
        ]
        self.scans: list[list[AccessPoint]] = []
        self.default_scan = [
            AccessPoint(ssid=b"Home", signal=80),
            AccessPoint(ssid=b"Cafe", signal=40),
        ]
        self.connect_states: list[ConnectionState] = []
        self.connectivity: list[Connectivity] = []
        self.default_connectivity = Connectivity.FULL
        self.active_connections: list[Connection] = []
        self.service_state = ServiceState.ACTIVE
        self.started_state = ServiceState.ACTIVE

        self.errors: dict[str, Exception] = {}
        self.error_from: dict[str, int] = {}
        self.calls: Counter = Counter()
        self.events: list[tuple] = []

    def _call(self, name: str, *args) -> None:
        self.calls[name] += 1
        self.events.append((name, *args))
        error = self.errors.get(name)
        if error is not None and self.calls[name] >= self.error_from.get(name, 1):
            raise error

    def event_names(self) -> list[str]:
        return [event[0] for event in self.events]

    async def get_devices(self) -> list[Device]:
        self._call("get_devices")
        return list(self.devices)

    async def get_device_by_interface(self, interface: str) -> Device:
        self._call("get_device_by_interface", interface)
        for device in self.devices:
            if device.interface == interface:
                return device
        raise NetworkServiceError(f"No device with interface '{interface}'")

    async def get_connectivity(self) -> Connectivity:
        self._call("get_connectivity")
        if self.connectivity:
            return self.connectivity.pop(0)
        return self.default_connectivity

    async def get_access_points(self, device: Device) -> list[AccessPoint]:
        self._call("scan", device.interface)
        if self.scans:
            return self.scans.pop(0)
        return list(self.default_scan)

    async def connect(self, device, access_point, passphrase):
        self._call("connect", access_point.ssid_text(), passphrase)
        uuid = f"joined-{self.calls['connect']}"
        state = self.connect_states.pop(0) if self.connect_states else ConnectionState.ACTIVATED
        return Connection(uuid=uuid, name=access_point.ssid_text() or ""), state

    async def create_hotspot(self, device, ssid, passphrase, gateway) -> Connection:
        self._call("create_hotspot", ssid, passphrase, gateway)
        return Connection(
            uuid=f"hotspot-{self.calls['create_hotspot']}",
            name=ssid,
            settings=ConnectionSettings(kind=WIRELESS_KIND, mode="ap", ssid=ssid),
        )

    async def activate(self, connection: Connection) -> ConnectionState:
        self._call("activate", connection.uuid)
        return ConnectionState.ACTIVATED

    async def deactivate(self, connection: Connection) -> ConnectionState:
        self._call("deactivate", connection.uuid)
        return ConnectionState.DEACTIVATED

    async def delete(self, connection: Connection) -> None:
        self._call("delete", connection.uuid)

    async def get_active_connections(self) -> list[Connection]:
        self._call("get_active_connections")
        return list(self.active_connections)

    async def get_service_state(self) -> ServiceState:
        self._call("get_service_state")
        return self.service_state

    async def start_service(self, timeout: float) -> ServiceState:
        self._call("start_service", timeout)
        self.service_state = self.started_state
        return self.started_state


class FakeHelper:
    """Stands in for the dnsmasq guard; records into a shared event list."""

    def __init__(self, events: list[tuple], start_error: Exception | None = None, **kwargs):
        self.kwargs = kwargs
        self.events = events
        self.start_error = start_error
        self.started = False
        self.kill_calls = 0

    async def start(self) -> None:
        self.events.append(("helper_start",))
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def kill(self) -> None:
        self.kill_calls += 1
        self.events.append(("helper_kill",))


class FakeHelperFactory:
    def __init__(self, events: list[tuple], start_error: Exception | None = None):
        self.events = events
        self.start_error = start_error
        self.helpers: list[FakeHelper] = []

    def __call__(self, **kwargs) -> FakeHelper:
        helper = FakeHelper(self.events, self.start_error, **kwargs)
        self.helpers.append(helper)
        return helper


Script = Callable[["ScriptedServer"], Awaitable[None]]


class ScriptedServer:
    """
    Portal server double that plays a script against the orchestrator.

    After the script finishes it keeps serving until stop(), unless
    stop_after_script is set, in which case serve() returns on its own.
    """

    def __init__(
        self,
        script: Script | None,
        stop_after_script: bool,
        *,
        gateway: str,
        commands: Channel,
        responses: Channel,
        ui_directory: str,
        port: int,
    ):
        self.script = script
        self.stop_after_script = stop_after_script
        self.gateway = gateway
        self.commands = commands
        self.responses = responses
        self.ui_directory = ui_directory
        self.port = port
        self.received: list[list[str]] = []
        self.stopped = False
        self._stop_event = asyncio.Event()

    async def request_ssids(self) -> list[str]:
        self.commands.send(Activate())
        response = await self.responses.receive()
        assert isinstance(response, AccessPointSsids)
        self.received.append(response.ssids)
        return response.ssids

    async def serve(self) -> None:
        if self.script is not None:
            await self.script(self)
        if self.stop_after_script:
            return
        await self._stop_event.wait()

    async def stop(self) -> None:
        self.stopped = True
        self._stop_event.set()


class ScriptedServerFactory:
    def __init__(self, script: Script | None = None, stop_after_script: bool = False):
        self.script = script
        self.stop_after_script = stop_after_script
        self.servers: list[ScriptedServer] = []

    def __call__(self, **kwargs) -> ScriptedServer:
        server = ScriptedServer(self.script, self.stop_after_script, **kwargs)
        self.servers.append(server)
        return server


@pytest.fixture
def service():
    """Fake network service with two visible access points."""
    return FakeNetworkService()


@pytest.fixture
def fast_config():
    """Configuration with no waiting between retries and polls."""
    return Config.from_dict({
        "portal": {
            "ssid": "Setup",
            "gateway": "192.168.42.1",
        },
        "network": {
            "scan_retries": 3,
            "scan_retry_delay": 0,
            "connectivity_timeout": 0,
            "connectivity_poll_interval": 0.01,
            "teardown_settle_delay": 0,
        },
    })


@pytest.fixture
def default_config():
    """Default configuration for testing."""
    return Config.default()


@pytest.fixture
def helper_factory(service: FakeNetworkService):
    """Helper factory whose helpers record into the service's event list."""
    return FakeHelperFactory(service.events)


@pytest.fixture
def make_server_factory():
    """Build a portal server factory that plays the given script."""
    return ScriptedServerFactory


@pytest.fixture
def failing_helper_factory(service: FakeNetworkService):
    """Helper factory whose helpers fail to start."""
    return FakeHelperFactory(service.events, start_error=HelperStartError("dnsmasq failed to start: port 53 in use"))
