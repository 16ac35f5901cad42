"""
Onboarding session orchestrator.

The orchestrator owns the Wi-Fi device, the access point snapshot, the
hotspot connection and the dnsmasq helper. It brings the portal up, then
processes one command at a time from the portal server and the activity
timer until the session reaches a terminal state:

    INIT -> PORTAL_ACTIVE -> CONNECTING -> PORTAL_ACTIVE   (join failed)
                                        -> CONNECTED       (join verified)
    PORTAL_ACTIVE -> TIMED_OUT                             (never activated)
    any -> FAILED                                          (unrecoverable)

Every terminal transition goes through _exit(), which kills the helper,
tears down the hotspot if one is up, and reports exactly one ExitResult.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Protocol

from wificonnect.core.config import Config
from wificonnect.core.errors import (
    AccessPointNotFound,
    ChannelError,
    ConnectError,
    ConnectivityCheckError,
    DeviceNotFound,
    NetworkServiceError,
    NoWifiDevice,
    PortalTeardownError,
    WifiConnectError,
)
from wificonnect.core.messages import (
    AccessPointSsids,
    Activate,
    Channel,
    Command,
    Connect,
    ExitResult,
    Response,
    Timeout,
)
from wificonnect.network.base import (
    AccessPoint,
    Connection,
    ConnectionState,
    Device,
    NetworkService,
    access_point_ssids,
    find_access_point,
)
from wificonnect.setup.connectivity import ConnectivityProbe
from wificonnect.setup.dnsmasq import HelperProcessGuard
from wificonnect.setup.hotspot import PortalManager
from wificonnect.setup.portal import CaptivePortal
from wificonnect.setup.scanner import AccessPointScanner

logger = logging.getLogger(__name__)

SERVER_STOP_TIMEOUT = 5.0


class SessionState(str, Enum):
    """Orchestrator state."""

    INIT = "init"
    PORTAL_ACTIVE = "portal_active"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class PortalServer(Protocol):
    """What the orchestrator needs from the portal server."""

    async def serve(self) -> None: ...

    async def stop(self) -> None: ...


class HelperProcess(Protocol):
    """What the orchestrator needs from the DHCP/DNS helper."""

    async def start(self) -> None: ...

    def kill(self) -> None: ...


ServerFactory = Callable[..., PortalServer]
HelperFactory = Callable[..., HelperProcess]


async def find_device(service: NetworkService, interface: str | None) -> Device:
    """
    Select the Wi-Fi device for the session.

    Args:
        service: Network service capability
        interface: Interface name, or None for the first Wi-Fi device

    Raises:
        DeviceNotFound: if the named interface is missing or not Wi-Fi
        NoWifiDevice: if no interface was named and none is Wi-Fi
    """
    if interface:
        try:
            device = await service.get_device_by_interface(interface)
        except NetworkServiceError as e:
            raise DeviceNotFound(f"Cannot find device '{interface}': {e}") from e

        if not device.is_wifi:
            raise DeviceNotFound(f"Not a WiFi device: {interface}")

        logger.info(f"Targeted WiFi device: {interface}")
        return device

    try:
        devices = await service.get_devices()
    except NetworkServiceError as e:
        raise NoWifiDevice(f"Listing devices failed: {e}") from e

    for device in devices:
        if device.is_wifi:
            logger.info(f"WiFi device: {device.interface}")
            return device

    raise NoWifiDevice("Cannot find a WiFi device")


async def activity_timer(commands: Channel[Command], timeout: float) -> None:
    """Sleep once, then send a single Timeout command."""
    await asyncio.sleep(timeout)
    try:
        commands.send(Timeout())
    except ChannelError as e:
        logger.error(f"Sending timeout command failed: {e}")


class NetworkOrchestrator:
    """
    Runs one onboarding session.

    Usage:
        exits = Channel("exit")
        orchestrator = NetworkOrchestrator(service, config, exits)
        result = await orchestrator.run()
        await orchestrator.close()
    """

    def __init__(
        self,
        service: NetworkService,
        config: Config,
        exits: Channel[ExitResult],
        server_factory: ServerFactory = CaptivePortal,
        helper_factory: HelperFactory = HelperProcessGuard,
    ):
        self._service = service
        self._portal_config = config.portal
        self._exits = exits
        self._server_factory = server_factory
        self._helper_factory = helper_factory

        network = config.network
        self._scanner = AccessPointScanner(
            service,
            retries=network.scan_retries,
            delay=network.scan_retry_delay,
        )
        self._probe = ConnectivityProbe(service, interval=network.connectivity_poll_interval)
        self._portal_manager = PortalManager(service, settle_delay=network.teardown_settle_delay)
        self._connectivity_timeout = network.connectivity_timeout

        self._commands: Channel[Command] = Channel("command")
        self._responses: Channel[Response] = Channel("response")

        self._state = SessionState.INIT
        self._activated = False
        self._device: Device | None = None
        self._access_points: list[AccessPoint] = []
        self._portal: Connection | None = None
        self._helper: HelperProcess | None = None
        self._server: PortalServer | None = None
        self._server_task: asyncio.Task | None = None
        self._timer_task: asyncio.Task | None = None
        self._result: ExitResult | None = None

    # ========================================================================
    # Introspection
    # ========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def activated(self) -> bool:
        return self._activated

    @property
    def device(self) -> Device | None:
        return self._device

    @property
    def portal(self) -> Connection | None:
        return self._portal

    @property
    def access_points(self) -> list[AccessPoint]:
        return list(self._access_points)

    @property
    def result(self) -> ExitResult | None:
        return self._result

    # ========================================================================
    # Session
    # ========================================================================

    async def run(self) -> ExitResult:
        """Run the session to completion and return its outcome."""
        try:
            try:
                await self._setup()
            except WifiConnectError as e:
                return await self._exit(ExitResult.error(str(e)), SessionState.FAILED)

            return await self._command_loop()

        except asyncio.CancelledError:
            await self._exit(ExitResult.error("Session cancelled"), SessionState.FAILED)
            raise

        except Exception as e:
            logger.exception("Session failed unexpectedly")
            return await self._exit(ExitResult.error(f"Unexpected error: {e}"), SessionState.FAILED)

    async def close(self) -> None:
        """Stop the server and timer contexts once the session is over."""
        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()

        if self._server is not None:
            await self._server.stop()

        if self._server_task is not None and not self._server_task.done():
            done, _ = await asyncio.wait({self._server_task}, timeout=SERVER_STOP_TIMEOUT)
            if not done:
                logger.warning("Portal server did not stop in time, cancelling it")
                self._server_task.cancel()

        self._commands.close()
        self._responses.close()

    async def _setup(self) -> None:
        """One-time setup. Any failure here ends the session."""
        config = self._portal_config

        self._device = await find_device(self._service, config.interface)
        self._access_points = await self._scanner.scan(self._device)
        self._portal = await self._create_portal()

        self._helper = self._helper_factory(config=config, interface=self._device.interface)
        await self._helper.start()

        self._server = self._server_factory(
            gateway=config.gateway,
            commands=self._commands,
            responses=self._responses,
            ui_directory=config.ui_directory,
            port=config.listening_port,
        )
        self._server_task = asyncio.create_task(self._server.serve(), name="portal-server")
        self._server_task.add_done_callback(self._on_server_done)

        if config.activity_timeout:
            self._timer_task = asyncio.create_task(
                activity_timer(self._commands, config.activity_timeout),
                name="activity-timer",
            )

        self._state = SessionState.PORTAL_ACTIVE

    async def _command_loop(self) -> ExitResult:
        while True:
            try:
                command = await self._commands.receive()
            except ChannelError as e:
                return await self._exit(
                    ExitResult.error(f"Receiving network command failed: {e}"),
                    SessionState.FAILED,
                )

            try:
                result = await self._dispatch(command)
            except WifiConnectError as e:
                return await self._exit(ExitResult.error(str(e)), SessionState.FAILED)

            if result is not None:
                return result

    async def _dispatch(self, command: Command) -> ExitResult | None:
        logger.debug(f"Processing {command!r}")

        if isinstance(command, Activate):
            return self._handle_activate()
        if isinstance(command, Timeout):
            return await self._handle_timeout()
        if isinstance(command, Connect):
            return await self._handle_connect(command)

        logger.warning(f"Ignoring unknown command {command!r}")
        return None

    # ========================================================================
    # Command handlers
    # ========================================================================

    def _handle_activate(self) -> None:
        self._activated = True

        ssids = access_point_ssids(self._access_points)
        try:
            self._responses.send(AccessPointSsids(ssids))
        except ChannelError as e:
            raise ChannelError(f"Sending access point ssids results failed: {e}") from e

    async def _handle_timeout(self) -> ExitResult | None:
        if self._activated:
            logger.debug("Activity timeout ignored, the portal is in use")
            return None

        logger.info("Timeout reached. Exiting...")
        return await self._exit(ExitResult.ok(), SessionState.TIMED_OUT)

    async def _handle_connect(self, command: Connect) -> ExitResult | None:
        self._state = SessionState.CONNECTING

        await self._stop_portal()
        self._access_points = await self._scanner.scan(self._device)

        try:
            access_point = self._locate(command.ssid)
        except AccessPointNotFound as e:
            logger.warning(f"{e}, bringing the access point back up")
        else:
            if await self._join(access_point, command.ssid, command.passphrase):
                return await self._exit(ExitResult.ok(), SessionState.CONNECTED)

        self._access_points = await self._scanner.scan(self._device)
        self._portal = await self._create_portal()
        self._state = SessionState.PORTAL_ACTIVE
        return None

    # ========================================================================
    # Steps
    # ========================================================================

    def _locate(self, ssid: str) -> AccessPoint:
        access_point = find_access_point(self._access_points, ssid)
        if access_point is None:
            raise AccessPointNotFound(ssid)
        return access_point

    async def _join(self, access_point: AccessPoint, ssid: str, passphrase: str) -> bool:
        """Join the network and verify connectivity. False means fall back."""
        logger.info(f"Connecting to access point '{ssid}'...")

        try:
            connection, state = await self._connect(access_point, ssid, passphrase)
        except ConnectError as e:
            logger.warning(str(e))
            return False

        if state == ConnectionState.ACTIVATED:
            try:
                if await self._probe.poll(self._connectivity_timeout):
                    logger.info("Connectivity established")
                    return True
                logger.warning("Cannot establish connectivity")
            except ConnectivityCheckError as e:
                logger.error(str(e))
        else:
            logger.warning(f"Connection to access point not activated '{ssid}': {state.value}")

        try:
            await self._service.delete(connection)
        except NetworkServiceError as e:
            logger.error(f"Deleting connection object failed: {e}")

        return False

    async def _connect(
        self,
        access_point: AccessPoint,
        ssid: str,
        passphrase: str,
    ) -> tuple[Connection, ConnectionState]:
        try:
            return await self._service.connect(self._device, access_point, passphrase)
        except NetworkServiceError as e:
            raise ConnectError(f"Error connecting to access point '{ssid}': {e}") from e

    async def _create_portal(self) -> Connection:
        config = self._portal_config
        return await self._portal_manager.create(
            self._device,
            config.ssid,
            config.gateway,
            config.passphrase,
        )

    async def _stop_portal(self) -> None:
        """Tear the hotspot down before the radio is used for anything else."""
        if self._portal is None:
            return
        await self._portal_manager.destroy(self._portal, self._portal_config.ssid)
        self._portal = None

    # ========================================================================
    # Exit
    # ========================================================================

    async def _exit(self, result: ExitResult, state: SessionState) -> ExitResult:
        """Kill the helper, drop the hotspot, report the outcome. Runs once."""
        if self._result is not None:
            return self._result

        self._result = result
        self._state = state

        if self._helper is not None:
            self._helper.kill()

        try:
            if self._portal is not None:
                portal, self._portal = self._portal, None
                try:
                    await self._portal_manager.destroy(portal, self._portal_config.ssid)
                except PortalTeardownError as e:
                    logger.error(str(e))
        finally:
            self._report(result)

        return result

    def _report(self, result: ExitResult) -> None:
        if result.success:
            logger.debug(f"Session finished: {self._state.value}")
        else:
            logger.debug(f"Session failed in state {self._state.value}: {result.message}")

        try:
            self._exits.send(result)
        except ChannelError as e:
            logger.error(f"Sending exit result failed: {e}")

    def _on_server_done(self, task: asyncio.Task) -> None:
        """The server context ended; its channel endpoints are dead."""
        if self._result is None:
            if task.cancelled():
                logger.error("Portal server was cancelled")
            elif task.exception() is not None:
                logger.error(f"Portal server crashed: {task.exception()}")
            else:
                logger.error("Portal server stopped unexpectedly")
        elif not task.cancelled() and task.exception() is not None:
            logger.debug(f"Portal server ended with: {task.exception()}")

        self._commands.close()
        self._responses.close()
