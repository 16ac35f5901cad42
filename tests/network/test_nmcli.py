"""Tests for the nmcli NetworkService backend."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from wificonnect.core.errors import NetworkServiceError
from wificonnect.network.base import (
    AccessPoint,
    Connection,
    ConnectionSettings,
    ConnectionState,
    Connectivity,
    Device,
    DeviceType,
    ServiceState,
    WIRELESS_KIND,
    access_point_ssids,
    find_access_point,
)
from wificonnect.network.nmcli import (
    NmcliNetworkService,
    parse_ssid_hex,
    split_terse_line,
)

UUID_A = "0b1e5f7a-1c2d-4e5f-8a9b-0c1d2e3f4a5b"
UUID_B = "9f8e7d6c-5b4a-4392-8170-6f5e4d3c2b1a"

WLAN0 = Device(interface="wlan0", device_type=DeviceType.WIFI)


def runner(responses: dict[tuple[str, ...], tuple[str, str, int]]):
    """
    Fake _run: looks a command up by its arguments after the program name.

    Each value is a (stdout, stderr, returncode) tuple, or a list of them
    consumed in order.
    """
    calls: list[list[str]] = []

    async def run(cmd, check=True):
        calls.append(list(cmd))
        key = tuple(cmd[1:])
        if key not in responses:
            raise AssertionError(f"Unexpected command: {cmd}")
        response = responses[key]
        if isinstance(response, list):
            response = response.pop(0)
        out, err, rc = response
        if check and rc != 0:
            raise NetworkServiceError(err or out)
        return out, err, rc

    run.calls = calls
    return run


# =============================================================================
# Parsing helpers
# =============================================================================


class TestTerseParsing:
    """Test nmcli terse output parsing."""

    def test_split_plain(self):
        assert split_terse_line("wlan0:wifi:connected") == ["wlan0", "wifi", "connected"]

    def test_split_escaped_colon(self):
        """Escaped colons stay inside the field."""
        assert split_terse_line(r"AA\:BB\:CC:70") == ["AA:BB:CC", "70"]

    def test_split_escaped_backslash(self):
        assert split_terse_line(r"a\\b:c") == ["a\\b", "c"]

    def test_split_empty_fields(self):
        assert split_terse_line("::") == ["", "", ""]

    def test_parse_ssid_hex(self):
        assert parse_ssid_hex("486F6D65") == b"Home"
        assert parse_ssid_hex("0x486F6D65") == b"Home"

    def test_parse_ssid_hex_hidden(self):
        """Hidden networks have no ssid bytes."""
        assert parse_ssid_hex("") is None
        assert parse_ssid_hex("--") is None

    def test_parse_ssid_hex_non_utf8(self):
        assert parse_ssid_hex("FFFE") == b"\xff\xfe"


class TestNetworkTypes:
    """Test the backend-neutral network types."""

    def test_ssid_text(self):
        assert AccessPoint(ssid=b"Caf\xc3\xa9").ssid_text() == "Café"
        assert AccessPoint(ssid=b"\xff\xfe").ssid_text() is None

    def test_access_point_ssids_skip_non_text(self):
        aps = [AccessPoint(ssid=b"B"), AccessPoint(ssid=b"\xff"), AccessPoint(ssid=b"A")]
        assert access_point_ssids(aps) == ["B", "A"]

    def test_find_access_point_first_match(self):
        first = AccessPoint(ssid=b"Home", signal=10)
        second = AccessPoint(ssid=b"Home", signal=90)
        assert find_access_point([first, second], "Home") is first
        assert find_access_point([first], "Cafe") is None

    def test_is_access_point(self):
        assert ConnectionSettings(kind=WIRELESS_KIND, mode="ap").is_access_point
        assert not ConnectionSettings(kind=WIRELESS_KIND, mode="infrastructure").is_access_point
        assert not ConnectionSettings(kind="802-3-ethernet").is_access_point


# =============================================================================
# Backend operations
# =============================================================================


class TestNmcliNetworkService:
    """Test NmcliNetworkService with a faked command runner."""

    @pytest.fixture
    def service(self):
        return NmcliNetworkService()

    @pytest.mark.asyncio
    async def test_get_devices(self, service):
        run = runner({
            ("-t", "-f", "DEVICE,TYPE", "device"): ("eth0:ethernet\nwlan0:wifi\nlo:loopback\n", "", 0),
        })
        with patch.object(service, "_run", side_effect=run):
            devices = await service.get_devices()

        assert devices == [
            Device("eth0", DeviceType.ETHERNET),
            Device("wlan0", DeviceType.WIFI),
            Device("lo", DeviceType.OTHER),
        ]

    @pytest.mark.asyncio
    async def test_get_device_by_interface_missing(self, service):
        run = runner({("-t", "-f", "DEVICE,TYPE", "device"): ("wlan0:wifi\n", "", 0)})
        with patch.object(service, "_run", side_effect=run):
            with pytest.raises(NetworkServiceError, match="wlan1"):
                await service.get_device_by_interface("wlan1")

    @pytest.mark.asyncio
    async def test_get_connectivity(self, service):
        run = runner({("-t", "-f", "CONNECTIVITY", "general"): ("limited\n", "", 0)})
        with patch.object(service, "_run", side_effect=run):
            assert await service.get_connectivity() == Connectivity.LIMITED

    @pytest.mark.asyncio
    async def test_get_connectivity_unrecognised(self, service):
        run = runner({("-t", "-f", "CONNECTIVITY", "general"): ("weird\n", "", 0)})
        with patch.object(service, "_run", side_effect=run):
            assert await service.get_connectivity() == Connectivity.UNKNOWN

    @pytest.mark.asyncio
    async def test_get_access_points(self, service):
        """Scan results keep raw ssid bytes and skip hidden networks."""
        output = "486F6D65:80:WPA2\n:55:WPA2\nFFFE:30:\n43616665:40:\n"
        run = runner({
            ("-t", "-f", "SSID-HEX,SIGNAL,SECURITY", "device", "wifi", "list",
             "ifname", "wlan0", "--rescan", "auto"): (output, "", 0),
        })
        with patch.object(service, "_run", side_effect=run):
            aps = await service.get_access_points(WLAN0)

        assert aps == [
            AccessPoint(ssid=b"Home", signal=80, security="WPA2"),
            AccessPoint(ssid=b"\xff\xfe", signal=30, security=""),
            AccessPoint(ssid=b"Cafe", signal=40, security=""),
        ]

    @pytest.mark.asyncio
    async def test_connect_success(self, service):
        run = runner({
            ("-t", "-f", "UUID", "connection", "show"): (f"{UUID_A}\n", "", 0),
            ("-w", "30", "device", "wifi", "connect", "Home", "ifname", "wlan0", "password", "secret123"): (
                f"Device 'wlan0' successfully activated with '{UUID_B}'.\n", "", 0,
            ),
            ("-g", "GENERAL.STATE", "connection", "show", "uuid", UUID_B): ("activated\n", "", 0),
        })
        with patch.object(service, "_run", side_effect=run):
            connection, state = await service.connect(WLAN0, AccessPoint(ssid=b"Home"), "secret123")

        assert connection.uuid == UUID_B
        assert state == ConnectionState.ACTIVATED

    @pytest.mark.asyncio
    async def test_connect_open_network_has_no_password(self, service):
        run = runner({
            ("-t", "-f", "UUID", "connection", "show"): ("", "", 0),
            ("-w", "30", "device", "wifi", "connect", "Cafe", "ifname", "wlan0"): (
                f"Device 'wlan0' successfully activated with '{UUID_B}'.\n", "", 0,
            ),
            ("-g", "GENERAL.STATE", "connection", "show", "uuid", UUID_B): ("activated\n", "", 0),
        })
        with patch.object(service, "_run", side_effect=run):
            _, state = await service.connect(WLAN0, AccessPoint(ssid=b"Cafe"), "")

        assert state == ConnectionState.ACTIVATED
        assert "password" not in run.calls[1]

    @pytest.mark.asyncio
    async def test_connect_failure_returns_leftover_profile(self, service):
        """A failed activation hands back the profile it created."""
        run = runner({
            ("-t", "-f", "UUID", "connection", "show"): [
                (f"{UUID_A}\n", "", 0),
                (f"{UUID_A}\n{UUID_B}\n", "", 0),
            ],
            ("-w", "30", "device", "wifi", "connect", "Home", "ifname", "wlan0", "password", "wrongpass"): (
                "", "Error: Connection activation failed: Secrets were required.", 4,
            ),
        })
        with patch.object(service, "_run", side_effect=run):
            connection, state = await service.connect(WLAN0, AccessPoint(ssid=b"Home"), "wrongpass")

        assert connection.uuid == UUID_B
        assert state == ConnectionState.DEACTIVATED

    @pytest.mark.asyncio
    async def test_connect_failure_without_profile_raises(self, service):
        run = runner({
            ("-t", "-f", "UUID", "connection", "show"): [("", "", 0), ("", "", 0)],
            ("-w", "30", "device", "wifi", "connect", "Home", "ifname", "wlan0"): (
                "", "Error: No network with SSID 'Home' found.", 10,
            ),
        })
        with patch.object(service, "_run", side_effect=run):
            with pytest.raises(NetworkServiceError, match="No network"):
                await service.connect(WLAN0, AccessPoint(ssid=b"Home"), "")

    @pytest.mark.asyncio
    async def test_create_hotspot(self, service):
        """Hotspot is added as an AP profile and activated."""
        add = (
            "connection", "add", "type", "wifi", "ifname", "wlan0", "con-name", "Setup",
            "autoconnect", "no", "ssid", "Setup", "802-11-wireless.mode", "ap",
            "802-11-wireless.band", "bg", "ipv4.method", "manual",
            "ipv4.addresses", "192.168.42.1/24", "ipv6.method", "ignore",
            "802-11-wireless-security.key-mgmt", "wpa-psk",
            "802-11-wireless-security.psk", "setup-pass",
        )
        run = runner({
            add: (f"Connection 'Setup' ({UUID_A}) successfully added.\n", "", 0),
            ("-w", "30", "connection", "up", "uuid", UUID_A): ("Connection successfully activated\n", "", 0),
            ("-g", "GENERAL.STATE", "connection", "show", "uuid", UUID_A): ("activated\n", "", 0),
        })
        with patch.object(service, "_run", side_effect=run):
            connection = await service.create_hotspot(WLAN0, "Setup", "setup-pass", "192.168.42.1")

        assert connection.uuid == UUID_A
        assert connection.settings.is_access_point
        assert connection.settings.ssid == "Setup"

    @pytest.mark.asyncio
    async def test_create_hotspot_activation_failure_removes_profile(self, service):
        add = (
            "connection", "add", "type", "wifi", "ifname", "wlan0", "con-name", "Setup",
            "autoconnect", "no", "ssid", "Setup", "802-11-wireless.mode", "ap",
            "802-11-wireless.band", "bg", "ipv4.method", "manual",
            "ipv4.addresses", "192.168.42.1/24", "ipv6.method", "ignore",
        )
        run = runner({
            add: (f"Connection 'Setup' ({UUID_A}) successfully added.\n", "", 0),
            ("-w", "30", "connection", "up", "uuid", UUID_A): ("", "Error: AP mode not supported", 4),
            ("connection", "delete", "uuid", UUID_A): ("", "", 0),
        })
        with patch.object(service, "_run", side_effect=run):
            with pytest.raises(NetworkServiceError, match="AP mode"):
                await service.create_hotspot(WLAN0, "Setup", None, "192.168.42.1")

        assert run.calls[-1][1:] == ["connection", "delete", "uuid", UUID_A]

    @pytest.mark.asyncio
    async def test_deactivate_and_delete(self, service):
        run = runner({
            ("connection", "down", "uuid", UUID_A): ("", "", 0),
            ("connection", "delete", "uuid", UUID_A): ("", "", 0),
        })
        connection = Connection(uuid=UUID_A)
        with patch.object(service, "_run", side_effect=run):
            assert await service.deactivate(connection) == ConnectionState.DEACTIVATED
            await service.delete(connection)

        assert len(run.calls) == 2

    @pytest.mark.asyncio
    async def test_connection_state_of_inactive_profile(self, service):
        run = runner({
            ("-g", "GENERAL.STATE", "connection", "show", "uuid", UUID_A): ("", "", 10),
        })
        with patch.object(service, "_run", side_effect=run):
            state = await service._connection_state(Connection(uuid=UUID_A))
        assert state == ConnectionState.DEACTIVATED

    @pytest.mark.asyncio
    async def test_get_active_connections(self, service):
        """Wireless connections carry their mode and ssid."""
        run = runner({
            ("-t", "-f", "UUID,NAME,TYPE", "connection", "show", "--active"): (
                f"{UUID_A}:Setup:802-11-wireless\n{UUID_B}:Wired:802-3-ethernet\n", "", 0,
            ),
            ("-g", "802-11-wireless.mode", "connection", "show", "uuid", UUID_A): ("ap\n", "", 0),
            ("-g", "802-11-wireless.ssid", "connection", "show", "uuid", UUID_A): ("Setup\n", "", 0),
        })
        with patch.object(service, "_run", side_effect=run):
            connections = await service.get_active_connections()

        assert connections[0].settings == ConnectionSettings(kind=WIRELESS_KIND, mode="ap", ssid="Setup")
        assert connections[0].settings.is_access_point
        assert connections[1].settings.kind == "802-3-ethernet"
        assert not connections[1].settings.is_access_point

    @pytest.mark.asyncio
    async def test_get_service_state(self, service):
        run = runner({("is-active", "NetworkManager"): ("inactive\n", "", 3)})
        with patch.object(service, "_run", side_effect=run):
            assert await service.get_service_state() == ServiceState.INACTIVE

    @pytest.mark.asyncio
    async def test_start_service_polls_until_active(self, service):
        run = runner({
            ("start", "NetworkManager"): ("", "", 0),
            ("is-active", "NetworkManager"): [
                ("activating\n", "", 3),
                ("active\n", "", 0),
            ],
        })
        with patch.object(service, "_run", side_effect=run):
            with patch("wificonnect.network.nmcli.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
                state = await service.start_service(timeout=10)

        assert state == ServiceState.ACTIVE
        mock_sleep.assert_awaited_once_with(1)


class TestCommandRunner:
    """Test the subprocess wrapper."""

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        service = NmcliNetworkService()
        with patch(
            "wificonnect.network.nmcli.asyncio.create_subprocess_exec",
            side_effect=FileNotFoundError,
        ):
            with pytest.raises(NetworkServiceError, match="Command not found: nmcli"):
                await service._run(["nmcli", "general"])

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_when_checked(self):
        process = MagicMock()
        process.communicate = AsyncMock(return_value=(b"", b"Error: boom\n"))
        process.returncode = 8

        service = NmcliNetworkService()
        with patch(
            "wificonnect.network.nmcli.asyncio.create_subprocess_exec",
            new_callable=AsyncMock,
            return_value=process,
        ):
            with pytest.raises(NetworkServiceError, match="Error: boom"):
                await service._run(["nmcli", "general"])

            out, err, rc = await service._run(["nmcli", "general"], check=False)

        assert rc == 8
        assert err == "Error: boom\n"

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        async def hang():
            await asyncio.sleep(10)

        process = MagicMock()
        process.communicate = hang
        process.wait = AsyncMock()

        service = NmcliNetworkService(command_timeout=0.01)
        with patch(
            "wificonnect.network.nmcli.asyncio.create_subprocess_exec",
            new_callable=AsyncMock,
            return_value=process,
        ):
            with pytest.raises(NetworkServiceError, match="timed out: nmcli device"):
                await service._run(["nmcli", "device", "wifi", "list"])

        process.kill.assert_called_once()

    def test_redact_hides_secrets(self):
        cmd = ["nmcli", "device", "wifi", "connect", "Home", "password", "secret123"]
        assert "secret123" not in NmcliNetworkService._redact(cmd)
