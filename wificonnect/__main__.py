"""
wificonnect entry point.

Run with: python -m wificonnect
Or: wificonnect (if installed)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from wificonnect import __version__
from wificonnect.core.config import Config
from wificonnect.core.errors import ChannelError, WifiConnectError
from wificonnect.core.messages import Channel, ExitResult
from wificonnect.network.base import NetworkService
from wificonnect.network.nmcli import NmcliNetworkService
from wificonnect.setup.hotspot import PortalManager
from wificonnect.setup.orchestrator import NetworkOrchestrator
from wificonnect.setup.preflight import PreflightState, run_preflight

logger = logging.getLogger("wificonnect")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


async def run_session(config: Config, service: NetworkService | None = None) -> ExitResult:
    """Run the startup checks and, if needed, one onboarding session.

    Args:
        config: wificonnect configuration
        service: Network service capability (nmcli backend if None)

    Returns:
        The session outcome
    """
    service = service or NmcliNetworkService()

    preflight = await run_preflight(
        service,
        config.startup,
        PortalManager(service, settle_delay=config.network.teardown_settle_delay),
    )
    if preflight.state == PreflightState.ALREADY_CONNECTED:
        logger.info(preflight.message)
        return ExitResult.ok()
    if preflight.state == PreflightState.FAILED:
        return ExitResult.error(preflight.message)

    exits: Channel[ExitResult] = Channel("exit")
    orchestrator = NetworkOrchestrator(service, config, exits)

    task = asyncio.create_task(orchestrator.run(), name="orchestrator")
    # If the session dies without reporting, stop waiting for a result
    task.add_done_callback(lambda _: exits.close())

    try:
        try:
            result = await exits.receive()
        except ChannelError:
            await task
            raise
        await task
    finally:
        await orchestrator.close()

    return result


def exit_code(result: ExitResult) -> int:
    """Map a session outcome to a process exit code."""
    return 0 if result.success else 1


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Turn CLI flags into a config dict to merge over the loaded config."""
    portal: dict[str, Any] = {}
    startup: dict[str, Any] = {}
    system: dict[str, Any] = {}

    if args.portal_interface is not None:
        portal["interface"] = args.portal_interface
    if args.portal_ssid is not None:
        portal["ssid"] = args.portal_ssid
    if args.portal_passphrase is not None:
        portal["passphrase"] = args.portal_passphrase
    if args.portal_gateway is not None:
        portal["gateway"] = args.portal_gateway
    if args.portal_dhcp_range is not None:
        start, _, end = args.portal_dhcp_range.partition(",")
        portal["dhcp_range_start"] = start.strip()
        portal["dhcp_range_end"] = end.strip()
    if args.portal_listening_port is not None:
        portal["listening_port"] = args.portal_listening_port
    if args.activity_timeout is not None:
        portal["activity_timeout"] = args.activity_timeout
    if args.ui_directory is not None:
        portal["ui_directory"] = str(args.ui_directory)
    if args.skip_if_connected:
        startup["skip_if_connected"] = True
    if args.log_level is not None:
        system["log_level"] = args.log_level

    overrides: dict[str, Any] = {}
    if portal:
        overrides["portal"] = portal
    if startup:
        overrides["startup"] = startup
    if system:
        overrides["system"] = system
    return overrides


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wificonnect",
        description="Wi-Fi onboarding through a temporary hotspot and captive portal",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Configuration file path",
    )
    parser.add_argument(
        "-i", "--portal-interface",
        help="Wireless network interface to be used (default: first Wi-Fi device)",
    )
    parser.add_argument(
        "-s", "--portal-ssid",
        help="SSID of the captive portal WiFi network",
    )
    parser.add_argument(
        "-p", "--portal-passphrase",
        help="WPA2 passphrase of the captive portal WiFi network (open if unset)",
    )
    parser.add_argument(
        "-g", "--portal-gateway",
        help="Gateway of the captive portal WiFi network",
    )
    parser.add_argument(
        "-d", "--portal-dhcp-range",
        metavar="START,END",
        help="DHCP range of the WiFi network",
    )
    parser.add_argument(
        "-o", "--portal-listening-port",
        type=int,
        help="Listening port of the captive portal web server",
    )
    parser.add_argument(
        "-a", "--activity-timeout",
        type=float,
        help="Exit if no activity for the specified time in seconds (0 = never)",
    )
    parser.add_argument(
        "-u", "--ui-directory",
        type=Path,
        help="Web UI directory location",
    )
    parser.add_argument(
        "--skip-if-connected",
        action="store_true",
        help="Exit immediately if a WiFi connection is already active",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    return parser


def load_config(path: Path | None) -> Config:
    """Load the first config file found, or defaults."""
    config_paths = [
        path,
        Path("config/default.yaml"),
        Path("/etc/wificonnect/config.yaml"),
        Path.home() / ".config/wificonnect/config.yaml",
    ]

    for candidate in config_paths:
        if candidate and candidate.exists():
            print(f"Loading config from: {candidate}")
            return Config.load(candidate)

    print("No config file found, using defaults")
    return Config.default()


def main():
    """CLI entry point."""
    args = build_parser().parse_args()

    try:
        config = load_config(args.config).merged(build_overrides(args))
    except (ValidationError, ValueError) as e:
        print("Configuration errors:")
        print(f"  - {e}")
        sys.exit(1)

    logging.basicConfig(level=config.system.log_level, format=LOG_FORMAT)
    logger.info(f"wificonnect v{__version__}")

    try:
        result = asyncio.run(run_session(config))
    except KeyboardInterrupt:
        result = ExitResult.error("Interrupted")
    except WifiConnectError as e:
        result = ExitResult.error(str(e))

    if result.success:
        logger.info("Exiting")
    else:
        logger.error(result.message)

    sys.exit(exit_code(result))


if __name__ == "__main__":
    main()
