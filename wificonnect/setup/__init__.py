"""
Onboarding session for wificonnect.

Hotspot and helper lifecycle, access point scanning, connectivity polling,
the captive portal server, and the orchestrator that sequences them.
"""

from wificonnect.setup.orchestrator import NetworkOrchestrator, SessionState
from wificonnect.setup.hotspot import PortalManager
from wificonnect.setup.portal import CaptivePortal
from wificonnect.setup.preflight import run_preflight, PreflightState

__all__ = [
    "NetworkOrchestrator",
    "SessionState",
    "PortalManager",
    "CaptivePortal",
    "run_preflight",
    "PreflightState",
]
