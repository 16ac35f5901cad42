"""
wificonnect - Wi-Fi onboarding for headless devices.

Brings up a temporary hotspot with a captive portal, collects the credentials
of the real network from a phone or laptop, joins it, and falls back to the
hotspot when the join does not work out.
"""

__version__ = "0.1.0"
__author__ = "wificonnect Contributors"
