"""
Configuration system for wificonnect.

Provides YAML-based configuration with:
- Dot-notation access
- Environment variable substitution and overrides
- Pydantic validation
"""

from __future__ import annotations

import ipaddress
import logging
import os
import re
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

T = TypeVar("T")

# Stock hotspot settings
DEFAULT_PORTAL_SSID = "WiFi Connect"
DEFAULT_GATEWAY = "192.168.42.1"
DEFAULT_DHCP_RANGE_START = "192.168.42.2"
DEFAULT_DHCP_RANGE_END = "192.168.42.254"
DEFAULT_UI_DIRECTORY = "ui"

# WPA2-PSK passphrase bounds
MIN_PASSPHRASE_LENGTH = 8
MAX_PASSPHRASE_LENGTH = 63


# ============================================================================
# Typed Configuration Models
# ============================================================================


class SystemConfig(BaseModel):
    """Top-level system configuration."""

    name: str = "wificonnect"
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level '{v}'")
        return level


class PortalConfig(BaseModel):
    """Configuration for the hotspot and captive portal."""

    interface: str | None = None  # None = first Wi-Fi device
    ssid: str = Field(default=DEFAULT_PORTAL_SSID, min_length=1, max_length=32)
    passphrase: str | None = None  # None = open hotspot
    gateway: str = DEFAULT_GATEWAY
    dhcp_range_start: str = DEFAULT_DHCP_RANGE_START
    dhcp_range_end: str = DEFAULT_DHCP_RANGE_END
    dhcp_lease_time: str = "2m"
    listening_port: int = Field(default=80, ge=1, le=65535)
    ui_directory: str = DEFAULT_UI_DIRECTORY
    activity_timeout: float = Field(default=0, ge=0)  # 0 = no idle timeout

    @field_validator("passphrase")
    @classmethod
    def validate_passphrase(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        if not MIN_PASSPHRASE_LENGTH <= len(v) <= MAX_PASSPHRASE_LENGTH:
            raise ValueError(
                f"Passphrase must be {MIN_PASSPHRASE_LENGTH}-{MAX_PASSPHRASE_LENGTH} "
                f"characters, got {len(v)}"
            )
        return v

    @field_validator("gateway", "dhcp_range_start", "dhcp_range_end")
    @classmethod
    def validate_ipv4(cls, v: str) -> str:
        try:
            ipaddress.IPv4Address(v)
        except ipaddress.AddressValueError as e:
            raise ValueError(f"Not an IPv4 address: '{v}'") from e
        return v

    @model_validator(mode="after")
    def validate_dhcp_range(self) -> PortalConfig:
        start = ipaddress.IPv4Address(self.dhcp_range_start)
        end = ipaddress.IPv4Address(self.dhcp_range_end)
        if start > end:
            raise ValueError(
                f"DHCP range start {start} is after range end {end}"
            )
        return self


class NetworkConfig(BaseModel):
    """Retry and polling policy for the network primitives."""

    scan_retries: int = Field(default=10, ge=1)
    scan_retry_delay: float = Field(default=1.0, ge=0.0)
    connectivity_timeout: float = Field(default=20.0, ge=0.0)
    connectivity_poll_interval: float = Field(default=1.0, gt=0.0)
    teardown_settle_delay: float = Field(default=1.0, ge=0.0)


class StartupConfig(BaseModel):
    """Checks performed before the hotspot is brought up."""

    start_service: bool = True
    service_start_timeout: float = Field(default=15.0, ge=1.0)
    clear_stale_hotspots: bool = True
    skip_if_connected: bool = False


class WifiConnectConfig(BaseModel):
    """Complete wificonnect configuration."""

    system: SystemConfig = Field(default_factory=SystemConfig)
    portal: PortalConfig = Field(default_factory=PortalConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    startup: StartupConfig = Field(default_factory=StartupConfig)


# ============================================================================
# Configuration Loader
# ============================================================================


class ConfigLoader:
    """Loads and merges configuration from YAML files."""

    # Pattern for environment variable references: ${VAR} or ${VAR:-default}
    ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")
    ENV_PREFIX = "WIFICONNECT_"

    def load_yaml(self, path: Path) -> dict[str, Any]:
        """Load single YAML file with env var substitution."""
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()
        content = self._substitute_env_vars(content)

        return yaml.safe_load(content) or {}

    def load_directory(self, dir_path: Path) -> dict[str, Any]:
        """Load and merge all YAML files in directory."""
        if not dir_path.is_dir():
            raise NotADirectoryError(f"Config directory not found: {dir_path}")

        config: dict[str, Any] = {}

        # Load files in sorted order for deterministic merging
        for yaml_file in sorted(dir_path.glob("*.yaml")):
            file_config = self.load_yaml(yaml_file)
            config = self.merge(config, file_config)

        return config

    def merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge override into base."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self.merge(result[key], value)
            else:
                result[key] = value

        return result

    def _substitute_env_vars(self, content: str) -> str:
        """Replace ${VAR} and ${VAR:-default} with environment values."""

        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            default = match.group(2)
            value = os.environ.get(var_name)

            if value is not None:
                return value
            elif default is not None:
                return default
            else:
                return match.group(0)  # Keep original if no value and no default

        return self.ENV_PATTERN.sub(replacer, content)

    def apply_env_overrides(self, config: dict[str, Any]) -> dict[str, Any]:
        """
        Apply environment variable overrides.

        WIFICONNECT_PORTAL_SSID=Setup -> portal.ssid = "Setup"
        WIFICONNECT_PORTAL_ACTIVITY_TIMEOUT=300 -> portal.activity_timeout = 300
        """
        for key, value in os.environ.items():
            if not key.startswith(self.ENV_PREFIX):
                continue

            section, _, name = key[len(self.ENV_PREFIX) :].lower().partition("_")
            if not section or not name:
                continue

            section_values = config.setdefault(section, {})
            if isinstance(section_values, dict):
                section_values[name] = self._parse_value(value)

        return config

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        # Boolean
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        # Number
        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value


# ============================================================================
# Main Configuration Class
# ============================================================================


class Config:
    """
    Main configuration container.

    Usage:
        config = Config.load(Path("/etc/wificonnect/config.yaml"))
        ssid = config.get("portal.ssid", "WiFi Connect")

        # Or with typed access:
        timeout = config.portal.activity_timeout
    """

    def __init__(self, data: dict[str, Any], source_path: Path | None = None):
        self._data = data
        self._source_path = source_path

        # Parse into typed config
        self._typed = WifiConnectConfig.model_validate(data)

    @classmethod
    def load(cls, path: Path) -> Config:
        """Load configuration from YAML file."""
        loader = ConfigLoader()
        data = loader.load_yaml(path)
        data = loader.apply_env_overrides(data)
        return cls(data, source_path=path)

    @classmethod
    def load_directory(cls, dir_path: Path) -> Config:
        """Load and merge all YAML files in directory."""
        loader = ConfigLoader()
        data = loader.load_directory(dir_path)
        data = loader.apply_env_overrides(data)
        return cls(data, source_path=dir_path)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Create configuration from dictionary."""
        return cls(data)

    @classmethod
    def default(cls) -> Config:
        """Create configuration with defaults and environment overrides."""
        return cls(ConfigLoader().apply_env_overrides({}))

    @property
    def source_path(self) -> Path | None:
        return self._source_path

    def get(self, path: str, default: T = None) -> T:
        """
        Get config value by dot-notation path.

        Example: config.get("portal.ssid", "WiFi Connect")
        """
        keys = path.split(".")
        value: Any = self._data

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default  # type: ignore

        return value  # type: ignore

    def merged(self, overrides: dict[str, Any]) -> Config:
        """Return a new Config with overrides (e.g. CLI flags) merged on top."""
        data = ConfigLoader().merge(self._data, overrides)
        return Config(data, source_path=self._source_path)

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors: list[str] = []

        try:
            WifiConnectConfig.model_validate(self._data)
        except Exception as e:
            errors.append(str(e))

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Get configuration as dictionary."""
        return self._data.copy()

    # ========================================================================
    # Typed Accessors
    # ========================================================================

    @property
    def system(self) -> SystemConfig:
        return self._typed.system

    @property
    def portal(self) -> PortalConfig:
        return self._typed.portal

    @property
    def network(self) -> NetworkConfig:
        return self._typed.network

    @property
    def startup(self) -> StartupConfig:
        return self._typed.startup
