"""
Event log factory - build a Log from validated configuration.

The device type is parsed into DeviceType when configuration is loaded,
so new_log never sees an unknown value.
"""

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import IO, Any, Optional

from relforge.errors import ConfigError

from .device import Device, JSONDevice, TextDevice
from .log import Log


class DeviceType(str, Enum):
    """Supported event log devices."""
    JSON = "json"
    TEXT = "text"

    @classmethod
    def parse(cls, value: Any) -> "DeviceType":
        """
        Parse a configuration value.

        Raises:
            ConfigError: If value is not a known device type
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            known = ", ".join(t.value for t in cls)
            raise ConfigError(f"Unknown event log device type '{value}' (expected one of: {known})")


@dataclass(frozen=True)
class EventLogConfig:
    """Event log configuration."""
    device_type: DeviceType = DeviceType.TEXT

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "EventLogConfig":
        """Build from the `event_log` config section (may be None)."""
        data = data or {}
        return cls(device_type=DeviceType.parse(data.get("device_type", DeviceType.TEXT.value)))


def new_device(device_type: DeviceType, stream: IO[str]) -> Device:
    """Create the device for a device type."""
    if device_type == DeviceType.JSON:
        return JSONDevice(stream)
    return TextDevice(stream)


def new_log(
    config: EventLogConfig,
    stream: Optional[IO[str]] = None,
    logger: Optional[logging.Logger] = None,
) -> Log:
    """
    Build a Log writing to stream (stdout by default).

    Args:
        config: Validated event log configuration
        stream: Output stream for the device
        logger: Side channel for device write failures

    Returns:
        The Log
    """
    device = new_device(config.device_type, stream if stream is not None else sys.stdout)
    return Log(device, logger=logger)
