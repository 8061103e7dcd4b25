"""Connection state definitions shared by every platform adapter.

States:

- DISCONNECTED : no live connection (initial, after logout, after clean close)
- CONNECTING   : connection attempt or transport-driven reconnect in flight
- CONNECTED    : live and writable
- LIMITED      : live but read-only (YouTube API quota exhausted)
- ERROR        : failed; recovery only through an explicit reconnect
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    LIMITED = "limited"
    ERROR = "error"

    @classmethod
    def from_value(
        cls, value: Any, *, default: "ConnectionState" = None
    ) -> "ConnectionState":
        if isinstance(value, cls):
            return value

        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if normalized in {member.name.lower(), member.value}:
                    return member

        return default or cls.DISCONNECTED

    @property
    def is_active(self) -> bool:
        """True while a wrapper exists and is expected to deliver events."""
        return self in {
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.LIMITED,
        }


# Platform display names used as the Event platform tag
PLATFORM_TWITCH = "Twitch"
PLATFORM_YOUTUBE = "YouTube"
PLATFORM_STREAMLABS = "Streamlabs"
PLATFORM_SYSTEM = "System"

SUPPORTED_PLATFORMS = {
    "twitch": PLATFORM_TWITCH,
    "youtube": PLATFORM_YOUTUBE,
    "streamlabs": PLATFORM_STREAMLABS,
}


def normalize_platform(value: str) -> str:
    """Return the lower-case platform key or raise for unknown platforms."""
    platform = (value or "").lower().strip()
    if platform not in SUPPORTED_PLATFORMS:
        raise ValueError(f"Unsupported platform: {value}")
    return platform


def platform_display_name(value: str) -> str:
    return SUPPORTED_PLATFORMS[normalize_platform(value)]


__all__ = [
    "ConnectionState",
    "PLATFORM_TWITCH",
    "PLATFORM_YOUTUBE",
    "PLATFORM_STREAMLABS",
    "PLATFORM_SYSTEM",
    "SUPPORTED_PLATFORMS",
    "normalize_platform",
    "platform_display_name",
]
