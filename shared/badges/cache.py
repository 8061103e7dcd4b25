"""
Twitch badge cache.

Global badges are held in a single map replaced wholesale on each successful
load. Channel badges are held per channel with a TTL measured by an injected
clock, so expiry can be driven deterministically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from shared.auth.tokens import CredentialError, CredentialProvider
from shared.events.models import BadgeInfo
from shared.logging.logger import get_logger
from shared.platforms.state import PLATFORM_TWITCH

log = get_logger("badges.cache")

DEFAULT_CHANNEL_TTL = timedelta(hours=4)

# set id -> version id -> badge
BadgeSetMap = Dict[str, Dict[str, BadgeInfo]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BadgeSource(Protocol):
    async def fetch_global_badges(self) -> Optional[List[Dict[str, Any]]]:
        ...

    async def fetch_channel_badges(
        self, channel_id: str, account_id: str
    ) -> Optional[List[Dict[str, Any]]]:
        ...


@dataclass
class BadgeCacheEntry:
    timestamp: datetime
    data: BadgeSetMap = field(default_factory=dict)


def build_badge_map(badge_sets: Iterable[Dict[str, Any]]) -> BadgeSetMap:
    """Helix ``data[]`` -> set id -> version id -> BadgeInfo."""
    result: BadgeSetMap = {}
    for badge_set in badge_sets:
        set_id = badge_set.get("set_id")
        if not set_id:
            continue
        versions = result.setdefault(set_id, {})
        for version in badge_set.get("versions") or []:
            version_id = version.get("id")
            if not version_id:
                continue
            versions[version_id] = BadgeInfo(
                f"twitch/{set_id}/{version_id}",
                version.get("image_url_1x"),
            )
    return result


class BadgeEmoteCache:
    def __init__(
        self,
        source: BadgeSource,
        *,
        clock: Callable[[], datetime] = _utc_now,
        channel_ttl: timedelta = DEFAULT_CHANNEL_TTL,
    ):
        self._source = source
        self._clock = clock
        self._channel_ttl = channel_ttl
        self._global: BadgeSetMap = {}
        self._channels: Dict[str, BadgeCacheEntry] = {}

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #

    async def load_global_twitch_badges(self) -> None:
        try:
            badge_sets = await self._source.fetch_global_badges()
        except Exception as e:
            log.warning(f"Global Twitch badge load failed; keeping previous data: {e}")
            return

        if badge_sets is None:
            log.warning("Global Twitch badge load returned no data; keeping previous data")
            return

        self._global = build_badge_map(badge_sets)
        log.info(f"Loaded {len(self._global)} global Twitch badge sets")

    async def load_channel_twitch_badges(self, channel_id: str, account_id: str) -> None:
        if self.is_channel_cached(channel_id):
            log.debug(f"[{account_id}] Channel badges for {channel_id} still valid")
            return

        try:
            badge_sets = await self._source.fetch_channel_badges(channel_id, account_id)
        except Exception as e:
            log.warning(f"[{account_id}] Channel badge load for {channel_id} failed: {e}")
            self._channels.pop(channel_id, None)
            return

        if badge_sets is None:
            log.info(f"[{account_id}] No channel badges for {channel_id}; caching empty entry")
            self._channels[channel_id] = BadgeCacheEntry(timestamp=self._clock())
            return

        self._channels[channel_id] = BadgeCacheEntry(
            timestamp=self._clock(),
            data=build_badge_map(badge_sets),
        )
        log.info(
            f"[{account_id}] Cached {len(self._channels[channel_id].data)} "
            f"badge sets for channel {channel_id}"
        )

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def _is_valid(self, entry: BadgeCacheEntry) -> bool:
        return self._clock() - entry.timestamp < self._channel_ttl

    def is_channel_cached(self, channel_id: str) -> bool:
        entry = self._channels.get(channel_id)
        return entry is not None and self._is_valid(entry)

    def get_twitch_badge_url(
        self,
        set_id: str,
        version_id: str,
        channel_id: Optional[str] = None,
    ) -> Optional[str]:
        badge = self._global.get(set_id, {}).get(version_id)
        if badge:
            return badge.image_url

        if channel_id:
            entry = self._channels.get(channel_id)
            if entry and self._is_valid(entry):
                badge = entry.data.get(set_id, {}).get(version_id)
                if badge:
                    return badge.image_url

        for cid, entry in self._channels.items():
            if cid == channel_id or not self._is_valid(entry):
                continue
            badge = entry.data.get(set_id, {}).get(version_id)
            if badge:
                return badge.image_url

        return None

    @property
    def global_set_count(self) -> int:
        return len(self._global)


class TwitchBadgeSource:
    """
    Badge source backed by Helix.

    Global badges need any valid user token; the configured accounts are
    tried in order until one yields a token.
    """

    def __init__(
        self,
        helix: Any,
        credentials: CredentialProvider,
        account_ids: Callable[[], Iterable[str]],
    ):
        self._helix = helix
        self._credentials = credentials
        self._account_ids = account_ids

    async def _any_token(self) -> Optional[str]:
        for account_id in self._account_ids():
            try:
                return await self._credentials.get_access_token(PLATFORM_TWITCH, account_id)
            except CredentialError:
                continue
        return None

    async def fetch_global_badges(self) -> Optional[List[Dict[str, Any]]]:
        token = await self._any_token()
        if not token:
            log.warning("No Twitch token available for global badge load")
            return None
        return await self._helix.get_global_badges(access_token=token)

    async def fetch_channel_badges(
        self, channel_id: str, account_id: str
    ) -> Optional[List[Dict[str, Any]]]:
        token = await self._credentials.get_access_token(PLATFORM_TWITCH, account_id)
        badge_sets = await self._helix.get_channel_badges(channel_id, access_token=token)
        return badge_sets or None


__all__ = [
    "BadgeCacheEntry",
    "BadgeEmoteCache",
    "BadgeSource",
    "DEFAULT_CHANNEL_TTL",
    "TwitchBadgeSource",
    "build_badge_map",
]
