from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Protocol

from services.twitch.models.message import TwitchIrcMessage
from shared.events.models import (
    BadgeInfo,
    ChatMessage,
    Donation,
    DonationType,
    Event,
    Host,
    ModerationAction,
    ModerationActionType,
    Raid,
    Subscription,
    TextSegment,
    Whisper,
)
from shared.logging.logger import get_logger
from shared.normalizer.colors import (
    TWITCH_BADGE_COLOR_PRIORITY,
    has_badge,
    resolve_username_color,
)
from shared.normalizer.segments import interleave_emotes, parse_twitch_emote_tag
from shared.platforms.state import PLATFORM_TWITCH

log = get_logger("normalizer.twitch")

ACTION_PREFIX = "\x01ACTION "
ACTION_SUFFIX = "\x01"

SUB_NOTICES = {"sub", "resub"}
GIFT_NOTICES = {"subgift", "anonsubgift"}
MYSTERY_GIFT_NOTICES = {"submysterygift", "anonsubmysterygift"}


class BadgeUrlLookup(Protocol):
    def get_twitch_badge_url(
        self, set_id: str, version_id: str, channel_id: Optional[str] = None
    ) -> Optional[str]:
        ...


def map_twitch_sub_plan(plan: Optional[str]) -> str:
    """Map ``msg-param-sub-plan`` values to display tiers."""
    value = (plan or "").strip()
    if value.lower() == "prime":
        return "Twitch Prime"
    if value == "1000" or not value:
        return "Tier 1"
    if value == "2000":
        return "Tier 2"
    if value == "3000":
        return "Tier 3"
    return "Unknown Tier"


class TwitchNormalizer:
    """
    Converts parsed IRC lines into unified events.

    Pure: badge URLs come from an in-memory cache lookup; misses leave the
    URL empty rather than triggering a fetch.
    """

    def __init__(self, badge_lookup: Optional[BadgeUrlLookup] = None):
        self._badge_lookup = badge_lookup

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def normalize(self, message: TwitchIrcMessage, account_id: str) -> List[Event]:
        command = message.command
        if command == "PRIVMSG":
            return [self._privmsg(message, account_id)]
        if command == "USERNOTICE":
            event = self._usernotice(message, account_id)
            return [event] if event else []
        if command == "CLEARCHAT":
            return [self._clearchat(message, account_id)]
        if command == "CLEARMSG":
            return [self._clearmsg(message, account_id)]
        if command == "WHISPER":
            return [self._whisper(message, account_id)]
        if command == "HOSTTARGET":
            event = self._hosttarget(message, account_id)
            return [event] if event else []

        log.debug(f"[{account_id}] No event mapping for {command}")
        return []

    # ------------------------------------------------------------------ #
    # Shared helpers
    # ------------------------------------------------------------------ #

    def _badges(self, message: TwitchIrcMessage) -> List[BadgeInfo]:
        room_id = message.tags.get("room-id")
        badges: List[BadgeInfo] = []
        for set_id, version in message.badges:
            url = None
            if self._badge_lookup:
                url = self._badge_lookup.get_twitch_badge_url(set_id, version, room_id)
            badges.append(BadgeInfo(f"twitch/{set_id}/{version}", url))
        return badges

    @staticmethod
    def _timestamp(message: TwitchIrcMessage) -> datetime:
        return message.timestamp or datetime.now(timezone.utc)

    @staticmethod
    def _split_action(text: str) -> tuple:
        if text.startswith(ACTION_PREFIX) and text.endswith(ACTION_SUFFIX):
            return text[len(ACTION_PREFIX):-len(ACTION_SUFFIX)], True
        return text, False

    # ------------------------------------------------------------------ #
    # PRIVMSG
    # ------------------------------------------------------------------ #

    def _privmsg(self, message: TwitchIrcMessage, account_id: str) -> Event:
        text, is_action = self._split_action(message.text)
        segments = tuple(
            interleave_emotes(
                text,
                parse_twitch_emote_tag(text, message.tags.get("emotes")),
                platform=PLATFORM_TWITCH,
            )
        )
        badges = tuple(self._badges(message))
        color = resolve_username_color(
            badges, TWITCH_BADGE_COLOR_PRIORITY, fallback=message.color
        )
        is_owner = has_badge(badges, "broadcaster")

        if message.bits > 0:
            log.info(
                f"[{account_id}] Bits donation: {message.bits} "
                f"from {message.display_name}"
            )
            return Donation(
                platform=PLATFORM_TWITCH,
                timestamp=self._timestamp(message),
                originating_account_id=account_id,
                donation_id=message.message_id,
                user_id=message.user_id,
                username=message.display_name,
                amount=Decimal(message.bits),
                currency="Bits",
                raw_message=text,
                segments=segments,
                type=DonationType.BITS,
                badges=badges,
                username_color=color,
                is_owner=is_owner,
            )

        return ChatMessage(
            platform=PLATFORM_TWITCH,
            timestamp=self._timestamp(message),
            originating_account_id=account_id,
            user_id=message.user_id,
            username=message.display_name,
            raw_message=text,
            segments=segments,
            username_color=color,
            badges=badges,
            is_owner=is_owner,
            is_action=is_action,
            is_highlight=message.msg_id == "highlighted-message",
            message_id=message.message_id,
            channel=message.channel,
        )

    # ------------------------------------------------------------------ #
    # USERNOTICE
    # ------------------------------------------------------------------ #

    def _usernotice(self, message: TwitchIrcMessage, account_id: str) -> Optional[Event]:
        kind = message.msg_id
        badges = tuple(self._badges(message))
        color = resolve_username_color(
            badges, TWITCH_BADGE_COLOR_PRIORITY, fallback=message.color
        )
        is_owner = has_badge(badges, "broadcaster")
        base = dict(
            platform=PLATFORM_TWITCH,
            timestamp=self._timestamp(message),
            originating_account_id=account_id,
        )

        if kind in SUB_NOTICES:
            log.info(
                f"[{account_id}] Subscription [#{message.channel}] "
                f"{message.display_name} ({message.param('sub-plan')})"
            )
            return Subscription(
                **base,
                user_id=message.user_id,
                username=message.display_name,
                is_gift=False,
                months=1,
                cumulative_months=message.int_param(
                    "cumulative-months", 1 if kind == "resub" else 0
                ),
                tier=map_twitch_sub_plan(message.param("sub-plan")),
                message=message.text or None,
                badges=badges,
                username_color=color,
                is_owner=is_owner,
            )

        if kind in GIFT_NOTICES:
            log.info(
                f"[{account_id}] Gift subscription [#{message.channel}] "
                f"{message.display_name} -> {message.param('recipient-display-name')}"
            )
            return Subscription(
                **base,
                user_id=message.user_id,
                username=message.display_name,
                is_gift=True,
                recipient_username=message.param("recipient-display-name") or None,
                recipient_user_id=message.param("recipient-id") or None,
                months=message.int_param("gift-months", 1) or 1,
                tier=map_twitch_sub_plan(message.param("sub-plan")),
                badges=badges,
                username_color=color,
                is_owner=is_owner,
            )

        if kind in MYSTERY_GIFT_NOTICES:
            return Subscription(
                **base,
                user_id=message.user_id,
                username=message.display_name,
                is_gift=True,
                gift_count=message.int_param("mass-gift-count", 1) or 1,
                tier=map_twitch_sub_plan(message.param("sub-plan")),
                badges=badges,
                username_color=color,
                is_owner=is_owner,
            )

        if kind == "raid":
            raider = message.param("displayName") or message.display_name
            viewers = message.int_param("viewerCount", 0)
            log.info(f"[{account_id}] Raid [#{message.channel}] {raider} ({viewers})")
            return Raid(
                **base,
                raider_username=raider,
                raider_user_id=message.user_id,
                viewer_count=viewers,
            )

        log.debug(f"[{account_id}] Unhandled USERNOTICE msg-id={kind or '<none>'}")
        return None

    # ------------------------------------------------------------------ #
    # Moderation / whisper / host
    # ------------------------------------------------------------------ #

    def _clearchat(self, message: TwitchIrcMessage, account_id: str) -> Event:
        target = message.text if len(message.params) >= 2 else ""
        base = dict(
            platform=PLATFORM_TWITCH,
            timestamp=self._timestamp(message),
            originating_account_id=account_id,
            channel=message.channel,
        )

        if not target:
            return ModerationAction(**base, action=ModerationActionType.CLEAR_CHAT)

        duration_raw = message.tags.get("ban-duration")
        if duration_raw:
            try:
                duration = int(duration_raw)
            except ValueError:
                duration = None
            return ModerationAction(
                **base,
                action=ModerationActionType.TIMEOUT,
                target_username=target,
                target_user_id=message.tags.get("target-user-id"),
                duration_seconds=duration,
            )

        return ModerationAction(
            **base,
            action=ModerationActionType.BAN,
            target_username=target,
            target_user_id=message.tags.get("target-user-id"),
        )

    def _clearmsg(self, message: TwitchIrcMessage, account_id: str) -> Event:
        return ModerationAction(
            platform=PLATFORM_TWITCH,
            timestamp=self._timestamp(message),
            originating_account_id=account_id,
            channel=message.channel,
            action=ModerationActionType.CLEAR_MESSAGE,
            target_username=message.tags.get("login"),
            target_message_id=message.tags.get("target-msg-id"),
            message=message.text or None,
        )

    def _whisper(self, message: TwitchIrcMessage, account_id: str) -> Event:
        text = message.text
        badges = tuple(self._badges(message))
        return Whisper(
            platform=PLATFORM_TWITCH,
            timestamp=self._timestamp(message),
            originating_account_id=account_id,
            username=message.display_name,
            user_id=message.user_id,
            user_color=message.color,
            badges=badges,
            message=text,
            segments=(TextSegment(text),) if text else (),
        )

    def _hosttarget(self, message: TwitchIrcMessage, account_id: str) -> Optional[Event]:
        # HOSTTARGET #hosting_channel :<target|-> [viewers]
        parts = message.text.split()
        if not parts:
            return None

        target = parts[0]
        viewers = 0
        if len(parts) > 1:
            try:
                viewers = int(parts[1])
            except ValueError:
                viewers = 0

        return Host(
            platform=PLATFORM_TWITCH,
            timestamp=datetime.now(timezone.utc),
            originating_account_id=account_id,
            is_hosting=target != "-",
            hoster_username=message.channel or None,
            hosted_channel=None if target == "-" else target,
            viewer_count=viewers,
        )


__all__ = ["TwitchNormalizer", "map_twitch_sub_plan"]
