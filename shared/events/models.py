"""Unified event schema shared by every platform adapter and consumer."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, Optional, Tuple, Union
from uuid import uuid4

from shared.platforms.state import PLATFORM_SYSTEM


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


# ----------------------------------------------------------------------
# Enums
# ----------------------------------------------------------------------

class DonationType(Enum):
    STREAMLABS = "streamlabs"
    SUPER_CHAT = "super_chat"
    BITS = "bits"
    SUPER_STICKER = "super_sticker"
    OTHER = "other"


class MembershipEventType(Enum):
    UNKNOWN = "unknown"
    NEW = "new"
    MILESTONE = "milestone"
    GIFT_PURCHASE = "gift_purchase"
    GIFT_REDEMPTION = "gift_redemption"


class ModerationActionType(Enum):
    BAN = "ban"
    TIMEOUT = "timeout"
    CLEAR_MESSAGE = "clear_message"
    CLEAR_CHAT = "clear_chat"


class SystemMessageLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# ----------------------------------------------------------------------
# Message segments + badges
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class TextSegment:
    text: str

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class EmoteSegment:
    id: str
    name: str
    image_url: str
    platform: str

    def __str__(self) -> str:
        return self.name


MessageSegment = Union[TextSegment, EmoteSegment]


def plain_text(segments: Iterable[MessageSegment]) -> str:
    """Concatenate the Text segments of a parsed message."""
    return "".join(s.text for s in segments if isinstance(s, TextSegment))


@dataclass(frozen=True)
class BadgeInfo:
    """Badge reference; identifier format is ``platform/set/version``."""

    identifier: str
    image_url: Optional[str] = None

    @property
    def set_id(self) -> str:
        parts = self.identifier.split("/")
        return parts[1] if len(parts) > 1 else ""

    @property
    def version(self) -> str:
        parts = self.identifier.split("/")
        return parts[2] if len(parts) > 2 else ""


@dataclass(frozen=True)
class PollOption:
    text: str
    vote_percentage: Optional[str] = None
    vote_count: Optional[int] = None


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class Event:
    kind: ClassVar[str] = "event"

    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=_utc_now)
    platform: str = "Unknown"
    originating_account_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = _to_jsonable(asdict(self))
        payload["kind"] = self.kind
        return payload


@dataclass(frozen=True, kw_only=True)
class ChatMessage(Event):
    kind: ClassVar[str] = "chat_message"

    username: str = ""
    user_id: Optional[str] = None
    raw_message: str = ""
    segments: Tuple[MessageSegment, ...] = ()
    username_color: Optional[str] = None
    badges: Tuple[BadgeInfo, ...] = ()
    profile_image_url: Optional[str] = None
    is_owner: bool = False
    is_action: bool = False
    is_highlight: bool = False
    bits_donated: int = 0
    message_id: Optional[str] = None
    channel: Optional[str] = None

    @property
    def plain_text(self) -> str:
        return plain_text(self.segments)


@dataclass(frozen=True, kw_only=True)
class Donation(Event):
    kind: ClassVar[str] = "donation"

    username: str = ""
    user_id: Optional[str] = None
    amount: Decimal = Decimal("0")
    currency: str = "USD"
    raw_message: str = ""
    segments: Tuple[MessageSegment, ...] = ()
    type: DonationType = DonationType.OTHER
    donation_id: Optional[str] = None
    username_color: Optional[str] = None
    badges: Tuple[BadgeInfo, ...] = ()
    profile_image_url: Optional[str] = None
    is_owner: bool = False
    sticker_image_url: Optional[str] = None
    sticker_alt_text: Optional[str] = None

    @property
    def formatted_amount(self) -> str:
        if self.type == DonationType.BITS:
            unit = "bit" if self.amount == 1 else "bits"
            return f"{int(self.amount):,} {unit}"
        return f"{self.amount:,.2f} {self.currency}"


@dataclass(frozen=True, kw_only=True)
class Subscription(Event):
    kind: ClassVar[str] = "subscription"

    username: str = ""
    user_id: Optional[str] = None
    is_gift: bool = False
    recipient_username: Optional[str] = None
    recipient_user_id: Optional[str] = None
    months: int = 1
    cumulative_months: int = 0
    gift_count: int = 1
    tier: str = "Tier 1"
    message: Optional[str] = None
    username_color: Optional[str] = None
    badges: Tuple[BadgeInfo, ...] = ()
    is_owner: bool = False


@dataclass(frozen=True, kw_only=True)
class Membership(Event):
    kind: ClassVar[str] = "membership"

    username: str = ""
    user_id: Optional[str] = None
    membership_type: MembershipEventType = MembershipEventType.UNKNOWN
    level_name: Optional[str] = "Member"
    milestone_months: Optional[int] = None
    gifter_username: Optional[str] = None
    gift_count: Optional[int] = None
    header_text: Optional[str] = None
    segments: Tuple[MessageSegment, ...] = ()
    username_color: Optional[str] = None
    badges: Tuple[BadgeInfo, ...] = ()
    profile_image_url: Optional[str] = None
    is_owner: bool = False


@dataclass(frozen=True, kw_only=True)
class Follow(Event):
    kind: ClassVar[str] = "follow"

    username: str = ""
    user_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class Raid(Event):
    kind: ClassVar[str] = "raid"

    raider_username: str = ""
    raider_user_id: Optional[str] = None
    viewer_count: int = 0


@dataclass(frozen=True, kw_only=True)
class Host(Event):
    kind: ClassVar[str] = "host"

    is_hosting: bool = False
    hoster_username: Optional[str] = None
    hosted_channel: Optional[str] = None
    viewer_count: int = 0
    is_auto_host: bool = False


@dataclass(frozen=True, kw_only=True)
class ModerationAction(Event):
    kind: ClassVar[str] = "moderation_action"

    channel: str = ""
    action: ModerationActionType = ModerationActionType.CLEAR_MESSAGE
    target_username: Optional[str] = None
    target_user_id: Optional[str] = None
    duration_seconds: Optional[int] = None
    target_message_id: Optional[str] = None
    moderator_username: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class SystemMessage(Event):
    kind: ClassVar[str] = "system_message"

    platform: str = PLATFORM_SYSTEM
    message: str = ""
    level: SystemMessageLevel = SystemMessageLevel.INFO


@dataclass(frozen=True, kw_only=True)
class PollUpdate(Event):
    kind: ClassVar[str] = "poll_update"

    poll_id: str = ""
    question: str = ""
    options: Tuple[PollOption, ...] = ()
    is_active: bool = False


@dataclass(frozen=True, kw_only=True)
class Whisper(Event):
    kind: ClassVar[str] = "whisper"

    username: str = ""
    user_id: Optional[str] = None
    user_color: Optional[str] = None
    badges: Tuple[BadgeInfo, ...] = ()
    message: str = ""
    segments: Tuple[MessageSegment, ...] = ()


@dataclass(frozen=True, kw_only=True)
class BotMessage(Event):
    kind: ClassVar[str] = "bot_message"

    sender_display_name: str = ""
    sender_account_id: str = ""
    message: str = ""
    target: str = ""
    segments: Tuple[MessageSegment, ...] = ()


@dataclass(frozen=True, kw_only=True)
class CommandInvocation(Event):
    kind: ClassVar[str] = "command_invocation"

    original_command_message: ChatMessage
    reply_message: Optional[str] = None
    bot_sender_display_name: str = ""


def create_command_invocation(
    original: ChatMessage,
    *,
    reply_message: Optional[str],
    bot_sender_display_name: str,
) -> CommandInvocation:
    """Build a CommandInvocation inheriting platform and account from the command."""
    return CommandInvocation(
        platform=original.platform,
        originating_account_id=original.originating_account_id,
        original_command_message=original,
        reply_message=reply_message,
        bot_sender_display_name=bot_sender_display_name,
    )


__all__ = [
    "BadgeInfo",
    "BotMessage",
    "ChatMessage",
    "CommandInvocation",
    "Donation",
    "DonationType",
    "EmoteSegment",
    "Event",
    "Follow",
    "Host",
    "Membership",
    "MembershipEventType",
    "MessageSegment",
    "ModerationAction",
    "ModerationActionType",
    "PollOption",
    "PollUpdate",
    "Raid",
    "Subscription",
    "SystemMessage",
    "SystemMessageLevel",
    "TextSegment",
    "Whisper",
    "create_command_invocation",
    "plain_text",
]
