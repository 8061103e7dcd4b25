"""
YouTube Data API ``liveChatMessage`` resources -> unified events.

Resource shape (abridged)::

    {
      "id": "...",
      "snippet": {"type": "textMessageEvent", "publishedAt": "...",
                  "displayMessage": "...", "textMessageDetails": {...}, ...},
      "authorDetails": {"channelId": "...", "displayName": "...",
                        "profileImageUrl": "...", "isChatOwner": false, ...}
    }
"""

from __future__ import annotations

import html
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from shared.events.models import (
    BadgeInfo,
    ChatMessage,
    Donation,
    DonationType,
    Event,
    Membership,
    MembershipEventType,
    ModerationAction,
    ModerationActionType,
    PollOption,
    PollUpdate,
    TextSegment,
)
from shared.logging.logger import get_logger
from shared.normalizer.colors import YOUTUBE_BADGE_COLOR_PRIORITY, resolve_username_color
from shared.normalizer.currency import parse_amount, parse_currency
from shared.platforms.state import PLATFORM_YOUTUBE

log = get_logger("normalizer.youtube")

MEMBERSHIP_DETAIL_KEYS = (
    ("newSponsorDetails", MembershipEventType.NEW),
    ("memberMilestoneChatDetails", MembershipEventType.MILESTONE),
    ("membershipGiftingDetails", MembershipEventType.GIFT_PURCHASE),
    ("giftMembershipReceivedDetails", MembershipEventType.GIFT_REDEMPTION),
)


def _parse_published_at(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def youtube_author_badges(author: Dict[str, Any]) -> List[BadgeInfo]:
    badges: List[BadgeInfo] = []
    if author.get("isChatOwner"):
        badges.append(BadgeInfo("youtube/owner/1"))
    if author.get("isChatModerator"):
        badges.append(BadgeInfo("youtube/moderator/1"))
    if author.get("isChatSponsor"):
        badges.append(BadgeInfo("youtube/member/1"))
    if author.get("isVerified"):
        badges.append(BadgeInfo("youtube/verified/1"))
    return badges


def _text_segments(text: str) -> Tuple[TextSegment, ...]:
    return (TextSegment(text),) if text else ()


class YouTubeNormalizer:
    """
    Maps one chat resource to at most one event.

    Precedence: membership details, then paid messages, then plain text.
    Deletions, bans and polls map to their own event kinds.
    """

    def normalize(self, item: Dict[str, Any], account_id: str) -> Optional[Event]:
        snippet = item.get("snippet") or {}
        author = item.get("authorDetails") or {}
        item_id = item.get("id") or ""

        badges = tuple(youtube_author_badges(author))
        common = dict(
            platform=PLATFORM_YOUTUBE,
            timestamp=_parse_published_at(snippet.get("publishedAt")),
            originating_account_id=account_id,
        )
        if item_id:
            common["id"] = item_id

        author_fields = dict(
            username=author.get("displayName") or "Unknown",
            user_id=author.get("channelId") or snippet.get("authorChannelId"),
            badges=badges,
            username_color=resolve_username_color(badges, YOUTUBE_BADGE_COLOR_PRIORITY),
            profile_image_url=author.get("profileImageUrl"),
            is_owner=bool(author.get("isChatOwner")),
        )

        for key, membership_type in MEMBERSHIP_DETAIL_KEYS:
            details = snippet.get(key)
            if details is not None:
                return self._membership(
                    details, membership_type, snippet, common, author_fields
                )

        if snippet.get("superChatDetails") is not None:
            return self._super_chat(
                snippet["superChatDetails"], item_id, common, author_fields, sticker=False
            )
        if snippet.get("superStickerDetails") is not None:
            return self._super_chat(
                snippet["superStickerDetails"], item_id, common, author_fields, sticker=True
            )

        if snippet.get("messageDeletedDetails") is not None:
            details = snippet["messageDeletedDetails"]
            return ModerationAction(
                **common,
                channel=snippet.get("liveChatId") or "",
                action=ModerationActionType.CLEAR_MESSAGE,
                target_message_id=details.get("deletedMessageId"),
                moderator_username=author.get("displayName"),
            )

        if snippet.get("userBannedDetails") is not None:
            return self._ban(snippet, common, author)

        if snippet.get("pollDetails") is not None:
            return self._poll(snippet["pollDetails"], item_id, common)

        text_details = snippet.get("textMessageDetails") or {}
        raw_text = text_details.get("messageText")
        if raw_text is None:
            raw_text = snippet.get("displayMessage")
        if raw_text is None:
            log.debug(
                f"[{account_id}] Skipping chat item {item_id or '<no id>'} "
                f"of type {snippet.get('type')}"
            )
            return None

        text = html.unescape(raw_text)
        return ChatMessage(
            **common,
            **author_fields,
            raw_message=text,
            segments=_text_segments(text),
            message_id=item_id or None,
            channel=snippet.get("liveChatId"),
        )

    # ------------------------------------------------------------------ #

    def _membership(
        self,
        details: Dict[str, Any],
        membership_type: MembershipEventType,
        snippet: Dict[str, Any],
        common: Dict[str, Any],
        author_fields: Dict[str, Any],
    ) -> Membership:
        comment = html.unescape(details.get("userComment") or "")
        level_name = (
            details.get("memberLevelName")
            or details.get("giftMembershipsLevelName")
            or "Member"
        )
        gift_count = details.get("giftMembershipsCount")
        gifter = None
        if membership_type == MembershipEventType.GIFT_REDEMPTION:
            gifter = details.get("gifterChannelId")

        return Membership(
            **common,
            **author_fields,
            membership_type=membership_type,
            level_name=level_name,
            milestone_months=details.get("memberMonth"),
            gifter_username=gifter,
            gift_count=int(gift_count) if gift_count is not None else None,
            header_text=html.unescape(snippet.get("displayMessage") or "") or None,
            segments=_text_segments(comment),
        )

    def _super_chat(
        self,
        details: Dict[str, Any],
        item_id: str,
        common: Dict[str, Any],
        author_fields: Dict[str, Any],
        *,
        sticker: bool,
    ) -> Donation:
        display = details.get("amountDisplayString")
        micros = details.get("amountMicros")

        if display:
            amount = parse_amount(display)
        elif micros is not None:
            amount = Decimal(str(micros)) / Decimal(1_000_000)
        else:
            amount = parse_amount(None)

        code = (details.get("currency") or "").upper()
        currency = code if len(code) == 3 else parse_currency(display)

        comment = html.unescape(details.get("userComment") or "")
        metadata = details.get("superStickerMetadata") or {}

        return Donation(
            **common,
            **author_fields,
            amount=amount,
            currency=currency,
            raw_message=comment,
            segments=_text_segments(comment),
            type=DonationType.SUPER_STICKER if sticker else DonationType.SUPER_CHAT,
            donation_id=item_id or None,
            sticker_alt_text=metadata.get("altText"),
        )

    def _ban(
        self,
        snippet: Dict[str, Any],
        common: Dict[str, Any],
        author: Dict[str, Any],
    ) -> ModerationAction:
        details = snippet["userBannedDetails"]
        banned = details.get("bannedUserDetails") or {}
        is_temporary = details.get("banType") == "temporary"
        duration = details.get("banDurationSeconds")

        return ModerationAction(
            **common,
            channel=snippet.get("liveChatId") or "",
            action=ModerationActionType.TIMEOUT if is_temporary else ModerationActionType.BAN,
            target_username=banned.get("displayName"),
            target_user_id=banned.get("channelId"),
            duration_seconds=int(duration) if is_temporary and duration is not None else None,
            moderator_username=author.get("displayName"),
        )

    def _poll(
        self,
        details: Dict[str, Any],
        item_id: str,
        common: Dict[str, Any],
    ) -> PollUpdate:
        metadata = details.get("metadata") or {}
        options = []
        for option in metadata.get("options") or []:
            tally = option.get("tally")
            options.append(
                PollOption(
                    text=html.unescape(option.get("optionText") or ""),
                    vote_count=int(tally) if tally not in (None, "") else None,
                )
            )

        return PollUpdate(
            **common,
            poll_id=item_id,
            question=html.unescape(metadata.get("questionText") or ""),
            options=tuple(options),
            is_active=(details.get("status") or "active") == "active",
        )


__all__ = ["YouTubeNormalizer", "youtube_author_badges"]
