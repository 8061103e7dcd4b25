from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from uuid import uuid4

from shared.events.models import (
    Donation,
    DonationType,
    Event,
    Follow,
    Host,
    Raid,
    Subscription,
    TextSegment,
)
from shared.logging.logger import get_logger
from shared.platforms.state import PLATFORM_STREAMLABS

log = get_logger("normalizer.streamlabs")


def map_streamlabs_sub_plan(plan: Optional[str]) -> str:
    if plan == "Prime":
        return "Twitch Prime"
    if plan == "1000":
        return "Tier 1"
    if plan == "2000":
        return "Tier 2"
    if plan == "3000":
        return "Tier 3"
    return f"Unknown ({plan or 'Unknown'})"


def _created_at(payload: Dict[str, Any]) -> datetime:
    raw = payload.get("created_at")
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return datetime.now(timezone.utc)


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_decimal(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        log.warning(f"Could not parse Streamlabs amount '{value}'; defaulting to 0")
        return Decimal("0")
    return amount if amount.is_finite() else Decimal("0")


def _segments(message: Optional[str]) -> tuple:
    if not message or not message.strip():
        return ()
    return (TextSegment(message),)


def extract_payload(envelope: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Pick the event body out of a socket ``event`` envelope.

    ``message`` may be a list (first object wins) or an object; ``data`` is
    the fallback for older payloads.
    """
    message = envelope.get("message")
    if isinstance(message, list):
        if message and isinstance(message[0], dict):
            return message[0]
        log.warning(
            f"Streamlabs '{envelope.get('type')}' message list had no object payload"
        )
        return None
    if isinstance(message, dict):
        return message
    if message is not None:
        log.warning(
            f"Streamlabs '{envelope.get('type')}' had unexpected message kind "
            f"{type(message).__name__}"
        )
        return None

    data = envelope.get("data")
    if isinstance(data, dict):
        return data
    return None


class StreamlabsNormalizer:
    def normalize(self, envelope: Dict[str, Any]) -> List[Event]:
        event_type = envelope.get("type")
        if not isinstance(event_type, str):
            log.warning("Streamlabs event missing string 'type'")
            return []

        payload = extract_payload(envelope)
        if payload is None:
            log.warning(f"Streamlabs '{event_type}' received without a payload object")
            return []

        kind = event_type.lower()
        if kind == "donation":
            return [self._donation(payload)]
        if kind == "follow":
            return [self._follow(payload)]
        if kind in ("subscription", "resub"):
            return [self._subscription(payload)]
        if kind == "host":
            return [self._host(payload)]
        if kind == "raid":
            return [self._raid(payload)]
        if kind == "bits":
            return [self._bits(payload)]

        log.debug(f"Unhandled Streamlabs event type '{event_type}'")
        return []

    # ------------------------------------------------------------------ #

    def _donation(self, payload: Dict[str, Any]) -> Donation:
        message = payload.get("message")
        donation_id = payload.get("donation_id")
        if donation_id is None:
            donation_id = payload.get("_id") or str(uuid4())

        return Donation(
            platform=PLATFORM_STREAMLABS,
            timestamp=_created_at(payload),
            donation_id=str(donation_id),
            username=payload.get("name") or "Anonymous",
            amount=_to_decimal(payload.get("amount", 0)),
            currency=payload.get("currency") or "USD",
            raw_message=message or "",
            segments=_segments(message),
            type=DonationType.STREAMLABS,
        )

    def _follow(self, payload: Dict[str, Any]) -> Follow:
        user_id = payload.get("twitch_id") or payload.get("id")
        return Follow(
            platform=PLATFORM_STREAMLABS,
            timestamp=_created_at(payload),
            username=payload.get("name") or "Someone",
            user_id=str(user_id) if user_id is not None else None,
        )

    def _subscription(self, payload: Dict[str, Any]) -> Subscription:
        name = payload.get("name") or "Someone"
        gifter = payload.get("gifter") or None
        streak = payload.get("streak_months")

        return Subscription(
            platform=PLATFORM_STREAMLABS,
            timestamp=_created_at(payload),
            username=gifter if gifter else name,
            is_gift=bool(gifter),
            recipient_username=name if gifter else None,
            months=_to_int(payload.get("months"), 1),
            cumulative_months=_to_int(streak, 0) if streak is not None else 0,
            tier=map_streamlabs_sub_plan(payload.get("sub_plan")),
            message=payload.get("message"),
        )

    def _host(self, payload: Dict[str, Any]) -> Host:
        return Host(
            platform=PLATFORM_STREAMLABS,
            is_hosting=True,
            hoster_username=payload.get("name") or "Someone",
            viewer_count=_to_int(payload.get("viewers"), 0),
        )

    def _raid(self, payload: Dict[str, Any]) -> Raid:
        return Raid(
            platform=PLATFORM_STREAMLABS,
            raider_username=payload.get("name") or "Someone",
            viewer_count=_to_int(payload.get("raiders"), 0),
        )

    def _bits(self, payload: Dict[str, Any]) -> Donation:
        message = payload.get("message")
        return Donation(
            platform=PLATFORM_STREAMLABS,
            timestamp=_created_at(payload),
            donation_id=str(payload.get("_id") or uuid4()),
            username=payload.get("name") or "Anonymous",
            amount=Decimal(_to_int(payload.get("amount"), 0)),
            currency="Bits",
            raw_message=message or "",
            segments=_segments(message),
            type=DonationType.BITS,
        )


__all__ = ["StreamlabsNormalizer", "extract_payload", "map_streamlabs_sub_plan"]
