from __future__ import annotations

import re
from typing import Dict, Iterable, Optional, Tuple

from shared.events.models import BadgeInfo

# set id -> (priority, hex color); higher priority wins
TWITCH_BADGE_COLOR_PRIORITY: Dict[str, Tuple[int, str]] = {
    "broadcaster": (10, "#E91916"),
    "admin": (9, "#FAAF19"),
    "staff": (9, "#FAAF19"),
    "global_mod": (8, "#0AD57F"),
    "moderator": (7, "#0AD57F"),
    "vip": (6, "#E005B9"),
    "partner": (5, "#7533FF"),
    "subscriber": (4, "#7533FF"),
    "founder": (3, "#7533FF"),
}

YOUTUBE_BADGE_COLOR_PRIORITY: Dict[str, Tuple[int, str]] = {
    "owner": (10, "#FFD700"),
    "moderator": (7, "#5E84F1"),
    "member": (5, "#0F9D58"),
    "verified": (3, "#AAAAAA"),
}

_HEX_RE = re.compile(r"^[0-9A-Fa-f]{6}([0-9A-Fa-f]{2})?$")


def resolve_username_color(
    badges: Iterable[BadgeInfo],
    table: Dict[str, Tuple[int, str]],
    *,
    fallback: Optional[str] = None,
) -> Optional[str]:
    """Color of the highest-priority badge found in ``table``, else ``fallback``."""
    best: Optional[Tuple[int, str]] = None
    for badge in badges:
        entry = table.get(badge.set_id.lower())
        if entry and (best is None or entry[0] > best[0]):
            best = entry

    if best:
        return best[1]
    return fallback or None


def format_hex_color(color: Optional[str]) -> Optional[str]:
    """Prefix bare 6/8 digit hex values with '#'; pass other values through."""
    if not color:
        return None
    color = color.strip()
    if _HEX_RE.match(color):
        return f"#{color}"
    return color


def has_badge(badges: Iterable[BadgeInfo], set_id: str) -> bool:
    return any(b.set_id == set_id for b in badges)


__all__ = [
    "TWITCH_BADGE_COLOR_PRIORITY",
    "YOUTUBE_BADGE_COLOR_PRIORITY",
    "format_hex_color",
    "has_badge",
    "resolve_username_color",
]
