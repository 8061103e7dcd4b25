"""Text/emote interleaving for parsed chat messages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from shared.events.models import EmoteSegment, MessageSegment, TextSegment
from shared.logging.logger import get_logger

log = get_logger("normalizer.segments")

TWITCH_EMOTE_URL = "https://static-cdn.jtvnw.net/emoticons/v2/{id}/default/dark/1.0"


@dataclass(frozen=True)
class EmoteRange:
    """Emote occurrence covering ``text[start:end]`` (end exclusive)."""

    start: int
    end: int
    id: str
    name: str
    image_url: str = ""


def interleave_emotes(
    text: str,
    ranges: Iterable[EmoteRange],
    *,
    platform: str,
) -> List[MessageSegment]:
    """
    Split ``text`` into Text and Emote segments.

    Ranges are expected non-overlapping; they are sorted by start here.
    Empty text slices are dropped. Ranges that fall outside the text or
    overlap a previous range are skipped with a debug log.
    """
    if not text:
        return []

    ordered = sorted(ranges, key=lambda r: r.start)
    if not ordered:
        return [TextSegment(text)]

    segments: List[MessageSegment] = []
    cursor = 0

    for emote in ordered:
        if emote.start < cursor or emote.end > len(text) or emote.end <= emote.start:
            log.debug(
                f"Skipping invalid emote range {emote.start}-{emote.end} "
                f"(id={emote.id}, len={len(text)})"
            )
            continue

        if emote.start > cursor:
            segments.append(TextSegment(text[cursor:emote.start]))

        segments.append(
            EmoteSegment(
                id=emote.id,
                name=emote.name or text[emote.start:emote.end],
                image_url=emote.image_url,
                platform=platform,
            )
        )
        cursor = emote.end

    if cursor < len(text):
        segments.append(TextSegment(text[cursor:]))

    return segments


def parse_twitch_emote_tag(text: str, raw_tag: Optional[str]) -> List[EmoteRange]:
    """
    Parse the IRC ``emotes`` tag into exclusive-end ranges.

    Tag format: ``25:0-4,12-16/1902:6-10``. IRC ranges are inclusive and count
    code points, which matches Python string indexing.
    """
    if not raw_tag:
        return []

    ranges: List[EmoteRange] = []
    for entry in raw_tag.split("/"):
        if ":" not in entry:
            continue
        emote_id, positions = entry.split(":", 1)
        for pos in positions.split(","):
            if "-" not in pos:
                continue
            try:
                start_raw, end_raw = pos.split("-", 1)
                start = int(start_raw)
                end = int(end_raw) + 1
            except ValueError:
                log.debug(f"Ignoring malformed emote position '{pos}'")
                continue

            ranges.append(
                EmoteRange(
                    start=start,
                    end=end,
                    id=emote_id,
                    name=text[start:end],
                    image_url=TWITCH_EMOTE_URL.format(id=emote_id),
                )
            )

    ranges.sort(key=lambda r: r.start)
    return ranges


__all__ = [
    "EmoteRange",
    "TWITCH_EMOTE_URL",
    "interleave_emotes",
    "parse_twitch_emote_tag",
]
