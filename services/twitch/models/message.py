from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple


@dataclass
class TwitchIrcMessage:
    """
    Parsed Twitch IRC line (tags + prefix + command + params).

    Only the commands the adapter cares about are produced by the client:
    PRIVMSG, USERNOTICE, CLEARCHAT, CLEARMSG, WHISPER, HOSTTARGET, NOTICE and
    RECONNECT. Tag values are already unescaped.
    """

    raw: str
    command: str
    tags: Dict[str, str] = field(default_factory=dict)
    prefix: str = ""
    params: Tuple[str, ...] = ()

    # ------------------------------------------------------------------ #

    @property
    def channel(self) -> str:
        if self.params and self.params[0].startswith("#"):
            return self.params[0][1:]
        return ""

    @property
    def text(self) -> str:
        """Trailing parameter (chat text, whisper body, CLEARCHAT target)."""
        if len(self.params) >= 2:
            return self.params[-1]
        return ""

    @property
    def login(self) -> str:
        # Prefix example: nickname!nickname@nickname.tmi.twitch.tv
        if "!" in self.prefix:
            return self.prefix.split("!", 1)[0]
        return self.tags.get("login") or ""

    @property
    def display_name(self) -> str:
        return self.tags.get("display-name") or self.login or "unknown"

    @property
    def user_id(self) -> Optional[str]:
        return self.tags.get("user-id") or None

    @property
    def message_id(self) -> Optional[str]:
        return self.tags.get("id") or None

    @property
    def msg_id(self) -> str:
        """USERNOTICE / NOTICE kind (sub, resub, raid, ...)."""
        return self.tags.get("msg-id") or ""

    @property
    def color(self) -> Optional[str]:
        return self.tags.get("color") or None

    @property
    def bits(self) -> int:
        try:
            return int(self.tags.get("bits") or 0)
        except ValueError:
            return 0

    @property
    def badges(self) -> List[Tuple[str, str]]:
        """Badge (set, version) pairs from the ``badges`` tag."""
        pairs: List[Tuple[str, str]] = []
        for badge in (self.tags.get("badges") or "").split(","):
            if not badge:
                continue
            set_id, _, version = badge.partition("/")
            pairs.append((set_id, version or "1"))
        return pairs

    @property
    def timestamp(self) -> Optional[datetime]:
        raw_ts = self.tags.get("tmi-sent-ts")
        if not raw_ts:
            return None
        try:
            return datetime.fromtimestamp(int(raw_ts) / 1000.0, tz=timezone.utc)
        except ValueError:
            return None

    def param(self, name: str, default: str = "") -> str:
        """``msg-param-*`` tag lookup."""
        return self.tags.get(f"msg-param-{name}") or default

    def int_param(self, name: str, default: int = 0) -> int:
        try:
            return int(self.param(name) or default)
        except ValueError:
            return default
