"""
Platform payload -> unified event normalization.

``EventNormalizer`` is the single entry point used by adapters. It never
raises: a payload that fails to map is logged and produces no events.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from services.twitch.models.message import TwitchIrcMessage
from shared.events.models import Event
from shared.logging.logger import get_logger
from shared.normalizer.streamlabs import StreamlabsNormalizer
from shared.normalizer.twitch import BadgeUrlLookup, TwitchNormalizer
from shared.normalizer.youtube import YouTubeNormalizer

log = get_logger("normalizer")


class EventNormalizer:
    def __init__(self, badge_lookup: Optional[BadgeUrlLookup] = None):
        self.twitch = TwitchNormalizer(badge_lookup)
        self.youtube = YouTubeNormalizer()
        self.streamlabs = StreamlabsNormalizer()

    def normalize_twitch(self, message: TwitchIrcMessage, account_id: str) -> List[Event]:
        try:
            return self.twitch.normalize(message, account_id)
        except Exception as e:
            log.warning(
                f"[{account_id}] Failed to normalize Twitch {message.command}: {e}"
            )
            return []

    def normalize_youtube(self, item: Dict[str, Any], account_id: str) -> List[Event]:
        try:
            event = self.youtube.normalize(item, account_id)
        except Exception as e:
            log.warning(
                f"[{account_id}] Failed to normalize YouTube item "
                f"{item.get('id', '<no id>')}: {e}"
            )
            return []
        return [event] if event else []

    def normalize_streamlabs(self, envelope: Dict[str, Any]) -> List[Event]:
        try:
            return self.streamlabs.normalize(envelope)
        except Exception as e:
            log.warning(
                f"Failed to normalize Streamlabs event '{envelope.get('type')}': {e}"
            )
            return []


__all__ = ["EventNormalizer"]
