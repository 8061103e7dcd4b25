from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, date, timezone
from typing import Callable, Dict, List, Optional

from shared.logging.logger import get_logger

log = get_logger("runtime.quotas")


# ======================================================================
# Exceptions
# ======================================================================

class QuotaExceeded(RuntimeError):
    """Raised when a hard quota limit has been exceeded."""


class QuotaBufferWarning(RuntimeError):
    """
    Raised when usage enters the configured buffer zone.
    This is NOT fatal, but should surface as a warning.
    """


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


# ======================================================================
# Data Models
# ======================================================================

@dataclass
class DailyQuota:
    """
    Tracks cumulative usage for a single UTC day.
    """
    day: date
    used: int = 0

    def reset_if_new_day(self, today: date) -> None:
        if self.day != today:
            self.day = today
            self.used = 0


@dataclass
class QuotaPolicy:
    """
    Declarative quota limits.
    """
    max_units: int
    buffer_units: int

    @property
    def hard_limit(self) -> int:
        return self.max_units

    @property
    def buffer_threshold(self) -> int:
        return max(0, self.max_units - self.buffer_units)

    @classmethod
    def from_env(cls) -> Optional["QuotaPolicy"]:
        """
        Build a policy from YOUTUBE_DAILY_UNITS_MAX / YOUTUBE_DAILY_UNITS_BUFFER.
        Returns None (enforcement disabled) when the max is unset or invalid.
        """
        raw_max = os.getenv("YOUTUBE_DAILY_UNITS_MAX")
        if not raw_max:
            return None
        try:
            max_units = int(raw_max)
            buffer_units = int(os.getenv("YOUTUBE_DAILY_UNITS_BUFFER") or 0)
        except ValueError:
            log.warning(
                f"Invalid YouTube quota env values (max={raw_max}); "
                "local quota enforcement disabled"
            )
            return None
        if max_units <= 0:
            return None
        return cls(max_units=max_units, buffer_units=max(0, buffer_units))


# ======================================================================
# Quota Tracker (ENFORCEMENT ONLY)
# ======================================================================

class QuotaTracker:
    """
    Per-account quota tracker.

    - Tracks cumulative usage
    - Enforces buffer + hard caps
    - Resets automatically on UTC day rollover
    """

    def __init__(
        self,
        *,
        account_id: str,
        platform: str,
        policy: QuotaPolicy,
        today: Callable[[], date] = _utc_today,
    ):
        self.account_id = account_id
        self.platform = platform
        self.policy = policy
        self._today = today
        self.state = DailyQuota(day=today(), used=0)

    # --------------------------------------------------

    def consume(self, units: int) -> None:
        if units <= 0:
            return

        self.state.reset_if_new_day(self._today())
        projected = self.state.used + units

        if projected > self.policy.hard_limit:
            raise QuotaExceeded(
                f"Quota exceeded: {projected} / {self.policy.hard_limit}"
            )

        if (
            self.state.used < self.policy.buffer_threshold
            and projected >= self.policy.buffer_threshold
        ):
            self.state.used = projected
            raise QuotaBufferWarning(
                f"Quota buffer entered: {projected} / {self.policy.hard_limit}"
            )

        self.state.used = projected

    # --------------------------------------------------

    def snapshot(self) -> Dict[str, int]:
        self.state.reset_if_new_day(self._today())
        return {
            "used": self.state.used,
            "remaining": max(0, self.policy.hard_limit - self.state.used),
            "max": self.policy.hard_limit,
            "buffer": self.policy.buffer_units,
        }

    def status(self) -> str:
        if self.state.used >= self.policy.hard_limit:
            return "exhausted"
        if self.state.used >= self.policy.buffer_threshold:
            return "buffer"
        return "ok"


# ======================================================================
# Registry (owned by an adapter, not process-global)
# ======================================================================

class QuotaRegistry:
    """
    Quota trackers keyed by account. Accounts without a policy are untracked.
    """

    def __init__(self, policy: Optional[QuotaPolicy] = None):
        self.policy = policy
        self._trackers: Dict[str, QuotaTracker] = {}

    def _key(self, account_id: str, platform: str) -> str:
        return f"{account_id}:{platform}"

    def tracker_for(self, *, account_id: str, platform: str) -> Optional[QuotaTracker]:
        if not self.policy:
            return None
        key = self._key(account_id, platform)
        tracker = self._trackers.get(key)
        if tracker is None:
            tracker = QuotaTracker(
                account_id=account_id,
                platform=platform,
                policy=self.policy,
            )
            self._trackers[key] = tracker
        return tracker

    def all(self) -> List[QuotaTracker]:
        return list(self._trackers.values())


__all__ = [
    "DailyQuota",
    "QuotaBufferWarning",
    "QuotaExceeded",
    "QuotaPolicy",
    "QuotaRegistry",
    "QuotaTracker",
]
