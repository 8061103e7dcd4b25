from typing import Any, Dict, List, Optional

import httpx

from shared.runtime.quotas import QuotaExceeded

QUOTA_REASONS = {"quotaExceeded", "rateLimitExceeded"}
QUOTA_DOMAINS = {"usageLimits"}


class YouTubeApiError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        reasons: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.reasons = reasons or []


class YouTubeQuotaError(YouTubeApiError):
    """The Data API refused a call because the daily quota is spent."""


def _error_details(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return []
    return [e for e in error.get("errors") or [] if isinstance(e, dict)]


def is_quota_error(exc: BaseException) -> bool:
    return isinstance(exc, (YouTubeQuotaError, QuotaExceeded))


def raise_for_youtube_error(response: httpx.Response) -> None:
    """
    Raise YouTubeQuotaError or YouTubeApiError for a non-2xx response.

    Quota exhaustion is reported as a 403 whose error items carry reason
    ``quotaExceeded`` / ``rateLimitExceeded`` or domain ``usageLimits``.
    """
    if response.is_success:
        return

    try:
        payload = response.json()
    except ValueError:
        payload = {}

    details = _error_details(payload)
    reasons = [d.get("reason") for d in details if d.get("reason")]
    domains = [d.get("domain") for d in details if d.get("domain")]

    message = ""
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        message = payload["error"].get("message") or ""
    message = message or f"HTTP {response.status_code}"

    if QUOTA_REASONS.intersection(reasons) or QUOTA_DOMAINS.intersection(domains):
        raise YouTubeQuotaError(
            message, status_code=response.status_code, reasons=reasons
        )

    raise YouTubeApiError(message, status_code=response.status_code, reasons=reasons)


__all__ = [
    "YouTubeApiError",
    "YouTubeQuotaError",
    "is_quota_error",
    "raise_for_youtube_error",
]
