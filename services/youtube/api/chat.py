import asyncio
from typing import Any, AsyncGenerator, Dict, Optional, Set

import httpx

from services.youtube.api.errors import YouTubeApiError, is_quota_error, raise_for_youtube_error
from services.youtube.api.livestream import COST_CHAT_LIST, YouTubeLiveApi
from shared.logging.logger import get_logger

log = get_logger("youtube.chat")


class YouTubeChatClient:
    """
    Polling client for YouTube Live Chat via the Data API v3.

    Responsibilities:
    - Poll liveChat/messages endpoint
    - Respect server-provided polling intervals
    - Deduplicate messages by id
    - Charge each poll to the account quota tracker
    - Surface quota errors to the caller; retry anything else
    """

    BASE_URL = YouTubeLiveApi.MESSAGES_URL

    def __init__(
        self,
        *,
        api: YouTubeLiveApi,
        live_chat_id: str,
        poll_interval: float = 2.5,
        max_seen: int = 5000,
    ):
        if not live_chat_id:
            raise RuntimeError("YouTube live_chat_id is required")

        self.api = api
        self.live_chat_id = live_chat_id
        self.poll_interval = poll_interval
        self.max_seen = max_seen

        self._page_token: Optional[str] = None
        self._stop_event = asyncio.Event()
        self._seen_ids: Set[str] = set()

    @property
    def account_id(self) -> str:
        return self.api.account_id

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def iter_items(self) -> AsyncGenerator[Dict[str, Any], None]:
        """
        Poll live chat and yield raw liveChatMessage resources.

        Uses nextPageToken and pollingIntervalMillis as advised by the API.
        Quota errors (server-side or local) propagate.
        """
        self._stop_event.clear()

        params: Dict[str, Any] = {
            "part": "snippet,authorDetails",
            "liveChatId": self.live_chat_id,
        }
        if self.api.api_key:
            params["key"] = self.api.api_key

        log.info(
            f"[{self.account_id}] Starting live chat polling "
            f"(liveChatId={self.live_chat_id})"
        )

        async with self.api.client() as client:
            while not self._stop_event.is_set():
                # Pre-call quota charge; QuotaExceeded propagates
                self.api.charge(COST_CHAT_LIST)

                if self._page_token:
                    params["pageToken"] = self._page_token

                try:
                    response = await client.get(self.BASE_URL, params=params)
                    raise_for_youtube_error(response)
                    data = response.json()

                except asyncio.CancelledError:
                    raise
                except YouTubeApiError as e:
                    if is_quota_error(e):
                        raise
                    if e.status_code in (401, 403, 404):
                        # Chat ended, token revoked or chat disabled
                        raise
                    log.warning(f"[{self.account_id}] chat poll error: {e}")
                    await self._sleep(self.poll_interval)
                    continue
                except (httpx.HTTPError, ValueError) as e:
                    log.warning(f"[{self.account_id}] chat poll error: {e}")
                    await self._sleep(self.poll_interval)
                    continue

                self._page_token = data.get("nextPageToken")

                items = data.get("items", [])
                for item in items:
                    msg_id = item.get("id")
                    if not msg_id or msg_id in self._seen_ids:
                        continue

                    self._remember(msg_id)
                    yield item

                if data.get("offlineAt"):
                    log.info(f"[{self.account_id}] Live chat reported offline")
                    break

                # Respect server-recommended polling interval
                interval_ms = data.get("pollingIntervalMillis")
                sleep_seconds = (
                    interval_ms / 1000.0
                    if isinstance(interval_ms, (int, float))
                    else self.poll_interval
                )

                snapshot = self.api.quota.snapshot() if self.api.quota else None
                log.debug(
                    f"[{self.account_id}] Poll complete "
                    f"(messages={len(items)}, quota={snapshot}, sleep={sleep_seconds}s)"
                )

                await self._sleep(sleep_seconds)

        log.info(f"[{self.account_id}] Live chat polling stopped")

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _remember(self, msg_id: str) -> None:
        if len(self._seen_ids) >= self.max_seen:
            self._seen_ids.clear()
        self._seen_ids.add(msg_id)

    async def close(self) -> None:
        """
        Signal polling loop to stop.
        """
        self._stop_event.set()


__all__ = ["YouTubeChatClient"]
