import httpx
from typing import Any, Dict, List, Optional

from services.youtube.api.errors import raise_for_youtube_error
from shared.logging.logger import get_logger
from shared.runtime.quotas import QuotaBufferWarning, QuotaTracker

log = get_logger("youtube.livestream")

# Data API v3 unit costs
COST_READ = 1
COST_WRITE = 50
COST_CHAT_LIST = 5


class YouTubeLiveApi:
    """
    Authenticated YouTube Data API v3 calls for one account.

    Responsibilities:
    - Verify the bearer token (channels?mine=true)
    - Find the account's active broadcast and resolve activeLiveChatId
    - Chat writes, moderation and polls

    Every call is charged to the local QuotaTracker first; QuotaExceeded
    propagates to the caller like a server-side quota error.
    """

    BASE_URL = "https://www.googleapis.com/youtube/v3"
    CHANNELS_URL = f"{BASE_URL}/channels"
    BROADCASTS_URL = f"{BASE_URL}/liveBroadcasts"
    VIDEOS_URL = f"{BASE_URL}/videos"
    MESSAGES_URL = f"{BASE_URL}/liveChat/messages"
    TRANSITION_URL = f"{BASE_URL}/liveChat/messages/transition"
    BANS_URL = f"{BASE_URL}/liveChat/bans"

    BROADCAST_PREFERENCE = ("live", "liveStarting", "ready")

    def __init__(
        self,
        *,
        account_id: str,
        access_token: str,
        quota: Optional[QuotaTracker] = None,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not access_token:
            raise RuntimeError("YouTube access token is required")
        self.account_id = account_id
        self.access_token = access_token
        self.quota = quota
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.access_token}"},
            transport=self._transport,
        )

    def charge(self, units: int) -> None:
        if not self.quota:
            return
        try:
            self.quota.consume(units)
        except QuotaBufferWarning as warn:
            log.warning(f"[{self.account_id}] {warn}")

    async def _request(
        self,
        method: str,
        url: str,
        *,
        cost: int,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        self.charge(cost)
        params = dict(params or {})
        if self.api_key:
            params.setdefault("key", self.api_key)

        async with self.client() as client:
            r = await client.request(method, url, params=params, json=json)
        raise_for_youtube_error(r)

        if r.status_code == 204 or not r.content:
            return {}
        return r.json()

    # ------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------

    async def verify(self) -> Dict[str, Any]:
        """Return the authenticated channel resource."""
        data = await self._request(
            "GET",
            self.CHANNELS_URL,
            cost=COST_READ,
            params={"part": "id,snippet", "mine": "true"},
        )
        items = data.get("items", [])
        if not items:
            raise RuntimeError("Token is valid but has no YouTube channel")
        return items[0]

    async def find_active_video_id(self) -> Optional[str]:
        data = await self._request(
            "GET",
            self.BROADCASTS_URL,
            cost=COST_READ,
            params={
                "part": "id,status",
                "mine": "true",
                "broadcastType": "all",
                "maxResults": 25,
            },
        )
        broadcasts: List[Dict[str, Any]] = data.get("items", [])

        for wanted in self.BROADCAST_PREFERENCE:
            for broadcast in broadcasts:
                status = (broadcast.get("status") or {}).get("lifeCycleStatus")
                if status == wanted and broadcast.get("id"):
                    log.debug(
                        f"[{self.account_id}] Selected broadcast {broadcast['id']} ({status})"
                    )
                    return broadcast["id"]

        return None

    async def get_live_chat_id(self, video_id: str) -> Optional[str]:
        data = await self._request(
            "GET",
            self.VIDEOS_URL,
            cost=COST_READ,
            params={"part": "liveStreamingDetails", "id": video_id},
        )
        items = data.get("items", [])
        if not items:
            return None
        return (items[0].get("liveStreamingDetails") or {}).get("activeLiveChatId")

    # ------------------------------------------------------------
    # Chat writes
    # ------------------------------------------------------------

    async def send_message(self, live_chat_id: str, text: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            self.MESSAGES_URL,
            cost=COST_WRITE,
            params={"part": "snippet"},
            json={
                "snippet": {
                    "liveChatId": live_chat_id,
                    "type": "textMessageEvent",
                    "textMessageDetails": {"messageText": text},
                }
            },
        )

    async def delete_message(self, message_id: str) -> None:
        await self._request(
            "DELETE",
            self.MESSAGES_URL,
            cost=COST_WRITE,
            params={"id": message_id},
        )

    async def ban_user(
        self,
        live_chat_id: str,
        channel_id: str,
        *,
        duration_seconds: Optional[int] = None,
    ) -> Dict[str, Any]:
        snippet: Dict[str, Any] = {
            "liveChatId": live_chat_id,
            "type": "temporary" if duration_seconds else "permanent",
            "bannedUserDetails": {"channelId": channel_id},
        }
        if duration_seconds:
            snippet["banDurationSeconds"] = int(duration_seconds)

        return await self._request(
            "POST",
            self.BANS_URL,
            cost=COST_WRITE,
            params={"part": "snippet"},
            json={"snippet": snippet},
        )

    async def timeout_user(
        self, live_chat_id: str, channel_id: str, duration_seconds: int
    ) -> Dict[str, Any]:
        return await self.ban_user(
            live_chat_id, channel_id, duration_seconds=duration_seconds
        )

    # ------------------------------------------------------------
    # Polls
    # ------------------------------------------------------------

    async def create_poll(
        self, live_chat_id: str, question: str, options: List[str]
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            self.MESSAGES_URL,
            cost=COST_WRITE,
            params={"part": "snippet"},
            json={
                "snippet": {
                    "liveChatId": live_chat_id,
                    "type": "pollEvent",
                    "pollDetails": {
                        "metadata": {
                            "questionText": question,
                            "options": [{"optionText": o} for o in options],
                        }
                    },
                }
            },
        )

    async def end_poll(self, poll_message_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            self.TRANSITION_URL,
            cost=COST_WRITE,
            params={"id": poll_message_id, "status": "closed", "part": "snippet"},
        )


__all__ = ["YouTubeLiveApi", "COST_CHAT_LIST", "COST_READ", "COST_WRITE"]
