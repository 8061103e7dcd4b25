import httpx
from typing import Any, Dict, List, Optional

from shared.logging.logger import get_logger

log = get_logger("twitch.helix")


class TwitchHelixError(RuntimeError):
    pass


class TwitchHelixClient:
    """
    Minimal Twitch Helix REST client.

    Only the endpoints the runtime needs: badge sets (global and per channel)
    and user lookup for token verification. Every call carries the app
    Client-Id plus a user bearer token.
    """

    BASE_URL = "https://api.twitch.tv/helix"
    GLOBAL_BADGES_URL = f"{BASE_URL}/chat/badges/global"
    CHANNEL_BADGES_URL = f"{BASE_URL}/chat/badges"
    USERS_URL = f"{BASE_URL}/users"

    def __init__(
        self,
        *,
        client_id: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not client_id:
            raise RuntimeError("Twitch client id is required for Helix calls")
        self.client_id = client_id
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------

    def _headers(self, access_token: str) -> Dict[str, str]:
        token = access_token
        if token.startswith("oauth:"):
            token = token[len("oauth:"):]
        return {
            "Client-Id": self.client_id,
            "Authorization": f"Bearer {token}",
        }

    async def _get(
        self,
        url: str,
        *,
        access_token: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._headers(access_token),
            transport=self._transport,
        ) as client:
            try:
                r = await client.get(url, params=params)
                r.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise TwitchHelixError(
                    f"Helix {url} failed with HTTP {e.response.status_code}"
                ) from e
            return r.json()

    # ------------------------------------------------------------
    # Badges
    # ------------------------------------------------------------

    async def get_global_badges(self, *, access_token: str) -> List[Dict[str, Any]]:
        data = await self._get(self.GLOBAL_BADGES_URL, access_token=access_token)
        return data.get("data", [])

    async def get_channel_badges(
        self,
        broadcaster_id: str,
        *,
        access_token: str,
    ) -> List[Dict[str, Any]]:
        data = await self._get(
            self.CHANNEL_BADGES_URL,
            access_token=access_token,
            params={"broadcaster_id": broadcaster_id},
        )
        return data.get("data", [])

    # ------------------------------------------------------------
    # Users
    # ------------------------------------------------------------

    async def get_current_user(self, *, access_token: str) -> Optional[Dict[str, Any]]:
        data = await self._get(self.USERS_URL, access_token=access_token)
        users = data.get("data", [])
        if not users:
            log.warning("Helix returned no user for the supplied token")
            return None
        return users[0]


__all__ = ["TwitchHelixClient", "TwitchHelixError"]
