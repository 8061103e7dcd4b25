"""
Access-token cache and credential provider.

Tokens are acquired and refreshed by an external OAuth collaborator. This
module only stores what it is given and hands out tokens that have not
expired. Adapters receive a provider instance; nothing here is global.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from shared.logging.logger import get_logger

log = get_logger("auth.tokens")


class CredentialError(RuntimeError):
    """Raised when no valid access token is available for an account."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TokenRecord:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_valid(self, now: datetime, *, leeway: timedelta = timedelta(seconds=30)) -> bool:
        if not self.access_token:
            return False
        if self.expires_at is None:
            return True
        return now + leeway < self.expires_at


class TokenCache:
    """
    Expiring token store keyed by (platform, account_id).

    The clock is injectable for deterministic expiry in tests.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utc_now):
        self._clock = clock
        self._records: Dict[Tuple[str, str], TokenRecord] = {}

    @staticmethod
    def _key(platform: str, account_id: str) -> Tuple[str, str]:
        return platform.lower(), str(account_id)

    def put(
        self,
        platform: str,
        account_id: str,
        access_token: str,
        *,
        refresh_token: Optional[str] = None,
        expires_in: Optional[float] = None,
    ) -> TokenRecord:
        expires_at = None
        if expires_in is not None:
            expires_at = self._clock() + timedelta(seconds=float(expires_in))

        record = TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )
        self._records[self._key(platform, account_id)] = record
        log.debug(
            f"[{platform}:{account_id}] Token stored "
            f"(expires_at={expires_at.isoformat() if expires_at else 'never'})"
        )
        return record

    def get(self, platform: str, account_id: str) -> Optional[str]:
        record = self._records.get(self._key(platform, account_id))
        if not record:
            return None
        if not record.is_valid(self._clock()):
            log.debug(f"[{platform}:{account_id}] Cached token expired")
            return None
        return record.access_token

    def discard(self, platform: str, account_id: str) -> bool:
        return self._records.pop(self._key(platform, account_id), None) is not None

    def __contains__(self, key: Tuple[str, str]) -> bool:
        platform, account_id = key
        return self.get(platform, account_id) is not None


class CredentialProvider:
    """
    Supplies already-validated access tokens.

    ``get_access_token`` raises CredentialError when the cache holds nothing
    usable; adapters never attempt a refresh themselves.
    """

    def __init__(self, cache: TokenCache):
        self.cache = cache

    async def get_access_token(self, platform: str, account_id: str) -> str:
        token = self.cache.get(platform, account_id)
        if not token:
            raise CredentialError(
                f"No valid {platform} token for account {account_id}"
            )
        return token

    async def logout(self, platform: str, account_id: str) -> None:
        if self.cache.discard(platform, account_id):
            log.info(f"[{platform}:{account_id}] Credentials discarded")
        else:
            log.debug(f"[{platform}:{account_id}] No credentials to discard")


class EnvCredentialProvider(CredentialProvider):
    """
    Credential provider seeded from environment variables.

    Variable format: ``CHATRELAY_TOKEN_<PLATFORM>_<ACCOUNT_ID>``. Account ids
    are upper-cased with non-alphanumerics replaced by ``_``. Streamlabs
    socket tokens use the configured token id as the account id.
    """

    PREFIX = "CHATRELAY_TOKEN_"

    def __init__(self, cache: Optional[TokenCache] = None, *, environ=None):
        super().__init__(cache or TokenCache())
        self._environ = environ if environ is not None else os.environ
        # Env keys consumed by logout stay unusable for this process
        self._revoked: set = set()

    @classmethod
    def env_key(cls, platform: str, account_id: str) -> str:
        suffix = re.sub(r"[^A-Za-z0-9]", "_", str(account_id)).upper()
        return f"{cls.PREFIX}{platform.upper()}_{suffix}"

    async def get_access_token(self, platform: str, account_id: str) -> str:
        token = self.cache.get(platform, account_id)
        if token:
            return token

        key = self.env_key(platform, account_id)
        raw = "" if key in self._revoked else (self._environ.get(key) or "").strip()
        if not raw:
            raise CredentialError(
                f"No valid {platform} token for account {account_id} "
                f"(set {self.env_key(platform, account_id)})"
            )

        self.cache.put(platform, account_id, raw)
        return raw

    async def logout(self, platform: str, account_id: str) -> None:
        self._revoked.add(self.env_key(platform, account_id))
        await super().logout(platform, account_id)


__all__ = [
    "CredentialError",
    "CredentialProvider",
    "EnvCredentialProvider",
    "TokenCache",
    "TokenRecord",
]
