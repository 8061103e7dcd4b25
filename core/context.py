from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from shared.platforms.state import normalize_platform


@dataclass(frozen=True)
class ApiCredentials:
    # -------------------------------------------------
    # App-level credentials (not per-account tokens)
    # -------------------------------------------------
    twitch_client_id: Optional[str] = None
    twitch_client_secret: Optional[str] = None
    youtube_client_id: Optional[str] = None
    youtube_client_secret: Optional[str] = None
    youtube_api_key: Optional[str] = None

    def for_platform(self, platform: str) -> Tuple[Optional[str], ...]:
        key = normalize_platform(platform)
        if key == "twitch":
            return (self.twitch_client_id, self.twitch_client_secret)
        if key == "youtube":
            return (self.youtube_client_id, self.youtube_client_secret, self.youtube_api_key)
        return ()


@dataclass(frozen=True)
class AccountDescriptor:
    """
    Snapshot of one configured account.

    ``override`` is the manual live video id for YouTube; unused for Twitch.
    ``username`` is the Twitch login (IRC nick and own channel).
    """

    platform: str
    account_id: str
    display_name: str = ""
    auto_connect: bool = True
    override: Optional[str] = None
    username: Optional[str] = None

    def connection_key(self) -> Tuple:
        """Fields whose change requires the connection to be rebuilt."""
        return (self.auto_connect, self.override or None)

    @property
    def label(self) -> str:
        return self.display_name or self.username or self.account_id


@dataclass(frozen=True)
class ConnectionSettings:
    # -------------------------------------------------
    # ACCOUNTS
    # -------------------------------------------------
    twitch_accounts: Tuple[AccountDescriptor, ...] = ()
    youtube_accounts: Tuple[AccountDescriptor, ...] = ()

    # -------------------------------------------------
    # STREAMLABS (single shared socket)
    # -------------------------------------------------
    streamlabs_enabled: bool = False
    streamlabs_token_id: Optional[str] = None

    # Applies to every YouTube account without its own override
    debug_youtube_live_chat_id: Optional[str] = None

    credentials: ApiCredentials = field(default_factory=ApiCredentials)

    # -------------------------------------------------

    def accounts_for(self, platform: str) -> Dict[str, AccountDescriptor]:
        key = normalize_platform(platform)
        if key == "twitch":
            accounts = self.twitch_accounts
        elif key == "youtube":
            accounts = self.youtube_accounts
        else:
            accounts = ()
        return {a.account_id: a for a in accounts}

    def credentials_key(self, platform: str) -> Tuple:
        """Platform-wide inputs that force every account to reconnect."""
        key = normalize_platform(platform)
        creds = self.credentials.for_platform(key)
        if key == "youtube":
            return (*creds, self.debug_youtube_live_chat_id or None)
        return creds

    def all_accounts(self) -> Tuple[AccountDescriptor, ...]:
        return self.twitch_accounts + self.youtube_accounts
