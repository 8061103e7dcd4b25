"""
Connection settings loader.

Reads the account list and platform toggles from a JSON document and applies
lightweight schema validation. Failures are treated as warnings so the relay
can keep booting with whatever entries are still usable.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from core.context import AccountDescriptor, ApiCredentials, ConnectionSettings
from shared.logging.logger import get_logger

log = get_logger("core.config_loader")


def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


class ConfigLoader:
    """
    Loads and validates ``connections.json``.

    Files:
      - config/connections.json (override with CHATRELAY_CONFIG_PATH)

    Validation:
      - schemas/connections.schema.json, warnings only
      - entries without an id are skipped, duplicate ids keep the first

    Env overrides:
      - TWITCH_CLIENT_ID, TWITCH_CLIENT_SECRET
      - YOUTUBE_CLIENT_ID, YOUTUBE_CLIENT_SECRET, YOUTUBE_API_KEY
    """

    CONNECTIONS_PATH = Path("config/connections.json")
    SCHEMA_DIR = Path("schemas")

    def __init__(self, path: Optional[Path] = None, *, environ=None) -> None:
        self._environ = environ if environ is not None else os.environ
        env_path = _clean_str(self._environ.get("CHATRELAY_CONFIG_PATH"))
        self.path = Path(path or env_path or self.CONNECTIONS_PATH)
        self._schema_path = self.SCHEMA_DIR / "connections.schema.json"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_json(self, path: Path, name: str) -> Dict[str, Any]:
        if not path.exists():
            log.warning(f"{name} config not found at {path}; using defaults")
            return {}

        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
                if isinstance(data, dict):
                    return data
                log.warning(f"{name} config root is not an object; ignoring")
        except Exception as e:
            log.warning(f"Failed to load {name} config ({e}); using defaults")

        return {}

    def _validate(self, payload: Dict[str, Any], schema_path: Path, name: str) -> None:
        if not schema_path.exists():
            log.debug(f"Schema for {name} not found at {schema_path}; skipping")
            return

        try:
            schema = json.loads(schema_path.read_text(encoding="utf-8"))
        except Exception as e:
            log.warning(f"Failed to load {name} schema ({e}); skipping validation")
            return

        validator = Draft7Validator(schema)
        errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))

        for err in errors:
            loc = "/".join(str(p) for p in err.path)
            log.warning(f"{name} config validation warning at '{loc}': {err.message}")

    @staticmethod
    def _normalize_account(platform: str, entry: Any) -> Optional[AccountDescriptor]:
        if not isinstance(entry, dict):
            return None

        account_id = _clean_str(entry.get("id") or entry.get("account_id"))
        if not account_id:
            return None

        username = _clean_str(entry.get("username"))
        if platform == "twitch" and username:
            username = username.lower()

        return AccountDescriptor(
            platform=platform,
            account_id=account_id,
            display_name=_clean_str(entry.get("display_name")) or username or account_id,
            auto_connect=bool(entry.get("auto_connect", True)),
            override=_clean_str(entry.get("override")) if platform == "youtube" else None,
            username=username,
        )

    def _load_accounts(self, platform: str, raw: Any) -> List[AccountDescriptor]:
        if raw is None:
            return []
        if not isinstance(raw, list):
            log.warning(f"{platform} accounts must be a list; ignoring")
            return []

        accounts: List[AccountDescriptor] = []
        seen = set()
        for index, entry in enumerate(raw):
            account = self._normalize_account(platform, entry)
            if account is None:
                log.warning(f"Skipping invalid {platform} account entry #{index}")
                continue
            if account.account_id in seen:
                log.warning(f"Skipping duplicate {platform} account '{account.account_id}'")
                continue
            if platform == "twitch" and not account.username:
                log.warning(
                    f"[{account.account_id}] Twitch account has no username; skipping"
                )
                continue
            seen.add(account.account_id)
            accounts.append(account)
        return accounts

    def _load_credentials(self, raw: Any) -> ApiCredentials:
        data = raw if isinstance(raw, dict) else {}
        twitch = data.get("twitch") if isinstance(data.get("twitch"), dict) else {}
        youtube = data.get("youtube") if isinstance(data.get("youtube"), dict) else {}
        env = self._environ

        return ApiCredentials(
            twitch_client_id=_clean_str(env.get("TWITCH_CLIENT_ID"))
            or _clean_str(twitch.get("client_id")),
            twitch_client_secret=_clean_str(env.get("TWITCH_CLIENT_SECRET"))
            or _clean_str(twitch.get("client_secret")),
            youtube_client_id=_clean_str(env.get("YOUTUBE_CLIENT_ID"))
            or _clean_str(youtube.get("client_id")),
            youtube_client_secret=_clean_str(env.get("YOUTUBE_CLIENT_SECRET"))
            or _clean_str(youtube.get("client_secret")),
            youtube_api_key=_clean_str(env.get("YOUTUBE_API_KEY"))
            or _clean_str(youtube.get("api_key")),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load_connection_settings(self) -> ConnectionSettings:
        payload = self._load_json(self.path, "connections")
        if payload:
            self._validate(payload, self._schema_path, "connections")
        return self.parse(payload)

    def parse(self, payload: Dict[str, Any]) -> ConnectionSettings:
        twitch = payload.get("twitch") if isinstance(payload.get("twitch"), dict) else {}
        youtube = payload.get("youtube") if isinstance(payload.get("youtube"), dict) else {}
        streamlabs = (
            payload.get("streamlabs") if isinstance(payload.get("streamlabs"), dict) else {}
        )

        settings = ConnectionSettings(
            twitch_accounts=tuple(self._load_accounts("twitch", twitch.get("accounts"))),
            youtube_accounts=tuple(self._load_accounts("youtube", youtube.get("accounts"))),
            streamlabs_enabled=bool(streamlabs.get("enabled", False)),
            streamlabs_token_id=_clean_str(streamlabs.get("token_id")),
            debug_youtube_live_chat_id=_clean_str(youtube.get("debug_live_chat_id")),
            credentials=self._load_credentials(payload.get("credentials")),
        )

        log.info(
            f"Connection settings loaded: twitch={len(settings.twitch_accounts)} "
            f"youtube={len(settings.youtube_accounts)} "
            f"streamlabs={'on' if settings.streamlabs_enabled else 'off'}"
        )
        return settings


__all__ = ["ConfigLoader"]
