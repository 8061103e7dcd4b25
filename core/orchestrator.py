"""
Account connection orchestrator.

Owns the current ConnectionSettings and drives the platform adapters toward
them. Operations on one (platform, account) pair are serialized by a
dedicated lock; distinct accounts run concurrently.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Dict, List, Optional, Set, Tuple

from core.context import AccountDescriptor, ConnectionSettings
from services.streamlabs.adapter import STREAMLABS_KEY, StreamlabsConnectionAdapter
from shared.auth.tokens import CredentialError, CredentialProvider
from shared.events.bus import ConnectionsChangedNotifier, EventBus
from shared.events.models import ChatMessage, SystemMessage, SystemMessageLevel, TextSegment
from shared.logging.logger import get_logger
from shared.platforms.adapter import AdapterError, ConnectionAdapter
from shared.platforms.state import (
    PLATFORM_TWITCH,
    PLATFORM_YOUTUBE,
    ConnectionState,
    normalize_platform,
    platform_display_name,
)

log = get_logger("core.orchestrator")

STATUS_TOKEN_INVALID = "Token invalid/expired. Please reconnect."
STATUS_LOGGED_OUT = "Logged out."
STATUS_MANUAL = "Manual connection required."
STATUS_AUTO_DISABLED = "Auto-connect disabled."


class AccountConnectionOrchestrator:
    """
    Reconciles configured accounts against live adapter connections.

    Responsibilities:
    - Startup connect of auto-connect accounts
    - Diff-based reconciliation on settings changes
    - Operator send path (commands go through the gate, never the adapter)
    - Bounded shutdown
    """

    def __init__(
        self,
        *,
        twitch: ConnectionAdapter,
        youtube: ConnectionAdapter,
        streamlabs: StreamlabsConnectionAdapter,
        credentials: CredentialProvider,
        bus: EventBus,
        badge_cache: Any = None,
        gate: Any = None,
        notifier: Optional[ConnectionsChangedNotifier] = None,
    ):
        self.twitch = twitch
        self.youtube = youtube
        self.streamlabs = streamlabs
        self.credentials = credentials
        self.bus = bus
        self.badge_cache = badge_cache
        self.gate = gate
        self.notifier = notifier

        self.settings = ConnectionSettings()
        self._adapters: Dict[str, ConnectionAdapter] = {
            "twitch": twitch,
            "youtube": youtube,
        }
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._background: Set[asyncio.Task] = set()

        if gate is not None:
            gate.register_platform_sender(PLATFORM_TWITCH, twitch.send_message)
            gate.register_platform_sender(PLATFORM_YOUTUBE, youtube.send_message)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _lock_for(self, platform: str, account_id: str) -> asyncio.Lock:
        key = (platform, account_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _adapter_for(self, platform: str) -> ConnectionAdapter:
        key = normalize_platform(platform)
        adapter = self._adapters.get(key)
        if adapter is None:
            raise AdapterError(f"Platform {platform} does not support account operations")
        return adapter

    def _notify(self) -> None:
        if self.notifier is not None:
            self.notifier.notify()

    def _spawn(self, coro: Awaitable[Any], name: str) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception():
                log.warning(f"Background task '{name}' failed: {t.exception()}")

        task.add_done_callback(_done)

    async def _run_all(self, ops: List[Awaitable[Any]], action: str) -> None:
        if not ops:
            return
        results = await asyncio.gather(*ops, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                log.error(f"{action} step failed: {result}")

    # ------------------------------------------------------------------ #
    # Startup
    # ------------------------------------------------------------------ #

    async def start(self, settings: ConnectionSettings) -> None:
        self.settings = settings
        self._apply_credentials(settings)

        if self.badge_cache is not None:
            self._spawn(self.badge_cache.load_global_twitch_badges(), "global badges")

        ops: List[Awaitable[Any]] = []
        for account in settings.all_accounts():
            if account.auto_connect:
                ops.append(self.connect_account(account))
            else:
                self._adapter_for(account.platform).set_status(
                    account.account_id, ConnectionState.DISCONNECTED, STATUS_AUTO_DISABLED
                )

        if settings.streamlabs_enabled:
            ops.append(self._connect_streamlabs())

        log.info(
            f"Starting connections: {len(ops)} auto-connect target(s), "
            f"{len(settings.all_accounts())} configured account(s)"
        )
        await self._run_all(ops, "Startup")
        self._notify()

    def _apply_credentials(self, settings: ConnectionSettings) -> None:
        api_key = settings.credentials.youtube_api_key
        if hasattr(self.youtube, "api_key"):
            self.youtube.api_key = api_key

    # ------------------------------------------------------------------ #
    # Reconciliation
    # ------------------------------------------------------------------ #

    async def apply_settings(self, new_settings: ConnectionSettings) -> None:
        old = self.settings
        self.settings = new_settings
        self._apply_credentials(new_settings)

        ops: List[Awaitable[Any]] = []
        for platform in ("twitch", "youtube"):
            ops.extend(self._reconcile_platform(platform, old, new_settings))
        ops.append(self._reconcile_streamlabs(old, new_settings))

        await self._run_all(ops, "Reconcile")
        self._notify()

    def _reconcile_platform(
        self,
        platform: str,
        old: ConnectionSettings,
        new: ConnectionSettings,
    ) -> List[Awaitable[Any]]:
        adapter = self._adapter_for(platform)
        before = old.accounts_for(platform)
        after = new.accounts_for(platform)
        credentials_changed = old.credentials_key(platform) != new.credentials_key(platform)
        ops: List[Awaitable[Any]] = []

        for account_id in before.keys() - after.keys():
            log.info(f"[{account_id}] {platform} account removed from settings")
            ops.append(self.logout_account(platform, account_id))

        for account_id, account in after.items():
            previous = before.get(account_id)
            if previous is None:
                if account.auto_connect:
                    log.info(f"[{account_id}] {platform} account added; connecting")
                    ops.append(self.connect_account(account))
                else:
                    adapter.set_status(
                        account_id, ConnectionState.DISCONNECTED, STATUS_MANUAL
                    )
                continue

            if credentials_changed or previous.connection_key() != account.connection_key():
                log.info(f"[{account_id}] {platform} account settings changed; rebuilding")
                ops.append(self._rebuild(account))

        return ops

    async def _rebuild(self, account: AccountDescriptor) -> None:
        adapter = self._adapter_for(account.platform)
        async with self._lock_for(account.platform, account.account_id):
            await adapter.disconnect(account.account_id)
            if account.auto_connect:
                await self._connect_locked(account)
            else:
                adapter.set_status(
                    account.account_id, ConnectionState.DISCONNECTED, STATUS_AUTO_DISABLED
                )

    async def _reconcile_streamlabs(
        self,
        old: ConnectionSettings,
        new: ConnectionSettings,
    ) -> None:
        enabled_changed = old.streamlabs_enabled != new.streamlabs_enabled
        token_changed = old.streamlabs_token_id != new.streamlabs_token_id

        if enabled_changed or (new.streamlabs_enabled and token_changed):
            async with self._lock_for("streamlabs", STREAMLABS_KEY):
                await self.streamlabs.disconnect()
            if new.streamlabs_enabled:
                await self._connect_streamlabs()
        elif new.streamlabs_enabled and self.streamlabs.status == ConnectionState.DISCONNECTED:
            await self._connect_streamlabs()

    # ------------------------------------------------------------------ #
    # Account operations
    # ------------------------------------------------------------------ #

    async def connect_account(self, account: AccountDescriptor) -> bool:
        async with self._lock_for(normalize_platform(account.platform), account.account_id):
            return await self._connect_locked(account)

    async def _connect_locked(self, account: AccountDescriptor) -> bool:
        platform = normalize_platform(account.platform)
        adapter = self._adapter_for(platform)

        try:
            token = await self.credentials.get_access_token(platform, account.account_id)
        except CredentialError as e:
            log.error(f"[{account.account_id}] {platform} credentials unavailable: {e}")
            adapter.set_status(account.account_id, ConnectionState.ERROR, STATUS_TOKEN_INVALID)
            return False

        if platform == "twitch":
            return await adapter.connect(
                account.account_id,
                token,
                username=account.username or account.account_id,
                display_name=account.label,
            )

        return await adapter.connect(
            account.account_id,
            token,
            override=account.override,
            debug_live_id=self.settings.debug_youtube_live_chat_id,
            display_name=account.display_name or None,
        )

    async def logout_account(self, platform: str, account_id: str) -> None:
        key = normalize_platform(platform)
        adapter = self._adapter_for(key)
        async with self._lock_for(key, account_id):
            await adapter.disconnect(account_id)
            await self.credentials.logout(key, account_id)
            adapter.set_status(account_id, ConnectionState.DISCONNECTED, STATUS_LOGGED_OUT)
        log.info(f"[{account_id}] Logged out of {key}")

    async def _connect_streamlabs(self) -> bool:
        token_id = self.settings.streamlabs_token_id or STREAMLABS_KEY
        try:
            token = await self.credentials.get_access_token("streamlabs", token_id)
        except CredentialError as e:
            log.warning(f"Streamlabs socket token unavailable: {e}")
            token = ""

        async with self._lock_for("streamlabs", STREAMLABS_KEY):
            return await self.streamlabs.connect(token)

    # ------------------------------------------------------------------ #
    # Operator send path
    # ------------------------------------------------------------------ #

    async def send_chat_message(
        self,
        platform: str,
        sender_account_id: str,
        target: Optional[str],
        text: str,
    ) -> None:
        key = normalize_platform(platform)
        adapter = self._adapter_for(key)
        display = platform_display_name(key)
        account = self.settings.accounts_for(key).get(sender_account_id)

        message = ChatMessage(
            platform=display,
            originating_account_id=sender_account_id,
            username=account.label if account else sender_account_id,
            user_id=sender_account_id,
            raw_message=text,
            segments=(TextSegment(text),),
            is_owner=True,
            channel=target,
        )

        if self.gate is not None and self.gate.is_command(text):
            log.debug(f"[{sender_account_id}] Operator command routed to gate: {text}")
            await self.gate.dispatch(message, inbound=False)
            return

        try:
            await adapter.send_message(sender_account_id, target, text)
        except Exception as e:
            log.error(f"[{sender_account_id}] Failed to send message via {display}: {e}")
            self.bus.publish(
                SystemMessage(
                    message=f"Failed to send message via {display}: {e}",
                    level=SystemMessageLevel.ERROR,
                    originating_account_id=sender_account_id,
                )
            )

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def get_account_status(self, platform: str, account_id: str) -> Tuple[ConnectionState, str]:
        key = normalize_platform(platform)
        if key == "streamlabs":
            return self.streamlabs.status, self.streamlabs.status_message
        adapter = self._adapter_for(key)
        return adapter.get_state(account_id), adapter.get_status_message(account_id)

    # ------------------------------------------------------------------ #
    # Shutdown
    # ------------------------------------------------------------------ #

    async def disconnect_all(self) -> None:
        ops: List[Awaitable[Any]] = []
        for adapter in self._adapters.values():
            ops.extend(adapter.disconnect(a) for a in adapter.account_ids())
        ops.append(self.streamlabs.disconnect())
        await self._run_all(ops, "Disconnect")
        self._notify()

    async def shutdown(self, timeout: float = 5.0) -> None:
        log.info("Orchestrator shutdown requested")
        await self._run_all(
            [
                self.twitch.shutdown(timeout),
                self.youtube.shutdown(timeout),
                self.streamlabs.shutdown(timeout),
            ],
            "Shutdown",
        )

        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._notify()
        log.info("Orchestrator shutdown complete")


__all__ = [
    "AccountConnectionOrchestrator",
    "STATUS_AUTO_DISABLED",
    "STATUS_LOGGED_OUT",
    "STATUS_MANUAL",
    "STATUS_TOKEN_INVALID",
]
