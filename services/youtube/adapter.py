import asyncio
import re
from collections import deque
from typing import Any, Callable, Dict, List, Optional

from services.youtube.api.chat import YouTubeChatClient
from services.youtube.api.errors import is_quota_error
from services.youtube.api.livestream import YouTubeLiveApi
from services.youtube.workers.chat_worker import YouTubeChatPoller
from shared.events.bus import EventBus
from shared.events.models import (
    ChatMessage,
    PollOption,
    PollUpdate,
    SystemMessageLevel,
    TextSegment,
)
from shared.logging.logger import get_logger
from shared.normalizer import EventNormalizer
from shared.platforms.adapter import AdapterError, ConnectionAdapter, ConnectionWrapper
from shared.platforms.state import PLATFORM_YOUTUBE, ConnectionState
from shared.runtime.quotas import QuotaRegistry

log = get_logger("youtube.adapter")

STATUS_QUOTA = "Read-Only (API Quota Reached)"
STATUS_MANUAL_ID = "Read-Only (Manual Live ID Needed)"
STATUS_NO_STREAM = "Ready (No Stream Active)"
STATUS_MONITORING_STOPPED = "Read-Only (Monitoring Stopped)"

ACTIVE_STATES = (ConnectionState.CONNECTED, ConnectionState.LIMITED)

# Watch-page video ids; live chat ids are longer opaque tokens
VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")


class YouTubeConnectionAdapter(ConnectionAdapter):
    """
    Per-account YouTube Data API session plus an optional chat poller.

    Quota errors from any call demote the account to Limited (read-only).
    A running poller keeps going while Limited; writes and API lookups are
    refused until a fresh connect.
    """

    platform = PLATFORM_YOUTUBE

    def __init__(
        self,
        *,
        bus: EventBus,
        normalizer: EventNormalizer,
        gate: Any = None,
        quotas: Optional[QuotaRegistry] = None,
        api_key: Optional[str] = None,
        on_status_changed: Optional[Callable[[], Any]] = None,
        api_factory: Callable[..., YouTubeLiveApi] = YouTubeLiveApi,
        poll_interval: float = 2.5,
    ):
        super().__init__(bus=bus, on_status_changed=on_status_changed)
        self.normalizer = normalizer
        self.gate = gate
        self.quotas = quotas or QuotaRegistry()
        self.api_key = api_key
        self.poll_interval = poll_interval
        self._api_factory = api_factory

    # ------------------------------------------------------------------ #
    # Connect / disconnect
    # ------------------------------------------------------------------ #

    async def connect(
        self,
        account_id: str,
        token: str,
        *,
        override: Optional[str] = None,
        debug_live_id: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> bool:
        existing = self._wrappers.get(account_id)
        if existing and existing.state in (*ACTIVE_STATES, ConnectionState.CONNECTING):
            log.info(f"[{account_id}] Connect requested but already {existing.state.value}")
            return existing.state in ACTIVE_STATES

        wrapper = ConnectionWrapper(account_id=account_id, display_name=display_name or account_id)
        await self._insert(wrapper)

        async with wrapper.lock:
            self._set_state(wrapper, ConnectionState.CONNECTING, "Initializing API...")

        api = self._api_factory(
            account_id=account_id,
            access_token=token,
            quota=self.quotas.tracker_for(account_id=account_id, platform="youtube"),
            api_key=self.api_key,
        )
        wrapper.client = api

        try:
            channel = await api.verify()
            wrapper.extras["channel_id"] = channel.get("id")
            title = (channel.get("snippet") or {}).get("title")
            if title and not display_name:
                wrapper.display_name = title
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.CONNECTED, STATUS_NO_STREAM)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not is_quota_error(e):
                log.error(f"[{account_id}] YouTube API init failed: {e}")
                await self._fail(wrapper, f"API Init Failed: {e}")
                return False
            log.warning(f"[{account_id}] Quota error during API init; entering read-only mode")
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.LIMITED, STATUS_QUOTA)

        if not self._is_live(wrapper):
            return False

        self._system(
            f"Connected YouTube account: {wrapper.display_name}",
            account_id=account_id,
        )

        video_id = override or debug_live_id
        if video_id:
            source = "account override" if override else "debug override"
            log.info(f"[{account_id}] Using live id {video_id} from {source}")
        elif wrapper.state == ConnectionState.LIMITED:
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.LIMITED, STATUS_MANUAL_ID)
            return True
        else:
            video_id = await self.find_active_video_id(account_id)

        if video_id:
            await self.start_polling(account_id, video_id)
        elif wrapper.state == ConnectionState.CONNECTED:
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.CONNECTED, STATUS_NO_STREAM)

        return self._is_live(wrapper)

    async def _teardown(self, wrapper: ConnectionWrapper) -> None:
        poller = wrapper.extras.pop("poller", None)
        if poller is not None:
            await poller.stop()

    def _force_close(self, wrapper: ConnectionWrapper) -> None:
        poller = wrapper.extras.pop("poller", None)
        if poller is not None:
            poller.abort()

    # ------------------------------------------------------------------ #
    # Quota handling
    # ------------------------------------------------------------------ #

    def _demote(self, wrapper: ConnectionWrapper, action: str) -> None:
        if not self._is_live(wrapper):
            return
        if wrapper.state != ConnectionState.LIMITED:
            log.warning(f"[{wrapper.account_id}] Quota error during {action}; entering read-only mode")
            self._system(
                f"YouTube API quota reached for {wrapper.display_name}; chat is read-only.",
                SystemMessageLevel.WARNING,
                wrapper.account_id,
            )
        message = STATUS_QUOTA
        if wrapper.extras.get("poller") is not None:
            message = f"Read-Only Monitoring: {wrapper.extras.get('video_id')}"
        self._set_state(wrapper, ConnectionState.LIMITED, message)

    def _live_wrapper(self, account_id: str, action: str) -> Optional[ConnectionWrapper]:
        wrapper = self._wrappers.get(account_id)
        if wrapper is None:
            log.warning(f"[{account_id}] Cannot {action}; client wrapper not found")
            return None
        if wrapper.state == ConnectionState.LIMITED:
            log.warning(f"[{account_id}] Cannot {action}; account is read-only (quota)")
            return None
        if wrapper.state != ConnectionState.CONNECTED:
            log.warning(f"[{account_id}] Cannot {action}; not connected ({wrapper.state.value})")
            return None
        return wrapper

    # ------------------------------------------------------------------ #
    # Live id resolution
    # ------------------------------------------------------------------ #

    async def find_active_video_id(self, account_id: str) -> Optional[str]:
        wrapper = self._live_wrapper(account_id, "find active stream")
        if wrapper is None:
            return None

        api: YouTubeLiveApi = wrapper.client
        try:
            video_id = await api.find_active_video_id()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if is_quota_error(e):
                self._demote(wrapper, "active stream lookup")
                return None
            log.error(f"[{account_id}] Error finding active broadcast: {e}")
            self._system(
                f"YouTube stream lookup failed for {wrapper.display_name}: {e}",
                SystemMessageLevel.WARNING,
                account_id,
            )
            return None

        if video_id:
            log.info(f"[{account_id}] Found active broadcast {video_id}")
        else:
            log.info(f"[{account_id}] No active broadcast found")
        return video_id

    async def lookup_live_chat_id(self, account_id: str, video_id: str) -> Optional[str]:
        wrapper = self._live_wrapper(account_id, "look up live chat id")
        if wrapper is None:
            return None

        api: YouTubeLiveApi = wrapper.client
        try:
            return await api.get_live_chat_id(video_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if is_quota_error(e):
                self._demote(wrapper, "live chat id lookup")
            else:
                log.error(f"[{account_id}] Error looking up live chat id for {video_id}: {e}")
            return None

    def get_active_video_id(self, account_id: str) -> Optional[str]:
        wrapper = self._wrappers.get(account_id)
        return wrapper.extras.get("video_id") if wrapper else None

    def get_live_chat_id(self, account_id: str) -> Optional[str]:
        wrapper = self._wrappers.get(account_id)
        return wrapper.extras.get("live_chat_id") if wrapper else None

    # ------------------------------------------------------------------ #
    # Polling
    # ------------------------------------------------------------------ #

    async def start_polling(self, account_id: str, video_id: str) -> bool:
        wrapper = self._wrappers.get(account_id)
        if wrapper is None or wrapper.state not in ACTIVE_STATES:
            log.warning(f"[{account_id}] Cannot start monitoring; not connected")
            return False
        if not video_id or not video_id.strip():
            log.error(f"[{account_id}] Cannot start monitoring; empty video id")
            return False

        current = wrapper.extras.get("poller")
        if current is not None and current.running and wrapper.extras.get("video_id") == video_id:
            log.info(f"[{account_id}] Already monitoring {video_id}")
            return True
        if current is not None:
            await self.stop_polling(account_id)

        if wrapper.state == ConnectionState.LIMITED:
            live_chat_id = self._read_only_chat_id(account_id, video_id)
        else:
            live_chat_id = await self.lookup_live_chat_id(account_id, video_id)
            if not live_chat_id and wrapper.state == ConnectionState.LIMITED:
                live_chat_id = self._read_only_chat_id(account_id, video_id)

        if not self._is_live(wrapper):
            return False
        if not live_chat_id and wrapper.state == ConnectionState.LIMITED:
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.LIMITED, STATUS_MANUAL_ID)
            return False
        if not live_chat_id:
            log.warning(f"[{account_id}] No live chat found for video {video_id}")
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.CONNECTED, STATUS_NO_STREAM)
            return False

        poller = YouTubeChatPoller(
            client=YouTubeChatClient(
                api=wrapper.client,
                live_chat_id=live_chat_id,
                poll_interval=self.poll_interval,
            )
        )
        registrations = self._register_poller(wrapper, poller)

        async with wrapper.lock:
            wrapper.extras.update(
                poller=poller,
                poller_registrations=registrations,
                video_id=video_id,
                live_chat_id=live_chat_id,
            )
            poller.start()
            if wrapper.state == ConnectionState.LIMITED:
                self._set_state(wrapper, ConnectionState.LIMITED, f"Read-Only Monitoring: {video_id}")
            else:
                self._set_state(wrapper, ConnectionState.CONNECTED, f"Monitoring chat: {video_id}")

        self._system(
            f"Started monitoring YouTube chat for Video ID: {video_id}",
            account_id=account_id,
        )
        return True

    def _read_only_chat_id(self, account_id: str, given_id: str) -> Optional[str]:
        """Lookups are refused while read-only; only a live chat id can be used as given."""
        if VIDEO_ID_PATTERN.match(given_id):
            log.warning(
                f"[{account_id}] {given_id} looks like a video id; "
                f"a live chat id is needed while read-only"
            )
            return None
        return given_id

    def _register_poller(self, wrapper: ConnectionWrapper, poller: YouTubeChatPoller) -> List[Any]:
        async def on_item(item: Dict[str, Any]) -> None:
            await self._handle_item(wrapper, poller, item)

        async def on_error(exc: BaseException) -> None:
            if not self._is_live(wrapper) or wrapper.extras.get("poller") is not poller:
                return
            if is_quota_error(exc):
                self._demote(wrapper, "chat polling")
            else:
                log.error(f"[{wrapper.account_id}] YouTube polling error: {exc}")

        async def on_stopped(reason: str) -> None:
            await self._handle_poller_stopped(wrapper, poller, reason)

        return [
            wrapper.register(poller.on_item(on_item)),
            wrapper.register(poller.on_error(on_error)),
            wrapper.register(poller.on_stopped(on_stopped)),
        ]

    async def stop_polling(self, account_id: str) -> None:
        wrapper = self._wrappers.get(account_id)
        if wrapper is None:
            log.warning(f"[{account_id}] Cannot stop monitoring; client wrapper not found")
            return

        poller = wrapper.extras.pop("poller", None)
        if poller is None:
            log.debug(f"[{account_id}] Chat monitoring not active; stop ignored")
            return

        log.info(f"[{account_id}] Stopping chat monitoring for {wrapper.extras.get('video_id')}")
        try:
            await poller.stop()
        finally:
            for registration in wrapper.extras.pop("poller_registrations", []):
                registration.release()
            wrapper.extras.pop("video_id", None)
            wrapper.extras.pop("live_chat_id", None)
            if self._is_live(wrapper):
                async with wrapper.lock:
                    self._settle_idle(wrapper)

    def _settle_idle(self, wrapper: ConnectionWrapper) -> None:
        if wrapper.state == ConnectionState.LIMITED:
            self._set_state(wrapper, ConnectionState.LIMITED, STATUS_MONITORING_STOPPED)
        else:
            self._set_state(wrapper, ConnectionState.CONNECTED, STATUS_NO_STREAM)

    async def _handle_poller_stopped(
        self, wrapper: ConnectionWrapper, poller: YouTubeChatPoller, reason: str
    ) -> None:
        if not self._is_live(wrapper) or wrapper.extras.get("poller") is not poller:
            return

        log.info(f"[{wrapper.account_id}] YouTube chat monitoring stopped: {reason}")
        wrapper.extras.pop("poller", None)
        for registration in wrapper.extras.pop("poller_registrations", []):
            registration.release()
        video_id = wrapper.extras.pop("video_id", None)
        wrapper.extras.pop("live_chat_id", None)

        async with wrapper.lock:
            self._settle_idle(wrapper)
        self._system(
            f"Stopped monitoring YouTube chat for Video ID: {video_id} ({reason})",
            SystemMessageLevel.WARNING,
            wrapper.account_id,
        )

    async def _handle_item(
        self, wrapper: ConnectionWrapper, poller: YouTubeChatPoller, item: Dict[str, Any]
    ) -> None:
        if not self._is_live(wrapper) or wrapper.extras.get("poller") is not poller:
            return

        if self._is_own_echo(wrapper, item):
            return

        for event in self.normalizer.normalize_youtube(item, wrapper.account_id):
            if isinstance(event, ChatMessage) and self.gate is not None:
                await self.gate.dispatch(event)
            else:
                self._publish(event)

    @staticmethod
    def _is_own_echo(wrapper: ConnectionWrapper, item: Dict[str, Any]) -> bool:
        pending = wrapper.extras.get("pending_echo")
        if not pending:
            return False
        author = (item.get("authorDetails") or {}).get("channelId")
        if not author or author != wrapper.extras.get("channel_id"):
            return False
        text = ((item.get("snippet") or {}).get("textMessageDetails") or {}).get("messageText")
        if text in pending:
            pending.remove(text)
            return True
        return False

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def _write(self, account_id: str, action: str, call) -> Any:
        wrapper = self._live_wrapper(account_id, action)
        if wrapper is None:
            return None

        log.info(f"[{account_id}] Attempting {action}")
        try:
            return await call(wrapper, wrapper.client)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if is_quota_error(e):
                self._demote(wrapper, action)
            else:
                log.error(f"[{account_id}] {action} failed: {e}")
                self._system(
                    f"YouTube {action} failed: {e}",
                    SystemMessageLevel.ERROR,
                    account_id,
                )
            return None

    async def send_message(self, account_id: str, target: Optional[str], text: str) -> None:
        if not text or not text.strip():
            log.warning(f"[{account_id}] Ignoring empty YouTube message")
            return

        wrapper = self._wrappers.get(account_id)
        if wrapper is None or wrapper.state != ConnectionState.CONNECTED:
            state = wrapper.state.value if wrapper else "disconnected"
            raise AdapterError(f"YouTube account {account_id} cannot send ({state})")

        live_chat_id = target or wrapper.extras.get("live_chat_id")
        if not live_chat_id:
            raise AdapterError(f"YouTube account {account_id} has no active live chat")

        api: YouTubeLiveApi = wrapper.client
        try:
            await api.send_message(live_chat_id, text)
        except Exception as e:
            if is_quota_error(e):
                self._demote(wrapper, "send message")
            raise

        wrapper.extras.setdefault("pending_echo", deque(maxlen=50)).append(text)
        self._publish(
            ChatMessage(
                platform=PLATFORM_YOUTUBE,
                originating_account_id=account_id,
                username=wrapper.display_name,
                user_id=wrapper.extras.get("channel_id"),
                raw_message=text,
                segments=(TextSegment(text),),
                is_owner=True,
                channel=live_chat_id,
            )
        )

    async def delete_message(self, account_id: str, message_id: str) -> bool:
        async def call(wrapper, api: YouTubeLiveApi):
            await api.delete_message(message_id)
            return True

        return bool(await self._write(account_id, "delete message", call))

    async def timeout_user(self, account_id: str, user_channel_id: str, duration_seconds: int) -> bool:
        async def call(wrapper, api: YouTubeLiveApi):
            live_chat_id = wrapper.extras.get("live_chat_id")
            if not live_chat_id:
                raise AdapterError("no active live chat")
            await api.timeout_user(live_chat_id, user_channel_id, duration_seconds)
            return True

        return bool(await self._write(account_id, "timeout user", call))

    async def ban_user(self, account_id: str, user_channel_id: str) -> bool:
        async def call(wrapper, api: YouTubeLiveApi):
            live_chat_id = wrapper.extras.get("live_chat_id")
            if not live_chat_id:
                raise AdapterError("no active live chat")
            await api.ban_user(live_chat_id, user_channel_id)
            return True

        return bool(await self._write(account_id, "ban user", call))

    async def create_poll(self, account_id: str, question: str, options: List[str]) -> Optional[str]:
        async def call(wrapper, api: YouTubeLiveApi):
            live_chat_id = wrapper.extras.get("live_chat_id")
            if not live_chat_id:
                raise AdapterError("no active live chat")
            response = await api.create_poll(live_chat_id, question, options)
            poll_id = response.get("id")
            self._publish(
                PollUpdate(
                    platform=PLATFORM_YOUTUBE,
                    originating_account_id=account_id,
                    poll_id=poll_id or "",
                    question=question,
                    options=tuple(PollOption(text=o) for o in options),
                    is_active=True,
                )
            )
            return poll_id

        return await self._write(account_id, "create poll", call)

    async def end_poll(self, account_id: str, poll_id: str) -> bool:
        async def call(wrapper, api: YouTubeLiveApi):
            await api.end_poll(poll_id)
            self._publish(
                PollUpdate(
                    platform=PLATFORM_YOUTUBE,
                    originating_account_id=account_id,
                    poll_id=poll_id,
                    is_active=False,
                )
            )
            return True

        return bool(await self._write(account_id, "end poll", call))


__all__ = ["YouTubeConnectionAdapter"]
