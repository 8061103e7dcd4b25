import asyncio
from typing import Any, Callable, Optional, Set

from services.twitch.api.chat import TwitchAuthError, TwitchChatClient
from services.twitch.models.message import TwitchIrcMessage
from services.twitch.workers.chat_worker import TwitchChatWorker
from shared.events.bus import EventBus
from shared.events.models import ChatMessage, SystemMessageLevel, TextSegment
from shared.logging.logger import get_logger
from shared.normalizer import EventNormalizer
from shared.platforms.adapter import AdapterError, ConnectionAdapter, ConnectionWrapper
from shared.platforms.state import PLATFORM_TWITCH, ConnectionState

log = get_logger("twitch.adapter")


class TwitchConnectionAdapter(ConnectionAdapter):
    """
    One IRC session per Twitch account.

    Each session auto-joins the account's own channel. Remote close or a
    read failure moves the account to Error; there is no automatic retry.
    """

    platform = PLATFORM_TWITCH

    def __init__(
        self,
        *,
        bus: EventBus,
        normalizer: EventNormalizer,
        badge_cache: Any = None,
        gate: Any = None,
        on_status_changed: Optional[Callable[[], Any]] = None,
        client_factory: Callable[[str, str], TwitchChatClient] = TwitchChatClient,
    ):
        super().__init__(bus=bus, on_status_changed=on_status_changed)
        self.normalizer = normalizer
        self.badge_cache = badge_cache
        self.gate = gate
        self._client_factory = client_factory
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def connect(
        self,
        account_id: str,
        token: str,
        *,
        username: str,
        display_name: Optional[str] = None,
    ) -> bool:
        existing = self._wrappers.get(account_id)
        if existing and existing.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            log.debug(f"[{account_id}] Twitch connect ignored; already {existing.state.value}")
            return True

        wrapper = ConnectionWrapper(
            account_id=account_id,
            display_name=display_name or username,
        )
        wrapper.extras["username"] = username.lower()
        await self._insert(wrapper)

        async with wrapper.lock:
            self._set_state(wrapper, ConnectionState.CONNECTING, "Connecting...")

        client = self._client_factory(token, username)
        try:
            await client.connect()
            await client.join(username)
        except TwitchAuthError as e:
            log.error(f"[{account_id}] Twitch authentication failed: {e}")
            await self._fail(wrapper, f"Authentication failed: {e}")
            return False
        except asyncio.CancelledError:
            await client.close()
            raise
        except Exception as e:
            log.error(f"[{account_id}] Twitch connection failed: {e}")
            await client.close()
            await self._fail(wrapper, f"Connection failed: {e}")
            return False

        if not self._is_live(wrapper):
            await client.close()
            return False

        worker = TwitchChatWorker(account_id=account_id, client=client)

        async def on_message(message: TwitchIrcMessage) -> None:
            await self._handle_message(wrapper, message)

        async def on_disconnected(reason: str) -> None:
            if self._is_live(wrapper):
                await self._fail(wrapper, reason)

        async with wrapper.lock:
            wrapper.client = worker
            wrapper.register(worker.on_message(on_message))
            wrapper.register(worker.on_disconnected(on_disconnected))
            wrapper.register(worker.on_error(on_disconnected))
            worker.start()
            self._set_state(
                wrapper, ConnectionState.CONNECTED, f"Connected as {username}"
            )

        self._system(
            f"Connected Twitch account: {wrapper.display_name}",
            account_id=account_id,
        )
        self._load_channel_badges(account_id)
        return True

    def _load_channel_badges(self, account_id: str) -> None:
        if not self.badge_cache:
            return
        task = asyncio.create_task(
            self.badge_cache.load_channel_twitch_badges(account_id, account_id)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _teardown(self, wrapper: ConnectionWrapper) -> None:
        worker = wrapper.client
        if isinstance(worker, TwitchChatWorker):
            await worker.stop()

    def _force_close(self, wrapper: ConnectionWrapper) -> None:
        worker = wrapper.client
        if isinstance(worker, TwitchChatWorker):
            worker.abort()

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #

    async def _handle_message(self, wrapper: ConnectionWrapper, message: TwitchIrcMessage) -> None:
        if not self._is_live(wrapper):
            return

        if message.command == "NOTICE":
            log.info(f"[{wrapper.account_id}] Twitch NOTICE [#{message.channel}]: {message.text}")
            return

        for event in self.normalizer.normalize_twitch(message, wrapper.account_id):
            if isinstance(event, ChatMessage) and self.gate is not None:
                await self.gate.dispatch(event)
            else:
                self._publish(event)

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #

    def _require_connected(self, account_id: str) -> ConnectionWrapper:
        wrapper = self._wrappers.get(account_id)
        if wrapper is None or wrapper.state != ConnectionState.CONNECTED:
            raise AdapterError(f"Twitch account {account_id} is not connected")
        return wrapper

    async def send_message(self, account_id: str, target: str, text: str) -> None:
        if not text or not text.strip():
            log.warning(f"[{account_id}] Ignoring empty Twitch message")
            return

        wrapper = self._require_connected(account_id)
        channel = (target or wrapper.extras["username"]).lstrip("#").lower()
        worker: TwitchChatWorker = wrapper.client
        if channel not in worker.client.channels:
            raise AdapterError(f"Twitch account {account_id} has not joined #{channel}")

        await worker.send_message(channel, text)

        self._publish(
            ChatMessage(
                platform=PLATFORM_TWITCH,
                originating_account_id=account_id,
                username=wrapper.display_name,
                user_id=account_id,
                raw_message=text,
                segments=(TextSegment(text),),
                is_owner=channel == wrapper.extras["username"],
                channel=channel,
            )
        )

    async def join_channel(self, account_id: str, channel: str) -> None:
        wrapper = self._require_connected(account_id)
        await wrapper.client.client.join(channel)
        self._system(
            f"[{wrapper.display_name}] Joined Twitch channel #{channel.lstrip('#')}",
            account_id=account_id,
        )

    async def leave_channel(self, account_id: str, channel: str) -> None:
        wrapper = self._require_connected(account_id)
        if channel.lstrip("#").lower() == wrapper.extras["username"]:
            self._system(
                "Cannot leave the account's own channel.",
                SystemMessageLevel.WARNING,
                account_id,
            )
            return
        await wrapper.client.client.part(channel)


__all__ = ["TwitchConnectionAdapter"]
