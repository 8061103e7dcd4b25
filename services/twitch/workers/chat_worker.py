import asyncio
from typing import Awaitable, Callable, List, Optional

from services.twitch.api.chat import TwitchChatClient
from services.twitch.models.message import TwitchIrcMessage
from shared.logging.logger import get_logger
from shared.platforms.adapter import Registration

log = get_logger("twitch.chat_worker")

MessageCallback = Callable[[TwitchIrcMessage], Awaitable[None]]
ReasonCallback = Callable[[str], Awaitable[None]]


class TwitchChatWorker:
    """
    Adapter-owned Twitch read loop for one account session.

    Responsibilities:
    - Own the read task over a connected TwitchChatClient
    - Deliver lines to registered callbacks
    - Report remote close / read failure exactly once
    - Remain cancellation-safe; no callbacks fire once stop() begins
    """

    def __init__(self, *, account_id: str, client: TwitchChatClient):
        self.account_id = account_id
        self.client = client

        self._on_message: List[MessageCallback] = []
        self._on_disconnected: List[ReasonCallback] = []
        self._on_error: List[ReasonCallback] = []

        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    # ------------------------------------------------------------------ #
    # Callback registration
    # ------------------------------------------------------------------ #

    def _register(self, bucket: list, callback, name: str) -> Registration:
        bucket.append(callback)

        def release() -> None:
            if callback in bucket:
                bucket.remove(callback)

        return Registration(release, name=name)

    def on_message(self, callback: MessageCallback) -> Registration:
        return self._register(self._on_message, callback, "twitch.message")

    def on_disconnected(self, callback: ReasonCallback) -> Registration:
        return self._register(self._on_disconnected, callback, "twitch.disconnected")

    def on_error(self, callback: ReasonCallback) -> Registration:
        return self._register(self._on_error, callback, "twitch.error")

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(
            self.run(), name=f"twitch-chat-{self.account_id}"
        )

    async def run(self) -> None:
        log.info(f"[{self.account_id}] Twitch chat worker starting")
        reason = "Connection closed by Twitch."

        try:
            async for message in self.client.iter_messages():
                if self._stopping:
                    return
                if message.command == "RECONNECT":
                    reason = "Twitch requested a reconnect."
                    break
                for callback in list(self._on_message):
                    try:
                        await callback(message)
                    except Exception as e:
                        log.warning(
                            f"[{self.account_id}] Twitch message handler error: {e}"
                        )

        except asyncio.CancelledError:
            log.debug(f"[{self.account_id}] Twitch chat worker cancelled")
            raise
        except Exception as e:
            log.error(f"[{self.account_id}] Twitch chat worker error: {e}")
            if not self._stopping:
                await self._emit(self._on_error, str(e) or type(e).__name__)
            return

        if not self._stopping:
            await self._emit(self._on_disconnected, reason)

    async def _emit(self, bucket: list, reason: str) -> None:
        for callback in list(bucket):
            try:
                await callback(reason)
            except Exception as e:
                log.warning(f"[{self.account_id}] Twitch worker callback error: {e}")

    async def stop(self, timeout: float = 5.0) -> None:
        self._stopping = True
        task = self._task
        self._task = None

        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=timeout)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
            except Exception as e:
                log.debug(f"[{self.account_id}] Twitch worker exit error ignored: {e}")

        await self.client.close()
        log.info(f"[{self.account_id}] Twitch chat worker stopped")

    def abort(self) -> None:
        self._stopping = True
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        self.client.abort()

    # ------------------------------------------------------------------ #

    async def send_message(self, channel: str, text: str) -> None:
        await self.client.send_message(channel, text)
