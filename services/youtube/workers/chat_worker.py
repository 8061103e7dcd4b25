import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from services.youtube.api.chat import YouTubeChatClient
from services.youtube.api.errors import is_quota_error
from shared.logging.logger import get_logger
from shared.platforms.adapter import Registration

log = get_logger("youtube.chat_worker")

ItemCallback = Callable[[Dict[str, Any]], Awaitable[None]]
ErrorCallback = Callable[[BaseException], Awaitable[None]]
StoppedCallback = Callable[[str], Awaitable[None]]


class YouTubeChatPoller:
    """
    Adapter-owned YouTube chat poller (one task per active live chat).

    Responsibilities:
    - Own the YouTubeChatClient poll task (start, stop)
    - Deliver raw chat items to registered callbacks
    - Keep polling through quota errors after a back-off
    - Stop on any other API error and report why
    """

    def __init__(
        self,
        *,
        client: YouTubeChatClient,
        quota_backoff: float = 60.0,
    ):
        self.client = client
        self.quota_backoff = quota_backoff

        self._on_item: List[ItemCallback] = []
        self._on_error: List[ErrorCallback] = []
        self._on_stopped: List[StoppedCallback] = []

        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def account_id(self) -> str:
        return self.client.account_id

    @property
    def live_chat_id(self) -> str:
        return self.client.live_chat_id

    # ------------------------------------------------------------------ #

    def _register(self, bucket: list, callback, name: str) -> Registration:
        bucket.append(callback)

        def release() -> None:
            if callback in bucket:
                bucket.remove(callback)

        return Registration(release, name=name)

    def on_item(self, callback: ItemCallback) -> Registration:
        return self._register(self._on_item, callback, "youtube.item")

    def on_error(self, callback: ErrorCallback) -> Registration:
        return self._register(self._on_error, callback, "youtube.error")

    def on_stopped(self, callback: StoppedCallback) -> Registration:
        return self._register(self._on_stopped, callback, "youtube.stopped")

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
            self.run(), name=f"youtube-chat-{self.account_id}"
        )

    async def run(self) -> None:
        log.info(f"[{self.account_id}] YouTube chat poller starting ({self.live_chat_id})")
        reason = "Live chat ended."

        while not self._stopping:
            try:
                async for item in self.client.iter_items():
                    if self._stopping:
                        return
                    for callback in list(self._on_item):
                        try:
                            await callback(item)
                        except Exception as e:
                            log.warning(f"[{self.account_id}] YouTube item handler error: {e}")
                break

            except asyncio.CancelledError:
                log.debug(f"[{self.account_id}] YouTube chat poller cancelled")
                raise
            except Exception as e:
                if self._stopping:
                    return
                await self._emit_error(e)
                if is_quota_error(e):
                    log.warning(
                        f"[{self.account_id}] YouTube quota reached while polling; "
                        f"retrying in {self.quota_backoff}s"
                    )
                    await asyncio.sleep(self.quota_backoff)
                    continue
                log.error(f"[{self.account_id}] YouTube chat poller error: {e}")
                reason = f"Polling stopped: {e}"
                break

        if not self._stopping:
            for callback in list(self._on_stopped):
                try:
                    await callback(reason)
                except Exception as e:
                    log.warning(f"[{self.account_id}] YouTube stopped handler error: {e}")

    async def _emit_error(self, exc: BaseException) -> None:
        for callback in list(self._on_error):
            try:
                await callback(exc)
            except Exception as e:
                log.warning(f"[{self.account_id}] YouTube error handler error: {e}")

    async def stop(self, timeout: float = 5.0) -> None:
        self._stopping = True
        await self.client.close()

        task = self._task
        self._task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=timeout)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
            except Exception as e:
                log.debug(f"[{self.account_id}] YouTube poller exit error ignored: {e}")

        log.info(f"[{self.account_id}] YouTube chat poller stopped")

    def abort(self) -> None:
        self._stopping = True
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
