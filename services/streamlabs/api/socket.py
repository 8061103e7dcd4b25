from typing import Any, Awaitable, Callable, List, Optional

import socketio

from shared.logging.logger import get_logger
from shared.platforms.adapter import Registration

log = get_logger("streamlabs.socket")

EventCallback = Callable[[Any], Awaitable[None]]
ReasonCallback = Callable[[str], Awaitable[None]]
NoArgCallback = Callable[[], Awaitable[None]]

# Disconnect reasons python-socketio never follows with a reconnect attempt
CLIENT_DISCONNECT = "client disconnect"
SERVER_DISCONNECT = "server disconnect"
FINAL_REASONS = {CLIENT_DISCONNECT, "io client disconnect", SERVER_DISCONNECT}


class StreamlabsSocketClient:
    """
    Thin wrapper over the python-socketio asyncio client for the Streamlabs
    socket API. The transport handles reconnection; this class only forwards
    lifecycle and ``event`` messages to registered callbacks.
    """

    URL = "https://sockets.streamlabs.com"

    def __init__(
        self,
        token: str,
        *,
        reconnection: bool = True,
        sio: Optional[socketio.AsyncClient] = None,
    ):
        if not token:
            raise RuntimeError("Streamlabs socket token is required")

        self.token = token
        self.reconnection = reconnection

        self._on_connect: List[NoArgCallback] = []
        self._on_disconnect: List[ReasonCallback] = []
        self._on_connect_error: List[ReasonCallback] = []
        self._on_event: List[EventCallback] = []

        self.sio = sio or socketio.AsyncClient(
            reconnection=reconnection,
            reconnection_delay=1,
            reconnection_delay_max=30,
            logger=False,
            engineio_logger=False,
        )
        self.sio.on("connect", self._handle_connect)
        self.sio.on("disconnect", self._handle_disconnect)
        self.sio.on("connect_error", self._handle_connect_error)
        self.sio.on("event", self._handle_event)

    # ------------------------------------------------------------------ #
    # Callback registration
    # ------------------------------------------------------------------ #

    def _register(self, bucket: list, callback, name: str) -> Registration:
        bucket.append(callback)

        def release() -> None:
            if callback in bucket:
                bucket.remove(callback)

        return Registration(release, name=name)

    def on_connect(self, callback: NoArgCallback) -> Registration:
        return self._register(self._on_connect, callback, "streamlabs.connect")

    def on_disconnect(self, callback: ReasonCallback) -> Registration:
        return self._register(self._on_disconnect, callback, "streamlabs.disconnect")

    def on_connect_error(self, callback: ReasonCallback) -> Registration:
        return self._register(self._on_connect_error, callback, "streamlabs.connect_error")

    def on_event(self, callback: EventCallback) -> Registration:
        return self._register(self._on_event, callback, "streamlabs.event")

    # ------------------------------------------------------------------ #

    @property
    def connected(self) -> bool:
        return bool(self.sio.connected)

    def will_retry(self, reason: str) -> bool:
        """True when the transport schedules a reconnect after ``reason``."""
        return self.reconnection and reason not in FINAL_REASONS

    async def connect(self) -> None:
        log.info("Connecting to Streamlabs socket API")
        await self.sio.connect(
            f"{self.URL}?token={self.token}",
            transports=["websocket"],
        )

    async def disconnect(self) -> None:
        try:
            await self.sio.disconnect()
        except Exception as e:
            log.debug(f"Streamlabs socket disconnect error ignored: {e}")

    # ------------------------------------------------------------------ #
    # socketio handlers
    # ------------------------------------------------------------------ #

    async def _emit(self, bucket: list, *args: Any) -> None:
        for callback in list(bucket):
            try:
                await callback(*args)
            except Exception as e:
                log.warning(f"Streamlabs socket callback error: {e}")

    async def _handle_connect(self) -> None:
        await self._emit(self._on_connect)

    async def _handle_disconnect(self, reason: Any = None) -> None:
        # python-socketio passes a reason on recent releases only
        text = str(getattr(reason, "value", reason) or "transport close")
        await self._emit(self._on_disconnect, text)

    async def _handle_connect_error(self, data: Any = None) -> None:
        message = data.get("message") if isinstance(data, dict) else data
        await self._emit(self._on_connect_error, str(message or "connection refused"))

    async def _handle_event(self, data: Any = None) -> None:
        await self._emit(self._on_event, data)


__all__ = ["StreamlabsSocketClient"]
