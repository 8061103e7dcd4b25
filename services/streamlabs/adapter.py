import asyncio
from typing import Any, Callable, Optional

from services.streamlabs.api.socket import StreamlabsSocketClient
from shared.events.bus import EventBus
from shared.events.models import SystemMessageLevel
from shared.logging.logger import get_logger
from shared.normalizer import EventNormalizer
from shared.platforms.adapter import ConnectionAdapter, ConnectionWrapper
from shared.platforms.state import PLATFORM_STREAMLABS, ConnectionState

log = get_logger("streamlabs.adapter")

STREAMLABS_KEY = "streamlabs"

CLEAN_DISCONNECT_REASONS = {"client disconnect", "io client disconnect"}


class StreamlabsConnectionAdapter(ConnectionAdapter):
    """
    Single shared Streamlabs socket connection.

    State follows the socket: Connected on connect, Disconnected on a
    client-initiated close, Error on anything else. Connecting follows Error
    only when the transport schedules a retry; a server-initiated disconnect
    stays in Error until the next connect.
    """

    platform = PLATFORM_STREAMLABS

    def __init__(
        self,
        *,
        bus: EventBus,
        normalizer: EventNormalizer,
        on_status_changed: Optional[Callable[[], Any]] = None,
        client_factory: Callable[..., StreamlabsSocketClient] = StreamlabsSocketClient,
    ):
        super().__init__(bus=bus, on_status_changed=on_status_changed)
        self.normalizer = normalizer
        self._client_factory = client_factory

    # ------------------------------------------------------------------ #

    @property
    def status(self) -> ConnectionState:
        return self.get_state(STREAMLABS_KEY)

    @property
    def status_message(self) -> str:
        return self.get_status_message(STREAMLABS_KEY)

    async def connect(self, token: str) -> bool:
        existing = self._wrappers.get(STREAMLABS_KEY)
        if existing and existing.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            log.debug(f"Streamlabs connect ignored; already {existing.state.value}")
            return True

        if not token:
            self.set_status(STREAMLABS_KEY, ConnectionState.ERROR, "Socket token missing.")
            return False

        wrapper = ConnectionWrapper(account_id=STREAMLABS_KEY, display_name="Streamlabs")
        await self._insert(wrapper)
        async with wrapper.lock:
            self._set_state(wrapper, ConnectionState.CONNECTING, "Connecting...")

        async def on_connect() -> None:
            if not self._is_live(wrapper):
                return
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.CONNECTED, "Connected")
            self._system("Connected to Streamlabs.", account_id=STREAMLABS_KEY)

        async def on_disconnect(reason: str) -> None:
            await self._handle_disconnect(wrapper, reason)

        async def on_connect_error(message: str) -> None:
            if not self._is_live(wrapper):
                return
            log.error(f"Streamlabs connection error: {message}")
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.ERROR, f"Connection error: {message}")

        async def on_event(data: Any) -> None:
            if not self._is_live(wrapper):
                return
            self._handle_event(data)

        client = self._client_factory(token)
        wrapper.client = client
        wrapper.register(client.on_connect(on_connect))
        wrapper.register(client.on_disconnect(on_disconnect))
        wrapper.register(client.on_connect_error(on_connect_error))
        wrapper.register(client.on_event(on_event))

        try:
            await client.connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Streamlabs connect failed: {e}")
            await self._fail(wrapper, f"Connection failed: {e}")
            return False

        if self._is_live(wrapper) and wrapper.state == ConnectionState.CONNECTING and client.connected:
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.CONNECTED, "Connected")
        return self._is_live(wrapper)

    async def _handle_disconnect(self, wrapper: ConnectionWrapper, reason: str) -> None:
        if not self._is_live(wrapper):
            return

        if reason in CLEAN_DISCONNECT_REASONS:
            log.info(f"Streamlabs disconnected ({reason})")
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.DISCONNECTED, "Disconnected.")
            return

        log.warning(f"Disconnected from Streamlabs. Reason: {reason}")
        async with wrapper.lock:
            self._set_state(wrapper, ConnectionState.ERROR, f"Disconnected: {reason}")
        self._system(
            f"Streamlabs disconnected: {reason}",
            SystemMessageLevel.WARNING,
            STREAMLABS_KEY,
        )

        client = wrapper.client
        if client is not None and client.will_retry(reason):
            async with wrapper.lock:
                self._set_state(wrapper, ConnectionState.CONNECTING, "Reconnecting...")

    def _handle_event(self, data: Any) -> None:
        if not isinstance(data, dict):
            log.warning(f"Streamlabs event payload was not an object ({type(data).__name__})")
            return

        events = self.normalizer.normalize_streamlabs(data)
        for event in events:
            log.info(f"Processed Streamlabs event: {event.kind}")
            self._publish(event)

    async def _teardown(self, wrapper: ConnectionWrapper) -> None:
        # Callbacks go first so the socket's own disconnect event is not forwarded
        wrapper.release_all()
        client = wrapper.client
        if client is not None:
            await client.disconnect()

    async def disconnect(self, account_id: str = STREAMLABS_KEY) -> None:
        await super().disconnect(account_id)


__all__ = ["STREAMLABS_KEY", "StreamlabsConnectionAdapter"]
