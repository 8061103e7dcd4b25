"""
Common machinery for per-account platform connections.

Every adapter keeps at most one ConnectionWrapper per account id. The map is
mutated only under the adapter lock; a wrapper's own fields are mutated
under its lock. Teardown always removes the wrapper from the map before
closing anything, so callbacks that arrive late find no live wrapper and
are dropped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from shared.events.bus import EventBus
from shared.events.models import Event, SystemMessage, SystemMessageLevel
from shared.logging.logger import get_logger
from shared.platforms.state import ConnectionState

log = get_logger("platforms.adapter")


class AdapterError(RuntimeError):
    pass


class Registration:
    """
    Handle for a callback subscription on a worker or client.

    ``release`` is idempotent so it can sit in ``finally`` blocks freely.
    """

    def __init__(self, release: Callable[[], None], *, name: str = ""):
        self._release = release
        self.name = name
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        try:
            self._release()
        except Exception as e:
            log.debug(f"Registration release error ignored ({self.name}): {e}")


@dataclass(eq=False)
class ConnectionWrapper:
    account_id: str
    display_name: str = ""
    client: Any = None
    state: ConnectionState = ConnectionState.DISCONNECTED
    status_message: str = ""
    registrations: List[Registration] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False
    extras: Dict[str, Any] = field(default_factory=dict)

    def register(self, registration: Registration) -> Registration:
        self.registrations.append(registration)
        return registration

    def release_all(self) -> None:
        while self.registrations:
            self.registrations.pop().release()


class ConnectionAdapter:
    """
    Base class for Twitch / YouTube / Streamlabs adapters.

    Subclasses implement ``connect`` and ``_teardown``. Status is retained
    per account after the wrapper is gone so Error and Disconnected
    messages stay readable.
    """

    platform: str = ""

    def __init__(
        self,
        *,
        bus: EventBus,
        on_status_changed: Optional[Callable[[], Any]] = None,
    ):
        self.bus = bus
        self.on_status_changed = on_status_changed
        self._wrappers: Dict[str, ConnectionWrapper] = {}
        self._status: Dict[str, Tuple[ConnectionState, str]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def get_state(self, account_id: str) -> ConnectionState:
        return self._status.get(account_id, (ConnectionState.DISCONNECTED, ""))[0]

    def get_status_message(self, account_id: str) -> str:
        return self._status.get(account_id, (ConnectionState.DISCONNECTED, ""))[1]

    def account_ids(self) -> List[str]:
        return list(self._wrappers.keys())

    def get_wrapper(self, account_id: str) -> Optional[ConnectionWrapper]:
        return self._wrappers.get(account_id)

    def set_status(self, account_id: str, state: ConnectionState, message: str) -> None:
        """Record a status for an account regardless of wrapper presence."""
        previous = self._status.get(account_id)
        self._status[account_id] = (state, message)
        if previous != (state, message):
            log.info(f"[{account_id}] {self.platform} status -> {state.value}: {message}")
            self._notify()

    def _set_state(
        self,
        wrapper: ConnectionWrapper,
        state: ConnectionState,
        message: str,
    ) -> None:
        wrapper.state = state
        wrapper.status_message = message
        if wrapper.closed:
            return
        self.set_status(wrapper.account_id, state, message)

    def _notify(self) -> None:
        if not self.on_status_changed:
            return
        try:
            self.on_status_changed()
        except Exception as e:
            log.warning(f"Status listener error ignored: {e}")

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #

    def _publish(self, event: Event) -> None:
        self.bus.publish(event)

    def _system(
        self,
        message: str,
        level: SystemMessageLevel = SystemMessageLevel.INFO,
        account_id: Optional[str] = None,
    ) -> None:
        self._publish(
            SystemMessage(
                message=message,
                level=level,
                originating_account_id=account_id,
            )
        )

    def _is_live(self, wrapper: ConnectionWrapper) -> bool:
        if wrapper.closed or self._wrappers.get(wrapper.account_id) is not wrapper:
            log.debug(
                f"[{wrapper.account_id}] Ignoring callback for a removed "
                f"{self.platform} connection"
            )
            return False
        return True

    # ------------------------------------------------------------------ #
    # Wrapper map
    # ------------------------------------------------------------------ #

    async def _insert(self, wrapper: ConnectionWrapper) -> None:
        """Install ``wrapper``, tearing down any previous one for the account."""
        async with self._lock:
            previous = self._wrappers.pop(wrapper.account_id, None)
        if previous is not None:
            log.info(f"[{wrapper.account_id}] Replacing existing {self.platform} connection")
            await self._close_wrapper(previous)
        async with self._lock:
            self._wrappers[wrapper.account_id] = wrapper

    async def _remove(self, account_id: str) -> Optional[ConnectionWrapper]:
        async with self._lock:
            return self._wrappers.pop(account_id, None)

    async def _close_wrapper(self, wrapper: ConnectionWrapper) -> None:
        wrapper.closed = True
        try:
            await self._teardown(wrapper)
        except Exception as e:
            log.warning(f"[{wrapper.account_id}] {self.platform} teardown error: {e}")
        finally:
            wrapper.release_all()

    async def _fail(self, wrapper: ConnectionWrapper, message: str) -> None:
        """Drop a live wrapper after a runtime failure and report Error."""
        async with self._lock:
            if self._wrappers.get(wrapper.account_id) is not wrapper:
                log.debug(f"[{wrapper.account_id}] Failure on a removed connection ignored")
                return
            del self._wrappers[wrapper.account_id]

        self.set_status(wrapper.account_id, ConnectionState.ERROR, message)
        self._system(
            f"{self.platform} connection error ({wrapper.display_name or wrapper.account_id}): {message}",
            SystemMessageLevel.ERROR,
            wrapper.account_id,
        )
        await self._close_wrapper(wrapper)

    async def _teardown(self, wrapper: ConnectionWrapper) -> None:
        raise NotImplementedError

    def _force_close(self, wrapper: ConnectionWrapper) -> None:
        """Last-resort synchronous cleanup after a shutdown timeout."""

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def disconnect(self, account_id: str) -> None:
        wrapper = await self._remove(account_id)
        if wrapper is None:
            log.debug(f"[{account_id}] {self.platform} disconnect ignored; not connected")
            return

        log.info(f"[{account_id}] Disconnecting {self.platform} account")
        await self._close_wrapper(wrapper)

        self.set_status(account_id, ConnectionState.DISCONNECTED, "Disconnected.")
        self._system(
            f"Disconnected {self.platform} account: {wrapper.display_name or account_id}",
            account_id=account_id,
        )

    async def shutdown(self, timeout: float = 5.0) -> None:
        wrappers = list(self._wrappers.values())
        if not wrappers:
            return

        log.info(f"Shutting down {len(wrappers)} {self.platform} connection(s)")
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    *(self.disconnect(w.account_id) for w in wrappers),
                    return_exceptions=True,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            log.warning(
                f"{self.platform} shutdown exceeded {timeout}s; forcing teardown"
            )

        # Disconnect pops before teardown, so stragglers are found via the snapshot
        for wrapper in wrappers:
            if self._wrappers.get(wrapper.account_id) is wrapper:
                del self._wrappers[wrapper.account_id]
            elif not self.get_state(wrapper.account_id).is_active:
                continue
            wrapper.closed = True
            wrapper.release_all()
            self._force_close(wrapper)
            self.set_status(wrapper.account_id, ConnectionState.DISCONNECTED, "Disconnected.")


__all__ = [
    "AdapterError",
    "ConnectionAdapter",
    "ConnectionWrapper",
    "Registration",
]
