"""Shared fixtures: event sink, fake clock and in-memory adapters."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

import pytest

from shared.auth.tokens import EnvCredentialProvider
from shared.events.bus import EventBus
from shared.platforms.state import ConnectionState


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeAdapter:
    """Records every call the orchestrator makes against an account adapter."""

    def __init__(self, platform: str):
        self.platform = platform
        self.api_key = None
        self.calls: List[Tuple] = []
        self.states: Dict[str, Tuple[ConnectionState, str]] = {}
        self.connect_result = True
        self.send_error: Exception = None
        # account_id -> event a pending connect waits on
        self.connect_gates: Dict[str, asyncio.Event] = {}

    def named(self, name: str) -> List[Tuple]:
        return [c for c in self.calls if c[0] == name]

    async def connect(self, account_id: str, token: str, **kwargs: Any) -> bool:
        self.calls.append(("connect", account_id, token, kwargs))
        gate = self.connect_gates.get(account_id)
        if gate is not None:
            await gate.wait()
            self.calls.append(("connected", account_id))
        if self.connect_result:
            self.states[account_id] = (ConnectionState.CONNECTED, "Connected")
        else:
            self.states[account_id] = (ConnectionState.ERROR, "Connection failed")
        return self.connect_result

    async def disconnect(self, account_id: str) -> None:
        self.calls.append(("disconnect", account_id))
        state, _ = self.states.get(account_id, (ConnectionState.DISCONNECTED, ""))
        if state.is_active:
            self.states[account_id] = (ConnectionState.DISCONNECTED, "Disconnected.")

    async def send_message(self, account_id: str, target: Any, text: str) -> None:
        self.calls.append(("send_message", account_id, target, text))
        if self.send_error:
            raise self.send_error

    async def shutdown(self, timeout: float = 5.0) -> None:
        self.calls.append(("shutdown", timeout))

    def set_status(self, account_id: str, state: ConnectionState, message: str) -> None:
        self.states[account_id] = (state, message)

    def get_state(self, account_id: str) -> ConnectionState:
        return self.states.get(account_id, (ConnectionState.DISCONNECTED, ""))[0]

    def get_status_message(self, account_id: str) -> str:
        return self.states.get(account_id, (ConnectionState.DISCONNECTED, ""))[1]

    def account_ids(self) -> List[str]:
        return [a for a, (s, _) in self.states.items() if s.is_active]


class FakeStreamlabs:
    def __init__(self):
        self.calls: List[Tuple] = []
        self.state = ConnectionState.DISCONNECTED
        self.message = ""

    @property
    def status(self) -> ConnectionState:
        return self.state

    @property
    def status_message(self) -> str:
        return self.message

    async def connect(self, token: str) -> bool:
        self.calls.append(("connect", token))
        if not token:
            self.state, self.message = ConnectionState.ERROR, "Socket token missing."
            return False
        self.state, self.message = ConnectionState.CONNECTED, "Connected"
        return True

    async def disconnect(self, account_id: str = "streamlabs") -> None:
        self.calls.append(("disconnect",))
        self.state, self.message = ConnectionState.DISCONNECTED, "Disconnected."

    async def shutdown(self, timeout: float = 5.0) -> None:
        self.calls.append(("shutdown", timeout))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    """Every event published on ``bus``, in order."""
    received = []
    bus.subscribe(received.append)
    return received


@pytest.fixture
def credentials():
    return EnvCredentialProvider(
        environ={
            "CHATRELAY_TOKEN_TWITCH_111": "oauth:twitch-token",
            "CHATRELAY_TOKEN_TWITCH_222": "oauth:twitch-token-2",
            "CHATRELAY_TOKEN_YOUTUBE_YT_MAIN": "ya29.youtube-token",
            "CHATRELAY_TOKEN_STREAMLABS_MAIN": "sl-socket-token",
        }
    )


@pytest.fixture
def fake_twitch():
    return FakeAdapter("twitch")


@pytest.fixture
def fake_youtube():
    return FakeAdapter("youtube")


@pytest.fixture
def fake_streamlabs():
    return FakeStreamlabs()
