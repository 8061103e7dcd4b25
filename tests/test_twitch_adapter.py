"""Tests for the Twitch adapter lifecycle using an in-memory IRC client."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from services.twitch.adapter import TwitchConnectionAdapter
from services.twitch.api.chat import TwitchAuthError, TwitchChatClient
from shared.events.models import ChatMessage, Donation, SystemMessage
from shared.normalizer import EventNormalizer
from shared.platforms.adapter import AdapterError
from shared.platforms.state import ConnectionState


class FakeIrcClient:
    def __init__(self, token, nickname, *, connect_error=None):
        self.token = token
        self.nickname = nickname
        self.connect_error = connect_error
        self.channels = set()
        self.sent = []
        self.closed = False
        self.aborted = False
        self.lines: asyncio.Queue = asyncio.Queue()

    async def connect(self):
        if self.connect_error:
            raise self.connect_error

    async def join(self, channel):
        self.channels.add(channel.lstrip("#").lower())

    async def part(self, channel):
        self.channels.discard(channel.lstrip("#").lower())

    async def send_message(self, channel, text):
        self.sent.append((channel, text))

    async def close(self):
        self.closed = True

    def abort(self):
        self.aborted = True

    async def iter_messages(self):
        while True:
            line = await self.lines.get()
            if line is None:
                return
            yield TwitchChatClient.parse_line(line)

    def feed(self, line):
        self.lines.put_nowait(line)


async def settle(times: int = 5):
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.fixture
def clients():
    return []


@pytest.fixture
def connect_error():
    return {"error": None}


@pytest.fixture
def adapter(bus, clients, connect_error):
    def factory(token, nickname):
        client = FakeIrcClient(token, nickname, connect_error=connect_error["error"])
        clients.append(client)
        return client

    return TwitchConnectionAdapter(bus=bus, normalizer=EventNormalizer(), client_factory=factory)


class TestConnect:
    async def test_connect_joins_own_channel(self, adapter, clients, events):
        assert await adapter.connect("111", "oauth:tok", username="Streamer", display_name="Streamer")

        assert adapter.get_state("111") == ConnectionState.CONNECTED
        assert adapter.get_status_message("111") == "Connected as Streamer"
        assert clients[0].channels == {"streamer"}
        assert events[-1].message == "Connected Twitch account: Streamer"
        await adapter.disconnect("111")

    async def test_connect_is_idempotent(self, adapter, clients):
        await adapter.connect("111", "oauth:tok", username="streamer")
        assert await adapter.connect("111", "oauth:tok", username="streamer")

        assert len(clients) == 1
        await adapter.disconnect("111")

    async def test_auth_failure(self, adapter, connect_error, events):
        connect_error["error"] = TwitchAuthError("Login authentication failed")

        assert await adapter.connect("111", "oauth:bad", username="streamer") is False

        assert adapter.get_wrapper("111") is None
        assert adapter.get_state("111") == ConnectionState.ERROR
        assert adapter.get_status_message("111").startswith("Authentication failed")

    async def test_network_failure(self, adapter, connect_error, clients):
        connect_error["error"] = OSError("unreachable")

        assert await adapter.connect("111", "oauth:tok", username="streamer") is False

        assert adapter.get_status_message("111") == "Connection failed: unreachable"
        assert clients[0].closed is True

    async def test_channel_badges_loaded_in_background(self, bus, clients):
        badge_cache = AsyncMock()
        adapter = TwitchConnectionAdapter(
            bus=bus,
            normalizer=EventNormalizer(),
            badge_cache=badge_cache,
            client_factory=lambda t, n: FakeIrcClient(t, n),
        )

        await adapter.connect("111", "oauth:tok", username="streamer")
        await settle()

        badge_cache.load_channel_twitch_badges.assert_awaited_once_with("111", "111")
        await adapter.disconnect("111")


class TestInbound:
    async def test_chat_is_published(self, adapter, clients, events):
        await adapter.connect("111", "oauth:tok", username="streamer")
        clients[0].feed(
            "@display-name=Viewer :viewer!viewer@viewer.tmi.twitch.tv PRIVMSG #streamer :hi"
        )
        await settle()

        chats = [e for e in events if isinstance(e, ChatMessage)]
        assert chats[0].raw_message == "hi"
        assert chats[0].originating_account_id == "111"
        await adapter.disconnect("111")

    async def test_chat_goes_through_gate(self, bus, clients):
        gate = AsyncMock()
        adapter = TwitchConnectionAdapter(
            bus=bus,
            normalizer=EventNormalizer(),
            gate=gate,
            client_factory=lambda t, n: clients.append(FakeIrcClient(t, n)) or clients[-1],
        )
        await adapter.connect("111", "oauth:tok", username="streamer")
        clients[0].feed(":viewer!viewer@viewer.tmi.twitch.tv PRIVMSG #streamer :!ping")
        await settle()

        gate.dispatch.assert_awaited_once()
        assert gate.dispatch.await_args.args[0].raw_message == "!ping"
        await adapter.disconnect("111")

    async def test_bits_bypass_gate(self, adapter, clients, events):
        await adapter.connect("111", "oauth:tok", username="streamer")
        clients[0].feed(
            "@bits=50;display-name=C :c!c@c.tmi.twitch.tv PRIVMSG #streamer :cheer50"
        )
        await settle()

        assert any(isinstance(e, Donation) for e in events)
        await adapter.disconnect("111")

    async def test_remote_close_sets_error(self, adapter, clients, events):
        await adapter.connect("111", "oauth:tok", username="streamer")
        clients[0].feed(None)
        await settle(10)

        assert adapter.get_wrapper("111") is None
        assert adapter.get_state("111") == ConnectionState.ERROR
        assert adapter.get_status_message("111") == "Connection closed by Twitch."
        assert isinstance(events[-1], SystemMessage)

    async def test_reconnect_request_sets_error(self, adapter, clients):
        await adapter.connect("111", "oauth:tok", username="streamer")
        clients[0].feed(":tmi.twitch.tv RECONNECT")
        await settle(10)

        assert adapter.get_status_message("111") == "Twitch requested a reconnect."


class TestOutbound:
    async def test_send_publishes_echo(self, adapter, clients, events):
        await adapter.connect("111", "oauth:tok", username="streamer", display_name="Streamer")

        await adapter.send_message("111", "#Streamer", "hello")

        assert clients[0].sent == [("streamer", "hello")]
        echo = events[-1]
        assert isinstance(echo, ChatMessage)
        assert echo.username == "Streamer"
        assert echo.is_owner is True
        await adapter.disconnect("111")

    async def test_whitespace_is_ignored(self, adapter, clients):
        await adapter.connect("111", "oauth:tok", username="streamer")

        await adapter.send_message("111", "streamer", "   ")

        assert clients[0].sent == []
        await adapter.disconnect("111")

    async def test_unjoined_channel_is_rejected(self, adapter):
        await adapter.connect("111", "oauth:tok", username="streamer")

        with pytest.raises(AdapterError):
            await adapter.send_message("111", "elsewhere", "hi")
        await adapter.disconnect("111")

    async def test_send_requires_connection(self, adapter):
        with pytest.raises(AdapterError):
            await adapter.send_message("111", "streamer", "hi")

    async def test_join_then_send(self, adapter, clients):
        await adapter.connect("111", "oauth:tok", username="streamer")
        await adapter.join_channel("111", "#friend")

        await adapter.send_message("111", "friend", "hey")

        assert clients[0].sent == [("friend", "hey")]
        await adapter.disconnect("111")


class TestDisconnect:
    async def test_disconnect_closes_client(self, adapter, clients, events):
        await adapter.connect("111", "oauth:tok", username="streamer", display_name="Streamer")

        await adapter.disconnect("111")

        assert clients[0].closed is True
        assert adapter.get_status_message("111") == "Disconnected."
        assert events[-1].message == "Disconnected Twitch account: Streamer"

    async def test_disconnect_when_not_connected(self, adapter, events):
        await adapter.disconnect("111")

        assert events == []
        assert adapter.get_state("111") == ConnectionState.DISCONNECTED
