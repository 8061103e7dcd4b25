"""Tests for the shared Streamlabs socket connection."""

import pytest

from services.streamlabs.adapter import STREAMLABS_KEY, StreamlabsConnectionAdapter
from services.streamlabs.api.socket import StreamlabsSocketClient
from shared.events.models import Donation, SystemMessageLevel
from shared.normalizer import EventNormalizer
from shared.platforms.state import ConnectionState


class FakeSio:
    """Stands in for socketio.AsyncClient; tests fire its handlers directly."""

    def __init__(self, *, connected=True, connect_error=None):
        self.handlers = {}
        self.connected = False
        self.connects_ok = connected
        self.connect_error = connect_error
        self.disconnect_calls = 0

    def on(self, event, handler):
        self.handlers[event] = handler

    async def connect(self, url, transports=None):
        if self.connect_error:
            raise self.connect_error
        self.connected = self.connects_ok

    async def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False
        await self.handlers["disconnect"]("client disconnect")

    async def fire(self, event, *args):
        await self.handlers[event](*args)


@pytest.fixture
def sio_options():
    return {}


@pytest.fixture
def clients():
    return []


@pytest.fixture
def adapter(bus, clients, sio_options):
    def factory(token):
        client = StreamlabsSocketClient(token, sio=FakeSio(**sio_options))
        clients.append(client)
        return client

    return StreamlabsConnectionAdapter(bus=bus, normalizer=EventNormalizer(), client_factory=factory)


class TestConnect:
    async def test_missing_token(self, adapter, clients):
        assert await adapter.connect("") is False

        assert adapter.status == ConnectionState.ERROR
        assert adapter.status_message == "Socket token missing."
        assert clients == []

    async def test_connected_after_handshake(self, adapter, clients):
        assert await adapter.connect("sl-token") is True

        assert clients[0].token == "sl-token"
        assert adapter.status == ConnectionState.CONNECTED
        assert adapter.status_message == "Connected"

    async def test_connect_ignored_while_connected(self, adapter, clients):
        await adapter.connect("sl-token")
        await adapter.connect("sl-token")

        assert len(clients) == 1

    async def test_connect_failure(self, adapter, sio_options):
        sio_options["connect_error"] = OSError("refused")

        assert await adapter.connect("sl-token") is False

        assert adapter.status == ConnectionState.ERROR
        assert adapter.status_message == "Connection failed: refused"
        assert adapter.get_wrapper(STREAMLABS_KEY) is None

    async def test_connect_error_callback(self, adapter, clients, sio_options):
        sio_options["connected"] = False
        await adapter.connect("sl-token")

        await clients[0].sio.fire("connect_error", {"message": "bad token"})

        assert adapter.status == ConnectionState.ERROR
        assert adapter.status_message == "Connection error: bad token"


class TestSocketEvents:
    async def test_transport_loss_goes_error_then_connecting(self, adapter, clients):
        states = []
        adapter.on_status_changed = lambda: states.append(adapter.status)
        await adapter.connect("sl-token")

        await clients[0].sio.fire("disconnect", "transport error")

        assert states[-2:] == [ConnectionState.ERROR, ConnectionState.CONNECTING]
        assert adapter.status_message == "Reconnecting..."

    async def test_server_disconnect_stays_in_error(self, adapter, clients):
        await adapter.connect("sl-token")

        await clients[0].sio.fire("disconnect", "server disconnect")

        assert adapter.status == ConnectionState.ERROR
        assert adapter.status_message == "Disconnected: server disconnect"

    async def test_connect_after_server_disconnect_opens_new_socket(self, adapter, clients):
        await adapter.connect("sl-token")
        await clients[0].sio.fire("disconnect", "server disconnect")

        assert await adapter.connect("sl-token") is True

        assert len(clients) == 2
        assert clients[0].sio.disconnect_calls == 1
        assert adapter.status == ConnectionState.CONNECTED

    async def test_no_retry_when_reconnection_disabled(self, bus):
        adapter = StreamlabsConnectionAdapter(
            bus=bus,
            normalizer=EventNormalizer(),
            client_factory=lambda token: StreamlabsSocketClient(
                token, reconnection=False, sio=FakeSio()
            ),
        )
        await adapter.connect("sl-token")

        await adapter.get_wrapper(STREAMLABS_KEY).client.sio.fire("disconnect", "transport error")

        assert adapter.status == ConnectionState.ERROR

    async def test_client_disconnect_is_clean(self, adapter, clients, events):
        await adapter.connect("sl-token")

        await clients[0].sio.fire("disconnect", "client disconnect")

        assert adapter.status == ConnectionState.DISCONNECTED
        assert not any(getattr(e, "level", None) == SystemMessageLevel.WARNING for e in events)

    async def test_reconnect_handshake_restores_connected(self, adapter, clients):
        await adapter.connect("sl-token")
        await clients[0].sio.fire("disconnect", "transport error")

        await clients[0].sio.fire("connect")

        assert adapter.status == ConnectionState.CONNECTED

    async def test_donation_event_is_published(self, adapter, clients, events):
        await adapter.connect("sl-token")

        await clients[0].sio.fire(
            "event",
            {"type": "donation", "message": [{"name": "Fan", "amount": "5", "currency": "USD"}]},
        )

        donations = [e for e in events if isinstance(e, Donation)]
        assert donations[0].username == "Fan"

    async def test_non_object_payload_is_ignored(self, adapter, clients, events):
        await adapter.connect("sl-token")
        before = len(events)

        await clients[0].sio.fire("event", ["not", "an", "object"])

        assert len(events) == before


class TestTeardown:
    async def test_disconnect_releases_callbacks(self, adapter, clients, events):
        await adapter.connect("sl-token")
        client = clients[0]

        await adapter.disconnect()
        before = len(events)
        await client.sio.fire("event", {"type": "follow", "message": [{"name": "Late"}]})

        assert client.sio.disconnect_calls == 1
        assert client._on_event == []
        assert client._on_disconnect == []
        assert len(events) == before
        assert adapter.status == ConnectionState.DISCONNECTED
        assert adapter.status_message == "Disconnected."

    async def test_registrations_are_tracked_on_the_wrapper(self, adapter):
        await adapter.connect("sl-token")

        wrapper = adapter.get_wrapper(STREAMLABS_KEY)

        assert [r.name for r in wrapper.registrations] == [
            "streamlabs.connect",
            "streamlabs.disconnect",
            "streamlabs.connect_error",
            "streamlabs.event",
        ]


class TestSocketClient:
    def test_default_transport_is_websocket_client(self):
        import aiohttp
        import socketio

        client = StreamlabsSocketClient("sl-token")

        assert aiohttp.ClientSession is not None
        assert isinstance(client.sio, socketio.AsyncClient)
        assert client.sio.reconnection is True

    def test_will_retry_only_after_transport_loss(self):
        client = StreamlabsSocketClient("sl-token", sio=FakeSio())

        assert client.will_retry("transport error") is True
        assert client.will_retry("server disconnect") is False
        assert client.will_retry("client disconnect") is False
        assert StreamlabsSocketClient("t", reconnection=False, sio=FakeSio()).will_retry(
            "transport error"
        ) is False
