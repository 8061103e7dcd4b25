"""Tests for YouTube connect, quota demotion, polling and writes."""

from unittest.mock import AsyncMock

import pytest

import services.youtube.adapter as youtube_adapter
from services.youtube.adapter import (
    STATUS_MANUAL_ID,
    STATUS_MONITORING_STOPPED,
    STATUS_NO_STREAM,
    STATUS_QUOTA,
    YouTubeConnectionAdapter,
)
from services.youtube.api.errors import YouTubeApiError, YouTubeQuotaError
from shared.events.models import ChatMessage, PollUpdate, SystemMessage, SystemMessageLevel
from shared.normalizer import EventNormalizer
from shared.platforms.adapter import AdapterError, Registration
from shared.platforms.state import ConnectionState


class FakePoller:
    """Stands in for the HTTP poller; tests drive its callbacks directly."""

    instances = []

    def __init__(self, client, **kwargs):
        self.client = client
        self.items = []
        self.errors = []
        self.stopped = []
        self.started = False
        self.stop_calls = 0
        FakePoller.instances.append(self)

    def _register(self, bucket, callback):
        bucket.append(callback)
        return Registration(lambda: bucket.remove(callback) if callback in bucket else None)

    def on_item(self, callback):
        return self._register(self.items, callback)

    def on_error(self, callback):
        return self._register(self.errors, callback)

    def on_stopped(self, callback):
        return self._register(self.stopped, callback)

    @property
    def running(self):
        return self.started and not self.stop_calls

    def start(self):
        self.started = True

    async def stop(self, timeout=5.0):
        self.stop_calls += 1

    def abort(self):
        self.stop_calls += 1

    async def emit_item(self, item):
        for callback in list(self.items):
            await callback(item)

    async def emit_error(self, exc):
        for callback in list(self.errors):
            await callback(exc)

    async def emit_stopped(self, reason):
        for callback in list(self.stopped):
            await callback(reason)


@pytest.fixture(autouse=True)
def fake_poller(monkeypatch):
    FakePoller.instances = []
    monkeypatch.setattr(youtube_adapter, "YouTubeChatPoller", FakePoller)
    return FakePoller


@pytest.fixture
def api():
    mock = AsyncMock()
    mock.verify.return_value = {"id": "UCself", "snippet": {"title": "My Channel"}}
    mock.find_active_video_id.return_value = None
    mock.get_live_chat_id.return_value = "chat-1"
    return mock


@pytest.fixture
def adapter(bus, api):
    return YouTubeConnectionAdapter(
        bus=bus,
        normalizer=EventNormalizer(),
        api_factory=lambda **kwargs: api,
    )


def text_item(text, channel_id="UCviewer", item_id="i1"):
    return {
        "id": item_id,
        "snippet": {"textMessageDetails": {"messageText": text}},
        "authorDetails": {"channelId": channel_id, "displayName": "Someone"},
    }


class TestConnect:
    async def test_ready_without_stream(self, adapter, events):
        assert await adapter.connect("yt_main", "tok") is True

        assert adapter.get_state("yt_main") == ConnectionState.CONNECTED
        assert adapter.get_status_message("yt_main") == STATUS_NO_STREAM
        assert "Connected YouTube account: My Channel" in [
            e.message for e in events if isinstance(e, SystemMessage)
        ]

    async def test_connect_is_idempotent(self, adapter, api):
        await adapter.connect("yt_main", "tok")
        assert await adapter.connect("yt_main", "tok") is True

        assert api.verify.await_count == 1

    async def test_quota_during_init_is_limited(self, adapter, api):
        api.verify.side_effect = YouTubeQuotaError("quota", status_code=403)

        assert await adapter.connect("yt_main", "tok") is True

        assert adapter.get_state("yt_main") == ConnectionState.LIMITED
        assert adapter.get_status_message("yt_main") == STATUS_MANUAL_ID
        api.find_active_video_id.assert_not_awaited()

    async def test_init_failure_is_error(self, adapter, api):
        api.verify.side_effect = YouTubeApiError("invalid credentials", status_code=401)

        assert await adapter.connect("yt_main", "tok") is False

        assert adapter.get_wrapper("yt_main") is None
        assert adapter.get_state("yt_main") == ConnectionState.ERROR
        assert adapter.get_status_message("yt_main") == "API Init Failed: invalid credentials"

    async def test_active_stream_starts_monitoring(self, adapter, api, fake_poller):
        api.find_active_video_id.return_value = "vid1"

        await adapter.connect("yt_main", "tok")

        assert adapter.get_status_message("yt_main") == "Monitoring chat: vid1"
        assert adapter.get_live_chat_id("yt_main") == "chat-1"
        assert adapter.get_active_video_id("yt_main") == "vid1"
        assert fake_poller.instances[0].started

    async def test_override_wins_over_debug_and_lookup(self, adapter, api):
        await adapter.connect("yt_main", "tok", override="manual", debug_live_id="debug")

        api.find_active_video_id.assert_not_awaited()
        api.get_live_chat_id.assert_awaited_once_with("manual")

    async def test_limited_uses_given_id_as_chat_id(self, adapter, api):
        api.verify.side_effect = YouTubeQuotaError("quota")

        await adapter.connect("yt_main", "tok", debug_live_id="chat-xyz")

        api.get_live_chat_id.assert_not_awaited()
        assert adapter.get_live_chat_id("yt_main") == "chat-xyz"
        assert adapter.get_status_message("yt_main") == "Read-Only Monitoring: chat-xyz"

    async def test_limited_with_video_id_waits_for_chat_id(self, adapter, api, fake_poller):
        api.verify.side_effect = YouTubeQuotaError("quota")

        await adapter.connect("yt_main", "tok", debug_live_id="dQw4w9WgXcQ")

        api.get_live_chat_id.assert_not_awaited()
        assert fake_poller.instances == []
        assert adapter.get_live_chat_id("yt_main") is None
        assert adapter.get_state("yt_main") == ConnectionState.LIMITED
        assert adapter.get_status_message("yt_main") == STATUS_MANUAL_ID

    async def test_lookup_quota_with_video_id_waits_for_chat_id(self, adapter, api, fake_poller):
        api.get_live_chat_id.side_effect = YouTubeQuotaError("quota")

        await adapter.connect("yt_main", "tok", override="dQw4w9WgXcQ")

        assert fake_poller.instances == []
        assert adapter.get_state("yt_main") == ConnectionState.LIMITED
        assert adapter.get_status_message("yt_main") == STATUS_MANUAL_ID

    async def test_lookup_quota_error_demotes(self, adapter, api, events):
        api.find_active_video_id.side_effect = YouTubeQuotaError("quota")

        await adapter.connect("yt_main", "tok")

        assert adapter.get_state("yt_main") == ConnectionState.LIMITED
        assert adapter.get_status_message("yt_main") == STATUS_QUOTA
        warnings = [e for e in events if getattr(e, "level", None) == SystemMessageLevel.WARNING]
        assert len(warnings) == 1


class TestPolling:
    async def test_items_are_published(self, adapter, api, events, fake_poller):
        api.find_active_video_id.return_value = "vid1"
        await adapter.connect("yt_main", "tok")

        await fake_poller.instances[0].emit_item(text_item("hello"))

        chats = [e for e in events if isinstance(e, ChatMessage)]
        assert chats[-1].raw_message == "hello"
        assert chats[-1].originating_account_id == "yt_main"

    async def test_polling_quota_error_keeps_monitoring(self, adapter, api, fake_poller):
        api.find_active_video_id.return_value = "vid1"
        await adapter.connect("yt_main", "tok")

        await fake_poller.instances[0].emit_error(YouTubeQuotaError("quota"))

        assert adapter.get_state("yt_main") == ConnectionState.LIMITED
        assert adapter.get_status_message("yt_main") == "Read-Only Monitoring: vid1"

    async def test_poller_stop_settles_idle(self, adapter, api, fake_poller, events):
        api.find_active_video_id.return_value = "vid1"
        await adapter.connect("yt_main", "tok")

        await fake_poller.instances[0].emit_stopped("chat ended")

        assert adapter.get_status_message("yt_main") == STATUS_NO_STREAM
        assert adapter.get_live_chat_id("yt_main") is None
        assert events[-1].level == SystemMessageLevel.WARNING

    async def test_stop_polling_while_limited(self, adapter, api):
        api.verify.side_effect = YouTubeQuotaError("quota")
        await adapter.connect("yt_main", "tok", override="chat-xyz")

        await adapter.stop_polling("yt_main")

        assert adapter.get_status_message("yt_main") == STATUS_MONITORING_STOPPED

    async def test_items_after_disconnect_are_dropped(self, adapter, api, events, fake_poller):
        api.find_active_video_id.return_value = "vid1"
        await adapter.connect("yt_main", "tok")
        poller = fake_poller.instances[0]
        await adapter.disconnect("yt_main")
        before = len(events)

        await poller.emit_item(text_item("late"))

        assert len(events) == before
        assert poller.stop_calls == 1

    async def test_own_echo_is_skipped(self, adapter, api, events, fake_poller):
        api.find_active_video_id.return_value = "vid1"
        await adapter.connect("yt_main", "tok")

        await adapter.send_message("yt_main", None, "hi chat")
        await fake_poller.instances[0].emit_item(text_item("hi chat", channel_id="UCself"))

        chats = [e for e in events if isinstance(e, ChatMessage)]
        assert [c.raw_message for c in chats] == ["hi chat"]


class TestWrites:
    async def test_send_uses_active_chat(self, adapter, api, events):
        api.find_active_video_id.return_value = "vid1"
        await adapter.connect("yt_main", "tok")

        await adapter.send_message("yt_main", None, "hello")

        api.send_message.assert_awaited_once_with("chat-1", "hello")
        assert events[-1].is_owner is True

    async def test_send_without_live_chat(self, adapter):
        await adapter.connect("yt_main", "tok")

        with pytest.raises(AdapterError):
            await adapter.send_message("yt_main", None, "hello")

    async def test_send_refused_while_limited(self, adapter, api):
        api.verify.side_effect = YouTubeQuotaError("quota")
        await adapter.connect("yt_main", "tok")

        with pytest.raises(AdapterError):
            await adapter.send_message("yt_main", "chat-1", "hello")
        api.send_message.assert_not_awaited()

    async def test_write_quota_error_demotes_and_blocks_further_writes(self, adapter, api):
        await adapter.connect("yt_main", "tok")
        api.delete_message.side_effect = YouTubeQuotaError("quota")

        assert await adapter.delete_message("yt_main", "m1") is False
        assert await adapter.delete_message("yt_main", "m2") is False

        assert adapter.get_state("yt_main") == ConnectionState.LIMITED
        assert api.delete_message.await_count == 1

    async def test_timeout_user(self, adapter, api):
        api.find_active_video_id.return_value = "vid1"
        await adapter.connect("yt_main", "tok")

        assert await adapter.timeout_user("yt_main", "UCbad", 300) is True
        api.timeout_user.assert_awaited_once_with("chat-1", "UCbad", 300)

    async def test_poll_lifecycle(self, adapter, api, events):
        api.find_active_video_id.return_value = "vid1"
        api.create_poll.return_value = {"id": "poll-9"}
        await adapter.connect("yt_main", "tok")

        poll_id = await adapter.create_poll("yt_main", "Best map?", ["Dust", "Nuke"])
        assert await adapter.end_poll("yt_main", poll_id)

        polls = [e for e in events if isinstance(e, PollUpdate)]
        assert poll_id == "poll-9"
        assert [p.is_active for p in polls] == [True, False]
        assert [o.text for o in polls[0].options] == ["Dust", "Nuke"]

    async def test_write_error_publishes_system_error(self, adapter, api, events):
        await adapter.connect("yt_main", "tok")
        api.delete_message.side_effect = YouTubeApiError("forbidden", status_code=403)

        assert await adapter.delete_message("yt_main", "m1") is False
        assert events[-1].level == SystemMessageLevel.ERROR
        assert adapter.get_state("yt_main") == ConnectionState.CONNECTED
