"""Tests for the Twitch badge cache and its Helix-backed source."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from shared.auth.tokens import CredentialError
from shared.badges.cache import BadgeEmoteCache, TwitchBadgeSource, build_badge_map


def badge_set(set_id, *versions):
    return {
        "set_id": set_id,
        "versions": [
            {"id": v, "image_url_1x": f"https://cdn/{set_id}/{v}.png"} for v in versions
        ],
    }


@pytest.fixture
def source():
    mock = AsyncMock()
    mock.fetch_global_badges.return_value = [badge_set("moderator", "1")]
    mock.fetch_channel_badges.return_value = [badge_set("subscriber", "0", "12")]
    return mock


@pytest.fixture
def cache(source, clock):
    return BadgeEmoteCache(source, clock=clock)


class TestGlobalBadges:
    async def test_load_and_lookup(self, cache):
        await cache.load_global_twitch_badges()

        assert cache.global_set_count == 1
        assert cache.get_twitch_badge_url("moderator", "1") == "https://cdn/moderator/1.png"

    async def test_no_data_keeps_previous(self, cache, source):
        await cache.load_global_twitch_badges()
        source.fetch_global_badges.return_value = None

        await cache.load_global_twitch_badges()

        assert cache.global_set_count == 1

    async def test_error_keeps_previous(self, cache, source):
        await cache.load_global_twitch_badges()
        source.fetch_global_badges.side_effect = RuntimeError("helix down")

        await cache.load_global_twitch_badges()

        assert cache.get_twitch_badge_url("moderator", "1") is not None


class TestChannelBadges:
    async def test_cached_within_ttl(self, cache, source, clock):
        await cache.load_channel_twitch_badges("999", "111")
        clock.advance(hours=3, minutes=59)
        await cache.load_channel_twitch_badges("999", "111")

        assert source.fetch_channel_badges.await_count == 1
        assert cache.is_channel_cached("999")

    async def test_reloaded_after_ttl(self, cache, source, clock):
        await cache.load_channel_twitch_badges("999", "111")
        clock.advance(hours=4)

        assert not cache.is_channel_cached("999")
        await cache.load_channel_twitch_badges("999", "111")
        assert source.fetch_channel_badges.await_count == 2

    async def test_no_data_caches_empty_entry(self, cache, source):
        source.fetch_channel_badges.return_value = None

        await cache.load_channel_twitch_badges("999", "111")

        assert cache.is_channel_cached("999")
        assert cache.get_twitch_badge_url("subscriber", "12", "999") is None

    async def test_error_leaves_channel_uncached(self, cache, source):
        source.fetch_channel_badges.side_effect = RuntimeError("boom")

        await cache.load_channel_twitch_badges("999", "111")

        assert not cache.is_channel_cached("999")

    async def test_lookup_order(self, cache, source):
        await cache.load_global_twitch_badges()
        await cache.load_channel_twitch_badges("999", "111")

        assert cache.get_twitch_badge_url("subscriber", "12", "999") == "https://cdn/subscriber/12.png"
        # Other cached channels are scanned when the preferred one misses
        assert cache.get_twitch_badge_url("subscriber", "12", "555") == "https://cdn/subscriber/12.png"
        assert cache.get_twitch_badge_url("subscriber", "99", "999") is None

    async def test_expired_channels_are_not_scanned(self, cache, clock):
        await cache.load_channel_twitch_badges("999", "111")
        clock.advance(hours=5)

        assert cache.get_twitch_badge_url("subscriber", "12", "555") is None

    async def test_custom_ttl(self, source, clock):
        cache = BadgeEmoteCache(source, clock=clock, channel_ttl=timedelta(minutes=10))
        await cache.load_channel_twitch_badges("999", "111")
        clock.advance(minutes=11)

        assert not cache.is_channel_cached("999")


class TestBuildBadgeMap:
    def test_skips_entries_without_ids(self):
        result = build_badge_map([{"versions": []}, badge_set("vip", "1"), {"set_id": "x", "versions": [{}]}])

        assert set(result) == {"vip", "x"}
        assert result["vip"]["1"].identifier == "twitch/vip/1"
        assert result["x"] == {}


class TestTwitchBadgeSource:
    async def test_global_tries_accounts_until_token_found(self):
        helix = AsyncMock()
        helix.get_global_badges.return_value = [badge_set("vip", "1")]
        credentials = AsyncMock()
        credentials.get_access_token.side_effect = [CredentialError("nope"), "token-2"]

        source = TwitchBadgeSource(helix, credentials, lambda: ["a", "b"])
        result = await source.fetch_global_badges()

        assert result == [badge_set("vip", "1")]
        helix.get_global_badges.assert_awaited_once_with(access_token="token-2")

    async def test_global_without_any_token(self):
        helix = AsyncMock()
        credentials = AsyncMock()
        credentials.get_access_token.side_effect = CredentialError("nope")

        source = TwitchBadgeSource(helix, credentials, lambda: ["a"])

        assert await source.fetch_global_badges() is None
        helix.get_global_badges.assert_not_awaited()

    async def test_channel_empty_list_is_no_data(self):
        helix = AsyncMock()
        helix.get_channel_badges.return_value = []
        credentials = AsyncMock()
        credentials.get_access_token.return_value = "tok"

        source = TwitchBadgeSource(helix, credentials, lambda: [])

        assert await source.fetch_channel_badges("999", "111") is None
