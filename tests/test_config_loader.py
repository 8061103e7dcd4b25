"""Tests for connections.json loading and normalization."""

import json

import pytest

from core.config_loader import ConfigLoader


@pytest.fixture
def write_config(tmp_path):
    def write(payload):
        path = tmp_path / "connections.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return write


class TestLoading:
    def test_missing_file_gives_empty_settings(self, tmp_path):
        settings = ConfigLoader(tmp_path / "absent.json", environ={}).load_connection_settings()

        assert settings.twitch_accounts == ()
        assert settings.youtube_accounts == ()
        assert settings.streamlabs_enabled is False

    def test_invalid_json_gives_empty_settings(self, tmp_path):
        path = tmp_path / "connections.json"
        path.write_text("{not json", encoding="utf-8")

        settings = ConfigLoader(path, environ={}).load_connection_settings()

        assert settings.all_accounts() == ()

    def test_env_path_is_used(self, write_config):
        path = write_config({"streamlabs": {"enabled": True}})

        loader = ConfigLoader(environ={"CHATRELAY_CONFIG_PATH": str(path)})

        assert loader.path == path
        assert loader.load_connection_settings().streamlabs_enabled is True

    def test_full_document(self, write_config):
        path = write_config(
            {
                "twitch": {
                    "accounts": [
                        {"id": "111", "username": "Streamer", "display_name": "Streamer"}
                    ]
                },
                "youtube": {
                    "accounts": [{"id": "yt_main", "auto_connect": False, "override": "vid1"}],
                    "debug_live_chat_id": "chat-debug",
                },
                "streamlabs": {"enabled": True, "token_id": "main"},
            }
        )

        settings = ConfigLoader(path, environ={}).load_connection_settings()

        [twitch] = settings.twitch_accounts
        assert twitch.username == "streamer"
        assert twitch.auto_connect is True
        [youtube] = settings.youtube_accounts
        assert youtube.auto_connect is False
        assert youtube.override == "vid1"
        assert settings.debug_youtube_live_chat_id == "chat-debug"
        assert settings.streamlabs_token_id == "main"


class TestAccountNormalization:
    def test_invalid_and_duplicate_entries_are_skipped(self):
        settings = ConfigLoader(environ={}).parse(
            {
                "youtube": {
                    "accounts": [
                        {"id": "a"},
                        "garbage",
                        {"display_name": "no id"},
                        {"id": "a", "display_name": "dupe"},
                        {"id": "b"},
                    ]
                }
            }
        )

        assert [a.account_id for a in settings.youtube_accounts] == ["a", "b"]
        assert settings.youtube_accounts[0].display_name == "a"

    def test_twitch_account_without_username_is_skipped(self):
        settings = ConfigLoader(environ={}).parse({"twitch": {"accounts": [{"id": "111"}]}})

        assert settings.twitch_accounts == ()

    def test_override_is_youtube_only(self):
        settings = ConfigLoader(environ={}).parse(
            {"twitch": {"accounts": [{"id": "1", "username": "x", "override": "vid"}]}}
        )

        assert settings.twitch_accounts[0].override is None

    def test_blank_override_is_none(self):
        settings = ConfigLoader(environ={}).parse(
            {"youtube": {"accounts": [{"id": "a", "override": "   "}]}}
        )

        assert settings.youtube_accounts[0].override is None

    def test_accounts_must_be_a_list(self):
        settings = ConfigLoader(environ={}).parse({"youtube": {"accounts": {"id": "a"}}})

        assert settings.youtube_accounts == ()


class TestCredentials:
    def test_env_overrides_file(self):
        loader = ConfigLoader(environ={"TWITCH_CLIENT_ID": "env-id", "YOUTUBE_API_KEY": "key"})

        settings = loader.parse(
            {"credentials": {"twitch": {"client_id": "file-id", "client_secret": "file-secret"}}}
        )

        assert settings.credentials.twitch_client_id == "env-id"
        assert settings.credentials.twitch_client_secret == "file-secret"
        assert settings.credentials.youtube_api_key == "key"

    def test_missing_credentials_are_none(self):
        settings = ConfigLoader(environ={}).parse({})

        assert settings.credentials.youtube_client_id is None
