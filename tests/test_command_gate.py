"""Tests for command detection, the registry and the dispatch gate."""

from unittest.mock import AsyncMock

import pytest

from services.commands import (
    CommandDispatchGate,
    CommandHandler,
    CommandOutcome,
    CommandRegistry,
    PingCommand,
    is_chat_command,
)
from services.commands.registry import parse_command
from shared.events.models import ChatMessage, CommandInvocation


def chat(text, platform="Twitch", account_id="111", channel="streamer"):
    return ChatMessage(
        platform=platform,
        originating_account_id=account_id,
        username="Viewer",
        raw_message=text,
        channel=channel,
    )


class StaticCommand(CommandHandler):
    commands = ("shout",)

    def __init__(self, outcome):
        self.outcome = outcome

    async def handle(self, context):
        return self.outcome


@pytest.fixture
def published():
    return []


@pytest.fixture
def sender():
    return AsyncMock()


def make_gate(processor, published, sender):
    gate = CommandDispatchGate(processor=processor, publish=published.append)
    gate.register_platform_sender("Twitch", sender)
    return gate


class TestCommandDetection:
    @pytest.mark.parametrize(
        "text, expected",
        [("!ping", True), ("  !so someone", True), ("!", False), ("hello !ping", False), ("", False), (None, False)],
    )
    def test_is_chat_command(self, text, expected):
        assert is_chat_command(text) is expected

    def test_parse_command(self):
        assert parse_command("!Shout hello world") == ("shout", ["hello", "world"])
        assert parse_command("no command") is None


class TestRegistry:
    async def test_ping(self):
        registry = CommandRegistry()
        registry.register(PingCommand())

        outcome = await registry.process(chat("!ping"))

        assert outcome.reply == "pong"
        assert registry.commands == ["ping"]

    async def test_unknown_command_is_empty_outcome(self):
        outcome = await CommandRegistry().process(chat("!nothing"))
        assert outcome == CommandOutcome()

    async def test_handler_errors_are_contained(self):
        class Broken(CommandHandler):
            commands = ("broken",)

            async def handle(self, context):
                raise RuntimeError("kaboom")

        registry = CommandRegistry()
        registry.register(Broken())

        assert await registry.process(chat("!broken")) == CommandOutcome()


class TestDispatchGate:
    async def test_non_command_published_unchanged(self, published, sender):
        processor = AsyncMock()
        gate = make_gate(processor, published, sender)
        message = chat("just chatting")

        await gate.dispatch(message)

        assert published == [message]
        processor.process.assert_not_awaited()
        sender.assert_not_awaited()

    async def test_suppressed_command(self, published, sender):
        registry = CommandRegistry()
        registry.register(StaticCommand(CommandOutcome(suppress=True, reply="ignored")))
        gate = make_gate(registry, published, sender)
        message = chat("!shout")

        await gate.dispatch(message)

        assert published == [message]
        sender.assert_not_awaited()

    async def test_inbound_reply_is_sent_then_announced(self, published, sender):
        registry = CommandRegistry()
        registry.register(PingCommand())
        gate = make_gate(registry, published, sender)
        message = chat("!ping")

        await gate.dispatch(message)

        sender.assert_awaited_once_with("111", "streamer", "pong")
        assert published[0] is message
        invocation = published[1]
        assert isinstance(invocation, CommandInvocation)
        assert invocation.reply_message == "pong"
        assert invocation.original_command_message is message
        assert invocation.platform == "Twitch"
        assert invocation.bot_sender_display_name == "ChatRelay"

    async def test_failed_send_skips_invocation(self, published, sender):
        sender.side_effect = RuntimeError("not joined")
        registry = CommandRegistry()
        registry.register(PingCommand())
        gate = make_gate(registry, published, sender)

        await gate.dispatch(chat("!ping"))

        assert len(published) == 1

    async def test_missing_platform_sender(self, published, sender):
        registry = CommandRegistry()
        registry.register(PingCommand())
        gate = make_gate(registry, published, sender)

        await gate.dispatch(chat("!ping", platform="YouTube"))

        sender.assert_not_awaited()
        assert len(published) == 1

    async def test_operator_command_never_sends(self, published, sender):
        registry = CommandRegistry()
        registry.register(PingCommand())
        gate = make_gate(registry, published, sender)

        await gate.dispatch(chat("!ping"), inbound=False)

        sender.assert_not_awaited()
        assert [type(e) for e in published] == [ChatMessage, CommandInvocation]

    async def test_processor_error_publishes_command_once(self, published, sender):
        processor = AsyncMock()
        processor.process.side_effect = RuntimeError("plugin crashed")
        gate = make_gate(processor, published, sender)

        outcome = await gate.dispatch(chat("!anything"))

        assert outcome == CommandOutcome()
        assert len(published) == 1

    async def test_processor_sees_inbound_flag(self, published, sender):
        processor = AsyncMock()
        processor.process.return_value = CommandOutcome()
        gate = make_gate(processor, published, sender)
        message = chat("!x")

        await gate.dispatch(message, inbound=False)

        processor.process.assert_awaited_once_with(message, inbound=False)
