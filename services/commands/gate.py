from __future__ import annotations

from typing import Awaitable, Callable, Dict, Optional, Protocol

from services.commands.base import CommandOutcome
from shared.events.models import ChatMessage, Event, create_command_invocation
from shared.logging.logger import get_logger

log = get_logger("commands.gate")

# sender(account_id, target, text)
Sender = Callable[[str, Optional[str], str], Awaitable[None]]


class CommandProcessor(Protocol):
    async def process(self, event: ChatMessage, *, inbound: bool = True) -> CommandOutcome:
        ...


def is_chat_command(text: Optional[str]) -> bool:
    trimmed = (text or "").strip()
    if not trimmed.startswith("!"):
        return False
    return len(trimmed.split()[0]) > 1


class CommandDispatchGate:
    """
    Single entry point for chat messages that may be commands.

    - Non-commands are published unchanged
    - A command is published exactly once, then handed to the processor
    - Inbound replies go out through the platform sender and are announced
      with a CommandInvocation; operator-typed commands never reach a
      platform sender
    """

    def __init__(
        self,
        *,
        processor: CommandProcessor,
        publish: Callable[[Event], None],
        is_command: Callable[[Optional[str]], bool] = is_chat_command,
        bot_sender_display_name: str = "ChatRelay",
    ):
        self.processor = processor
        self.publish = publish
        self.is_command = is_command
        self.bot_sender_display_name = bot_sender_display_name
        self._senders: Dict[str, Sender] = {}

    # ------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------

    def register_platform_sender(self, platform: str, sender: Sender) -> None:
        if not platform or not sender:
            return
        self._senders[platform] = sender
        log.debug(f"Registered reply sender for platform={platform}")

    # ------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------

    async def dispatch(self, event: ChatMessage, *, inbound: bool = True) -> Optional[CommandOutcome]:
        if not self.is_command(event.raw_message):
            self.publish(event)
            return None

        self.publish(event)

        try:
            outcome = await self.processor.process(event, inbound=inbound)
        except Exception as e:
            log.warning(
                f"[{event.originating_account_id}] Command processing error ignored: {e}"
            )
            return CommandOutcome()

        outcome = outcome or CommandOutcome()
        if outcome.suppress:
            log.debug(f"[{event.originating_account_id}] Command suppressed: {event.raw_message}")
            return outcome
        if not outcome.reply:
            return outcome

        if inbound:
            if not await self._send_reply(event, outcome.reply):
                return outcome

        self.publish(
            create_command_invocation(
                event,
                reply_message=outcome.reply,
                bot_sender_display_name=self.bot_sender_display_name,
            )
        )
        return outcome

    async def _send_reply(self, event: ChatMessage, reply: str) -> bool:
        sender = self._senders.get(event.platform)
        account_id = event.originating_account_id
        if sender is None or not account_id:
            log.warning(
                f"[{account_id}] No reply sender for platform={event.platform}; reply dropped"
            )
            return False

        try:
            await sender(account_id, event.channel, reply)
        except Exception as e:
            log.warning(f"[{account_id}] Command reply failed on {event.platform}: {e}")
            return False
        return True


__all__ = ["CommandDispatchGate", "CommandProcessor", "is_chat_command"]
