from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from shared.events.models import ChatMessage


@dataclass(frozen=True)
class CommandOutcome:
    suppress: bool = False
    reply: Optional[str] = None


@dataclass(frozen=True)
class CommandContext:
    event: ChatMessage
    command: str
    args: List[str] = field(default_factory=list)
    inbound: bool = True

    @property
    def platform(self) -> str:
        return self.event.platform

    @property
    def account_id(self) -> Optional[str]:
        return self.event.originating_account_id


class CommandHandler(ABC):
    """
    Base class for chat command handlers.

    Handlers decide what a command does; they never talk to a platform
    directly. Replies are returned in the outcome and delivered by the gate.
    """

    commands: Tuple[str, ...] = ()

    @abstractmethod
    async def handle(self, context: CommandContext) -> CommandOutcome:
        raise NotImplementedError


class PingCommand(CommandHandler):
    """Liveness check: ``!ping`` -> ``pong``."""

    commands = ("ping",)

    async def handle(self, context: CommandContext) -> CommandOutcome:
        return CommandOutcome(reply="pong")
