from services.commands.base import CommandContext, CommandHandler, CommandOutcome, PingCommand
from services.commands.registry import CommandRegistry
from services.commands.gate import CommandDispatchGate, is_chat_command

__all__ = [
    "CommandContext",
    "CommandDispatchGate",
    "CommandHandler",
    "CommandOutcome",
    "CommandRegistry",
    "PingCommand",
    "is_chat_command",
]
