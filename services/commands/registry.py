from typing import Dict, List, Optional, Tuple

from services.commands.base import CommandContext, CommandHandler, CommandOutcome
from shared.events.models import ChatMessage
from shared.logging.logger import get_logger

log = get_logger("commands.registry")


def parse_command(text: str) -> Optional[Tuple[str, List[str]]]:
    """Split ``!name arg1 arg2`` into a lower-cased name and args."""
    parts = (text or "").strip().split()
    if not parts or not parts[0].startswith("!") or len(parts[0]) < 2:
        return None
    return parts[0][1:].lower(), parts[1:]


class CommandRegistry:
    """
    Maps command names to handlers.

    Responsibilities:
    - Store handlers keyed by lower-cased command name
    - Resolve and run the handler for a command message
    - Contain handler failures (logged, never raised)
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, CommandHandler] = {}

    # ------------------------------------------------------------

    def register(self, handler: CommandHandler) -> None:
        for name in handler.commands:
            key = name.lower().lstrip("!")
            if key in self._handlers:
                log.warning(f"Command '!{key}' re-registered by {type(handler).__name__}")
            log.debug(f"Registering command: !{key}")
            self._handlers[key] = handler

    def unregister(self, name: str) -> None:
        self._handlers.pop(name.lower().lstrip("!"), None)

    @property
    def commands(self) -> List[str]:
        return sorted(self._handlers)

    # ------------------------------------------------------------

    async def process(self, event: ChatMessage, *, inbound: bool = True) -> CommandOutcome:
        parsed = parse_command(event.raw_message)
        if parsed is None:
            return CommandOutcome()

        name, args = parsed
        handler = self._handlers.get(name)
        if handler is None:
            log.debug(f"[{event.originating_account_id}] No handler for !{name}")
            return CommandOutcome()

        context = CommandContext(event=event, command=name, args=args, inbound=inbound)
        try:
            outcome = await handler.handle(context)
        except Exception as e:
            log.warning(
                f"[{event.originating_account_id}] Command '!{name}' error ignored: {e}"
            )
            return CommandOutcome()

        return outcome or CommandOutcome()
