import asyncio
from typing import AsyncGenerator, Dict, Optional, Set, Tuple

from services.twitch.models.message import TwitchIrcMessage
from shared.logging.logger import get_logger

log = get_logger("twitch.chat")

FORWARDED_COMMANDS = {
    "PRIVMSG",
    "USERNOTICE",
    "CLEARCHAT",
    "CLEARMSG",
    "WHISPER",
    "HOSTTARGET",
    "NOTICE",
    "RECONNECT",
}

AUTH_FAILURE_NOTICES = (
    "Login authentication failed",
    "Improperly formatted auth",
    "Invalid NICK",
)

_TAG_ESCAPES = {
    ":": ";",
    "s": " ",
    "\\": "\\",
    "r": "\r",
    "n": "\n",
}


class TwitchAuthError(RuntimeError):
    """Raised when Twitch rejects the supplied OAuth token during login."""


class TwitchChatClient:
    """
    Minimal Twitch IRC-over-TLS client for chat I/O.

    - No event loop creation on import.
    - Connection lifecycle is owned by callers (workers).
    - One session may join any number of channels.
    """

    HOST = "irc.chat.twitch.tv"
    PORT = 6697
    LOGIN_TIMEOUT = 10.0

    def __init__(
        self,
        token: str,
        nickname: str,
        *,
        request_tags: bool = True,
        host: str = HOST,
        port: int = PORT,
        ssl: bool = True,
    ):
        self.token = self._normalize_token(token)
        self.nickname = nickname.lower()
        self.request_tags = request_tags
        self.host = host
        self.port = port
        self.ssl = ssl

        self.reader: asyncio.StreamReader | None = None
        self.writer: asyncio.StreamWriter | None = None

        self.channels: Set[str] = set()
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        """
        Open the TLS connection and log in.

        Raises TwitchAuthError when the server rejects the token.
        """
        if self._connected:
            log.debug("TwitchChatClient already connected")
            return

        log.info(f"Connecting to Twitch IRC ({self.host}:{self.port}) as nick={self.nickname}")
        self.reader, self.writer = await asyncio.open_connection(
            self.host, self.port, ssl=self.ssl
        )

        if self.request_tags:
            await self._send_raw("CAP REQ :twitch.tv/tags twitch.tv/commands")
        await self._send_raw(f"PASS {self.token}")
        await self._send_raw(f"NICK {self.nickname}")

        try:
            await asyncio.wait_for(self._await_welcome(), timeout=self.LOGIN_TIMEOUT)
        except BaseException:
            await self.close()
            raise

        self._connected = True
        log.info(f"Logged in to Twitch IRC as {self.nickname}")

    async def _await_welcome(self) -> None:
        while True:
            line = await self.reader.readline()
            if line == b"":
                raise ConnectionError("Twitch IRC closed the connection during login")

            decoded = line.decode("utf-8", errors="ignore").strip()
            if not decoded:
                continue
            if decoded.startswith("PING"):
                await self._handle_ping(decoded)
                continue

            message = self.parse_line(decoded)
            if message is None:
                continue
            if message.command == "001":
                return
            if message.command == "NOTICE" and self._is_auth_failure(message.text):
                raise TwitchAuthError(message.text or "Twitch login failed")

    async def close(self) -> None:
        if not self.writer:
            return

        log.info("Closing Twitch IRC connection")
        for channel in list(self.channels):
            try:
                await self._send_raw(f"PART #{channel}")
            except Exception as e:
                log.debug(f"PART #{channel} during close ignored: {e}")
        self.channels.clear()

        try:
            self.writer.close()
            await self.writer.wait_closed()
        except Exception as e:
            log.debug(f"Error during Twitch IRC close ignored: {e}")
        finally:
            self.reader = None
            self.writer = None
            self._connected = False

    def abort(self) -> None:
        """Drop the transport without a graceful QUIT."""
        if self.writer:
            self.writer.close()
        self.reader = None
        self.writer = None
        self._connected = False

    # ------------------------------------------------------------------ #
    # Channels
    # ------------------------------------------------------------------ #

    async def join(self, channel: str) -> None:
        channel = self._normalize_channel(channel)
        if channel in self.channels:
            return
        await self._send_raw(f"JOIN #{channel}")
        self.channels.add(channel)
        log.info(f"Joined Twitch channel #{channel}")

    async def part(self, channel: str) -> None:
        channel = self._normalize_channel(channel)
        if channel not in self.channels:
            return
        await self._send_raw(f"PART #{channel}")
        self.channels.discard(channel)
        log.info(f"Left Twitch channel #{channel}")

    # ------------------------------------------------------------------ #
    # Messaging
    # ------------------------------------------------------------------ #

    async def send_message(self, channel: str, text: str) -> None:
        if not text.strip():
            return

        channel = self._normalize_channel(channel)
        await self._send_raw(f"PRIVMSG #{channel} :{text}")
        log.info(f"[#{channel}] Sent chat message ({len(text)} chars)")

    async def iter_messages(self) -> AsyncGenerator[TwitchIrcMessage, None]:
        """
        Read IRC lines and yield the commands the adapter handles.

        Returns when the remote closes the connection.
        """
        if not self.reader:
            raise RuntimeError("iter_messages called before connect()")

        while True:
            line = await self.reader.readline()

            if line == b"":
                log.warning("Twitch IRC connection closed by remote")
                break

            decoded = line.decode("utf-8", errors="ignore").strip()
            if not decoded:
                continue

            if decoded.startswith("PING"):
                await self._handle_ping(decoded)
                continue

            message = self.parse_line(decoded)
            if message and message.command in FORWARDED_COMMANDS:
                if message.command == "NOTICE" and self._is_auth_failure(message.text):
                    raise TwitchAuthError(message.text)
                yield message

    # ------------------------------------------------------------------ #
    # Parsing
    # ------------------------------------------------------------------ #

    @classmethod
    def parse_line(cls, raw: str) -> Optional[TwitchIrcMessage]:
        tags, remainder = cls._split_tags(raw)
        prefix, command, params = cls._split_prefix_and_command(remainder)
        if not command:
            return None
        return TwitchIrcMessage(
            raw=raw,
            command=command,
            tags=tags,
            prefix=prefix,
            params=params,
        )

    @staticmethod
    def _is_auth_failure(text: str) -> bool:
        return any(marker in (text or "") for marker in AUTH_FAILURE_NOTICES)

    @staticmethod
    def _unescape_tag(value: str) -> str:
        if "\\" not in value:
            return value
        out = []
        i = 0
        while i < len(value):
            ch = value[i]
            if ch == "\\" and i + 1 < len(value):
                out.append(_TAG_ESCAPES.get(value[i + 1], value[i + 1]))
                i += 2
                continue
            if ch != "\\":
                out.append(ch)
            i += 1
        return "".join(out)

    @classmethod
    def _split_tags(cls, raw: str) -> Tuple[Dict[str, str], str]:
        if raw.startswith("@") and " " in raw:
            tags_part, remainder = raw.split(" ", 1)
            tags = {}
            for pair in tags_part[1:].split(";"):
                if "=" in pair:
                    k, v = pair.split("=", 1)
                    tags[k] = cls._unescape_tag(v)
                elif pair:
                    tags[pair] = ""
            return tags, remainder

        return {}, raw

    @staticmethod
    def _split_prefix_and_command(raw: str) -> Tuple[str, str, Tuple[str, ...]]:
        prefix = ""
        rest = raw
        if raw.startswith(":"):
            if " " in raw:
                prefix, rest = raw[1:].split(" ", 1)
            else:
                prefix = raw[1:]
                rest = ""

        if rest.startswith(":"):
            return prefix, "", tuple()

        if " :" in rest:
            middle, trailing = rest.split(" :", 1)
            parts = middle.split()
            if not parts:
                return prefix, "", tuple()
            command = parts[0]
            params = tuple(parts[1:] + [trailing])
        else:
            parts = rest.split()
            if not parts:
                return prefix, "", tuple()
            command = parts[0]
            params = tuple(parts[1:])

        return prefix, command, params

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    async def _send_raw(self, data: str) -> None:
        if not self.writer:
            raise RuntimeError("IRC writer is not initialized")

        payload = (data + "\r\n").encode("utf-8")
        self.writer.write(payload)
        await self.writer.drain()

    async def _handle_ping(self, raw: str) -> None:
        # Twitch IRC sends: PING :tmi.twitch.tv
        payload = raw.split(" ", 1)[-1]
        await self._send_raw(f"PONG {payload}")
        log.debug("Responded to Twitch PING")

    @staticmethod
    def _normalize_token(token: str) -> str:
        token = token.strip()
        if not token.startswith("oauth:"):
            return f"oauth:{token}"
        return token

    @staticmethod
    def _normalize_channel(channel: str) -> str:
        return channel.lstrip("#").strip().lower()


__all__ = ["TwitchAuthError", "TwitchChatClient", "FORWARDED_COMMANDS"]
