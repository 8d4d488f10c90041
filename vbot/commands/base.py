from __future__ import annotations

import logging
from typing import Protocol

from vbot.commands.errors import CommandError, CommandUsageError, MediaTooLargeError
from vbot.models import InboundMessage, MediaRef
from vbot.presence import Presence
from vbot.runtime import RuntimeContext
from vbot.transport.base import Connection


class Command(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def aliases(self) -> tuple[str, ...]: ...

    @property
    def description(self) -> str: ...

    async def execute(self, message: InboundMessage, connection: Connection, args: str) -> None: ...


class BaseCommand:
    """Reaction lifecycle and fault isolation shared by every command.

    Subclasses implement ``run``. ``execute`` never raises: failures end
    in an error reaction plus a reply, and are logged.
    """

    name = ""
    aliases: tuple[str, ...] = ()
    description = ""
    usage = ""
    category = "Other"
    failure_text = "❌ Something went wrong while running this command."

    def __init__(self, runtime: RuntimeContext) -> None:
        self.runtime = runtime
        self.logger = logging.getLogger(f"commands.{self.name}")

    @property
    def presence(self) -> Presence:
        return self.runtime.presence

    def usage_text(self) -> str:
        prefix = self.runtime.config.prefix
        return f"{prefix}{self.usage or self.name}"

    async def execute(self, message: InboundMessage, connection: Connection, args: str) -> None:
        await self.presence.received(connection, message)
        try:
            await self.run(message, connection, args)
        except CommandError as exc:
            self.logger.warning("%s failed for chat=%s: %s", self.name, message.chat_id, exc)
            await self.presence.error(connection, message)
            await self._safe_reply(connection, message, exc.user_message)
        except Exception:
            self.logger.exception("%s crashed for chat=%s", self.name, message.chat_id)
            await self.presence.error(connection, message)
            await self._safe_reply(connection, message, self.failure_text)
        else:
            await self.presence.success(connection, message)

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        raise NotImplementedError

    async def reply(self, connection: Connection, message: InboundMessage, text: str) -> None:
        await self.presence.reply(connection, message, text)

    async def _safe_reply(self, connection: Connection, message: InboundMessage, text: str) -> None:
        try:
            await self.presence.reply(connection, message, text, typing=False)
        except Exception:
            self.logger.exception("Failed to send error reply to chat=%s", message.chat_id)

    def text_or_quoted(self, message: InboundMessage, args: str) -> str:
        return args.strip() or message.quoted_text

    def require_text(self, message: InboundMessage, args: str, hint: str) -> str:
        text = self.text_or_quoted(message, args)
        if not text:
            raise CommandUsageError(f"❌ {hint}\n\nUsage: {self.usage_text()}")
        return text

    def media_of(self, message: InboundMessage, *, prefer_quoted: bool = True) -> MediaRef | None:
        candidates = [message.quoted, message] if prefer_quoted else [message, message.quoted]
        for candidate in candidates:
            if candidate is not None and candidate.media is not None:
                return candidate.media
        return None

    def check_size(self, size: int, limit_mb: int, what: str) -> None:
        if size > limit_mb * 1024 * 1024:
            raise MediaTooLargeError(
                f"❌ {what} is too large ({size / 1024 / 1024:.2f} MB). Limit is {limit_mb} MB."
            )
