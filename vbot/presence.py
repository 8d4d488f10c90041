from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from vbot.config import ReactionConfig
from vbot.models import InboundMessage
from vbot.transport.base import Connection
from vbot.utils import split_message

logger = logging.getLogger("presence")


class Presence:
    """Reactions, typing indicator and threaded replies.

    Reactions and typing are cosmetic, so their failures are logged and
    dropped. Replies are not: a failed reply propagates to the caller.
    """

    def __init__(
        self,
        reactions: ReactionConfig,
        *,
        typing_sec: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._reactions = reactions
        self._typing_sec = typing_sec
        self._sleep = sleep

    async def react(self, connection: Connection, message: InboundMessage, emoji: str) -> None:
        try:
            await connection.react(message, emoji)
        except Exception as exc:
            logger.warning("Failed to react %s on message %s: %s", emoji, message.message_id, exc)

    async def received(self, connection: Connection, message: InboundMessage) -> None:
        await self.react(connection, message, self._reactions.received)

    async def processing(self, connection: Connection, message: InboundMessage) -> None:
        await self.react(connection, message, self._reactions.processing)

    async def success(self, connection: Connection, message: InboundMessage) -> None:
        await self.react(connection, message, self._reactions.success)

    async def error(self, connection: Connection, message: InboundMessage) -> None:
        await self.react(connection, message, self._reactions.error)

    async def typing(self, connection: Connection, message: InboundMessage, duration: float | None = None) -> None:
        try:
            await connection.send_typing(message.chat_id)
        except Exception as exc:
            logger.warning("Failed to send typing action to %s: %s", message.chat_id, exc)
            return
        delay = self._typing_sec if duration is None else duration
        if delay > 0:
            await self._sleep(delay)

    async def reply(
        self,
        connection: Connection,
        message: InboundMessage,
        text: str,
        *,
        typing: bool = True,
    ) -> None:
        if typing:
            await self.typing(connection, message)
        first = True
        for chunk in split_message(text):
            await connection.send_text(
                message.chat_id,
                chunk,
                reply_to=message.message_id if first else None,
            )
            first = False
