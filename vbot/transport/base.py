from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence, Union

from vbot.models import InboundMessage, MediaRef
from vbot.session import Credentials


class ConnectionState(str, Enum):
    OPEN = "open"
    CLOSE = "close"


class DisconnectReason(str, Enum):
    CONNECTION_LOST = "connection_lost"
    LOGGED_OUT = "logged_out"
    CLOSED = "closed"

    @property
    def recoverable(self) -> bool:
        return self is not DisconnectReason.LOGGED_OUT


class ConnectionClosedError(Exception):
    """Raised when a send is attempted on a connection that is not open."""


@dataclass(frozen=True)
class ConnectionUpdate:
    state: ConnectionState
    reason: DisconnectReason | None = None
    detail: str = ""


@dataclass(frozen=True)
class MessagesUpsert:
    messages: tuple[InboundMessage, ...]


@dataclass(frozen=True)
class CredentialsUpdate:
    credentials: Credentials


TransportEvent = Union[ConnectionUpdate, MessagesUpsert, CredentialsUpdate]


class Connection(Protocol):
    """One live link to the messaging service.

    Events are delivered in order through ``events``. A connection is
    single-use: after ``close`` a fresh one must be built.
    """

    events: asyncio.Queue[TransportEvent]

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def send_text(self, chat_id: int, text: str, *, reply_to: int | None = None) -> None: ...

    async def send_photo(
        self, chat_id: int, data: bytes, *, caption: str | None = None, reply_to: int | None = None
    ) -> None: ...

    async def send_video(
        self, chat_id: int, data: bytes, *, caption: str | None = None, reply_to: int | None = None
    ) -> None: ...

    async def send_audio(
        self, chat_id: int, data: bytes, *, filename: str, reply_to: int | None = None
    ) -> None: ...

    async def send_voice(self, chat_id: int, data: bytes, *, reply_to: int | None = None) -> None: ...

    async def send_sticker(
        self, chat_id: int, data: bytes, *, filename: str, reply_to: int | None = None
    ) -> None: ...

    async def send_document(
        self, chat_id: int, data: bytes, *, filename: str, reply_to: int | None = None
    ) -> None: ...

    async def send_poll(
        self, chat_id: int, question: str, options: Sequence[str], *, reply_to: int | None = None
    ) -> None: ...

    async def react(self, message: InboundMessage, emoji: str) -> None: ...

    async def send_typing(self, chat_id: int) -> None: ...

    async def download_media(self, media: MediaRef) -> bytes: ...
