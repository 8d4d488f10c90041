from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Sequence
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from vbot.config import AppConfig, ReactionConfig
from vbot.media import MediaDownloader
from vbot.models import InboundMessage, MediaRef
from vbot.presence import Presence
from vbot.runtime import RuntimeContext
from vbot.scratch import ScratchSpace
from vbot.transport.base import ConnectionState, ConnectionUpdate, TransportEvent

REACTIONS = ReactionConfig(received="R", processing="P", success="S", error="E")


class FakeConnection:
    """In-memory connection recording everything sent through it."""

    def __init__(self, credentials: Any = None, *, open_ok: bool = True) -> None:
        self.credentials = credentials
        self.events: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self.open_ok = open_ok
        self.opened = False
        self.closed = False
        self.sent: list[tuple[Any, ...]] = []
        self.reactions: list[tuple[int, str]] = []
        self.media: dict[str, bytes] = {}
        self.fail_sends = False

    async def open(self) -> None:
        self.opened = True
        if self.open_ok:
            self.events.put_nowait(ConnectionUpdate(ConnectionState.OPEN))

    async def close(self) -> None:
        self.closed = True

    def _record(self, *item: Any) -> None:
        if self.fail_sends:
            raise RuntimeError("send failed")
        self.sent.append(item)

    async def send_text(self, chat_id: int, text: str, *, reply_to: int | None = None) -> None:
        self._record("text", chat_id, text, reply_to)

    async def send_photo(self, chat_id, data, *, caption=None, reply_to=None) -> None:
        self._record("photo", chat_id, data, caption, reply_to)

    async def send_video(self, chat_id, data, *, caption=None, reply_to=None) -> None:
        self._record("video", chat_id, data, caption, reply_to)

    async def send_audio(self, chat_id, data, *, filename, reply_to=None) -> None:
        self._record("audio", chat_id, data, filename, reply_to)

    async def send_voice(self, chat_id, data, *, reply_to=None) -> None:
        self._record("voice", chat_id, data, reply_to)

    async def send_sticker(self, chat_id, data, *, filename, reply_to=None) -> None:
        self._record("sticker", chat_id, data, filename, reply_to)

    async def send_document(self, chat_id, data, *, filename, reply_to=None) -> None:
        self._record("document", chat_id, data, filename, reply_to)

    async def send_poll(self, chat_id, question: str, options: Sequence[str], *, reply_to=None) -> None:
        self._record("poll", chat_id, question, list(options), reply_to)

    async def react(self, message: InboundMessage, emoji: str) -> None:
        self.reactions.append((message.message_id, emoji))

    async def send_typing(self, chat_id: int) -> None:
        return None

    async def download_media(self, media: MediaRef) -> bytes:
        return self.media[media.file_id]

    def texts(self) -> list[str]:
        return [item[2] for item in self.sent if item[0] == "text"]

    def emojis(self) -> list[str]:
        return [emoji for _, emoji in self.reactions]


def make_message(
    body: str | None = ".help",
    *,
    timestamp: int = 2_000,
    message_id: int = 1,
    chat_id: int = 100,
    is_from_self: bool = False,
    is_broadcast_status: bool = False,
    quoted: InboundMessage | None = None,
    media: MediaRef | None = None,
) -> InboundMessage:
    return InboundMessage(
        chat_id=chat_id,
        message_id=message_id,
        sender_id=42,
        timestamp=timestamp,
        body_text=body,
        is_from_self=is_from_self,
        is_broadcast_status=is_broadcast_status,
        quoted=quoted,
        media=media,
    )


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(
        telegram_bot_token="123:abc",
        groq_api_key="",
        vt_api_key="",
        encryption_key="",
        session_dir=str(tmp_path / "session"),
        temp_dir=str(tmp_path / "temp"),
        typing_sec=0.0,
        reactions=REACTIONS,
    )


@pytest.fixture
def runtime(config) -> RuntimeContext:
    scratch = ScratchSpace(config.temp_dir)
    return RuntimeContext(
        config=config,
        presence=Presence(config.reactions, typing_sec=0.0),
        scratch=scratch,
        http=MagicMock(spec=httpx.AsyncClient),
        downloader=MagicMock(spec=MediaDownloader),
        groq=None,
    )


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


def with_groq(runtime: RuntimeContext, answer: str = "ok") -> AsyncMock:
    groq = MagicMock()
    groq.complete = AsyncMock(return_value=answer)
    runtime.groq = groq
    runtime.config = replace(runtime.config, groq_api_key="key")
    return groq.complete
