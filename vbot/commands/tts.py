from __future__ import annotations

import re

import edge_tts

from vbot.commands.base import BaseCommand
from vbot.commands.errors import CommandUsageError, UpstreamError
from vbot.models import InboundMessage
from vbot.transport.base import Connection

MAX_TTS_CHARS = 200

ARABIC_SCRIPT = re.compile(r"[\u0600-\u06FF]")
JAPANESE_SCRIPT = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff\uff66-\uff9f]")


def detect_language(text: str) -> str:
    if ARABIC_SCRIPT.search(text):
        return "ar"
    if JAPANESE_SCRIPT.search(text):
        return "ja"
    return "id"


class SayCommand(BaseCommand):
    name = "say"
    aliases = ("tts",)
    description = "Read text aloud as a voice note"
    usage = "say <text>"
    category = "Tools"
    failure_text = "❌ Failed to create the voice note."

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        text = self.require_text(message, args, "Give me something to say.")
        if len(text) > MAX_TTS_CHARS:
            raise CommandUsageError(f"❌ Text is too long. Maximum is {MAX_TTS_CHARS} characters.")
        voices = self.runtime.config.tts_voices
        language = detect_language(text)
        voice = voices.get(language) or voices["id"]
        await self.presence.processing(connection, message)

        with self.runtime.scratch.file("tts", ".mp3") as path:
            try:
                communicate = edge_tts.Communicate(text, voice)
                await communicate.save(str(path))
            except edge_tts.exceptions.EdgeTTSException as exc:
                raise UpstreamError(self.failure_text, detail=str(exc)) from exc
            if not path.exists() or path.stat().st_size == 0:
                raise UpstreamError(self.failure_text, detail="edge-tts produced no audio")
            data = path.read_bytes()
        self.logger.info("Voice note lang=%s voice=%s bytes=%s", language, voice, len(data))
        await connection.send_voice(message.chat_id, data, reply_to=message.message_id)
