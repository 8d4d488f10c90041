from __future__ import annotations

from urllib.parse import quote

import httpx

from vbot.commands.base import BaseCommand
from vbot.commands.errors import UpstreamError
from vbot.models import InboundMessage
from vbot.transport.base import Connection

POLLINATIONS_URL = "https://image.pollinations.ai/prompt/{prompt}"
IMAGE_TIMEOUT_SEC = 60.0


def build_image_url(prompt: str) -> str:
    return POLLINATIONS_URL.format(prompt=quote(prompt, safe=""))


class ImageCommand(BaseCommand):
    name = "image"
    aliases = ("img", "generate")
    description = "Generate an image from a prompt"
    usage = "image <prompt>"
    category = "AI"
    failure_text = "❌ Failed to generate the image."

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        prompt = self.require_text(message, args, "Describe the image you want.")
        await self.presence.processing(connection, message)
        try:
            resp = await self.runtime.http.get(
                build_image_url(prompt),
                params={"width": 1024, "height": 1024, "nologo": "true", "enhance": "true"},
                timeout=IMAGE_TIMEOUT_SEC,
                follow_redirects=True,
            )
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise UpstreamError("❌ Timed out. Try a simpler prompt.", detail=str(exc)) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(self.failure_text, detail=str(exc)) from exc
        content_type = resp.headers.get("content-type", "")
        if not content_type.startswith("image/") or not resp.content:
            raise UpstreamError(self.failure_text, detail=f"unexpected content-type {content_type!r}")
        caption = f"🎨 {prompt[:900]}"
        await connection.send_photo(message.chat_id, resp.content, caption=caption, reply_to=message.message_id)
