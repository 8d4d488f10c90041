from __future__ import annotations

import asyncio
import io
import textwrap

from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from vbot.commands.base import BaseCommand
from vbot.commands.errors import CommandUsageError, UpstreamError
from vbot.media import FFmpegError, run_ffmpeg
from vbot.models import InboundMessage, MediaRef
from vbot.transport.base import Connection

STICKER_SIZE = 512
TEXT_BOTTOM_MARGIN = 30
VIDEO_STICKER_SECONDS = 3


def font_size_for(text: str) -> int:
    length = len(text)
    if length <= 5:
        return 65
    if length <= 10:
        return 55
    if length <= 15:
        return 45
    if length <= 20:
        return 38
    if length <= 30:
        return 32
    return 28


def load_font(font_path: str, size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    try:
        return ImageFont.truetype(font_path, size)
    except OSError:
        return ImageFont.load_default(size=size)


def open_image(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise CommandUsageError("❌ That file is not a readable image.") from exc
    return ImageOps.exif_transpose(image).convert("RGBA")


def fit_sticker(image: Image.Image, size: int = STICKER_SIZE) -> Image.Image:
    """Scale so the longer side is exactly ``size``."""
    return ImageOps.contain(image, (size, size), Image.Resampling.LANCZOS)


def draw_caption(image: Image.Image, text: str, font_path: str) -> Image.Image:
    fs = font_size_for(text)
    font = load_font(font_path, fs)
    stroke = max(fs // 6, 4)
    width, height = image.size

    overlay = Image.new("RGBA", image.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)

    max_chars = max(int(len(text) * (width - 40) / max(draw.textlength(text, font=font), 1)), 1)
    wrapped = "\n".join(textwrap.wrap(text, width=max_chars)) or text
    left, top, right, bottom = draw.multiline_textbbox((0, 0), wrapped, font=font, stroke_width=stroke, align="center")
    text_w, text_h = right - left, bottom - top

    x = (width - text_w) / 2 - left
    y = max(height - TEXT_BOTTOM_MARGIN - text_h, 0) - top
    pad = 10
    draw.rounded_rectangle(
        (x + left - pad, y + top - pad, x + left + text_w + pad, y + top + text_h + pad),
        radius=12,
        fill=(0, 0, 0, 110),
    )
    draw.multiline_text(
        (x, y),
        wrapped,
        font=font,
        fill=(255, 255, 255, 255),
        stroke_width=stroke,
        stroke_fill=(0, 0, 0, 255),
        align="center",
    )
    return Image.alpha_composite(image, overlay)


def encode_webp(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="WEBP", quality=90, method=4)
    return buf.getvalue()


def trim_transparent(image: Image.Image) -> Image.Image:
    bbox = image.getchannel("A").getbbox()
    return image.crop(bbox) if bbox else image


def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def image_to_sticker(data: bytes, caption: str | None = None, font_path: str = "") -> bytes:
    image = fit_sticker(open_image(data))
    if caption:
        image = draw_caption(image, caption, font_path)
    return encode_webp(image)


def sticker_to_png(data: bytes) -> bytes:
    return encode_png(trim_transparent(open_image(data)))


class _StickerBase(BaseCommand):
    category = "Sticker"

    async def _download(
        self, connection: Connection, message: InboundMessage, media: MediaRef
    ) -> bytes:
        if media.file_size:
            self.check_size(media.file_size, self.runtime.config.max_download_mb, "Media")
        await self.presence.processing(connection, message)
        return await connection.download_media(media)

    async def _video_to_sticker(self, data: bytes) -> bytes:
        with self.runtime.scratch.directory(self.name) as workdir:
            src = workdir / "input"
            out = workdir / "sticker.webm"
            src.write_bytes(data)
            try:
                await run_ffmpeg(
                    [
                        "-i", str(src),
                        "-t", str(VIDEO_STICKER_SECONDS),
                        "-an",
                        "-vf", f"scale={STICKER_SIZE}:{STICKER_SIZE}:force_original_aspect_ratio=decrease,fps=30",
                        "-c:v", "libvpx-vp9",
                        "-b:v", "256K",
                        "-pix_fmt", "yuva420p",
                        str(out),
                    ]
                )
            except FFmpegError as exc:
                raise UpstreamError("❌ Failed to convert the video into a sticker.", detail=str(exc)) from exc
            return out.read_bytes()


class StickerCommand(_StickerBase):
    name = "s"
    aliases = ("sticker",)
    description = "Turn an image or short video into a sticker"
    usage = "s (reply to or caption an image/video)"

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        media = self.media_of(message)
        if media is None or not (media.is_image or media.is_motion):
            raise CommandUsageError(f"❌ Send or reply to an image or video.\n\nUsage: {self.usage_text()}")
        data = await self._download(connection, message, media)
        if media.is_image:
            sticker = await asyncio.to_thread(image_to_sticker, data)
            filename = "sticker.webp"
        else:
            sticker = await self._video_to_sticker(data)
            filename = "sticker.webm"
        await connection.send_sticker(message.chat_id, sticker, filename=filename, reply_to=message.message_id)


class StickerTextCommand(_StickerBase):
    name = "stext"
    description = "Sticker with text at the bottom"
    usage = "stext <text> (reply to or caption an image)"

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        text = args.strip()
        if not text:
            raise CommandUsageError(f"❌ Add the text to write.\n\nUsage: {self.usage_text()}")
        media = self.media_of(message)
        if media is None or not media.is_image:
            raise CommandUsageError(f"❌ Send or reply to an image.\n\nUsage: {self.usage_text()}")
        data = await self._download(connection, message, media)
        sticker = await asyncio.to_thread(image_to_sticker, data, text, self.runtime.config.sticker_font_path)
        await connection.send_sticker(message.chat_id, sticker, filename="sticker.webp", reply_to=message.message_id)


class ToImageCommand(_StickerBase):
    name = "toimg"
    description = "Convert a sticker back to an image"
    usage = "toimg (reply to a sticker)"

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        quoted = message.quoted
        media = quoted.media if quoted is not None else None
        if media is None or media.kind != "sticker":
            raise CommandUsageError(f"❌ Reply to a sticker.\n\nUsage: {self.usage_text()}")
        if media.is_animated:
            raise CommandUsageError("❌ Animated (.tgs) stickers cannot be converted.")
        data = await self._download(connection, message, media)
        if media.is_video:
            video = await self._webm_to_mp4(data)
            await connection.send_video(message.chat_id, video, reply_to=message.message_id)
            return
        png = await asyncio.to_thread(sticker_to_png, data)
        await connection.send_photo(message.chat_id, png, reply_to=message.message_id)

    async def _webm_to_mp4(self, data: bytes) -> bytes:
        with self.runtime.scratch.directory(self.name) as workdir:
            src = workdir / "sticker.webm"
            out = workdir / "sticker.mp4"
            src.write_bytes(data)
            try:
                await run_ffmpeg(
                    [
                        "-i", str(src),
                        "-c:v", "libx264",
                        "-pix_fmt", "yuv420p",
                        "-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2",
                        "-movflags", "+faststart",
                        str(out),
                    ]
                )
            except FFmpegError as exc:
                raise UpstreamError("❌ Failed to convert the sticker.", detail=str(exc)) from exc
            return out.read_bytes()
