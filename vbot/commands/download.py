from __future__ import annotations

import re
from typing import Any

from vbot.commands.base import BaseCommand
from vbot.commands.errors import CommandUsageError, MediaTooLargeError, UpstreamError
from vbot.media import (
    AUDIO_MP3_OPTIONS,
    BEST_OPTIONS,
    MP4_VIDEO_OPTIONS,
    DownloadedFile,
    DownloadFailed,
    FileTooLarge,
)
from vbot.models import InboundMessage
from vbot.transport.base import Connection

YOUTUBE_URL = re.compile(r"(https?://)?(www\.)?(youtube\.com|youtu\.be)/[^\s]+", re.IGNORECASE)
YOUTUBE_VALID = re.compile(
    r"^(https?://)?(www\.|m\.)?(youtube\.com/(watch\?v=|embed/|v/|shorts/)|youtu\.be/)([a-zA-Z0-9_-]{11})",
    re.IGNORECASE,
)
FACEBOOK_URL = re.compile(r"(https?://)?(www\.|m\.)?(facebook\.com|fb\.watch|fb\.com)/[^\s]+", re.IGNORECASE)
INSTAGRAM_URL = re.compile(r"(https?://)?(www\.)?(instagram\.com|instagr\.am)/[^\s]+", re.IGNORECASE)
INSTAGRAM_VALID = re.compile(r"^(https?://)?(www\.)?(instagram\.com|instagr\.am)/(p|reel|reels|tv)/[a-zA-Z0-9_-]+")
TWITTER_URL = re.compile(r"(https?://)?(www\.|mobile\.)?(twitter\.com|x\.com)/[^\s]+", re.IGNORECASE)
TIKTOK_URL = re.compile(r"(https?://)?(www\.|vt\.|vm\.|m\.)?tiktok\.com/[^\s]+", re.IGNORECASE)


def with_scheme(url: str) -> str:
    return url if re.match(r"^https?://", url, re.IGNORECASE) else f"https://{url}"


class _DownloadCommand(BaseCommand):
    """Shared flow: find a URL in the arguments or quoted text, fetch it with yt-dlp, send it back."""

    category = "Downloader"
    url_pattern: re.Pattern[str] = YOUTUBE_URL
    valid_pattern: re.Pattern[str] | None = None
    site = ""
    ytdlp_options: dict[str, Any] = BEST_OPTIONS
    failure_text = "❌ Download failed. The link may be private, removed or unsupported."

    def find_target(self, message: InboundMessage, args: str) -> str:
        for text in (args, message.quoted_text):
            match = self.url_pattern.search(text or "")
            if match:
                url = match.group(0)
                if self.valid_pattern is not None and not self.valid_pattern.match(url):
                    raise CommandUsageError(f"❌ That is not a valid {self.site} link.")
                return with_scheme(url)
        raise CommandUsageError(
            f"❌ Send a {self.site} link or reply to a message that has one.\n\nUsage: {self.usage_text()}"
        )

    def max_mb(self) -> int:
        return self.runtime.config.max_video_mb

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        url = self.find_target(message, args)
        await self.presence.processing(connection, message)
        self.logger.info("Downloading %s for chat=%s", url, message.chat_id)
        try:
            files = await self.runtime.downloader.fetch(
                url,
                tag=self.name,
                options=self.ytdlp_options,
                max_bytes=self.max_mb() * 1024 * 1024,
            )
        except FileTooLarge as exc:
            raise MediaTooLargeError(
                f"❌ File is too large ({exc.size / 1024 / 1024:.2f} MB). Limit is {self.max_mb()} MB."
            ) from exc
        except DownloadFailed as exc:
            raise UpstreamError(self.describe_failure(str(exc)), detail=str(exc)) from exc
        await self.deliver(message, connection, files)

    def describe_failure(self, error: str) -> str:
        if "Private video" in error or "private" in error.lower():
            return f"❌ This {self.site} post is private."
        if "Video unavailable" in error or "not available" in error.lower():
            return f"❌ This {self.site} video is unavailable."
        return self.failure_text

    async def deliver(self, message: InboundMessage, connection: Connection, files: list[DownloadedFile]) -> None:
        for item in files:
            caption = f"✅ {item.title}" if item.title else None
            if item.extension in ("mp4", "mov", "webm", "mkv"):
                await connection.send_video(message.chat_id, item.data, caption=caption, reply_to=message.message_id)
            elif item.extension in ("jpg", "jpeg", "png", "webp"):
                await connection.send_photo(message.chat_id, item.data, caption=caption, reply_to=message.message_id)
            else:
                await connection.send_document(
                    message.chat_id, item.data, filename=item.filename, reply_to=message.message_id
                )


class YoutubeAudioCommand(_DownloadCommand):
    name = "ytmp3"
    description = "Download YouTube audio as MP3"
    usage = "ytmp3 <youtube url>"
    site = "YouTube"
    valid_pattern = YOUTUBE_VALID
    ytdlp_options = AUDIO_MP3_OPTIONS

    def max_mb(self) -> int:
        return self.runtime.config.max_audio_mb

    async def deliver(self, message: InboundMessage, connection: Connection, files: list[DownloadedFile]) -> None:
        audio = next((f for f in files if f.extension == "mp3"), files[0])
        stem = (audio.title or "audio").strip()
        safe = re.sub(r"[^\w\s.-]", "", stem).strip() or "audio"
        await connection.send_audio(
            message.chat_id, audio.data, filename=f"{safe[:60]}.mp3", reply_to=message.message_id
        )


class YoutubeVideoCommand(_DownloadCommand):
    name = "yt"
    aliases = ("ytmp4",)
    description = "Download a YouTube video"
    usage = "yt <youtube url>"
    site = "YouTube"
    valid_pattern = YOUTUBE_VALID
    ytdlp_options = MP4_VIDEO_OPTIONS

    async def deliver(self, message: InboundMessage, connection: Connection, files: list[DownloadedFile]) -> None:
        await super().deliver(message, connection, files[:1])


class FacebookCommand(_DownloadCommand):
    name = "fb"
    aliases = ("facebook",)
    description = "Download a Facebook video"
    usage = "fb <facebook url>"
    site = "Facebook"
    url_pattern = FACEBOOK_URL


class InstagramCommand(_DownloadCommand):
    name = "ig"
    aliases = ("instagram",)
    description = "Download an Instagram post or reel"
    usage = "ig <instagram url>"
    site = "Instagram"
    url_pattern = INSTAGRAM_URL
    valid_pattern = INSTAGRAM_VALID


class TwitterCommand(_DownloadCommand):
    name = "twitter"
    aliases = ("x",)
    description = "Download media from a Twitter/X post"
    usage = "twitter <twitter/x url>"
    site = "Twitter/X"
    url_pattern = TWITTER_URL


class TikTokCommand(_DownloadCommand):
    name = "tiktok"
    aliases = ("tt",)
    description = "Download a TikTok video"
    usage = "tiktok <tiktok url>"
    site = "TikTok"
    url_pattern = TIKTOK_URL
