from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yt_dlp
from yt_dlp.utils import DownloadError

from vbot.scratch import ScratchSpace

logger = logging.getLogger("media")

AUDIO_MP3_OPTIONS: dict[str, Any] = {
    "format": "bestaudio/best",
    "postprocessors": [
        {"key": "FFmpegExtractAudio", "preferredcodec": "mp3", "preferredquality": "0"},
        {"key": "FFmpegMetadata"},
    ],
}
MP4_VIDEO_OPTIONS: dict[str, Any] = {"format": "best[ext=mp4]/best"}
BEST_OPTIONS: dict[str, Any] = {"format": "best"}


class DownloadFailed(Exception):
    """Raised when yt-dlp produced no usable file."""


class FileTooLarge(DownloadFailed):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"File is {size} bytes, limit is {limit}")
        self.size = size
        self.limit = limit


class FFmpegError(Exception):
    """Raised when an ffmpeg conversion fails or times out."""


@dataclass(frozen=True)
class DownloadedFile:
    data: bytes
    filename: str
    title: str | None = None

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower().lstrip(".")

    @property
    def size(self) -> int:
        return len(self.data)


def _run_ytdlp(url: str, options: dict[str, Any]) -> dict[str, Any] | None:
    with yt_dlp.YoutubeDL(options) as ydl:
        return ydl.extract_info(url, download=True)


class MediaDownloader:
    """Runs yt-dlp off the event loop, inside a scratch directory owned by one invocation."""

    def __init__(self, scratch: ScratchSpace) -> None:
        self._scratch = scratch

    async def fetch(
        self,
        url: str,
        *,
        tag: str,
        options: dict[str, Any],
        max_bytes: int,
    ) -> list[DownloadedFile]:
        """Download ``url`` and return every produced file, largest first.

        A ``DownloadError`` is tolerated when yt-dlp still left non-empty
        files behind (partial playlist, failed postprocessing of extras).
        Files over ``max_bytes`` raise ``FileTooLarge``.
        """
        with self._scratch.directory(tag) as workdir:
            opts = {
                "outtmpl": str(workdir / f"{tag}_%(id)s.%(ext)s"),
                "noplaylist": True,
                "quiet": True,
                "no_warnings": True,
                "noprogress": True,
                "max_filesize": max_bytes,
                **options,
            }
            title: str | None = None
            info: dict[str, Any] | None = None
            try:
                info = await asyncio.to_thread(_run_ytdlp, url, opts)
                if info:
                    title = info.get("title")
            except DownloadError as exc:
                if not _has_output(workdir):
                    raise DownloadFailed(str(exc)) from exc
                logger.warning("yt-dlp reported an error but produced files for %s: %s", url, exc)

            files = sorted(
                (p for p in workdir.iterdir() if p.is_file() and p.stat().st_size > 0 and not p.name.endswith(".part")),
                key=lambda p: p.stat().st_size,
                reverse=True,
            )
            if not files:
                expected = int((info or {}).get("filesize") or (info or {}).get("filesize_approx") or 0)
                if expected > max_bytes:
                    raise FileTooLarge(expected, max_bytes)
                raise DownloadFailed(f"No file downloaded from {url}")
            oversized = [p for p in files if p.stat().st_size > max_bytes]
            if oversized:
                raise FileTooLarge(oversized[0].stat().st_size, max_bytes)
            return [DownloadedFile(data=p.read_bytes(), filename=p.name, title=title) for p in files]


def _has_output(workdir: Path) -> bool:
    return any(p.is_file() and p.stat().st_size > 0 and not p.name.endswith(".part") for p in workdir.iterdir())


async def run_ffmpeg(args: list[str], *, timeout: float = 120.0) -> None:
    try:
        proc = await asyncio.create_subprocess_exec(
            "ffmpeg",
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise FFmpegError("ffmpeg is not installed") from exc
    try:
        _, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.communicate()
        raise FFmpegError(f"ffmpeg timed out after {timeout}s") from exc
    if proc.returncode != 0:
        raise FFmpegError(stderr_b.decode("utf-8", errors="replace").strip() or f"ffmpeg exited {proc.returncode}")
