from __future__ import annotations

from dataclasses import dataclass

import httpx

from vbot.config import AppConfig
from vbot.llm import GroqClient
from vbot.media import MediaDownloader
from vbot.presence import Presence
from vbot.scratch import ScratchSpace


@dataclass
class RuntimeContext:
    config: AppConfig
    presence: Presence
    scratch: ScratchSpace
    http: httpx.AsyncClient
    downloader: MediaDownloader
    groq: GroqClient | None = None

    async def aclose(self) -> None:
        await self.http.aclose()
