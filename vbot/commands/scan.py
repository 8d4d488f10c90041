from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import re
import time
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import urlparse

import httpx

from vbot.commands.base import BaseCommand
from vbot.commands.errors import CommandUsageError, MediaTooLargeError, MissingApiKeyError, UpstreamError
from vbot.models import InboundMessage, MediaRef
from vbot.transport.base import Connection

VT_BASE_URL = "https://www.virustotal.com/api/v3"
VT_GUI_URL = "https://www.virustotal.com/gui"
MAX_DIRECT_UPLOAD = 32 * 1024 * 1024
POLL_MAX_ATTEMPTS = 10
POLL_MIN_DELAY = 15.0
POLL_MAX_DELAY = 60.0
ENGINE_LIMIT = 25

HASH_PATTERN = re.compile(r"^(?:[a-f0-9]{32}|[a-f0-9]{40}|[a-f0-9]{64})$")

CATEGORY_META: dict[str, tuple[str, str, int]] = {
    "malicious": ("❌", "malicious", 4),
    "suspicious": ("⚠️", "suspicious", 3),
    "harmless": ("✅", "clean", 2),
    "undetected": ("➖", "undetected", 1),
    "timeout": ("⏳", "timeout", 0),
    "failed": ("❌", "failed", 0),
    "type-unsupported": ("🚫", "unsupported", 0),
}
UNKNOWN_CATEGORY = ("❓", "unknown", 0)

logger = logging.getLogger("commands.scan")


def is_url(text: str) -> bool:
    if not text:
        return False
    parsed = urlparse(text.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def is_hash(text: str) -> bool:
    return bool(text) and HASH_PATTERN.match(text.strip().lower()) is not None


def url_id(url: str) -> str:
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


def format_vt_size(size: int | None) -> str:
    if not size:
        return "-"
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.1f} {units[index]}"


def pick_engines(results: Mapping[str, Any] | None, limit: int = ENGINE_LIMIT) -> list[str]:
    entries = list((results or {}).values())
    entries.sort(key=lambda r: CATEGORY_META.get(r.get("category"), UNKNOWN_CATEGORY)[2], reverse=True)
    lines = []
    for entry in entries[:limit]:
        mark, label, _ = CATEGORY_META.get(entry.get("category"), UNKNOWN_CATEGORY)
        detail = entry.get("result") or label
        lines.append(f"{mark} {entry.get('engine_name', '?')} ({detail})")
    return lines


def format_report(
    stats: Mapping[str, int] | None,
    results: Mapping[str, Any] | None,
    *,
    title: str,
    kind: str,
    size: str,
    link: str,
) -> str:
    stats = stats or {}
    total = len(results or {}) or sum(int(v or 0) for v in stats.values())
    detections = int(stats.get("malicious", 0) or 0) + int(stats.get("suspicious", 0) or 0)
    engines = pick_engines(results)
    return "\n".join(
        [
            f"🧬 Detections: {detections} / {total or '??'}",
            "",
            "\n".join(engines) if engines else "No engine details.",
            "",
            f"🔖 {title}",
            f"🔒 {kind}",
            f"📁 {size}",
            "",
            '➖ "Undetected" means the engine found nothing, not that the target is guaranteed safe.',
            "",
            f"⚜️ Link to VirusTotal: {link}",
        ]
    )


def rate_limit_delay(headers: Mapping[str, str] | None, fallback: float, *, now: float) -> float:
    """Seconds to wait before the next poll, honouring Retry-After and x-ratelimit-reset."""
    headers = headers or {}
    try:
        return max(float(headers["retry-after"]), POLL_MIN_DELAY)
    except (KeyError, TypeError, ValueError):
        pass
    try:
        reset_in = float(headers["x-ratelimit-reset"]) - now
        if reset_in > 0:
            return max(reset_in, POLL_MIN_DELAY)
    except (KeyError, TypeError, ValueError):
        pass
    return max(fallback, POLL_MIN_DELAY)


class VirusTotalClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http
        self._headers = {"x-apikey": api_key}
        self._sleep = sleep
        self._clock = clock

    async def _get_object(self, path: str) -> dict[str, Any] | None:
        try:
            resp = await self._http.get(f"{VT_BASE_URL}{path}", headers=self._headers)
        except httpx.HTTPError as exc:
            logger.warning("VirusTotal GET %s failed: %s", path, exc)
            return None
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            logger.warning("VirusTotal GET %s returned HTTP %s: %s", path, resp.status_code, resp.text[:200])
            return None
        return resp.json().get("data")

    async def file_report(self, file_hash: str) -> dict[str, Any] | None:
        return await self._get_object(f"/files/{file_hash}")

    async def url_report(self, url: str) -> dict[str, Any] | None:
        return await self._get_object(f"/urls/{url_id(url)}")

    async def upload_file(self, data: bytes, filename: str) -> str:
        try:
            resp = await self._http.post(
                f"{VT_BASE_URL}/files",
                headers=self._headers,
                files={"file": (filename, data)},
            )
            resp.raise_for_status()
            return str(resp.json()["data"]["id"])
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise UpstreamError("❌ Upload to VirusTotal failed.", detail=str(exc)) from exc

    async def submit_url(self, url: str) -> str:
        try:
            resp = await self._http.post(f"{VT_BASE_URL}/urls", headers=self._headers, data={"url": url})
            resp.raise_for_status()
            return str(resp.json()["data"]["id"])
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise UpstreamError("❌ Failed to submit the URL to VirusTotal.", detail=str(exc)) from exc

    async def wait_for_analysis(self, analysis_id: str) -> dict[str, Any] | None:
        delay = POLL_MIN_DELAY
        for attempt in range(1, POLL_MAX_ATTEMPTS + 1):
            headers: Mapping[str, str] | None = None
            try:
                resp = await self._http.get(f"{VT_BASE_URL}/analyses/{analysis_id}", headers=self._headers)
                headers = resp.headers
                resp.raise_for_status()
                data = resp.json().get("data") or {}
                if data.get("attributes", {}).get("status") == "completed":
                    return data
            except httpx.HTTPStatusError as exc:
                logger.warning(
                    "Polling analysis %s attempt=%s got HTTP %s", analysis_id, attempt, exc.response.status_code
                )
            except httpx.HTTPError as exc:
                logger.warning("Polling analysis %s attempt=%s failed: %s", analysis_id, attempt, exc)
            wait = rate_limit_delay(headers, delay, now=self._clock())
            await self._sleep(wait)
            delay = min(wait * 1.2, POLL_MAX_DELAY)
        return None


class ScanCommand(BaseCommand):
    name = "scan"
    description = "Scan a file, URL or hash with VirusTotal"
    usage = "scan [url|hash] (or reply to a file)"
    category = "Tools"
    failure_text = "❌ Scan failed. Try again later."

    def client(self) -> VirusTotalClient:
        key = self.runtime.config.vt_api_key
        if not key:
            raise MissingApiKeyError("VT_API_KEY")
        return VirusTotalClient(self.runtime.http, key)

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        client = self.client()
        query = args.strip()
        media = self.media_of(message, prefer_quoted=False)
        if media is not None:
            await self.presence.processing(connection, message)
            report = await self.scan_file(client, connection, media)
        elif is_url(query):
            await self.presence.processing(connection, message)
            report = await self.scan_url(client, query)
        elif is_hash(query):
            await self.presence.processing(connection, message)
            report = await self.scan_hash(client, query.lower())
        else:
            raise CommandUsageError(
                f"❌ Use {self.usage_text()} with an attached or replied file, a URL, or an md5/sha1/sha256 hash."
            )
        await self.reply(connection, message, report)

    async def scan_file(self, client: VirusTotalClient, connection: Connection, media: MediaRef) -> str:
        limit_mb = min(self.runtime.config.max_download_mb, MAX_DIRECT_UPLOAD // (1024 * 1024))
        if media.file_size:
            self.check_size(media.file_size, limit_mb, "File")
        data = await connection.download_media(media)
        if len(data) > MAX_DIRECT_UPLOAD:
            raise MediaTooLargeError("❌ File is larger than 32MB, which the free API does not accept.")
        filename = media.file_name or "file.bin"
        sha256 = hashlib.sha256(data).hexdigest()
        self.logger.info("Scanning file %s sha256=%s", filename, sha256)

        existing = await client.file_report(sha256)
        if existing is not None:
            attrs = existing.get("attributes") or {}
            return format_report(
                attrs.get("last_analysis_stats"),
                attrs.get("last_analysis_results"),
                title=f"File name: {filename}",
                kind=attrs.get("type_description") or "Unknown",
                size=format_vt_size(attrs.get("size") or len(data)),
                link=f"{VT_GUI_URL}/file/{existing.get('id') or sha256}",
            )

        analysis_id = await client.upload_file(data, filename)
        analysis = await client.wait_for_analysis(analysis_id)
        if analysis is None:
            raise UpstreamError("❌ Analysis did not finish in time. Try again later.")
        attrs = analysis.get("attributes") or {}
        return format_report(
            attrs.get("stats"),
            attrs.get("results"),
            title=f"File name: {filename}",
            kind="File",
            size=format_vt_size(len(data)),
            link=f"{VT_GUI_URL}/file/{sha256}",
        )

    async def scan_url(self, client: VirusTotalClient, url: str) -> str:
        self.logger.info("Scanning URL %s", url)
        existing = await client.url_report(url)
        if existing is not None:
            attrs = existing.get("attributes") or {}
            return format_report(
                attrs.get("last_analysis_stats"),
                attrs.get("last_analysis_results"),
                title=f"URL: {url}",
                kind="URL",
                size="-",
                link=f"{VT_GUI_URL}/url/{existing.get('id') or url_id(url)}",
            )
        analysis_id = await client.submit_url(url)
        analysis = await client.wait_for_analysis(analysis_id)
        if analysis is None:
            raise UpstreamError("❌ URL analysis did not finish in time. Try again later.")
        attrs = analysis.get("attributes") or {}
        return format_report(
            attrs.get("stats"),
            attrs.get("results"),
            title=f"URL: {url}",
            kind="URL",
            size="-",
            link=f"{VT_GUI_URL}/url/{url_id(url)}",
        )

    async def scan_hash(self, client: VirusTotalClient, file_hash: str) -> str:
        self.logger.info("Scanning hash %s", file_hash)
        report = await client.file_report(file_hash)
        if report is None:
            raise CommandUsageError(
                f"❌ Hash not found on VirusTotal. Try uploading the file with {self.usage_text()}."
            )
        attrs = report.get("attributes") or {}
        return format_report(
            attrs.get("last_analysis_stats"),
            attrs.get("last_analysis_results"),
            title=f"Hash: {file_hash}",
            kind=attrs.get("type_description") or "Unknown",
            size=format_vt_size(attrs.get("size")),
            link=f"{VT_GUI_URL}/file/{report.get('id') or file_hash}",
        )
