from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger("llm")


class LLMError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GroqClient:
    """Chat completions against Groq's OpenAI-compatible endpoint."""

    def __init__(self, http: httpx.AsyncClient, api_key: str, *, model: str, base_url: str) -> None:
        self._http = http
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        retries: int = 1,
    ) -> str:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        attempt = 0
        while True:
            try:
                resp = await self._http.post(
                    f"{self._base_url}/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                resp.raise_for_status()
                break
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                # 4xx other than rate limiting will not improve on retry
                if (status != 429 and status < 500) or attempt >= retries:
                    raise LLMError(f"Groq request failed with HTTP {status}", status) from exc
                logger.warning("Groq HTTP %s, retrying attempt=%s", status, attempt + 1)
            except httpx.TransportError as exc:
                if attempt >= retries:
                    raise LLMError(f"Groq request failed: {exc}") from exc
                logger.warning("Groq transport error %s, retrying attempt=%s", exc, attempt + 1)
            await asyncio.sleep(0.5 * (attempt + 1))
            attempt += 1

        data = resp.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMError("Groq response has no choices") from exc
        text = str(content or "").strip()
        logger.info("Groq response received model=%s chars=%s", self._model, len(text))
        return text
