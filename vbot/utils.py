from __future__ import annotations

from typing import Iterable

TELEGRAM_MESSAGE_LIMIT = 4096


def split_message(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> Iterable[str]:
    """Yield chunks of at most ``limit`` characters, preferring paragraph then line breaks."""
    if len(text) <= limit:
        yield text
        return

    chunk = ""
    for para in text.split("\n\n"):
        candidate = para if not chunk else f"{chunk}\n\n{para}"
        if len(candidate) <= limit:
            chunk = candidate
            continue

        if chunk:
            yield chunk
            chunk = ""

        if len(para) <= limit:
            chunk = para
            continue

        for line in para.split("\n"):
            candidate = line if not chunk else f"{chunk}\n{line}"
            if len(candidate) <= limit:
                chunk = candidate
                continue
            if chunk:
                yield chunk
                chunk = ""
            if len(line) <= limit:
                chunk = line
                continue
            for i in range(0, len(line), limit):
                yield line[i : i + limit]

    if chunk:
        yield chunk


def strip_bot_suffix(command: str, bot_username: str | None) -> str:
    """Drop the ``@botname`` Telegram appends to commands in groups."""
    if not bot_username or "@" not in command:
        return command
    name, _, target = command.partition("@")
    if target.lower() == bot_username.lower():
        return name
    return command

