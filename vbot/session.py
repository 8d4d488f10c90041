from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from vbot.security import CipherError, CredentialCipher

if TYPE_CHECKING:
    from vbot.transport.base import Connection

CREDENTIALS_FILE = "credentials.json"

logger = logging.getLogger("session")


class CredentialsError(Exception):
    """Raised when the persisted session cannot be loaded."""


class RouterState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Credentials:
    bot_token: str
    bot_id: int | None = None
    bot_username: str | None = None
    updated_at: str | None = None

    def with_identity(self, bot_id: int, bot_username: str | None) -> Credentials:
        return replace(self, bot_id=bot_id, bot_username=bot_username)


@dataclass
class Session:
    """Live state of one bot process.

    ``startup_time`` is assigned once, on the first ready event, and kept
    across reconnects so the offline backlog stays suppressed.
    """

    prefix: str
    startup_time: int | None = None
    connection: Connection | None = None
    bot_username: str | None = None

    def mark_ready(self, now: int) -> bool:
        if self.startup_time is not None:
            return False
        self.startup_time = now
        return True


class SessionStore:
    def __init__(self, session_dir: str | Path, cipher: CredentialCipher) -> None:
        self._dir = Path(session_dir)
        self._cipher = cipher

    @property
    def path(self) -> Path:
        return self._dir / CREDENTIALS_FILE

    @property
    def directory(self) -> Path:
        return self._dir

    def load(self) -> Credentials | None:
        if not self.path.exists():
            return None
        try:
            raw: dict[str, Any] = json.loads(self.path.read_text(encoding="utf-8"))
            token = self._cipher.decrypt(str(raw["bot_token"]))
        except (OSError, ValueError, KeyError, TypeError, CipherError) as exc:
            raise CredentialsError(f"Cannot read {self.path}: {exc}") from exc
        bot_id = raw.get("bot_id")
        return Credentials(
            bot_token=token,
            bot_id=int(bot_id) if bot_id is not None else None,
            bot_username=raw.get("bot_username"),
            updated_at=raw.get("updated_at"),
        )

    def load_or_create(self, configured_token: str = "") -> Credentials:
        stored = self.load()
        if stored is not None and (not configured_token or stored.bot_token == configured_token):
            logger.info("Loaded session from %s", self.path)
            return stored
        if not configured_token:
            raise CredentialsError(
                f"No credentials in {self.path} and TELEGRAM_BOT_TOKEN is not set"
            )
        if stored is not None:
            logger.warning("Configured bot token differs from stored session, replacing it")
        credentials = Credentials(bot_token=configured_token)
        self.save(credentials)
        return credentials

    def save(self, credentials: Credentials) -> Credentials:
        updated = replace(credentials, updated_at=datetime.now(timezone.utc).isoformat())
        payload = {
            "bot_token": self._cipher.encrypt(updated.bot_token),
            "bot_id": updated.bot_id,
            "bot_username": updated.bot_username,
            "updated_at": updated.updated_at,
        }
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".credentials_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return updated
