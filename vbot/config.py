from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

DEFAULT_TTS_VOICES = {
    "id": "id-ID-ArdiNeural",
    "ar": "ar-SA-HamedNeural",
    "ja": "ja-JP-KeitaNeural",
}


@dataclass(frozen=True)
class ReactionConfig:
    received: str = "🫡"
    processing: str = "✍️"
    success: str = "👌"
    error: str = "👎"


@dataclass(frozen=True)
class AppConfig:
    telegram_bot_token: str
    groq_api_key: str
    vt_api_key: str
    encryption_key: str
    prefix: str = "."
    session_dir: str = "./session"
    temp_dir: str = "./temp"
    reconnect_delay_sec: float = 5.0
    log_level: str = "INFO"
    http_timeout_sec: float = 60.0
    typing_sec: float = 2.0
    reactions: ReactionConfig = field(default_factory=ReactionConfig)
    max_audio_mb: int = 16
    max_video_mb: int = 50
    max_download_mb: int = 20
    ai_base_url: str = "https://api.groq.com/openai/v1"
    ai_model: str = "llama-3.3-70b-versatile"
    ai_language: str = "Bahasa Indonesia"
    tts_voices: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TTS_VOICES))
    sticker_font_path: str = "DejaVuSans-Bold.ttf"
    telegram_poll_timeout_sec: int = 10


def load_dotenv(path: str | Path) -> dict[str, str]:
    env_path = Path(path)
    if not env_path.exists():
        return {}
    result: dict[str, str] = {}
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()
        if not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        result[key] = value
    return result


def load_env(path: str | Path = ".env", environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Read ``.env`` and let the process environment override it."""
    values = load_dotenv(path)
    values.update(os.environ if environ is None else environ)
    return values


def _validate_prefix(prefix: str) -> str:
    if len(prefix) != 1 or prefix.isspace():
        raise ValueError(f"prefix must be a single non-whitespace character, got {prefix!r}")
    return prefix


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"config section '{name}' must be an object")
    return value


def load_config(path: str | Path, env_values: Mapping[str, str] | None = None) -> AppConfig:
    """Build the application config from ``config.json`` plus secrets from the environment.

    A missing config file is not an error: every setting has a default.
    Secrets (bot token, API keys, encryption key) are only read from ``env_values``.
    """
    config_path = Path(path)
    raw: dict[str, Any] = {}
    if config_path.exists():
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    env = env_values or {}

    http_raw = _section(raw, "http")
    presence_raw = _section(raw, "presence")
    reactions_raw = presence_raw.get("reactions") or {}
    limits_raw = _section(raw, "limits")
    ai_raw = _section(raw, "ai")
    tts_raw = _section(raw, "tts")
    sticker_raw = _section(raw, "sticker")
    telegram_raw = _section(raw, "telegram")

    defaults = ReactionConfig()
    reactions = ReactionConfig(
        received=str(reactions_raw.get("received", defaults.received)),
        processing=str(reactions_raw.get("processing", defaults.processing)),
        success=str(reactions_raw.get("success", defaults.success)),
        error=str(reactions_raw.get("error", defaults.error)),
    )

    voices = dict(DEFAULT_TTS_VOICES)
    voices.update({str(k): str(v) for k, v in (tts_raw.get("voices") or {}).items()})

    return AppConfig(
        telegram_bot_token=str(env.get("TELEGRAM_BOT_TOKEN", "")).strip(),
        groq_api_key=str(env.get("GROQ_API_KEY", "")).strip(),
        vt_api_key=str(env.get("VT_API_KEY", "")).strip(),
        encryption_key=str(env.get("SESSION_ENCRYPTION_KEY", "")).strip(),
        prefix=_validate_prefix(str(raw.get("prefix", "."))),
        session_dir=str(raw.get("session_dir", "./session")),
        temp_dir=str(raw.get("temp_dir", "./temp")),
        reconnect_delay_sec=float(raw.get("reconnect_delay_sec", 5)),
        log_level=str(raw.get("log_level", "INFO")).upper(),
        http_timeout_sec=float(http_raw.get("timeout_sec", 60)),
        typing_sec=float(presence_raw.get("typing_sec", 2.0)),
        reactions=reactions,
        max_audio_mb=int(limits_raw.get("max_audio_mb", 16)),
        max_video_mb=int(limits_raw.get("max_video_mb", 50)),
        max_download_mb=int(limits_raw.get("max_download_mb", 20)),
        ai_base_url=str(ai_raw.get("base_url", "https://api.groq.com/openai/v1")).rstrip("/"),
        ai_model=str(ai_raw.get("model", "llama-3.3-70b-versatile")),
        ai_language=str(ai_raw.get("language", "Bahasa Indonesia")),
        tts_voices=voices,
        sticker_font_path=str(sticker_raw.get("font_path", "DejaVuSans-Bold.ttf")),
        telegram_poll_timeout_sec=int(telegram_raw.get("poll_timeout_sec", 10)),
    )
