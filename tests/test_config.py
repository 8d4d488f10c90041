from __future__ import annotations

import json

import pytest

from vbot.config import load_config, load_dotenv, load_env


def test_missing_file_gives_defaults(tmp_path) -> None:
    config = load_config(tmp_path / "config.json", {})
    assert config.prefix == "."
    assert config.reconnect_delay_sec == 5.0
    assert config.reactions.received == "🫡"
    assert config.telegram_bot_token == ""
    assert config.tts_voices["id"] == "id-ID-ArdiNeural"


def test_values_and_secrets(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "prefix": "!",
                "reconnect_delay_sec": 2,
                "presence": {"typing_sec": 0, "reactions": {"success": "🔥"}},
                "limits": {"max_video_mb": 20},
                "ai": {"model": "m", "base_url": "https://example.test/v1/"},
                "tts": {"voices": {"en": "en-US-GuyNeural"}},
            }
        )
    )
    config = load_config(path, {"TELEGRAM_BOT_TOKEN": " 1:x ", "GROQ_API_KEY": "g"})

    assert config.prefix == "!"
    assert config.reconnect_delay_sec == 2.0
    assert config.typing_sec == 0.0
    assert config.reactions.success == "🔥"
    assert config.reactions.error == "👎"
    assert config.max_video_mb == 20
    assert config.ai_base_url == "https://example.test/v1"
    assert config.tts_voices["en"] == "en-US-GuyNeural"
    assert config.tts_voices["ar"] == "ar-SA-HamedNeural"
    assert config.telegram_bot_token == "1:x"
    assert config.groq_api_key == "g"
    assert config.vt_api_key == ""


@pytest.mark.parametrize("prefix", ["", "..", " "])
def test_invalid_prefix(tmp_path, prefix) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"prefix": prefix}))
    with pytest.raises(ValueError):
        load_config(path, {})


def test_load_dotenv(tmp_path) -> None:
    path = tmp_path / ".env"
    path.write_text('# comment\nGROQ_API_KEY="abc"\nexport VT_API_KEY=\'def\'\nBROKEN\n\n')
    assert load_dotenv(path) == {"GROQ_API_KEY": "abc", "VT_API_KEY": "def"}


def test_environment_overrides_dotenv(tmp_path) -> None:
    path = tmp_path / ".env"
    path.write_text("GROQ_API_KEY=file\nVT_API_KEY=file\n")
    values = load_env(path, {"GROQ_API_KEY": "env"})
    assert values["GROQ_API_KEY"] == "env"
    assert values["VT_API_KEY"] == "file"
