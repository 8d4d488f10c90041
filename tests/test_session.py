from __future__ import annotations

import json

import pytest
from cryptography.fernet import Fernet

from vbot.security import CipherError, CredentialCipher
from vbot.session import Credentials, CredentialsError, Session, SessionStore


class TestSession:
    def test_mark_ready_only_once(self) -> None:
        session = Session(prefix=".")
        assert session.mark_ready(100) is True
        assert session.mark_ready(200) is False
        assert session.startup_time == 100


class TestCredentialCipher:
    def test_passthrough_without_key(self) -> None:
        cipher = CredentialCipher(None)
        assert cipher.encrypt("token") == "token"
        assert cipher.decrypt("token") == "token"

    def test_roundtrip_with_key(self) -> None:
        cipher = CredentialCipher(Fernet.generate_key().decode())
        stored = cipher.encrypt("token")
        assert stored.startswith("fernet:")
        assert cipher.decrypt(stored) == "token"

    def test_encrypted_value_needs_key(self) -> None:
        stored = CredentialCipher(Fernet.generate_key().decode()).encrypt("token")
        with pytest.raises(CipherError):
            CredentialCipher(None).decrypt(stored)

    def test_wrong_key(self) -> None:
        stored = CredentialCipher(Fernet.generate_key().decode()).encrypt("token")
        with pytest.raises(CipherError):
            CredentialCipher(Fernet.generate_key().decode()).decrypt(stored)


class TestSessionStore:
    def test_load_missing_returns_none(self, tmp_path) -> None:
        assert SessionStore(tmp_path, CredentialCipher(None)).load() is None

    def test_save_and_load(self, tmp_path) -> None:
        store = SessionStore(tmp_path / "s", CredentialCipher(None))
        store.save(Credentials("1:a", bot_id=5, bot_username="vbot"))

        loaded = store.load()
        assert loaded is not None
        assert loaded.bot_token == "1:a"
        assert loaded.bot_id == 5
        assert loaded.bot_username == "vbot"
        assert loaded.updated_at is not None

    def test_token_encrypted_at_rest(self, tmp_path) -> None:
        key = Fernet.generate_key().decode()
        store = SessionStore(tmp_path, CredentialCipher(key))
        store.save(Credentials("1:secret"))

        raw = json.loads(store.path.read_text())
        assert "secret" not in raw["bot_token"]
        assert store.load().bot_token == "1:secret"

    def test_load_or_create_uses_configured_token(self, tmp_path) -> None:
        store = SessionStore(tmp_path, CredentialCipher(None))
        creds = store.load_or_create("1:a")
        assert creds.bot_token == "1:a"
        assert store.path.exists()

    def test_load_or_create_prefers_stored_identity(self, tmp_path) -> None:
        store = SessionStore(tmp_path, CredentialCipher(None))
        store.save(Credentials("1:a", bot_id=5))
        assert store.load_or_create("1:a").bot_id == 5
        assert store.load_or_create("").bot_id == 5

    def test_configured_token_replaces_stored(self, tmp_path) -> None:
        store = SessionStore(tmp_path, CredentialCipher(None))
        store.save(Credentials("1:old", bot_id=5))
        creds = store.load_or_create("2:new")
        assert creds.bot_token == "2:new"
        assert creds.bot_id is None
        assert store.load().bot_token == "2:new"

    def test_nothing_available(self, tmp_path) -> None:
        with pytest.raises(CredentialsError):
            SessionStore(tmp_path, CredentialCipher(None)).load_or_create("")

    def test_corrupt_file(self, tmp_path) -> None:
        store = SessionStore(tmp_path, CredentialCipher(None))
        store.path.write_text("{not json")
        with pytest.raises(CredentialsError):
            store.load_or_create("1:a")
