from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken

ENCRYPTED_PREFIX = "fernet:"


class CipherError(Exception):
    """Raised when a stored secret cannot be decoded."""


class CredentialCipher:
    """Fernet wrapper for secrets at rest.

    Without a key, values pass through untouched. Encrypted values carry a
    ``fernet:`` marker so a store written with a key is never mistaken for
    plaintext later.
    """

    def __init__(self, key: str | None) -> None:
        self._fernet = Fernet(key) if key else None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, value: str) -> str:
        if self._fernet is None:
            return value
        token = self._fernet.encrypt(value.encode("utf-8")).decode("utf-8")
        return f"{ENCRYPTED_PREFIX}{token}"

    def decrypt(self, stored: str) -> str:
        if not stored.startswith(ENCRYPTED_PREFIX):
            return stored
        if self._fernet is None:
            raise CipherError("Stored value is encrypted but no encryption key is configured")
        try:
            return self._fernet.decrypt(stored[len(ENCRYPTED_PREFIX) :].encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise CipherError("Stored value cannot be decrypted with the configured key") from exc
