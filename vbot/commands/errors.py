from __future__ import annotations


class CommandError(Exception):
    """Base exception for command failures that carry a user-facing message."""

    def __init__(self, user_message: str, *, detail: str | None = None) -> None:
        super().__init__(detail or user_message)
        self.user_message = user_message


class CommandUsageError(CommandError):
    """Raised when arguments are missing or malformed."""


class MissingApiKeyError(CommandError):
    """Raised when a command needs an API key that is not configured."""

    def __init__(self, env_name: str) -> None:
        super().__init__(f"❌ {env_name} is not configured. Ask the bot owner to set it in .env.")
        self.env_name = env_name


class MediaTooLargeError(CommandError):
    """Raised when downloaded or uploaded media exceeds the configured limit."""


class UpstreamError(CommandError):
    """Raised when an external service fails or answers with garbage."""


class RegistryError(Exception):
    """Raised when the command table is built with conflicting names."""
