from __future__ import annotations

import pytest

from conftest import make_message
from vbot.commands.base import BaseCommand
from vbot.commands.errors import CommandUsageError, MissingApiKeyError
from vbot.presence import Presence
from vbot.config import ReactionConfig


class EchoCommand(BaseCommand):
    name = "echo"

    async def run(self, message, connection, args) -> None:
        if args == "usage":
            raise CommandUsageError("bad usage")
        if args == "key":
            raise MissingApiKeyError("GROQ_API_KEY")
        if args == "crash":
            raise RuntimeError("boom")
        await self.reply(connection, message, args)


class TestBaseCommand:
    @pytest.mark.asyncio
    async def test_success_lifecycle(self, runtime, connection) -> None:
        await EchoCommand(runtime).execute(make_message(".echo hi", message_id=3), connection, "hi")
        assert connection.emojis() == ["R", "S"]
        assert connection.sent == [("text", 100, "hi", 3)]

    @pytest.mark.asyncio
    async def test_command_error_replies_with_its_message(self, runtime, connection) -> None:
        await EchoCommand(runtime).execute(make_message(), connection, "usage")
        assert connection.emojis() == ["R", "E"]
        assert connection.texts() == ["bad usage"]

    @pytest.mark.asyncio
    async def test_missing_key_degrades_to_message(self, runtime, connection) -> None:
        await EchoCommand(runtime).execute(make_message(), connection, "key")
        assert connection.emojis() == ["R", "E"]
        assert "GROQ_API_KEY" in connection.texts()[0]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, runtime, connection) -> None:
        await EchoCommand(runtime).execute(make_message(), connection, "crash")
        assert connection.emojis() == ["R", "E"]
        assert connection.texts() == [EchoCommand.failure_text]

    @pytest.mark.asyncio
    async def test_failing_error_reply_does_not_raise(self, runtime, connection) -> None:
        connection.fail_sends = True
        await EchoCommand(runtime).execute(make_message(), connection, "crash")
        assert connection.emojis() == ["R", "E"]

    def test_text_or_quoted(self, runtime) -> None:
        cmd = EchoCommand(runtime)
        quoted = make_message("quoted text", message_id=9)
        assert cmd.text_or_quoted(make_message(quoted=quoted), "") == "quoted text"
        assert cmd.text_or_quoted(make_message(quoted=quoted), " own ") == "own"


class TestPresence:
    @pytest.mark.asyncio
    async def test_reaction_failure_is_logged_not_raised(self, connection) -> None:
        async def broken(message, emoji):
            raise RuntimeError("no reactions here")

        connection.react = broken
        await Presence(ReactionConfig(), typing_sec=0).received(connection, make_message())

    @pytest.mark.asyncio
    async def test_long_reply_is_split_and_threaded_once(self, connection) -> None:
        text = "\n\n".join(["x" * 3000, "y" * 3000])
        await Presence(ReactionConfig(), typing_sec=0).reply(connection, make_message(message_id=5), text)
        assert [item[3] for item in connection.sent] == [5, None]
        assert connection.texts() == ["x" * 3000, "y" * 3000]

    @pytest.mark.asyncio
    async def test_typing_waits_configured_time(self, connection) -> None:
        delays: list[float] = []

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)

        presence = Presence(ReactionConfig(), typing_sec=2.0, sleep=fake_sleep)
        await presence.reply(connection, make_message(), "hi")
        assert delays == [2.0]
