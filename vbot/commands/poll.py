from __future__ import annotations

from vbot.commands.base import BaseCommand
from vbot.commands.errors import CommandUsageError
from vbot.models import InboundMessage
from vbot.transport.base import Connection

MAX_POLL_OPTIONS = 10


def parse_poll(text: str) -> tuple[str, list[str]]:
    """Split ``question, option, option`` (or ``|``-separated) into a question and options."""
    parts = [part.strip() for part in text.split(",") if part.strip()]
    if len(parts) < 3:
        parts = [part.strip() for part in text.split("|") if part.strip()]
    if len(parts) < 3:
        raise ValueError("a poll needs a question and at least 2 options")
    return parts[0], parts[1:]


class PollCommand(BaseCommand):
    name = "poll"
    aliases = ("pool",)
    description = "Create a single-choice poll"
    usage = "poll question, option 1, option 2"
    category = "Tools"

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        try:
            question, options = parse_poll(args)
        except ValueError as exc:
            raise CommandUsageError(
                "❌ Wrong format!\n\n"
                f"Usage: {self.usage_text()}\n"
                f"Or: {self.runtime.config.prefix}poll question | option 1 | option 2"
            ) from exc
        if len(options) > MAX_POLL_OPTIONS:
            raise CommandUsageError(f"❌ Too many options. Maximum is {MAX_POLL_OPTIONS}.")
        await connection.send_poll(message.chat_id, question, options, reply_to=message.message_id)
