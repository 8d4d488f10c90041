from __future__ import annotations

from typing import Callable

from vbot.commands.base import BaseCommand, Command
from vbot.models import InboundMessage
from vbot.runtime import RuntimeContext
from vbot.transport.base import Connection

CATEGORY_ORDER = ("Sticker", "Downloader", "AI", "Tools", "Islamic", "Other")


class HelpCommand(BaseCommand):
    name = "help"
    aliases = ("menu",)
    description = "Show this menu"
    usage = "help"
    category = "Other"

    def __init__(self, runtime: RuntimeContext, commands: Callable[[], list[Command]]) -> None:
        super().__init__(runtime)
        self._commands = commands

    def render(self) -> str:
        prefix = self.runtime.config.prefix
        groups: dict[str, list[str]] = {}
        for command in self._commands():
            category = getattr(command, "category", "Other")
            usage = getattr(command, "usage", "") or command.name
            line = f"• {prefix}{usage}"
            if command.aliases:
                line += f"  ({', '.join(prefix + alias for alias in command.aliases)})"
            line += f"\n   {command.description}"
            groups.setdefault(category, []).append(line)

        ordered = [c for c in CATEGORY_ORDER if c in groups] + sorted(c for c in groups if c not in CATEGORY_ORDER)
        sections = [f"*{category}*\n" + "\n".join(groups[category]) for category in ordered]
        return "🤖 *Command menu*\n\n" + "\n\n".join(sections)

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        await self.reply(connection, message, self.render())
