from __future__ import annotations

from typing import Iterable

from vbot.commands.base import Command
from vbot.commands.errors import RegistryError


class CommandRegistry:
    """Case-insensitive name and alias table, fixed once built."""

    def __init__(self, commands: Iterable[Command] = ()) -> None:
        self._commands: list[Command] = []
        self._by_name: dict[str, Command] = {}
        for command in commands:
            self._register(command)

    def _register(self, command: Command) -> None:
        names = [command.name, *command.aliases]
        keys = [name.strip().lower() for name in names]
        if not keys[0]:
            raise RegistryError("Command name cannot be empty")
        for key in keys:
            if not key or any(ch.isspace() for ch in key):
                raise RegistryError(f"Invalid command name {key!r} for '{command.name}'")
            if key in self._by_name:
                raise RegistryError(f"Command name '{key}' already registered")
        for key in keys:
            self._by_name[key] = command
        self._commands.append(command)

    def get(self, name: str) -> Command | None:
        return self._by_name.get(name.strip().lower())

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        return len(self._commands)

    def list_commands(self) -> list[Command]:
        return list(self._commands)
