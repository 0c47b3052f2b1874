"""
CLI infrastructure for pgbox.

Commands are kept as CommandDefinition records in a CommandRegistry, which
dispatches by name and builds the argparse parser with one subparser per
command. Command-specific options come from the _ARGUMENT_SETUP table.
"""

import argparse
from typing import Callable, NamedTuple, Protocol

from .config import SUPPORTED_VERSIONS


class CommandHandler(Protocol):
    """Callable run with the parsed namespace of its command."""

    def __call__(self, _args: argparse.Namespace) -> None: ...


class CommandDefinition(NamedTuple):
    """A subcommand name, its help line and the handler that runs it."""

    name: str
    help_text: str
    handler: CommandHandler


class CommandRegistry:
    """
    pgbox subcommands keyed by name.

    Definitions keep registration order, which is also the order the
    subcommands are listed in --help. Lookups by name report the known
    commands sorted.
    """

    def __init__(self) -> None:
        self._commands: dict[str, CommandDefinition] = {}

    def add(self, definition: CommandDefinition) -> None:
        """Add a command definition; names must be unique."""
        if definition.name in self._commands:
            raise ValueError(f"Command '{definition.name}' is already registered")
        self._commands[definition.name] = definition

    def register(
        self, command: str, handler: CommandHandler, help_text: str = ""
    ) -> None:
        self.add(CommandDefinition(command, help_text, handler))

    def register_all(self, definitions: list[CommandDefinition]) -> None:
        for definition in definitions:
            self.add(definition)

    def get_definition(self, command: str) -> CommandDefinition:
        """
        Look up a command by name.

        Raises:
            ValueError: If no command of that name exists; the message lists
                the registered commands
        """
        definition = self._commands.get(command)
        if definition is None:
            available = ", ".join(self.get_available_commands())
            raise ValueError(
                f"Unknown command '{command}'. Available commands: {available}"
            )
        return definition

    def get_handler(self, command: str) -> CommandHandler:
        return self.get_definition(command).handler

    def get_available_commands(self) -> list[str]:
        return sorted(self._commands)

    def is_registered(self, command: str) -> bool:
        return command in self._commands

    def definitions(self) -> list[CommandDefinition]:
        return list(self._commands.values())

    def build_parser(self) -> argparse.ArgumentParser:
        """Parser with a subcommand for each registered definition."""
        return build_parser(self.definitions())


def _add_connection_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        choices=SUPPORTED_VERSIONS,
        help="PostgreSQL major version (default: PGBOX_VERSION or 18)",
    )
    parser.add_argument("-p", "--port", help="Host port (default: 5432)")
    parser.add_argument("-d", "--database", help="Database name (default: postgres)")
    parser.add_argument("-u", "--user", help="PostgreSQL user (default: postgres)")
    parser.add_argument(
        "-P", "--password", help="PostgreSQL password (empty enables trust auth)"
    )
    parser.add_argument(
        "--ext", help="Comma-separated list of extensions (e.g. pgvector,hypopg)"
    )


def _add_name_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-n", "--name", help="Container name (default: detect a running pgbox container)"
    )


def _setup_up(parser: argparse.ArgumentParser) -> None:
    _add_connection_options(parser)
    parser.add_argument("-n", "--name", help="Container name")
    parser.add_argument(
        "-f",
        "--foreground",
        dest="detach",
        action="store_false",
        help="Run attached to the terminal instead of in the background",
    )


def _setup_export(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("directory", help="Directory to write the project into")
    _add_connection_options(parser)
    parser.add_argument("--base-image", help="Base image for the Dockerfile FROM line")


def _setup_logs(parser: argparse.ArgumentParser) -> None:
    _add_name_option(parser)
    parser.add_argument("-f", "--follow", action="store_true", help="Follow log output")


def _setup_psql(parser: argparse.ArgumentParser) -> None:
    _add_name_option(parser)
    parser.add_argument("-u", "--user", help="PostgreSQL user")
    parser.add_argument("-d", "--database", help="Database name")
    parser.add_argument(
        "psql_args",
        nargs=argparse.REMAINDER,
        help="Extra arguments passed to psql (after --)",
    )


def _setup_clean(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation")
    parser.add_argument(
        "-a", "--all", action="store_true", help="Also remove postgres base images"
    )


def _setup_list_extensions(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        choices=SUPPORTED_VERSIONS,
        help="PostgreSQL major version for package names",
    )
    parser.add_argument(
        "--kind",
        choices=("builtin", "package"),
        help="Only show extensions of this kind",
    )


_ARGUMENT_SETUP: dict[str, Callable[[argparse.ArgumentParser], None]] = {
    "up": _setup_up,
    "export": _setup_export,
    "down": _add_name_option,
    "stop": _add_name_option,
    "restart": _add_name_option,
    "status": _add_name_option,
    "logs": _setup_logs,
    "psql": _setup_psql,
    "clean": _setup_clean,
    "list-extensions": _setup_list_extensions,
}


def build_parser(definitions: list[CommandDefinition]) -> argparse.ArgumentParser:
    """
    Build the argument parser for the given command definitions.

    Args:
        definitions: Commands to expose; each gets its own subparser

    Returns:
        Configured ArgumentParser whose namespace carries the command name
    """
    parser = argparse.ArgumentParser(
        prog="pgbox",
        description="Run PostgreSQL in Docker with extensions",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="command")
    subparsers.required = True

    for definition in definitions:
        sub = subparsers.add_parser(definition.name, help=definition.help_text)
        setup = _ARGUMENT_SETUP.get(definition.name)
        if setup is not None:
            setup(sub)
    return parser
