#!/usr/bin/env python3
"""
pgbox CLI entry point.

Builds the command registry and dispatches to the orchestrator.
"""

import sys

from rich.console import Console

from .cli import CommandDefinition, CommandRegistry
from .orchestrator import Orchestrator


def command_definitions(orchestrator: Orchestrator) -> list[CommandDefinition]:
    return [
        CommandDefinition(
            "up", "Start a PostgreSQL container", orchestrator.handle_up_command
        ),
        CommandDefinition(
            "export",
            "Write a Docker Compose project to a directory",
            orchestrator.handle_export_command,
        ),
        CommandDefinition(
            "down", "Stop a PostgreSQL container", orchestrator.handle_down_command
        ),
        CommandDefinition(
            "stop", "Alias for down", orchestrator.handle_down_command
        ),
        CommandDefinition(
            "restart",
            "Restart a PostgreSQL container",
            orchestrator.handle_restart_command,
        ),
        CommandDefinition(
            "status", "Show pgbox containers", orchestrator.handle_status_command
        ),
        CommandDefinition(
            "logs", "Show container logs", orchestrator.handle_logs_command
        ),
        CommandDefinition(
            "psql", "Open psql in a running container", orchestrator.handle_psql_command
        ),
        CommandDefinition(
            "clean",
            "Remove pgbox containers, volumes and images",
            orchestrator.handle_clean_command,
        ),
        CommandDefinition(
            "list-extensions",
            "List available extensions",
            orchestrator.handle_list_extensions_command,
        ),
    ]


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and run the selected command."""
    console = Console()
    orchestrator = Orchestrator(console)
    registry = CommandRegistry()
    registry.register_all(command_definitions(orchestrator))

    parser = registry.build_parser()
    args = parser.parse_args(argv)

    try:
        handler = registry.get_handler(args.command)
        handler(args)
    except KeyboardInterrupt:
        console.print("\nInterrupted", style="yellow")
        sys.exit(130)
    except Exception as e:
        console.print(f"Error: {e}", style="bold red")
        sys.exit(1)


if __name__ == "__main__":
    main()
