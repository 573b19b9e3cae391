"""Tyro CLI application entrypoint."""

from __future__ import annotations

from typing import Annotated

import tyro

from sluice.cli import commands_inspect, commands_run, commands_stages


TopLevelCommand = Annotated[
    commands_run.RunCommand,
    tyro.conf.subcommand(name="run"),
] | Annotated[
    commands_stages.StagesCommand,
    tyro.conf.subcommand(name="stages"),
] | Annotated[
    commands_inspect.InspectCommand,
    tyro.conf.subcommand(name="inspect"),
]


def dispatch(command: TopLevelCommand) -> None:
    """Dispatch parsed top-level command object."""

    if isinstance(command, commands_run.RunCommand):
        commands_run.execute(command)
        return
    if isinstance(command, commands_stages.StagesCommand):
        commands_stages.execute(command)
        return
    if isinstance(command, commands_inspect.InspectCommand):
        commands_inspect.execute(command)
        return
    raise TypeError(f"Unsupported command type: {type(command).__name__}")


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and run requested command."""

    command = tyro.cli(TopLevelCommand, args=argv)
    dispatch(command)
