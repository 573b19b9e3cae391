"""`sluice stages` command."""

from __future__ import annotations

from dataclasses import dataclass

from sluice.pipeline.registry import available_stages


@dataclass(slots=True)
class StagesCommand:
    """List the stages usable from `sluice run --stages`."""

    verbose: bool = False
    """Also show accepted parameters."""


def execute(command: StagesCommand) -> None:
    entries = available_stages()
    width = max(len(entry.name) for entry in entries)
    for entry in entries:
        line = f"{entry.name.ljust(width)}  {entry.summary}"
        if command.verbose and entry.params:
            line += f"  [{', '.join(sorted(entry.params))}]"
        print(line)
