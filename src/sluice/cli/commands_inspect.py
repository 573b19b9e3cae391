"""`sluice inspect` command."""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path

import tyro

from sluice.storage.reports import iter_run_records, read_json


@dataclass(slots=True)
class InspectCommand:
    """Show a JSON run report or summarize a run journal (`.jsonl`)."""

    path: tyro.conf.Positional[Path]


def execute(command: InspectCommand) -> None:
    if not command.path.exists():
        raise FileNotFoundError(f"Nothing to inspect at: {command.path}")

    if command.path.suffix == ".jsonl":
        for record in iter_run_records(command.path):
            print(
                f"{record.get('ts', '-')} {record.get('run_id', '-')} "
                f"{record.get('status', '-')} chunks={record.get('chunks_delivered', 0)} "
                f"bytes={record.get('bytes_delivered', 0)}"
                + (f" error={record['error']}" if record.get("error") else "")
            )
        return

    print(json.dumps(read_json(command.path), indent=2, sort_keys=True))
