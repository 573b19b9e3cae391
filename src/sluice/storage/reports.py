"""Run reports and the append-only run journal."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import os
from pathlib import Path
import tempfile
from typing import Any, Iterator


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def atomic_write_json(path: Path, payload: Any, indent: int = 2) -> None:
    """Write JSON via a temp file + rename so readers never see a torn file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, indent=indent, sort_keys=True) + "\n")
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)


def read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def write_run_report(path: Path, record: dict[str, Any]) -> Path:
    """Write one run record as a JSON report, stamped with `written_at`."""

    atomic_write_json(path, {"written_at": _now(), **record})
    return path


def append_run_record(path: Path, record: dict[str, Any]) -> Path:
    """Append a run record as one JSON line to a journal file."""

    envelope = {"ts": _now(), **record}
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(envelope, sort_keys=True) + "\n")
    return path


def iter_run_records(path: Path) -> Iterator[dict[str, Any]]:
    """Iterate parsed records from a run journal, skipping blank lines."""

    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            text = line.strip()
            if not text:
                continue
            payload = json.loads(text)
            if not isinstance(payload, dict):
                raise TypeError(f"Journal line is not a JSON object: {path}")
            yield payload
