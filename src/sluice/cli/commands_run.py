"""`sluice run` command."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from pathlib import Path
import sys
from typing import Any

import tyro

from sluice.config.loader import load_pipeline_config
from sluice.config.schema import PipelineOptions, StageSpec
from sluice.ingest.sources import FileSource
from sluice.observability.logging import configure_logging
from sluice.pipeline.errors import SluiceError
from sluice.pipeline.executor import Pipeline, RunResult
from sluice.pipeline.registry import parse_stage_spec, resolve_stages
from sluice.storage.reports import append_run_record, write_run_report
from sluice.storage.sinks import FileSink, StreamSink


@dataclass(slots=True)
class RunCommand:
    """Stream a file through transform stages into an output file (`-` for stdout)."""

    input: tyro.conf.Positional[Path]
    output: tyro.conf.Positional[str]
    stages: tuple[str, ...] = ()
    """Stage specs appended after the config's stages, e.g. `upper` or `prefix:text=> `."""
    config: str | None = None
    """JSON config path or `module_or_path:attribute` reference."""
    chunk_size_bytes: int | None = None
    high_buffer_mark: int | None = None
    report: Path | None = None
    """Write a JSON run report here."""
    journal: Path | None = None
    """Append the run record to this JSON-lines journal."""
    log_level: str = "INFO"


def _with_input_size(spec: StageSpec, input_path: Path) -> StageSpec:
    if spec.name != "progress" or "total_bytes" in spec.params:
        return spec
    try:
        size = input_path.stat().st_size
    except OSError:
        return spec
    return StageSpec(name=spec.name, params={**spec.params, "total_bytes": size})


def _persist(command: RunCommand, record: dict[str, Any]) -> None:
    if command.report is not None:
        write_run_report(command.report, record)
    if command.journal is not None:
        append_run_record(command.journal, record)


def execute(command: RunCommand) -> RunResult:
    configure_logging(command.log_level)
    cfg = load_pipeline_config(command.config)
    options = PipelineOptions(
        chunk_size_bytes=(
            cfg.options.chunk_size_bytes
            if command.chunk_size_bytes is None
            else command.chunk_size_bytes
        ),
        high_buffer_mark=(
            cfg.options.high_buffer_mark
            if command.high_buffer_mark is None
            else command.high_buffer_mark
        ),
    )
    specs = [
        _with_input_size(spec, command.input)
        for spec in [*cfg.stages, *(parse_stage_spec(text) for text in command.stages)]
    ]
    stages = resolve_stages(specs)

    to_stdout = command.output == "-"
    source = FileSource(command.input, options.chunk_size_bytes)
    if to_stdout:
        sink: StreamSink = StreamSink(sys.stdout.buffer, options.high_buffer_mark)
    else:
        sink = FileSink(Path(command.output), options.high_buffer_mark)
    pipeline = Pipeline(source, stages, sink, options=options, name=cfg.name)

    base = {
        "input": str(command.input),
        "output": command.output,
        "stage_specs": [asdict(spec) for spec in specs],
        "options": asdict(options),
    }
    summary_stream = sys.stderr if to_stdout else sys.stdout

    try:
        result = asyncio.run(pipeline.run())
    except SluiceError as exc:
        _persist(
            command,
            {
                **base,
                "run_id": pipeline.run_id,
                "name": pipeline.name,
                "status": pipeline.state.value,
                "error": f"{type(exc).__name__}: {exc}",
                **pipeline.metrics.to_dict(),
            },
        )
        print(f"run run_id={pipeline.run_id} failed: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    _persist(command, {**base, **result.to_dict()})
    print(
        f"run run_id={result.run_id} chunks={result.chunks_delivered} "
        f"bytes={result.bytes_delivered} pauses={result.pauses}",
        file=summary_stream,
    )
    return result
