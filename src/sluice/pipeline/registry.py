"""Stage registry: build stages from names and string parameters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from sluice.config.schema import StageSpec
from sluice.pipeline.stage import IdentityStage, TransformStage
from sluice.stages.codec import DigestStage, GunzipStage, GzipStage
from sluice.stages.flow import ProgressStage, RateLimitStage
from sluice.stages.records import CsvRecordStage, JsonLinesStage, WordCountStage
from sluice.stages.text import LineNumberStage, LineSplitStage, PrefixStage, UpperCaseStage


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


@dataclass(frozen=True, slots=True)
class StageEntry:
    """Registered stage factory and the types of its parameters."""

    name: str
    factory: Callable[..., TransformStage]
    summary: str
    params: dict[str, Callable[[Any], Any]] = field(default_factory=dict)

    def build(self, params: dict[str, Any]) -> TransformStage:
        unknown = sorted(set(params) - set(self.params))
        if unknown:
            raise ValueError(f"Unknown parameter(s) for stage {self.name!r}: {', '.join(unknown)}")
        kwargs = {}
        for key, raw in params.items():
            try:
                kwargs[key] = self.params[key](raw)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Invalid value for {self.name}.{key}: {raw!r}") from exc
        return self.factory(**kwargs)


_REGISTRY: dict[str, StageEntry] = {
    entry.name: entry
    for entry in (
        StageEntry("identity", IdentityStage, "pass chunks through unchanged"),
        StageEntry("upper", UpperCaseStage, "uppercase text (ASCII letters for bytes)"),
        StageEntry(
            "lines",
            LineSplitStage,
            "re-chunk the stream into one chunk per line",
            {"keep_ends": _to_bool, "encoding": str},
        ),
        StageEntry(
            "number-lines",
            LineNumberStage,
            "prefix each line with a running number",
            {"start": int, "skip_blank": _to_bool},
        ),
        StageEntry(
            "prefix",
            PrefixStage,
            "prefix each line with fixed text",
            {"text": str, "skip_blank": _to_bool},
        ),
        StageEntry(
            "jsonl",
            JsonLinesStage,
            "parse newline-delimited JSON into records",
            {"skip_invalid": _to_bool},
        ),
        StageEntry(
            "csv",
            CsvRecordStage,
            "parse CSV lines into records keyed by the header",
            {"delimiter": str},
        ),
        StageEntry(
            "word-count",
            WordCountStage,
            "emit the most frequent words at end of stream",
            {"top": int},
        ),
        StageEntry("gzip", GzipStage, "gzip-compress the stream", {"level": int}),
        StageEntry("gunzip", GunzipStage, "decompress gzip or zlib data"),
        StageEntry(
            "digest",
            DigestStage,
            "log a content digest of the stream",
            {"algorithm": str},
        ),
        StageEntry(
            "progress",
            ProgressStage,
            "log progress against a known total size",
            {"total_bytes": int, "step": int},
        ),
        StageEntry(
            "rate-limit",
            RateLimitStage,
            "throttle throughput to bytes_per_second",
            {"bytes_per_second": float},
        ),
    )
}


def available_stages() -> list[StageEntry]:
    """Return registered stages sorted by name."""

    return [_REGISTRY[name] for name in sorted(_REGISTRY)]


def parse_stage_spec(text: str) -> StageSpec:
    """Parse `name` or `name:key=value,key=value` into a StageSpec."""

    name, _, raw_params = text.partition(":")
    name = name.strip()
    if not name:
        raise ValueError(f"Stage spec has no name: {text!r}")

    params: dict[str, Any] = {}
    if raw_params:
        for pair in raw_params.split(","):
            key, sep, value = pair.partition("=")
            if not sep or not key.strip():
                raise ValueError(f"Stage parameter must be key=value, got {pair!r}")
            params[key.strip()] = value
    return StageSpec(name=name, params=params)


def build_stage(spec: StageSpec) -> TransformStage:
    """Instantiate one registered stage."""

    entry = _REGISTRY.get(spec.name)
    if entry is None:
        known = ", ".join(sorted(_REGISTRY))
        raise ValueError(f"Unknown stage {spec.name!r}; available: {known}")
    return entry.build(dict(spec.params))


def resolve_stages(specs: Iterable[StageSpec | str]) -> list[TransformStage]:
    """Resolve stage specs (or spec strings) into fresh stage instances."""

    stages: list[TransformStage] = []
    for spec in specs:
        if isinstance(spec, str):
            spec = parse_stage_spec(spec)
        stages.append(build_stage(spec))
    return stages
