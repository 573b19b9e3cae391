"""Per-run counters collected while a pipeline executes."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import time
from typing import Any

from sluice.pipeline.stage import Chunk, chunk_bytes


@dataclass(slots=True)
class StageCounters:
    """Chunks entering and leaving one stage."""

    chunks_in: int = 0
    chunks_out: int = 0
    flushed: int = 0


@dataclass(slots=True)
class RunMetrics:
    """Mutable counters for one pipeline run."""

    chunks_produced: int = 0
    bytes_produced: int = 0
    chunks_delivered: int = 0
    bytes_delivered: int = 0
    pauses: int = 0
    stages: dict[str, StageCounters] = field(default_factory=dict)
    started_perf: float | None = None
    finished_perf: float | None = None

    def start(self) -> None:
        self.started_perf = time.perf_counter()

    def stop(self) -> None:
        self.finished_perf = time.perf_counter()

    @property
    def elapsed_seconds(self) -> float:
        if self.started_perf is None:
            return 0.0
        end = self.finished_perf if self.finished_perf is not None else time.perf_counter()
        return max(0.0, end - self.started_perf)

    def stage(self, key: str) -> StageCounters:
        counters = self.stages.get(key)
        if counters is None:
            counters = StageCounters()
            self.stages[key] = counters
        return counters

    def record_produced(self, chunk: Chunk) -> None:
        self.chunks_produced += 1
        self.bytes_produced += chunk_bytes(chunk)

    def record_delivered(self, chunk: Chunk) -> None:
        self.chunks_delivered += 1
        self.bytes_delivered += chunk_bytes(chunk)

    def record_pause(self) -> None:
        self.pauses += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunks_produced": self.chunks_produced,
            "bytes_produced": self.bytes_produced,
            "chunks_delivered": self.chunks_delivered,
            "bytes_delivered": self.bytes_delivered,
            "pauses": self.pauses,
            "elapsed_seconds": round(self.elapsed_seconds, 6),
            "stages": {name: asdict(counters) for name, counters in self.stages.items()},
        }
