"""Dataclass-based configuration schema for Sluice."""

from dataclasses import dataclass, field
from typing import Any


DEFAULT_CHUNK_SIZE_BYTES = 64 * 1024
DEFAULT_HIGH_BUFFER_MARK = 16 * 1024


@dataclass(slots=True)
class PipelineOptions:
    """Buffer sizing passed at pipeline construction."""

    chunk_size_bytes: int = DEFAULT_CHUNK_SIZE_BYTES
    high_buffer_mark: int = DEFAULT_HIGH_BUFFER_MARK

    def __post_init__(self) -> None:
        if int(self.chunk_size_bytes) <= 0:
            raise ValueError(f"chunk_size_bytes must be > 0, got {self.chunk_size_bytes}")
        if int(self.high_buffer_mark) <= 0:
            raise ValueError(f"high_buffer_mark must be > 0, got {self.high_buffer_mark}")
        self.chunk_size_bytes = int(self.chunk_size_bytes)
        self.high_buffer_mark = int(self.high_buffer_mark)


@dataclass(slots=True)
class StageSpec:
    """One named stage and its string parameters."""

    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PipelineConfig:
    """Top-level pipeline configuration."""

    options: PipelineOptions = field(default_factory=PipelineOptions)
    stages: list[StageSpec] = field(default_factory=list)
    name: str = "pipeline"
