"""Pipeline stage interfaces and chunk primitives."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Sequence


Chunk = Any


class _EndOfStream:
    """Sentinel returned by a source once it has no more data."""

    _instance: _EndOfStream | None = None

    def __new__(cls) -> _EndOfStream:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()


class StreamState(str, Enum):
    """Lifecycle state held independently by every source and sink."""

    IDLE = "idle"
    FLOWING = "flowing"
    PAUSED = "paused"
    ENDED = "ended"
    ERRORED = "errored"


def chunk_weight(chunk: Chunk) -> int:
    """Return the buffer weight of a chunk.

    Byte and text chunks weigh their length; any other record counts as one
    unit, mirroring object-mode streams.
    """

    if isinstance(chunk, (bytes, bytearray, memoryview, str)):
        return len(chunk)
    return 1


def chunk_bytes(chunk: Chunk) -> int:
    """Return the byte length of a chunk, or 0 for records."""

    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return len(chunk)
    if isinstance(chunk, str):
        return len(chunk.encode("utf-8"))
    return 0


class TransformStage:
    """Base class for a stage mapping one chunk to zero or more chunks.

    Stages may hold state across calls but must hand any retained state
    downstream from `flush()`, which the pipeline calls exactly once at end
    of stream.
    """

    name: str = "stage"

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        return [chunk]

    async def flush(self) -> Sequence[Chunk]:
        return []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class IdentityStage(TransformStage):
    """Pass every chunk through untouched."""

    name = "identity"


class MapStage(TransformStage):
    """Apply a plain function to every chunk."""

    def __init__(self, fn: Callable[[Chunk], Chunk], name: str = "map") -> None:
        self._fn = fn
        self.name = name

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        return [self._fn(chunk)]


class FilterStage(TransformStage):
    """Keep only chunks for which `predicate` is truthy."""

    def __init__(self, predicate: Callable[[Chunk], bool], name: str = "filter") -> None:
        self._predicate = predicate
        self.name = name

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        if self._predicate(chunk):
            return [chunk]
        return []
