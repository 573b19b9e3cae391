"""Scripted sources, stages and sinks that record the calls they receive."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

from sluice.ingest.sources import ChunkSource
from sluice.pipeline.errors import TransformError
from sluice.pipeline.stage import END_OF_STREAM, Chunk, StreamState, TransformStage


class RecordingSource(ChunkSource):
    """Source over a fixed list; appends each call to a shared log."""

    name = "recording"

    def __init__(self, chunks: Sequence[Chunk], log: list[str] | None = None) -> None:
        super().__init__()
        self._chunks = list(chunks)
        self.log = log if log is not None else []
        self.closed = False

    async def produce(self) -> Chunk:
        chunk = await super().produce()
        self.log.append("end" if chunk is END_OF_STREAM else f"produce:{chunk!r}")
        return chunk

    def pause(self) -> None:
        self.log.append("pause")
        super().pause()

    def resume(self) -> None:
        self.log.append("resume")
        super().resume()

    async def close(self) -> None:
        self.closed = True

    async def _read(self) -> Chunk:
        if not self._chunks:
            return END_OF_STREAM
        return self._chunks.pop(0)


class ScriptedSink:
    """Sink refusing the chunks at the given 1-based positions."""

    def __init__(self, log: list[str] | None = None, refuse_at: Sequence[int] = ()) -> None:
        self.log = log if log is not None else []
        self.refuse_at = set(refuse_at)
        self.chunks: list[Chunk] = []
        self.state = StreamState.IDLE

    async def consume(self, chunk: Chunk) -> bool:
        self.chunks.append(chunk)
        self.log.append(f"consume:{chunk!r}")
        ready = len(self.chunks) not in self.refuse_at
        self.state = StreamState.FLOWING if ready else StreamState.PAUSED
        return ready

    async def wait_ready(self) -> None:
        self.log.append("wait_ready")
        await asyncio.sleep(0)
        self.log.append("ready")
        self.state = StreamState.FLOWING

    async def finalize(self) -> None:
        self.log.append("finalize")
        self.state = StreamState.ENDED

    async def abort(self, error: BaseException | None = None) -> None:
        self.log.append("abort")
        self.state = StreamState.ERRORED


class FailOnChunkStage(TransformStage):
    """Raise `TransformError` on the n-th chunk (1-based)."""

    name = "fail-on"

    def __init__(self, position: int, error: Exception | None = None) -> None:
        self.position = position
        self.error = error
        self.seen: list[Any] = []

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        self.seen.append(chunk)
        if len(self.seen) == self.position:
            raise self.error or TransformError(f"bad chunk {chunk!r}", stage=self.name)
        return [chunk]


class DuplicateStage(TransformStage):
    """Emit every chunk twice."""

    name = "duplicate"

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        return [chunk, chunk]


class StalledSink(ScriptedSink):
    """Sink that refuses every chunk and never drains."""

    async def consume(self, chunk: Chunk) -> bool:
        await super().consume(chunk)
        self.state = StreamState.PAUSED
        return False

    async def wait_ready(self) -> None:
        self.log.append("wait_ready")
        await asyncio.Event().wait()
