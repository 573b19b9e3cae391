"""Chunk sinks with bounded buffers and drain signalling."""

from __future__ import annotations

import asyncio
from collections import deque
import contextlib
import json
from pathlib import Path
from typing import Any, BinaryIO, Iterable

from sluice.observability.logging import get_logger, log_event
from sluice.pipeline.errors import PipelineError, ResourceError
from sluice.pipeline.stage import Chunk, StreamState, chunk_bytes, chunk_weight


DEFAULT_HIGH_BUFFER_MARK = 16 * 1024

_LOGGER = get_logger("sluice.sinks")


def _check_high_buffer_mark(high_buffer_mark: int) -> int:
    if high_buffer_mark <= 0:
        raise ValueError(f"high_buffer_mark must be > 0, got {high_buffer_mark}")
    return high_buffer_mark


def encode_chunk(chunk: Chunk) -> bytes:
    """Serialize a chunk for a byte-oriented resource.

    Records that are neither bytes nor text are written as JSON lines.
    """

    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    return (json.dumps(chunk, sort_keys=True, default=str) + "\n").encode("utf-8")


class BufferedSink:
    """Sink base with an internal buffer drained by a background writer.

    `consume()` never blocks on I/O: it queues the chunk and reports whether
    the buffer is still under `high_buffer_mark`. The drain event fires each
    time the writer empties the buffer. Subclasses implement `_write()` and
    optionally `_close()` / `_release()`.
    """

    name: str = "sink"

    def __init__(self, high_buffer_mark: int = DEFAULT_HIGH_BUFFER_MARK) -> None:
        self.high_buffer_mark = _check_high_buffer_mark(high_buffer_mark)
        self.state = StreamState.IDLE
        self.consumed = 0
        self.bytes_written = 0
        self._buffer: deque[Chunk] = deque()
        self._buffered = 0
        self._pending = asyncio.Event()
        self._drained = asyncio.Event()
        self._drained.set()
        self._writer: asyncio.Task[None] | None = None
        self._error: BaseException | None = None

    @property
    def buffered(self) -> int:
        """Current buffer weight in bytes (or records in object mode)."""

        return self._buffered

    async def consume(self, chunk: Chunk) -> bool:
        self._raise_if_failed()
        if self.state in (StreamState.ENDED, StreamState.ERRORED):
            raise PipelineError(f"{self.name}: consume() after the sink was closed")

        self._ensure_writer()
        self._buffer.append(chunk)
        self._buffered += chunk_weight(chunk)
        self.consumed += 1
        self._drained.clear()
        self._pending.set()

        ready = self._buffered < self.high_buffer_mark
        self.state = StreamState.FLOWING if ready else StreamState.PAUSED
        return ready

    async def wait_ready(self) -> None:
        """Wait for the drain signal, re-raising any writer failure."""

        await self._drained.wait()
        self._raise_if_failed()

    async def finalize(self) -> None:
        if self.state is StreamState.ENDED:
            return
        self._raise_if_failed()
        await self.wait_ready()
        await self._stop_writer()
        self._raise_if_failed()
        await self._close()
        self.state = StreamState.ENDED

    async def abort(self, error: BaseException | None = None) -> None:
        if self.state is StreamState.ENDED:
            return
        await self._stop_writer()
        dropped = len(self._buffer)
        self._buffer.clear()
        self._buffered = 0
        self.state = StreamState.ERRORED
        if self._error is None:
            self._error = error
        self._drained.set()
        log_event(
            _LOGGER,
            "sink_aborted",
            sink=self.name,
            dropped_chunks=dropped,
            error=None if error is None else f"{type(error).__name__}: {error}",
        )
        await self._release()

    def _ensure_writer(self) -> None:
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(
                self._drain_loop(), name=f"sluice-{self.name}-writer"
            )

    async def _stop_writer(self) -> None:
        writer, self._writer = self._writer, None
        if writer is None:
            return
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer

    async def _drain_loop(self) -> None:
        try:
            while True:
                await self._pending.wait()
                while self._buffer:
                    chunk = self._buffer[0]
                    await self._write(chunk)
                    self._buffer.popleft()
                    self._buffered -= chunk_weight(chunk)
                    self.bytes_written += chunk_bytes(chunk)
                self._pending.clear()
                if self.state is StreamState.PAUSED:
                    self.state = StreamState.FLOWING
                self._drained.set()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._error = exc
            self.state = StreamState.ERRORED
            self._drained.set()

    def _raise_if_failed(self) -> None:
        if self._error is not None and self.state is StreamState.ERRORED:
            raise self._error

    async def _write(self, chunk: Chunk) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        """Flush and release the backing resource after a complete write."""

    async def _release(self) -> None:
        """Release the backing resource after an abort."""

        await self._close()


class CollectingSink(BufferedSink):
    """Keep every written chunk in memory.

    `delay` simulates a slow consumer by sleeping before each write.
    """

    name = "collect"

    def __init__(
        self,
        high_buffer_mark: int = DEFAULT_HIGH_BUFFER_MARK,
        *,
        delay: float = 0.0,
    ) -> None:
        super().__init__(high_buffer_mark)
        self.delay = delay
        self.chunks: list[Chunk] = []

    async def _write(self, chunk: Chunk) -> None:
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        self.chunks.append(chunk)

    def joined(self) -> Any:
        """Concatenate collected byte or text chunks."""

        if all(isinstance(chunk, str) for chunk in self.chunks) and self.chunks:
            return "".join(self.chunks)
        return b"".join(encode_chunk(chunk) for chunk in self.chunks)


class StreamSink(BufferedSink):
    """Write to an already-open binary handle such as stdout."""

    name = "stream"

    def __init__(
        self,
        handle: BinaryIO,
        high_buffer_mark: int = DEFAULT_HIGH_BUFFER_MARK,
        *,
        close_handle: bool = False,
    ) -> None:
        super().__init__(high_buffer_mark)
        self._handle: BinaryIO | None = handle
        self._close_handle = close_handle

    async def _write(self, chunk: Chunk) -> None:
        handle = await self._get_handle()
        try:
            await asyncio.to_thread(handle.write, encode_chunk(chunk))
        except OSError as exc:
            raise ResourceError.from_os_error(exc) from exc

    async def _get_handle(self) -> BinaryIO:
        if self._handle is None:
            raise ResourceError(f"{self.name}: handle already closed", kind="io-fault")
        return self._handle

    async def _close(self) -> None:
        handle = self._handle
        if handle is None:
            return
        try:
            await asyncio.to_thread(handle.flush)
            if self._close_handle:
                await asyncio.to_thread(handle.close)
        except OSError as exc:
            raise ResourceError.from_os_error(exc) from exc
        finally:
            if self._close_handle:
                self._handle = None

    async def _release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None and self._close_handle:
            await asyncio.to_thread(handle.close)


class FileSink(StreamSink):
    """Write chunks to a file, opened lazily on first write."""

    name = "file"

    def __init__(
        self,
        path: Path | str,
        high_buffer_mark: int = DEFAULT_HIGH_BUFFER_MARK,
        *,
        append: bool = False,
    ) -> None:
        self.path = Path(path)
        self._mode = "ab" if append else "wb"
        self._opened = False
        super().__init__(None, high_buffer_mark, close_handle=True)  # type: ignore[arg-type]

    async def _get_handle(self) -> BinaryIO:
        if not self._opened:
            self._handle = await self._open()
            self._opened = True
        return await super()._get_handle()

    async def _open(self) -> BinaryIO:
        try:
            await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
            return await asyncio.to_thread(self.path.open, self._mode)
        except OSError as exc:
            raise ResourceError.from_os_error(exc, self.path) from exc

    async def _write(self, chunk: Chunk) -> None:
        handle = await self._get_handle()
        try:
            await asyncio.to_thread(handle.write, encode_chunk(chunk))
        except OSError as exc:
            raise ResourceError.from_os_error(exc, self.path) from exc

    async def _close(self) -> None:
        if not self._opened:
            # Empty input still produces an (empty) output file.
            await self._get_handle()
        await super()._close()


class TeeSink:
    """Fan every chunk out to several sinks, honouring each one's backpressure.

    The tee is ready only while every child is ready; `wait_ready()` waits
    for all saturated children to drain.
    """

    name = "tee"

    def __init__(self, sinks: Iterable[Any]) -> None:
        self.sinks = list(sinks)
        if not self.sinks:
            raise ValueError("TeeSink needs at least one destination sink")

    @property
    def state(self) -> StreamState:
        states = [sink.state for sink in self.sinks]
        for candidate in (StreamState.ERRORED, StreamState.PAUSED):
            if candidate in states:
                return candidate
        if all(state is StreamState.ENDED for state in states):
            return StreamState.ENDED
        if all(state is StreamState.IDLE for state in states):
            return StreamState.IDLE
        return StreamState.FLOWING

    async def consume(self, chunk: Chunk) -> bool:
        ready = True
        for sink in self.sinks:
            if not await sink.consume(chunk):
                ready = False
        return ready

    async def wait_ready(self) -> None:
        for sink in self.sinks:
            await sink.wait_ready()

    async def finalize(self) -> None:
        for sink in self.sinks:
            await sink.finalize()

    async def abort(self, error: BaseException | None = None) -> None:
        first_failure: Exception | None = None
        for sink in self.sinks:
            try:
                await sink.abort(error)
            except Exception as exc:
                if first_failure is None:
                    first_failure = exc
        if first_failure is not None:
            raise first_failure
