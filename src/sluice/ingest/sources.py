"""Chunk sources: lazy producers feeding a pipeline."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, AsyncIterable, AsyncIterator, BinaryIO, Iterable, Iterator

from sluice.pipeline.errors import CapacityError, ResourceError
from sluice.pipeline.stage import END_OF_STREAM, Chunk, StreamState


DEFAULT_CHUNK_SIZE = 64 * 1024


def _check_chunk_size(chunk_size_bytes: int) -> int:
    if chunk_size_bytes <= 0:
        raise ValueError(f"chunk_size_bytes must be > 0, got {chunk_size_bytes}")
    return chunk_size_bytes


class ChunkSource:
    """Base source implementing the pause/resume and end-of-stream contract.

    Subclasses implement `_read()`, returning the next chunk or
    `END_OF_STREAM`. The backing resource is only touched from `produce()`,
    one read per call.
    """

    name: str = "source"

    def __init__(self) -> None:
        self.state = StreamState.IDLE
        self._error: Exception | None = None
        self.produced = 0

    async def produce(self) -> Chunk:
        if self.state is StreamState.PAUSED:
            raise CapacityError(f"{self.name}: produce() called while paused")
        if self.state is StreamState.ENDED:
            return END_OF_STREAM
        if self._error is not None:
            raise self._error

        self.state = StreamState.FLOWING
        try:
            chunk = await self._read()
        except Exception as exc:
            self.state = StreamState.ERRORED
            self._error = exc
            raise

        if chunk is END_OF_STREAM:
            self.state = StreamState.ENDED
            return END_OF_STREAM
        self.produced += 1
        return chunk

    def pause(self) -> None:
        if self.state in (StreamState.IDLE, StreamState.FLOWING):
            self.state = StreamState.PAUSED

    def resume(self) -> None:
        if self.state is StreamState.PAUSED:
            self.state = StreamState.FLOWING

    @property
    def paused(self) -> bool:
        return self.state is StreamState.PAUSED

    async def close(self) -> None:
        """Release the backing resource. Safe to call more than once."""

    async def _read(self) -> Chunk:
        raise NotImplementedError


class BytesSource(ChunkSource):
    """Slice an in-memory buffer into fixed-size chunks."""

    name = "bytes"

    def __init__(self, data: bytes, chunk_size_bytes: int = DEFAULT_CHUNK_SIZE) -> None:
        super().__init__()
        self._data = bytes(data)
        self.chunk_size_bytes = _check_chunk_size(chunk_size_bytes)
        self._offset = 0

    async def _read(self) -> Chunk:
        if self._offset >= len(self._data):
            return END_OF_STREAM
        chunk = self._data[self._offset : self._offset + self.chunk_size_bytes]
        self._offset += len(chunk)
        return chunk


class IterableSource(ChunkSource):
    """Produce chunks from a sync or async iterable, e.g. a generator."""

    name = "iterable"

    def __init__(self, items: Iterable[Any] | AsyncIterable[Any]) -> None:
        super().__init__()
        self._is_async = hasattr(items, "__aiter__")
        self._items: Iterator[Any] | AsyncIterator[Any]
        if self._is_async:
            self._items = items.__aiter__()  # type: ignore[union-attr]
        else:
            self._items = iter(items)  # type: ignore[arg-type]

    async def _read(self) -> Chunk:
        if self._is_async:
            try:
                return await self._items.__anext__()  # type: ignore[union-attr]
            except StopAsyncIteration:
                return END_OF_STREAM
        return next(self._items, END_OF_STREAM)  # type: ignore[call-overload]

    async def close(self) -> None:
        if self._is_async:
            closer = getattr(self._items, "aclose", None)
            if closer is not None:
                await closer()
            return
        closer = getattr(self._items, "close", None)
        if closer is not None:
            closer()


class FileSource(ChunkSource):
    """Read a file in fixed-size chunks on a worker thread."""

    name = "file"

    def __init__(self, path: Path | str, chunk_size_bytes: int = DEFAULT_CHUNK_SIZE) -> None:
        super().__init__()
        self.path = Path(path)
        self.chunk_size_bytes = _check_chunk_size(chunk_size_bytes)
        self._handle: BinaryIO | None = None

    async def _open(self) -> BinaryIO:
        try:
            return await asyncio.to_thread(self.path.open, "rb")
        except IsADirectoryError as exc:
            raise ResourceError(
                f"io-fault: is a directory ({self.path})",
                kind="io-fault",
                path=self.path,
            ) from exc
        except OSError as exc:
            raise ResourceError.from_os_error(exc, self.path) from exc

    async def _read(self) -> Chunk:
        if self._handle is None:
            self._handle = await self._open()
        try:
            data = await asyncio.to_thread(self._handle.read, self.chunk_size_bytes)
        except OSError as exc:
            raise ResourceError.from_os_error(exc, self.path) from exc
        if not data:
            await self.close()
            return END_OF_STREAM
        return data

    async def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            await asyncio.to_thread(handle.close)
