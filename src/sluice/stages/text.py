"""Line-oriented text stages."""

from __future__ import annotations

from typing import Sequence

from sluice.pipeline.errors import TransformError
from sluice.pipeline.stage import Chunk, TransformStage


class LineBuffer:
    """Accumulate byte or text chunks and hand back complete lines.

    The trailing partial line is retained until more data arrives or
    `drain()` is called at end of stream.
    """

    def __init__(self, keep_ends: bool = True) -> None:
        self.keep_ends = keep_ends
        self._pending: bytes | str | None = None

    def feed(self, chunk: bytes | str) -> list[bytes | str]:
        if isinstance(chunk, (bytearray, memoryview)):
            chunk = bytes(chunk)
        if not isinstance(chunk, (bytes, str)):
            raise TypeError(f"expected bytes or str chunk, got {type(chunk).__name__}")

        if self._pending is None:
            data = chunk
        elif type(self._pending) is not type(chunk):
            raise TypeError("cannot mix bytes and str chunks in one stream")
        else:
            data = self._pending + chunk  # type: ignore[operator]

        newline = b"\n" if isinstance(data, bytes) else "\n"
        parts = data.split(newline)  # type: ignore[arg-type]
        tail = parts.pop()
        self._pending = tail if tail else None
        if self.keep_ends:
            return [part + newline for part in parts]  # type: ignore[operator]
        return list(parts)

    def drain(self) -> list[bytes | str]:
        pending, self._pending = self._pending, None
        if not pending:
            return []
        return [pending]


def _is_blank(line: bytes | str) -> bool:
    return not line.strip()


def _to_text(value: str, like: bytes | str) -> bytes | str:
    return value.encode("utf-8") if isinstance(like, bytes) else value


class UpperCaseStage(TransformStage):
    """Uppercase text chunks; byte chunks have their ASCII letters uppercased."""

    name = "upper"

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        if isinstance(chunk, (bytes, bytearray, str)):
            return [chunk.upper()]
        raise TransformError(
            f"expected bytes or str chunk, got {type(chunk).__name__}",
            stage=self.name,
        )


class LineSplitStage(TransformStage):
    """Re-chunk a byte or text stream into one chunk per line.

    With `encoding` set, byte lines are decoded to `str`.
    """

    name = "lines"

    def __init__(self, keep_ends: bool = True, encoding: str | None = None) -> None:
        self._buffer = LineBuffer(keep_ends=keep_ends)
        self.encoding = encoding

    def _decode(self, lines: list[bytes | str]) -> list[Chunk]:
        if self.encoding is None:
            return list(lines)
        try:
            return [
                line.decode(self.encoding) if isinstance(line, bytes) else line
                for line in lines
            ]
        except UnicodeDecodeError as exc:
            raise TransformError(f"cannot decode line: {exc}", stage=self.name) from exc

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        try:
            lines = self._buffer.feed(chunk)
        except TypeError as exc:
            raise TransformError(str(exc), stage=self.name) from exc
        return self._decode(lines)

    async def flush(self) -> Sequence[Chunk]:
        return self._decode(self._buffer.drain())


class LineNumberStage(TransformStage):
    """Prefix every non-blank line chunk with a running line number."""

    name = "number-lines"

    def __init__(self, start: int = 1, skip_blank: bool = True) -> None:
        self.next_number = start
        self.skip_blank = skip_blank

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        if not isinstance(chunk, (bytes, str)):
            raise TransformError(
                f"expected a line chunk, got {type(chunk).__name__}",
                stage=self.name,
            )
        if self.skip_blank and _is_blank(chunk):
            return []
        label = _to_text(f"{self.next_number}. ", chunk)
        self.next_number += 1
        return [label + chunk]  # type: ignore[operator]


class PrefixStage(TransformStage):
    """Prefix every non-blank line chunk with a fixed marker."""

    name = "prefix"

    def __init__(self, text: str = ">> ", skip_blank: bool = True) -> None:
        self.text = text
        self.skip_blank = skip_blank

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        if not isinstance(chunk, (bytes, str)):
            raise TransformError(
                f"expected a line chunk, got {type(chunk).__name__}",
                stage=self.name,
            )
        if self.skip_blank and _is_blank(chunk):
            return []
        return [_to_text(self.text, chunk) + chunk]  # type: ignore[operator]
