"""Byte codec stages: gzip compression and content digests."""

from __future__ import annotations

import hashlib
import zlib
from typing import Sequence

from sluice.observability.logging import get_logger, log_event
from sluice.pipeline.errors import TransformError
from sluice.pipeline.stage import Chunk, TransformStage


_LOGGER = get_logger("sluice.stages.codec")

_GZIP_WBITS = 16 + zlib.MAX_WBITS
_AUTO_WBITS = 32 + zlib.MAX_WBITS


def _require_bytes(chunk: Chunk, stage: str) -> bytes:
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    raise TransformError(f"expected bytes chunk, got {type(chunk).__name__}", stage=stage)


class GzipStage(TransformStage):
    """Compress the stream into a single gzip member."""

    name = "gzip"

    def __init__(self, level: int = 6) -> None:
        if not -1 <= level <= 9:
            raise ValueError(f"level must be between -1 and 9, got {level}")
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, _GZIP_WBITS)

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        out = self._compressor.compress(_require_bytes(chunk, self.name))
        return [out] if out else []

    async def flush(self) -> Sequence[Chunk]:
        out = self._compressor.flush()
        return [out] if out else []


class GunzipStage(TransformStage):
    """Decompress gzip (or zlib) data, including concatenated members."""

    name = "gunzip"

    def __init__(self) -> None:
        self._decompressor = zlib.decompressobj(_AUTO_WBITS)
        self._seen_input = False

    def _feed(self, data: bytes) -> list[bytes]:
        out: list[bytes] = []
        while data:
            try:
                piece = self._decompressor.decompress(data)
            except zlib.error as exc:
                raise TransformError(f"corrupt compressed data: {exc}", stage=self.name) from exc
            if piece:
                out.append(piece)
            if not self._decompressor.eof:
                break
            data = self._decompressor.unused_data
            if data:
                self._decompressor = zlib.decompressobj(_AUTO_WBITS)
        return out

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        data = _require_bytes(chunk, self.name)
        if data:
            self._seen_input = True
        return self._feed(data)

    async def flush(self) -> Sequence[Chunk]:
        try:
            tail = self._decompressor.flush()
        except zlib.error as exc:
            raise TransformError(f"corrupt compressed data: {exc}", stage=self.name) from exc
        if self._seen_input and not self._decompressor.eof:
            raise TransformError("truncated compressed stream", stage=self.name)
        return [tail] if tail else []


class DigestStage(TransformStage):
    """Pass bytes through while hashing them."""

    name = "digest"

    def __init__(self, algorithm: str = "sha256") -> None:
        try:
            self._hash = hashlib.new(algorithm)
        except ValueError as exc:
            raise ValueError(f"unsupported digest algorithm: {algorithm}") from exc
        self.algorithm = algorithm
        self.byte_count = 0

    @property
    def hexdigest(self) -> str:
        return self._hash.hexdigest()

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        data = _require_bytes(chunk, self.name)
        self._hash.update(data)
        self.byte_count += len(data)
        return [chunk]

    async def flush(self) -> Sequence[Chunk]:
        log_event(
            _LOGGER,
            "stream_digest",
            stage=self.name,
            algorithm=self.algorithm,
            digest=self.hexdigest,
            byte_count=self.byte_count,
        )
        return []
