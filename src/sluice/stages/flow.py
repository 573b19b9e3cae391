"""Pass-through stages that observe or pace the stream."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Sequence

from sluice.observability.logging import get_logger, log_event
from sluice.pipeline.stage import Chunk, TransformStage, chunk_bytes


_LOGGER = get_logger("sluice.stages.flow")


class ProgressStage(TransformStage):
    """Report progress at every `step` percent of `total_bytes`.

    `on_progress` receives the percentage; by default progress is logged.
    """

    name = "progress"

    def __init__(
        self,
        total_bytes: int = 0,
        step: int = 10,
        on_progress: Callable[[int], None] | None = None,
    ) -> None:
        if total_bytes < 0:
            raise ValueError(f"total_bytes must be >= 0, got {total_bytes}")
        if not 0 < step <= 100:
            raise ValueError(f"step must be in 1..100, got {step}")
        self.total_bytes = total_bytes
        self.step = step
        self.bytes_seen = 0
        self.last_percent = 0
        self._on_progress = on_progress or self._log_progress

    def _log_progress(self, percent: int) -> None:
        log_event(
            _LOGGER,
            "progress",
            stage=self.name,
            percent=percent,
            bytes_seen=self.bytes_seen,
            total_bytes=self.total_bytes,
        )

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        self.bytes_seen += chunk_bytes(chunk)
        if self.total_bytes:
            percent = min(100, self.bytes_seen * 100 // self.total_bytes)
            while self.last_percent + self.step <= min(percent, 99):
                self.last_percent += self.step
                self._on_progress(self.last_percent)
        return [chunk]

    async def flush(self) -> Sequence[Chunk]:
        self.last_percent = 100
        self._on_progress(100)
        return []


class RateLimitStage(TransformStage):
    """Hold chunks back so throughput stays at or below `bytes_per_second`."""

    name = "rate-limit"

    def __init__(
        self,
        bytes_per_second: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if bytes_per_second <= 0:
            raise ValueError(f"bytes_per_second must be > 0, got {bytes_per_second}")
        self.bytes_per_second = float(bytes_per_second)
        self.bytes_passed = 0
        self.total_delay = 0.0
        self._clock = clock
        self._sleep = sleep
        self._started: float | None = None

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        now = self._clock()
        if self._started is None:
            self._started = now
        self.bytes_passed += chunk_bytes(chunk)
        expected = self.bytes_passed / self.bytes_per_second
        delay = expected - (now - self._started)
        if delay > 0:
            self.total_delay += delay
            await self._sleep(delay)
        return [chunk]
