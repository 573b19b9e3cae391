"""Pipeline executor: drives a source through stages into a sink."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Iterable, Protocol, Sequence
from uuid import uuid4

from sluice.config.schema import (
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_HIGH_BUFFER_MARK,
    PipelineOptions,
)
from sluice.observability.logging import get_logger, log_event
from sluice.observability.metrics import RunMetrics
from sluice.pipeline.errors import (
    PipelineAborted,
    PipelineError,
    ResourceError,
    SluiceError,
    TransformError,
)
from sluice.pipeline.stage import END_OF_STREAM, Chunk, StreamState, TransformStage


_LOGGER = get_logger("sluice.executor")


def _as_resource_error(exc: Exception) -> ResourceError:
    if isinstance(exc, OSError):
        return ResourceError.from_os_error(exc)
    return ResourceError(f"io-fault: {type(exc).__name__}: {exc}", kind="io-fault")


class Source(Protocol):
    state: StreamState

    async def produce(self) -> Chunk: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    async def close(self) -> None: ...


class Sink(Protocol):
    state: StreamState

    async def consume(self, chunk: Chunk) -> bool: ...

    async def wait_ready(self) -> None: ...

    async def finalize(self) -> None: ...

    async def abort(self, error: BaseException | None = None) -> None: ...


class PipelineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RunResult:
    """Outcome of a completed pipeline run."""

    run_id: str
    name: str
    chunks_produced: int
    bytes_produced: int
    chunks_delivered: int
    bytes_delivered: int
    pauses: int
    elapsed_seconds: float
    stages: dict[str, dict[str, int]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "name": self.name,
            "status": PipelineState.COMPLETED.value,
            "chunks_produced": self.chunks_produced,
            "bytes_produced": self.bytes_produced,
            "chunks_delivered": self.chunks_delivered,
            "bytes_delivered": self.bytes_delivered,
            "pauses": self.pauses,
            "elapsed_seconds": self.elapsed_seconds,
            "stages": self.stages,
        }


class Pipeline:
    """Wire a source through ordered stages into a sink.

    Only one produce/consume exchange is in flight at a time. When the sink
    refuses a chunk the source is paused until the sink drains. The first
    failure aborts the sink, closes the source and is re-raised from
    `run()`. Output already written before a failure is not rolled back.

    Explicit `options` are pushed down to a source exposing
    `chunk_size_bytes` and a sink exposing `high_buffer_mark`. Without
    them the pipeline reports the sizes the source and sink already use.
    """

    def __init__(
        self,
        source: Source,
        stages: Iterable[TransformStage],
        sink: Sink,
        options: PipelineOptions | None = None,
        name: str | None = None,
    ) -> None:
        self.source = source
        self.stages = list(stages)
        self.sink = sink
        if options is None:
            options = PipelineOptions(
                chunk_size_bytes=getattr(source, "chunk_size_bytes", DEFAULT_CHUNK_SIZE_BYTES),
                high_buffer_mark=getattr(sink, "high_buffer_mark", DEFAULT_HIGH_BUFFER_MARK),
            )
        else:
            if hasattr(source, "chunk_size_bytes"):
                source.chunk_size_bytes = options.chunk_size_bytes
            if hasattr(sink, "high_buffer_mark"):
                sink.high_buffer_mark = options.high_buffer_mark
        self.options = options
        self.name = name or "pipeline"
        self.run_id = uuid4().hex
        self.state = PipelineState.IDLE
        self.metrics = RunMetrics()
        self.error: BaseException | None = None
        self._stage_keys = [f"{idx}:{stage.name}" for idx, stage in enumerate(self.stages)]
        self._cancel_requested = False
        self._task: asyncio.Task[Any] | None = None
        self._interrupted = False

    def cancel(self) -> None:
        """Request an external abort.

        A run suspended on the source or sink is interrupted right away;
        a call made from inside the run takes effect at the next step.
        """

        self._cancel_requested = True
        task = self._task
        if task is None or task.done() or self.state is not PipelineState.RUNNING:
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if current is not task:
            self._interrupted = True
            task.cancel()

    async def run(self) -> RunResult:
        if self.state is not PipelineState.IDLE:
            raise PipelineError(f"Pipeline {self.name!r} already {self.state.value}")

        self.state = PipelineState.RUNNING
        self._task = asyncio.current_task()
        self.metrics.start()
        log_event(
            _LOGGER,
            "pipeline_started",
            run_id=self.run_id,
            pipeline=self.name,
            stages=[stage.name for stage in self.stages],
            chunk_size_bytes=self.options.chunk_size_bytes,
            high_buffer_mark=self.options.high_buffer_mark,
        )

        try:
            await self._pump()
            await self._flush_stages()
            await self._call_sink("finalize")
        except BaseException as exc:
            error = self._aborted_from(exc)
            self.metrics.stop()
            self.state = PipelineState.FAILED
            self.error = error
            await self._cleanup_after_failure(error)
            log_event(
                _LOGGER,
                "pipeline_failed",
                level=logging.ERROR,
                run_id=self.run_id,
                pipeline=self.name,
                error=f"{type(error).__name__}: {error}",
                **self.metrics.to_dict(),
            )
            if error is exc:
                raise
            raise error from exc
        finally:
            self._task = None

        self.metrics.stop()
        await self._close_source()
        self.state = PipelineState.COMPLETED
        result = self._result()
        log_event(
            _LOGGER,
            "pipeline_completed",
            run_id=self.run_id,
            pipeline=self.name,
            **self.metrics.to_dict(),
        )
        return result

    async def _pump(self) -> None:
        while True:
            self._check_cancelled()
            try:
                chunk = await self.source.produce()
            except SluiceError:
                raise
            except Exception as exc:
                raise _as_resource_error(exc) from exc
            if chunk is END_OF_STREAM:
                return
            self.metrics.record_produced(chunk)
            for out in await self._run_stages(chunk, 0):
                await self._deliver(out)

    async def _run_stages(self, chunk: Chunk, start: int) -> list[Chunk]:
        pending: list[Chunk] = [chunk]
        for idx in range(start, len(self.stages)):
            stage = self.stages[idx]
            counters = self.metrics.stage(self._stage_keys[idx])
            produced: list[Chunk] = []
            for item in pending:
                counters.chunks_in += 1
                outputs = await self._call_stage(stage, "transform", item)
                counters.chunks_out += len(outputs)
                produced.extend(outputs)
            pending = produced
            if not pending:
                break
        return pending

    async def _flush_stages(self) -> None:
        for idx, stage in enumerate(self.stages):
            self._check_cancelled()
            flushed = await self._call_stage(stage, "flush")
            counters = self.metrics.stage(self._stage_keys[idx])
            counters.flushed += len(flushed)
            counters.chunks_out += len(flushed)
            for item in flushed:
                for out in await self._run_stages(item, idx + 1):
                    await self._deliver(out)

    async def _deliver(self, chunk: Chunk) -> None:
        ready = await self._call_sink("consume", chunk)
        self.metrics.record_delivered(chunk)
        if ready:
            return

        self.source.pause()
        self.metrics.record_pause()
        log_event(
            _LOGGER,
            "pipeline_paused",
            level=logging.DEBUG,
            run_id=self.run_id,
            chunks_delivered=self.metrics.chunks_delivered,
        )
        await self._call_sink("wait_ready")
        self._check_cancelled()
        self.source.resume()
        log_event(_LOGGER, "pipeline_resumed", level=logging.DEBUG, run_id=self.run_id)

    async def _call_stage(self, stage: TransformStage, method: str, *args: Chunk) -> list[Chunk]:
        try:
            outputs: Sequence[Chunk] = await getattr(stage, method)(*args)
            return list(outputs)
        except SluiceError:
            raise
        except Exception as exc:
            raise TransformError(f"{type(exc).__name__}: {exc}", stage=stage.name) from exc

    async def _call_sink(self, method: str, *args: Chunk) -> Any:
        try:
            return await getattr(self.sink, method)(*args)
        except SluiceError:
            raise
        except Exception as exc:
            raise _as_resource_error(exc) from exc

    def _aborted_from(self, exc: BaseException) -> BaseException:
        if not (self._interrupted and isinstance(exc, asyncio.CancelledError)):
            return exc
        # The cancellation came from cancel(); keep the task itself uncancelled.
        uncancel = getattr(self._task, "uncancel", None)
        if uncancel is not None:
            uncancel()
        return PipelineAborted(f"Pipeline {self.name!r} cancelled")

    def _check_cancelled(self) -> None:
        if self._cancel_requested:
            raise PipelineAborted(f"Pipeline {self.name!r} cancelled")

    async def _cleanup_after_failure(self, error: BaseException) -> None:
        try:
            await self.sink.abort(error)
        except Exception:
            _LOGGER.exception("sink abort failed", extra={"run_id": self.run_id})
        await self._close_source()

    async def _close_source(self) -> None:
        try:
            await self.source.close()
        except Exception:
            _LOGGER.exception("source close failed", extra={"run_id": self.run_id})

    def _result(self) -> RunResult:
        payload = self.metrics.to_dict()
        return RunResult(
            run_id=self.run_id,
            name=self.name,
            chunks_produced=payload["chunks_produced"],
            bytes_produced=payload["bytes_produced"],
            chunks_delivered=payload["chunks_delivered"],
            bytes_delivered=payload["bytes_delivered"],
            pauses=payload["pauses"],
            elapsed_seconds=payload["elapsed_seconds"],
            stages=payload["stages"],
        )


def run_pipeline(
    source: Source,
    stages: Iterable[TransformStage],
    sink: Sink,
    options: PipelineOptions | None = None,
    name: str | None = None,
) -> RunResult:
    """Build a pipeline and run it to completion on a fresh event loop."""

    pipeline = Pipeline(source, stages, sink, options=options, name=name)
    return asyncio.run(pipeline.run())
