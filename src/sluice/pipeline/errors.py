"""Error types raised by pipeline sources, stages and sinks."""

from __future__ import annotations

import errno
from pathlib import Path
from typing import Literal


ResourceErrorKind = Literal["not-found", "permission-denied", "io-fault"]


class SluiceError(Exception):
    """Base class for all pipeline failures."""


class PipelineError(SluiceError):
    """Orchestration misuse, e.g. running a pipeline twice."""


class PipelineAborted(PipelineError):
    """Raised when a running pipeline is cancelled from outside."""


class ResourceError(SluiceError):
    """Failure of a backing resource (file, handle, socket)."""

    def __init__(
        self,
        message: str,
        *,
        kind: ResourceErrorKind = "io-fault",
        path: Path | str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.path = None if path is None else str(path)

    @classmethod
    def from_os_error(cls, exc: OSError, path: Path | str | None = None) -> ResourceError:
        """Classify an OS error into a resource error kind."""

        kind: ResourceErrorKind
        if isinstance(exc, FileNotFoundError) or exc.errno == errno.ENOENT:
            kind = "not-found"
        elif isinstance(exc, PermissionError) or exc.errno in (errno.EACCES, errno.EPERM):
            kind = "permission-denied"
        else:
            kind = "io-fault"
        target = path if path is not None else exc.filename
        detail = exc.strerror or str(exc)
        message = f"{kind}: {detail}" if target is None else f"{kind}: {detail} ({target})"
        return cls(message, kind=kind, path=target)


class TransformError(SluiceError):
    """A stage failed to decode, validate or transform a chunk."""

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message if stage is None else f"[{stage}] {message}")
        self.stage = stage


class CapacityError(SluiceError):
    """A source was asked to produce while paused."""
