"""Stages turning text lines into records and aggregates."""

from __future__ import annotations

from collections import Counter
import codecs
import csv
import json
import logging
import re
from typing import Any, Sequence

from sluice.observability.logging import get_logger, log_event
from sluice.pipeline.errors import TransformError
from sluice.pipeline.stage import Chunk, TransformStage
from sluice.stages.text import LineBuffer


_LOGGER = get_logger("sluice.stages.records")

_NON_WORD = re.compile(r"[^\w\s]")


def _as_text(line: bytes | str, stage: str) -> str:
    if isinstance(line, str):
        return line
    try:
        return line.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise TransformError(f"cannot decode line: {exc}", stage=stage) from exc


class _LineRecordStage(TransformStage):
    """Shared line buffering for stages parsing one record per line."""

    def __init__(self) -> None:
        self._lines = LineBuffer(keep_ends=False)

    def _parse(self, line: str) -> list[Any]:
        raise NotImplementedError

    def _parse_all(self, lines: list[bytes | str]) -> list[Any]:
        records: list[Any] = []
        for raw in lines:
            line = _as_text(raw, self.name).strip()
            if line:
                records.extend(self._parse(line))
        return records

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        try:
            lines = self._lines.feed(chunk)
        except TypeError as exc:
            raise TransformError(str(exc), stage=self.name) from exc
        return self._parse_all(lines)

    async def flush(self) -> Sequence[Chunk]:
        return self._parse_all(self._lines.drain())


class JsonLinesStage(_LineRecordStage):
    """Parse newline-delimited JSON into Python objects.

    Invalid lines fail the run unless `skip_invalid` is set, in which case
    they are logged and dropped.
    """

    name = "jsonl"

    def __init__(self, skip_invalid: bool = False) -> None:
        super().__init__()
        self.skip_invalid = skip_invalid
        self.skipped = 0

    def _parse(self, line: str) -> list[Any]:
        try:
            return [json.loads(line)]
        except json.JSONDecodeError as exc:
            if not self.skip_invalid:
                raise TransformError(f"invalid JSON line: {exc}", stage=self.name) from exc
            self.skipped += 1
            log_event(
                _LOGGER,
                "invalid_json_line",
                level=logging.WARNING,
                stage=self.name,
                line=line[:200],
            )
            return []


class CsvRecordStage(_LineRecordStage):
    """Turn CSV lines into dict records keyed by the header row."""

    name = "csv"

    def __init__(self, delimiter: str = ",") -> None:
        super().__init__()
        if len(delimiter) != 1:
            raise ValueError(f"delimiter must be a single character, got {delimiter!r}")
        self.delimiter = delimiter
        self.headers: list[str] | None = None

    def _parse(self, line: str) -> list[Any]:
        try:
            cells = [cell.strip() for cell in next(csv.reader([line], delimiter=self.delimiter))]
        except csv.Error as exc:
            raise TransformError(f"invalid CSV line: {exc}", stage=self.name) from exc
        if self.headers is None:
            self.headers = cells
            return []
        return [
            {
                header: cells[idx] if idx < len(cells) else ""
                for idx, header in enumerate(self.headers)
            }
        ]


class WordCountStage(TransformStage):
    """Count words across the stream and emit one summary record on flush."""

    name = "word-count"

    def __init__(self, top: int = 10) -> None:
        if top <= 0:
            raise ValueError(f"top must be > 0, got {top}")
        self.top = top
        self.counts: Counter[str] = Counter()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""

    def _count(self, text: str) -> None:
        words = _NON_WORD.sub("", text.lower()).split()
        self.counts.update(words)

    async def transform(self, chunk: Chunk) -> Sequence[Chunk]:
        if isinstance(chunk, (bytes, bytearray)):
            text = self._decoder.decode(bytes(chunk))
        elif isinstance(chunk, str):
            text = chunk
        else:
            raise TransformError(
                f"expected bytes or str chunk, got {type(chunk).__name__}",
                stage=self.name,
            )

        text = self._partial + text
        # A word may straddle a chunk boundary; hold back the unterminated tail.
        cut = max(text.rfind(" "), text.rfind("\n"), text.rfind("\t"), text.rfind("\r"))
        if cut < 0:
            self._partial = text
            return []
        self._partial = text[cut + 1 :]
        self._count(text[: cut + 1])
        return []

    async def flush(self) -> Sequence[Chunk]:
        self._count(self._partial + self._decoder.decode(b"", final=True))
        self._partial = ""
        ranked = sorted(self.counts.items(), key=lambda item: (-item[1], item[0]))
        return [
            {
                "top_words": [[word, count] for word, count in ranked[: self.top]],
                "unique_words": len(self.counts),
                "total_words": sum(self.counts.values()),
            }
        ]
