import asyncio
import gzip

import pytest

from sluice.pipeline.errors import TransformError
from sluice.stages.codec import DigestStage, GunzipStage, GzipStage
from sluice.stages.flow import ProgressStage, RateLimitStage
from sluice.stages.records import CsvRecordStage, JsonLinesStage, WordCountStage
from sluice.stages.text import LineBuffer, LineNumberStage, LineSplitStage, PrefixStage, UpperCaseStage


def _feed(stage, chunks):
    """Run chunks through one stage, including its flush."""

    async def _scenario():
        out = []
        for chunk in chunks:
            out.extend(await stage.transform(chunk))
        out.extend(await stage.flush())
        return out

    return asyncio.run(_scenario())


# text


def test_line_buffer_holds_partial_line():
    buffer = LineBuffer()

    assert buffer.feed(b"one\ntw") == [b"one\n"]
    assert buffer.feed(b"o\nthree") == [b"two\n"]
    assert buffer.drain() == [b"three"]
    assert buffer.drain() == []


def test_line_buffer_rejects_mixed_types():
    buffer = LineBuffer()
    buffer.feed("partial")

    with pytest.raises(TypeError):
        buffer.feed(b"bytes")


def test_line_split_stage_decodes_when_asked():
    stage = LineSplitStage(keep_ends=False, encoding="utf-8")

    assert _feed(stage, [b"h\xc3\xa9llo\nw", b"orld"]) == ["héllo", "world"]


def test_upper_case_rejects_records():
    with pytest.raises(TransformError, match="upper"):
        _feed(UpperCaseStage(), [{"a": 1}])


def test_number_and_prefix_skip_blank_lines():
    lines = ["hello\n", "\n", "world\n", "node.js\n"]

    numbered = _feed(LineNumberStage(), lines)
    prefixed = _feed(PrefixStage(), numbered)

    assert prefixed == [">> 1. hello\n", ">> 2. world\n", ">> 3. node.js\n"]


def test_prefix_keeps_bytes_as_bytes():
    assert _feed(PrefixStage(text="# "), [b"x\n"]) == [b"# x\n"]


# records


def test_json_lines_parses_across_chunk_boundaries():
    chunks = [b'{"name":"John","age":30}\n{"na', b'me":"Jane","age":25}\n', b'{"name":"Bob"}']

    records = _feed(JsonLinesStage(), chunks)

    assert records == [
        {"name": "John", "age": 30},
        {"name": "Jane", "age": 25},
        {"name": "Bob"},
    ]


def test_json_lines_invalid_line_fails_by_default():
    with pytest.raises(TransformError, match="invalid JSON"):
        _feed(JsonLinesStage(), ["{not json}\n"])


def test_json_lines_can_skip_invalid_lines():
    stage = JsonLinesStage(skip_invalid=True)

    assert _feed(stage, ['{"ok": 1}\n', "oops\n", '{"ok": 2}\n']) == [{"ok": 1}, {"ok": 2}]
    assert stage.skipped == 1


def test_csv_records_use_header_and_fill_missing_cells():
    chunks = ["name,age,city\n", "John,30,Dhaka\nJane,25\n", "Bob, 35 ,Sylhet"]

    records = _feed(CsvRecordStage(), chunks)

    assert records == [
        {"name": "John", "age": "30", "city": "Dhaka"},
        {"name": "Jane", "age": "25", "city": ""},
        {"name": "Bob", "age": "35", "city": "Sylhet"},
    ]


def test_word_count_handles_split_words_and_ranks():
    stage = WordCountStage(top=2)

    (summary,) = _feed(stage, [b"The cat, the d", b"og. THE END"])

    assert summary["top_words"] == [["the", 3], ["cat", 1]]
    assert summary["unique_words"] == 4
    assert summary["total_words"] == 6


def test_word_count_decodes_multibyte_across_chunks():
    data = "naïve naïve".encode("utf-8")
    split = data.index(b"\xc3") + 1

    (summary,) = _feed(WordCountStage(), [data[:split], data[split:]])

    assert summary["top_words"] == [["naïve", 2]]


# codec


def test_gzip_output_is_standard_gzip():
    payload = b"stream me " * 1000

    compressed = b"".join(_feed(GzipStage(), [payload[:4000], payload[4000:]]))

    assert gzip.decompress(compressed) == payload
    assert len(compressed) < len(payload)


def test_gunzip_handles_concatenated_members():
    data = gzip.compress(b"first ") + gzip.compress(b"second")
    chunks = [data[i : i + 7] for i in range(0, len(data), 7)]

    assert b"".join(_feed(GunzipStage(), chunks)) == b"first second"


def test_gunzip_rejects_corrupt_input():
    with pytest.raises(TransformError, match="corrupt"):
        _feed(GunzipStage(), [b"definitely not gzip"])


def test_gunzip_rejects_truncated_stream():
    data = gzip.compress(b"x" * 500)

    with pytest.raises(TransformError, match="truncated"):
        _feed(GunzipStage(), [data[:-6]])


def test_digest_passes_chunks_through():
    stage = DigestStage()

    out = _feed(stage, [b"ab", "c"])

    assert out == [b"ab", "c"]
    assert stage.hexdigest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert stage.byte_count == 3


# flow


def test_progress_reports_each_step_once():
    seen: list[int] = []
    stage = ProgressStage(total_bytes=100, step=25, on_progress=seen.append)

    _feed(stage, [b"x" * 10, b"x" * 20, b"x" * 30, b"x" * 40])

    assert seen == [25, 50, 75, 100]


def test_progress_reports_every_step_a_large_chunk_crosses():
    seen: list[int] = []
    stage = ProgressStage(total_bytes=100, step=10, on_progress=seen.append)

    _feed(stage, [b"x" * 35, b"x" * 5, b"x" * 60])

    assert seen == [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]


def test_rate_limit_sleeps_to_hold_target_rate():
    now = [0.0]
    sleeps: list[float] = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        now[0] += seconds

    stage = RateLimitStage(100, clock=lambda: now[0], sleep=fake_sleep)

    out = _feed(stage, [b"x" * 50, b"x" * 50, b"x" * 100])

    assert out == [b"x" * 50, b"x" * 50, b"x" * 100]
    assert sleeps == pytest.approx([0.5, 0.5, 1.0])
    assert stage.total_delay == pytest.approx(2.0)
