import gzip
import json

import pytest

from sluice.cli.app import main
from sluice.storage.reports import iter_run_records


def test_run_transforms_file_and_writes_report(tmp_path, capsys):
    src = tmp_path / "in.txt"
    dst = tmp_path / "out.txt"
    report = tmp_path / "report.json"
    src.write_text("hello\nworld\n")

    main(
        [
            "run",
            str(src),
            str(dst),
            "--stages",
            "lines",
            "upper",
            "prefix:text=>> ",
            "--chunk-size-bytes",
            "4",
            "--report",
            str(report),
        ]
    )

    assert dst.read_text() == ">> HELLO\n>> WORLD\n"
    payload = json.loads(report.read_text())
    assert payload["status"] == "completed"
    assert payload["bytes_produced"] == 12
    assert payload["options"]["chunk_size_bytes"] == 4
    assert "chunks=2" in capsys.readouterr().out


def test_run_gzip_with_journal_and_inspect(tmp_path, capsys):
    src = tmp_path / "in.txt"
    dst = tmp_path / "in.txt.gz"
    journal = tmp_path / "runs.jsonl"
    src.write_bytes(b"abc" * 1000)

    main(["run", str(src), str(dst), "--stages", "gzip", "--journal", str(journal)])
    main(["run", str(dst), str(tmp_path / "back.txt"), "--stages", "gunzip", "--journal", str(journal)])

    assert gzip.decompress(dst.read_bytes()) == b"abc" * 1000
    assert (tmp_path / "back.txt").read_bytes() == b"abc" * 1000
    assert [record["status"] for record in iter_run_records(journal)] == ["completed", "completed"]

    capsys.readouterr()
    main(["inspect", str(journal)])
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 2
    assert all("completed" in line for line in lines)


def test_run_failure_exits_non_zero_and_records_error(tmp_path):
    journal = tmp_path / "runs.jsonl"

    with pytest.raises(SystemExit) as excinfo:
        main(["run", str(tmp_path / "missing.txt"), str(tmp_path / "out.txt"), "--journal", str(journal)])

    assert excinfo.value.code == 1
    (record,) = list(iter_run_records(journal))
    assert record["status"] == "failed"
    assert record["error"].startswith("ResourceError: not-found")
    assert not (tmp_path / "out.txt").exists()


def test_run_with_json_config(tmp_path):
    src = tmp_path / "in.csv"
    dst = tmp_path / "out.jsonl"
    cfg = tmp_path / "cfg.json"
    src.write_text("name,age\nJohn,30\nJane,25\n")
    cfg.write_text(json.dumps({"name": "csv-to-json", "stages": ["csv"]}))

    main(["run", str(src), str(dst), "--config", str(cfg)])

    rows = [json.loads(line) for line in dst.read_text().splitlines()]
    assert rows == [{"age": "30", "name": "John"}, {"age": "25", "name": "Jane"}]


def test_stages_command_lists_registry(capsys):
    main(["stages", "--verbose"])

    out = capsys.readouterr().out
    assert "word-count" in out
    assert "rate-limit" in out
    assert "bytes_per_second" in out


def test_inspect_report(tmp_path, capsys):
    report = tmp_path / "report.json"
    report.write_text(json.dumps({"run_id": "abc", "status": "completed"}))

    main(["inspect", str(report)])

    assert json.loads(capsys.readouterr().out)["run_id"] == "abc"


@pytest.mark.parametrize("flag", ["--chunk-size-bytes", "--high-buffer-mark"])
def test_run_rejects_zero_sizes(tmp_path, flag):
    src = tmp_path / "in.txt"
    src.write_text("abc")

    with pytest.raises(ValueError, match="must be > 0"):
        main(["run", str(src), str(tmp_path / "out.txt"), flag, "0"])

    assert not (tmp_path / "out.txt").exists()
