import json

from core.cycle_logger import CycleLogger, CycleRecord, read_cycle_records


def test_cycle_logger_writes_jsonl_records(tmp_path) -> None:
    path = tmp_path / "logs" / "cycles.jsonl"
    logger = CycleLogger(path=path)

    logger.log_cycle(CycleRecord.new(identity="alice", status="updated", changed=True,
                                     text="born 6 March 2008", resolved_date="2008-03-06",
                                     day_count=1, weekday="Thursday", latency_ms=12))
    logger.log_cycle(CycleRecord.new(identity="alice", status="unchanged"))

    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["identity"] == "alice"
    assert first["resolved_date"] == "2008-03-06"
    assert first["weekday"] == "Thursday"
    assert first["timestamp"]


def test_cycle_logger_disabled_writes_nothing(tmp_path) -> None:
    path = tmp_path / "cycles.jsonl"
    CycleLogger(path=path, enabled=False).log_cycle(CycleRecord.new(identity="a", status="updated"))
    assert not path.exists()


def test_cycle_logger_redacts_secrets(tmp_path) -> None:
    path = tmp_path / "cycles.jsonl"
    logger = CycleLogger(path=path, redact=True)
    logger.log_cycle(CycleRecord.new(
        identity="alice",
        status="extraction_failed",
        text="mail me at alice@example.com",
        detail="rejected key sk-abcdefghijklmnop",
    ))

    row = read_cycle_records(path)[0]
    assert "alice@example.com" not in row["text"]
    assert "[REDACTED_EMAIL]" in row["text"]
    assert "sk-abcdefghijklmnop" not in row["detail"]
    assert row["identity"] == "alice"


def test_cycle_logger_rotates_files(tmp_path) -> None:
    path = tmp_path / "cycles.jsonl"
    logger = CycleLogger(path=path, max_bytes=200, backup_count=2)
    for index in range(10):
        logger.log_cycle(CycleRecord.new(identity=f"entity-{index}", status="unchanged"))

    assert path.exists()
    assert (tmp_path / "cycles.jsonl.1").exists()
    assert not (tmp_path / "cycles.jsonl.3").exists()


def test_read_cycle_records_skips_garbage_and_limits(tmp_path) -> None:
    path = tmp_path / "cycles.jsonl"
    path.write_text('{"identity": "a"}\nnot json\n\n{"identity": "b"}\n{"identity": "c"}\n', encoding="utf-8")

    assert [row["identity"] for row in read_cycle_records(path)] == ["a", "b", "c"]
    assert [row["identity"] for row in read_cycle_records(path, limit=2)] == ["b", "c"]
    assert read_cycle_records(tmp_path / "missing.jsonl") == []


def test_read_cycle_records_filters_before_limiting_and_reads_backups(tmp_path) -> None:
    path = tmp_path / "cycles.jsonl"
    (tmp_path / "cycles.jsonl.2").write_text('{"identity": "a", "n": 1}\n', encoding="utf-8")
    (tmp_path / "cycles.jsonl.1").write_text('{"identity": "a", "n": 2}\n{"identity": "b", "n": 3}\n', encoding="utf-8")
    path.write_text('{"identity": "a", "n": 4}\n' + '{"identity": "b", "n": 5}\n' * 3, encoding="utf-8")

    assert [row["n"] for row in read_cycle_records(path, identity="a", limit=2)] == [4]
    assert [row["n"] for row in read_cycle_records(path, identity="a", limit=2, backups=2)] == [2, 4]
    assert [row["n"] for row in read_cycle_records(path, identity="a", backups=5)] == [1, 2, 4]
    assert read_cycle_records(path, identity="a", limit=0) == []
