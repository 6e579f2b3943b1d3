from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from leetcode_mcp.cache import LocalCache, ProblemFilter, _is_corruption
from leetcode_mcp.models import ProblemRecord, SubmissionResult, Verdict

T0 = datetime(2024, 5, 1, 8, 30, 15, 123456, tzinfo=timezone.utc)


def _record(problem_id: str = "two-sum", **overrides) -> ProblemRecord:
    fields = dict(
        id=problem_id,
        slug=problem_id,
        title=problem_id.replace("-", " ").title(),
        difficulty="Easy",
        raw_statement_payload='{"questionId": "1"}',
        tags=frozenset({"array", "hash-table"}),
        fetched_at=T0,
    )
    fields.update(overrides)
    return ProblemRecord(**fields)


def test_upsert_then_get_roundtrip(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache.db")
    record = _record()

    assert cache.upsert(record) is True

    assert cache.get("two-sum") == record
    assert cache.get("missing") is None


def test_records_survive_reopen(tmp_path) -> None:
    LocalCache(tmp_path / "cache.db").upsert(_record())
    assert LocalCache(tmp_path / "cache.db").get("two-sum") == _record()


def test_older_upsert_is_ignored(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache.db")
    cache.upsert(_record())

    older = _record(title="Old Title", fetched_at=T0 - timedelta(hours=1), tags=frozenset())
    assert cache.upsert(older) is False

    assert cache.get("two-sum") == _record()


def test_newer_upsert_replaces_fields_and_tags(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache.db")
    cache.upsert(_record())

    newer = _record(title="Two Sum II", fetched_at=T0 + timedelta(seconds=1), tags=frozenset({"math"}))
    assert cache.upsert(newer) is True

    stored = cache.get("two-sum")
    assert stored.title == "Two Sum II"
    assert stored.tags == frozenset({"math"})
    assert stored.fetched_at == newer.fetched_at


def test_upsert_keeps_submission_history(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache.db")
    cache.upsert(_record())
    first = SubmissionResult("two-sum", Verdict.WRONG_ANSWER, T0 + timedelta(minutes=1), "11")
    second = SubmissionResult("two-sum", Verdict.ACCEPTED, T0 + timedelta(minutes=2), "12")
    cache.append_submission("two-sum", first)
    cache.append_submission("two-sum", second)

    cache.upsert(_record(fetched_at=T0 + timedelta(hours=1)))

    assert cache.get("two-sum").submission_history == (first, second)


def test_append_submission_to_unknown_problem(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache.db")
    result = SubmissionResult("nope", Verdict.ACCEPTED, T0)
    with pytest.raises(KeyError):
        cache.append_submission("nope", result)


def test_list_filters_and_restarts(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache.db")
    cache.upsert(_record("two-sum"))
    cache.upsert(_record("add-two-numbers", difficulty="Medium", tags=frozenset({"linked-list"})))
    cache.upsert(_record("median-of-two-sorted-arrays", difficulty="Hard"))

    assert [r.id for r in cache.list()] == [
        "add-two-numbers",
        "median-of-two-sorted-arrays",
        "two-sum",
    ]
    assert [r.id for r in cache.list(ProblemFilter(difficulty="medium"))] == ["add-two-numbers"]
    assert [r.id for r in cache.list(ProblemFilter(tag="array"))] == [
        "median-of-two-sorted-arrays",
        "two-sum",
    ]
    assert [r.id for r in cache.list(ProblemFilter(keyword="sorted"))] == [
        "median-of-two-sorted-arrays"
    ]

    first = cache.list()
    next(first)
    # a fresh call starts from the beginning
    assert next(cache.list()).id == "add-two-numbers"


def test_corrupt_file_is_treated_as_empty(tmp_path) -> None:
    path = tmp_path / "cache.db"
    path.write_bytes(b"this is definitely not a sqlite database" * 100)
    cache = LocalCache(path)

    assert cache.get("two-sum") is None
    assert list(cache.list()) == []

    cache.upsert(_record())
    assert cache.get("two-sum") == _record()


def test_only_damaged_files_count_as_corruption() -> None:
    assert _is_corruption(sqlite3.DatabaseError("file is not a database"))
    assert _is_corruption(sqlite3.DatabaseError("database disk image is malformed"))
    assert not _is_corruption(sqlite3.OperationalError("disk I/O error"))
    assert not _is_corruption(sqlite3.OperationalError("attempt to write a readonly database"))
    assert not _is_corruption(sqlite3.OperationalError("database is locked"))
    assert not _is_corruption(sqlite3.IntegrityError("FOREIGN KEY constraint failed"))


def test_io_error_keeps_database_file(tmp_path, monkeypatch) -> None:
    path = tmp_path / "cache.db"
    cache = LocalCache(path)
    cache.upsert(_record())

    def failing_prepare(conn) -> None:
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(LocalCache, "_prepare", staticmethod(failing_prepare))
    with pytest.raises(sqlite3.OperationalError):
        cache.get("two-sum")
    with pytest.raises(sqlite3.OperationalError):
        cache.upsert(_record(fetched_at=T0 + timedelta(days=1)))
    monkeypatch.undo()

    assert path.exists()
    assert cache.get("two-sum") == _record()


def test_incompatible_version_recreates_schema(tmp_path) -> None:
    path = tmp_path / "cache.db"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE problems (legacy TEXT)")
    conn.execute("PRAGMA user_version = 42")
    conn.commit()
    conn.close()

    cache = LocalCache(path)
    assert cache.get("two-sum") is None
    cache.upsert(_record())
    assert cache.get("two-sum") == _record()


def test_delete_all(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache.db")
    cache.upsert(_record())
    cache.append_submission("two-sum", SubmissionResult("two-sum", Verdict.ACCEPTED, T0))
    cache.delete_all()
    assert list(cache.list()) == []


def test_stale_flag_is_not_persisted(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache.db")
    cache.upsert(replace(_record(), stale=True))
    assert cache.get("two-sum").stale is False
