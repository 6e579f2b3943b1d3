"""SQLite-backed cache of problem records and their submission history."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple

from .config_dir import get_config_dir
from .errors import CacheCorruption
from .models import ProblemRecord, SubmissionResult, Verdict

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS problems (
  id TEXT PRIMARY KEY,
  slug TEXT NOT NULL,
  title TEXT NOT NULL,
  difficulty TEXT NOT NULL,
  payload TEXT NOT NULL,
  fetched_at_us INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS problem_tags (
  problem_id TEXT NOT NULL REFERENCES problems(id) ON DELETE CASCADE,
  tag TEXT NOT NULL,
  PRIMARY KEY (problem_id, tag)
);

CREATE TABLE IF NOT EXISTS submissions (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  problem_id TEXT NOT NULL REFERENCES problems(id) ON DELETE CASCADE,
  verdict TEXT NOT NULL,
  submitted_at_us INTEGER NOT NULL,
  submission_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_tags_tag ON problem_tags(tag);
CREATE INDEX IF NOT EXISTS idx_submissions_problem ON submissions(problem_id);
"""

DROP_SQL = """
DROP TABLE IF EXISTS submissions;
DROP TABLE IF EXISTS problem_tags;
DROP TABLE IF EXISTS problems;
"""

UPSERT_SQL = """
INSERT INTO problems (id, slug, title, difficulty, payload, fetched_at_us)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
  slug = excluded.slug,
  title = excluded.title,
  difficulty = excluded.difficulty,
  payload = excluded.payload,
  fetched_at_us = excluded.fetched_at_us
WHERE excluded.fetched_at_us >= problems.fetched_at_us
"""

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def _to_micros(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // _MICROSECOND


def _from_micros(value: int) -> datetime:
    return _EPOCH + timedelta(microseconds=value)


CORRUPTION_MARKERS = ("file is not a database", "malformed", "file is encrypted")


def _is_corruption(exc: sqlite3.DatabaseError) -> bool:
    """Only a damaged file is discarded; I/O, permission and lock errors propagate."""
    if isinstance(exc, sqlite3.IntegrityError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in CORRUPTION_MARKERS)


def default_file() -> Path:
    return get_config_dir() / "cache.db"


@dataclass(frozen=True, slots=True)
class ProblemFilter:
    difficulty: Optional[str] = None
    tag: Optional[str] = None
    keyword: Optional[str] = None

    def to_sql(self) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if self.difficulty:
            clauses.append("lower(difficulty) = lower(?)")
            params.append(self.difficulty)
        if self.tag:
            clauses.append("id IN (SELECT problem_id FROM problem_tags WHERE tag = ?)")
            params.append(self.tag)
        if self.keyword:
            clauses.append("(title LIKE ? OR slug LIKE ?)")
            pattern = f"%{self.keyword}%"
            params.extend([pattern, pattern])
        sql = "SELECT * FROM problems"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        return sql + " ORDER BY id", params


class LocalCache:
    """Durable problem store.

    Every operation opens its own connection so the cache can be used from
    worker threads. Writers are serialized with a lock and run inside a
    single transaction, so a record is either fully written or not at all.
    An unreadable database file is discarded and recreated empty.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path else default_file()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, isolation_level=None, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _prepare(conn: sqlite3.Connection) -> None:
        # forces a read of the file header, so garbage files fail here
        conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        conn.execute("PRAGMA foreign_keys = ON")
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        if version == SCHEMA_VERSION:
            return
        if version != 0:
            LOGGER.info("缓存版本 %s 不兼容，重建缓存", version)
            conn.executescript(DROP_SQL)
        conn.executescript(SCHEMA_SQL)
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    def _open(self) -> sqlite3.Connection:
        conn = self._connect()
        try:
            self._prepare(conn)
        except sqlite3.DatabaseError as exc:
            conn.close()
            if not _is_corruption(exc):
                raise
            self._discard(exc, "open")
            conn = self._connect()
            self._prepare(conn)
        return conn

    def _discard(self, exc: Exception, operation: str, key: Optional[str] = None) -> None:
        error = CacheCorruption("本地缓存不可读，已重置", operation=operation, key=key)
        error.__cause__ = exc
        LOGGER.warning("%s", error)
        for suffix in ("", "-journal", "-wal", "-shm"):
            Path(f"{self._path}{suffix}").unlink(missing_ok=True)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @staticmethod
    @contextmanager
    def _transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    @staticmethod
    def _hydrate(conn: sqlite3.Connection, row: sqlite3.Row) -> ProblemRecord:
        problem_id = row["id"]
        tags = frozenset(
            r["tag"]
            for r in conn.execute(
                "SELECT tag FROM problem_tags WHERE problem_id = ?", (problem_id,)
            )
        )
        history = tuple(
            SubmissionResult(
                problem_id=problem_id,
                verdict=Verdict.from_value(r["verdict"]),
                submitted_at=_from_micros(r["submitted_at_us"]),
                submission_id=r["submission_id"],
            )
            for r in conn.execute(
                "SELECT verdict, submitted_at_us, submission_id FROM submissions "
                "WHERE problem_id = ? ORDER BY seq",
                (problem_id,),
            )
        )
        return ProblemRecord(
            id=problem_id,
            slug=row["slug"],
            title=row["title"],
            difficulty=row["difficulty"],
            raw_statement_payload=row["payload"],
            tags=tags,
            fetched_at=_from_micros(row["fetched_at_us"]),
            submission_history=history,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get(self, problem_id: str) -> Optional[ProblemRecord]:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT * FROM problems WHERE id = ?", (problem_id,)
                ).fetchone()
                return None if row is None else self._hydrate(conn, row)
        except sqlite3.DatabaseError as exc:
            if not _is_corruption(exc):
                raise
            self._discard(exc, "get", problem_id)
            return None

    def upsert(self, record: ProblemRecord) -> bool:
        """Insert or replace ``record``.

        Returns False when the stored copy is fresher and was left as is.
        """
        with self._write_lock:
            try:
                return self._upsert(record)
            except sqlite3.DatabaseError as exc:
                if not _is_corruption(exc):
                    raise
                self._discard(exc, "upsert", record.id)
                return self._upsert(record)

    def _upsert(self, record: ProblemRecord) -> bool:
        with self._connection() as conn, self._transaction(conn):
            cursor = conn.execute(
                UPSERT_SQL,
                (
                    record.id,
                    record.slug,
                    record.title,
                    record.difficulty,
                    record.raw_statement_payload,
                    _to_micros(record.fetched_at),
                ),
            )
            if cursor.rowcount == 0:
                LOGGER.debug("缓存中 %s 的记录更新，跳过写入", record.id)
                return False
            conn.execute("DELETE FROM problem_tags WHERE problem_id = ?", (record.id,))
            conn.executemany(
                "INSERT INTO problem_tags (problem_id, tag) VALUES (?, ?)",
                [(record.id, tag) for tag in sorted(record.tags)],
            )
        return True

    def append_submission(self, problem_id: str, result: SubmissionResult) -> None:
        with self._write_lock, self._connection() as conn, self._transaction(conn):
            exists = conn.execute(
                "SELECT 1 FROM problems WHERE id = ?", (problem_id,)
            ).fetchone()
            if exists is None:
                raise KeyError(problem_id)
            conn.execute(
                "INSERT INTO submissions (problem_id, verdict, submitted_at_us, submission_id) "
                "VALUES (?, ?, ?, ?)",
                (
                    problem_id,
                    result.verdict.value,
                    _to_micros(result.submitted_at),
                    result.submission_id,
                ),
            )

    def list(self, filters: Optional[ProblemFilter] = None) -> Iterator[ProblemRecord]:
        """Yield matching records; each call runs the query afresh."""
        sql, params = (filters or ProblemFilter()).to_sql()
        try:
            with self._connection() as conn:
                for row in conn.execute(sql, params):
                    yield self._hydrate(conn, row)
        except sqlite3.DatabaseError as exc:
            if not _is_corruption(exc):
                raise
            self._discard(exc, "list")

    def delete_all(self) -> None:
        with self._write_lock, self._connection() as conn, self._transaction(conn):
            conn.execute("DELETE FROM submissions")
            conn.execute("DELETE FROM problem_tags")
            conn.execute("DELETE FROM problems")
