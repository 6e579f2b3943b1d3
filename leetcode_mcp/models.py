"""Records shared between the session, gateway and cache layers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Tuple

CSRF_COOKIE = "csrftoken"
SESSION_COOKIE = "LEETCODE_SESSION"

CookiePair = Tuple[str, str]


@dataclass(frozen=True, slots=True)
class Credential:
    username: str
    secret: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class Session:
    """Authenticated state: ordered cookie jar plus the CSRF token."""

    cookie_jar: Tuple[CookiePair, ...]
    csrf_token: str = field(repr=False)
    established_at: Optional[datetime] = None

    def is_complete(self) -> bool:
        return bool(self.cookie_jar and self.csrf_token and self.established_at)

    def cookie(self, name: str) -> Optional[str]:
        for key, value in self.cookie_jar:
            if key == name:
                return value
        return None

    def cookie_names(self) -> list[str]:
        return [name for name, _ in self.cookie_jar]

    def merge_cookies(self, updates: Iterable[CookiePair]) -> "Session":
        """Return a copy with ``updates`` applied.

        Existing names keep their position, new names are appended.
        """
        jar = list(self.cookie_jar)
        index = {name: i for i, (name, _) in enumerate(jar)}
        for name, value in updates:
            if name in index:
                jar[index[name]] = (name, value)
            else:
                index[name] = len(jar)
                jar.append((name, value))
        merged = replace(self, cookie_jar=tuple(jar))
        csrf = merged.cookie(CSRF_COOKIE)
        if csrf and csrf != self.csrf_token:
            merged = replace(merged, csrf_token=csrf)
        return merged


class Verdict(str, Enum):
    ACCEPTED = "Accepted"
    WRONG_ANSWER = "WrongAnswer"
    TIME_LIMIT_EXCEEDED = "TimeLimitExceeded"
    RUNTIME_ERROR = "RuntimeError"
    COMPILE_ERROR = "CompileError"
    UNKNOWN = "Unknown"

    @classmethod
    def from_value(cls, value: str) -> "Verdict":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    problem_id: str
    verdict: Verdict
    submitted_at: datetime
    submission_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ProblemRecord:
    id: str
    slug: str
    title: str
    difficulty: str
    raw_statement_payload: str = field(repr=False)
    tags: frozenset[str]
    fetched_at: datetime
    submission_history: Tuple[SubmissionResult, ...] = ()
    # set on records served from cache because a refresh failed; never stored
    stale: bool = field(default=False, compare=False)

    def as_stale(self) -> "ProblemRecord":
        return replace(self, stale=True)
