"""Persistent storage for LeetCode web sessions."""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from .config_dir import get_config_dir
from .models import Session

SESSION_FORMAT_VERSION = 1


def session_to_dict(session: Session) -> Dict[str, object]:
    return {
        "cookies": [[name, value] for name, value in session.cookie_jar],
        "csrf_token": session.csrf_token,
        "established_at": session.established_at.astimezone(timezone.utc).isoformat(),
    }


def session_from_dict(data: Dict[str, object]) -> Optional[Session]:
    """Rebuild a Session, or None when any field is missing or malformed."""
    cookies_raw = data.get("cookies")
    csrf_token = data.get("csrf_token")
    established_raw = data.get("established_at")
    if not isinstance(cookies_raw, list) or not isinstance(csrf_token, str):
        return None
    if not isinstance(established_raw, str):
        return None
    jar = []
    for pair in cookies_raw:
        if not isinstance(pair, list) or len(pair) != 2:
            return None
        jar.append((str(pair[0]), str(pair[1])))
    try:
        established_at = datetime.fromisoformat(established_raw)
    except ValueError:
        return None
    if established_at.tzinfo is None:
        established_at = established_at.replace(tzinfo=timezone.utc)
    session = Session(
        cookie_jar=tuple(jar), csrf_token=csrf_token, established_at=established_at
    )
    return session if session.is_complete() else None


def default_file() -> Path:
    return get_config_dir() / ".session.json"


class SessionStore:
    """Manages on-disk persistence of the single `Session`."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._file = Path(path) if path else default_file()
        # ensure parent exists
        self._file.parent.mkdir(parents=True, exist_ok=True)

    @property
    def file_path(self) -> Path:
        """Path to the JSON file storing the session."""
        return self._file

    def save(self, session: Session) -> None:
        if not session.is_complete():
            raise ValueError("refusing to persist a partial session")
        wrapper = {"version": SESSION_FORMAT_VERSION, "session": session_to_dict(session)}
        fd, tmp_name = tempfile.mkstemp(
            prefix=".session-", suffix=".tmp", dir=self._file.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(wrapper, handle, indent=2, ensure_ascii=False)
            if os.name == "posix":
                os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._file)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def load(self) -> Optional[Session]:
        """Load the stored session; anything unusable counts as no session."""
        if not self._file.exists():
            return None
        try:
            wrapper = json.loads(self._file.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(wrapper, dict):
            return None
        if wrapper.get("version") != SESSION_FORMAT_VERSION:
            return None
        data = wrapper.get("session")
        if not isinstance(data, dict):
            return None
        return session_from_dict(data)

    def invalidate(self) -> None:
        """Delete the stored session file."""
        self._file.unlink(missing_ok=True)
