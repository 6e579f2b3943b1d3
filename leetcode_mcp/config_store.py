from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .config_dir import get_config_dir

DEFAULT_FILENAME = "config.json"


@dataclass(frozen=True, slots=True)
class Settings:
    """Typed view of the config file; every field has a usable default."""

    domain: str = "leetcode.com"
    user: str = ""
    timeout: float = 10.0
    max_retries: int = 2
    backoff_base: float = 0.5
    auth_failure_statuses: Tuple[int, ...] = (401, 403)
    expiry_markers: Tuple[str, ...] = (
        "user is not authenticated",
        "you must be logged in",
    )
    login_redirect_marker: str = "/accounts/login"
    poll_interval: float = 1.0
    max_polls: int = 30


def _coerce(value: Any, default: Any) -> Any:
    try:
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        if isinstance(default, str):
            return str(value)
        if isinstance(default, tuple):
            if not isinstance(value, (list, tuple)):
                return default
            kind = type(default[0]) if default else str
            return tuple(kind(item) for item in value)
    except (TypeError, ValueError):
        return default
    return default


class ConfigStore:
    """Simple dotfile-backed config store for the platform domain and tuning knobs.

    Stores a small JSON blob at <config dir>/config.json. The password is not
    kept here; see ``CredentialStore``.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path else get_config_dir() / DEFAULT_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def save(self, **values: Any) -> None:
        payload = self.load() or {}
        payload.update({k: v for k, v in values.items() if v is not None})
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        # try to restrict permissions on POSIX
        try:
            if os.name == "posix":
                os.chmod(self._path, 0o600)
        except OSError:
            # best-effort only
            pass

    def load(self) -> Optional[Dict[str, Any]]:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        return data

    def settings(self) -> Settings:
        data = self.load() or {}
        defaults = Settings()
        known = {}
        for name in Settings.__dataclass_fields__:
            if name not in data:
                continue
            known[name] = _coerce(data[name], getattr(defaults, name))
        return Settings(**known)

    def delete(self) -> None:
        if self._path.exists():
            self._path.unlink()
