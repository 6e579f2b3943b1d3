from __future__ import annotations

import json
import sys
import threading
from pathlib import Path
from urllib.parse import urlparse

import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

# Ensure repository root is on sys.path so the local package can be imported
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from leetcode_mcp.config_store import Settings
from leetcode_mcp.credential_store import CredentialStore
from leetcode_mcp.gateway import RawResponse, RemoteGateway
from leetcode_mcp.session_store import SessionStore


class MemoryKeyring(KeyringBackend):
    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.entries: dict = {}

    def get_password(self, service, username):
        return self.entries.get((service, username))

    def set_password(self, service, username, password):
        self.entries[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise PasswordDeleteError(username) from None


class FakeTransport:
    """Answers requests from per-route queues; the last answer repeats."""

    def __init__(self) -> None:
        self.routes: dict = {}
        self.requests: list = []
        self._lock = threading.Lock()

    def on(self, method: str, path: str, *answers) -> "FakeTransport":
        self.routes.setdefault(f"{method} {path}", []).extend(answers)
        return self

    def allow_login(self, session_cookie: str = "sess-1", csrf: str = "csrf-1") -> "FakeTransport":
        self.on("GET", "/accounts/login/", ok(cookies=(("csrftoken", "csrf-0"),)))
        self.on(
            "POST",
            "/accounts/login/",
            ok(cookies=(("LEETCODE_SESSION", session_cookie), ("csrftoken", csrf))),
        )
        return self

    def count(self, method: str, path: str) -> int:
        return sum(
            1
            for r in self.requests
            if r.method == method and urlparse(r.url).path == path
        )

    def send(self, request):
        key = f"{request.method} {urlparse(request.url).path}"
        with self._lock:
            self.requests.append(request)
            queue = self.routes.get(key)
            if not queue:
                raise AssertionError(f"unexpected request: {key}")
            answer = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(answer):
            answer = answer(request)
        if isinstance(answer, Exception):
            raise answer
        return answer


def ok(body: str = "{}", *, status: int = 200, url: str = "https://leetcode.com/", cookies=()):
    return RawResponse(status_code=status, text=body, url=url, cookies=tuple(cookies))


def question_body(slug: str = "two-sum", title: str = "Two Sum", *, question_id: str = "1") -> str:
    return json.dumps(
        {
            "data": {
                "question": {
                    "questionId": question_id,
                    "questionFrontendId": question_id,
                    "title": title,
                    "titleSlug": slug,
                    "difficulty": "Easy",
                    "content": "<p>Given an array <code>nums</code>.</p>",
                    "topicTags": [
                        {"name": "Array", "slug": "array"},
                        {"name": "Hash Table", "slug": "hash-table"},
                    ],
                }
            }
        }
    )


@pytest.fixture
def keyring_backend() -> MemoryKeyring:
    return MemoryKeyring()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def settings() -> Settings:
    return Settings(domain="leetcode.com", backoff_base=0.0, poll_interval=0.0, max_polls=5)


@pytest.fixture
def credentials(keyring_backend) -> CredentialStore:
    store = CredentialStore(backend=keyring_backend)
    store.store("alice", "hunter2")
    return store


@pytest.fixture
def session_store(tmp_path) -> SessionStore:
    return SessionStore(tmp_path / ".session.json")


@pytest.fixture
def gateway(settings, session_store, credentials, transport) -> RemoteGateway:
    return RemoteGateway(
        settings,
        session_store=session_store,
        credential_store=credentials,
        transport=transport,
    )
