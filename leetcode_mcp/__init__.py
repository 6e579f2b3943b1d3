"""Session and local cache core for the leetcode-mcp client."""

from .cache import LocalCache, ProblemFilter
from .config_store import ConfigStore, Settings
from .coordinator import CacheCoordinator, FreshnessPolicy
from .core import Core, open_core
from .credential_store import CredentialStore
from .errors import (
    AuthenticationFailed,
    CacheCorruption,
    CoreError,
    CredentialUnavailable,
    NetworkUnavailable,
    NotAuthenticated,
    ProtocolError,
)
from .gateway import RemoteGateway
from .models import Credential, ProblemRecord, Session, SubmissionResult, Verdict
from .session_store import SessionStore
from .scaffold import write_solution
from .submissions import submit_solution

__all__ = [
    "AuthenticationFailed",
    "CacheCoordinator",
    "CacheCorruption",
    "ConfigStore",
    "Core",
    "CoreError",
    "Credential",
    "CredentialStore",
    "CredentialUnavailable",
    "FreshnessPolicy",
    "LocalCache",
    "NetworkUnavailable",
    "NotAuthenticated",
    "ProblemFilter",
    "ProblemRecord",
    "ProtocolError",
    "RemoteGateway",
    "Session",
    "SessionStore",
    "Settings",
    "SubmissionResult",
    "Verdict",
    "open_core",
    "submit_solution",
    "write_solution",
]
