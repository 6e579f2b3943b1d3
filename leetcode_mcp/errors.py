"""Typed failures surfaced by the session and cache layers."""

from __future__ import annotations

from typing import Optional


class CoreError(RuntimeError):
    """Base error carrying the operation and key it happened under."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        key: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.key = key

    def __str__(self) -> str:
        message = super().__str__()
        context = [part for part in (self.operation, self.key) if part]
        if context:
            message = f"{message} ({' '.join(context)})"
        if self.__cause__ is not None:
            message = f"{message}: {self.__cause__}"
        return message


class CredentialUnavailable(CoreError):
    """The OS secret store cannot be reached."""


class NotAuthenticated(CoreError):
    """No session and no stored credential to create one."""


class AuthenticationFailed(CoreError):
    """The platform rejected the credential, or rejected it again after re-login."""


class NetworkUnavailable(CoreError):
    """Transport failed after the bounded number of attempts."""


class ProtocolError(CoreError):
    """The platform answered with something we cannot interpret."""


class CacheCorruption(CoreError):
    """The local cache file is unreadable."""


class SessionExpired(CoreError):
    """The platform no longer accepts the current session."""
