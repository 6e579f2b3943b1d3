"""Login secret storage on top of the OS keyring."""

from __future__ import annotations

import json
import logging
from typing import Optional

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError

from .errors import CredentialUnavailable
from .models import Credential

LOGGER = logging.getLogger(__name__)

SERVICE_NAME = "leetcode-mcp"
ENTRY_NAME = "credential"


class CredentialStore:
    """Stores a single (username, secret) pair in the platform secret store."""

    def __init__(
        self,
        *,
        service: str = SERVICE_NAME,
        backend: Optional[KeyringBackend] = None,
    ) -> None:
        self.service = service
        self._backend = backend

    def _keyring(self) -> KeyringBackend:
        if self._backend is None:
            try:
                self._backend = keyring.get_keyring()
            except KeyringError as exc:
                raise CredentialUnavailable(
                    "无法访问系统密钥环", operation="keyring"
                ) from exc
        return self._backend

    def store(self, username: str, secret: str) -> None:
        blob = json.dumps({"username": username, "secret": secret})
        try:
            self._keyring().set_password(self.service, ENTRY_NAME, blob)
        except KeyringError as exc:
            raise CredentialUnavailable("保存凭据失败", operation="store") from exc
        LOGGER.debug("已保存用户 %s 的凭据", username)

    def load(self) -> Optional[Credential]:
        try:
            blob = self._keyring().get_password(self.service, ENTRY_NAME)
        except KeyringError as exc:
            raise CredentialUnavailable("读取凭据失败", operation="load") from exc
        if not blob:
            return None
        try:
            data = json.loads(blob)
        except ValueError:
            LOGGER.warning("密钥环中的凭据格式无效，已忽略")
            return None
        username = data.get("username") if isinstance(data, dict) else None
        secret = data.get("secret") if isinstance(data, dict) else None
        if not isinstance(username, str) or not isinstance(secret, str):
            return None
        return Credential(username=username, secret=secret)

    def clear(self) -> None:
        backend = self._keyring()
        try:
            if backend.get_password(self.service, ENTRY_NAME) is None:
                return
            backend.delete_password(self.service, ENTRY_NAME)
        except KeyringError as exc:
            raise CredentialUnavailable("删除凭据失败", operation="clear") from exc
        LOGGER.debug("已删除保存的凭据")
