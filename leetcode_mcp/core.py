"""Explicit wiring of stores, gateway and cache into one handle."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .cache import LocalCache
from .config_store import ConfigStore, Settings
from .coordinator import CacheCoordinator
from .credential_store import CredentialStore
from .gateway import RemoteGateway, Transport
from .models import Credential, Session
from .session_store import SessionStore


@dataclass(slots=True)
class Core:
    settings: Settings
    credentials: CredentialStore
    sessions: SessionStore
    gateway: RemoteGateway
    cache: LocalCache
    coordinator: CacheCoordinator

    async def login(self, credential: Credential) -> Session:
        """Log in, then remember the credential; a rejected login stores nothing."""
        session = await self.gateway.login(credential)
        await asyncio.to_thread(
            self.credentials.store, credential.username, credential.secret
        )
        return session


def open_core(
    config: Optional[ConfigStore] = None,
    *,
    base_dir: Optional[Path] = None,
    credentials: Optional[CredentialStore] = None,
    transport: Optional[Transport] = None,
) -> Core:
    """Build a Core from the config file.

    ``base_dir`` relocates the session file and cache database, which is
    mostly useful in tests.
    """
    config = config or ConfigStore()
    settings = config.settings()
    credentials = credentials or CredentialStore()
    sessions = SessionStore(base_dir / ".session.json" if base_dir else None)
    cache = LocalCache(base_dir / "cache.db" if base_dir else None)
    gateway = RemoteGateway(
        settings,
        session_store=sessions,
        credential_store=credentials,
        transport=transport,
    )
    return Core(
        settings=settings,
        credentials=credentials,
        sessions=sessions,
        gateway=gateway,
        cache=cache,
        coordinator=CacheCoordinator(gateway, cache),
    )
