"""Authenticated access to the platform's HTTP endpoints."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, Type
from urllib.parse import urljoin, urlparse

import requests
from requests import Session as HttpSession
from requests.exceptions import ChunkedEncodingError, RequestException

from .config_store import Settings
from .credential_store import CredentialStore
from .endpoints import LOGIN, LOGIN_PAGE, EndpointSpec
from .errors import (
    AuthenticationFailed,
    CoreError,
    NetworkUnavailable,
    NotAuthenticated,
    ProtocolError,
    SessionExpired,
)
from .models import SESSION_COOKIE, CookiePair, Credential, Session
from .session_store import SessionStore

LOGGER = logging.getLogger(__name__)


def normalize_base_url(domain: str) -> str:
    url = domain.strip()
    if not url:
        raise ValueError("domain 不能为空")
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url.rstrip("/")


@dataclass(frozen=True, slots=True)
class OutgoingRequest:
    method: str
    url: str
    headers: Dict[str, str]
    cookies: Tuple[CookiePair, ...] = field(default=(), repr=False)
    json_body: Optional[Any] = field(default=None, repr=False)
    form: Optional[Dict[str, str]] = field(default=None, repr=False)
    timeout: float = 10.0


@dataclass(frozen=True, slots=True)
class RawResponse:
    status_code: int
    text: str
    url: str
    cookies: Tuple[CookiePair, ...] = field(default=(), repr=False)


class Transport(Protocol):
    def send(self, request: OutgoingRequest) -> RawResponse: ...


class RequestsTransport:
    """Blocking transport on top of ``requests``; one HTTP session per call."""

    def __init__(self, user_agent: str = "leetcode-mcp/0.1") -> None:
        self.user_agent = user_agent

    def _new_session(self) -> HttpSession:
        session = requests.Session()
        session.headers.update(
            {
                "User-Agent": self.user_agent,
                "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
            }
        )
        return session

    def send(self, request: OutgoingRequest) -> RawResponse:
        operation = f"{request.method} {urlparse(request.url).path}"
        try:
            with self._new_session() as http:
                resp = http.request(
                    request.method,
                    request.url,
                    headers=request.headers,
                    cookies=dict(request.cookies),
                    json=request.json_body,
                    data=request.form,
                    timeout=request.timeout,
                    allow_redirects=True,
                )
        except (requests.Timeout, requests.ConnectionError, ChunkedEncodingError) as exc:
            # a body cut off mid-stream is a transport failure like a reset connection
            raise NetworkUnavailable("网络请求失败", operation=operation) from exc
        except RequestException as exc:
            raise ProtocolError("请求无法完成", operation=operation) from exc

        # cookies set along a redirect chain count too
        cookies = [(c.name, c.value) for r in (*resp.history, resp) for c in r.cookies]
        return RawResponse(
            status_code=resp.status_code,
            text=resp.text,
            url=resp.url,
            cookies=tuple(cookies),
        )


class Remedy(Enum):
    RETRY = "retry"
    RELOGIN = "relogin"
    SURFACE = "surface"


REMEDIES: Dict[Type[CoreError], Remedy] = {
    NetworkUnavailable: Remedy.RETRY,
    SessionExpired: Remedy.RELOGIN,
    ProtocolError: Remedy.SURFACE,
}


def remedy_for(error: CoreError) -> Remedy:
    for kind, remedy in REMEDIES.items():
        if isinstance(error, kind):
            return remedy
    return Remedy.SURFACE


class RemoteGateway:
    """Mediates every platform call through one shared session.

    The session is loaded lazily (memory, then the session file, then a login
    with the stored credential). Transient transport failures are retried
    with exponential backoff, a rejected session triggers one serialized
    re-login, and anything else is surfaced as is.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        session_store: SessionStore,
        credential_store: CredentialStore,
        transport: Optional[Transport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.base_url = normalize_base_url(settings.domain)
        self.session_store = session_store
        self.credential_store = credential_store
        self._transport = transport or RequestsTransport()
        self._sleep = sleep
        self._session: Optional[Session] = None
        # bumped whenever the session is replaced; cookie merges keep it
        self._generation = 0
        self._login_lock = asyncio.Lock()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def _url(self, path: str) -> str:
        return urljoin(self.base_url + "/", path.lstrip("/"))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def call(
        self,
        endpoint: EndpointSpec,
        payload: Optional[Any] = None,
        *,
        referer: Optional[str] = None,
        **path_params: Any,
    ) -> RawResponse:
        session = await self._ensure_session()
        generation = self._generation
        relogged = False
        while True:
            request = self._build(endpoint, payload, session, path_params, referer)
            try:
                response = await self._send_with_retries(request, endpoint)
            except CoreError as exc:
                if remedy_for(exc) is not Remedy.RELOGIN:
                    raise
                if relogged:
                    await self._forget(generation)
                    raise AuthenticationFailed(
                        "重新登录后会话仍被拒绝", operation=endpoint.name
                    ) from exc
                relogged = True
                LOGGER.info("会话已失效，重新登录后重试 %s", endpoint.name)
                session, generation = await self._relogin(generation)
                continue
            await self._absorb_cookies(generation, response)
            return response

    async def login(self, credential: Credential) -> Session:
        """Log in with ``credential`` regardless of any existing session."""
        async with self._login_lock:
            self._install(None)
            return await self._login_locked(credential)

    async def logout(self) -> None:
        async with self._login_lock:
            self._install(None)
            await asyncio.to_thread(self.session_store.invalidate)
        LOGGER.info("已清除会话")

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def _install(self, session: Optional[Session]) -> None:
        self._session = session
        self._generation += 1

    async def _ensure_session(self) -> Session:
        if self._session is not None:
            return self._session
        async with self._login_lock:
            if self._session is not None:
                return self._session
            stored = await asyncio.to_thread(self.session_store.load)
            if stored is not None:
                LOGGER.debug("已从存储文件加载会话 cookie: %s", stored.cookie_names())
                self._install(stored)
                return stored
            return await self._login_locked()

    async def _relogin(self, stale_generation: int) -> Tuple[Session, int]:
        async with self._login_lock:
            if self._session is not None and self._generation != stale_generation:
                LOGGER.debug("会话已由其他任务刷新，直接复用")
                return self._session, self._generation
            self._install(None)
            await asyncio.to_thread(self.session_store.invalidate)
            session = await self._login_locked()
            return session, self._generation

    async def _forget(self, generation: int) -> None:
        async with self._login_lock:
            if self._session is not None and self._generation == generation:
                self._install(None)
                await asyncio.to_thread(self.session_store.invalidate)

    async def _login_locked(self, credential: Optional[Credential] = None) -> Session:
        if credential is None:
            credential = await asyncio.to_thread(self.credential_store.load)
        if credential is None:
            raise NotAuthenticated("尚未登录，请先执行 login", operation="login")
        session = await self._perform_login(credential)
        await asyncio.to_thread(self.session_store.save, session)
        self._install(session)
        LOGGER.info("用户 %s 登录成功，已保存会话", credential.username)
        return session

    async def _perform_login(self, credential: Credential) -> Session:
        page = await self._send_with_retries(
            self._build(LOGIN_PAGE, None, None, {}, None), LOGIN_PAGE, check_auth=False
        )
        jar = Session(cookie_jar=(), csrf_token="").merge_cookies(page.cookies)
        if not jar.csrf_token:
            raise ProtocolError("登录页未返回 csrftoken", operation="login")

        form = {
            "csrfmiddlewaretoken": jar.csrf_token,
            "login": credential.username,
            "password": credential.secret,
            "next": "/",
        }
        response = await self._send_with_retries(
            self._build(LOGIN, form, jar, {}, self._url(LOGIN.path)),
            LOGIN,
            check_auth=False,
        )
        jar = jar.merge_cookies(response.cookies)
        if not jar.cookie(SESSION_COOKIE):
            raise AuthenticationFailed("用户名或密码错误", operation="login")
        return replace(jar, established_at=datetime.now(timezone.utc))

    async def _absorb_cookies(self, generation: int, response: RawResponse) -> None:
        if not response.cookies:
            return
        async with self._login_lock:
            current = self._session
            if current is None or self._generation != generation:
                # replaced by a re-login in the meantime; these cookies belong to the old one
                LOGGER.debug("会话已更换，忽略旧会话的 Set-Cookie")
                return
            # merge into the live jar so concurrent refreshes accumulate
            merged = current.merge_cookies(response.cookies)
            if merged == current:
                return
            self._session = merged
            await asyncio.to_thread(self.session_store.save, merged)
        LOGGER.debug("已更新会话 cookie: %s", [name for name, _ in response.cookies])

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------
    def _build(
        self,
        endpoint: EndpointSpec,
        payload: Optional[Any],
        session: Optional[Session],
        path_params: Dict[str, Any],
        referer: Optional[str],
    ) -> OutgoingRequest:
        headers = {
            "Referer": referer or self.base_url + "/",
            "Origin": self.base_url,
        }
        cookies: Tuple[CookiePair, ...] = ()
        if session is not None:
            cookies = session.cookie_jar
            if session.csrf_token:
                headers["x-csrftoken"] = session.csrf_token
        json_body = form = None
        if payload is not None:
            if endpoint.body == "form":
                form = payload
            else:
                json_body = payload
        return OutgoingRequest(
            method=endpoint.method,
            url=self._url(endpoint.resolve(**path_params)),
            headers=headers,
            cookies=cookies,
            json_body=json_body,
            form=form,
            timeout=self.settings.timeout,
        )

    async def _send_with_retries(
        self,
        request: OutgoingRequest,
        endpoint: EndpointSpec,
        *,
        check_auth: bool = True,
    ) -> RawResponse:
        failures = 0
        while True:
            try:
                response = await asyncio.to_thread(self._transport.send, request)
                self._check(response, endpoint, check_auth)
                return response
            except CoreError as exc:
                if remedy_for(exc) is not Remedy.RETRY or failures >= self.settings.max_retries:
                    raise
                delay = self.settings.backoff_base * (2**failures)
                failures += 1
                LOGGER.warning(
                    "%s 请求失败 (%s)，%.1f 秒后第 %d 次重试",
                    endpoint.name,
                    exc,
                    delay,
                    failures,
                )
                await self._sleep(delay)

    def _check(self, response: RawResponse, endpoint: EndpointSpec, check_auth: bool) -> None:
        status = response.status_code
        if status == 429 or status >= 500:
            raise NetworkUnavailable(f"服务器暂时不可用: HTTP {status}", operation=endpoint.name)
        if check_auth and self._looks_expired(response):
            raise SessionExpired("会话已失效", operation=endpoint.name)
        if status >= 400:
            raise ProtocolError(
                f"请求失败: HTTP {status}. 响应片段: {response.text[:200]}",
                operation=endpoint.name,
            )

    def _looks_expired(self, response: RawResponse) -> bool:
        if response.status_code in self.settings.auth_failure_statuses:
            return True
        marker = self.settings.login_redirect_marker
        if marker and urlparse(response.url).path.startswith(marker):
            return True
        lowered = response.text.lower()
        return any(m.lower() in lowered for m in self.settings.expiry_markers if m)
