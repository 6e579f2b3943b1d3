"""Cache-first problem lookup with single-flight fetches."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Union

from . import endpoints
from .cache import LocalCache
from .errors import CoreError, CredentialUnavailable, ProtocolError
from .gateway import RemoteGateway
from .models import ProblemRecord
from .parser import parse

LOGGER = logging.getLogger(__name__)

Parser = Callable[[str, str], Dict[str, Any]]


class FreshnessPolicy(Enum):
    USE_CACHE_IF_PRESENT = "use-cache-if-present"
    FORCE_REFRESH = "force-refresh"


@dataclass(slots=True)
class _Flight:
    task: asyncio.Task
    waiters: int = 0


class CacheCoordinator:
    """Decides per id between the local cache and the remote gateway.

    At most one fetch per id is in flight; concurrent callers for the same id
    share its result, and cancelling one of them leaves the others waiting. A
    forced refresh that fails at the gateway falls back to the cached copy,
    marked stale.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        cache: LocalCache,
        *,
        parser: Parser = parse,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.gateway = gateway
        self.cache = cache
        self._parse = parser
        self._clock = clock
        self._inflight: Dict[str, _Flight] = {}

    async def fetch(
        self,
        problem_id: str,
        policy: FreshnessPolicy = FreshnessPolicy.USE_CACHE_IF_PRESENT,
    ) -> ProblemRecord:
        flight = self._inflight.get(problem_id)
        if flight is None:
            task = asyncio.ensure_future(self._fetch(problem_id, policy))
            flight = _Flight(task)
            self._inflight[problem_id] = flight
            task.add_done_callback(lambda done: self._release(problem_id, flight))
        else:
            LOGGER.debug("%s 已在获取中，等待其结果", problem_id)

        # no caller owns the shared task; it is cancelled only once every waiter is gone
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                LOGGER.debug("%s 的所有等待者均已取消，停止获取", problem_id)
                flight.task.cancel()

    def _release(self, problem_id: str, flight: "_Flight") -> None:
        if not flight.task.cancelled():
            # marks it retrieved; live waiters re-raise it themselves
            flight.task.exception()
        if self._inflight.get(problem_id) is flight:
            del self._inflight[problem_id]

    async def fetch_many(
        self,
        problem_ids: Iterable[str],
        policy: FreshnessPolicy = FreshnessPolicy.USE_CACHE_IF_PRESENT,
    ) -> Dict[str, Union[ProblemRecord, CoreError]]:
        """Fetch several ids concurrently; failures are reported per id."""
        ids: List[str] = list(dict.fromkeys(problem_ids))
        results = await asyncio.gather(
            *(self.fetch(pid, policy) for pid in ids), return_exceptions=True
        )
        outcome: Dict[str, Union[ProblemRecord, CoreError]] = {}
        for pid, result in zip(ids, results):
            if isinstance(result, BaseException) and not isinstance(result, CoreError):
                raise result
            outcome[pid] = result
        return outcome

    async def fetch_daily(
        self, policy: FreshnessPolicy = FreshnessPolicy.USE_CACHE_IF_PRESENT
    ) -> ProblemRecord:
        endpoint, payload = endpoints.daily_request()
        response = await self.gateway.call(endpoint, payload)
        slug = self._parse(response.text, "daily")["slug"]
        LOGGER.info("今日每日一题: %s", slug)
        return await self.fetch(slug, policy)

    async def _fetch(self, problem_id: str, policy: FreshnessPolicy) -> ProblemRecord:
        cached = await asyncio.to_thread(self.cache.get, problem_id)
        if cached is not None and policy is FreshnessPolicy.USE_CACHE_IF_PRESENT:
            LOGGER.debug("缓存命中: %s", problem_id)
            return cached

        endpoint, payload = endpoints.question_request(problem_id)
        try:
            response = await self.gateway.call(endpoint, payload)
        except CredentialUnavailable:
            raise
        except CoreError as exc:
            if exc.key is None:
                exc.key = problem_id
            if cached is None:
                raise
            LOGGER.warning("刷新 %s 失败 (%s)，返回缓存中的旧数据", problem_id, exc)
            return cached.as_stale()

        try:
            fields = self._parse(response.text, "question")
        except ProtocolError as exc:
            exc.key = problem_id
            raise
        record = ProblemRecord(
            id=problem_id,
            slug=fields["slug"],
            title=fields["title"],
            difficulty=fields["difficulty"],
            raw_statement_payload=fields["raw_statement_payload"],
            tags=frozenset(fields["tags"]),
            fetched_at=self._clock(),
            submission_history=cached.submission_history if cached else (),
        )
        written = await asyncio.to_thread(self.cache.upsert, record)
        if not written:
            # a fresher copy landed meanwhile, e.g. from another process
            return await asyncio.to_thread(self.cache.get, problem_id) or record
        LOGGER.debug("已缓存 %s (%s)", problem_id, record.title)
        return record
