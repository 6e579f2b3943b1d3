from __future__ import annotations

import asyncio
import json
import threading
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from leetcode_mcp.cache import LocalCache
from leetcode_mcp.coordinator import CacheCoordinator, FreshnessPolicy
from leetcode_mcp.errors import NetworkUnavailable, ProtocolError
from leetcode_mcp.models import ProblemRecord

from conftest import ok, question_body

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def cache(tmp_path) -> LocalCache:
    return LocalCache(tmp_path / "cache.db")


@pytest.fixture
def coordinator(gateway, cache, transport) -> CacheCoordinator:
    transport.allow_login()
    return CacheCoordinator(gateway, cache, clock=lambda: NOW)


def _stale_two_sum() -> ProblemRecord:
    return ProblemRecord(
        id="two-sum",
        slug="two-sum",
        title="Two Sum",
        difficulty="Easy",
        raw_statement_payload='{"questionId": "1"}',
        tags=frozenset({"array"}),
        fetched_at=T0,
    )


def test_cold_fetch_populates_cache_then_hits(coordinator, transport, cache) -> None:
    transport.on("POST", "/graphql/", ok(question_body()))

    async def scenario():
        first = await coordinator.fetch("two-sum")
        second = await coordinator.fetch("two-sum", FreshnessPolicy.USE_CACHE_IF_PRESENT)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.id == "two-sum"
    assert first.title == "Two Sum"
    assert first.tags == frozenset({"array", "hash-table"})
    assert first.fetched_at == NOW
    assert second == first
    assert transport.count("POST", "/graphql/") == 1
    assert cache.get("two-sum") == first

    body = transport.requests[-1].json_body
    assert body["variables"] == {"titleSlug": "two-sum"}


def test_concurrent_fetches_share_one_gateway_call(coordinator, transport) -> None:
    transport.on("POST", "/graphql/", ok(question_body()))

    async def scenario():
        return await asyncio.gather(
            coordinator.fetch("two-sum"), coordinator.fetch("two-sum")
        )

    a, b = asyncio.run(scenario())

    assert a == b
    assert transport.count("POST", "/graphql/") == 1


def test_force_refresh_goes_to_network(coordinator, transport, cache) -> None:
    cache.upsert(_stale_two_sum())
    transport.on("POST", "/graphql/", ok(question_body()))

    record = asyncio.run(coordinator.fetch("two-sum", FreshnessPolicy.FORCE_REFRESH))

    assert record.fetched_at == NOW
    assert record.stale is False
    assert cache.get("two-sum").fetched_at == NOW


def test_failed_refresh_falls_back_to_stale_record(coordinator, transport, cache) -> None:
    cache.upsert(_stale_two_sum())
    transport.on("POST", "/graphql/", NetworkUnavailable("timeout"))

    record = asyncio.run(coordinator.fetch("two-sum", FreshnessPolicy.FORCE_REFRESH))

    assert record.stale is True
    assert record.fetched_at == T0
    assert cache.get("two-sum") == _stale_two_sum()


def test_network_failure_on_cold_cache_propagates(coordinator, transport, cache) -> None:
    transport.on("POST", "/graphql/", NetworkUnavailable("timeout"))

    with pytest.raises(NetworkUnavailable) as excinfo:
        asyncio.run(coordinator.fetch("two-sum"))

    assert excinfo.value.key == "two-sum"
    assert transport.count("POST", "/graphql/") == 3
    assert cache.get("two-sum") is None


def test_unparseable_payload_is_protocol_error(coordinator, transport, cache) -> None:
    transport.on("POST", "/graphql/", ok(json.dumps({"data": {"question": None}})))

    with pytest.raises(ProtocolError) as excinfo:
        asyncio.run(coordinator.fetch("no-such-problem"))

    assert excinfo.value.key == "no-such-problem"
    assert transport.count("POST", "/graphql/") == 1
    assert cache.get("no-such-problem") is None


def test_fetch_many_reports_per_id(coordinator, transport) -> None:
    transport.on(
        "POST",
        "/graphql/",
        lambda req: ok(question_body())
        if req.json_body["variables"]["titleSlug"] == "two-sum"
        else ok(json.dumps({"data": {"question": None}})),
    )

    results = asyncio.run(coordinator.fetch_many(["two-sum", "ghost", "two-sum"]))

    assert list(results) == ["two-sum", "ghost"]
    assert results["two-sum"].title == "Two Sum"
    assert isinstance(results["ghost"], ProtocolError)


def test_fetch_daily(coordinator, transport) -> None:
    daily = json.dumps(
        {"data": {"activeDailyCodingChallengeQuestion": {"question": {"titleSlug": "two-sum"}}}}
    )
    transport.on(
        "POST",
        "/graphql/",
        lambda req: ok(daily)
        if req.json_body["operationName"] == "questionOfToday"
        else ok(question_body()),
    )

    record = asyncio.run(coordinator.fetch_daily())

    assert record.id == "two-sum"


class GatedCache(LocalCache):
    """Holds the refresh write until the test releases it."""

    def __init__(self, path) -> None:
        super().__init__(path)
        self.entered = threading.Event()
        self.release = threading.Event()
        self.finished = threading.Event()

    def upsert(self, record: ProblemRecord) -> bool:
        if record.fetched_at != NOW:
            return super().upsert(record)
        self.entered.set()
        self.release.wait(5)
        try:
            return super().upsert(record)
        finally:
            self.finished.set()


def _old_two_sum() -> ProblemRecord:
    return replace(_stale_two_sum(), title="Two Sum (old)", tags=frozenset({"legacy"}))


def _gated_answer(started: threading.Event, release: threading.Event):
    def answer(req):
        started.set()
        release.wait(5)
        return ok(question_body())

    return answer


def test_cancelled_caller_leaves_joiner_waiting(coordinator, transport, cache) -> None:
    started = threading.Event()
    release = threading.Event()
    transport.on("POST", "/graphql/", _gated_answer(started, release))

    async def scenario():
        first = asyncio.create_task(coordinator.fetch("two-sum"))
        second = asyncio.create_task(coordinator.fetch("two-sum"))
        await asyncio.to_thread(started.wait, 5)
        first.cancel()
        try:
            with pytest.raises(asyncio.CancelledError):
                await asyncio.wait_for(first, 1)
        finally:
            release.set()
        return await asyncio.wait_for(second, 5)

    record = asyncio.run(scenario())

    assert record.title == "Two Sum"
    assert transport.count("POST", "/graphql/") == 1
    assert cache.get("two-sum") == record


def test_cancel_during_gateway_call_keeps_old_record(coordinator, transport, cache) -> None:
    cache.upsert(_old_two_sum())
    started = threading.Event()
    release = threading.Event()
    transport.on("POST", "/graphql/", _gated_answer(started, release))

    async def scenario() -> None:
        task = asyncio.create_task(coordinator.fetch("two-sum", FreshnessPolicy.FORCE_REFRESH))
        await asyncio.to_thread(started.wait, 5)
        task.cancel()
        try:
            with pytest.raises(asyncio.CancelledError):
                await asyncio.wait_for(task, 1)
            # the shared fetch is dropped once its only caller is gone
            for _ in range(100):
                if not coordinator._inflight:
                    break
                await asyncio.sleep(0)
            assert coordinator._inflight == {}
        finally:
            release.set()

    asyncio.run(scenario())

    assert cache.get("two-sum") == _old_two_sum()


def test_cancel_during_cache_write_stores_whole_record(gateway, transport, tmp_path) -> None:
    cache = GatedCache(tmp_path / "cache.db")
    cache.upsert(_old_two_sum())
    transport.allow_login()
    transport.on("POST", "/graphql/", ok(question_body()))
    coordinator = CacheCoordinator(gateway, cache, clock=lambda: NOW)

    async def scenario() -> None:
        task = asyncio.create_task(coordinator.fetch("two-sum", FreshnessPolicy.FORCE_REFRESH))
        await asyncio.to_thread(cache.entered.wait, 5)
        task.cancel()
        try:
            with pytest.raises(asyncio.CancelledError):
                await asyncio.wait_for(task, 1)
        finally:
            cache.release.set()
        await asyncio.to_thread(cache.finished.wait, 5)

    asyncio.run(scenario())

    stored = cache.get("two-sum")
    if stored != _old_two_sum():
        assert stored.title == "Two Sum"
        assert stored.tags == frozenset({"array", "hash-table"})
        assert stored.fetched_at == NOW
        assert "Given an array" in stored.raw_statement_payload
