"""Submit a solution and record the judge's verdict in the cache."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from .cache import LocalCache
from .coordinator import CacheCoordinator
from .endpoints import CHECK, SUBMIT
from .gateway import RemoteGateway
from .models import SubmissionResult, Verdict
from .parser import parse, question_id

LOGGER = logging.getLogger(__name__)

# accepted spellings on the command line -> platform langSlug
LANGUAGES = {
    "c": "c",
    "cpp": "cpp",
    "c++": "cpp",
    "java": "java",
    "python": "python3",
    "python3": "python3",
    "py": "python3",
    "go": "golang",
    "golang": "golang",
    "rust": "rust",
    "rs": "rust",
    "javascript": "javascript",
    "js": "javascript",
    "typescript": "typescript",
    "ts": "typescript",
    "csharp": "csharp",
    "kotlin": "kotlin",
    "swift": "swift",
}


def normalize_language(language: str) -> str:
    key = (language or "").strip().lower()
    if key not in LANGUAGES:
        raise ValueError(
            "未知的语言: %s. 支持: %s" % (language, ", ".join(sorted(set(LANGUAGES))))
        )
    return LANGUAGES[key]


async def submit_solution(
    gateway: RemoteGateway,
    coordinator: CacheCoordinator,
    cache: LocalCache,
    problem_id: str,
    *,
    source: str,
    language: str = "cpp",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SubmissionResult:
    """Submit ``source`` for ``problem_id`` and wait for the verdict.

    The verdict is appended to the problem's cached submission history. If the
    judge does not finish within the configured number of polls the result is
    recorded as ``Verdict.UNKNOWN``.
    """
    lang = normalize_language(language)
    record = await coordinator.fetch(problem_id)
    payload = {
        "lang": lang,
        "question_id": question_id(record.raw_statement_payload),
        "typed_code": source,
    }
    referer = gateway.base_url + f"/problems/{record.slug}/"
    LOGGER.debug("提交 %s (%s, %d 字节)", problem_id, lang, len(source))
    response = await gateway.call(SUBMIT, payload, referer=referer, slug=record.slug)
    submitted_at = datetime.now(timezone.utc)
    submission_id = parse(response.text, "submit")["submission_id"]
    LOGGER.info("提交成功, submission id: %s", submission_id)

    verdict = Verdict.UNKNOWN
    settings = gateway.settings
    for _ in range(settings.max_polls):
        await sleep(settings.poll_interval)
        check = await gateway.call(CHECK, referer=referer, submission_id=submission_id)
        state = parse(check.text, "check")
        if state["verdict"] is not None:
            verdict = state["verdict"]
            break
        LOGGER.debug("评测中: %s", state["state"])
    else:
        LOGGER.warning("等待评测结果超时，记为 Unknown")

    result = SubmissionResult(
        problem_id=problem_id,
        verdict=verdict,
        submitted_at=submitted_at,
        submission_id=submission_id,
    )
    await asyncio.to_thread(cache.append_submission, problem_id, result)
    return result
