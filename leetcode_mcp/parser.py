"""Turn raw platform payloads into record fields."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

from .errors import ProtocolError
from .models import Verdict

STATUS_VERDICTS = {
    10: Verdict.ACCEPTED,
    11: Verdict.WRONG_ANSWER,
    14: Verdict.TIME_LIMIT_EXCEEDED,
    15: Verdict.RUNTIME_ERROR,
    20: Verdict.COMPILE_ERROR,
}

STATUS_MESSAGES = {
    "accepted": Verdict.ACCEPTED,
    "wrong answer": Verdict.WRONG_ANSWER,
    "time limit exceeded": Verdict.TIME_LIMIT_EXCEEDED,
    "runtime error": Verdict.RUNTIME_ERROR,
    "compile error": Verdict.COMPILE_ERROR,
}


def _load_json(raw: str, kind: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError("响应不是合法的 JSON", operation=kind) from exc


def _graphql_data(raw: str, kind: str) -> Dict[str, Any]:
    document = _load_json(raw, kind)
    if not isinstance(document, dict):
        raise ProtocolError("GraphQL 响应格式异常", operation=kind)
    errors = document.get("errors")
    if errors:
        messages = "; ".join(
            str(err.get("message", err)) if isinstance(err, dict) else str(err)
            for err in errors
        )
        raise ProtocolError(f"GraphQL 返回错误: {messages}", operation=kind)
    data = document.get("data")
    if not isinstance(data, dict):
        raise ProtocolError("GraphQL 响应缺少 data", operation=kind)
    return data


def parse_question(raw: str) -> Dict[str, Any]:
    question = _graphql_data(raw, "question").get("question")
    if not isinstance(question, dict):
        raise ProtocolError("题目不存在或无权访问", operation="question")
    slug = question.get("titleSlug")
    title = question.get("title")
    if not slug or not title:
        raise ProtocolError("题目数据缺少 titleSlug/title", operation="question")
    tags = frozenset(
        tag.get("slug") or tag.get("name")
        for tag in question.get("topicTags") or []
        if isinstance(tag, dict) and (tag.get("slug") or tag.get("name"))
    )
    return {
        "slug": slug,
        "title": title,
        "difficulty": question.get("difficulty") or "Unknown",
        "tags": tags,
        "raw_statement_payload": json.dumps(question, ensure_ascii=False),
    }


def parse_daily(raw: str) -> Dict[str, Any]:
    daily = _graphql_data(raw, "daily").get("activeDailyCodingChallengeQuestion")
    question = daily.get("question") if isinstance(daily, dict) else None
    slug = question.get("titleSlug") if isinstance(question, dict) else None
    if not slug:
        raise ProtocolError("无法识别每日一题", operation="daily")
    return {"slug": slug}


def parse_submit(raw: str) -> Dict[str, Any]:
    data = _load_json(raw, "submit")
    submission_id = data.get("submission_id") if isinstance(data, dict) else None
    if submission_id is None:
        detail = data.get("error") if isinstance(data, dict) else None
        raise ProtocolError(f"提交未被接受: {detail or raw[:200]}", operation="submit")
    return {"submission_id": str(submission_id)}


def verdict_for(status_code: Optional[int], status_msg: Optional[str]) -> Verdict:
    if status_code in STATUS_VERDICTS:
        return STATUS_VERDICTS[status_code]
    if status_msg:
        return STATUS_MESSAGES.get(status_msg.strip().lower(), Verdict.UNKNOWN)
    return Verdict.UNKNOWN


def parse_check(raw: str) -> Dict[str, Any]:
    data = _load_json(raw, "check")
    if not isinstance(data, dict) or "state" not in data:
        raise ProtocolError("评测状态响应格式异常", operation="check")
    state = str(data["state"])
    verdict = None
    if state == "SUCCESS":
        verdict = verdict_for(data.get("status_code"), data.get("status_msg"))
    return {"state": state, "verdict": verdict}


PARSERS = {
    "question": parse_question,
    "daily": parse_daily,
    "submit": parse_submit,
    "check": parse_check,
}


def parse(raw: str, expected_kind: str) -> Dict[str, Any]:
    try:
        parser = PARSERS[expected_kind]
    except KeyError:
        raise ValueError(f"unknown payload kind: {expected_kind}") from None
    return parser(raw)


def question_id(raw_statement_payload: str) -> str:
    """The platform's internal question id, needed for submissions."""
    question = _load_json(raw_statement_payload, "question")
    value = question.get("questionId") if isinstance(question, dict) else None
    if value is None:
        raise ProtocolError("缓存的题目数据缺少 questionId", operation="question")
    return str(value)


def code_snippets(raw_statement_payload: str) -> Dict[str, str]:
    """Starter code per langSlug; empty for questions that ship none (e.g. paid-only)."""
    question = _load_json(raw_statement_payload, "question")
    snippets = question.get("codeSnippets") if isinstance(question, dict) else None
    result: Dict[str, str] = {}
    for snippet in snippets or []:
        if not isinstance(snippet, dict):
            continue
        slug = snippet.get("langSlug")
        code = snippet.get("code")
        if isinstance(slug, str) and isinstance(code, str):
            result[slug] = code
    return result


def sample_test_case(raw_statement_payload: str) -> str:
    question = _load_json(raw_statement_payload, "question")
    value = question.get("sampleTestCase") if isinstance(question, dict) else None
    return value if isinstance(value, str) else ""


def problem_to_md(raw_statement_payload: str) -> str:
    """Render a cached question payload as Markdown."""
    question = _load_json(raw_statement_payload, "question")
    title = question.get("title") or ""
    frontend_id = question.get("questionFrontendId")
    heading = f"# {frontend_id}. {title}" if frontend_id else f"# {title}"

    soup = BeautifulSoup(question.get("content") or "", "html.parser")
    # convert superscripts like 10<sup>6</sup> -> 10^6
    for sup in soup.find_all("sup"):
        sup.replace_with("^" + sup.get_text())
    for pre in soup.find_all("pre"):
        pre.replace_with("\n``` log\n" + pre.get_text().strip("\n") + "\n```\n")
    for code in soup.find_all("code"):
        code.replace_with("`" + code.get_text() + "`")
    for strong in soup.find_all(["strong", "b"]):
        strong.replace_with("**" + strong.get_text() + "**")
    for li in soup.find_all("li"):
        li.insert_before("\n- ")
    for p in soup.find_all("p"):
        p.insert_after("\n")

    body = soup.get_text()
    body = body.replace("\xa0", " ")
    body = re.sub(r"\n{3,}", "\n\n", body).strip()

    lines = [heading, ""]
    difficulty = question.get("difficulty")
    if difficulty:
        lines.append(f"Difficulty: {difficulty}")
        lines.append("")
    lines.append(body)
    lines.append("")
    return "\n".join(lines)
