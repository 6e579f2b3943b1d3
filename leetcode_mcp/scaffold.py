"""Write a cached problem's starter code into a local solution file."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from .models import ProblemRecord
from .parser import code_snippets, sample_test_case
from .submissions import normalize_language

LOGGER = logging.getLogger(__name__)

EXTENSIONS = {
    "c": "c",
    "cpp": "cpp",
    "java": "java",
    "python3": "py",
    "golang": "go",
    "rust": "rs",
    "javascript": "js",
    "typescript": "ts",
    "csharp": "cs",
    "kotlin": "kt",
    "swift": "swift",
}

START_MARKER = "@lc code=start"
END_MARKER = "@lc code=end"


def comment_leading(lang: str) -> str:
    return "#" if lang == "python3" else "//"


def _frontend_id(record: ProblemRecord) -> str:
    try:
        question = json.loads(record.raw_statement_payload)
    except ValueError:
        return record.id
    value = question.get("questionFrontendId") if isinstance(question, dict) else None
    return str(value) if value else record.id


def code_path(record: ProblemRecord, lang: str, directory: Path) -> Path:
    return Path(directory) / f"{_frontend_id(record)}.{record.slug}.{EXTENSIONS[lang]}"


def cases_path(record: ProblemRecord, directory: Path) -> Path:
    return Path(directory) / f"{_frontend_id(record)}.{record.slug}.tests.dat"


def write_solution(
    record: ProblemRecord,
    language: str,
    directory: Path,
    *,
    with_tests: bool = False,
) -> Path:
    """Create the solution file for ``record`` unless it already exists.

    The file carries the platform's starter code between ``@lc`` markers so
    the solution can later be submitted as is. Raises ValueError when the
    question offers no starter code for ``language``; nothing is written then.
    """
    lang = normalize_language(language)
    path = code_path(record, lang, directory)
    if path.exists():
        LOGGER.info("%s 已存在，保留原文件", path)
        return path

    snippets = code_snippets(record.raw_statement_payload)
    if lang not in snippets:
        offered = ", ".join(sorted(snippets)) or "无"
        raise ValueError(f"题目 {record.id} 不支持 {lang}，可选语言: {offered}")

    leading = comment_leading(lang)
    lines = [
        f"{leading} @lc app=leetcode id={_frontend_id(record)} lang={lang}",
        f"{leading} {record.title} ({record.difficulty})",
        "",
        f"{leading} {START_MARKER}",
        snippets[lang].rstrip("\n"),
        f"{leading} {END_MARKER}",
        "",
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines), encoding="utf-8")
    LOGGER.info("已生成代码文件 %s", path)

    if with_tests:
        cases = sample_test_case(record.raw_statement_payload)
        if cases:
            cases_path(record, directory).write_text(cases + "\n", encoding="utf-8")
        else:
            LOGGER.warning("题目 %s 没有示例用例，跳过测试文件", record.id)
    return path
