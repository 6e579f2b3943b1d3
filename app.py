"""MCP adapter using the Model Context Protocol Python SDK (FastMCP).

This module registers tools exposing configuration, session management,
cached problem lookup and submission so MCP-aware clients can call them.

Usage:
    python app.py

Note: requires `mcp` package to be installed in the environment.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from leetcode_mcp import (
    ConfigStore,
    CoreError,
    FreshnessPolicy,
    ProblemFilter,
    ProblemRecord,
    open_core,
    submit_solution,
    write_solution,
)
from leetcode_mcp.parser import problem_to_md


mcp = FastMCP("leetcode-mcp")


def _policy(refresh: bool) -> FreshnessPolicy:
    return FreshnessPolicy.FORCE_REFRESH if refresh else FreshnessPolicy.USE_CACHE_IF_PRESENT


def _summary(record: ProblemRecord) -> dict:
    return {
        "id": record.id,
        "title": record.title,
        "difficulty": record.difficulty,
        "tags": sorted(record.tags),
        "fetched_at": record.fetched_at.isoformat(),
        "stale": record.stale,
        "submissions": [
            {"verdict": s.verdict.value, "submitted_at": s.submitted_at.isoformat()}
            for s in record.submission_history
        ],
    }


@mcp.tool()
def config_set(domain: str, user: Optional[str] = None) -> dict:
    """设置站点域名与用户名"""
    cfg = ConfigStore()
    cfg.save(domain=domain, user=user)
    return {"ok": True, "path": str(cfg.path)}


@mcp.tool()
def config_show() -> dict:
    """展示当前配置"""
    cfg = ConfigStore()
    data = cfg.load() or {}
    return {"ok": True, "config": data}


@mcp.tool()
def config_delete() -> dict:
    """移除配置文件"""
    cfg = ConfigStore()
    cfg.delete()
    return {"ok": True}


@mcp.tool()
async def session_set() -> dict:
    """使用密钥环中保存的凭据重新登录"""
    core = open_core()
    try:
        credential = core.credentials.load()
        if credential is None:
            return {"ok": False, "error": "未保存凭据，请先在命令行执行 login"}
        session = await core.gateway.login(credential)
    except CoreError as exc:
        return {"ok": False, "error": str(exc)}
    return {"ok": True, "cookies": session.cookie_names()}


@mcp.tool()
def session_show() -> dict:
    """展示现有的session内容"""
    core = open_core()
    session = core.sessions.load()
    if session is None:
        return {"ok": True, "session": None}
    return {
        "ok": True,
        "session": {
            "cookies": session.cookie_names(),
            "established_at": session.established_at.isoformat(),
        },
    }


@mcp.tool()
async def session_delete() -> dict:
    """删除现有的session内容"""
    core = open_core()
    await core.gateway.logout()
    return {"ok": True}


@mcp.tool()
async def problem(problem_id: str, refresh: bool = False) -> dict:
    """Fetch a problem by slug (cache first) and return it as Markdown."""
    core = open_core()
    try:
        record = await core.coordinator.fetch(problem_id, _policy(refresh))
    except CoreError as exc:
        return {"ok": False, "error": str(exc)}
    return {
        "ok": True,
        "stale": record.stale,
        "problem": problem_to_md(record.raw_statement_payload),
    }


@mcp.tool()
async def daily(refresh: bool = False) -> dict:
    """Fetch today's daily challenge."""
    core = open_core()
    try:
        record = await core.coordinator.fetch_daily(_policy(refresh))
    except CoreError as exc:
        return {"ok": False, "error": str(exc)}
    return {
        "ok": True,
        "id": record.id,
        "stale": record.stale,
        "problem": problem_to_md(record.raw_statement_payload),
    }


@mcp.tool()
async def edit(
    problem_id: str, language: str = "cpp", directory: str = ".", with_tests: bool = False
) -> dict:
    """Write the problem's starter code for ``language`` into ``directory``.

    directory: 目录的绝对路径
    """
    core = open_core()
    try:
        record = await core.coordinator.fetch(problem_id)
        path = write_solution(record, language, Path(directory), with_tests=with_tests)
    except (CoreError, ValueError) as exc:
        return {"ok": False, "error": str(exc)}
    return {"ok": True, "path": str(path)}


@mcp.tool()
async def prefetch(problem_ids: List[str], refresh: bool = False) -> dict:
    """Fetch several problems concurrently into the local cache."""
    core = open_core()
    results = await core.coordinator.fetch_many(problem_ids, _policy(refresh))
    return {
        "ok": all(not isinstance(r, CoreError) for r in results.values()),
        "results": {
            pid: ({"error": str(r)} if isinstance(r, CoreError) else _summary(r))
            for pid, r in results.items()
        },
    }


@mcp.tool()
def cached_problems(
    difficulty: Optional[str] = None,
    tag: Optional[str] = None,
    keyword: Optional[str] = None,
) -> dict:
    """List problems held in the local cache."""
    core = open_core()
    filters = ProblemFilter(difficulty=difficulty, tag=tag, keyword=keyword)
    return {"ok": True, "problems": [_summary(r) for r in core.cache.list(filters)]}


@mcp.tool()
async def submit(file_name: str, problem_id: str, language: str = "cpp") -> dict:
    """Submit source code to a problem and wait for the verdict.

    file_name: 文件的绝对路径
    """
    core = open_core()
    with open(file_name, "r", encoding="utf-8") as f:
        source = f.read()
    try:
        result = await submit_solution(
            core.gateway,
            core.coordinator,
            core.cache,
            problem_id,
            source=source,
            language=language,
        )
    except (CoreError, ValueError) as exc:
        return {"ok": False, "error": str(exc)}
    return {
        "ok": True,
        "verdict": result.verdict.value,
        "submission_id": result.submission_id,
    }


def main():
    # 默认使用 stdio 以便 VS Code / MCP 客户端通过 spawn 直接通信。
    # 若需要 HTTP 模式: 设置环境变量 MCP_TRANSPORT=http (可选再设 MCP_PORT / MCP_HOST)
    transport = os.getenv("MCP_TRANSPORT", "stdio").lower()
    if transport in {"http", "streamable-http"}:
        mcp.settings.host = os.getenv("MCP_HOST", "127.0.0.1")
        try:
            mcp.settings.port = int(os.getenv("MCP_PORT", "8001"))
        except ValueError:
            mcp.settings.port = 8001
        mcp.run(transport="streamable-http")
    else:
        mcp.run()  # stdio 模式


if __name__ == "__main__":
    main()
