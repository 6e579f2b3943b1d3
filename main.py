from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import os
import shlex
import subprocess
import sys
from pathlib import Path

from leetcode_mcp import (
    ConfigStore,
    CoreError,
    Credential,
    FreshnessPolicy,
    ProblemFilter,
    ProblemRecord,
    open_core,
    submit_solution,
    write_solution,
)
from leetcode_mcp.parser import problem_to_md


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _policy(args: argparse.Namespace) -> FreshnessPolicy:
    if getattr(args, "refresh", False):
        return FreshnessPolicy.FORCE_REFRESH
    return FreshnessPolicy.USE_CACHE_IF_PRESENT


def _print_record(record: ProblemRecord, output: str | None = None) -> None:
    if record.stale:
        logging.warning("网络不可用，显示的是 %s 的缓存数据", record.fetched_at.isoformat())
    md_content = problem_to_md(record.raw_statement_payload)
    if output:
        Path(output).write_text(md_content, encoding="utf-8")
        print(f"已保存题目到 {output}")
    else:
        print(md_content)


def _cmd_login(args: argparse.Namespace) -> int:
    cfg = ConfigStore()
    user = getattr(args, "user", None) or cfg.settings().user or input("用户名: ")
    password = getpass.getpass("密码: ")
    core = open_core(cfg)
    try:
        session = asyncio.run(core.login(Credential(user, password)))
    except CoreError as exc:
        logging.error("登录失败: %s", exc)
        return 1
    cfg.save(user=user)
    logging.info("登录成功")
    print(json.dumps(session.cookie_names(), indent=2, ensure_ascii=False))
    return 0


def _cmd_logout(args: argparse.Namespace) -> int:
    core = open_core()
    try:
        asyncio.run(core.gateway.logout())
        core.credentials.clear()
    except CoreError as exc:
        logging.error("退出登录失败: %s", exc)
        return 1
    print("已退出登录")
    return 0


def _cmd_session(args: argparse.Namespace) -> int:
    """Manage the single local session: show, delete."""
    core = open_core()
    if args.action == "show":
        session = core.sessions.load()
        if session is None:
            print("暂无已保存的会话。")
            print(f"期望文件: {core.sessions.file_path}")
            return 0
        print(
            json.dumps(
                {
                    "cookies": session.cookie_names(),
                    "established_at": session.established_at.isoformat(),
                },
                indent=2,
                ensure_ascii=False,
            )
        )
        return 0

    core.sessions.invalidate()
    print(f"已删除会话文件: {core.sessions.file_path}")
    return 0


def _cmd_problem(args: argparse.Namespace) -> int:
    core = open_core()
    try:
        record = asyncio.run(core.coordinator.fetch(args.id, _policy(args)))
    except CoreError as exc:
        logging.error("获取题目失败: %s", exc)
        return 1
    _print_record(record, args.output)
    return 0


def _cmd_daily(args: argparse.Namespace) -> int:
    core = open_core()
    try:
        record = asyncio.run(core.coordinator.fetch_daily(_policy(args)))
    except CoreError as exc:
        logging.error("获取每日一题失败: %s", exc)
        return 1
    _print_record(record, args.output)
    return 0


def _cmd_edit(args: argparse.Namespace) -> int:
    core = open_core()
    try:
        if args.daily:
            record = asyncio.run(core.coordinator.fetch_daily())
        elif args.id:
            record = asyncio.run(core.coordinator.fetch(args.id))
        else:
            logging.error("请指定 --id 或 --daily")
            return 1
        path = write_solution(record, args.lang, Path(args.dir), with_tests=args.tests)
    except (CoreError, ValueError) as exc:
        logging.error("生成代码文件失败: %s", exc)
        return 1
    print(path)

    editor = os.environ.get("EDITOR")
    if args.open and editor:
        return subprocess.call([*shlex.split(editor), str(path)])
    if args.open:
        logging.warning("未设置 EDITOR 环境变量，无法打开编辑器")
    return 0


def _cmd_prefetch(args: argparse.Namespace) -> int:
    core = open_core()
    results = asyncio.run(core.coordinator.fetch_many(args.ids, _policy(args)))
    failed = 0
    for pid, result in results.items():
        if isinstance(result, CoreError):
            failed += 1
            print(f"{pid}: 失败 ({result})")
        else:
            mark = " (stale)" if result.stale else ""
            print(f"{pid}: {result.title}{mark}")
    return 1 if failed else 0


def _cmd_list(args: argparse.Namespace) -> int:
    core = open_core()
    filters = ProblemFilter(difficulty=args.difficulty, tag=args.tag, keyword=args.keyword)
    count = 0
    for record in core.cache.list(filters):
        count += 1
        last = record.submission_history[-1].verdict.value if record.submission_history else "-"
        tags = ",".join(sorted(record.tags))
        print(f"{record.id:<40} {record.difficulty:<8} {last:<18} {tags}")
    if not count:
        print("缓存中没有匹配的题目。使用 'problem' 或 'prefetch' 拉取题目")
    return 0


def _cmd_submit(args: argparse.Namespace) -> int:
    core = open_core()
    src = Path(args.file).read_text(encoding="utf-8")
    try:
        result = asyncio.run(
            submit_solution(
                core.gateway,
                core.coordinator,
                core.cache,
                args.id,
                source=src,
                language=args.language,
            )
        )
    except (CoreError, ValueError) as exc:
        logging.error("提交失败: %s", exc)
        return 1
    logging.info("评测结果: %s", result.verdict.value)
    return 0


def _cmd_cache(args: argparse.Namespace) -> int:
    core = open_core()
    core.cache.delete_all()
    print(f"已清空缓存: {core.cache.path}")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    cfg = ConfigStore()
    if args.action == "show":
        data = cfg.load()
        if not data:
            print("未找到配置。使用 'config set' 来保存域名/用户名")
            return 0
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return 0

    if args.action == "delete":
        cfg.delete()
        print(f"已删除配置文件: {cfg.path}")
        return 0

    # set
    domain = args.domain or input("域名 (leetcode.com / leetcode.cn): ")
    cfg.save(domain=domain, user=args.user, timeout=args.timeout)
    print(f"已保存配置至 {cfg.path}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LeetCode 命令行客户端")
    parser.add_argument("--verbose", action="store_true", help="显示调试日志")

    subparsers = parser.add_subparsers(dest="command", required=True)

    config_parser = subparsers.add_parser("config", help="管理本地配置(域名/用户名)")
    config_parser.add_argument(
        "action", choices=["set", "show", "delete"], help="操作: set/show/delete"
    )
    config_parser.add_argument("--domain", help="站点域名(可选, set 时使用)")
    config_parser.add_argument("--user", help="用户名(可选, set 时使用)")
    config_parser.add_argument("--timeout", type=float, help="单次请求超时(秒)")
    config_parser.set_defaults(func=_cmd_config)

    login_parser = subparsers.add_parser("login", help="保存凭据到系统密钥环并登录")
    login_parser.add_argument("--user", help="用户名(默认使用配置中的用户名)")
    login_parser.set_defaults(func=_cmd_login)

    logout_parser = subparsers.add_parser("logout", help="删除会话与保存的凭据")
    logout_parser.set_defaults(func=_cmd_logout)

    session_parser = subparsers.add_parser("session", help="查看或删除本地会话")
    session_parser.add_argument("action", choices=["show", "delete"], help="操作: show/delete")
    session_parser.set_defaults(func=_cmd_session)

    problem_parser = subparsers.add_parser("problem", help="获取题目(优先使用本地缓存)")
    problem_parser.add_argument("--id", required=True, help="题目 slug, 如 two-sum")
    problem_parser.add_argument("--refresh", action="store_true", help="忽略缓存强制刷新")
    problem_parser.add_argument("--output", help="可选，将题目保存到文件")
    problem_parser.set_defaults(func=_cmd_problem)

    daily_parser = subparsers.add_parser("daily", help="获取每日一题")
    daily_parser.add_argument("--refresh", action="store_true", help="忽略缓存强制刷新")
    daily_parser.add_argument("--output", help="可选，将题目保存到文件")
    daily_parser.set_defaults(func=_cmd_daily)

    edit_parser = subparsers.add_parser("edit", help="生成题目的代码模板文件")
    edit_parser.add_argument("--id", help="题目 slug")
    edit_parser.add_argument("--daily", action="store_true", help="使用每日一题")
    edit_parser.add_argument("--lang", default="cpp", help="语言，默认 cpp")
    edit_parser.add_argument("--dir", default=".", help="代码文件所在目录，默认当前目录")
    edit_parser.add_argument("--tests", action="store_true", help="同时写入示例测试用例")
    edit_parser.add_argument("--open", action="store_true", help="用 $EDITOR 打开生成的文件")
    edit_parser.set_defaults(func=_cmd_edit)

    prefetch_parser = subparsers.add_parser("prefetch", help="并发拉取多道题目到缓存")
    prefetch_parser.add_argument("ids", nargs="+", help="题目 slug 列表")
    prefetch_parser.add_argument("--refresh", action="store_true", help="忽略缓存强制刷新")
    prefetch_parser.set_defaults(func=_cmd_prefetch)

    list_parser = subparsers.add_parser("list", help="列出缓存中的题目")
    list_parser.add_argument("--difficulty", help="按难度过滤 (Easy/Medium/Hard)")
    list_parser.add_argument("--tag", help="按标签过滤, 如 array")
    list_parser.add_argument("--keyword", help="按标题或 slug 关键字过滤")
    list_parser.set_defaults(func=_cmd_list)

    submit_parser = subparsers.add_parser("submit", help="提交代码并等待评测结果")
    submit_parser.add_argument("--id", required=True, help="题目 slug")
    submit_parser.add_argument("--file", required=True, help="包含代码的文件")
    submit_parser.add_argument("--language", default="cpp", help="语言，默认 cpp")
    submit_parser.set_defaults(func=_cmd_submit)

    cache_parser = subparsers.add_parser("cache", help="管理本地题目缓存")
    cache_parser.add_argument("action", choices=["clear"], help="操作: clear")
    cache_parser.set_defaults(func=_cmd_cache)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except KeyboardInterrupt:
        logging.error("已中断")
        return 130


if __name__ == "__main__":
    sys.exit(main())
