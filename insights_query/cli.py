"""
insights-query command line.

Usage:
    insights-query init [-o .insights-config.json]
    insights-query validate [-c CONFIG] [-p PROFILE]
    insights-query list-profiles [-c CONFIG] [--all]
    insights-query test-auth [-c CONFIG] [-p PROFILE] [--no-interactive]
    insights-query query "requests | take 10" [-p PROFILE] [--json]
    insights-query cache-stats [-p PROFILE]
    insights-query cache-clear [-p PROFILE] [--expired-only]
    insights-query serve [--host 127.0.0.1] [--port 52345]

Exit code 1 on any failure, with a one-line reason on stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from insights_query import __version__
from insights_query.config import discover_config_file
from insights_query.config_validator import validate_config
from insights_query.errors import InsightsQueryError
from insights_query.executor import QueryExecutor
from insights_query.paths import CONFIG_FILENAME, ENV_CONFIG_PATH
from insights_query.profile_store import ProfileStore, write_template

MAX_PRINTED_ROWS = 50


def _fail(message: str) -> None:
    print(f"✗ {message}", file=sys.stderr)
    sys.exit(1)


def _store(args: argparse.Namespace) -> ProfileStore | None:
    path = discover_config_file(args.config)
    return ProfileStore(path) if path else None


def _executor(args: argparse.Namespace, interactive: bool = True) -> QueryExecutor:
    return QueryExecutor(_store(args), interactive=interactive)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init(args: argparse.Namespace) -> None:
    workspace = args.workspace or os.getcwd()
    path = write_template(args.output, workspace)
    print(f"✓ Created config template: {path}")
    print("\nNext steps:")
    print("1. Edit the config file with your Application Insights details")
    print("2. Run: insights-query validate")
    print("3. Run: insights-query test-auth")


def cmd_validate(args: argparse.Namespace) -> None:
    config = _executor(args).resolve(args.profile)
    errors = validate_config(config)
    if errors:
        print("✗ Configuration errors:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        sys.exit(1)
    print("✓ Configuration is valid")
    print(f"  Profile:      {config.profile_name}")
    print(f"  Connection:   {config.connection_name}")
    print(f"  Auth flow:    {config.auth_flow}")
    print(f"  App Insights: {config.application_insights_app_id}")


def cmd_list_profiles(args: argparse.Namespace) -> None:
    store = _store(args)
    if store is None:
        _fail(f"No config file found. Run: insights-query init (creates {CONFIG_FILENAME})")

    summaries = store.list_profiles(include_base=args.all)
    if not summaries:
        print("No profiles defined")
        return
    print("Available profiles:\n")
    for s in summaries:
        marker = "✓" if s.is_default else " "
        base = " (base profile)" if s.is_base else ""
        print(f"  [{marker}] {s.name}")
        print(f"      {s.connection_name or 'Unnamed'}{base}")
        if s.extends:
            print(f"      Extends: {s.extends}")
        print()
    print(f"Default profile: {store.default_profile()}")


def cmd_test_auth(args: argparse.Namespace) -> None:
    executor = _executor(args, interactive=not args.no_interactive)
    config = executor.resolve(args.profile)
    print(f"Testing authentication for: {config.connection_name}")
    print(f"Auth flow: {config.auth_flow}\n")
    session = asyncio.run(executor.authenticate(args.profile, interactive=executor.interactive))
    print("✓ Authentication successful")
    print(f"  Account: {session.account.label}")
    print(f"  Expires: {session.expires_on.isoformat()}")


def _print_table(columns: list[str], rows: list[list]) -> None:
    cells = [[str(v) for v in row] for row in rows[:MAX_PRINTED_ROWS]]
    widths = [
        max([len(col)] + [len(row[i]) for row in cells if i < len(row)])
        for i, col in enumerate(columns)
    ]
    print("  ".join(col.ljust(w) for col, w in zip(columns, widths)))
    print("  ".join("-" * w for w in widths))
    for row in cells:
        print("  ".join(v.ljust(w) for v, w in zip(row, widths)))
    if len(rows) > MAX_PRINTED_ROWS:
        print(f"... {len(rows) - MAX_PRINTED_ROWS} more row(s)")


def cmd_query(args: argparse.Namespace) -> None:
    kql = args.kql
    if kql == "-":
        kql = sys.stdin.read()
    executor = _executor(args, interactive=not args.no_interactive)
    result = asyncio.run(executor.execute(kql, args.profile))

    if args.json:
        print(result.model_dump_json(indent=2))
    elif result.type == "table":
        _print_table(result.columns, result.rows)
        print(f"\n{result.summary}{' (cached)' if result.cached else ''}")
        for hint in result.recommendations:
            print(f"  hint: {hint}")
    elif result.type == "empty":
        print(result.summary)

    if result.type == "error":
        if not args.json:
            for hint in result.recommendations:
                print(f"  - {hint}", file=sys.stderr)
        _fail(f"[{result.error_category}] {result.summary}")


def cmd_cache_stats(args: argparse.Namespace) -> None:
    stats = _executor(args).cache_stats(args.profile)
    print(f"Cache path:  {stats.cache_path}")
    print(f"Enabled:     {stats.enabled}")
    print(f"Entries:     {stats.size} ({stats.expired} expired, {stats.corrupt} unreadable)")
    print(f"Size:        {stats.total_size_bytes} bytes")


def cmd_cache_clear(args: argparse.Namespace) -> None:
    executor = _executor(args)
    if args.expired_only:
        removed = executor.cleanup_cache(args.profile)
        print(f"✓ Removed {removed} expired cache entries")
        return
    result = executor.clear_cache(args.profile)
    print(f"✓ Cleared {result.deleted} cache entries")
    if result.errors:
        _fail(f"{result.errors} cache entries could not be deleted")


def cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn

    if args.config:
        os.environ[ENV_CONFIG_PATH] = str(Path(args.config).resolve())
    port = args.port or _executor(args).resolve(args.profile).port
    uvicorn.run("insights_query.main:app", host=args.host, port=port)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="insights-query", description="Profile-aware KQL query runtime")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")
    sub = p.add_subparsers(dest="command", required=True)

    def command(name: str, func, help_text: str, profile: bool = True) -> argparse.ArgumentParser:
        sp = sub.add_parser(name, help=help_text)
        sp.set_defaults(func=func)
        sp.add_argument("-c", "--config", help="Path to config file")
        if profile:
            sp.add_argument("-p", "--profile", help="Profile name (default profile when omitted)")
        return sp

    sp = sub.add_parser("init", help="Create a config file template")
    sp.set_defaults(func=cmd_init)
    sp.add_argument("-o", "--output", default=CONFIG_FILENAME, help="Output path")
    sp.add_argument("--workspace", help="Workspace path written into the template")

    command("validate", cmd_validate, "Validate a profile")

    sp = command("list-profiles", cmd_list_profiles, "List profiles", profile=False)
    sp.add_argument("--all", action="store_true", help="Include base profiles")

    sp = command("test-auth", cmd_test_auth, "Acquire a token for a profile")
    sp.add_argument("--no-interactive", action="store_true", help="Fail instead of prompting")

    sp = command("query", cmd_query, "Run a KQL query")
    sp.add_argument("kql", help="KQL text, or - to read from stdin")
    sp.add_argument("--json", action="store_true", help="Print the full result as JSON")
    sp.add_argument("--no-interactive", action="store_true", help="Fail instead of prompting")

    command("cache-stats", cmd_cache_stats, "Show cache statistics")

    sp = command("cache-clear", cmd_cache_clear, "Delete cached results")
    sp.add_argument("--expired-only", action="store_true", help="Only remove expired entries")

    sp = command("serve", cmd_serve, "Run the HTTP API")
    sp.add_argument("--host", default="127.0.0.1")
    sp.add_argument("--port", type=int, help="Port (default: the profile's port, 52345)")

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except InsightsQueryError as e:
        _fail(str(e))


if __name__ == "__main__":
    main()
