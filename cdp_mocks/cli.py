from __future__ import annotations

import argparse
import json
import logging
import time
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from .chrome_discovery import get_websocket_debug_url, list_page_targets
from .config import MocksConfig, resolve_key
from .constants import DUMPS_DIR, ENCRYPTION_KEY_ENV, SUPPORTED_RESOURCE_TYPES
from .context import TestContext
from .dump_io import dump_file_path, generate_key, read_dump
from .models import MocksPattern, RunMode
from .plugin import MocksPlugin

CLI_SESSION_ID = "cli"


def _tool_version() -> str:
    try:
        return version("cdp-mocks")
    except PackageNotFoundError:
        return "0.0.0"


def _emit(payload: dict, output_format: str) -> None:
    if output_format == "ndjson":
        print(json.dumps(payload, separators=(",", ":")))
        return
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cdp-mocks",
        description=(
            "Record browser network traffic into dumps through the DevTools protocol "
            "and replay it deterministically."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_tool_version()}")
    parser.add_argument("--format", choices=["json", "ndjson"], default="json")
    parser.add_argument("--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Intercept one tab in play/save/create mode")
    run_parser.add_argument("--chrome-host", default="127.0.0.1")
    run_parser.add_argument("--chrome-port", type=int, default=9222)
    run_parser.add_argument("--target-hint", default=None, help="Match target tab by URL/title substring")
    run_parser.add_argument("--mode", choices=[m.value for m in RunMode], default=RunMode.PLAY.value)
    run_parser.add_argument("--title", required=True, help="Name identifying the recording")
    run_parser.add_argument("--browser-id", default="chrome")
    run_parser.add_argument("--dumps-dir", default=DUMPS_DIR)
    run_parser.add_argument(
        "--pattern",
        action="append",
        default=None,
        help="Repeatable URL glob to intercept (default: every URL)",
    )
    run_parser.add_argument(
        "--resource",
        action="append",
        default=None,
        choices=SUPPORTED_RESOURCE_TYPES,
        help="Repeatable resource type filter (default: all supported types)",
    )
    run_parser.add_argument("--duration", type=float, default=30)
    run_parser.add_argument("--reload", action="store_true", help="Reload the tab once interception is on")
    run_parser.add_argument("--no-gzip", action="store_true")
    run_parser.add_argument("--encryption-key", default=None)
    run_parser.add_argument("--encryption-key-env", default=ENCRYPTION_KEY_ENV)

    inspect_parser = subparsers.add_parser("inspect", help="Summarize a dump file")
    inspect_parser.add_argument("dump", help="Dump path, with or without .json/.json.gz")
    inspect_parser.add_argument("--encryption-key", default=None)
    inspect_parser.add_argument("--encryption-key-env", default=ENCRYPTION_KEY_ENV)

    targets_parser = subparsers.add_parser("list-targets", help="List browser page targets from DevTools")
    targets_parser.add_argument("--chrome-host", default="127.0.0.1")
    targets_parser.add_argument("--chrome-port", type=int, default=9222)

    subparsers.add_parser("keygen", help="Generate a key for encrypted dumps")

    return parser


def run_session(args: argparse.Namespace) -> dict:
    ws_url = get_websocket_debug_url(args.chrome_host, args.chrome_port, args.target_hint)
    resources: list[str] | str = args.resource or "*"
    config = MocksConfig(
        patterns=[MocksPattern(url, resources) for url in (args.pattern or ["*"])],
        browsers=[args.browser_id],
        mode=RunMode(args.mode),
        dumps_dir=args.dumps_dir,
        gzip_dumps=not args.no_gzip,
        encryption_key=resolve_key(args.encryption_key, args.encryption_key_env),
    )
    plugin = MocksPlugin(config)
    test = TestContext(full_title=args.title, browser_id=args.browser_id, session_id=CLI_SESSION_ID)
    store = plugin.on_test_begin(test)
    try:
        sessions = plugin.on_session_start(CLI_SESSION_ID, args.browser_id, [ws_url])
        if args.reload:
            sessions[0].client.reload(ignore_cache=True)
        time.sleep(max(0.0, args.duration))
    finally:
        plugin.on_test_end(test)
        write_errors = plugin.on_runner_end()

    return {
        "mode": config.mode.value,
        "target": ws_url,
        "dump": str(dump_file_path(store.dump_path, config.gzip_dumps)) if store else None,
        "encrypted": bool(config.encryption_key),
        "mocks_error": str(test.mocks_error) if test.mocks_error else None,
        "write_errors": [str(exc) for exc in write_errors],
    }


def inspect_dump(path: str, encryption_key: str | None = None) -> dict:
    gzip_dumps = path.endswith(".json.gz")
    base = path
    for suffix in (".json.gz", ".json"):
        if base.endswith(suffix):
            base = base[: -len(suffix)]
            break
    else:
        gzip_dumps = Path(f"{path}.json.gz").exists()

    dump = read_dump(base, gzip_dumps=gzip_dumps, encryption_key=encryption_key)
    return {
        "path": str(dump_file_path(base, gzip_dumps)),
        "keys": {key: len(hashes) for key, hashes in dump.requests.items()},
        "requests": sum(len(hashes) for hashes in dump.requests.values()),
        "responses": len(dump.responses),
    }


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command == "run":
        summary = run_session(args)
        _emit(summary, args.format)
        if summary["mocks_error"] or summary["write_errors"]:
            raise SystemExit(1)
        return

    if args.command == "inspect":
        encryption_key = resolve_key(args.encryption_key, args.encryption_key_env)
        _emit(inspect_dump(args.dump, encryption_key), args.format)
        return

    if args.command == "list-targets":
        targets = list_page_targets(args.chrome_host, args.chrome_port)
        mapped = [
            {
                "id": t.get("id"),
                "title": t.get("title"),
                "url": t.get("url"),
                "type": t.get("type"),
            }
            for t in targets
        ]
        _emit({"targets": mapped, "count": len(mapped)}, args.format)
        return

    if args.command == "keygen":
        _emit({"key": generate_key()}, args.format)
        return

    parser.error("Unknown command")


if __name__ == "__main__":
    main()
