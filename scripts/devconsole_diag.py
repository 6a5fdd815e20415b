"""devconsole diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from devconsole.config import ConsoleSettings
from devconsole.profiles import ProfileLoader, ProfileLoadError, ProjectProfile
from devconsole.worker.history import HistoryLog


def load_settings() -> ConsoleSettings:
    settings = ConsoleSettings()
    settings.normalize_paths()
    return settings


def load_profile(settings: ConsoleSettings) -> ProjectProfile:
    try:
        return ProfileLoader([settings.config_path]).load()
    except ProfileLoadError as exc:
        print(f"Project file unusable: {exc}")
        raise SystemExit(1)


def cmd_history(args: argparse.Namespace) -> None:
    settings = load_settings()
    history = HistoryLog(settings.history_file, limit=settings.history_size)
    entries = history.load()
    if args.limit is not None and args.limit > 0:
        entries = entries[-args.limit :]
    if args.json:
        print(json.dumps(entries, indent=2))
    else:
        for index, entry in enumerate(entries, start=1):
            print(f"{index:>5}  {entry}")


def cmd_config(args: argparse.Namespace) -> None:
    settings = load_settings()
    profile = load_profile(settings)
    payload = {
        "settings": json.loads(settings.model_dump_json()),
        "debug_proxy_port": settings.resolved_debug_proxy_port,
        "socket_exists": settings.socket_path.exists(),
        "profile": json.loads(profile.model_dump_json()),
        "cluster_ok": profile.cluster == 1,
    }
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="devconsole diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_history = sub.add_parser("history", help="Show the persisted REPL history")
    p_history.add_argument("--json", action="store_true", help="Output JSON")
    p_history.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N entries",
    )
    p_history.set_defaults(func=cmd_history)

    p_config = sub.add_parser("config", help="Show the effective settings and project file")
    p_config.set_defaults(func=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
