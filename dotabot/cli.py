"""
cli.py — Fetch player data from the terminal through the same cache/fallback path the bot uses.

Usage (from project root):
    export REDIS_URL="redis://localhost:6379"
    export STRATZ_API_TOKEN_1="..."
    python -m dotabot.cli last-match 115431346
    python -m dotabot.cli history 115431346 --limit 10
    python -m dotabot.cli invalidate 115431346
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from dotabot.errors import DataFetchError
from dotabot.orchestrator import MAX_HISTORY_LIMIT
from dotabot.services import start_services

logger = logging.getLogger("dotabot.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dotabot", description="Dota 2 player data with cache and provider fallback")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    for name in ("last-match", "profile", "invalidate"):
        p = sub.add_parser(name)
        p.add_argument("subject_id", help="Steam32 account id")

    p = sub.add_parser("history")
    p.add_argument("subject_id", help="Steam32 account id")
    p.add_argument("--limit", type=int, default=20, help=f"1..{MAX_HISTORY_LIMIT}")
    return parser


async def run(args: argparse.Namespace) -> object:
    services = await start_services()
    orchestrator = services.orchestrator
    try:
        if args.command == "last-match":
            return (await orchestrator.get_last_match(args.subject_id)).model_dump(mode="json")
        if args.command == "profile":
            return (await orchestrator.get_profile(args.subject_id)).model_dump(mode="json")
        if args.command == "history":
            entries = await orchestrator.get_history(args.subject_id, args.limit)
            return [entry.model_dump(mode="json") for entry in entries]
        await orchestrator.invalidate(args.subject_id)
        return {"success": True}
    finally:
        await services.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv(Path(__file__).parent.parent / ".env")
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        result = asyncio.run(run(args))
    except ValueError as exc:
        logger.error("invalid arguments: %s", exc)
        return 2
    except DataFetchError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
