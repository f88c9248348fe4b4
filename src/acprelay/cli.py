"""Command line entry point: replay a raw event log through the projection engine."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from rich.console import Console

from acprelay.display import ConsoleSender, ConsoleTypingIndicator
from acprelay.delivery import TextCoalescer
from acprelay.errors import ConfigError
from acprelay.log_utils import build_log_config, configure_logging
from acprelay.projection import ProjectionConfig, ProjectionHub, StaticConfigResolver, TurnCollaborators
from acprelay.projection.config import load_config_from_env
from acprelay.raw_log import iter_raw_events


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="acprelay", description="Project ACP session update streams.")
    sub = parser.add_subparsers(dest="command", required=True)

    replay = sub.add_parser("replay", help="Replay a raw events.jsonl log to the console")
    replay.add_argument("log", type=Path, help="Path to an events.jsonl raw log")
    replay.add_argument("--config", type=Path, help="JSON projection config file")
    replay.add_argument("--delivery-mode", choices=["live", "final_only"])
    replay.add_argument("--meta-mode", choices=["off", "minimal", "verbose"])
    replay.add_argument("--show-usage", action="store_true", default=None)
    replay.add_argument("--max-turn-chars", type=int)
    replay.add_argument("--no-edit", action="store_true", help="Pretend the channel cannot edit messages")
    replay.add_argument("--session", help="Only replay events for this session key")
    return parser


def _resolve_config(args: argparse.Namespace) -> ProjectionConfig:
    base = load_config_from_env(args.config)
    overrides = {
        "delivery_mode": args.delivery_mode,
        "meta_mode": args.meta_mode,
        "show_usage": args.show_usage,
        "max_turn_chars": args.max_turn_chars,
    }
    merged = {**base.model_dump(), **{key: value for key, value in overrides.items() if value is not None}}
    return ProjectionConfig.from_mapping(merged)


async def replay(args: argparse.Namespace, console: Console) -> int:
    config = _resolve_config(args)
    sender = ConsoleSender(console, supports_edit=not args.no_edit)

    def _collaborators(_session_key: str) -> TurnCollaborators:
        return TurnCollaborators(
            sender=sender,
            coalescer=TextCoalescer(sender),
            typing=ConsoleTypingIndicator(console),
        )

    hub = ProjectionHub(_collaborators, StaticConfigResolver(config))
    count = 0
    for session_key, event in iter_raw_events(args.log):
        key = session_key or "replay"
        if args.session and key != args.session:
            continue
        await hub.feed(key, event)
        count += 1
    for key in hub.active_sessions():
        turn = hub.active_turn(key)
        if turn is not None:
            await turn.finish("end_of_log")
    console.print(f"[replayed {count} events]", style="dim")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(build_log_config(default_level=logging.INFO))
    console = Console(markup=False, highlight=False)
    if args.command == "replay":
        if not args.log.exists():
            print(f"Log file not found: {args.log}", file=sys.stderr)
            return 1
        try:
            return asyncio.run(replay(args, console))
        except ConfigError as exc:
            print(str(exc), file=sys.stderr)
            return 2
    return 1
