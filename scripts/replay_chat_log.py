#!/usr/bin/env python3
"""Replay a JSON-lines chat log through the trending engine offline.

Each line is one chat record::

    {"id": "123", "author": "alice", "ts": 1500, "text": "gg"}

Records with an ``id`` are deduplicated by message identity; records without
fall back to their ``author`` handle. ``ts`` is in milliseconds and drives the
window clock; a record without one reuses the previous timestamp. ``tokens``
may replace ``text`` with the ``{"kind": "text"|"emote", ...}`` wire shape.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterable, Mapping, TextIO

from modules.trending.config import TrendingConfig
from modules.trending.dedup import Handle, Identity, StableId
from modules.trending.engine import RankingSnapshot, TrendingEngine
from modules.trending.tokens import TextToken, Token, tokens_from_mappings

log = logging.getLogger("hivemind.scripts.replay")


@dataclass
class ReplayStats:
    lines: int = 0
    accepted: int = 0
    skipped: int = 0


def _record_tokens(record: Mapping[str, Any]) -> list[Token]:
    raw_tokens = record.get("tokens")
    if isinstance(raw_tokens, list):
        return tokens_from_mappings(raw_tokens)
    text = record.get("text")
    if isinstance(text, str) and text:
        return [TextToken(text)]
    return []


def _record_identity(record: Mapping[str, Any], line_no: int) -> Identity:
    if record.get("id") is not None:
        return StableId(str(record["id"]))
    author = record.get("author")
    # anonymous lines get a per-line handle so they never collide
    return Handle(str(author) if author is not None else f"line:{line_no}")


def replay(
    lines: Iterable[str], engine: TrendingEngine, clock: list[int]
) -> ReplayStats:
    """Feed ``lines`` into ``engine``; ``clock[0]`` tracks the replay time."""

    stats = ReplayStats()
    for line_no, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        stats.lines += 1
        try:
            record = json.loads(line)
            if not isinstance(record, Mapping):
                raise ValueError("record is not a JSON object")
            if record.get("ts") is not None:
                clock[0] = int(record["ts"])
        except (ValueError, TypeError) as exc:
            stats.skipped += 1
            log.warning("skipping unreadable line", extra={"line": line_no, "error": str(exc)})
            continue
        now = clock[0]
        engine.trim(now)
        if engine.ingest(_record_identity(record, line_no), _record_tokens(record), now=now):
            stats.accepted += 1
    return stats


def _format_text(snapshot: RankingSnapshot, stats: ReplayStats) -> str:
    lines = [f"{entry.slot}. {entry.text}  (x{entry.count})" for entry in snapshot.entries]
    if not lines:
        lines.append("(nothing trending)")
    lines.append(
        f"-- {stats.lines} lines, {stats.accepted} accepted, {stats.skipped} skipped"
    )
    return "\n".join(lines)


async def _run(args: argparse.Namespace, stream: TextIO) -> tuple[RankingSnapshot, ReplayStats]:
    config = TrendingConfig()
    overrides = {
        "spam_threshold": args.threshold,
        "max_entries": args.max_entries,
        "window_max_age_ms": args.window_ms,
        "window_max_size": args.window_size,
    }
    config = replace(config, **{k: v for k, v in overrides.items() if v is not None})

    clock = [0]
    engine = TrendingEngine(config, clock=lambda: clock[0])
    try:
        stats = replay(stream, engine, clock)
        engine.trim(clock[0])
        return engine.snapshot(), stats
    finally:
        engine.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("file", help="JSON-lines chat log ('-' for stdin)")
    parser.add_argument("--threshold", type=int, help="Minimum count to trend (default: 4)")
    parser.add_argument("--max-entries", type=int, help="Slots to show (default: 4)")
    parser.add_argument("--window-ms", type=int, help="Window age bound in ms (default: 300000)")
    parser.add_argument("--window-size", type=int, help="Window size bound (default: 200)")
    parser.add_argument("--json", action="store_true", help="Emit the ranking as JSON")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    if args.file == "-":
        snapshot, stats = asyncio.run(_run(args, sys.stdin))
    else:
        path = Path(args.file)
        if not path.is_file():
            parser.error(f"no such file: {path}")
        with path.open(encoding="utf-8") as handle:
            snapshot, stats = asyncio.run(_run(args, handle))

    if args.json:
        payload = snapshot.as_dict()
        payload["stats"] = {
            "lines": stats.lines,
            "accepted": stats.accepted,
            "skipped": stats.skipped,
        }
        json.dump(payload, sys.stdout, indent=2, ensure_ascii=False)
        sys.stdout.write("\n")
    else:
        print(_format_text(snapshot, stats))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
