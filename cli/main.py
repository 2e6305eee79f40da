#!/usr/bin/env python3
"""
Study pipeline CLI

Operator commands for the client-side queue and the study server.

1) queue-status
   - Show what is waiting in the durable queue under --queue-dir.

2) drain
   - Run one drain pass against --api-base-url and print the outcome.

3) score
   - Score a timing log (JSON list of entries, or {"entries": [...]})
     and print the suspicion score, band and flags.

4) serve
   - Start the study server with uvicorn, e.g.:

       python -m cli.main serve --port 8000
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

# Ensure project root is on sys.path when running as a script
ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from configs.logging_config import configure_logging
from configs.settings import settings
from core.queue import DurableQueue, open_storage
from core.scoring import TimingEntry, describe_flag, score_band, score_session
from core.submission import RemoteEndpoint


def _format_ms(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


def _open_queue(queue_dir: str) -> DurableQueue:
    return DurableQueue(
        open_storage(queue_dir),
        max_items=settings.queue_max_items,
        max_age_ms=settings.queue_max_age_ms,
        base_backoff_ms=settings.queue_base_backoff_ms,
        max_backoff_ms=settings.queue_max_backoff_ms,
    )


# ---------------------------------------------------------------------------
# queue-status
# ---------------------------------------------------------------------------


def cmd_queue_status(queue_dir: str) -> None:
    queue = _open_queue(queue_dir)
    if not queue.enabled:
        print(f"[study] Queue storage unavailable at {queue_dir}")
        return

    items = queue.pending()
    print(f"[study] {len(items)} queued command(s) in {queue_dir}")
    for item in items:
        action = item.body.get("action", "-")
        print(
            f"[study]   {item.id}  {item.operation}/{action}  attempts={item.attempts}  "
            f"next={_format_ms(item.next_attempt_at)}  dedupe={item.dedupe_key or '-'}"
        )


# ---------------------------------------------------------------------------
# drain
# ---------------------------------------------------------------------------


async def _drain(queue_dir: str, api_base_url: str) -> None:
    queue = _open_queue(queue_dir)
    remote = RemoteEndpoint(api_base_url, timeout=settings.http_timeout_seconds)
    queue.bind_remote(remote)
    try:
        report = await queue.drain()
    finally:
        await remote.aclose()

    if report.skipped:
        print("[study] Drain skipped (queue disabled or already draining)")
        return
    print(
        f"[study] Drain: attempted={report.attempted} sent={report.sent} "
        f"retried={report.retried} expired={report.expired} "
        f"dropped={report.dropped} deferred={report.deferred}"
    )
    for failure in report.failures:
        print(f"[study]   ✗ {failure}")
    print(f"[study] {len(queue)} command(s) still queued")


def cmd_drain(queue_dir: str, api_base_url: str) -> None:
    asyncio.run(_drain(queue_dir, api_base_url))


# ---------------------------------------------------------------------------
# score
# ---------------------------------------------------------------------------


def load_timing_entries(path: str) -> List[TimingEntry]:
    """Read a timing log; accepts a bare list or an object with `entries`."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("entries", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of timing entries")
    return [TimingEntry.from_dict(row) for row in data]


def cmd_score(path: str, as_json: bool = False) -> None:
    if not Path(path).is_file():
        raise FileNotFoundError(f"Timing file not found: {path}")

    assessment = score_session(load_timing_entries(path))
    band = score_band(assessment.score)
    if as_json:
        out = assessment.to_dict()
        out["band"] = band.label
        print(json.dumps(out, indent=2, ensure_ascii=False))
        return

    print(f"[study] Suspicion score: {assessment.score} ({band.label})")
    for flag in assessment.flags:
        described = describe_flag(flag)
        print(f"[study]   +{flag.points}  {described['flag']}")


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


def cmd_serve(host: str, port: int, reload: bool) -> None:
    import uvicorn

    print(f"[study] Serving on http://{host}:{port}")
    uvicorn.run(
        "runtime.api.server:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Study pipeline CLI")
    parser.add_argument(
        "--queue-dir",
        default=str(settings.queue_dir),
        help="Durable queue directory (default: STUDY_QUEUE_DIR or 'runtime/data/queue')",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override (default: STUDY_LOG_LEVEL or INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # queue-status
    subparsers.add_parser("queue-status", help="List queued commands")

    # drain
    p_drain = subparsers.add_parser("drain", help="Run one drain pass now")
    p_drain.add_argument(
        "--api-base-url",
        default=settings.api_base_url,
        help="Server root (default: STUDY_API_BASE_URL)",
    )

    # score
    p_score = subparsers.add_parser("score", help="Score a timing log file")
    p_score.add_argument("path", help="Path to a JSON timing log")
    p_score.add_argument("--json", action="store_true", help="Print the assessment as JSON")

    # serve
    p_serve = subparsers.add_parser("serve", help="Start the study server")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    command: str = args.command

    if command == "queue-status":
        cmd_queue_status(queue_dir=args.queue_dir)
    elif command == "drain":
        cmd_drain(queue_dir=args.queue_dir, api_base_url=args.api_base_url)
    elif command == "score":
        cmd_score(path=args.path, as_json=args.json)
    elif command == "serve":
        cmd_serve(host=args.host, port=args.port, reload=args.reload)
    else:
        parser.error(f"Unknown command: {command}")


if __name__ == "__main__":
    main()
