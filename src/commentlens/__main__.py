"""CLI entry-point: ``python -m commentlens analyze`` / ``status`` / ``plan``."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from commentlens import config
from commentlens.analyzer import build_analyzer
from commentlens.errors import AnalysisFailed, PersistenceError, QuotaExceeded
from commentlens.ledger import QuotaLedger

EXIT_FAILURE = 1
EXIT_QUOTA = 2


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _emit(payload: dict[str, Any]) -> None:
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")


def _analyze(args: argparse.Namespace) -> int:
    try:
        result = build_analyzer().run(
            caller_id=args.caller_id,
            video_id=args.video_id,
            access_token=args.access_token,
            max_count=args.count,
            language=args.language,
            label=args.label,
        )
    except QuotaExceeded as exc:
        _emit({
            "error": "Quota Exceeded",
            "message": "Your free quota is used up; upgrade to keep analyzing.",
            "isQuotaError": True,
            "userQuota": exc.snapshot.model_dump(by_alias=True),
        })
        return EXIT_QUOTA
    except PersistenceError as exc:
        _emit({"error": "Database Error", "details": str(exc)})
        return EXIT_FAILURE
    except AnalysisFailed as exc:
        body: dict[str, Any] = {
            "error": "Analysis failed",
            "phase": exc.phase,
            "details": str(exc),
        }
        if exc.quota is not None:
            body["userQuota"] = exc.quota.model_dump(by_alias=True)
        _emit(body)
        return EXIT_FAILURE

    _emit(result.to_payload())
    return 0


def _status(args: argparse.Namespace) -> int:
    try:
        snapshot = build_analyzer().status(args.caller_id, args.label)
    except PersistenceError as exc:
        _emit({"error": "Database Error", "details": str(exc)})
        return EXIT_FAILURE
    _emit(snapshot.model_dump(by_alias=True))
    return 0


def _plan(args: argparse.Namespace) -> int:
    try:
        ledger = QuotaLedger(db_path=config.DB_PATH, default_limit=config.FREE_QUOTA_LIMIT)
        snapshot = ledger.set_subscription(args.caller_id, args.status, args.limit)
    except PersistenceError as exc:
        _emit({"error": "Database Error", "details": str(exc)})
        return EXIT_FAILURE
    _emit(snapshot.model_dump(by_alias=True))
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="commentlens",
        description="Classify YouTube comments with an LLM under a monthly quota.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── analyze ───────────────────────────────────────────────────────
    analyze_parser = sub.add_parser("analyze", help="Analyze a video's comments.")
    analyze_parser.add_argument("--caller-id", required=True, help="Stable caller identity.")
    analyze_parser.add_argument("--label", default="", help="Display label used in logs.")
    analyze_parser.add_argument("--video-id", required=True, help="YouTube video ID.")
    analyze_parser.add_argument(
        "--access-token", required=True, help="Caller's YouTube OAuth access token."
    )
    analyze_parser.add_argument(
        "--count",
        type=int,
        default=config.DEFAULT_COUNT,
        help=f"Maximum comments to analyze (default: {config.DEFAULT_COUNT}).",
    )
    analyze_parser.add_argument(
        "--language",
        default=config.DEFAULT_LANGUAGE,
        help=f"Output language (default: {config.DEFAULT_LANGUAGE}).",
    )

    # ── status ────────────────────────────────────────────────────────
    status_parser = sub.add_parser("status", help="Show a caller's quota balance.")
    status_parser.add_argument("--caller-id", required=True)
    status_parser.add_argument("--label", default="")

    # ── plan ──────────────────────────────────────────────────────────
    plan_parser = sub.add_parser("plan", help="Set a caller's subscription tier.")
    plan_parser.add_argument("--caller-id", required=True)
    plan_parser.add_argument("--status", required=True, help="e.g. free, pro.")
    plan_parser.add_argument("--limit", type=int, required=True, help="Monthly quota.")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_FAILURE)

    _setup_logging()
    handlers = {"analyze": _analyze, "status": _status, "plan": _plan}
    sys.exit(handlers[args.command](args))


if __name__ == "__main__":
    main()
