"""
Command-line interface.

Usage:
    strategy-engine analyze "Review this async code"
    strategy-engine route "Design a caching layer" --strategy workflow
    strategy-engine run "Explain this function" --file src/app.py
    strategy-engine feedback <decision-id> positive
    strategy-engine stats
    strategy-engine resources

Every subcommand prints JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .config import EngineConfig
from .orchestrator import Orchestrator
from .resources import ResourceMonitor
from .types import InteractionMode, StrategyEngineError, UserFeedback

logger = logging.getLogger(__name__)


def _emit(payload: Any) -> None:
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        payload = dataclasses.asdict(payload)
    print(json.dumps(payload, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="strategy-engine",
        description="Resource-aware model routing for local LLM inference",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="Path to config JSON")
    parser.add_argument("--db", help="Performance ledger path (overrides config)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides config)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Analyze a request without routing it")
    analyze.add_argument("text")
    analyze.add_argument("--file", dest="file_path", help="File path hint")

    for name, help_text in (
        ("route", "Route a request and print the decision"),
        ("run", "Route and execute a request"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("text")
        cmd.add_argument("--file", dest="file_path", help="File path hint")
        cmd.add_argument("--strategy", help="Strategy name (default from config)")
        cmd.add_argument("--mode", choices=[m.value for m in InteractionMode if m.value != "unset"])
        cmd.add_argument("--model", help="Force a specific model")
    sub.choices["run"].add_argument("--timeout", type=float, help="Per-call timeout in seconds")

    feedback = sub.add_parser("feedback", help="Record feedback for a routed decision")
    feedback.add_argument("decision_id")
    feedback.add_argument("feedback", choices=[f.value for f in UserFeedback])

    sub.add_parser("stats", help="Show per-strategy performance")
    sub.add_parser("resources", help="Show current machine resources")
    return parser


async def _run_command(args: argparse.Namespace, config: EngineConfig) -> int:
    mode = InteractionMode(args.mode) if getattr(args, "mode", None) else None

    async with Orchestrator.from_config(config) as engine:
        if args.command == "analyze":
            _emit(engine.analyze(args.text, args.file_path))

        elif args.command == "route":
            context = engine.analyze(
                args.text, args.file_path, mode_override=mode, model_override=args.model
            )
            decision = await engine.route(context, args.strategy)
            _emit(decision.to_dict())

        elif args.command == "run":
            handled = await engine.handle(
                args.text,
                args.file_path,
                strategy=args.strategy,
                mode_override=mode,
                model_override=args.model,
                timeout_s=args.timeout,
            )
            _emit(
                {
                    "decision": handled.decision.to_dict(),
                    "result": dataclasses.asdict(handled.result),
                    "needs_review": handled.result.needs_review,
                }
            )

        elif args.command == "feedback":
            receipt = await engine.report_feedback(args.decision_id, args.feedback)
            _emit(receipt)
            return 0 if receipt.recorded else 1

        elif args.command == "stats":
            _emit(engine.stats())

    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    config = EngineConfig.load(args.config)
    if args.db:
        config.ledger.db_path = args.db
    if args.log_level:
        config.log_level = args.log_level

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "resources":
        _emit(ResourceMonitor(cpu_interval_s=0.1).sample())
        return 0

    try:
        return asyncio.run(_run_command(args, config))
    except StrategyEngineError as e:
        logger.error("%s failed: %s", args.command, e)
        _emit({"error": type(e).__name__, "message": str(e)})
        return 1


if __name__ == "__main__":
    sys.exit(main())
