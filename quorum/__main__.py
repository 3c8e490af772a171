"""Command-line entry point: ``python -m quorum "topic" ...``."""

import argparse
import asyncio
import json
import logging
import sys

from .config import get_moderator_model, get_quality_model
from .engine import DeliberationEngine, FailurePolicy, create_deliberation_engine
from .events import DeliberationEvent, DeliberationEventType
from .export import export_to_json, export_to_markdown
from .logging_config import setup_logging
from .models import DeliberationResult
from .openrouter import close_shared_client
from .schemas import (
    AIConfig,
    ConfigurationError,
    MetaModeratorConfig,
    QualityMonitorConfig,
)
from .telemetry import instrument_httpx, setup_telemetry

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quorum",
        description="Run a multi-round expert deliberation on a topic",
    )
    parser.add_argument("topic", help="Question or decision to deliberate on")
    parser.add_argument("--description", default="", help="Background for the experts")
    parser.add_argument(
        "--objective", action="append", default=[], dest="objectives",
        help="Objective the panel should address (repeatable)",
    )
    parser.add_argument(
        "--constraint", action="append", default=[], dest="constraints",
        help="Constraint the panel must respect (repeatable)",
    )
    parser.add_argument("--rounds", type=int, default=None, help="Maximum number of rounds")
    parser.add_argument(
        "--threshold", type=float, default=None,
        help="Consensus threshold as a percentage (0-100)",
    )
    parser.add_argument("--no-quality", action="store_true", help="Disable the quality monitor")
    parser.add_argument("--no-moderator", action="store_true", help="Disable the meta-moderator")
    parser.add_argument("--parallel", action="store_true", help="Query experts concurrently")
    parser.add_argument(
        "--skip-failed-experts", action="store_true",
        help="Drop experts whose provider calls fail instead of aborting",
    )
    parser.add_argument(
        "--format", choices=("markdown", "json"), default="markdown", dest="output_format",
    )
    parser.add_argument("--output", default=None, help="Write the export to PATH instead of stdout")
    return parser


def print_progress(event: DeliberationEvent) -> None:
    """Write a one-line progress note for the interesting events to stderr."""
    data = event.data
    if event.type is DeliberationEventType.ROUND_STARTED:
        message = f"Round {data['round_number']} started"
    elif event.type is DeliberationEventType.EXPERT_THINKING:
        message = f"  {data['expert_name']} is thinking..."
    elif event.type is DeliberationEventType.CONSENSUS_CALCULATED:
        reached = "reached" if data["achieved"] else "not reached"
        message = f"  consensus {data['consensus_score'] * 100:.0f}% ({reached})"
    elif event.type is DeliberationEventType.ERROR:
        message = f"Error: {data['error']}"
    else:
        return
    print(message, file=sys.stderr)


async def run(engine: DeliberationEngine) -> DeliberationResult:
    try:
        return await engine.run()
    finally:
        await close_shared_client()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(sys.stderr)
    if setup_telemetry():
        instrument_httpx()

    quality_monitor = QualityMonitorConfig(
        enabled=not args.no_quality,
        ai_config=AIConfig(model=get_quality_model(), temperature=0.2, max_tokens=300),
    )
    meta_moderator = MetaModeratorConfig(
        enabled=not args.no_moderator,
        ai_config=AIConfig(model=get_moderator_model()),
    )

    try:
        engine = create_deliberation_engine(
            args.topic,
            args.description,
            objectives=args.objectives,
            constraints=args.constraints,
            max_rounds=args.rounds,
            consensus_threshold=args.threshold,
            quality_monitor=quality_monitor,
            meta_moderator=meta_moderator,
            parallel_experts=args.parallel,
            failure_policy=(
                FailurePolicy.SKIP_EXPERT if args.skip_failed_experts else FailurePolicy.ABORT
            ),
        )
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    engine.on_event(print_progress)

    try:
        result = asyncio.run(run(engine))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error("Deliberation failed: %s", e)
        return 1

    if args.output_format == "json":
        output = json.dumps(export_to_json(result), indent=2)
    else:
        output = export_to_markdown(result, panel=engine.config.experts)

    if args.output:
        with open(args.output, "w") as f:
            f.write(output)
        print(f"Wrote {args.output}", file=sys.stderr)
    else:
        print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
