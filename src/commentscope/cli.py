"""Command-line interface for CommentScope."""

import argparse
import json
import logging
import os
import sys

from .core.config import settings
from .core.constants import FileConstants
from .core.exceptions import CommentScopeError
from .core.models import Dimension, TaskConfig, TaskRequest, TaskStage
from .services.analysis import AnalysisService
from .services.bvid import decode_short_id, encode_numeric_id
from .services.llm import LLMServiceFactory
from .services.orchestrator import Orchestrator
from .services.progress import ProgressBroker
from .services.storage import DiskTaskStore, RawCommentStore, ReportStore
from .utils.data_prep import export_to_json, prepare_export

logger = logging.getLogger(__name__)


def setup_logging():
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=FileConstants.LOG_FORMAT,
    )


def _stores():
    base = settings.data_dir
    return (
        DiskTaskStore(os.path.join(base, "tasks")),
        ReportStore(os.path.join(base, "reports")),
        RawCommentStore(os.path.join(base, "raw_comments")),
    )


def _orchestrator(broker=None) -> Orchestrator:
    task_store, report_store, raw_store = _stores()
    return Orchestrator(task_store, report_store, raw_store=raw_store, broker=broker)


def _parse_dimensions(values):
    """``name`` or ``name:description`` pairs."""
    dims = []
    for value in values or []:
        name, _, description = value.partition(":")
        if name.strip():
            dims.append(Dimension(name.strip(), description.strip()))
    return dims


def cmd_plan(args):
    """Plan command: turn a free-text requirement into a task request."""
    analysis = AnalysisService(LLMServiceFactory.create())
    plan = analysis.parse_requirement(args.requirement)

    print(plan.understanding)
    print(f"\nProduct type: {plan.product_type}")
    print(f"Brands: {', '.join(plan.brands)}")
    print("Dimensions:")
    for dim in plan.dimensions:
        print(f"  - {dim.name}: {dim.description}")
    print(f"Keywords: {', '.join(plan.keywords)}")

    if args.output:
        request = TaskRequest(plan.product_type, plan.keywords, plan.brands, plan.dimensions)
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(request.to_json())
        print(f"\nTask request written to {args.output}")


def cmd_analyze(args):
    """Analyze command: run the full pipeline and print the rankings."""
    if args.request:
        with open(args.request, encoding="utf-8") as f:
            request = TaskRequest.from_json(f.read())
    else:
        request = TaskRequest(
            category=args.category or "",
            keywords=args.keyword or [],
            brands=args.brand or [],
            dimensions=_parse_dimensions(args.dimension),
            config=TaskConfig(max_comments=args.max_comments, max_videos_per_keyword=args.max_videos),
        )

    broker = ProgressBroker()
    orchestrator = _orchestrator(broker)
    handle = orchestrator.submit(request)
    events = broker.subscribe(handle.task_id)
    print(f"Task {handle.task_id} started")

    try:
        state = handle.result()
    except KeyboardInterrupt:
        handle.cancel()
        state = handle.result()
    finally:
        while not events.empty():
            event = events.get_nowait()
            logger.debug(f"{event.stage} {event.current}% {event.message}")
        orchestrator.shutdown()

    print(f"Task {state.task_id}: {state.stage.value} ({state.message})")
    if state.stage != TaskStage.COMPLETED:
        sys.exit(1)

    report = orchestrator.report_store.get(state.report_id)
    print(f"\nBrand rankings for '{report['category']}':")
    for row in report["rankings"]:
        print(f"  {row['rank']}. {row['brand']:<12} {row['overall_score']:.1f}  ({row['comment_count']} comments)")
    if report["model_rankings"]:
        print("\nTop models:")
        for row in report["model_rankings"][:10]:
            print(f"  {row['rank']}. {row['brand']} {row['model']}  {row['overall_score']:.1f}")
    print(f"\n{report['recommendation']}")

    if args.output:
        export_to_json(prepare_export(report, state), args.output)
        print(f"\nReport exported to {args.output}")


def cmd_recover(args):
    """Recover command: resume or fail tasks left by a crashed process."""
    orchestrator = _orchestrator()
    handles = orchestrator.recover()
    print(f"Resumed {len(handles)} tasks")
    for handle in handles:
        state = handle.result()
        print(f"  {state.task_id}: {state.stage.value} ({state.message})")
    orchestrator.shutdown()


def cmd_sweep(args):
    """Sweep command: fail stale tasks and purge expired raw comments."""
    orchestrator = _orchestrator()
    stale = orchestrator.sweep()
    purged = orchestrator.raw_store.purge_expired()
    print(f"Marked {len(stale)} stale tasks failed, purged {purged} raw comment entries")
    orchestrator.shutdown()


def cmd_bvid(args):
    """Convert between bvid and avid."""
    value = args.id.strip()
    if value.isdigit():
        print(encode_numeric_id(int(value)))
        return
    avid = decode_short_id(value)
    if not avid:
        print(f"Malformed bvid: {value}", file=sys.stderr)
        sys.exit(1)
    print(avid)


def cmd_export(args):
    """Export a stored report to JSON."""
    task_store, report_store, _ = _stores()
    state = task_store.get(args.task_id)
    if state is None or not state.report_id:
        print(f"No report found for task {args.task_id}", file=sys.stderr)
        sys.exit(1)
    report = report_store.get(state.report_id)
    if args.output:
        export_to_json(prepare_export(report, state), args.output)
        print(f"Report exported to {args.output}")
    else:
        print(json.dumps(prepare_export(report, state), ensure_ascii=False, indent=2))


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="CommentScope - brand rankings from video comments")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    plan_parser = subparsers.add_parser("plan", help="Plan a task from a free-text requirement")
    plan_parser.add_argument("requirement", help="Buying requirement, e.g. '想买个吸尘器，家里有宠物'")
    plan_parser.add_argument("--output", "-o", help="Write the planned task request JSON here")
    plan_parser.set_defaults(func=cmd_plan)

    analyze_parser = subparsers.add_parser("analyze", help="Run a full analysis task")
    analyze_parser.add_argument("--request", "-r", help="Task request JSON (from 'plan --output')")
    analyze_parser.add_argument("--category", "-c", help="Product category")
    analyze_parser.add_argument("--keyword", "-k", action="append", help="Search keyword (repeatable)")
    analyze_parser.add_argument("--brand", "-b", action="append", help="Declared brand (repeatable)")
    analyze_parser.add_argument("--dimension", "-d", action="append", help="name[:description] (repeatable)")
    analyze_parser.add_argument("--max-comments", type=int, default=TaskConfig.max_comments)
    analyze_parser.add_argument("--max-videos", type=int, default=TaskConfig.max_videos_per_keyword)
    analyze_parser.add_argument("--output", "-o", help="Export the report to this JSON file")
    analyze_parser.set_defaults(func=cmd_analyze)

    recover_parser = subparsers.add_parser("recover", help="Resume tasks interrupted by a crash")
    recover_parser.set_defaults(func=cmd_recover)

    sweep_parser = subparsers.add_parser("sweep", help="Fail stale tasks and purge expired comments")
    sweep_parser.set_defaults(func=cmd_sweep)

    bvid_parser = subparsers.add_parser("bvid", help="Convert between bvid and avid")
    bvid_parser.add_argument("id", help="A bvid (BV1...) or a numeric avid")
    bvid_parser.set_defaults(func=cmd_bvid)

    export_parser = subparsers.add_parser("export", help="Export a task's report")
    export_parser.add_argument("task_id", help="Task id")
    export_parser.add_argument("--output", "-o", help="Output JSON file (stdout when omitted)")
    export_parser.set_defaults(func=cmd_export)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    setup_logging()
    try:
        args.func(args)
    except CommentScopeError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
