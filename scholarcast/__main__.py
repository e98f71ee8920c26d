"""Command-line entry point: `python -m scholarcast <command>`."""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from scholarcast.config import HISTORY_LIMIT, MAX_RESULTS_LIMIT, Settings
from scholarcast.context import build_context
from scholarcast.errors import BatchFailure, QueryValidationError, StageFailure
from scholarcast.logging_setup import setup_logging
from scholarcast.orchestrator import PipelineOrchestrator
from scholarcast.utils import format_duration

logger = logging.getLogger(__name__)


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        prog="scholarcast",
        description="Turn academic papers on a topic into narrated research summaries.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m scholarcast search "machine learning healthcare" --max-results 3
  python -m scholarcast search "protein folding" --report --strict
  python -m scholarcast similar <paper_id> -k 3
  python -m scholarcast convert paper.pdf
  python -m scholarcast serve --port 3000
        """
    )
    parser.add_argument('--log-dir', type=str, help='Also write logs to DIR/scholarcast.log')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('search', help='Run the full pipeline for a query')
    p.add_argument('query', type=str)
    p.add_argument('--max-results', type=int, default=None,
                   help=f'Number of papers (1-{MAX_RESULTS_LIMIT})')
    p.add_argument('--report', action='store_true', help='Assemble a narrated report over the results')
    p.add_argument('--strict', action='store_true', help='Disable fallbacks: failed stages drop the paper')

    p = sub.add_parser('report', help='Show a previously assembled report')
    p.add_argument('report_id', type=str)

    p = sub.add_parser('similar', help='Papers most similar to a stored paper')
    p.add_argument('paper_id', type=str)
    p.add_argument('-k', type=int, default=5)
    p.add_argument('--no-placeholders', action='store_true', help='Ignore placeholder vectors')

    p = sub.add_parser('stats', help='Paper store statistics')

    p = sub.add_parser('history', help='Recent searches, newest first')
    p.add_argument('--limit', type=int, default=HISTORY_LIMIT)

    p = sub.add_parser('convert', help='Narrate a local PDF document')
    p.add_argument('pdf', type=str)
    p.add_argument('--strict', action='store_true', help='Disable fallbacks')

    p = sub.add_parser('cleanup', help='Delete expired audio files')
    p.add_argument('--max-age-hours', type=float, default=None)

    p = sub.add_parser('serve', help='Run the HTTP API')
    p.add_argument('--host', type=str, default='0.0.0.0')
    p.add_argument('--port', type=int, default=3000)

    return parser.parse_args(argv)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


async def _search(orchestrator: PipelineOrchestrator, args) -> int:
    try:
        result = await orchestrator.run_search(
            args.query, max_results=args.max_results,
            generate_report=args.report, use_fallbacks=not args.strict,
        )
    except QueryValidationError as e:
        logger.error(str(e))
        return 2
    except BatchFailure as e:
        logger.error(f"Search failed: {e.reason}")
        return 1
    _print_json(result.to_dict())
    if result.report and result.report.audio:
        duration = format_duration(result.report.audio.estimated_duration_seconds)
        logger.info(f"Report {result.report.id}: {result.report.audio.url} (~{duration})")
    return 0


async def _convert(orchestrator: PipelineOrchestrator, args) -> int:
    path = Path(args.pdf)
    if not path.is_file():
        logger.error(f"No such file: {path}")
        return 1
    try:
        result = await orchestrator.convert_document(
            path.read_bytes(), path.name, use_fallbacks=not args.strict
        )
    except StageFailure as e:
        logger.error(f"Conversion failed: {e}")
        return 1
    _print_json(result.to_dict())
    return 0


async def _run(args) -> int:
    ctx = build_context(Settings.from_env())
    orchestrator = PipelineOrchestrator(ctx)
    try:
        if args.command == 'search':
            return await _search(orchestrator, args)
        if args.command == 'report':
            report = orchestrator.get_report(args.report_id)
            if report is None:
                logger.error(f"No report with id {args.report_id}")
                return 1
            _print_json(report.to_dict())
            return 0
        if args.command == 'similar':
            matches = orchestrator.query_similar(
                args.paper_id, args.k, include_placeholders=not args.no_placeholders
            )
            if matches is None:
                logger.error(f"Paper {args.paper_id} has no stored embedding")
                return 1
            _print_json([{"paper_id": pid, "score": round(score, 4)} for pid, score in matches])
            return 0
        if args.command == 'stats':
            _print_json(orchestrator.paper_stats())
            return 0
        if args.command == 'history':
            _print_json(orchestrator.search_history(args.limit))
            return 0
        if args.command == 'convert':
            return await _convert(orchestrator, args)
        if args.command == 'cleanup':
            _print_json(orchestrator.cleanup_audio(args.max_age_hours))
            return 0
    finally:
        await ctx.aclose()
    return 1


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)
    setup_logging(args.log_dir, logging.DEBUG if args.verbose else logging.INFO)

    if args.command == 'serve':
        uvicorn.run("scholarcast.web.app:app", host=args.host, port=args.port)
        return 0
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
