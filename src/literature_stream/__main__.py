"""
Command-line entry point: run one progressive search and print the results.

Usage:
    python -m literature_stream "q methodology climate attitudes" --limit 100 --verbose

Environment variables (see StreamConfig.from_env):
    LITSTREAM_URL: Stream endpoint (default: ws://localhost:4000/literature)
    LITSTREAM_RECONNECT_ATTEMPTS, LITSTREAM_RECONNECT_DELAY, ...
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from literature_stream.container import create_container
from literature_stream.domain.entities.commands import ResearchPurpose, SearchOptions
from literature_stream.domain.entities.session import SearchSnapshot, SessionStatus
from literature_stream.shared.config import StreamConfig
from literature_stream.shared.exceptions import LiteratureStreamError

logger = logging.getLogger("literature_stream")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="literature-stream",
        description="Run a progressive multi-source literature search over the search stream",
    )
    parser.add_argument("query", help="Search query")
    parser.add_argument("--url", help="Stream WebSocket URL (overrides LITSTREAM_URL)")
    parser.add_argument("--limit", type=int, help="Maximum papers to return")
    parser.add_argument(
        "--source",
        action="append",
        dest="sources",
        default=[],
        help="Restrict to a source (repeatable), e.g. --source openalex --source pubmed",
    )
    parser.add_argument(
        "--purpose",
        choices=[p.value for p in ResearchPurpose],
        help="Research purpose for purpose-aware ranking",
    )
    parser.add_argument("--timeout", type=float, default=120.0, help="Seconds to wait for completion (default: 120)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every progress update")
    return parser


def _log_progress(search_id: str, snapshot: SearchSnapshot) -> None:
    stage = snapshot.stage.value if snapshot.stage else "pending"
    logger.debug(
        f"[{search_id}] {stage} {snapshot.percent:.0f}% - {snapshot.message} "
        f"({snapshot.sources_complete}/{snapshot.sources_total} sources, {snapshot.paper_count} papers)"
    )
    if snapshot.late_sources:
        logger.debug(f"[{search_id}] Still waiting on: {', '.join(snapshot.late_sources)}")


def _print_results(snapshot: SearchSnapshot) -> None:
    for index, paper in enumerate(snapshot.papers, start=1):
        year = f" ({paper.year})" if paper.year else ""
        print(f"{index:4d}. {paper.title or paper.id}{year}")
    if snapshot.selection:
        print(
            f"\nSelected {snapshot.selection.selected_count} of {snapshot.selection.ranked_count} "
            f"(avg quality {snapshot.selection.avg_quality_score:.1f})"
        )


async def run_search(args: argparse.Namespace) -> int:
    overrides = {"url": args.url} if args.url else {}
    config = StreamConfig.from_env(**overrides)
    options = SearchOptions(limit=args.limit, sources=tuple(args.sources), purpose=args.purpose)

    container = create_container(config)
    client = container.search_client()
    if args.verbose:
        client.subscribe(_log_progress)

    logger.info(f"Connecting to {config.url}")
    try:
        await client.connect()
        search_id = client.start_search(args.query, options)
        try:
            snapshot = await client.wait_until_finished(search_id, timeout=args.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Search did not finish within {args.timeout:.0f}s")
            client.cancel_search(search_id)
            return 1
    finally:
        await client.close()

    if snapshot.status is SessionStatus.COMPLETE:
        _print_results(snapshot)
        logger.info(f"Search complete in {snapshot.elapsed_ms}ms with {snapshot.paper_count} papers")
        return 0

    error = snapshot.error
    logger.error(f"Search ended with status {snapshot.status.value}: {error.message if error else 'unknown error'}")
    if error and error.recoverable and snapshot.papers:
        _print_results(snapshot)
    return 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return asyncio.run(run_search(args))
    except LiteratureStreamError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 1


if __name__ == "__main__":
    sys.exit(main())
