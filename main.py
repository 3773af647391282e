import argparse
import asyncio
import json
import sys

from marginalia import service
from marginalia.config import get_settings
from marginalia.core.research.models import ResearchStatus
from marginalia.core.research.modes import ResearchMode
from marginalia.utils.exceptions import MarginaliaError
from marginalia.utils.logging import RunLogger, get_logger, setup_logging

logger = get_logger("marginalia.cli")


def _print_record(record) -> None:
    if record is None:
        print("No research record.")
        return
    print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))


async def run_research(article_id: int, mode: str) -> int:
    log = RunLogger(logger, article_id=article_id, mode=mode)
    log.info("Starting research from the command line")
    try:
        await service.start_article_research(article_id, mode)
        await service.get_orchestrator().wait_idle()
        record = await service.get_article_research(article_id)
    finally:
        await service.shutdown()

    _print_record(record)
    if record is None or record.status is not ResearchStatus.READY:
        return 1
    return 0


async def show_research(article_id: int) -> int:
    try:
        record = await service.get_article_research(article_id)
    finally:
        await service.shutdown()
    _print_record(record)
    return 0 if record is not None else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marginalia",
        description="Background research for blog articles.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    research = commands.add_parser("research", help="run research for an article and wait")
    research.add_argument("article_id", type=int)
    research.add_argument(
        "--mode",
        choices=[m.value for m in ResearchMode],
        default=None,
        help="research depth (default from settings)",
    )

    show = commands.add_parser("show", help="print the stored research record")
    show.add_argument("article_id", type=int)
    return parser


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        if args.command == "research":
            mode = args.mode or get_settings().research.default_mode
            return await run_research(args.article_id, mode)
        return await show_research(args.article_id)
    except MarginaliaError as e:
        print(f"\nERROR: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        sys.exit(130)
