import argparse
import asyncio
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from almanac_wiki.api.dependencies import get_extractor, get_graph_updater, get_page_cache
from almanac_wiki.config import settings
from almanac_wiki.db import async_engine
from almanac_wiki.main import configure_logging
from almanac_wiki.wiki.batch import reextract_entities


def parse_args():
    parser = argparse.ArgumentParser(
        description="Re-run entity extraction over published pages and update the link graph."
    )
    parser.add_argument("--limit", type=int, default=None, help="Process at most N pages")
    parser.add_argument("--dry-run", action="store_true", help="Extract but do not write")
    parser.add_argument(
        "--delay",
        type=float,
        default=settings.batch_delay_seconds,
        help="Seconds each worker waits between pages",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.batch_concurrency,
        help="Number of pages processed in parallel",
    )
    return parser.parse_args()


async def main():
    args = parse_args()
    configure_logging(settings.log_level)

    summary = await reextract_entities(
        pages=get_page_cache(),
        extractor=get_extractor(),
        graph=get_graph_updater(),
        limit=args.limit,
        dry_run=args.dry_run,
        delay_seconds=args.delay,
        concurrency=args.concurrency,
    )

    for result in summary.results:
        if result.success:
            print(f"  ok    {result.slug}: {result.entity_count} entities")
        else:
            print(f"  FAIL  {result.slug}: {result.error}")

    mode = " (dry run)" if summary.dry_run else ""
    print(f"Processed {summary.processed} pages{mode}: {summary.succeeded} ok, {summary.failed} failed")

    await async_engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
