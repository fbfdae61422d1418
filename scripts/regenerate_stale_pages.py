import argparse
import asyncio
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from almanac_wiki.api.dependencies import get_orchestrator, get_page_cache
from almanac_wiki.config import settings
from almanac_wiki.core.retry import RetryPolicy
from almanac_wiki.db import async_engine
from almanac_wiki.main import configure_logging
from almanac_wiki.wiki.batch import regenerate_stale_pages


def parse_args():
    parser = argparse.ArgumentParser(
        description="Regenerate published pages whose TTL has expired, most viewed first."
    )
    parser.add_argument("--limit", type=int, default=10, help="Regenerate at most N pages")
    parser.add_argument(
        "--delay",
        type=float,
        default=settings.batch_delay_seconds,
        help="Seconds to wait between pages",
    )
    return parser.parse_args()


async def main():
    args = parse_args()
    configure_logging(settings.log_level)

    summary = await regenerate_stale_pages(
        pages=get_page_cache(),
        orchestrator=get_orchestrator(),
        limit=args.limit,
        delay_seconds=args.delay,
        retry_policy=RetryPolicy.from_settings(),
    )

    for result in summary.results:
        status = "ok  " if result.success else "FAIL"
        print(f"  {status}  {result.slug}" + (f": {result.error}" if result.error else ""))

    print(f"Regenerated {summary.succeeded}/{summary.processed} stale pages")

    await async_engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
