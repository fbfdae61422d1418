import argparse
import asyncio
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from almanac_wiki.api.dependencies import get_page_cache
from almanac_wiki.config import settings
from almanac_wiki.db import async_engine
from almanac_wiki.main import configure_logging


def parse_args():
    parser = argparse.ArgumentParser(
        description="Drop cached pages generated from a source document that changed."
    )
    parser.add_argument("--document-id", required=True, help="Source document id")
    return parser.parse_args()


async def main():
    args = parse_args()
    configure_logging(settings.log_level)

    slugs = await get_page_cache().invalidate_by_source(args.document_id)

    for slug in slugs:
        print(f"  removed  {slug}")
    print(f"Invalidated {len(slugs)} page(s) sourced from {args.document_id}")

    await async_engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
