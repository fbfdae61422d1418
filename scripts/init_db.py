import asyncio
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy import text

from almanac_wiki.db import AsyncSessionLocal, Base, async_engine, install_search_function


async def main():
    print("Enabling pgvector...")
    async with async_engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        print("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)

    print("Installing search_chunks()...")
    async with AsyncSessionLocal() as session:
        async with session.begin():
            await install_search_function(session)

    await async_engine.dispose()
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
