import argparse
import asyncio
import os
import sys
import uuid

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy import select

from almanac_wiki.db import AsyncSessionLocal, Document, DocumentChunk, async_engine
from almanac_wiki.embeddings.index import FaissChunkIndex
from almanac_wiki.embeddings.models import StoredChunk


def parse_args():
    parser = argparse.ArgumentParser(
        description="Copy document chunks and their stored embeddings into the local FAISS index."
    )
    parser.add_argument(
        "--document-id",
        help="Refresh a single document in the existing index instead of rebuilding it",
    )
    return parser.parse_args()


async def fetch_chunks(document_id=None):
    stmt = (
        select(DocumentChunk, Document.title)
        .join(Document, Document.id == DocumentChunk.document_id)
        .order_by(DocumentChunk.document_id, DocumentChunk.chunk_index)
    )
    if document_id:
        stmt = stmt.where(DocumentChunk.document_id == uuid.UUID(document_id))

    async with AsyncSessionLocal() as session:
        rows = (await session.execute(stmt)).all()

    chunks, embeddings = [], []
    for chunk, title in rows:
        chunks.append(StoredChunk(
            chunk_id=str(chunk.id),
            document_id=str(chunk.document_id),
            content=chunk.content,
            document_title=title or "Untitled",
            section_title=chunk.section_title,
            page_number=chunk.page_number,
            chunk_index=chunk.chunk_index or 0,
        ))
        embeddings.append([float(x) for x in chunk.embedding])
    return chunks, embeddings


async def main():
    args = parse_args()
    index = FaissChunkIndex()

    if args.document_id:
        index.load()
        removed = index.delete_document(args.document_id)
        print(f"Removed {removed} stale chunks of {args.document_id}")

    chunks, embeddings = await fetch_chunks(args.document_id)
    added = index.add_chunks(chunks, embeddings)
    index.save()

    stats = index.get_stats()
    print(f"Added {added} chunks")
    print(f"Index now holds {stats['total_vectors']} vectors from {stats['total_documents']} documents")

    await async_engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
