"""
Database Package

Provides SQLAlchemy async session management, model definitions and the
PostgreSQL implementations of the similarity backend, page cache and graph
store.
"""

from .session import async_engine, AsyncSessionLocal
from .models import Base, Document, DocumentChunk, WikiPage, WikiStub, PageConnection
from .vector_store import PgVectorStore, SEARCH_CHUNKS_FUNCTION_SQL, install_search_function
from .page_store import SqlPageCache
from .graph_store import SqlGraphStore

__all__ = [
    "async_engine",
    "AsyncSessionLocal",
    "Base",
    "Document",
    "DocumentChunk",
    "WikiPage",
    "WikiStub",
    "PageConnection",
    "PgVectorStore",
    "SEARCH_CHUNKS_FUNCTION_SQL",
    "install_search_function",
    "SqlPageCache",
    "SqlGraphStore",
]
