"""
Database Model Tests

Simple tests for the ORM layer, without a live database:
- Model construction and table layout
- Row to domain model conversion
- Lookup results of the SQL page cache
- Invalidation of pages by source document
"""

import uuid

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from almanac_wiki.core.errors import PersistenceError
from almanac_wiki.core.result import Err, NotFound, Ok
from almanac_wiki.db.graph_store import _to_connection, _to_stub
from almanac_wiki.db.models import (
    Document,
    DocumentChunk,
    EMBEDDING_DIMENSIONS,
    PageConnection,
    WikiPage,
    WikiStub,
)
from almanac_wiki.db.page_store import SqlPageCache, _to_page
from almanac_wiki.wiki.models import ConfidenceTier

from conftest import FIXED_NOW


def page_row(**overrides):
    values = dict(
        slug="teething",
        title="Teething",
        content="# Teething\n\nBody.",
        excerpt="Body.",
        confidence_score=0.82,
        generated_at=FIXED_NOW,
        ttl_expires_at=FIXED_NOW,
        published=True,
        view_count=4,
        page_metadata={"query": "teething", "sources_used": ["doc-a"], "legacy_field": 1},
    )
    values.update(overrides)
    return WikiPage(**values)


class FakeResult:
    def __init__(self, values):
        self.values = values

    def scalars(self):
        return self

    def all(self):
        return list(self.values)


class FakeSession:
    def __init__(self, row=None, error=None, returned=()):
        self.row = row
        self.error = error
        self.returned = returned
        self.statements = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def scalar(self, stmt):
        if self.error is not None:
            raise self.error
        return self.row

    def begin(self):
        return self

    async def execute(self, stmt):
        self.statements.append(stmt)
        if self.error is not None:
            raise self.error
        return FakeResult(self.returned)


class TestModels:

    def test_table_names(self):
        assert Document.__tablename__ == "documents"
        assert DocumentChunk.__tablename__ == "document_chunks"
        assert WikiPage.__tablename__ == "wiki_pages"
        assert WikiStub.__tablename__ == "wiki_stubs"
        assert PageConnection.__tablename__ == "page_connections"

    def test_chunk_embedding_dimensions(self):
        column = DocumentChunk.__table__.c.embedding
        assert column.type.dim == EMBEDDING_DIMENSIONS

    def test_slugs_are_unique(self):
        assert WikiPage.__table__.c.slug.unique
        assert WikiStub.__table__.c.slug.unique

    def test_connection_pair_is_unique(self):
        names = {c.name for c in PageConnection.__table__.constraints}
        assert "uq_connection_pair" in names

    def test_chunk_belongs_to_document(self):
        doc_id = uuid.uuid4()
        chunk = DocumentChunk(document_id=doc_id, content="Passage.", chunk_index=2)

        assert chunk.document_id == doc_id
        assert chunk.section_title is None


class TestConversion:

    def test_page_row_to_model(self):
        page = _to_page(page_row())

        assert page.slug == "teething"
        assert page.view_count == 4
        assert page.metadata.query == "teething"
        assert page.metadata.sources_used == ["doc-a"]

    def test_stub_row_to_model(self):
        row = WikiStub(
            slug="night-weaning",
            title="Night weaning",
            mentioned_in=["teething", "colic"],
            mention_count=2,
            confidence="medium",
            category="technique",
            is_generated=False,
        )

        stub = _to_stub(row)

        assert stub.confidence == ConfidenceTier.MEDIUM
        assert stub.mentioned_in == ["teething", "colic"]

    def test_connection_strength_is_clamped(self):
        row = PageConnection(from_slug="a", to_slug="b", strength=1.4, link_text=None)

        edge = _to_connection(row)

        assert edge.strength == 1.0
        assert edge.link_text == ""


class TestSqlPageCacheLookup:

    async def test_found(self):
        cache = SqlPageCache(lambda: FakeSession(row=page_row()))
        result = await cache.get("teething")

        assert isinstance(result, Ok)
        assert result.value.title == "Teething"

    async def test_not_found(self):
        cache = SqlPageCache(lambda: FakeSession(row=None))
        assert await cache.get("teething") == NotFound("teething")

    async def test_database_error_is_err(self):
        error = OperationalError("SELECT 1", {}, Exception("connection reset"))
        cache = SqlPageCache(lambda: FakeSession(error=error))

        result = await cache.get("teething")

        assert isinstance(result, Err)
        assert isinstance(result.error, PersistenceError)

    async def test_malformed_row_is_err(self):
        cache = SqlPageCache(lambda: FakeSession(row=page_row(page_metadata={})))

        result = await cache.get("teething")

        assert isinstance(result, Err)
        assert "malformed" in str(result.error)


class TestSqlPageCacheInvalidateBySource:

    async def test_deletes_pages_listing_the_document(self):
        session = FakeSession(returned=["teething", "sleep-regression"])
        cache = SqlPageCache(lambda: session)

        slugs = await cache.invalidate_by_source("doc-a")

        assert slugs == ["teething", "sleep-regression"]
        sql = str(session.statements[0].compile(dialect=postgresql.dialect()))
        assert sql.startswith("DELETE FROM wiki_pages")
        assert "@>" in sql
        assert "RETURNING wiki_pages.slug" in sql

    async def test_no_matching_pages(self):
        cache = SqlPageCache(lambda: FakeSession(returned=[]))
        assert await cache.invalidate_by_source("doc-z") == []

    async def test_database_error_raises(self):
        error = OperationalError("DELETE", {}, Exception("connection reset"))
        cache = SqlPageCache(lambda: FakeSession(error=error))

        with pytest.raises(PersistenceError):
            await cache.invalidate_by_source("doc-a")
