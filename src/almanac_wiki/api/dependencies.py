import logging
from functools import lru_cache
from typing import Optional

from ..config import settings
from ..db import AsyncSessionLocal, PgVectorStore, SqlGraphStore, SqlPageCache
from ..embeddings.embedder import Embedder
from ..embeddings.index import FaissChunkIndex
from ..llm.client import AnthropicStreamingClient
from ..rag.confidence import ConfidenceScorer
from ..rag.search import SimilarityBackend, VectorSearchClient
from ..wiki.entities import PatternEntityExtractor
from ..wiki.graph import LinkGraphUpdater
from ..wiki.orchestrator import GenerationOptions, GenerationOrchestrator

logger = logging.getLogger("wiki.app")


@lru_cache
def get_llm_client() -> AnthropicStreamingClient:
    return AnthropicStreamingClient()


@lru_cache
def get_embedder() -> Embedder:
    return Embedder()


# Not cached until a non-empty index has been loaded, so a missing file is
# retried on the next request.
_global_index: Optional[FaissChunkIndex] = None


def get_faiss_index() -> FaissChunkIndex:
    global _global_index
    if _global_index is not None and len(_global_index) > 0:
        return _global_index

    index = FaissChunkIndex()
    try:
        if index.load() and len(index) > 0:
            _global_index = index
    except Exception as exc:
        logger.warning(f"Could not load FAISS index: {exc}")

    return index


def get_search_backend() -> SimilarityBackend:
    if settings.search_backend == "faiss":
        return get_faiss_index()
    return PgVectorStore(AsyncSessionLocal)


def get_search_client() -> VectorSearchClient:
    return VectorSearchClient(
        embedder=get_embedder(),
        backend=get_search_backend(),
        default_threshold=settings.search_thresholds[0],
        default_limit=settings.search_limit,
    )


@lru_cache
def get_page_cache() -> SqlPageCache:
    return SqlPageCache(AsyncSessionLocal)


@lru_cache
def get_graph_store() -> SqlGraphStore:
    return SqlGraphStore(AsyncSessionLocal)


def get_graph_updater() -> LinkGraphUpdater:
    return LinkGraphUpdater(get_graph_store())


def get_extractor() -> PatternEntityExtractor:
    return PatternEntityExtractor(stats=get_graph_store())


def get_orchestrator() -> GenerationOrchestrator:
    return GenerationOrchestrator(
        search_client=get_search_client(),
        llm=get_llm_client(),
        pages=get_page_cache(),
        extractor=get_extractor(),
        graph=get_graph_updater(),
        scorer=ConfidenceScorer(fallback_confidence=settings.fallback_confidence),
        options=GenerationOptions.from_settings(),
    )
