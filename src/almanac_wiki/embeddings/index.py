"""
FAISS Chunk Index

In-process similarity backend over document chunks. Implements the same
``similarity_search(embedding_literal, threshold, limit)`` contract as the
pgvector store so it can stand in for the database locally and in tests.

Key Properties
--------------
- Cosine similarity via inner product on L2-normalised vectors
- Explicit ID management via IndexIDMap2
- Accepts query vectors in the pgvector literal format
- Persistence of index + chunk metadata
- Thread-safe via an internal lock
"""

from __future__ import annotations

import json
from pathlib import Path
from threading import RLock
from typing import List, Tuple, Dict, Optional

import faiss
import numpy as np

from .models import StoredChunk
from ..config import settings
from ..rag.models import SearchResult
from ..rag.search import parse_vector_literal


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class FaissIndexError(RuntimeError):
    """Base error for FAISS index failures."""


class FaissPersistenceError(FaissIndexError):
    """Raised when index persistence fails."""


# ---------------------------------------------------------------------
# FAISS Index Wrapper
# ---------------------------------------------------------------------

class FaissChunkIndex:
    """
    Persistent FAISS index of ``StoredChunk`` records.
    """

    def __init__(
        self,
        index_path: Optional[str] = None,
        meta_path: Optional[str] = None,
    ) -> None:
        """
        Parameters
        ----------
        index_path : Optional[str]
            Defaults to settings.vector_index_path.

        meta_path : Optional[str]
            Defaults to settings.vector_meta_path.
        """
        self._index_path = index_path or settings.vector_index_path
        self._meta_path = meta_path or settings.vector_meta_path

        self._index: Optional[faiss.IndexIDMap2] = None
        self._chunks: Dict[int, StoredChunk] = {}
        self._next_id: int = 0

        self._lock = RLock()

    @property
    def dimension(self) -> Optional[int]:
        return self._index.d if self._index is not None else None

    def __len__(self) -> int:
        return len(self._chunks)

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _init_index(self, dim: int) -> None:
        self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(dim))

    def _validate(
        self,
        chunks: List[StoredChunk],
        embeddings: List[List[float]],
    ) -> None:
        if len(embeddings) != len(chunks):
            raise FaissIndexError("Embedding count does not match chunk count.")

        dim = self.dimension or len(embeddings[0])
        if dim == 0:
            raise FaissIndexError("Embedding vectors must be non-empty.")

        for i, emb in enumerate(embeddings):
            if len(emb) != dim:
                raise FaissIndexError(
                    f"Inconsistent embedding dimensionality at index {i}."
                )

    def _query_matrix(self, query_emb: List[float]) -> np.ndarray:
        if len(query_emb) != self.dimension:
            raise FaissIndexError(
                f"Query has {len(query_emb)} dimensions, index has {self.dimension}."
            )
        q = np.asarray([query_emb], dtype="float32")
        faiss.normalize_L2(q)
        return q

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_chunks(
        self,
        chunks: List[StoredChunk],
        embeddings: List[List[float]],
    ) -> int:
        """
        Add chunks and their embeddings. Atomic with respect to the
        in-memory index and metadata map.

        Returns
        -------
        int
            Number of chunks added.
        """
        if not chunks:
            return 0

        self._validate(chunks, embeddings)

        with self._lock:
            if self._index is None:
                self._init_index(len(embeddings[0]))

            ids = np.arange(
                self._next_id,
                self._next_id + len(chunks),
                dtype="int64",
            )

            vectors = np.asarray(embeddings, dtype="float32")
            faiss.normalize_L2(vectors)

            try:
                self._index.add_with_ids(vectors, ids)
            except Exception as exc:
                raise FaissIndexError(
                    f"Failed to add vectors to FAISS: {type(exc).__name__}"
                ) from exc

            self._next_id += len(chunks)
            for i, chunk in zip(ids, chunks):
                self._chunks[int(i)] = chunk

            return len(chunks)

    def delete_document(self, document_id: str) -> int:
        """
        Remove every chunk of a document.

        Returns
        -------
        int
            Number of removed chunks.
        """
        with self._lock:
            if self._index is None:
                return 0

            ids_to_remove = [
                idx
                for idx, chunk in self._chunks.items()
                if chunk.document_id == document_id
            ]
            if not ids_to_remove:
                return 0

            try:
                self._index.remove_ids(np.asarray(ids_to_remove, dtype="int64"))
            except Exception as exc:
                raise FaissIndexError(
                    f"Failed to remove IDs from FAISS: {type(exc).__name__}"
                ) from exc

            for idx in ids_to_remove:
                self._chunks.pop(idx, None)

            return len(ids_to_remove)

    def search(
        self,
        query_emb: List[float],
        k: int = 5,
    ) -> List[Tuple[StoredChunk, float]]:
        """
        Direct query with a raw float vector.

        Returns
        -------
        List[Tuple[StoredChunk, float]]
            (chunk, cosine similarity) pairs, best first.
        """
        with self._lock:
            if self._index is None or not self._chunks or k <= 0:
                return []

            q = self._query_matrix(query_emb)
            scores, idxs = self._index.search(q, min(k, len(self._chunks)))

            results: List[Tuple[StoredChunk, float]] = []
            for score, idx in zip(scores[0], idxs[0]):
                idx = int(idx)
                if idx == -1:
                    continue
                chunk = self._chunks.get(idx)
                if chunk is None:
                    continue
                results.append((chunk, float(score)))

            return results

    async def similarity_search(
        self,
        embedding_literal: str,
        threshold: float,
        limit: int,
    ) -> SearchResult:
        """
        Backend contract used by ``VectorSearchClient``.

        Parameters
        ----------
        embedding_literal : str
            Query vector as ``"[x1,x2,...]"``.

        threshold : float
            Minimum similarity, inclusive.

        limit : int
            Maximum number of chunks.
        """
        query_emb = parse_vector_literal(embedding_literal)

        return [
            chunk.with_similarity(min(max(score, 0.0), 1.0))
            for chunk, score in self.search(query_emb, k=limit)
            if score >= threshold
        ]

    def get_stats(self) -> dict:
        with self._lock:
            documents = {c.document_id for c in self._chunks.values()}
            return {
                "total_vectors": self._index.ntotal if self._index else 0,
                "total_documents": len(documents),
                "dimension": self.dimension,
            }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """
        Persist both FAISS index and chunk metadata to disk.
        """
        with self._lock:
            if self._index is None:
                return

            index_path = Path(self._index_path)
            meta_path = Path(self._meta_path)
            index_path.parent.mkdir(parents=True, exist_ok=True)
            meta_path.parent.mkdir(parents=True, exist_ok=True)

            try:
                faiss.write_index(self._index, str(index_path))
            except Exception as exc:
                raise FaissPersistenceError(
                    f"Failed to write FAISS index: {type(exc).__name__}"
                ) from exc

            meta = {
                "next_id": self._next_id,
                "chunks": {
                    str(k): v.model_dump()
                    for k, v in self._chunks.items()
                },
            }

            try:
                with meta_path.open("w", encoding="utf-8") as f:
                    json.dump(meta, f)
            except OSError as exc:
                raise FaissPersistenceError(
                    f"Failed to write FAISS metadata: {type(exc).__name__}"
                ) from exc

    def load(self) -> bool:
        """
        Load index and metadata from disk if present.

        Returns
        -------
        bool
            True when an index was loaded.
        """
        with self._lock:
            index_path = Path(self._index_path)
            meta_path = Path(self._meta_path)

            if not index_path.exists() or not meta_path.exists():
                return False

            try:
                index = faiss.read_index(str(index_path))
                with meta_path.open("r", encoding="utf-8") as f:
                    meta = json.load(f)
            except Exception as exc:
                raise FaissPersistenceError(
                    f"Failed to read FAISS index: {type(exc).__name__}"
                ) from exc

            self._index = index
            self._next_id = int(meta.get("next_id", 0))
            self._chunks = {
                int(k): StoredChunk.model_validate(v)
                for k, v in meta.get("chunks", {}).items()
            }
            return True
