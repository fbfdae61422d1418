"""
Embedding Client

Async client for an OpenAI-compatible ``/v1/embeddings`` endpoint. It is
responsible for:

- Batching text inputs
- Retrying rate-limited and transient failures with backoff
- Strict response validation

The class holds no per-request state and is safe to share across requests.
"""

from __future__ import annotations

from typing import List, Sequence, Optional
import logging
import httpx

from ..config import settings
from ..core.errors import RetrievalError
from ..core.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger("wiki.embedder")

_RETRYABLE_STATUS = {408, 409, 429, 500, 502, 503, 504}


class EmbeddingError(RetrievalError):
    """Raised when embedding generation fails."""

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class Embedder:
    """
    Asynchronous embedding generator for batches of text.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        dimensions: Optional[int] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Parameters
        ----------
        api_key : Optional[str]
            Defaults to ``settings.openai_api_key``.

        model : Optional[str]
            Defaults to ``settings.embedding_model``.

        base_url : Optional[str]
            Full URL of the embeddings endpoint.

        dimensions : Optional[int]
            Expected vector length. Responses of any other length are
            rejected.

        retry_policy : Optional[RetryPolicy]
            Backoff for 408/409/429/5xx responses and transport errors.

        transport : Optional[httpx.AsyncBaseTransport]
            Injected in tests (``httpx.MockTransport``).
        """
        if api_key is None and settings.openai_api_key is not None:
            api_key = settings.openai_api_key.get_secret_value()
        self.api_key = api_key or ""
        self.model = model or settings.embedding_model
        self.base_url = base_url or settings.embedding_url
        self.dimensions = dimensions or settings.embedding_dimensions
        self.timeout = timeout or settings.embedding_timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(
        self,
        texts: Sequence[str],
        batch_size: int = 20,
    ) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Returns
        -------
        List[List[float]]
            One vector per input, in input order.

        Raises
        ------
        EmbeddingError
            If any batch fails after retries or the response is malformed.
        """
        if not texts:
            return []

        all_embeddings: List[List[float]] = []

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            for start in range(0, len(texts), batch_size):
                batch = list(texts[start : start + batch_size])
                embeddings = await retry_with_backoff(
                    lambda: self._embed_batch(client, batch),
                    policy=self.retry_policy,
                )
                if len(embeddings) != len(batch):
                    raise EmbeddingError(
                        f"Expected {len(batch)} embeddings, got {len(embeddings)}"
                    )
                all_embeddings.extend(embeddings)

        return all_embeddings

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single query string."""
        vectors = await self.embed([text])
        return vectors[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _embed_batch(
        self,
        client: httpx.AsyncClient,
        batch: List[str],
    ) -> List[List[float]]:
        payload = {
            "model": self.model,
            "input": batch,
            "dimensions": self.dimensions,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            response = await client.post(
                self.base_url,
                json=payload,
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error(
                "Embedding request rejected: status=%d, batch size=%d",
                status,
                len(batch),
            )
            raise EmbeddingError(
                f"Embedding generation failed: HTTP {status}",
                retryable=status in _RETRYABLE_STATUS,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error(
                "Embedding request failed (%s): batch size=%d, error=%s",
                type(exc).__name__,
                len(batch),
                str(exc),
            )
            raise EmbeddingError(
                f"Embedding generation failed: {type(exc).__name__}",
                retryable=True,
            ) from exc

        return self._extract_embeddings(response.json(), self.dimensions)

    @staticmethod
    def _extract_embeddings(data: dict, dimensions: int) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"index": 0, "embedding": [...]}, ... ] }

        Records are re-ordered by ``index`` when present.

        Raises
        ------
        EmbeddingError
            If the API returns unexpected structure.
        """
        if not isinstance(data, dict) or "data" not in data:
            raise EmbeddingError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise EmbeddingError("'data' field must be a list.")

        if all(isinstance(r, dict) and isinstance(r.get("index"), int) for r in records):
            records = sorted(records, key=lambda r: r["index"])

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise EmbeddingError(
                    f"Malformed embedding record at index {index}: {record!r}"
                )

            emb = record["embedding"]
            if not isinstance(emb, list) or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise EmbeddingError(
                    f"Invalid embedding vector at index {index}: must be float list."
                )

            if len(emb) != dimensions:
                raise EmbeddingError(
                    f"Embedding at index {index} has {len(emb)} dimensions, "
                    f"expected {dimensions}."
                )

            embeddings.append([float(x) for x in emb])

        return embeddings
