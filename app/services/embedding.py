"""Embedding service for pgvector semantic search.

This module provides:
- Embedding generation using the OpenAI embeddings API (single and batched)
- Similarity search over a Sim's knowledge-base chunks
"""

import logging
import uuid
from typing import Any

import httpx
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.config import get_settings

logger = logging.getLogger(__name__)

# OpenAI accepts at most this many inputs per embeddings request
MAX_BATCH_INPUTS = 100

DEFAULT_SIMILARITY_THRESHOLD = 0.7
DEFAULT_MATCH_COUNT = 5

# Module-level HTTP client for connection reuse
_http_client: httpx.AsyncClient | None = None


def _get_http_client() -> httpx.AsyncClient:
    """Get or create the module-level HTTP client for connection reuse."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=30.0)
    return _http_client


async def shutdown_embedding_client() -> None:
    """Shutdown the HTTP client. Call during app shutdown."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


class EmbeddingError(Exception):
    """Raised when the embeddings API returns an unusable response."""
    pass


def _vector_literal(vector: list[float]) -> str:
    return f"[{','.join(str(x) for x in vector)}]"


class EmbeddingService:
    """Service for generating and searching vector embeddings.

    The database session is optional so the generator can be used without
    touching the database (batch endpoint, background scripts).
    """

    def __init__(self, db: AsyncSession | None = None) -> None:
        """Initialize the embedding service.

        Args:
            db: Async database session, required only for search
        """
        self._db = db
        self._settings = get_settings()

    async def _request_embeddings(self, inputs: str | list[str]) -> dict[str, Any]:
        api_key = self._settings.openai_api_key
        if not api_key:
            raise ValueError("OPENAI_API_KEY not configured for embeddings")

        client = _get_http_client()
        try:
            response = await client.post(
                f"{self._settings.openai_base_url.rstrip('/')}/embeddings",
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                json={"model": self._settings.embedding_model, "input": inputs},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Embedding API error {e.response.status_code}: {e.response.text}")
            raise

        data = response.json()
        if not isinstance(data.get("data"), list):
            raise EmbeddingError("Invalid response format from OpenAI")
        return data

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException, httpx.HTTPStatusError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def generate_embedding(self, text_content: str) -> list[float]:
        """Generate one embedding vector.

        Args:
            text_content: Text to embed

        Returns:
            Embedding vector as list of floats (1536 dimensions)
        """
        data = await self._request_embeddings(text_content)
        if not data["data"]:
            raise EmbeddingError("No embedding returned")
        return data["data"][0]["embedding"]

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException, httpx.HTTPStatusError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for up to 100 texts, retrying transient failures."""
        return await self.embed_batch(texts)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for up to 100 texts in a single request.

        No retries here; callers that manage their own retry policy
        (``BatchEmbeddingService``) use this directly.

        Args:
            texts: Texts to embed

        Returns:
            Vectors in the same order as ``texts``

        Raises:
            ValueError: If more than 100 texts are given
        """
        if not texts:
            return []
        if len(texts) > MAX_BATCH_INPUTS:
            raise ValueError(f"Batch size cannot exceed {MAX_BATCH_INPUTS} texts")

        logger.info(f"Processing batch of {len(texts)} texts for embeddings")
        data = await self._request_embeddings(texts)

        # The API may return items out of order; index maps back to the input
        items = sorted(data["data"], key=lambda item: item["index"])
        embeddings = [item["embedding"] for item in items]

        logger.info(f"Successfully generated {len(embeddings)} embeddings")
        return embeddings

    async def search_advisor_embeddings(
        self,
        advisor_id: uuid.UUID,
        query_embedding: list[float],
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        match_count: int = DEFAULT_MATCH_COUNT,
    ) -> list[dict[str, Any]]:
        """Find the knowledge-base chunks of one Sim closest to a query vector.

        Args:
            advisor_id: Sim whose knowledge base is searched
            query_embedding: Query vector
            similarity_threshold: Minimum cosine similarity to keep
            match_count: Maximum number of chunks

        Returns:
            Chunks ordered by similarity, best first
        """
        if self._db is None:
            raise RuntimeError("search_advisor_embeddings requires a database session")

        sql = text("""
            SELECT
                e.id,
                e.document_id,
                e.chunk_text,
                e.chunk_index,
                1 - (e.embedding <=> cast(:embedding as vector)) as similarity
            FROM advisor_embeddings e
            WHERE e.advisor_id = :advisor_id
                AND 1 - (e.embedding <=> cast(:embedding as vector)) > :threshold
            ORDER BY e.embedding <=> cast(:embedding as vector)
            LIMIT :limit
        """)
        result = await self._db.execute(
            sql,
            {
                "embedding": _vector_literal(query_embedding),
                "advisor_id": advisor_id,
                "threshold": similarity_threshold,
                "limit": match_count,
            },
        )
        rows = result.fetchall()

        return [
            {
                "id": str(row.id),
                "document_id": str(row.document_id),
                "chunk_text": row.chunk_text,
                "chunk_index": row.chunk_index,
                "similarity": round(float(row.similarity), 3),
            }
            for row in rows
        ]
