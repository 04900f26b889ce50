"""Throttled batch embedding.

Large text lists are embedded in fixed-size batches. Each batch gets a
bounded number of attempts with exponential backoff, batches are spaced by
a short pause to stay under the provider's rate limit, and a failed batch
only fails its own entries.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from app.services.embedding import MAX_BATCH_INPUTS, EmbeddingService

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_MAX_RETRIES = 3
RETRY_BASE_DELAY_SECONDS = 1.0
INTER_BATCH_DELAY_SECONDS = 0.2

EmbedBatchFn = Callable[[list[str]], Awaitable[list[list[float] | None]]]
SleepFn = Callable[[float], Awaitable[Any]]


@dataclass
class BatchEmbeddingResult:
    """Outcome of a batch run.

    ``embeddings`` is aligned with the input: ``embeddings[i]`` is the vector
    for ``texts[i]`` or ``None`` when that entry failed.
    """

    embeddings: list[list[float] | None]
    successful: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


class BatchEmbeddingService:
    """Embed many texts with per-batch retry and inter-batch throttling."""

    def __init__(
        self,
        embed_batch: EmbedBatchFn | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the batch service.

        Args:
            embed_batch: Coroutine embedding one batch; defaults to a single
                un-retried OpenAI request.
            sleep: Awaitable sleep, replaceable in tests.
        """
        self._embed_batch = embed_batch or EmbeddingService().embed_batch
        self._sleep = sleep

    async def generate_embeddings_batch(
        self,
        texts: list[str],
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> BatchEmbeddingResult:
        """Embed ``texts`` in batches.

        Args:
            texts: Texts to embed
            batch_size: Texts per request, capped at 100
            max_retries: Attempts per batch before it is marked failed

        Returns:
            BatchEmbeddingResult with index-aligned vectors and per-index errors
        """
        batch_size = max(1, min(batch_size or DEFAULT_BATCH_SIZE, MAX_BATCH_INPUTS))
        max_retries = max(1, max_retries or DEFAULT_MAX_RETRIES)

        result = BatchEmbeddingResult(embeddings=[None] * len(texts))
        total_batches = (len(texts) + batch_size - 1) // batch_size

        for start in range(0, len(texts), batch_size):
            batch = texts[start:start + batch_size]
            batch_number = start // batch_size + 1
            logger.info(f"Processing embedding batch {batch_number}/{total_batches}")

            try:
                vectors = await self._embed_with_retry(batch, max_retries)
            except Exception as e:
                logger.error(f"Batch {batch_number} failed completely: {e}")
                for offset in range(len(batch)):
                    result.errors.append({"index": start + offset, "error": str(e) or type(e).__name__})
                    result.failed += 1
            else:
                for offset in range(len(batch)):
                    vector = vectors[offset] if offset < len(vectors) else None
                    if vector:
                        result.embeddings[start + offset] = vector
                        result.successful += 1
                    else:
                        result.errors.append({
                            "index": start + offset,
                            "error": "Failed to generate embedding",
                        })
                        result.failed += 1

            if start + batch_size < len(texts):
                await self._sleep(INTER_BATCH_DELAY_SECONDS)

        return result

    async def _embed_with_retry(
        self,
        batch: list[str],
        max_retries: int,
    ) -> list[list[float] | None]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=RETRY_BASE_DELAY_SECONDS),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                n = attempt.retry_state.attempt_number
                if n > 1:
                    logger.warning(f"Retrying embedding batch, attempt {n}/{max_retries}")
                vectors = await self._embed_batch(batch)
                if vectors is None:
                    raise ValueError("No embeddings returned")
                return vectors
        raise RuntimeError("All retry attempts failed")

    async def generate_single_embedding(self, text: str) -> list[float] | None:
        """Embed one text, returning None instead of raising."""
        try:
            vectors = await self._embed_batch([text])
            return vectors[0] if vectors else None
        except Exception as e:
            logger.error(f"Single embedding generation failed: {e}")
            return None
