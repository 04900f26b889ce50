"""Knowledge-base document ingestion.

Stores an uploaded document, splits it into overlapping chunks, embeds each
chunk and saves the vectors for retrieval during chat.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from app.models.knowledge import AdvisorDocument, AdvisorEmbedding
from app.services.chunking import create_semantic_chunks
from app.services.embedding import EmbeddingService

logger = logging.getLogger(__name__)

CHUNK_SIZE = 800
CHUNK_OVERLAP = 100
EMBEDDING_ATTEMPTS = 3
SAVE_BATCH_SIZE = 50


class DocumentProcessingError(Exception):
    """Raised when a document yields no usable embeddings."""
    pass


@dataclass
class ProcessDocumentResult:
    """Summary returned to the uploader."""

    document_id: uuid.UUID
    chunks_processed: int
    total_chunks: int
    failed_chunks: int


class DocumentService:
    """Ingest documents into a Sim's knowledge base."""

    def __init__(
        self,
        db: AsyncSession,
        embedding_service: EmbeddingService | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._db = db
        self._embeddings = embedding_service or EmbeddingService(db)
        self._sleep = sleep

    async def process_document(
        self,
        advisor_id: uuid.UUID,
        title: str,
        content: str,
        file_type: str | None = None,
        file_size: int | None = None,
    ) -> ProcessDocumentResult:
        """Store, chunk and embed a document.

        Chunks whose embedding fails after retries are skipped. A failed save
        batch is logged and skipped; the rest are kept.

        Raises:
            DocumentProcessingError: If no chunk could be embedded
        """
        logger.info(f"Processing document '{title}' for advisor {advisor_id} ({len(content)} chars)")

        document = AdvisorDocument(
            advisor_id=advisor_id,
            title=title,
            content=content,
            file_type=file_type or "text",
            file_size=file_size or len(content),
        )
        self._db.add(document)
        await self._db.flush()

        chunks = create_semantic_chunks(content, max_chunk_size=CHUNK_SIZE, overlap_size=CHUNK_OVERLAP)
        logger.info(f"Created {len(chunks)} semantic chunks")

        rows: list[AdvisorEmbedding] = []
        failed = 0
        for position, chunk in enumerate(chunks, start=1):
            logger.debug(f"Embedding chunk {position}/{len(chunks)} ({len(chunk.text)} chars)")
            try:
                vector = await self._embed_with_retry(chunk.text)
            except Exception as e:
                logger.error(f"Failed to generate embedding for chunk {chunk.index}: {e}")
                failed += 1
                continue

            rows.append(AdvisorEmbedding(
                document_id=document.id,
                advisor_id=advisor_id,
                chunk_text=chunk.text,
                chunk_index=chunk.index,
                start_char=chunk.start_char,
                end_char=chunk.end_char,
                embedding=vector,
            ))

        logger.info(f"Embedded {len(rows)} chunks, {failed} failed")

        if not rows:
            raise DocumentProcessingError("Failed to generate any embeddings for the document")

        saved = 0
        for start in range(0, len(rows), SAVE_BATCH_SIZE):
            batch = rows[start:start + SAVE_BATCH_SIZE]
            try:
                async with self._db.begin_nested():
                    self._db.add_all(batch)
            except SQLAlchemyError as e:
                logger.error(f"Error saving embeddings {start}-{start + len(batch)}: {e}")
                continue
            saved += len(batch)

        document.processed_at = datetime.now(timezone.utc)
        document.file_size = len(content)
        await self._db.flush()

        logger.info(f"Processed document {document.id}: {saved}/{len(rows)} embeddings saved")

        return ProcessDocumentResult(
            document_id=document.id,
            chunks_processed=saved,
            total_chunks=len(chunks),
            failed_chunks=failed,
        )

    async def _embed_with_retry(self, text: str) -> list[float]:
        # Waits 2s then 4s between attempts
        retrying = AsyncRetrying(
            stop=stop_after_attempt(EMBEDDING_ATTEMPTS),
            wait=wait_exponential(multiplier=2),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                vectors = await self._embeddings.embed_batch([text])
                return vectors[0]
        raise RuntimeError("Failed to generate embedding after retries")
