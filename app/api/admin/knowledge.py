"""Knowledge-base ingestion and embedding endpoints.

Used by the Sim editor to upload documents and by background jobs that
need raw embeddings.
"""

import logging
import uuid

import httpx
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from app.api.deps import AdminAuth, DbSession
from app.services.analytics import log_event
from app.services.batch_embedding import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    BatchEmbeddingService,
)
from app.services.documents import DocumentProcessingError, DocumentService
from app.services.embedding import MAX_BATCH_INPUTS, EmbeddingError, EmbeddingService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Knowledge"])


# =============================================================================
# Pydantic Models
# =============================================================================


class ProcessDocumentRequest(BaseModel):
    """Document upload from the Sim editor."""

    advisor_id: uuid.UUID = Field(alias="advisorId")
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    file_type: str | None = Field(None, alias="fileType")
    file_size: int | None = Field(None, alias="fileSize")

    model_config = {"populate_by_name": True}


class EmbeddingRequest(BaseModel):
    text: str = Field(min_length=1)


class EmbeddingBatchRequest(BaseModel):
    texts: list[str]


class BulkEmbeddingRequest(BaseModel):
    """Large embedding job split into throttled batches."""

    texts: list[str]
    batch_size: int = Field(DEFAULT_BATCH_SIZE, alias="batchSize", ge=1)
    max_retries: int = Field(DEFAULT_MAX_RETRIES, alias="maxRetries", ge=1, le=10)

    model_config = {"populate_by_name": True}


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/documents")
async def process_document(
    payload: ProcessDocumentRequest,
    db: DbSession,
    _auth: AdminAuth,
) -> dict:
    """Store a document, chunk it and embed every chunk."""
    service = DocumentService(db)
    try:
        result = await service.process_document(
            advisor_id=payload.advisor_id,
            title=payload.title,
            content=payload.content,
            file_type=payload.file_type,
            file_size=payload.file_size,
        )
    except DocumentProcessingError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        # OPENAI_API_KEY missing
        raise HTTPException(status_code=500, detail=str(e))

    await log_event(
        db,
        "document_processed",
        {
            "document_id": str(result.document_id),
            "chunks_processed": result.chunks_processed,
            "failed_chunks": result.failed_chunks,
        },
        advisor_id=payload.advisor_id,
    )

    return {
        "success": True,
        "documentId": str(result.document_id),
        "chunksProcessed": result.chunks_processed,
        "totalChunks": result.total_chunks,
        "failedChunks": result.failed_chunks,
    }


@router.post("/embeddings")
async def generate_embedding(payload: EmbeddingRequest, _auth: AdminAuth) -> dict:
    """Embed one text."""
    try:
        embedding = await EmbeddingService().generate_embedding(payload.text)
    except (httpx.HTTPError, EmbeddingError, ValueError) as e:
        logger.error(f"Embedding generation failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"embedding": embedding}


@router.post("/embeddings/batch")
async def generate_embedding_batch(payload: EmbeddingBatchRequest, _auth: AdminAuth) -> dict:
    """Embed up to 100 texts in one request."""
    if len(payload.texts) > MAX_BATCH_INPUTS:
        raise HTTPException(status_code=400, detail=f"Batch size cannot exceed {MAX_BATCH_INPUTS} texts")

    try:
        embeddings = await EmbeddingService().generate_embeddings(payload.texts)
    except (httpx.HTTPError, EmbeddingError, ValueError) as e:
        logger.error(f"Batch embedding failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"embeddings": embeddings, "count": len(embeddings)}


@router.post("/embeddings/bulk")
async def generate_embeddings_bulk(payload: BulkEmbeddingRequest, _auth: AdminAuth) -> dict:
    """Embed any number of texts; failures are reported per index."""
    result = await BatchEmbeddingService().generate_embeddings_batch(
        payload.texts,
        batch_size=payload.batch_size,
        max_retries=payload.max_retries,
    )
    return {
        "embeddings": result.embeddings,
        "successful": result.successful,
        "failed": result.failed,
        "errors": result.errors,
    }
