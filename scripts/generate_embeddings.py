#!/usr/bin/env python3
"""Generate knowledge-base embeddings for stored documents.

This script:
1. Finds documents that were never embedded (or all of them with --force)
2. Re-chunks each document the same way uploads are chunked
3. Embeds the chunks in throttled batches and replaces the stored vectors

Usage:
    python scripts/generate_embeddings.py
    python scripts/generate_embeddings.py --force            # Re-embed everything
    python scripts/generate_embeddings.py --advisor <uuid>   # One Sim only

Environment variables required:
    - DATABASE_URL: PostgreSQL connection string
    - OPENAI_API_KEY: OpenAI API key for embeddings
"""

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import async_session_maker
from app.models.knowledge import AdvisorDocument, AdvisorEmbedding
from app.services.batch_embedding import BatchEmbeddingService
from app.services.chunking import create_semantic_chunks
from app.services.documents import CHUNK_OVERLAP, CHUNK_SIZE

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def embed_document(
    db: AsyncSession,
    document: AdvisorDocument,
    batch_service: BatchEmbeddingService,
) -> int:
    """Replace a document's chunk embeddings.

    Returns:
        Number of chunks embedded
    """
    chunks = create_semantic_chunks(
        document.content, max_chunk_size=CHUNK_SIZE, overlap_size=CHUNK_OVERLAP
    )
    result = await batch_service.generate_embeddings_batch([c.text for c in chunks])

    await db.execute(delete(AdvisorEmbedding).where(AdvisorEmbedding.document_id == document.id))
    for chunk, vector in zip(chunks, result.embeddings):
        if vector is None:
            continue
        db.add(AdvisorEmbedding(
            document_id=document.id,
            advisor_id=document.advisor_id,
            chunk_text=chunk.text,
            chunk_index=chunk.index,
            start_char=chunk.start_char,
            end_char=chunk.end_char,
            embedding=vector,
        ))

    if result.successful:
        document.processed_at = datetime.now(timezone.utc)
    for error in result.errors:
        logger.warning(f"Document {document.id} chunk {error['index']}: {error['error']}")

    return result.successful


async def generate_document_embeddings(
    db: AsyncSession,
    force: bool = False,
    advisor_id: uuid.UUID | None = None,
) -> int:
    """Embed every document that needs it.

    Args:
        db: Database session
        force: Re-embed documents that already have embeddings
        advisor_id: Restrict to one Sim

    Returns:
        Number of chunk embeddings generated
    """
    query = select(AdvisorDocument)
    if not force:
        query = query.where(AdvisorDocument.processed_at.is_(None))
    if advisor_id:
        query = query.where(AdvisorDocument.advisor_id == advisor_id)

    documents = (await db.execute(query)).scalars().all()
    if not documents:
        logger.info("No documents need embeddings")
        return 0

    logger.info(f"Found {len(documents)} documents to embed")

    batch_service = BatchEmbeddingService()
    total = 0
    for document in documents:
        try:
            count = await embed_document(db, document, batch_service)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error(f"Error embedding document {document.id}: {e}")
            continue

        total += count
        logger.info(f"Embedded {count} chunks for document: {document.title[:50]}")

    return total


async def main(force: bool, advisor_id: uuid.UUID | None) -> None:
    """Main entry point for embedding generation."""
    logger.info("Starting knowledge-base embedding generation...")

    async with async_session_maker() as db:
        total = await generate_document_embeddings(db, force, advisor_id)
        logger.info(f"Total chunk embeddings generated: {total}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Generate embeddings for knowledge-base documents"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-embed all documents (replaces existing embeddings)"
    )
    parser.add_argument(
        "--advisor",
        type=uuid.UUID,
        default=None,
        help="Only embed documents of this Sim"
    )

    args = parser.parse_args()

    asyncio.run(main(args.force, args.advisor))
