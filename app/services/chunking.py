"""Text chunking for knowledge-base documents.

Documents are split on paragraph boundaries into chunks of roughly
``max_chunk_size`` characters. Each new chunk starts with a short overlap
taken from the tail of the previous one (whole trailing sentences when they
fit) so retrieval keeps some context across chunk borders.
"""

import math
import re
from dataclasses import dataclass

PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
SENTENCE_SPLIT = re.compile(r"[.!?]+")

DEFAULT_MAX_CHUNK_SIZE = 800
DEFAULT_OVERLAP_SIZE = 100

# Rough English average
CHARS_PER_TOKEN = 4
EMBEDDING_MAX_TOKENS = 8191


@dataclass(frozen=True)
class DocumentChunk:
    """A chunk of document text and its approximate position in the source."""

    text: str
    index: int
    start_char: int
    end_char: int


def create_semantic_chunks(
    text: str,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    overlap_size: int = DEFAULT_OVERLAP_SIZE,
    preserve_paragraphs: bool = True,
) -> list[DocumentChunk]:
    """Split text into paragraph-aligned chunks with overlap.

    Args:
        text: Full document text.
        max_chunk_size: Soft upper bound on chunk length in characters. A
            single paragraph longer than this becomes its own oversized chunk.
        overlap_size: Maximum length of text carried over from the previous chunk.
        preserve_paragraphs: Split on blank lines; otherwise treat the text as
            one paragraph.

    Returns:
        Chunks in document order with sequential indices.
    """
    if preserve_paragraphs:
        paragraphs = [p for p in PARAGRAPH_SPLIT.split(text) if p.strip()]
    else:
        paragraphs = [text]

    chunks: list[DocumentChunk] = []
    current = ""
    chunk_start = 0
    chunk_index = 0
    position = 0

    for paragraph in paragraphs:
        trimmed = paragraph.strip()

        if current and len(current) + len(trimmed) > max_chunk_size:
            chunks.append(DocumentChunk(
                text=current.strip(),
                index=chunk_index,
                start_char=chunk_start,
                end_char=chunk_start + len(current),
            ))
            chunk_index += 1

            overlap = get_overlap_text(current, overlap_size)
            current = overlap + ("\n\n" if overlap else "") + trimmed
            chunk_start = position - len(overlap)
        else:
            if current:
                current += "\n\n"
            else:
                chunk_start = position
            current += trimmed

        position += len(paragraph) + 2  # paragraph separator

    if current.strip():
        chunks.append(DocumentChunk(
            text=current.strip(),
            index=chunk_index,
            start_char=chunk_start,
            end_char=chunk_start + len(current),
        ))

    return chunks


def get_overlap_text(text: str, overlap_size: int) -> str:
    """Return the tail of ``text`` to repeat at the start of the next chunk.

    Prefers whole trailing sentences; falls back to the last ``overlap_size``
    characters when not even one sentence fits.
    """
    if len(text) <= overlap_size:
        return text

    overlap = ""
    for sentence in reversed(SENTENCE_SPLIT.split(text)):
        sentence = sentence.strip()
        if len(overlap) + len(sentence) <= overlap_size:
            overlap = sentence + (". " if overlap else "") + overlap
        else:
            break

    if not overlap:
        overlap = text[-overlap_size:]

    return overlap


def estimate_token_count(text: str) -> int:
    """Approximate token count at ~4 characters per token."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def split_long_text(text: str, max_tokens: int = EMBEDDING_MAX_TOKENS) -> list[str]:
    """Split text that would overflow the embedding model's input limit.

    Sentences are packed greedily into pieces of at most ``max_tokens * 4``
    characters; each piece ends with a period.
    """
    if estimate_token_count(text) <= max_tokens:
        return [text]

    max_chars = max_tokens * CHARS_PER_TOKEN
    sentences = [s for s in SENTENCE_SPLIT.split(text) if s.strip()]

    pieces: list[str] = []
    current = ""
    for sentence in sentences:
        sentence = sentence.strip()
        if len(current) + len(sentence) + 1 <= max_chars:
            current += (". " if current else "") + sentence
        else:
            if current:
                pieces.append(current + ".")
            current = sentence

    if current:
        pieces.append(current + ".")

    return pieces
