"""Tests for document chunking."""

from app.services.chunking import (
    create_semantic_chunks,
    estimate_token_count,
    get_overlap_text,
    split_long_text,
)


def _paragraph(n: int) -> str:
    return " ".join(f"Paragraph {n} sentence {i} talks about pricing." for i in range(4))


class TestCreateSemanticChunks:
    """Tests for paragraph-aligned chunking."""

    def test_short_text_is_one_chunk(self):
        chunks = create_semantic_chunks("  Hello world.  ")

        assert len(chunks) == 1
        assert chunks[0].text == "Hello world."
        assert chunks[0].index == 0
        assert chunks[0].start_char == 0

    def test_empty_text_has_no_chunks(self):
        assert create_semantic_chunks("") == []
        assert create_semantic_chunks("\n\n   \n\n") == []

    def test_chunks_respect_size_bound(self):
        text = "\n\n".join(_paragraph(n) for n in range(30))
        chunks = create_semantic_chunks(text, max_chunk_size=800, overlap_size=100)

        assert len(chunks) > 1
        for chunk in chunks:
            assert len(chunk.text) <= 800 + 100 + 2

    def test_indices_are_sequential(self):
        text = "\n\n".join(_paragraph(n) for n in range(30))
        chunks = create_semantic_chunks(text, max_chunk_size=500, overlap_size=80)

        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_next_chunk_starts_with_overlap(self):
        text = "\n\n".join(_paragraph(n) for n in range(10))
        chunks = create_semantic_chunks(text, max_chunk_size=400, overlap_size=100)

        overlap = get_overlap_text(chunks[0].text, 100)
        assert overlap
        assert chunks[1].text.startswith(overlap)

    def test_oversized_paragraph_is_kept_whole(self):
        paragraph = "word " * 400
        chunks = create_semantic_chunks(paragraph.strip(), max_chunk_size=800)

        assert len(chunks) == 1
        assert chunks[0].text == paragraph.strip()

    def test_without_paragraph_splitting(self):
        text = "First part.\n\nSecond part."
        chunks = create_semantic_chunks(text, preserve_paragraphs=False)

        assert len(chunks) == 1
        assert chunks[0].text == text


class TestOverlapText:
    """Tests for the overlap carried between chunks."""

    def test_short_text_is_returned_whole(self):
        assert get_overlap_text("Tiny.", 100) == "Tiny."

    def test_prefers_trailing_sentences(self):
        text = "A long opening sentence that will not fit in the overlap window. Short one. Last one."
        overlap = get_overlap_text(text, 30)

        assert "Last one" in overlap
        assert "opening" not in overlap

    def test_falls_back_to_last_characters(self):
        text = "a" * 300
        assert get_overlap_text(text, 100) == "a" * 100


class TestTokenHelpers:
    """Tests for token estimation and long-text splitting."""

    def test_estimate_token_count_rounds_up(self):
        assert estimate_token_count("") == 0
        assert estimate_token_count("abcd") == 1
        assert estimate_token_count("abcde") == 2

    def test_split_long_text_leaves_short_text_alone(self):
        assert split_long_text("Short text.", max_tokens=100) == ["Short text."]

    def test_split_long_text_packs_sentences(self):
        text = " ".join(f"Sentence number {i} is here." for i in range(20))
        pieces = split_long_text(text, max_tokens=20)

        assert len(pieces) > 1
        for piece in pieces:
            assert piece.endswith(".")
            assert len(piece) <= 20 * 4 + 2
