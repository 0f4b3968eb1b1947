"""Tests for the heading-aware chunker."""

from vault_inspector.indexer.chunker import (
    Heading,
    build_heading_path,
    chunk_document,
    estimate_tokens,
    get_overlap_text,
    parse_heading,
    split_by_headings,
    split_into_paragraphs,
    update_heading_stack,
)


def _paragraph(i: int, words: int = 50) -> str:
    return " ".join(f"word{i}x{j}" for j in range(words))


class TestParseHeading:
    def test_levels(self):
        assert parse_heading("# Title") == Heading(1, "Title")
        assert parse_heading("###### Six") == Heading(6, "Six")

    def test_leading_whitespace(self):
        assert parse_heading("   ## Indented  ") == Heading(2, "Indented")

    def test_not_headings(self):
        assert parse_heading("####### Seven") is None
        assert parse_heading("#NoSpace") is None
        assert parse_heading("#") is None
        assert parse_heading("Plain text") is None


class TestHeadingStack:
    def test_pops_same_and_deeper_levels(self):
        stack: list[Heading] = []
        update_heading_stack(stack, Heading(1, "A"))
        update_heading_stack(stack, Heading(2, "B"))
        update_heading_stack(stack, Heading(3, "C"))
        update_heading_stack(stack, Heading(2, "D"))

        assert [h.text for h in stack] == ["A", "D"]

        update_heading_stack(stack, Heading(1, "E"))
        assert [h.text for h in stack] == ["E"]

    def test_build_heading_path(self):
        assert build_heading_path([]) is None
        assert build_heading_path([Heading(1, "Main"), Heading(3, "Deep")]) == "# Main > ### Deep"


class TestSplitByHeadings:
    def test_no_headings(self):
        assert split_by_headings("Just text\n\nMore text\n") == []

    def test_sections_and_offsets(self):
        content = "Intro\n# A\ntext\n## B\nmore\n"
        sections = split_by_headings(content)

        assert [(s.heading_path, s.text, s.byte_offset) for s in sections] == [
            (None, "Intro\n", 0),
            ("# A", "# A\ntext\n", 6),
            ("# A > ## B", "## B\nmore\n", 15),
        ]

    def test_offsets_are_bytes(self):
        content = "# Café\nnaïve\n# Next\nx\n"
        sections = split_by_headings(content)
        raw = content.encode("utf-8")

        for section in sections:
            encoded = section.text.encode("utf-8")
            assert raw[section.byte_offset : section.byte_offset + len(encoded)] == encoded


class TestParagraphs:
    def test_split_into_paragraphs(self):
        content = "a\nb\n\n\nc\n"
        assert split_into_paragraphs(content) == [("a\nb", 0), ("c", 6)]

    def test_overlap_short_text(self):
        assert get_overlap_text("short", 100) == "short"

    def test_overlap_starts_after_sentence(self):
        text = "a" * 50 + ". " + "b" * 20
        assert get_overlap_text(text, 30) == "b" * 20

    def test_overlap_without_sentence(self):
        assert get_overlap_text("x" * 200, 10) == "x" * 10

    def test_overlap_multibyte(self):
        assert get_overlap_text("é" * 200, 10) == "é" * 10


class TestEstimateTokens:
    def test_empty(self):
        assert estimate_tokens("") == 0

    def test_formula(self):
        # 11 bytes // 4 = 2, 2 words
        assert estimate_tokens("hello world") == 2


class TestChunkDocument:
    def test_small_sections_one_chunk_each(self):
        content = "# Title\n\nIntro.\n\n## Part\n\nDetails.\n"
        chunks = chunk_document(content)

        assert [c.heading_path for c in chunks] == ["# Title", "# Title > ## Part"]
        assert chunks[0].text == "# Title\n\nIntro.\n\n"
        assert chunks[0].byte_offset == 0
        assert chunks[1].byte_offset == len("# Title\n\nIntro.\n\n")
        assert all(c.byte_length == len(c.text.encode("utf-8")) for c in chunks)

    def test_no_headings_paragraph_chunking(self):
        chunks = chunk_document("Para one.\n\nPara two.\n")

        assert len(chunks) == 1
        assert chunks[0].heading_path is None
        assert chunks[0].text == "Para one.\n\nPara two.\n\n"
        assert chunks[0].byte_offset == 0

    def test_seven_hashes_is_not_a_heading(self):
        chunks = chunk_document("####### not a heading\n\ntext\n")
        assert len(chunks) == 1
        assert chunks[0].heading_path is None

    def test_empty_document(self):
        assert chunk_document("") == []
        assert chunk_document("\n\n   \n") == []

    def test_large_section_split_by_paragraphs(self):
        paragraphs = [_paragraph(i) for i in range(8)]
        content = "# Big\n\n" + "\n\n".join(paragraphs) + "\n"

        chunks = chunk_document(content, max_chunk_size=1000, overlap=100)

        assert len(chunks) > 1
        assert all(c.heading_path == "# Big" for c in chunks)
        # Every paragraph ends up in some chunk
        for para in paragraphs:
            assert any(para in c.text for c in chunks)
        # Paragraph flush keeps the buffer near the limit
        assert all(c.byte_length <= 1000 + 100 + 2 for c in chunks)

    def test_overlap_carried_to_next_chunk(self):
        paragraphs = [_paragraph(i) for i in range(6)]
        content = "\n\n".join(paragraphs) + "\n"

        chunks = chunk_document(content, max_chunk_size=1000, overlap=100)

        assert len(chunks) >= 2
        for previous, current in zip(chunks, chunks[1:]):
            overlap = get_overlap_text(previous.text, 100)
            assert current.text.startswith(overlap)
            assert len(overlap) <= 100

    def test_offsets_monotonic_and_in_range(self):
        paragraphs = [_paragraph(i) for i in range(10)]
        content = "Preface\n\n# One\n\n" + "\n\n".join(paragraphs) + "\n\n## Two\n\nTail.\n"
        total = len(content.encode("utf-8"))

        chunks = chunk_document(content, max_chunk_size=800, overlap=80)
        offsets = [c.byte_offset for c in chunks]

        assert offsets == sorted(offsets)
        assert all(0 <= offset < total for offset in offsets)
        assert chunks[0].heading_path is None
        assert chunks[-1].heading_path == "# One > ## Two"

    def test_first_paragraph_chunk_starts_at_section(self):
        paragraphs = [_paragraph(i) for i in range(6)]
        content = "Intro line\n\n# Big\n\n" + "\n\n".join(paragraphs) + "\n"

        chunks = chunk_document(content, max_chunk_size=1000, overlap=100)
        big = [c for c in chunks if c.heading_path == "# Big"]

        assert big[0].byte_offset == len("Intro line\n\n")
        assert big[0].text.startswith("# Big")

    def test_no_chunk_is_pure_overlap(self):
        paragraphs = [_paragraph(i) for i in range(5)]
        content = "\n\n".join(paragraphs) + "\n"

        chunks = chunk_document(content, max_chunk_size=1000, overlap=100)
        for previous, current in zip(chunks, chunks[1:]):
            assert current.text != get_overlap_text(previous.text, 100)

    def test_overlap_larger_than_preceding_text(self):
        paragraphs = [_paragraph(i, words=3) for i in range(30)]
        content = "Intro line\n\n# Big\n\n" + "\n\n".join(paragraphs) + "\n"
        section_start = len("Intro line\n\n")

        chunks = chunk_document(content, max_chunk_size=40, overlap=500)
        big = [c for c in chunks if c.heading_path == "# Big"]
        offsets = [c.byte_offset for c in big]

        assert len(big) > 2
        assert offsets == sorted(offsets)
        assert all(offset >= section_start for offset in offsets)
        assert big[0].byte_offset == section_start
        for previous, current in zip(big, big[1:]):
            overlap = get_overlap_text(previous.text, 500)
            assert current.text.startswith(overlap)
            assert len(overlap) <= 500
