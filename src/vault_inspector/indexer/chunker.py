"""Chunking logic for splitting notes by headings with paragraph fallback."""

from dataclasses import dataclass

# Maximum bytes per chunk before a section is split by paragraphs
MAX_CHUNK_SIZE = 1000

# Characters carried over from the previous chunk
CHUNK_OVERLAP = 100

MAX_HEADING_LEVEL = 6

HEADING_SEPARATOR = " > "


@dataclass
class Chunk:
    """A retrieval unit cut from a note."""

    heading_path: str | None
    text: str
    byte_offset: int
    byte_length: int
    token_count: int


@dataclass
class Heading:
    level: int
    text: str


@dataclass
class Section:
    heading_path: str | None
    text: str
    byte_offset: int


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def _lines(content: str) -> list[str]:
    """Split into lines without terminators; a trailing newline adds no line."""
    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def estimate_tokens(text: str) -> int:
    """Average of bytes/4 and the word count. Not a real tokenizer."""
    return (_byte_len(text) // 4 + len(text.split())) // 2


def parse_heading(line: str) -> Heading | None:
    """Parse an ATX heading line. Levels above 6 are not headings."""
    trimmed = line.lstrip()
    if not trimmed.startswith("#"):
        return None

    level = len(trimmed) - len(trimmed.lstrip("#"))
    if level > MAX_HEADING_LEVEL:
        return None

    rest = trimmed[level:]
    if not rest.startswith(" "):
        return None

    return Heading(level=level, text=rest.strip())


def update_heading_stack(stack: list[Heading], heading: Heading) -> None:
    """Push a heading, closing every open heading at the same or deeper level."""
    while stack and stack[-1].level >= heading.level:
        stack.pop()
    stack.append(heading)


def build_heading_path(stack: list[Heading]) -> str | None:
    """Breadcrumb such as "# Main > ## Sub", or None for an empty stack."""
    if not stack:
        return None
    return HEADING_SEPARATOR.join(f"{'#' * h.level} {h.text}" for h in stack)


def split_by_headings(content: str) -> list[Section]:
    """
    Split content into sections bounded by headings.

    Returns an empty list when the content has no heading at all.
    Text before the first heading becomes a section without heading path.
    """
    sections: list[Section] = []
    stack: list[Heading] = []
    current_text = ""
    section_start = 0
    offset = 0
    saw_heading = False

    for line in _lines(content):
        line_with_newline = f"{line}\n"
        heading = parse_heading(line)

        if heading:
            saw_heading = True
            if current_text.strip():
                sections.append(
                    Section(build_heading_path(stack), current_text, section_start)
                )
            update_heading_stack(stack, heading)
            current_text = line_with_newline
            section_start = offset
        else:
            current_text += line_with_newline

        offset += _byte_len(line_with_newline)

    if not saw_heading:
        return []

    if current_text.strip():
        sections.append(Section(build_heading_path(stack), current_text, section_start))

    return sections


def split_into_paragraphs(content: str) -> list[tuple[str, int]]:
    """Split on blank lines into (paragraph, byte offset) pairs."""
    paragraphs: list[tuple[str, int]] = []
    current: list[str] = []
    para_start = 0
    offset = 0

    for line in _lines(content):
        if not line.strip():
            if current:
                paragraphs.append(("\n".join(current), para_start))
                current = []
        else:
            if not current:
                para_start = offset
            current.append(line)
        offset += _byte_len(line) + 1

    if current:
        paragraphs.append(("\n".join(current), para_start))

    return paragraphs


def get_overlap_text(text: str, overlap: int) -> str:
    """
    Trailing ``overlap`` characters of text, started after the last ". " if any.

    Works on characters rather than bytes so multi-byte text is never cut
    inside a code point.
    """
    if len(text) <= overlap:
        return text

    window = text[len(text) - overlap :]
    sentence_end = window.rfind(". ")
    if sentence_end != -1:
        return window[sentence_end + 2 :]
    return window


def chunk_by_paragraphs(
    content: str,
    heading_path: str | None,
    base_offset: int,
    max_chunk_size: int,
    overlap: int,
) -> list[Chunk]:
    """Accumulate paragraphs into chunks of at most ``max_chunk_size`` bytes."""
    chunks: list[Chunk] = []
    buffer = ""
    has_new_text = False
    chunk_start = base_offset
    end_offset = base_offset

    def flush() -> None:
        chunks.append(
            Chunk(
                heading_path=heading_path,
                text=buffer,
                byte_offset=chunk_start,
                byte_length=_byte_len(buffer),
                token_count=estimate_tokens(buffer),
            )
        )

    for para_text, para_offset in split_into_paragraphs(content):
        if has_new_text and _byte_len(buffer) + _byte_len(para_text) > max_chunk_size:
            flush()
            buffer = get_overlap_text(buffer, overlap)
            has_new_text = False
            # Clamp so offsets never run backwards or below the section start
            chunk_start = max(chunk_start, end_offset - _byte_len(buffer))

        buffer += para_text + "\n\n"
        has_new_text = True
        end_offset = base_offset + para_offset + _byte_len(para_text)

    if has_new_text and buffer.strip():
        flush()

    return chunks


def chunk_document(
    content: str,
    max_chunk_size: int = MAX_CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> list[Chunk]:
    """
    Chunk a note by headings.

    Rules:
    1. Split into sections at headings, tracking a heading breadcrumb
    2. Without headings, chunk the whole document by paragraphs
    3. A section over ``max_chunk_size`` bytes is chunked by paragraphs
    4. Paragraph chunks carry up to ``overlap`` characters of the previous one
    """
    sections = split_by_headings(content)
    if not sections:
        return chunk_by_paragraphs(content, None, 0, max_chunk_size, overlap)

    chunks: list[Chunk] = []
    for section in sections:
        if _byte_len(section.text) <= max_chunk_size:
            chunks.append(
                Chunk(
                    heading_path=section.heading_path,
                    text=section.text,
                    byte_offset=section.byte_offset,
                    byte_length=_byte_len(section.text),
                    token_count=estimate_tokens(section.text),
                )
            )
        else:
            chunks.extend(
                chunk_by_paragraphs(
                    section.text,
                    section.heading_path,
                    section.byte_offset,
                    max_chunk_size,
                    overlap,
                )
            )

    return chunks
