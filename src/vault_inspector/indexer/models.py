"""Data models for the indexer."""

from dataclasses import dataclass, field
from datetime import datetime

# Sentinel note id for forward links whose target did not resolve
UNRESOLVED_NOTE_ID = -1


@dataclass
class NoteMetadata:
    """Change-detection metadata stored for a note."""

    id: int
    mtime: int
    hash: str


@dataclass
class Note:
    """Represents a note in the index."""

    id: int | None = None
    path: str = ""  # Relative from the vault root, POSIX separators
    title: str = ""
    mtime: int = 0
    hash: str = ""
    frontmatter: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class StoredChunk:
    """Represents a chunk row read back from the index."""

    id: int
    note_id: int
    heading_path: str | None
    text: str
    byte_offset: int
    byte_length: int


@dataclass
class SearchResult:
    """Represents a full-text search hit. Lower rank is better."""

    chunk_id: int
    note_id: int
    note_path: str
    note_title: str
    heading_path: str | None
    text: str
    rank: float


@dataclass
class LinkResult:
    """A link seen from one end.

    For backlinks and unresolved links the note fields describe the source
    note. For forward links they describe the destination, or the raw target
    text with ``note_id == UNRESOLVED_NOTE_ID`` when it did not resolve.
    """

    note_id: int
    note_path: str
    note_title: str
    target: str
    kind: str
    is_embed: bool = False
    alias: str | None = None
    heading_ref: str | None = None
    block_ref: str | None = None

    @property
    def resolved(self) -> bool:
        return self.note_id != UNRESOLVED_NOTE_ID

    @property
    def status(self) -> str:
        return "[resolved]" if self.resolved else "[unresolved]"


@dataclass
class BrokenLink:
    """A link that is unresolved or ambiguous."""

    src_path: str
    src_title: str
    raw_link: str  # Alias as written, "" when absent
    target: str
    status: str  # "unresolved" or "ambiguous"
    candidates: list[str] = field(default_factory=list)


@dataclass
class DiagnoseResult:
    """Link counts for a note flagged as orphan or dead end."""

    note_id: int
    note_path: str
    note_title: str
    incoming_count: int
    outgoing_count: int


@dataclass
class TagResult:
    """A note matched by a tag query, with all of its tags."""

    note_id: int
    note_path: str
    note_title: str
    tags: list[str] = field(default_factory=list)


@dataclass
class VaultStats:
    """Row counts for the whole index."""

    note_count: int = 0
    link_count: int = 0
    tag_count: int = 0
    chunk_count: int = 0
    unresolved_links: int = 0


@dataclass
class IndexEvent:
    """One line of verbose progress from an indexing pass."""

    kind: str  # start, skip, note, tag, link, chunk, remove
    path: str
    detail: str = ""

    def __str__(self) -> str:
        if self.detail:
            return f"{self.kind}: {self.path} ({self.detail})"
        return f"{self.kind}: {self.path}"


@dataclass
class IndexResult:
    """Counters returned by an indexing pass."""

    scanned: int = 0
    indexed: int = 0
    skipped: int = 0
    removed: int = 0
    dry_run: bool = False
