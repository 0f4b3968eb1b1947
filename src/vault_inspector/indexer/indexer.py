"""Main indexer that coordinates syncing a vault to SQLite."""

import json
import logging
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from vault_inspector.indexer import graph
from vault_inspector.indexer.chunker import CHUNK_OVERLAP, MAX_CHUNK_SIZE, chunk_document
from vault_inspector.indexer.database import Database, IndexTransaction
from vault_inspector.indexer.models import (
    BrokenLink,
    DiagnoseResult,
    IndexEvent,
    IndexResult,
    LinkResult,
    Note,
    NoteMetadata,
    SearchResult,
    StoredChunk,
    TagResult,
    VaultStats,
)
from vault_inspector.indexer.parser import parse_note
from vault_inspector.indexer.walker import (
    DEFAULT_EXCLUDE_PATTERNS,
    FINGERPRINT_MTIME,
    FileInfo,
    compute_fingerprint,
    walk_vault,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[IndexEvent], None]


class IndexingError(Exception):
    """An indexing pass failed; the pass was rolled back."""

    def __init__(self, step: str, path: str, message: str = ""):
        self.step = step
        self.path = path
        detail = f": {message}" if message else ""
        super().__init__(f"{step} failed for {path}{detail}")


@contextmanager
def _step(step: str, path: str) -> Iterator[None]:
    """Re-raise failures inside a pass step as IndexingError."""
    try:
        yield
    except (OSError, ValueError, sqlite3.Error) as e:
        raise IndexingError(step, path, str(e)) from e


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


class Indexer:
    """
    Indexer that syncs a markdown vault with SQLite FTS5.

    The vault is always the source of truth. SQLite is a derived index
    that can be regenerated at any time.

    Every pass runs inside one database transaction: either all changes
    from the pass are committed or none are.
    """

    def __init__(
        self,
        vault_root: Path,
        db_path: Path,
        exclude_patterns: Sequence[str] = DEFAULT_EXCLUDE_PATTERNS,
        max_chunk_size: int = MAX_CHUNK_SIZE,
        chunk_overlap: int = CHUNK_OVERLAP,
        fingerprint: str = FINGERPRINT_MTIME,
    ):
        """
        Initialize the indexer.

        Args:
            vault_root: Path to the vault directory
            db_path: Path to the SQLite database file
            exclude_patterns: Substrings of relative paths to skip
            max_chunk_size: Maximum chunk size in bytes
            chunk_overlap: Characters carried between paragraph chunks
            fingerprint: "mtime" for size+mtime, "content" for SHA-256
        """
        self.vault_root = vault_root
        self.db = Database(db_path)
        self.exclude_patterns = tuple(exclude_patterns)
        self.max_chunk_size = max_chunk_size
        self.chunk_overlap = chunk_overlap
        self.fingerprint = fingerprint
        self._initialized = False

    def initialize(self, force: bool = False) -> None:
        """Initialize the database schema."""
        self.db.initialize(force=force)
        self._initialized = True

    def close(self) -> None:
        """Close database connections."""
        self.db.close()

    def _ensure_initialized(self) -> None:
        """Ensure the database is initialized.

        An existing store is only read, so queries never take the write lock.
        """
        if self._initialized:
            return
        if self.db.is_initialized():
            self._initialized = True
        else:
            self.initialize()

    def _emitter(self, verbose: bool, on_event: EventCallback | None) -> Callable[..., None]:
        def emit(kind: str, path: str, detail: str = "") -> None:
            if not verbose:
                return
            event = IndexEvent(kind=kind, path=path, detail=detail)
            if on_event is not None:
                on_event(event)
            else:
                logger.info("%s", event)

        return emit

    def index(
        self,
        force: bool = False,
        dry_run: bool = False,
        verbose: bool = False,
        on_event: EventCallback | None = None,
    ) -> IndexResult:
        """
        Bring the index in line with the vault.

        Unchanged files (same fingerprint) are skipped unless ``force`` is set.
        Notes whose files disappeared are removed. With ``dry_run`` nothing is
        written and the result holds what a real pass would do.

        Raises:
            IndexingError: The vault could not be scanned, or a file could
                not be read or stored. Nothing from the pass is kept.
        """
        self._ensure_initialized()
        emit = self._emitter(verbose, on_event)
        logger.info("Indexing %s%s", self.vault_root, " (dry run)" if dry_run else "")

        if dry_run:
            result = self._plan(force, emit)
        else:
            with self.db.transaction() as tx:
                result = self._run(tx, force, emit)

        logger.info(
            "Index complete: %d scanned, %d indexed, %d skipped, %d removed",
            result.scanned,
            result.indexed,
            result.skipped,
            result.removed,
        )
        return result

    def reindex(self, verbose: bool = False, on_event: EventCallback | None = None) -> IndexResult:
        """
        Perform a full reindex of the vault.

        The store is cleared and rebuilt within a single transaction.
        """
        self._ensure_initialized()
        emit = self._emitter(verbose, on_event)
        logger.info("Starting full reindex of %s", self.vault_root)

        with self.db.transaction() as tx:
            with _step("store", str(self.vault_root)):
                tx.clear()
            result = self._run(tx, True, emit)

        logger.info("Reindex complete: %d notes indexed", result.indexed)
        return result

    def _fingerprint(self, file_info: FileInfo) -> str:
        with _step("read", file_info.relative_path):
            return compute_fingerprint(file_info, self.fingerprint)

    def _scan(self) -> list[FileInfo]:
        with _step("scan", str(self.vault_root)):
            return list(walk_vault(self.vault_root, self.exclude_patterns))

    def _is_unchanged(self, existing: NoteMetadata | None, fingerprint: str) -> bool:
        return existing is not None and existing.hash == fingerprint

    def _plan(self, force: bool, emit: Callable[..., None]) -> IndexResult:
        result = IndexResult(dry_run=True)
        seen_paths: set[str] = set()

        for file_info in self._scan():
            path = file_info.relative_path
            result.scanned += 1
            seen_paths.add(path)

            fingerprint = self._fingerprint(file_info)
            existing = self.db.get_note_metadata_by_path(path)
            if not force and self._is_unchanged(existing, fingerprint):
                result.skipped += 1
                emit("skip", path, "unchanged")
            else:
                result.indexed += 1
                emit("note", path, "would index")

        for path in sorted(self.db.list_note_paths() - seen_paths):
            result.removed += 1
            emit("remove", path, "would remove")

        return result

    def _run(self, tx: IndexTransaction, force: bool, emit: Callable[..., None]) -> IndexResult:
        result = IndexResult()
        seen_paths: set[str] = set()

        for file_info in self._scan():
            path = file_info.relative_path
            result.scanned += 1
            seen_paths.add(path)

            fingerprint = self._fingerprint(file_info)
            with _step("store", path):
                existing = tx.get_note_metadata_by_path(path)

            if not force and self._is_unchanged(existing, fingerprint):
                result.skipped += 1
                emit("skip", path, "unchanged")
                continue

            self._index_file(tx, file_info, fingerprint, existing, emit)
            result.indexed += 1

        with _step("store", str(self.vault_root)):
            for path in sorted(tx.list_note_paths() - seen_paths):
                tx.delete_note(path)
                result.removed += 1
                emit("remove", path)

            unresolved = tx.resolve_links()
        logger.debug("%d unresolved links after resolution", unresolved)

        return result

    def _index_file(
        self,
        tx: IndexTransaction,
        file_info: FileInfo,
        fingerprint: str,
        existing: NoteMetadata | None,
        emit: Callable[..., None],
    ) -> None:
        """Index a single file."""
        path = file_info.relative_path

        # Decode the raw bytes so offsets stay true to the file on disk
        with _step("read", path):
            content = file_info.path.read_bytes().decode("utf-8")

        with _step("parse", path):
            parsed = parse_note(content)
            chunks = chunk_document(parsed.text, self.max_chunk_size, self.chunk_overlap)
            # Chunks are cut from the body; shift them past the frontmatter
            body_offset = _byte_len(content) - _byte_len(parsed.text)

        with _step("store", path):
            if existing is not None:
                tx.clear_note_data(existing.id)

            note_id = tx.insert_note(
                path,
                parsed.title,
                file_info.mtime,
                fingerprint,
                json.dumps(parsed.frontmatter, sort_keys=True),
            )
            emit("note", path, parsed.title)

            for tag in parsed.tags:
                tx.insert_tag(note_id, tag)
                emit("tag", path, tag)

            for link in parsed.links:
                dst_note_id = tx.insert_link(
                    note_id,
                    link.target,
                    link.kind.value,
                    link.is_embed,
                    link.alias,
                    link.heading_ref,
                    link.block_ref,
                )
                state = "resolved" if dst_note_id is not None else "unresolved"
                emit("link", path, f"{link.target} {state}")

            for chunk in chunks:
                tx.insert_chunk(
                    note_id,
                    chunk.heading_path,
                    chunk.text,
                    chunk.byte_offset + body_offset,
                    chunk.byte_length,
                )
                emit("chunk", path, chunk.heading_path or "")

    # Query methods

    def search(self, query: str, limit: int = 20) -> list[SearchResult]:
        """
        Search chunks matching the query.

        Args:
            query: Search query (FTS5 syntax)
            limit: Maximum number of results

        Returns:
            List of SearchResult objects, best first.
        """
        self._ensure_initialized()
        return self.db.search_chunks(query, limit=limit)

    def resolve_note(self, identifier: str) -> str | None:
        self._ensure_initialized()
        return graph.resolve_note(self.db, identifier)

    def get_backlinks(self, path: str) -> list[LinkResult]:
        self._ensure_initialized()
        return graph.get_backlinks(self.db, path)

    def get_forward_links(self, path: str) -> list[LinkResult]:
        self._ensure_initialized()
        return graph.get_forward_links(self.db, path)

    def get_unresolved_links(self) -> list[LinkResult]:
        self._ensure_initialized()
        return graph.get_unresolved_links(self.db)

    def diagnose_broken_links(self) -> list[BrokenLink]:
        self._ensure_initialized()
        return graph.diagnose_broken_links(self.db)

    def get_orphans(self, exclude_templates: bool = True, exclude_daily: bool = True) -> list[DiagnoseResult]:
        self._ensure_initialized()
        return graph.get_orphans(self.db, exclude_templates, exclude_daily)

    def get_dead_ends(self, exclude_templates: bool = True, exclude_daily: bool = True) -> list[DiagnoseResult]:
        self._ensure_initialized()
        return graph.get_dead_ends(self.db, exclude_templates, exclude_daily)

    def list_tags(self) -> list[str]:
        """List all unique tags."""
        self._ensure_initialized()
        return self.db.list_tags()

    def get_notes_by_tags(self, tags: Sequence[str], match_all: bool = False) -> list[TagResult]:
        self._ensure_initialized()
        return self.db.get_notes_by_tags(tags, match_all=match_all)

    def get_note_tags(self, note_id: int) -> list[str]:
        self._ensure_initialized()
        return self.db.get_note_tags(note_id)

    def get_stats(self) -> VaultStats:
        self._ensure_initialized()
        return self.db.get_stats()

    def list_notes(self) -> list[Note]:
        """List all indexed notes."""
        self._ensure_initialized()
        return self.db.list_notes()

    def get_note(self, path: str) -> Note | None:
        """Get a note by path."""
        self._ensure_initialized()
        return self.db.get_note(path)

    def get_chunks(self, note_id: int) -> list[StoredChunk]:
        """Get all chunks for a note."""
        self._ensure_initialized()
        return self.db.get_chunks(note_id)
