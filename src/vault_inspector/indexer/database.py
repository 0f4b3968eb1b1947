"""SQLite database management for the vault index."""

import json
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from vault_inspector.indexer.models import (
    UNRESOLVED_NOTE_ID,
    DiagnoseResult,
    LinkResult,
    Note,
    NoteMetadata,
    SearchResult,
    StoredChunk,
    TagResult,
    VaultStats,
)

SCHEMA_VERSION = "1"

SCHEMA_SQL = """
-- vault-inspector index schema v1
-- This index is disposable: it regenerates from the vault

PRAGMA foreign_keys = ON;
PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS notes (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    path             TEXT NOT NULL UNIQUE,
    title            TEXT NOT NULL,
    mtime            INTEGER NOT NULL,
    hash             TEXT NOT NULL,
    frontmatter_json TEXT,
    created_at       TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at       TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_notes_title ON notes(title);
CREATE INDEX IF NOT EXISTS idx_notes_mtime ON notes(mtime);

CREATE TABLE IF NOT EXISTS links (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    src_note_id INTEGER NOT NULL,
    dst_text    TEXT NOT NULL,
    dst_note_id INTEGER,
    kind        TEXT NOT NULL,
    is_embed    INTEGER NOT NULL DEFAULT 0,
    alias       TEXT,
    heading_ref TEXT,
    block_ref   TEXT,
    FOREIGN KEY (src_note_id) REFERENCES notes(id) ON DELETE CASCADE,
    FOREIGN KEY (dst_note_id) REFERENCES notes(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_links_src ON links(src_note_id);
CREATE INDEX IF NOT EXISTS idx_links_dst ON links(dst_note_id);
CREATE INDEX IF NOT EXISTS idx_links_dst_text ON links(dst_text);

CREATE TABLE IF NOT EXISTS tags (
    id      INTEGER PRIMARY KEY AUTOINCREMENT,
    note_id INTEGER NOT NULL,
    tag     TEXT NOT NULL,
    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE,
    UNIQUE(note_id, tag)
);

CREATE INDEX IF NOT EXISTS idx_tags_tag ON tags(tag);

CREATE TABLE IF NOT EXISTS chunks (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    note_id      INTEGER NOT NULL,
    heading_path TEXT,
    text         TEXT NOT NULL,
    byte_offset  INTEGER NOT NULL,
    byte_length  INTEGER NOT NULL,
    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_chunks_note ON chunks(note_id);

-- FTS5 virtual table
CREATE VIRTUAL TABLE IF NOT EXISTS fts_chunks USING fts5(
    heading_path,
    text,
    content='chunks',
    content_rowid='id'
);

-- Triggers to keep FTS5 synchronized
CREATE TRIGGER IF NOT EXISTS chunks_ai AFTER INSERT ON chunks BEGIN
    INSERT INTO fts_chunks(rowid, heading_path, text)
    VALUES (NEW.id, NEW.heading_path, NEW.text);
END;

CREATE TRIGGER IF NOT EXISTS chunks_ad AFTER DELETE ON chunks BEGIN
    INSERT INTO fts_chunks(fts_chunks, rowid, heading_path, text)
    VALUES ('delete', OLD.id, OLD.heading_path, OLD.text);
END;

CREATE TRIGGER IF NOT EXISTS chunks_au AFTER UPDATE ON chunks BEGIN
    INSERT INTO fts_chunks(fts_chunks, rowid, heading_path, text)
    VALUES ('delete', OLD.id, OLD.heading_path, OLD.text);
    INSERT INTO fts_chunks(rowid, heading_path, text)
    VALUES (NEW.id, NEW.heading_path, NEW.text);
END;

-- Metadata table for index versioning
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);

INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', '1');
INSERT OR IGNORE INTO meta (key, value) VALUES ('created_at', datetime('now'));
"""

DROP_SQL = """
DROP TABLE IF EXISTS fts_chunks;
DROP TABLE IF EXISTS chunks;
DROP TABLE IF EXISTS tags;
DROP TABLE IF EXISTS links;
DROP TABLE IF EXISTS notes;
DROP TABLE IF EXISTS meta;
"""


def note_match_clause(target_expr: str) -> str:
    """
    SQL predicate matching notes ``n`` against a normalized link target.

    A note matches when its path equals the target, equals the target plus
    ".md", ends with "/<target>.md", or when its title equals the target.
    """
    return (
        f"(n.path = {target_expr}"
        f" OR n.path = {target_expr} || '.md'"
        f" OR substr(n.path, -(length({target_expr}) + 4)) = '/' || {target_expr} || '.md'"
        f" OR n.title = {target_expr})"
    )


LINK_COLUMNS = "l.dst_text, l.kind, l.is_embed, l.alias, l.heading_ref, l.block_ref"


def _row_to_link_result(row: sqlite3.Row) -> LinkResult:
    return LinkResult(
        note_id=row["note_id"],
        note_path=row["note_path"],
        note_title=row["note_title"],
        target=row["dst_text"],
        kind=row["kind"],
        is_embed=bool(row["is_embed"]),
        alias=row["alias"],
        heading_ref=row["heading_ref"],
        block_ref=row["block_ref"],
    )


class IndexTransaction:
    """
    Write unit of work for one indexing pass.

    Obtained from ``Database.transaction()``; everything done through it is
    committed together or rolled back together.
    """

    def __init__(self, cursor: sqlite3.Cursor):
        self._cursor = cursor

    def get_note_metadata_by_path(self, path: str) -> NoteMetadata | None:
        """Get id, mtime and fingerprint of a note for change detection."""
        self._cursor.execute("SELECT id, mtime, hash FROM notes WHERE path = ?", (path,))
        row = self._cursor.fetchone()
        if row:
            return NoteMetadata(id=row["id"], mtime=row["mtime"], hash=row["hash"])
        return None

    def list_note_paths(self) -> set[str]:
        """Get all indexed paths."""
        self._cursor.execute("SELECT path FROM notes")
        return {row["path"] for row in self._cursor.fetchall()}

    def insert_note(
        self,
        path: str,
        title: str,
        mtime: int,
        hash: str,
        frontmatter_json: str | None = None,
    ) -> int:
        """Insert or update a note by path, returning its ID."""
        self._cursor.execute(
            """INSERT INTO notes (path, title, mtime, hash, frontmatter_json)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                title = excluded.title,
                mtime = excluded.mtime,
                hash = excluded.hash,
                frontmatter_json = excluded.frontmatter_json,
                updated_at = CURRENT_TIMESTAMP
            """,
            (path, title, mtime, hash, frontmatter_json),
        )
        self._cursor.execute("SELECT id FROM notes WHERE path = ?", (path,))
        return self._cursor.fetchone()["id"]

    def insert_tag(self, note_id: int, tag: str) -> None:
        self._cursor.execute(
            "INSERT OR IGNORE INTO tags (note_id, tag) VALUES (?, ?)",
            (note_id, tag),
        )

    def insert_link(
        self,
        src_note_id: int,
        dst_text: str,
        kind: str,
        is_embed: bool,
        alias: str | None = None,
        heading_ref: str | None = None,
        block_ref: str | None = None,
    ) -> int | None:
        """
        Insert a link, resolving it against the notes stored so far.

        Returns the destination note ID, or None when unresolved.
        """
        self._cursor.execute(
            f"""SELECT n.id FROM notes n
            WHERE {note_match_clause(':target')}
            ORDER BY n.id LIMIT 1""",
            {"target": dst_text},
        )
        row = self._cursor.fetchone()
        dst_note_id = row["id"] if row else None

        self._cursor.execute(
            """INSERT INTO links
            (src_note_id, dst_text, dst_note_id, kind, is_embed, alias, heading_ref, block_ref)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                src_note_id,
                dst_text,
                dst_note_id,
                kind,
                1 if is_embed else 0,
                alias,
                heading_ref,
                block_ref,
            ),
        )
        return dst_note_id

    def insert_chunk(
        self,
        note_id: int,
        heading_path: str | None,
        text: str,
        byte_offset: int,
        byte_length: int,
    ) -> None:
        self._cursor.execute(
            """INSERT INTO chunks (note_id, heading_path, text, byte_offset, byte_length)
            VALUES (?, ?, ?, ?, ?)""",
            (note_id, heading_path, text, byte_offset, byte_length),
        )

    def clear_note_data(self, note_id: int) -> None:
        """Delete a note's outgoing links, tags and chunks."""
        self._cursor.execute("DELETE FROM links WHERE src_note_id = ?", (note_id,))
        self._cursor.execute("DELETE FROM tags WHERE note_id = ?", (note_id,))
        self._cursor.execute("DELETE FROM chunks WHERE note_id = ?", (note_id,))

    def delete_note(self, path: str) -> None:
        """Delete a note by path. Inbound links become unresolved."""
        self._cursor.execute("DELETE FROM notes WHERE path = ?", (path,))

    def resolve_links(self) -> int:
        """
        Re-resolve every link against the current set of notes.

        First match by note id wins. Returns the number of unresolved links.
        """
        self._cursor.execute(
            f"""UPDATE links SET dst_note_id = (
                SELECT n.id FROM notes n
                WHERE {note_match_clause('links.dst_text')}
                ORDER BY n.id LIMIT 1
            )"""
        )
        self._cursor.execute("SELECT COUNT(*) AS n FROM links WHERE dst_note_id IS NULL")
        return self._cursor.fetchone()["n"]

    def clear(self) -> None:
        """Delete all notes and everything that depends on them."""
        self._cursor.execute("DELETE FROM links")
        self._cursor.execute("DELETE FROM tags")
        self._cursor.execute("DELETE FROM chunks")
        self._cursor.execute("DELETE FROM notes")


class Database:
    """SQLite database for the vault index."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self._local = threading.local()
        self._write_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode: transactions are opened explicitly
            conn = sqlite3.connect(str(self.db_path), isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.conn = conn
        return self._local.conn

    @contextmanager
    def _read_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for read operations."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    @contextmanager
    def transaction(self) -> Iterator[IndexTransaction]:
        """
        Open a write transaction spanning a whole indexing pass.

        Commits when the block exits normally and rolls back on any exception,
        leaving the previously committed index intact.
        """
        with self._write_lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                yield IndexTransaction(cursor)
                cursor.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    cursor.execute("ROLLBACK")
                raise
            finally:
                cursor.close()

    def initialize(self, force: bool = False) -> None:
        """Initialize the database schema, dropping existing data if forced."""
        with self._write_lock:
            conn = self._get_connection()
            if force:
                conn.executescript(DROP_SQL)
            conn.executescript(SCHEMA_SQL)

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None

    def is_initialized(self) -> bool:
        """True if the schema has been created."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'meta'")
            return cursor.fetchone() is not None

    def schema_version(self) -> str | None:
        with self._read_cursor() as cursor:
            cursor.execute("SELECT value FROM meta WHERE key = 'schema_version'")
            row = cursor.fetchone()
            return row["value"] if row else None

    # Note operations

    def get_note_metadata_by_path(self, path: str) -> NoteMetadata | None:
        """Get id, mtime and fingerprint of a note for change detection."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT id, mtime, hash FROM notes WHERE path = ?", (path,))
            row = cursor.fetchone()
            if row:
                return NoteMetadata(id=row["id"], mtime=row["mtime"], hash=row["hash"])
            return None

    def get_note_id(self, path: str) -> int | None:
        with self._read_cursor() as cursor:
            cursor.execute("SELECT id FROM notes WHERE path = ?", (path,))
            row = cursor.fetchone()
            return row["id"] if row else None

    def get_note(self, path: str) -> Note | None:
        """Get a note by its relative path."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT * FROM notes WHERE path = ?", (path,))
            row = cursor.fetchone()
            if row:
                return self._row_to_note(row)
            return None

    def list_notes(self) -> list[Note]:
        """List all notes ordered by path."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT * FROM notes ORDER BY path")
            return [self._row_to_note(row) for row in cursor.fetchall()]

    def list_note_paths(self) -> set[str]:
        """Get all indexed paths."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT path FROM notes")
            return {row["path"] for row in cursor.fetchall()}

    def find_note_candidates(self, target: str) -> list[str]:
        """All note paths matching a normalized target, in resolution order."""
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT n.path FROM notes n
                WHERE {note_match_clause(':target')}
                ORDER BY n.id""",
                {"target": target},
            )
            return [row["path"] for row in cursor.fetchall()]

    def _row_to_note(self, row: sqlite3.Row) -> Note:
        """Convert a database row to a Note."""
        frontmatter = json.loads(row["frontmatter_json"]) if row["frontmatter_json"] else {}
        return Note(
            id=row["id"],
            path=row["path"],
            title=row["title"],
            mtime=row["mtime"],
            hash=row["hash"],
            frontmatter=frontmatter,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Chunk operations

    def get_chunks(self, note_id: int) -> list[StoredChunk]:
        """Get all chunks for a note in file order."""
        with self._read_cursor() as cursor:
            cursor.execute(
                """SELECT * FROM chunks
                WHERE note_id = ?
                ORDER BY byte_offset, id""",
                (note_id,),
            )
            return [
                StoredChunk(
                    id=row["id"],
                    note_id=row["note_id"],
                    heading_path=row["heading_path"],
                    text=row["text"],
                    byte_offset=row["byte_offset"],
                    byte_length=row["byte_length"],
                )
                for row in cursor.fetchall()
            ]

    # Link operations

    def get_links_to(self, note_id: int) -> list[LinkResult]:
        """Links whose destination is the note, described by their source."""
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT src.id AS note_id, src.path AS note_path,
                    src.title AS note_title, {LINK_COLUMNS}
                FROM links l
                JOIN notes src ON l.src_note_id = src.id
                WHERE l.dst_note_id = ?
                ORDER BY src.path, l.id""",
                (note_id,),
            )
            return [_row_to_link_result(row) for row in cursor.fetchall()]

    def get_links_from(self, note_id: int) -> list[LinkResult]:
        """Links leaving the note, described by their destination or raw target."""
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT COALESCE(dst.id, ?) AS note_id,
                    COALESCE(dst.path, l.dst_text) AS note_path,
                    COALESCE(dst.title, l.dst_text) AS note_title,
                    {LINK_COLUMNS}
                FROM links l
                LEFT JOIN notes dst ON l.dst_note_id = dst.id
                WHERE l.src_note_id = ?
                ORDER BY l.dst_text, l.id""",
                (UNRESOLVED_NOTE_ID, note_id),
            )
            return [_row_to_link_result(row) for row in cursor.fetchall()]

    def get_unresolved_links(self) -> list[LinkResult]:
        """Links with no destination, described by their source."""
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT src.id AS note_id, src.path AS note_path,
                    src.title AS note_title, {LINK_COLUMNS}
                FROM links l
                JOIN notes src ON l.src_note_id = src.id
                WHERE l.dst_note_id IS NULL
                ORDER BY l.dst_text, src.path, l.id"""
            )
            return [_row_to_link_result(row) for row in cursor.fetchall()]

    def get_resolved_links(self) -> list[LinkResult]:
        """Links with a destination, described by their source."""
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT src.id AS note_id, src.path AS note_path,
                    src.title AS note_title, {LINK_COLUMNS}
                FROM links l
                JOIN notes src ON l.src_note_id = src.id
                WHERE l.dst_note_id IS NOT NULL
                ORDER BY src.path, l.dst_text, l.id"""
            )
            return [_row_to_link_result(row) for row in cursor.fetchall()]

    def note_link_counts(self) -> list[DiagnoseResult]:
        """Incoming and outgoing link counts for every note."""
        with self._read_cursor() as cursor:
            cursor.execute(
                """SELECT n.id, n.path, n.title,
                    (SELECT COUNT(*) FROM links l WHERE l.dst_note_id = n.id) AS incoming,
                    (SELECT COUNT(*) FROM links l WHERE l.src_note_id = n.id) AS outgoing
                FROM notes n
                ORDER BY n.path"""
            )
            return [
                DiagnoseResult(
                    note_id=row["id"],
                    note_path=row["path"],
                    note_title=row["title"],
                    incoming_count=row["incoming"],
                    outgoing_count=row["outgoing"],
                )
                for row in cursor.fetchall()
            ]

    # Tag operations

    def list_tags(self) -> list[str]:
        """List all unique tags."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT DISTINCT tag FROM tags ORDER BY tag")
            return [row["tag"] for row in cursor.fetchall()]

    def get_note_tags(self, note_id: int) -> list[str]:
        with self._read_cursor() as cursor:
            cursor.execute("SELECT tag FROM tags WHERE note_id = ? ORDER BY tag", (note_id,))
            return [row["tag"] for row in cursor.fetchall()]

    def get_notes_by_tags(self, tags: Sequence[str], match_all: bool = False) -> list[TagResult]:
        """
        Notes carrying any (or, with ``match_all``, every) one of the tags.
        """
        unique_tags = sorted(set(tags))
        if not unique_tags:
            return []

        placeholders = ",".join("?" for _ in unique_tags)
        query = f"SELECT note_id FROM tags WHERE tag IN ({placeholders})"
        params: list = list(unique_tags)
        if match_all:
            query += " GROUP BY note_id HAVING COUNT(DISTINCT tag) = ?"
            params.append(len(unique_tags))

        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT id, path, title FROM notes
                WHERE id IN ({query})
                ORDER BY path""",
                params,
            )
            rows = cursor.fetchall()

        return [
            TagResult(
                note_id=row["id"],
                note_path=row["path"],
                note_title=row["title"],
                tags=self.get_note_tags(row["id"]),
            )
            for row in rows
        ]

    # Search operations

    def search_chunks(self, query: str, limit: int = 20) -> list[SearchResult]:
        """
        Full-text search over chunk heading paths and text.

        Ranked by FTS5 BM25, where lower is better. ``query`` uses FTS5 syntax;
        malformed queries raise sqlite3.OperationalError.
        """
        with self._read_cursor() as cursor:
            cursor.execute(
                """SELECT
                    c.id AS chunk_id,
                    n.id AS note_id,
                    n.path AS note_path,
                    n.title AS note_title,
                    c.heading_path,
                    c.text,
                    bm25(fts_chunks) AS rank
                FROM fts_chunks
                JOIN chunks c ON fts_chunks.rowid = c.id
                JOIN notes n ON c.note_id = n.id
                WHERE fts_chunks MATCH ?
                ORDER BY rank
                LIMIT ?""",
                (query, limit),
            )
            return [
                SearchResult(
                    chunk_id=row["chunk_id"],
                    note_id=row["note_id"],
                    note_path=row["note_path"],
                    note_title=row["note_title"],
                    heading_path=row["heading_path"],
                    text=row["text"],
                    rank=row["rank"],
                )
                for row in cursor.fetchall()
            ]

    # Statistics

    def get_stats(self) -> VaultStats:
        with self._read_cursor() as cursor:
            cursor.execute(
                """SELECT
                    (SELECT COUNT(*) FROM notes) AS note_count,
                    (SELECT COUNT(*) FROM links) AS link_count,
                    (SELECT COUNT(DISTINCT tag) FROM tags) AS tag_count,
                    (SELECT COUNT(*) FROM chunks) AS chunk_count,
                    (SELECT COUNT(*) FROM links WHERE dst_note_id IS NULL) AS unresolved_links
                """
            )
            row = cursor.fetchone()
            return VaultStats(
                note_count=row["note_count"],
                link_count=row["link_count"],
                tag_count=row["tag_count"],
                chunk_count=row["chunk_count"],
                unresolved_links=row["unresolved_links"],
            )
