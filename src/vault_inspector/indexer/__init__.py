"""
Indexer module for vault-inspector.

This module turns a vault of markdown notes into a SQLite FTS5 index with a
resolved link graph. The vault stays the source of truth.
"""

from vault_inspector.indexer.chunker import Chunk, chunk_document
from vault_inspector.indexer.database import Database, IndexTransaction
from vault_inspector.indexer.indexer import Indexer, IndexingError
from vault_inspector.indexer.models import (
    BrokenLink,
    DiagnoseResult,
    IndexEvent,
    IndexResult,
    LinkResult,
    Note,
    SearchResult,
    TagResult,
    VaultStats,
)
from vault_inspector.indexer.parser import Link, LinkKind, ParsedNote, normalize_note_identifier, parse_note
from vault_inspector.indexer.walker import FileInfo, walk_vault

__all__ = [
    "BrokenLink",
    "Chunk",
    "Database",
    "DiagnoseResult",
    "FileInfo",
    "IndexEvent",
    "IndexResult",
    "IndexTransaction",
    "Indexer",
    "IndexingError",
    "Link",
    "LinkKind",
    "LinkResult",
    "Note",
    "ParsedNote",
    "SearchResult",
    "TagResult",
    "VaultStats",
    "chunk_document",
    "normalize_note_identifier",
    "parse_note",
    "walk_vault",
]
