"""MCP tools for the vault-inspector server.

This module defines the tools exposed by the MCP server:
- search: Full-text search across all note chunks using FTS5
- backlinks / forward_links: Follow or invert links of a note
- unresolved_links / broken_links: Links that point nowhere or to several notes
- orphans / dead_ends: Notes that are poorly connected
- list_notes: Every indexed note with its title
- list_tags / notes_by_tag: Browse notes by tag
- vault_stats: Index counters
- index_vault: Bring the index in line with the vault
"""

import sqlite3
from collections.abc import Callable
from dataclasses import asdict

from fastmcp import FastMCP

from vault_inspector.indexer import Indexer
from vault_inspector.indexer.models import DiagnoseResult, LinkResult

SNIPPET_LENGTH = 300


def _snippet(text: str) -> str:
    text = text.strip()
    if len(text) <= SNIPPET_LENGTH:
        return text
    return text[:SNIPPET_LENGTH].rstrip() + "..."


def _link_to_dict(link: LinkResult) -> dict:
    return {
        "note_path": link.note_path,
        "note_title": link.note_title,
        "target": link.target,
        "kind": link.kind,
        "is_embed": link.is_embed,
        "alias": link.alias,
        "heading_ref": link.heading_ref,
        "block_ref": link.block_ref,
        "resolved": link.resolved,
    }


def _diagnose_to_dict(result: DiagnoseResult) -> dict:
    return {
        "note_path": result.note_path,
        "note_title": result.note_title,
        "incoming": result.incoming_count,
        "outgoing": result.outgoing_count,
    }


def build_tools(indexer: Indexer, search_limit: int = 20) -> dict[str, Callable]:
    """Build the tool functions bound to an indexer, keyed by tool name."""

    def search(query: str, limit: int = search_limit) -> list[dict]:
        """Search note content using full-text search.

        Uses SQLite FTS5 with BM25 ranking over chunk text and heading paths.

        Args:
            query: Search query (FTS5 syntax supported, e.g. "rust AND async")
            limit: Maximum number of results to return

        Returns:
            List of search results with:
            - note_path: Path of the note relative to the vault
            - note_title: Title of the note
            - heading_path: Heading breadcrumb of the matching chunk
            - snippet: Start of the matching chunk
            - rank: BM25 rank (lower is better)
        """
        try:
            results = indexer.search(query, limit=limit)
        except sqlite3.OperationalError as e:
            return [{"error": f"Invalid search query '{query}': {e}"}]

        return [
            {
                "note_path": result.note_path,
                "note_title": result.note_title,
                "heading_path": result.heading_path,
                "snippet": _snippet(result.text),
                "rank": round(result.rank, 4),
            }
            for result in results
        ]

    def backlinks(note: str) -> list[dict]:
        """List notes that link to a note.

        Args:
            note: Note path (e.g. "projects/alpha.md") or title

        Returns:
            List of links described by their source note.
        """
        path = indexer.resolve_note(note)
        if path is None:
            return []
        return [_link_to_dict(link) for link in indexer.get_backlinks(path)]

    def forward_links(note: str) -> list[dict]:
        """List the links going out of a note.

        Args:
            note: Note path or title

        Returns:
            List of links described by their destination. Unresolved links
            carry the raw target as note_path and resolved=false.
        """
        path = indexer.resolve_note(note)
        if path is None:
            return []
        return [_link_to_dict(link) for link in indexer.get_forward_links(path)]

    def unresolved_links() -> list[dict]:
        """List all links whose target matches no note, ordered by target."""
        return [_link_to_dict(link) for link in indexer.get_unresolved_links()]

    def broken_links() -> list[dict]:
        """Diagnose broken links.

        Returns:
            Unresolved links first, then ambiguous links whose target matches
            several notes, with all candidate paths.
        """
        return [asdict(link) for link in indexer.diagnose_broken_links()]

    def orphans(include_templates: bool = False, include_daily: bool = False) -> list[dict]:
        """List notes with no incoming and no outgoing links.

        Args:
            include_templates: Also report notes under template folders
            include_daily: Also report daily notes
        """
        results = indexer.get_orphans(
            exclude_templates=not include_templates,
            exclude_daily=not include_daily,
        )
        return [_diagnose_to_dict(r) for r in results]

    def dead_ends(include_templates: bool = False, include_daily: bool = False) -> list[dict]:
        """List notes that are linked to but link nowhere.

        Args:
            include_templates: Also report notes under template folders
            include_daily: Also report daily notes
        """
        results = indexer.get_dead_ends(
            exclude_templates=not include_templates,
            exclude_daily=not include_daily,
        )
        return [_diagnose_to_dict(r) for r in results]

    def list_tags() -> list[str]:
        """List every tag used in the vault."""
        return indexer.list_tags()

    def notes_by_tag(tags: list[str], match_all: bool = False) -> list[dict]:
        """Find notes by tag.

        Args:
            tags: Tags to look for, without the leading "#"
            match_all: Require every tag instead of any

        Returns:
            List of notes with all of their tags.
        """
        return [
            {"note_path": r.note_path, "note_title": r.note_title, "tags": r.tags}
            for r in indexer.get_notes_by_tags(tags, match_all=match_all)
        ]

    def list_notes() -> list[dict]:
        """List every indexed note with its title and modification time."""
        return [
            {"note_path": note.path, "note_title": note.title, "mtime": note.mtime}
            for note in indexer.list_notes()
        ]

    def vault_stats() -> dict:
        """Get counts of notes, links, tags and chunks in the index."""
        return asdict(indexer.get_stats())

    def index_vault(force: bool = False, dry_run: bool = False) -> dict:
        """Index new and changed notes and drop deleted ones.

        Args:
            force: Re-index every note even if unchanged
            dry_run: Only report what would change
        """
        return asdict(indexer.index(force=force, dry_run=dry_run))

    return {
        "search": search,
        "backlinks": backlinks,
        "forward_links": forward_links,
        "unresolved_links": unresolved_links,
        "broken_links": broken_links,
        "orphans": orphans,
        "dead_ends": dead_ends,
        "list_tags": list_tags,
        "list_notes": list_notes,
        "notes_by_tag": notes_by_tag,
        "vault_stats": vault_stats,
        "index_vault": index_vault,
    }


def register_tools(mcp: FastMCP, indexer: Indexer, search_limit: int = 20) -> None:
    """Register all tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        indexer: Indexer used for queries and index passes
        search_limit: Default number of search results
    """
    for tool in build_tools(indexer, search_limit).values():
        mcp.tool()(tool)
