"""Main entry point for vault-inspector: command-line interface and MCP server."""

import argparse
import logging
import sqlite3
import sys
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from fastmcp import FastMCP

from vault_inspector import __version__
from vault_inspector.config import Config
from vault_inspector.indexer import Indexer, IndexingError
from vault_inspector.indexer.models import DiagnoseResult, LinkResult
from vault_inspector.tools import register_tools

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def create_indexer(config: Config) -> Indexer:
    return Indexer(
        config.vault_path,
        config.database_path,
        exclude_patterns=config.exclude_patterns,
        max_chunk_size=config.max_chunk_size,
        chunk_overlap=config.chunk_overlap,
        fingerprint=config.fingerprint,
    )


def create_server(config: Config) -> FastMCP:
    """Create and configure the MCP server.

    Args:
        config: Configuration instance with all settings.
    """
    mcp = FastMCP(
        name="vault-inspector",
        instructions=(
            "vault-inspector indexes a folder of interlinked markdown notes. Use the "
            "search tool to find notes by content, backlinks and forward_links to follow "
            "the link graph, and broken_links, orphans and dead_ends to find structural "
            "problems."
        ),
    )

    logger.info("Initializing database at %s", config.database_path)
    indexer = create_indexer(config)
    indexer.initialize()

    # Check if an initial index is needed (empty database)
    if indexer.get_stats().note_count == 0:
        logger.info("Database is empty, performing initial index...")
        result = indexer.index()
        logger.info("Initial index complete: %d notes indexed", result.indexed)

    logger.info("Registering tools...")
    register_tools(mcp, indexer, search_limit=config.search_limit)

    logger.info("Server configured successfully")
    return mcp


def setup_file_logging(log_dir: Path, command: str) -> logging.FileHandler:
    """Attach a per-invocation log file to the root logger."""
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    handler = logging.FileHandler(log_dir / f"{command}_{timestamp}.log", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return handler


def _require_database(config: Config) -> bool:
    if config.database_path.exists():
        return True
    print(
        f"Database not found at {config.database_path}. Run 'vault-inspector init' first.",
        file=sys.stderr,
    )
    return False


def _resolve_or_report(indexer: Indexer, note: str) -> str | None:
    path = indexer.resolve_note(note)
    if path is None:
        print(f"Note not found: {note}")
    return path


def _format_link(link: LinkResult) -> str:
    line = f"  {link.note_path}"
    if link.note_title and link.note_title != link.note_path:
        line += f" ({link.note_title})"
    if link.heading_ref:
        line += f" #{link.heading_ref}"
    if link.block_ref:
        line += f" #^{link.block_ref}"
    if link.is_embed:
        line += " [embed]"
    return line


def _print_diagnose(results: list[DiagnoseResult], empty: str, found: str) -> None:
    if not results:
        print(empty)
        return
    print(f"Found {len(results)} {found}:\n")
    for r in results:
        print(f"  {r.note_path} ({r.note_title}) in:{r.incoming_count} out:{r.outgoing_count}")


# Commands


def cmd_init(args: argparse.Namespace, config: Config) -> int:
    print(f"Initializing database at: {config.database_path}")
    indexer = create_indexer(config)
    try:
        indexer.initialize(force=args.force)
        version = indexer.db.schema_version()
    finally:
        indexer.close()
    print(f"Database initialized successfully (schema version: {version})")
    return 0


def cmd_index(args: argparse.Namespace, config: Config) -> int:
    if not _require_database(config):
        return 1

    on_event = (lambda event: print(f"  {event}")) if args.verbose else None
    indexer = create_indexer(config)
    try:
        result = indexer.index(
            force=args.force,
            dry_run=args.dry_run,
            verbose=args.verbose,
            on_event=on_event,
        )
    finally:
        indexer.close()

    prefix = "Dry run: " if result.dry_run else ""
    print(
        f"{prefix}{result.scanned} scanned, {result.indexed} indexed, "
        f"{result.skipped} skipped, {result.removed} removed"
    )
    return 0


def cmd_search(args: argparse.Namespace, indexer: Indexer, config: Config) -> int:
    query = args.query.strip()
    if not query:
        print("Search query cannot be empty")
        return 1

    limit = args.limit or config.search_limit
    try:
        results = indexer.search(query, limit=limit)
    except sqlite3.OperationalError as e:
        print(f"Invalid query: {e}", file=sys.stderr)
        return 1
    if not results:
        print(f"No results for '{query}'")
        return 0

    for i, result in enumerate(results, 1):
        heading = f" > {result.heading_path}" if result.heading_path else ""
        print(f"{i}. {result.note_path}{heading} (rank: {result.rank:.4f})")
        snippet = " ".join(result.text.split())
        print(f"   {snippet[:200]}")
    return 0


def cmd_backlinks(args: argparse.Namespace, indexer: Indexer, config: Config) -> int:
    path = _resolve_or_report(indexer, args.note)
    if path is None:
        return 0

    links = indexer.get_backlinks(path)
    print(f"Backlinks to {path} ({len(links)}):")
    for link in links:
        print(_format_link(link))
    return 0


def cmd_links(args: argparse.Namespace, indexer: Indexer, config: Config) -> int:
    path = _resolve_or_report(indexer, args.note)
    if path is None:
        return 0

    links = indexer.get_forward_links(path)
    print(f"Links from {path} ({len(links)}):")
    for link in links:
        print(f"{_format_link(link)} {link.status}")
    return 0


def cmd_unresolved(args: argparse.Namespace, indexer: Indexer, config: Config) -> int:
    links = indexer.get_unresolved_links()
    if not links:
        print("No unresolved links found.")
        return 0

    print(f"Found {len(links)} unresolved link(s):\n")
    for link in links:
        print(f"  [[{link.target}]] in {link.note_path}")
    return 0


def cmd_tags(args: argparse.Namespace, indexer: Indexer, config: Config) -> int:
    if args.all or not args.tags:
        tags = indexer.list_tags()
        if not tags:
            print("No tags found.")
        for tag in tags:
            print(f"#{tag}")
        return 0

    tags = [tag.lstrip("#") for tag in args.tags]
    results = indexer.get_notes_by_tags(tags, match_all=args.match_all)
    if not results:
        print(f"No notes tagged {', '.join('#' + t for t in tags)}")
        return 0

    for r in results:
        print(f"  {r.note_path} ({r.note_title}) {' '.join('#' + t for t in r.tags)}")
    return 0


def cmd_diagnose(args: argparse.Namespace, indexer: Indexer, config: Config) -> int:
    exclude_templates = not args.include_templates
    exclude_daily = not args.include_daily

    if args.check == "orphans":
        print("=== ORPHANS (no incoming + no outgoing links) ===")
        _print_diagnose(
            indexer.get_orphans(exclude_templates, exclude_daily),
            "No orphan notes found.",
            "orphan note(s)",
        )
    elif args.check == "dead-ends":
        print("=== DEAD ENDS (has incoming but no outgoing links) ===")
        _print_diagnose(
            indexer.get_dead_ends(exclude_templates, exclude_daily),
            "No dead-end notes found.",
            "dead-end note(s)",
        )
    else:
        broken = indexer.diagnose_broken_links()
        print("=== BROKEN LINKS ===")
        if not broken:
            print("No broken links found! All links are valid.")
            return 0

        print(f"Found {len(broken)} broken link(s):\n")
        unresolved = [b for b in broken if b.status == "unresolved"]
        ambiguous = [b for b in broken if b.status == "ambiguous"]
        if unresolved:
            print(f"--- UNRESOLVED ({len(unresolved)}) ---")
            for i, link in enumerate(unresolved, 1):
                print(f"{i}. [[{link.target}]] (in {link.src_path})")
            print()
        if ambiguous:
            print(f"--- AMBIGUOUS ({len(ambiguous)}) ---")
            for i, link in enumerate(ambiguous, 1):
                print(f"{i}. [[{link.target}]] (in {link.src_path})")
                print(f"   Candidates: {', '.join(link.candidates)}")
    return 0


def cmd_describe(args: argparse.Namespace, indexer: Indexer, config: Config) -> int:
    path = _resolve_or_report(indexer, args.note)
    if path is None:
        return 0

    note = indexer.get_note(path)
    print("File Metadata:")
    print("=============")
    print(f"ID:          {note.id}")
    print(f"Title:       {note.title}")
    print(f"Path:        {note.path}")
    print(f"Modified:    {datetime.fromtimestamp(note.mtime).isoformat(sep=' ')}")
    print(f"Hash:        {note.hash}")
    print(f"Created:     {note.created_at}")
    print(f"Updated:     {note.updated_at}")
    if note.frontmatter:
        print("Frontmatter:")
        for key, value in sorted(note.frontmatter.items()):
            print(f"  {key}: {value}")
    tags = indexer.get_note_tags(note.id)
    if tags:
        print(f"Tags:        {' '.join('#' + t for t in tags)}")
    print(f"Chunks:      {len(indexer.get_chunks(note.id))}")
    return 0


def cmd_stats(args: argparse.Namespace, indexer: Indexer, config: Config) -> int:
    stats = indexer.get_stats()
    print(f"Vault:      {config.vault_path}")
    print(f"Database:   {config.database_path}")
    print(f"Notes:      {stats.note_count}")
    print(f"Links:      {stats.link_count} ({stats.unresolved_links} unresolved)")
    print(f"Tags:       {stats.tag_count}")
    print(f"Chunks:     {stats.chunk_count}")
    return 0


def cmd_serve(args: argparse.Namespace, config: Config) -> int:
    logger.info("=" * 50)
    logger.info("vault-inspector %s starting...", __version__)
    logger.info("  VAULT_PATH: %s", config.vault_path)
    logger.info("  VAULT_DB:   %s", config.database_path)
    logger.info("=" * 50)

    try:
        mcp = create_server(config)
        logger.info("Starting MCP server on stdio...")
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    return 0


QueryCommand = Callable[[argparse.Namespace, Indexer, Config], int]

QUERY_COMMANDS: dict[str, QueryCommand] = {
    "search": cmd_search,
    "backlinks": cmd_backlinks,
    "links": cmd_links,
    "unresolved-links": cmd_unresolved,
    "tags": cmd_tags,
    "diagnose": cmd_diagnose,
    "describe": cmd_describe,
    "stats": cmd_stats,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vault-inspector",
        description="vault-inspector - index and inspect a vault of markdown notes",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", type=Path, help="Path to a YAML config file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Create the index database")
    init.add_argument("--force", action="store_true", help="Drop and recreate all tables")

    index = subparsers.add_parser("index", help="Index new and changed notes")
    index.add_argument("-n", "--dry-run", action="store_true", help="Report without writing")
    index.add_argument("-f", "--force", action="store_true", help="Re-index unchanged notes")
    index.add_argument("-v", "--verbose", action="store_true", help="Print every indexing step")

    search = subparsers.add_parser("search", help="Full-text search (FTS5 syntax)")
    search.add_argument("query")
    search.add_argument("-l", "--limit", type=int, default=None, help="Maximum results")

    backlinks = subparsers.add_parser("backlinks", help="Notes linking to NOTE")
    backlinks.add_argument("note", help="Note path or title")

    links = subparsers.add_parser("links", help="Links going out of NOTE")
    links.add_argument("note", help="Note path or title")

    subparsers.add_parser("unresolved-links", help="Links that match no note")

    tags = subparsers.add_parser("tags", help="List tags or notes by tag")
    tags.add_argument("tags", nargs="*", metavar="TAG")
    tags.add_argument("--all", action="store_true", help="List every tag")
    tags.add_argument("--match-all", action="store_true", help="Require every TAG")

    diagnose = subparsers.add_parser("diagnose", help="Find structural problems")
    diagnose.add_argument("check", choices=["broken", "orphans", "dead-ends"])
    diagnose.add_argument("--include-templates", action="store_true")
    diagnose.add_argument("--include-daily", action="store_true")

    describe = subparsers.add_parser("describe", help="Show stored metadata of NOTE")
    describe.add_argument("note", help="Note path or title")

    subparsers.add_parser("stats", help="Show index counters")
    subparsers.add_parser("serve", help="Run the MCP server on stdio")

    return parser


def _dispatch(args: argparse.Namespace, config: Config) -> int:
    if args.command == "init":
        return cmd_init(args, config)
    if args.command == "index":
        return cmd_index(args, config)
    if args.command == "serve":
        return cmd_serve(args, config)

    if not _require_database(config):
        return 1

    indexer = create_indexer(config)
    try:
        return QUERY_COMMANDS[args.command](args, indexer, config)
    finally:
        indexer.close()


def run(argv: list[str] | None = None) -> int:
    """Parse arguments, run one command and return its exit code."""
    args = build_parser().parse_args(argv)

    # Configure logging here to avoid side effects on import
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    try:
        config = Config.from_env(config_file=args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    file_handler = None
    if config.log_dir is not None:
        file_handler = setup_file_logging(config.log_dir, args.command)

    try:
        return _dispatch(args, config)
    except IndexingError as e:
        logger.error("Indexing failed at step '%s' for %s", e.step, e.path)
        print(f"Indexing failed: {e}", file=sys.stderr)
        return 1
    except sqlite3.Error as e:
        logger.error("Database error: %s", e)
        print(f"Database error: {e}", file=sys.stderr)
        return 1
    finally:
        if file_handler is not None:
            logging.getLogger().removeHandler(file_handler)
            file_handler.close()


def main() -> None:
    """Main function - runs the command-line interface."""
    sys.exit(run())


if __name__ == "__main__":
    main()
