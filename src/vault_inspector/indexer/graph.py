"""Link graph queries and structural diagnostics over the index.

Resolution happens at index time and picks the first matching note. The
diagnostics here are exhaustive instead: a link that resolved can still be
reported as ambiguous when more than one note matches its target.
"""

import logging

from vault_inspector.indexer.database import Database
from vault_inspector.indexer.models import BrokenLink, DiagnoseResult, LinkResult
from vault_inspector.indexer.parser import normalize_note_identifier

logger = logging.getLogger(__name__)

STATUS_UNRESOLVED = "unresolved"
STATUS_AMBIGUOUS = "ambiguous"


def resolve_note(db: Database, identifier: str) -> str | None:
    """
    Map user input to the path of an indexed note.

    Tries the identifier as an exact path first, then as a link target
    (path with or without ".md", basename, or title). Returns None if unknown.
    """
    if db.get_note_id(identifier) is not None:
        return identifier

    target = normalize_note_identifier(identifier)
    if not target:
        return None

    candidates = db.find_note_candidates(target)
    if len(candidates) > 1:
        logger.debug("'%s' matches %d notes, using %s", identifier, len(candidates), candidates[0])
    return candidates[0] if candidates else None


def get_backlinks(db: Database, target_path: str) -> list[LinkResult]:
    """Links pointing at the note, ordered by source path."""
    note_id = db.get_note_id(target_path)
    if note_id is None:
        return []
    return db.get_links_to(note_id)


def get_forward_links(db: Database, source_path: str) -> list[LinkResult]:
    """Links leaving the note. Unresolved entries carry the raw target as identity."""
    note_id = db.get_note_id(source_path)
    if note_id is None:
        return []
    return db.get_links_from(note_id)


def get_unresolved_links(db: Database) -> list[LinkResult]:
    """Every link without a destination, ordered by target then source path."""
    return db.get_unresolved_links()


def diagnose_broken_links(db: Database) -> list[BrokenLink]:
    """
    Report unresolved links followed by ambiguous ones.

    A resolved link is ambiguous when its target matches two or more notes;
    all matching paths are listed as candidates.
    """
    unresolved = sorted(db.get_unresolved_links(), key=lambda link: (link.note_path, link.target))
    results = [
        BrokenLink(
            src_path=link.note_path,
            src_title=link.note_title,
            raw_link=link.alias or "",
            target=link.target,
            status=STATUS_UNRESOLVED,
        )
        for link in unresolved
    ]

    candidate_cache: dict[str, list[str]] = {}
    for link in db.get_resolved_links():
        if link.target not in candidate_cache:
            candidate_cache[link.target] = db.find_note_candidates(link.target)
        candidates = candidate_cache[link.target]
        if len(candidates) > 1:
            results.append(
                BrokenLink(
                    src_path=link.note_path,
                    src_title=link.note_title,
                    raw_link=link.alias or "",
                    target=link.target,
                    status=STATUS_AMBIGUOUS,
                    candidates=list(candidates),
                )
            )

    return results


def is_template_path(path: str) -> bool:
    lowered = path.lower()
    return lowered.startswith("templates/") or "/templates/" in lowered or "/template" in lowered


def is_daily_note(path: str, title: str) -> bool:
    lowered = path.lower()
    return lowered.startswith("daily/") or "/daily/" in lowered or "daily" in title.lower()


def _excluded(
    result: DiagnoseResult,
    exclude_templates: bool,
    exclude_daily: bool,
) -> bool:
    if exclude_templates and is_template_path(result.note_path):
        return True
    if exclude_daily and is_daily_note(result.note_path, result.note_title):
        return True
    return False


def get_orphans(
    db: Database,
    exclude_templates: bool = True,
    exclude_daily: bool = True,
) -> list[DiagnoseResult]:
    """Notes with neither incoming nor outgoing links."""
    return [
        result
        for result in db.note_link_counts()
        if result.incoming_count == 0
        and result.outgoing_count == 0
        and not _excluded(result, exclude_templates, exclude_daily)
    ]


def get_dead_ends(
    db: Database,
    exclude_templates: bool = True,
    exclude_daily: bool = True,
) -> list[DiagnoseResult]:
    """Notes that are linked to but link nowhere."""
    return [
        result
        for result in db.note_link_counts()
        if result.incoming_count > 0
        and result.outgoing_count == 0
        and not _excluded(result, exclude_templates, exclude_daily)
    ]
