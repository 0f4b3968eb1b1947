"""Tests for the SQLite database module."""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from vault_inspector.indexer.database import Database
from vault_inspector.indexer.models import UNRESOLVED_NOTE_ID


@pytest.fixture
def db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        database = Database(db_path)
        database.initialize()
        yield database
        database.close()


def add_note(db: Database, path: str, title: str = "", links: list[str] | None = None) -> int:
    with db.transaction() as tx:
        note_id = tx.insert_note(path, title, 1, "h")
        for target in links or []:
            tx.insert_link(note_id, target, "wiki", False)
    return note_id


class TestDatabaseInitialization:
    def test_creates_database_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "test.db"
            db = Database(db_path)
            db.initialize()
            assert db_path.exists()
            db.close()

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "nested" / "dir" / "test.db"
            db = Database(db_path)
            db.initialize()
            assert db_path.exists()
            db.close()

    def test_schema_version(self, db: Database):
        assert db.schema_version() == "1"

    def test_is_initialized(self, tmp_path: Path):
        db = Database(tmp_path / "test.db")
        try:
            assert db.is_initialized() is False
            db.initialize()
            assert db.is_initialized() is True
        finally:
            db.close()

    def test_initialize_is_idempotent(self, db: Database):
        add_note(db, "a.md")
        db.initialize()
        assert db.list_note_paths() == {"a.md"}

    def test_force_drops_data(self, db: Database):
        add_note(db, "a.md")
        db.initialize(force=True)
        assert db.list_note_paths() == set()
        assert db.schema_version() == "1"


class TestNoteOperations:
    def test_insert_and_get(self, db: Database):
        with db.transaction() as tx:
            note_id = tx.insert_note("dir/a.md", "A", 1700000000, "ff:1", '{"status": "draft"}')

        note = db.get_note("dir/a.md")
        assert note is not None
        assert note.id == note_id
        assert note.title == "A"
        assert note.mtime == 1700000000
        assert note.hash == "ff:1"
        assert note.frontmatter == {"status": "draft"}
        assert note.created_at is not None

    def test_upsert_keeps_id(self, db: Database):
        with db.transaction() as tx:
            first = tx.insert_note("a.md", "Old", 1, "h1")
            second = tx.insert_note("a.md", "New", 2, "h2")

        assert first == second
        metadata = db.get_note_metadata_by_path("a.md")
        assert (metadata.id, metadata.mtime, metadata.hash) == (first, 2, "h2")

    def test_missing_note(self, db: Database):
        assert db.get_note("missing.md") is None
        assert db.get_note_id("missing.md") is None
        assert db.get_note_metadata_by_path("missing.md") is None

    def test_list_notes_ordered(self, db: Database):
        add_note(db, "b.md")
        add_note(db, "a.md")
        assert [n.path for n in db.list_notes()] == ["a.md", "b.md"]

    def test_delete_note_cascades(self, db: Database):
        with db.transaction() as tx:
            note_id = tx.insert_note("a.md", "A", 1, "h")
            tx.insert_tag(note_id, "t")
            tx.insert_chunk(note_id, None, "some text", 0, 9)
            tx.insert_link(note_id, "Other", "wiki", False)

        with db.transaction() as tx:
            tx.delete_note("a.md")

        stats = db.get_stats()
        assert (stats.note_count, stats.tag_count, stats.chunk_count, stats.link_count) == (0, 0, 0, 0)
        assert db.search_chunks("text") == []


class TestTransactions:
    def test_rollback_on_exception(self, db: Database):
        with pytest.raises(RuntimeError):
            with db.transaction() as tx:
                tx.insert_note("a.md", "A", 1, "h")
                raise RuntimeError("boom")

        assert db.get_note("a.md") is None

    def test_commit_on_success(self, db: Database):
        with db.transaction() as tx:
            tx.insert_note("a.md", "A", 1, "h")

        db.close()
        assert db.get_note("a.md") is not None

    def test_list_note_paths_inside_transaction(self, db: Database):
        add_note(db, "a.md")
        with db.transaction() as tx:
            tx.insert_note("b.md", "B", 1, "h")
            assert tx.list_note_paths() == {"a.md", "b.md"}


class TestLinks:
    def test_resolved_at_insert(self, db: Database):
        target_id = add_note(db, "Target.md", "Target")
        with db.transaction() as tx:
            src = tx.insert_note("src.md", "Src", 1, "h")
            assert tx.insert_link(src, "Target", "wiki", False) == target_id

    def test_unresolved_at_insert(self, db: Database):
        with db.transaction() as tx:
            src = tx.insert_note("src.md", "Src", 1, "h")
            assert tx.insert_link(src, "Nowhere", "wiki", False) is None

    def test_resolve_links_binds_later_notes(self, db: Database):
        add_note(db, "src.md", links=["Later"])
        later_id = add_note(db, "Later.md")

        with db.transaction() as tx:
            assert tx.resolve_links() == 0

        src_id = db.get_note_id("src.md")
        links = db.get_links_from(src_id)
        assert [(link.note_id, link.note_path) for link in links] == [(later_id, "Later.md")]

    @pytest.mark.parametrize(
        "path,title,target",
        [
            ("Exact", "", "Exact"),
            ("WithExt.md", "", "WithExt"),
            ("deep/folder/Base.md", "", "Base"),
            ("deep/folder/Base.md", "", "folder/Base"),
            ("x.md", "Special Title", "Special Title"),
        ],
    )
    def test_match_rule(self, db: Database, path: str, title: str, target: str):
        note_id = add_note(db, path, title)
        with db.transaction() as tx:
            src = tx.insert_note("src.md", "", 1, "h")
            assert tx.insert_link(src, target, "wiki", False) == note_id

    def test_basename_requires_separator(self, db: Database):
        add_note(db, "NotBase.md")
        assert db.find_note_candidates("Base") == []

    def test_first_match_by_id(self, db: Database):
        first = add_note(db, "a/Dup.md")
        add_note(db, "b/Dup.md")
        with db.transaction() as tx:
            src = tx.insert_note("src.md", "", 1, "h")
            assert tx.insert_link(src, "Dup", "wiki", False) == first

        assert db.find_note_candidates("Dup") == ["a/Dup.md", "b/Dup.md"]

    def test_forward_link_unresolved_identity(self, db: Database):
        src = add_note(db, "src.md", links=["Ghost"])
        link = db.get_links_from(src)[0]

        assert link.note_id == UNRESOLVED_NOTE_ID
        assert link.note_path == "Ghost"
        assert link.resolved is False
        assert link.status == "[unresolved]"

    def test_deleting_target_unresolves_inbound(self, db: Database):
        add_note(db, "Target.md")
        add_note(db, "src.md", links=["Target"])

        with db.transaction() as tx:
            tx.delete_note("Target.md")

        assert [link.target for link in db.get_unresolved_links()] == ["Target"]

    def test_clear_note_data(self, db: Database):
        with db.transaction() as tx:
            note_id = tx.insert_note("a.md", "A", 1, "h")
            tx.insert_tag(note_id, "t")
            tx.insert_link(note_id, "X", "wiki", False)
            tx.insert_chunk(note_id, "# A", "chunk", 0, 5)
            tx.clear_note_data(note_id)

        assert db.get_chunks(note_id) == []
        assert db.get_note_tags(note_id) == []
        assert db.get_links_from(note_id) == []
        assert db.get_note("a.md") is not None

    def test_note_link_counts(self, db: Database):
        add_note(db, "a.md", links=["b"])
        add_note(db, "b.md")
        with db.transaction() as tx:
            tx.resolve_links()

        counts = {r.note_path: (r.incoming_count, r.outgoing_count) for r in db.note_link_counts()}
        assert counts == {"a.md": (0, 1), "b.md": (1, 0)}


class TestTags:
    @pytest.fixture
    def tagged(self, db: Database) -> Database:
        with db.transaction() as tx:
            a = tx.insert_note("a.md", "A", 1, "h")
            b = tx.insert_note("b.md", "B", 1, "h")
            tx.insert_tag(a, "work")
            tx.insert_tag(a, "urgent")
            tx.insert_tag(a, "work")
            tx.insert_tag(b, "work")
        return db

    def test_list_tags(self, tagged: Database):
        assert tagged.list_tags() == ["urgent", "work"]

    def test_duplicate_tags_ignored(self, tagged: Database):
        note_id = tagged.get_note_id("a.md")
        assert tagged.get_note_tags(note_id) == ["urgent", "work"]

    def test_notes_by_tag(self, tagged: Database):
        results = tagged.get_notes_by_tags(["work"])
        assert [r.note_path for r in results] == ["a.md", "b.md"]
        assert results[0].tags == ["urgent", "work"]

    def test_match_any_and_all(self, tagged: Database):
        any_results = tagged.get_notes_by_tags(["work", "urgent"])
        all_results = tagged.get_notes_by_tags(["work", "urgent"], match_all=True)

        assert [r.note_path for r in any_results] == ["a.md", "b.md"]
        assert [r.note_path for r in all_results] == ["a.md"]

    def test_unknown_tag(self, tagged: Database):
        assert tagged.get_notes_by_tags(["nope"]) == []
        assert tagged.get_notes_by_tags([]) == []


class TestSearch:
    @pytest.fixture
    def indexed(self, db: Database) -> Database:
        with db.transaction() as tx:
            a = tx.insert_note("a.md", "Alpha", 1, "h")
            b = tx.insert_note("b.md", "Beta", 1, "h")
            tx.insert_chunk(a, "# Alpha", "Rust ownership and borrowing rules", 0, 34)
            tx.insert_chunk(b, "# Beta > ## Rust", "Async runtimes compared", 0, 23)
            tx.insert_chunk(b, None, "Gardening notes about tomatoes", 40, 30)
        return db

    def test_matches_text(self, indexed: Database):
        results = indexed.search_chunks("ownership")
        assert len(results) == 1
        assert results[0].note_path == "a.md"
        assert results[0].note_title == "Alpha"
        assert results[0].heading_path == "# Alpha"

    def test_matches_heading_path(self, indexed: Database):
        results = indexed.search_chunks("rust")
        assert {r.note_path for r in results} == {"a.md", "b.md"}

    def test_ranked_ascending(self, indexed: Database):
        results = indexed.search_chunks("rust")
        ranks = [r.rank for r in results]
        assert ranks == sorted(ranks)

    def test_limit(self, indexed: Database):
        assert len(indexed.search_chunks("rust", limit=1)) == 1

    def test_no_results(self, indexed: Database):
        assert indexed.search_chunks("kubernetes") == []

    def test_invalid_query_raises(self, indexed: Database):
        with pytest.raises(sqlite3.OperationalError):
            indexed.search_chunks('"unbalanced')

    def test_chunks_removed_from_fts(self, indexed: Database):
        with indexed.transaction() as tx:
            tx.clear_note_data(indexed.get_note_id("b.md"))
        assert indexed.search_chunks("tomatoes") == []


class TestStats:
    def test_empty(self, db: Database):
        stats = db.get_stats()
        assert stats.note_count == 0
        assert stats.unresolved_links == 0

    def test_counts(self, db: Database):
        with db.transaction() as tx:
            a = tx.insert_note("a.md", "A", 1, "h")
            tx.insert_note("b.md", "B", 1, "h")
            tx.insert_link(a, "b", "wiki", False)
            tx.insert_link(a, "missing", "markdown", False)
            tx.insert_tag(a, "x")
            tx.insert_chunk(a, None, "text", 0, 4)

        stats = db.get_stats()
        assert (stats.note_count, stats.link_count, stats.tag_count, stats.chunk_count) == (2, 2, 1, 1)
        assert stats.unresolved_links == 1
