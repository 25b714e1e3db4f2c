"""Tests for the CLI module."""

import json
import os

import pytest

from agentic_memory.cli import build_parser, create_manager, main, setup_logging
from agentic_memory.storage import MemoryStore
from agentic_memory.types import MemoryType, Visibility

from conftest import make_input


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep the caller's config files and environment out of the CLI."""
    for name in list(os.environ):
        if name.startswith("AGENTIC_MEMORY_"):
            monkeypatch.delenv(name)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def seeded_db(db_path):
    """A database holding a few memories."""
    with MemoryStore(db_path) as store:
        store.create(make_input(
            title="Use JWT for auth",
            content="Stateless tokens for the public API",
            memory_type=MemoryType.DECISION,
            importance=8,
            concepts=["auth"],
        ))
        store.create(make_input(title="Flaky CI job", importance=2))
        store.create(make_input(title="Salary notes", visibility=Visibility.PRIVATE))
    return db_path


def run(db_path, *argv):
    return main(["--db", db_path, "--no-embeddings", *argv])


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_logging_default(self):
        """Test default logging setup."""
        setup_logging(verbose=False)

    def test_setup_logging_verbose(self):
        """Test verbose logging setup."""
        setup_logging(verbose=True)


class TestParser:
    """Tests for argument parsing."""

    def test_search_arguments(self):
        """Test search options."""
        args = build_parser().parse_args([
            "search", "jwt", "-n", "3", "--type", "decision", "--type", "note",
            "--include-private",
        ])

        assert args.query == "jwt"
        assert args.limit == 3
        assert args.types == ["decision", "note"]
        assert args.include_private is True

    def test_invalid_type_rejected(self):
        """Test that unknown memory types are refused."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["search", "x", "--type", "rumor"])

    def test_create_manager_overrides(self, db_path):
        """Test that flags reach the configuration."""
        args = build_parser().parse_args(["--db", db_path, "--no-embeddings", "stats"])

        manager = create_manager(args)
        try:
            assert manager.config.db_path == db_path
            assert manager.embeddings_enabled is False
        finally:
            manager.close()


class TestMain:
    """Tests for main function."""

    def test_no_command(self, capsys):
        """Test that help is printed without a command."""
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_stats(self, seeded_db, capsys):
        """Test the stats command."""
        assert run(seeded_db, "stats") == 0

        output = capsys.readouterr().out
        assert "Total memories: 3" in output
        assert "decision: 1" in output
        assert "private: 1" in output

    def test_search(self, seeded_db, capsys):
        """Test the search command."""
        assert run(seeded_db, "search", "jwt") == 0

        output = capsys.readouterr().out
        assert "Found 1 matching memories" in output
        assert "[decision] Use JWT for auth" in output
        assert "Match: fts" in output
        assert "Tags: auth" in output

    def test_search_no_results(self, seeded_db, capsys):
        """Test a search with no matches."""
        assert run(seeded_db, "search", "kubernetes") == 0
        assert "No memories found" in capsys.readouterr().out

    def test_search_private(self, seeded_db, capsys):
        """Test that private memories need a flag."""
        run(seeded_db, "search", "salary")
        assert "No memories found" in capsys.readouterr().out

        run(seeded_db, "search", "salary", "--include-private")
        assert "Salary notes" in capsys.readouterr().out

    def test_recent(self, seeded_db, capsys):
        """Test the recent command."""
        assert run(seeded_db, "recent", "-n", "5") == 0

        output = capsys.readouterr().out
        assert "Use JWT for auth" in output
        assert "Salary notes" not in output

    def test_show(self, seeded_db, capsys):
        """Test showing a memory as JSON."""
        assert run(seeded_db, "show", "1") == 0

        data = json.loads(capsys.readouterr().out)
        assert data["title"] == "Use JWT for auth"
        assert data["access_count"] == 1

    def test_show_missing(self, seeded_db, capsys):
        """Test showing an unknown id."""
        assert run(seeded_db, "show", "99") == 1
        assert "not found" in capsys.readouterr().out

    def test_forget(self, seeded_db, capsys):
        """Test deleting a memory."""
        assert run(seeded_db, "forget", "2") == 0
        assert run(seeded_db, "forget", "2") == 1

        with MemoryStore(seeded_db) as store:
            assert store.peek(2) is None

    def test_prune_max(self, seeded_db, capsys):
        """Test trimming to a maximum count."""
        assert run(seeded_db, "prune", "--max", "2") == 0
        assert "Pruned 1 memories" in capsys.readouterr().out

        with MemoryStore(seeded_db) as store:
            assert store.peek(2) is None

    def test_prune_negative_max(self, seeded_db, capsys):
        """Test that a negative maximum is reported and deletes nothing."""
        assert run(seeded_db, "prune", "--max", "-1") == 1
        assert "must be non-negative" in capsys.readouterr().out

        with MemoryStore(seeded_db) as store:
            assert store.count(include_private=True) == 3

    def test_prune_with_config_defaults(self, seeded_db, capsys):
        """Test running the configured retention policy."""
        assert run(seeded_db, "prune") == 0

        output = capsys.readouterr().out
        assert "retention: 0 deleted" in output
        assert "max_limit: 0 deleted" in output

    def test_optimize_and_rebuild(self, seeded_db, capsys):
        """Test index maintenance commands."""
        assert run(seeded_db, "optimize") == 0
        assert run(seeded_db, "rebuild") == 0
        output = capsys.readouterr().out
        assert "optimized" in output
        assert "rebuilt" in output

    def test_backfill_requires_embeddings(self, seeded_db, capsys):
        """Test backfill with embeddings turned off."""
        assert run(seeded_db, "backfill") == 1
        assert "Embeddings are disabled" in capsys.readouterr().out

    def test_export_and_import(self, seeded_db, tmp_path, capsys):
        """Test moving memories between databases."""
        export_path = str(tmp_path / "export.json")
        target_db = str(tmp_path / "target.db")

        assert run(seeded_db, "export", export_path) == 0
        assert run(target_db, "import", export_path) == 0

        output = capsys.readouterr().out
        assert "Exported 3 memories" in output
        assert "Imported 3 memories" in output
        with MemoryStore(target_db) as store:
            assert store.count(include_private=True) == 3

    def test_import_missing_file(self, db_path, tmp_path, capsys):
        """Test importing a file that does not exist."""
        assert run(db_path, "import", str(tmp_path / "nope.json")) == 1
        assert "File not found" in capsys.readouterr().out

    def test_import_invalid_memory(self, db_path, tmp_path, capsys):
        """Test that invalid records are reported as errors."""
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([{"type": "note", "title": "", "content": "x"}]))

        assert run(db_path, "import", str(path)) == 1
        assert "Error: title is required" in capsys.readouterr().out
