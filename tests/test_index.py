"""Tests for the SQLite FTS5 search index."""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest
from pathlib import Path

from linkmem.memory.codec import Memory
from linkmem.memory.index import SearchBackend, SqliteSearchIndex, build_match_query


def _memory(memory_id: str, title: str, content: str, category: str = "general", tags=None) -> Memory:
    return Memory(id=memory_id, title=title, category=category, content=content, tags=tags or [])


@pytest.fixture
def index(tmp_path: Path) -> Iterator[SqliteSearchIndex]:
    idx = SqliteSearchIndex(tmp_path / "index")
    idx.initialize()
    yield idx
    idx.close()


class TestLifecycle:
    def test_artifact_created(self, index: SqliteSearchIndex):
        assert index.artifact_path.name == "memory-index.sqlite"
        assert index.artifact_path.exists()
        assert isinstance(index, SearchBackend)

    def test_uninitialized_raises(self, tmp_path: Path):
        with pytest.raises(RuntimeError):
            SqliteSearchIndex(tmp_path).size()

    def test_destroy_removes_artifact(self, index: SqliteSearchIndex):
        index.destroy()
        assert not index.artifact_path.exists()

    def test_commit_touches_artifact_mtime(self, index: SqliteSearchIndex):
        os.utime(index.artifact_path, ns=(1_000_000_000, 1_000_000_000))
        index.index_document(_memory("1", "Note", "body"))
        assert index.artifact_path.stat().st_mtime_ns != 1_000_000_000

    def test_search_does_not_touch_artifact_mtime(self, index: SqliteSearchIndex):
        index.index_document(_memory("1", "Note", "body"))
        os.utime(index.artifact_path, ns=(1_000_000_000, 1_000_000_000))
        index.search("body")
        assert index.artifact_path.stat().st_mtime_ns == 1_000_000_000


class TestDocuments:
    def test_index_replaces_entry(self, index: SqliteSearchIndex):
        index.index_document(_memory("1", "Note", "first version"))
        index.index_document(_memory("1", "Note", "second version"))
        assert index.size() == 1
        assert index.search("first") == []
        assert [h.id for h in index.search("second")] == ["1"]

    def test_remove_and_clear(self, index: SqliteSearchIndex):
        index.index_document(_memory("1", "A", "alpha"))
        index.index_document(_memory("2", "B", "beta"))
        index.remove_document("1")
        assert index.size() == 1
        index.clear()
        assert index.size() == 0


class TestSearch:
    @pytest.fixture(autouse=True)
    def corpus(self, index: SqliteSearchIndex):
        index.index_document(_memory("1", "Kubernetes", "Cluster notes", "ops", ["infra"]))
        index.index_document(
            _memory("2", "Weekly notes", "Talked about kubernetes upgrades and budget", "general")
        )
        index.index_document(_memory("3", "Recipes", "Bread and soup", "home", ["food"]))

    def test_title_outranks_body(self, index: SqliteSearchIndex):
        hits = index.search("kubernetes")
        assert [h.id for h in hits] == ["1", "2"]
        assert hits[0].score >= hits[1].score

    def test_terms_are_ored(self, index: SqliteSearchIndex):
        assert {h.id for h in index.search("bread kubernetes")} == {"1", "2", "3"}

    def test_filters(self, index: SqliteSearchIndex):
        assert [h.id for h in index.search("kubernetes", category="ops")] == ["1"]
        assert [h.id for h in index.search("kubernetes", tags=["infra"])] == ["1"]
        assert index.search("kubernetes", tags=["food"]) == []

    def test_limit(self, index: SqliteSearchIndex):
        assert len(index.search("kubernetes", limit=1)) == 1

    def test_snippet_and_tags(self, index: SqliteSearchIndex):
        hit = index.search("budget")[0]
        assert "**budget**" in hit.snippet
        assert index.search("bread")[0].tags == ["food"]

    def test_user_syntax_is_quoted(self, index: SqliteSearchIndex):
        assert [h.id for h in index.search('soup" OR "x')] == ["3"]
        assert index.search("NOT OR NEAR") == []
        assert {h.id for h in index.search("soup AND")} == {"2", "3"}
        assert index.search("   ") == []

    def test_build_match_query(self):
        assert build_match_query("a b") == '"a" OR "b"'
