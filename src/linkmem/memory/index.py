"""Full-text search over memories.

The index is derived data: it can be dropped and rebuilt from the store at any
time. ``SqliteSearchIndex`` keeps one FTS5 table in a single SQLite file, the
*artifact*, whose mtime the index registry watches to detect outside writes.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from linkmem.memory.codec import Memory

logger = logging.getLogger(__name__)

INDEX_FILENAME = "memory-index.sqlite"

# bm25() weights, one per column of the table below.
_COLUMN_WEIGHTS = (0.0, 10.0, 1.0, 3.0, 0.0)


@dataclass
class SearchHit:
    id: str
    title: str
    category: str
    score: float = 0.0
    snippet: str = ""
    tags: list[str] = field(default_factory=list)


@runtime_checkable
class SearchBackend(Protocol):
    """What the memory service needs from a search engine."""

    @property
    def artifact_path(self) -> Path: ...

    def initialize(self) -> None: ...

    def index_document(self, memory: Memory) -> None:
        """Insert or replace the entry for ``memory.id``."""
        ...

    def remove_document(self, memory_id: str) -> None: ...

    def search(
        self,
        query: str,
        limit: int = 10,
        category: str | None = None,
        tags: list[str] | None = None,
    ) -> list[SearchHit]: ...

    def clear(self) -> None: ...

    def size(self) -> int: ...

    def close(self) -> None:
        """Release the handle, keeping the artifact on disk."""
        ...

    def destroy(self) -> None:
        """Release the handle and delete the artifact."""
        ...


def build_match_query(query: str) -> str:
    """Quote every term and OR them together so user text is never FTS syntax.

    >>> build_match_query("deploy prod notes")
    '"deploy" OR "prod" OR "notes"'
    """
    terms = [t for t in query.split() if t]
    return " OR ".join('"' + t.replace('"', '""') + '"' for t in terms)


class SqliteSearchIndex:
    """SQLite FTS5 index stored at ``<index_dir>/memory-index.sqlite``."""

    def __init__(self, index_dir: Path) -> None:
        self.index_dir = Path(index_dir)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def artifact_path(self) -> Path:
        return self.index_dir / INDEX_FILENAME

    def initialize(self) -> None:
        with self._lock:
            if self._conn is not None:
                return
            self.index_dir.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.artifact_path, check_same_thread=False)
            # Rollback journal: every commit rewrites the main file and its mtime.
            conn.execute("PRAGMA journal_mode=DELETE")
            conn.execute(
                """CREATE VIRTUAL TABLE IF NOT EXISTS memory_fts USING fts5(
                    memory_id UNINDEXED,
                    title,
                    content,
                    tags,
                    category UNINDEXED,
                    tokenize='unicode61'
                )"""
            )
            conn.commit()
            self._conn = conn
            logger.debug("Opened search index at %s", self.artifact_path)

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Search index is not initialized")
        return self._conn

    def index_document(self, memory: Memory) -> None:
        with self._lock:
            conn = self._connection()
            conn.execute("DELETE FROM memory_fts WHERE memory_id = ?", (memory.id,))
            conn.execute(
                "INSERT INTO memory_fts (memory_id, title, content, tags, category) "
                "VALUES (?, ?, ?, ?, ?)",
                (memory.id, memory.title, memory.content, "\n".join(memory.tags), memory.category),
            )
            conn.commit()

    def remove_document(self, memory_id: str) -> None:
        with self._lock:
            conn = self._connection()
            conn.execute("DELETE FROM memory_fts WHERE memory_id = ?", (memory_id,))
            conn.commit()

    def search(
        self,
        query: str,
        limit: int = 10,
        category: str | None = None,
        tags: list[str] | None = None,
    ) -> list[SearchHit]:
        match = build_match_query(query)
        if not match:
            return []
        weights = ", ".join(str(w) for w in _COLUMN_WEIGHTS)
        sql = (
            "SELECT memory_id, title, category, tags, "
            f"bm25(memory_fts, {weights}) AS score, "
            "snippet(memory_fts, 2, '**', '**', '...', 24) "
            "FROM memory_fts WHERE memory_fts MATCH ?"
        )
        params: list = [match]
        if category:
            sql += " AND category = ?"
            params.append(category)
        sql += " ORDER BY score"
        if not tags:
            sql += " LIMIT ?"
            params.append(limit)

        with self._lock:
            rows = self._connection().execute(sql, params).fetchall()

        hits = []
        for memory_id, title, cat, tag_text, score, snippet in rows:
            hit_tags = tag_text.split("\n") if tag_text else []
            if tags and not set(tags) & set(hit_tags):
                continue
            hits.append(SearchHit(memory_id, title, cat, -score, snippet, hit_tags))
            if len(hits) >= limit:
                break
        return hits

    def clear(self) -> None:
        with self._lock:
            conn = self._connection()
            conn.execute("DELETE FROM memory_fts")
            conn.commit()

    def size(self) -> int:
        with self._lock:
            return self._connection().execute("SELECT COUNT(*) FROM memory_fts").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def destroy(self) -> None:
        self.close()
        for suffix in ("", "-journal"):
            path = self.artifact_path.with_name(INDEX_FILENAME + suffix)
            path.unlink(missing_ok=True)
        logger.debug("Removed search index at %s", self.artifact_path)
