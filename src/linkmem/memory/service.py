"""Async facade over the store, link graph, auditor and search index.

Files are written first; the index is updated afterwards. A failed index update
is logged and left for the registry's staleness check to repair on the next
``IndexRegistry.get_service`` call.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from linkmem.config import LinkmemConfig
from linkmem.errors import ValidationError
from linkmem.memory.audit import AuditReport, ConsistencyAuditor, ReviewItem
from linkmem.memory.codec import KNOWN_FIELDS, Memory, utc_now
from linkmem.memory.index import SearchBackend, SearchHit, SqliteSearchIndex
from linkmem.memory.links import LinkManager, RepairResult
from linkmem.memory.store import DEFAULT_CATEGORY, MemoryStore, UpdateResult

logger = logging.getLogger(__name__)

_INDEX_ERRORS = (sqlite3.Error, OSError, RuntimeError)


class MemoryService:
    """One store directory paired with one search index."""

    def __init__(
        self,
        store_dir: Path,
        index_dir: Path,
        *,
        config: LinkmemConfig | None = None,
        backend: SearchBackend | None = None,
        on_index_write: Callable[[], None] | None = None,
    ) -> None:
        self.store_dir = Path(store_dir)
        self.index_dir = Path(index_dir)
        self.store = MemoryStore(self.store_dir)
        self.links = LinkManager(self.store)
        self.auditor = ConsistencyAuditor(self.store)
        self.index: SearchBackend = backend or SqliteSearchIndex(self.index_dir)
        self.config = config or LinkmemConfig()
        self._on_index_write = on_index_write

    # ── Lifecycle ─────────────────────────────────────────────

    async def initialize(self) -> None:
        await asyncio.to_thread(self.index.initialize)

    async def reindex(self) -> int:
        """Drop every index entry and rebuild from the files. Returns the count indexed."""
        await self.initialize()
        memories = await asyncio.to_thread(lambda: list(self.store.list_all()))
        await asyncio.to_thread(self.index.clear)
        for memory in memories:
            await asyncio.to_thread(self.index.index_document, memory)
        self._index_written()
        logger.info("Reindexed %d memories from %s", len(memories), self.store_dir)
        return len(memories)

    async def close(self) -> None:
        await asyncio.to_thread(self.index.close)

    async def destroy(self) -> None:
        """Close the index and delete its artifact. Memory files are untouched."""
        await asyncio.to_thread(self.index.destroy)

    # ── Index maintenance ─────────────────────────────────────

    def _index_written(self) -> None:
        if self._on_index_write is not None:
            self._on_index_write()

    async def _push(self, *memories: Memory) -> None:
        try:
            for memory in memories:
                await asyncio.to_thread(self.index.index_document, memory)
        except _INDEX_ERRORS as e:
            logger.warning("Failed to update search index: %s", e)
            return
        self._index_written()

    async def _push_ids(self, memory_ids: list[str]) -> None:
        memories = []
        for memory_id in dict.fromkeys(memory_ids):
            memory = await asyncio.to_thread(self.store.read_by_id, memory_id)
            if memory is not None:
                memories.append(memory)
        await self._push(*memories)

    async def _drop(self, memory_id: str) -> None:
        try:
            await asyncio.to_thread(self.index.remove_document, memory_id)
        except _INDEX_ERRORS as e:
            logger.warning("Failed to remove %s from search index: %s", memory_id, e)
            return
        self._index_written()

    # ── Documents ─────────────────────────────────────────────

    async def create(
        self,
        title: str,
        content: str,
        category: str = DEFAULT_CATEGORY,
        tags: list[str] | None = None,
        sources: list[str] | None = None,
        abstract: str | None = None,
        custom_fields: dict[str, Any] | None = None,
    ) -> Memory:
        fields = {**self.config.template_for(category), **(custom_fields or {})}
        memory = await asyncio.to_thread(
            self.store.create, title, content, category, tags, sources, abstract, fields
        )
        await self._push(memory)
        return memory

    async def read(
        self, memory_id: str | None = None, title: str | None = None
    ) -> Memory | None:
        """Look up by id, or by title when no id is given."""
        if memory_id:
            return await asyncio.to_thread(self.store.read_by_id, memory_id)
        if title:
            return await asyncio.to_thread(self.store.read_by_title, title)
        raise ValidationError("Either id or title must be provided", fields=["id", "title"])

    async def update(
        self,
        memory_id: str,
        *,
        custom_fields: dict[str, Any] | None = None,
        **changes: Any,
    ) -> UpdateResult:
        """Patch a memory; see ``MemoryStore.update`` for the accepted fields.

        Template keys for the memory's category are added only where the memory
        does not already carry them, and never replace tags, sources or abstract.
        """
        existing = await asyncio.to_thread(self.store.get, memory_id)
        template = self.config.template_for(changes.get("category") or existing.category)
        fields = {
            key: value
            for key, value in template.items()
            if key not in KNOWN_FIELDS and key not in existing.custom
        }
        fields.update(custom_fields or {})
        result = await asyncio.to_thread(
            lambda: self.store.update(memory_id, custom_fields=fields or None, **changes)
        )
        await self._push(result.memory)
        if result.relinked_ids:
            await self._push_ids(result.relinked_ids)
        return result

    async def review(self, memory_id: str) -> Memory:
        """Mark a memory as reviewed now."""
        result = await self.update(memory_id, last_reviewed=utc_now())
        return result.memory

    async def delete(self, memory_id: str) -> Memory:
        memory = await asyncio.to_thread(self.store.delete, memory_id)
        await self._drop(memory_id)
        return memory

    async def list_memories(
        self,
        category: str | None = None,
        tags: list[str] | None = None,
        limit: int | None = None,
    ) -> tuple[list[Memory], int]:
        return await asyncio.to_thread(self.store.list_memories, category, tags, limit)

    # ── Link graph ────────────────────────────────────────────

    async def link(
        self, source_id: str, target_id: str, link_text: str | None = None
    ) -> tuple[Memory, Memory]:
        if source_id == target_id:
            raise ValidationError("Cannot link a memory to itself", fields=["target_id"])
        source, target = await asyncio.to_thread(self.links.link, source_id, target_id, link_text)
        await self._push(source, target)
        return source, target

    async def unlink(self, source_id: str, target_id: str) -> tuple[Memory, Memory]:
        source, target = await asyncio.to_thread(self.links.unlink, source_id, target_id)
        await self._push(source, target)
        return source, target

    async def fix_links(self, memory_id: str) -> RepairResult:
        result = await asyncio.to_thread(self.links.repair, memory_id)
        await self._push_ids([memory_id, *result.removed])
        return result

    # ── Queries ───────────────────────────────────────────────

    async def search(
        self,
        query: str,
        limit: int = 10,
        category: str | None = None,
        tags: list[str] | None = None,
    ) -> list[SearchHit]:
        return await asyncio.to_thread(self.index.search, query, limit, category, tags)

    async def stats(self, now: datetime | None = None) -> AuditReport:
        return await asyncio.to_thread(self.auditor.audit, now)

    async def needs_review(self, cutoff: datetime) -> list[ReviewItem]:
        return await asyncio.to_thread(self.auditor.needs_review, cutoff)
