"""Bidirectional links between memories.

A link is held twice on each side: the other memory's id in ``links`` and a
``- [[Other Title]]`` list item under ``## Related`` in the body. The two are
updated together here but nothing enforces that they stay in step; the auditor
reports where they drift apart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from linkmem.errors import LinkmemError, NotFoundError
from linkmem.memory.codec import Memory
from linkmem.memory.store import MemoryStore, dedupe
from linkmem.memory.wikilinks import (
    add_related_marker,
    remove_related_marker,
    strip_internal_markers,
    strip_related_section,
)

logger = logging.getLogger(__name__)


@dataclass
class RepairResult:
    """Outcome of rebuilding one memory's links from its ``links`` list."""

    memory_id: str
    title: str
    removed: list[str] = field(default_factory=list)
    relinked: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class LinkManager:
    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def _resolve_pair(self, source_id: str, target_id: str) -> tuple[Memory, Memory]:
        source = self.store.read_by_id(source_id)
        if source is None:
            raise NotFoundError(f"Source memory {source_id} not found", side="source")
        target = self.store.read_by_id(target_id)
        if target is None:
            raise NotFoundError(f"Target memory {target_id} not found", side="target")
        return source, target

    def link(
        self, source_id: str, target_id: str, link_text: str | None = None
    ) -> tuple[Memory, Memory]:
        """Link two memories both ways. Linking an existing pair again is a no-op
        apart from the marker being re-appended at the end of ``## Related``.
        """
        source, target = self._resolve_pair(source_id, target_id)

        source.links = dedupe([*source.links, target.id])
        target.links = dedupe([*target.links, source.id])

        source.content = add_related_marker(
            remove_related_marker(source.content, target.title), target.title, link_text
        )
        target.content = add_related_marker(
            remove_related_marker(target.content, source.title), source.title
        )

        self.store.save(source)
        self.store.save(target)
        logger.info("Linked %s <-> %s", source.title, target.title)
        return source, target

    def unlink(self, source_id: str, target_id: str) -> tuple[Memory, Memory]:
        """Remove a link both ways. Markers are matched by the current titles."""
        source, target = self._resolve_pair(source_id, target_id)

        source.links = [i for i in source.links if i != target.id]
        target.links = [i for i in target.links if i != source.id]
        source.content = remove_related_marker(source.content, target.title)
        target.content = remove_related_marker(target.content, source.title)

        self.store.save(source)
        self.store.save(target)
        logger.info("Unlinked %s <-> %s", source.title, target.title)
        return source, target

    def repair(self, memory_id: str) -> RepairResult:
        """Rebuild a memory's link structure from the ids in its ``links``.

        Every current link is removed, the Related section and all internal
        markers are stripped from the body (``[[http...]]`` markers are kept),
        then every id that still resolves is linked again.
        """
        memory = self.store.get(memory_id)
        link_ids = list(memory.links)
        result = RepairResult(memory_id=memory.id, title=memory.title, removed=link_ids)

        for link_id in link_ids:
            try:
                self.unlink(memory_id, link_id)
            except NotFoundError:
                logger.debug("Skipping unlink of missing memory %s", link_id)
            except (LinkmemError, OSError) as e:
                logger.warning("Failed to unlink %s from %s: %s", link_id, memory_id, e)

        memory = self.store.get(memory_id)
        cleaned = strip_internal_markers(strip_related_section(memory.content))
        if cleaned != memory.content or memory.links:
            memory.content = cleaned
            memory.links = []
            self.store.save(memory)

        for link_id in link_ids:
            if link_id == memory_id:
                result.failed.append(link_id)
                continue
            try:
                target = self.store.read_by_id(link_id)
                if target is None:
                    result.failed.append(link_id)
                    continue
                self.link(memory_id, link_id, target.title)
                result.relinked.append(link_id)
            except (LinkmemError, OSError) as e:
                logger.warning("Failed to recreate link %s -> %s: %s", memory_id, link_id, e)
                result.failed.append(link_id)

        logger.info(
            "Repaired links for %s: %d relinked, %d failed",
            memory.title,
            len(result.relinked),
            len(result.failed),
        )
        return result
