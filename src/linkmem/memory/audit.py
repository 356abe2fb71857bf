"""Read-only health report over the whole store.

The auditor never writes. Every inconsistency it finds is returned as data in
an ``AuditReport``; callers decide whether to repair (see ``LinkManager.repair``).
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from linkmem.memory.codec import Memory, parse_timestamp
from linkmem.memory.store import MemoryStore, parse_memory_path
from linkmem.memory.wikilinks import find_invalid_references, find_wiki_links, has_wiki_link

logger = logging.getLogger(__name__)

EMPTY_STORE_MESSAGE = "No memories found in the store."
HEALTHY_MESSAGE = "Memory store is in excellent health with no immediate actions needed."


@dataclass
class MemoryRef:
    id: str
    title: str


@dataclass
class CountedRef:
    id: str
    title: str
    count: int


@dataclass
class BrokenLink:
    id: str
    title: str
    broken_link_id: str


@dataclass
class UnidirectionalLink:
    id: str
    title: str
    unidirectional_link_id: str


@dataclass
class LinkMismatch:
    """Structured links and inline markers of one memory that disagree."""

    id: str
    title: str
    missing_markers: list[str] = field(default_factory=list)
    unlinked_markers: list[str] = field(default_factory=list)


@dataclass
class InvalidReference:
    id: str
    title: str
    references: list[str] = field(default_factory=list)


@dataclass
class DuplicateId:
    id: str
    files: list[str] = field(default_factory=list)


@dataclass
class ReviewItem:
    id: str
    title: str
    category: str
    last_reviewed: str
    days_since_review: int


@dataclass
class LengthItem:
    id: str
    title: str
    word_count: int
    length_percentile: int


@dataclass
class AuditReport:
    total_memories: int = 0
    categories: dict[str, int] = field(default_factory=dict)
    tags: dict[str, int] = field(default_factory=dict)
    average_tags_per_memory: float = 0.0
    memories_with_few_tags: list[CountedRef] = field(default_factory=list)
    average_links_per_memory: float = 0.0
    memories_with_few_links: list[CountedRef] = field(default_factory=list)
    orphaned_memories: list[MemoryRef] = field(default_factory=list)
    broken_links: list[BrokenLink] = field(default_factory=list)
    unidirectional_links: list[UnidirectionalLink] = field(default_factory=list)
    link_mismatches: list[LinkMismatch] = field(default_factory=list)
    invalid_references: list[InvalidReference] = field(default_factory=list)
    duplicate_ids: list[DuplicateId] = field(default_factory=list)
    memories_without_sources: list[MemoryRef] = field(default_factory=list)
    review_ages: dict[str, int] = field(default_factory=dict)
    average_days_since_review: float = 0.0
    memories_needing_verification: list[ReviewItem] = field(default_factory=list)
    overdue_reviews: list[ReviewItem] = field(default_factory=list)
    average_word_count: float = 0.0
    shortest_memories: list[LengthItem] = field(default_factory=list)
    longest_memories: list[LengthItem] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def word_count(content: str) -> int:
    return len(content.split())


def days_since(timestamp: str, now: datetime) -> int:
    """Whole days between ``timestamp`` and ``now``; unreadable stamps count as 0."""
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        return 0
    return max(0, (now - parsed).days)


class ConsistencyAuditor:
    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def audit(
        self, now: datetime | None = None, review_cutoff: datetime | None = None
    ) -> AuditReport:
        """Scan every memory and build the report.

        ``review_cutoff`` fills ``overdue_reviews`` with memories last reviewed
        before it; without one that list stays empty.
        """
        now = now or datetime.now(timezone.utc)
        memories = list(self.store.list_all())
        if not memories:
            return AuditReport(recommendations=[EMPTY_STORE_MESSAGE])

        report = AuditReport(total_memories=len(memories))
        by_id = {m.id: m for m in memories}

        # ── Distributions ─────────────────────────────────────
        report.categories = dict(Counter(m.category for m in memories))
        report.tags = dict(Counter(tag for m in memories for tag in m.tags))
        report.average_tags_per_memory = sum(len(m.tags) for m in memories) / len(memories)
        report.memories_with_few_tags = [
            CountedRef(m.id, m.title, len(m.tags))
            for m in memories
            if len(m.tags) < report.average_tags_per_memory
        ]
        report.memories_without_sources = [
            MemoryRef(m.id, m.title) for m in memories if not m.sources
        ]

        # ── Link graph ────────────────────────────────────────
        report.average_links_per_memory = sum(len(m.links) for m in memories) / len(memories)
        report.memories_with_few_links = [
            CountedRef(m.id, m.title, len(m.links))
            for m in memories
            if len(m.links) < report.average_links_per_memory
        ]
        report.orphaned_memories = [MemoryRef(m.id, m.title) for m in memories if not m.links]
        for memory in memories:
            for link_id in memory.links:
                other = by_id.get(link_id)
                if other is None:
                    report.broken_links.append(BrokenLink(memory.id, memory.title, link_id))
                elif memory.id not in other.links:
                    report.unidirectional_links.append(
                        UnidirectionalLink(memory.id, memory.title, link_id)
                    )
            mismatch = self._link_mismatch(memory, by_id)
            if mismatch is not None:
                report.link_mismatches.append(mismatch)
            invalid = find_invalid_references(memory.content)
            if invalid:
                report.invalid_references.append(
                    InvalidReference(memory.id, memory.title, invalid)
                )
        report.duplicate_ids = self._duplicate_ids()

        # ── Review ages ───────────────────────────────────────
        items = [self._review_item(m, now) for m in memories]
        report.review_ages = {item.id: item.days_since_review for item in items}
        report.average_days_since_review = sum(i.days_since_review for i in items) / len(items)
        report.memories_needing_verification = [
            i for i in items if i.days_since_review > report.average_days_since_review
        ]
        if review_cutoff is not None:
            report.overdue_reviews = self._overdue(memories, review_cutoff, now)

        # ── Content length ────────────────────────────────────
        counts = [(m, word_count(m.content)) for m in memories]
        report.average_word_count = sum(c for _, c in counts) / len(counts)
        ranked = sorted(counts, key=lambda pair: pair[1])
        share = max(1, math.floor(len(memories) * 0.1))
        report.shortest_memories = [
            self._length_item(m, c, report.average_word_count) for m, c in ranked[:share]
        ]
        report.longest_memories = [
            self._length_item(m, c, report.average_word_count) for m, c in ranked[-share:]
        ]

        report.recommendations = self._recommendations(report)
        logger.debug(
            "Audited %d memories: %d broken, %d unidirectional, %d mismatched",
            report.total_memories,
            len(report.broken_links),
            len(report.unidirectional_links),
            len(report.link_mismatches),
        )
        return report

    def needs_review(self, cutoff: datetime, now: datetime | None = None) -> list[ReviewItem]:
        """Memories last reviewed before ``cutoff``, oldest first."""
        now = now or datetime.now(timezone.utc)
        return self._overdue(list(self.store.list_all()), cutoff, now)

    # ── Helpers ───────────────────────────────────────────────

    def _link_mismatch(self, memory: Memory, by_id: dict[str, Memory]) -> LinkMismatch | None:
        linked_titles = [by_id[i].title for i in memory.links if i in by_id]
        missing = [t for t in linked_titles if not has_wiki_link(memory.content, t)]
        unlinked = [t for t in find_wiki_links(memory.content) if t not in linked_titles]
        if not missing and not unlinked:
            return None
        return LinkMismatch(memory.id, memory.title, missing, unlinked)

    def _duplicate_ids(self) -> list[DuplicateId]:
        seen: dict[str, list[str]] = {}
        for path in self.store.memory_files():
            memory_id = parse_memory_path(path).id
            seen.setdefault(memory_id, []).append(path.name)
        return [DuplicateId(i, files) for i, files in seen.items() if len(files) > 1]

    def _review_item(self, memory: Memory, now: datetime) -> ReviewItem:
        return ReviewItem(
            id=memory.id,
            title=memory.title,
            category=memory.category,
            last_reviewed=memory.last_reviewed,
            days_since_review=days_since(memory.last_reviewed, now),
        )

    def _overdue(
        self, memories: list[Memory], cutoff: datetime, now: datetime
    ) -> list[ReviewItem]:
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        overdue = []
        for memory in memories:
            reviewed = parse_timestamp(memory.last_reviewed) or epoch
            if reviewed < cutoff:
                overdue.append((reviewed, self._review_item(memory, now)))
        overdue.sort(key=lambda pair: pair[0])
        return [item for _, item in overdue]

    def _length_item(self, memory: Memory, count: int, average: float) -> LengthItem:
        percentile = math.floor(count / average * 100) if average else 0
        return LengthItem(memory.id, memory.title, count, percentile)

    def _recommendations(self, report: AuditReport) -> list[str]:
        recs = []
        if report.orphaned_memories:
            recs.append(
                f"Consider linking {len(report.orphaned_memories)} orphaned memories "
                "to improve knowledge connectivity."
            )
        if report.broken_links:
            recs.append(f"Fix {len(report.broken_links)} broken links to maintain data integrity.")
        if report.unidirectional_links:
            recs.append(
                f"Review {len(report.unidirectional_links)} unidirectional links "
                "for potential bidirectional relationships."
            )
        if report.link_mismatches:
            recs.append(
                f"Run fix_links on {len(report.link_mismatches)} memories whose "
                "inline links disagree with their structured links."
            )
        if report.invalid_references:
            recs.append(
                f"Clean up invalid link syntax in {len(report.invalid_references)} memories."
            )
        if report.duplicate_ids:
            recs.append(
                f"Resolve {len(report.duplicate_ids)} memory ids stored in more than one file."
            )
        if report.memories_without_sources:
            recs.append(
                f"Add sources to {len(report.memories_without_sources)} memories "
                "to improve traceability."
            )
        if report.memories_needing_verification:
            recs.append(
                f"Review {len(report.memories_needing_verification)} memories "
                "that haven't been verified recently."
            )
        if report.memories_with_few_tags:
            recs.append(
                f"Consider adding more tags to {len(report.memories_with_few_tags)} memories "
                "for better categorization."
            )
        return recs or [HEALTHY_MESSAGE]
