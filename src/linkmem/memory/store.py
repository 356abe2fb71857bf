"""Document store: one Markdown file per memory, keyed by id.

Files are the source of truth. The file name is derived from the memory's
category, title slug and id (``category|slug|id.md``), so a change of title or
category moves the file. There is no cache: every read re-scans the directory.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, NamedTuple

from linkmem.errors import LinkmemError, NotFoundError, StorageConflictError, StorageError, ValidationError
from linkmem.memory.codec import Memory, decode, encode, utc_now, validate_custom_fields
from linkmem.memory.wikilinks import rewrite_wiki_links

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "general"

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)
_SEPARATOR = "|"
_MARKER_CHARS = ("|", "[", "]")

# Fields compared after a create is read back from disk.
_VERIFIED_FIELDS = ("id", "title", "category", "content", "tags", "sources", "abstract", "links")


class MemoryPath(NamedTuple):
    category: str
    slug: str
    id: str


@dataclass
class UpdateResult:
    """Outcome of an update: the memory as written plus memories whose markers were rewritten."""

    memory: Memory
    relinked_ids: list[str] = field(default_factory=list)


def slugify(text: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', trim separators.

    >>> slugify("Project Ideas & Brainstorm")
    'project-ideas-brainstorm'
    """
    slug = re.sub(r"[\W_]+", "-", text.lower()).strip("-")
    return slug or "untitled"


def parse_memory_path(path: Path) -> MemoryPath | None:
    """Split ``category|slug|id.md`` into its parts; None for any other file."""
    if path.suffix != ".md":
        return None
    parts = path.stem.split(_SEPARATOR)
    if len(parts) != 3 or not _UUID_RE.match(parts[2]):
        return None
    return MemoryPath(*parts)


def dedupe(values: list[str] | None) -> list[str]:
    """Drop repeated values, keeping first-seen order."""
    seen: list[str] = []
    for value in values or []:
        if value not in seen:
            seen.append(value)
    return seen


def _split_custom_fields(
    fields: dict[str, Any] | None, category: str
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Validate custom fields and pull out template defaults for known fields."""
    custom = dict(fields or {})
    validate_custom_fields(custom, context=category)
    defaults: dict[str, Any] = {}
    for name in ("tags", "sources"):
        value = custom.pop(name, None)
        if isinstance(value, list):
            defaults[name] = [str(item) for item in value]
    abstract = custom.pop("abstract", None)
    if isinstance(abstract, str) and abstract:
        defaults["abstract"] = abstract
    return custom, defaults


class MemoryStore:
    """CRUD over memory files in a single flat directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._ensure_initialized()

    # ── Initialization & paths ───────────────────────────────

    def _ensure_initialized(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, category: str, title: str, memory_id: str) -> Path:
        return self.root / f"{category}{_SEPARATOR}{slugify(title)}{_SEPARATOR}{memory_id}.md"

    def memory_files(self) -> list[Path]:
        """All files in the store whose name parses as a memory path."""
        if not self.root.is_dir():
            return []
        return sorted(p for p in self.root.glob("*.md") if parse_memory_path(p))

    def _validate_title(self, title: str) -> None:
        if not title or not title.strip():
            raise ValidationError("Title must be a non-empty string", fields=["title"])
        # [[Title|text]] markers cannot carry these
        if any(ch in title for ch in _MARKER_CHARS):
            raise ValidationError(
                f"Title '{title}' cannot contain '|', '[' or ']'", fields=["title"]
            )

    def _validate_category(self, category: str) -> None:
        if not category or not category.strip():
            raise ValidationError("Category must be a non-empty string", fields=["category"])
        if any(ch in category for ch in ("/", "\\", _SEPARATOR)) or category.startswith("."):
            raise ValidationError(
                f"Category '{category}' cannot contain '/', '\\' or '|' or start with '.'",
                fields=["category"],
            )

    # ── Reading ───────────────────────────────────────────────

    def _read_file(self, path: Path) -> Memory:
        return decode(path.read_text(encoding="utf-8"), path)

    def _find_path(self, memory_id: str) -> Path | None:
        for path in self.memory_files():
            if parse_memory_path(path).id == memory_id:
                return path
        return None

    def read_by_id(self, memory_id: str) -> Memory | None:
        path = self._find_path(memory_id)
        return self._read_file(path) if path else None

    def read_by_title(self, title: str) -> Memory | None:
        """Look a memory up by the slug form of its title."""
        target = slugify(title)
        for path in self.memory_files():
            if parse_memory_path(path).slug == target:
                return self._read_file(path)
        return None

    def get(self, memory_id: str) -> Memory:
        memory = self.read_by_id(memory_id)
        if memory is None:
            raise NotFoundError(f"Memory with ID {memory_id} not found")
        return memory

    def list_all(self) -> Iterator[Memory]:
        """Yield every readable memory. Unreadable files are logged and skipped."""
        for path in self.memory_files():
            try:
                yield self._read_file(path)
            except (ValidationError, OSError) as e:
                logger.warning("Skipping unreadable memory file %s: %s", path.name, e)

    def list_memories(
        self,
        category: str | None = None,
        tags: list[str] | None = None,
        limit: int | None = None,
    ) -> tuple[list[Memory], int]:
        """Filter by category and any-of tags. Returns (page, total matches)."""
        matches = [
            m
            for m in self.list_all()
            if (not category or m.category == category)
            and (not tags or set(tags) & set(m.tags))
        ]
        page = matches[:limit] if limit else matches
        return page, len(matches)

    # ── Writing ───────────────────────────────────────────────

    def _write(self, memory: Memory, path: Path) -> Memory:
        memory.content = memory.content.strip()
        path.write_text(encode(memory), encoding="utf-8")
        memory.file_path = path
        return memory

    def save(self, memory: Memory) -> Memory:
        """Refresh ``updated_at`` and rewrite a memory at its current location."""
        memory.updated_at = utc_now()
        path = memory.file_path or self.path_for(memory.category, memory.title, memory.id)
        return self._write(memory, path)

    def create(
        self,
        title: str,
        content: str,
        category: str = DEFAULT_CATEGORY,
        tags: list[str] | None = None,
        sources: list[str] | None = None,
        abstract: str | None = None,
        custom_fields: dict[str, Any] | None = None,
    ) -> Memory:
        """Write a new memory file and return it as read back from disk."""
        self._validate_title(title)
        self._validate_category(category)
        custom, defaults = _split_custom_fields(custom_fields, category)
        tags = tags or defaults.get("tags")
        sources = sources or defaults.get("sources")
        abstract = abstract or defaults.get("abstract")

        now = utc_now()
        memory = Memory(
            id=str(uuid.uuid4()),
            title=title,
            category=category,
            content=content,
            tags=dedupe(tags),
            sources=dedupe(sources),
            abstract=abstract,
            created_at=now,
            updated_at=now,
            last_reviewed=now,
            links=[],
            custom=custom,
        )
        path = self.path_for(category, title, memory.id)
        self._write(memory, path)

        stored = self.read_by_id(memory.id)
        if stored is None:
            raise StorageError(f"Failed to read memory {memory.id} back after creation")
        mismatched = [
            name for name in _VERIFIED_FIELDS if getattr(stored, name) != getattr(memory, name)
        ]
        if stored.custom != memory.custom:
            mismatched.append("custom")
        if mismatched:
            raise StorageError(
                f"Memory {memory.id} read back differently than written: {', '.join(mismatched)}"
            )
        logger.info("Created memory: %s (%s)", title, memory.id)
        return stored

    def update(
        self,
        memory_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
        category: str | None = None,
        tags: list[str] | None = None,
        sources: list[str] | None = None,
        abstract: str | None = None,
        links: list[str] | None = None,
        last_reviewed: str | None = None,
        custom_fields: dict[str, Any] | None = None,
    ) -> UpdateResult:
        """Patch a memory, moving its file when title or category change.

        When the title changes, markers ``[[Old Title]]`` in related memories
        are rewritten to the new title. Failures there are logged per memory
        and never abort the update.
        """
        existing = self.get(memory_id)
        if title is not None:
            self._validate_title(title)
        if category is not None:
            self._validate_category(category)
        custom, defaults = _split_custom_fields(custom_fields, category or existing.category)
        if tags is None:
            tags = defaults.get("tags")
        if sources is None:
            sources = defaults.get("sources")
        if abstract is None:
            abstract = defaults.get("abstract")

        updated = replace(
            existing,
            title=existing.title if title is None else title,
            category=existing.category if category is None else category,
            content=existing.content if content is None else content,
            tags=existing.tags if tags is None else dedupe(tags),
            sources=existing.sources if sources is None else dedupe(sources),
            abstract=existing.abstract if abstract is None else abstract,
            links=existing.links if links is None else dedupe([i for i in links if i != memory_id]),
            last_reviewed=existing.last_reviewed if last_reviewed is None else last_reviewed,
            custom={**existing.custom, **custom},
            updated_at=utc_now(),
        )

        old_path = existing.file_path
        new_path = self.path_for(updated.category, updated.title, memory_id)
        if new_path != old_path:
            if new_path.exists():
                raise StorageConflictError(f"Target file already exists: {new_path}")
            self._write(updated, new_path)
            old_path.unlink()
            logger.info("Moved memory %s: %s -> %s", memory_id, old_path.name, new_path.name)
        else:
            self._write(updated, old_path)

        relinked: list[str] = []
        if updated.title != existing.title:
            relinked = self._propagate_title(updated, existing.title)
        logger.info("Updated memory: %s (%s)", updated.title, memory_id)
        return UpdateResult(memory=updated, relinked_ids=relinked)

    def _propagate_title(self, memory: Memory, old_title: str) -> list[str]:
        """Rewrite markers for ``old_title`` in every memory related to ``memory``."""
        candidates = list(memory.links)
        for other in self.list_all():
            if memory.id in other.links and other.id not in candidates:
                candidates.append(other.id)

        relinked: list[str] = []
        for other_id in candidates:
            if other_id == memory.id:
                continue
            try:
                other = self.read_by_id(other_id)
                if other is None:
                    continue
                rewritten = rewrite_wiki_links(other.content, old_title, memory.title)
                if rewritten != other.content:
                    other.content = rewritten
                    self.save(other)
                    relinked.append(other_id)
            except (LinkmemError, OSError) as e:
                logger.warning("Failed to update links in memory %s: %s", other_id, e)
        return relinked

    def delete(self, memory_id: str) -> Memory:
        """Remove a memory file. References to it elsewhere are left as they are."""
        memory = self.get(memory_id)
        memory.file_path.unlink()
        logger.info("Deleted memory: %s (%s)", memory.title, memory_id)
        return memory
