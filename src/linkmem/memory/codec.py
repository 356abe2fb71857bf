"""Memory record and its Markdown + YAML frontmatter file format.

A memory file looks like::

    ---
    id: 0f8fad5b-d9cb-469f-a165-70867728950e
    title: Deploy checklist
    category: ops
    tags:
    - release
    ...
    ---

    Body in Markdown.

Protected header keys are owned by the store. Any other key is a custom field:
it is kept in ``Memory.custom`` and written back unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import frontmatter
import yaml

from linkmem.errors import ValidationError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "title", "category")

PROTECTED_FIELDS = frozenset(
    {"id", "title", "category", "created_at", "updated_at", "last_reviewed", "links"}
)

# Known fields that a category template may still supply defaults for.
OVERRIDABLE_FIELDS = frozenset({"tags", "sources", "abstract"})

KNOWN_FIELDS = PROTECTED_FIELDS | OVERRIDABLE_FIELDS

_TIMESTAMP_FIELDS = ("created_at", "updated_at", "last_reviewed")
_LIST_FIELDS = ("tags", "sources", "links")


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


@dataclass
class Memory:
    """A stored knowledge unit: protected header fields, body and custom fields."""

    id: str
    title: str
    category: str
    content: str = ""
    tags: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    abstract: str | None = None
    created_at: str = ""
    updated_at: str = ""
    last_reviewed: str = ""
    links: list[str] = field(default_factory=list)
    custom: dict[str, Any] = field(default_factory=dict)
    file_path: Path | None = None

    def header(self) -> dict[str, Any]:
        """Frontmatter mapping in the order it is written to disk."""
        meta: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "tags": list(self.tags),
            "sources": list(self.sources),
        }
        if self.abstract is not None:
            meta["abstract"] = self.abstract
        meta["created_at"] = self.created_at
        meta["updated_at"] = self.updated_at
        meta["last_reviewed"] = self.last_reviewed
        meta["links"] = list(self.links)
        for key, value in self.custom.items():
            if key not in KNOWN_FIELDS:
                meta[key] = value
        return meta


def validate_custom_fields(fields: dict[str, Any] | None, context: str | None = None) -> None:
    """Reject custom fields that would overwrite a protected header key."""
    if not fields:
        return
    offending = [key for key in fields if key in PROTECTED_FIELDS]
    if offending:
        where = f" for category '{context}'" if context else ""
        raise ValidationError(
            f"Custom fields{where} cannot override protected fields: {', '.join(offending)}. "
            f"Protected fields are: {', '.join(sorted(PROTECTED_FIELDS))}",
            fields=offending,
        )


def encode(memory: Memory) -> str:
    """Serialize a memory to frontmatter + Markdown text."""
    missing = [name for name in REQUIRED_FIELDS + _TIMESTAMP_FIELDS if not getattr(memory, name)]
    if missing:
        raise ValidationError(
            f"Cannot encode memory, missing required fields: {', '.join(missing)}",
            fields=missing,
        )
    post = frontmatter.Post(memory.content)
    post.metadata.update(memory.header())
    try:
        return frontmatter.dumps(post, sort_keys=False) + "\n"
    except yaml.YAMLError as e:
        raise ValidationError(f"Cannot encode memory {memory.id}: {e}") from e


def decode(text: str, path: Path | None = None) -> Memory:
    """Parse frontmatter + Markdown text into a memory."""
    where = f" in {path}" if path else ""
    if not text.lstrip().startswith("---") or not frontmatter.checks(text):
        raise ValidationError(f"No frontmatter header found{where}")
    try:
        meta, body = frontmatter.parse(text)
    except yaml.YAMLError as e:
        raise ValidationError(f"Malformed frontmatter{where}: {e}") from e

    missing = [name for name in REQUIRED_FIELDS if not meta.get(name)]
    if missing:
        raise ValidationError(
            f"Missing required frontmatter fields{where}: {', '.join(missing)}",
            fields=missing,
        )

    lists = {name: _as_str_list(meta.get(name), name, path) for name in _LIST_FIELDS}
    now = utc_now()
    stamps = {name: _as_timestamp(meta.get(name)) or now for name in _TIMESTAMP_FIELDS}
    abstract = meta.get("abstract")

    return Memory(
        id=str(meta["id"]),
        title=str(meta["title"]),
        category=str(meta["category"]),
        content=body.strip(),
        tags=lists["tags"],
        sources=lists["sources"],
        abstract=str(abstract) if abstract else None,
        links=lists["links"],
        custom={k: v for k, v in meta.items() if k not in KNOWN_FIELDS},
        file_path=path,
        **stamps,
    )


def _as_str_list(value: Any, name: str, path: Path | None) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        logger.debug("Coercing non-list '%s' to [] (%s)", name, path)
        return []
    return [str(item) for item in value]


def _as_timestamp(value: Any) -> str | None:
    """Normalize YAML-parsed dates back to ISO strings."""
    if not value:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc).isoformat()
    return str(value)


def parse_timestamp(value: str) -> datetime | None:
    """Parse a stored timestamp into an aware datetime, or None if unreadable."""
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
