"""Agent-facing tools over the memory services of an index registry.

These functions are designed to be exposed as tools to an AI agent. Each one
returns a text message; linkmem errors come back as ``"Error: ..."`` strings
instead of being raised.
"""

from __future__ import annotations

import functools
import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from linkmem.errors import LinkmemError, ValidationError
from linkmem.memory.codec import Memory, encode, parse_timestamp

if TYPE_CHECKING:
    from linkmem.memory.service import MemoryService
    from linkmem.memory.sync import IndexRegistry

Tool = Callable[..., Awaitable[str]]

DEFAULT_REVIEW_DAYS = 90


def _reports_errors(func: Tool) -> Tool:
    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> str:
        try:
            return await func(*args, **kwargs)
        except LinkmemError as e:
            return f"Error: {e}"

    return wrapper


def _describe(memory: Memory) -> str:
    category = f" ({memory.category})" if memory.category != "general" else ""
    tags = f" [{', '.join(memory.tags)}]" if memory.tags else ""
    return f"**{memory.title}**{category}{tags}\n   ID: {memory.id}"


def _format_memory(memory: Memory, fmt: str) -> str:
    if fmt == "plain":
        return memory.content
    if fmt == "json":
        data = {**memory.header(), "content": memory.content}
        return json.dumps(data, indent=2, ensure_ascii=False, default=str)
    return encode(memory)


def get_memory_tools(
    registry: IndexRegistry,
    store_dir: Path | None = None,
    index_dir: Path | None = None,
    review_after_days: int = DEFAULT_REVIEW_DAYS,
) -> dict[str, Tool]:
    """Return a dict of tool_name -> async callable for memory operations.

    These can be registered as MCP tools or called directly. Every call fetches
    the service from ``registry``, so a stale index is rebuilt before use.
    """

    async def _service() -> MemoryService:
        return await registry.get_service(store_dir, index_dir)

    @_reports_errors
    async def write_mem(
        title: str,
        content: str,
        category: str = "general",
        tags: list[str] | None = None,
        sources: list[str] | None = None,
        abstract: str | None = None,
        custom_fields: dict[str, Any] | None = None,
    ) -> str:
        """Create a new memory."""
        service = await _service()
        memory = await service.create(
            title, content, category, tags, sources, abstract, custom_fields
        )
        return f"Memory created: {_describe(memory)}"

    @_reports_errors
    async def read_mem(
        memory_id: str | None = None, title: str | None = None, format: str = "markdown"
    ) -> str:
        """Read a memory by id or title as markdown, plain text or json."""
        service = await _service()
        memory = await service.read(memory_id, title)
        if memory is None:
            return f"Error: Memory not found: {memory_id or title}"
        return _format_memory(memory, format)

    @_reports_errors
    async def edit_mem(
        memory_id: str,
        title: str | None = None,
        content: str | None = None,
        category: str | None = None,
        tags: list[str] | None = None,
        sources: list[str] | None = None,
        abstract: str | None = None,
        custom_fields: dict[str, Any] | None = None,
    ) -> str:
        """Edit a memory. Renaming rewrites [[Old Title]] markers in related memories."""
        service = await _service()
        result = await service.update(
            memory_id,
            title=title,
            content=content,
            category=category,
            tags=tags,
            sources=sources,
            abstract=abstract,
            custom_fields=custom_fields,
        )
        message = f"Memory updated: {_describe(result.memory)}"
        if result.relinked_ids:
            message += f"\nUpdated links in {len(result.relinked_ids)} related memories"
        return message

    @_reports_errors
    async def delete_mem(memory_id: str) -> str:
        """Delete a memory. Links to it from other memories are left in place."""
        service = await _service()
        memory = await service.delete(memory_id)
        return f"Memory deleted: {memory.title} (ID: {memory.id})"

    @_reports_errors
    async def search_mem(
        query: str,
        limit: int = 10,
        category: str | None = None,
        tags: list[str] | None = None,
    ) -> str:
        """Full-text search over titles, bodies and tags."""
        service = await _service()
        hits = await service.search(query, limit, category, tags)
        if not hits:
            return "No memories found matching your search criteria."
        lines = []
        for n, hit in enumerate(hits, 1):
            category_str = f" ({hit.category})" if hit.category != "general" else ""
            tags_str = f" [{', '.join(hit.tags)}]" if hit.tags else ""
            lines.append(
                f"{n}. **{hit.title}**{category_str}{tags_str}\n"
                f"   Score: {hit.score:.2f}\n   {hit.snippet}\n   ID: {hit.id}\n"
            )
        return f"Found {len(hits)} memory(ies):\n\n" + "\n".join(lines)

    @_reports_errors
    async def list_mems(
        category: str | None = None, tags: list[str] | None = None, limit: int | None = None
    ) -> str:
        """List memories, optionally filtered by category and tags."""
        service = await _service()
        memories, total = await service.list_memories(category, tags, limit)
        if total == 0:
            return "No memories found matching your filter criteria."
        lines = []
        for n, memory in enumerate(memories, 1):
            links = f"\n   Links: {len(memory.links)} linked memories" if memory.links else ""
            lines.append(
                f"{n}. {_describe(memory)}{links}\n"
                f"   Updated: {memory.updated_at}\n   Last reviewed: {memory.last_reviewed}\n"
            )
        return f"Found {total} memory(ies):\n\n" + "\n".join(lines)

    @_reports_errors
    async def link_mem(source_id: str, target_id: str, link_text: str | None = None) -> str:
        """Link two memories in both directions."""
        service = await _service()
        source, target = await service.link(source_id, target_id, link_text)
        return f"Linked '{source.title}' <-> '{target.title}'"

    @_reports_errors
    async def unlink_mem(source_id: str, target_id: str) -> str:
        """Remove the link between two memories in both directions."""
        service = await _service()
        source, target = await service.unlink(source_id, target_id)
        return f"Unlinked '{source.title}' <-> '{target.title}'"

    @_reports_errors
    async def fix_links(memory_id: str) -> str:
        """Rebuild a memory's Related section and markers from its structured links."""
        service = await _service()
        result = await service.fix_links(memory_id)
        message = (
            f"Link structure fixed for memory \"{result.title}\" (ID: {result.memory_id}):\n"
            f"- Removed {len(result.removed)} existing links\n"
            f"- Recreated {len(result.relinked)} links\n"
            f"- Failed to recreate {len(result.failed)} links"
        )
        if result.failed:
            message += f"\nCould not recreate: {', '.join(result.failed)}"
        return message

    @_reports_errors
    async def reindex_mems() -> str:
        """Rebuild the search index from the memory files."""
        service = await _service()
        count = await service.reindex()
        return f"Reindexed {count} memories"

    @_reports_errors
    async def needs_review(date: str | None = None) -> str:
        """List memories last reviewed before an ISO date (default: the review window)."""
        service = await _service()
        if date:
            cutoff = parse_timestamp(date)
            if cutoff is None:
                raise ValidationError(f"Invalid date: {date}", fields=["date"])
        else:
            cutoff = datetime.now(timezone.utc) - timedelta(days=review_after_days)
        items = await service.needs_review(cutoff)
        if not items:
            return "No memories need review before the specified date."
        lines = [
            f"{n}. **{item.title}** ({item.category})\n"
            f"   Last reviewed: {item.last_reviewed} ({item.days_since_review} days ago)\n"
            f"   ID: {item.id}\n"
            for n, item in enumerate(items, 1)
        ]
        return f"Found {len(items)} memory(ies) needing review:\n\n" + "\n".join(lines)

    @_reports_errors
    async def review_mem(memory_id: str) -> str:
        """Mark a memory as reviewed now."""
        service = await _service()
        memory = await service.review(memory_id)
        return f"Memory reviewed: {memory.title} (last reviewed {memory.last_reviewed})"

    @_reports_errors
    async def get_mem_stats() -> str:
        """Summarize store health: link integrity, review ages, tags and sources."""
        service = await _service()
        report = await service.stats()
        if report.total_memories == 0:
            return report.recommendations[0]
        lines = [
            "Memory Store Statistics:",
            "",
            f"- Total memories: {report.total_memories}",
            f"- Average days since review: {report.average_days_since_review:.1f}",
            f"- Average links per memory: {report.average_links_per_memory:.2f}",
            f"- Average tags per memory: {report.average_tags_per_memory:.2f}",
            f"- Average length: {report.average_word_count:.0f} words",
            f"- Orphaned memories: {len(report.orphaned_memories)}",
            f"- Broken links: {len(report.broken_links)}",
            f"- Unidirectional links: {len(report.unidirectional_links)}",
            f"- Link mismatches: {len(report.link_mismatches)}",
            f"- Invalid references: {len(report.invalid_references)}",
            f"- Duplicate ids: {len(report.duplicate_ids)}",
            f"- Without sources: {len(report.memories_without_sources)}",
            "",
            "Recommendations:",
        ]
        lines.extend(f"- {rec}" for rec in report.recommendations)
        return "\n".join(lines)

    return {
        "write_mem": write_mem,
        "read_mem": read_mem,
        "edit_mem": edit_mem,
        "delete_mem": delete_mem,
        "search_mem": search_mem,
        "list_mems": list_mems,
        "link_mem": link_mem,
        "unlink_mem": unlink_mem,
        "fix_links": fix_links,
        "reindex_mems": reindex_mems,
        "needs_review": needs_review,
        "review_mem": review_mem,
        "get_mem_stats": get_mem_stats,
    }
