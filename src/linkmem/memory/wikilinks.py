"""Inline cross-reference markers ("wiki-links") in memory bodies.

Markers look like ``[[Target Title]]`` or ``[[Target Title|display text]]`` and
are keyed by title, not id. Markers written by the link manager are list items
under a ``## Related`` heading. Titles cannot contain ``|``, ``[`` or ``]`` (the
store rejects them), since those would end the marker target early.

None of these functions are Markdown-aware: markers inside code blocks or
quotes are matched and rewritten like any other text.
"""

from __future__ import annotations

import re

RELATED_HEADING = "## Related"

MARKER_RE = re.compile(r"\[\[([^\[\]|\n]+)(?:\|([^\[\]\n]*))?\]\]")

_RELATED_RE = re.compile(r"^## Related[ \t]*$", re.MULTILINE)
_SECTION_END_RE = re.compile(r"^#{1,2} ", re.MULTILINE)
_EMPTY_RELATED_RE = re.compile(r"(?:^|\n)## Related[ \t]*(?:\n[ \t]*)*(?=\n#{1,2} |\Z)")
_EXTERNAL_PREFIXES = ("http://", "https://")

# Reference-like text that is not a valid marker, flagged for manual cleanup.
_INVALID_REFERENCE_RES = (
    re.compile(r"\[\[\([^)\n]*\)\([^)\n]*\)\([^)\n]*\)(?:\|[^\]\n]*)?\]\]"),
    re.compile(r"\[\[\s*(?:\|[^\]\n]*)?\]\]"),
    re.compile(r"\[\[(?![^\[\]\n]*\]\])[^\[\]\n]{0,80}"),
    re.compile(r"(?<!\[)\[(?!\[)[^\[\]\n]+\]\](?!\])"),
    re.compile(r"(?<!!)\[[^\[\]\n]+\]\((?!https?://)[^)\s]+\.md\)"),
)
_LEGACY_MARKER_RE = _INVALID_REFERENCE_RES[0]


def format_marker(title: str, display: str | None = None) -> str:
    if display and display != title:
        return f"[[{title}|{display}]]"
    return f"[[{title}]]"


def _marker_pattern(title: str) -> re.Pattern[str]:
    return re.compile(r"\[\[" + re.escape(title) + r"(\|[^\[\]\n]*)?\]\]")


def find_wiki_links(content: str) -> list[str]:
    """Return the distinct marker targets in order of first appearance.

    >>> find_wiki_links("See [[Alpha]] and [[Beta|b]], again [[Alpha]]")
    ['Alpha', 'Beta']
    """
    targets: list[str] = []
    for match in MARKER_RE.finditer(content):
        target = match.group(1).strip()
        if target.startswith(_EXTERNAL_PREFIXES) or not target:
            continue
        if target not in targets:
            targets.append(target)
    return targets


def has_wiki_link(content: str, title: str) -> bool:
    return _marker_pattern(title).search(content) is not None


def rewrite_wiki_links(content: str, old_title: str, new_title: str) -> str:
    """Point every marker targeting ``old_title`` at ``new_title``.

    Display text is preserved: ``[[Old|x]]`` becomes ``[[New|x]]``.
    """
    if old_title == new_title:
        return content
    return _marker_pattern(old_title).sub(
        lambda m: f"[[{new_title}{m.group(1) or ''}]]", content
    )


def add_related_marker(content: str, title: str, display: str | None = None) -> str:
    """Append ``- [[title|display]]`` to the Related section, creating it if absent."""
    line = f"- {format_marker(title, display)}"
    body = content.rstrip()
    heading = _RELATED_RE.search(body)
    if heading is None:
        prefix = f"{body}\n\n" if body else ""
        return f"{prefix}{RELATED_HEADING}\n\n{line}\n"

    following = _SECTION_END_RE.search(body, heading.end())
    end = following.start() if following else len(body)
    section = body[:end].rstrip()
    if body[heading.start() : end].strip() == RELATED_HEADING:
        section += "\n"
    updated = f"{section}\n{line}"
    rest = body[end:]
    if rest:
        updated += f"\n\n{rest}"
    return updated + "\n"


def remove_related_marker(content: str, title: str) -> str:
    """Remove ``- [[title...]]`` list items and drop a Related section left empty."""
    pattern = re.compile(
        r"^[ \t]*[-*] \[\[" + re.escape(title) + r"(?:\|[^\[\]\n]*)?\]\][ \t]*(?:\n|\Z)",
        re.MULTILINE,
    )
    return _EMPTY_RELATED_RE.sub("", pattern.sub("", content))


def strip_related_section(content: str) -> str:
    heading = _RELATED_RE.search(content)
    if heading is None:
        return content
    following = _SECTION_END_RE.search(content, heading.end())
    rest = content[following.start() :] if following else ""
    head = content[: heading.start()].rstrip()
    if head and rest:
        return f"{head}\n\n{rest}"
    return head or rest


def strip_internal_markers(content: str) -> str:
    """Remove every internal marker, keeping ``[[http...]]`` external ones."""
    cleaned = _LEGACY_MARKER_RE.sub("", content)
    cleaned = MARKER_RE.sub(
        lambda m: m.group(0) if m.group(1).strip().startswith(_EXTERNAL_PREFIXES) else "",
        cleaned,
    )
    cleaned = re.sub(r"[ \t]+$", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def find_invalid_references(content: str) -> list[str]:
    """Return reference-like snippets that are not in ``[[Title]]`` form."""
    spans: list[tuple[int, int]] = []
    for pattern in _INVALID_REFERENCE_RES:
        for match in pattern.finditer(content):
            start, end = match.span()
            if any(s <= start < e for s, e in spans):
                continue
            spans.append((start, end))
    return [content[s:e].strip() for s, e in sorted(spans)]
