"""Tests for inline [[marker]] text functions."""

from linkmem.memory.wikilinks import (
    add_related_marker,
    find_invalid_references,
    find_wiki_links,
    format_marker,
    has_wiki_link,
    remove_related_marker,
    rewrite_wiki_links,
    strip_internal_markers,
    strip_related_section,
)


class TestFind:
    def test_unique_targets_in_order(self):
        assert find_wiki_links("[[B]] then [[A|alias]] then [[B]]") == ["B", "A"]

    def test_external_markers_ignored(self):
        assert find_wiki_links("[[https://example.com]] and [[Note]]") == ["Note"]

    def test_has_wiki_link(self):
        assert has_wiki_link("see [[Deploy (v2)|here]]", "Deploy (v2)")
        assert not has_wiki_link("see [[Deploy v2]]", "Deploy")

    def test_format_marker(self):
        assert format_marker("A") == "[[A]]"
        assert format_marker("A", "A") == "[[A]]"
        assert format_marker("A", "text") == "[[A|text]]"


class TestRewrite:
    def test_keeps_display_text(self):
        content = "See [[Old]] and [[Old|x]] but not [[Older]]"
        assert rewrite_wiki_links(content, "Old", "New") == "See [[New]] and [[New|x]] but not [[Older]]"

    def test_special_characters_escaped(self):
        content = "[[C++ (v2)]] and [[C]]"
        assert rewrite_wiki_links(content, "C++ (v2)", "Cpp") == "[[Cpp]] and [[C]]"

    def test_same_title_noop(self):
        assert rewrite_wiki_links("[[A]]", "A", "A") == "[[A]]"

    def test_not_markdown_aware(self):
        content = "```\n[[Old]]\n```"
        assert rewrite_wiki_links(content, "Old", "New") == "```\n[[New]]\n```"


class TestRelatedSection:
    def test_creates_section(self):
        assert add_related_marker("Body", "Beta") == "Body\n\n## Related\n\n- [[Beta]]\n"

    def test_appends_to_section(self):
        content = add_related_marker("Body", "Beta")
        assert add_related_marker(content, "Gamma", "g") == (
            "Body\n\n## Related\n\n- [[Beta]]\n- [[Gamma|g]]\n"
        )

    def test_appends_before_next_heading(self):
        content = "Intro\n\n## Related\n\n- [[A]]\n\n## Notes\nmore"
        assert add_related_marker(content, "B") == (
            "Intro\n\n## Related\n\n- [[A]]\n- [[B]]\n\n## Notes\nmore\n"
        )

    def test_empty_body(self):
        assert add_related_marker("", "A") == "## Related\n\n- [[A]]\n"

    def test_remove_keeps_other_entries(self):
        content = "Body\n\n## Related\n\n- [[Beta]]\n- [[Gamma]]\n"
        assert remove_related_marker(content, "Beta") == "Body\n\n## Related\n\n- [[Gamma]]\n"

    def test_remove_last_entry_drops_section(self):
        content = add_related_marker("Body", "Beta", "see beta")
        assert remove_related_marker(content, "Beta").strip() == "Body"

    def test_remove_leaves_inline_mentions(self):
        content = "Body mentions [[Beta]]\n\n## Related\n\n- [[Beta]]\n"
        assert remove_related_marker(content, "Beta").strip() == "Body mentions [[Beta]]"

    def test_strip_related_section(self):
        content = "Intro\n\n## Related\n\n- [[A]]\n\n## Notes\nmore"
        assert strip_related_section(content) == "Intro\n\n## Notes\nmore"
        assert strip_related_section("Intro\n\n## Related\n\n- [[A]]\n") == "Intro"


class TestStripInternalMarkers:
    def test_keeps_external(self):
        content = "Text [[A]] and [[https://x.example]] [[(cat)(title)(id)|t]]"
        cleaned = strip_internal_markers(content)
        assert "[[A]]" not in cleaned
        assert "(cat)" not in cleaned
        assert "[[https://x.example]]" in cleaned

    def test_collapses_blank_lines(self):
        assert strip_internal_markers("a\n\n[[X]]\n\n\nb") == "a\n\nb"


class TestInvalidReferences:
    def test_valid_markers_pass(self):
        assert find_invalid_references("[[Title]] and [[T|x]] and [site](https://x.md)") == []

    def test_empty_marker(self):
        assert find_invalid_references("see [[]] here") == ["[[]]"]

    def test_unclosed_marker(self):
        assert find_invalid_references("see [[Unclosed text") == ["[[Unclosed text"]

    def test_single_open(self):
        assert find_invalid_references("see [Title]] here") == ["[Title]]"]

    def test_legacy_marker(self):
        assert find_invalid_references("[[(ops)(Deploy)(123)]]") == ["[[(ops)(Deploy)(123)]]"]

    def test_markdown_file_link(self):
        assert find_invalid_references("see [notes](other-note.md)") == ["[notes](other-note.md)"]
