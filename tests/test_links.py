"""Tests for bidirectional linking and link repair."""

from __future__ import annotations

import uuid

import pytest
from pathlib import Path

from linkmem.errors import NotFoundError
from linkmem.memory.links import LinkManager
from linkmem.memory.store import MemoryStore


@pytest.fixture
def store(tmp_path: Path) -> MemoryStore:
    return MemoryStore(tmp_path / "memories")


@pytest.fixture
def links(store: MemoryStore) -> LinkManager:
    return LinkManager(store)


class TestLink:
    def test_link_both_ways(self, store: MemoryStore, links: LinkManager):
        a = store.create("Alpha", "About alpha")
        b = store.create("Beta", "About beta")
        links.link(a.id, b.id)

        a, b = store.get(a.id), store.get(b.id)
        assert a.links == [b.id]
        assert b.links == [a.id]
        assert a.content == "About alpha\n\n## Related\n\n- [[Beta]]"
        assert b.content == "About beta\n\n## Related\n\n- [[Alpha]]"

    def test_link_text_on_source_only(self, store: MemoryStore, links: LinkManager):
        a = store.create("Alpha", "A")
        b = store.create("Beta", "B")
        source, target = links.link(a.id, b.id, "see beta")
        assert "- [[Beta|see beta]]" in source.content
        assert "- [[Alpha]]" in target.content

    def test_idempotent(self, store: MemoryStore, links: LinkManager):
        a = store.create("Alpha", "A")
        b = store.create("Beta", "B")
        links.link(a.id, b.id)
        first = store.get(a.id), store.get(b.id)
        links.link(a.id, b.id)
        second = store.get(a.id), store.get(b.id)
        for before, after in zip(first, second):
            assert after.links == before.links
            assert after.content == before.content
            assert after.content.count("[[") == 1

    def test_keeps_other_links(self, store: MemoryStore, links: LinkManager):
        a = store.create("Alpha", "A")
        b = store.create("Beta", "B")
        c = store.create("Gamma", "C")
        links.link(a.id, b.id)
        links.link(a.id, c.id)
        a = store.get(a.id)
        assert a.links == [b.id, c.id]
        assert "- [[Beta]]\n- [[Gamma]]" in a.content

    def test_missing_side_named(self, store: MemoryStore, links: LinkManager):
        a = store.create("Alpha", "A")
        with pytest.raises(NotFoundError) as exc:
            links.link(str(uuid.uuid4()), a.id)
        assert exc.value.side == "source"
        with pytest.raises(NotFoundError) as exc:
            links.link(a.id, str(uuid.uuid4()))
        assert exc.value.side == "target"


class TestUnlink:
    def test_restores_original_state(self, store: MemoryStore, links: LinkManager):
        a = store.create("Alpha", "About alpha")
        b = store.create("Beta", "About beta")
        links.link(a.id, b.id, "see beta")
        links.unlink(a.id, b.id)

        a2, b2 = store.get(a.id), store.get(b.id)
        assert a2.links == [] and b2.links == []
        assert a2.content == a.content
        assert b2.content == b.content

    def test_unlink_from_other_side(self, store: MemoryStore, links: LinkManager):
        a = store.create("Alpha", "A")
        b = store.create("Beta", "B")
        links.link(a.id, b.id)
        links.unlink(b.id, a.id)
        assert store.get(a.id).links == []
        assert "[[" not in store.get(a.id).content

    def test_missing(self, store: MemoryStore, links: LinkManager):
        a = store.create("Alpha", "A")
        with pytest.raises(NotFoundError) as exc:
            links.unlink(a.id, str(uuid.uuid4()))
        assert exc.value.side == "target"


class TestRepair:
    def test_rebuilds_from_structured_links(self, store: MemoryStore, links: LinkManager):
        a = store.create("Alpha", "About alpha, see [[Ghost]] and [[https://example.com]]")
        b = store.create("Beta", "B")
        links.link(a.id, b.id)
        missing = str(uuid.uuid4())
        store.update(a.id, links=[b.id, missing])

        result = links.repair(a.id)
        assert result.removed == [b.id, missing]
        assert result.relinked == [b.id]
        assert result.failed == [missing]

        a, b = store.get(a.id), store.get(b.id)
        assert a.links == [b.id]
        assert b.links == [a.id]
        assert "[[Ghost]]" not in a.content
        assert "[[https://example.com]]" in a.content
        assert a.content.count("[[Beta]]") == 1
        assert "[[Alpha]]" in b.content

    def test_missing_memory(self, links: LinkManager):
        with pytest.raises(NotFoundError):
            links.repair(str(uuid.uuid4()))
