"""Tests for index staleness detection and rebuilds."""

from __future__ import annotations

import asyncio
import os

import pytest
from pathlib import Path

from linkmem.config import LinkmemConfig
from linkmem.memory.codec import Memory, encode, utc_now
from linkmem.memory.index import INDEX_FILENAME
from linkmem.memory.sync import IndexRegistry, IndexState


@pytest.fixture
def config(tmp_path: Path) -> LinkmemConfig:
    return LinkmemConfig(store_dir=tmp_path / "memories", index_dir=tmp_path / "index")


@pytest.fixture
def registry(config: LinkmemConfig) -> IndexRegistry:
    return IndexRegistry(config)


def _artifact(config: LinkmemConfig) -> Path:
    return config.index_dir / INDEX_FILENAME


def _shift_mtime(path: Path, seconds: float) -> None:
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + int(seconds * 1e9)))


class TestGetService:
    @pytest.mark.asyncio
    async def test_first_call_builds_once(self, registry: IndexRegistry):
        assert registry.check_state() is IndexState.UNINITIALIZED
        service = await registry.get_service()
        assert registry.rebuild_count() == 1
        assert registry.instance_count == 1
        assert registry.check_state() is IndexState.SYNCED
        assert await registry.get_service() is service
        assert registry.rebuild_count() == 1
        await registry.destroy_all()

    @pytest.mark.asyncio
    async def test_existing_files_indexed(self, registry: IndexRegistry, config: LinkmemConfig):
        config.store_dir.mkdir(parents=True)
        now = utc_now()
        memory = Memory(
            id="0f8fad5b-d9cb-469f-a165-70867728950e",
            title="Pulled note",
            category="general",
            content="arrived by git pull",
            created_at=now,
            updated_at=now,
            last_reviewed=now,
        )
        (config.store_dir / f"general|pulled-note|{memory.id}.md").write_text(encode(memory))

        service = await registry.get_service()
        assert [h.id for h in await service.search("pull")] == [memory.id]
        await registry.destroy_all()

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_handle(self, registry: IndexRegistry):
        first, second = await asyncio.gather(registry.get_service(), registry.get_service())
        assert first is second
        assert registry.rebuild_count() == 1
        await registry.destroy_all()

    @pytest.mark.asyncio
    async def test_services_apply_config_templates(self, tmp_path: Path):
        config = LinkmemConfig(
            store_dir=tmp_path / "memories",
            index_dir=tmp_path / "index",
            templates={"ops": {"tags": ["ops"], "owner": "sre"}},
        )
        registry = IndexRegistry(config)
        service = await registry.get_service()
        memory = await service.create("Runbook", "body", "ops")
        assert memory.tags == ["ops"]
        assert memory.custom == {"owner": "sre"}
        await registry.destroy_all()

    @pytest.mark.asyncio
    async def test_separate_pairs(self, registry: IndexRegistry, tmp_path: Path):
        await registry.get_service()
        await registry.get_service(tmp_path / "other", tmp_path / "other-index")
        assert registry.instance_count == 2
        await registry.destroy_all()
        assert registry.instance_count == 0


class TestStaleness:
    @pytest.mark.asyncio
    async def test_own_writes_do_not_rebuild(self, registry: IndexRegistry):
        service = await registry.get_service()
        a = await service.create("Alpha", "A")
        b = await service.create("Beta", "B")
        await service.link(a.id, b.id)
        await service.update(b.id, title="Bravo")
        await service.review(a.id)
        await service.fix_links(a.id)
        await service.delete(b.id)

        assert registry.check_state() is IndexState.SYNCED
        assert await registry.get_service() is service
        assert registry.rebuild_count() == 1
        await registry.destroy_all()

    @pytest.mark.asyncio
    async def test_external_index_change_rebuilds_once(
        self, registry: IndexRegistry, config: LinkmemConfig
    ):
        service = await registry.get_service()
        await service.create("Alpha", "A")
        _shift_mtime(_artifact(config), 5)

        assert registry.check_state() is IndexState.STALE_EXTERNAL
        rebuilt = await registry.get_service()
        assert rebuilt is not service
        assert registry.rebuild_count() == 2
        await registry.get_service()
        assert registry.rebuild_count() == 2
        assert rebuilt.index.size() == 1
        await registry.destroy_all()

    @pytest.mark.asyncio
    async def test_newer_memory_files_rebuild(self, registry: IndexRegistry, config: LinkmemConfig):
        service = await registry.get_service()
        memory = await service.create("Alpha", "original words")
        text = memory.file_path.read_text(encoding="utf-8")
        memory.file_path.write_text(text.replace("original words", "edited by hand"))
        _shift_mtime(_artifact(config), -10)

        assert registry.check_state() is IndexState.STALE_BEHIND
        service = await registry.get_service()
        assert [h.id for h in await service.search("hand")] == [memory.id]
        assert registry.rebuild_count() == 2
        await registry.destroy_all()

    @pytest.mark.asyncio
    async def test_missing_artifact_rebuilds(self, registry: IndexRegistry, config: LinkmemConfig):
        service = await registry.get_service()
        await service.create("Alpha", "A")
        _artifact(config).unlink()

        assert registry.check_state() is IndexState.STALE_EXTERNAL
        service = await registry.get_service()
        assert _artifact(config).exists()
        assert service.index.size() == 1
        assert registry.rebuild_count() == 2
        await registry.destroy_all()

    @pytest.mark.asyncio
    async def test_explicit_rebuild(self, registry: IndexRegistry):
        await registry.get_service()
        await registry.ensure_index_sync()
        assert registry.rebuild_count() == 2
        assert registry.check_state() is IndexState.SYNCED
        await registry.destroy_all()
