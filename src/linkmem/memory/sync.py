"""Keep search indexes in step with the memory files behind them.

The registry holds one ``MemoryService`` per (store dir, index dir) pair and
decides from file mtimes whether that service's index can still be trusted:

- the index artifact is older than the newest memory file (files were edited
  outside the service, e.g. by hand or by a ``git pull``);
- the artifact vanished while a service exists;
- the artifact mtime differs from the baseline recorded after the service's
  own last write (something else rewrote the index).

Any of these triggers a full rebuild. Services report their own index writes
through ``refresh_baseline`` so they never look external.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from linkmem.config import LinkmemConfig
from linkmem.memory.index import INDEX_FILENAME
from linkmem.memory.service import MemoryService
from linkmem.memory.store import parse_memory_path

logger = logging.getLogger(__name__)

RegistryKey = tuple[Path, Path]


class IndexState(Enum):
    UNINITIALIZED = "uninitialized"
    SYNCED = "synced"
    STALE_BEHIND = "stale_behind"
    STALE_EXTERNAL = "stale_external"


@dataclass
class _Entry:
    service: MemoryService
    baseline_ns: int | None = None


def _mtime_ns(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None


def newest_memory_mtime(store_dir: Path) -> int:
    """Newest mtime among memory files in ``store_dir`` (0 when there are none)."""
    newest = 0
    if not store_dir.is_dir():
        return newest
    for path in store_dir.glob("*.md"):
        if parse_memory_path(path) is None:
            continue
        mtime = _mtime_ns(path)
        if mtime is not None and mtime > newest:
            newest = mtime
    return newest


class IndexRegistry:
    """One shared ``MemoryService`` per (store, index) pair, rebuilt when stale."""

    def __init__(self, config: LinkmemConfig | None = None) -> None:
        self.config = config or LinkmemConfig()
        self._entries: dict[RegistryKey, _Entry] = {}
        self._locks: dict[RegistryKey, asyncio.Lock] = {}
        self._rebuilds: dict[RegistryKey, int] = {}

    # ── Keys & paths ──────────────────────────────────────────

    def _key(self, store_dir: Path | None, index_dir: Path | None) -> RegistryKey:
        store = Path(store_dir or self.config.store_dir).expanduser().resolve()
        index = Path(index_dir or self.config.index_dir).expanduser().resolve()
        return store, index

    def _get_lock(self, key: RegistryKey) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @property
    def instance_count(self) -> int:
        return len(self._entries)

    def rebuild_count(self, store_dir: Path | None = None, index_dir: Path | None = None) -> int:
        """How many times the index for this pair has been (re)built."""
        return self._rebuilds.get(self._key(store_dir, index_dir), 0)

    # ── Staleness ─────────────────────────────────────────────

    def check_state(self, store_dir: Path | None = None, index_dir: Path | None = None) -> IndexState:
        key = self._key(store_dir, index_dir)
        entry = self._entries.get(key)
        if entry is None:
            return IndexState.UNINITIALIZED

        store, index = key
        artifact_mtime = _mtime_ns(index / INDEX_FILENAME)
        if artifact_mtime is None:
            logger.info("Index artifact missing under %s", index)
            return IndexState.STALE_EXTERNAL

        newest = newest_memory_mtime(store)
        if newest > artifact_mtime:
            logger.info(
                "Index is %.1fs older than newest memory file in %s",
                (newest - artifact_mtime) / 1e9,
                store,
            )
            return IndexState.STALE_BEHIND

        if entry.baseline_ns is not None and artifact_mtime != entry.baseline_ns:
            logger.info("Index artifact under %s was modified externally", index)
            return IndexState.STALE_EXTERNAL

        logger.debug("Index under %s is in sync", index)
        return IndexState.SYNCED

    def refresh_baseline(self, store_dir: Path | None = None, index_dir: Path | None = None) -> None:
        """Record the artifact's current mtime as this registry's own write."""
        key = self._key(store_dir, index_dir)
        entry = self._entries.get(key)
        if entry is not None:
            entry.baseline_ns = _mtime_ns(key[1] / INDEX_FILENAME)

    # ── Services ──────────────────────────────────────────────

    async def get_service(
        self, store_dir: Path | None = None, index_dir: Path | None = None
    ) -> MemoryService:
        """Return the shared service for this pair, rebuilding its index if needed."""
        key = self._key(store_dir, index_dir)
        async with self._get_lock(key):
            state = await asyncio.to_thread(self.check_state, *key)
            if state is not IndexState.SYNCED:
                logger.info("Index state %s for %s, rebuilding", state.value, key[0])
                await self._ensure_index_sync(key)
            return self._entries[key].service

    async def ensure_index_sync(
        self, store_dir: Path | None = None, index_dir: Path | None = None
    ) -> MemoryService:
        """Force a rebuild of the index for this pair."""
        key = self._key(store_dir, index_dir)
        async with self._get_lock(key):
            await self._ensure_index_sync(key)
            return self._entries[key].service

    async def _ensure_index_sync(self, key: RegistryKey) -> None:
        store, index = key
        old = self._entries.pop(key, None)
        if old is not None:
            try:
                await old.service.destroy()
            except OSError as e:
                logger.warning("Failed to destroy previous index for %s: %s", store, e)

        service = MemoryService(
            store,
            index,
            config=self.config,
            on_index_write=lambda: self.refresh_baseline(*key),
        )
        await service.destroy()
        await service.initialize()
        self._entries[key] = _Entry(service)
        count = await service.reindex()
        self.refresh_baseline(*key)
        self._rebuilds[key] = self._rebuilds.get(key, 0) + 1
        logger.info("Rebuilt index for %s (%d memories)", store, count)

    async def destroy_all(self) -> None:
        """Close every service handle. Index artifacts stay on disk."""
        for key, entry in list(self._entries.items()):
            try:
                await entry.service.close()
            except Exception as e:
                logger.warning("Failed to close memory service for %s: %s", key[0], e)
        self._entries.clear()
