"""Crop preview history and on-disk preview cleanup.

The history is a bounded, most-recent-first tuple of ``CropPreview``
entries. Every mutation replaces the whole tuple, so readers (the display
layer, listeners) always see a consistent snapshot.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..core.entities import CropPreview, CropStatus

logger = logging.getLogger(__name__)

HistoryListener = Callable[[Tuple[CropPreview, ...]], None]


class CropHistoryStore:
    """Bounded history of crop previews."""

    def __init__(self, storage, cache_dir, capacity: int = 10,
                 preview_prefix: str = "face_preview_",
                 clock: Callable[[], float] = time.time):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._storage = storage
        self.cache_dir = Path(cache_dir)
        self.capacity = capacity
        self.preview_prefix = preview_prefix
        self._clock = clock
        self._entries: Tuple[CropPreview, ...] = ()
        self._listeners: List[HistoryListener] = []

    @property
    def entries(self) -> Tuple[CropPreview, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def add_listener(self, listener: HistoryListener) -> None:
        self._listeners.append(listener)

    def _publish(self, entries: Tuple[CropPreview, ...]) -> None:
        self._entries = entries
        for listener in list(self._listeners):
            try:
                listener(entries)
            except Exception:
                logger.exception("Crop history listener failed")

    def preview_path(self, preview_id: str, extension: str = ".jpg") -> Path:
        """Where the preview image for ``preview_id`` is stored."""
        return self.cache_dir / f"{self.preview_prefix}{preview_id}{extension}"

    def append(self, entry: CropPreview) -> None:
        """Insert at the front, dropping the oldest entries beyond capacity."""
        entries = (entry,) + tuple(e for e in self._entries if e.id != entry.id)
        dropped = entries[self.capacity:]
        if dropped:
            logger.debug(f"Dropping {len(dropped)} old crop preview(s) from history")
        self._publish(entries[:self.capacity])

    def find(self, preview_id: str) -> Optional[CropPreview]:
        for entry in self._entries:
            if entry.id == preview_id:
                return entry
        return None

    def find_waiting(self) -> Optional[CropPreview]:
        """The entry still awaiting a recognition result, if any."""
        for entry in self._entries:
            if entry.status is CropStatus.WAITING:
                return entry
        return None

    def update_status(self, preview_id: str, status: CropStatus,
                      person_name: Optional[str] = None,
                      error_message: Optional[str] = None) -> Optional[CropPreview]:
        """Finalize the entry ``preview_id``.

        Entries are finalized exactly once. Returns the new entry, or None if
        the id is unknown or the entry already carries a final status.
        """
        if status is CropStatus.WAITING:
            raise ValueError("Entries can only be updated to a final status")

        for index, entry in enumerate(self._entries):
            if entry.id != preview_id:
                continue
            if entry.is_final:
                logger.warning(
                    f"Ignoring status update for preview {preview_id}: already {entry.status.value}"
                )
                return None
            updated = dataclasses.replace(
                entry, status=status, person_name=person_name, error_message=error_message
            )
            self._publish(self._entries[:index] + (updated,) + self._entries[index + 1:])
            return updated

        logger.warning(f"Status update for unknown preview {preview_id}")
        return None

    def clear(self) -> None:
        self._publish(())

    async def sweep_expired(self, now: Optional[float] = None, max_age: float = 3600) -> List[str]:
        """Delete preview files on disk older than ``max_age`` seconds.

        Selection is by filename prefix and modification time only, so files
        left over from previous runs are collected too.

        Returns:
            Names of the deleted files
        """
        now = self._clock() if now is None else now
        deleted: List[str] = []

        try:
            files = await self._storage.list_dir(self.cache_dir)
        except OSError as e:
            logger.error(f"Could not list preview directory {self.cache_dir}: {e}")
            return deleted

        for entry in files:
            if not entry.name.startswith(self.preview_prefix):
                continue
            if now - entry.mtime <= max_age:
                continue
            try:
                if await self._storage.delete_file(self.cache_dir / entry.name):
                    deleted.append(entry.name)
            except OSError as e:
                logger.warning(f"Failed to delete expired preview {entry.name}: {e}")

        if deleted:
            logger.info(f"Swept {len(deleted)} expired preview file(s)")
        return deleted


class PreviewSweeper:
    """Runs ``CropHistoryStore.sweep_expired`` on a fixed period."""

    def __init__(self, store: CropHistoryStore, interval: float = 1800, max_age: float = 3600):
        self.store = store
        self.interval = interval
        self.max_age = max_age
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> List[str]:
        return await self.store.sweep_expired(max_age=self.max_age)

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Preview sweep failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="preview-sweeper")
        logger.debug(f"Preview sweeper started (every {self.interval}s, max age {self.max_age}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
