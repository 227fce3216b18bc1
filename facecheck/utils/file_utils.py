"""File system utilities."""

import os
import asyncio
import logging
from pathlib import Path
from typing import List, Union

from ..core.entities import FileEntry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def write_bytes(path: PathLike, data: bytes) -> None:
    """Write bytes to ``path`` atomically, creating parent directories."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(target.name + ".tmp")
    with open(tmp, "wb") as f:
        f.write(data)
    os.replace(tmp, target)


def read_bytes(path: PathLike) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def list_entries(directory: PathLike) -> List[FileEntry]:
    """Regular files in ``directory`` with their modification times."""
    entries = []
    with os.scandir(directory) as it:
        for entry in it:
            if not entry.is_file():
                continue
            try:
                mtime = entry.stat().st_mtime
            except FileNotFoundError:
                continue  # deleted between scandir and stat
            entries.append(FileEntry(name=entry.name, mtime=mtime, path=entry.path))
    return entries


class LocalFileStorage:
    """Async facade over the local file system.

    Blocking calls run in the default executor so the event loop keeps
    scheduling detection cycles while images are read or written.
    """

    async def write_file(self, path: PathLike, data: bytes) -> str:
        await asyncio.to_thread(write_bytes, path, data)
        logger.debug(f"Wrote {len(data)} bytes to {path}")
        return str(path)

    async def read_file(self, path: PathLike) -> bytes:
        return await asyncio.to_thread(read_bytes, path)

    async def list_dir(self, directory: PathLike) -> List[FileEntry]:
        if not os.path.isdir(directory):
            return []
        return await asyncio.to_thread(list_entries, directory)

    async def delete_file(self, path: PathLike) -> bool:
        """Delete a file. Returns False if it was already gone."""
        try:
            await asyncio.to_thread(os.remove, path)
            return True
        except FileNotFoundError:
            return False

    async def exists(self, path: PathLike) -> bool:
        return await asyncio.to_thread(os.path.isfile, path)
