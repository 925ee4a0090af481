# src/mentor_tasks/tasks/blob_store.py

"""
Local filesystem BlobStore.

Good enough for a single host and for the CLI. Content is addressed by a random
key under `root/<task_id>/`, so two uploads of the same file never collide.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import uuid
from collections.abc import Iterable
from pathlib import Path

from ..core.errors import StorageFailure
from ..core.ports import BlobMetadata

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")

REF_SCHEME = "file://"


def _safe(name: str, default: str) -> str:
    cleaned = _SAFE_NAME.sub("_", (name or "").strip()).strip("._")
    return cleaned[:80] or default


class LocalBlobStore:
    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _write(self, content: bytes, metadata: BlobMetadata) -> str:
        task_dir = _safe(str(metadata.get("task_id") or ""), "misc")
        filename = _safe(str(metadata.get("filename") or ""), "upload.bin")
        rel = Path(task_dir) / f"{uuid.uuid4().hex}_{filename}"
        path = self._root / rel

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_bytes(content)
            os.replace(tmp, path)
        except OSError as e:
            raise StorageFailure(f"could not store {filename}: {e}") from e

        return REF_SCHEME + rel.as_posix()

    async def store(self, content: bytes, metadata: BlobMetadata) -> str:
        ref = await asyncio.to_thread(self._write, content, metadata)
        logger.debug("Blob stored ref=%s size=%d", ref, len(content))
        return ref

    def path_for(self, ref: str) -> Path:
        if not ref.startswith(REF_SCHEME):
            raise ValueError(f"not a local blob reference: {ref!r}")
        path = (self._root / ref[len(REF_SCHEME):]).resolve()
        if self._root.resolve() not in path.parents:
            raise ValueError(f"blob reference escapes the store root: {ref!r}")
        return path

    def read(self, ref: str) -> bytes:
        return self.path_for(ref).read_bytes()

    def discard(self, ref: str) -> bool:
        try:
            self.path_for(ref).unlink()
        except FileNotFoundError:
            return False
        logger.debug("Blob discarded ref=%s", ref)
        return True

    def collect_garbage(self, live_refs: Iterable[str]) -> list[str]:
        """
        Delete every stored blob not in `live_refs`.

        Blobs orphaned by aborted or losing submissions end up here.
        Returns the removed references.
        """
        live = set(live_refs)
        removed: list[str] = []
        for path in sorted(self._root.rglob("*")):
            if not path.is_file() or path.suffix == ".tmp":
                continue
            ref = REF_SCHEME + path.relative_to(self._root).as_posix()
            if ref in live:
                continue
            try:
                path.unlink()
            except OSError:
                logger.warning("Could not remove orphaned blob %s", path, exc_info=True)
                continue
            removed.append(ref)

        if removed:
            logger.info("Blob GC removed %d orphaned blob(s)", len(removed))
        return removed
