"""
Local cache of content downloaded from friends.

Files land under ``<download_dir>/<peer_id>/<media_kind>/<gallery>/<filename>``.
Paths never overlap between peers or galleries, so writers need no locking.
A file only appears under its final name once it is complete.
"""

import asyncio
import logging
import os
import threading
import uuid
from pathlib import Path

from errors import NotFound
from library.local import check_name, list_files, scan_galleries
from library.models import GalleryDescriptor, GallerySource, MediaKind

logger = logging.getLogger(__name__)

# Gallery segment holding docs a friend shares outside any gallery
TOP_LEVEL_DOCS = "_docs"


def _write_file(path: Path, data: bytes, abandoned: threading.Event) -> bool:
    """Write through a temp file; publish it only if the caller still wants it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.part")
    try:
        tmp.write_bytes(data)
        if abandoned.is_set():
            return False
        os.replace(tmp, path)
        return True
    finally:
        tmp.unlink(missing_ok=True)


class ContentCache:
    """Stores and lists downloaded peer content."""

    def __init__(self, download_dir: Path) -> None:
        self.download_dir = Path(download_dir)

    def kind_dir(self, peer_id: str, kind: MediaKind) -> Path:
        return self.download_dir / check_name("peer_id", peer_id) / kind.value

    def path_for(
        self, peer_id: str, kind: MediaKind, gallery: str, filename: str
    ) -> Path:
        return (
            self.kind_dir(peer_id, kind)
            / check_name("gallery", gallery)
            / check_name("filename", filename)
        )

    async def save(
        self, peer_id: str, kind: MediaKind, gallery: str, filename: str,
        data: bytes,
    ) -> Path:
        path = self.path_for(peer_id, kind, gallery, filename)
        # The thread cannot be cancelled; tell it to drop the write instead
        abandoned = threading.Event()
        try:
            await asyncio.to_thread(_write_file, path, data, abandoned)
        except asyncio.CancelledError:
            abandoned.set()
            raise
        logger.debug(f"Cached {peer_id}/{kind.value}/{gallery}/{filename} ({len(data)} bytes)")
        return path

    def galleries(self, peer_id: str, kind: MediaKind) -> list[GalleryDescriptor]:
        return scan_galleries(
            self.kind_dir(peer_id, kind), kind, GallerySource.DOWNLOADED
        )

    def gallery(self, peer_id: str, kind: MediaKind, name: str) -> GalleryDescriptor:
        path = self.kind_dir(peer_id, kind) / check_name("gallery", name)
        if not path.is_dir():
            raise NotFound(f"downloaded gallery {name!r} not found")
        files = list_files(path, kind)
        return GalleryDescriptor(
            name=name,
            media_kind=kind,
            file_count=len(files),
            files=files,
            source=GallerySource.DOWNLOADED,
        )

    def file_path(
        self, peer_id: str, kind: MediaKind, gallery: str, filename: str
    ) -> Path:
        path = self.path_for(peer_id, kind, gallery, filename)
        if not path.is_file():
            raise NotFound(f"downloaded file {gallery}/{filename} not found")
        return path

    def cached(
        self, peer_id: str, kind: MediaKind, gallery: str, filename: str
    ) -> Path | None:
        """Path of a cached file, or None when it was never downloaded."""
        try:
            return self.file_path(peer_id, kind, gallery, filename)
        except NotFound:
            return None
