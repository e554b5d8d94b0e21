"""
Read-only view of the local media tree that this node shares.

Layout under the library root::

    docs/<file>                 top-level documents
    <kind>/<gallery>/<file>     galleries, one directory each
"""

import logging
import os
import time
from pathlib import Path

from errors import FormatError, NotFound
from library.models import (
    DocContent,
    DocSummary,
    FolderInfo,
    GalleryDescriptor,
    GallerySource,
    MediaKind,
)

logger = logging.getLogger(__name__)

EXTENSIONS: dict[MediaKind, frozenset[str]] = {
    MediaKind.DOCS: frozenset(
        {".md", ".pdf", ".txt", ".rst", ".html", ".djvu", ".doc", ".docx"}
    ),
    MediaKind.IMAGES: frozenset(
        {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".webp", ".svg"}
    ),
    MediaKind.AUDIO: frozenset(
        {".mp3", ".wav", ".flac", ".aac", ".ogg", ".m4a", ".wma", ".opus"}
    ),
    MediaKind.VIDEO: frozenset(
        {".mp4", ".avi", ".mkv", ".mov", ".wmv", ".flv", ".webm", ".m4v",
         ".3gp", ".mpg", ".mpeg"}
    ),
}


def check_name(field: str, name: str) -> str:
    """Reject names that could escape their directory."""
    if not name or ".." in name or "/" in name or "\\" in name:
        raise FormatError(f"{field} {name!r} contains invalid characters")
    return name


def is_media_file(kind: MediaKind, filename: str) -> bool:
    return Path(filename).suffix.lower() in EXTENSIONS[kind]


def list_files(directory: Path, kind: MediaKind) -> list[str]:
    """Sorted names of the kind's files directly inside a directory."""
    return sorted(
        entry.name
        for entry in directory.iterdir()
        if entry.is_file() and is_media_file(kind, entry.name)
    )


def scan_galleries(
    base: Path, kind: MediaKind, source: GallerySource
) -> list[GalleryDescriptor]:
    """One descriptor per subdirectory of ``base``, sorted by name."""
    if not base.is_dir():
        return []

    galleries = []
    for entry in sorted(base.iterdir(), key=lambda p: p.name):
        if not entry.is_dir():
            continue
        files = list_files(entry, kind)
        galleries.append(
            GalleryDescriptor(
                name=entry.name,
                media_kind=kind,
                file_count=len(files),
                files=files,
                source=source,
            )
        )
    return galleries


class LocalLibrary:
    """Galleries and docs found under the library root."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def kind_dir(self, kind: MediaKind) -> Path:
        return self.root / kind.value

    def galleries(self, kind: MediaKind) -> list[GalleryDescriptor]:
        return scan_galleries(self.kind_dir(kind), kind, GallerySource.LIVE)

    def gallery(self, kind: MediaKind, name: str) -> GalleryDescriptor:
        path = self.kind_dir(kind) / check_name("gallery", name)
        if not path.is_dir():
            raise NotFound(f"gallery {name!r} not found")
        files = list_files(path, kind)
        return GalleryDescriptor(
            name=name, media_kind=kind, file_count=len(files), files=files
        )

    def file_path(self, kind: MediaKind, gallery: str, filename: str) -> Path:
        path = (
            self.kind_dir(kind)
            / check_name("gallery", gallery)
            / check_name("filename", filename)
        )
        if not path.is_file() or not is_media_file(kind, filename):
            raise NotFound(f"file {gallery}/{filename} not found")
        return path

    def docs(self) -> list[DocSummary]:
        docs_dir = self.kind_dir(MediaKind.DOCS)
        if not docs_dir.is_dir():
            return []
        summaries = []
        for name in list_files(docs_dir, MediaKind.DOCS):
            stat = (docs_dir / name).stat()
            summaries.append(
                DocSummary(filename=name, size=stat.st_size, modified=stat.st_mtime)
            )
        return summaries

    def doc_path(self, filename: str) -> Path:
        """Path of a top-level doc."""
        path = self.kind_dir(MediaKind.DOCS) / check_name("filename", filename)
        if not path.is_file() or not is_media_file(MediaKind.DOCS, filename):
            raise NotFound(f"doc {filename!r} not found")
        return path

    def doc(self, filename: str) -> DocContent:
        path = self.doc_path(filename)
        stat = path.stat()
        return DocContent(
            filename=filename,
            size=stat.st_size,
            modified=stat.st_mtime,
            content=path.read_text(encoding="utf-8", errors="replace"),
        )

    def folder_info(self) -> FolderInfo:
        """Walk every media tree and report the relative paths found."""
        files = []
        for kind in MediaKind:
            base = self.kind_dir(kind)
            if not base.is_dir():
                continue
            for dirpath, _, filenames in os.walk(base):
                for name in filenames:
                    if is_media_file(kind, name):
                        full = Path(dirpath) / name
                        files.append(full.relative_to(self.root).as_posix())
        return FolderInfo(path=str(self.root), files=sorted(files), last_scan=time.time())
