"""Pydantic models for galleries and documents."""

from enum import Enum

from pydantic import BaseModel


class MediaKind(str, Enum):
    """The media trees a node shares."""
    DOCS = "docs"
    IMAGES = "images"
    AUDIO = "audio"
    VIDEO = "video"


class GallerySource(str, Enum):
    LIVE = "live"
    DOWNLOADED = "downloaded"


class GalleryDescriptor(BaseModel):
    """A named collection of files of one media kind."""
    name: str
    media_kind: MediaKind = MediaKind.IMAGES
    file_count: int = 0
    files: list[str] = []
    source: GallerySource = GallerySource.LIVE
    is_downloaded: bool = False


class DocSummary(BaseModel):
    filename: str
    size: int
    modified: float  # Unix timestamp


class DocContent(DocSummary):
    content: str


class FolderInfo(BaseModel):
    """Result of the last scan of the local library."""
    path: str
    files: list[str] = []
    last_scan: float
