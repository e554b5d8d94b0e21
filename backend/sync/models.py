"""Pydantic models for bulk downloads."""

from pydantic import BaseModel, computed_field

from library.models import MediaKind

# Kinds DownloadOutcome keeps a counter for
COUNTED_KINDS = frozenset({MediaKind.DOCS, MediaKind.IMAGES})


class DownloadError(BaseModel):
    """One item that could not be fetched or saved."""
    item: str  # "<gallery>/<filename>", or the media kind for listing failures
    reason: str
    media_kind: MediaKind | None = None


class DownloadOutcome(BaseModel):
    """Aggregate result of one bulk download from a friend."""
    peer_id: str
    docs_downloaded: int = 0
    images_downloaded: int = 0
    files_attempted: int = 0
    errors: list[DownloadError] = []
    listing_errors: list[DownloadError] = []
    cancelled: bool = False

    @computed_field
    @property
    def partial_failure(self) -> bool:
        return bool(self.errors or self.listing_errors)

    def record_success(self, kind: MediaKind) -> None:
        if kind == MediaKind.DOCS:
            self.docs_downloaded += 1
        elif kind == MediaKind.IMAGES:
            self.images_downloaded += 1
        else:
            raise ValueError(f"no download counter for {kind.value}")
