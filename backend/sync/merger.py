"""Combine live and downloaded gallery listings into one view."""

from library.models import GalleryDescriptor, GallerySource


def merge_galleries(
    live: list[GalleryDescriptor], downloaded: list[GalleryDescriptor]
) -> list[GalleryDescriptor]:
    """Merge two listings by exact gallery name.

    Live galleries come first in their input order, followed by galleries
    that only exist in the download cache, also in input order. A name found
    in both yields the live entry flagged ``is_downloaded``. Inputs are left
    untouched.
    """
    merged: dict[str, GalleryDescriptor] = {}
    for gallery in live:
        if gallery.name not in merged:
            merged[gallery.name] = gallery.model_copy(
                update={"source": GallerySource.LIVE, "is_downloaded": False}
            )

    for gallery in downloaded:
        existing = merged.get(gallery.name)
        if existing is None:
            merged[gallery.name] = gallery.model_copy(
                update={"source": GallerySource.DOWNLOADED, "is_downloaded": False}
            )
        elif existing.source == GallerySource.LIVE:
            existing.is_downloaded = True

    return list(merged.values())
