"""
Content sync engine: bulk download of a friend's docs and galleries.

Fetches the friend's catalogs, fans out one fetch-and-save task per file
with bounded parallelism, and folds every per-file result into a single
DownloadOutcome. Per-item failures never abort siblings and never escape.
"""

import asyncio
import logging

from config import FILE_WRITE_TIMEOUT, MAX_PARALLEL_TRANSFERS, SYNC_MEDIA_KINDS
from errors import PeerShelfError
from friends.registry import FriendRegistry
from library.models import MediaKind
from peers.client import PeerClient
from sync.cache import TOP_LEVEL_DOCS, ContentCache
from sync.models import COUNTED_KINDS, DownloadError, DownloadOutcome

logger = logging.getLogger(__name__)

TOP_LEVEL_LABEL = "docs (top level)"

# (kind, gallery, filename); gallery is None for a top-level doc
Item = tuple[MediaKind, str | None, str]


def describe(exc: BaseException) -> str:
    """Short reason string for an error entry."""
    if isinstance(exc, PeerShelfError):
        return f"{exc.code}: {exc.message}"
    if isinstance(exc, asyncio.TimeoutError):
        return f"timeout: write did not finish within {FILE_WRITE_TIMEOUT}s"
    return f"{type(exc).__name__}: {exc}"


def item_name(gallery: str | None, filename: str) -> str:
    return filename if gallery is None else f"{gallery}/{filename}"


class ContentSyncEngine:
    """Downloads everything a friend shares into the local cache."""

    def __init__(
        self,
        registry: FriendRegistry,
        client: PeerClient,
        cache: ContentCache,
        max_parallel: int = MAX_PARALLEL_TRANSFERS,
        media_kinds: tuple[str, ...] = SYNC_MEDIA_KINDS,
    ) -> None:
        self._registry = registry
        self._client = client
        self._cache = cache
        self._max_parallel = max_parallel
        self._media_kinds = [MediaKind(k) for k in media_kinds]
        unsupported = [k.value for k in self._media_kinds if k not in COUNTED_KINDS]
        if unsupported:
            raise ValueError(f"cannot sync media kinds {unsupported}")

    async def download_all(
        self, peer_id: str, deadline: float | None = None
    ) -> DownloadOutcome:
        """Best-effort download of every doc and gallery file of a friend.

        Raises NotFound only when ``peer_id`` is not a friend. Everything
        after that is captured in the returned outcome. ``deadline`` is in
        seconds and covers the whole call; items still running when it
        expires are abandoned and reported as cancelled.
        """
        await self._registry.get(peer_id)

        loop = asyncio.get_running_loop()
        expires_at = None if deadline is None else loop.time() + deadline
        outcome = DownloadOutcome(peer_id=peer_id)
        logger.info(f"Starting bulk download from {peer_id}")

        items = await self._fetch_listings(peer_id, outcome, expires_at, deadline)

        semaphore = asyncio.Semaphore(self._max_parallel)
        tasks: dict[asyncio.Task, Item] = {}
        for kind, gallery, filename in items:
            task = asyncio.create_task(
                self._fetch_and_save(
                    peer_id, kind, gallery, filename, semaphore, outcome
                )
            )
            tasks[task] = (kind, gallery, filename)
        outcome.files_attempted = len(tasks)

        if tasks:
            remaining = None if expires_at is None else max(0.0, expires_at - loop.time())
            _, pending = await asyncio.wait(tasks, timeout=remaining)
            if pending:
                await self._abandon(pending, tasks, outcome, deadline)

        logger.info(
            f"Bulk download from {peer_id} finished: "
            f"{outcome.docs_downloaded} docs, {outcome.images_downloaded} images, "
            f"{len(outcome.errors)} error(s) of {outcome.files_attempted} file(s)"
        )
        return outcome

    async def _list_top_level_docs(self, peer_id: str) -> list[Item]:
        docs = await self._client.fetch_docs(peer_id)
        return [(MediaKind.DOCS, None, doc.filename) for doc in docs]

    async def _list_galleries(self, peer_id: str, kind: MediaKind) -> list[Item]:
        galleries = await self._client.fetch_galleries(peer_id, kind)
        return [
            (kind, gallery.name, filename)
            for gallery in galleries
            for filename in gallery.files
        ]

    async def _fetch_listings(
        self,
        peer_id: str,
        outcome: DownloadOutcome,
        expires_at: float | None,
        deadline: float | None,
    ) -> list[Item]:
        """Fetch every catalog concurrently and flatten them into items."""
        fetches: dict[asyncio.Task, tuple[str, MediaKind]] = {}
        if MediaKind.DOCS in self._media_kinds:
            task = asyncio.create_task(self._list_top_level_docs(peer_id))
            fetches[task] = (TOP_LEVEL_LABEL, MediaKind.DOCS)
        for kind in self._media_kinds:
            task = asyncio.create_task(self._list_galleries(peer_id, kind))
            fetches[task] = (kind.value, kind)

        remaining = None
        if expires_at is not None:
            remaining = max(0.0, expires_at - asyncio.get_running_loop().time())
        _, pending = await asyncio.wait(fetches, timeout=remaining)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            outcome.cancelled = True

        items = []
        for task, (label, kind) in fetches.items():
            if task.cancelled():
                outcome.listing_errors.append(
                    DownloadError(
                        item=label,
                        reason=f"cancelled: deadline of {deadline}s exceeded",
                        media_kind=kind,
                    )
                )
            elif task.exception() is not None:
                exc = task.exception()
                logger.warning(f"Could not list {label} of {peer_id}: {exc}")
                outcome.listing_errors.append(
                    DownloadError(item=label, reason=describe(exc), media_kind=kind)
                )
            else:
                items.extend(task.result())
        return items

    async def _fetch_and_save(
        self,
        peer_id: str,
        kind: MediaKind,
        gallery: str | None,
        filename: str,
        semaphore: asyncio.Semaphore,
        outcome: DownloadOutcome,
    ) -> None:
        """Fetch one file and write it to the cache, recording the result."""
        folder = TOP_LEVEL_DOCS if gallery is None else gallery
        async with semaphore:
            try:
                # Validate the target before spending a transfer on it
                self._cache.path_for(peer_id, kind, folder, filename)
                if gallery is None:
                    data = await self._client.fetch_doc_file(peer_id, filename)
                else:
                    data = await self._client.fetch_file(peer_id, kind, gallery, filename)
                await asyncio.wait_for(
                    self._cache.save(peer_id, kind, folder, filename, data),
                    timeout=FILE_WRITE_TIMEOUT,
                )
            except Exception as e:
                item = item_name(gallery, filename)
                logger.warning(f"Failed to download {item} from {peer_id}: {e}")
                outcome.errors.append(
                    DownloadError(item=item, reason=describe(e), media_kind=kind)
                )
            else:
                outcome.record_success(kind)

    async def _abandon(
        self,
        pending: set[asyncio.Task],
        tasks: dict[asyncio.Task, Item],
        outcome: DownloadOutcome,
        deadline: float | None,
    ) -> None:
        """Cancel unfinished tasks and record each as a cancelled item."""
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        outcome.cancelled = True
        for task in pending:
            if not task.cancelled():
                # Finished on its own between the timeout and the cancel
                continue
            kind, gallery, filename = tasks[task]
            outcome.errors.append(
                DownloadError(
                    item=item_name(gallery, filename),
                    reason=f"cancelled: deadline of {deadline}s exceeded",
                    media_kind=kind,
                )
            )
        logger.warning(
            f"Bulk download from {outcome.peer_id} hit its {deadline}s deadline; "
            f"{len(pending)} item(s) abandoned"
        )
