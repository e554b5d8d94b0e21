"""
Outbound client for the peer surface of other nodes.

Every request is bounded by a fixed timeout and never retried; the caller
decides whether to try again. Transport failures are mapped onto the error
taxonomy in ``errors``.
"""

import logging
import time
from typing import Awaitable, Callable, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from config import PEER_REQUEST_TIMEOUT
from errors import NotFound, PeerTimeout, ProtocolError, Unreachable
from library.models import (
    DocContent,
    DocSummary,
    GalleryDescriptor,
    GallerySource,
    MediaKind,
)
from peers.models import ConnectionDescriptor, Friend, NodeInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

# async fn(peer_id) -> ConnectionDescriptor, raising NotFound for strangers
Resolver = Callable[[str], Awaitable[ConnectionDescriptor]]
# async fn(peer_id, when)
ContactCallback = Callable[[str, float], Awaitable[None]]


class GalleriesResponse(BaseModel):
    galleries: list[GalleryDescriptor]


class DocsResponse(BaseModel):
    docs: list[DocSummary]


class FriendsResponse(BaseModel):
    friends: list[Friend]


def _segment(value: str) -> str:
    return quote(value, safe="")


class PeerClient:
    """Talks to the /peer endpoints of remote nodes."""

    def __init__(
        self,
        timeout: float = PEER_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout), transport=transport
        )
        self._resolver: Resolver | None = None
        self._contact_callbacks: list[ContactCallback] = []

    def set_resolver(self, resolver: Resolver) -> None:
        """Register how peer IDs are turned into addresses."""
        self._resolver = resolver

    def on_contact(self, callback: ContactCallback) -> None:
        """Register callback: async fn(peer_id, when) after each successful call."""
        self._contact_callbacks.append(callback)

    async def close(self) -> None:
        await self._client.aclose()

    # --- transport ---

    async def _resolve(self, peer_id: str) -> ConnectionDescriptor:
        if self._resolver is None:
            raise NotFound(f"peer {peer_id} is unknown")
        return await self._resolver(peer_id)

    async def _get(self, host: str, port: int, path: str) -> httpx.Response:
        url = f"http://{host}:{port}{path}"
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as e:
            raise PeerTimeout(
                f"{host}:{port} did not answer within {self._timeout}s"
            ) from e
        except httpx.TransportError as e:
            raise Unreachable(f"{host}:{port} is unreachable: {e}") from e

        if response.status_code in (404, 410):
            raise NotFound(f"{path} not found on {host}:{port}")
        if response.status_code != 200:
            raise ProtocolError(
                f"{host}:{port} answered {path} with HTTP {response.status_code}"
            )
        return response

    async def _notify(self, peer_id: str) -> None:
        when = time.time()
        for cb in self._contact_callbacks:
            try:
                await cb(peer_id, when)
            except Exception as e:
                logger.error(f"Contact callback error: {e}")

    @staticmethod
    def _decode(response: httpx.Response, model: type[T]) -> T:
        try:
            return TypeAdapter(model).validate_json(response.content)
        except ValidationError as e:
            raise ProtocolError(
                f"undecodable response from {response.url}: {e.error_count()} error(s)"
            ) from e

    async def _peer_get(self, peer_id: str, path: str) -> httpx.Response:
        descriptor = await self._resolve(peer_id)
        response = await self._get(descriptor.host, descriptor.port, path)
        await self._notify(peer_id)
        return response

    # --- public API ---

    async def probe(self, host: str, port: int) -> NodeInfo:
        """Raw reachability check: ask whatever runs at host:port who it is."""
        response = await self._get(host, port, "/peer/info")
        info = self._decode(response, NodeInfo)
        await self._notify(info.node.peer_id)
        return info

    async def fetch_info(self, descriptor: ConnectionDescriptor) -> NodeInfo:
        return await self.probe(descriptor.host, descriptor.port)

    async def fetch_galleries(
        self, peer_id: str, media_kind: MediaKind
    ) -> list[GalleryDescriptor]:
        response = await self._peer_get(
            peer_id, f"/peer/galleries/{media_kind.value}"
        )
        galleries = self._decode(response, GalleriesResponse).galleries
        for gallery in galleries:
            gallery.media_kind = media_kind
            gallery.source = GallerySource.LIVE
            gallery.is_downloaded = False
        return galleries

    async def fetch_gallery(
        self, peer_id: str, media_kind: MediaKind, gallery: str
    ) -> GalleryDescriptor:
        response = await self._peer_get(
            peer_id, f"/peer/galleries/{media_kind.value}/{_segment(gallery)}"
        )
        return self._decode(response, GalleryDescriptor)

    async def fetch_file(
        self, peer_id: str, media_kind: MediaKind, gallery: str, filename: str
    ) -> bytes:
        response = await self._peer_get(
            peer_id,
            f"/peer/galleries/{media_kind.value}/{_segment(gallery)}/{_segment(filename)}",
        )
        return response.content

    async def fetch_docs(self, peer_id: str) -> list[DocSummary]:
        response = await self._peer_get(peer_id, "/peer/docs")
        return self._decode(response, DocsResponse).docs

    async def fetch_doc(self, peer_id: str, filename: str) -> DocContent:
        response = await self._peer_get(peer_id, f"/peer/docs/{_segment(filename)}")
        return self._decode(response, DocContent)

    async def fetch_doc_file(self, peer_id: str, filename: str) -> bytes:
        """Raw bytes of a top-level doc; fetch_doc returns it decoded as text."""
        response = await self._peer_get(
            peer_id, f"/peer/docs/{_segment(filename)}/file"
        )
        return response.content

    async def fetch_friends_of(self, peer_id: str) -> list[Friend]:
        response = await self._peer_get(peer_id, "/peer/friends")
        return self._decode(response, FriendsResponse).friends
