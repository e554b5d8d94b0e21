"""REST API routes for the local user interface."""

import logging
import mimetypes

from fastapi import APIRouter, Query, Response
from fastapi.responses import FileResponse
from pydantic import BaseModel

from config import API_PORT
from errors import FormatError, PeerShelfError
from library.models import MediaKind
from peers.descriptor import build, parse
from peers.descriptor import format as format_descriptor
from sync.merger import merge_galleries

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These will be injected by main.py at startup
_node = None
_library = None
_client = None
_registry = None
_cache = None
_engine = None
_discovery = None


def init_routes(
    node, library, client, registry, cache, engine, discovery=None
) -> None:
    """Inject service dependencies into the routes module."""
    global _node, _library, _client, _registry, _cache, _engine, _discovery
    _node = node
    _library = library
    _client = client
    _registry = registry
    _cache = cache
    _engine = engine
    _discovery = discovery


def _media_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


# --- Local node ---

@router.get("/info")
async def get_info():
    """Local node identity plus a scan of the shared folder."""
    return {
        "node": _node.model_dump(),
        "folderInfo": _library.folder_info().model_dump(),
    }


@router.get("/connection-string")
async def get_connection_string():
    """The string a friend pastes to add this node."""
    descriptor = build(_node.host, _node.port, _node.peer_id)
    return {"connection_string": format_descriptor(descriptor)}


# --- Discovery ---

class DiscoverBody(BaseModel):
    ip: str
    port: int = API_PORT


@router.post("/discover")
async def discover(body: DiscoverBody):
    """Probe a raw address. Does not touch the friend list."""
    if not body.ip.strip():
        raise FormatError("ip is required")
    info = await _client.probe(body.ip.strip(), body.port)
    return info.model_dump(by_alias=True)


@router.get("/peers")
async def list_nearby():
    """Nodes currently beaconing on the LAN."""
    nearby = _discovery.nearby() if _discovery else []
    return {"peers": [n.model_dump() for n in nearby], "count": len(nearby)}


# --- Friends ---

class AddFriendBody(BaseModel):
    connection_string: str
    peer_name: str | None = None


@router.get("/friends")
async def list_friends():
    friends = await _registry.list()
    return {"friends": [f.model_dump() for f in friends], "count": len(friends)}


@router.post("/friends")
async def add_friend(body: AddFriendBody):
    """Handshake with the peer behind a connection string and befriend it."""
    # Pasted strings often end in a newline
    descriptor = parse(body.connection_string.strip())
    friend = await _registry.add(descriptor, body.peer_name)
    return friend.model_dump()


@router.get("/friends/{peer_id}")
async def get_friend(peer_id: str):
    friend = await _registry.get(peer_id)
    return friend.model_dump()


@router.post("/friends/{peer_id}/reconnect")
async def reconnect_friend(peer_id: str):
    """Handshake with a friend again at its stored address."""
    friend = await _registry.reconnect(peer_id)
    return friend.model_dump()


@router.delete("/friends/{peer_id}")
async def remove_friend(peer_id: str):
    await _registry.remove(peer_id)
    return {"status": "success", "message": "Friend removed successfully"}


@router.get("/peer-friends/{peer_id}")
async def list_peer_friends(peer_id: str):
    """A friend's own friend list, fetched live."""
    friends = await _client.fetch_friends_of(peer_id)
    return {"friends": [f.model_dump() for f in friends], "count": len(friends)}


# --- Live galleries ---

@router.get("/peer-galleries/{peer_id}")
async def list_peer_galleries(peer_id: str):
    galleries = await _client.fetch_galleries(peer_id, MediaKind.IMAGES)
    return {"galleries": [g.model_dump() for g in galleries], "count": len(galleries)}


@router.get("/peer-galleries/{peer_id}/{gallery}")
async def get_peer_gallery(peer_id: str, gallery: str):
    descriptor = await _client.fetch_gallery(peer_id, MediaKind.IMAGES, gallery)
    return descriptor.model_dump()


@router.get("/peer-galleries/{peer_id}/{gallery}/{filename}")
async def get_peer_gallery_file(peer_id: str, gallery: str, filename: str):
    """Serve a friend's image, from the cache when it was fetched before."""
    cached = _cache.cached(peer_id, MediaKind.IMAGES, gallery, filename)
    if cached is not None:
        return FileResponse(cached, media_type=_media_type(filename))

    data = await _client.fetch_file(peer_id, MediaKind.IMAGES, gallery, filename)
    try:
        await _cache.save(peer_id, MediaKind.IMAGES, gallery, filename, data)
    except OSError as e:
        logger.warning(f"Failed to cache {gallery}/{filename} from {peer_id}: {e}")
    return Response(content=data, media_type=_media_type(filename))


@router.get("/friend-galleries/{peer_id}")
async def list_merged_galleries(peer_id: str, kind: MediaKind = MediaKind.IMAGES):
    """Live and downloaded galleries of a friend in one list.

    When the friend is offline the downloaded galleries are still returned,
    with the reason in ``live_error``.
    """
    await _registry.get(peer_id)
    live_error = None
    try:
        live = await _client.fetch_galleries(peer_id, kind)
    except PeerShelfError as e:
        logger.info(f"Live galleries of {peer_id} unavailable: {e}")
        live = []
        live_error = f"{e.code}: {e.message}"

    galleries = merge_galleries(live, _cache.galleries(peer_id, kind))
    return {
        "galleries": [g.model_dump() for g in galleries],
        "count": len(galleries),
        "live_error": live_error,
    }


# --- Downloaded content ---

@router.get("/downloaded/{peer_id}/{kind}")
async def list_downloaded(peer_id: str, kind: MediaKind):
    galleries = _cache.galleries(peer_id, kind)
    return {"galleries": [g.model_dump() for g in galleries], "count": len(galleries)}


@router.get("/downloaded/{peer_id}/{kind}/{gallery}")
async def get_downloaded_gallery(peer_id: str, kind: MediaKind, gallery: str):
    return _cache.gallery(peer_id, kind, gallery).model_dump()


@router.get("/downloaded/{peer_id}/{kind}/{gallery}/{filename}")
async def get_downloaded_file(
    peer_id: str, kind: MediaKind, gallery: str, filename: str
):
    path = _cache.file_path(peer_id, kind, gallery, filename)
    return FileResponse(path, media_type=_media_type(filename))


# --- Docs & bulk download ---

@router.post("/peer-docs/{peer_id}/download")
async def download_peer_content(
    peer_id: str, deadline: float | None = Query(default=None, gt=0)
):
    """Download every doc and image gallery of a friend into the cache.

    Answers 200 even when some files failed; see ``partial_failure``.
    """
    outcome = await _engine.download_all(peer_id, deadline=deadline)
    return outcome.model_dump()


@router.get("/peer-docs/{peer_id}")
async def list_peer_docs(peer_id: str):
    docs = await _client.fetch_docs(peer_id)
    return {"docs": [d.model_dump() for d in docs], "count": len(docs)}


@router.get("/peer-docs/{peer_id}/{filename}")
async def get_peer_doc(peer_id: str, filename: str):
    doc = await _client.fetch_doc(peer_id, filename)
    return doc.model_dump()
