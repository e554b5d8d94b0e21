"""Routes other nodes call through their PeerClient."""

import logging

from fastapi import APIRouter
from fastapi.responses import FileResponse

from library.models import MediaKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/peer")

# These will be injected by main.py at startup
_node = None
_library = None
_registry = None


def init_peer_routes(node, library, registry) -> None:
    """Inject service dependencies into the peer routes module."""
    global _node, _library, _registry
    _node = node
    _library = library
    _registry = registry


@router.get("/info")
async def peer_info():
    return {
        "node": _node.model_dump(),
        "folderInfo": _library.folder_info().model_dump(),
    }


@router.get("/galleries/{kind}")
async def peer_galleries(kind: MediaKind):
    galleries = _library.galleries(kind)
    return {"galleries": [g.model_dump() for g in galleries], "count": len(galleries)}


@router.get("/galleries/{kind}/{gallery}")
async def peer_gallery(kind: MediaKind, gallery: str):
    return _library.gallery(kind, gallery).model_dump()


@router.get("/galleries/{kind}/{gallery}/{filename}")
async def peer_gallery_file(kind: MediaKind, gallery: str, filename: str):
    path = _library.file_path(kind, gallery, filename)
    logger.debug(f"Serving {kind.value}/{gallery}/{filename}")
    return FileResponse(path)


@router.get("/docs")
async def peer_docs():
    docs = _library.docs()
    return {"docs": [d.model_dump() for d in docs], "count": len(docs)}


@router.get("/docs/{filename}")
async def peer_doc(filename: str):
    return _library.doc(filename).model_dump()


@router.get("/docs/{filename}/file")
async def peer_doc_file(filename: str):
    """Raw bytes of a top-level doc, for bulk downloads."""
    return FileResponse(_library.doc_path(filename))


@router.get("/friends")
async def peer_friends():
    friends = await _registry.list()
    return {"friends": [f.model_dump() for f in friends], "count": len(friends)}
