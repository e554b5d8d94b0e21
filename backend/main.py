"""
PeerShelf: FastAPI application entry point.

Wires the friend registry, peer client and sync engine together,
serves the user API under /api and the peer API under /peer.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.peer_routes import init_peer_routes
from api.peer_routes import router as peer_router
from api.routes import init_routes, router
from config import (
    API_HOST,
    API_PORT,
    DISCOVERY_ENABLED,
    DOWNLOAD_DIR,
    LIBRARY_DIR,
    NODE_NAME,
    PUBLIC_HOST,
)
from errors import PeerShelfError
from friends.registry import FriendRegistry
from library.local import LocalLibrary
from peers.client import PeerClient
from peers.discovery import DiscoveryService
from peers.identity import IdentityService
from sync.cache import ContentCache
from sync.engine import ContentSyncEngine

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def handle_peershelf_error(request: Request, exc: PeerShelfError):
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


async def handle_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_errors(exc), "error": "format_error"},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


def create_app(
    node, library, client, registry, cache, engine, discovery=None, lifespan=None
) -> FastAPI:
    """Build the FastAPI app around already-constructed services."""
    app = FastAPI(
        title="PeerShelf",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173", "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PeerShelfError, handle_peershelf_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    # Inject services into routes
    init_routes(node, library, client, registry, cache, engine, discovery)
    init_peer_routes(node, library, registry)
    app.include_router(router)
    app.include_router(peer_router)
    return app


# --- Service singletons ---
identity_service = IdentityService()
node = identity_service.node_identity(NODE_NAME, PUBLIC_HOST, API_PORT)
library = LocalLibrary(LIBRARY_DIR)
peer_client = PeerClient()
friend_registry = FriendRegistry(peer_client)
content_cache = ContentCache(DOWNLOAD_DIR)
sync_engine = ContentSyncEngine(friend_registry, peer_client, content_cache)
discovery_service = DiscoveryService(node) if DISCOVERY_ENABLED else None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop background services."""
    logger.info("Starting PeerShelf services...")
    reconnect_task = None

    try:
        if discovery_service:
            await discovery_service.start()

        # One pass over known friends so their status is fresh after a restart
        reconnect_task = asyncio.create_task(friend_registry.refresh())

        logger.info(
            f"PeerShelf ready: node {node.name} ({node.peer_id}), "
            f"API: {API_HOST}:{API_PORT}, advertised as {node.host}:{node.port}"
        )

        yield

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down PeerShelf services...")
        if reconnect_task and not reconnect_task.done():
            reconnect_task.cancel()
            await asyncio.gather(reconnect_task, return_exceptions=True)
        if discovery_service:
            await discovery_service.stop()
        await friend_registry.flush()
        await peer_client.close()


app = create_app(
    node,
    library,
    peer_client,
    friend_registry,
    content_cache,
    sync_engine,
    discovery_service,
    lifespan=lifespan,
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
