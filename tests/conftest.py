import os
import tempfile

# Point the app at a throwaway home before any module reads config
os.environ.setdefault("PEERSHELF_HOME", tempfile.mkdtemp(prefix="peershelf-test-"))
os.environ.setdefault("PEERSHELF_DISCOVERY", "0")

import httpx
import pytest

from friends.registry import FriendRegistry
from peers.client import PeerClient
from peers.descriptor import parse


class FakePeer:
    """A remote node answering the /peer API from in-memory content."""

    def __init__(self, peer_id="nodeABC", name="alice", host="127.0.0.1", port=9000):
        self.peer_id = peer_id
        self.name = name
        self.host = host
        self.port = port
        # {kind: {gallery: {filename: bytes}}}
        self.content: dict[str, dict[str, dict[str, bytes]]] = {}
        self.docs: dict[str, str] = {}
        self.friends: list[dict] = []
        # path -> exception to raise or status code to answer with
        self.failures: dict[str, object] = {}
        self.requests: list[str] = []

    @property
    def connection_string(self) -> str:
        return f"{self.host}:{self.port}:{self.peer_id}"

    @property
    def descriptor(self):
        return parse(self.connection_string)

    def add_gallery(self, kind: str, gallery: str, files: dict[str, bytes]) -> None:
        self.content.setdefault(kind, {})[gallery] = dict(files)

    def _gallery_json(self, kind: str, name: str) -> dict:
        files = list(self.content[kind][name])
        return {"name": name, "media_kind": kind, "file_count": len(files), "files": files}

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)

        failure = self.failures.get(path)
        if isinstance(failure, Exception):
            raise failure
        if isinstance(failure, int):
            return httpx.Response(failure, json={"detail": "failure"})

        parts = path.strip("/").split("/")
        if parts[0] != "peer":
            return httpx.Response(404)
        route = parts[1:]

        if route == ["info"]:
            return httpx.Response(200, json={
                "node": {"peer_id": self.peer_id, "name": self.name,
                         "host": self.host, "port": self.port},
                "folderInfo": None,
            })
        if route == ["friends"]:
            return httpx.Response(200, json={"friends": self.friends, "count": len(self.friends)})
        if route == ["docs"]:
            docs = [{"filename": f, "size": len(c), "modified": 1.0} for f, c in self.docs.items()]
            return httpx.Response(200, json={"docs": docs, "count": len(docs)})
        if len(route) == 2 and route[0] == "docs":
            if route[1] not in self.docs:
                return httpx.Response(404)
            content = self.docs[route[1]]
            return httpx.Response(200, json={
                "filename": route[1], "size": len(content), "modified": 1.0, "content": content,
            })
        if len(route) == 3 and route[0] == "docs" and route[2] == "file":
            if route[1] not in self.docs:
                return httpx.Response(404)
            return httpx.Response(200, content=self.docs[route[1]].encode())
        if route and route[0] == "galleries":
            kind = route[1]
            galleries = self.content.get(kind, {})
            if len(route) == 2:
                listing = [self._gallery_json(kind, g) for g in galleries]
                return httpx.Response(200, json={"galleries": listing, "count": len(listing)})
            if route[2] not in galleries:
                return httpx.Response(404)
            if len(route) == 3:
                return httpx.Response(200, json=self._gallery_json(kind, route[2]))
            files = galleries[route[2]]
            if route[3] not in files:
                return httpx.Response(404)
            return httpx.Response(200, content=files[route[3]])
        return httpx.Response(404)


class FakeNetwork:
    """Routes requests to FakePeers by host:port; anything else is refused."""

    def __init__(self) -> None:
        self.peers: dict[tuple[str, int], FakePeer] = {}

    def add(self, peer: FakePeer) -> FakePeer:
        self.peers[(peer.host, peer.port)] = peer
        return peer

    def handler(self, request: httpx.Request) -> httpx.Response:
        peer = self.peers.get((request.url.host, request.url.port))
        if peer is None:
            raise httpx.ConnectError("Connection refused", request=request)
        return peer.handle(request)


@pytest.fixture()
def network():
    return FakeNetwork()


@pytest.fixture()
def peer(network):
    return network.add(FakePeer())


@pytest.fixture()
def make_peer(network):
    def _make(**kwargs) -> FakePeer:
        return network.add(FakePeer(**kwargs))
    return _make


@pytest.fixture()
def client(network):
    return PeerClient(timeout=1.0, transport=httpx.MockTransport(network.handler))


@pytest.fixture()
def clock():
    # Mutable clock so tests can age friends
    return {"now": 1_000_000.0}


@pytest.fixture()
def registry(client, tmp_path, clock):
    return FriendRegistry(
        client,
        store_path=tmp_path / "friends.json",
        online_threshold=120,
        now=lambda: clock["now"],
    )
