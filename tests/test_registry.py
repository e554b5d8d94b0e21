import json

import pytest

from errors import NotFound, ProtocolError, Unreachable
from friends.registry import FriendRegistry
from peers.descriptor import parse
from peers.models import FriendStatus


@pytest.mark.asyncio
async def test_add_friend_uses_remote_identity(registry, peer, clock):
    friend = await registry.add(peer.descriptor, peer_name="ignored")

    assert friend.peer_id == "nodeABC"
    assert friend.peer_name == "alice"
    assert (friend.host, friend.port) == ("127.0.0.1", 9000)
    assert friend.added_at == clock["now"]
    assert friend.status == FriendStatus.ONLINE
    assert [f.peer_id for f in await registry.list()] == ["nodeABC"]


@pytest.mark.asyncio
async def test_add_falls_back_to_given_name(registry, make_peer):
    quiet = make_peer(peer_id="p2", name="", port=9001)
    friend = await registry.add(quiet.descriptor, peer_name="Bob")
    assert friend.peer_name == "Bob"


@pytest.mark.asyncio
async def test_add_is_an_upsert(registry, peer, clock):
    first = await registry.add(peer.descriptor)
    clock["now"] += 50
    peer.name = "alice-laptop"
    second = await registry.add(peer.descriptor)

    friends = await registry.list()
    assert len(friends) == 1
    assert second.added_at == first.added_at
    assert second.peer_name == "alice-laptop"
    assert second.last_seen == clock["now"]


@pytest.mark.asyncio
async def test_add_unreachable_peer_leaves_registry_unchanged(registry, tmp_path):
    with pytest.raises(Unreachable):
        await registry.add(parse("127.0.0.1:9999:ghost"))

    assert await registry.list() == []
    assert not (tmp_path / "friends.json").exists()


@pytest.mark.asyncio
async def test_add_trusts_the_remote_peer_id(registry, peer):
    friend = await registry.add(parse("127.0.0.1:9000:claimed-id"))
    assert friend.peer_id == "nodeABC"
    with pytest.raises(NotFound):
        await registry.get("claimed-id")


@pytest.mark.asyncio
async def test_remove_friend(registry, peer):
    await registry.add(peer.descriptor)
    await registry.remove("nodeABC")
    assert await registry.list() == []


@pytest.mark.asyncio
async def test_remove_unknown_friend(registry):
    with pytest.raises(NotFound):
        await registry.remove("nobody")


@pytest.mark.asyncio
async def test_status_follows_last_seen(registry, peer, clock):
    await registry.add(peer.descriptor)

    clock["now"] += 119
    assert (await registry.get("nodeABC")).is_online is True

    clock["now"] += 1
    friend = await registry.get("nodeABC")
    assert friend.is_online is False
    assert friend.status == FriendStatus.OFFLINE


@pytest.mark.asyncio
async def test_status_unknown_without_contact(client, tmp_path, clock):
    store = tmp_path / "friends.json"
    store.write_text(json.dumps({
        "p1": {"peer_id": "p1", "peer_name": "Old", "host": "10.0.0.2", "port": 8765, "added_at": 5.0},
    }))
    registry = FriendRegistry(client, store_path=store, now=lambda: clock["now"])

    friend = await registry.get("p1")
    assert friend.status == FriendStatus.UNKNOWN
    assert friend.is_online is False


@pytest.mark.asyncio
async def test_mark_seen_only_moves_forward(registry, peer, clock):
    await registry.add(peer.descriptor)
    added = clock["now"]

    await registry.mark_seen("nodeABC", added - 10)
    assert (await registry.get("nodeABC")).last_seen == added

    await registry.mark_seen("nodeABC", added + 10)
    assert (await registry.get("nodeABC")).last_seen == added + 10


@pytest.mark.asyncio
async def test_mark_seen_ignores_strangers(registry):
    await registry.mark_seen("stranger", 1.0)
    assert await registry.list() == []


@pytest.mark.asyncio
async def test_successful_calls_refresh_last_seen(registry, client, peer, clock):
    await registry.add(peer.descriptor)
    clock["now"] += 500
    assert (await registry.get("nodeABC")).is_online is False

    # Contact time comes from the wall clock, so it is far past the fake one
    await client.fetch_docs("nodeABC")
    friend = await registry.get("nodeABC")
    assert friend.last_seen > 1_000_500


@pytest.mark.asyncio
async def test_friends_survive_restart(registry, client, peer, tmp_path, clock):
    await registry.add(peer.descriptor)
    await registry.mark_seen("nodeABC", clock["now"] + 30)
    await registry.flush()

    saved = json.loads((tmp_path / "friends.json").read_text())
    assert "is_online" not in saved["nodeABC"]

    reloaded = FriendRegistry(client, store_path=tmp_path / "friends.json", now=lambda: clock["now"])
    friend = await reloaded.get("nodeABC")
    assert friend.peer_name == "alice"
    assert friend.last_seen == clock["now"] + 30


def test_corrupt_store_starts_empty(client, tmp_path):
    store = tmp_path / "friends.json"
    store.write_text("{not json")
    registry = FriendRegistry(client, store_path=store)
    assert registry._friends == {}


@pytest.mark.asyncio
async def test_descriptor_for_friend(registry, peer):
    await registry.add(peer.descriptor)
    descriptor = await registry.descriptor_for("nodeABC")
    assert (descriptor.host, descriptor.port, descriptor.peer_id) == ("127.0.0.1", 9000, "nodeABC")
    with pytest.raises(NotFound):
        await registry.descriptor_for("nobody")


@pytest.mark.parametrize("content", ["[]", '"friends"', "42"])
def test_store_that_is_not_an_object_starts_empty(client, tmp_path, content):
    store = tmp_path / "friends.json"
    store.write_text(content)
    registry = FriendRegistry(client, store_path=store)
    assert registry._friends == {}


def stored_friends(tmp_path, *friends):
    store = tmp_path / "friends.json"
    store.write_text(json.dumps({
        peer_id: {"peer_id": peer_id, "peer_name": peer_id, "host": "127.0.0.1", "port": port, "added_at": 5.0}
        for peer_id, port in friends
    }))
    return store


@pytest.mark.asyncio
async def test_refresh_reconnects_known_friends(client, tmp_path, clock, peer):
    store = stored_friends(tmp_path, ("nodeABC", 9000), ("gone", 9555))
    registry = FriendRegistry(client, store_path=store, now=lambda: clock["now"])

    failures = await registry.refresh()

    assert list(failures) == ["gone"]
    assert failures["gone"].startswith("unreachable")
    assert (await registry.get("nodeABC")).is_online is True
    assert (await registry.get("gone")).status == FriendStatus.UNKNOWN


@pytest.mark.asyncio
async def test_refresh_without_friends(registry):
    assert await registry.refresh() == {}


@pytest.mark.asyncio
async def test_reconnect_rejects_a_different_node(client, tmp_path, clock, peer):
    store = stored_friends(tmp_path, ("old-friend", 9000))
    registry = FriendRegistry(client, store_path=store, now=lambda: clock["now"])

    with pytest.raises(ProtocolError):
        await registry.reconnect("old-friend")
    assert (await registry.get("old-friend")).last_seen is None


@pytest.mark.asyncio
async def test_reconnect_unknown_friend(registry):
    with pytest.raises(NotFound):
        await registry.reconnect("nobody")
