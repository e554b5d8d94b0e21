"""Friend registry: the durable set of peers this node has befriended."""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from config import FRIEND_ONLINE_THRESHOLD, FRIENDS_FILE
from errors import NotFound, PeerShelfError, ProtocolError
from peers.client import PeerClient
from peers.descriptor import build
from peers.models import ConnectionDescriptor, Friend, FriendStatus

logger = logging.getLogger(__name__)

# Fields derived at read time, never written to disk
DERIVED_FIELDS = {"is_online", "status"}


class FriendRegistry:
    """Tracks friends, their last known address and when they were last seen.

    A single lock guards the in-memory map. Network calls (the add handshake)
    and disk writes run outside it on snapshots.
    """

    def __init__(
        self,
        client: PeerClient,
        store_path: Path = FRIENDS_FILE,
        online_threshold: float = FRIEND_ONLINE_THRESHOLD,
        now: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._store_path = Path(store_path)
        self._online_threshold = online_threshold
        self._now = now
        self._friends: dict[str, Friend] = {}
        self._lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()
        self._dirty = False
        self._load()

        client.set_resolver(self.descriptor_for)
        client.on_contact(self.mark_seen)

    # --- persistence ---

    def _load(self) -> None:
        if not self._store_path.exists():
            return

        try:
            data = json.loads(self._store_path.read_text())
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            for peer_id, friend_data in data.items():
                self._friends[peer_id] = Friend(**friend_data)
            logger.info(f"Loaded {len(self._friends)} friends.")
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.error(f"Failed to load friends from {self._store_path}: {e}")
            self._friends.clear()

    def _write(self, data: dict) -> None:
        self._store_path.parent.mkdir(parents=True, exist_ok=True)
        self._store_path.write_text(json.dumps(data, indent=2))

    async def _save(self) -> None:
        # Snapshot under the registry lock, write outside it
        async with self._save_lock:
            async with self._lock:
                data = {
                    peer_id: friend.model_dump(exclude=DERIVED_FIELDS)
                    for peer_id, friend in self._friends.items()
                }
                self._dirty = False
            try:
                await asyncio.to_thread(self._write, data)
            except OSError as e:
                logger.error(f"Failed to save friends: {e}")

    async def flush(self) -> None:
        """Persist pending last_seen updates."""
        if self._dirty:
            await self._save()

    # --- views ---

    def _view(self, friend: Friend, now: float) -> Friend:
        if friend.last_seen is None:
            status = FriendStatus.UNKNOWN
        elif now - friend.last_seen < self._online_threshold:
            status = FriendStatus.ONLINE
        else:
            status = FriendStatus.OFFLINE
        return friend.model_copy(
            update={"is_online": status == FriendStatus.ONLINE, "status": status}
        )

    async def list(self) -> list[Friend]:
        now = self._now()
        async with self._lock:
            return [self._view(f, now) for f in self._friends.values()]

    async def get(self, peer_id: str) -> Friend:
        now = self._now()
        async with self._lock:
            friend = self._friends.get(peer_id)
            if friend is None:
                raise NotFound(f"friend {peer_id} not found")
            return self._view(friend, now)

    async def descriptor_for(self, peer_id: str) -> ConnectionDescriptor:
        """Address of a friend, for the peer client's resolver."""
        friend = await self.get(peer_id)
        return build(friend.host, friend.port, friend.peer_id)

    # --- mutations ---

    async def add(
        self, descriptor: ConnectionDescriptor, peer_name: str | None = None
    ) -> Friend:
        """Handshake with the peer, then insert or refresh its friend record.

        The remote node's own peer ID and name win over what the descriptor
        claims. Handshake failures propagate and leave the registry untouched.
        """
        info = await self._client.fetch_info(descriptor)
        remote = info.node

        if remote.peer_id != descriptor.peer_id:
            logger.warning(
                f"Peer at {descriptor.host}:{descriptor.port} claims "
                f"{descriptor.peer_id} but identifies as {remote.peer_id}"
            )
        name = remote.name or peer_name or remote.peer_id
        now = self._now()

        async with self._lock:
            existing = self._friends.get(remote.peer_id)
            if existing is not None:
                friend = existing.model_copy(
                    update={
                        "peer_name": name,
                        "host": descriptor.host,
                        "port": descriptor.port,
                        "last_seen": now,
                    }
                )
                logger.info(f"Updated friend: {name} ({remote.peer_id})")
            else:
                friend = Friend(
                    peer_id=remote.peer_id,
                    peer_name=name,
                    host=descriptor.host,
                    port=descriptor.port,
                    added_at=now,
                    last_seen=now,
                )
                logger.info(f"Added friend: {name} ({remote.peer_id})")
            self._friends[remote.peer_id] = friend
            view = self._view(friend, now)

        await self._save()
        return view

    async def remove(self, peer_id: str) -> None:
        async with self._lock:
            friend = self._friends.pop(peer_id, None)
        if friend is None:
            raise NotFound(f"friend {peer_id} not found")

        logger.info(f"Removed friend: {friend.peer_name} ({peer_id})")
        await self._save()

    async def mark_seen(self, peer_id: str, when: float) -> None:
        """Record a successful contact. Strangers are ignored."""
        async with self._lock:
            friend = self._friends.get(peer_id)
            if friend is None:
                return
            if friend.last_seen is None or when > friend.last_seen:
                friend.last_seen = when
                self._dirty = True

    # --- reconnection ---

    async def reconnect(self, peer_id: str) -> Friend:
        """Handshake with a friend at its stored address and mark it seen.

        Raises NotFound for strangers, the client's errors when the friend
        cannot be reached, and ProtocolError when another node now answers
        at that address.
        """
        descriptor = await self.descriptor_for(peer_id)
        info = await self._client.fetch_info(descriptor)
        if info.node.peer_id != peer_id:
            raise ProtocolError(
                f"{descriptor.host}:{descriptor.port} is now {info.node.peer_id}, "
                f"not {peer_id}"
            )
        await self.mark_seen(peer_id, self._now())
        return await self.get(peer_id)

    async def refresh(self) -> dict[str, str]:
        """Reconnect to every friend concurrently.

        Returns the friends that could not be reached, mapped to the reason.
        """
        async with self._lock:
            peer_ids = list(self._friends)
        if not peer_ids:
            return {}

        results = await asyncio.gather(
            *(self.reconnect(peer_id) for peer_id in peer_ids),
            return_exceptions=True,
        )
        failures = {}
        for peer_id, result in zip(peer_ids, results):
            if isinstance(result, PeerShelfError):
                failures[peer_id] = f"{result.code}: {result.message}"
            elif isinstance(result, Exception):
                failures[peer_id] = f"{type(result).__name__}: {result}"
        for peer_id, reason in failures.items():
            logger.info(f"Could not reconnect to {peer_id}: {reason}")
        logger.info(
            f"Reconnected to {len(peer_ids) - len(failures)} of {len(peer_ids)} friends"
        )
        return failures
