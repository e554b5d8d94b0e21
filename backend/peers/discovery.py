"""
UDP-based LAN discovery service.

Broadcasts a periodic beacon and listens for beacons from other
PeerShelf nodes on the same LAN. Heard nodes are only listed as
candidates; befriending them goes through the friend registry.
"""

import asyncio
import json
import logging
import socket
import time

from pydantic import ValidationError

from config import (
    APP_ID,
    DISCOVERY_INTERVAL,
    DISCOVERY_PORT,
    NEARBY_TIMEOUT,
)
from errors import FormatError
from peers.descriptor import build
from peers.descriptor import format as format_descriptor
from peers.models import DiscoveryBeacon, NearbyNode, NodeIdentity

logger = logging.getLogger(__name__)


class DiscoveryProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol for receiving discovery beacons."""

    def __init__(self, service: "DiscoveryService"):
        self.service = service

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            beacon = DiscoveryBeacon(**json.loads(data.decode("utf-8")))
        except (UnicodeDecodeError, ValueError, TypeError, ValidationError) as e:
            logger.debug(f"Ignoring invalid discovery packet from {addr}: {e}")
            return

        # Ignore our own beacons and other applications
        if beacon.app_id != APP_ID or beacon.peer_id == self.service.node.peer_id:
            return

        self.service.heard(beacon, addr[0])

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Discovery UDP error: {exc}")


class DiscoveryService:
    """Keeps the list of PeerShelf nodes currently beaconing on the LAN."""

    def __init__(self, node: NodeIdentity, now=time.time) -> None:
        self.node = node
        self._now = now
        self._nearby: dict[str, NearbyNode] = {}
        self._broadcast_task: asyncio.Task | None = None
        self._transport: asyncio.DatagramTransport | None = None

    async def start(self) -> None:
        """Start the beacon broadcaster and listener."""
        logger.info(f"Starting discovery on UDP port {DISCOVERY_PORT}")

        loop = asyncio.get_running_loop()

        # SO_REUSEADDR before bind so several nodes on one host share the port
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.setblocking(False)
        sock.bind(("0.0.0.0", DISCOVERY_PORT))

        transport, _ = await loop.create_datagram_endpoint(
            lambda: DiscoveryProtocol(self),
            sock=sock,
        )
        self._transport = transport
        self._broadcast_task = asyncio.create_task(self._broadcast_loop())
        logger.info("Discovery service started")

    async def stop(self) -> None:
        if self._broadcast_task:
            self._broadcast_task.cancel()
        if self._transport:
            self._transport.close()
        logger.info("Discovery service stopped")

    def heard(self, beacon: DiscoveryBeacon, host: str) -> NearbyNode | None:
        """Add or refresh a node from one of its beacons."""
        try:
            descriptor = build(host, beacon.api_port, beacon.peer_id)
        except FormatError as e:
            logger.debug(f"Ignoring beacon with bad address from {host}: {e}")
            return None

        is_new = beacon.peer_id not in self._nearby
        node = NearbyNode(
            peer_id=beacon.peer_id,
            name=beacon.name,
            host=host,
            api_port=beacon.api_port,
            connection_string=format_descriptor(descriptor),
            last_seen=self._now(),
        )
        self._nearby[beacon.peer_id] = node
        if is_new:
            logger.info(f"Discovered node: {node.name} ({host})")
        return node

    def nearby(self) -> list[NearbyNode]:
        """Nodes heard within the timeout; stale ones are dropped lazily."""
        now = self._now()
        for peer_id, node in list(self._nearby.items()):
            if now - node.last_seen > NEARBY_TIMEOUT:
                logger.info(f"Node lost: {node.name} ({node.host})")
                del self._nearby[peer_id]
        return list(self._nearby.values())

    def _beacon_bytes(self) -> bytes:
        beacon = DiscoveryBeacon(
            app_id=APP_ID,
            peer_id=self.node.peer_id,
            name=self.node.name,
            api_port=self.node.port,
        )
        return json.dumps(beacon.model_dump()).encode("utf-8")

    async def _broadcast_loop(self) -> None:
        """Periodically send a discovery beacon."""
        while True:
            try:
                data = self._beacon_bytes()
                bcast_ips = {"255.255.255.255", "127.255.255.255"}
                try:
                    _, _, ips = socket.gethostbyname_ex(socket.gethostname())
                    for ip in ips:
                        if not ip.startswith("127."):
                            # Simple heuristic for /24 subnets
                            parts = ip.split(".")
                            if len(parts) == 4:
                                parts[3] = "255"
                                bcast_ips.add(".".join(parts))
                except OSError as e:
                    logger.debug(f"Error resolving local IPs: {e}")

                for bcast_ip in bcast_ips:
                    try:
                        self._transport.sendto(data, (bcast_ip, DISCOVERY_PORT))
                    except OSError:
                        # Some interfaces don't support broadcast
                        pass
            except Exception as e:
                logger.warning(f"Broadcast failed: {e}")

            await asyncio.sleep(DISCOVERY_INTERVAL)
