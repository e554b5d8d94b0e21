"""
Identity Service for the node's long-term peer ID.
"""

import hashlib
import logging
import socket
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives import serialization

from config import IDENTITY_KEY_FILE
from peers.models import NodeIdentity

logger = logging.getLogger(__name__)

PEER_ID_LENGTH = 32  # hex chars


def peer_id_from_public_bytes(public_bytes: bytes) -> str:
    """Derive a stable, colon-free peer ID from a raw public key."""
    return hashlib.sha256(public_bytes).hexdigest()[:PEER_ID_LENGTH]


def detect_host() -> str:
    """Best guess at a LAN address other nodes can reach us on."""
    try:
        _, _, ips = socket.gethostbyname_ex(socket.gethostname())
        for ip in ips:
            if not ip.startswith("127."):
                return ip
    except OSError as e:
        logger.debug(f"Error resolving local IPs: {e}")
    return "127.0.0.1"


class IdentityService:
    """Manages the node's Ed25519 identity key and the peer ID derived from it."""

    def __init__(self, key_path: Path = IDENTITY_KEY_FILE):
        self._key_path = key_path
        self.identity_key = self._load_or_generate_key()
        self.peer_id = peer_id_from_public_bytes(self.get_public_bytes())

        logger.info(f"Initialized IdentityService with peer ID: {self.peer_id}")

    def _load_or_generate_key(self) -> ed25519.Ed25519PrivateKey:
        """Loads the existing identity key or creates a new one."""
        if self._key_path.exists():
            try:
                key_bytes = self._key_path.read_bytes()
                return serialization.load_pem_private_key(
                    key_bytes,
                    password=None
                )
            except (ValueError, TypeError) as e:
                logger.warning(f"Failed to load existing identity key: {e}. Generating new one.")

        private_key = ed25519.Ed25519PrivateKey.generate()
        pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        )
        self._key_path.parent.mkdir(parents=True, exist_ok=True)
        self._key_path.write_bytes(pem)
        return private_key

    def get_public_bytes(self) -> bytes:
        """Returns the public key as 32-byte raw bytes."""
        return self.identity_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )

    def node_identity(self, name: str, host: str, port: int) -> NodeIdentity:
        return NodeIdentity(
            peer_id=self.peer_id,
            name=name,
            host=host or detect_host(),
            port=port,
        )
