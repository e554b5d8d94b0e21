"""Pydantic models for nodes, connection descriptors and friends."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from library.models import FolderInfo


class NodeIdentity(BaseModel):
    """How a running node identifies itself to others."""
    model_config = ConfigDict(frozen=True)

    peer_id: str
    name: str = ""
    host: str
    port: int


class NodeInfo(BaseModel):
    """Payload of the info endpoints, local and remote."""
    model_config = ConfigDict(populate_by_name=True)

    node: NodeIdentity
    folder_info: FolderInfo | None = Field(default=None, alias="folderInfo")


class ConnectionDescriptor(BaseModel):
    """host:port:peer_id triple. Build it with peers.descriptor.parse()."""
    model_config = ConfigDict(frozen=True)

    host: str
    port: int
    peer_id: str


class FriendStatus(str, Enum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


class Friend(BaseModel):
    """A locally registered peer relationship."""
    peer_id: str
    peer_name: str
    host: str = ""
    port: int = 0
    added_at: float  # Unix timestamp
    last_seen: float | None = None
    # Derived at read time by the registry, never persisted
    is_online: bool = False
    status: FriendStatus = FriendStatus.UNKNOWN


class NearbyNode(BaseModel):
    """A node heard on the LAN through its discovery beacon."""
    peer_id: str
    name: str
    host: str
    api_port: int
    connection_string: str
    last_seen: float  # Unix timestamp


class DiscoveryBeacon(BaseModel):
    """The JSON payload broadcast over UDP."""
    app_id: str
    peer_id: str
    name: str = ""
    api_port: int
