"""
Connection descriptor codec.

The canonical text form is ``<host>:<port>:<peer_id>``, ASCII only, with
exactly two colons. It is the one string users copy between nodes.
"""

from errors import FormatError
from peers.models import ConnectionDescriptor

SEPARATOR = ":"
MAX_PORT = 65535


def parse(text: str) -> ConnectionDescriptor:
    """Parse a connection string, raising FormatError on any defect."""
    if not isinstance(text, str):
        raise FormatError("connection string must be text")
    if not text.isascii():
        raise FormatError("connection string must be ASCII")

    fields = text.split(SEPARATOR)
    if len(fields) != 3:
        raise FormatError(
            f"expected <host>:<port>:<peer_id>, got {len(fields)} field(s)"
        )

    if any(f != f.strip() for f in fields):
        raise FormatError("fields must not carry surrounding whitespace")

    host, port_text, peer_id = fields
    if not host:
        raise FormatError("host is empty")
    if not peer_id:
        raise FormatError("peer_id is empty")
    if not port_text.isdigit():
        raise FormatError(f"port {port_text!r} is not a positive integer")

    port = int(port_text)
    if str(port) != port_text:
        raise FormatError(f"port {port_text!r} has leading zeros")
    if not 0 < port <= MAX_PORT:
        raise FormatError(f"port {port} is out of range 1-{MAX_PORT}")

    return ConnectionDescriptor(host=host, port=port, peer_id=peer_id)


def format(descriptor: ConnectionDescriptor) -> str:
    """Render the canonical connection string for a descriptor."""
    return SEPARATOR.join(
        (descriptor.host, str(descriptor.port), descriptor.peer_id)
    )


def build(host: str, port: int, peer_id: str) -> ConnectionDescriptor:
    """Validated descriptor from separate fields."""
    return parse(SEPARATOR.join((str(host), str(port), str(peer_id))))
