"""
Error taxonomy shared by the codec, the peer client, the friend registry
and the API gateway.

Each error carries the HTTP status the gateway answers with.
"""


class PeerShelfError(Exception):
    """Base class for every error surfaced to API callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class FormatError(PeerShelfError):
    """Malformed connection string or request body."""

    status_code = 400
    code = "format_error"


class NotFound(PeerShelfError):
    """Unknown peer, gallery or file."""

    status_code = 404
    code = "not_found"


class Unreachable(PeerShelfError):
    """Remote peer refused the connection or could not be resolved."""

    status_code = 502
    code = "unreachable"


class PeerTimeout(PeerShelfError):
    """Remote peer did not answer in time."""

    status_code = 504
    code = "timeout"


class ProtocolError(PeerShelfError):
    """Remote peer answered with a payload that could not be decoded."""

    status_code = 502
    code = "protocol_error"
