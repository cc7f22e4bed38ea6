"""Network and protocol errors."""


class ProtocolError(Exception):
    """Base class for session protocol errors."""


class DecodeError(ProtocolError):
    """Malformed bytes or payload for any message type."""


class IllegalMoveAttempted(ProtocolError):
    """Move is not in the legal move set of its origin square."""


class MoveAlreadyPending(ProtocolError):
    """A move is already in flight awaiting its acknowledgment."""


class ProtocolDesync(ProtocolError):
    """The two peers no longer agree on the exchange (unexpected Ack, board mismatch)."""


class SessionStateError(ProtocolError):
    """Intent is not valid in the current phase or role."""


class TransportError(ConnectionError):
    """Connect/accept/read/write failure other than would-block."""
