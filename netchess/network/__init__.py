"""Network module for two-player games."""

from .protocol import MessageType, Message, FrameReader, FrameWriter, StartInfo, NetMove, Ack, AckKind, EndState
from .transport import Transport, HostListener, connect
from .arbiter import MoveArbiter, PendingSlot, Role, EndStatePolicy
from .draw import DrawController, DrawOffer
from .session import GameSession, Phase, Outcome, EndReason
from .errors import (
    ProtocolError, DecodeError, IllegalMoveAttempted, MoveAlreadyPending,
    ProtocolDesync, SessionStateError, TransportError,
)
