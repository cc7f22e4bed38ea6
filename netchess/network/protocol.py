"""Network protocol: message types, framing, serialization.

Wire format:
    [4-byte big-endian length][JSON payload]

Message envelope:
    {
        "type": "START" | "MOVE" | "ACK",
        "payload": { ... }     (type-specific data)
    }

Payloads:
    START  {"is_white": bool, "name": str?, "fen": str?, "time": int?, "inc": int?}
    MOVE   {"from": [file, rank], "to": [file, rank], "promotion": "QUEEN"?,
            "forfeit": bool, "offer_draw": bool}
    ACK    {"ok": bool, "end_state": "CHECKMATE" | "DRAW" | null,
            "kind": "MOVE_RESULT" | "DRAW_RESPONSE"}

This JSON framing is not byte-compatible with the fixed-layout binary codec of
other chess clients speaking the same Start/Move/Ack exchange; both peers must
run netchess.
"""

import json
import struct
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Optional, Union

from ..chess_board import BoardMove, PromotionPiece, Square
from .errors import DecodeError


class MessageType(Enum):
    """Network message types."""
    START = auto()  # Colour handshake (Client -> Host, echoed Host -> Client)
    MOVE = auto()   # Move, forfeit or draw offer
    ACK = auto()    # Response to a move or a draw offer


class EndState(Enum):
    """Game end reported inside an Ack."""
    CHECKMATE = auto()
    DRAW = auto()


class AckKind(Enum):
    """What an Ack answers."""
    MOVE_RESULT = auto()
    DRAW_RESPONSE = auto()


# Degenerate square carried by forfeit and draw-offer messages
NULL_SQUARE: Square = (0, 0)


def _decode_square(value: Any, name: str) -> Square:
    if (not isinstance(value, (list, tuple)) or len(value) != 2
            or not all(isinstance(v, int) and not isinstance(v, bool) for v in value)):
        raise DecodeError(f"Invalid square for '{name}': {value!r}")
    file, rank = value
    if not (0 <= file <= 7 and 0 <= rank <= 7):
        raise DecodeError(f"Square out of range for '{name}': {value!r}")
    return (file, rank)


def _decode_bool(payload: Dict[str, Any], key: str, default: Optional[bool] = None) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise DecodeError(f"Expected bool for '{key}', got {value!r}")
    return value


def _decode_enum(enum_cls, value: Any, key: str):
    if value is None:
        return None
    try:
        return enum_cls[value]
    except (KeyError, TypeError):
        raise DecodeError(f"Invalid value for '{key}': {value!r}") from None


@dataclass(frozen=True)
class StartInfo:
    """Colour declaration plus advisory game parameters."""
    is_white: bool
    name: Optional[str] = None
    fen: Optional[str] = None
    time: Optional[int] = None
    inc: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            'is_white': self.is_white,
            'name': self.name,
            'fen': self.fen,
            'time': self.time,
            'inc': self.inc,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'StartInfo':
        return cls(
            is_white=_decode_bool(payload, 'is_white'),
            name=payload.get('name'),
            fen=payload.get('fen'),
            time=payload.get('time'),
            inc=payload.get('inc'),
        )


@dataclass(frozen=True)
class NetMove:
    """A move as it travels on the wire.

    Exactly one of {plain move, forfeit, offer_draw} is active per message.
    """
    from_square: Square = NULL_SQUARE
    to_square: Square = NULL_SQUARE
    promotion: Optional[PromotionPiece] = None
    forfeit: bool = False
    offer_draw: bool = False

    @property
    def is_plain_move(self) -> bool:
        return not self.forfeit and not self.offer_draw

    def to_board_move(self) -> BoardMove:
        return BoardMove(self.from_square, self.to_square, self.promotion)

    @classmethod
    def from_board_move(cls, move: BoardMove) -> 'NetMove':
        return cls(move.from_square, move.to_square, move.promotion)

    def to_payload(self) -> Dict[str, Any]:
        return {
            'from': list(self.from_square),
            'to': list(self.to_square),
            'promotion': self.promotion.name if self.promotion else None,
            'forfeit': self.forfeit,
            'offer_draw': self.offer_draw,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'NetMove':
        forfeit = _decode_bool(payload, 'forfeit', False)
        offer_draw = _decode_bool(payload, 'offer_draw', False)
        if forfeit and offer_draw:
            raise DecodeError("Move cannot be both a forfeit and a draw offer")
        return cls(
            from_square=_decode_square(payload.get('from'), 'from'),
            to_square=_decode_square(payload.get('to'), 'to'),
            promotion=_decode_enum(PromotionPiece, payload.get('promotion'), 'promotion'),
            forfeit=forfeit,
            offer_draw=offer_draw,
        )


@dataclass(frozen=True)
class Ack:
    """Response to a move or a draw offer."""
    ok: bool
    end_state: Optional[EndState] = None
    kind: AckKind = AckKind.MOVE_RESULT

    def to_payload(self) -> Dict[str, Any]:
        return {
            'ok': self.ok,
            'end_state': self.end_state.name if self.end_state else None,
            'kind': self.kind.name,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'Ack':
        kind = _decode_enum(AckKind, payload.get('kind'), 'kind')
        return cls(
            ok=_decode_bool(payload, 'ok'),
            end_state=_decode_enum(EndState, payload.get('end_state'), 'end_state'),
            kind=kind or AckKind.MOVE_RESULT,
        )


Body = Union[StartInfo, NetMove, Ack]

_BODY_TYPES = {
    MessageType.START: StartInfo,
    MessageType.MOVE: NetMove,
    MessageType.ACK: Ack,
}


@dataclass
class Message:
    """Network message envelope."""
    type: MessageType
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_bytes(self) -> bytes:
        """Serialize message to bytes with length prefix."""
        data = {
            'type': self.type.name,
            'payload': self.payload,
        }
        json_bytes = json.dumps(data, ensure_ascii=False).encode('utf-8')
        length = len(json_bytes)
        return struct.pack('>I', length) + json_bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Message':
        """Deserialize message from JSON bytes (without length prefix)."""
        try:
            obj = json.loads(data.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeError(f"Malformed frame: {e}") from e
        if not isinstance(obj, dict):
            raise DecodeError(f"Expected JSON object, got {type(obj).__name__}")
        if obj.get('type') is None:
            raise DecodeError("Message has no type")
        payload = obj.get('payload', {})
        if not isinstance(payload, dict):
            raise DecodeError("Payload must be a JSON object")
        return cls(
            type=_decode_enum(MessageType, obj['type'], 'type'),
            payload=payload,
        )

    def body(self) -> Body:
        """Decode the payload into its typed record."""
        return _BODY_TYPES[self.type].from_payload(self.payload)


# =============================================================================
# FRAME READER/WRITER - handles length-prefixed framing over TCP
# =============================================================================

class FrameReader:
    """Reads length-prefixed frames from a stream.

    Usage:
        reader = FrameReader()
        reader.feed(data_from_socket)
        while True:
            frame = reader.get_frame()
            if frame is None:
                break
            message = Message.from_bytes(frame)
    """

    HEADER_SIZE = 4  # 4 bytes for length (big-endian uint32)
    MAX_FRAME_SIZE = 1024 * 1024  # 1MB max message size

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, data: bytes):
        """Add received data to buffer."""
        self._buffer.extend(data)

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def get_frame(self) -> Optional[bytes]:
        """Extract next complete frame from buffer, or None if incomplete."""
        if len(self._buffer) < self.HEADER_SIZE:
            return None

        # Read length prefix
        length = struct.unpack('>I', self._buffer[:self.HEADER_SIZE])[0]

        if length > self.MAX_FRAME_SIZE:
            # Stream can't be resynchronised past a bogus header
            self._buffer.clear()
            raise DecodeError(f"Frame too large: {length} bytes")

        total_size = self.HEADER_SIZE + length
        if len(self._buffer) < total_size:
            return None  # Incomplete frame

        # Extract frame
        frame = bytes(self._buffer[self.HEADER_SIZE:total_size])
        del self._buffer[:total_size]
        return frame

    def get_message(self) -> Optional[Message]:
        """Get next complete message, or None if incomplete.

        A malformed frame is consumed before DecodeError is raised, so the
        next call continues with the following frame.
        """
        frame = self.get_frame()
        if frame is None:
            return None
        return Message.from_bytes(frame)


class FrameWriter:
    """Writes length-prefixed frames.

    Usage:
        writer = FrameWriter()
        data = writer.pack(message)
        socket.send(data)
    """

    @staticmethod
    def pack(message: Message) -> bytes:
        """Pack message into length-prefixed frame."""
        return message.to_bytes()


# =============================================================================
# MESSAGE BUILDERS - convenience functions for creating messages
# =============================================================================

def msg_start(info: StartInfo) -> Message:
    """Colour handshake."""
    return Message(type=MessageType.START, payload=info.to_payload())


def msg_move(move: BoardMove) -> Message:
    """Plain move proposal."""
    return Message(type=MessageType.MOVE, payload=NetMove.from_board_move(move).to_payload())


def msg_forfeit() -> Message:
    """Unilateral, unacknowledged resignation."""
    return Message(type=MessageType.MOVE, payload=NetMove(forfeit=True).to_payload())


def msg_offer_draw() -> Message:
    """Draw offer."""
    return Message(type=MessageType.MOVE, payload=NetMove(offer_draw=True).to_payload())


def msg_move_result(ok: bool, end_state: Optional[EndState] = None) -> Message:
    """Acknowledge (or reject) a received move."""
    return Message(
        type=MessageType.ACK,
        payload=Ack(ok, end_state, AckKind.MOVE_RESULT).to_payload(),
    )


def msg_draw_response(accepted: bool) -> Message:
    """Answer a draw offer."""
    end_state = EndState.DRAW if accepted else None
    return Message(
        type=MessageType.ACK,
        payload=Ack(accepted, end_state, AckKind.DRAW_RESPONSE).to_payload(),
    )
