"""Game session: the protocol state machine shared by Host and Client.

A GameSession owns the connection role, the local colour, the board, the
single in-flight move slot and the draw-offer state. It is advanced only by
tick() (once per frame) and by the user-intent methods; nothing else mutates
it.

Lifecycle:
    LOBBY -> AWAITING_PEER (host) -> HANDSHAKING -> PLAYING <-> DRAW_OFFER_PENDING -> ENDED
    LOBBY -> HANDSHAKING (client) -> ...

ENDED is final.
"""

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Callable, Optional, Sequence, Set

from ..chess_board import BoardMove, ChessBoard, GameResult, PromotionPiece, Square
from ..constants import ACK_TIMEOUT, CONNECT_TIMEOUT, HOST_ADDRESSES, JOIN_ADDRESS, PieceColor
from .arbiter import EndStatePolicy, MoveArbiter, Role
from .draw import DrawController, DrawOffer
from .errors import (
    DecodeError, IllegalMoveAttempted, ProtocolDesync, SessionStateError, TransportError,
)
from .protocol import (
    Ack, AckKind, EndState, Message, MessageType, NetMove, StartInfo,
    msg_move, msg_move_result, msg_start,
)
from .transport import Address, HostListener, Transport, connect

logger = logging.getLogger(__name__)


class Phase(Enum):
    """Session phases."""
    LOBBY = auto()               # Not connected, colour may be chosen
    AWAITING_PEER = auto()       # Host listening, no peer yet
    HANDSHAKING = auto()         # Connected, colours not fixed yet
    PLAYING = auto()             # Moves flowing
    DRAW_OFFER_PENDING = auto()  # A draw offer is unanswered
    ENDED = auto()               # Final


class EndReason(Enum):
    """Why a session ended."""
    GAME_OVER = auto()        # Board reached a terminal result
    DRAW_AGREED = auto()
    LOCAL_FORFEIT = auto()
    REMOTE_FORFEIT = auto()
    DISCONNECTED = auto()     # Peer closed the connection
    ACK_TIMEOUT = auto()      # Sent move never acknowledged
    DESYNC = auto()           # Peers disagree about the exchange
    CLOSED = auto()           # Local shutdown


@dataclass(frozen=True)
class Outcome:
    """How the session ended."""
    reason: EndReason
    end_state: Optional[EndState] = None
    result: Optional[GameResult] = None
    winner: Optional[PieceColor] = None

    def describe(self) -> str:
        if self.reason is EndReason.GAME_OVER and self.result is not None:
            if self.winner is not None:
                return f"Checkmate, {self.winner.value} has won"
            return f"Game drawn ({self.result.name.lower().replace('_', ' ')})"
        if self.reason is EndReason.DRAW_AGREED:
            return "Draw agreed"
        if self.reason in (EndReason.LOCAL_FORFEIT, EndReason.REMOTE_FORFEIT):
            return f"Forfeit, {self.winner.value} has won" if self.winner else "Forfeit"
        return f"Game has ended ({self.reason.name.lower().replace('_', ' ')})"


# Phases in which moves and draw offers may be exchanged
_IN_GAME = (Phase.PLAYING, Phase.DRAW_OFFER_PENDING)
# Phases with an open connection to the peer
_CONNECTED = (Phase.HANDSHAKING, Phase.PLAYING, Phase.DRAW_OFFER_PENDING)


class GameSession:
    """One side of a two-player network game.

    Usage (host):
        session = GameSession()
        session.choose_color(PieceColor.WHITE)
        session.host_game()
        while running:
            session.tick()

    Usage (client):
        session.choose_color(PieceColor.BLACK)
        session.join_game(('127.0.0.1', 8080))
        session.start_game(name='Alice')
        ...
        session.propose_move((4, 6), (4, 4))
    """

    def __init__(
        self,
        board: Optional[ChessBoard] = None,
        player_name: Optional[str] = None,
        ack_timeout: float = ACK_TIMEOUT,
        end_state_policy: EndStatePolicy = EndStatePolicy.DECISIVE_ONLY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._board = board or ChessBoard()
        self.player_name = player_name
        self.ack_timeout = ack_timeout
        self.end_state_policy = end_state_policy
        self._clock = clock

        self._role = Role.UNCONNECTED
        self._phase = Phase.LOBBY
        self._local_color: Optional[PieceColor] = None
        self._remote_start: Optional[StartInfo] = None
        self._start_sent = False

        self._listener: Optional[HostListener] = None
        self._transport: Optional[Transport] = None
        self._arbiter: Optional[MoveArbiter] = None
        self._draw = DrawController()
        self._pending_since: Optional[float] = None

        self.outcome: Optional[Outcome] = None
        self.last_rejected_move: Optional[BoardMove] = None
        self.last_error: str = ""

        # Callbacks (called from tick() or from intent methods)
        self.on_phase_changed: Optional[Callable[[Phase], None]] = None
        self.on_board_changed: Optional[Callable[[BoardMove], None]] = None
        self.on_move_rejected: Optional[Callable[[BoardMove], None]] = None
        self.on_draw_offered: Optional[Callable[[], None]] = None
        self.on_game_over: Optional[Callable[[Outcome], None]] = None

    @classmethod
    def from_settings(cls, **overrides) -> 'GameSession':
        """Build a session configured from the user's settings file."""
        from .. import settings

        kwargs = {
            'player_name': settings.get_player_name(),
            'ack_timeout': settings.get_ack_timeout(),
        }
        try:
            kwargs['end_state_policy'] = EndStatePolicy[settings.get_end_state_policy()]
        except KeyError:
            logger.warning(f"Unknown end_state_policy {settings.get_end_state_policy()!r}, using default")
        kwargs.update(overrides)
        return cls(**kwargs)

    # =========================================================================
    # READ-ONLY STATE (for the rendering layer)
    # =========================================================================

    @property
    def role(self) -> Role:
        return self._role

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def board(self) -> ChessBoard:
        return self._board

    @property
    def local_color(self) -> Optional[PieceColor]:
        return self._local_color

    @property
    def remote_start(self) -> Optional[StartInfo]:
        return self._remote_start

    @property
    def pending_move(self) -> Optional[BoardMove]:
        return self._arbiter.pending if self._arbiter else None

    @property
    def draw_offer(self) -> DrawOffer:
        return self._draw.state

    @property
    def start_sent(self) -> bool:
        return self._start_sent

    @property
    def listen_address(self) -> Optional[Address]:
        return self._listener.address if self._listener else None

    @property
    def is_my_turn(self) -> bool:
        return (
            self._phase in _IN_GAME
            and self._local_color is not None
            and self._board.side_to_move is self._local_color
        )

    @property
    def _remote_color(self) -> Optional[PieceColor]:
        return self._local_color.opposite if self._local_color else None

    def movable_from(self, square: Square) -> Set[BoardMove]:
        """Legal moves the local player could propose right now from a square."""
        if (not self.is_my_turn or self.pending_move is not None
                or self._draw.state is DrawOffer.SENT_BY_LOCAL):
            return set()
        return self._board.legal_moves_from(square)

    def snapshot(self) -> dict:
        """Everything the rendering layer needs, as plain data."""
        return {
            'role': self._role.name,
            'phase': self._phase.name,
            'local_color': self._local_color.value if self._local_color else None,
            'pending_move': str(self.pending_move) if self.pending_move else None,
            'draw_offer': self._draw.state.name,
            'outcome': self.outcome.describe() if self.outcome else None,
            'board': self._board.snapshot(),
        }

    # =========================================================================
    # USER INTENTS: CONNECTION
    # =========================================================================

    def choose_color(self, color: PieceColor):
        """Pick the colour to play. Only before the handshake is under way."""
        if self._phase not in (Phase.LOBBY, Phase.AWAITING_PEER, Phase.HANDSHAKING) or self._start_sent:
            raise SessionStateError(f"Cannot change colour in phase {self._phase.name}")
        self._local_color = color

    def host_game(self, addresses: Optional[Sequence[Address]] = None):
        """Start listening for a peer. The accept itself happens in tick()."""
        self._require_lobby()
        self._listener = HostListener(addresses or HOST_ADDRESSES)
        self._set_phase(Phase.AWAITING_PEER)

    def join_game(self, address: Optional[Address] = None, timeout: float = CONNECT_TIMEOUT):
        """Dial a host. On failure raises TransportError and stays in LOBBY."""
        self._require_lobby()
        try:
            transport = connect(address or JOIN_ADDRESS, timeout=timeout)
        except TransportError as e:
            logger.error(str(e))
            self.last_error = str(e)
            raise
        self._connected(transport, Role.CLIENT)

    def start_game(
        self,
        name: Optional[str] = None,
        fen: Optional[str] = None,
        time: Optional[int] = None,
        inc: Optional[int] = None,
    ):
        """Client only: request the chosen colour from the Host."""
        if self._role is not Role.CLIENT:
            raise SessionStateError("Only the client starts the handshake")
        if self._phase is not Phase.HANDSHAKING or self._start_sent:
            raise SessionStateError(f"Cannot start game in phase {self._phase.name}")
        start = StartInfo(
            is_white=self._local_color.is_white,
            name=name or self.player_name,
            fen=fen,
            time=time,
            inc=inc,
        )
        self._send(msg_start(start))
        self._start_sent = True
        logger.info(f"Requested {self._local_color.value} from host")

    def close(self):
        """Release sockets. Ends the session if it is still running."""
        self._end(Outcome(EndReason.CLOSED))

    # =========================================================================
    # USER INTENTS: GAME
    # =========================================================================

    def propose_move(
        self,
        from_square: Square,
        to_square: Square,
        promotion: Optional[PromotionPiece] = None,
    ) -> BoardMove:
        """Send a move. It is applied locally only once the peer acknowledges it.

        Raises:
            MoveAlreadyPending: a move is still awaiting its Ack
            IllegalMoveAttempted: not our turn, or not a legal move
            SessionStateError: not in a game, or our draw offer is unanswered
        """
        self._require_in_game()
        if self._draw.state is DrawOffer.SENT_BY_LOCAL:
            raise SessionStateError("Cannot move while our draw offer is unanswered")

        move = BoardMove(from_square, to_square, promotion)
        if self._arbiter.pending is None and not self.is_my_turn:
            raise IllegalMoveAttempted(f"Not {self._local_color.value}'s turn")
        self._arbiter.stage(move)

        try:
            self._send(msg_move(move))
        except TransportError:
            self._arbiter.slot.take()
            raise
        self._pending_since = self._clock()
        logger.info(f"Sent move {move}")
        return move

    def offer_draw(self):
        self._require_in_game()
        if self._arbiter.pending is not None:
            raise SessionStateError("Cannot offer a draw while a move is awaiting acknowledgment")
        if self._draw.state is not DrawOffer.NONE:
            raise SessionStateError(f"Draw offer already outstanding ({self._draw.state.name})")
        self._send(self._draw.offer())
        self._set_phase(Phase.DRAW_OFFER_PENDING)
        logger.info("Offered a draw")

    def accept_draw(self):
        message = self._draw.accept()
        self._send_best_effort(message)
        logger.info("Accepted draw offer")
        self._end(Outcome(EndReason.DRAW_AGREED, end_state=EndState.DRAW))

    def reject_draw(self):
        message = self._draw.reject()
        self._send_best_effort(message)
        logger.info("Rejected draw offer")
        self._set_phase(Phase.PLAYING)

    def forfeit(self):
        """Resign. Unacknowledged: the session ends immediately."""
        if self._phase is Phase.ENDED:
            return
        if self._phase not in _CONNECTED:
            raise SessionStateError(f"Nothing to forfeit in phase {self._phase.name}")
        self._send_best_effort(self._draw.forfeit())
        logger.info("Forfeited the game")
        winner = self._local_color.opposite if self._local_color else None
        self._end(Outcome(EndReason.LOCAL_FORFEIT, winner=winner))

    # =========================================================================
    # TICK
    # =========================================================================

    def tick(self, now: Optional[float] = None):
        """Advance the protocol: one accept poll or at most one inbound message.

        Never raises protocol or transport errors; they are logged and folded
        into the session state.
        """
        if self._phase is Phase.ENDED:
            return
        if now is None:
            now = self._clock()

        if self._phase is Phase.AWAITING_PEER:
            self._poll_accept()
            return

        if self._transport is None:
            return

        try:
            msg = self._transport.poll()
        except TransportError as e:
            # Session stalls in its phase; the user can still forfeit
            logger.error(str(e))
            self.last_error = str(e)
            return

        if msg is not None:
            self._dispatch(msg)

        if self._phase is Phase.ENDED:
            return
        if self._transport.peer_closed and self._transport.closed:
            logger.info("Peer left the game")
            self._end(Outcome(EndReason.DISCONNECTED))
            return
        self._check_ack_timeout(now)

    def _poll_accept(self):
        try:
            transport = self._listener.poll_accept()
        except TransportError as e:
            logger.error(str(e))
            self.last_error = str(e)
            return
        if transport is None:
            return
        # One peer per game
        self._listener.close()
        self._listener = None
        self._connected(transport, Role.HOST)

    def _check_ack_timeout(self, now: float):
        if self._arbiter is None or self._arbiter.pending is None or self._pending_since is None:
            return
        waited = now - self._pending_since
        if waited >= self.ack_timeout:
            logger.warning(f"Move {self._arbiter.pending} not acknowledged after {waited:.1f}s, ending game")
            self._end(Outcome(EndReason.ACK_TIMEOUT))

    # =========================================================================
    # MESSAGE ROUTING
    # =========================================================================

    def _dispatch(self, msg: Message):
        try:
            body = msg.body()
        except DecodeError as e:
            logger.warning(f"Dropped {msg.type.name} message: {e}")
            return

        handlers = {
            MessageType.START: self._handle_start,
            MessageType.MOVE: self._handle_move,
            MessageType.ACK: self._handle_ack,
        }
        try:
            handlers[msg.type](body)
        except ProtocolDesync as e:
            logger.error(f"Protocol desync: {e}")
            self.last_error = str(e)
            self._end(Outcome(EndReason.DESYNC))
        except TransportError as e:
            logger.error(str(e))
            self.last_error = str(e)

    def _handle_start(self, start: StartInfo):
        if self._phase is not Phase.HANDSHAKING:
            logger.warning(f"Ignoring Start in phase {self._phase.name}")
            return

        if self._role is Role.HOST:
            if self._local_color is None:
                raise ProtocolDesync("Start received before the host chose a colour")
            # The host's colour never changes; a clashing request is flipped
            client_color = PieceColor.from_is_white(start.is_white)
            if client_color is self._local_color:
                client_color = client_color.opposite
            self._remote_start = replace(start, is_white=client_color.is_white)

            # Reply from the host's perspective; the client takes the complement
            reply = StartInfo(
                is_white=self._local_color.is_white,
                name=start.name,
                fen=start.fen,
                time=start.time,
                inc=start.inc,
            )
            self._send(msg_start(reply))
            logger.info(f"Handshake done: host {self._local_color.value}, client {client_color.value}")
        else:
            if not self._start_sent:
                logger.warning("Ignoring Start from host before requesting one")
                return
            self._local_color = PieceColor.from_is_white(start.is_white).opposite
            self._remote_start = start
            logger.info(f"Handshake done: playing {self._local_color.value}")

        self._set_phase(Phase.PLAYING)

    def _handle_move(self, net_move: NetMove):
        if net_move.forfeit:
            logger.info("Peer forfeited the game")
            self._end(Outcome(EndReason.REMOTE_FORFEIT, winner=self._local_color))
            return

        if self._phase not in _IN_GAME:
            logger.warning(f"Ignoring move message in phase {self._phase.name}")
            return

        if net_move.offer_draw:
            if self._draw.receive_offer():
                # Both sides offered before seeing the other offer
                self._end(Outcome(EndReason.DRAW_AGREED, end_state=EndState.DRAW))
                return
            self._set_phase(Phase.DRAW_OFFER_PENDING)
            logger.info("Peer offered a draw")
            if self.on_draw_offered:
                self.on_draw_offered()
            return

        if self._arbiter.pending is not None:
            raise ProtocolDesync(
                f"Move {net_move.to_board_move()} received while {self._arbiter.pending} awaits its Ack"
            )

        move = net_move.to_board_move()
        ack = self._arbiter.arbitrate(move, mover=self._remote_color)
        self._send(msg_move_result(ack.ok, ack.end_state))
        if not ack.ok:
            return

        logger.info(f"Applied peer move {move}")
        if self.on_board_changed:
            self.on_board_changed(move)
        self._check_board_result(reported=ack.end_state)

    def _handle_ack(self, ack: Ack):
        if self._phase not in _IN_GAME:
            raise ProtocolDesync(f"Ack received in phase {self._phase.name}")

        if ack.kind is AckKind.DRAW_RESPONSE:
            if self._draw.resolve(ack):
                logger.info("Draw offer accepted")
                self._end(Outcome(EndReason.DRAW_AGREED, end_state=EndState.DRAW))
            else:
                logger.info("Draw offer rejected")
                self._set_phase(Phase.PLAYING)
            return

        pending = self._arbiter.pending
        applied = self._arbiter.resolve(ack)
        self._pending_since = None

        if applied is None:
            self.last_rejected_move = pending
            if self.on_move_rejected:
                self.on_move_rejected(pending)
            return

        logger.info(f"Move {applied} confirmed")
        if self.on_board_changed:
            self.on_board_changed(applied)
        self._check_board_result(reported=ack.end_state)

    def _check_board_result(self, reported: Optional[EndState] = None):
        """End the session once the board (or the host's report) says the game is over."""
        result = self._board.game_result()
        if reported is not None and not result.is_terminal:
            raise ProtocolDesync(f"Peer reported {reported.name} but the local board is still in progress")
        if not result.is_terminal:
            return
        end_state = reported or self.end_state_policy.end_state_for(result)
        self._end(Outcome(EndReason.GAME_OVER, end_state=end_state, result=result, winner=result.winner))

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _connected(self, transport: Transport, role: Role):
        self._transport = transport
        self._role = role
        self._arbiter = MoveArbiter(self._board, role, self.end_state_policy)
        logger.info(f"Connected to {transport.peer} as {role.name.lower()}")
        self._set_phase(Phase.HANDSHAKING)

    def _send(self, message: Message):
        if self._transport is None:
            raise SessionStateError("Not connected")
        self._transport.send(message)

    def _send_best_effort(self, message: Message):
        try:
            self._send(message)
        except TransportError as e:
            logger.warning(f"Could not deliver {message.type.name}: {e}")

    def _require_lobby(self):
        if self._phase is not Phase.LOBBY:
            raise SessionStateError(f"Already {self._phase.name.lower()}")
        if self._local_color is None:
            raise SessionStateError("Choose a colour first")

    def _require_in_game(self):
        if self._phase not in _IN_GAME:
            raise SessionStateError(f"No game in progress (phase {self._phase.name})")

    def _set_phase(self, phase: Phase):
        if phase is self._phase:
            return
        logger.debug(f"Phase {self._phase.name} -> {phase.name}")
        self._phase = phase
        if self.on_phase_changed:
            self.on_phase_changed(phase)

    def _end(self, outcome: Outcome):
        if self._phase is Phase.ENDED:
            return
        self.outcome = outcome
        if self._arbiter is not None:
            self._arbiter.slot.take()
        self._pending_since = None
        self._draw.state = DrawOffer.NONE
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        if self._transport is not None:
            self._transport.close()
        self._set_phase(Phase.ENDED)
        if outcome.reason is not EndReason.CLOSED:
            logger.info(f"Game over: {outcome.describe()}")
        if self.on_game_over:
            self.on_game_over(outcome)
