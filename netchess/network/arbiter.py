"""Move arbitration: who accepts which move and how the local board follows.

The Host is the single source of truth for legality. It re-checks every move
the Client claims and answers with Ack(ok=is_legal). The Client trusts the
Host and applies whatever it receives.

Per side, the sending half runs
    Idle -> MoveSent(pending) -> {confirmed, rejected} -> Idle
and the receiving half runs
    Idle -> MoveReceived -> {applied, rejected} -> Idle
"""

import logging
from enum import Enum, auto
from typing import Optional

from ..chess_board import BoardMove, ChessBoard, GameResult, IllegalMove
from ..constants import PieceColor
from .errors import IllegalMoveAttempted, MoveAlreadyPending, ProtocolDesync
from .protocol import Ack, AckKind, EndState

logger = logging.getLogger(__name__)


class Role(Enum):
    """Connection role, fixed once a connection exists."""
    UNCONNECTED = auto()
    HOST = auto()
    CLIENT = auto()


class EndStatePolicy(Enum):
    """Which board results the Host reports in an Ack's end_state.

    DECISIVE_ONLY: checkmate -> CHECKMATE, insufficient-material draw -> DRAW;
        stalemate, fifty-move and threefold repetition are not reported.
    ALL_TERMINAL: as above, and every other terminal result is reported as DRAW.
    """
    DECISIVE_ONLY = auto()
    ALL_TERMINAL = auto()

    def end_state_for(self, result: GameResult) -> Optional[EndState]:
        if result.is_checkmate:
            return EndState.CHECKMATE
        if result is GameResult.DRAW:
            return EndState.DRAW
        if self is EndStatePolicy.ALL_TERMINAL and result.is_terminal:
            return EndState.DRAW
        return None


class PendingSlot:
    """Holds the single move that is in flight awaiting an Ack."""

    def __init__(self):
        self._move: Optional[BoardMove] = None

    @property
    def move(self) -> Optional[BoardMove]:
        return self._move

    @property
    def occupied(self) -> bool:
        return self._move is not None

    def stage(self, move: BoardMove):
        """Occupy the slot. Never overwrites an in-flight move."""
        if self._move is not None:
            raise MoveAlreadyPending(
                f"Cannot stage {move}: {self._move} is still awaiting acknowledgment"
            )
        self._move = move

    def take(self) -> Optional[BoardMove]:
        """Clear the slot and return what it held."""
        move, self._move = self._move, None
        return move


class MoveArbiter:
    """Decides the fate of outgoing and incoming moves for one side."""

    def __init__(
        self,
        board: ChessBoard,
        role: Role,
        policy: EndStatePolicy = EndStatePolicy.DECISIVE_ONLY,
    ):
        if role is Role.UNCONNECTED:
            raise ValueError("Arbiter needs a connected role")
        self.board = board
        self.role = role
        self.policy = policy
        self.slot = PendingSlot()

    @property
    def pending(self) -> Optional[BoardMove]:
        return self.slot.move

    # =========================================================================
    # OUTGOING
    # =========================================================================

    def stage(self, move: BoardMove):
        """Validate a local proposal and park it until its Ack arrives.

        The board is not touched until the peer confirms.
        """
        if self.slot.occupied:
            raise MoveAlreadyPending(
                f"Cannot stage {move}: {self.slot.move} is still awaiting acknowledgment"
            )
        if not self.board.is_legal(move):
            raise IllegalMoveAttempted(f"{move} is not legal in {self.board.fen}")
        self.slot.stage(move)

    def resolve(self, ack: Ack) -> Optional[BoardMove]:
        """Settle the pending move with the peer's Ack.

        Returns the move if it was confirmed and applied, None if rejected.
        """
        if ack.kind is not AckKind.MOVE_RESULT:
            raise ProtocolDesync(f"Expected a move result, got {ack.kind.name}")
        move = self.slot.take()
        if move is None:
            raise ProtocolDesync("Ack received with no pending move")

        if not ack.ok:
            logger.warning(f"Move {move} rejected by peer")
            return None

        try:
            self.board.apply_move(move)
        except IllegalMove as e:
            raise ProtocolDesync(f"Confirmed move {move} cannot be applied locally: {e}") from e
        return move

    # =========================================================================
    # INCOMING
    # =========================================================================

    def arbitrate(self, move: BoardMove, mover: Optional[PieceColor] = None) -> Ack:
        """Rule on a move received from the peer and build the reply.

        mover is the colour the peer plays; the Host rejects moves made out
        of turn even when the piece could legally move for the side to move.
        """
        if self.role is Role.CLIENT:
            return self._arbitrate_as_client(move)
        return self._arbitrate_as_host(move, mover)

    def _arbitrate_as_client(self, move: BoardMove) -> Ack:
        # The Host already ruled on it, so the Client never rejects
        try:
            self.board.apply_move(move)
        except IllegalMove as e:
            raise ProtocolDesync(f"Host-approved move {move} cannot be applied: {e}") from e
        return Ack(ok=True, end_state=None)

    def _arbitrate_as_host(self, move: BoardMove, mover: Optional[PieceColor]) -> Ack:
        if mover is not None and self.board.side_to_move is not mover:
            logger.warning(f"Rejected move {move} from client: {self.board.side_to_move.value} to move")
            return Ack(ok=False, end_state=None)

        is_legal = move in self.board.legal_moves_from(move.from_square)
        if not is_legal:
            logger.warning(f"Rejected illegal move {move} from client")
            return Ack(ok=False, end_state=None)

        self.board.apply_move(move)
        return Ack(ok=True, end_state=self.policy.end_state_for(self.board.game_result()))
