"""Board engine: legal move generation, move application and game results.

Thin adapter over python-chess. The network layer only talks to it through
legal_moves_from(), apply_move() and game_result(); squares are plain
(file, rank) tuples with rank 0 being chess rank 1, which is also how they
travel on the wire.
"""
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional, Set, Tuple

import chess

from .constants import PieceColor

Square = Tuple[int, int]


class IllegalMove(ValueError):
    """Move rejected by the board engine."""


class PromotionPiece(Enum):
    """Pieces a pawn may promote to."""
    QUEEN = chess.QUEEN
    ROOK = chess.ROOK
    BISHOP = chess.BISHOP
    KNIGHT = chess.KNIGHT


class GameResult(Enum):
    """Board-level game result."""
    IN_PROGRESS = auto()
    WHITE_WINS = auto()          # Black is checkmated
    BLACK_WINS = auto()          # White is checkmated
    DRAW = auto()                # Insufficient material
    STALEMATE = auto()
    FIFTY_MOVE = auto()
    THREEFOLD_REPETITION = auto()

    @property
    def is_checkmate(self) -> bool:
        return self in (GameResult.WHITE_WINS, GameResult.BLACK_WINS)

    @property
    def is_terminal(self) -> bool:
        return self is not GameResult.IN_PROGRESS

    @property
    def winner(self) -> Optional[PieceColor]:
        if self is GameResult.WHITE_WINS:
            return PieceColor.WHITE
        if self is GameResult.BLACK_WINS:
            return PieceColor.BLACK
        return None


_TERMINATION_RESULTS = {
    chess.Termination.STALEMATE: GameResult.STALEMATE,
    chess.Termination.INSUFFICIENT_MATERIAL: GameResult.DRAW,
    chess.Termination.SEVENTYFIVE_MOVES: GameResult.FIFTY_MOVE,
    chess.Termination.FIFTY_MOVES: GameResult.FIFTY_MOVE,
    chess.Termination.FIVEFOLD_REPETITION: GameResult.THREEFOLD_REPETITION,
    chess.Termination.THREEFOLD_REPETITION: GameResult.THREEFOLD_REPETITION,
}


def square_index(square: Square) -> int:
    """Convert (file, rank) to a python-chess square index."""
    file, rank = square
    return chess.square(file, rank)


def square_name(square: Square) -> str:
    """Algebraic name of a square, e.g. (4, 1) -> 'e2'."""
    return chess.square_name(square_index(square))


@dataclass(frozen=True)
class BoardMove:
    """A move on the board, independent of any wire encoding."""
    from_square: Square
    to_square: Square
    promotion: Optional[PromotionPiece] = None

    def to_chess(self) -> chess.Move:
        promotion = self.promotion.value if self.promotion else None
        return chess.Move(square_index(self.from_square), square_index(self.to_square), promotion)

    @classmethod
    def from_chess(cls, move: chess.Move) -> 'BoardMove':
        promotion = PromotionPiece(move.promotion) if move.promotion else None
        return cls(
            from_square=(chess.square_file(move.from_square), chess.square_rank(move.from_square)),
            to_square=(chess.square_file(move.to_square), chess.square_rank(move.to_square)),
            promotion=promotion,
        )

    def __str__(self) -> str:
        return self.to_chess().uci()


class ChessBoard:
    """Locally authoritative board owned by a game session."""

    def __init__(self, fen: Optional[str] = None):
        self._board = chess.Board(fen) if fen else chess.Board()
        # (mover, move), oldest first
        self.history: List[Tuple[PieceColor, BoardMove]] = []

    @property
    def fen(self) -> str:
        return self._board.fen()

    @property
    def side_to_move(self) -> PieceColor:
        return PieceColor.from_is_white(self._board.turn == chess.WHITE)

    def piece_at(self, square: Square) -> Optional[str]:
        """FEN letter of the piece on a square ('P' white pawn, 'k' black king)."""
        piece = self._board.piece_at(square_index(square))
        return piece.symbol() if piece else None

    def legal_moves_from(self, square: Square) -> Set[BoardMove]:
        """All legal moves whose origin is the given square."""
        origin = square_index(square)
        return {
            BoardMove.from_chess(move)
            for move in self._board.legal_moves
            if move.from_square == origin
        }

    def is_legal(self, move: BoardMove) -> bool:
        return move in self.legal_moves_from(move.from_square)

    def apply_move(self, move: BoardMove):
        """Play a move. Raises IllegalMove if the engine refuses it."""
        chess_move = move.to_chess()
        if not self._board.is_legal(chess_move):
            raise IllegalMove(f"Illegal move {move} in position {self.fen}")
        mover = self.side_to_move
        self._board.push(chess_move)
        self.history.append((mover, move))

    def game_result(self) -> GameResult:
        outcome = self._board.outcome(claim_draw=True)
        if outcome is None:
            return GameResult.IN_PROGRESS
        if outcome.termination == chess.Termination.CHECKMATE:
            return GameResult.WHITE_WINS if outcome.winner == chess.WHITE else GameResult.BLACK_WINS
        return _TERMINATION_RESULTS.get(outcome.termination, GameResult.DRAW)

    def snapshot(self) -> dict:
        """Display snapshot: position, side to move, result and move list."""
        return {
            'fen': self.fen,
            'side_to_move': self.side_to_move.value,
            'result': self.game_result().name,
            'history': [(color.value, str(move)) for color, move in self.history],
        }
