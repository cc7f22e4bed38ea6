"""
Click handling: turns mouse clicks into GameSession intents.
Keeps the local selection state (selected square, highlighted moves).
"""
import logging
from typing import Callable, Optional, Set, Tuple

from .chess_board import BoardMove, PromotionPiece, Square
from .constants import PieceColor
from .network.errors import ProtocolError, TransportError
from .network.session import GameSession, Phase
from .renderer import button_at, is_flipped, screen_to_square

logger = logging.getLogger(__name__)

# Carried over when an ended session is replaced
SESSION_CALLBACKS = (
    'on_phase_changed', 'on_board_changed', 'on_move_rejected',
    'on_draw_offered', 'on_game_over',
)


class ClickHandler:
    """
    Routes clicks to buttons or the board.

    Board clicks follow the usual two-step flow: the first click on one of
    our pieces selects it and highlights its legal moves, a click on a
    highlighted square proposes the move.
    """

    def __init__(
        self,
        session: GameSession,
        join_address: Optional[Tuple[str, int]] = None,
        host_addresses=None,
        session_factory: Callable[[], GameSession] = GameSession,
    ):
        self.session = session
        self.session_factory = session_factory
        self.join_address = join_address
        self.host_addresses = host_addresses
        self.selected_square: Optional[Square] = None
        self.legal_moves: Set[BoardMove] = set()
        self.message = ""

    def deselect(self):
        self.selected_square = None
        self.legal_moves = set()

    def handle_click(self, mx: int, my: int) -> bool:
        """Handle a left click. Returns True if it did something."""
        button = button_at(self.session, mx, my)
        if button is not None:
            self._run(self._press, button)
            return True

        square = screen_to_square(mx, my, is_flipped(self.session))
        if square is None:
            return False
        return self.handle_square(square)

    def handle_square(self, square: Square) -> bool:
        target = self._move_to(square)
        if target is not None:
            self.deselect()
            self._run(
                self.session.propose_move,
                target.from_square, target.to_square, target.promotion,
            )
            return True

        moves = self.session.movable_from(square)
        if moves:
            self.selected_square = square
            self.legal_moves = moves
            return True

        self.deselect()
        return False

    def _move_to(self, square: Square) -> Optional[BoardMove]:
        """Highlighted move ending on a square; promotions default to a queen."""
        candidates = [m for m in self.legal_moves if m.to_square == square]
        if not candidates:
            return None
        for move in candidates:
            if move.promotion in (None, PromotionPiece.QUEEN):
                return move
        return candidates[0]

    def restart(self) -> GameSession:
        """Swap an ended session for a fresh one with the same colour, name and callbacks."""
        old = self.session
        session = self.session_factory()
        if old.player_name and not session.player_name:
            session.player_name = old.player_name
        if old.local_color is not None:
            session.choose_color(old.local_color)
        for name in SESSION_CALLBACKS:
            setattr(session, name, getattr(old, name))
        self.session = session
        self.deselect()
        logger.info("Starting a new game")
        return session

    def _press(self, button: str):
        session = self.session
        if button in ('host', 'join') and session.phase is Phase.ENDED:
            session = self.restart()
        if button == 'white':
            session.choose_color(PieceColor.WHITE)
        elif button == 'black':
            session.choose_color(PieceColor.BLACK)
        elif button == 'host':
            session.host_game(self.host_addresses)
        elif button == 'join':
            session.join_game(self.join_address)
        elif button == 'start':
            session.start_game()
        elif button == 'forfeit':
            session.forfeit()
        elif button == 'offer_draw':
            session.offer_draw()
        elif button == 'accept':
            session.accept_draw()
        elif button == 'reject':
            session.reject_draw()
        self.deselect()

    def _run(self, action, *args):
        """Run an intent, turning protocol and connection errors into a status message."""
        self.message = ""
        try:
            action(*args)
        except (ProtocolError, TransportError) as e:
            logger.warning(f"{getattr(action, '__name__', action)} failed: {e}")
            self.message = str(e)
