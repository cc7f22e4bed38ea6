"""Board and session rendering with pygame.

Draws only what the GameSession exposes: board position, phase, pending
move, draw-offer state and outcome. Layout helpers (button rects,
screen <-> square conversion) are module-level so input handling can use
them without a display.
"""
import pygame
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from .chess_board import Square
from .constants import (
    BOARD_OFFSET_X, BOARD_OFFSET_Y, BOARD_SIZE, CELL_SIZE,
    COLOR_BG, COLOR_BOARD_DARK, COLOR_BOARD_LIGHT, COLOR_BUTTON, COLOR_BUTTON_ACCEPT,
    COLOR_BUTTON_DRAW, COLOR_BUTTON_FORFEIT, COLOR_BUTTON_REJECT, COLOR_MOVE_HIGHLIGHT,
    COLOR_PIECE_BLACK, COLOR_PIECE_WHITE, COLOR_SELECTED, COLOR_TEXT, COLOR_TEXT_DARK,
    PieceColor,
)
from .network.arbiter import Role
from .network.draw import DrawOffer
from .network.session import Phase

if TYPE_CHECKING:
    from .click_handler import ClickHandler
    from .network.session import GameSession


# name -> (rect, fill colour, label)
BUTTONS: Dict[str, Tuple[pygame.Rect, Tuple[int, int, int], str]] = {
    'white': (pygame.Rect(500, 800, 60, 40), (255, 255, 255), ""),
    'black': (pygame.Rect(500, 850, 60, 40), (0, 0, 0), ""),
    'host': (pygame.Rect(640, 800, 150, 40), COLOR_BUTTON, "New game (host)"),
    'join': (pygame.Rect(640, 850, 150, 40), COLOR_BUTTON, "New game (join)"),
    'start': (pygame.Rect(640, 900, 150, 40), COLOR_BUTTON, "Init game"),
    'forfeit': (pygame.Rect(800, 50, 100, 40), COLOR_BUTTON_FORFEIT, "Forfeit"),
    'offer_draw': (pygame.Rect(800, 100, 100, 40), COLOR_BUTTON_DRAW, "Offer draw"),
    'accept': (pygame.Rect(100, 40, 100, 40), COLOR_BUTTON_ACCEPT, "Accept"),
    'reject': (pygame.Rect(220, 40, 100, 40), COLOR_BUTTON_REJECT, "Reject"),
}

# Unicode glyphs keyed by FEN letter
PIECE_GLYPHS = {
    'K': '♔', 'Q': '♕', 'R': '♖', 'B': '♗', 'N': '♘', 'P': '♙',
    'k': '♚', 'q': '♛', 'r': '♜', 'b': '♝', 'n': '♞', 'p': '♟',
}


def is_flipped(session: 'GameSession') -> bool:
    """Board is drawn from black's side when the local player is black."""
    return session.local_color is PieceColor.BLACK


def square_to_screen(square: Square, flipped: bool = False) -> Tuple[int, int]:
    """Top-left pixel of a square."""
    file, rank = square
    col = BOARD_SIZE - 1 - file if flipped else file
    row = rank if flipped else BOARD_SIZE - 1 - rank
    return (BOARD_OFFSET_X + col * CELL_SIZE, BOARD_OFFSET_Y + row * CELL_SIZE)


def screen_to_square(mx: int, my: int, flipped: bool = False) -> Optional[Square]:
    """Square under a pixel, or None outside the board."""
    col = (mx - BOARD_OFFSET_X) // CELL_SIZE
    row = (my - BOARD_OFFSET_Y) // CELL_SIZE
    if not (0 <= col < BOARD_SIZE and 0 <= row < BOARD_SIZE):
        return None
    if flipped:
        return (BOARD_SIZE - 1 - col, row)
    return (col, BOARD_SIZE - 1 - row)


def visible_buttons(session: 'GameSession') -> List[str]:
    """Buttons that make sense in the session's current state."""
    phase = session.phase
    names = []
    if phase in (Phase.LOBBY, Phase.AWAITING_PEER) or (
            phase is Phase.HANDSHAKING and not session.start_sent and session.role is Role.CLIENT):
        names += ['white', 'black']
    if phase in (Phase.LOBBY, Phase.ENDED) and session.local_color is not None:
        names += ['host', 'join']
    if phase is Phase.HANDSHAKING and session.role is Role.CLIENT and not session.start_sent:
        names.append('start')
    if phase in (Phase.HANDSHAKING, Phase.PLAYING, Phase.DRAW_OFFER_PENDING):
        names.append('forfeit')
    if phase in (Phase.PLAYING, Phase.DRAW_OFFER_PENDING):
        if session.draw_offer is DrawOffer.NONE and session.pending_move is None:
            names.append('offer_draw')
        if session.draw_offer is DrawOffer.RECEIVED_FROM_REMOTE:
            names += ['accept', 'reject']
    return names


def button_at(session: 'GameSession', mx: int, my: int) -> Optional[str]:
    for name in visible_buttons(session):
        if BUTTONS[name][0].collidepoint(mx, my):
            return name
    return None


def status_text(session: 'GameSession') -> str:
    """One-line status for the top of the window."""
    phase = session.phase
    if phase is Phase.ENDED:
        ended = session.outcome.describe() if session.outcome else "Game has ended"
        return f"{ended}. Press New game to play again"
    if phase is Phase.LOBBY:
        return "Choose a colour, then host or join"
    if phase is Phase.AWAITING_PEER:
        host, port = session.listen_address
        return f"Waiting for opponent on {host}:{port}"
    if phase is Phase.HANDSHAKING:
        if session.role is Role.CLIENT and not session.start_sent:
            return "Connected. Press Init game to start"
        return "Negotiating colours..."
    if session.draw_offer is DrawOffer.RECEIVED_FROM_REMOTE:
        return "Opponent offers a draw"
    if session.draw_offer is DrawOffer.SENT_BY_LOCAL:
        return "Draw offered, waiting for answer"
    if session.pending_move is not None:
        return f"Sent {session.pending_move}, waiting for confirmation"
    side = session.board.side_to_move.value.capitalize()
    return f"Game in progress. {side} to move"


class Renderer:
    """Draws the board and the session controls onto a pygame surface."""

    def __init__(self, screen: pygame.Surface):
        self.screen = screen
        pygame.font.init()
        self.font = pygame.font.SysFont('arial', 18)
        self.piece_font = pygame.font.SysFont('dejavusans,segoeuisymbol,arial', 56)

    def draw(self, session: 'GameSession', handler: Optional['ClickHandler'] = None):
        self.screen.fill(COLOR_BG)
        flipped = is_flipped(session)
        self.draw_board(flipped)
        if handler is not None:
            self.draw_highlights(handler, flipped)
        self.draw_pieces(session, flipped)
        self.draw_coordinates(flipped)
        self.draw_buttons(session)
        self.draw_status(session, handler)
        self.draw_move_list(session)

    def draw_board(self, flipped: bool):
        for rank in range(BOARD_SIZE):
            for file in range(BOARD_SIZE):
                x, y = square_to_screen((file, rank), flipped)
                color = COLOR_BOARD_LIGHT if (file + rank) % 2 == 1 else COLOR_BOARD_DARK
                pygame.draw.rect(self.screen, color, (x, y, CELL_SIZE, CELL_SIZE))

    def draw_highlights(self, handler: 'ClickHandler', flipped: bool):
        if handler.selected_square is not None:
            x, y = square_to_screen(handler.selected_square, flipped)
            pygame.draw.rect(self.screen, COLOR_SELECTED, (x, y, CELL_SIZE, CELL_SIZE), 3)
        for move in handler.legal_moves:
            x, y = square_to_screen(move.to_square, flipped)
            center = (x + CELL_SIZE // 2, y + CELL_SIZE // 2)
            pygame.draw.circle(self.screen, COLOR_MOVE_HIGHLIGHT, center, 20)

    def draw_pieces(self, session: 'GameSession', flipped: bool):
        for rank in range(BOARD_SIZE):
            for file in range(BOARD_SIZE):
                symbol = session.board.piece_at((file, rank))
                if symbol is None:
                    continue
                color = COLOR_PIECE_WHITE if symbol.isupper() else COLOR_PIECE_BLACK
                # Solid glyphs for both sides, tinted by colour
                glyph = self.piece_font.render(PIECE_GLYPHS[symbol.lower()], True, color)
                x, y = square_to_screen((file, rank), flipped)
                rect = glyph.get_rect(center=(x + CELL_SIZE // 2, y + CELL_SIZE // 2))
                self.screen.blit(glyph, rect)

    def draw_coordinates(self, flipped: bool):
        for i in range(BOARD_SIZE):
            x, y = square_to_screen((i, 0), flipped)
            label = self.font.render(chr(ord('a') + i), True, COLOR_TEXT)
            self.screen.blit(label, (x + CELL_SIZE // 2 - 4, BOARD_OFFSET_Y + BOARD_SIZE * CELL_SIZE + 8))
            x, y = square_to_screen((0, i), flipped)
            label = self.font.render(str(i + 1), True, COLOR_TEXT)
            self.screen.blit(label, (BOARD_OFFSET_X - 20, y + CELL_SIZE // 2 - 8))

    def draw_buttons(self, session: 'GameSession'):
        names = visible_buttons(session)
        if 'white' in names:
            self.screen.blit(self.font.render("Choose color", True, COLOR_TEXT), (500, 775))
        for name in names:
            rect, fill, label = BUTTONS[name]
            pygame.draw.rect(self.screen, fill, rect, border_radius=5)
            if name in ('white', 'black') and session.local_color is not None \
                    and session.local_color.value == name:
                pygame.draw.rect(self.screen, COLOR_SELECTED, rect, 3, border_radius=5)
            if label:
                text_color = COLOR_TEXT_DARK if name == 'offer_draw' else COLOR_TEXT
                text = self.font.render(label, True, text_color)
                self.screen.blit(text, text.get_rect(center=rect.center))

    def draw_status(self, session: 'GameSession', handler: Optional['ClickHandler']):
        self.screen.blit(self.font.render(status_text(session), True, COLOR_TEXT), (400, 20))
        if session.local_color is not None and session.phase in (Phase.PLAYING, Phase.DRAW_OFFER_PENDING):
            text = f"You are playing as: {session.local_color.value.capitalize()}"
            self.screen.blit(self.font.render(text, True, COLOR_TEXT), (400, 60))
        message = handler.message if handler and handler.message else session.last_error
        if message:
            self.screen.blit(self.font.render(message, True, COLOR_BUTTON_REJECT), (100, 760))

    def draw_move_list(self, session: 'GameSession'):
        # Newest first
        for index, (color, move) in enumerate(reversed(session.board.history[-20:])):
            y = 105 + index * 40
            dot = COLOR_PIECE_WHITE if color is PieceColor.WHITE else COLOR_PIECE_BLACK
            pygame.draw.circle(self.screen, dot, (980, y + 10), 10)
            self.screen.blit(self.font.render(str(move), True, COLOR_TEXT), (1000, y))
