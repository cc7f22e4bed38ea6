"""Application constants and enums."""
from enum import Enum


# Display settings
WINDOW_WIDTH = 1200
WINDOW_HEIGHT = 960
FPS = 60

# Board geometry (pixels)
BOARD_SIZE = 8
CELL_SIZE = 80
BOARD_OFFSET_X = 100
BOARD_OFFSET_Y = 100

# Colors
COLOR_BG = (25, 51, 76)
COLOR_BOARD_LIGHT = (240, 217, 181)
COLOR_BOARD_DARK = (181, 135, 99)
COLOR_MOVE_HIGHLIGHT = (168, 167, 163)
COLOR_SELECTED = (255, 215, 0)
COLOR_TEXT = (240, 240, 240)
COLOR_TEXT_DARK = (20, 20, 20)
COLOR_PIECE_WHITE = (250, 250, 250)
COLOR_PIECE_BLACK = (10, 10, 10)
COLOR_BUTTON = (200, 40, 40)
COLOR_BUTTON_FORFEIT = (40, 40, 220)
COLOR_BUTTON_DRAW = (40, 200, 40)
COLOR_BUTTON_ACCEPT = (0, 204, 0)
COLOR_BUTTON_REJECT = (204, 0, 0)


# Network defaults
# Host listens on the first free address of this fallback pair.
HOST_ADDRESSES = [
    ('127.0.0.1', 8080),
    ('127.0.0.1', 8081),
]
JOIN_ADDRESS = ('127.0.0.1', 8080)
CONNECT_TIMEOUT = 5.0
ACK_TIMEOUT = 10.0
READ_CHUNK_SIZE = 4096


class PieceColor(Enum):
    """Side colors."""
    WHITE = 'white'
    BLACK = 'black'

    @property
    def opposite(self) -> 'PieceColor':
        return PieceColor.BLACK if self is PieceColor.WHITE else PieceColor.WHITE

    @property
    def is_white(self) -> bool:
        return self is PieceColor.WHITE

    @classmethod
    def from_is_white(cls, is_white: bool) -> 'PieceColor':
        return cls.WHITE if is_white else cls.BLACK
