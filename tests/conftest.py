"""Pytest fixtures for network chess testing.

Sessions talk over real loopback sockets on ephemeral ports; pump() ticks
them until a condition holds, the way the game loop would.
"""
import time

import pytest
from typing import Callable, List

from netchess.chess_board import ChessBoard, Square
from netchess.constants import PieceColor
from netchess.network import GameSession, Phase

# Bind any free port so tests never clash with a running game
LOOPBACK = [("127.0.0.1", 0)]


class FakeClock:
    """Manually advanced clock for ack-timeout tests."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def pump(*sessions: GameSession, until: Callable[[], bool], timeout: float = 3.0):
    """Tick sessions until `until()` holds. Fails the test on timeout."""
    deadline = time.monotonic() + timeout
    while not until():
        if time.monotonic() > deadline:
            phases = ", ".join(s.phase.name for s in sessions)
            raise AssertionError(f"Condition not reached within {timeout}s (phases: {phases})")
        for session in sessions:
            session.tick()
        time.sleep(0.001)


def play(mover: GameSession, other: GameSession, from_square: Square, to_square: Square):
    """Propose a move and pump until both boards agree on it."""
    mover.propose_move(from_square, to_square)
    pump(
        mover, other,
        until=lambda: mover.pending_move is None and other.board.fen == mover.board.fen,
    )


@pytest.fixture
def board() -> ChessBoard:
    """Board in the standard starting position."""
    return ChessBoard()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_session():
    """Factory fixture for sessions that are closed after the test.

    Usage:
        session = make_session(player_name="Alice", ack_timeout=2.0)
    """
    created: List[GameSession] = []

    def _make(**kwargs) -> GameSession:
        session = GameSession(**kwargs)
        created.append(session)
        return session

    yield _make
    for session in created:
        session.close()


@pytest.fixture
def connect_pair(make_session):
    """Factory fixture returning a (host, client) pair in HANDSHAKING or PLAYING.

    Usage:
        host, client = connect_pair()                        # white host, black client, playing
        host, client = connect_pair(client_color=PieceColor.WHITE)
        host, client = connect_pair(start=False)             # connected, no Start sent yet
    """
    def _connect(
        host_color: PieceColor = PieceColor.WHITE,
        client_color: PieceColor = PieceColor.BLACK,
        start: bool = True,
        host_kwargs: dict = None,
        client_kwargs: dict = None,
    ):
        host = make_session(player_name="Host", **(host_kwargs or {}))
        client = make_session(player_name="Client", **(client_kwargs or {}))

        host.choose_color(host_color)
        host.host_game(LOOPBACK)
        client.choose_color(client_color)
        client.join_game(host.listen_address)
        pump(host, client, until=lambda: host.phase is Phase.HANDSHAKING)

        if start:
            client.start_game()
            pump(
                host, client,
                until=lambda: host.phase is Phase.PLAYING and client.phase is Phase.PLAYING,
            )
        return host, client

    return _connect


@pytest.fixture
def pair(connect_pair):
    """White host and black client, handshake done."""
    return connect_pair()


# =============================================================================
# ASSERTION HELPERS
# =============================================================================

def assert_boards_agree(a: GameSession, b: GameSession):
    """Both peers see the same position."""
    assert a.board.fen == b.board.fen, f"Boards differ:\n  {a.board.fen}\n  {b.board.fen}"


def assert_ended(session: GameSession, reason, msg: str = ""):
    """Session is ENDED for the given reason."""
    assert session.phase is Phase.ENDED, f"Expected ENDED, got {session.phase.name}. {msg}"
    assert session.outcome is not None
    assert session.outcome.reason is reason, \
        f"Expected {reason.name}, got {session.outcome.reason.name}. {msg}"
