"""
Network chess - two players, two machines, one game.
One side hosts (authoritative for move legality), the other joins.
"""
import argparse
import logging
import sys

import pygame

from netchess import settings
from netchess.click_handler import ClickHandler
from netchess.constants import FPS, PieceColor
from netchess.network import GameSession, SessionStateError, TransportError
from netchess.renderer import Renderer


def parse_address(value: str):
    """Parse HOST:PORT."""
    host, sep, port = value.rpartition(':')
    if not sep or not host:
        raise argparse.ArgumentTypeError(f"Expected HOST:PORT, got {value!r}")
    try:
        return (host, int(port))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port in {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Network chess')
    parser.add_argument('--name', help='Player name sent in the handshake')
    parser.add_argument('--color', choices=[c.value for c in PieceColor], help='Colour to request')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--host', action='store_true', help='Host a game right away')
    mode.add_argument('--join', type=parse_address, nargs='?', const=None, default=False,
                      metavar='HOST:PORT', help='Join a game right away')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    return parser


def main(argv=None):
    """Main game loop."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(levelname)s] %(message)s',
    )
    logger = logging.getLogger('netchess')

    session = GameSession.from_settings()
    if args.name:
        session.player_name = args.name
        settings.set_player_name(args.name)

    color = PieceColor(args.color) if args.color else settings.get_preferred_color()
    if color is not None:
        session.choose_color(color)
        settings.set_preferred_color(color)

    join_address = settings.get_join_address()
    host_addresses = settings.get_host_addresses()
    handler = ClickHandler(
        session,
        join_address=join_address,
        host_addresses=host_addresses,
        session_factory=GameSession.from_settings,
    )

    # Clear stale highlights whenever the board or the exchange changes
    session.on_board_changed = lambda move: handler.deselect()
    session.on_move_rejected = lambda move: handler.deselect()

    try:
        if args.host:
            session.host_game(host_addresses)
        elif args.join is not False:
            session.join_game(args.join or join_address)
            session.start_game(name=args.name)
    except (SessionStateError, TransportError) as e:
        logger.error(f"Could not start a game: {e}")
        return 1

    pygame.init()
    pygame.display.set_caption("Network chess")
    screen = pygame.display.set_mode(settings.get_resolution(), pygame.RESIZABLE)
    clock = pygame.time.Clock()
    renderer = Renderer(screen)

    running = True
    while running:
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                running = False
            elif event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
                handler.handle_click(*event.pos)

        # The handler swaps in a new session when a finished game is restarted
        session = handler.session
        session.tick()

        renderer.draw(session, handler)
        pygame.display.flip()
        clock.tick(FPS)

    handler.session.close()
    pygame.quit()
    return 0


if __name__ == '__main__':
    sys.exit(main())
