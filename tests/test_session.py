"""End-to-end tests for GameSession over loopback sockets.

Each test runs a host and a client in the same process and drives them with
tick(), as the game loop does.
"""
import pytest

from netchess.chess_board import BoardMove
from netchess.constants import PieceColor
from netchess.network import (
    DrawOffer, EndReason, EndState, IllegalMoveAttempted, MoveAlreadyPending, Phase, Role,
    SessionStateError, TransportError,
)
from netchess.network.protocol import Message, MessageType, msg_move, msg_move_result

from tests.conftest import LOOPBACK, assert_boards_agree, assert_ended, play, pump

E2, E4 = (4, 1), (4, 3)
D2, D4 = (3, 1), (3, 3)
E7, E5 = (4, 6), (4, 4)


class TestHandshake:
    """Test connection and colour negotiation."""

    def test_host_waits_for_peer(self, make_session):
        host = make_session()
        host.choose_color(PieceColor.WHITE)
        host.host_game(LOOPBACK)

        assert host.phase is Phase.AWAITING_PEER
        host.tick()
        assert host.phase is Phase.AWAITING_PEER
        assert host.role is Role.UNCONNECTED

    def test_host_requires_colour(self, make_session):
        host = make_session()
        with pytest.raises(SessionStateError):
            host.host_game(LOOPBACK)
        assert host.phase is Phase.LOBBY

    def test_connected_before_start(self, connect_pair):
        host, client = connect_pair(start=False)
        assert host.role is Role.HOST and client.role is Role.CLIENT
        assert host.phase is Phase.HANDSHAKING
        assert client.phase is Phase.HANDSHAKING
        assert not client.start_sent

    def test_distinct_colours_kept(self, pair):
        host, client = pair
        assert host.local_color is PieceColor.WHITE
        assert client.local_color is PieceColor.BLACK

    def test_client_white_host_black(self, connect_pair):
        host, client = connect_pair(host_color=PieceColor.BLACK, client_color=PieceColor.WHITE)
        assert host.local_color is PieceColor.BLACK
        assert client.local_color is PieceColor.WHITE

    @pytest.mark.parametrize("color", list(PieceColor))
    def test_colour_clash_resolved_in_host_favour(self, connect_pair, color):
        host, client = connect_pair(host_color=color, client_color=color)

        assert host.local_color is color
        assert client.local_color is color.opposite
        assert host.remote_start.is_white is color.opposite.is_white

    def test_host_sees_client_name(self, pair):
        host, client = pair
        assert host.remote_start.name == "Client"

    def test_only_client_starts(self, connect_pair):
        host, _ = connect_pair(start=False)
        with pytest.raises(SessionStateError):
            host.start_game()

    def test_start_only_once(self, pair):
        _, client = pair
        with pytest.raises(SessionStateError):
            client.start_game()

    def test_colour_locked_after_start(self, pair):
        _, client = pair
        with pytest.raises(SessionStateError):
            client.choose_color(PieceColor.WHITE)

    def test_join_failure_stays_in_lobby(self, make_session):
        # Grab a free port and release it so nothing listens there
        from netchess.network.transport import HostListener
        listener = HostListener(LOOPBACK)
        address = listener.address
        listener.close()

        client = make_session()
        client.choose_color(PieceColor.BLACK)
        with pytest.raises(TransportError):
            client.join_game(address, timeout=1.0)
        assert client.phase is Phase.LOBBY
        assert client.last_error

    def test_no_moves_before_handshake(self, connect_pair):
        host, _ = connect_pair(start=False)
        with pytest.raises(SessionStateError):
            host.propose_move(E2, E4)


class TestMoves:
    """Test the move/ack exchange."""

    def test_host_move_reaches_client(self, pair):
        host, client = pair
        host.propose_move(E2, E4)

        # Not applied until acknowledged
        assert host.pending_move == BoardMove(E2, E4)
        assert host.board.piece_at(E4) is None

        pump(host, client, until=lambda: host.pending_move is None)
        assert_boards_agree(host, client)
        assert client.board.piece_at(E4) == 'P'
        assert client.is_my_turn and not host.is_my_turn

    def test_client_reply(self, pair):
        host, client = pair
        play(host, client, E2, E4)
        play(client, host, E7, E5)

        assert_boards_agree(host, client)
        assert host.board.piece_at(E5) == 'p'
        assert len(host.board.history) == 2

    def test_second_move_while_pending(self, pair):
        host, client = pair
        host.propose_move(E2, E4)
        with pytest.raises(MoveAlreadyPending):
            host.propose_move(D2, D4)
        assert host.pending_move == BoardMove(E2, E4)

        pump(host, client, until=lambda: host.pending_move is None)
        assert host.board.piece_at(D4) is None
        assert_boards_agree(host, client)

    def test_not_my_turn(self, pair):
        _, client = pair
        with pytest.raises(IllegalMoveAttempted):
            client.propose_move(E7, E5)
        assert client.pending_move is None

    def test_illegal_local_move(self, pair):
        host, _ = pair
        with pytest.raises(IllegalMoveAttempted):
            host.propose_move(E2, (4, 4))
        assert host.pending_move is None

    def test_host_rejects_illegal_client_move(self, connect_pair):
        """A client that bypasses local checks gets Ack(ok=false), boards stay put."""
        host, client = connect_pair(host_color=PieceColor.BLACK, client_color=PieceColor.WHITE)
        bad = BoardMove(E2, (4, 4))
        fen = host.board.fen
        rejected = []
        client.on_move_rejected = rejected.append

        client._arbiter.slot.stage(bad)
        client._transport.send(msg_move(bad))
        pump(host, client, until=lambda: client.pending_move is None)

        assert host.board.fen == fen
        assert client.board.fen == fen
        assert client.last_rejected_move == bad
        assert rejected == [bad]
        assert client.phase is Phase.PLAYING
        assert host.phase is Phase.PLAYING

    def test_host_rejects_client_moving_host_pieces(self, pair):
        """With white to move, a black client cannot push a white pawn."""
        host, client = pair
        stolen = BoardMove(E2, E4)
        fen = host.board.fen

        client._arbiter.slot.stage(stolen)
        client._transport.send(msg_move(stolen))
        pump(host, client, until=lambda: client.pending_move is None)

        assert host.board.fen == fen
        assert host.board.history == []
        assert client.board.fen == fen
        assert client.last_rejected_move == stolen
        assert host.is_my_turn

    @pytest.mark.parametrize("payload", [
        {'from': [4, 1], 'to': [4, 3], 'promotion': None, 'forfeit': True, 'offer_draw': True},
        {'from': [4, 1], 'to': [4, 9], 'promotion': None, 'forfeit': False, 'offer_draw': False},
        {'from': 'e2', 'to': 'e4'},
    ])
    def test_invalid_move_payload_is_dropped(self, connect_pair, caplog, payload):
        """A well-framed Move with a bad payload changes nothing; play continues."""
        host, client = connect_pair(host_color=PieceColor.BLACK, client_color=PieceColor.WHITE)
        fen = host.board.fen

        client._transport.send(Message(MessageType.MOVE, payload))
        pump(host, until=lambda: "Dropped MOVE message" in caplog.text)

        assert host.phase is Phase.PLAYING
        assert host.board.fen == fen
        assert host.pending_move is None
        assert host.draw_offer is DrawOffer.NONE
        assert host.outcome is None

        play(client, host, E2, E4)
        assert host.board.piece_at(E4) == 'P'
        assert_boards_agree(host, client)

    def test_movable_from(self, pair):
        host, client = pair
        assert host.movable_from(E2)
        assert not client.movable_from(E7)

        host.propose_move(E2, E4)
        assert not host.movable_from(D2)

    def test_board_changed_callback(self, pair):
        host, client = pair
        seen_host, seen_client = [], []
        host.on_board_changed = seen_host.append
        client.on_board_changed = seen_client.append

        play(host, client, E2, E4)
        assert seen_host == [BoardMove(E2, E4)]
        assert seen_client == [BoardMove(E2, E4)]


class TestGameOver:

    def test_checkmate_ends_both_sides(self, pair):
        host, client = pair
        play(host, client, (5, 1), (5, 2))
        play(client, host, E7, E5)
        play(host, client, (6, 1), (6, 3))
        play(client, host, (3, 7), (7, 3))

        for session in (host, client):
            assert_ended(session, EndReason.GAME_OVER)
            assert session.outcome.winner is PieceColor.BLACK
            assert session.outcome.end_state is EndState.CHECKMATE
        assert_boards_agree(host, client)

    def test_reported_end_on_live_board_is_desync(self, pair):
        host, client = pair
        host.propose_move(E2, E4)
        # Forge a checkmate report for a harmless move
        client._transport.send(msg_move_result(True, EndState.CHECKMATE))
        pump(host, client, until=lambda: host.phase is Phase.ENDED)

        assert_ended(host, EndReason.DESYNC)

    def test_unexpected_ack_is_desync(self, pair):
        host, client = pair
        client._transport.send(msg_move_result(True))
        pump(host, client, until=lambda: host.phase is Phase.ENDED)
        assert_ended(host, EndReason.DESYNC)


class TestForfeit:

    def test_forfeit_ends_both_sides(self, pair):
        host, client = pair
        client.forfeit()

        assert_ended(client, EndReason.LOCAL_FORFEIT)
        assert client.outcome.winner is PieceColor.WHITE

        pump(host, until=lambda: host.phase is Phase.ENDED)
        assert_ended(host, EndReason.REMOTE_FORFEIT)
        assert host.outcome.winner is PieceColor.WHITE

    def test_forfeit_twice_is_noop(self, pair):
        host, _ = pair
        host.forfeit()
        outcome = host.outcome
        host.forfeit()
        assert host.outcome is outcome

    def test_forfeit_during_handshake(self, connect_pair):
        host, client = connect_pair(start=False)
        host.forfeit()
        pump(client, until=lambda: client.phase is Phase.ENDED)
        assert_ended(client, EndReason.REMOTE_FORFEIT)

    def test_nothing_to_forfeit_in_lobby(self, make_session):
        with pytest.raises(SessionStateError):
            make_session().forfeit()

    def test_forfeit_with_pending_move(self, pair):
        host, client = pair
        host.propose_move(E2, E4)
        host.forfeit()
        assert host.pending_move is None
        assert_ended(host, EndReason.LOCAL_FORFEIT)


class TestDrawOffers:

    def test_offer_accepted(self, pair):
        host, client = pair
        offers = []
        client.on_draw_offered = lambda: offers.append(True)

        host.offer_draw()
        assert host.phase is Phase.DRAW_OFFER_PENDING
        assert host.draw_offer is DrawOffer.SENT_BY_LOCAL

        pump(host, client, until=lambda: client.draw_offer is DrawOffer.RECEIVED_FROM_REMOTE)
        assert offers == [True]
        assert client.phase is Phase.DRAW_OFFER_PENDING

        client.accept_draw()
        assert_ended(client, EndReason.DRAW_AGREED)

        pump(host, until=lambda: host.phase is Phase.ENDED)
        assert_ended(host, EndReason.DRAW_AGREED)
        assert host.outcome.end_state is EndState.DRAW

    def test_offer_rejected(self, pair):
        host, client = pair
        host.offer_draw()
        pump(host, client, until=lambda: client.draw_offer is DrawOffer.RECEIVED_FROM_REMOTE)

        client.reject_draw()
        assert client.phase is Phase.PLAYING

        pump(host, client, until=lambda: host.draw_offer is DrawOffer.NONE)
        assert host.phase is Phase.PLAYING

        # Play continues
        play(host, client, E2, E4)
        assert_boards_agree(host, client)

    def test_crossed_offers_agree_draw(self, pair):
        """Offers that pass each other on the wire end the game drawn on both sides."""
        host, client = pair
        host.offer_draw()
        client.offer_draw()

        pump(host, client, until=lambda: host.phase is Phase.ENDED and client.phase is Phase.ENDED)
        for session in (host, client):
            assert_ended(session, EndReason.DRAW_AGREED)
            assert session.outcome.end_state is EndState.DRAW

    def test_offerer_cannot_move_until_answered(self, pair):
        host, _ = pair
        host.offer_draw()
        with pytest.raises(SessionStateError):
            host.propose_move(E2, E4)

    def test_no_offer_while_move_pending(self, pair):
        host, _ = pair
        host.propose_move(E2, E4)
        with pytest.raises(SessionStateError):
            host.offer_draw()

    def test_no_second_offer(self, pair):
        host, _ = pair
        host.offer_draw()
        with pytest.raises(SessionStateError):
            host.offer_draw()

    def test_nothing_to_accept(self, pair):
        host, _ = pair
        with pytest.raises(SessionStateError):
            host.accept_draw()


class TestFailures:
    """Test timeouts, disconnects and shutdown."""

    def test_ack_timeout_ends_session(self, connect_pair, clock):
        host, client = connect_pair(host_kwargs={'ack_timeout': 5.0, 'clock': clock})
        host.propose_move(E2, E4)

        # Client never ticks, so no Ack arrives
        host.tick(now=clock.now + 4.9)
        assert host.phase is Phase.PLAYING

        host.tick(now=clock.now + 5.0)
        assert_ended(host, EndReason.ACK_TIMEOUT)
        assert host.pending_move is None
        assert host.board.piece_at(E4) is None

    def test_ack_resets_timer(self, connect_pair, clock):
        host, client = connect_pair(host_kwargs={'ack_timeout': 5.0, 'clock': clock})
        play(host, client, E2, E4)

        host.tick(now=clock.now + 60.0)
        assert host.phase is Phase.PLAYING

    def test_peer_disconnect(self, pair):
        host, client = pair
        client.close()
        assert_ended(client, EndReason.CLOSED)

        pump(host, until=lambda: host.phase is Phase.ENDED)
        assert_ended(host, EndReason.DISCONNECTED)

    def test_host_gone_while_waiting_for_start(self, connect_pair):
        host, client = connect_pair(start=False)
        host.close()
        pump(client, until=lambda: client.phase is Phase.ENDED)
        assert_ended(client, EndReason.DISCONNECTED)

    def test_ended_is_final(self, pair):
        host, client = pair
        host.forfeit()
        host.tick()
        assert host.phase is Phase.ENDED
        with pytest.raises(SessionStateError):
            host.propose_move(E2, E4)
        with pytest.raises(SessionStateError):
            host.offer_draw()

    def test_close_while_hosting_releases_port(self, make_session):
        host = make_session()
        host.choose_color(PieceColor.WHITE)
        host.host_game(LOOPBACK)
        address = host.listen_address
        host.close()

        assert host.listen_address is None
        again = make_session()
        again.choose_color(PieceColor.WHITE)
        again.host_game([address])
        assert again.listen_address == address

    def test_game_over_callback(self, pair):
        host, client = pair
        outcomes = []
        host.on_game_over = outcomes.append
        host.forfeit()
        assert [o.reason for o in outcomes] == [EndReason.LOCAL_FORFEIT]
