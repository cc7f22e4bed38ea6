"""Draw offers and forfeits, carried over the same Move/Ack channel as moves."""

import logging
from enum import Enum, auto

from .errors import ProtocolDesync, SessionStateError
from .protocol import Ack, AckKind, EndState, Message, msg_draw_response, msg_forfeit, msg_offer_draw

logger = logging.getLogger(__name__)


class DrawOffer(Enum):
    """Who, if anyone, has an unanswered draw offer on the table."""
    NONE = auto()
    SENT_BY_LOCAL = auto()
    RECEIVED_FROM_REMOTE = auto()


class DrawController:
    """Tracks the draw-offer exchange and builds forfeit/offer/response messages.

    Usage:
        controller.offer()               # -> Message to send
        if controller.receive_offer(): ...  # crossed offers: draw agreed
        controller.accept()              # -> Message to send
        accepted = controller.resolve(ack)
    """

    def __init__(self):
        self.state = DrawOffer.NONE

    @property
    def outstanding(self) -> bool:
        return self.state is not DrawOffer.NONE

    def offer(self) -> Message:
        if self.state is not DrawOffer.NONE:
            raise SessionStateError(f"Draw offer already outstanding ({self.state.name})")
        self.state = DrawOffer.SENT_BY_LOCAL
        return msg_offer_draw()

    def receive_offer(self) -> bool:
        """Record the peer's offer. Returns True if it crossed our own.

        Crossed offers count as accepted on both sides; neither sends a response.
        """
        if self.state is DrawOffer.SENT_BY_LOCAL:
            logger.info("Draw offers crossed, treating as agreed")
            self.state = DrawOffer.NONE
            return True
        self.state = DrawOffer.RECEIVED_FROM_REMOTE
        return False

    def accept(self) -> Message:
        self._require_received()
        self.state = DrawOffer.NONE
        return msg_draw_response(accepted=True)

    def reject(self) -> Message:
        self._require_received()
        self.state = DrawOffer.NONE
        return msg_draw_response(accepted=False)

    def resolve(self, ack: Ack) -> bool:
        """Interpret the peer's answer to our offer. Returns True if accepted."""
        if ack.kind is not AckKind.DRAW_RESPONSE:
            raise ProtocolDesync(f"Expected a draw response, got {ack.kind.name}")
        if self.state is not DrawOffer.SENT_BY_LOCAL:
            raise ProtocolDesync("Draw response received with no outstanding offer")
        self.state = DrawOffer.NONE
        if ack.ok and ack.end_state not in (None, EndState.DRAW):
            raise ProtocolDesync(f"Draw acceptance carries end state {ack.end_state.name}")
        return ack.ok

    @staticmethod
    def forfeit() -> Message:
        return msg_forfeit()

    def _require_received(self):
        if self.state is not DrawOffer.RECEIVED_FROM_REMOTE:
            raise SessionStateError("No draw offer from the peer to answer")
