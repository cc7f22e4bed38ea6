"""Non-blocking TCP transport polled from the game loop.

Nothing in here blocks the caller's tick: accept, recv and send all run on
non-blocking sockets and simply report "nothing yet" when the OS would block.
The only bounded wait is the outbound connect in connect() and the final
flush in Transport.close().
"""

import logging
import socket
from typing import List, Optional, Sequence, Tuple

from ..constants import CONNECT_TIMEOUT, READ_CHUNK_SIZE
from .errors import DecodeError, TransportError
from .protocol import FrameReader, FrameWriter, Message

logger = logging.getLogger(__name__)

Address = Tuple[str, int]

# Upper bound for the blocking flush performed on close
CLOSE_FLUSH_TIMEOUT = 1.0


class Transport:
    """Duplex message stream over a connected socket.

    Usage:
        transport.send(msg_move(move))
        msg = transport.poll()  # at most one message, or None
    """

    def __init__(self, sock: socket.socket, peer: str = ""):
        sock.setblocking(False)
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError:
            pass  # Not a TCP socket (e.g. socketpair)
        self._sock = sock
        self._reader = FrameReader()
        self._outbox = bytearray()
        self._closed = False
        self._peer_closed = False
        self.peer = peer

    @property
    def closed(self) -> bool:
        """True once nothing more can be read from this transport."""
        return self._closed

    @property
    def peer_closed(self) -> bool:
        """True when the peer shut the stream down in an orderly way."""
        return self._peer_closed

    @property
    def pending_output(self) -> int:
        return len(self._outbox)

    # =========================================================================
    # SENDING
    # =========================================================================

    def send(self, message: Message):
        """Queue a message and flush as much as the socket accepts."""
        if self._closed:
            raise TransportError(f"Cannot send {message.type.name}: transport closed")
        self._outbox.extend(FrameWriter.pack(message))
        self.flush()

    def flush(self):
        """Write queued bytes until the socket would block."""
        while self._outbox:
            try:
                sent = self._sock.send(self._outbox)
            except BlockingIOError:
                return
            except OSError as e:
                self._fail()
                raise TransportError(f"Write to {self.peer} failed: {e}") from e
            del self._outbox[:sent]

    # =========================================================================
    # RECEIVING
    # =========================================================================

    def poll(self) -> Optional[Message]:
        """Return the next complete inbound message, or None if there is none yet."""
        if self._closed:
            return None

        self.flush()

        msg = self._next_buffered()
        if msg is not None:
            return msg

        self._receive()
        msg = self._next_buffered()
        if msg is None and self._peer_closed:
            # Everything the peer sent before closing has been handed out
            self._release()
        return msg

    def _receive(self):
        """Drain whatever the socket has available."""
        while not self._peer_closed:
            try:
                data = self._sock.recv(READ_CHUNK_SIZE)
            except BlockingIOError:
                return
            except OSError as e:
                self._fail()
                raise TransportError(f"Read from {self.peer} failed: {e}") from e

            if not data:
                logger.info(f"Peer {self.peer} closed the connection")
                self._peer_closed = True
                return
            self._reader.feed(data)

    def _next_buffered(self) -> Optional[Message]:
        while True:
            try:
                return self._reader.get_message()
            except DecodeError as e:
                logger.warning(f"Dropped malformed frame from {self.peer}: {e}")

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def close(self):
        """Flush what is queued (bounded wait) and close the socket."""
        if self._closed and self._sock.fileno() == -1:
            return
        if self._outbox and self._sock.fileno() != -1:
            try:
                self._sock.settimeout(CLOSE_FLUSH_TIMEOUT)
                self._sock.sendall(self._outbox)
            except OSError as e:
                logger.debug(f"Final flush to {self.peer} failed: {e}")
            self._outbox.clear()
        self._release()

    def _fail(self):
        self._outbox.clear()
        self._release()

    def _release(self):
        self._closed = True
        if self._sock.fileno() != -1:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Already disconnected
            self._sock.close()


class HostListener:
    """Listening socket for the hosting peer.

    Binds the first free address of a fallback list. poll_accept() performs a
    single non-blocking accept() per call so it can be folded into the tick.
    """

    def __init__(self, addresses: Sequence[Address]):
        self._sock: Optional[socket.socket] = None
        errors: List[str] = []

        for address in addresses:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind(address)
                sock.listen(1)
                sock.setblocking(False)
            except OSError as e:
                sock.close()
                logger.warning(f"Cannot listen on {address[0]}:{address[1]}: {e}")
                errors.append(f"{address[0]}:{address[1]}: {e}")
                continue
            self._sock = sock
            break

        if self._sock is None:
            raise TransportError(f"No listen address available ({'; '.join(errors)})")

        host, port = self._sock.getsockname()[:2]
        self.address: Address = (host, port)
        logger.info(f"Listening for connections on {host}:{port}")

    @property
    def closed(self) -> bool:
        return self._sock is None

    def poll_accept(self) -> Optional[Transport]:
        """Accept one pending connection, or return None if none is waiting."""
        if self._sock is None:
            return None
        try:
            conn, addr = self._sock.accept()
        except BlockingIOError:
            return None
        except OSError as e:
            raise TransportError(f"Accept failed: {e}") from e

        peer = f"{addr[0]}:{addr[1]}"
        logger.info(f"New connection: {peer}")
        return Transport(conn, peer=peer)

    def close(self):
        if self._sock is not None:
            self._sock.close()
            self._sock = None


def connect(address: Address, timeout: float = CONNECT_TIMEOUT) -> Transport:
    """Dial the host. Raises TransportError on failure."""
    host, port = address
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as e:
        raise TransportError(f"Failed to connect to {host}:{port}: {e}") from e

    logger.info(f"Connected to {host}:{port}")
    return Transport(sock, peer=f"{host}:{port}")
