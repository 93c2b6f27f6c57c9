"""Robot-side TCP server that streams recorded samples to one recorder."""

from __future__ import annotations

import logging
import select
import socket
import threading

from telemetry_link.errors import (
    CompressionError,
    EncodeError,
    ProtocolViolation,
    TransportError,
)
from telemetry_link.protocol import (
    CLOSE_TOKEN,
    DEFAULT_PORT,
    HELLO,
    TERMINAL_FRAME,
    build_frame,
)
from telemetry_link.store import PendingQueue, Store

logger = logging.getLogger(__name__)


class Collector:
    """
    TCP server for the robot side of the telemetry link.

    The collector accepts exactly one connection per lifetime. Once that
    connection is accepted the listening socket is closed, so further
    connection attempts are refused by the OS. While it runs, every record
    appended to ``store`` is queued and flushed to the peer as one compressed
    frame per flush.
    """

    def __init__(
        self,
        store: Store,
        bind: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        poll_interval: float = 0.01,
    ) -> None:
        """
        Initialize the collector.

        Args:
            store: Store whose appended records are streamed
            bind: Local address to listen on
            port: Local TCP port (0 picks a free port)
            poll_interval: Idle time in seconds between queue flushes
        """
        self.store = store
        self.bind = bind
        self.port = port
        self.poll_interval = poll_interval

        self.queue = PendingQueue()
        self.frames_sent = 0
        self.error: Exception | None = None

        self._listener: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._ready = threading.Event()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port); valid once :meth:`listen` has returned."""
        if self._listener is None:
            raise RuntimeError("Collector is not listening")
        return self._listener.getsockname()[:2]

    def listen(self) -> None:
        """
        Bind the listening socket and start queueing store records.

        Raises:
            TransportError: the address cannot be bound
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.bind, self.port))
            sock.listen(1)
        except OSError as e:
            sock.close()
            raise TransportError(f"Cannot listen on {self.bind}:{self.port}: {e}") from e
        sock.settimeout(self.poll_interval)

        self._listener = sock
        self.store.attach_queue(self.queue)
        logger.info("Collector listening on %s:%d", *self.address)

    def start(self) -> None:
        """Listen and serve the single connection in a background thread."""
        if self.running:
            logger.warning("Collector already running")
            return

        self._stop.clear()
        self.error = None
        if self._listener is None:
            self.listen()

        self._thread = threading.Thread(
            target=self._run, name="telemetry-collector", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Ask the serve loop to finish.

        A connected peer receives the terminal frame before the socket is
        shut down.
        """
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def wait_connected(self, timeout: float | None = None) -> bool:
        """Block until the handshake with a peer has completed."""
        return self._ready.wait(timeout)

    def _run(self) -> None:
        try:
            self.serve()
        except (TransportError, ProtocolViolation) as e:
            self.error = e
            logger.error("Collector session ended: %s", e)

    # -------------------------------------------------------------------------
    # Serving
    # -------------------------------------------------------------------------

    def serve(self) -> None:
        """
        Accept one connection and stream the queue to it until closed.

        Raises:
            TransportError: accept, read or write failed
            ProtocolViolation: peer did not greet with ``hello``
        """
        if self._listener is None:
            self.listen()

        try:
            conn = self._accept()
            if conn is None:
                return
            with conn:
                if not self._handshake(conn):
                    return
                self._ready.set()
                self._serve_connection(conn)
        finally:
            self.store.detach_queue()
            self._ready.clear()
            logger.info("Collector stopped (%d frames sent)", self.frames_sent)

    def _accept(self) -> socket.socket | None:
        """Wait for the one peer, then close the listener."""
        listener = self._listener
        if listener is None:
            raise RuntimeError("Collector is not listening")

        try:
            while not self._stop.is_set():
                try:
                    conn, addr = listener.accept()
                except TimeoutError:
                    continue
                except OSError as e:
                    raise TransportError(f"Accept failed: {e}") from e

                logger.info("New connection: %s:%d", *addr[:2])
                conn.settimeout(None)
                return conn
            return None
        finally:
            listener.close()
            self._listener = None
            logger.debug("Listener closed, no further connections accepted")

    def _handshake(self, conn: socket.socket) -> bool:
        """Wait for the peer greeting and answer it; False if stopped first."""
        greeting = b""
        while len(greeting) < len(HELLO):
            if self._stop.is_set():
                return False
            readable, _, _ = select.select([conn], [], [], self.poll_interval)
            if not readable:
                continue
            try:
                chunk = conn.recv(len(HELLO) - len(greeting))
            except OSError as e:
                raise TransportError(f"Handshake read failed: {e}") from e
            if not chunk:
                raise ProtocolViolation("Peer closed during handshake")
            greeting += chunk

        if greeting != HELLO:
            raise ProtocolViolation(f"Unexpected greeting: {greeting!r}")

        self._send(conn, HELLO)
        logger.info("Handshake complete")
        return True

    def _serve_connection(self, conn: socket.socket) -> None:
        close = CLOSE_TOKEN.encode("ascii")
        # unmatched tail of earlier reads
        control = b""
        while not self._stop.is_set():
            try:
                readable, _, _ = select.select([conn], [], [], self.poll_interval)
            except OSError as e:
                raise TransportError(f"select failed: {e}") from e

            if readable:
                try:
                    data = conn.recv(64)
                except OSError as e:
                    raise TransportError(f"Read failed: {e}") from e

                if not data:
                    logger.info("Peer closed the connection")
                    return

                logger.debug("Received control bytes: %r", data)
                control += data
                if close in control:
                    logger.info("Peer requested close, terminating connection")
                    self._terminate(conn)
                    return
                control = control[-(len(close) - 1) :]

            self.flush(conn)

        logger.info("Stop requested, terminating connection")
        self.flush(conn)
        self._terminate(conn)

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def flush(self, conn: socket.socket) -> bool:
        """
        Send everything queued as one frame.

        The sent entries are dropped from the queue only after the write
        succeeded. Encoding failures are logged and the queue is kept.

        Returns:
            True if a frame was sent
        """
        pending = self.queue.snapshot()
        if not pending:
            return False

        try:
            frame = build_frame(pending)
        except (EncodeError, CompressionError) as e:
            logger.error("Failed to encode %d queued entries: %s", len(pending), e)
            return False

        self._send(conn, frame)
        self.queue.discard(len(pending))
        self.frames_sent += 1
        logger.debug("Sent frame: %d entries, %d bytes", len(pending), len(frame))
        return True

    def _send(self, conn: socket.socket, data: bytes) -> None:
        try:
            conn.sendall(data)
        except OSError as e:
            raise TransportError(f"Write failed: {e}") from e

    def _terminate(self, conn: socket.socket) -> None:
        self._send(conn, TERMINAL_FRAME)
        try:
            conn.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Shutdown after terminal frame failed: %s", e)
