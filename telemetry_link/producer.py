"""Recorder-side TCP client that replays a Collector's stream into a Store."""

from __future__ import annotations

import logging
import socket
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from telemetry_link.errors import ProtocolViolation, TelemetryError, TransportError
from telemetry_link.protocol import (
    CLOSE_TOKEN,
    DEFAULT_PORT,
    HELLO,
    MAX_FRAME_SIZE,
    FrameHeader,
    parse_payload,
)
from telemetry_link.store import Record, Store

logger = logging.getLogger(__name__)


@dataclass
class Statistics:
    """Session statistics."""

    frames_received: int = 0
    records_received: int = 0
    comments_received: int = 0
    bytes_received: int = 0
    start_time: float = field(default_factory=time.time)

    def print_summary(self) -> None:
        """Print statistics summary to stdout."""
        elapsed = time.time() - self.start_time
        rate = self.records_received / elapsed if elapsed > 0 else 0

        print("\n" + "=" * 60)
        print("Session Statistics")
        print("=" * 60)
        print(f"  Duration:          {elapsed:.2f} s")
        print(f"  Frames received:   {self.frames_received}")
        print(f"  Records received:  {self.records_received}")
        print(f"  Comments received: {self.comments_received}")
        print(f"  Bytes received:    {self.bytes_received}")
        print(f"  Record rate:       {rate:.1f} records/s")
        print("=" * 60)


class _Idle(Exception):
    """No data arrived at a frame boundary within the read timeout."""


class Producer:
    """
    TCP client for the recorder side of the telemetry link.

    Connects to a Collector, performs the ``hello`` handshake and replays
    every received entry into ``store`` until the Collector sends the
    terminal frame or the connection ends.
    """

    def __init__(
        self,
        store: Store,
        host: str = "localhost",
        port: int = DEFAULT_PORT,
        poll_interval: float = 0.5,
        on_status: Callable[[str], None] | None = None,
    ) -> None:
        """
        Initialize the producer.

        Args:
            store: Store that received entries are replayed into
            host: Collector host name or address
            port: Collector TCP port
            poll_interval: Read timeout used to check for shutdown requests
            on_status: Optional callback receiving human-readable status lines
        """
        self.store = store
        self.host = host
        self.port = port
        self.poll_interval = poll_interval
        self.on_status = on_status

        self.stats = Statistics()
        self.error: TelemetryError | None = None

        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._shutdown = threading.Event()
        self._close_sent = False
        self._alive = threading.Event()
        self._lifecycle = threading.Lock()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def alive(self) -> bool:
        """True while a session is in progress."""
        return self._alive.is_set()

    def _status(self, message: str) -> None:
        if self.on_status is not None:
            self.on_status(message)

    def connect(self) -> None:
        """
        Open the TCP connection.

        Raises:
            TransportError: connection failed
        """
        address = f"{self.host}:{self.port}"
        logger.info("Connecting to collector %s", address)
        try:
            sock = socket.create_connection((self.host, self.port))
        except OSError as e:
            raise TransportError(f"Failed to connect to {address}: {e}") from e

        sock.settimeout(self.poll_interval)
        self._sock = sock
        logger.info("Connected to %s", address)
        self._status(f"Connected to collector {address}")

    def handshake(self) -> bool:
        """
        Send ``hello`` and check the reply.

        A mismatched reply is logged and otherwise ignored. A shutdown request
        made while waiting for the reply abandons the handshake.

        Returns:
            True if the collector answered ``hello``
        """
        self._send(HELLO)
        logger.debug("Sent hello, awaiting reply")

        while True:
            try:
                reply = self._read_exact(len(HELLO), idle_ok=True)
                break
            except _Idle:
                if self._shutdown.is_set():
                    logger.info("Shutdown requested during handshake")
                    return False

        if reply != HELLO:
            logger.warning("Unexpected handshake reply: %r", reply)
            return False

        logger.info("Handshake complete")
        return True

    def run(self) -> Statistics:
        """
        Run a whole session: connect, handshake, receive until the end.

        Returns:
            Session statistics

        Raises:
            TransportError: connect, read or write failed
            ProtocolViolation: malformed or oversized frame
            CompressionError: frame payload failed to decompress
            DuplicateField: a received record repeats a sample kind
        """
        with self._lifecycle:
            if self._alive.is_set():
                raise RuntimeError("Producer session already running")
            self._alive.set()
        return self._session()

    def _session(self) -> Statistics:
        self.stats = Statistics()
        try:
            self.connect()
            if not self.handshake() and self._shutdown.is_set():
                return self.stats
            self.receive_loop()
            return self.stats
        finally:
            self.close()
            self._alive.clear()
            logger.info("Producer terminated")
            self._status("Terminated")

    def start(self) -> None:
        """Run the session in a background thread; errors land in ``error``."""
        with self._lifecycle:
            if self._alive.is_set():
                logger.warning("Producer already running")
                return
            self._alive.set()

        self.error = None
        self._shutdown.clear()
        self._thread = threading.Thread(
            target=self._run_thread, name="telemetry-producer", daemon=True
        )
        self._thread.start()

    def _run_thread(self) -> None:
        try:
            self._session()
        except TelemetryError as e:
            self.error = e
            logger.error("Producer session ended: %s", e)

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def request_shutdown(self) -> None:
        """Ask the collector to close; the loop ends at the terminal frame."""
        self._shutdown.set()

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    # -------------------------------------------------------------------------
    # Socket helpers
    # -------------------------------------------------------------------------

    def _send(self, data: bytes) -> None:
        if self._sock is None:
            raise TransportError("Not connected")
        try:
            self._sock.sendall(data)
        except OSError as e:
            raise TransportError(f"Write failed: {e}") from e

    def _read_exact(self, size: int, idle_ok: bool = False) -> bytes:
        """
        Read exactly ``size`` bytes.

        Read timeouts are only scheduling points: with ``idle_ok`` a timeout
        before the first byte raises ``_Idle``, otherwise reading continues.

        Raises:
            TransportError: read failed or peer closed mid-read
        """
        if self._sock is None:
            raise TransportError("Not connected")

        buf = bytearray()
        while len(buf) < size:
            try:
                chunk = self._sock.recv(size - len(buf))
            except TimeoutError:
                if idle_ok and not buf:
                    raise _Idle from None
                continue
            except OSError as e:
                raise TransportError(f"Read failed: {e}") from e

            if not chunk:
                raise TransportError(
                    f"Connection closed after {len(buf)} of {size} bytes"
                )
            buf += chunk
        return bytes(buf)

    # -------------------------------------------------------------------------
    # Receive loop
    # -------------------------------------------------------------------------

    def _maybe_send_close(self) -> None:
        if self._shutdown.is_set() and not self._close_sent:
            logger.info("Shutdown requested, sending close")
            self._send(CLOSE_TOKEN.encode("ascii"))
            self._close_sent = True

    def _handle_frame(self, payload: bytes) -> None:
        entries = parse_payload(payload)

        self.stats.frames_received += 1
        self.stats.bytes_received += FrameHeader.SIZE + len(payload)

        for entry in entries:
            self.store.replay(entry)
            if isinstance(entry, Record):
                self.stats.records_received += 1
            else:
                self.stats.comments_received += 1

        logger.debug("Frame: %d entries, %d bytes", len(entries), len(payload))

    def receive_loop(self) -> None:
        """
        Read frames until the terminal frame arrives.

        Raises:
            TransportError: read failed or peer closed without terminating
            ProtocolViolation: length prefix above MAX_FRAME_SIZE
            CompressionError: payload failed to decompress
        """
        self._close_sent = False
        logger.info("Starting receive loop")

        while True:
            self._maybe_send_close()

            try:
                raw = self._read_exact(FrameHeader.SIZE, idle_ok=True)
            except _Idle:
                continue
            except TransportError:
                if self._close_sent:
                    logger.info("Collector closed the connection")
                    return
                raise

            header = FrameHeader.unpack(raw)
            if header.is_terminal():
                logger.info("Received terminal frame")
                return
            if not header.is_valid():
                raise ProtocolViolation(
                    f"Frame length {header.payload_len} exceeds {MAX_FRAME_SIZE}"
                )

            self._handle_frame(self._read_exact(header.payload_len))
