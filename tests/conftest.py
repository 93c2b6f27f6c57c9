"""Shared test helpers for the telemetry_link test suite."""

from __future__ import annotations

import socket
import threading
import time

import pytest


def wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.02) -> bool:
    """Poll *predicate* until it returns truthy, or *timeout_s* expires."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step_s)
    return False


class FakeClock:
    """Manually advanced wall clock for Store tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedCollector:
    """
    One-shot loopback server running ``script(conn)`` in a thread.

    Used to feed hand-crafted byte streams to a Producer.
    """

    def __init__(self, script) -> None:
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(1)
        self.port = self._sock.getsockname()[1]
        self.received = bytearray()
        self._script = script
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        conn, _ = self._sock.accept()
        with conn:
            self._script(conn, self)
        self._sock.close()

    def recv_exact(self, conn: socket.socket, size: int) -> bytes:
        buf = b""
        while len(buf) < size:
            chunk = conn.recv(size - len(buf))
            if not chunk:
                break
            buf += chunk
        self.received += buf
        return buf

    def join(self, timeout: float = 5.0) -> None:
        self._thread.join(timeout)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
