"""Exception types raised by the telemetry link."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for all telemetry link errors."""


class UnknownDiscriminant(TelemetryError):
    """A discriminant outside the sample catalog was encountered."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Unknown sample discriminant: {value!r}")
        self.value = value


class DuplicateField(TelemetryError):
    """A record contained two samples with the same discriminant."""

    def __init__(self, kind: object) -> None:
        super().__init__(f"Record contains {kind!s} more than once")
        self.kind = kind


class ParseError(TelemetryError, ValueError):
    """Malformed textual sample."""


class EncodeError(TelemetryError):
    """A value cannot be represented in the binary encoding."""


class ProtocolViolation(TelemetryError):
    """Unexpected handshake, truncated frame or oversized length prefix."""


class TransportError(TelemetryError):
    """Connect, read or write failure on the link socket."""


class CompressionError(TelemetryError):
    """Frame payload could not be compressed or decompressed."""
