"""
Protocol definitions for the robot telemetry link.

This module contains the link constants, the frame header and the binary
batch encoding shared by the Collector (robot side) and the Producer
(recorder side).
"""

from __future__ import annotations

import struct
from collections.abc import Sequence
from dataclasses import dataclass
from enum import IntEnum

import lz4.frame

from telemetry_link.errors import (
    CompressionError,
    EncodeError,
    ProtocolViolation,
)
from telemetry_link.samples import pack_sample, unpack_sample
from telemetry_link.store import Comment, Entry, Record

DEFAULT_PORT = 3333
HELLO = b"hello"
CLOSE_TOKEN = "close"
MAX_FRAME_SIZE = 16 * 1024 * 1024


class EntryTag(IntEnum):
    """Batch entry types."""

    RECORD = 0
    COMMENT = 1


@dataclass
class FrameHeader:
    """
    Frame header (4 bytes).

    Wire format (little-endian):
        +--------+--------+--------+--------+
        |       PAYLOAD_LEN (4B)            |
        +--------+--------+--------+--------+

    PAYLOAD_LEN is the size of the compressed payload that follows. A zero
    length carries no payload and ends the stream.
    """

    payload_len: int

    FORMAT = "<I"
    SIZE = 4

    @classmethod
    def unpack(cls, data: bytes) -> FrameHeader:
        """Unpack header from bytes."""
        (payload_len,) = struct.unpack(cls.FORMAT, data[: cls.SIZE])
        return cls(payload_len)

    def pack(self) -> bytes:
        """Pack header to bytes."""
        return struct.pack(self.FORMAT, self.payload_len)

    def is_terminal(self) -> bool:
        """Check if this header is the end-of-stream marker."""
        return self.payload_len == 0

    def is_valid(self) -> bool:
        """Check if the announced payload fits within MAX_FRAME_SIZE."""
        return self.payload_len <= MAX_FRAME_SIZE


TERMINAL_FRAME = FrameHeader(0).pack()


# -----------------------------------------------------------------------------
# Batch encoding
# -----------------------------------------------------------------------------


def encode_batch(entries: Sequence[Entry]) -> bytes:
    """
    Serialize an ordered batch of entries.

    Wire format (little-endian):
        batch   := u32 count, entry*
        entry   := u8 tag, body
        Record  := u64 elapsed_ms, u16 sample_count, sample*
        Comment := u32 length, utf-8 text

    Raises:
        EncodeError: a value does not fit its wire type
    """
    parts = [struct.pack("<I", len(entries))]
    try:
        for entry in entries:
            if isinstance(entry, Record):
                parts.append(
                    struct.pack(
                        "<BQH", EntryTag.RECORD, entry.elapsed_ms, len(entry.samples)
                    )
                )
                parts.extend(pack_sample(s) for s in entry.samples)
            elif isinstance(entry, Comment):
                text = entry.text.encode("utf-8")
                parts.append(struct.pack("<BI", EntryTag.COMMENT, len(text)))
                parts.append(text)
            else:
                raise EncodeError(f"Cannot encode entry of type {type(entry).__name__}")
    except struct.error as e:
        raise EncodeError(f"Cannot encode batch: {e}") from e
    return b"".join(parts)


def decode_batch(data: bytes) -> list[Entry]:
    """
    Deserialize a batch produced by :func:`encode_batch`.

    Raises:
        ProtocolViolation: truncated data, unknown entry tag or trailing bytes
        UnknownDiscriminant: a sample has an unknown discriminant
    """
    entries: list[Entry] = []
    try:
        (count,) = struct.unpack_from("<I", data, 0)
        offset = 4
        for _ in range(count):
            (tag,) = struct.unpack_from("<B", data, offset)
            offset += 1

            if tag == EntryTag.RECORD:
                elapsed_ms, sample_count = struct.unpack_from("<QH", data, offset)
                offset += 10
                samples = []
                for _ in range(sample_count):
                    sample, offset = unpack_sample(data, offset)
                    samples.append(sample)
                entries.append(Record(elapsed_ms, tuple(samples)))

            elif tag == EntryTag.COMMENT:
                (length,) = struct.unpack_from("<I", data, offset)
                offset += 4
                raw = data[offset : offset + length]
                if len(raw) != length:
                    raise ProtocolViolation("Truncated comment in batch")
                entries.append(Comment(raw.decode("utf-8")))
                offset += length

            else:
                raise ProtocolViolation(f"Unknown entry tag: {tag}")

    except struct.error as e:
        raise ProtocolViolation(f"Truncated batch: {e}") from e
    except UnicodeDecodeError as e:
        raise ProtocolViolation(f"Comment is not valid UTF-8: {e}") from e

    if offset != len(data):
        raise ProtocolViolation(f"{len(data) - offset} trailing bytes after batch")
    return entries


# -----------------------------------------------------------------------------
# Frames
# -----------------------------------------------------------------------------


def build_frame(entries: Sequence[Entry]) -> bytes:
    """
    Build a complete frame: header + lz4-compressed batch.

    Raises:
        EncodeError: batch cannot be serialized
        CompressionError: compressor failed or payload exceeds MAX_FRAME_SIZE
    """
    raw = encode_batch(entries)
    try:
        payload = lz4.frame.compress(raw)
    except RuntimeError as e:
        raise CompressionError(f"Failed to compress batch: {e}") from e

    header = FrameHeader(len(payload))
    if not header.is_valid():
        raise CompressionError(
            f"Compressed batch of {len(payload)} bytes exceeds {MAX_FRAME_SIZE}"
        )
    return header.pack() + payload


def parse_payload(payload: bytes) -> list[Entry]:
    """
    Decompress and decode a frame payload.

    Raises:
        CompressionError: payload is not a valid lz4 frame
        ProtocolViolation: decompressed batch is malformed
        UnknownDiscriminant: a sample has an unknown discriminant
    """
    try:
        raw = lz4.frame.decompress(payload)
    except (RuntimeError, ValueError) as e:
        raise CompressionError(f"Failed to decompress frame: {e}") from e
    return decode_batch(raw)
