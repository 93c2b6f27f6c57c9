"""
Sparse text export of a recorded session.

File format::

    time, <column labels of every kind seen in the session>
    # telemetry-link data
    # Created on dd-mm-YYYY at HH:MM:SS by <user> on <host>
    # <session name>
    <elapsed_ms>, <fields of each recorded kind>
    # <comment>
    ...

Columns are ordered by discriminant and only kinds that appear in at least
one record get a column. Inside a row, a kind missing from that record is
written as ``null`` placeholders when the session uses it elsewhere.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from telemetry_link.samples import (
    TEXT_SEPARATOR,
    Sample,
    discriminant,
    encode_text,
    variant_for,
)
from telemetry_link.store import Comment, Entry, Record, Store

logger = logging.getLogger(__name__)

TOOL_MARKER = "telemetry-link data"


@dataclass(frozen=True)
class _Row:
    """A record pivoted into discriminant-indexed slots."""

    elapsed_ms: int
    slots: tuple[Sample | None, ...]


def pivot(entries: Sequence[Entry]) -> tuple[list[_Row | Comment], list[int]]:
    """
    Place every record's samples at their discriminant index.

    Each row is only as wide as its own highest discriminant.

    Returns:
        Pivoted rows (comments kept in place) and the sorted discriminants
        used anywhere
    """
    rows: list[_Row | Comment] = []
    used: set[int] = set()

    for entry in entries:
        if isinstance(entry, Comment):
            rows.append(entry)
            continue

        slots: list[Sample | None] = []
        for sample in entry.samples:
            index = discriminant(sample)
            if len(slots) <= index:
                slots.extend([None] * (index + 1 - len(slots)))
            slots[index] = sample
            used.add(index)
        rows.append(_Row(entry.elapsed_ms, tuple(slots)))

    return rows, sorted(used)


def header_line(used: Sequence[int]) -> str:
    labels = [variant_for(d).description for d in used]
    return TEXT_SEPARATOR.join(["time"] + [label for label in labels if label])


def _render_row(row: _Row, used: set[int]) -> str:
    cells = [str(row.elapsed_ms)]
    for index, sample in enumerate(row.slots):
        if sample is not None:
            cell = encode_text(sample)
        elif index in used:
            cell = encode_text(Sample.placeholder_for(index))
        else:
            cell = ""
        if cell:
            cells.append(cell)
    return TEXT_SEPARATOR.join(cells)


def render_lines(
    entries: Sequence[Entry],
    session_name: str,
    user: str = "unknown",
    host: str = "unknown",
    now: datetime | None = None,
) -> list[str]:
    """
    Render entries in the sparse text format.

    Args:
        entries: Records and comments, oldest first
        session_name: Name written to the metadata block
        user: User name for the "Created" comment
        host: Machine name for the "Created" comment
        now: Creation time (defaults to the current local time)

    Returns:
        Lines without trailing newlines
    """
    now = now or datetime.now()
    rows, used = pivot(entries)
    used_set = set(used)

    lines = [
        header_line(used),
        f"# {TOOL_MARKER}",
        f"# Created on {now:%d-%m-%Y} at {now:%H:%M:%S} by {user} on {host}",
        f"# {session_name}",
    ]
    for row in rows:
        if isinstance(row, Comment):
            lines.append(f"# {row.text}")
        else:
            lines.append(_render_row(row, used_set))
    return lines


def export(
    store: Store,
    path: Path | str,
    user: str = "unknown",
    host: str = "unknown",
    now: datetime | None = None,
) -> int:
    """
    Write a store to ``path``, replacing any existing file.

    Returns:
        Number of data rows written
    """
    entries = store.snapshot()
    lines = render_lines(entries, store.session_name(), user, host, now)

    path = Path(path)
    logger.info("Writing %d entries to %s", len(entries), path)
    with open(path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")

    return sum(1 for e in entries if isinstance(e, Record))
