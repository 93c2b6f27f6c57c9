"""
Sample catalog and codecs.

Every telemetry value sent by the robot is a ``Sample``: a discriminant
(``Kind``) plus a fixed number of scalar fields. The discriminant doubles as
the column index in exported logs, so the values below must never be
renumbered.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from numbers import Integral, Real

from telemetry_link.errors import EncodeError, ParseError, UnknownDiscriminant

NULL_TOKEN = "null"
TEXT_SEPARATOR = ", "

INT_FIELD = "h"  # signed 16-bit on the wire
FLOAT_FIELD = "d"  # float64 on the wire

INT_MIN = -(2**15)
INT_MAX = 2**15 - 1
MAX_PLACEHOLDER_WIDTH = 0xFF


class Kind(IntEnum):
    """Sample discriminants."""

    NONE = 0
    COLOR = 1
    DISTANCE = 2
    CALC_SPEED = 3
    SYNC_SPEED = 4
    REAL_SPEEDS = 5
    DRIVEN_DISTANCE = 6
    SYNC_ERROR = 7
    CORRECTION = 8
    AVERAGE_SPEED = 9
    RGB = 10
    CUR_TAR_SPEEDS = 11


@dataclass(frozen=True)
class Variant:
    """Catalog entry: field layout and export column labels of one kind."""

    kind: Kind
    fields: str
    description: str

    @property
    def arity(self) -> int:
        return len(self.fields)


_I2 = INT_FIELD * 2
_F2 = FLOAT_FIELD * 2

CATALOG: dict[Kind, Variant] = {
    v.kind: v
    for v in (
        Variant(Kind.NONE, "", ""),
        Variant(Kind.COLOR, _I2, "right color, left color"),
        Variant(Kind.DISTANCE, INT_FIELD, "dist"),
        Variant(Kind.CALC_SPEED, _I2, "right calculated v, left calculated v"),
        Variant(Kind.SYNC_SPEED, _I2, "right synced v, left synced v"),
        Variant(Kind.REAL_SPEEDS, _I2, "right real v, left real v"),
        Variant(Kind.DRIVEN_DISTANCE, _F2, "right distance, left distance"),
        Variant(Kind.SYNC_ERROR, FLOAT_FIELD, "sync error"),
        Variant(Kind.CORRECTION, _F2, "right correction, left correction"),
        Variant(Kind.AVERAGE_SPEED, _F2, "right average speed, left average speed"),
        Variant(
            Kind.RGB,
            INT_FIELD * 6,
            "right r, right g, right b, left r, left g, left b",
        ),
        Variant(Kind.CUR_TAR_SPEEDS, _I2, "current speed, target speed"),
    )
}


def _check_catalog() -> None:
    """Fail at import if the catalog is not a contiguous 0..N-1 table."""
    if sorted(int(k) for k in CATALOG) != list(range(len(Kind))):
        raise RuntimeError("Sample catalog must cover every Kind exactly once")
    for kind, variant in CATALOG.items():
        if variant.kind is not kind:
            raise RuntimeError(f"Catalog entry for {kind.name} is mislabelled")


_check_catalog()


def variant_for(discriminant: int) -> Variant:
    """Look up a catalog entry, raising UnknownDiscriminant if absent."""
    try:
        return CATALOG[Kind(discriminant)]
    except ValueError:
        raise UnknownDiscriminant(discriminant) from None


@dataclass(frozen=True)
class Sample:
    """
    One telemetry value.

    ``values`` holds the scalar fields in catalog order (right before left).
    ``width`` is only meaningful for ``Kind.NONE`` placeholders, where it is
    the number of ``null`` slots the placeholder stands in for.
    """

    kind: Kind
    values: tuple = ()
    width: int = 0

    def __post_init__(self) -> None:
        kind = Kind(self.kind)
        object.__setattr__(self, "kind", kind)
        variant = CATALOG[kind]
        values = tuple(self.values)

        if len(values) != variant.arity:
            raise ValueError(
                f"{kind.name} takes {variant.arity} values, got {len(values)}"
            )

        coerced = []
        for code, value in zip(variant.fields, values):
            if code == INT_FIELD:
                if isinstance(value, bool) or not isinstance(value, Integral):
                    raise TypeError(f"{kind.name} expects integers, got {value!r}")
                if not INT_MIN <= value <= INT_MAX:
                    raise ValueError(
                        f"{kind.name} field {value} outside {INT_MIN}..{INT_MAX}"
                    )
                coerced.append(int(value))
            else:
                if not isinstance(value, Real):
                    raise TypeError(f"{kind.name} expects numbers, got {value!r}")
                coerced.append(float(value))
        object.__setattr__(self, "values", tuple(coerced))

        if kind is not Kind.NONE and self.width:
            raise ValueError("width is only valid for placeholders")
        if not 0 <= self.width <= MAX_PLACEHOLDER_WIDTH:
            raise ValueError(f"placeholder width {self.width} out of range")

    @classmethod
    def of(cls, kind: Kind | int, *values: int | float) -> Sample:
        """Build a sample from its fields, e.g. ``Sample.of(Kind.COLOR, 30, 31)``."""
        return cls(Kind(kind), values)

    @classmethod
    def placeholder(cls, width: int) -> Sample:
        """A ``NONE`` sample standing in for ``width`` missing slots."""
        return cls(Kind.NONE, (), width)

    @classmethod
    def placeholder_for(cls, discriminant: int) -> Sample:
        """A placeholder as wide as the variant with the given discriminant."""
        return cls.placeholder(arity_for_discriminant(discriminant))

    def __str__(self) -> str:
        if self.kind is Kind.NONE:
            return f"NONE({self.width})"
        return f"{self.kind.name}({encode_text(self)})"


# -----------------------------------------------------------------------------
# Catalog queries
# -----------------------------------------------------------------------------


def discriminant(sample: Sample) -> int:
    """Return the stable column index of a sample."""
    return int(sample.kind)


def arity_for_discriminant(value: int) -> int:
    """
    Number of scalar slots a variant occupies.

    Raises:
        UnknownDiscriminant: value is not in the catalog
    """
    return variant_for(value).arity


def description(sample: Sample) -> str:
    """Export header labels of a sample; empty for placeholders."""
    return CATALOG[sample.kind].description


# -----------------------------------------------------------------------------
# Text codec
# -----------------------------------------------------------------------------


def encode_text(sample: Sample, tagged: bool = False) -> str:
    """
    Render a sample's fields as a comma-separated list.

    Args:
        sample: Sample to render
        tagged: Prefix the decimal discriminant as the first token

    Returns:
        e.g. ``"30, 31"`` for a colour sample or ``"null, null"`` for a
        two-slot placeholder
    """
    if sample.kind is Kind.NONE:
        tokens = [NULL_TOKEN] * sample.width
    else:
        tokens = [repr(v) if isinstance(v, float) else str(v) for v in sample.values]
    if tagged:
        tokens.insert(0, str(int(sample.kind)))
    return TEXT_SEPARATOR.join(tokens)


def _split(text: str) -> list[str]:
    if not text.strip():
        return []
    return [token.strip() for token in text.split(",")]


def decode_text(text: str, kind: Kind | int | None = None) -> Sample:
    """
    Parse a textual sample.

    Args:
        text: ``"<disc>, <field>, ..."`` or, when ``kind`` is given, just the
            fields
        kind: Discriminant of an untagged text

    Raises:
        ParseError: malformed token or wrong number of fields
        UnknownDiscriminant: leading token is not a catalog discriminant
    """
    tokens = _split(text)

    if kind is None:
        if not tokens:
            raise ParseError("Empty sample text")
        head = tokens.pop(0)
        try:
            kind = int(head)
        except ValueError:
            raise ParseError(f"Invalid discriminant token: {head!r}") from None

    variant = variant_for(kind)

    if variant.kind is Kind.NONE:
        if any(token != NULL_TOKEN for token in tokens):
            raise ParseError(f"Placeholder text may only contain {NULL_TOKEN!r}")
        return Sample.placeholder(len(tokens))

    if len(tokens) != variant.arity:
        raise ParseError(
            f"{variant.kind.name} expects {variant.arity} fields, got {len(tokens)}"
        )

    values: list[int | float] = []
    for code, token in zip(variant.fields, tokens):
        try:
            values.append(int(token) if code == INT_FIELD else float(token))
        except ValueError:
            raise ParseError(
                f"Invalid {variant.kind.name} field: {token!r}"
            ) from None
    try:
        return Sample(variant.kind, tuple(values))
    except ValueError as e:
        raise ParseError(str(e)) from None


# -----------------------------------------------------------------------------
# Binary codec
# -----------------------------------------------------------------------------


def pack_sample(sample: Sample) -> bytes:
    """
    Pack a sample as ``u8 discriminant`` followed by its fields.

    Placeholders carry a single ``u8`` width instead of fields.

    Raises:
        EncodeError: a field does not fit its wire type
    """
    variant = CATALOG[sample.kind]
    try:
        if sample.kind is Kind.NONE:
            return struct.pack("<BB", int(sample.kind), sample.width)
        return struct.pack(f"<B{variant.fields}", int(sample.kind), *sample.values)
    except struct.error as e:
        raise EncodeError(f"Cannot pack {sample}: {e}") from e


def unpack_sample(data: bytes, offset: int = 0) -> tuple[Sample, int]:
    """
    Unpack one sample from ``data`` at ``offset``.

    Returns:
        The sample and the offset just past it

    Raises:
        UnknownDiscriminant: unknown leading byte
        struct.error: data is truncated
    """
    (disc,) = struct.unpack_from("<B", data, offset)
    variant = variant_for(disc)
    offset += 1

    if variant.kind is Kind.NONE:
        (width,) = struct.unpack_from("<B", data, offset)
        return Sample.placeholder(width), offset + 1

    fmt = f"<{variant.fields}"
    values = struct.unpack_from(fmt, data, offset)
    return Sample(variant.kind, values), offset + struct.calcsize(fmt)
