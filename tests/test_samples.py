from __future__ import annotations

import pytest

from telemetry_link.errors import ParseError, UnknownDiscriminant
from telemetry_link.samples import (
    CATALOG,
    Kind,
    Sample,
    arity_for_discriminant,
    decode_text,
    description,
    discriminant,
    encode_text,
    pack_sample,
    unpack_sample,
)

REPRESENTATIVE = [
    Sample.of(Kind.COLOR, 30, -31),
    Sample.of(Kind.DISTANCE, 1200),
    Sample.of(Kind.CALC_SPEED, 250, 248),
    Sample.of(Kind.SYNC_SPEED, -100, 100),
    Sample.of(Kind.REAL_SPEEDS, 0, 32767),
    Sample.of(Kind.DRIVEN_DISTANCE, 12.25, 0.1),
    Sample.of(Kind.SYNC_ERROR, -0.003),
    Sample.of(Kind.CORRECTION, 1.5, -2.75),
    Sample.of(Kind.AVERAGE_SPEED, 199.9, 201.1),
    Sample.of(Kind.RGB, 10, 20, 30, 40, 50, 60),
    Sample.of(Kind.CUR_TAR_SPEEDS, 180, 200),
]


def test_representative_samples_cover_catalog() -> None:
    kinds = {s.kind for s in REPRESENTATIVE}
    assert kinds == set(Kind) - {Kind.NONE}


def test_catalog_is_contiguous() -> None:
    assert sorted(int(k) for k in CATALOG) == list(range(len(CATALOG)))
    assert [int(k) for k in Kind] == list(range(len(Kind)))


@pytest.mark.parametrize("sample", REPRESENTATIVE, ids=lambda s: s.kind.name)
def test_text_roundtrip_tagged(sample: Sample) -> None:
    assert decode_text(encode_text(sample, tagged=True)) == sample


@pytest.mark.parametrize("sample", REPRESENTATIVE, ids=lambda s: s.kind.name)
def test_text_roundtrip_untagged(sample: Sample) -> None:
    assert decode_text(encode_text(sample), kind=sample.kind) == sample


@pytest.mark.parametrize(
    "sample", REPRESENTATIVE + [Sample.placeholder(0)], ids=lambda s: s.kind.name
)
def test_arity_matches_field_count(sample: Sample) -> None:
    assert arity_for_discriminant(discriminant(sample)) == len(sample.values)


def test_discriminant_values_are_stable() -> None:
    assert discriminant(Sample.of(Kind.COLOR, 1, 2)) == 1
    assert discriminant(Sample.of(Kind.DRIVEN_DISTANCE, 1.0, 2.0)) == 6
    assert discriminant(Sample.of(Kind.CUR_TAR_SPEEDS, 1, 2)) == 11
    assert arity_for_discriminant(10) == 6
    assert arity_for_discriminant(2) == 1


def test_encode_text_format() -> None:
    assert encode_text(Sample.of(Kind.COLOR, 30, 31)) == "30, 31"
    assert encode_text(Sample.of(Kind.COLOR, 30, 31), tagged=True) == "1, 30, 31"
    assert encode_text(Sample.of(Kind.DRIVEN_DISTANCE, 3.5, 4)) == "3.5, 4.0"


def test_placeholder_text() -> None:
    assert encode_text(Sample.placeholder(2)) == "null, null"
    assert encode_text(Sample.placeholder(0)) == ""
    assert encode_text(Sample.placeholder_for(Kind.RGB)) == ", ".join(["null"] * 6)
    assert decode_text("0, null, null") == Sample.placeholder(2)
    assert decode_text("0") == Sample.placeholder(0)


def test_description() -> None:
    assert description(Sample.of(Kind.COLOR, 1, 2)) == "right color, left color"
    assert description(Sample.of(Kind.DISTANCE, 1)) == "dist"
    assert description(Sample.placeholder(3)) == ""


@pytest.mark.parametrize("value", [12, 255, -1])
def test_unknown_discriminant(value: int) -> None:
    with pytest.raises(UnknownDiscriminant):
        arity_for_discriminant(value)
    with pytest.raises(UnknownDiscriminant):
        decode_text(f"{value}, 1, 2")


@pytest.mark.parametrize(
    "text",
    [
        "",
        "x, 1, 2",
        "1, 30",
        "1, 30, 31, 32",
        "1, 3.5, 4",
        "6, abc, 1.0",
        "0, null, 7",
    ],
)
def test_malformed_text_raises_parse_error(text: str) -> None:
    with pytest.raises(ParseError):
        decode_text(text)


def test_parse_error_is_value_error() -> None:
    with pytest.raises(ValueError):
        decode_text("2, nope")


def test_sample_rejects_wrong_arity_and_types() -> None:
    with pytest.raises(ValueError):
        Sample.of(Kind.COLOR, 1)
    with pytest.raises(TypeError):
        Sample.of(Kind.COLOR, 1.5, 2)
    with pytest.raises(ValueError):
        Sample(Kind.COLOR, (1, 2), width=2)


def test_float_fields_are_coerced() -> None:
    sample = Sample.of(Kind.SYNC_ERROR, 2)
    assert sample.values == (2.0,)
    assert isinstance(sample.values[0], float)


@pytest.mark.parametrize(
    "sample", REPRESENTATIVE + [Sample.placeholder(6)], ids=lambda s: s.kind.name
)
def test_binary_roundtrip(sample: Sample) -> None:
    packed = pack_sample(sample)
    assert packed[0] == discriminant(sample)
    decoded, offset = unpack_sample(packed)
    assert decoded == sample
    assert offset == len(packed)


@pytest.mark.parametrize("value", [40000, -32769])
def test_int_fields_must_fit_sixteen_bits(value: int) -> None:
    with pytest.raises(ValueError):
        Sample.of(Kind.DISTANCE, value)


def test_int_field_bounds_are_accepted() -> None:
    assert Sample.of(Kind.COLOR, -32768, 32767).values == (-32768, 32767)


def test_out_of_range_text_is_parse_error() -> None:
    with pytest.raises(ParseError):
        decode_text("2, 40000")


def test_placeholder_width_must_fit_a_byte() -> None:
    with pytest.raises(ValueError):
        Sample.placeholder(256)


def test_binary_unknown_discriminant() -> None:
    with pytest.raises(UnknownDiscriminant):
        unpack_sample(bytes([42, 0, 0]))
