from __future__ import annotations

import random

import pytest

from camera_router.polyline import (
    decode_polyline,
    encode_polyline,
    precision_from_multiplier,
)

REFERENCE_POINTS = [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]
REFERENCE_ENCODED = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"


def test_encode_matches_reference_string() -> None:
    assert encode_polyline(REFERENCE_POINTS) == REFERENCE_ENCODED


def test_decode_matches_reference_points() -> None:
    decoded = decode_polyline(REFERENCE_ENCODED)
    assert len(decoded) == len(REFERENCE_POINTS)
    for got, want in zip(decoded, REFERENCE_POINTS):
        assert got == pytest.approx(want)


@pytest.mark.parametrize("precision", [5, 6])
def test_round_trip_within_one_step(precision: int) -> None:
    rng = random.Random(precision)
    step = 10.0**-precision
    for _ in range(50):
        coords = [(rng.uniform(-90.0, 90.0), rng.uniform(-180.0, 180.0)) for _ in range(rng.randint(0, 40))]
        decoded = decode_polyline(encode_polyline(coords, precision), precision)
        assert len(decoded) == len(coords)
        for (lat, lon), (dlat, dlon) in zip(coords, decoded):
            assert abs(lat - dlat) <= step
            assert abs(lon - dlon) <= step


def test_precision_six_differs_from_five() -> None:
    coords = [(40.123456, -75.654321)]
    assert decode_polyline(encode_polyline(coords, 6), 6)[0] == pytest.approx(coords[0], abs=1e-6)
    assert encode_polyline(coords, 6) != encode_polyline(coords, 5)


def test_empty_polyline() -> None:
    assert encode_polyline([]) == ""
    assert decode_polyline("") == []


def test_decode_rejects_truncated_and_invalid_input() -> None:
    with pytest.raises(ValueError, match="truncated"):
        decode_polyline("_p~iF")
    with pytest.raises(ValueError, match="invalid"):
        decode_polyline("_p~iF ps|U")


def test_precision_from_multiplier() -> None:
    assert precision_from_multiplier(None) == 5
    assert precision_from_multiplier(1e5) == 5
    assert precision_from_multiplier(1_000_000) == 6
    with pytest.raises(ValueError):
        precision_from_multiplier(1e7)
    with pytest.raises(ValueError):
        encode_polyline(REFERENCE_POINTS, 7)
