from __future__ import annotations

from collections.abc import Iterable

from .geo import LatLon

DEFAULT_PRECISION = 5
SUPPORTED_PRECISIONS = (5, 6)


def _factor(precision: int) -> int:
    if precision not in SUPPORTED_PRECISIONS:
        raise ValueError(f"unsupported polyline precision: {precision}")
    return 10**precision


def precision_from_multiplier(multiplier: float | int | None) -> int:
    """Map an engine `points_encoded_multiplier` (1e5 / 1e6) to a precision."""
    if multiplier is None:
        return DEFAULT_PRECISION
    value = float(multiplier)
    for precision in SUPPORTED_PRECISIONS:
        if abs(value - 10**precision) < 0.5:
            return precision
    raise ValueError(f"unsupported polyline multiplier: {multiplier}")


def _encode_value(value: int) -> str:
    # zig-zag: sign folded into the low bit
    value = ~(value << 1) if value < 0 else value << 1
    chunks: list[str] = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1F)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return "".join(chunks)


def encode_polyline(coords: Iterable[LatLon], precision: int = DEFAULT_PRECISION) -> str:
    """Encode (lat, lon) pairs as a delta/zig-zag/5-bit polyline string."""
    factor = _factor(precision)
    out: list[str] = []
    prev_lat = 0
    prev_lon = 0
    for lat, lon in coords:
        lat_i = round(lat * factor)
        lon_i = round(lon * factor)
        out.append(_encode_value(lat_i - prev_lat))
        out.append(_encode_value(lon_i - prev_lon))
        prev_lat, prev_lon = lat_i, lon_i
    return "".join(out)


def _decode_value(encoded: str, index: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if index >= len(encoded):
            raise ValueError("truncated polyline")
        byte = ord(encoded[index]) - 63
        index += 1
        if byte < 0 or byte > 0x3F:
            raise ValueError(f"invalid polyline character at offset {index - 1}")
        result |= (byte & 0x1F) << shift
        shift += 5
        if byte < 0x20:
            break
    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode_polyline(encoded: str, precision: int = DEFAULT_PRECISION) -> list[LatLon]:
    """Decode a polyline string back into (lat, lon) pairs."""
    factor = _factor(precision)
    coords: list[LatLon] = []
    index = 0
    lat = 0
    lon = 0
    while index < len(encoded):
        d_lat, index = _decode_value(encoded, index)
        d_lon, index = _decode_value(encoded, index)
        lat += d_lat
        lon += d_lon
        coords.append((lat / factor, lon / factor))
    return coords
