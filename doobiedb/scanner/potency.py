"""Deterministic THC range derived from a product name.

Every client and server must agree on the range for a name without a round
trip, so the hash reproduces the 32-bit arithmetic of the catalog front end
exactly: UTF-16 code units, signed wrap-around on xor and shifts, and
half-up rounding of the exact binary value.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

THC_BOUNDS: tuple[float, float] = (20.5, 26.5)

_SEED_LOW = 2166136261
_SEED_HIGH = 424242424
_MODULUS = 100000


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _utf16_units(text: str) -> list[int]:
    data = text.encode("utf-16-le", "surrogatepass")
    return [int.from_bytes(data[i : i + 2], "little") for i in range(0, len(data), 2)]


def _fnv1a(text: str, seed: int) -> int:
    h = seed
    for unit in _utf16_units(text):
        h = _to_int32(h) ^ unit
        h += sum(_to_int32(h << shift) for shift in (1, 4, 7, 8, 24))
    return abs(h) % _MODULUS


def round_half_up(value: float, places: int = 2) -> float:
    """Round like ``Number.prototype.toFixed`` (ties away from zero)."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def thc_range(
    name: str, bounds: tuple[float, float] = THC_BOUNDS
) -> tuple[float, float]:
    """Return ``(low, high)`` for a name, both within ``bounds``."""
    lo, hi = bounds
    a = round_half_up(lo + _fnv1a(name, _SEED_LOW) / _MODULUS * (hi - lo))
    b = round_half_up(lo + _fnv1a(name, _SEED_HIGH) / _MODULUS * (hi - lo))
    return (a, b) if a < b else (b, a)


def thc_midpoint(name: str, bounds: tuple[float, float] = THC_BOUNDS) -> float:
    low, high = thc_range(name, bounds)
    return round_half_up((low + high) / 2)
