"""Geohash encoding and bounding-box covering.

A geohash interleaves longitude and latitude bisection bits (longitude first)
and writes them five at a time in a 32-character alphabet, so that a shared
prefix means a shared enclosing cell. Cats are stored with a fixed-precision
geohash; viewport queries cover the box with a small set of prefixes and then
filter the hits by exact containment, since cells only approximate the box.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from catmap.errors import ValidationError

BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
_DECODE = {c: i for i, c in enumerate(BASE32)}

DEFAULT_PRECISION = 8
MAX_PRECISION = 12


def validate_coordinates(lat: float, lon: float) -> None:
    """Raise ValidationError unless lat is in [-90, 90] and lon in [-180, 180]."""
    if lat is None or lon is None or math.isnan(lat) or math.isnan(lon):
        msg = "Latitude and longitude are required"
        raise ValidationError(msg)
    if not -90.0 <= lat <= 90.0:
        msg = f"Latitude {lat} out of range [-90, 90]"
        raise ValidationError(msg)
    if not -180.0 <= lon <= 180.0:
        msg = f"Longitude {lon} out of range [-180, 180]"
        raise ValidationError(msg)


def _check_precision(precision: int) -> None:
    if not 1 <= precision <= MAX_PRECISION:
        msg = f"Geohash precision must be between 1 and {MAX_PRECISION}"
        raise ValidationError(msg)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lon box. ``west > east`` means it crosses the antimeridian."""

    south: float
    west: float
    north: float
    east: float

    def validate(self) -> None:
        validate_coordinates(self.south, self.west)
        validate_coordinates(self.north, self.east)
        if self.south > self.north:
            msg = "Bounding box south edge is north of its north edge"
            raise ValidationError(msg)

    @property
    def crosses_antimeridian(self) -> bool:
        return self.west > self.east

    def contains(self, lat: float, lon: float) -> bool:
        if not self.south <= lat <= self.north:
            return False
        if self.crosses_antimeridian:
            return lon >= self.west or lon <= self.east
        return self.west <= lon <= self.east

    def split(self) -> list[BoundingBox]:
        """Split an antimeridian-crossing box into two boxes that do not cross."""
        if not self.crosses_antimeridian:
            return [self]
        return [
            BoundingBox(self.south, self.west, self.north, 180.0),
            BoundingBox(self.south, -180.0, self.north, self.east),
        ]


def encode(lat: float, lon: float, precision: int = DEFAULT_PRECISION) -> str:
    """Encode a coordinate into a geohash of ``precision`` characters."""
    validate_coordinates(lat, lon)
    _check_precision(precision)

    lat_lo, lat_hi = -90.0, 90.0
    lon_lo, lon_hi = -180.0, 180.0
    chars = []
    bits = 0
    value = 0
    even = True
    while len(chars) < precision:
        if even:
            mid = (lon_lo + lon_hi) / 2
            if lon >= mid:
                value = (value << 1) | 1
                lon_lo = mid
            else:
                value <<= 1
                lon_hi = mid
        else:
            mid = (lat_lo + lat_hi) / 2
            if lat >= mid:
                value = (value << 1) | 1
                lat_lo = mid
            else:
                value <<= 1
                lat_hi = mid
        even = not even
        bits += 1
        if bits == 5:
            chars.append(BASE32[value])
            bits = 0
            value = 0
    return "".join(chars)


def decode_bbox(geohash: str) -> BoundingBox:
    """Return the cell a geohash denotes."""
    if not geohash:
        return BoundingBox(-90.0, -180.0, 90.0, 180.0)

    lat_lo, lat_hi = -90.0, 90.0
    lon_lo, lon_hi = -180.0, 180.0
    even = True
    for char in geohash.lower():
        try:
            value = _DECODE[char]
        except KeyError:
            msg = f"Invalid geohash character {char!r}"
            raise ValidationError(msg) from None
        for shift in range(4, -1, -1):
            bit = (value >> shift) & 1
            if even:
                mid = (lon_lo + lon_hi) / 2
                if bit:
                    lon_lo = mid
                else:
                    lon_hi = mid
            else:
                mid = (lat_lo + lat_hi) / 2
                if bit:
                    lat_lo = mid
                else:
                    lat_hi = mid
            even = not even
    return BoundingBox(lat_lo, lon_lo, lat_hi, lon_hi)


def decode(geohash: str) -> tuple[float, float]:
    """Return the (lat, lon) centre of a geohash cell."""
    box = decode_bbox(geohash)
    return (box.south + box.north) / 2, (box.west + box.east) / 2


def cell_size(precision: int) -> tuple[float, float]:
    """(lat degrees, lon degrees) of one cell at ``precision``."""
    total_bits = 5 * precision
    lon_bits = (total_bits + 1) // 2
    lat_bits = total_bits // 2
    return 180.0 / (1 << lat_bits), 360.0 / (1 << lon_bits)


def _grid_range(lo: float, hi: float, origin: float, step: float, cells: int) -> range:
    first = min(cells - 1, max(0, math.floor((lo - origin) / step)))
    last = min(cells - 1, max(0, math.floor((hi - origin) / step)))
    return range(first, last + 1)


def _cover(box: BoundingBox, precision: int, budget: int) -> set[str] | None:
    """All cells at ``precision`` touching ``box``, or None if there are more than ``budget``."""
    lat_step, lon_step = cell_size(precision)
    rows = _grid_range(box.south, box.north, -90.0, lat_step, round(180.0 / lat_step))
    cols = _grid_range(box.west, box.east, -180.0, lon_step, round(360.0 / lon_step))
    if len(rows) * len(cols) > budget:
        return None

    cells = set()
    for i in rows:
        lat = -90.0 + (i + 0.5) * lat_step
        for j in cols:
            lon = -180.0 + (j + 0.5) * lon_step
            cells.add(encode(lat, lon, precision))
    return cells


def _collapse(cells: set[str]) -> set[str]:
    """Replace every complete set of 32 sibling cells by their parent."""
    cells = set(cells)
    changed = True
    while changed:
        changed = False
        by_parent: dict[str, set[str]] = {}
        for cell in cells:
            if cell:
                by_parent.setdefault(cell[:-1], set()).add(cell)
        for parent, children in by_parent.items():
            if len(children) == len(BASE32):
                cells -= children
                cells.add(parent)
                changed = True
    return cells


def bounding_box_prefixes(
    bbox: BoundingBox,
    precision: int = DEFAULT_PRECISION,
    max_prefixes: int = 32,
) -> set[str]:
    """Minimal set of geohash prefixes whose cells cover ``bbox``.

    Uses the finest precision (at most ``precision``) whose covering fits in
    ``max_prefixes`` after collapsing complete sibling groups. Coarser cells
    cover more area outside the box; callers must filter hits by exact
    containment. No returned prefix is a prefix of another.
    """
    bbox.validate()
    _check_precision(precision)
    if max_prefixes < 1:
        msg = "max_prefixes must be >= 1"
        raise ValidationError(msg)

    boxes = bbox.split()
    for p in range(precision, 0, -1):
        cells: set[str] = set()
        for box in boxes:
            part = _cover(box, p, max_prefixes * len(BASE32))
            if part is None:
                break
            cells |= part
        else:
            collapsed = _collapse(cells)
            if len(collapsed) <= max_prefixes:
                return collapsed
    return {""}
