"""Geohash encoding and viewport covering."""

import pytest

from catmap.errors import ValidationError
from catmap.geo.geohash import (
    BoundingBox,
    bounding_box_prefixes,
    cell_size,
    decode,
    decode_bbox,
    encode,
)


class TestEncode:
    """Test encode against published reference values."""

    def test_reference_value(self):
        assert encode(57.64911, 10.40744, 11) == "u4pruydqqvj"

    def test_short_reference_value(self):
        assert encode(42.6, -5.6, 5) == "ezs42"

    def test_deterministic(self):
        """Same input always yields the same geohash."""
        assert encode(40.758, -73.9855, 8) == encode(40.758, -73.9855, 8)

    def test_precision_controls_length(self):
        assert len(encode(40.758, -73.9855, 4)) == 4
        assert len(encode(40.758, -73.9855, 9)) == 9

    def test_higher_precision_extends_lower(self):
        """A finer geohash starts with the coarser one."""
        coarse = encode(40.758, -73.9855, 5)
        fine = encode(40.758, -73.9855, 8)
        assert fine.startswith(coarse)

    @pytest.mark.parametrize(("lat", "lon"), [(90.1, 0), (-90.1, 0), (0, 180.5), (0, -181)])
    def test_out_of_range_rejected(self, lat, lon):
        with pytest.raises(ValidationError):
            encode(lat, lon, 8)

    def test_nan_rejected(self):
        with pytest.raises(ValidationError):
            encode(float("nan"), 0.0, 8)

    def test_bad_precision_rejected(self):
        with pytest.raises(ValidationError):
            encode(0.0, 0.0, 0)
        with pytest.raises(ValidationError):
            encode(0.0, 0.0, 13)

    def test_extreme_corners(self):
        assert encode(90, 180, 3) == "zzz"
        assert encode(-90, -180, 3) == "000"


class TestDecode:
    """Test decode returns the encoded cell."""

    def test_cell_contains_point(self):
        gh = encode(40.758, -73.9855, 8)
        cell = decode_bbox(gh)
        assert cell.contains(40.758, -73.9855)

    def test_decode_centre_reencodes(self):
        gh = encode(-33.8688, 151.2093, 8)
        lat, lon = decode(gh)
        assert encode(lat, lon, 8) == gh

    def test_invalid_character(self):
        with pytest.raises(ValidationError, match="Invalid geohash character"):
            decode_bbox("abc")  # 'a' is not in the alphabet

    def test_cell_size_matches_decoded_cell(self):
        lat_step, lon_step = cell_size(8)
        cell = decode_bbox(encode(10.0, 10.0, 8))
        assert cell.north - cell.south == pytest.approx(lat_step)
        assert cell.east - cell.west == pytest.approx(lon_step)


class TestBoundingBox:
    """Test exact containment."""

    def test_contains_inside(self):
        box = BoundingBox(40.70, -74.02, 40.80, -73.93)
        assert box.contains(40.758, -73.9855)

    def test_excludes_outside(self):
        box = BoundingBox(40.70, -74.02, 40.80, -73.93)
        assert not box.contains(40.81, -73.98)
        assert not box.contains(40.75, -73.92)

    def test_antimeridian_box(self):
        box = BoundingBox(-20.0, 170.0, -10.0, -170.0)
        assert box.crosses_antimeridian
        assert box.contains(-15.0, 175.0)
        assert box.contains(-15.0, -175.0)
        assert not box.contains(-15.0, 0.0)

    def test_inverted_latitudes_rejected(self):
        with pytest.raises(ValidationError, match="south edge"):
            BoundingBox(41.0, -74.0, 40.0, -73.0).validate()


def _grid(box: BoundingBox, steps: int = 12):
    """Evenly spaced points inside a non-crossing box, edges included."""
    for i in range(steps + 1):
        lat = box.south + (box.north - box.south) * i / steps
        for j in range(steps + 1):
            lon = box.west + (box.east - box.west) * j / steps
            yield lat, lon


class TestBoundingBoxPrefixes:
    """Test the prefix covering used by viewport queries."""

    def test_every_inside_point_is_covered(self):
        box = BoundingBox(40.74, -74.00, 40.77, -73.96)
        prefixes = bounding_box_prefixes(box, precision=8, max_prefixes=32)
        for lat, lon in _grid(box):
            gh = encode(lat, lon, 8)
            assert any(gh.startswith(p) for p in prefixes), (lat, lon, gh)

    def test_respects_budget(self):
        box = BoundingBox(40.0, -75.0, 42.0, -72.0)
        prefixes = bounding_box_prefixes(box, precision=8, max_prefixes=16)
        assert 1 <= len(prefixes) <= 16
        assert all(len(p) <= 8 for p in prefixes)

    def test_prefixes_are_disjoint(self):
        """No returned prefix is a prefix of another."""
        box = BoundingBox(51.45, -0.25, 51.55, 0.05)
        prefixes = sorted(bounding_box_prefixes(box, precision=8, max_prefixes=32))
        for a in prefixes:
            for b in prefixes:
                if a != b:
                    assert not b.startswith(a)

    def test_tiny_box_single_cell(self):
        lat, lon = decode(encode(35.6762, 139.6503, 8))
        box = BoundingBox(lat - 1e-6, lon - 1e-6, lat + 1e-6, lon + 1e-6)
        assert bounding_box_prefixes(box, precision=8) == {encode(35.6762, 139.6503, 8)}

    def test_whole_world_collapses(self):
        box = BoundingBox(-90.0, -180.0, 90.0, 180.0)
        assert bounding_box_prefixes(box, precision=8, max_prefixes=4) == {""}

    def test_antimeridian_covers_both_sides(self):
        box = BoundingBox(-20.0, 179.5, -19.5, -179.5)
        prefixes = bounding_box_prefixes(box, precision=6, max_prefixes=32)
        east = encode(-19.7, 179.8, 6)
        west = encode(-19.7, -179.8, 6)
        assert any(east.startswith(p) for p in prefixes)
        assert any(west.startswith(p) for p in prefixes)

    def test_invalid_box_rejected(self):
        with pytest.raises(ValidationError):
            bounding_box_prefixes(BoundingBox(10.0, 0.0, 5.0, 1.0))

    def test_zero_budget_rejected(self):
        with pytest.raises(ValidationError):
            bounding_box_prefixes(BoundingBox(0.0, 0.0, 1.0, 1.0), max_prefixes=0)
