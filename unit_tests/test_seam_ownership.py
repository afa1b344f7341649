"""
Unit tests for seam_ownership module.
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from seam_ownership import TileFootprint, generate_ownership_masks


@pytest.fixture
def side_by_side():
    """Two 100x100 tiles overlapping on canvas columns 80-99."""
    return [TileFootprint(0, 0, 100, 100), TileFootprint(80, 0, 100, 100)]


class TestTileFootprint:

    def test_center(self):
        assert TileFootprint(10, 20, 100, 50).center == (60.0, 45.0)

    def test_usable_defaults_to_everything(self):
        usable = TileFootprint(0, 0, 4, 3).usable()
        assert usable.shape == (3, 4)
        assert usable.all()


class TestHardPartition:
    """overlap_margin = 0."""

    def test_single_tile_owns_everything(self):
        masks = generate_ownership_masks([TileFootprint(5, 5, 30, 20)], overlap_margin=0)
        assert len(masks) == 1
        assert masks[0].shape == (20, 30)
        assert np.all(masks[0] == 255)

    def test_empty_input(self):
        assert generate_ownership_masks([], overlap_margin=0) == []

    def test_vertical_bisector(self, side_by_side):
        """Centres at x=50 and x=130: the frontier is x=90."""
        mask_a, mask_b = generate_ownership_masks(side_by_side, overlap_margin=0)

        assert np.all(mask_a[:, :90] == 255)
        assert np.all(mask_a[:, 90:] == 0)
        # Tile B starts at canvas column 80
        assert np.all(mask_b[:, :10] == 0)
        assert np.all(mask_b[:, 10:] == 255)

    def test_overlap_partitioned_exclusively(self):
        """Every overlap pixel is owned by exactly one of two diagonal tiles."""
        tiles = [TileFootprint(0, 0, 100, 100), TileFootprint(60, 40, 100, 100)]
        mask_a, mask_b = generate_ownership_masks(tiles, overlap_margin=0)

        overlap_a = mask_a[40:100, 60:100]
        overlap_b = mask_b[0:60, 0:40]

        assert set(np.unique(overlap_a)) <= {0, 255}
        assert set(np.unique(overlap_b)) <= {0, 255}
        assert np.all((overlap_a == 255) != (overlap_b == 255))

        # Perpendicular bisector of centres (50, 50) and (110, 90): 3x + 2y = 380
        xs = np.arange(60, 100) + 0.5
        ys = np.arange(40, 100) + 0.5
        closer_to_a = 3 * xs[np.newaxis, :] + 2 * ys[:, np.newaxis] < 380
        np.testing.assert_array_equal(overlap_a == 255, closer_to_a)

    def test_identical_footprints_first_tile_wins(self):
        tiles = [TileFootprint(0, 0, 50, 50), TileFootprint(0, 0, 50, 50)]
        mask_a, mask_b = generate_ownership_masks(tiles, overlap_margin=0)

        assert np.all(mask_a == 255)
        assert np.all(mask_b == 0)

    def test_non_overlapping_tiles(self):
        tiles = [TileFootprint(0, 0, 10, 10), TileFootprint(10, 0, 10, 10)]
        masks = generate_ownership_masks(tiles, overlap_margin=0)
        assert all(np.all(mask == 255) for mask in masks)


class TestMarginRamp:
    """overlap_margin > 0."""

    def test_ramp_values_across_frontier(self, side_by_side):
        mask_a, mask_b = generate_ownership_masks(side_by_side, overlap_margin=10)

        # Column 89 has its centre 0.5 px before the frontier at x=90
        assert mask_a[50, 89] == 134
        assert mask_b[50, 9] == 121
        # Outside the overlap each tile owns its pixels outright
        assert mask_a[50, 79] == 255
        assert mask_b[50, 20] == 255
        # The whole 20 px overlap lies inside the +/-10 px ramp
        assert 0 < mask_a[50, 99] < 20
        assert 0 < mask_b[50, 0] < 20

    def test_pairwise_ownership_sums_to_full(self, side_by_side):
        mask_a, mask_b = generate_ownership_masks(side_by_side, overlap_margin=10)

        total = mask_a[:, 80:100].astype(np.int32) + mask_b[:, 0:20].astype(np.int32)
        assert np.all(np.abs(total - 255) <= 1)

    def test_ramp_monotone(self, side_by_side):
        mask_a, _ = generate_ownership_masks(side_by_side, overlap_margin=10)
        row = mask_a[50].astype(np.int32)
        assert np.all(np.diff(row) <= 0)

    def test_wider_margin_widens_ramp(self, side_by_side):
        counts = []
        for margin in (0, 3, 6, 9):
            mask_a, _ = generate_ownership_masks(side_by_side, overlap_margin=margin)
            counts.append(np.count_nonzero((mask_a > 0) & (mask_a < 255)))

        assert counts[0] == 0
        assert counts == sorted(counts)
        assert len(set(counts)) == len(counts)

    def test_triple_overlap_not_normalized(self):
        """With three tiles the ramps can add up to more than 255."""
        tiles = [TileFootprint(0, 0, 100, 100), TileFootprint(60, 0, 100, 100),
                 TileFootprint(30, 50, 100, 100)]
        masks = generate_ownership_masks(tiles, overlap_margin=30)

        # Canvas region covered by all three: x 60-99, y 50-99
        total = (masks[0][50:100, 60:100].astype(np.int32) +
                 masks[1][50:100, 0:40].astype(np.int32) +
                 masks[2][0:50, 30:70].astype(np.int32))
        assert np.any(total > 256)


class TestUsability:
    """Excluded pixels in the ownership computation."""

    def test_excluded_pixels_are_zero(self):
        usability = np.full((20, 20), 255, dtype=np.uint8)
        usability[5:10, 5:10] = 0
        mask, = generate_ownership_masks([TileFootprint(0, 0, 20, 20, usability)], overlap_margin=5)

        assert np.all(mask[5:10, 5:10] == 0)
        assert np.all(mask[usability != 0] == 255)

    def test_neighbour_takes_over_excluded_area(self, side_by_side):
        """Tile A cannot use its right half of the overlap, so B owns it outright."""
        usability_a = np.full((100, 100), 255, dtype=np.uint8)
        usability_a[:, 80:] = 0
        tiles = [TileFootprint(0, 0, 100, 100, usability_a), side_by_side[1]]

        mask_a, mask_b = generate_ownership_masks(tiles, overlap_margin=0)

        assert np.all(mask_a[:, 80:] == 0)
        assert np.all(mask_b[:, :20] == 255)

    def test_location_unusable_by_all_tiles(self, side_by_side):
        usability_a = np.full((100, 100), 255, dtype=np.uint8)
        usability_b = np.full((100, 100), 255, dtype=np.uint8)
        usability_a[:, 85:95] = 0
        usability_b[:, 5:15] = 0
        tiles = [TileFootprint(0, 0, 100, 100, usability_a),
                 TileFootprint(80, 0, 100, 100, usability_b)]

        mask_a, mask_b = generate_ownership_masks(tiles, overlap_margin=4)

        assert not np.any(mask_a[:, 85:95])
        assert not np.any(mask_b[:, 5:15])


class TestValidation:

    def test_negative_margin(self, side_by_side):
        with pytest.raises(ValueError):
            generate_ownership_masks(side_by_side, overlap_margin=-1)

    def test_usability_shape_mismatch(self):
        tiles = [TileFootprint(0, 0, 10, 10, np.ones((5, 5), dtype=np.uint8))]
        with pytest.raises(ValueError):
            generate_ownership_masks(tiles, overlap_margin=0)

    def test_empty_tile(self):
        with pytest.raises(ValueError):
            generate_ownership_masks([TileFootprint(0, 0, 0, 10)], overlap_margin=0)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
