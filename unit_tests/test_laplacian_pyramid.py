"""
Unit tests for laplacian_pyramid module.
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from laplacian_pyramid import (
    build_laplacian_pyramid,
    build_gaussian_pyramid,
    restore_image_from_laplacian_pyramid,
    pyramid_shapes,
)


class TestLaplacianPyramid:
    """Decomposition and reconstruction."""

    @pytest.mark.parametrize('num_levels', [1, 2, 3, 5])
    def test_uint8_round_trip_is_exact(self, num_levels):
        """Odd sizes included: reconstruction must mirror decomposition."""
        rng = np.random.default_rng(num_levels)
        image = rng.integers(0, 256, (37, 53, 3), dtype=np.uint8)

        pyramid = build_laplacian_pyramid(image, num_levels)
        restored = restore_image_from_laplacian_pyramid(pyramid)

        assert restored.dtype == np.int16
        np.testing.assert_array_equal(restored, image.astype(np.int16))

    def test_int16_round_trip_is_exact(self):
        rng = np.random.default_rng(3)
        image = rng.integers(-1000, 1000, (40, 33, 3)).astype(np.int16)

        pyramid = build_laplacian_pyramid(image, 3)
        restored = restore_image_from_laplacian_pyramid(pyramid)

        np.testing.assert_array_equal(restored, image)

    def test_float32_round_trip(self):
        rng = np.random.default_rng(5)
        image = rng.random((32, 48, 3)).astype(np.float32)

        restored = restore_image_from_laplacian_pyramid(build_laplacian_pyramid(image, 4))

        np.testing.assert_allclose(restored, image, atol=1e-4)

    def test_level_count_and_shapes(self):
        image = np.zeros((37, 53, 3), dtype=np.uint8)
        pyramid = build_laplacian_pyramid(image, 3)

        assert len(pyramid) == 4
        assert [p.shape[:2] for p in pyramid] == pyramid_shapes(37, 53, 3)
        assert all(p.dtype == np.int16 for p in pyramid)

    def test_zero_levels_returns_image_as_base(self):
        image = np.full((8, 8, 3), 17, dtype=np.uint8)
        pyramid = build_laplacian_pyramid(image, 0)

        assert len(pyramid) == 1
        np.testing.assert_array_equal(pyramid[0], image.astype(np.int16))

    def test_solid_image_has_zero_residuals(self):
        image = np.full((64, 64, 3), 123, dtype=np.uint8)
        pyramid = build_laplacian_pyramid(image, 3)

        for level in pyramid[:-1]:
            assert not np.any(level)
        assert np.all(pyramid[-1] == 123)

    def test_negative_levels_rejected(self):
        with pytest.raises(ValueError):
            build_laplacian_pyramid(np.zeros((4, 4, 3), dtype=np.uint8), -1)

    def test_restore_empty_pyramid_rejected(self):
        with pytest.raises(ValueError):
            restore_image_from_laplacian_pyramid([])


class TestGaussianPyramid:
    """Weight pyramids."""

    def test_constant_weights_stay_constant(self):
        weights = np.ones((64, 32), dtype=np.float32)
        pyramid = build_gaussian_pyramid(weights, 4)

        assert len(pyramid) == 5
        for level in pyramid:
            np.testing.assert_array_equal(level, np.ones_like(level))

    def test_shapes_round_up(self):
        pyramid = build_gaussian_pyramid(np.zeros((9, 5), dtype=np.int16), 2)
        assert [p.shape for p in pyramid] == [(9, 5), (5, 3), (3, 2)]


class TestPyramidShapes:

    def test_power_of_two(self):
        assert pyramid_shapes(16, 32, 2) == [(16, 32), (8, 16), (4, 8)]

    def test_odd(self):
        assert pyramid_shapes(5, 3, 2) == [(5, 3), (3, 2), (2, 1)]


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
