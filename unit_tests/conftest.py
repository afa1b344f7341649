"""
Shared fixtures for unit tests.
"""

import pytest
import numpy as np
import tempfile
from pathlib import Path
import rasterio
from affine import Affine

PIXEL_SIZE = 0.5
ORIGIN_X = 1000.0
ORIGIN_Y = 2000.0

COLOR_A = (200, 100, 50)
COLOR_B = (40, 180, 220)


def write_tfw(path: Path, pixel_size: float, translate_x: float, translate_y: float,
              rotation: float = 0.0):
    """Write a six-line world file."""
    lines = [pixel_size, rotation, rotation, -pixel_size, translate_x, translate_y]
    path.write_text('\n'.join(f'{value:.6f}' for value in lines) + '\n')


def write_tile(directory: Path, name: str, x: int, y: int, image: np.ndarray,
               pixel_size: float = PIXEL_SIZE):
    """
    Write an RGB GeoTIFF tile plus its .tfw at pixel offset (x, y) from the origin.

    Returns:
        Path of the written image
    """
    height, width = image.shape[:2]
    translate_x = ORIGIN_X + x * pixel_size
    translate_y = ORIGIN_Y - y * pixel_size

    image_path = directory / f'{name}.tif'
    with rasterio.open(
        image_path,
        'w',
        driver='GTiff',
        height=height,
        width=width,
        count=3,
        dtype='uint8',
        transform=Affine(pixel_size, 0.0, translate_x, 0.0, -pixel_size, translate_y),
    ) as dst:
        dst.write(np.moveaxis(image, -1, 0))

    write_tfw(directory / f'{name}.tfw', pixel_size, translate_x, translate_y)
    return image_path


def write_mask(directory: Path, name: str, mask: np.ndarray):
    """Write a single-band correlation mask image."""
    mask_path = directory / f'{name}.tif'
    with rasterio.open(
        mask_path,
        'w',
        driver='GTiff',
        height=mask.shape[0],
        width=mask.shape[1],
        count=1,
        dtype='uint8',
    ) as dst:
        dst.write(mask[np.newaxis, ...])
    return mask_path


def solid_image(width: int, height: int, color) -> np.ndarray:
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:] = color
    return image


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def random_tile():
    """Random 48x64 RGB tile."""
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, (48, 64, 3), dtype=np.uint8)


@pytest.fixture
def full_mask_48x64():
    return np.full((48, 64), 255, dtype=np.uint8)


@pytest.fixture
def two_tile_dir(temp_dir):
    """
    Two solid 100x100 tiles, side by side with 20 overlapping columns.

    Tile A sits at canvas (0, 0), tile B at (80, 0); the canvas is 180x100.
    """
    tile_dir = temp_dir / 'tiles'
    tile_dir.mkdir()
    write_tile(tile_dir, 'Ort_a', 0, 0, solid_image(100, 100, COLOR_A))
    write_tile(tile_dir, 'Ort_b', 80, 0, solid_image(100, 100, COLOR_B))
    return tile_dir
