"""
Seam ownership masks for overlapping tiles (Voronoi tessellation with margin).

Every usable pixel of a tile is assigned by comparing the distances from the
pixel to the centres of all tiles that can use the same canvas location. The
closest tile owns the pixel; a linear ramp of +/- overlap_margin pixels around
the frontier with the runner-up softens the seam.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import box
from shapely.strtree import STRtree


@dataclass
class TileFootprint:
    """Placement of a tile on the canvas plus its optional usability mask."""
    x: int
    y: int
    width: int
    height: int
    usability: Optional[np.ndarray] = None

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2.0, self.y + self.height / 2.0

    def usable(self) -> np.ndarray:
        if self.usability is None:
            return np.ones((self.height, self.width), dtype=bool)
        return self.usability != 0


def _overlap(a: TileFootprint, b: TileFootprint) -> Optional[Tuple[int, int, int, int]]:
    """Intersection of two footprints in canvas coordinates, or None."""
    x0 = max(a.x, b.x)
    y0 = max(a.y, b.y)
    x1 = min(a.x + a.width, b.x + b.width)
    y1 = min(a.y + a.height, b.y + b.height)
    if x0 >= x1 or y0 >= y1:
        return None
    return x0, y0, x1, y1


def _validate(tiles: Sequence[TileFootprint], overlap_margin: float):
    if overlap_margin < 0:
        raise ValueError(f"overlap_margin must be >= 0, got {overlap_margin}")
    for index, tile in enumerate(tiles):
        if tile.width <= 0 or tile.height <= 0:
            raise ValueError(f"Tile {index} has invalid size {tile.width}x{tile.height}")
        if tile.usability is not None and tile.usability.shape[:2] != (tile.height, tile.width):
            raise ValueError(f"Tile {index} usability mask shape {tile.usability.shape} "
                             f"does not match tile size {tile.width}x{tile.height}")


def _ownership_values(offset: np.ndarray, is_closest: np.ndarray, overlap_margin: float) -> np.ndarray:
    """Map signed frontier offsets to 0-255 ownership."""
    if overlap_margin > 0:
        ramp = np.clip((offset + overlap_margin) / (2.0 * overlap_margin), 0.0, 1.0)
        return np.floor(ramp * 255.0 + 0.5).astype(np.uint8)
    return np.where(is_closest, np.uint8(255), np.uint8(0))


def generate_ownership_masks(tiles: Sequence[TileFootprint], overlap_margin: float = 20.0) -> List[np.ndarray]:
    """
    Compute a soft ownership mask for every tile.

    Args:
        tiles: Tile footprints with optional usability masks (non-zero = usable)
        overlap_margin: Half-width in pixels of the ramp around each frontier.
            0 yields a hard Voronoi partition.

    Returns:
        One uint8 mask per tile (same order), 255 = owned, 0 = not owned
    """
    _validate(tiles, overlap_margin)
    if not tiles:
        return []

    usable = [tile.usable() for tile in tiles]
    centers = [tile.center for tile in tiles]
    tree = STRtree([box(t.x, t.y, t.x + t.width, t.y + t.height) for t in tiles])

    masks = []
    for index, tile in enumerate(tiles):
        # Pixel centres in canvas coordinates
        px = tile.x + np.arange(tile.width, dtype=np.float64) + 0.5
        py = tile.y + np.arange(tile.height, dtype=np.float64) + 0.5

        best = np.full((tile.height, tile.width), np.inf)
        second = np.full((tile.height, tile.width), np.inf)
        best_index = np.full((tile.height, tile.width), -1, dtype=np.int64)

        footprint = box(tile.x, tile.y, tile.x + tile.width, tile.y + tile.height)
        candidates = sorted(int(i) for i in tree.query(footprint, predicate='intersects'))

        for candidate in candidates:
            other = tiles[candidate]
            overlap = _overlap(tile, other)
            if overlap is None:
                continue
            x0, y0, x1, y1 = overlap

            own = (slice(y0 - tile.y, y1 - tile.y), slice(x0 - tile.x, x1 - tile.x))
            theirs = (slice(y0 - other.y, y1 - other.y), slice(x0 - other.x, x1 - other.x))
            covered = usable[candidate][theirs]

            cx, cy = centers[candidate]
            distance = np.hypot(px[own[1]][np.newaxis, :] - cx, py[own[0]][:, np.newaxis] - cy)
            distance = np.where(covered, distance, np.inf)

            best_view = best[own]
            second_view = second[own]
            closer = distance < best_view

            second[own] = np.where(closer, best_view, np.minimum(second_view, distance))
            best[own] = np.where(closer, distance, best_view)
            best_index[own] = np.where(closer, candidate, best_index[own])

        mask = np.zeros((tile.height, tile.width), dtype=np.uint8)
        evaluate = usable[index]
        if np.any(evaluate):
            frontier_offset = (second[evaluate] - best[evaluate]) / 2.0
            is_closest = best_index[evaluate] == index
            offset = np.where(is_closest, frontier_offset, -frontier_offset)
            mask[evaluate] = _ownership_values(offset, is_closest, overlap_margin)
        masks.append(mask)

        logging.debug(f"Ownership tile {index}: {np.count_nonzero(mask == 255)} owned, "
                      f"{np.count_nonzero((mask > 0) & (mask < 255))} ramped pixels")

    return masks
