"""
Orthomosaic blending pipeline.

Loads a directory of georeferenced tiles, derives per-tile weight and blend
masks (seam ownership + coverage feathering), writes them to the run's
intermediate/ directory, feeds the tiles one at a time into the dual-mask
multi-band blender and writes the flattened canvas.
"""

import json
import logging
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
import rasterio

from coverage_masks import build_usability_mask, feather_mask, fill_excluded_pixels
from defaults import (
    DEFAULT_NUM_BANDS,
    DEFAULT_WEIGHT_TYPE,
    DEFAULT_OVERLAP_MARGIN,
    DEFAULT_WEIGHT_MARGIN,
    DEFAULT_FEATHER_RADIUS,
    DEFAULT_DEBUG_LEVEL,
    DEFAULT_OUTPUT_DIR,
)
from dual_mask_blender import DualMaskMultiBandBlender
from seam_ownership import TileFootprint, generate_ownership_masks
from tile_loader import OrthoTileLoader, Tile
from utils import format_bytes, describe_raster, log_banner, peak_memory_bytes

DEBUG_LEVELS = ('none', 'intermediate', 'high')
GEOTIFF_SUFFIXES = ('.tif', '.tiff')


@dataclass
class MosaicConfig:
    """Configuration for a blending run."""
    input_dir: str
    output_path: str
    output_dir: str = DEFAULT_OUTPUT_DIR
    num_bands: int = DEFAULT_NUM_BANDS
    weight_type: str = DEFAULT_WEIGHT_TYPE
    overlap_margin: float = DEFAULT_OVERLAP_MARGIN
    weight_margin: float = DEFAULT_WEIGHT_MARGIN
    feather_radius: float = DEFAULT_FEATHER_RADIUS
    sharp_coverage: bool = False
    debug_level: str = DEFAULT_DEBUG_LEVEL
    verbose: bool = False

    @classmethod
    def from_dict(cls, config_dict: dict):
        """Create config from dictionary."""
        return cls(**{k: v for k, v in config_dict.items() if k in cls.__annotations__})

    def to_dict(self) -> dict:
        return asdict(self)

    def validate(self):
        """Fail fast on values the pipeline cannot run with."""
        if not self.input_dir or not self.output_path:
            raise ValueError("input_dir and output_path are required")
        if not 1 <= int(self.num_bands) <= 50:
            raise ValueError(f"num_bands must be between 1 and 50, got {self.num_bands}")
        if self.weight_type not in ('float32', 'fixed16'):
            raise ValueError(f"weight_type must be 'float32' or 'fixed16', got {self.weight_type!r}")
        if self.overlap_margin < 0 or self.weight_margin < 0:
            raise ValueError("overlap_margin and weight_margin must be >= 0")
        if self.debug_level not in DEBUG_LEVELS:
            raise ValueError(f"debug_level must be one of {DEBUG_LEVELS}, got {self.debug_level!r}")


def clip_to_canvas(x: int, y: int, width: int, height: int,
                   canvas_size: Tuple[int, int]) -> Optional[Tuple[int, int, slice, slice]]:
    """
    Crop a tile rectangle to the canvas.

    Returns:
        (x, y, rows, cols): clipped top-left corner and the tile-local slices,
        or None when the tile lies entirely outside the canvas
    """
    canvas_width, canvas_height = canvas_size
    x0, y0 = max(x, 0), max(y, 0)
    x1, y1 = min(x + width, canvas_width), min(y + height, canvas_height)
    if x0 >= x1 or y0 >= y1:
        return None
    return x0, y0, slice(y0 - y, y1 - y), slice(x0 - x, x1 - x)


def usable_coverage(usability: np.ndarray, radius: float, sharp: bool = False) -> np.ndarray:
    """
    Coverage feathering of a usability mask, ramping only toward exclusions.

    Every usable pixel keeps a coverage of at least 1 so that rounding never
    drops it from the tile's masks.
    """
    coverage = feather_mask(usability, radius, sharp, include_border=False)
    return np.where(usability != 0, np.maximum(coverage, 1), 0).astype(np.uint8)


def normalize_share(share: np.ndarray, total: np.ndarray) -> np.ndarray:
    """
    Rescale one tile's share to 0-255 against the sum over all tiles.

    Any pixel with a non-zero share keeps at least 1.
    """
    share = share.astype(np.float32)
    values = np.divide(share * np.float32(255.0), total, out=np.zeros_like(share), where=total > 0)
    rounded = np.clip(np.rint(values), 0, 255)
    return np.where(share > 0, np.maximum(rounded, 1), 0).astype(np.uint8)


def coverage_shares(tiles: Sequence, ownership: Sequence[np.ndarray], coverage: Sequence[np.ndarray],
                    canvas_size: Tuple[int, int]) -> List[np.ndarray]:
    """
    Ownership attenuated by coverage, normalised across overlapping tiles.

    Shares of all tiles sum to about 255 wherever any tile contributes, so
    coverage moves weight from a tile near its exclusions to its neighbours
    without changing the total. A pixel covered by a single tile gets 255.

    Args:
        tiles: Objects with x, y, width and height on the canvas
        ownership: uint8 ownership mask per tile
        coverage: uint8 coverage mask per tile
        canvas_size: (width, height)

    Returns:
        One uint8 mask per tile, same order
    """
    canvas_width, canvas_height = canvas_size
    total = np.zeros((canvas_height, canvas_width), dtype=np.float32)
    placements = [clip_to_canvas(t.x, t.y, t.width, t.height, canvas_size) for t in tiles]

    for placement, owned, covered in zip(placements, ownership, coverage):
        if placement is None:
            continue
        x, y, rows, cols = placement
        share = owned[rows, cols].astype(np.float32) * covered[rows, cols].astype(np.float32)
        total[y:y + share.shape[0], x:x + share.shape[1]] += share

    shares = []
    for placement, owned, covered in zip(placements, ownership, coverage):
        mask = np.zeros(owned.shape, dtype=np.uint8)
        if placement is not None:
            x, y, rows, cols = placement
            share = owned[rows, cols].astype(np.float32) * covered[rows, cols].astype(np.float32)
            mask[rows, cols] = normalize_share(share, total[y:y + share.shape[0], x:x + share.shape[1]])
        shares.append(mask)
    return shares


def write_mosaic(output_path: Path, image: np.ndarray, mask: np.ndarray, transform=None):
    """
    Write the blended RGB canvas.

    GeoTIFF outputs carry the canvas transform and the validity mask as the
    dataset mask; other formats go through OpenCV.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if output_path.suffix.lower() in GEOTIFF_SUFFIXES:
        height, width = image.shape[:2]
        profile = {
            'driver': 'GTiff',
            'height': height,
            'width': width,
            'count': 3,
            'dtype': 'uint8',
            'compress': 'deflate',
        }
        if width >= 512 and height >= 512:
            profile.update(tiled=True, blockxsize=512, blockysize=512)
        if transform is not None:
            profile['transform'] = transform
        with rasterio.open(output_path, 'w', **profile) as dst:
            dst.write(np.moveaxis(image, -1, 0))
            dst.write_mask(mask)
    else:
        if not cv2.imwrite(str(output_path), cv2.cvtColor(image, cv2.COLOR_RGB2BGR)):
            raise IOError(f"Failed to save output image to: {output_path}")


class OrthoMosaicBuilder:
    """Runs the full blend of a tile directory into a single canvas."""

    def __init__(self, config: MosaicConfig, output_dir: Path):
        config.validate()
        self.config = config
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.loader = OrthoTileLoader()
        self.stats: Dict = {}

        self.viz_dir = self.output_dir / 'visualizations'
        self.intermediate_dir = self.output_dir / 'intermediate'
        # Generated masks live here between mask generation and feeding
        self.intermediate_dir.mkdir(parents=True, exist_ok=True)
        if config.debug_level != 'none':
            self.viz_dir.mkdir(parents=True, exist_ok=True)

    def _usability_masks(self, tiles: List[Tile]) -> List[np.ndarray]:
        """Decode each tile once to extract its usability mask."""
        masks = []
        for tile in tiles:
            image = self.loader.load_tile(tile)
            loaded_mask = self.loader.load_mask(tile)
            masks.append(build_usability_mask(image, loaded_mask))
            self.loader.unload_mask(tile)
            self.loader.unload_tile(tile)
        return masks

    def build_masks(self, tiles: List[Tile]):
        """
        Generate weight and blend masks for every tile and write them to intermediate/.

        Blend masks start from ownership with the narrow overlap margin, weight
        masks from ownership with the wide weight margin. Both are attenuated
        by the same coverage feathering and normalised across tiles, so the
        accumulated weight matches the accumulated blend gating everywhere.

        Sets weight_mask_path and blend_mask_path on each tile; the masks
        themselves are not kept in memory.
        """
        usability = self._usability_masks(tiles)
        footprints = [TileFootprint(t.x, t.y, t.width, t.height, mask) for t, mask in zip(tiles, usability)]

        logging.info(f"Generating blend masks (overlap margin {self.config.overlap_margin} px)...")
        blend_ownership = generate_ownership_masks(footprints, self.config.overlap_margin)

        logging.info(f"Generating weight masks (weight margin {self.config.weight_margin} px, "
                     f"feather radius {self.config.feather_radius} px)...")
        weight_ownership = generate_ownership_masks(footprints, self.config.weight_margin)

        coverage = [usable_coverage(mask, self.config.feather_radius, self.config.sharp_coverage)
                    for mask in usability]
        del usability, footprints

        weight_masks = coverage_shares(tiles, weight_ownership, coverage, self.loader.canvas_size)
        del weight_ownership
        for tile, path in zip(tiles, self._persist_masks(tiles, weight_masks, 'weight')):
            tile.weight_mask_path = path
        del weight_masks

        blend_masks = coverage_shares(tiles, blend_ownership, coverage, self.loader.canvas_size)
        del blend_ownership, coverage
        for tile, path in zip(tiles, self._persist_masks(tiles, blend_masks, 'blend')):
            tile.blend_mask_path = path

    def _persist_masks(self, tiles: List[Tile], masks: List[np.ndarray], kind: str) -> List[Path]:
        paths = []
        for tile, mask in zip(tiles, masks):
            path = self.intermediate_dir / f'{Path(tile.name).stem}_{kind}_mask.png'
            if not cv2.imwrite(str(path), mask):
                raise IOError(f"Failed to write {kind} mask: {path}")
            paths.append(path)

        if self.config.debug_level != 'none':
            from debug_visualizations import save_ownership_overview
            save_ownership_overview(tiles, masks, self.loader.canvas_size,
                                    self.viz_dir / f'{kind}_ownership.png', title=f'{kind.capitalize()} masks')

        logging.debug(f"Wrote {len(paths)} {kind} masks to {self.intermediate_dir}")
        return paths

    def run(self) -> Path:
        """
        Blend all tiles and write the output.

        Returns:
            Path of the written mosaic
        """
        start_time = time.time()

        tiles = self.loader.load_from_directory(self.config.input_dir)
        if len(tiles) < 2:
            raise ValueError("Not enough tiles: Need at least two tiles to blend.")

        canvas_width, canvas_height = self.loader.canvas_size
        if canvas_width <= 0 or canvas_height <= 0:
            raise ValueError("Invalid canvas: Cannot blend because the canvas size is invalid.")

        self.build_masks(tiles)

        blender = DualMaskMultiBandBlender(self.config.num_bands, self.config.weight_type)
        blender.prepare(canvas_width, canvas_height)
        logging.info(f"Blender: {blender.num_bands} bands, accumulators "
                     f"{format_bytes(blender.estimated_memory_bytes())}")

        fed = 0
        for index, tile in enumerate(tiles):
            placement = clip_to_canvas(tile.x, tile.y, tile.width, tile.height, self.loader.canvas_size)
            if placement is None:
                logging.warning(f"Skipping {tile.name}: outside the canvas")
                continue
            x, y, rows, cols = placement

            weight_mask, blend_mask = self.loader.load_generated_masks(tile)
            weight_mask = np.ascontiguousarray(weight_mask[rows, cols])
            blend_mask = np.ascontiguousarray(blend_mask[rows, cols])
            if not np.any(blend_mask) or not np.any(weight_mask):
                logging.warning(f"Skipping {tile.name}: no usable pixels")
                continue

            image = self.loader.load_tile(tile)
            usability = build_usability_mask(image, self.loader.load_mask(tile))
            self.loader.unload_mask(tile)
            image = np.ascontiguousarray(fill_excluded_pixels(image, usability)[rows, cols])
            blender.feed(image, weight_mask, blend_mask, x, y)
            self.loader.unload_tile(tile)
            fed += 1

            logging.info(f"  [{index + 1}/{len(tiles)}] fed {tile.name} at ({x}, {y})")

        if fed == 0:
            raise ValueError("Blending failed: No valid pixels were submitted to the blender.")

        logging.info("Blending bands...")
        blended, blended_mask = blender.blend()
        image8u = np.clip(blended, 0, 255).astype(np.uint8)

        output_path = Path(self.config.output_path)
        write_mosaic(output_path, image8u, blended_mask, self.loader.canvas_transform)

        elapsed = time.time() - start_time
        self.stats = {
            'tiles': len(tiles),
            'tiles_fed': fed,
            'canvas_size': [canvas_width, canvas_height],
            'num_bands': blender.num_bands,
            'valid_fraction': float(np.count_nonzero(blended_mask)) / blended_mask.size,
            'elapsed_seconds': elapsed,
            'peak_memory_bytes': peak_memory_bytes(),
        }
        with open(self.output_dir / 'blend_stats.json', 'w') as f:
            json.dump(self.stats, f, indent=2)

        info = describe_raster(output_path)
        log_banner("BLENDING COMPLETED")
        logging.info(f"Output: {output_path} ({info.get('size_formatted', 'n/a')}, "
                     f"{info.get('width', '?')}x{info.get('height', '?')})")
        logging.info(f"Valid pixels: {self.stats['valid_fraction'] * 100:.1f}%")
        logging.info(f"Elapsed: {elapsed:.1f}s, peak memory {format_bytes(self.stats['peak_memory_bytes'])}")

        return output_path
