"""
Orthophoto tile catalog.
Scans a directory of TIFF tiles with TFW world files, validates that they share
an axis-aligned grid, and derives each tile's pixel offset on a common canvas.
Tile pixels, correlation masks and generated weight/blend masks are decoded
lazily so only one tile is held at a time.
"""

import logging
import math
import re
import warnings
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import cv2
import numpy as np
import rasterio
from affine import Affine
from rasterio.errors import NotGeoreferencedWarning

IMAGE_EXTENSIONS = ('tif', 'tiff', 'TIF', 'TIFF')
REFERENCE_TFW = 'Orthophotomosaic.tfw'
REFERENCE_XML = 'MTDOrtho.xml'


@dataclass
class TfwRecord:
    """The six coefficients of a world file."""
    scale_x: float = 0.0
    rotation_y: float = 0.0
    rotation_x: float = 0.0
    scale_y: float = 0.0
    translate_x: float = 0.0
    translate_y: float = 0.0


@dataclass
class Tile:
    """A tile on the canvas. image/mask are None while unloaded."""
    name: str
    image_path: Path
    mask_path: Optional[Path] = None
    weight_mask_path: Optional[Path] = None
    blend_mask_path: Optional[Path] = None
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0
    image: Optional[np.ndarray] = None
    mask: Optional[np.ndarray] = None


def _lround(value: float) -> int:
    """Round half away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def parse_tfw(file_path: Path) -> TfwRecord:
    """Read the six numeric lines of a TFW file (blank lines ignored)."""
    values = []
    with open(file_path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                values.append(float(line))
            except ValueError:
                raise ValueError(f"Invalid numeric value in {file_path}: {line}")
            if len(values) == 6:
                break

    if len(values) != 6:
        raise ValueError(f"TFW file {file_path} does not contain 6 values.")

    return TfwRecord(*values)


def parse_mtd_ortho(file_path: Path) -> Tuple[int, int]:
    """Canvas (width, height) from the NombrePixels element of MTDOrtho.xml."""
    try:
        tree = ET.parse(file_path)
    except ET.ParseError as e:
        raise ValueError(f"XML parsing error in {file_path}: {e}")

    element = next(tree.getroot().iter('NombrePixels'), None)
    if element is None:
        raise ValueError(f"NombrePixels not found in {file_path}")

    parts = re.split(r'\s+', (element.text or '').strip())
    if len(parts) != 2:
        raise ValueError(f"Invalid NombrePixels format in {file_path}")
    try:
        width, height = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid pixel dimensions in {file_path}")
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid pixel dimensions in {file_path}")

    return width, height


def _read_rgb(path: Path) -> np.ndarray:
    """Decode a raster as HxWx3 uint8."""
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', NotGeoreferencedWarning)
        with rasterio.open(path) as src:
            indexes = [1, 2, 3] if src.count >= 3 else [1]
            data = src.read(indexes)

    if data.dtype == np.uint16:
        data = (data >> 8).astype(np.uint8)
    elif data.dtype != np.uint8:
        data = np.clip(data, 0, 255).astype(np.uint8)

    rgb = np.moveaxis(data, 0, -1)
    if rgb.shape[2] == 1:
        rgb = np.repeat(rgb, 3, axis=2)
    return np.ascontiguousarray(rgb)


class OrthoTileLoader:
    """Builds the tile catalog and canvas geometry from a tile directory."""

    def __init__(self):
        self.tiles: List[Tile] = []
        self.canvas_size: Tuple[int, int] = (0, 0)
        self.pixel_width = 0.0
        self.pixel_height = 0.0
        self.canvas_transform: Optional[Affine] = None
        self._reference: Optional[TfwRecord] = None
        self._reference_canvas_size: Optional[Tuple[int, int]] = None

    def empty(self) -> bool:
        return not self.tiles

    def load_from_directory(self, directory_path) -> List[Tile]:
        """
        Scan a directory and compute tile offsets and canvas size.

        Raises:
            FileNotFoundError: Directory does not exist
            ValueError: Missing or inconsistent georeferencing
        """
        self.tiles = []
        self.canvas_size = (0, 0)
        self.pixel_width = 0.0
        self.pixel_height = 0.0
        self.canvas_transform = None
        self._reference = None
        self._reference_canvas_size = None

        if not directory_path:
            raise ValueError("No directory selected.")
        directory = Path(directory_path)
        if not directory.is_dir():
            raise FileNotFoundError(f"Directory does not exist: {directory}")

        reference_tfw = directory / REFERENCE_TFW
        reference_xml = directory / REFERENCE_XML
        if reference_tfw.exists() and reference_xml.exists():
            self._reference = parse_tfw(reference_tfw)
            self._ensure_rotation_is_zero(self._reference, REFERENCE_TFW)
            self._reference_canvas_size = parse_mtd_ortho(reference_xml)
            self.pixel_width = abs(self._reference.scale_x)
            self.pixel_height = abs(self._reference.scale_y)
            logging.info(f"Reference canvas {self._reference_canvas_size[0]}x{self._reference_canvas_size[1]} "
                         f"from {REFERENCE_XML}")

        tfw_files = sorted(p for p in directory.iterdir()
                           if p.is_file() and p.suffix in ('.tfw', '.TFW'))
        if not tfw_files:
            raise ValueError(f"No TFW files found in {directory}")

        for tfw_path in tfw_files:
            if tfw_path.name == REFERENCE_TFW:
                continue
            record = parse_tfw(tfw_path)
            self._ensure_rotation_is_zero(record, tfw_path.name)
            self._ensure_resolution_consistency(record, tfw_path.name)

            image_path = self._resolve_image_path(directory, tfw_path)
            if image_path is None:
                logging.debug(f"Skipping {tfw_path.name}: no matching image")
                continue

            tile = Tile(name=image_path.name, image_path=image_path,
                        mask_path=self._resolve_mask_path(image_path))
            tile.x = _lround(record.translate_x / self.pixel_width)
            tile.y = _lround(-record.translate_y / self.pixel_height)
            tile.width, tile.height = self._read_size(image_path)
            self.tiles.append(tile)

        self._finalize_tiles()

        logging.info(f"Loaded {len(self.tiles)} tiles, canvas {self.canvas_size[0]}x{self.canvas_size[1]} "
                     f"@ {self.pixel_width} x {self.pixel_height}")
        return self.tiles

    def _ensure_rotation_is_zero(self, record: TfwRecord, tfw_name: str):
        if record.rotation_x != 0.0 or record.rotation_y != 0.0:
            raise ValueError(f"Expected zero rotation in {tfw_name}")

    def _ensure_resolution_consistency(self, record: TfwRecord, tfw_name: str):
        width = abs(record.scale_x)
        height = abs(record.scale_y)
        if width <= 0.0 or height <= 0.0:
            raise ValueError(f"Invalid pixel size in {tfw_name}")

        if self.pixel_width == 0.0 and self.pixel_height == 0.0:
            self.pixel_width = width
            self.pixel_height = height
            return

        if self.pixel_width != width or self.pixel_height != height:
            raise ValueError(f"Tile {tfw_name} uses a different resolution")

    def _resolve_image_path(self, directory: Path, tfw_path: Path) -> Optional[Path]:
        for extension in IMAGE_EXTENSIONS:
            candidate = directory / f"{tfw_path.stem}.{extension}"
            if candidate.exists():
                return candidate
        return None

    def _resolve_mask_path(self, image_path: Path) -> Optional[Path]:
        """Correlation mask: the 'Ort_' prefix replaced by 'PC_'."""
        if image_path.name.lower().startswith('ort_'):
            mask_path = image_path.with_name('PC_' + image_path.name[4:])
            if mask_path.exists():
                return mask_path
        return None

    def _read_size(self, image_path: Path) -> Tuple[int, int]:
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', NotGeoreferencedWarning)
            with rasterio.open(image_path) as src:
                return src.width, src.height

    def _finalize_tiles(self):
        if not self.tiles:
            raise ValueError("No TIFF images were loaded.")
        if self.pixel_width <= 0.0 or self.pixel_height <= 0.0:
            raise ValueError("Invalid pixel size metadata.")

        if self._reference is not None:
            ref_x = _lround(self._reference.translate_x / self.pixel_width)
            ref_y = _lround(-self._reference.translate_y / self.pixel_height)
            for tile in self.tiles:
                tile.x -= ref_x
                tile.y -= ref_y
            self.canvas_size = self._reference_canvas_size
            origin_x = ref_x * self.pixel_width
            origin_y = -ref_y * self.pixel_height
        else:
            min_x = min(tile.x for tile in self.tiles)
            min_y = min(tile.y for tile in self.tiles)
            for tile in self.tiles:
                tile.x -= min_x
                tile.y -= min_y
            self.canvas_size = (max(tile.x + tile.width for tile in self.tiles),
                                max(tile.y + tile.height for tile in self.tiles))
            origin_x = min_x * self.pixel_width
            origin_y = -min_y * self.pixel_height

        self.canvas_transform = Affine(self.pixel_width, 0.0, origin_x,
                                       0.0, -self.pixel_height, origin_y)

    def load_tile(self, tile: Tile) -> np.ndarray:
        """Decode the tile's pixels (HxWx3 uint8 RGB)."""
        if tile.image_path is None:
            raise ValueError("Tile has no image path")
        if not Path(tile.image_path).exists():
            raise FileNotFoundError(f"Failed to load image {tile.image_path}")
        tile.image = _read_rgb(tile.image_path)
        return tile.image

    def unload_tile(self, tile: Tile):
        tile.image = None

    def load_mask(self, tile: Tile) -> Optional[np.ndarray]:
        """Decode the tile's correlation mask, or None if it has none."""
        if tile.mask_path is None or not Path(tile.mask_path).exists():
            return None
        tile.mask = _read_rgb(tile.mask_path)
        return tile.mask

    def unload_mask(self, tile: Tile):
        tile.mask = None

    def load_generated_masks(self, tile: Tile) -> Tuple[np.ndarray, np.ndarray]:
        """
        Read the weight and blend masks written for the tile by mask generation.

        Returns:
            (weight_mask, blend_mask): HxW uint8 arrays
        """
        masks = []
        for path in (tile.weight_mask_path, tile.blend_mask_path):
            if path is None:
                raise ValueError(f"No generated masks for {tile.name}")
            mask = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
            if mask is None:
                raise FileNotFoundError(f"Failed to load generated mask {path}")
            if mask.shape != (tile.height, tile.width):
                raise ValueError(f"Generated mask {path} has shape {mask.shape}, "
                                 f"expected {(tile.height, tile.width)}")
            masks.append(mask)
        return masks[0], masks[1]
