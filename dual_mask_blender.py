"""
Multi-band blender with separate weight and blend masks.

Conventional multi-band blending uses one mask both to weight each tile's
pyramid bands and to accumulate the normalisation weights. Here the two roles
are split:

- weight_mask: accumulated into the per-band weight pyramid (wide feathering,
  smooth brightness falloff)
- blend_mask: multiplies the tile's Laplacian bands before accumulation (sharp
  ownership boundary, no double contribution / ghosting)

A blender instance owns its canvas-sized accumulator pyramids for exactly one
session: prepare() -> feed()* -> blend().
"""

import logging
import math
from enum import Enum
from typing import List, Tuple

import cv2
import numpy as np

from laplacian_pyramid import (
    build_laplacian_pyramid,
    build_gaussian_pyramid,
    restore_image_from_laplacian_pyramid,
    pyramid_shapes,
)

WEIGHT_EPS = 1e-5
MAX_BANDS = 50
WEIGHT_TYPES = ('float32', 'fixed16')

INT16_MIN = np.iinfo(np.int16).min
INT16_MAX = np.iinfo(np.int16).max


class BlenderStateError(RuntimeError):
    """Raised when the prepare/feed/blend sequence is violated."""


class BlenderState(Enum):
    UNINITIALIZED = 'uninitialized'
    PREPARED = 'prepared'
    FEEDING = 'feeding'
    BLENDED = 'blended'


class FloatWeightPolicy:
    """
    Weights as float32 in [0, 1].

    Band contributions are summed unrounded in float32 and only rounded to
    int16 once, after division by the accumulated weight.
    """

    dtype = np.float32
    band_dtype = np.float32

    def weight_map(self, mask: np.ndarray) -> np.ndarray:
        return mask.astype(np.float32) / np.float32(255.0)

    def accumulate(self, dst: np.ndarray, dst_weight: np.ndarray, src: np.ndarray,
                   weight: np.ndarray, blend: np.ndarray):
        dst += src * blend[..., np.newaxis]
        dst_weight += weight

    def normalize(self, band: np.ndarray, weight: np.ndarray) -> np.ndarray:
        values = band / (weight[..., np.newaxis] + np.float32(WEIGHT_EPS))
        return np.clip(np.rint(values), INT16_MIN, INT16_MAX).astype(np.int16)


class FixedPointWeightPolicy:
    """
    Weights as int16 fixed point with 8 fractional bits.

    Masks keep 0 at 0 and map every positive value v to v + 1 (255 -> 256), so
    a binary mask never degenerates to a zero weight. Contributions are
    (src * blend) >> 8; normalisation is (value << 8) / (weight + 1), truncated.
    """

    dtype = np.int16
    band_dtype = np.int16

    def weight_map(self, mask: np.ndarray) -> np.ndarray:
        weights = mask.astype(np.int16)
        weights += (mask != 0).astype(np.int16)
        return weights

    def accumulate(self, dst: np.ndarray, dst_weight: np.ndarray, src: np.ndarray,
                   weight: np.ndarray, blend: np.ndarray):
        product = src.astype(np.int32) * blend.astype(np.int32)[..., np.newaxis]
        dst += (product >> 8).astype(np.int16)
        dst_weight += weight

    def normalize(self, band: np.ndarray, weight: np.ndarray) -> np.ndarray:
        scaled = band.astype(np.int32) << 8
        divisor = weight.astype(np.int32)[..., np.newaxis] + 1
        quotient = np.sign(scaled) * (np.abs(scaled) // divisor)
        return quotient.astype(np.int16)


def make_weight_policy(weight_type: str):
    if weight_type == 'float32':
        return FloatWeightPolicy()
    if weight_type == 'fixed16':
        return FixedPointWeightPolicy()
    raise ValueError(f"weight_type must be one of {WEIGHT_TYPES}, got {weight_type!r}")


def _round_up(value: int, step: int) -> int:
    return value + (step - value % step) % step


class DualMaskMultiBandBlender:
    """Multi-band blender fed with a weight mask and a blend mask per tile."""

    def __init__(self, num_bands: int = 5, weight_type: str = 'float32'):
        """
        Args:
            num_bands: Requested number of bands (1-50). The active count may be
                lower for small canvases.
            weight_type: 'float32' or 'fixed16'
        """
        if not isinstance(num_bands, (int, np.integer)) or not 1 <= num_bands <= MAX_BANDS:
            raise ValueError(f"num_bands must be an integer in [1, {MAX_BANDS}], got {num_bands!r}")

        self._policy = make_weight_policy(weight_type)
        self.weight_type = weight_type
        self.requested_num_bands = int(num_bands)
        self._num_bands = 0
        self._state = BlenderState.UNINITIALIZED

        self._final_size = (0, 0)
        self._padded_size = (0, 0)
        self._dst_pyr_laplace: List[np.ndarray] = []
        self._dst_band_weights: List[np.ndarray] = []

    @property
    def state(self) -> BlenderState:
        return self._state

    @property
    def num_bands(self) -> int:
        """Active number of bands (valid after prepare)."""
        return self._num_bands

    @property
    def padded_size(self) -> Tuple[int, int]:
        """Working (width, height), divisible by 2^num_bands."""
        return self._padded_size

    def prepare(self, width: int, height: int):
        """Allocate zeroed accumulator pyramids for a width x height canvas."""
        if self._state is not BlenderState.UNINITIALIZED:
            raise BlenderStateError(f"prepare() called in state '{self._state.value}'")
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")

        max_len = max(width, height)
        # At least one band, even for a 1x1 canvas
        self._num_bands = max(1, min(self.requested_num_bands, int(math.ceil(math.log2(max_len)))))

        step = 1 << self._num_bands
        padded_width = _round_up(width, step)
        padded_height = _round_up(height, step)

        self._final_size = (width, height)
        self._padded_size = (padded_width, padded_height)

        shapes = pyramid_shapes(padded_height, padded_width, self._num_bands)
        self._dst_pyr_laplace = [np.zeros((h, w, 3), dtype=self._policy.band_dtype) for h, w in shapes]
        self._dst_band_weights = [np.zeros((h, w), dtype=self._policy.dtype) for h, w in shapes]

        self._state = BlenderState.PREPARED

        logging.debug(f"Blender prepared: canvas {width}x{height}, working {padded_width}x{padded_height}, "
                      f"{self._num_bands} bands ({self.weight_type})")

    def estimated_memory_bytes(self) -> int:
        """Bytes held by the accumulator pyramids."""
        return sum(level.nbytes for level in self._dst_pyr_laplace) + \
            sum(level.nbytes for level in self._dst_band_weights)

    def _padded_window(self, x: int, y: int, width: int, height: int) -> Tuple[int, int, int, int]:
        """Canvas window (x0, y0, x1, y1) decomposed for a tile, aligned to 2^num_bands."""
        step = 1 << self._num_bands
        gap = 3 * step
        canvas_width, canvas_height = self._padded_size

        x0 = max(0, x - gap)
        y0 = max(0, y - gap)
        x1 = min(canvas_width, x + width + gap)
        y1 = min(canvas_height, y + height + gap)

        x0 = (x0 >> self._num_bands) << self._num_bands
        y0 = (y0 >> self._num_bands) << self._num_bands
        x1 = x0 + _round_up(x1 - x0, step)
        y1 = y0 + _round_up(y1 - y0, step)

        dx = max(x1 - canvas_width, 0)
        dy = max(y1 - canvas_height, 0)
        return x0 - dx, y0 - dy, x1 - dx, y1 - dy

    def _validate_feed(self, image: np.ndarray, weight_mask: np.ndarray, blend_mask: np.ndarray,
                       x: int, y: int):
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Tile image must be HxWx3, got shape {image.shape}")
        if image.dtype not in (np.uint8, np.int16):
            raise ValueError(f"Tile image must be uint8 or int16, got {image.dtype}")

        for name, mask in (('weight_mask', weight_mask), ('blend_mask', blend_mask)):
            if mask.dtype != np.uint8:
                raise ValueError(f"{name} must be uint8, got {mask.dtype}")
            if mask.shape != image.shape[:2]:
                raise ValueError(f"{name} shape {mask.shape} does not match image shape {image.shape[:2]}")

        width, height = self._final_size
        if x < 0 or y < 0 or x + image.shape[1] > width or y + image.shape[0] > height:
            raise ValueError(f"Tile at ({x}, {y}) of size {image.shape[1]}x{image.shape[0]} "
                             f"lies outside the {width}x{height} canvas")

    def feed(self, image: np.ndarray, weight_mask: np.ndarray, blend_mask: np.ndarray, x: int, y: int):
        """
        Add a tile's weighted bands to the accumulators.

        Args:
            image: HxWx3 tile pixels, uint8 or int16
            weight_mask: HxW uint8 mask driving weight accumulation
            blend_mask: HxW uint8 mask gating pixel contribution
            x, y: Top-left corner of the tile on the canvas
        """
        if self._state not in (BlenderState.PREPARED, BlenderState.FEEDING):
            raise BlenderStateError(f"feed() called in state '{self._state.value}'")
        self._validate_feed(image, weight_mask, blend_mask, x, y)

        height, width = image.shape[:2]
        x0, y0, x1, y1 = self._padded_window(x, y, width, height)

        top = y - y0
        left = x - x0
        bottom = y1 - y - height
        right = x1 - x - width

        image_with_border = cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_REFLECT)
        src_pyr_laplace = build_laplacian_pyramid(image_with_border, self._num_bands)

        weight_map = cv2.copyMakeBorder(self._policy.weight_map(weight_mask), top, bottom, left, right,
                                        cv2.BORDER_CONSTANT, value=0)
        weight_pyr_gauss = build_gaussian_pyramid(weight_map, self._num_bands)

        blend_map = cv2.copyMakeBorder(self._policy.weight_map(blend_mask), top, bottom, left, right,
                                       cv2.BORDER_CONSTANT, value=0)
        blend_pyr_gauss = build_gaussian_pyramid(blend_map, self._num_bands)

        # Window corners are multiples of 2^num_bands, so halving stays exact
        for i in range(self._num_bands + 1):
            region = (slice(y0, y1), slice(x0, x1))
            self._policy.accumulate(
                self._dst_pyr_laplace[i][region],
                self._dst_band_weights[i][region],
                src_pyr_laplace[i],
                weight_pyr_gauss[i],
                blend_pyr_gauss[i],
            )
            x0 //= 2
            y0 //= 2
            x1 //= 2
            y1 //= 2

        self._state = BlenderState.FEEDING

    def blend(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Normalise the accumulated bands and collapse them into the final image.

        Returns:
            (image, mask): HxWx3 int16 image and HxW uint8 validity mask (0/255),
            both cropped to the requested canvas size. Invalid pixels are zero.
        """
        if self._state not in (BlenderState.PREPARED, BlenderState.FEEDING):
            raise BlenderStateError(f"blend() called in state '{self._state.value}'")

        for i in range(self._num_bands + 1):
            self._dst_pyr_laplace[i] = self._policy.normalize(self._dst_pyr_laplace[i],
                                                              self._dst_band_weights[i])

        restored = restore_image_from_laplacian_pyramid(self._dst_pyr_laplace)

        width, height = self._final_size
        dst = restored[:height, :width].copy()
        dst_mask = np.where(self._dst_band_weights[0][:height, :width] > WEIGHT_EPS,
                            np.uint8(255), np.uint8(0))

        self._dst_pyr_laplace = []
        self._dst_band_weights = []
        self._state = BlenderState.BLENDED

        dst[dst_mask == 0] = 0
        return dst, dst_mask
