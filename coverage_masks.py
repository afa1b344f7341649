"""
Usability and coverage masks for orthophoto tiles.

A usability mask marks which pixels of a tile carry data (255) and which must
be excluded (0). The coverage builder softens it by ramping from 0 at every
exclusion and at the tile border up to 255 at feather-radius distance.
"""

import cv2
import numpy as np
from typing import Optional

from defaults import DEFAULT_FEATHER_RADIUS

MAGENTA = (255, 0, 255)


def binarize(mask: np.ndarray) -> np.ndarray:
    """Normalise mask polarity: non-zero -> 255, zero -> 0."""
    return np.where(mask != 0, np.uint8(255), np.uint8(0))


def usability_from_mask_image(mask_image: np.ndarray) -> np.ndarray:
    """
    Convert a correlation mask image into a usability mask.

    Dark pixels (grey < 128) are usable, light pixels are masked out.
    """
    gray = mask_image
    if gray.ndim == 3:
        gray = cv2.cvtColor(gray[..., :3], cv2.COLOR_RGB2GRAY)
    return np.where(gray < 128, np.uint8(255), np.uint8(0))


def usability_from_magenta(image: np.ndarray) -> np.ndarray:
    """Pure magenta pixels are nodata in the source tiles."""
    magenta = np.all(image[..., :3] == np.array(MAGENTA, dtype=image.dtype), axis=-1)
    return np.where(magenta, np.uint8(0), np.uint8(255))


def build_usability_mask(image: np.ndarray, loaded_mask: Optional[np.ndarray] = None) -> np.ndarray:
    """Usability from the tile's mask image when present, magenta detection otherwise."""
    if loaded_mask is not None:
        if loaded_mask.shape[:2] != image.shape[:2]:
            raise ValueError(f"Mask shape {loaded_mask.shape[:2]} does not match image shape {image.shape[:2]}")
        return usability_from_mask_image(loaded_mask)
    return usability_from_magenta(image)


def _distance_to_zero(mask: np.ndarray) -> np.ndarray:
    # distanceTransform has no zero pixel to measure from on a full mask
    if not np.any(mask == 0):
        return np.full(mask.shape, np.inf, dtype=np.float32)
    return cv2.distanceTransform(mask, cv2.DIST_L2, cv2.DIST_MASK_PRECISE)


def feather_mask(mask: np.ndarray, radius: float = DEFAULT_FEATHER_RADIUS, sharp: bool = False,
                 include_border: bool = True) -> np.ndarray:
    """
    Soften a binary mask by distance to exclusions and to the image border.

    Args:
        mask: HxW mask, 0 = excluded, anything else = usable
        radius: Feather radius in pixels
        sharp: Return the binary mask without feathering
        include_border: Also ramp down toward the outermost rows and columns

    Returns:
        HxW uint8 mask in [0, 255]
    """
    binary = binarize(mask)
    if sharp or radius <= 1.0:
        return binary

    distance = _distance_to_zero(binary)

    if include_border:
        border = np.full(binary.shape, 255, dtype=np.uint8)
        border[0, :] = 0
        border[-1, :] = 0
        border[:, 0] = 0
        border[:, -1] = 0
        distance = np.minimum(distance, cv2.distanceTransform(border, cv2.DIST_L2, cv2.DIST_MASK_PRECISE))

    ramp = np.minimum(distance / float(radius), 1.0)
    feathered = np.rint(ramp * 255.0).astype(np.uint8)
    feathered[binary == 0] = 0
    return feathered


def build_coverage_mask(image: np.ndarray, loaded_mask: Optional[np.ndarray] = None,
                        radius: float = DEFAULT_FEATHER_RADIUS, sharp: bool = False) -> np.ndarray:
    """Usability mask of a tile, feathered toward exclusions and tile edges."""
    return feather_mask(build_usability_mask(image, loaded_mask), radius, sharp)


def fill_excluded_pixels(image: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """
    Replace excluded pixels with the mean colour of the usable ones.

    Keeps nodata colours (magenta) out of the reflected borders and low bands.
    """
    usable = mask != 0
    if not np.any(usable) or np.all(usable):
        return image
    filled = image.copy()
    mean_color = cv2.mean(image, mask=usable.astype(np.uint8))[:image.shape[2]]
    filled[~usable] = np.rint(mean_color).astype(image.dtype)
    return filled
