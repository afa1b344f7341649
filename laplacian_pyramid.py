"""
Laplacian and Gaussian pyramid helpers for multi-band blending.
Down/up sampling uses OpenCV's 5-tap Gaussian kernel (pyrDown/pyrUp), so odd
dimensions round up and reconstruction mirrors decomposition exactly.
"""

import cv2
import numpy as np
from typing import List


def build_laplacian_pyramid(image: np.ndarray, num_levels: int) -> List[np.ndarray]:
    """
    Decompose an image into num_levels band-pass residuals plus a low-pass base.

    Args:
        image: HxW or HxWxC array. uint8 input is decomposed into int16 bands;
            any other dtype (int16 canvas bands, float32) keeps its type.
        num_levels: Number of residual levels. The pyramid has num_levels + 1 entries.

    Returns:
        List of arrays, level 0 = finest residual, last = low-pass base
    """
    if num_levels < 0:
        raise ValueError(f"num_levels must be >= 0, got {num_levels}")

    pyramid: List[np.ndarray] = [None] * (num_levels + 1)

    if image.dtype == np.uint8:
        if num_levels == 0:
            pyramid[0] = image.astype(np.int16)
            return pyramid

        current = image
        down_next = cv2.pyrDown(image)

        for i in range(1, num_levels):
            lvl_down = cv2.pyrDown(down_next)
            lvl_up = cv2.pyrUp(down_next, dstsize=(current.shape[1], current.shape[0]))
            pyramid[i - 1] = cv2.subtract(current, lvl_up, dtype=cv2.CV_16S)

            current = down_next
            down_next = lvl_down

        lvl_up = cv2.pyrUp(down_next, dstsize=(current.shape[1], current.shape[0]))
        pyramid[num_levels - 1] = cv2.subtract(current, lvl_up, dtype=cv2.CV_16S)
        pyramid[num_levels] = down_next.astype(np.int16)
        return pyramid

    pyramid[0] = image.copy()
    for i in range(num_levels):
        pyramid[i + 1] = cv2.pyrDown(pyramid[i])

    for i in range(num_levels):
        expanded = cv2.pyrUp(pyramid[i + 1], dstsize=(pyramid[i].shape[1], pyramid[i].shape[0]))
        pyramid[i] = cv2.subtract(pyramid[i], expanded)

    return pyramid


def build_gaussian_pyramid(image: np.ndarray, num_levels: int) -> List[np.ndarray]:
    """Successively blurred and halved copies of image (no residuals)."""
    pyramid = [image]
    for _ in range(num_levels):
        pyramid.append(cv2.pyrDown(pyramid[-1]))
    return pyramid


def restore_image_from_laplacian_pyramid(pyramid: List[np.ndarray]) -> np.ndarray:
    """
    Collapse a Laplacian pyramid back into an image.

    The pyramid is modified in place: every level is replaced by the
    reconstruction at its resolution, and level 0 is returned.
    """
    if not pyramid:
        raise ValueError("Cannot restore an image from an empty pyramid")

    for i in range(len(pyramid) - 1, 0, -1):
        finer = pyramid[i - 1]
        expanded = cv2.pyrUp(pyramid[i], dstsize=(finer.shape[1], finer.shape[0]))
        pyramid[i - 1] = cv2.add(expanded, finer)

    return pyramid[0]


def pyramid_shapes(height: int, width: int, num_levels: int) -> List[tuple]:
    """(height, width) of every pyramid level, rounding odd sizes up."""
    shapes = [(height, width)]
    for _ in range(num_levels):
        h, w = shapes[-1]
        shapes.append(((h + 1) // 2, (w + 1) // 2))
    return shapes
