"""Watermark compositing.

The watermark is tiled over the target starting at the top-left corner and
alpha-blended into it in place. Two blend policies exist:

* ``standard``: a constant blend factor for the whole image.
* ``adaptive``: the blend factor grows logarithmically with the brightness of
  the background pixel, between a configured minimum and maximum, so the mark
  stays subtle on dark areas and readable on bright ones.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

# log10(1 + 9) == 1, so brightness 255 maps to the configured maximum.
_NORM_FACTOR = 9.0 / 255.0


class WatermarkType(StrEnum):
    STANDARD = "standard"
    ADAPTIVE = "adaptive"


def brightness(image: NDArray[np.uint8]) -> NDArray[np.int32]:
    """Fast integer brightness approximation ``(3r + 4g + b) / 8`` of a BGR(A) image."""
    b = image[..., 0].astype(np.int32)
    g = image[..., 1].astype(np.int32)
    r = image[..., 2].astype(np.int32)
    return (r + r + r + b + g + g + g + g) >> 3


def adaptive_blend(
    pixel_brightness: NDArray[np.int32] | int,
    blend_min: float,
    blend_max: float,
) -> NDArray[np.float64] | float:
    """Blend factor in ``[blend_min, blend_max]`` for a brightness in ``[0, 255]``."""
    values = np.asarray(pixel_brightness, dtype=np.float64)
    return (blend_max - blend_min) * np.log10(1.0 + _NORM_FACTOR * values) + blend_min


def as_bgra(watermark: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Return a 4-channel view of ``watermark``; marks without alpha become fully opaque."""
    if watermark.ndim == 2:
        return cv2.cvtColor(watermark, cv2.COLOR_GRAY2BGRA)
    if watermark.shape[2] == 3:
        return cv2.cvtColor(watermark, cv2.COLOR_BGR2BGRA)
    return watermark


def tile(watermark: NDArray[np.uint8], height: int, width: int) -> NDArray[np.uint8]:
    """Repeat ``watermark`` so that pixel ``(x, y)`` samples ``(x mod w, y mod h)``."""
    rows = np.arange(height) % watermark.shape[0]
    cols = np.arange(width) % watermark.shape[1]
    return watermark[rows[:, np.newaxis], cols[np.newaxis, :]]


def composite(
    target: NDArray[np.uint8],
    watermark: NDArray[np.uint8],
    watermark_type: WatermarkType = WatermarkType.STANDARD,
    amount: float = 0.05,
    blend_min: float = 0.05,
    blend_max: float = 0.5,
) -> None:
    """Alpha-blend ``watermark`` into ``target`` in place.

    Args:
        target: HxW or HxWxC uint8 image, modified in place.
        watermark: 8-bit watermark, ideally BGRA. Tiled when smaller than ``target``.
        watermark_type: Blend policy.
        amount: Constant blend factor (0.0-1.0) for the standard policy.
        blend_min: Lower bound (0.0-1.0) of the adaptive blend factor.
        blend_max: Upper bound (0.0-1.0) of the adaptive blend factor.
    """
    if target.size == 0 or watermark.size == 0:
        return

    pixels = target if target.ndim == 3 else target[..., np.newaxis]
    height, width, channels = pixels.shape

    tiled = tile(as_bgra(watermark), height, width)
    alpha = tiled[..., 3].astype(np.float64)
    # Transparent watermark pixels leave the destination untouched.
    mask = alpha > 0
    if not mask.any():
        return

    scaled_min = blend_min / 255.0
    scaled_max = blend_max / 255.0

    if watermark_type is WatermarkType.ADAPTIVE:
        if channels >= 3:
            blend = adaptive_blend(brightness(pixels), scaled_min, scaled_max)
        else:
            blend = scaled_min
    else:
        blend = amount / 255.0

    opacity = (blend * alpha)[..., np.newaxis]

    foreground = tiled[..., :channels].astype(np.float64)
    background = pixels.astype(np.float64)
    blended = background * (1.0 - opacity) + foreground * opacity

    # uint8 conversion truncates, same as an implicit C double -> unsigned char cast.
    pixels[mask] = np.clip(blended[mask], 0.0, 255.0).astype(np.uint8)
