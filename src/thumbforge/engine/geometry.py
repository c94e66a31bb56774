"""Resize geometry: crop rectangles and target sizes for each resize mode.

Everything here is pure. Functions take source dimensions plus the requested
dimensions and return a :class:`Geometry` describing which part of the source
to resample and how big the result should be.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum


class ResizeMode(StrEnum):
    FIXED_WIDTH = "width"
    FIXED_HEIGHT = "height"
    SQUARE = "square"
    FILL = "fill"
    INVALID = "invalid"


class Gravity(StrEnum):
    CENTER = "center"
    NORTH = "north"
    SOUTH = "south"
    EAST = "east"
    WEST = "west"
    NORTHEAST = "northeast"
    NORTHWEST = "northwest"
    SOUTHEAST = "southeast"
    SOUTHWEST = "southwest"


GRAVITY_ALIASES: dict[str, Gravity] = {
    "c": Gravity.CENTER,
    "n": Gravity.NORTH,
    "s": Gravity.SOUTH,
    "e": Gravity.EAST,
    "w": Gravity.WEST,
    "ne": Gravity.NORTHEAST,
    "nw": Gravity.NORTHWEST,
    "se": Gravity.SOUTHEAST,
    "sw": Gravity.SOUTHWEST,
}


@dataclass(frozen=True)
class CropRect:
    """A crop region in source pixel coordinates."""

    x: int
    y: int
    width: int
    height: int

    @classmethod
    def full(cls, source_height: int, source_width: int) -> CropRect:
        return cls(0, 0, source_width, source_height)


@dataclass(frozen=True)
class Geometry:
    """Crop region to resample and the size to resample it to."""

    crop: CropRect
    height: int
    width: int


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (values here are never negative)."""
    return int(math.floor(value + 0.5))


def aspect_height(width: int, aspect: float) -> int:
    return max(1, round_half_up(width * aspect))


def aspect_width(height: int, aspect: float) -> int:
    return max(1, round_half_up(height / aspect))


# ---------------------------------------------------------------------------
# Per-mode computations
# ---------------------------------------------------------------------------


def compute_fixed_width(source_height: int, source_width: int, height: int, width: int) -> Geometry:
    """Width is authoritative; height is only an upper bound."""
    aspect = source_height / source_width

    resize_width = width
    resize_height = aspect_height(resize_width, aspect)

    if resize_height > height:
        resize_height = height
        resize_width = aspect_width(resize_height, aspect)

    return Geometry(CropRect.full(source_height, source_width), resize_height, resize_width)


def compute_fixed_height(source_height: int, source_width: int, height: int, width: int) -> Geometry:
    """Height is authoritative; width is only an upper bound."""
    aspect = source_height / source_width

    resize_height = height
    resize_width = aspect_width(resize_height, aspect)

    if resize_width > width:
        resize_width = width
        resize_height = aspect_height(resize_width, aspect)

    return Geometry(CropRect.full(source_height, source_width), resize_height, resize_width)


def compute_square(source_height: int, source_width: int, height: int, width: int) -> Geometry:
    """Centered square crop along the longer axis, resized to ``width`` x ``width``.

    The requested height is ignored.
    """
    if source_height == source_width:
        crop = CropRect.full(source_height, source_width)
    elif source_height > source_width:
        y = round_half_up((source_height - source_width) / 2.0)
        crop = CropRect(0, y, source_width, source_width)
    else:
        x = round_half_up((source_width - source_height) / 2.0)
        crop = CropRect(x, 0, source_height, source_height)

    return Geometry(crop, width, width)


def compute_fill(
    source_height: int,
    source_width: int,
    height: int,
    width: int,
    gravity: Gravity = Gravity.CENTER,
) -> Geometry:
    """Crop to the destination aspect ratio, anchored by ``gravity``, and fill ``width`` x ``height``."""
    dest_aspect = height / width

    xf = width / source_width
    yf = height / source_height

    if xf > yf:
        crop_width = source_width
        crop_height = min(source_height, aspect_height(crop_width, dest_aspect))
    else:
        crop_height = source_height
        crop_width = min(source_width, aspect_width(crop_height, dest_aspect))

    slack_x = source_width - crop_width
    slack_y = source_height - crop_height

    offsets: dict[Gravity, tuple[int, int]] = {
        Gravity.CENTER: (slack_x // 2, slack_y // 2),
        Gravity.NORTH: (slack_x // 2, 0),
        Gravity.SOUTH: (slack_x // 2, slack_y),
        Gravity.WEST: (0, slack_y // 2),
        Gravity.EAST: (slack_x, slack_y // 2),
        Gravity.NORTHWEST: (0, 0),
        Gravity.NORTHEAST: (slack_x, 0),
        Gravity.SOUTHWEST: (0, slack_y),
        Gravity.SOUTHEAST: (slack_x, slack_y),
    }
    crop_x, crop_y = offsets[gravity]

    return Geometry(CropRect(crop_x, crop_y, crop_width, crop_height), height, width)


def compute_geometry(
    mode: ResizeMode,
    source_height: int,
    source_width: int,
    height: int,
    width: int,
    gravity: Gravity = Gravity.CENTER,
) -> Geometry:
    """Dispatch to the computation for ``mode``.

    Raises:
        ValueError: If ``mode`` is :attr:`ResizeMode.INVALID`.
    """
    if mode is ResizeMode.FIXED_WIDTH:
        return compute_fixed_width(source_height, source_width, height, width)
    if mode is ResizeMode.FIXED_HEIGHT:
        return compute_fixed_height(source_height, source_width, height, width)
    if mode is ResizeMode.SQUARE:
        return compute_square(source_height, source_width, height, width)
    if mode is ResizeMode.FILL:
        return compute_fill(source_height, source_width, height, width, gravity)
    raise ValueError(f"Unsupported resize mode: {mode}")


def is_pass_through(source_height: int, source_width: int, height: int, width: int) -> bool:
    """True when the requested size already matches the source, so no resampling is needed."""
    return source_height == height and source_width == width
