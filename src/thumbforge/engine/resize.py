"""Resize operation: crop, resample, sharpen, watermark, write.

Parameter handling is deliberately lenient. :func:`validate_param` is a pure
function that either accepts a raw value (coerced to its proper type) or
rejects it; :meth:`ResizeOperation.setup` applies accepted values and keeps
the current value for rejected ones. Required fields that are missing or
malformed therefore only surface as errors when the operation runs.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

import cv2

from thumbforge.engine import codec
from thumbforge.engine.errors import EncodeError, MetadataError
from thumbforge.engine.geometry import (
    GRAVITY_ALIASES,
    Gravity,
    ResizeMode,
    compute_geometry,
    is_pass_through,
)
from thumbforge.engine.metadata import write_metadata
from thumbforge.engine.operation import OperationResult, OperationStatus
from thumbforge.engine.urls import resolve_url, to_file_url
from thumbforge.engine.watermark import WatermarkType, composite

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from thumbforge.config import Settings
    from thumbforge.engine.codec import OutputFormat
    from thumbforge.engine.metadata import MetadataBundle

logger = logging.getLogger(__name__)

DEFAULT_MAX_PIXELS = 100_000_000


@dataclass
class ResizeParameters:
    """Settings of one resize operation. Only changed during setup."""

    mode: ResizeMode = ResizeMode.INVALID
    height: int = 0
    width: int = 0
    quality: int = 92
    gravity: Gravity = Gravity.CENTER
    pre_filter: bool = False
    sharpen_amount: int = 0
    sharpen_radius: float = 0.0
    preserve_meta: bool = False
    watermark_path: str | None = None
    watermark_type: WatermarkType = WatermarkType.STANDARD
    watermark_amount: float = 0.05
    watermark_min: float = 0.05
    watermark_max: float = 0.5
    output_path: str | None = None


# ---------------------------------------------------------------------------
# Coercion of raw structured values
# ---------------------------------------------------------------------------


def _as_uint(raw: object) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw >= 0 else None
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() and raw >= 0 else None
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None


def _as_float(raw: object) -> float | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    return value if math.isfinite(value) else None


def _as_bool(raw: object) -> bool | None:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0"):
            return False
    return None


def _as_str(raw: object) -> str | None:
    return raw if isinstance(raw, str) else None


# ---------------------------------------------------------------------------
# Field validators: raw value -> accepted value, or None when rejected
# ---------------------------------------------------------------------------


def _validate_type(raw: object) -> ResizeMode | None:
    value = _as_str(raw)
    if value is None:
        return None
    try:
        return ResizeMode(value.lower())
    except ValueError:
        # Unknown names are recorded as invalid and fail at run time.
        return ResizeMode.INVALID


def _validate_gravity(raw: object) -> Gravity | None:
    value = _as_str(raw)
    if value is None:
        return None
    value = value.lower()
    if value in GRAVITY_ALIASES:
        return GRAVITY_ALIASES[value]
    try:
        return Gravity(value)
    except ValueError:
        return None


def _validate_quality(raw: object) -> int | None:
    value = _as_uint(raw)
    return value if value is not None and value <= 100 else None


def _validate_sharpen_amount(raw: object) -> int | None:
    value = _as_uint(raw)
    return value if value is not None and value <= 1000 else None


def _validate_sharpen_radius(raw: object) -> float | None:
    value = _as_float(raw)
    return value if value is not None and 0.0 < value < 10.0 else None


def _validate_unit_interval(raw: object) -> float | None:
    value = _as_float(raw)
    return value if value is not None and 0.0 <= value <= 1.0 else None


def _validate_watermark_type(raw: object) -> WatermarkType | None:
    value = _as_str(raw)
    if value is None:
        return None
    try:
        return WatermarkType(value.lower())
    except ValueError:
        return None


def _validate_url(raw: object) -> str | None:
    value = _as_str(raw)
    if not value:
        return None
    return resolve_url(value) or None


def _validate_watermark_range(raw: object) -> tuple[float, float] | None:
    if not isinstance(raw, (tuple, list)) or len(raw) != 2:
        return None
    low = _validate_unit_interval(raw[0])
    high = _validate_unit_interval(raw[1])
    if low is None or high is None or high < low:
        return None
    return (low, high)


# Structured field name -> (ResizeParameters attribute, validator)
_FIELDS: dict[str, tuple[str, Callable[[object], object | None]]] = {
    "type": ("mode", _validate_type),
    "height": ("height", _as_uint),
    "width": ("width", _as_uint),
    "output_url": ("output_path", _validate_url),
    "gravity": ("gravity", _validate_gravity),
    "preserve_meta": ("preserve_meta", _as_bool),
    "quality": ("quality", _validate_quality),
    "pre_filter": ("pre_filter", _as_bool),
    "sharpen_amount": ("sharpen_amount", _validate_sharpen_amount),
    "sharpen_radius": ("sharpen_radius", _validate_sharpen_radius),
    "watermark_type": ("watermark_type", _validate_watermark_type),
    "watermark_url": ("watermark_path", _validate_url),
    "watermark_amount": ("watermark_amount", _validate_unit_interval),
}

WATERMARK_RANGE = "watermark_range"


def validate_param(field: str, raw: object) -> tuple[object | None, bool]:
    """Validate one structured resize parameter.

    ``watermark_range`` takes a ``(min, max)`` pair since the bounds are
    only meaningful together.

    Returns:
        ``(value, True)`` with the coerced value when accepted,
        ``(None, False)`` when rejected or the field is unknown.
    """
    if field == WATERMARK_RANGE:
        pair = _validate_watermark_range(raw)
        return (pair, pair is not None)

    entry = _FIELDS.get(field)
    if entry is None:
        return (None, False)

    value = entry[1](raw)
    return (value, value is not None)


# ---------------------------------------------------------------------------
# Operation
# ---------------------------------------------------------------------------


class ResizeOperation:
    """Produces one resized (and optionally sharpened and watermarked) image."""

    type_name = "resize"

    def __init__(self, max_pixels: int = DEFAULT_MAX_PIXELS) -> None:
        self.params = ResizeParameters()
        self._max_pixels = max_pixels

        self._status = OperationStatus.NOT_ATTEMPTED
        self._error_message = ""

        self._image: NDArray[np.uint8] | None = None
        self._metadata: MetadataBundle | None = None
        self._final: NDArray[np.uint8] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ResizeOperation:
        return cls(max_pixels=settings.max_resize_pixels)

    # -- Setup ----------------------------------------------------------------

    def apply(self, field: str, raw: object) -> bool:
        """Set a single structured parameter; returns whether it was accepted."""
        value, accepted = validate_param(field, raw)
        if not accepted:
            return False

        if field == WATERMARK_RANGE:
            self.params.watermark_min, self.params.watermark_max = value  # type: ignore[misc]
        else:
            setattr(self.params, _FIELDS[field][0], value)
        return True

    def setup(self, params: Mapping[str, object]) -> None:
        for field in _FIELDS:
            if field in params and not self.apply(field, params[field]):
                logger.debug("Ignoring invalid resize parameter %s=%r", field, params[field])

        if "watermark_min" in params and "watermark_max" in params:
            self.apply(WATERMARK_RANGE, (params["watermark_min"], params["watermark_max"]))

    def set_image(self, image: NDArray[np.uint8], metadata: MetadataBundle | None = None) -> None:
        self._image = image
        self._metadata = metadata

    # -- State ----------------------------------------------------------------

    @property
    def status(self) -> OperationStatus:
        return self._status

    @property
    def error_message(self) -> str:
        return self._error_message

    @property
    def requires_pixels(self) -> bool:
        return True

    @property
    def wants_metadata(self) -> bool:
        return self.params.preserve_meta and self.params.output_path is not None

    @property
    def output_image(self) -> NDArray[np.uint8] | None:
        """The final buffer after a successful run."""
        return self._final if self._status is OperationStatus.SUCCESS else None

    def _fail(self, message: str) -> bool:
        self._status = OperationStatus.ERROR
        self._error_message = message
        logger.info("Resize failed: %s", message)
        return False

    def _precondition_error(self) -> str | None:
        image = self._image
        p = self.params

        if image is None or image.size == 0:
            return "Input image data is empty"
        if p.height == 0:
            return "Height cannot be 0"
        if p.width == 0:
            return "Width cannot be 0"
        if p.height * p.width > self._max_pixels:
            return "Desired resize dimensions exceed maximum"
        if p.mode is ResizeMode.INVALID:
            return "Invalid resize type"
        return None

    # -- Run ------------------------------------------------------------------

    def run(self) -> bool:
        """Run the resize once.

        A second call does not re-run anything and reports the first outcome.
        """
        if self._status is not OperationStatus.NOT_ATTEMPTED:
            logger.warning("Resize operation already ran (status=%s)", self._status)
            return self._status is OperationStatus.SUCCESS

        self._status = OperationStatus.PENDING

        message = self._precondition_error()
        if message is not None:
            return self._fail(message)

        try:
            final = self._render(self._image)
        except cv2.error as exc:
            return self._fail(f"Image processing failed: {exc}")

        p = self.params
        if p.output_path:
            try:
                codec.write(p.output_path, final, p.quality)
            except EncodeError as exc:
                return self._fail(exc.message)

            if p.preserve_meta and self._metadata is not None and not self._metadata.empty:
                try:
                    write_metadata(p.output_path, self._metadata)
                except MetadataError as exc:
                    return self._fail(exc.message)

        self._final = final
        self._status = OperationStatus.SUCCESS
        return True

    def _render(self, image: NDArray[np.uint8]) -> NDArray[np.uint8]:
        p = self.params
        source_height, source_width = image.shape[:2]

        if is_pass_through(source_height, source_width, p.height, p.width):
            final = image.copy()
        else:
            geometry = compute_geometry(p.mode, source_height, source_width, p.height, p.width, p.gravity)
            logger.debug("Resize %s: %s -> %sx%s", p.mode, geometry.crop, geometry.width, geometry.height)

            crop = geometry.crop
            to_resize = image[crop.y : crop.y + crop.height, crop.x : crop.x + crop.width]

            if p.pre_filter:
                # GaussianBlur allocates a new buffer; the shared source stays untouched.
                to_resize = cv2.GaussianBlur(to_resize, (0, 0), to_resize.shape[1] / 1000.0)

            resized = cv2.resize(to_resize, (geometry.width, geometry.height), interpolation=cv2.INTER_AREA)

            if p.sharpen_amount:
                blurred = cv2.GaussianBlur(resized, (0, 0), p.sharpen_radius)
                weight = p.sharpen_amount / 100.0
                final = cv2.addWeighted(resized, 1.0 + weight, blurred, -weight, 0)
            else:
                final = resized

        if p.watermark_path:
            self._apply_watermark(final)

        return final

    def _apply_watermark(self, final: NDArray[np.uint8]) -> None:
        p = self.params
        watermark = codec.load_image(p.watermark_path) if p.watermark_path else None
        if watermark is None:
            logger.warning("Watermark %s could not be read; skipping", p.watermark_path)
            return

        composite(
            final,
            watermark,
            watermark_type=p.watermark_type,
            amount=p.watermark_amount,
            blend_min=p.watermark_min,
            blend_max=p.watermark_max,
        )

    # -- Results --------------------------------------------------------------

    def encode(self, fmt: OutputFormat) -> bytes:
        if self._status is not OperationStatus.SUCCESS or self._final is None:
            raise EncodeError(f"Could not encode {codec.FORMAT_REGISTRY[fmt].label}: resize has not succeeded")
        return codec.encode(self._final, fmt, self.params.quality)

    def result(self) -> OperationResult:
        output_url = to_file_url(self.params.output_path) if self.params.output_path else None

        if self._status is OperationStatus.SUCCESS and self._final is not None:
            return OperationResult(
                type=self.type_name,
                result=True,
                output_url=output_url,
                output_height=int(self._final.shape[0]),
                output_width=int(self._final.shape[1]),
            )

        return OperationResult(
            type=self.type_name,
            result=False,
            output_url=output_url,
            error_message=self._error_message or None,
        )
