"""Image decoding and encoding.

Camera raw files go through LibRaw (``rawpy``); everything else through
OpenCV. Buffers are numpy uint8 arrays in OpenCV's native BGR(A) order.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import cv2
import numpy as np
import rawpy

from thumbforge.engine.errors import DecodeError, EncodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Output formats
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    JPEG2000 = "jpeg2000"


@dataclass(frozen=True)
class FormatSpec:
    """Static encoder details for one output format."""

    label: str
    extension: str
    media_type: str
    uses_quality: bool


FORMAT_REGISTRY: dict[OutputFormat, FormatSpec] = {
    OutputFormat.JPEG: FormatSpec(label="JPEG", extension=".jpg", media_type="image/jpeg", uses_quality=True),
    OutputFormat.PNG: FormatSpec(label="PNG", extension=".png", media_type="image/png", uses_quality=False),
    OutputFormat.WEBP: FormatSpec(label="WebP", extension=".webp", media_type="image/webp", uses_quality=True),
    OutputFormat.JPEG2000: FormatSpec(label="JPEG 2000", extension=".jp2", media_type="image/jp2", uses_quality=False),
}

_EXTENSION_FORMATS: dict[str, OutputFormat] = {
    **{spec.extension: fmt for fmt, spec in FORMAT_REGISTRY.items()},
    ".jpeg": OutputFormat.JPEG,
    ".jpe": OutputFormat.JPEG,
}


def can_encode(fmt: OutputFormat) -> bool:
    """Whether the installed OpenCV build ships a writer for ``fmt``."""
    return bool(cv2.haveImageWriter(FORMAT_REGISTRY[fmt].extension))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def read_bytes(path: str) -> bytes:
    """Read a whole source file into memory.

    Raises:
        DecodeError: If the file cannot be read or is empty.
    """
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise DecodeError("Failed to extract image") from exc
    if not data:
        raise DecodeError("Failed to extract image")
    return data


def to_8bit(image: NDArray[np.generic]) -> NDArray[np.uint8]:
    """Down-sample deeper buffers to 8 bits per channel."""
    if image.dtype == np.uint8:
        return image
    if np.issubdtype(image.dtype, np.floating):
        scaled = image.astype(np.float64) * 255.0
    else:
        scaled = image.astype(np.float64) / 256.0
    return np.clip(np.rint(scaled), 0, 255).astype(np.uint8)


def decode_raw(data: bytes) -> NDArray[np.uint8] | None:
    """Demosaic a camera raw buffer, or return None when ``data`` is not raw."""
    try:
        with rawpy.imread(io.BytesIO(data)) as raw:
            rgb = raw.postprocess(use_camera_wb=True, output_bps=8)
    except (rawpy.LibRawFileUnsupportedError, rawpy.LibRawIOError):
        return None
    except rawpy.LibRawError as exc:
        raise DecodeError(f"Failed to decode raw image: {exc}") from exc

    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)


def decode(data: bytes) -> NDArray[np.uint8]:
    """Decode encoded image bytes into an 8-bit BGR(A) buffer.

    Raw decoding is attempted first. Other formats are decoded unchanged:
    alpha is kept and EXIF orientation is not applied.

    Raises:
        DecodeError: If nothing could be decoded.
    """
    if not data:
        raise DecodeError("Failed to extract image")

    image = decode_raw(data)
    if image is not None:
        logger.debug("Decoded camera raw image %sx%s", image.shape[1], image.shape[0])
        return image

    try:
        decoded = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    except cv2.error as exc:
        raise DecodeError(f"Failed to decode image: {exc}") from exc

    if decoded is None or decoded.size == 0:
        raise DecodeError("Failed to extract image")

    return to_8bit(decoded)


def load_image(path: str) -> NDArray[np.uint8] | None:
    """Read an image file unchanged (alpha kept), or None if it cannot be read."""
    image = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if image is None or image.size == 0:
        return None
    return to_8bit(image)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _encode_params(fmt: OutputFormat, quality: int) -> list[int]:
    if fmt is OutputFormat.JPEG:
        return [cv2.IMWRITE_JPEG_QUALITY, quality]
    if fmt is OutputFormat.WEBP:
        return [cv2.IMWRITE_WEBP_QUALITY, quality]
    return []


def encode(image: NDArray[np.uint8], fmt: OutputFormat, quality: int = 92) -> bytes:
    """Encode ``image`` to ``fmt``.

    Raises:
        EncodeError: If the buffer is empty or the encoder rejects it.
    """
    spec = FORMAT_REGISTRY[fmt]
    if image is None or image.size == 0:
        raise EncodeError(f"Could not encode {spec.label}")

    try:
        ok, buffer = cv2.imencode(spec.extension, image, _encode_params(fmt, quality))
    except cv2.error as exc:
        raise EncodeError(f"Could not encode {spec.label}: {exc}") from exc

    if not ok:
        raise EncodeError(f"Could not encode {spec.label}")
    return buffer.tobytes()


def format_for_path(path: str) -> OutputFormat | None:
    """Output format implied by the extension of ``path``, if it is one we know."""
    return _EXTENSION_FORMATS.get(Path(path).suffix.lower())


def write(path: str, image: NDArray[np.uint8], quality: int = 92) -> None:
    """Write ``image`` to ``path``; the format follows the file extension.

    ``quality`` applies to JPEG and WebP outputs only.

    Raises:
        EncodeError: If OpenCV cannot write the file.
    """
    fmt = format_for_path(path)
    params = _encode_params(fmt, quality) if fmt is not None else []
    try:
        ok = cv2.imwrite(path, image, params)
    except cv2.error as exc:
        raise EncodeError("Failed to write output image") from exc

    if not ok:
        raise EncodeError("Failed to write output image")
