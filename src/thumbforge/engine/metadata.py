"""EXIF/XMP/IPTC metadata carried from a source image to its thumbnails.

The engine never interprets these records. They are read as opaque byte
payloads and written back verbatim into output files.
"""

from __future__ import annotations

import io
import logging
import struct
from dataclasses import dataclass
from pathlib import Path

import piexif
from PIL import Image, PngImagePlugin, UnidentifiedImageError

from thumbforge.engine.errors import MetadataError

logger = logging.getLogger(__name__)

EXIF_HEADER = b"Exif\x00\x00"
XMP_HEADER = b"http://ns.adobe.com/xap/1.0/\x00"
IPTC_HEADER = b"Photoshop 3.0\x00"
PNG_XMP_KEY = "XML:com.adobe.xmp"

_SOI = b"\xff\xd8"
_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_APP0 = 0xE0
_APP1 = 0xE1
_APP13 = 0xED
_MAX_SEGMENT_PAYLOAD = 0xFFFF - 2


@dataclass(frozen=True)
class MetadataBundle:
    """Opaque metadata records of a source image."""

    exif: bytes | None = None
    xmp: bytes | None = None
    iptc: bytes | None = None

    @property
    def empty(self) -> bool:
        return not (self.exif or self.xmp or self.iptc)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def _iptc_from_applist(image: Image.Image) -> bytes | None:
    for marker, payload in getattr(image, "applist", []):
        if marker == "APP13" and payload.startswith(IPTC_HEADER):
            return bytes(payload)
    return None


def read_metadata(source: str | bytes) -> MetadataBundle:
    """Read metadata records from a file path or encoded image bytes.

    Formats Pillow cannot open (most camera raw files) fall back to piexif,
    which understands TIFF-based containers and yields EXIF only.

    Raises:
        MetadataError: If the source cannot be parsed at all.
    """
    handle = io.BytesIO(source) if isinstance(source, bytes) else source
    try:
        with Image.open(handle) as image:
            exif = image.info.get("exif")
            xmp = image.info.get("xmp") or image.info.get(PNG_XMP_KEY)
            if isinstance(xmp, str):
                xmp = xmp.encode("utf-8")
            return MetadataBundle(exif=exif or None, xmp=xmp or None, iptc=_iptc_from_applist(image))
    except UnidentifiedImageError:
        pass
    except OSError as exc:
        raise MetadataError(f"Failed to read metadata: {exc}") from exc

    try:
        exif_dict = piexif.load(source)
        exif = piexif.dump(exif_dict)
    except (ValueError, TypeError, KeyError, OSError, struct.error) as exc:
        raise MetadataError(f"Failed to read metadata: {exc}") from exc
    return MetadataBundle(exif=exif)


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def _segment(marker: int, payload: bytes) -> bytes:
    if len(payload) > _MAX_SEGMENT_PAYLOAD:
        raise MetadataError("Metadata record too large for a JPEG segment")
    return struct.pack(">BBH", 0xFF, marker, len(payload) + 2) + payload


def _insert_jpeg_segments(data: bytes, segments: list[bytes]) -> bytes:
    """Insert ``segments`` after SOI and any leading APP0/APP1 segments."""
    pos = len(_SOI)
    while pos + 4 <= len(data) and data[pos] == 0xFF and data[pos + 1] in (_APP0, _APP1):
        (length,) = struct.unpack(">H", data[pos + 2 : pos + 4])
        pos += 2 + length
    return data[:pos] + b"".join(segments) + data[pos:]


def _exif_payload(exif: bytes) -> bytes:
    return exif if exif.startswith(EXIF_HEADER) else EXIF_HEADER + exif


def _write_jpeg(target: Path, data: bytes, bundle: MetadataBundle) -> None:
    if bundle.exif:
        output = io.BytesIO()
        piexif.insert(_exif_payload(bundle.exif), data, output)
        data = output.getvalue()

    segments: list[bytes] = []
    if bundle.xmp:
        segments.append(_segment(_APP1, XMP_HEADER + bundle.xmp))
    if bundle.iptc:
        iptc = bundle.iptc if bundle.iptc.startswith(IPTC_HEADER) else IPTC_HEADER + bundle.iptc
        segments.append(_segment(_APP13, iptc))

    target.write_bytes(_insert_jpeg_segments(data, segments) if segments else data)


def _write_png(target: Path, data: bytes, bundle: MetadataBundle) -> None:
    """Re-save a PNG with eXIf and iTXt chunks. PNG is lossless so pixels are unchanged."""
    pnginfo = PngImagePlugin.PngInfo()
    if bundle.xmp:
        pnginfo.add_itxt(PNG_XMP_KEY, bundle.xmp.decode("utf-8", errors="replace"))
    if bundle.iptc:
        logger.debug("PNG has no IPTC container; dropping IPTC for %s", target)

    with Image.open(io.BytesIO(data)) as image:
        image.load()
        options: dict[str, object] = {"pnginfo": pnginfo}
        if bundle.exif:
            options["exif"] = _exif_payload(bundle.exif)
        image.save(target, format="PNG", **options)


def _write_webp(target: Path, bundle: MetadataBundle) -> None:
    if bundle.exif:
        piexif.insert(_exif_payload(bundle.exif), str(target))
    if bundle.xmp or bundle.iptc:
        logger.debug("Only EXIF is written to WebP; dropping XMP/IPTC for %s", target)


def _reason(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


def write_metadata(path: str, bundle: MetadataBundle) -> None:
    """Write ``bundle`` into the image file at ``path``.

    The container is detected from the file itself:

    - JPEG: EXIF through piexif, XMP and IPTC spliced in as APP1/APP13 segments.
    - PNG: the file is re-saved with Pillow carrying eXIf and an XMP iTXt chunk.
    - WebP: EXIF through piexif.

    Other containers are left untouched with a warning.

    Raises:
        MetadataError: If the file cannot be read or updated.
    """
    if bundle.empty:
        return

    target = Path(path)

    try:
        data = target.read_bytes()
        if data.startswith(_SOI):
            _write_jpeg(target, data, bundle)
        elif data.startswith(_PNG_SIGNATURE):
            _write_png(target, data, bundle)
        elif data[:4] == b"RIFF" and data[8:12] == b"WEBP":
            _write_webp(target, bundle)
        else:
            logger.warning("Metadata write-back is not supported for %s; output left without metadata", path)
            return
    except MetadataError:
        raise
    except (OSError, ValueError, piexif.InvalidImageDataError) as exc:
        raise MetadataError(f"Failed to write metadata: {_reason(exc)}") from exc

    logger.debug("Wrote metadata to %s", path)
