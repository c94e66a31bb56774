"""Exception types raised inside the thumbnailing engine.

These never escape ``Pipeline.run()`` or ``Pipeline.get_encoded()``; the
orchestrator and operations turn them into status flags plus messages.
"""

from __future__ import annotations


class ThumbforgeError(Exception):
    """Base class for engine errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SetupError(ThumbforgeError):
    """An operation descriptor could not be turned into a queued operation."""


class DecodeError(ThumbforgeError):
    """Source bytes could not be read or decoded into a pixel buffer."""


class EncodeError(ThumbforgeError):
    """A pixel buffer could not be encoded or written to disk."""


class MetadataError(ThumbforgeError):
    """EXIF/XMP/IPTC metadata could not be read or written."""
