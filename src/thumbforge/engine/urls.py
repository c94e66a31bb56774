"""Resolution of input, output, and watermark references to local paths."""

from __future__ import annotations

FILE_SOURCE = "file://"


def resolve_url(url: str) -> str:
    """Turn a reference string into a local filesystem path.

    Everything after a ``file://`` marker is the path. References without the
    marker are assumed to already be local paths. Other schemes (object
    stores, HTTP) would be resolved here.
    """
    pos = url.find(FILE_SOURCE)
    if pos != -1:
        return url[pos + len(FILE_SOURCE) :]
    return url


def to_file_url(path: str) -> str:
    """Inverse of :func:`resolve_url` for reporting output locations."""
    return FILE_SOURCE + path
