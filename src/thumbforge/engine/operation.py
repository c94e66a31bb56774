"""Contract shared by every unit the pipeline can run."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping

    import numpy as np
    from numpy.typing import NDArray

    from thumbforge.config import Settings
    from thumbforge.engine.codec import OutputFormat
    from thumbforge.engine.metadata import MetadataBundle


class OperationStatus(StrEnum):
    NOT_ATTEMPTED = "not_attempted"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class OperationResult:
    """Summary of one operation after a pipeline run."""

    type: str
    result: bool
    output_url: str | None = None
    output_height: int | None = None
    output_width: int | None = None
    error_message: str | None = None


class Operation(Protocol):
    """A unit of work run against the pipeline's shared source image.

    Operations receive the source buffer by reference and must treat it as
    read-only; anything they derive from it is theirs.
    """

    type_name: str

    @classmethod
    def from_settings(cls, settings: Settings) -> Operation:
        """Create an operation configured with service-wide limits."""
        ...

    @property
    def status(self) -> OperationStatus:
        """Current state; moves forward only."""
        ...

    @property
    def error_message(self) -> str:
        """Human-readable reason for the error state, empty otherwise."""
        ...

    @property
    def requires_pixels(self) -> bool:
        """Whether the source must be decoded before this operation runs."""
        ...

    @property
    def wants_metadata(self) -> bool:
        """Whether the source metadata bundle should be read for this operation."""
        ...

    def setup(self, params: Mapping[str, object]) -> None:
        """Apply structured parameters. Invalid optional values are ignored."""
        ...

    def set_image(self, image: NDArray[np.uint8], metadata: MetadataBundle | None = None) -> None:
        """Hand over the shared source buffer and its metadata."""
        ...

    def run(self) -> bool:
        """Execute once; return True on success."""
        ...

    def encode(self, fmt: OutputFormat) -> bytes:
        """Encode the result.

        Raises:
            EncodeError: If the operation has not succeeded or encoding fails.
        """
        ...

    def result(self) -> OperationResult:
        """Summarize the outcome for reporting."""
        ...
