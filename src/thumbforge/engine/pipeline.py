"""Pipeline orchestrator: decode a source once, run queued operations in order.

The pipeline owns the decoded source buffer and every queued operation.
Operations see the source by reference and never modify it. The run stops at
the first failing operation; earlier results stay retrievable and later
operations stay ``not_attempted``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from thumbforge.engine import codec
from thumbforge.engine.errors import DecodeError, EncodeError, MetadataError, SetupError
from thumbforge.engine.metadata import read_metadata
from thumbforge.engine.resize import ResizeOperation
from thumbforge.engine.urls import resolve_url

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType

    import numpy as np
    from numpy.typing import NDArray

    from thumbforge.config import Settings
    from thumbforge.engine.codec import OutputFormat
    from thumbforge.engine.metadata import MetadataBundle
    from thumbforge.engine.operation import Operation, OperationResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Operation registry
# ---------------------------------------------------------------------------

OPERATION_REGISTRY: dict[str, type[ResizeOperation]] = {
    ResizeOperation.type_name: ResizeOperation,
}


def create_operation(descriptor: object, settings: Settings | None = None) -> Operation:
    """Build and set up an operation from a ``{"type": ..., "params": {...}}`` descriptor.

    Raises:
        SetupError: If the descriptor is malformed or its type is unknown.
    """
    if not isinstance(descriptor, Mapping):
        raise SetupError("Operation must be an object")
    if "type" not in descriptor:
        raise SetupError("Missing operation type")
    if "params" not in descriptor:
        raise SetupError("Missing operation params")

    params = descriptor["params"]
    if not isinstance(params, Mapping):
        raise SetupError("Operation params must be an object")

    operation_cls = OPERATION_REGISTRY.get(str(descriptor["type"]))
    if operation_cls is None:
        raise SetupError("Operation not supported")

    operation = operation_cls.from_settings(settings) if settings is not None else operation_cls()
    operation.setup(params)
    return operation


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class Pipeline:
    """Runs an ordered queue of operations against one source image."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings

        self._input_path: str | None = None
        self._source_data: bytes | None = None
        self._source_image: NDArray[np.uint8] | None = None
        self._metadata: MetadataBundle | None = None
        self._operations: list[Operation] = []

        self.result = False
        self.error_message = ""
        self.total_operations = 0
        self.failed_operations = 0
        self._ran = False

    def __enter__(self) -> Pipeline:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # -- Setup ----------------------------------------------------------------

    def set_input_url(self, input_url: str) -> bool:
        path = resolve_url(input_url)
        if not path:
            self.result = False
            self.error_message = "Invalid input url"
            return False
        self._input_path = path
        return True

    def set_source_data(self, data: bytes) -> None:
        """Use already-loaded encoded bytes (e.g. an upload) as the source."""
        self._source_data = data

    def set_source_image(self, image: NDArray[np.uint8]) -> None:
        """Use an already-decoded buffer as the source."""
        self._source_image = codec.to_8bit(image)

    @property
    def source_image(self) -> NDArray[np.uint8] | None:
        return self._source_image

    @property
    def operations(self) -> tuple[Operation, ...]:
        return tuple(self._operations)

    def add_operation(self, operation: Operation) -> None:
        self._operations.append(operation)

    def add_resize_operation(self, params: Mapping[str, object]) -> ResizeOperation:
        operation = ResizeOperation.from_settings(self._settings) if self._settings is not None else ResizeOperation()
        operation.setup(params)
        self._operations.append(operation)
        return operation

    def parse_operations(self, descriptors: Sequence[object]) -> bool:
        """Queue operations from descriptors; all or nothing.

        On failure ``error_message`` names the 1-based index of the offending
        descriptor and nothing is queued.
        """
        parsed: list[Operation] = []
        for index, descriptor in enumerate(descriptors, start=1):
            try:
                parsed.append(create_operation(descriptor, self._settings))
            except SetupError as exc:
                self.error_message = f"Could not parse operation {index} - {exc.message}"
                return False

        self._operations.extend(parsed)
        return True

    # -- Run ------------------------------------------------------------------

    @property
    def decode_required(self) -> bool:
        return any(operation.requires_pixels for operation in self._operations)

    def _extract(self) -> None:
        """Load source bytes, decode pixels and read metadata as the queue requires.

        Raises:
            DecodeError: If the source cannot be read or decoded.
        """
        data = self._source_data
        if data is None and self._input_path is not None:
            data = codec.read_bytes(self._input_path)
        if data is None:
            return
        if not data:
            raise DecodeError("Failed to extract image")

        if self.decode_required and self._source_image is None:
            self._source_image = codec.decode(data)
            logger.info("Decoded source image %sx%s", self._source_image.shape[1], self._source_image.shape[0])

        if any(operation.wants_metadata for operation in self._operations):
            try:
                self._metadata = read_metadata(data)
            except MetadataError as exc:
                logger.warning("Could not read source metadata: %s", exc.message)

    def run(self) -> bool:
        """Extract the source and run every queued operation until one fails.

        A pipeline runs once; later calls return the first outcome.
        """
        if self._ran:
            logger.warning("Pipeline already ran; returning previous result")
            return self.result
        self._ran = True

        try:
            self._extract()
        except DecodeError as exc:
            self.result = False
            self.error_message = exc.message
            return False

        if self.decode_required and (self._source_image is None or self._source_image.size == 0):
            self.result = False
            self.error_message = "Input image data is empty"
            return False

        self.total_operations = len(self._operations)
        logger.info("Running %s operation(s)", self.total_operations)

        for index, operation in enumerate(self._operations):
            if self._source_image is not None:
                operation.set_image(self._source_image, self._metadata)

            if not operation.run():
                self.failed_operations += 1
                self.error_message = operation.error_message
                logger.info("Operation %s failed, stopping pipeline: %s", index, operation.error_message)
                break

        self.result = self.failed_operations == 0
        return self.result

    # -- Results --------------------------------------------------------------

    def get_encoded(self, operation_index: int, fmt: OutputFormat) -> bytes | None:
        """Encode the output of one operation.

        Returns:
            The encoded bytes, or None with ``error_message`` set.
        """
        label = codec.FORMAT_REGISTRY[fmt].label

        if not 0 <= operation_index < len(self._operations):
            self.error_message = f"Invalid operation to {label} encode"
            return None

        try:
            return self._operations[operation_index].encode(fmt)
        except EncodeError as exc:
            logger.debug("Encoding operation %s failed: %s", operation_index, exc.message)
            self.error_message = f"Could not encode {label}"
            return None

    def results(self) -> list[OperationResult]:
        return [operation.result() for operation in self._operations]

    def close(self) -> None:
        """Release every owned operation and the source buffers."""
        self._operations.clear()
        self._source_image = None
        self._source_data = None
        self._metadata = None
