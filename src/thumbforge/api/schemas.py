"""Pydantic request/response schemas for the Thumbforge API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class PipelineRequest(BaseModel):
    """A source image and the operations to run against it.

    Operation descriptors are passed through untouched; the engine validates
    them so that setup errors carry the index of the offending entry.
    """

    input_url: str = Field(description="Source image, 'file:///path' or a bare local path")
    operations: list[Any] = Field(
        description="Ordered operation descriptors: {'type': 'resize', 'params': {...}}",
    )


class OperationResultModel(BaseModel):
    """Outcome of one operation."""

    type: str
    result: bool
    output_url: str | None = None
    output_height: int | None = None
    output_width: int | None = None
    error_message: str | None = None


class PipelineResponse(BaseModel):
    """Outcome of a whole pipeline run."""

    result: bool
    total_operations: int
    failed_operations: int
    error_message: str | None = None
    operations: list[OperationResultModel]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    concurrent_requests: int
    queue_depth: int


class FormatInfo(BaseModel):
    """An output encoding and whether this build can produce it."""

    name: str
    media_type: str
    available: bool = Field(description="False when the OpenCV build lacks a writer for this format")


class FormatsResponse(BaseModel):
    """Response for the formats listing endpoint."""

    formats: list[FormatInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
