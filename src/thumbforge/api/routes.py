"""API route definitions."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Depends, Form, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response

from thumbforge.api.middleware import LOCAL_FILES_DISABLED, require_local_files, touches_local_files, verify_api_key
from thumbforge.api.schemas import (
    ErrorResponse,
    FormatInfo,
    FormatsResponse,
    HealthResponse,
    OperationResultModel,
    PipelineRequest,
    PipelineResponse,
)
from thumbforge.engine.codec import FORMAT_REGISTRY, OutputFormat, can_encode
from thumbforge.engine.errors import SetupError
from thumbforge.engine.pipeline import Pipeline

if TYPE_CHECKING:
    from thumbforge.config import Settings
    from thumbforge.engine.executor import ThumbnailPool

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_LOCAL_PATH_PARAMS = ("output_url", "watermark_url")


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_pool(request: Request) -> ThumbnailPool:
    pool: ThumbnailPool = request.app.state.thumbnail_pool
    return pool


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


# ---------------------------------------------------------------------------
# Blocking pipeline bodies (run on the worker pool)
# ---------------------------------------------------------------------------


def _resize_upload(settings: Settings, data: bytes, params: dict[str, Any], fmt: OutputFormat) -> bytes:
    """Run a single resize against uploaded bytes and encode its result.

    Raises:
        ValueError: With the pipeline's error message when anything fails.
    """
    with Pipeline(settings) as pipeline:
        pipeline.set_source_data(data)
        pipeline.add_resize_operation(params)

        if not pipeline.run():
            raise ValueError(pipeline.error_message)

        encoded = pipeline.get_encoded(0, fmt)
        if encoded is None:
            raise ValueError(pipeline.error_message)
        return encoded


def _run_pipeline(settings: Settings, body: PipelineRequest) -> PipelineResponse:
    """Run a pipeline against local files.

    Raises:
        SetupError: If the input url or an operation descriptor is invalid.
    """
    with Pipeline(settings) as pipeline:
        if not pipeline.set_input_url(body.input_url) or not pipeline.parse_operations(body.operations):
            raise SetupError(pipeline.error_message)

        pipeline.run()

        return PipelineResponse(
            result=pipeline.result,
            total_operations=pipeline.total_operations,
            failed_operations=pipeline.failed_operations,
            error_message=pipeline.error_message or None,
            operations=[OperationResultModel(**asdict(result)) for result in pipeline.results()],
        )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post(
    "/resize",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {spec.media_type: {}} for spec in FORMAT_REGISTRY.values()},
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Resize an uploaded image",
)
async def resize(
    request: Request,
    file: UploadFile,
    params: Annotated[str, Form(description="JSON object of resize parameters")],
    format: OutputFormat = OutputFormat.JPEG,  # noqa: A002
) -> Response:
    """Resize an uploaded image and return it encoded as ``format``."""
    settings = _get_settings(request)

    data = await file.read()
    if len(data) > settings.max_file_size:
        return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "Uploaded file exceeds maximum size")

    try:
        resize_params = json.loads(params)
    except json.JSONDecodeError:
        resize_params = None
    if not isinstance(resize_params, dict):
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "params must be a JSON object")

    if touches_local_files(settings, resize_params, _LOCAL_PATH_PARAMS):
        return _error(status.HTTP_403_FORBIDDEN, LOCAL_FILES_DISABLED)

    try:
        encoded = await _get_pool(request).run(_resize_upload, settings, data, resize_params, format)
    except TimeoutError:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Server busy, try again later")
    except ValueError as exc:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))

    return Response(content=encoded, media_type=FORMAT_REGISTRY[format].media_type)


@router.post(
    "/pipelines",
    response_model=PipelineResponse,
    dependencies=[Depends(require_local_files)],
    responses={
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Run an operation pipeline on local files",
)
async def run_pipeline(request: Request, body: PipelineRequest) -> PipelineResponse | JSONResponse:
    """Run every operation against a local source and report per-operation results."""
    try:
        return await _get_pool(request).run(_run_pipeline, _get_settings(request), body)
    except TimeoutError:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Server busy, try again later")
    except SetupError as exc:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc.message)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_pool(request)
    return HealthResponse(
        status="ok",
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/formats",
    response_model=FormatsResponse,
    summary="List output formats",
)
async def list_formats() -> FormatsResponse:
    """Return the output encodings and whether the installed encoder supports them."""
    return FormatsResponse(
        formats=[
            FormatInfo(name=fmt.value, media_type=spec.media_type, available=can_encode(fmt))
            for fmt, spec in FORMAT_REGISTRY.items()
        ]
    )
