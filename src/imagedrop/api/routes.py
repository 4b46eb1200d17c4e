"""API route definitions."""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, File, HTTPException, Request, UploadFile, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from imagedrop.api.schemas import (
    DimensionsInfo,
    ErrorResponse,
    HealthResponse,
    UploadData,
    UploadErrorResponse,
    UploadResponse,
)
from imagedrop.ingest.executor import ExecutorBusy
from imagedrop.ingest.models import (
    TRANSPORT_ERROR_MESSAGES,
    DerivativeKind,
    IngestFailure,
    RejectionReason,
    TransportErrorCode,
    UploadRequest,
)

if TYPE_CHECKING:
    from pathlib import Path

    from fastapi.responses import Response

    from imagedrop.config import Settings
    from imagedrop.ingest.executor import IngestExecutor
    from imagedrop.ingest.models import Dimensions, ResultDescriptor
    from imagedrop.ingest.pipeline import IngestPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")

UPLOAD_PATH = f"{router.prefix}/upload"

_STATUS_BY_REASON: dict[RejectionReason, int] = {
    RejectionReason.NO_FILE_SUBMITTED: status.HTTP_400_BAD_REQUEST,
    RejectionReason.TRANSPORT_ERROR: status.HTTP_400_BAD_REQUEST,
    RejectionReason.PAYLOAD_TOO_LARGE: HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
    RejectionReason.DISALLOWED_EXTENSION: status.HTTP_400_BAD_REQUEST,
    RejectionReason.DISALLOWED_MIME_TYPE: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    RejectionReason.MIME_MISMATCH: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    RejectionReason.NOT_AN_IMAGE: HTTPStatus.UNPROCESSABLE_ENTITY,
    RejectionReason.STORAGE_UNAVAILABLE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    RejectionReason.ORIGINAL_CONVERSION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    RejectionReason.LARGE_DERIVATIVE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    RejectionReason.THUMBNAIL_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    RejectionReason.CODEC_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_pipeline(request: Request) -> IngestPipeline:
    pipeline: IngestPipeline = request.app.state.pipeline
    return pipeline


def _get_executor(request: Request) -> IngestExecutor:
    executor: IngestExecutor = request.app.state.executor
    return executor


async def _read_upload(image: UploadFile | None, max_file_size: int) -> UploadRequest:
    """Turn the multipart field into an UploadRequest, recording transfer problems.

    Files the parser already measured as over ``max_file_size`` are not read into memory.
    """
    if image is None:
        return UploadRequest(data=None, filename="", content_type="")

    filename = image.filename or ""
    content_type = image.content_type or ""
    if image.size is not None and image.size > max_file_size:
        await image.close()
        return UploadRequest(data=None, filename=filename, content_type=content_type, declared_size=image.size)

    try:
        data = await image.read()
    except OSError as exc:
        logger.warning("Could not read uploaded file %r: %s", filename, exc)
        return UploadRequest(
            data=b"",
            filename=filename,
            content_type=content_type,
            transport_error=TransportErrorCode.CANT_READ,
        )
    finally:
        await image.close()

    return UploadRequest(data=data, filename=filename, content_type=content_type, declared_size=image.size)


def _public_url(settings: Settings, kind: DerivativeKind, path: Path) -> str:
    return f"{settings.public_url_prefix.rstrip('/')}/{kind.value}/{path.name}"


def _format_dimensions(dimensions: Dimensions | None) -> str:
    return str(dimensions) if dimensions is not None else "unknown"


def _upload_data(settings: Settings, descriptor: ResultDescriptor) -> UploadData:
    paths = descriptor.paths
    dims = descriptor.dimensions
    return UploadData(
        id=descriptor.identity,
        original=_public_url(settings, DerivativeKind.ORIGINAL, paths.original),
        large=_public_url(settings, DerivativeKind.LARGE, paths.large),
        thumb=_public_url(settings, DerivativeKind.THUMB, paths.thumb),
        dimensions=DimensionsInfo(
            original=_format_dimensions(dims.original),
            large=_format_dimensions(dims.large),
            thumb=_format_dimensions(dims.thumb),
        ),
        size=descriptor.source_byte_size,
        type=descriptor.target_format,
        originalType=descriptor.source_sniffed_mime,
        largeFallback=descriptor.large_fallback,
    )


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": UploadErrorResponse},
        HTTPStatus.REQUEST_ENTITY_TOO_LARGE.value: {"model": UploadErrorResponse},
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": UploadErrorResponse},
        HTTPStatus.UNPROCESSABLE_ENTITY.value: {"model": UploadErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": UploadErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Upload an image and generate its derivatives",
)
async def upload_image(
    request: Request,
    image: Annotated[UploadFile | None, File()] = None,
) -> JSONResponse:
    """Validate an uploaded image and store its original, large and thumbnail versions."""
    settings = _get_settings(request)
    executor = _get_executor(request)

    upload = await _read_upload(image, settings.max_file_size)
    try:
        result = await executor.submit(upload)
    except ExecutorBusy:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server is busy processing other uploads, try again shortly",
        ) from None

    if isinstance(result, IngestFailure):
        failure = UploadErrorResponse(reason=result.reason.value, message=result.message)
        return JSONResponse(
            status_code=_STATUS_BY_REASON[result.reason],
            content=failure.model_dump(),
        )

    response = UploadResponse(
        message=f"Image uploaded and converted to {settings.target_format.upper()}",
        data=_upload_data(settings, result.descriptor),
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=response.model_dump(by_alias=True))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pipeline = _get_pipeline(request)
    load = _get_executor(request).load
    return HealthResponse(
        status="ok" if pipeline.codec_available else "degraded",
        codec_available=pipeline.codec_available,
        target_format=pipeline.target_format.mime_type,
        active_uploads=load.active,
        queue_depth=load.queued,
    )


async def upload_body_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Answer unparseable upload bodies in the upload error shape; other errors pass through."""
    if request.url.path != UPLOAD_PATH or exc.status_code != status.HTTP_400_BAD_REQUEST:
        return await http_exception_handler(request, exc)

    logger.warning("Could not parse upload body: %s", exc.detail)
    code = TransportErrorCode.PARTIAL
    failure = UploadErrorResponse(
        reason=RejectionReason.TRANSPORT_ERROR.value,
        message=f"{TRANSPORT_ERROR_MESSAGES[code]} ({code.value})",
    )
    return JSONResponse(status_code=exc.status_code, content=failure.model_dump())
