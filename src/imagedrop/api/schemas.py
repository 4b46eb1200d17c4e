"""Pydantic request/response schemas for the imagedrop API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class DimensionsInfo(BaseModel):
    """Per-derivative dimensions as ``WxH`` strings, or ``unknown``."""

    original: str
    large: str
    thumb: str


class UploadData(BaseModel):
    """Descriptor of a stored upload and its derivatives."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description="Upload identity, also the filename stem of every derivative")
    original: str = Field(description="Public URL of the converted original")
    large: str = Field(description="Public URL of the large version")
    thumb: str = Field(description="Public URL of the square thumbnail")
    dimensions: DimensionsInfo
    size: int = Field(description="Byte size of the uploaded source file")
    type: str = Field(description="MIME type of every stored derivative")
    original_type: str = Field(alias="originalType", description="Sniffed MIME type of the uploaded source")
    large_fallback: bool = Field(
        alias="largeFallback",
        description="True if the large version is a copy of the original because resizing failed",
    )


class UploadResponse(BaseModel):
    """Successful upload response."""

    success: bool = True
    message: str
    data: UploadData


class UploadErrorResponse(BaseModel):
    """Failed upload response."""

    success: bool = False
    reason: str = Field(description="Machine-readable rejection reason")
    message: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    codec_available: bool
    target_format: str
    active_uploads: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
