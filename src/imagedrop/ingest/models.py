"""Value types passed into and out of the ingest pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from imagedrop.imaging.codec import Canvas


class DerivativeKind(StrEnum):
    ORIGINAL = "original"
    LARGE = "large"
    THUMB = "thumb"


class RejectionReason(StrEnum):
    NO_FILE_SUBMITTED = "no_file_submitted"
    TRANSPORT_ERROR = "transport_error"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    DISALLOWED_EXTENSION = "disallowed_extension"
    DISALLOWED_MIME_TYPE = "disallowed_mime_type"
    MIME_MISMATCH = "mime_mismatch"
    NOT_AN_IMAGE = "not_an_image"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    ORIGINAL_CONVERSION_FAILED = "original_conversion_failed"
    LARGE_DERIVATIVE_FAILED = "large_derivative_failed"
    THUMBNAIL_FAILED = "thumbnail_failed"
    CODEC_UNAVAILABLE = "codec_unavailable"


class TransportErrorCode(StrEnum):
    """Transfer problems the HTTP layer can report for an upload."""

    PARTIAL = "partial"
    CANT_READ = "cant_read"


TRANSPORT_ERROR_MESSAGES: dict[TransportErrorCode, str] = {
    TransportErrorCode.PARTIAL: "The file was only partially uploaded",
    TransportErrorCode.CANT_READ: "The uploaded file could not be read",
}


@dataclass(frozen=True)
class UploadRequest:
    """One submitted file as handed over by the HTTP layer."""

    data: bytes | None
    filename: str
    content_type: str
    transport_error: TransportErrorCode | None = None
    # Byte length reported by the boundary. data stays None when this is already over the limit.
    declared_size: int | None = None

    @property
    def byte_length(self) -> int:
        if self.declared_size is not None:
            return self.declared_size
        return len(self.data) if self.data is not None else 0

    @property
    def has_payload(self) -> bool:
        """False when no file field was sent or it arrived empty without a transport error."""
        if self.data is None and self.declared_size is None:
            return False
        return self.byte_length > 0 or bool(self.data) or self.transport_error is not None

    @property
    def truncated(self) -> bool:
        """True when the received buffer length differs from the declared size."""
        return self.data is not None and self.declared_size is not None and len(self.data) != self.declared_size


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class Accepted:
    """Validation passed; carries the sniffed type and the decoded source."""

    sniffed_mime: str
    canvas: Canvas


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    message: str


ValidationOutcome = Accepted | Rejected


@dataclass(frozen=True)
class DerivativePaths:
    original: Path
    large: Path
    thumb: Path

    def for_kind(self, kind: DerivativeKind) -> Path:
        path: Path = getattr(self, kind.value)
        return path


@dataclass(frozen=True)
class DerivativeDimensions:
    """Probed dimensions per derivative; None means the probe failed."""

    original: Dimensions | None
    large: Dimensions | None
    thumb: Dimensions | None


@dataclass(frozen=True)
class ResultDescriptor:
    """Everything the caller needs to reference an accepted upload."""

    identity: str
    paths: DerivativePaths
    dimensions: DerivativeDimensions
    source_byte_size: int
    target_format: str
    source_sniffed_mime: str
    large_fallback: bool = False


@dataclass(frozen=True)
class IngestSuccess:
    descriptor: ResultDescriptor

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class IngestFailure:
    reason: RejectionReason
    message: str

    @property
    def success(self) -> bool:
        return False


IngestResult = IngestSuccess | IngestFailure
