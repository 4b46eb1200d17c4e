"""Upload validation chain.

Checks run in a fixed order and the first failure wins:

1. a payload is present
2. the transfer completed
3. the payload fits the size limit
4. the filename extension is allowed
5. the declared content type is allowed
6. the sniffed content type is allowed
7. the payload decodes as an image

Validation has no side effects; nothing is written before it passes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from imagedrop.imaging import codec
from imagedrop.imaging.sniffing import pillow_format_for, sniff_mime
from imagedrop.ingest.models import (
    TRANSPORT_ERROR_MESSAGES,
    Accepted,
    Rejected,
    RejectionReason,
    TransportErrorCode,
    UploadRequest,
    ValidationOutcome,
)

if TYPE_CHECKING:
    from imagedrop.config import Settings


def file_extension(filename: str) -> str:
    """Return the lowercased extension after the last dot of the basename."""
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    _, dot, extension = basename.rpartition(".")
    return extension.lower() if dot else ""


def normalize_mime(content_type: str) -> str:
    """Strip parameters and whitespace from a Content-Type value."""
    return content_type.split(";", 1)[0].strip().lower()


def _format_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):g} MiB"
    if size >= 1024:
        return f"{size / 1024:g} KiB"
    return f"{size} bytes"


class UploadValidator:
    """Runs the validation chain against the configured limits."""

    def __init__(self, settings: Settings) -> None:
        self._max_file_size = settings.max_file_size
        self._max_image_pixels = settings.max_image_pixels
        self._allowed_extensions = frozenset(ext.lower() for ext in settings.allowed_extensions)
        self._allowed_mime_types = frozenset(mime.lower() for mime in settings.allowed_mime_types)

    def validate(self, request: UploadRequest) -> ValidationOutcome:
        """Return ``Accepted`` with the decoded source or the first ``Rejected``."""
        if not request.has_payload:
            return Rejected(RejectionReason.NO_FILE_SUBMITTED, "No file was selected for upload")

        transport_error = request.transport_error
        if transport_error is None and request.truncated:
            transport_error = TransportErrorCode.PARTIAL
        if transport_error is not None:
            detail = TRANSPORT_ERROR_MESSAGES[transport_error]
            return Rejected(
                RejectionReason.TRANSPORT_ERROR,
                f"{detail} ({transport_error.value})",
            )

        if request.byte_length > self._max_file_size:
            return Rejected(
                RejectionReason.PAYLOAD_TOO_LARGE,
                f"File size must not exceed {_format_size(self._max_file_size)}",
            )

        if file_extension(request.filename) not in self._allowed_extensions:
            allowed = ", ".join(sorted(ext.upper() for ext in self._allowed_extensions))
            return Rejected(
                RejectionReason.DISALLOWED_EXTENSION,
                f"File type not allowed. Allowed types: {allowed}",
            )

        if normalize_mime(request.content_type) not in self._allowed_mime_types:
            return Rejected(
                RejectionReason.DISALLOWED_MIME_TYPE,
                f"Declared content type {request.content_type!r} is not allowed",
            )

        data = request.data or b""
        sniffed = sniff_mime(data)
        if sniffed not in self._allowed_mime_types:
            return Rejected(
                RejectionReason.MIME_MISMATCH,
                f"File content is {sniffed}, not an allowed image type",
            )

        pillow_format = pillow_format_for(sniffed)
        if pillow_format is None:
            return Rejected(RejectionReason.NOT_AN_IMAGE, f"No decoder for {sniffed}")
        try:
            canvas = codec.decode(data, pillow_format, max_pixels=self._max_image_pixels)
        except codec.DecodeError as exc:
            return Rejected(RejectionReason.NOT_AN_IMAGE, f"The file is not a valid image: {exc}")

        return Accepted(sniffed_mime=sniffed, canvas=canvas)
