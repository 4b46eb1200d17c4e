"""Ingest pipeline: one upload in, one result out.

Flow for an accepted upload::

    validate -> identity -> storage layout -> original (q95)
             -> large from original (q90, falls back to a copy of original)
             -> thumb from original (q85) -> probe -> ResultDescriptor

Each call is synchronous and owns its canvases and files; there is no
shared mutable state between calls, so one pipeline can serve many threads.
"""

from __future__ import annotations

import logging
from contextlib import closing
from typing import TYPE_CHECKING

from imagedrop.imaging import codec
from imagedrop.ingest.models import (
    Accepted,
    DerivativeDimensions,
    DerivativeKind,
    Dimensions,
    IngestFailure,
    IngestResult,
    IngestSuccess,
    RejectionReason,
    ResultDescriptor,
)
from imagedrop.ingest.storage import DerivativeStore, new_identity
from imagedrop.ingest.validation import UploadValidator

if TYPE_CHECKING:
    from pathlib import Path

    from imagedrop.config import Settings
    from imagedrop.ingest.models import DerivativePaths, UploadRequest

logger = logging.getLogger(__name__)


class IngestPipeline:
    """Validates an upload and writes its original, large and thumb derivatives."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._target = codec.output_format(settings.target_format)
        self._validator = UploadValidator(settings)
        self._store = DerivativeStore(settings.storage_root, self._target.extension)
        self._codec_available = codec.codec_available(self._target.name)
        if not self._codec_available:
            logger.error("Image codec cannot handle %s output; uploads will be refused", self._target.name)

    @property
    def codec_available(self) -> bool:
        return self._codec_available

    @property
    def target_format(self) -> codec.OutputFormat:
        return self._target

    @property
    def store(self) -> DerivativeStore:
        return self._store

    # -- Public API ---------------------------------------------------------

    def process(self, request: UploadRequest) -> IngestResult:
        """Run one upload through validation and derivative generation."""
        if not self._codec_available:
            return self._fail(
                RejectionReason.CODEC_UNAVAILABLE,
                f"Image processing library cannot encode {self._target.name}",
            )

        outcome = self._validator.validate(request)
        if not isinstance(outcome, Accepted):
            logger.info("Rejected upload %r: %s (%s)", request.filename, outcome.reason, outcome.message)
            return IngestFailure(outcome.reason, outcome.message)

        with closing(outcome.canvas) as source:
            return self._generate(request, outcome.sniffed_mime, source)

    # -- Internal -----------------------------------------------------------

    def _generate(self, request: UploadRequest, sniffed_mime: str, source: codec.Canvas) -> IngestResult:
        identity = new_identity()
        paths = self._store.paths_for(identity)

        try:
            self._store.ensure_layout()
        except OSError as exc:
            return self._fail(RejectionReason.STORAGE_UNAVAILABLE, f"Failed to create upload directories: {exc}")

        try:
            self._store.write(paths.original, codec.encode(source, self._target.name, codec.ORIGINAL_QUALITY))
        except (codec.CodecError, OSError) as exc:
            return self._fail(
                RejectionReason.ORIGINAL_CONVERSION_FAILED,
                f"Failed to convert the original image to {self._target.name}: {exc}",
            )

        large_fallback = False
        try:
            self._write_large(paths)
        except (codec.CodecError, OSError) as exc:
            logger.warning("Large derivative for %s failed, copying original: %s", identity, exc)
            large_fallback = True
            try:
                self._store.copy(paths.original, paths.large)
            except OSError as copy_exc:
                return self._fail(
                    RejectionReason.LARGE_DERIVATIVE_FAILED,
                    f"Failed to create the large version: {copy_exc}",
                )

        try:
            self._write_thumb(paths)
        except (codec.CodecError, OSError) as exc:
            return self._fail(RejectionReason.THUMBNAIL_FAILED, f"Failed to create the thumbnail: {exc}")

        descriptor = ResultDescriptor(
            identity=identity,
            paths=paths,
            dimensions=DerivativeDimensions(
                original=self._probe(paths.original),
                large=self._probe(paths.large),
                thumb=self._probe(paths.thumb),
            ),
            source_byte_size=request.byte_length,
            target_format=self._target.mime_type,
            source_sniffed_mime=sniffed_mime,
            large_fallback=large_fallback,
        )
        logger.info(
            "Stored upload %s (%s, %d bytes, original %s, large %s, thumb %s)",
            identity,
            sniffed_mime,
            request.byte_length,
            descriptor.dimensions.original or "unknown",
            descriptor.dimensions.large or "unknown",
            descriptor.dimensions.thumb or "unknown",
        )
        return IngestSuccess(descriptor)

    def _load_original(self, paths: DerivativePaths) -> codec.Canvas:
        data = self._store.read(paths.for_kind(DerivativeKind.ORIGINAL))
        return codec.decode(data, self._target.pillow_format, max_pixels=self._settings.max_image_pixels)

    def _write_large(self, paths: DerivativePaths) -> None:
        with closing(self._load_original(paths)) as original:
            resized = codec.resize_proportional(original, self._settings.large_max_width)
            try:
                data = codec.encode(resized, self._target.name, codec.LARGE_QUALITY)
            finally:
                if resized is not original:
                    resized.close()
        self._store.write(paths.large, data)

    def _write_thumb(self, paths: DerivativePaths) -> None:
        with closing(self._load_original(paths)) as original:
            with closing(codec.crop_square_resize(original, self._settings.thumb_size)) as thumb:
                data = codec.encode(thumb, self._target.name, codec.THUMB_QUALITY)
        self._store.write(paths.thumb, data)

    @staticmethod
    def _probe(path: Path) -> Dimensions | None:
        try:
            width, height = codec.probe_dimensions(path)
        except codec.ProbeError as exc:
            logger.warning("Could not probe %s: %s", path, exc)
            return None
        return Dimensions(width, height)

    @staticmethod
    def _fail(reason: RejectionReason, message: str) -> IngestFailure:
        logger.error("Upload failed: %s (%s)", reason, message)
        return IngestFailure(reason, message)
