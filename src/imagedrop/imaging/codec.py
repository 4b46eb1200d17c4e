"""Stateless image transforms backed by Pillow.

Every function works on in-memory buffers or canvases and reports failure
through the ``CodecError`` hierarchy. Nothing here writes files or logs;
persistence and reporting belong to the ingest pipeline.
"""

from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, TypeAlias

from PIL import Image, features

if TYPE_CHECKING:
    from pathlib import Path

Canvas: TypeAlias = Image.Image

# Sources the decoder accepts. The target format is always one of these so a
# previously generated derivative can be fed back in.
SUPPORTED_FORMATS: Final = frozenset({"JPEG", "PNG", "WEBP"})

ORIGINAL_QUALITY: Final = 95
LARGE_QUALITY: Final = 90
THUMB_QUALITY: Final = 85

_RESAMPLE: Final = Image.Resampling.LANCZOS
_FLATTEN_BACKGROUND: Final = (255, 255, 255)

# Exceptions Pillow raises for malformed or hostile input.
_PILLOW_ERRORS: Final = (
    OSError,
    ValueError,
    SyntaxError,
    EOFError,
    struct.error,
    Image.DecompressionBombError,
)


class CodecError(Exception):
    """Base class for image codec failures."""


class DecodeError(CodecError):
    """The buffer could not be decoded into a canvas."""


class UnsupportedFormatError(DecodeError):
    """The declared format is outside the supported set."""


class TransformError(CodecError):
    """A geometric transform could not be applied."""


class EncodeError(CodecError):
    """The canvas could not be encoded to the requested format."""


class ProbeError(CodecError):
    """Dimensions of a stored image could not be read."""


@dataclass(frozen=True)
class OutputFormat:
    """An encodable target format."""

    name: str
    pillow_format: str
    extension: str
    mime_type: str


OUTPUT_FORMATS: Final[dict[str, OutputFormat]] = {
    "webp": OutputFormat(name="webp", pillow_format="WEBP", extension="webp", mime_type="image/webp"),
    "jpeg": OutputFormat(name="jpeg", pillow_format="JPEG", extension="jpg", mime_type="image/jpeg"),
    "png": OutputFormat(name="png", pillow_format="PNG", extension="png", mime_type="image/png"),
}

# Pillow feature names each format depends on.
_FORMAT_FEATURES: Final[dict[str, str]] = {
    "JPEG": "jpg",
    "PNG": "zlib",
    "WEBP": "webp",
}


def output_format(name: str) -> OutputFormat:
    """Look up a target format by name (``webp``, ``jpeg`` or ``png``)."""
    try:
        return OUTPUT_FORMATS[name.lower()]
    except KeyError:
        raise UnsupportedFormatError(f"Unsupported output format: {name}") from None


def codec_available(target_format: str) -> bool:
    """Return True if Pillow can decode every source format and encode the target."""
    try:
        target = output_format(target_format)
    except UnsupportedFormatError:
        return False

    Image.init()
    if not all(fmt in Image.OPEN for fmt in SUPPORTED_FORMATS):
        return False
    if target.pillow_format not in Image.SAVE:
        return False
    return all(features.check(feature) for feature in _FORMAT_FEATURES.values())


def decode(data: bytes, declared_format: str, *, max_pixels: int | None = None) -> Canvas:
    """Decode ``data`` as ``declared_format`` into an RGB or RGBA canvas.

    Only the declared decoder is tried, so a PNG payload declared as JPEG
    fails rather than being silently accepted.

    Args:
        data: Raw encoded image bytes.
        declared_format: Pillow format name (``JPEG``, ``PNG`` or ``WEBP``).
        max_pixels: Reject images whose pixel count exceeds this value.

    Raises:
        UnsupportedFormatError: If ``declared_format`` is not supported.
        DecodeError: If the payload is not a decodable image of that format.
    """
    fmt = declared_format.upper()
    if fmt not in SUPPORTED_FORMATS:
        raise UnsupportedFormatError(f"Unsupported source format: {declared_format}")

    try:
        with Image.open(io.BytesIO(data), formats=[fmt]) as opened:
            width, height = opened.size
            if max_pixels is not None and width * height > max_pixels:
                raise DecodeError(f"Image has {width * height} pixels, limit is {max_pixels}")
            opened.load()
            return _normalize_mode(opened)
    except _PILLOW_ERRORS as exc:
        raise DecodeError(f"Cannot decode {fmt} image: {exc}") from exc


def center_crop_box(width: int, height: int) -> tuple[int, int, int, int]:
    """Return the (left, top, right, bottom) box of the largest centered square."""
    extent = min(width, height)
    left = (width - extent) // 2
    top = (height - extent) // 2
    return (left, top, left + extent, top + extent)


def crop_square_resize(canvas: Canvas, size: int) -> Canvas:
    """Crop the centered square of ``canvas`` and resample it to ``size`` x ``size``."""
    if size < 1:
        raise TransformError(f"Invalid square size: {size}")
    box = center_crop_box(*canvas.size)
    try:
        with canvas.crop(box) as square:
            return square.resize((size, size), _RESAMPLE)
    except (ValueError, OSError, MemoryError) as exc:
        raise TransformError(f"Square crop failed: {exc}") from exc


def proportional_size(width: int, height: int, max_width: int) -> tuple[int, int]:
    """Return the size ``resize_proportional`` would produce for a canvas."""
    if width <= max_width:
        return (width, height)
    ratio = max_width / width
    return (max_width, int(height * ratio))


def resize_proportional(canvas: Canvas, max_width: int) -> Canvas:
    """Scale ``canvas`` down to ``max_width`` keeping its aspect ratio.

    A canvas that is already at most ``max_width`` wide is returned as-is
    (the same object); callers still re-encode it.
    """
    if max_width < 1:
        raise TransformError(f"Invalid max width: {max_width}")
    new_size = proportional_size(*canvas.size, max_width)
    if new_size == canvas.size:
        return canvas
    if new_size[1] < 1:
        raise TransformError(f"Resizing {canvas.size[0]}x{canvas.size[1]} to width {max_width} leaves no rows")
    try:
        return canvas.resize(new_size, _RESAMPLE)
    except (ValueError, OSError, MemoryError) as exc:
        raise TransformError(f"Proportional resize failed: {exc}") from exc


def encode(canvas: Canvas, target_format: str, quality: int) -> bytes:
    """Encode ``canvas`` to ``target_format`` bytes.

    ``quality`` ranges 1-100 and is ignored for lossless PNG output.
    """
    try:
        target = output_format(target_format)
    except UnsupportedFormatError as exc:
        raise EncodeError(str(exc)) from exc
    if not 1 <= quality <= 100:
        raise EncodeError(f"Quality must be between 1 and 100, got {quality}")

    image = canvas
    if target.pillow_format == "JPEG" and canvas.mode != "RGB":
        image = _flatten(canvas)

    params: dict[str, object]
    if target.pillow_format == "PNG":
        params = {"optimize": True}
    elif target.pillow_format == "JPEG":
        params = {"quality": quality, "optimize": True}
    else:
        params = {"quality": quality}

    buffer = io.BytesIO()
    try:
        image.save(buffer, format=target.pillow_format, **params)
    except (OSError, ValueError, KeyError) as exc:
        raise EncodeError(f"Cannot encode {target.pillow_format}: {exc}") from exc
    finally:
        if image is not canvas:
            image.close()
    return buffer.getvalue()


def probe_dimensions(path: Path) -> tuple[int, int]:
    """Read (width, height) from an image file header without decoding pixels."""
    try:
        with Image.open(path) as image:
            width, height = image.size
    except _PILLOW_ERRORS as exc:
        raise ProbeError(f"Cannot read dimensions of {path}: {exc}") from exc
    return (width, height)


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------


def _has_alpha(image: Image.Image) -> bool:
    if image.mode in ("RGBA", "LA", "PA", "RGBa", "La"):
        return True
    return "transparency" in image.info


def _normalize_mode(image: Image.Image) -> Canvas:
    """Return a detached RGB or RGBA copy of ``image``."""
    if _has_alpha(image):
        return image.convert("RGBA")
    return image.convert("RGB")


def _flatten(canvas: Canvas) -> Canvas:
    rgba = canvas.convert("RGBA")
    try:
        background = Image.new("RGB", rgba.size, _FLATTEN_BACKGROUND)
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    finally:
        rgba.close()
