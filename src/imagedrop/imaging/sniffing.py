"""Content-type detection from magic bytes.

The declared filename and Content-Type header are client-controlled; this
module looks only at the payload itself.
"""

from __future__ import annotations

import codecs
from typing import Final

UNKNOWN_MIME: Final = "application/octet-stream"

# Ordered (prefix, mime) pairs. Containers with a secondary signature
# (RIFF/WEBP, ISO-BMFF) are handled in sniff_mime().
_SIGNATURES: Final[tuple[tuple[bytes, str], ...]] = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
    (b"\x00\x00\x01\x00", "image/vnd.microsoft.icon"),
    (b"%PDF-", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b", "application/gzip"),
)

_HEIF_BRANDS: Final = {b"heic", b"heix", b"heif", b"mif1", b"msf1"}
_AVIF_BRANDS: Final = {b"avif", b"avis"}

# Mapping from the MIME types the codec can decode to Pillow format names.
PILLOW_FORMATS: Final[dict[str, str]] = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}


def sniff_mime(data: bytes) -> str:
    """Return the MIME type implied by the leading bytes of ``data``.

    Unrecognized binary content is reported as ``application/octet-stream``;
    content that decodes as UTF-8 text without NUL bytes is ``text/plain``.
    """
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"

    if data[4:8] == b"ftyp":
        brand = data[8:12]
        if brand in _AVIF_BRANDS:
            return "image/avif"
        if brand in _HEIF_BRANDS:
            return "image/heic"

    for prefix, mime in _SIGNATURES:
        if data.startswith(prefix):
            return mime

    if _looks_like_text(data[:512]):
        return "text/plain"
    return UNKNOWN_MIME


def pillow_format_for(mime: str) -> str | None:
    """Return the Pillow decoder name for ``mime``, or None if unsupported."""
    return PILLOW_FORMATS.get(mime)


def _looks_like_text(head: bytes) -> bool:
    if not head or b"\x00" in head:
        return False
    # Non-final decode tolerates a sample that ends inside a multibyte sequence.
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        decoder.decode(head, final=False)
    except UnicodeDecodeError:
        return False
    return True
