"""Shared fixtures: in-memory test images and isolated settings."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING, Protocol

import pytest
from PIL import Image

from imagedrop.config import Settings

if TYPE_CHECKING:
    from pathlib import Path


class ImageFactory(Protocol):
    def __call__(
        self,
        width: int,
        height: int,
        fmt: str = ...,
        mode: str = ...,
        color: tuple[int, ...] | int = ...,
    ) -> bytes: ...


def encode_image(image: Image.Image, fmt: str) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture()
def make_image() -> ImageFactory:
    """Return a factory producing encoded solid-color images."""

    def _make(
        width: int,
        height: int,
        fmt: str = "PNG",
        mode: str = "RGB",
        color: tuple[int, ...] | int = (200, 80, 40),
    ) -> bytes:
        with Image.new(mode, (width, height), color) as image:
            return encode_image(image, fmt)

    return _make


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings with an isolated storage root under tmp_path."""
    return Settings(storage_root=tmp_path / "uploads")
