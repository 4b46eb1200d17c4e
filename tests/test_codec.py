"""Tests for the Pillow-backed image codec."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import pytest
from PIL import Image, ImageDraw

from imagedrop.imaging import codec

if TYPE_CHECKING:
    from pathlib import Path

    from conftest import ImageFactory

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)


def _banded(width: int, height: int) -> Image.Image:
    """Three vertical (or horizontal, if tall) bands: red, green, blue."""
    image = Image.new("RGB", (width, height), GREEN)
    draw = ImageDraw.Draw(image)
    if width >= height:
        band = (width - height) // 2
        draw.rectangle((0, 0, band - 1, height - 1), fill=RED)
        draw.rectangle((width - band, 0, width - 1, height - 1), fill=BLUE)
    else:
        band = (height - width) // 2
        draw.rectangle((0, 0, width - 1, band - 1), fill=RED)
        draw.rectangle((0, height - band, width - 1, height - 1), fill=BLUE)
    return image


def _close_to(pixel: tuple[int, ...], expected: tuple[int, ...], tolerance: int = 8) -> bool:
    return all(abs(a - b) <= tolerance for a, b in zip(pixel, expected, strict=False))


# ---------------------------------------------------------------------------
# decode
# ---------------------------------------------------------------------------


class TestDecode:
    @pytest.mark.parametrize("fmt", ["PNG", "JPEG", "WEBP"])
    def test_decodes_supported_formats(self, make_image: ImageFactory, fmt: str) -> None:
        canvas = codec.decode(make_image(40, 30, fmt), fmt)
        assert canvas.size == (40, 30)
        assert canvas.mode == "RGB"

    def test_format_name_is_case_insensitive(self, make_image: ImageFactory) -> None:
        assert codec.decode(make_image(8, 8, "PNG"), "png").size == (8, 8)

    def test_alpha_is_preserved(self, make_image: ImageFactory) -> None:
        data = make_image(10, 10, "PNG", mode="RGBA", color=(10, 20, 30, 0))
        canvas = codec.decode(data, "PNG")
        assert canvas.mode == "RGBA"
        assert canvas.getpixel((5, 5))[3] == 0

    def test_grayscale_becomes_rgb(self, make_image: ImageFactory) -> None:
        canvas = codec.decode(make_image(10, 10, "PNG", mode="L", color=128), "PNG")
        assert canvas.mode == "RGB"
        assert canvas.getpixel((0, 0)) == (128, 128, 128)

    def test_palette_with_transparency_becomes_rgba(self) -> None:
        image = Image.new("P", (6, 6), 0)
        image.putpalette([0, 0, 0, 255, 255, 255])
        buffer = io.BytesIO()
        image.save(buffer, format="PNG", transparency=0)
        canvas = codec.decode(buffer.getvalue(), "PNG")
        assert canvas.mode == "RGBA"

    def test_unsupported_format_raises(self, make_image: ImageFactory) -> None:
        with pytest.raises(codec.UnsupportedFormatError):
            codec.decode(make_image(4, 4, "GIF"), "GIF")

    def test_decoder_is_restricted_to_declared_format(self, make_image: ImageFactory) -> None:
        with pytest.raises(codec.DecodeError):
            codec.decode(make_image(4, 4, "PNG"), "JPEG")

    def test_garbage_raises_decode_error(self) -> None:
        with pytest.raises(codec.DecodeError):
            codec.decode(b"\x89PNG\r\n\x1a\n\x00\x00", "PNG")

    def test_truncated_image_raises_decode_error(self, make_image: ImageFactory) -> None:
        data = make_image(64, 64, "JPEG")
        with pytest.raises(codec.DecodeError):
            codec.decode(data[: len(data) // 3], "JPEG")

    def test_pixel_limit(self, make_image: ImageFactory) -> None:
        data = make_image(100, 100, "PNG")
        with pytest.raises(codec.DecodeError, match="pixels"):
            codec.decode(data, "PNG", max_pixels=9_999)
        assert codec.decode(data, "PNG", max_pixels=10_000).size == (100, 100)


# ---------------------------------------------------------------------------
# center crop
# ---------------------------------------------------------------------------


class TestCenterCropBox:
    def test_landscape_offset(self) -> None:
        assert codec.center_crop_box(400, 200) == (100, 0, 300, 200)

    def test_portrait_offset(self) -> None:
        assert codec.center_crop_box(200, 401) == (0, 100, 200, 300)

    def test_odd_difference_truncates(self) -> None:
        assert codec.center_crop_box(7, 4) == (1, 0, 5, 4)

    def test_square_is_whole_image(self) -> None:
        assert codec.center_crop_box(50, 50) == (0, 0, 50, 50)


class TestCropSquareResize:
    @pytest.mark.parametrize(("width", "height"), [(3200, 1600), (300, 900), (50, 50), (17, 301)])
    def test_output_is_square(self, width: int, height: int) -> None:
        with Image.new("RGB", (width, height)) as source:
            thumb = codec.crop_square_resize(source, 300)
        assert thumb.size == (300, 300)

    def test_landscape_keeps_center_band(self) -> None:
        source = _banded(600, 200)
        thumb = codec.crop_square_resize(source, 200)
        for point in [(0, 0), (100, 100), (199, 199), (0, 199)]:
            assert _close_to(thumb.getpixel(point), GREEN)

    def test_portrait_keeps_center_band(self) -> None:
        source = _banded(100, 300)
        thumb = codec.crop_square_resize(source, 100)
        assert _close_to(thumb.getpixel((50, 50)), GREEN)
        assert _close_to(thumb.getpixel((50, 0)), GREEN)
        assert _close_to(thumb.getpixel((50, 99)), GREEN)

    def test_downscaled_center_is_cropped_region(self) -> None:
        thumb = codec.crop_square_resize(_banded(3000, 1000), 100)
        assert _close_to(thumb.getpixel((50, 50)), GREEN)

    @pytest.mark.parametrize(
        ("width", "height", "edges"),
        [
            (3000, 1000, [(0, 50), (99, 50), (0, 0), (99, 99)]),
            (1000, 3000, [(50, 0), (50, 99), (0, 0), (99, 99)]),
        ],
    )
    def test_downscaled_edges_exclude_cropped_bands(
        self, width: int, height: int, edges: list[tuple[int, int]]
    ) -> None:
        thumb = codec.crop_square_resize(_banded(width, height), 100)
        for point in edges:
            assert _close_to(thumb.getpixel(point), GREEN, tolerance=2)

    def test_alpha_preserved(self) -> None:
        source = Image.new("RGBA", (400, 200), (0, 0, 0, 0))
        thumb = codec.crop_square_resize(source, 50)
        assert thumb.mode == "RGBA"
        assert thumb.getpixel((25, 25))[3] == 0

    def test_opaque_stays_opaque(self) -> None:
        thumb = codec.crop_square_resize(Image.new("RGB", (400, 200), RED), 50)
        assert thumb.mode == "RGB"

    def test_invalid_size(self) -> None:
        with pytest.raises(codec.TransformError):
            codec.crop_square_resize(Image.new("RGB", (10, 10)), 0)


# ---------------------------------------------------------------------------
# proportional resize
# ---------------------------------------------------------------------------


class TestResizeProportional:
    def test_narrow_canvas_returned_unchanged(self) -> None:
        source = Image.new("RGB", (500, 500))
        assert codec.resize_proportional(source, 1600) is source

    def test_exact_width_returned_unchanged(self) -> None:
        source = Image.new("RGB", (1600, 900))
        assert codec.resize_proportional(source, 1600) is source

    def test_wide_canvas_scaled(self) -> None:
        resized = codec.resize_proportional(Image.new("RGB", (3200, 1600)), 1600)
        assert resized.size == (1600, 800)

    def test_height_is_floored(self) -> None:
        # 333 * 0.6 = 199.8
        resized = codec.resize_proportional(Image.new("RGB", (1000, 333)), 600)
        assert resized.size == (600, 199)

    def test_proportional_size_matches_formula(self) -> None:
        assert codec.proportional_size(4000, 3000, 1600) == (1600, 1200)
        assert codec.proportional_size(1601, 1000, 1600) == (1600, int(1000 * (1600 / 1601)))
        assert codec.proportional_size(800, 3000, 1600) == (800, 3000)

    def test_zero_height_raises(self) -> None:
        with pytest.raises(codec.TransformError, match="no rows"):
            codec.resize_proportional(Image.new("RGB", (3200, 1)), 1600)

    def test_alpha_preserved(self) -> None:
        resized = codec.resize_proportional(Image.new("RGBA", (400, 100), (1, 2, 3, 4)), 200)
        assert resized.mode == "RGBA"


# ---------------------------------------------------------------------------
# encode / probe
# ---------------------------------------------------------------------------


class TestEncode:
    @pytest.mark.parametrize(("name", "pillow_format"), [("webp", "WEBP"), ("jpeg", "JPEG"), ("png", "PNG")])
    def test_encodes_to_target(self, name: str, pillow_format: str) -> None:
        data = codec.encode(Image.new("RGB", (30, 20), RED), name, codec.ORIGINAL_QUALITY)
        with Image.open(io.BytesIO(data)) as decoded:
            assert decoded.format == pillow_format
            assert decoded.size == (30, 20)

    def test_webp_keeps_alpha(self) -> None:
        data = codec.encode(Image.new("RGBA", (8, 8), (0, 0, 0, 0)), "webp", codec.THUMB_QUALITY)
        assert codec.decode(data, "WEBP").mode == "RGBA"

    def test_jpeg_flattens_alpha_on_white(self) -> None:
        data = codec.encode(Image.new("RGBA", (8, 8), (0, 0, 0, 0)), "jpeg", 95)
        decoded = codec.decode(data, "JPEG")
        assert decoded.mode == "RGB"
        assert _close_to(decoded.getpixel((4, 4)), (255, 255, 255))

    def test_lower_quality_is_smaller(self) -> None:
        noisy = Image.effect_noise((200, 200), 64).convert("RGB")
        high = codec.encode(noisy, "webp", codec.ORIGINAL_QUALITY)
        low = codec.encode(noisy, "webp", codec.THUMB_QUALITY)
        assert len(low) < len(high)

    @pytest.mark.parametrize("quality", [0, 101])
    def test_quality_out_of_range(self, quality: int) -> None:
        with pytest.raises(codec.EncodeError):
            codec.encode(Image.new("RGB", (4, 4)), "webp", quality)

    def test_unknown_target(self) -> None:
        with pytest.raises(codec.EncodeError):
            codec.encode(Image.new("RGB", (4, 4)), "gif", 90)


class TestProbeDimensions:
    def test_reads_header(self, tmp_path: Path, make_image: ImageFactory) -> None:
        path = tmp_path / "probe.webp"
        path.write_bytes(make_image(123, 45, "WEBP"))
        assert codec.probe_dimensions(path) == (123, 45)

    def test_garbage_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.webp"
        path.write_bytes(b"definitely not an image")
        with pytest.raises(codec.ProbeError):
            codec.probe_dimensions(path)

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(codec.ProbeError):
            codec.probe_dimensions(tmp_path / "missing.webp")


class TestFormats:
    def test_output_format_lookup(self) -> None:
        target = codec.output_format("WEBP")
        assert target.extension == "webp"
        assert target.mime_type == "image/webp"
        assert codec.output_format("jpeg").extension == "jpg"

    def test_unknown_output_format(self) -> None:
        with pytest.raises(codec.UnsupportedFormatError):
            codec.output_format("bmp")

    def test_codec_available_for_targets(self) -> None:
        assert codec.codec_available("webp") is True
        assert codec.codec_available("png") is True

    def test_codec_unavailable_for_unknown_target(self) -> None:
        assert codec.codec_available("tiff") is False
