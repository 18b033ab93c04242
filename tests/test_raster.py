from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image

from fashion_ai.config import Limits
from fashion_ai.errors import ErrorCode, ImageTooLargeError, InvalidImageError
from fashion_ai.raster import decode_image_bytes, load_raster, raster_from_image

_LIMITS = Limits(max_bytes=5 * 1024 * 1024, max_side_px=1024)


def _encode(img: Image.Image, fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def test_rgb_png_decodes_to_three_channels() -> None:
    raw = _encode(Image.new("RGB", (31, 17), (10, 20, 30)))
    r = decode_image_bytes(raw, _LIMITS)
    assert (r.width, r.height, r.channels) == (31, 17, 3)
    assert len(r.pixels) == 31 * 17 * 3
    assert r.pixels[:3] == bytes([10, 20, 30])


def test_gray_png_stays_single_channel() -> None:
    r = decode_image_bytes(_encode(Image.new("L", (8, 9), 77)), _LIMITS)
    assert r.channels == 1
    assert r.size == (8, 9)
    assert set(r.pixels) == {77}


def test_jpeg_accepted() -> None:
    r = decode_image_bytes(_encode(Image.new("RGB", (16, 16), (200, 200, 200)), "JPEG"), _LIMITS)
    assert r.channels == 3


def test_transparent_pixels_read_as_white() -> None:
    img = Image.new("RGBA", (4, 4), (0, 0, 0, 0))
    r = raster_from_image(img)
    assert r.channels == 3
    assert set(r.pixels) == {255}


def test_palette_image_converted_to_rgb() -> None:
    img = Image.new("P", (5, 5), 0)
    img.putpalette([0, 128, 255] + [0] * 765)
    r = raster_from_image(img)
    assert r.channels == 3
    assert r.pixels[:3] == bytes([0, 128, 255])


def test_garbage_bytes_rejected() -> None:
    with pytest.raises(InvalidImageError) as ei:
        decode_image_bytes(b"definitely not an image", _LIMITS)
    assert ei.value.code is ErrorCode.invalid_image


def test_empty_payload_rejected() -> None:
    with pytest.raises(InvalidImageError):
        decode_image_bytes(b"", _LIMITS)


def test_oversize_payload_rejected() -> None:
    raw = _encode(Image.new("RGB", (32, 32), (1, 2, 3)))
    with pytest.raises(ImageTooLargeError) as ei:
        decode_image_bytes(raw, Limits(max_bytes=16, max_side_px=1024))
    assert ei.value.code is ErrorCode.too_large


def test_oversize_dimensions_rejected() -> None:
    raw = _encode(Image.new("L", (300, 10), 0))
    with pytest.raises(InvalidImageError):
        decode_image_bytes(raw, Limits(max_bytes=1024 * 1024, max_side_px=256))


def test_unsupported_format_rejected() -> None:
    raw = _encode(Image.new("RGB", (8, 8), (0, 0, 0)), "TIFF")
    with pytest.raises(InvalidImageError):
        decode_image_bytes(raw, _LIMITS)


def test_load_raster_from_disk(tmp_path: Path) -> None:
    p = tmp_path / "shirt.png"
    p.write_bytes(_encode(Image.new("RGB", (12, 12), (255, 255, 255))))
    r = load_raster(p, _LIMITS)
    assert r.size == (12, 12)


def test_load_raster_missing_file(tmp_path: Path) -> None:
    with pytest.raises(InvalidImageError):
        load_raster(tmp_path / "missing.png", _LIMITS)


def test_sixteen_bit_png_scaled_not_clipped() -> None:
    raw = _encode(Image.new("I;16", (8, 8), 32768))
    r = decode_image_bytes(raw, _LIMITS)
    assert r.channels == 1
    assert set(r.pixels) == {128}


def test_wide_and_float_modes_scaled_to_bytes() -> None:
    assert set(raster_from_image(Image.new("I", (4, 4), 65535)).pixels) == {255}
    assert set(raster_from_image(Image.new("I", (4, 4), 512)).pixels) == {2}
    assert set(raster_from_image(Image.new("F", (4, 4), 0.2)).pixels) == {51}
    assert set(raster_from_image(Image.new("F", (4, 4), 200.0)).pixels) == {200}


def test_oversize_dimensions_rejected_before_pixel_decode(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from PIL import PngImagePlugin

    calls: list[tuple[int, int]] = []
    real_load = PngImagePlugin.PngImageFile.load

    def _spy(self: PngImagePlugin.PngImageFile) -> object:
        calls.append(self.size)
        return real_load(self)

    monkeypatch.setattr(PngImagePlugin.PngImageFile, "load", _spy)
    raw = _encode(Image.new("L", (3000, 10), 0))
    with pytest.raises(InvalidImageError) as ei:
        decode_image_bytes(raw, Limits(max_bytes=1024 * 1024, max_side_px=256))
    assert "dimensions" in ei.value.message
    assert calls == []
    # Within limits the pixel data is decoded
    decode_image_bytes(_encode(Image.new("L", (30, 10), 0)), _LIMITS)
    assert calls and calls[0] == (30, 10)
