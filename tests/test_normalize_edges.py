from __future__ import annotations

import io

import pytest
import torch
from PIL import Image

from fashion_ai.errors import ErrorCode, InvalidImageError, NormalizationError
from fashion_ai.normalize import NormalizeOptions, normalize, visualize_png
from fashion_ai.raster import RasterImage


def test_zero_width_image_rejected() -> None:
    img = RasterImage(width=0, height=1, channels=3, pixels=b"")
    with pytest.raises(InvalidImageError) as ei:
        normalize(img)
    assert ei.value.code is ErrorCode.invalid_image


def test_zero_height_image_rejected() -> None:
    with pytest.raises(InvalidImageError):
        normalize(RasterImage(width=4, height=0, channels=1, pixels=b""))


def test_unsupported_channel_counts_rejected() -> None:
    for channels in (0, 2, 4):
        img = RasterImage(width=2, height=2, channels=channels, pixels=bytes(4 * channels))
        with pytest.raises(InvalidImageError):
            normalize(img)


def test_pixel_buffer_size_mismatch_rejected() -> None:
    img = RasterImage(width=3, height=3, channels=3, pixels=bytes(10))
    with pytest.raises(InvalidImageError):
        normalize(img)


def test_unknown_resize_method_rejected() -> None:
    with pytest.raises(ValueError):
        NormalizeOptions(resize="bicubic")  # type: ignore[arg-type]


def test_visualize_png_renders_upscaled_gray() -> None:
    t = normalize(RasterImage(width=28, height=28, channels=1, pixels=bytes(28 * 28)))
    png = visualize_png(t, scale=10)
    assert png.startswith(b"\x89PNG")
    with Image.open(io.BytesIO(png)) as im:
        assert im.size == (280, 280)
        assert im.mode == "L"
        # Black input inverts to white
        assert im.getpixel((0, 0)) == 255


def test_visualize_png_rejects_wrong_shape() -> None:
    with pytest.raises(NormalizationError):
        visualize_png(torch.zeros((1, 1, 28, 28)))


def test_out_of_range_values_fail_postcondition(monkeypatch: pytest.MonkeyPatch) -> None:
    import fashion_ai.normalize as norm

    img = RasterImage(width=28, height=28, channels=1, pixels=bytes(28 * 28))
    monkeypatch.setattr(norm, "invert_gray", lambda v: v + 300.0)
    with pytest.raises(NormalizationError) as ei:
        normalize(img)
    assert ei.value.code is ErrorCode.preprocessing_failed
    assert "outside [0,1]" in ei.value.message

    monkeypatch.setattr(norm, "invert_gray", lambda v: v - 300.0)
    with pytest.raises(NormalizationError):
        normalize(img)
