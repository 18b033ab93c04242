from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from PIL import Image, ImageFile, ImageOps, UnidentifiedImageError

from .config import Limits
from .errors import ImageTooLargeError, InvalidImageError

ImageFile.LOAD_TRUNCATED_IMAGES = False

_SUPPORTED_FORMATS: Final[frozenset[str]] = frozenset({"PNG", "JPEG", "GIF", "BMP", "WEBP"})
_SINGLE_CHANNEL_MODES: Final[frozenset[str]] = frozenset(
    {"1", "L", "I", "I;16", "I;16B", "I;16L", "F"}
)
_WIDE_INT_MODES: Final[frozenset[str]] = frozenset({"I", "I;16", "I;16B", "I;16L"})
_INV_256: Final[float] = 1.0 / 256.0


@dataclass(frozen=True)
class RasterImage:
    """Decoded pixel grid, row-major with interleaved channels (0..255).

    Not validated on construction; ``normalize`` rejects malformed rasters.
    """

    width: int
    height: int
    channels: int
    pixels: bytes

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)


def raster_from_image(img: Image.Image) -> RasterImage:
    tmp = ImageOps.exif_transpose(img)
    if tmp is None:
        raise InvalidImageError("EXIF transpose failed")
    img2: Image.Image = tmp
    if img2.mode in ("RGBA", "LA", "PA") or "transparency" in img2.info:
        # Transparent regions read as a white canvas
        rgba = img2.convert("RGBA")
        bg = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        img2 = Image.alpha_composite(bg, rgba).convert("RGB")
    if img2.mode in _SINGLE_CHANNEL_MODES:
        gray = _to_8bit_gray(img2)
        return RasterImage(
            width=gray.size[0], height=gray.size[1], channels=1, pixels=gray.tobytes()
        )
    rgb = img2 if img2.mode == "RGB" else img2.convert("RGB")
    return RasterImage(width=rgb.size[0], height=rgb.size[1], channels=3, pixels=rgb.tobytes())


def _to_8bit_gray(img: Image.Image) -> Image.Image:
    if img.mode == "L":
        return img
    if img.mode in _WIDE_INT_MODES:
        # 16-bit samples: keep the high byte, a plain convert("L") would clip
        wide = img if img.mode == "I" else img.convert("I")
        return wide.point(lambda v: v * _INV_256).convert("L")
    if img.mode == "F":
        lo, hi = img.getextrema()
        if float(lo) >= 0.0 and float(hi) <= 1.0:
            return img.point(lambda v: v * 255.0).convert("L")
        # convert("L") clips anything outside 0..255
        return img.convert("L")
    return img.convert("L")


def decode_image_bytes(raw: bytes, limits: Limits) -> RasterImage:
    if len(raw) == 0:
        raise InvalidImageError("Empty image payload")
    if len(raw) > limits.max_bytes:
        raise ImageTooLargeError("File exceeds size limit")
    # Header-only open; pixel data is decoded after format and size checks
    img = _open_image_bytes(raw)
    if img.format not in _SUPPORTED_FORMATS:
        raise InvalidImageError("Only PNG, JPEG, GIF, BMP and WEBP are supported")
    w, h = img.size
    if max(w, h) > limits.max_side_px:
        raise InvalidImageError("Image dimensions too large")
    _load_pixels(img)
    return raster_from_image(img)


def load_raster(path: Path, limits: Limits) -> RasterImage:
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise InvalidImageError(f"Cannot read image: {path.as_posix()}") from exc
    return decode_image_bytes(raw, limits)


def _open_image_bytes(raw: bytes) -> Image.Image:
    try:
        return Image.open(io.BytesIO(raw))
    except UnidentifiedImageError:
        raise InvalidImageError("Failed to decode image") from None
    except Image.DecompressionBombError:
        raise ImageTooLargeError("Decompression bomb triggered") from None
    except OSError:
        raise InvalidImageError("Failed to decode image") from None


def _load_pixels(img: Image.Image) -> None:
    try:
        img.load()
    except Image.DecompressionBombError:
        raise ImageTooLargeError("Decompression bomb triggered") from None
    except OSError:
        # Truncated or otherwise corrupt payloads
        raise InvalidImageError("Failed to decode image") from None
