from __future__ import annotations

import io
from dataclasses import dataclass
from enum import Enum
from typing import Final

import torch
import torch.nn.functional as F
from PIL import Image
from torch import Tensor

from .config import Settings
from .errors import InvalidImageError, NormalizationError
from .logging import get_logger
from .raster import RasterImage

TARGET_SIDE: Final[int] = 28
TENSOR_SHAPE: Final[tuple[int, int, int, int]] = (1, TARGET_SIDE, TARGET_SIDE, 1)
_MAX_BYTE: Final[float] = 255.0


class ResizeMethod(str, Enum):
    nearest = "nearest"
    bilinear = "bilinear"


@dataclass(frozen=True)
class NormalizeOptions:
    resize: ResizeMethod = ResizeMethod.bilinear

    def __post_init__(self) -> None:
        # Accept plain strings from config files
        object.__setattr__(self, "resize", ResizeMethod(self.resize))

    @staticmethod
    def from_settings(s: Settings) -> NormalizeOptions:
        return NormalizeOptions(resize=ResizeMethod(s.classifier.resize_method))


_DEFAULT_OPTIONS: Final[NormalizeOptions] = NormalizeOptions()


def normalize(image: RasterImage, opts: NormalizeOptions = _DEFAULT_OPTIONS) -> Tensor:
    """Convert a decoded raster into the classifier's ``[1, 28, 28, 1]`` input.

    Order matters: grayscale mean, resize to 28x28, invert (``255 - v``), then
    divide by 255. Inversion maps dark-on-light photos onto the light-on-dark
    training distribution. The returned tensor is freshly allocated per call.
    """
    _validate(image)
    grid = _to_grid(image)
    gray = _grayscale(grid)
    resized = _resize(gray, opts.resize)
    inverted = invert_gray(resized)
    scaled = inverted / _MAX_BYTE
    out = scaled.reshape(TENSOR_SHAPE).contiguous()
    _check_range(out)
    return out


def invert_gray(values: Tensor) -> Tensor:
    """Byte-domain photometric inversion; applying it twice is the identity."""
    return _MAX_BYTE - values


def normalize_signature(opts: NormalizeOptions = _DEFAULT_OPTIONS) -> str:
    return f"v1/mean-gray+resize28-{opts.resize.value}+invert255+scale255"


def visualize_png(tensor: Tensor, scale: int = 10) -> bytes:
    """Render a normalized tensor as an upscaled grayscale PNG."""
    if tuple(tensor.shape) != TENSOR_SHAPE:
        raise NormalizationError(f"expected shape {list(TENSOR_SHAPE)}, got {list(tensor.shape)}")
    side = TARGET_SIDE
    as_bytes = (tensor.reshape(side, side) * _MAX_BYTE).round().clamp(0.0, _MAX_BYTE)
    vals: list[int] = [int(v) for v in as_bytes.to(torch.uint8).flatten().tolist()]
    img = Image.frombytes("L", (side, side), bytes(vals))
    vis = img.resize((side * scale, side * scale), resample=Image.Resampling.NEAREST)
    buf = io.BytesIO()
    vis.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


def _validate(image: RasterImage) -> None:
    if image.width <= 0 or image.height <= 0:
        raise InvalidImageError(f"image has empty dimensions {image.width}x{image.height}")
    if image.channels not in (1, 3):
        raise InvalidImageError(f"unsupported channel count {image.channels}")
    expected = image.width * image.height * image.channels
    if len(image.pixels) != expected:
        raise InvalidImageError(
            f"pixel buffer holds {len(image.pixels)} bytes, expected {expected}"
        )


def _to_grid(image: RasterImage) -> Tensor:
    # bytearray copy gives torch a writable buffer it may alias
    flat = torch.frombuffer(bytearray(image.pixels), dtype=torch.uint8)
    return flat.to(torch.float32).reshape(image.height, image.width, image.channels)


def _grayscale(grid: Tensor) -> Tensor:
    if int(grid.shape[2]) == 3:
        return grid.mean(dim=2)
    return grid[:, :, 0]


def _resize(gray: Tensor, method: ResizeMethod) -> Tensor:
    batch = gray.unsqueeze(0).unsqueeze(0)
    size = (TARGET_SIDE, TARGET_SIDE)
    if method == ResizeMethod.bilinear:
        out = F.interpolate(batch, size=size, mode="bilinear", align_corners=False)
    else:
        out = F.interpolate(batch, size=size, mode="nearest")
    # Float rounding in the interpolation weights can overshoot by a few ulps
    return out[0, 0].clamp(0.0, _MAX_BYTE)


def _check_range(t: Tensor) -> None:
    lo = float(t.min().item())
    hi = float(t.max().item())
    get_logger().debug("normalize_range min=%.4f max=%.4f", lo, hi)
    if lo < 0.0 or hi > 1.0:
        raise NormalizationError(f"normalized values outside [0,1]: min={lo} max={hi}")
