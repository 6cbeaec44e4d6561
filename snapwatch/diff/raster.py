"""Raster codec — PNG bytes to and from RGBA pixel buffers."""

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image


@dataclass(frozen=True)
class RasterBuffer:
    """Decoded image as an ``(height, width, 4)`` uint8 RGBA array."""

    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self) -> None:
        if self.pixels.shape != (self.height, self.width, 4):
            raise ValueError(
                f"pixel array shape {self.pixels.shape} does not match "
                f"{self.width}x{self.height} RGBA"
            )

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @classmethod
    def from_image(cls, image: Image.Image) -> "RasterBuffer":
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        pixels = np.asarray(image, dtype=np.uint8).copy()
        return cls(width=image.width, height=image.height, pixels=pixels)

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels)


def decode_png(data: bytes) -> RasterBuffer:
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        return RasterBuffer.from_image(image)


def encode_png(raster: RasterBuffer) -> bytes:
    buf = io.BytesIO()
    raster.to_image().save(buf, format="PNG")
    return buf.getvalue()


def load_raster(path: Path) -> RasterBuffer:
    return decode_png(Path(path).read_bytes())
