"""Visual diff engine — perceptual per-pixel comparison of two snapshots.

Pixels are compared in YIQ space after blending onto white, the same colour
model pixelmatch uses: the squared delta weights luma over chroma, so a shift
in brightness counts for more than an equal shift in hue. ``threshold`` is in
[0, 1] and scales the largest possible delta (35215).

Unless ``include_aa`` is set, a pixel over the threshold that looks like an
anti-aliased edge in either image is not counted. That is pixelmatch's
neighbourhood test: the pixel sits between a darker and a brighter neighbour,
has at most two neighbours of equal brightness, and the darkest or brightest neighbour
is part of a flat area in both images. Such pixels are drawn in ``aa_color``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from snapwatch.errors import DimensionMismatchError
from snapwatch.models.config import SnapshotConfig
from snapwatch.utils.files import write_bytes_atomic

from .raster import RasterBuffer, encode_png

logger = logging.getLogger(__name__)

MAX_YIQ_DELTA = 35215.0
DEFAULT_THRESHOLD = 0.1
DEFAULT_HIGHLIGHT = (255, 0, 0)
DEFAULT_AA_COLOR = (255, 255, 0)
# Opacity of the candidate ghost drawn under the highlights
FADE_ALPHA = 0.1

# (dx, dy) of the 8 neighbours, x outer and y inner like pixelmatch's scan
_NEIGHBOURS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if dx or dy]


@dataclass
class DiffResult:
    diff_pixel_count: int
    diff_percentage: float
    artifact: RasterBuffer
    mask: np.ndarray  # (height, width) bool, True where pixels differ
    antialiased_pixel_count: int = 0


def _blend_on_white(pixels: np.ndarray) -> np.ndarray:
    rgb = pixels[..., :3].astype(np.float64)
    alpha = pixels[..., 3:4].astype(np.float64) / 255.0
    return 255.0 + (rgb - 255.0) * alpha


def _luma(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.29889531 + rgb[..., 1] * 0.58662247 + rgb[..., 2] * 0.11448223


def _yiq_delta(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Squared perceptual distance for every pixel of two blended RGB arrays."""
    y = _luma(a) - _luma(b)
    d = a - b
    i = d[..., 0] * 0.59597799 - d[..., 1] * 0.27417610 - d[..., 2] * 0.32180189
    q = d[..., 0] * 0.21147017 - d[..., 1] * 0.52261711 + d[..., 2] * 0.31114694
    return 0.5053 * y * y + 0.299 * i * i + 0.1957 * q * q


def _packed(pixels: np.ndarray) -> np.ndarray:
    """One uint32 per RGBA pixel, for exact colour equality."""
    return np.ascontiguousarray(pixels).view(np.uint32)[..., 0]


def _neighbour(xs: np.ndarray, ys: np.ndarray, dx: int, dy: int, width: int, height: int):
    nx, ny = xs + dx, ys + dy
    valid = (nx >= 0) & (nx < width) & (ny >= 0) & (ny < height)
    return np.clip(nx, 0, width - 1), np.clip(ny, 0, height - 1), valid


def _edge_count(xs: np.ndarray, ys: np.ndarray, width: int, height: int) -> np.ndarray:
    # a pixel on the border starts with one "equal" neighbour
    on_edge = (xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)
    return on_edge.astype(np.int32)


def _has_many_siblings(packed: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """True where a pixel has more than two neighbours of exactly its colour."""
    height, width = packed.shape
    count = _edge_count(xs, ys, width, height)
    centre = packed[ys, xs]
    for dx, dy in _NEIGHBOURS:
        nx, ny, valid = _neighbour(xs, ys, dx, dy, width, height)
        count += valid & (packed[ny, nx] == centre)
    return count > 2


def _antialiased(
    luma: np.ndarray,
    packed: np.ndarray,
    other_packed: np.ndarray,
    xs: np.ndarray,
    ys: np.ndarray,
) -> np.ndarray:
    """pixelmatch's anti-aliasing test for pixels (xs, ys) of one image."""
    height, width = luma.shape
    zeroes = _edge_count(xs, ys, width, height)
    lowest = np.zeros(len(xs))
    highest = np.zeros(len(xs))
    low_x, low_y = xs.copy(), ys.copy()
    high_x, high_y = xs.copy(), ys.copy()
    centre = luma[ys, xs]

    for dx, dy in _NEIGHBOURS:
        nx, ny, valid = _neighbour(xs, ys, dx, dy, width, height)
        delta = np.where(valid, centre - luma[ny, nx], np.nan)
        zeroes += delta == 0
        lower = delta < lowest
        higher = ~lower & (delta > highest)
        lowest = np.where(lower, delta, lowest)
        low_x, low_y = np.where(lower, nx, low_x), np.where(lower, ny, low_y)
        highest = np.where(higher, delta, highest)
        high_x, high_y = np.where(higher, nx, high_x), np.where(higher, ny, high_y)

    # needs both a darker and a brighter neighbour and little flat surround
    candidate = (zeroes <= 2) & (lowest != 0) & (highest != 0)
    brighter_flat = _has_many_siblings(packed, low_x, low_y) & _has_many_siblings(other_packed, low_x, low_y)
    darker_flat = _has_many_siblings(packed, high_x, high_y) & _has_many_siblings(other_packed, high_x, high_y)
    return candidate & (brighter_flat | darker_flat)


def _antialiased_mask(baseline: RasterBuffer, candidate: RasterBuffer, over: np.ndarray) -> np.ndarray:
    """Subset of ``over`` that is anti-aliasing in either image."""
    aa = np.zeros_like(over)
    ys, xs = np.nonzero(over)
    if len(xs) == 0:
        return aa
    base_luma = _luma(_blend_on_white(baseline.pixels))
    cand_luma = _luma(_blend_on_white(candidate.pixels))
    base_packed = _packed(baseline.pixels)
    cand_packed = _packed(candidate.pixels)
    hit = (
        _antialiased(base_luma, base_packed, cand_packed, xs, ys)
        | _antialiased(cand_luma, cand_packed, base_packed, xs, ys)
    )
    aa[ys[hit], xs[hit]] = True
    return aa


def _render_artifact(
    background: RasterBuffer,
    mask: np.ndarray,
    aa_mask: np.ndarray,
    highlight_color: tuple[int, int, int],
    aa_color: tuple[int, int, int],
    diff_mask: bool,
) -> RasterBuffer:
    out = np.zeros((background.height, background.width, 4), dtype=np.uint8)
    if not diff_mask:
        # faded grayscale of the new capture, like pixelmatch's drawGrayPixel
        alpha = background.pixels[..., 3].astype(np.float64) / 255.0
        luma = _luma(background.pixels[..., :3].astype(np.float64))
        gray = np.clip(255.0 + (luma - 255.0) * FADE_ALPHA * alpha, 0, 255).astype(np.uint8)
        out[..., 0] = gray
        out[..., 1] = gray
        out[..., 2] = gray
        out[..., 3] = 255
        out[aa_mask] = (*aa_color, 255)
    out[mask] = (*highlight_color, 255)
    return RasterBuffer(width=background.width, height=background.height, pixels=out)


def diff(
    baseline: RasterBuffer,
    candidate: RasterBuffer,
    threshold: float = DEFAULT_THRESHOLD,
    highlight_color: tuple[int, int, int] = DEFAULT_HIGHLIGHT,
    diff_mask: bool = False,
    include_aa: bool = False,
    aa_color: tuple[int, int, int] = DEFAULT_AA_COLOR,
) -> DiffResult:
    """Compare two rasters of identical dimensions.

    Raises:
        DimensionMismatchError: if the sizes differ. Nothing is resized or
            padded; a size change means the capture itself changed.
    """
    if baseline.size != candidate.size:
        raise DimensionMismatchError(baseline.size, candidate.size)
    if not 0.0 <= threshold <= 1.0:
        raise ValueError("threshold must be between 0 and 1")

    delta = _yiq_delta(_blend_on_white(baseline.pixels), _blend_on_white(candidate.pixels))
    over = delta > MAX_YIQ_DELTA * threshold * threshold
    if include_aa:
        aa_mask = np.zeros_like(over)
    else:
        aa_mask = _antialiased_mask(baseline, candidate, over)
    mask = over & ~aa_mask

    count = int(np.count_nonzero(mask))
    total = baseline.pixel_count
    percentage = (count / total) * 100 if total else 0.0

    artifact = _render_artifact(candidate, mask, aa_mask, highlight_color, aa_color, diff_mask)
    return DiffResult(
        diff_pixel_count=count,
        diff_percentage=percentage,
        artifact=artifact,
        mask=mask,
        antialiased_pixel_count=int(np.count_nonzero(aa_mask)),
    )


def count_highlighted(artifact: RasterBuffer, highlight_color: tuple[int, int, int] = DEFAULT_HIGHLIGHT) -> int:
    """Number of opaque artifact pixels painted in the highlight colour."""
    px = artifact.pixels
    hit = np.all(px[..., :3] == np.array(highlight_color, dtype=np.uint8), axis=-1) & (px[..., 3] == 255)
    return int(np.count_nonzero(hit))


class DiffEngine:
    """Applies the configured diff settings and persists artifacts."""

    def __init__(self, config: SnapshotConfig):
        self.threshold = config.diff_threshold
        self.highlight_color = tuple(config.highlight_color)
        self.diff_mask = config.diff_mask
        self.include_aa = config.include_aa
        self.aa_color = tuple(config.aa_color)

    def diff(self, baseline: RasterBuffer, candidate: RasterBuffer) -> DiffResult:
        result = diff(
            baseline,
            candidate,
            threshold=self.threshold,
            highlight_color=self.highlight_color,
            diff_mask=self.diff_mask,
            include_aa=self.include_aa,
            aa_color=self.aa_color,
        )
        logger.debug(
            "Diff %dx%d: %d pixels (%.4f%%) over threshold %.2f, %d anti-aliased",
            candidate.width, candidate.height,
            result.diff_pixel_count, result.diff_percentage, self.threshold,
            result.antialiased_pixel_count,
        )
        return result

    def write_artifact(self, result: DiffResult, path: Path) -> Path:
        write_bytes_atomic(path, encode_png(result.artifact))
        logger.debug("Wrote diff artifact to %s", path)
        return path
