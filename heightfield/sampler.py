"""Stage 1: Pick a bounded, evenly spread subset of pixels for clustering.

Every strategy respects ``max_samples``, drops near-transparent pixels when
asked to, and can force the four image corners into the sample so border
colors are not lost to the stride.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np
from scipy import ndimage

from .buffer import PixelBuffer
from .color import Color, luminance_array
from .config import SamplingConfig

LOGGER = logging.getLogger(__name__)

ADAPTIVE_LARGE_IMAGE = 1_000_000  # pixels
CORNER_WEIGHT = 1.5


@dataclass(frozen=True)
class PixelSample:
    x: int
    y: int
    color: Color
    weight: float = 1.0


@dataclass
class SampleSet:
    """Sampled pixels stored column-wise.

    ``xs``/``ys`` are pixel positions, ``rgba`` is (N, 4) uint8 and
    ``weights`` the clustering importance of each sample.
    """

    xs: np.ndarray
    ys: np.ndarray
    rgba: np.ndarray
    weights: np.ndarray

    def __len__(self) -> int:
        return len(self.xs)

    def __getitem__(self, i: int) -> PixelSample:
        r, g, b, a = (int(v) for v in self.rgba[i])
        return PixelSample(
            int(self.xs[i]), int(self.ys[i]), Color.from_rgba_bytes(r, g, b, a), float(self.weights[i])
        )

    def __iter__(self):
        return (self[i] for i in range(len(self)))

    @property
    def rgb(self) -> np.ndarray:
        return self.rgba[:, :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.rgba[:, 3].astype(np.float32) / 255.0

    def filter(self, keep: np.ndarray) -> "SampleSet":
        return SampleSet(self.xs[keep], self.ys[keep], self.rgba[keep], self.weights[keep])

    @classmethod
    def concat(cls, parts: list["SampleSet"]) -> "SampleSet":
        parts = [p for p in parts if len(p)]
        if not parts:
            return _empty()
        return cls(
            np.concatenate([p.xs for p in parts]),
            np.concatenate([p.ys for p in parts]),
            np.concatenate([p.rgba for p in parts]),
            np.concatenate([p.weights for p in parts]),
        )

    def head(self, n: int) -> "SampleSet":
        return SampleSet(self.xs[:n], self.ys[:n], self.rgba[:n], self.weights[:n])


def _empty() -> SampleSet:
    return SampleSet(
        np.empty(0, dtype=np.int64),
        np.empty(0, dtype=np.int64),
        np.empty((0, 4), dtype=np.uint8),
        np.empty(0, dtype=np.float64),
    )


def _take(buffer: PixelBuffer, xs, ys, weight, config: SamplingConfig) -> SampleSet:
    xs = np.asarray(xs, dtype=np.int64).ravel()
    ys = np.asarray(ys, dtype=np.int64).ravel()
    rgba = buffer.data[ys, xs]
    weights = np.broadcast_to(np.asarray(weight, dtype=np.float64), xs.shape).copy()
    samples = SampleSet(xs, ys, rgba, weights)
    if config.exclude_transparent:
        samples = samples.filter(samples.alpha >= config.transparent_alpha)
    return samples


def sample_pixels(
    buffer: PixelBuffer,
    config: SamplingConfig | None = None,
    rng: np.random.Generator | None = None,
) -> SampleSet:
    """Sample at most ``config.max_samples`` pixels from ``buffer``.

    Images no larger than the cap are returned whole.
    """
    config = config or SamplingConfig()
    config.validate()
    rng = rng if rng is not None else np.random.default_rng()
    w, h = buffer.width, buffer.height
    total = w * h

    if total <= config.max_samples:
        ys, xs = np.mgrid[0:h, 0:w]
        return _take(buffer, xs, ys, 1.0, config)

    corners = _corner_samples(buffer, config) if config.preserve_corners else _empty()
    remaining = config.max_samples - len(corners)

    if config.strategy == "uniform":
        body = _uniform(buffer, remaining, config)
    elif config.strategy == "random":
        body = _random(buffer, remaining, config, rng)
    elif config.strategy == "edge-aware":
        body = _edge_weighted(buffer, remaining, config, rng)
    else:
        body = _adaptive(buffer, remaining, config, rng)

    samples = SampleSet.concat([corners, body]).head(config.max_samples)
    LOGGER.debug(
        "Sampled %d of %d pixels (%s strategy)", len(samples), total, config.strategy
    )
    return samples


def _corner_samples(buffer: PixelBuffer, config: SamplingConfig) -> SampleSet:
    w, h = buffer.width, buffer.height
    corners = {(0, 0), (w - 1, 0), (0, h - 1), (w - 1, h - 1)}
    xs, ys = zip(*sorted(corners, key=lambda p: (p[1], p[0])))
    return _take(buffer, xs, ys, CORNER_WEIGHT, config)


def _grid_axes(width: int, height: int, budget: int) -> tuple[np.ndarray, np.ndarray]:
    """Evenly spaced column/row indices whose product stays within budget."""
    scale = math.sqrt(budget / (width * height))
    nx = max(1, min(width, budget, int(width * scale)))
    ny = max(1, min(height, budget // nx))
    xs = np.unique(np.round(np.linspace(0, width - 1, nx)).astype(np.int64))
    ys = np.unique(np.round(np.linspace(0, height - 1, ny)).astype(np.int64))
    return xs, ys


def _uniform(buffer: PixelBuffer, budget: int, config: SamplingConfig) -> SampleSet:
    if budget <= 0:
        return _empty()
    cols, rows = _grid_axes(buffer.width, buffer.height, budget)
    ys, xs = np.meshgrid(rows, cols, indexing="ij")
    return _take(buffer, xs, ys, 1.0, config)


def _jittered(
    buffer: PixelBuffer, budget: int, config: SamplingConfig, rng: np.random.Generator
) -> SampleSet:
    if budget <= 0:
        return _empty()
    w, h = buffer.width, buffer.height
    cols, rows = _grid_axes(w, h, budget)
    ys, xs = np.meshgrid(rows, cols, indexing="ij")
    # Up to 30% of the grid step in either direction
    jitter = 0.3 * math.sqrt(w * h / budget)
    xs = np.clip(np.floor(xs + rng.uniform(-jitter, jitter, xs.shape)), 0, w - 1)
    ys = np.clip(np.floor(ys + rng.uniform(-jitter, jitter, ys.shape)), 0, h - 1)
    return _take(buffer, xs, ys, 1.0, config)


def _random(
    buffer: PixelBuffer, budget: int, config: SamplingConfig, rng: np.random.Generator
) -> SampleSet:
    if budget <= 0:
        return _empty()
    attempts = budget * 2
    xs = rng.integers(0, buffer.width, attempts)
    ys = rng.integers(0, buffer.height, attempts)
    return _take(buffer, xs, ys, 1.0, config).head(budget)


def edge_map(buffer: PixelBuffer, threshold: float) -> np.ndarray:
    """Sobel magnitude of luminance over 255, zero below threshold and on the border."""
    gray = luminance_array(buffer.data)
    gx = ndimage.sobel(gray, axis=1)
    gy = ndimage.sobel(gray, axis=0)
    magnitude = np.hypot(gx, gy)
    edges = np.where(magnitude > threshold, magnitude / 255.0, 0.0)
    edges[0, :] = edges[-1, :] = 0.0
    edges[:, 0] = edges[:, -1] = 0.0
    return edges


def _edge_weighted(
    buffer: PixelBuffer, budget: int, config: SamplingConfig, rng: np.random.Generator
) -> SampleSet:
    if budget <= 0:
        return _empty()
    weights = 1.0 + edge_map(buffer, config.edge_threshold).ravel() * 3.0
    count = min(budget, weights.size)
    picks = rng.choice(weights.size, size=count, replace=False, p=weights / weights.sum())
    ys, xs = np.divmod(picks, buffer.width)
    samples = _take(buffer, xs, ys, 1.0, config)
    samples.weights[:] = weights[samples.ys * buffer.width + samples.xs]
    return samples


def _adaptive(
    buffer: PixelBuffer, budget: int, config: SamplingConfig, rng: np.random.Generator
) -> SampleSet:
    if buffer.pixel_count > ADAPTIVE_LARGE_IMAGE:
        edge_budget = int(budget * 0.6)
        return SampleSet.concat(
            [
                _edge_weighted(buffer, edge_budget, config, rng),
                _uniform(buffer, budget - edge_budget, config),
            ]
        )
    return _jittered(buffer, budget, config, rng)


@dataclass
class SamplingReport:
    is_valid: bool
    issues: list[str]
    coverage: float


def validate_sampling(samples: SampleSet, width: int, height: int) -> SamplingReport:
    """Check sample positions and rough spatial coverage."""
    if len(samples) == 0:
        return SamplingReport(False, ["No samples generated"], 0.0)

    issues = []
    outside = (
        (samples.xs < 0) | (samples.xs >= width) | (samples.ys < 0) | (samples.ys >= height)
    )
    if outside.any():
        issues.append(f"{int(outside.sum())} samples have invalid positions")

    grid = math.ceil(math.sqrt(len(samples)))
    cell_x = np.floor(samples.xs / (width / grid)).astype(np.int64)
    cell_y = np.floor(samples.ys / (height / grid)).astype(np.int64)
    covered = len(set(zip(cell_x.tolist(), cell_y.tolist())))
    coverage = covered / (grid * grid)
    if coverage < 0.5:
        issues.append("Poor spatial coverage detected")

    return SamplingReport(not issues, issues, coverage)


def analyze_sampling(samples: SampleSet, width: int, height: int) -> dict:
    total = width * height
    distinct = len(np.unique(samples.rgb, axis=0)) if len(samples) else 0
    return {
        "total_pixels": total,
        "sample_count": len(samples),
        "sampling_ratio": len(samples) / total if total else 0.0,
        "distinct_colors": distinct,
    }
