"""Stage 2: K-means palette reduction.

Clusters a bounded pixel sample in RGB space with k-means++ seeding, then
recolors every pixel of the full image with its nearest palette entry.

The run moves through ``sampling -> initialization -> clustering ->
assignment -> complete``; cancellation is polled at each transition, after
every k-means iteration and between row blocks of the assignment pass, and
leaves the quantizer in the terminal ``cancelled`` state.
"""

import logging
from dataclasses import dataclass, replace

import numpy as np
from scipy.cluster.vq import vq

from .buffer import PixelBuffer, check_dimensions
from .color import Color
from .config import MAX_COLORS, MIN_COLORS, QuantizerConfig
from .errors import (
    EmptyColorSpaceError,
    HeightFieldError,
    InvalidInputError,
    InvalidParameterError,
    ProcessingCancelled,
)
from .progress import CancellationToken, ProgressCallback, ProgressReporter, check_cancelled
from .sampler import sample_pixels

LOGGER = logging.getLogger(__name__)

ASSIGNMENT_BLOCK_ROWS = 256

STAGES = ("sampling", "initialization", "clustering", "assignment", "complete")


@dataclass
class QuantizationResult:
    """Palette plus the recolored image."""

    palette: list[Color]  # unique colors, unordered
    buffer: PixelBuffer
    iterations: int
    converged: bool
    distortion: float  # sum of squared sample-to-centroid distances
    requested_colors: int
    collapsed: bool = False  # fewer unique colors than requested


class KMeansQuantizer:
    """One quantization run per instance state; safe to reuse sequentially."""

    def __init__(
        self,
        config: QuantizerConfig | None = None,
        on_progress: ProgressCallback | ProgressReporter | None = None,
        cancel: CancellationToken | None = None,
        rng: np.random.Generator | None = None,
    ):
        self.config = config or QuantizerConfig()
        if isinstance(on_progress, ProgressReporter):
            self.reporter = on_progress
        else:
            self.reporter = ProgressReporter(on_progress)
        self.cancel = cancel
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self.state = "idle"

    def quantize(self, buffer: PixelBuffer, n_colors: int | None = None) -> QuantizationResult:
        """Reduce ``buffer`` to at most ``n_colors`` colors."""
        config = self.config if n_colors is None else replace(self.config, n_colors=n_colors)
        self._validate(buffer, config)

        try:
            return self._run(buffer, config)
        except ProcessingCancelled:
            self.state = "cancelled"
            LOGGER.info("Quantization cancelled")
            raise

    def _enter(self, stage: str, progress: float, message: str) -> None:
        check_cancelled(self.cancel, stage)
        self.state = stage
        self.reporter.report(stage, progress, message)

    def _run(self, buffer: PixelBuffer, config: QuantizerConfig) -> QuantizationResult:
        k = config.n_colors

        self._enter("sampling", 0.0, "Sampling pixels for analysis...")
        points, weights = self._sample(buffer, config)

        self._enter("initialization", 0.2, "Initializing color centroids...")
        centroids = self._init_centroids(points, k)

        self._enter("clustering", 0.3, "Performing k-means clustering...")
        centroids, iterations, converged, distortion = self._cluster(
            points, weights, centroids, config
        )

        self._enter("assignment", 0.8, "Assigning colors to all pixels...")
        palette = _unique_palette(centroids)
        quantized = self._assign(buffer, palette, config)

        self._enter("complete", 1.0, "Quantization complete")
        collapsed = len(palette) < k
        if collapsed:
            LOGGER.warning(
                "Palette collapsed to %d of %d requested colors", len(palette), k
            )
        return QuantizationResult(
            palette=palette,
            buffer=quantized,
            iterations=iterations,
            converged=converged,
            distortion=distortion,
            requested_colors=k,
            collapsed=collapsed,
        )

    def _validate(self, buffer: PixelBuffer, config: QuantizerConfig) -> None:
        if buffer is None or getattr(buffer, "data", None) is None:
            raise InvalidInputError("Invalid image data provided", field="buffer")
        config.validate()
        buffer.validate()
        check_dimensions(buffer.width, buffer.height, config.max_pixels)

    def _sample(
        self, buffer: PixelBuffer, config: QuantizerConfig
    ) -> tuple[np.ndarray, np.ndarray]:
        """Sample colors as float RGB points plus their clustering weights."""
        sampling = config.sampling()
        samples = sample_pixels(buffer, sampling, self.rng)

        if not config.preserve_transparency:
            samples = samples.filter(samples.alpha >= config.alpha_threshold)
            if len(samples) == 0:
                return self._opaque_pixels(buffer, config)
        elif len(samples) == 0:
            # Fully transparent but alpha is restored later: cluster the hidden RGB.
            LOGGER.debug("No visible pixels sampled; clustering transparent pixel colors")
            samples = sample_pixels(buffer, replace(sampling, exclude_transparent=False), self.rng)

        LOGGER.debug("Clustering %d samples", len(samples))
        return samples.rgb.astype(np.float64), samples.weights

    def _opaque_pixels(
        self, buffer: PixelBuffer, config: QuantizerConfig
    ) -> tuple[np.ndarray, np.ndarray]:
        """Opaque pixels the sample grid stepped over, searched in the full image."""
        opaque = np.flatnonzero(buffer.alpha >= config.alpha_threshold)
        if opaque.size == 0:
            raise EmptyColorSpaceError(
                "No opaque pixels to cluster",
                field="alpha",
                value=0,
                expected=f"at least one pixel with alpha >= {config.alpha_threshold}",
            )
        if opaque.size > config.max_samples:
            opaque = np.sort(self.rng.choice(opaque, size=config.max_samples, replace=False))
        LOGGER.debug(
            "Sample missed all opaque pixels; clustering %d found in full image", opaque.size
        )
        return buffer.rgb[opaque].astype(np.float64), np.ones(opaque.size)

    def _init_centroids(self, points: np.ndarray, k: int) -> np.ndarray:
        """k-means++: spread seeds by squared distance to the nearest chosen one."""
        n = len(points)
        centroids = [points[self.rng.integers(n)]]
        closest = ((points - centroids[0]) ** 2).sum(axis=1)

        for _ in range(1, k):
            check_cancelled(self.cancel, "initialization")
            total = closest.sum()
            if total <= 0:
                # Every sample already coincides with a centroid
                break
            threshold = self.rng.random() * total
            idx = int(np.searchsorted(np.cumsum(closest), threshold, side="right"))
            if idx >= n or closest[idx] <= 0:
                idx = int(np.argmax(closest))
            centroids.append(points[idx])
            closest = np.minimum(closest, ((points - points[idx]) ** 2).sum(axis=1))

        return np.array(centroids, dtype=np.float64)

    def _cluster(
        self,
        points: np.ndarray,
        weights: np.ndarray,
        centroids: np.ndarray,
        config: QuantizerConfig,
    ) -> tuple[np.ndarray, int, bool, float]:
        k = len(centroids)
        iteration = 0
        converged = False
        distortion = 0.0

        while iteration < config.max_iterations and not converged:
            check_cancelled(self.cancel, "clustering")
            self.reporter.report(
                "clustering",
                0.3 + iteration / config.max_iterations * 0.5,
                f"K-means iteration {iteration + 1}/{config.max_iterations}",
                iteration,
            )

            labels, dist = vq(points, centroids)
            distortion = float((dist**2).sum())

            # Weighted means; empty clusters stay where they were
            counts = np.bincount(labels, weights=weights, minlength=k)
            sums = np.zeros_like(centroids)
            np.add.at(sums, labels, points * weights[:, None])
            updated = np.where(
                counts[:, None] > 0, sums / np.where(counts > 0, counts, 1.0)[:, None], centroids
            )

            movement = float(np.sqrt(((updated - centroids) ** 2).sum(axis=1)).max())
            converged = movement < config.convergence_threshold
            centroids = updated
            iteration += 1

        LOGGER.debug(
            "K-means finished after %d iteration(s), converged=%s", iteration, converged
        )
        return centroids, iteration, converged, distortion

    def _assign(
        self, buffer: PixelBuffer, palette: list[Color], config: QuantizerConfig
    ) -> PixelBuffer:
        codebook = np.array([c.rgb for c in palette], dtype=np.float64)
        out = np.empty_like(buffer.data)
        h = buffer.height

        for top in range(0, h, ASSIGNMENT_BLOCK_ROWS):
            check_cancelled(self.cancel, "assignment")
            block = buffer.data[top : top + ASSIGNMENT_BLOCK_ROWS]
            rgb = block[..., :3].reshape(-1, 3).astype(np.float64)
            codes, _ = vq(rgb, codebook)
            out[top : top + ASSIGNMENT_BLOCK_ROWS, ..., :3] = (
                codebook[codes].astype(np.uint8).reshape(block.shape[0], block.shape[1], 3)
            )

            alpha = block[..., 3]
            if config.preserve_transparency:
                out[top : top + ASSIGNMENT_BLOCK_ROWS, ..., 3] = alpha
            else:
                # Flatten to opaque; pixels under the threshold become fully
                # transparent so the height mapper can treat them as background.
                cutoff = config.alpha_threshold * 255
                out[top : top + ASSIGNMENT_BLOCK_ROWS, ..., 3] = np.where(alpha >= cutoff, 255, 0)

            self.reporter.report(
                "assignment",
                0.8 + min(top + ASSIGNMENT_BLOCK_ROWS, h) / h * 0.2,
                "Assigning colors to pixels...",
            )

        return PixelBuffer(buffer.width, buffer.height, out)


def _unique_palette(centroids: np.ndarray) -> list[Color]:
    palette: list[Color] = []
    seen = set()
    for centroid in centroids:
        color = Color(*centroid)
        if color.rgb not in seen:
            seen.add(color.rgb)
            palette.append(color)
    return palette


def quantize_image_colors(
    buffer: PixelBuffer,
    n_colors: int,
    config: QuantizerConfig | None = None,
    on_progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
    rng: np.random.Generator | None = None,
) -> QuantizationResult:
    quantizer = KMeansQuantizer(config, on_progress=on_progress, cancel=cancel, rng=rng)
    return quantizer.quantize(buffer, n_colors)


def suggest_color_count(buffer: PixelBuffer) -> int:
    """Rough color count suggestion from the image's color variety."""
    config = QuantizerConfig(max_samples=5000, sampling_strategy="uniform")
    samples = sample_pixels(buffer, config.sampling())
    distinct = len(np.unique(samples.rgb, axis=0)) if len(samples) else 0

    for limit, count in ((50, 2), (200, 3), (500, 4), (1000, 5), (2000, 6)):
        if distinct < limit:
            return count
    return min(MAX_COLORS, max(MIN_COLORS, int(np.log2(distinct))))


def validate_quantization_params(buffer: PixelBuffer, n_colors: int) -> list[HeightFieldError]:
    """Collect every problem with the inputs instead of raising on the first."""
    errors: list[HeightFieldError] = []
    if buffer is None or getattr(buffer, "data", None) is None:
        errors.append(InvalidInputError("Invalid image data", field="buffer"))
    else:
        try:
            buffer.validate()
        except HeightFieldError as e:
            errors.append(e)

    if isinstance(n_colors, bool) or not isinstance(n_colors, int) or not (
        MIN_COLORS <= n_colors <= MAX_COLORS
    ):
        errors.append(
            InvalidParameterError(
                f"Color count must be an integer between {MIN_COLORS} and {MAX_COLORS}",
                field="n_colors",
                value=n_colors,
                expected=f"[{MIN_COLORS}, {MAX_COLORS}]",
            )
        )
    return errors
