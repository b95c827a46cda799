"""Stage 3: Palette -> normalized height field.

Colors are ranked by luminance and the darkest gets the highest level
("ink density" relief). Each pixel takes its color's level, then the field
is optionally smoothed and edge-enhanced. Every stage writes a new array.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from scipy import ndimage

from .buffer import PixelBuffer
from .color import Color, sort_by_luminance
from .config import MAX_COLORS, HeightMapConfig
from .errors import (
    InvalidInputError,
    InvalidParameterError,
    InvariantViolationError,
    ProcessingCancelled,
    HeightFieldError,
)
from .progress import CancellationToken, ProgressCallback, ProgressReporter, check_cancelled

LOGGER = logging.getLogger(__name__)

BILATERAL_RANGE_SIGMA = 0.1
EDGE_BOOST = 0.1
MEDIAN_CHUNK_ELEMENTS = 16_000_000

STAGES = ("analysis", "mapping", "smoothing", "enhancement", "complete")


@dataclass
class HeightField:
    """Row-major grid of heights in [0, 1], one per source pixel."""

    width: int
    height: int
    values: np.ndarray  # (height, width) float32

    def flat(self) -> np.ndarray:
        """Flat float32 sequence of length width*height."""
        return self.values.reshape(-1)

    def distinct_values(self, decimals: int = 3) -> np.ndarray:
        return np.unique(np.round(self.values.astype(np.float64), decimals))


def height_levels_for(
    count: int, strategy: str = "linear", custom: list[float] | None = None
) -> list[float]:
    """Heights for ``count`` colors ordered darkest to lightest."""
    if strategy == "custom":
        if custom is None or len(custom) != count:
            raise InvalidParameterError(
                f"Custom height levels count must match color count ({count})",
                field="custom_height_levels",
                value=None if custom is None else len(custom),
                expected=str(count),
            )
        return [float(h) for h in custom]

    if count == 1:
        return [0.5]

    # 1 for the darkest color down to 0 for the lightest
    ranks = [(count - 1 - i) / (count - 1) for i in range(count)]
    if strategy == "linear":
        return ranks
    if strategy == "logarithmic":
        return [math.log10(1 + r * 9) for r in ranks]
    if strategy == "exponential":
        return [r**2 for r in ranks]
    raise InvalidParameterError(
        f"Unsupported height mapping strategy: {strategy}",
        field="strategy",
        value=strategy,
        expected="linear | logarithmic | exponential | custom",
    )


def _pack_rgb(rgb: np.ndarray) -> np.ndarray:
    rgb = rgb.astype(np.uint32)
    return (rgb[..., 0] << 16) | (rgb[..., 1] << 8) | rgb[..., 2]


class HeightMapper:
    def __init__(
        self,
        config: HeightMapConfig | None = None,
        on_progress: ProgressCallback | ProgressReporter | None = None,
        cancel: CancellationToken | None = None,
    ):
        self.config = config or HeightMapConfig()
        if isinstance(on_progress, ProgressReporter):
            self.reporter = on_progress
        else:
            self.reporter = ProgressReporter(on_progress)
        self.cancel = cancel
        self.state = "idle"

    def generate(self, palette: list[Color], buffer: PixelBuffer) -> HeightField:
        """Build the height field for a quantized ``buffer`` and its palette."""
        self._validate(palette, buffer)
        try:
            return self._run(palette, buffer)
        except ProcessingCancelled:
            self.state = "cancelled"
            LOGGER.info("Height mapping cancelled")
            raise

    def _enter(self, stage: str, progress: float, message: str) -> None:
        check_cancelled(self.cancel, stage)
        self.state = stage
        self.reporter.report(stage, progress, message)

    def _run(self, palette: list[Color], buffer: PixelBuffer) -> HeightField:
        cfg = self.config

        self._enter("analysis", 0.0, "Analyzing color palette...")
        levels = self.calculate_height_levels(palette)

        self._enter("mapping", 0.2, "Mapping pixels to heights...")
        values = self.map_pixels(buffer, levels)

        if cfg.smoothing != "none":
            self._enter("smoothing", 0.6, f"Applying {cfg.smoothing} smoothing...")
            values = smooth(values, cfg.smoothing, cfg.smoothing_radius)

        if cfg.edge_enhancement:
            self._enter("enhancement", 0.8, "Enhancing edges...")
            values = enhance_edges(values, cfg.edge_threshold)

        self._enter("complete", 1.0, "Height map complete")
        values = values.astype(np.float32)
        validate_height_values(values)
        return HeightField(buffer.width, buffer.height, values)

    def _validate(self, palette: list[Color], buffer: PixelBuffer) -> None:
        if buffer is None or getattr(buffer, "data", None) is None:
            raise InvalidInputError("Quantized image data is required", field="buffer")
        if not palette:
            raise InvalidInputError(
                "Color palette is required for height mapping",
                field="palette",
                value=0,
                expected=f"1-{MAX_COLORS} colors",
            )
        if len(palette) > MAX_COLORS:
            raise InvalidParameterError(
                f"At most {MAX_COLORS} colors are supported for height mapping",
                field="palette",
                value=len(palette),
                expected=f"1-{MAX_COLORS} colors",
            )
        self.config.validate()
        buffer.validate()

    def calculate_height_levels(self, palette: list[Color]) -> dict[tuple[int, int, int], float]:
        """Map each palette color key to its height."""
        unique: dict[tuple[int, int, int], Color] = {}
        for color in palette:
            unique.setdefault(color.key, color)
        ordered = sort_by_luminance(list(unique.values()))

        heights = height_levels_for(
            len(ordered), self.config.strategy, self.config.custom_height_levels
        )
        levels = {color.key: height for color, height in zip(ordered, heights)}
        LOGGER.debug("Height levels: %s", levels)
        return levels

    def map_pixels(
        self, buffer: PixelBuffer, levels: dict[tuple[int, int, int], float]
    ) -> np.ndarray:
        """Per-pixel lookup; colors missing from ``levels`` get 0."""
        codes = _pack_rgb(buffer.data[..., :3])
        keys = np.array(sorted(levels), dtype=np.uint32).reshape(-1, 3)
        key_codes = _pack_rgb(keys)
        key_heights = np.array([levels[tuple(k)] for k in keys.tolist()], dtype=np.float64)

        pos = np.clip(np.searchsorted(key_codes, codes), 0, len(key_codes) - 1)
        found = key_codes[pos] == codes
        values = np.where(found, key_heights[pos], 0.0)

        if self.config.handle_transparency:
            alpha = buffer.data[..., 3].astype(np.float64) / 255.0
            values = np.where(
                alpha < self.config.transparency_threshold, self.config.transparent_height, values
            )
        return values


# --- Smoothing ---


def smooth(values: np.ndarray, algorithm: str, radius: int) -> np.ndarray:
    if algorithm == "gaussian":
        return gaussian_smooth(values, radius)
    if algorithm == "median":
        return median_smooth(values, radius)
    if algorithm == "bilateral":
        return bilateral_smooth(values, radius)
    return values.copy()


def _gaussian_kernel(radius: int) -> np.ndarray:
    sigma = radius / 3
    x = np.arange(-radius, radius + 1, dtype=np.float64)
    kernel = np.exp(-(x * x) / (2 * sigma * sigma))
    return kernel / kernel.sum()


def gaussian_smooth(values: np.ndarray, radius: int) -> np.ndarray:
    """Separable Gaussian blur, renormalized where the kernel leaves the image."""
    values = np.asarray(values, dtype=np.float64)
    if radius <= 0:
        return values.copy()

    kernel = _gaussian_kernel(radius)
    ones = np.ones_like(values)
    out = values
    for axis in (1, 0):  # horizontal, then vertical
        num = ndimage.correlate1d(out, kernel, axis=axis, mode="constant", cval=0.0)
        den = ndimage.correlate1d(ones, kernel, axis=axis, mode="constant", cval=0.0)
        out = num / den
    return out


def _nan_padded(values: np.ndarray, radius: int) -> np.ndarray:
    return np.pad(values, radius, mode="constant", constant_values=np.nan)


def median_smooth(values: np.ndarray, radius: int) -> np.ndarray:
    """Median of the (2r+1)^2 window clipped to the image (upper median)."""
    values = np.asarray(values, dtype=np.float64)
    if radius <= 0:
        return values.copy()

    h, w = values.shape
    size = 2 * radius + 1
    windows = sliding_window_view(_nan_padded(values, radius), (size, size))
    out = np.empty_like(values)

    rows_per_chunk = max(1, MEDIAN_CHUNK_ELEMENTS // (w * size * size))
    for top in range(0, h, rows_per_chunk):
        chunk = windows[top : top + rows_per_chunk].reshape(-1, w, size * size)
        ordered = np.sort(chunk, axis=-1)  # NaN (outside the image) sorts last
        counts = np.count_nonzero(~np.isnan(chunk), axis=-1)
        out[top : top + rows_per_chunk] = np.take_along_axis(
            ordered, (counts // 2)[..., None], axis=-1
        )[..., 0]
    return out


def bilateral_smooth(values: np.ndarray, radius: int) -> np.ndarray:
    """Edge-preserving blur: spatial Gaussian times a range Gaussian on height."""
    values = np.asarray(values, dtype=np.float64)
    if radius <= 0:
        return values.copy()

    h, w = values.shape
    sigma_spatial = radius / 3
    padded = _nan_padded(values, radius)
    total = np.zeros_like(values)
    weight_sum = np.zeros_like(values)

    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            neighbor = padded[radius + dy : radius + dy + h, radius + dx : radius + dx + w]
            inside = ~np.isnan(neighbor)
            neighbor = np.where(inside, neighbor, 0.0)
            spatial = math.exp(-(dx * dx + dy * dy) / (2 * sigma_spatial * sigma_spatial))
            diff = values - neighbor
            weight = np.where(
                inside,
                spatial * np.exp(-(diff * diff) / (2 * BILATERAL_RANGE_SIGMA**2)),
                0.0,
            )
            total += neighbor * weight
            weight_sum += weight

    return total / weight_sum


# --- Edge enhancement ---


def sobel_magnitude(values: np.ndarray) -> np.ndarray:
    """Sobel gradient magnitude; only interior cells are meaningful."""
    values = np.asarray(values, dtype=np.float64)
    gx = ndimage.sobel(values, axis=1)
    gy = ndimage.sobel(values, axis=0)
    return np.hypot(gx, gy)


def enhance_edges(values: np.ndarray, threshold: float) -> np.ndarray:
    """Raise cells whose gradient exceeds ``threshold``; border cells pass through."""
    values = np.asarray(values, dtype=np.float64)
    out = values.copy()
    h, w = values.shape
    if h < 3 or w < 3:
        return out

    gradient = sobel_magnitude(values)[1:-1, 1:-1]
    interior = values[1:-1, 1:-1]
    out[1:-1, 1:-1] = np.where(
        gradient > threshold, np.minimum(1.0, interior + gradient * EDGE_BOOST), interior
    )
    return out


def validate_height_values(values: np.ndarray) -> None:
    """Fail on NaN or out-of-range heights instead of clamping them."""
    if values.size == 0:
        raise InvariantViolationError("Generated height map is empty", field="values", value=0)
    bad = ~np.isfinite(values) | (values < 0) | (values > 1)
    if bad.any():
        index = int(np.flatnonzero(bad.ravel())[0])
        value = float(values.ravel()[index])
        raise InvariantViolationError(
            f"Invalid height value {value} at index {index}",
            field="values",
            value=value,
            expected="[0, 1]",
        )


def generate_height_map(
    palette: list[Color],
    buffer: PixelBuffer,
    config: HeightMapConfig | None = None,
    on_progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
) -> HeightField:
    return HeightMapper(config, on_progress, cancel).generate(palette, buffer)


def validate_height_mapping_params(config: HeightMapConfig) -> list[HeightFieldError]:
    """Return every invalid field of ``config`` rather than stopping at the first."""
    errors: list[HeightFieldError] = []
    checks = [
        ("smoothing_radius", config.smoothing_radius, 0, 10),
        ("edge_threshold", config.edge_threshold, 0.0, 1.0),
        ("transparent_height", config.transparent_height, 0.0, 1.0),
    ]
    for name, value, low, high in checks:
        if value is None or not (low <= value <= high):
            errors.append(
                InvalidParameterError(
                    f"{name} must be between {low} and {high}",
                    field=name,
                    value=value,
                    expected=f"[{low}, {high}]",
                )
            )

    levels = config.custom_height_levels
    if levels is not None:
        if len(levels) == 0:
            errors.append(
                InvalidParameterError(
                    "Custom height levels must be a non-empty list",
                    field="custom_height_levels",
                    value=levels,
                    expected="non-empty list of heights in [0, 1]",
                )
            )
        for i, level in enumerate(levels):
            if not isinstance(level, (int, float)) or not (0 <= level <= 1):
                errors.append(
                    InvalidParameterError(
                        f"Custom height level at index {i} must be between 0 and 1",
                        field=f"custom_height_levels[{i}]",
                        value=level,
                        expected="[0, 1]",
                    )
                )
    return errors
