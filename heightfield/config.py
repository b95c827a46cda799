from dataclasses import asdict, dataclass, field, fields

from .errors import InvalidParameterError

SAMPLING_STRATEGIES = ("uniform", "random", "adaptive", "edge-aware")
HEIGHT_STRATEGIES = ("linear", "logarithmic", "exponential", "custom")
SMOOTHING_ALGORITHMS = ("none", "gaussian", "median", "bilateral")

MIN_COLORS = 2
MAX_COLORS = 8
MAX_SMOOTHING_RADIUS = 10


def _check_range(name: str, value, low, high) -> None:
    if value is None or not (low <= value <= high):
        raise InvalidParameterError(
            f"{name} must be between {low} and {high}, got {value!r}",
            field=name,
            value=value,
            expected=f"[{low}, {high}]",
        )


def _check_choice(name: str, value, choices) -> None:
    if value not in choices:
        raise InvalidParameterError(
            f"{name} must be one of {', '.join(choices)}, got {value!r}",
            field=name,
            value=value,
            expected=" | ".join(choices),
        )


def _from_dict(cls, data: dict):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidParameterError(
            f"Unknown {cls.__name__} option(s): {', '.join(unknown)}",
            field=unknown[0],
            value=data[unknown[0]],
            expected=", ".join(sorted(known)),
        )
    return cls(**data)


@dataclass
class SamplingConfig:
    """Configuration for picking the pixels that feed k-means."""

    max_samples: int = 10000
    strategy: str = "adaptive"
    edge_threshold: float = 30.0  # Sobel magnitude on 0-255 luminance
    preserve_corners: bool = True
    exclude_transparent: bool = True
    transparent_alpha: float = 0.1  # alpha (0-1) below which a pixel is skipped

    def validate(self) -> None:
        if not isinstance(self.max_samples, int) or self.max_samples < 1:
            raise InvalidParameterError(
                f"max_samples must be a positive integer, got {self.max_samples!r}",
                field="max_samples",
                value=self.max_samples,
                expected=">= 1",
            )
        _check_choice("strategy", self.strategy, SAMPLING_STRATEGIES)
        _check_range("edge_threshold", self.edge_threshold, 0.0, float("inf"))
        _check_range("transparent_alpha", self.transparent_alpha, 0.0, 1.0)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SamplingConfig":
        return _from_dict(cls, data)


@dataclass
class QuantizerConfig:
    """Configuration for k-means palette reduction."""

    n_colors: int = 4  # 2-8
    max_samples: int = 10000
    max_iterations: int = 50
    convergence_threshold: float = 0.1  # largest centroid move (RGB units)
    preserve_transparency: bool = True  # re-apply original alpha to the output

    # Pixels with alpha (0-1) below this are not clustered when
    # transparency is not preserved.
    alpha_threshold: float = 0.5

    sampling_strategy: str = "adaptive"
    preserve_corners: bool = True
    max_pixels: int = 100_000_000

    # Seed for centroid initialization; None = fresh entropy each run
    seed: int | None = None

    def validate(self) -> None:
        if isinstance(self.n_colors, bool) or not isinstance(self.n_colors, int):
            raise InvalidParameterError(
                f"n_colors must be an integer, got {self.n_colors!r}",
                field="n_colors",
                value=self.n_colors,
                expected=f"[{MIN_COLORS}, {MAX_COLORS}]",
            )
        _check_range("n_colors", self.n_colors, MIN_COLORS, MAX_COLORS)
        _check_range("max_samples", self.max_samples, 1, float("inf"))
        _check_range("max_iterations", self.max_iterations, 1, float("inf"))
        _check_range("convergence_threshold", self.convergence_threshold, 0.0, float("inf"))
        _check_range("alpha_threshold", self.alpha_threshold, 0.0, 1.0)
        _check_choice("sampling_strategy", self.sampling_strategy, SAMPLING_STRATEGIES)
        _check_range("max_pixels", self.max_pixels, 1, float("inf"))

    def sampling(self) -> SamplingConfig:
        """Sampler settings derived from this quantizer configuration."""
        return SamplingConfig(
            max_samples=self.max_samples,
            strategy=self.sampling_strategy,
            preserve_corners=self.preserve_corners,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "QuantizerConfig":
        return _from_dict(cls, data)


@dataclass
class HeightMapConfig:
    """Configuration for turning a palette into a height field."""

    strategy: str = "linear"
    smoothing: str = "none"
    smoothing_radius: int = 1  # pixels, 0-10
    edge_enhancement: bool = False
    edge_threshold: float = 0.1  # 0-1
    min_feature_size: int = 3  # pixels, for connected component analysis

    # Transparent pixels sink to a fixed height instead of using the palette
    handle_transparency: bool = True
    transparency_threshold: float = 0.1
    transparent_height: float = 0.0

    # Darkest-to-lightest heights for the custom strategy
    custom_height_levels: list[float] | None = field(default=None)

    def validate(self) -> None:
        _check_choice("strategy", self.strategy, HEIGHT_STRATEGIES)
        _check_choice("smoothing", self.smoothing, SMOOTHING_ALGORITHMS)
        if isinstance(self.smoothing_radius, bool) or not isinstance(self.smoothing_radius, int):
            raise InvalidParameterError(
                f"smoothing_radius must be an integer, got {self.smoothing_radius!r}",
                field="smoothing_radius",
                value=self.smoothing_radius,
                expected=f"[0, {MAX_SMOOTHING_RADIUS}]",
            )
        _check_range("smoothing_radius", self.smoothing_radius, 0, MAX_SMOOTHING_RADIUS)
        _check_range("edge_threshold", self.edge_threshold, 0.0, 1.0)
        _check_range("min_feature_size", self.min_feature_size, 0, float("inf"))
        _check_range("transparency_threshold", self.transparency_threshold, 0.0, 1.0)
        _check_range("transparent_height", self.transparent_height, 0.0, 1.0)

        if self.strategy == "custom" and not self.custom_height_levels:
            raise InvalidParameterError(
                "custom_height_levels must be provided for the custom strategy",
                field="custom_height_levels",
                value=self.custom_height_levels,
                expected="one height in [0, 1] per palette color",
            )
        for i, level in enumerate(self.custom_height_levels or []):
            _check_range(f"custom_height_levels[{i}]", level, 0.0, 1.0)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "HeightMapConfig":
        return _from_dict(cls, data)


def bookmark_height_config(**overrides) -> HeightMapConfig:
    """Preset for bookmark relief prints: linear levels, light Gaussian blur."""
    options = {
        "strategy": "linear",
        "smoothing": "gaussian",
        "smoothing_radius": 1,
        "edge_enhancement": False,
        "handle_transparency": True,
        "transparent_height": 0.0,
    }
    options.update(overrides)
    return HeightMapConfig.from_dict(options)
