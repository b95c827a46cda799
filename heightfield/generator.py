"""End-to-end run: RGBA buffer -> palette -> height field.

The quantizer reports into the first 85% of a single progress stream and
the height mapper into the rest, so callers see one monotonic sequence.
"""

import logging
from dataclasses import dataclass

import numpy as np

from .buffer import PixelBuffer
from .color import Color
from .config import HeightMapConfig, QuantizerConfig
from .errors import InvalidParameterError
from .feature_analyzer import ConnectedComponent, FeatureAnalyzer, HeightMapMetrics
from .height_mapper import HeightField, HeightMapper
from .progress import CancellationToken, ProgressCallback, ProgressReporter
from .quantizer import KMeansQuantizer, QuantizationResult

LOGGER = logging.getLogger(__name__)

QUANTIZE_SHARE = 0.85


@dataclass
class ReliefResult:
    palette: list[Color]
    quantized: QuantizationResult
    height_field: HeightField
    metrics: HeightMapMetrics | None = None
    components: list[ConnectedComponent] | None = None


def generate_height_field(
    buffer: PixelBuffer,
    quantizer_config: QuantizerConfig | None = None,
    height_config: HeightMapConfig | None = None,
    on_progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
    rng: np.random.Generator | None = None,
    analyze: bool = False,
    component_threshold: float = 0.1,
) -> ReliefResult:
    """Quantize ``buffer`` and turn the palette into a height field."""
    quantizer_config = quantizer_config or QuantizerConfig()
    height_config = height_config or HeightMapConfig()
    # Fail on bad parameters before any clustering work starts
    quantizer_config.validate()
    height_config.validate()
    _check_custom_levels(quantizer_config, height_config)

    reporter = ProgressReporter(on_progress)
    quantizer = KMeansQuantizer(
        quantizer_config,
        on_progress=reporter.scaled(0.0, QUANTIZE_SHARE),
        cancel=cancel,
        rng=rng,
    )
    quantized = quantizer.quantize(buffer)

    mapper = HeightMapper(
        height_config,
        on_progress=reporter.scaled(QUANTIZE_SHARE, 1.0),
        cancel=cancel,
    )
    field = mapper.generate(quantized.palette, quantized.buffer)
    LOGGER.info(
        "Generated %dx%d height field from %d colors",
        field.width,
        field.height,
        len(quantized.palette),
    )

    result = ReliefResult(quantized.palette, quantized, field)
    if analyze:
        analyzer = FeatureAnalyzer(height_config.min_feature_size)
        result.metrics = analyzer.metrics(field)
        result.components = analyzer.connected_components(field, component_threshold)
    return result


def _check_custom_levels(
    quantizer_config: QuantizerConfig, height_config: HeightMapConfig
) -> None:
    if height_config.strategy != "custom":
        return
    count = len(height_config.custom_height_levels)
    if count != quantizer_config.n_colors:
        raise InvalidParameterError(
            f"Custom height levels count must match color count ({quantizer_config.n_colors})",
            field="custom_height_levels",
            value=count,
            expected=str(quantizer_config.n_colors),
        )
