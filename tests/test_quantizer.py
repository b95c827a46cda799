import threading
import time

import numpy as np
import pytest

from conftest import checkerboard, solid
from heightfield.buffer import PixelBuffer
from heightfield.config import QuantizerConfig
from heightfield.errors import (
    EmptyColorSpaceError,
    InvalidDimensionsError,
    InvalidInputError,
    InvalidParameterError,
    ProcessingCancelled,
)
from heightfield.progress import CancellationToken
from heightfield.quantizer import (
    STAGES,
    KMeansQuantizer,
    quantize_image_colors,
    suggest_color_count,
    validate_quantization_params,
)


@pytest.mark.parametrize("k", [2, 3, 4])
def test_palette_has_exactly_k_colors(four_band_buffer, rng, k):
    result = quantize_image_colors(four_band_buffer, k, rng=rng)
    assert len(result.palette) == k
    assert not result.collapsed
    assert len({c.rgb for c in result.palette}) == k


def test_palette_size_up_to_eight(rng):
    data = np.zeros((8, 8, 4), dtype=np.uint8)
    for i in range(8):
        data[i, :, :3] = (i * 30, 255 - i * 30, (i * 70) % 256)
    data[..., 3] = 255
    result = quantize_image_colors(PixelBuffer(8, 8, data), 8, rng=rng)
    assert len(result.palette) == 8


def test_every_pixel_is_recolored_with_a_palette_color(four_band_buffer, rng):
    result = quantize_image_colors(four_band_buffer, 4, rng=rng)
    palette = {c.rgb for c in result.palette}
    pixels = {tuple(p) for p in result.buffer.rgb.tolist()}
    assert pixels <= palette
    assert result.buffer.data.shape == four_band_buffer.data.shape


def test_exact_colors_recovered_for_distinct_blocks(four_band_buffer, rng):
    result = quantize_image_colors(four_band_buffer, 4, rng=rng)
    assert {c.rgb for c in result.palette} == {
        (10, 10, 10),
        (200, 30, 30),
        (30, 200, 30),
        (245, 245, 245),
    }
    assert result.converged


def test_single_color_image_collapses(rng):
    result = quantize_image_colors(solid(6, 6, (90, 90, 90, 255)), 3, rng=rng)
    assert [c.rgb for c in result.palette] == [(90, 90, 90)]
    assert result.collapsed
    assert result.requested_colors == 3


def test_seed_makes_runs_repeatable():
    buf = checkerboard(40, 40, cell=3)
    noise = np.random.default_rng(0).integers(0, 60, (40, 40, 3), dtype=np.uint8)
    buf.data[..., :3] = buf.data[..., :3] // 2 + noise
    cfg = QuantizerConfig(n_colors=5, seed=7)
    a = KMeansQuantizer(cfg).quantize(buf)
    b = KMeansQuantizer(cfg).quantize(buf)
    assert [c.rgb for c in a.palette] == [c.rgb for c in b.palette]


def test_transparency_preserved_restores_alpha(rng):
    data = np.zeros((4, 4, 4), dtype=np.uint8)
    data[..., :3] = (50, 100, 150)
    data[..., 3] = 255
    data[0, 0, 3] = 0
    data[1, 1, 3] = 77
    result = quantize_image_colors(PixelBuffer(4, 4, data), 2, rng=rng)
    np.testing.assert_array_equal(result.buffer.data[..., 3], data[..., 3])


def test_transparency_flattened_when_not_preserved(rng):
    data = np.zeros((4, 4, 4), dtype=np.uint8)
    data[..., :3] = (50, 100, 150)
    data[..., 3] = 200
    data[0, 0, 3] = 10
    cfg = QuantizerConfig(preserve_transparency=False)
    result = quantize_image_colors(PixelBuffer(4, 4, data), 2, config=cfg, rng=rng)
    alpha = result.buffer.data[..., 3]
    assert alpha[0, 0] == 0
    assert (alpha.ravel()[1:] == 255).all()


def test_fully_transparent_image_without_preservation_fails(rng):
    buf = solid(10, 10, (0, 0, 0, 0))
    cfg = QuantizerConfig(preserve_transparency=False)
    with pytest.raises(EmptyColorSpaceError) as exc:
        quantize_image_colors(buf, 2, config=cfg, rng=rng)
    assert exc.value.kind == "empty_color_space"


def test_fully_transparent_image_with_preservation_still_quantizes(rng):
    buf = solid(10, 10, (40, 40, 40, 0))
    result = quantize_image_colors(buf, 2, rng=rng)
    assert [c.rgb for c in result.palette] == [(40, 40, 40)]
    assert (result.buffer.data[..., 3] == 0).all()


@pytest.mark.parametrize("k", [1, 9, 0, -3])
def test_color_count_out_of_range(four_band_buffer, k):
    with pytest.raises(InvalidParameterError) as exc:
        quantize_image_colors(four_band_buffer, k)
    assert exc.value.value == k
    assert exc.value.expected == "[2, 8]"


def test_missing_buffer_is_invalid_input():
    with pytest.raises(InvalidInputError):
        quantize_image_colors(None, 3)


def test_zero_area_image_is_invalid_dimensions():
    buf = PixelBuffer(0, 5, np.zeros((5, 0, 4), dtype=np.uint8))
    with pytest.raises(InvalidDimensionsError):
        quantize_image_colors(buf, 3)


def test_oversized_image_is_invalid_dimensions():
    cfg = QuantizerConfig(max_pixels=10)
    with pytest.raises(InvalidDimensionsError):
        KMeansQuantizer(cfg).quantize(solid(4, 4))


def test_progress_follows_the_stage_order(four_band_buffer, rng):
    events = []
    quantizer = KMeansQuantizer(on_progress=events.append, rng=rng)
    quantizer.quantize(four_band_buffer, 3)

    progress = [e.progress for e in events]
    assert progress == sorted(progress)
    assert all(0.0 <= p <= 1.0 for p in progress)
    assert progress[-1] == 1.0

    stages = []
    for e in events:
        if not stages or stages[-1] != e.stage:
            stages.append(e.stage)
    assert stages == list(STAGES)
    assert quantizer.state == "complete"


def test_cancel_before_start_raises_cancelled(four_band_buffer):
    token = CancellationToken()
    token.cancel()
    quantizer = KMeansQuantizer(cancel=token)
    with pytest.raises(ProcessingCancelled) as exc:
        quantizer.quantize(four_band_buffer, 3)
    assert exc.value.stage == "sampling"
    assert quantizer.state == "cancelled"


def test_cancel_from_progress_callback_stops_at_next_boundary(four_band_buffer, rng):
    token = CancellationToken()
    seen = []

    def on_progress(event):
        seen.append(event.stage)
        if event.stage == "initialization":
            token.cancel()

    with pytest.raises(ProcessingCancelled) as exc:
        KMeansQuantizer(on_progress=on_progress, cancel=token, rng=rng).quantize(
            four_band_buffer, 3
        )
    assert exc.value.stage in ("initialization", "clustering")
    assert "assignment" not in seen


def test_cancellation_is_prompt_on_large_images(rng):
    data = rng.integers(0, 256, (2000, 2000, 4), dtype=np.uint8)
    data[..., 3] = 255
    buf = PixelBuffer(2000, 2000, data)
    cfg = QuantizerConfig(n_colors=8, max_iterations=10_000, convergence_threshold=0.0)

    started = time.perf_counter()
    token = CancellationToken()
    timer = threading.Timer(0.02, token.cancel)
    timer.start()
    try:
        with pytest.raises(ProcessingCancelled):
            KMeansQuantizer(cfg, cancel=token, rng=np.random.default_rng(1)).quantize(buf)
    finally:
        timer.cancel()
    elapsed = time.perf_counter() - started
    # 10k iterations over 10k samples takes far longer than this
    assert elapsed < 5.0


def test_suggest_color_count():
    assert suggest_color_count(checkerboard(20, 20)) == 2
    gradient = np.zeros((64, 64, 4), dtype=np.uint8)
    gradient[..., 0] = np.arange(64)[None, :] * 4
    gradient[..., 1] = np.arange(64)[:, None] * 4
    gradient[..., 3] = 255
    assert suggest_color_count(PixelBuffer(64, 64, gradient)) == 8


def test_validate_quantization_params_collects_errors():
    assert validate_quantization_params(solid(2, 2), 4) == []
    errors = validate_quantization_params(None, 12)
    assert [e.kind for e in errors] == ["invalid_input", "invalid_parameter"]


def test_centroid_update_is_weighted():
    points = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [90.0, 0.0, 0.0]])
    start = np.array([[10.0, 0.0, 0.0]])
    quantizer = KMeansQuantizer(QuantizerConfig())

    even, _, converged, _ = quantizer._cluster(points, np.ones(3), start, quantizer.config)
    assert even[0, 0] == pytest.approx(30.0)
    assert converged

    heavy, _, _, _ = quantizer._cluster(
        points, np.array([1.0, 1.0, 4.0]), start, quantizer.config
    )
    assert heavy[0, 0] == pytest.approx(60.0)


def test_opaque_pixels_between_sample_points_are_found(rng):
    buf = solid(200, 200, (0, 0, 0, 0))
    buf.data[5, 5] = (180, 40, 90, 255)
    cfg = QuantizerConfig(
        n_colors=2,
        max_samples=100,
        sampling_strategy="uniform",
        preserve_corners=False,
        preserve_transparency=False,
    )
    result = KMeansQuantizer(cfg, rng=rng).quantize(buf)
    assert [c.rgb for c in result.palette] == [(180, 40, 90)]
    assert result.buffer.data[5, 5, 3] == 255
    assert result.buffer.data[0, 0, 3] == 0
