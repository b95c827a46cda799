import pytest

from heightfield.config import (
    HeightMapConfig,
    QuantizerConfig,
    SamplingConfig,
    bookmark_height_config,
)
from heightfield.errors import InvalidParameterError


def test_defaults_validate():
    SamplingConfig().validate()
    QuantizerConfig().validate()
    HeightMapConfig().validate()


def test_quantizer_defaults():
    cfg = QuantizerConfig()
    assert cfg.max_samples == 10000
    assert cfg.max_iterations == 50
    assert cfg.convergence_threshold == 0.1
    assert cfg.preserve_transparency is True


def test_height_map_defaults():
    cfg = HeightMapConfig()
    assert cfg.strategy == "linear"
    assert cfg.smoothing == "none"
    assert cfg.smoothing_radius == 1
    assert cfg.edge_threshold == 0.1
    assert cfg.min_feature_size == 3
    assert cfg.transparent_height == 0.0


@pytest.mark.parametrize(
    "cfg, field",
    [
        (QuantizerConfig(n_colors=9), "n_colors"),
        (QuantizerConfig(n_colors=2.5), "n_colors"),
        (QuantizerConfig(alpha_threshold=1.5), "alpha_threshold"),
        (QuantizerConfig(sampling_strategy="spiral"), "sampling_strategy"),
        (HeightMapConfig(strategy="cubic"), "strategy"),
        (HeightMapConfig(smoothing="box"), "smoothing"),
        (HeightMapConfig(smoothing_radius=-1), "smoothing_radius"),
        (HeightMapConfig(smoothing_radius=1.5), "smoothing_radius"),
        (HeightMapConfig(edge_threshold=1.1), "edge_threshold"),
        (HeightMapConfig(transparent_height=-0.1), "transparent_height"),
        (HeightMapConfig(strategy="custom"), "custom_height_levels"),
        (
            HeightMapConfig(strategy="custom", custom_height_levels=[0.2, 2.0]),
            "custom_height_levels[1]",
        ),
        (SamplingConfig(max_samples=0), "max_samples"),
    ],
)
def test_invalid_values_name_the_field(cfg, field):
    with pytest.raises(InvalidParameterError) as exc:
        cfg.validate()
    assert exc.value.field == field
    assert exc.value.to_dict()["kind"] == "invalid_parameter"


def test_round_trip_through_dict():
    cfg = HeightMapConfig(strategy="custom", custom_height_levels=[1.0, 0.0])
    assert HeightMapConfig.from_dict(cfg.to_dict()) == cfg
    assert QuantizerConfig.from_dict({"n_colors": 6}).n_colors == 6


def test_unknown_keys_rejected():
    with pytest.raises(InvalidParameterError) as exc:
        QuantizerConfig.from_dict({"colours": 4})
    assert exc.value.field == "colours"


def test_bookmark_preset():
    cfg = bookmark_height_config()
    assert cfg.smoothing == "gaussian"
    assert cfg.smoothing_radius == 1
    assert bookmark_height_config(smoothing="median").smoothing == "median"
