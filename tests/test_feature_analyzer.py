import numpy as np
import pytest

from heightfield.feature_analyzer import FeatureAnalyzer
from heightfield.height_mapper import HeightField


def _field(values) -> HeightField:
    values = np.asarray(values, dtype=np.float32)
    return HeightField(values.shape[1], values.shape[0], values)


def test_components_sorted_by_area_with_boxes():
    values = np.zeros((6, 8))
    values[0:2, 0:2] = 0.8  # 4 cells
    values[3:6, 4:8] = 0.5  # 12 cells
    values[5, 0] = 0.9  # single cell, below min size
    components = FeatureAnalyzer(min_feature_size=3).connected_components(_field(values), 0.1)

    assert [c.area for c in components] == [12, 4]
    big, small = components
    assert (big.bounding_box.x, big.bounding_box.y) == (4, 3)
    assert (big.bounding_box.width, big.bounding_box.height) == (4, 3)
    assert big.average_height == pytest.approx(0.5)
    assert small.average_height == pytest.approx(0.8)
    assert sorted(small.pixels) == [(0, 0), (0, 1), (1, 0), (1, 1)]


def test_diagonal_cells_are_not_connected():
    values = np.eye(4)
    components = FeatureAnalyzer(min_feature_size=1).connected_components(_field(values), 0.5)
    assert len(components) == 4
    assert all(c.area == 1 for c in components)


def test_threshold_is_exclusive():
    values = np.full((3, 3), 0.1)
    assert FeatureAnalyzer(1).connected_components(_field(values), 0.1) == []


def test_large_region_does_not_recurse():
    values = np.ones((400, 400))
    components = FeatureAnalyzer().connected_components(_field(values), 0.5)
    assert len(components) == 1
    assert components[0].area == 160_000


def test_spiral_region_is_one_component():
    values = np.zeros((9, 9))
    values[0, :] = 1
    values[:, 8] = 1
    values[8, :] = 1
    values[2:, 0] = 1
    values[2, 0:7] = 1
    components = FeatureAnalyzer().connected_components(_field(values), 0.5)
    assert len(components) == 1
    assert components[0].area == int(values.sum())


def test_metrics_of_flat_field():
    metrics = FeatureAnalyzer().metrics(_field(np.full((4, 4), 0.25)))
    assert metrics.height_range == (0.25, 0.25)
    assert metrics.unique_heights == 1
    assert metrics.smoothness_index == 1.0
    assert metrics.edge_sharpness == 0.0
    assert metrics.memory_usage == 64


def test_metrics_of_stepped_field():
    values = np.zeros((4, 4))
    values[:, 2:] = 1.0
    values[0, 0] = 0.0004  # rounds away at 3 decimals
    metrics = FeatureAnalyzer().metrics(_field(values))
    assert metrics.unique_heights == 2
    assert metrics.min_height == 0.0
    assert metrics.max_height == 1.0
    # Nine gradient cells, three of them straddle the step
    assert metrics.edge_sharpness == pytest.approx(3 / 9, abs=1e-3)
    assert metrics.smoothness_index == 0.0
