"""Diagnostics over a finished height field: raised regions and surface metrics."""

import logging
from dataclasses import dataclass

import numpy as np

from .height_mapper import HeightField

LOGGER = logging.getLogger(__name__)


@dataclass
class BoundingBox:
    x: int
    y: int
    width: int
    height: int


@dataclass
class ConnectedComponent:
    """A 4-connected region of cells above the height threshold."""

    pixels: list[tuple[int, int]]  # (x, y)
    area: int
    bounding_box: BoundingBox
    average_height: float


@dataclass
class HeightMapMetrics:
    min_height: float
    max_height: float
    unique_heights: int  # counted at 3 decimals
    smoothness_index: float  # 0-1, higher is smoother
    edge_sharpness: float  # mean local gradient
    memory_usage: int  # bytes

    @property
    def height_range(self) -> tuple[float, float]:
        return (self.min_height, self.max_height)


class FeatureAnalyzer:
    def __init__(self, min_feature_size: int = 3):
        self.min_feature_size = min_feature_size

    def connected_components(
        self, field: HeightField, threshold: float = 0.1
    ) -> list[ConnectedComponent]:
        """Regions above ``threshold``, largest first, small ones dropped."""
        values = field.values
        w = field.width
        above = (values > threshold).ravel()
        visited = np.zeros(above.shape, dtype=bool)
        flat_values = values.ravel()

        components = []
        for start in np.flatnonzero(above):
            if visited[start]:
                continue
            component = _flood_fill(flat_values, above, visited, w, field.height, int(start))
            if component.area >= self.min_feature_size:
                components.append(component)

        components.sort(key=lambda c: c.area, reverse=True)
        LOGGER.debug("Found %d components above %.3f", len(components), threshold)
        return components

    def metrics(self, field: HeightField) -> HeightMapMetrics:
        values = field.values.astype(np.float64)
        unique = len(field.distinct_values(3))

        # Forward differences over cells that have both a right and a lower neighbor
        current = values[:-1, :-1]
        dx = np.abs(values[:-1, 1:] - current)
        dy = np.abs(values[1:, :-1] - current)
        gradient = np.sqrt(dx * dx + dy * dy)
        mean_gradient = float(gradient.mean()) if gradient.size else 0.0

        return HeightMapMetrics(
            min_height=float(values.min()),
            max_height=float(values.max()),
            unique_heights=unique,
            smoothness_index=min(1.0, max(0.0, 1.0 - mean_gradient * 10)),
            edge_sharpness=mean_gradient,
            memory_usage=int(field.values.nbytes),
        )


def _flood_fill(
    values: np.ndarray,
    above: np.ndarray,
    visited: np.ndarray,
    width: int,
    height: int,
    start: int,
) -> ConnectedComponent:
    # Explicit stack: large plateaus would blow the recursion limit.
    stack = [start]
    visited[start] = True
    pixels = []
    total = 0.0
    min_x = max_x = start % width
    min_y = max_y = start // width

    while stack:
        index = stack.pop()
        y, x = divmod(index, width)
        pixels.append((x, y))
        total += float(values[index])
        min_x, max_x = min(min_x, x), max(max_x, x)
        min_y, max_y = min(min_y, y), max(max_y, y)

        neighbors = []
        if x + 1 < width:
            neighbors.append(index + 1)
        if x > 0:
            neighbors.append(index - 1)
        if y + 1 < height:
            neighbors.append(index + width)
        if y > 0:
            neighbors.append(index - width)
        for n in neighbors:
            if above[n] and not visited[n]:
                visited[n] = True
                stack.append(n)

    return ConnectedComponent(
        pixels=pixels,
        area=len(pixels),
        bounding_box=BoundingBox(min_x, min_y, max_x - min_x + 1, max_y - min_y + 1),
        average_height=total / len(pixels),
    )
