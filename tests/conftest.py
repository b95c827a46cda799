import numpy as np
import pytest

from heightfield.buffer import PixelBuffer


def make_buffer(rgba_rows) -> PixelBuffer:
    return PixelBuffer.from_array(np.array(rgba_rows, dtype=np.uint8))


def solid(width, height, rgba=(128, 64, 32, 255)) -> PixelBuffer:
    data = np.empty((height, width, 4), dtype=np.uint8)
    data[...] = rgba
    return PixelBuffer(width, height, data)


def checkerboard(width, height, dark=(20, 20, 20), light=(230, 230, 230), cell=1) -> PixelBuffer:
    rows = np.arange(height) // cell
    cols = np.arange(width) // cell
    grid = (rows[:, None] + cols[None, :]) % 2
    data = np.empty((height, width, 4), dtype=np.uint8)
    data[..., :3] = np.where(grid[..., None] == 1, light, dark)
    data[..., 3] = 255
    return PixelBuffer(width, height, data)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def four_band_buffer():
    """Four vertical stripes of clearly different colors, 16x8."""
    data = np.zeros((8, 16, 4), dtype=np.uint8)
    data[:, 0:4, :3] = (10, 10, 10)
    data[:, 4:8, :3] = (200, 30, 30)
    data[:, 8:12, :3] = (30, 200, 30)
    data[:, 12:16, :3] = (245, 245, 245)
    data[..., 3] = 255
    return PixelBuffer(16, 8, data)
