"""Decoded RGBA pixel buffer handed in by the image loader."""

from dataclasses import dataclass

import numpy as np
from PIL import Image

from .errors import InvalidDimensionsError, InvalidInputError


@dataclass
class PixelBuffer:
    """Row-major RGBA image, origin top-left, 8 bits per channel.

    ``data`` has shape (height, width, 4) and dtype uint8.
    """

    width: int
    height: int
    data: np.ndarray

    @classmethod
    def from_bytes(cls, width: int, height: int, data: bytes | bytearray) -> "PixelBuffer":
        """Wrap a flat RGBA byte sequence of length width*height*4."""
        if data is None:
            raise InvalidInputError("Pixel data is required", field="data")
        check_dimensions(width, height)
        expected = width * height * 4
        if len(data) != expected:
            raise InvalidInputError(
                f"Pixel data has {len(data)} bytes, expected {expected}",
                field="data",
                value=len(data),
                expected=str(expected),
            )
        arr = np.frombuffer(bytes(data), dtype=np.uint8).reshape(height, width, 4)
        return cls(width, height, arr.copy())

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "PixelBuffer":
        """Wrap an (H, W, 4) uint8 array, or an (H, W, 3) one as opaque RGB."""
        if arr is None:
            raise InvalidInputError("Pixel array is required", field="data")
        arr = np.asarray(arr)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise InvalidInputError(
                f"Pixel array must have shape (H, W, 3|4), got {arr.shape}",
                field="data",
                value=arr.shape,
                expected="(H, W, 3) or (H, W, 4)",
            )
        h, w = arr.shape[:2]
        check_dimensions(w, h)
        if arr.shape[2] == 3:
            alpha = np.full((h, w, 1), 255, dtype=np.uint8)
            arr = np.concatenate([arr.astype(np.uint8), alpha], axis=2)
        return cls(w, h, np.ascontiguousarray(arr, dtype=np.uint8))

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        """Convert any Pillow image to an RGBA buffer."""
        if image is None:
            raise InvalidInputError("Image is required", field="image")
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return cls.from_array(np.array(image))

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.data, mode="RGBA")

    def to_bytes(self) -> bytes:
        return self.data.tobytes()

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def rgb(self) -> np.ndarray:
        """(N, 3) uint8 view of the color channels."""
        return self.data[..., :3].reshape(-1, 3)

    @property
    def alpha(self) -> np.ndarray:
        """(N,) alpha in [0, 1]."""
        return self.data[..., 3].reshape(-1).astype(np.float32) / 255.0

    def validate(self) -> None:
        if self.data is None:
            raise InvalidInputError("Pixel data is required", field="data")
        check_dimensions(self.width, self.height)
        if self.data.shape != (self.height, self.width, 4):
            raise InvalidInputError(
                f"Pixel data shape {self.data.shape} does not match "
                f"{self.width}x{self.height} RGBA",
                field="data",
                value=self.data.shape,
                expected=str((self.height, self.width, 4)),
            )


def check_dimensions(width: int, height: int, max_pixels: int | None = None) -> None:
    if width is None or height is None or width <= 0 or height <= 0:
        raise InvalidDimensionsError(
            f"Image dimensions must be positive, got {width}x{height}",
            field="dimensions",
            value=(width, height),
            expected="width > 0 and height > 0",
        )
    if max_pixels is not None and width * height > max_pixels:
        raise InvalidDimensionsError(
            f"Image has {width * height} pixels, limit is {max_pixels}",
            field="dimensions",
            value=(width, height),
            expected=f"width * height <= {max_pixels}",
        )
