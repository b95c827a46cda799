"""Color value type, distances, luminance and color-space conversion.

Scalar helpers work on ``Color`` values; the ``*_array`` variants take
(..., 3) numpy arrays of 0-255 RGB and are what the per-pixel stages use.
"""

import math
from dataclasses import dataclass

import numpy as np

from .errors import InvalidParameterError

# sRGB primaries -> CIE XYZ (D65)
_RGB_TO_XYZ = np.array(
    [
        [0.4124564, 0.3575761, 0.1804375],
        [0.2126729, 0.7151522, 0.0721750],
        [0.0193339, 0.1191920, 0.9503041],
    ]
)
_D65_WHITE = np.array([0.95047, 1.00000, 1.08883])

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


def rgb_to_hex(r: int, g: int, b: int) -> str:
    return f"#{r:02x}{g:02x}{b:02x}"


def _clamp_channel(value: float) -> int:
    return max(0, min(255, int(math.floor(value + 0.5))))


@dataclass(frozen=True)
class Color:
    """8-bit RGB with alpha in [0, 1]. Out-of-range input is clamped."""

    r: int
    g: int
    b: int
    a: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "r", _clamp_channel(self.r))
        object.__setattr__(self, "g", _clamp_channel(self.g))
        object.__setattr__(self, "b", _clamp_channel(self.b))
        object.__setattr__(self, "a", max(0.0, min(1.0, float(self.a))))

    @classmethod
    def from_hex(cls, hex_color: str, alpha: float = 1.0) -> "Color":
        clean = hex_color.lstrip("#")
        if len(clean) != 6:
            raise InvalidParameterError(
                f"Invalid hex color {hex_color!r}",
                field="hex_color",
                value=hex_color,
                expected="#rrggbb",
            )
        try:
            r, g, b = (int(clean[i : i + 2], 16) for i in (0, 2, 4))
        except ValueError as e:
            raise InvalidParameterError(
                f"Invalid hex color {hex_color!r}",
                field="hex_color",
                value=hex_color,
                expected="#rrggbb",
            ) from e
        return cls(r, g, b, alpha)

    @classmethod
    def from_rgba_bytes(cls, r: int, g: int, b: int, a: int) -> "Color":
        return cls(r, g, b, a / 255.0)

    @property
    def rgb(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)

    @property
    def hex(self) -> str:
        return rgb_to_hex(self.r, self.g, self.b)

    @property
    def key(self) -> tuple[int, int, int]:
        """Lookup key used by height level maps."""
        return self.rgb

    def equals(self, other: "Color", tolerance: float = 0) -> bool:
        # Alpha tolerance is the channel tolerance rescaled to 0-1
        return (
            abs(self.r - other.r) <= tolerance
            and abs(self.g - other.g) <= tolerance
            and abs(self.b - other.b) <= tolerance
            and abs(self.a - other.a) <= tolerance / 255
        )


# --- Distances ---


def euclidean_distance(c1: Color, c2: Color) -> float:
    """RGB distance, the metric k-means clusters with."""
    dr = c1.r - c2.r
    dg = c1.g - c2.g
    db = c1.b - c2.b
    return math.sqrt(dr * dr + dg * dg + db * db)


def euclidean_distance_with_alpha(c1: Color, c2: Color) -> float:
    dr = c1.r - c2.r
    dg = c1.g - c2.g
    db = c1.b - c2.b
    da = (c1.a - c2.a) * 255  # same magnitude as the RGB channels
    return math.sqrt(dr * dr + dg * dg + db * db + da * da)


def rgb_to_lab_array(rgb: np.ndarray) -> np.ndarray:
    """Lab coordinates (D65) for 8-bit sRGB values; keeps the leading shape."""
    rgb = np.asarray(rgb)
    shape = rgb.shape
    channels = rgb.reshape(-1, 3).astype(np.float64) / 255.0

    # sRGB gamma removal
    linear = np.where(
        channels > 0.04045, ((channels + 0.055) / 1.055) ** 2.4, channels / 12.92
    )
    xyz = linear @ _RGB_TO_XYZ.T / _D65_WHITE
    f = np.where(xyz > 0.008856, np.cbrt(xyz), 7.787 * xyz + 16.0 / 116.0)

    lab = np.stack(
        [
            116.0 * f[:, 1] - 16.0,
            500.0 * (f[:, 0] - f[:, 1]),
            200.0 * (f[:, 1] - f[:, 2]),
        ],
        axis=1,
    )
    return lab.reshape(shape)


def rgb_to_lab(color: Color) -> tuple[float, float, float]:
    l, a, b = rgb_to_lab_array(np.array(color.rgb))
    return float(l), float(a), float(b)


def delta_e(c1: Color, c2: Color) -> float:
    """Perceptual distance (CIE76) between two colors."""
    lab = rgb_to_lab_array(np.array([c1.rgb, c2.rgb]))
    return float(np.linalg.norm(lab[0] - lab[1]))


# --- Luminance ---


def luminance(color: Color) -> float:
    """Weighted RGB sum (0-255) used to order palettes."""
    return 0.299 * color.r + 0.587 * color.g + 0.114 * color.b


def luminance_array(rgb: np.ndarray) -> np.ndarray:
    return np.asarray(rgb, dtype=np.float64)[..., :3] @ LUMA_WEIGHTS


def _gamma_decode(value: float) -> float:
    if value <= 0.03928:
        return value / 12.92
    return ((value + 0.055) / 1.055) ** 2.4


def relative_luminance(color: Color) -> float:
    """Gamma-correct luminance (0-1) for contrast ratios, not for ordering."""
    r = _gamma_decode(color.r / 255)
    g = _gamma_decode(color.g / 255)
    b = _gamma_decode(color.b / 255)
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def contrast_ratio(c1: Color, c2: Color) -> float:
    l1 = relative_luminance(c1)
    l2 = relative_luminance(c2)
    lighter, darker = max(l1, l2), min(l1, l2)
    return (lighter + 0.05) / (darker + 0.05)


def lightness(color: Color) -> float:
    """HSL lightness in [0, 1]."""
    channels = (color.r / 255, color.g / 255, color.b / 255)
    return (max(channels) + min(channels)) / 2


# --- HSL ---


def rgb_to_hsl(color: Color) -> tuple[float, float, float]:
    """Return (hue degrees, saturation %, lightness %)."""
    r, g, b = color.r / 255, color.g / 255, color.b / 255
    hi, lo = max(r, g, b), min(r, g, b)
    diff = hi - lo
    l = (hi + lo) / 2
    h = s = 0.0

    if diff != 0:
        s = diff / (2 - hi - lo) if l > 0.5 else diff / (hi + lo)
        if hi == r:
            h = (g - b) / diff + (6 if g < b else 0)
        elif hi == g:
            h = (b - r) / diff + 2
        else:
            h = (r - g) / diff + 4
        h /= 6

    return h * 360, s * 100, l * 100


def hsl_to_rgb(h: float, s: float, l: float, a: float = 1.0) -> Color:
    h = (h % 360) / 360
    s /= 100
    l /= 100

    c = (1 - abs(2 * l - 1)) * s
    x = c * (1 - abs((h * 6) % 2 - 1))
    m = l - c / 2

    sector = int(h * 6)
    r, g, b = [
        (c, x, 0),
        (x, c, 0),
        (0, c, x),
        (0, x, c),
        (x, 0, c),
        (c, 0, x),
    ][min(sector, 5)]
    return Color((r + m) * 255, (g + m) * 255, (b + m) * 255, a)


# --- Palette helpers ---


def sort_by_luminance(colors: list[Color]) -> list[Color]:
    """Darkest first."""
    return sorted(colors, key=luminance)


def sort_by_hue(colors: list[Color]) -> list[Color]:
    return sorted(colors, key=lambda c: rgb_to_hsl(c)[0])


def dominant_color(colors: list[Color], frequencies: list[int]) -> Color:
    if not colors:
        raise InvalidParameterError(
            "Cannot find dominant color of an empty list",
            field="colors",
            value=0,
            expected="at least one color",
        )
    if len(colors) != len(frequencies):
        raise InvalidParameterError(
            "colors and frequencies must have the same length",
            field="frequencies",
            value=len(frequencies),
            expected=str(len(colors)),
        )
    best = max(range(len(colors)), key=lambda i: frequencies[i])
    return colors[best]


def average_color(colors: list[Color], weights: list[float] | None = None) -> Color:
    if not colors:
        raise InvalidParameterError(
            "Cannot average an empty list of colors",
            field="colors",
            value=0,
            expected="at least one color",
        )
    w = np.ones(len(colors)) if weights is None else np.asarray(weights, dtype=np.float64)
    w = w / w.sum()
    rgba = np.array([(c.r, c.g, c.b, c.a) for c in colors], dtype=np.float64)
    r, g, b, a = w @ rgba
    return Color(r, g, b, a)


def is_transparent(color: Color, threshold: float = 0.1) -> bool:
    return color.a < threshold


def is_grayscale(color: Color, tolerance: int = 5) -> bool:
    return max(color.rgb) - min(color.rgb) <= tolerance
