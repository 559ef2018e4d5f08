import re
from functools import lru_cache

import numpy as np

# D65 reference white
XN = 0.95047
YN = 1.0
ZN = 1.08883

_RGB_TO_XYZ = np.array([
    [0.4124564, 0.3575761, 0.1804375],
    [0.2126729, 0.7151522, 0.0721750],
    [0.0193339, 0.1191920, 0.9503041],
])

_XYZ_TO_RGB = np.array([
    [3.2404542, -1.5371385, -0.4985314],
    [-0.9692660, 1.8760108, 0.0415560],
    [0.0556434, -0.2040259, 1.0572252],
])

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")


def _scalar_or_array(value):
    """Hand back plain floats for scalar input, arrays otherwise."""
    if np.ndim(value) == 0:
        return float(value)
    return value


def normalize_hex(hex_color):
    """Validate a color string and return it as lowercase '#rrggbb'."""
    match = _HEX_RE.match(str(hex_color).strip())
    if not match:
        raise ValueError(f"Invalid hex color: {hex_color!r}")
    return "#" + match.group(1).lower()


def hex_to_rgb(hex_color):
    """Convert HEX string to RGB tuple."""
    hex_color = normalize_hex(hex_color).lstrip('#')
    return tuple(int(hex_color[i:i + 2], 16) for i in (0, 2, 4))


def rgb_to_hex(rgb):
    r, g, b = (int(np.clip(round(float(c)), 0, 255)) for c in rgb[:3])
    return '#%02x%02x%02x' % (r, g, b)


def srgb_to_linear(value):
    """
    Decode 8-bit sRGB to linear light in [0, 1].
    Accepts a scalar or any array of byte values.
    """
    v = np.asarray(value, dtype=np.float64) / 255.0
    out = np.where(v <= 0.04045, v / 12.92, np.power((v + 0.055) / 1.055, 2.4))
    return _scalar_or_array(out)


def linear_to_srgb(value):
    """
    Encode linear light to the sRGB byte range [0, 255] (float, unrounded).
    Values are clamped to [0, 1] after the transfer curve.
    """
    v = np.asarray(value, dtype=np.float64)
    encoded = np.where(
        v <= 0.0031308,
        12.92 * v,
        1.055 * np.power(np.maximum(v, 0.0031308), 1 / 2.4) - 0.055,
    )
    out = np.clip(encoded, 0.0, 1.0) * 255.0
    return _scalar_or_array(out)


def _f(t):
    return np.where(t > 0.008856, np.cbrt(t), 7.787 * t + 16 / 116)


def _finv(t):
    t3 = t * t * t
    return np.where(t3 > 0.008856, t3, (t - 16 / 116) / 7.787)


def linear_rgb_to_lab(rgb):
    """
    Linear RGB -> CIE Lab (D65).
    Args:
        rgb: array-like (..., 3) of linear values.
    Returns:
        ndarray (..., 3) holding L, a, b.
    """
    rgb = np.asarray(rgb, dtype=np.float64)
    xyz = rgb @ _RGB_TO_XYZ.T
    fx = _f(xyz[..., 0] / XN)
    fy = _f(xyz[..., 1] / YN)
    fz = _f(xyz[..., 2] / ZN)
    L = 116 * fy - 16
    a = 500 * (fx - fy)
    b = 200 * (fy - fz)
    return np.stack([L, a, b], axis=-1)


def lab_to_linear_rgb(lab):
    """Inverse of linear_rgb_to_lab. Output is not clamped."""
    lab = np.asarray(lab, dtype=np.float64)
    fy = (lab[..., 0] + 16) / 116
    fx = fy + lab[..., 1] / 500
    fz = fy - lab[..., 2] / 200
    xyz = np.stack([XN * _finv(fx), YN * _finv(fy), ZN * _finv(fz)], axis=-1)
    return xyz @ _XYZ_TO_RGB.T


@lru_cache(maxsize=256)
def _hex_to_lab_cached(hex_color):
    lab = linear_rgb_to_lab(hex_to_linear_rgb(hex_color))
    return tuple(float(c) for c in lab)


def hex_to_lab(hex_color):
    """Target swatch color in Lab, cached per color."""
    return np.array(_hex_to_lab_cached(normalize_hex(hex_color)))


def hex_to_linear_rgb(hex_color):
    return np.array([srgb_to_linear(c) for c in hex_to_rgb(hex_color)])


def box_blur_float(buffer, width, height, radius):
    """
    Mean filter over a float buffer using a summed-area table.

    The window is clamped to the image bounds and the divisor shrinks with
    it, so border pixels get the true local average.

    Args:
        buffer: flat (width*height,) or (height, width) float array.
        radius: half window size in pixels.
    Returns:
        Blurred array with the same shape as the input.
    """
    src = np.asarray(buffer, dtype=np.float64)
    grid = src.reshape(height, width)
    radius = int(radius)

    integral = np.zeros((height + 1, width + 1), dtype=np.float64)
    integral[1:, 1:] = grid.cumsum(axis=0).cumsum(axis=1)

    ys = np.arange(height)
    xs = np.arange(width)
    y1 = np.maximum(0, ys - radius)
    y2 = np.minimum(height - 1, ys + radius)
    x1 = np.maximum(0, xs - radius)
    x2 = np.minimum(width - 1, xs + radius)

    total = (
        integral[np.ix_(y2 + 1, x2 + 1)]
        - integral[np.ix_(y1, x2 + 1)]
        - integral[np.ix_(y2 + 1, x1)]
        + integral[np.ix_(y1, x1)]
    )
    area = np.outer(y2 - y1 + 1, x2 - x1 + 1)
    return (total / area).reshape(src.shape)
