import logging
from dataclasses import dataclass

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WhiteBalance:
    """Per-channel gains applied before any decomposition."""
    r: float = 1.0
    g: float = 1.0
    b: float = 1.0

    @classmethod
    def identity(cls):
        return cls(1.0, 1.0, 1.0)

    def is_identity(self):
        return self.r == 1.0 and self.g == 1.0 and self.b == 1.0

    def as_array(self):
        return np.array([self.r, self.g, self.b], dtype=np.float64)


@dataclass(frozen=True)
class LightingPreset:
    r: float
    g: float
    b: float
    brightness: float


LIGHTING_PRESETS = {
    "normal": LightingPreset(1.0, 1.0, 1.0, 1.0),
    "morning": LightingPreset(1.1, 1.05, 0.95, 1.1),
    "afternoon": LightingPreset(1.05, 1.05, 1.1, 1.0),
    "evening": LightingPreset(1.1, 0.9, 0.8, 1.0),
    # Indoor LED lighting rather than moonlight
    "night": LightingPreset(0.9, 0.95, 1.1, 0.8),
    "cloudy": LightingPreset(0.95, 1.0, 1.1, 0.95),
}


def _scale_channels(image_rgb, gains):
    """Multiply RGB channels by gains, clip to bytes, keep alpha untouched."""
    out = np.array(image_rgb, dtype=np.uint8, copy=True)
    scaled = out[..., :3].astype(np.float32) * np.asarray(gains, dtype=np.float32)
    # Round to nearest, then clamp to the byte range
    out[..., :3] = np.clip(np.rint(scaled), 0, 255).astype(np.uint8)
    return out


def apply_white_balance(image_rgb, wb):
    """Return a white-balanced copy of the image."""
    if wb is None or wb.is_identity():
        return np.array(image_rgb, dtype=np.uint8, copy=True)
    return _scale_channels(image_rgb, wb.as_array())


def auto_white_balance(image_rgb):
    """
    Gray-world estimate: scale each channel so its mean matches the
    mean of all three.
    """
    means = image_rgb[..., :3].reshape(-1, 3).astype(np.float64).mean(axis=0)
    if np.any(means <= 0):
        logger.warning("Auto white balance skipped: a channel mean is zero.")
        return WhiteBalance.identity()
    gray = means.mean()
    r, g, b = gray / means
    return WhiteBalance(float(r), float(g), float(b))


def apply_lighting(image_rgb, mode):
    """
    Display-time lighting simulation: multiplicative tint times brightness.
    Never baked into base or history snapshots.
    """
    preset = LIGHTING_PRESETS.get(mode)
    if preset is None:
        raise ValueError(f"Unknown lighting preset: {mode!r}")
    if mode == "normal":
        return np.array(image_rgb, dtype=np.uint8, copy=True)
    gains = np.array([preset.r, preset.g, preset.b]) * preset.brightness
    return _scale_channels(image_rgb, gains)


# --- Mask representations ---

def mask_to_indices(mask):
    """Dense boolean/byte mask (H, W) -> sorted unique flat indices (uint32)."""
    return np.flatnonzero(np.asarray(mask)).astype(np.uint32)


def indices_to_mask(indices, width, height):
    mask = np.zeros(width * height, dtype=bool)
    mask[np.asarray(indices, dtype=np.intp)] = True
    return mask.reshape(height, width)


def normalize_indices(indices, pixel_count):
    """
    Canonical compact mask: unique uint32 flat indices, bounds-checked.
    """
    idx = np.unique(np.asarray(indices, dtype=np.int64).ravel())
    if idx.size and (idx[0] < 0 or idx[-1] >= pixel_count):
        raise ValueError(
            f"Mask index out of range for an image of {pixel_count} pixels."
        )
    return idx.astype(np.uint32)


def scale_mask(mask, width, height):
    """Resize a mask with nearest-neighbor sampling so edges stay crisp."""
    mask = np.asarray(mask)
    if mask.shape[:2] == (height, width):
        return mask.astype(bool)
    resized = cv2.resize(mask.astype(np.uint8), (width, height), interpolation=cv2.INTER_NEAREST)
    return resized > 0


def filter_largest_component(mask):
    """
    Keep only the largest 8-connected foreground component.
    Smaller disconnected specks are discarded.
    """
    mask_u8 = (np.asarray(mask) > 0).astype(np.uint8)
    num_labels, labels_im, stats, _ = cv2.connectedComponentsWithStats(mask_u8, connectivity=8)
    if num_labels <= 1:
        return np.zeros(mask_u8.shape, dtype=bool)
    # stats[0] is background
    largest = 1 + int(np.argmax(stats[1:, cv2.CC_STAT_AREA]))
    return labels_im == largest


def analyze_mask(mask):
    """Bounding box and size of every connected region, largest first."""
    mask_u8 = (np.asarray(mask) > 0).astype(np.uint8)
    num_labels, _, stats, _ = cv2.connectedComponentsWithStats(mask_u8, connectivity=8)
    regions = []
    for i in range(1, num_labels):
        x, y, w, h, area = stats[i]
        regions.append({
            "x_min": int(x),
            "y_min": int(y),
            "x_max": int(x + w - 1),
            "y_max": int(y + h - 1),
            "size": int(area),
        })
    regions.sort(key=lambda r: r["size"], reverse=True)
    return regions


def mask_contains(mask, x, y):
    """Hit test a dense mask at pixel (x, y); out of bounds is a miss."""
    h, w = mask.shape[:2]
    if not (0 <= x < w and 0 <= y < h):
        return False
    return bool(mask[int(y), int(x)])
