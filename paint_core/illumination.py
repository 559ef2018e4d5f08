import logging
from dataclasses import dataclass

import numpy as np

from paint_core.color_space import (
    box_blur_float,
    hex_to_lab,
    lab_to_linear_rgb,
    linear_rgb_to_lab,
    linear_to_srgb,
    srgb_to_linear,
)
from paint_core.config import RecolorConfig

logger = logging.getLogger(__name__)


class RecolorStrategy:
    """
    One recolor algorithm. `prepare` runs once per base image and returns the
    precomputed per-pixel model; `recolor` repaints a pixel-index set using
    that model. Pixels outside the index set are never written.
    """

    name = None

    def prepare(self, image_rgb):
        raise NotImplementedError

    def recolor(self, image_rgb, indices, color_hex, model, out=None):
        raise NotImplementedError

    @staticmethod
    def _target(image_rgb, indices, out):
        """Resolve the output buffer and validated flat indices."""
        if out is None:
            out = np.array(image_rgb, dtype=np.uint8, copy=True)
        elif out.shape != image_rgb.shape:
            raise ValueError(f"Output shape {out.shape} does not match image {image_rgb.shape}")
        idx = np.asarray(indices, dtype=np.intp).ravel()
        pixel_count = image_rgb.shape[0] * image_rgb.shape[1]
        if idx.size and (idx.min() < 0 or idx.max() >= pixel_count):
            raise ValueError("Mask index out of range for this image.")
        return out, idx

    @staticmethod
    def _write(out, idx, linear_rgb):
        flat = out.reshape(-1, out.shape[-1])
        srgb = np.rint(linear_to_srgb(linear_rgb))
        flat[idx, :3] = np.clip(srgb, 0, 255).astype(np.uint8)


@dataclass
class IlluminationModel:
    """
    Single-image Retinex decomposition. Per-pixel flat arrays:
    L, A, B    reflectance in Lab
    gray       linear luminance of the source pixel
    shade      illumination multiplier, original_linear ~= reflectance * shade
    """
    L: np.ndarray
    A: np.ndarray
    B: np.ndarray
    gray: np.ndarray
    shade: np.ndarray
    width: int
    height: int


def compute_retinex(image_rgb, radius=RecolorConfig.RETINEX_BLUR_RADIUS):
    """
    Estimate illumination as the box-blurred log-luminance and divide it
    out of every channel to get reflectance.
    """
    h, w = image_rgb.shape[:2]
    logger.info(f"Computing Retinex decomposition ({w}x{h}, radius {radius})...")
    eps = RecolorConfig.LOG_EPSILON

    linear = srgb_to_linear(image_rgb[..., :3]).reshape(-1, 3)
    luminance = linear @ np.array(RecolorConfig.LUMINANCE_WEIGHTS)

    log_linear = np.log(np.maximum(linear, eps))
    log_lum = np.log(np.maximum(luminance, eps))
    blurred = box_blur_float(log_lum, w, h, radius)

    shade = np.exp(blurred)
    reflectance = np.exp(log_linear - blurred[:, None])
    lab = linear_rgb_to_lab(reflectance)

    return IlluminationModel(
        L=lab[:, 0].astype(np.float32),
        A=lab[:, 1].astype(np.float32),
        B=lab[:, 2].astype(np.float32),
        gray=luminance.astype(np.float32),
        shade=shade.astype(np.float32),
        width=w,
        height=h,
    )


class RetinexRecolor(RecolorStrategy):
    """
    Map the mask's mean reflectance onto the target color while keeping each
    pixel's lightness ratio and chroma offset, then reapply the shade.
    """

    name = "retinex"

    def __init__(self, radius=RecolorConfig.RETINEX_BLUR_RADIUS):
        self.radius = radius

    def prepare(self, image_rgb):
        return compute_retinex(image_rgb, self.radius)

    def recolor(self, image_rgb, indices, color_hex, model, out=None):
        out, idx = self._target(image_rgb, indices, out)
        if idx.size == 0:
            logger.warning("Empty mask passed to recolor; image left unchanged.")
            return out

        L = model.L[idx].astype(np.float64)
        A = model.A[idx].astype(np.float64)
        B = model.B[idx].astype(np.float64)
        gray = model.gray[idx].astype(np.float64)
        shade = model.shade[idx].astype(np.float64)

        mean_l = L.mean()
        mean_a = A.mean()
        mean_b = B.mean()
        mean_gray = gray.mean()

        target_l, target_a, target_b = hex_to_lab(color_hex)

        # Damp chroma texture on bright (specular) pixels
        if mean_gray > 0:
            chroma_scale = np.clip(gray / mean_gray,
                                   RecolorConfig.CHROMA_SCALE_MIN, RecolorConfig.CHROMA_SCALE_MAX)
        else:
            chroma_scale = np.ones_like(gray)
        new_a = target_a + (A - mean_a) * chroma_scale
        new_b = target_b + (B - mean_b) * chroma_scale

        raw_scale = target_l / mean_l if mean_l > 0 else 1.0
        lightness_scale = min(raw_scale, RecolorConfig.MAX_LIGHTNESS_SCALE)
        new_l = np.clip(L * lightness_scale, 0, 100)

        linear = lab_to_linear_rgb(np.stack([new_l, new_a, new_b], axis=-1))
        self._write(out, idx, linear * shade[:, None])
        return out


ALGORITHMS = {
    "retinex": "Retinex",
    "intrinsic": "Intrinsic (beta)",
}


def create_strategy(name, **kwargs):
    """
    Build a recolor strategy by name.
    'intrinsic' requires `net=` (an initialized IntrinsicNet).
    """
    if name == "retinex":
        return RetinexRecolor(**kwargs)
    if name == "intrinsic":
        from paint_core.intrinsic import IntrinsicRecolor
        return IntrinsicRecolor(**kwargs)
    raise ValueError(f"Unknown recolor algorithm: {name!r}. Choose from {sorted(ALGORITHMS)}")
