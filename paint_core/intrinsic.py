import logging
from dataclasses import dataclass

import numpy as np
import onnxruntime

from paint_core.color_space import hex_to_linear_rgb, srgb_to_linear
from paint_core.errors import InferenceError, InitializationError, PreconditionError
from paint_core.illumination import RecolorStrategy

logger = logging.getLogger(__name__)


@dataclass
class IntrinsicDecomposition:
    """
    Learned decomposition, flat per pixel:
    reflectance (N, 3) linear, shading (N,), specular (N, 3) additive.
    """
    reflectance: np.ndarray
    shading: np.ndarray
    specular: np.ndarray
    width: int
    height: int


class IntrinsicNet:
    """Reflectance/shading/specular network run with ONNX Runtime."""

    OUTPUTS = ("reflectance", "shading", "specular")

    def __init__(self, model_path, providers=None):
        self.model_path = str(model_path)
        self.providers = providers or ["CPUExecutionProvider"]
        self.session = None

    def initialize(self):
        try:
            logger.info(f"Loading intrinsic decomposition model from: {self.model_path}")
            self.session = onnxruntime.InferenceSession(self.model_path, providers=self.providers)
        except Exception as e:
            raise InitializationError(f"Failed to load intrinsic model: {e}") from e

    def decompose(self, image_rgb):
        if self.session is None:
            raise PreconditionError("Intrinsic network not initialized. Call initialize() first.")
        h, w = image_rgb.shape[:2]
        linear = srgb_to_linear(image_rgb[..., :3]).astype(np.float32)
        tensor = np.ascontiguousarray(linear.transpose(2, 0, 1)[None, :, :, :])
        try:
            outputs = self.session.run(list(self.OUTPUTS), {"image": tensor})
        except Exception as e:
            raise InferenceError("decomposition", str(e)) from e
        return to_decomposition(dict(zip(self.OUTPUTS, outputs)), w, h)


def _flatten_channels(tensor, width, height, channels):
    """(1, C, H, W) network output -> (H*W, C), broadcasting a single channel."""
    arr = np.asarray(tensor, dtype=np.float32)
    if arr.ndim == 4:
        arr = arr[0]
    if arr.ndim == 2:
        arr = arr[None, :, :]
    if arr.shape[1:] != (height, width):
        raise InferenceError("decomposition", f"output shape {arr.shape} does not match {height}x{width}")
    flat = arr.reshape(arr.shape[0], -1).T
    if flat.shape[1] != channels:
        flat = np.repeat(flat[:, :1], channels, axis=1)
    return flat


def to_decomposition(outputs, width, height):
    missing = [name for name in IntrinsicNet.OUTPUTS if outputs.get(name) is None]
    if missing:
        raise InferenceError("decomposition", f"missing outputs {missing}")
    return IntrinsicDecomposition(
        reflectance=_flatten_channels(outputs["reflectance"], width, height, 3),
        shading=_flatten_channels(outputs["shading"], width, height, 1)[:, 0],
        specular=_flatten_channels(outputs["specular"], width, height, 3),
        width=width,
        height=height,
    )


class IntrinsicRecolor(RecolorStrategy):
    """
    Gain the masked reflectance so its mean lands exactly on the target
    linear color, then recombine reflectance * shading + specular.
    """

    name = "intrinsic"

    def __init__(self, net):
        self.net = net

    def prepare(self, image_rgb):
        return self.net.decompose(image_rgb)

    def recolor(self, image_rgb, indices, color_hex, model, out=None):
        out, idx = self._target(image_rgb, indices, out)
        if idx.size == 0:
            logger.warning("Empty mask passed to recolor; image left unchanged.")
            return out

        reflectance = model.reflectance[idx].astype(np.float64)
        shading = model.shading[idx].astype(np.float64)
        specular = model.specular[idx].astype(np.float64)

        target = hex_to_linear_rgb(color_hex)
        mean = reflectance.mean(axis=0)
        gain = np.ones(3)
        nonzero = mean > 0
        gain[nonzero] = target[nonzero] / mean[nonzero]

        recolored = np.clip(reflectance * gain, 0, 1)
        self._write(out, idx, recolored * shading[:, None] + specular)
        return out
