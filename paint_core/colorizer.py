import logging

import numpy as np

from paint_core.color_space import normalize_hex
from paint_core.illumination import RetinexRecolor

logger = logging.getLogger(__name__)


class ColorTransferEngine:
    """
    Recolor compositor.

    Holds the pristine base image (white-balanced, unpainted) and the active
    strategy's decomposition of it. Every render starts from a copy of the
    base; the base itself is read-only.
    """

    def __init__(self, strategy=None):
        self.strategy = strategy or RetinexRecolor()
        self._base = None
        self._model = None

    @property
    def base(self):
        return self._base

    @property
    def model(self):
        return self._model

    def set_base(self, image_rgb):
        """Take an owned copy of the base and precompute its decomposition."""
        base = np.array(image_rgb, dtype=np.uint8, copy=True)
        base.setflags(write=False)
        self._base = base
        self._model = self.strategy.prepare(base)

    def set_strategy(self, strategy):
        self.strategy = strategy
        if self._base is not None:
            self._model = strategy.prepare(self._base)

    def _require_base(self):
        if self._base is None:
            raise RuntimeError("No base image. Call set_base() first.")

    def apply_color(self, indices, color_hex, target=None):
        """
        Recolor one mask and return a fresh working image.
        Args:
            indices: flat pixel indices of the surface.
            color_hex: target paint color.
            target: image to paint over (copied); defaults to the base.
        """
        self._require_base()
        color_hex = normalize_hex(color_hex)
        source = self._base if target is None else target
        out = np.array(source, dtype=np.uint8, copy=True)
        return self.strategy.recolor(self._base, indices, color_hex, self._model, out=out)

    def reapply_all(self, surfaces):
        """
        Rebuild the image from the base, painting every enabled surface in
        order. Overlaps resolve as last applied wins.
        """
        self._require_base()
        out = np.array(self._base, copy=True)
        applied = 0
        for surface in surfaces:
            if not surface.enabled:
                continue
            self.strategy.recolor(self._base, surface.pixels, surface.color, self._model, out=out)
            applied += 1
        logger.info(f"Re-applied {applied} surface(s) from base.")
        return out
