import dataclasses
import logging

import numpy as np

from paint_core.color_space import normalize_hex
from paint_core.colorizer import ColorTransferEngine
from paint_core.history import HistoryManager
from paint_core.illumination import RetinexRecolor
from paint_core.image_ops import LIGHTING_PRESETS, WhiteBalance, apply_lighting, apply_white_balance, normalize_indices
from paint_core.surfaces import SurfaceManager

logger = logging.getLogger(__name__)


class PaintSession:
    """
    All edit state for one loaded image: the pristine base, its
    decomposition, surfaces and groups, history, and the lighting mode.

    Each mutating edit renders a private working copy and only then commits
    it as the current image, so a failure never leaves a half-painted base
    or history.
    """

    def __init__(self, strategy=None, history_capacity=None):
        self.compositor = ColorTransferEngine(strategy or RetinexRecolor())
        self.surfaces = SurfaceManager()
        self.history = HistoryManager() if history_capacity is None else HistoryManager(history_capacity)
        self.white_balance = WhiteBalance.identity()
        self.lighting = "normal"
        self._original = None
        self._current = None

    # --- Image lifecycle ---

    @property
    def has_image(self):
        return self._original is not None

    @property
    def original_image(self):
        return self._original

    @property
    def base_image(self):
        return self.compositor.base

    @property
    def current_image(self):
        return self._current

    @property
    def width(self):
        return self._original.shape[1]

    @property
    def height(self):
        return self._original.shape[0]

    def _require_image(self):
        if self._original is None:
            raise RuntimeError("No image loaded. Call load_image() first.")

    def load_image(self, image_rgb, white_balance=None, strategy=None):
        """
        Start a fresh session on a new image; discards all prior state.
        `strategy` picks the recolor algorithm for this image.
        """
        image_rgb = np.asarray(image_rgb)
        if image_rgb.ndim != 3 or image_rgb.shape[2] not in (3, 4):
            raise ValueError(f"Expected an (H, W, 3|4) image, got shape {image_rgb.shape}")
        if strategy is not None:
            self.compositor.strategy = strategy
        original = np.array(image_rgb, dtype=np.uint8, copy=True)
        original.setflags(write=False)
        self._original = original
        self.white_balance = white_balance or WhiteBalance.identity()
        self.surfaces.clear()
        self._rebuild_base()
        self._current = np.array(self.base_image, copy=True)
        self.history.reset(self._current, self.surfaces.snapshot())
        logger.info(f"Loaded image {self.width}x{self.height}")

    def _rebuild_base(self):
        self.compositor.set_base(apply_white_balance(self._original, self.white_balance))

    def set_white_balance(self, wb):
        """
        Re-derive the base and its decomposition, then repaint every surface.
        Older snapshots belong to a different base, so history restarts here.
        """
        self._require_image()
        self.white_balance = wb
        self._rebuild_base()
        self._current = self.compositor.reapply_all(self.surfaces.surfaces)
        self.history.reset(self._current, self.surfaces.snapshot())

    def set_algorithm(self, strategy):
        """Swap the recolor strategy; only before anything is painted."""
        if len(self.surfaces):
            raise ValueError("The recolor algorithm can only change before any surface is painted.")
        self.compositor.set_strategy(strategy)

    # --- Edits ---

    def _commit(self, image):
        self._current = image
        self.history.push(image, self.surfaces.snapshot())

    def _rerender(self):
        self._commit(self.compositor.reapply_all(self.surfaces.surfaces))

    def _indices(self, indices):
        return normalize_indices(indices, self.width * self.height)

    def paint(self, indices, color, group_id=None):
        """
        Create a surface from a mask and paint it over the current image.
        Returns the new surface, or None for an empty mask.
        """
        self._require_image()
        idx = self._indices(indices)
        if idx.size == 0:
            logger.warning("Empty mask; nothing painted.")
            return None
        # Render first so a failing recolor leaves surfaces untouched
        color = self.surfaces.get_group(group_id).color if group_id is not None else color
        painted = self.compositor.apply_color(idx, color, target=self._current)
        surface = self.surfaces.add_surface(idx, color, group_id=group_id)
        self._commit(painted)
        return surface

    def preview_color(self, indices, color):
        """Display image with one extra mask painted; nothing is committed."""
        self._require_image()
        painted = self.compositor.apply_color(self._indices(indices), color, target=self._current)
        return apply_lighting(painted, self.lighting)

    def recolor_surface(self, surface_id, color):
        self.surfaces.set_surface_color(surface_id, color)
        self._rerender()

    def toggle_surface(self, surface_id):
        surface = self.surfaces.toggle_surface(surface_id)
        self._rerender()
        return surface

    def remove_surface(self, surface_id):
        surface = self.surfaces.remove_surface(surface_id)
        self._rerender()
        return surface

    # Group bookkeeping leaves pixels alone but is still an undoable step

    def add_group(self, name, color="#ffffff"):
        self._require_image()
        group =self.surfaces.add_group(name, color)
        self._commit(self._current)
        return group

    def rename_group(self, group_id, name):
        group = self.surfaces.rename_group(group_id, name)
        self._commit(self._current)
        return group

    def remove_group(self, group_id):
        group = self.surfaces.remove_group(group_id)
        self._commit(self._current)
        return group

    def assign_to_group(self, surface_id, group_id):
        surface = self.surfaces.assign_to_group(surface_id, group_id)
        self._rerender()
        return surface

    def set_group_color(self, group_id, color):
        members = self.surfaces.set_group_color(group_id, color)
        self._rerender()
        return members

    def preview_group_color(self, group_id, color):
        """
        Display image as if the group had `color`. Surfaces, the current
        image and history are left untouched; commit with set_group_color.
        """
        self._require_image()
        self.surfaces.get_group(group_id)
        color = normalize_hex(color)
        previewed = [
            dataclasses.replace(s, color=color) if s.group_id == group_id else s
            for s in self.surfaces.surfaces
        ]
        return apply_lighting(self.compositor.reapply_all(previewed), self.lighting)

    # --- History ---

    def _restore(self, entry):
        if entry is None:
            return False
        self._current = np.array(entry.image, copy=True)
        if entry.state is not None:
            self.surfaces.restore(entry.state)
        return True

    def undo(self):
        return self._restore(self.history.undo())

    def redo(self):
        return self._restore(self.history.redo())

    def reset(self):
        """Drop all surfaces and groups and return to the pristine base."""
        self._require_image()
        self.surfaces.clear()
        self._current = np.array(self.base_image, copy=True)
        self.history.reset(self._current, self.surfaces.snapshot())

    # --- Display ---

    def set_lighting(self, mode):
        if mode not in LIGHTING_PRESETS:
            raise ValueError(f"Unknown lighting preset: {mode!r}")
        self.lighting = mode

    def display_image(self):
        self._require_image()
        return apply_lighting(self._current, self.lighting)
