import asyncio
import logging

import numpy as np

from paint_core.config import CanvasConfig
from paint_core.image_ops import mask_contains, mask_to_indices

logger = logging.getLogger(__name__)


class CanvasController:
    """
    Pointer-level glue between the canvas, the segmentation engine and the
    paint session.

    Only one authoritative request (click, box, candidate) runs at a time;
    extra clicks while busy are ignored. Hover previews are debounced and
    every click or pointer-leave bumps a generation counter so late hover
    results are dropped instead of drawn.
    """

    def __init__(self, session, engine, debounce=CanvasConfig.HOVER_DEBOUNCE_S):
        self.session = session
        self.engine = engine
        self.debounce = debounce
        self.hover_mask = None
        self.candidates = []
        self.status = ""
        self._busy = False
        self._generation = 0
        self._hover_task = None

    @property
    def is_busy(self):
        return self._busy

    async def prepare(self):
        """Embed the session's base image so clicks can be decoded."""
        self.status = "Generating image embeddings..."
        self._busy = True
        try:
            await asyncio.to_thread(self.engine.generate_embedding, self.session.base_image)
        finally:
            self._busy = False
        self.status = "Ready"

    def _clamp(self, x, y):
        x = min(max(int(round(x)), 0), self.session.width - 1)
        y = min(max(int(round(y)), 0), self.session.height - 1)
        return x, y

    # --- Hover ---

    def hover(self, x, y):
        """
        Schedule a debounced hover preview. Must be called from a running
        event loop. Returns the scheduled task.
        """
        self._cancel_hover_task()
        point = self._clamp(x, y)
        loop = asyncio.get_running_loop()
        self._hover_task = loop.create_task(self._hover_after_delay(point, self._generation))
        return self._hover_task

    async def _hover_after_delay(self, point, generation):
        await asyncio.sleep(self.debounce)
        if self._busy:
            return
        try:
            mask = await asyncio.to_thread(self.engine.generate_mask, point)
        except Exception:
            logger.exception("Failed to generate hover mask")
            return
        if generation != self._generation:
            logger.info("Discarding stale hover mask.")
            return
        self.hover_mask = mask

    def _cancel_hover_task(self):
        if self._hover_task is not None and not self._hover_task.done():
            self._hover_task.cancel()
        self._hover_task = None

    def leave(self):
        """Pointer left the canvas: cancel pending previews and clear overlay."""
        self._generation += 1
        self._cancel_hover_task()
        self.hover_mask = None

    # --- Authoritative actions ---

    async def click(self, x, y, color, group_id=None):
        """
        Segment at (x, y) and paint the surface. Returns the new Surface, or
        None when ignored (busy) or when the mask came back empty.
        """
        if self._busy:
            logger.info("Click ignored: a mask request is already in flight.")
            return None
        self.leave()
        self._busy = True
        self.status = "Generating mask..."
        try:
            mask = await asyncio.to_thread(self.engine.generate_mask, self._clamp(x, y))
            surface = self.session.paint(mask_to_indices(mask), color, group_id=group_id)
        except Exception:
            self.status = "Failed to generate mask"
            raise
        finally:
            self._busy = False
        self.status = "Ready"
        return surface

    async def box(self, x0, y0, x1, y1, top_k=None):
        """Box prompt -> ranked candidate masks kept for the user to pick."""
        if self._busy:
            logger.info("Box ignored: a mask request is already in flight.")
            return None
        self.leave()
        self._busy = True
        try:
            lo = self._clamp(min(x0, x1), min(y0, y1))
            hi = self._clamp(max(x0, x1), max(y0, y1))
            self.candidates = await asyncio.to_thread(
                self.engine.generate_masks, (), (), top_k, (lo[0], lo[1], hi[0], hi[1])
            )
        finally:
            self._busy = False
        return self.candidates

    def hit_test(self, x, y):
        """Index of the first candidate containing (x, y), else None."""
        for i, mask in enumerate(self.candidates):
            if mask_contains(mask, x, y):
                return i
        return None

    async def choose_candidate(self, index, color, group_id=None):
        if self._busy:
            return None
        mask = self.candidates[index]
        self.candidates = []
        return self.session.paint(mask_to_indices(mask), color, group_id=group_id)

    # --- Display ---

    def overlay_image(self):
        """Display image with the hover mask highlighted."""
        display = self.session.display_image()
        if self.hover_mask is None:
            return display
        alpha = CanvasConfig.HOVER_HIGHLIGHT_ALPHA
        region = display[..., :3][self.hover_mask].astype(np.float32)
        display[..., :3][self.hover_mask] = np.rint(region * (1 - alpha) + 255 * alpha).astype(np.uint8)
        return display
