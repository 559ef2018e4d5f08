"""
Shared fixtures: synthetic images and an in-memory segmentation backend.
"""

import numpy as np
import pytest

from paint_core import segmentation


class FakeBackend:
    """
    Stand-in for a SAM encoder/decoder pair.

    The "embedding" is the letterboxed canvas itself. Decoding returns three
    channels: nothing, the region sharing the prompt pixel's exact color (or
    the prompt box), and everything. Scores decide which one wins.
    """

    def __init__(self, canvas_size=1024, scores=(0.2, 0.9, 0.5), fail_load=False, fail_decode=False,
                 low_res=None):
        self.canvas_size = canvas_size
        self.scores = np.array(scores, dtype=np.float32)
        self.fail_load = fail_load
        self.fail_decode = fail_decode
        self.low_res = low_res
        self.calls = {"configure": 0, "load": 0, "encode": 0, "decode": 0}
        self.last_prompt = None

    def configure_runtime(self, num_threads):
        self.calls["configure"] += 1

    def load(self):
        self.calls["load"] += 1
        if self.fail_load:
            raise OSError("corrupt model file")

    def encode(self, canvas_rgb):
        self.calls["encode"] += 1
        return {"image_embed": canvas_rgb.copy()}

    def decode(self, embedding, coords, labels, box=None):
        self.calls["decode"] += 1
        self.last_prompt = (coords.copy(), labels.copy(), None if box is None else box.copy())
        if self.fail_decode:
            raise RuntimeError("decoder exploded")
        canvas = embedding["image_embed"]
        if len(coords):
            x, y = coords[0]
            seed = canvas[int(y), int(x)]
            region = np.all(canvas == seed, axis=-1)
        else:
            x0, y0, x1, y1 = (int(v) for v in box)
            region = np.zeros(canvas.shape[:2], dtype=bool)
            region[y0:y1 + 1, x0:x1 + 1] = True
        logit = np.where(region, 5.0, -5.0).astype(np.float32)
        masks = np.stack([np.full_like(logit, -5.0), logit, np.full_like(logit, 5.0)])
        if self.low_res:
            import cv2
            masks = np.stack([cv2.resize(m, (self.low_res, self.low_res), interpolation=cv2.INTER_LINEAR)
                              for m in masks])
        return masks, self.scores


def make_split_image(width=200, height=100, left=(200, 40, 40), right=(40, 40, 200)):
    """Left half one color, right half another."""
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :width // 2] = left
    image[:, width // 2:] = right
    return image


def make_solid_image(width, height, color):
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = color
    return image


@pytest.fixture(autouse=True)
def reset_runtime_flag(monkeypatch):
    monkeypatch.setattr(segmentation, "_RUNTIME_CONFIGURED", False)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def ready_engine(fake_backend):
    engine = segmentation.SegmentationEngine(fake_backend)
    engine.initialize()
    return engine


@pytest.fixture
def split_image():
    return make_split_image()


@pytest.fixture
def textured_image():
    rng = np.random.default_rng(7)
    return rng.integers(20, 235, size=(24, 32, 3), dtype=np.uint8)
