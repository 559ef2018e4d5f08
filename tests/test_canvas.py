import asyncio
import time

import numpy as np
import pytest

from conftest import make_split_image
from paint_core.canvas import CanvasController
from paint_core.errors import PreconditionError
from paint_core.illumination import RetinexRecolor
from paint_core.session import PaintSession


class StubEngine:
    """Returns a fixed mask after an optional delay, counting calls."""

    def __init__(self, mask, delay=0.0):
        self.mask = mask
        self.delay = delay
        self.mask_calls = []

    def generate_embedding(self, image):
        pass

    def generate_mask(self, point):
        self.mask_calls.append(point)
        if self.delay:
            time.sleep(self.delay)
        return self.mask.copy()


def left_mask():
    mask = np.zeros((100, 200), dtype=bool)
    mask[:, :100] = True
    return mask


@pytest.fixture
def session():
    s = PaintSession(RetinexRecolor(radius=8))
    s.load_image(make_split_image())
    return s


@pytest.fixture
def controller(session, ready_engine):
    ctrl = CanvasController(session, ready_engine, debounce=0.01)
    asyncio.run(ctrl.prepare())
    return ctrl


class TestClick:
    def test_click_paints_surface(self, controller, session):
        surface = asyncio.run(controller.click(20, 50, "#e76f51"))
        assert surface is not None
        assert abs(surface.size - 100 * 100) <= 400
        assert len(session.history) == 2
        assert controller.status == "Ready"
        assert not controller.is_busy

    def test_click_outside_image_is_clamped(self, controller, session):
        surface = asyncio.run(controller.click(-30, 500, "#e76f51"))
        assert surface is not None
        assert session.current_image[50, 10].tolist() != [200, 40, 40]

    def test_second_click_while_busy_is_ignored(self, session):
        engine = StubEngine(left_mask(), delay=0.05)
        ctrl = CanvasController(session, engine, debounce=0.01)

        async def scenario():
            return await asyncio.gather(ctrl.click(10, 10, "#e76f51"), ctrl.click(150, 10, "#264653"))

        first, second = asyncio.run(scenario())
        assert first is not None
        assert second is None
        assert len(engine.mask_calls) == 1
        assert len(session.surfaces) == 1

    def test_empty_mask_paints_nothing(self, session):
        ctrl = CanvasController(session, StubEngine(np.zeros((100, 200), dtype=bool)))
        assert asyncio.run(ctrl.click(10, 10, "#e76f51")) is None
        assert len(session.surfaces) == 0
        assert len(session.history) == 1

    def test_engine_error_propagates_and_clears_busy(self, session, ready_engine):
        ctrl = CanvasController(session, ready_engine)
        with pytest.raises(PreconditionError):
            asyncio.run(ctrl.click(10, 10, "#e76f51"))
        assert not ctrl.is_busy
        assert ctrl.status == "Failed to generate mask"


class TestHover:
    def test_debounce_keeps_only_last_position(self, session):
        engine = StubEngine(left_mask())
        ctrl = CanvasController(session, engine, debounce=0.02)

        async def scenario():
            ctrl.hover(10, 10)
            ctrl.hover(20, 20)
            await ctrl.hover(30, 30)

        asyncio.run(scenario())
        assert engine.mask_calls == [(30, 30)]
        assert ctrl.hover_mask is not None

    def test_leave_cancels_pending_hover(self, session):
        engine = StubEngine(left_mask())
        ctrl = CanvasController(session, engine, debounce=0.02)

        async def scenario():
            ctrl.hover(10, 10)
            ctrl.leave()
            await asyncio.sleep(0.05)

        asyncio.run(scenario())
        assert engine.mask_calls == []
        assert ctrl.hover_mask is None

    def test_late_result_is_discarded(self, session):
        engine = StubEngine(left_mask(), delay=0.05)
        ctrl = CanvasController(session, engine, debounce=0.0)

        async def scenario():
            task = ctrl.hover(10, 10)
            await asyncio.sleep(0.02)
            # Inference is in flight; the pointer leaves
            ctrl.leave()
            await asyncio.sleep(0.08)
            return task

        task = asyncio.run(scenario())
        assert len(engine.mask_calls) == 1
        assert task.done()
        assert ctrl.hover_mask is None

    def test_hover_skipped_while_click_in_flight(self, session):
        engine = StubEngine(left_mask(), delay=0.05)
        ctrl = CanvasController(session, engine, debounce=0.0)

        async def scenario():
            click = asyncio.ensure_future(ctrl.click(10, 10, "#e76f51"))
            await asyncio.sleep(0.01)
            await ctrl.hover(150, 50)
            await click

        asyncio.run(scenario())
        assert engine.mask_calls == [(10, 10)]

    def test_hover_needs_running_loop(self, session):
        ctrl = CanvasController(session, StubEngine(left_mask()))
        with pytest.raises(RuntimeError):
            ctrl.hover(1, 1)

    def test_overlay_blends_white(self, session):
        ctrl = CanvasController(session, StubEngine(left_mask()))
        ctrl.hover_mask = left_mask()
        out = ctrl.overlay_image()
        assert np.all(np.abs(out[0, 0].astype(int) - [228, 148, 148]) <= 1)
        assert out[0, 150].tolist() == [40, 40, 200]
        # Highlight never leaks into the session image
        assert session.current_image[0, 0].tolist() == [200, 40, 40]

    def test_overlay_without_hover(self, session):
        ctrl = CanvasController(session, StubEngine(left_mask()))
        np.testing.assert_array_equal(ctrl.overlay_image(), session.current_image)


class TestBoxCandidates:
    def test_box_then_choose(self, controller, session):
        candidates = asyncio.run(controller.box(150, 20, 50, 80))
        assert len(candidates) == 3
        assert controller.hit_test(100, 50) == 0
        surface = asyncio.run(controller.choose_candidate(0, "#2a9d8f"))
        assert surface is not None
        assert controller.candidates == []
        assert len(session.surfaces) == 1

    def test_hit_test_misses(self, controller):
        controller.candidates = [left_mask()]
        assert controller.hit_test(150, 50) is None
        assert controller.hit_test(10, 50) == 0

    def test_top_k_limits_candidates(self, controller):
        assert len(asyncio.run(controller.box(0, 0, 199, 99, top_k=1))) == 1
