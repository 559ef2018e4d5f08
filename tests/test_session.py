import numpy as np
import pytest

from conftest import make_solid_image, make_split_image
from paint_core.color_space import hex_to_lab, linear_rgb_to_lab, srgb_to_linear
from paint_core.illumination import RetinexRecolor
from paint_core.image_ops import WhiteBalance, apply_lighting
from paint_core.session import PaintSession


LEFT = np.flatnonzero(np.tile(np.arange(200) < 100, 100))
RIGHT = np.flatnonzero(np.tile(np.arange(200) >= 100, 100))


@pytest.fixture
def session():
    s = PaintSession(RetinexRecolor(radius=8))
    s.load_image(make_split_image())
    return s


class TestLoad:
    def test_fresh_state(self, session):
        assert session.has_image
        assert (session.width, session.height) == (200, 100)
        np.testing.assert_array_equal(session.current_image, session.base_image)
        assert len(session.history) == 1
        assert len(session.surfaces) == 0

    def test_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            PaintSession().load_image(np.zeros((4, 4), dtype=np.uint8))

    def test_requires_image(self):
        with pytest.raises(RuntimeError):
            PaintSession().paint([0], "#ff0000")
        with pytest.raises(RuntimeError):
            PaintSession().display_image()

    def test_reload_discards_everything(self, session):
        session.paint(LEFT, "#ff0000")
        session.load_image(make_solid_image(10, 10, (50, 60, 70)))
        assert len(session.surfaces) == 0
        assert len(session.history) == 1
        assert session.current_image.shape == (10, 10, 3)


class TestPainting:
    def test_red_on_white_wall(self):
        s = PaintSession()
        s.load_image(make_solid_image(4, 4, (255, 255, 255)))
        s.paint(np.arange(16), "#FF0000")
        lab = linear_rgb_to_lab(srgb_to_linear(s.current_image[1, 1]))
        np.testing.assert_allclose(lab, hex_to_lab("#ff0000"), atol=1.0)

    def test_paint_creates_surface_and_history(self, session):
        surface = session.paint(LEFT, "#2a9d8f")
        assert surface.id == "wall-1"
        assert surface.size == LEFT.size
        assert len(session.history) == 2
        flat = session.current_image.reshape(-1, 3)
        np.testing.assert_array_equal(flat[RIGHT], session.base_image.reshape(-1, 3)[RIGHT])

    def test_empty_mask_is_noop(self, session):
        assert session.paint([], "#ff0000") is None
        assert len(session.surfaces) == 0
        assert len(session.history) == 1

    def test_bad_indices_change_nothing(self, session):
        before = session.current_image.copy()
        with pytest.raises(ValueError):
            session.paint([0, 200 * 100], "#ff0000")
        with pytest.raises(ValueError):
            session.paint(LEFT, "nope")
        assert len(session.surfaces) == 0
        assert len(session.history) == 1
        np.testing.assert_array_equal(session.current_image, before)

    def test_paint_matches_full_rerender(self, session):
        session.paint(LEFT, "#264653")
        session.paint(RIGHT[:5000], "#e9c46a")
        incremental = session.current_image.copy()
        session.toggle_surface("wall-1")
        session.toggle_surface("wall-1")
        np.testing.assert_array_equal(session.current_image, incremental)

    def test_disable_then_reenable(self, session):
        session.paint(LEFT, "#e76f51")
        painted = session.current_image.copy()
        session.toggle_surface("wall-1")
        np.testing.assert_array_equal(session.current_image, session.base_image)
        session.toggle_surface("wall-1")
        np.testing.assert_array_equal(session.current_image, painted)

    def test_remove_surface(self, session):
        session.paint(LEFT, "#e76f51")
        session.remove_surface("wall-1")
        np.testing.assert_array_equal(session.current_image, session.base_image)
        assert len(session.surfaces) == 0

    def test_recolor_surface(self, session):
        session.paint(LEFT, "#e76f51")
        session.recolor_surface("wall-1", "#264653")
        expected = session.compositor.apply_color(LEFT, "#264653")
        np.testing.assert_array_equal(session.current_image, expected)

    def test_preview_commits_nothing(self, session):
        preview = session.preview_color(LEFT, "#e76f51")
        assert not np.array_equal(preview, session.current_image)
        assert len(session.history) == 1
        assert len(session.surfaces) == 0


class TestGroups:
    def test_group_color_cascades(self, session):
        g = session.add_group("Walls", "#111111")
        a = session.paint(LEFT, "#ff0000", group_id=g.id)
        b = session.paint(RIGHT, "#00ff00", group_id=g.id)
        assert a.color == b.color == "#111111"

        session.set_group_color(g.id, "#a8dadc")
        expected = session.compositor.reapply_all(session.surfaces.surfaces)
        np.testing.assert_array_equal(session.current_image, expected)
        assert {s.color for s in session.surfaces.surfaces} == {"#a8dadc"}

    def test_assign_rerenders(self, session):
        g = session.add_group("Walls", "#1d3557")
        session.paint(LEFT, "#ff0000")
        session.assign_to_group("wall-1", g.id)
        np.testing.assert_array_equal(session.current_image,
                                      session.compositor.apply_color(LEFT, "#1d3557"))

    def test_recolor_grouped_surface_leaves_group(self, session):
        g = session.add_group("Walls", "#123456")
        a = session.paint(LEFT, "#000000", group_id=g.id)
        session.recolor_surface(a.id, "#00ff00")
        assert a.group_id is None
        session.set_group_color(g.id, "#abcdef")
        assert session.surfaces.get_surface(a.id).color == "#00ff00"
        np.testing.assert_array_equal(session.current_image,
                                      session.compositor.apply_color(LEFT, "#00ff00"))

    def test_group_color_preview_commits_nothing(self, session):
        g = session.add_group("Walls", "#1d3557")
        session.paint(LEFT, "#000000", group_id=g.id)
        session.paint(RIGHT, "#e9c46a")
        before = session.current_image.copy()
        history_len = len(session.history)

        preview = session.preview_group_color(g.id, "#a8dadc")
        expected = session.compositor.apply_color(
            LEFT, "#a8dadc", target=session.compositor.apply_color(RIGHT, "#e9c46a"))
        np.testing.assert_array_equal(preview, expected)

        np.testing.assert_array_equal(session.current_image, before)
        assert session.surfaces.get_group(g.id).color == "#1d3557"
        assert session.surfaces.get_surface("wall-1").color == "#1d3557"
        assert len(session.history) == history_len

    def test_group_color_preview_rejects_unknown_group(self, session):
        with pytest.raises(KeyError):
            session.preview_group_color("group-7", "#ffffff")

    def test_rename_and_remove_group(self, session):
        g = session.add_group("Walls")
        session.rename_group(g.id, "Bedroom")
        assert session.surfaces.get_group(g.id).name == "Bedroom"
        session.remove_group(g.id)
        assert session.surfaces.groups == []


class TestHistory:
    def test_undo_restores_image_and_surfaces(self, session):
        session.paint(LEFT, "#e76f51")
        after_first = session.current_image.copy()
        session.paint(RIGHT, "#264653")

        assert session.undo()
        np.testing.assert_array_equal(session.current_image, after_first)
        assert [s.id for s in session.surfaces.surfaces] == ["wall-1"]

        assert session.undo()
        np.testing.assert_array_equal(session.current_image, session.base_image)
        assert len(session.surfaces) == 0
        assert not session.undo()

        assert session.redo()
        np.testing.assert_array_equal(session.current_image, after_first)
        assert len(session.surfaces) == 1

    def test_undo_then_edit_uses_restored_surfaces(self, session):
        session.paint(LEFT, "#e76f51")
        session.paint(RIGHT, "#264653")
        session.undo()
        session.toggle_surface("wall-1")
        np.testing.assert_array_equal(session.current_image, session.base_image)
        assert not session.redo()

    def test_group_created_after_paint_survives_undo_redo(self, session):
        session.paint(LEFT, "#e76f51")
        g = session.add_group("Walls")
        assert session.undo()
        assert session.surfaces.groups == []
        assert session.redo()
        assert [x.id for x in session.surfaces.groups] == [g.id]
        # Ids are not handed out twice
        assert session.add_group("Kitchen").id == "group-2"

    def test_undo_reverts_group_removal_only(self, session):
        g = session.add_group("Walls", "#1d3557")
        session.paint(LEFT, "#ff0000", group_id=g.id)
        session.paint(RIGHT, "#a8dadc")
        painted = session.current_image.copy()
        session.remove_group(g.id)
        assert session.undo()
        assert [x.name for x in session.surfaces.groups] == ["Walls"]
        assert [s.id for s in session.surfaces.surfaces] == ["wall-1", "wall-2"]
        assert session.surfaces.get_surface("wall-1").group_id == g.id
        np.testing.assert_array_equal(session.current_image, painted)

    def test_rename_is_undoable(self, session):
        g = session.add_group("Walls")
        session.rename_group(g.id, "Bedroom")
        session.undo()
        assert session.surfaces.get_group(g.id).name == "Walls"

    def test_reset(self, session):
        session.add_group("Walls")
        session.paint(LEFT, "#e76f51")
        session.reset()
        np.testing.assert_array_equal(session.current_image, session.base_image)
        assert len(session.surfaces) == 0 and session.surfaces.groups == []
        assert len(session.history) == 1


class TestWhiteBalanceAndLighting:
    def test_white_balance_rebuilds_base_and_repaints(self, session):
        session.paint(LEFT, "#e76f51")
        session.set_white_balance(WhiteBalance(1.0, 1.0, 0.5))
        assert session.base_image[0, 150].tolist() == [40, 40, 100]
        np.testing.assert_array_equal(session.original_image[0, 150], [40, 40, 200])
        expected = session.compositor.apply_color(LEFT, "#e76f51")
        np.testing.assert_array_equal(session.current_image, expected)
        assert len(session.history) == 1

    def test_load_with_white_balance(self):
        s = PaintSession(RetinexRecolor(radius=8))
        s.load_image(make_split_image(), WhiteBalance(0.5, 1.0, 1.0))
        assert s.base_image[0, 0].tolist() == [100, 40, 40]

    def test_lighting_is_display_only(self, session):
        session.paint(LEFT, "#e76f51")
        stored = session.current_image.copy()
        session.set_lighting("night")
        np.testing.assert_array_equal(session.display_image(), apply_lighting(stored, "night"))
        np.testing.assert_array_equal(session.current_image, stored)
        np.testing.assert_array_equal(session.history.current.image, stored)

    def test_unknown_lighting(self, session):
        with pytest.raises(ValueError):
            session.set_lighting("strobe")
        assert session.lighting == "normal"

    def test_algorithm_locked_after_painting(self, session):
        session.set_algorithm(RetinexRecolor(radius=2))
        session.paint(LEFT, "#e76f51")
        with pytest.raises(ValueError):
            session.set_algorithm(RetinexRecolor(radius=4))
