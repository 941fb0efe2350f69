import pytest

from mockup_studio.gestures import CanvasRect, GestureInterpreter, Point
from mockup_studio.layers import LayerEngine

CANVAS = CanvasRect(left=0, top=0, width=400, height=400)


@pytest.fixture
def engine():
    return LayerEngine()


@pytest.fixture
def gestures(engine, timers):
    return GestureInterpreter(engine, CANVAS, timer_factory=timers)


class TestDrag:

    def test_drag_ten_percent_right_commits_once(self, engine, gestures):
        layer = engine.add("a")
        depth = len(engine.history)

        gestures.pointer_down(layer.uid, [Point(200, 200)])
        gestures.pointer_move([Point(220, 200)])
        gestures.pointer_move([Point(240, 200)])
        assert len(engine.history) == depth
        assert gestures.pointer_up()

        assert engine.get(layer.uid).x == pytest.approx(60)
        assert engine.get(layer.uid).y == pytest.approx(50)
        assert len(engine.history) == depth + 1

    def test_drag_clamps(self, engine, gestures):
        layer = engine.add("a")
        gestures.pointer_down(layer.uid, [Point(200, 200)])
        gestures.pointer_move([Point(2000, -2000)])
        gestures.pointer_up()
        got = engine.get(layer.uid)
        assert (got.x, got.y) == (100, 0)

    def test_click_without_movement_no_history(self, engine, gestures):
        layer = engine.add("a")
        depth = len(engine.history)
        gestures.pointer_down(layer.uid, [Point(10, 10)])
        gestures.pointer_move([Point(10, 10)])
        assert not gestures.pointer_up()
        assert len(engine.history) == depth

    def test_pointer_down_selects(self, engine, gestures):
        a = engine.add("a")
        b = engine.add("b")
        gestures.pointer_down(a.uid, [Point(0, 0)])
        assert engine.active_layer_id == a.uid
        assert b.uid != engine.active_layer_id

    def test_no_session_handlers_are_noops(self, gestures):
        assert not gestures.pointer_move([Point(1, 1)])
        assert not gestures.pointer_up()

    def test_unknown_layer(self, gestures):
        assert not gestures.pointer_down("ghost", [Point(0, 0)])
        assert gestures.session is None

    def test_zero_sized_canvas(self, engine, timers):
        layer = engine.add("a")
        gestures = GestureInterpreter(engine, lambda: CanvasRect(0, 0, 0, 0), timer_factory=timers)
        assert not gestures.pointer_down(layer.uid, [Point(0, 0)])


class TestPinch:

    def test_scale_and_rotate(self, engine, gestures):
        layer = engine.add("a")
        gestures.pointer_down(layer.uid, [Point(100, 100), Point(200, 100)])
        # Twice the distance, rotated 90 degrees
        gestures.pointer_move([Point(100, 100), Point(100, 300)])
        gestures.pointer_up()
        got = engine.get(layer.uid)
        assert got.scale == pytest.approx(2.0)
        assert got.rotation == pytest.approx(90)

    def test_scale_clamped_and_rotation_wrapped(self, engine, gestures):
        layer = engine.add("a")
        engine.commit_update(layer.uid, rotation=350)
        gestures.pointer_down(layer.uid, [Point(0, 0), Point(10, 0)])
        gestures.pointer_move([Point(0, 0), Point(0, 1000)])
        got = engine.get(layer.uid)
        assert got.scale == 5
        assert got.rotation == pytest.approx(80)

    def test_zero_initial_distance_keeps_scale(self, engine, gestures):
        layer = engine.add("a")
        gestures.pointer_down(layer.uid, [Point(5, 5), Point(5, 5)])
        gestures.pointer_move([Point(5, 5), Point(50, 5)])
        assert engine.get(layer.uid).scale == 1

    def test_single_point_during_pinch_ignored(self, engine, gestures):
        layer = engine.add("a")
        gestures.pointer_down(layer.uid, [Point(0, 0), Point(10, 0)])
        assert not gestures.pointer_move([Point(3, 3)])


class TestWheel:

    def test_notches_debounced_into_one_commit(self, engine, gestures, timers):
        layer = engine.add("a")
        depth = len(engine.history)
        for _ in range(3):
            gestures.wheel(-120)
        assert engine.get(layer.uid).scale == pytest.approx(1.3)
        assert len(engine.history) == depth
        assert len(timers.live) == 1
        assert timers.live[0].delay == 0.5

        timers.fire_all()
        assert len(engine.history) == depth + 1

    def test_magnitude_ignored_and_sign_inverted(self, engine, gestures):
        layer = engine.add("a")
        gestures.wheel(9999)
        assert engine.get(layer.uid).scale == pytest.approx(0.9)

    def test_no_active_layer(self, engine, gestures):
        engine.add("a")
        engine.select(None)
        assert not gestures.wheel(-1)

    def test_clamped_at_minimum(self, engine, gestures, timers):
        layer = engine.add("a")
        engine.commit_update(layer.uid, scale=0.1)
        assert not gestures.wheel(1)
        assert timers.live == []


class TestProcessing:

    def test_processing_blocks_input(self, engine, gestures):
        layer = engine.add("a")
        gestures.set_processing(True)
        assert not gestures.pointer_down(layer.uid, [Point(0, 0)])
        assert not gestures.wheel(-1)

    def test_processing_commits_moved_session(self, engine, gestures):
        layer = engine.add("a")
        depth = len(engine.history)
        gestures.pointer_down(layer.uid, [Point(0, 0)])
        gestures.pointer_move([Point(40, 0)])
        gestures.set_processing(True)
        assert gestures.session is None
        assert len(engine.history) == depth + 1
        assert not gestures.pointer_move([Point(80, 0)])

    def test_processing_flushes_wheel_commit(self, engine, gestures, timers):
        engine.add("a")
        depth = len(engine.history)
        gestures.wheel(-1)
        gestures.set_processing(True)
        assert len(engine.history) == depth + 1
        assert not gestures.wheel_commit_pending
        timers.fire_all()
        assert len(engine.history) == depth + 1

    def test_cancel_discards(self, engine, gestures):
        layer = engine.add("a")
        depth = len(engine.history)
        gestures.pointer_down(layer.uid, [Point(0, 0)])
        gestures.pointer_move([Point(40, 0)])
        gestures.cancel()
        assert not gestures.pointer_up()
        assert len(engine.history) == depth
        assert engine.get(layer.uid).x == 50

    def test_cancel_pinch_restores_geometry(self, engine, gestures):
        layer = engine.add("a")
        engine.commit_update(layer.uid, x=30, y=70)
        gestures.pointer_down(layer.uid, [Point(0, 0), Point(10, 0)])
        gestures.pointer_move([Point(0, 0), Point(0, 30)])
        gestures.cancel()
        got = engine.get(layer.uid)
        assert (got.x, got.y, got.scale, got.rotation) == (30, 70, 1, 0)


class TestHistoryInteraction:

    def test_undo_commits_pending_wheel_first(self, engine, gestures, timers):
        layer = engine.add("a")
        gestures.wheel(-1)
        depth = len(engine.history)

        assert engine.undo()
        assert engine.get(layer.uid).scale == 1
        assert not gestures.wheel_commit_pending

        timers.fire_all()
        assert len(engine.history) == depth + 1
        assert engine.can_redo()
        engine.redo()
        assert engine.get(layer.uid).scale == pytest.approx(1.1)
