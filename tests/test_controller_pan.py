import datetime

import pytest

from timeline_gestures import TimelineGestureController, VirtualSurface

CENTER = datetime.datetime(2024, 5, 1)


class FakeClock:
    def __init__(self, ms=0.0):
        self.ms = ms

    def __call__(self):
        return self.ms


def make_controller(width=1000, scroll_top=0, **kw):
    kw.setdefault('initial_center_date', CENTER)
    kw.setdefault('clock', FakeClock())
    c = TimelineGestureController(**kw)
    surface = VirtualSurface(width=width, scroll_top=scroll_top)
    c.attach(surface)
    return c, surface


def days(n):
    return datetime.timedelta(days=n)


def test_horizontal_drag_moves_view_backward_in_time():
    c, _ = make_controller()
    assert c.on_mouse_down(100, 100) is True
    assert c.is_dragging is True
    c.on_mouse_move(200, 100)
    assert c.drag_direction == 'horizontal'
    # 100 px * (30 days / 1000 px)
    assert c.center_date == CENTER - days(3)
    c.on_mouse_up()
    assert c.is_dragging is False
    assert c.drag_direction is None


def test_drag_is_anchored_so_back_and_forth_returns_home():
    c, _ = make_controller()
    c.on_mouse_down(100, 100)
    for x in (180, 260, 340, 420, 300, 100):
        c.on_mouse_move(x, 100)
    assert c.center_date == CENTER
    c.on_mouse_up()


def test_pan_right_then_left_round_trip():
    c, _ = make_controller()
    c.on_mouse_down(100, 100)
    c.on_mouse_move(300, 100)
    c.on_mouse_up()
    assert c.center_date == CENTER - days(6)
    c.on_mouse_down(300, 100)
    c.on_mouse_move(100, 100)
    c.on_mouse_up()
    assert c.center_date == CENTER


def test_pan_uses_live_zoom_between_gestures():
    c, _ = make_controller()
    c.set_days_visible(60)
    c.on_mouse_down(0, 0)
    c.on_mouse_move(100, 0)
    assert c.center_date == CENTER - days(6)


def test_vertical_drag_scrolls_without_moving_dates():
    c, surface = make_controller(scroll_top=120)
    c.on_mouse_down(100, 100)
    c.on_mouse_move(102, 150)
    assert c.drag_direction == 'vertical'
    assert c.center_date == CENTER
    assert surface.scroll_top() == 70
    # direction stays locked even when the pointer swings sideways
    c.on_mouse_move(400, 150)
    assert c.drag_direction == 'vertical'
    assert c.center_date == CENTER
    c.on_mouse_move(102, 400)
    assert surface.scroll_top() == 0
    c.on_mouse_up()


def test_small_moves_do_not_lock_but_still_pan():
    c, _ = make_controller()
    c.on_mouse_down(100, 100)
    c.on_mouse_move(104, 103)
    assert c.drag_direction is None
    assert c.center_date < CENTER


def test_diagonal_tie_locks_horizontal():
    c, _ = make_controller()
    c.on_mouse_down(100, 100)
    c.on_mouse_move(106, 106)
    assert c.drag_direction == 'horizontal'


def test_only_primary_button_on_empty_area_starts_a_drag():
    c, _ = make_controller()
    assert c.on_mouse_down(100, 100, button=2) is False
    assert c.on_mouse_down(100, 100, interactive=True) is False
    assert c.is_dragging is False
    assert c.on_mouse_move(300, 100) is False
    assert c.center_date == CENTER


def test_mouse_leave_ends_drag():
    c, _ = make_controller()
    c.on_mouse_down(100, 100)
    c.on_mouse_leave()
    assert c.is_dragging is False
    assert c.on_mouse_up() is False


def test_view_snapshot_reports_dragging():
    c, _ = make_controller()
    c.on_mouse_down(10, 10)
    assert c.view.is_dragging is True
    c.on_mouse_up()
    assert c.snapshot().is_dragging is False


def test_shift_wheel_pans_forward_with_natural_direction():
    c, _ = make_controller()
    assert c.on_wheel(0, 100, shift=True) is True
    assert c.center_date == CENTER + days(3)


def test_horizontal_wheel_pans():
    c, _ = make_controller()
    assert c.on_wheel(-100, 10) is True
    assert c.center_date == CENTER - days(3)


def test_vertical_wheel_is_left_to_native_scrolling():
    c, _ = make_controller()
    assert c.on_wheel(3, 100) is False
    assert c.center_date == CENTER
    assert c.days_visible == 30


def test_zero_width_surface_makes_pan_a_no_op():
    c, _ = make_controller(width=0)
    assert c.pixels_to_days(500) == 0
    c.on_mouse_down(100, 100)
    c.on_mouse_move(600, 100)
    assert c.center_date == CENTER
    c.on_wheel(100, 0)
    assert c.center_date == CENTER


def test_without_surface_conversions_are_zero():
    c = TimelineGestureController(initial_center_date=CENTER)
    assert c.pixels_to_days(100) == 0
    c.on_mouse_down(0, 0)
    c.on_mouse_move(100, 0)
    assert c.center_date == CENTER


def test_surface_resize_is_read_live():
    c, surface = make_controller()
    assert c.pixels_to_days(100) == pytest.approx(3)
    surface.resize(500)
    assert c.pixels_to_days(100) == pytest.approx(6)
