import datetime

from timeline_gestures import TimelineGestureController, VirtualSurface, touch_distance

CENTER = datetime.datetime(2024, 5, 1)


def make_controller(**kw):
    kw.setdefault('initial_center_date', CENTER)
    kw.setdefault('clock', lambda: 0.0)
    c = TimelineGestureController(**kw)
    c.attach(VirtualSurface(width=1000))
    return c


def test_touch_distance():
    assert touch_distance((0, 0), (3, 4)) == 5


def test_single_finger_pan_follows_content():
    c = make_controller()
    assert c.on_touch_start([(500, 10)]) is True
    c.on_touch_move([(600, 10)])
    assert c.center_date == CENTER - datetime.timedelta(days=3)
    c.on_touch_move([(400, 10)])
    assert c.center_date == CENTER + datetime.timedelta(days=3)
    c.on_touch_end([])
    assert c.touch_count == 0


def test_pinch_scale_two_doubles_days():
    c = make_controller(initial_days=30)
    c.on_touch_start([(0, 0), (100, 0)])
    c.on_touch_move([(25, 0), (75, 0)])
    # scale = 100 / 50
    assert c.days_visible == 60


def test_spreading_fingers_zooms_in_and_pinching_zooms_out():
    c = make_controller(initial_days=30)
    c.on_touch_start([(100, 100), (200, 100)])
    c.on_touch_move([(50, 100), (250, 100)])
    assert c.days_visible < 30
    assert c.days_visible == 15
    c.on_touch_move([(140, 100), (160, 100)])
    assert c.days_visible > 30


def test_pinch_is_anchored_to_gesture_start():
    c = make_controller(initial_days=30)
    c.on_touch_start([(0, 0), (100, 0)])
    for spread in (120, 150, 200, 150, 100):
        c.on_touch_move([(0, 0), (spread, 0)])
    assert c.days_visible == 30


def test_pinch_clamps():
    c = make_controller(initial_days=30)
    c.on_touch_start([(0, 0), (300, 0)])
    c.on_touch_move([(0, 0), (1, 0)])
    assert c.days_visible == 365
    c.on_touch_move([(0, 0), (3000, 0)])
    assert c.days_visible == 7


def test_collapsed_pinch_distance_is_ignored():
    c = make_controller(initial_days=30)
    c.on_touch_start([(10, 10), (60, 10)])
    c.on_touch_move([(20, 20), (20, 20)])
    assert c.days_visible == 30


def test_pinch_cancels_pan_and_doesnt_move_dates():
    c = make_controller()
    c.on_touch_start([(500, 0)])
    c.on_touch_start([(500, 0), (600, 0)])
    c.on_touch_move([(450, 0), (650, 0)])
    assert c.center_date == CENTER


def test_two_to_one_finger_continues_as_pan_from_remaining_finger():
    clock = iter([0.0, 5.0, 10.0, 20.0, 30.0])
    c = make_controller(clock=lambda: next(clock))
    c.on_touch_start([(100, 0), (200, 0)])
    c.on_touch_move([(50, 0), (250, 0)])
    days = c.days_visible
    c.on_touch_end([(250, 0)])
    assert c.velocity == 0
    assert c.touch_count == 1
    c.on_touch_move([(250 + 1000 / days * 2, 0)])
    assert c.days_visible == days
    assert abs((CENTER - c.center_date).total_seconds() - 2 * 86400) < 1


def test_move_with_missing_touches_ends_pinch():
    c = make_controller(initial_days=30)
    c.on_touch_start([(0, 0), (100, 0)])
    assert c.on_touch_move([(0, 0)]) is False
    c.on_touch_move([(0, 0), (50, 0)])
    assert c.days_visible == 30


def test_move_with_no_touches_ends_pan():
    c = make_controller()
    c.on_touch_start([(100, 0)])
    c.on_touch_move([])
    c.on_touch_move([(300, 0)])
    assert c.center_date == CENTER


def test_three_finger_touch_is_not_a_gesture():
    c = make_controller()
    assert c.on_touch_start([(0, 0), (10, 0), (20, 0)]) is False
    c.on_touch_move([(100, 0), (110, 0), (120, 0)])
    assert c.center_date == CENTER
    assert c.days_visible == 30


def test_extra_fingers_stop_an_active_pan():
    c = make_controller()
    c.on_touch_start([(500, 0)])
    assert c.on_touch_start([(500, 0), (600, 0), (700, 0)]) is False
    assert c.on_touch_move([(800, 0), (600, 0), (700, 0)]) is False
    c.on_touch_end([(800, 0), (600, 0)])
    assert c.on_touch_move([(900, 0), (600, 0)]) is False
    c.on_touch_end([(900, 0)])
    c.on_touch_move([(100, 0)])
    assert c.center_date == CENTER
    assert c.days_visible == 30
    assert not c.momentum_active


def test_touch_calls_tolerate_none():
    c = make_controller()
    assert c.on_touch_start(None) is False
    assert c.on_touch_move(None) is False
    assert c.on_touch_end(None) is True
