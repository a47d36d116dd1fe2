"""Gesture navigation for the project timeline.

Translates touch, mouse-drag and wheel input into the visible date range of
a horizontally scrollable timeline. The controller knows nothing about a
widget toolkit: a *surface* feeds it input and reports its width and scroll
offset, a *frame scheduler* drives momentum frames. ``qt_timeline`` provides
both for PyQt5; ``VirtualSurface`` and ``ManualFrameScheduler`` below are the
headless versions used by the replay tool and the tests.
"""
from __future__ import annotations

import datetime
import itertools
import logging
import math
import time
from dataclasses import dataclass, fields, replace
from typing import Callable, Optional

logger = logging.getLogger(__name__)

HORIZONTAL = 'horizontal'
VERTICAL = 'vertical'


def round_half_up(value: float) -> int:
    # Halves round up (2.5 -> 3, -2.5 -> -2), not to even.
    return int(math.floor(value + 0.5))


@dataclass
class GestureOptions:
    min_days: int = 7
    max_days: int = 365
    initial_days: int = 30
    initial_center_date: Optional[datetime.datetime] = None
    on_view_change: Optional[Callable] = None
    # Momentum tuning
    touch_momentum_threshold: float = 0.5   # px/ms
    mouse_momentum_threshold: float = 0.3   # px/ms
    friction: float = 0.95
    min_velocity: float = 0.1               # px/ms
    frame_ms: float = 16.0
    # Input interpretation
    drag_lock_threshold: float = 5.0        # px
    wheel_zoom_step: float = 0.01
    zoom_in_factor: float = 0.7
    zoom_out_factor: float = 1.4

    def validate(self):
        if self.min_days < 1:
            raise ValueError(f"min_days must be >= 1, got {self.min_days}")
        if self.min_days > self.max_days:
            raise ValueError(f"min_days ({self.min_days}) exceeds max_days ({self.max_days})")


@dataclass(frozen=True)
class TimelineView:
    """Read-only snapshot of what the timeline currently shows."""
    start_date: datetime.datetime
    end_date: datetime.datetime
    days_visible: int
    center_date: datetime.datetime
    is_dragging: bool = False


@dataclass
class GestureState:
    is_panning: bool = False
    is_pinching: bool = False
    is_mouse_dragging: bool = False
    start_x: float = 0.0
    start_y: float = 0.0
    start_center_date: Optional[datetime.datetime] = None
    initial_pinch_distance: float = 0.0
    initial_days_visible: int = 0
    velocity: float = 0.0
    last_move_time: float = 0.0
    last_move_x: float = 0.0
    last_move_y: float = 0.0
    last_touch_count: int = 0
    start_scroll_top: float = 0.0
    drag_direction: Optional[str] = None

    def reset(self):
        for f in fields(self):
            setattr(self, f.name, f.default)


def touch_distance(t0, t1) -> float:
    dx = t0[0] - t1[0]
    dy = t0[1] - t1[1]
    return math.sqrt(dx * dx + dy * dy)


# ------------------------------------------------------------
# Headless collaborators
# ------------------------------------------------------------
class ManualFrameScheduler:
    """Frame scheduler that only advances when asked to.

    ``on_frame`` (if given) is called before each frame runs; the replay tool
    uses it to move its clock forward by one frame length.
    """

    def __init__(self, on_frame: Optional[Callable[[], None]] = None):
        self._pending = {}
        self._ids = itertools.count(1)
        self.on_frame = on_frame
        self.frames_run = 0

    def request_frame(self, callback):
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel_frame(self, handle):
        self._pending.pop(handle, None)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def run_frame(self) -> bool:
        if not self._pending:
            return False
        batch = list(self._pending.items())
        self._pending.clear()
        if self.on_frame:
            self.on_frame()
        for _handle, callback in batch:
            callback()
        self.frames_run += 1
        return True

    def run_until_idle(self, max_frames: int = 1000) -> int:
        ran = 0
        while ran < max_frames and self.run_frame():
            ran += 1
        return ran


class VirtualSurface:
    """In-memory timeline surface.

    Stands in for the widget: it has a width, a vertical scroll offset that
    never goes below zero, and routes event dicts to whatever listeners are
    bound to it.
    """

    def __init__(self, width: float = 1000, scroll_top: float = 0):
        self._width = width
        self._scroll_top = max(0, scroll_top)
        self._listeners = []

    @property
    def target(self):
        return self

    def width(self):
        return self._width

    def resize(self, width):
        self._width = width

    def scroll_top(self):
        return self._scroll_top

    def set_scroll_top(self, value):
        self._scroll_top = max(0, value)

    def bind(self, controller):
        self._listeners.append(controller)

    def unbind(self, controller):
        if controller in self._listeners:
            self._listeners.remove(controller)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch(self, event: dict):
        """Deliver one input event; returns True if any listener consumed it."""
        consumed = False
        for listener in list(self._listeners):
            consumed = bool(_deliver(listener, event)) or consumed
        return consumed


def _touches(event):
    return [(float(t[0]), float(t[1])) for t in (event.get('touches') or [])]


def _deliver(controller, event):
    kind = event.get('type')
    if kind == 'touchstart':
        return controller.on_touch_start(_touches(event))
    if kind == 'touchmove':
        return controller.on_touch_move(_touches(event))
    if kind in ('touchend', 'touchcancel'):
        return controller.on_touch_end(_touches(event))
    if kind == 'mousedown':
        return controller.on_mouse_down(event.get('x', 0), event.get('y', 0),
                                        button=event.get('button', 0),
                                        interactive=bool(event.get('interactive', False)))
    if kind == 'mousemove':
        return controller.on_mouse_move(event.get('x', 0), event.get('y', 0))
    if kind == 'mouseup':
        return controller.on_mouse_up()
    if kind == 'mouseleave':
        return controller.on_mouse_leave()
    if kind == 'wheel':
        return controller.on_wheel(event.get('dx', 0), event.get('dy', 0),
                                   ctrl=bool(event.get('ctrl')), meta=bool(event.get('meta')),
                                   shift=bool(event.get('shift')))
    logger.debug("ignoring unknown input event type %r", kind)
    return False


# ------------------------------------------------------------
# Controller
# ------------------------------------------------------------
class TimelineGestureController:
    """Maps raw input onto ``center_date`` / ``days_visible``.

    Pan and pinch deltas are always taken from the anchors recorded when the
    gesture started, so a long drag cannot accumulate rounding drift. Pixel to
    day conversion reads the live zoom and the live surface width.
    """

    def __init__(self, options: Optional[GestureOptions] = None, scheduler=None,
                 clock: Optional[Callable[[], float]] = None, now=None, **overrides):
        opts = options or GestureOptions()
        if overrides:
            opts = replace(opts, **overrides)
        opts.validate()
        self.options = opts
        self.min_days = opts.min_days
        self.max_days = opts.max_days
        self.on_view_change = opts.on_view_change
        self._now = now or datetime.datetime.now
        self._clock = clock or (lambda: time.monotonic() * 1000.0)
        self._scheduler = scheduler if scheduler is not None else ManualFrameScheduler()
        self._surface = None
        self._momentum_handle = None
        self._days_visible = self.clamp_days(opts.initial_days)
        self._center_date = opts.initial_center_date or self._now()
        self._gesture = GestureState()
        self._gesture.start_center_date = self._center_date
        self._gesture.initial_days_visible = self._days_visible

    # --- view state -------------------------------------------------------
    @property
    def days_visible(self) -> int:
        return self._days_visible

    @property
    def center_date(self) -> datetime.datetime:
        return self._center_date

    @property
    def is_dragging(self) -> bool:
        return self._gesture.is_mouse_dragging

    @property
    def drag_direction(self):
        return self._gesture.drag_direction

    @property
    def velocity(self) -> float:
        return self._gesture.velocity

    @property
    def touch_count(self) -> int:
        return self._gesture.last_touch_count

    @property
    def momentum_active(self) -> bool:
        return self._momentum_handle is not None

    @property
    def start_date(self) -> datetime.datetime:
        return self._center_date - datetime.timedelta(days=self._days_visible // 2)

    @property
    def end_date(self) -> datetime.datetime:
        return self._center_date + datetime.timedelta(days=-(-self._days_visible // 2))

    @property
    def view(self) -> TimelineView:
        return TimelineView(
            start_date=self.start_date,
            end_date=self.end_date,
            days_visible=self._days_visible,
            center_date=self._center_date,
            is_dragging=self.is_dragging,
        )

    def snapshot(self) -> TimelineView:
        return self.view

    def clamp_days(self, days) -> int:
        return min(self.max_days, max(self.min_days, round_half_up(days)))

    def _commit(self, center_date=None, days_visible=None):
        changed = False
        if center_date is not None and center_date != self._center_date:
            self._center_date = center_date
            changed = True
        if days_visible is not None and days_visible != self._days_visible:
            self._days_visible = days_visible
            changed = True
        if changed and self.on_view_change is not None:
            try:
                self.on_view_change(self._center_date, self._days_visible)
            except Exception:
                logger.exception("on_view_change callback failed")
        return changed

    # --- surface lifecycle ------------------------------------------------
    @property
    def surface(self):
        return self._surface

    def attach(self, surface):
        """Bind to ``surface``; a second call with the same target does nothing."""
        if surface is None:
            self.detach()
            return
        if self._surface is not None:
            if self._surface is surface or self._surface.target is surface.target:
                return
            self.detach()
        self._surface = surface
        surface.bind(self)
        logger.debug("attached to surface %r", surface)

    def detach(self):
        self._cancel_momentum()
        self._gesture.reset()
        surface, self._surface = self._surface, None
        if surface is not None:
            surface.unbind(self)
            logger.debug("detached from surface %r", surface)

    def _surface_width(self) -> float:
        if self._surface is None:
            return 0
        try:
            return float(self._surface.width() or 0)
        except Exception:
            logger.exception("surface width unavailable")
            return 0

    def pixels_to_days(self, pixels: float) -> float:
        width = self._surface_width()
        if width <= 0:
            return 0.0
        return pixels * (self._days_visible / width)

    # --- programmatic navigation -----------------------------------------
    def set_days_visible(self, days):
        self._commit(days_visible=self.clamp_days(days))

    def zoom_in(self):
        self.set_days_visible(self._days_visible * self.options.zoom_in_factor)

    def zoom_out(self):
        self.set_days_visible(self._days_visible * self.options.zoom_out_factor)

    def go_to_today(self):
        self._commit(center_date=self._now())

    def go_to_date(self, date):
        if isinstance(date, datetime.date) and not isinstance(date, datetime.datetime):
            date = datetime.datetime.combine(date, datetime.time())
        self._commit(center_date=date)

    set_center_date = go_to_date

    def pan_by_days(self, days):
        self._commit(center_date=self._center_date + datetime.timedelta(days=days))

    def _pan_from_anchor(self, x):
        delta_days = self.pixels_to_days(x - self._gesture.start_x)
        # Content follows the pointer: moving right shows earlier dates.
        self._commit(center_date=self._gesture.start_center_date - datetime.timedelta(days=delta_days))

    def _sample_velocity(self, x):
        g = self._gesture
        now = self._clock()
        dt = now - g.last_move_time
        if dt > 0:
            g.velocity = (x - g.last_move_x) / dt
        g.last_move_time = now
        g.last_move_x = x

    def _anchor_pan(self, x, y):
        g = self._gesture
        g.start_x = x
        g.start_y = y
        g.start_center_date = self._center_date
        g.last_move_time = self._clock()
        g.last_move_x = x
        g.last_move_y = y

    # --- touch ------------------------------------------------------------
    def on_touch_start(self, touches):
        self._cancel_momentum()
        g = self._gesture
        touches = list(touches or [])
        g.last_touch_count = len(touches)
        g.velocity = 0.0
        if len(touches) == 2:
            g.is_pinching = True
            g.is_panning = False
            g.initial_pinch_distance = touch_distance(touches[0], touches[1])
            g.initial_days_visible = self._days_visible
            logger.debug("pinch start distance=%.1f days=%d", g.initial_pinch_distance, g.initial_days_visible)
            return True
        if len(touches) == 1:
            self._anchor_pan(*touches[0])
            g.is_panning = True
            return True
        # three or more fingers: no gesture until the count drops back
        g.is_panning = False
        g.is_pinching = False
        return False

    def on_touch_move(self, touches):
        g = self._gesture
        touches = list(touches or [])
        if g.is_pinching:
            if len(touches) != 2:
                g.is_pinching = False
                return False
            current = touch_distance(touches[0], touches[1])
            if current <= 0 or g.initial_pinch_distance <= 0:
                return True
            scale = g.initial_pinch_distance / current
            self._commit(days_visible=self.clamp_days(g.initial_days_visible * scale))
            return True
        if g.is_panning:
            if not touches:
                return self.on_touch_end(touches)
            if len(touches) != 1:
                return False
            x = touches[0][0]
            self._pan_from_anchor(x)
            self._sample_velocity(x)
            return True
        return False

    def on_touch_end(self, touches):
        """``touches`` are the points still on the surface after the release."""
        g = self._gesture
        touches = list(touches or [])
        was_pinching = g.is_pinching
        if len(touches) < 2:
            g.is_pinching = False
        if not touches and g.is_panning:
            g.is_panning = False
            if abs(g.velocity) > self.options.touch_momentum_threshold:
                self._start_momentum()
        if len(touches) == 1 and g.last_touch_count == 2 and was_pinching:
            # Pinch dropped to one finger: continue as a pan from here.
            self._anchor_pan(*touches[0])
            g.velocity = 0.0
            g.is_panning = True
        g.last_touch_count = len(touches)
        return True

    # --- mouse ------------------------------------------------------------
    def on_mouse_down(self, x, y, button=0, interactive=False):
        if button != 0 or interactive:
            return False
        self._cancel_momentum()
        g = self._gesture
        self._anchor_pan(x, y)
        g.start_scroll_top = self._surface.scroll_top() if self._surface is not None else 0
        g.velocity = 0.0
        g.drag_direction = None
        g.is_mouse_dragging = True
        return True

    def on_mouse_move(self, x, y):
        g = self._gesture
        if not g.is_mouse_dragging:
            return False
        dx = x - g.start_x
        dy = y - g.start_y
        threshold = self.options.drag_lock_threshold
        if g.drag_direction is None and (abs(dx) > threshold or abs(dy) > threshold):
            g.drag_direction = HORIZONTAL if abs(dx) >= abs(dy) else VERTICAL
            logger.debug("drag direction locked %s (dx=%s dy=%s)", g.drag_direction, dx, dy)
        if g.drag_direction == VERTICAL:
            if self._surface is not None:
                self._surface.set_scroll_top(max(0, g.start_scroll_top - dy))
        else:
            self._pan_from_anchor(x)
            self._sample_velocity(x)
        g.last_move_y = y
        return True

    def on_mouse_up(self):
        g = self._gesture
        if not g.is_mouse_dragging:
            return False
        was_horizontal = g.drag_direction == HORIZONTAL
        g.is_mouse_dragging = False
        g.drag_direction = None
        if was_horizontal and abs(g.velocity) > self.options.mouse_momentum_threshold:
            self._start_momentum()
        return True

    on_mouse_leave = on_mouse_up

    # --- wheel ------------------------------------------------------------
    def on_wheel(self, delta_x, delta_y, ctrl=False, meta=False, shift=False):
        """Returns True when the wheel event was used for the timeline.

        An unconsumed event should be left to the toolkit for native
        vertical scrolling.
        """
        self._cancel_momentum()
        if ctrl or meta:
            factor = 1 + delta_y * self.options.wheel_zoom_step
            self._commit(days_visible=self.clamp_days(self._days_visible * factor))
            return True
        if shift or abs(delta_x) > abs(delta_y):
            pixels = delta_x if delta_x != 0 else delta_y
            self.pan_by_days(self.pixels_to_days(pixels))
            return True
        return False

    # --- momentum ---------------------------------------------------------
    def _start_momentum(self):
        self._cancel_momentum()
        logger.debug("momentum start velocity=%.3f px/ms", self._gesture.velocity)
        self._momentum_handle = self._scheduler.request_frame(self._momentum_frame)

    def _momentum_frame(self):
        g = self._gesture
        self._momentum_handle = None
        if abs(g.velocity) < self.options.min_velocity:
            logger.debug("momentum stopped")
            return
        delta_days = self.pixels_to_days(g.velocity * self.options.frame_ms)
        self._commit(center_date=self._center_date - datetime.timedelta(days=delta_days))
        g.velocity *= self.options.friction
        self._momentum_handle = self._scheduler.request_frame(self._momentum_frame)

    def _cancel_momentum(self):
        if self._momentum_handle is not None:
            self._scheduler.cancel_frame(self._momentum_handle)
            self._momentum_handle = None
