"""PyQt5 binding for the timeline gesture controller.

``QtTimelineSurface`` turns widget events into controller input and
``QtFrameScheduler`` runs momentum frames from the Qt event loop.
"""
from __future__ import annotations

import datetime
import itertools
import logging

from PyQt5.QtCore import QEvent, QObject, QSettings, Qt, QTimer
from PyQt5.QtWidgets import QAbstractButton, QAbstractScrollArea

from timeline_gestures import GestureOptions

logger = logging.getLogger(__name__)

SETTINGS_ORG = "LSI"
SETTINGS_APP = "ProjectTimeline"

# Browser wheel deltas are roughly 100 px per notch; Qt reports 120 units.
WHEEL_NOTCH_PIXELS = 100.0
WHEEL_NOTCH_UNITS = 120


class QtFrameScheduler:
    """Momentum frames on single-shot QTimers (one per requested frame)."""

    def __init__(self, interval_ms: int = 16):
        self.interval_ms = interval_ms
        self._timers = {}
        self._ids = itertools.count(1)

    def request_frame(self, callback):
        handle = next(self._ids)
        timer = QTimer()
        timer.setSingleShot(True)
        timer.setInterval(self.interval_ms)

        def fire():
            # the timer is still emitting timeout; free it once the callback is done
            if self._timers.pop(handle, None) is None:
                return
            try:
                callback()
            finally:
                timer.deleteLater()

        timer.timeout.connect(fire)
        self._timers[handle] = timer
        timer.start()
        return handle

    def cancel_frame(self, handle):
        timer = self._timers.pop(handle, None)
        if timer is not None:
            timer.stop()
            timer.deleteLater()

    @property
    def pending(self) -> int:
        return len(self._timers)


def is_interactive_widget(widget, stop_at=None) -> bool:
    """True when a press on ``widget`` belongs to a control, not the timeline.

    Buttons, and widgets flagged with a truthy ``clickable`` or ``draggable``
    dynamic property (checked up the parent chain until ``stop_at``).
    """
    w = widget
    while w is not None and w is not stop_at:
        if isinstance(w, QAbstractButton):
            return True
        if w.property("clickable") or w.property("draggable"):
            return True
        w = w.parentWidget()
    return False


class QtTimelineSurface(QObject):
    """Timeline surface backed by a QWidget or QAbstractScrollArea."""

    def __init__(self, widget, parent=None):
        super().__init__(parent)
        self._widget = widget
        self._controller = None
        self._watched = []
        widget.destroyed.connect(self._on_widget_destroyed)

    @property
    def target(self):
        return self._widget

    def _input_widget(self):
        if isinstance(self._widget, QAbstractScrollArea):
            return self._widget.viewport()
        return self._widget

    def width(self):
        if self._widget is None:
            return 0
        return self._input_widget().width()

    def scroll_top(self):
        if isinstance(self._widget, QAbstractScrollArea):
            return self._widget.verticalScrollBar().value()
        return 0

    def set_scroll_top(self, value):
        if isinstance(self._widget, QAbstractScrollArea):
            bar = self._widget.verticalScrollBar()
            bar.setValue(int(max(bar.minimum(), min(bar.maximum(), round(value)))))

    def bind(self, controller):
        if self._controller is controller:
            return
        self.unbind(self._controller)
        self._controller = controller
        # scroll areas: viewport only, events propagated to the frame would repeat
        w = self._input_widget()
        w.setAttribute(Qt.WA_AcceptTouchEvents, True)
        w.installEventFilter(self)
        self._watched = [w]

    def unbind(self, controller):
        if controller is None or controller is not self._controller:
            return
        for w in self._watched:
            try:
                w.removeEventFilter(self)
            except RuntimeError:
                # underlying C++ widget already gone
                pass
        self._watched = []
        self._controller = None

    def _on_widget_destroyed(self, *_):
        controller = self._controller
        self._watched = []
        self._widget = None
        if controller is not None and controller.surface is self:
            controller.detach()
        self._controller = None

    # --- event translation ------------------------------------------------
    def eventFilter(self, watched, event):
        controller = self._controller
        if controller is None:
            return False
        try:
            return self._handle_event(controller, watched, event)
        except Exception:
            logger.exception("timeline gesture handling failed for event type %s", event.type())
            return False

    def _handle_event(self, controller, watched, event):
        etype = event.type()
        if etype in (QEvent.TouchBegin, QEvent.TouchUpdate, QEvent.TouchEnd, QEvent.TouchCancel):
            points = [(p.pos().x(), p.pos().y()) for p in event.touchPoints()
                      if p.state() != Qt.TouchPointReleased]
            if etype == QEvent.TouchCancel:
                points = []
            if etype == QEvent.TouchBegin:
                controller.on_touch_start(points)
            elif etype == QEvent.TouchUpdate:
                # Qt folds finger down/up into updates; split them back out.
                if len(points) > controller.touch_count:
                    controller.on_touch_start(points)
                elif len(points) < controller.touch_count:
                    controller.on_touch_end(points)
                else:
                    controller.on_touch_move(points)
            else:
                controller.on_touch_end(points)
            event.accept()
            return True
        if etype == QEvent.MouseButtonPress:
            if event.button() != Qt.LeftButton:
                return False
            pos = event.pos()
            child = watched.childAt(pos) if hasattr(watched, 'childAt') else None
            interactive = child is not None and is_interactive_widget(child, stop_at=watched)
            return bool(controller.on_mouse_down(pos.x(), pos.y(), button=0, interactive=interactive))
        if etype == QEvent.MouseMove:
            pos = event.pos()
            return bool(controller.on_mouse_move(pos.x(), pos.y()))
        if etype == QEvent.MouseButtonRelease:
            return bool(controller.on_mouse_up())
        if etype == QEvent.Leave:
            # Qt withholds Leave while a button holds the implicit mouse grab,
            # so a drag leaving the widget keeps going until release (unlike
            # browser mouseleave). Leave only arrives here once no drag is active.
            controller.on_mouse_leave()
            return False
        if etype == QEvent.Wheel:
            dx, dy = wheel_pixels(event)
            mods = event.modifiers()
            return bool(controller.on_wheel(
                dx, dy,
                ctrl=bool(mods & Qt.ControlModifier),
                meta=bool(mods & Qt.MetaModifier),
                shift=bool(mods & Qt.ShiftModifier),
            ))
        return False


def wheel_pixels(event):
    """Wheel deltas in pixels, positive meaning down/right."""
    pixel = event.pixelDelta()
    if not pixel.isNull():
        return -float(pixel.x()), -float(pixel.y())
    angle = event.angleDelta()
    return (-angle.x() * WHEEL_NOTCH_PIXELS / WHEEL_NOTCH_UNITS,
            -angle.y() * WHEEL_NOTCH_PIXELS / WHEEL_NOTCH_UNITS)


# ------------------------------------------------------------
# Settings persistence
# ------------------------------------------------------------
def _settings():
    return QSettings(SETTINGS_ORG, SETTINGS_APP)


def load_gesture_options(**overrides) -> GestureOptions:
    """GestureOptions from stored settings; missing or bad values keep defaults."""
    s = _settings()
    values = {}
    for key, kind in (("min_days", int), ("max_days", int), ("initial_days", int),
                      ("touch_momentum_threshold", float), ("mouse_momentum_threshold", float),
                      ("friction", float), ("min_velocity", float), ("frame_ms", float)):
        raw = s.value(f"Timeline/{key}", None)
        if raw is None or raw == "":
            continue
        try:
            values[key] = kind(raw)
        except (TypeError, ValueError):
            logger.warning("ignoring invalid setting Timeline/%s=%r", key, raw)
    if "initial_days" not in values:
        restored = restore_days_visible()
        if restored is not None:
            values["initial_days"] = restored
    opts = GestureOptions(**{**values, **overrides})
    try:
        opts.validate()
    except ValueError as e:
        logger.warning("stored timeline zoom limits rejected (%s); using defaults", e)
        opts = GestureOptions(**overrides)
    return opts


def persist_days_visible(days_visible: int):
    s = _settings()
    s.setValue("Timeline/days_visible", int(days_visible))


def restore_days_visible():
    s = _settings()
    val = s.value("Timeline/days_visible", None)
    if val is None:
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


# ------------------------------------------------------------
# Task bar placement
# ------------------------------------------------------------
def _as_date(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


def task_bar_geometry(start, finish, view):
    """Percent ``(left, width)`` of a task bar inside the visible range.

    Duration counts both the start and finish day. A task missing either
    date gets ``(0.0, 0.0)``.
    """
    start_d = _as_date(start)
    finish_d = _as_date(finish)
    if start_d is None or finish_d is None:
        return 0.0, 0.0
    range_start = view.start_date.date()
    total_days = view.days_visible or 1
    days_from_start = (start_d - range_start).days
    duration = (finish_d - start_d).days + 1
    return days_from_start / total_days * 100.0, duration / total_days * 100.0
