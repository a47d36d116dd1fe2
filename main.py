import datetime
import json
import logging
import os
import sys

from PyQt5.QtCore import Qt
from PyQt5.QtGui import QBrush, QColor, QFont, QPainter, QPen
from PyQt5.QtWidgets import (QAction, QApplication, QLabel, QMainWindow, QScrollArea, QToolBar,
                             QVBoxLayout, QWidget)

from qt_timeline import (QtFrameScheduler, QtTimelineSurface, load_gesture_options,
                         persist_days_visible, task_bar_geometry)
from timeline_gestures import TimelineGestureController

logger = logging.getLogger(__name__)

ROW_HEIGHT = 28
HEADER_HEIGHT = 34

STATUS_COLORS = {
    "completed": "#10B981",
    "in_progress": "#3B82F6",
    "waiting": "#EAB308",
}
DEFAULT_STATUS_COLOR = "#94A3B8"


def resolve_resource_path(path: str) -> str:
    """Return an absolute path to a resource that may live next to the script,
    next to the frozen executable, or inside PyInstaller's _MEIPASS (one-file temp dir).
    Returns the first existing candidate, otherwise the first candidate.
    """
    if not path or os.path.isabs(path):
        return path
    candidates = []
    meipass = getattr(sys, '_MEIPASS', None)
    if meipass:
        candidates.append(os.path.join(meipass, path))
    if getattr(sys, 'frozen', False):
        candidates.append(os.path.join(os.path.dirname(sys.executable), path))
    candidates.append(os.path.join(os.path.dirname(os.path.abspath(__file__)), path))
    for c in candidates:
        if os.path.exists(c):
            return c
    return candidates[0]


# --- Holidays helper (business calendar) ---
HOLIDAYS_FILE = "holidays.json"


def load_holiday_dates(path=None):
    """Return a set of datetime.date objects for holidays stored as MM-dd-YYYY strings."""
    p = path or resolve_resource_path(HOLIDAYS_FILE)
    out = set()
    if not os.path.exists(p):
        return out
    try:
        with open(p, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("could not read holidays from %s: %s", p, e)
        return out
    for s in data if isinstance(data, list) else []:
        try:
            out.add(datetime.datetime.strptime(s, "%m-%d-%Y").date())
        except (TypeError, ValueError):
            logger.debug("skipping bad holiday entry %r", s)
    return out


def load_tasks(path):
    """Tasks from a JSON array of {name, start_date, finish_date, status} objects."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError("task file root must be an array of objects")
    tasks = []
    for row in data:
        if not isinstance(row, dict):
            continue
        tasks.append({
            "name": str(row.get("name") or ""),
            "start_date": row.get("start_date") or None,
            "finish_date": row.get("finish_date") or None,
            "status": row.get("status") or "",
        })
    return tasks


class TimelineCanvas(QWidget):
    """Paints the visible day columns and task bars for the controller's range."""

    def __init__(self, controller, tasks=None, holidays=None, parent=None):
        super().__init__(parent)
        self.controller = controller
        self.tasks = list(tasks or [])
        self.holidays = set(holidays or ())
        self.setMinimumHeight(HEADER_HEIGHT + ROW_HEIGHT * max(1, len(self.tasks)) + 8)

    def set_tasks(self, tasks):
        self.tasks = list(tasks)
        self.setMinimumHeight(HEADER_HEIGHT + ROW_HEIGHT * max(1, len(self.tasks)) + 8)
        self.update()

    def paintEvent(self, event):
        view = self.controller.view
        painter = QPainter(self)
        try:
            self._paint(painter, view)
        finally:
            painter.end()

    def _paint(self, painter, view):
        w = self.width()
        h = self.height()
        painter.fillRect(0, 0, w, h, QColor("#FFFFFF"))
        days = view.days_visible
        if days <= 0 or w <= 0:
            return
        day_w = w / days
        first = view.start_date.date()
        today = datetime.date.today()
        label_every = 1 if day_w >= 28 else (7 if day_w >= 4 else 30)
        painter.setFont(QFont("Segoe UI", 8))
        for i in range(days + 1):
            day = first + datetime.timedelta(days=i)
            x = i * day_w
            if day.weekday() >= 5 or day in self.holidays:
                painter.fillRect(int(x), HEADER_HEIGHT, int(day_w) + 1, h - HEADER_HEIGHT, QColor("#F1F5F9"))
            painter.setPen(QPen(QColor("#E2E8F0"), 1))
            painter.drawLine(int(x), HEADER_HEIGHT, int(x), h)
            if i % label_every == 0:
                painter.setPen(QPen(QColor("#475569"), 1))
                painter.drawText(int(x) + 3, 22, day.strftime("%b %d"))
            if day == today:
                painter.setPen(QPen(QColor("#EF4444"), 2))
                painter.drawLine(int(x + day_w / 2), 0, int(x + day_w / 2), h)
        painter.setPen(QPen(QColor("#CBD5E1"), 1))
        painter.drawLine(0, HEADER_HEIGHT, w, HEADER_HEIGHT)
        for row, task in enumerate(self.tasks):
            left, width = task_bar_geometry(task.get("start_date"), task.get("finish_date"), view)
            if width <= 0:
                continue
            x = left / 100.0 * w
            bw = max(2.0, width / 100.0 * w)
            y = HEADER_HEIGHT + 4 + row * ROW_HEIGHT
            color = QColor(STATUS_COLORS.get(task.get("status"), DEFAULT_STATUS_COLOR))
            painter.setPen(Qt.NoPen)
            painter.setBrush(QBrush(color))
            painter.drawRoundedRect(int(x), y, int(bw), ROW_HEIGHT - 8, 4, 4)
            painter.setPen(QPen(QColor("#FFFFFF"), 1))
            painter.drawText(int(x) + 6, y + ROW_HEIGHT - 13, task.get("name", ""))


class TimelineWindow(QMainWindow):
    def __init__(self, tasks=None, holidays=None, options=None):
        super().__init__()
        self.setWindowTitle("Project Timeline")
        self.resize(1200, 640)
        opts = options or load_gesture_options()
        opts.on_view_change = self._on_view_change
        self.controller = TimelineGestureController(opts, scheduler=QtFrameScheduler(int(opts.frame_ms)))

        central = QWidget()
        layout = QVBoxLayout(central)
        layout.setContentsMargins(6, 6, 6, 6)
        self.range_label = QLabel()
        layout.addWidget(self.range_label)
        self.canvas = TimelineCanvas(self.controller, tasks, holidays)
        self.scroll = QScrollArea()
        self.scroll.setWidgetResizable(True)
        self.scroll.setWidget(self.canvas)
        layout.addWidget(self.scroll)
        self.setCentralWidget(central)
        self._build_toolbar()

        self.surface = QtTimelineSurface(self.scroll, parent=self)
        self.controller.attach(self.surface)
        self._update_range_label()

    def _build_toolbar(self):
        tb = QToolBar("Timeline")
        self.addToolBar(tb)
        for text, shortcut, slot in (("Zoom In", "+", self.controller.zoom_in),
                                     ("Zoom Out", "-", self.controller.zoom_out),
                                     ("Today", "T", self.controller.go_to_today)):
            act = QAction(text, self)
            act.setShortcut(shortcut)
            act.triggered.connect(lambda _checked=False, fn=slot: fn())
            tb.addAction(act)

    def keyPressEvent(self, event):
        if event.key() == Qt.Key_Equal:
            self.controller.zoom_in()
        elif event.key() == Qt.Key_Left:
            self.controller.pan_by_days(-1)
        elif event.key() == Qt.Key_Right:
            self.controller.pan_by_days(1)
        else:
            super().keyPressEvent(event)

    def _on_view_change(self, center_date, days_visible):
        self._update_range_label()
        if hasattr(self, 'canvas'):
            self.canvas.update()

    def _update_range_label(self):
        if not hasattr(self, 'range_label'):
            return
        v = self.controller.view
        self.range_label.setText(
            f"{v.start_date:%b %d, %Y} → {v.end_date:%b %d, %Y}  ({v.days_visible} days)")

    def closeEvent(self, event):
        persist_days_visible(self.controller.days_visible)
        self.controller.detach()
        super().closeEvent(event)


def main(argv=None):
    import argparse
    ap = argparse.ArgumentParser(description="Project timeline viewer")
    ap.add_argument('--tasks', help='JSON file with tasks to draw')
    ap.add_argument('--holidays', help='holidays JSON (MM-dd-YYYY strings)')
    ap.add_argument('-v', '--verbose', action='store_true')
    args, qt_args = ap.parse_known_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    tasks = load_tasks(args.tasks) if args.tasks else []
    app = QApplication.instance() or QApplication([sys.argv[0]] + qt_args)
    window = TimelineWindow(tasks=tasks, holidays=load_holiday_dates(args.holidays))
    window.show()
    return app.exec_()


# ------------------------------------------------------------
# Application Entry Point
# ------------------------------------------------------------
if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        import traceback
        print("FATAL: Unhandled exception during startup:", e)
        traceback.print_exc()
        sys.exit(1)
