#!/usr/bin/env python
"""
CLI utility for replaying recorded timeline gestures without a display.

Features:
  - Feeds a JSON event log (touch, mouse, wheel and programmatic commands)
    through the gesture controller on a virtual surface of a given width
  - Runs momentum frames to completion after each event
  - Exports every committed view change as JSON (default), CSV or XLSX

Examples:
  python replay_cli.py replay --in drag.json
  python replay_cli.py replay --in pinch.json --width 800 --days 60 --format csv --out trace.csv
  python replay_cli.py replay --in session.json --center 2024-05-01 --format xlsx --out trace.xlsx

Exit Codes:
  0 success
  2 invalid arguments or event log
  3 IO error
"""
import argparse
import csv
import datetime as dt
import json
import logging
import os
import sys

from timeline_gestures import GestureOptions, ManualFrameScheduler, TimelineGestureController, VirtualSurface

logger = logging.getLogger("replay_cli")

TRACE_COLUMNS = ["step", "event", "center_date", "days_visible", "start_date", "end_date"]
INPUT_EVENTS = {"touchstart", "touchmove", "touchend", "touchcancel", "mousedown", "mousemove",
                "mouseup", "mouseleave", "wheel"}
COMMANDS = {"zoom_in", "zoom_out", "today", "goto", "pan", "days"}


class CLIError(Exception):
    def __init__(self, message, code=2):
        super().__init__(message)
        self.code = code


def parse_date(value):
    try:
        return dt.datetime.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise CLIError(f"Invalid date: {value!r} (expected ISO format, e.g. 2024-05-01)")


NUMERIC_FIELDS = {
    "mousedown": ("x", "y", "button"),
    "mousemove": ("x", "y"),
    "wheel": ("dx", "dy"),
    "pan": ("days",),
    "days": ("n",),
}
TOUCH_EVENTS = {"touchstart", "touchmove", "touchend", "touchcancel"}


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def check_event(i, ev):
    """Raise CLIError when a field the event type reads has the wrong shape."""
    kind = ev['type']
    fields = ('t',) + NUMERIC_FIELDS.get(kind, ())
    for key in fields:
        if key in ev and not _is_number(ev[key]):
            raise CLIError(f"Event #{i} ({kind}): '{key}' must be a number, got {ev[key]!r}")
    if kind in TOUCH_EVENTS:
        touches = ev.get('touches') or []
        if not isinstance(touches, list):
            raise CLIError(f"Event #{i} ({kind}): 'touches' must be a list of [x, y] points")
        for point in touches:
            if (not isinstance(point, (list, tuple)) or len(point) != 2
                    or not all(_is_number(v) for v in point)):
                raise CLIError(f"Event #{i} ({kind}): touch point {point!r} must be [x, y] numbers")
    if kind == 'goto':
        try:
            parse_date(ev.get('date'))
        except CLIError as e:
            raise CLIError(f"Event #{i} (goto): {e}")


def read_events(in_path):
    if not os.path.exists(in_path):
        raise CLIError(f"Input file not found: {in_path}", code=3)
    try:
        with open(in_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except OSError as e:
        raise CLIError(f"Failed reading input: {e}", code=3)
    except ValueError as e:
        raise CLIError(f"Input is not valid JSON: {e}")
    if not isinstance(data, list):
        raise CLIError("JSON root must be an array of event objects")
    events = []
    for i, ev in enumerate(data):
        if not isinstance(ev, dict) or not isinstance(ev.get('type'), str):
            raise CLIError(f"Event #{i} must be an object with a 'type'")
        if ev['type'] not in INPUT_EVENTS and ev['type'] not in COMMANDS:
            raise CLIError(f"Event #{i} has unknown type {ev['type']!r}")
        check_event(i, ev)
        events.append(ev)
    return events


class Replay:
    """Drives one controller through an event log and records the trace."""

    def __init__(self, width=1000, days=30, center=None, min_days=7, max_days=365, max_frames=1000):
        self.now_ms = 0.0
        self.rows = []
        self.current_event = "init"
        self.max_frames = max_frames
        opts = GestureOptions(min_days=min_days, max_days=max_days, initial_days=days,
                              initial_center_date=center, on_view_change=self._record)
        self.scheduler = ManualFrameScheduler(on_frame=self._advance_frame)
        self.controller = TimelineGestureController(opts, scheduler=self.scheduler, clock=self._clock)
        self.surface = VirtualSurface(width=width)
        self.controller.attach(self.surface)

    def _clock(self):
        return self.now_ms

    def _advance_frame(self):
        self.now_ms += self.controller.options.frame_ms
        self.current_event = "momentum"

    def _record(self, center_date, days_visible):
        v = self.controller.view
        self.rows.append({
            "step": len(self.rows) + 1,
            "event": self.current_event,
            "center_date": center_date.isoformat(timespec='seconds'),
            "days_visible": days_visible,
            "start_date": v.start_date.isoformat(timespec='seconds'),
            "end_date": v.end_date.isoformat(timespec='seconds'),
        })

    def apply(self, ev):
        kind = ev['type']
        if 't' in ev:
            try:
                self.now_ms = float(ev['t'])
            except (TypeError, ValueError):
                raise CLIError(f"Event timestamp must be a number, got {ev['t']!r}")
        self.current_event = kind
        logger.debug("event %s at t=%.1f", kind, self.now_ms)
        c = self.controller
        if kind in INPUT_EVENTS:
            self.surface.dispatch(ev)
        elif kind == 'zoom_in':
            c.zoom_in()
        elif kind == 'zoom_out':
            c.zoom_out()
        elif kind == 'today':
            c.go_to_today()
        elif kind == 'goto':
            c.go_to_date(parse_date(ev.get('date')))
        elif kind == 'pan':
            c.pan_by_days(float(ev.get('days', 0)))
        elif kind == 'days':
            c.set_days_visible(float(ev.get('n', c.days_visible)))

    def run(self, events):
        for i, ev in enumerate(events):
            self.apply(ev)
            nxt = events[i + 1] if i + 1 < len(events) else None
            self.run_momentum(until=_event_time(nxt))
        return self.rows

    def run_momentum(self, until=None):
        """Run pending momentum frames that fit before ``until`` (ms)."""
        frame_ms = self.controller.options.frame_ms
        frames = 0
        while self.scheduler.pending and frames < self.max_frames:
            if until is not None and self.now_ms + frame_ms > until:
                break
            self.scheduler.run_frame()
            frames += 1
        return frames


def _event_time(ev):
    if ev is None or 't' not in ev:
        return None
    try:
        return float(ev['t'])
    except (TypeError, ValueError):
        return None


def write_trace(rows, out_path, fmt, meta):
    try:
        if fmt == 'json':
            payload = json.dumps(rows, ensure_ascii=False, indent=2)
            if out_path:
                with open(out_path, 'w', encoding='utf-8') as f:
                    f.write(payload)
            else:
                print(payload)
        elif fmt == 'csv':
            if out_path:
                with open(out_path, 'w', newline='', encoding='utf-8') as f:
                    _write_csv(f, rows)
            else:
                _write_csv(sys.stdout, rows)
        elif fmt == 'xlsx':
            if not out_path:
                raise CLIError("--out is required for xlsx output")
            _write_xlsx(rows, out_path, meta)
        else:
            raise CLIError(f"Unsupported export format: {fmt}")
    except OSError as e:
        raise CLIError(f"Failed writing output {out_path}: {e}", code=3)


def _write_csv(stream, rows):
    w = csv.DictWriter(stream, fieldnames=TRACE_COLUMNS)
    w.writeheader()
    for r in rows:
        w.writerow(r)


def _write_xlsx(rows, out_path, meta):
    import openpyxl
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Trace"
    ws.append(TRACE_COLUMNS)
    for r in rows:
        ws.append([r[c] for c in TRACE_COLUMNS])
    ws.freeze_panes = "A2"
    meta_ws = wb.create_sheet("_Meta")
    for key, value in meta.items():
        meta_ws.append([key, value])
    wb.save(out_path)


def cmd_replay(args):
    if args.width <= 0:
        raise CLIError("--width must be positive")
    if args.frames < 0:
        raise CLIError("--frames must not be negative")
    center = parse_date(args.center) if args.center else None
    events = read_events(args.inp)
    try:
        replay = Replay(width=args.width, days=args.days, center=center,
                        min_days=args.min_days, max_days=args.max_days, max_frames=args.frames)
    except ValueError as e:
        raise CLIError(str(e))
    rows = replay.run(events)
    final = replay.controller.view
    meta = {
        "Source": os.path.abspath(args.inp),
        "Events": len(events),
        "Width": args.width,
        "Final center": final.center_date.isoformat(timespec='seconds'),
        "Final days": final.days_visible,
        "Momentum frames": replay.scheduler.frames_run,
    }
    write_trace(rows, args.out, args.format, meta)
    if args.out:
        print(f"Replayed {len(events)} events, {len(rows)} view changes -> {args.out}")
    return 0


def build_parser():
    p = argparse.ArgumentParser(description="Replay recorded timeline gestures headlessly")
    p.add_argument('-v', '--verbose', action='store_true', help='debug logging')
    sub = p.add_subparsers(dest='command', required=True)
    r = sub.add_parser('replay', help='replay an event log and export the view trace')
    r.add_argument('--in', dest='inp', required=True, help='JSON event log')
    r.add_argument('--out', help='output file (stdout for json/csv when omitted)')
    r.add_argument('--format', choices=['json', 'csv', 'xlsx'], default='json')
    r.add_argument('--width', type=float, default=1000, help='surface width in pixels')
    r.add_argument('--days', type=int, default=30, help='initial days visible')
    r.add_argument('--min-days', type=int, default=7)
    r.add_argument('--max-days', type=int, default=365)
    r.add_argument('--center', help='initial center date (ISO); defaults to now')
    r.add_argument('--frames', type=int, default=1000, help='max momentum frames per run')
    r.set_defaults(func=cmd_replay)
    return p


def main(argv=None):
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return 2 if e.code else 0
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args)
    except CLIError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return e.code


if __name__ == '__main__':
    sys.exit(main())
