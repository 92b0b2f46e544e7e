"""Append-only record of timestamped timeline events.

Events are kept in memory in the order they were appended and can be exported
at any time, including after a run was cancelled. Attached sinks receive the
same events on a background thread, so a slow or broken sink never holds up
the caller of ``append``.
"""

import io
import csv
import json
import queue
import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

from .utils import SystemClock

logger = logging.getLogger(__name__)

PRE_BASELINE = 'Pre-baseline'
POST_BASELINE = 'Post-baseline'
SHOW_FIXATION = 'show fixation'
SHOW_STIM = 'show stim'
SHOW_POST_STIM = 'show post stim'
KEYDOWN = 'keydown'

START = 'start'
END = 'end'

EXPORT_FIELDS = ('phase', 'edge', 'timestamp', 'trial', 'set_index', 'item_index', 'item_name', 'key')


@dataclass(frozen=True)
class TimelineEvent:
    phase: str
    edge: Optional[str]
    timestamp: float
    trial: Optional[int] = None
    set_index: Optional[int] = None
    item_index: Optional[int] = None
    item_name: Optional[str] = None
    key: Optional[str] = None

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in EXPORT_FIELDS}

    def context(self):
        return (self.trial, self.set_index, self.item_index, self.item_name)


class EventLog:
    def __init__(self, clock=None):
        self._clock = clock if clock is not None else SystemClock()
        self._events: List[TimelineEvent] = []
        self._lock = threading.Lock()
        self._sinks = []
        self._queue = None
        self._forwarder = None

    def __len__(self):
        return len(self._events)

    @property
    def events(self):
        with self._lock:
            return tuple(self._events)

    def append(self, event: TimelineEvent):
        with self._lock:
            self._events.append(event)
            if self._queue is not None:
                self._queue.put(event)

    def record(self, phase: str, edge: Optional[str] = None, **context) -> TimelineEvent:
        """Stamp an event with the current clock reading and append it."""
        ts = self._clock.now_ms()
        with self._lock:
            if self._events and ts < self._events[-1].timestamp:
                ts = self._events[-1].timestamp
        event = TimelineEvent(phase, edge, ts, **context)
        self.append(event)
        return event

    # ------------------------
    # Export
    # ------------------------

    def rows(self):
        return [e.to_dict() for e in self.events]

    def export(self, fmt: str = 'json') -> str:
        rows = self.rows()
        if fmt == 'json':
            return json.dumps(rows, indent=2)
        if fmt == 'csv':
            buf = io.StringIO()
            writer = csv.DictWriter(buf, fieldnames=EXPORT_FIELDS, lineterminator='\n')
            writer.writeheader()
            for row in rows:
                writer.writerow({k: '' if v is None else v for k, v in row.items()})
            return buf.getvalue()
        raise ValueError(f'Unsupported export format: {fmt!r}')

    def save(self, path: str) -> str:
        fmt = 'csv' if str(path).lower().endswith('.csv') else 'json'
        with open(path, 'w', encoding='utf-8', newline='') as f:
            f.write(self.export(fmt))
        return path

    # ------------------------
    # Sink forwarding
    # ------------------------

    def attach_sink(self, sink):
        with self._lock:
            self._sinks.append(sink)
            if self._forwarder is None:
                self._queue = queue.Queue()
                self._forwarder = threading.Thread(target=self._forward_loop, args=(self._queue,),
                                                   name='event-forwarder', daemon=True)
                self._forwarder.start()

    def _forward_loop(self, events: queue.Queue):
        while True:
            event = events.get()
            if event is None:
                break
            for sink in list(self._sinks):
                try:
                    sink.send(event)
                except Exception as e:
                    logger.debug(f'Sink {sink!r} failed to forward event: {e}')

    def close(self, timeout: float = 1.0):
        """Deliver pending events to the sinks and stop the forwarding thread."""
        with self._lock:
            forwarder, self._forwarder = self._forwarder, None
            if forwarder is not None:
                self._queue.put(None)
                self._queue = None
        if forwarder is not None:
            forwarder.join(timeout)


def pair_phases(rows):
    """Match start/end rows into per-phase durations.

    Accepts TimelineEvent objects or exported dicts. A start without a matching
    end (a phase interrupted by cancellation) gets ``duration_ms`` of None.
    """
    paired = []
    open_phase = None
    for row in rows:
        if isinstance(row, TimelineEvent):
            row = row.to_dict()
        if row.get('phase') == KEYDOWN:
            continue
        ts = float(row['timestamp'])
        if row.get('edge') == START:
            if open_phase is not None:
                paired.append(dict(open_phase, end=None, duration_ms=None))
            open_phase = {'phase': row['phase'], 'trial': row.get('trial'), 'start': ts}
        elif row.get('edge') == END and open_phase is not None and open_phase['phase'] == row['phase']:
            paired.append(dict(open_phase, end=ts, duration_ms=ts - open_phase['start']))
            open_phase = None
    if open_phase is not None:
        paired.append(dict(open_phase, end=None, duration_ms=None))
    return paired
