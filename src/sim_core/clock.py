"""
Clock abstraction: one interface, two implementations.

RealtimeClock reads wall time for live use. TestClock only moves when it is
explicitly advanced, so backtests are reproducible and never sleep.

Time is an integer count of nanoseconds since the Unix epoch. Timers are
recurring and catch up on missed ticks (next fire = missed fire + interval);
alerts are one-shot. Every due timer/alert fires exactly once per scheduled
time, in ascending scheduled-time order; ties keep registration order.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from itertools import count
from typing import Callable

logger = logging.getLogger("simlab.clock")

NANOS_PER_MS = 1_000_000
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ClockError(ValueError):
    """Raised on an attempt to move simulation time backward."""


class ClockMode(str, Enum):
    REALTIME = "REALTIME"
    SIMULATION = "SIMULATION"


@dataclass(frozen=True)
class TimeEvent:
    """Audit record of one timer/alert firing."""

    name: str
    event_id: str
    ts_event: int  # scheduled fire time
    ts_init: int  # clock time when the advance fired it


TimeCallback = Callable[[TimeEvent], None]


@dataclass
class Timer:
    name: str
    interval_ns: int
    next_trigger_ns: int
    callback: TimeCallback | None
    seq: int


@dataclass
class TimeAlert:
    name: str
    trigger_time_ns: int
    callback: TimeCallback | None
    seq: int


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------


def datetime_to_nanos(ts: datetime) -> int:
    """Exact integer conversion (no float rounding). Naive datetimes are taken as UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ((ts - _EPOCH) // timedelta(microseconds=1)) * 1_000


def nanos_to_datetime(nanos: int) -> datetime:
    return _EPOCH + timedelta(microseconds=nanos // 1_000)


def format_nanos(nanos: int) -> str:
    return nanos_to_datetime(nanos).isoformat()


# ---------------------------------------------------------------------------
# Shared timer bookkeeping
# ---------------------------------------------------------------------------


class Clock:
    """Base clock: timer/alert registry and ordered firing. Subclasses supply the time source."""

    mode: ClockMode

    def __init__(self) -> None:
        self._timers: dict[str, Timer] = {}
        self._alerts: dict[str, TimeAlert] = {}
        self._seq = count()

    def timestamp(self) -> int:
        raise NotImplementedError

    def timestamp_ms(self) -> float:
        return self.timestamp() / NANOS_PER_MS

    def utc_now(self) -> datetime:
        return nanos_to_datetime(self.timestamp())

    def set_timer(self, name: str, interval_ms: float, callback: TimeCallback | None = None) -> None:
        """Register a recurring timer; first fire is one interval from now."""
        interval_ns = int(interval_ms * NANOS_PER_MS)
        if interval_ns <= 0:
            raise ValueError(f"Timer {name!r} interval must be > 0 ms, got {interval_ms!r}")
        self._timers[name] = Timer(
            name=name,
            interval_ns=interval_ns,
            next_trigger_ns=self.timestamp() + interval_ns,
            callback=callback,
            seq=next(self._seq),
        )

    def set_time_alert(
        self,
        name: str,
        alert_time: datetime | int,
        callback: TimeCallback | None = None,
    ) -> None:
        """Register a one-shot alert at a datetime or an absolute nanosecond time."""
        trigger_ns = datetime_to_nanos(alert_time) if isinstance(alert_time, datetime) else int(alert_time)
        self._alerts[name] = TimeAlert(
            name=name,
            trigger_time_ns=trigger_ns,
            callback=callback,
            seq=next(self._seq),
        )

    def cancel_timer(self, name: str) -> None:
        """Remove the timer and the alert registered under *name*, if any."""
        self._timers.pop(name, None)
        self._alerts.pop(name, None)

    def _fire_due(self, now_ns: int) -> list[TimeEvent]:
        """Fire everything scheduled at or before *now_ns*, earliest first."""
        events: list[TimeEvent] = []
        while True:
            candidates: list[tuple[int, int, Timer | TimeAlert]] = []
            candidates.extend(
                (t.next_trigger_ns, t.seq, t) for t in self._timers.values() if t.next_trigger_ns <= now_ns
            )
            candidates.extend(
                (a.trigger_time_ns, a.seq, a) for a in self._alerts.values() if a.trigger_time_ns <= now_ns
            )
            if not candidates:
                return events
            scheduled, _, item = min(candidates, key=lambda c: (c[0], c[1]))

            if isinstance(item, Timer):
                item.next_trigger_ns += item.interval_ns
            else:
                del self._alerts[item.name]

            event = TimeEvent(
                name=item.name,
                event_id=f"{item.name}-{scheduled}",
                ts_event=scheduled,
                ts_init=now_ns,
            )
            events.append(event)
            if item.callback is not None:
                item.callback(event)


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class RealtimeClock(Clock):
    """Wall-clock time. Timers fire from process_timers(), or a polling thread after start()."""

    mode = ClockMode.REALTIME

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def timestamp(self) -> int:
        return time.time_ns()

    def process_timers(self) -> list[TimeEvent]:
        with self._lock:
            return self._fire_due(self.timestamp())

    def start(self, poll_interval_s: float = 0.1) -> None:
        if self._thread is not None:
            return
        self._stop.clear()

        def _loop() -> None:
            while not self._stop.wait(poll_interval_s):
                try:
                    self.process_timers()
                except Exception:
                    logger.exception("Timer callback failed")

        self._thread = threading.Thread(target=_loop, name="realtime-clock", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None


class TestClock(Clock):
    """Simulation clock: time moves only through advance_time and its wrappers."""

    __test__ = False  # not a pytest class
    mode = ClockMode.SIMULATION

    def __init__(self, initial_time_ns: int | None = None) -> None:
        super().__init__()
        self._now_ns = time.time_ns() if initial_time_ns is None else int(initial_time_ns)
        self._triggered: list[TimeEvent] = []

    def timestamp(self) -> int:
        return self._now_ns

    def advance_time(self, to_time_ns: int) -> list[TimeEvent]:
        """Move time forward to *to_time_ns*; return the events fired on the way, in order.

        Advancing to the current time is a no-op. Moving backward raises ClockError.
        """
        to_time_ns = int(to_time_ns)
        if to_time_ns < self._now_ns:
            raise ClockError(
                f"Clock cannot move backward: {format_nanos(to_time_ns)} < {format_nanos(self._now_ns)}"
            )
        if to_time_ns == self._now_ns:
            return []
        self._now_ns = to_time_ns
        events = self._fire_due(to_time_ns)
        self._triggered.extend(events)
        return events

    def advance_by(self, duration_ms: float) -> list[TimeEvent]:
        return self.advance_time(self._now_ns + int(duration_ms * NANOS_PER_MS))

    def set_time(self, time_ns: int) -> list[TimeEvent]:
        return self.advance_time(time_ns)

    def set_date(self, date: datetime) -> list[TimeEvent]:
        return self.set_time(datetime_to_nanos(date))

    def get_triggered_events(self) -> list[TimeEvent]:
        """Return and clear the history of fired events."""
        events, self._triggered = self._triggered, []
        return events

    def get_pending_timers(self) -> list[Timer]:
        return [t for t in self._timers.values() if t.next_trigger_ns > self._now_ns]

    def get_pending_alerts(self) -> list[TimeAlert]:
        return [a for a in self._alerts.values() if a.trigger_time_ns > self._now_ns]

    def reset(self, start_ns: int | None = None) -> None:
        """Back to "now" (or *start_ns*) with no timers, alerts or history."""
        self._now_ns = time.time_ns() if start_ns is None else int(start_ns)
        self._timers.clear()
        self._alerts.clear()
        self._triggered = []


def create_clock(mode: ClockMode | str = ClockMode.REALTIME, initial_time_ns: int | None = None) -> Clock:
    if ClockMode(mode) is ClockMode.SIMULATION:
        return TestClock(initial_time_ns)
    return RealtimeClock()


_realtime_clock: RealtimeClock | None = None


def get_realtime_clock() -> RealtimeClock:
    """Process-wide wall clock for live use. Backtests own a private TestClock instead."""
    global _realtime_clock
    if _realtime_clock is None:
        _realtime_clock = RealtimeClock()
    return _realtime_clock
