"""Tests for the realtime and simulation clocks."""

from datetime import datetime, timezone

import pytest

from sim_core.clock import (
    ClockError,
    ClockMode,
    RealtimeClock,
    TestClock,
    create_clock,
    datetime_to_nanos,
    get_realtime_clock,
    nanos_to_datetime,
)

MS = 1_000_000
START = 1_700_000_000_000 * MS


@pytest.fixture
def clock() -> TestClock:
    return TestClock(START)


class TestConversions:
    def test_datetime_round_trip_is_exact(self) -> None:
        ts = datetime(2024, 3, 1, 12, 30, 15, 123456, tzinfo=timezone.utc)
        nanos = datetime_to_nanos(ts)
        assert nanos % 1_000 == 0
        assert nanos_to_datetime(nanos) == ts

    def test_naive_datetime_is_utc(self) -> None:
        naive = datetime(2024, 1, 1)
        assert datetime_to_nanos(naive) == datetime_to_nanos(naive.replace(tzinfo=timezone.utc))


class TestAdvance:
    def test_time_only_moves_when_advanced(self, clock: TestClock) -> None:
        assert clock.timestamp() == START
        assert clock.timestamp() == START
        clock.advance_by(250)
        assert clock.timestamp() == START + 250 * MS

    def test_backward_raises(self, clock: TestClock) -> None:
        with pytest.raises(ClockError):
            clock.advance_time(START - 1)
        assert clock.timestamp() == START

    def test_same_time_is_noop(self, clock: TestClock) -> None:
        clock.set_time_alert("a", START)
        assert clock.advance_time(START) == []
        assert clock.timestamp() == START
        assert [e.name for e in clock.advance_by(1)] == ["a"]

    def test_set_date(self, clock: TestClock) -> None:
        target = datetime(2030, 1, 1, tzinfo=timezone.utc)
        clock.set_date(target)
        assert clock.utc_now() == target


class TestTimers:
    def test_timer_catches_up_on_missed_ticks(self, clock: TestClock) -> None:
        clock.set_timer("tick", 100)
        events = clock.advance_by(350)
        assert [e.ts_event for e in events] == [START + 100 * MS, START + 200 * MS, START + 300 * MS]
        assert all(e.ts_init == START + 350 * MS for e in events)

    def test_next_fire_after_catch_up(self, clock: TestClock) -> None:
        clock.set_timer("tick", 100)
        clock.advance_by(350)
        (pending,) = clock.get_pending_timers()
        assert pending.next_trigger_ns == START + 400 * MS

    def test_alert_fires_once(self, clock: TestClock) -> None:
        clock.set_time_alert("once", START + 10 * MS)
        assert [e.name for e in clock.advance_by(20)] == ["once"]
        assert clock.advance_by(1_000) == []

    def test_alert_accepts_datetime(self, clock: TestClock) -> None:
        when = nanos_to_datetime(START + 5 * MS)
        clock.set_time_alert("dt", when)
        assert [e.ts_event for e in clock.advance_by(10)] == [datetime_to_nanos(when)]

    def test_events_fire_in_time_order_with_registration_tiebreak(self, clock: TestClock) -> None:
        clock.set_time_alert("late", START + 30 * MS)
        clock.set_timer("t", 20)
        clock.set_time_alert("first-at-20", START + 20 * MS)
        events = clock.advance_by(45)
        assert [e.name for e in events] == ["t", "first-at-20", "late", "t"]
        times = [e.ts_event for e in events]
        assert times == sorted(times)

    def test_callbacks_invoked_in_order(self, clock: TestClock) -> None:
        seen: list[str] = []
        clock.set_time_alert("b", START + 2 * MS, callback=lambda e: seen.append(e.name))
        clock.set_time_alert("a", START + 1 * MS, callback=lambda e: seen.append(e.name))
        clock.advance_by(5)
        assert seen == ["a", "b"]

    def test_cancel_timer(self, clock: TestClock) -> None:
        clock.set_timer("tick", 10)
        clock.cancel_timer("tick")
        assert clock.advance_by(100) == []

    def test_zero_interval_rejected(self, clock: TestClock) -> None:
        with pytest.raises(ValueError):
            clock.set_timer("bad", 0)

    def test_triggered_history_is_drained(self, clock: TestClock) -> None:
        clock.set_timer("tick", 10)
        clock.advance_by(25)
        assert len(clock.get_triggered_events()) == 2
        assert clock.get_triggered_events() == []

    def test_reset_clears_everything(self, clock: TestClock) -> None:
        clock.set_timer("tick", 10)
        clock.set_time_alert("a", START + 50 * MS)
        clock.advance_by(15)
        clock.reset(START)
        assert clock.timestamp() == START
        assert clock.get_pending_timers() == []
        assert clock.get_pending_alerts() == []
        assert clock.get_triggered_events() == []


class TestRealtime:
    def test_factory_modes(self) -> None:
        assert isinstance(create_clock(ClockMode.SIMULATION, START), TestClock)
        assert isinstance(create_clock("REALTIME"), RealtimeClock)

    def test_singleton(self) -> None:
        assert get_realtime_clock() is get_realtime_clock()

    def test_process_timers_fires_past_alert(self) -> None:
        clock = RealtimeClock()
        clock.set_time_alert("past", clock.timestamp() - 1_000 * MS)
        assert [e.name for e in clock.process_timers()] == ["past"]
        assert clock.process_timers() == []
