"""Tests for the backtest engine: bar replay, fills, exits, force-close, aborts, determinism."""

import threading
from dataclasses import replace
from datetime import timedelta

import pytest

from backtest.runner import (
    AbortPolicy,
    BacktestEngine,
    BacktestRunError,
    EntryExit,
    RunPhase,
    RunStatus,
    TradeReason,
    run_backtest,
)
from backtest.strategies import CallbackSignalSource
from config.loader import BacktestConfig
from execution.fill_model import FILL_MODEL_PRESETS, FillModelConfig, FillProfile
from execution.models import PositionSide, Side
from sim_core.clock import ClockError, datetime_to_nanos
from sim_core.contracts import InvalidInputError, RiskParameters, StrategySpec, StrategyType

from conftest import bars_from_closes, make_bar


def _buy_and_hold(entry_bar: int = 0, risk: RiskParameters | None = None, **params) -> StrategySpec:
    return StrategySpec(
        "bh", StrategyType.BUY_AND_HOLD, parameters={"entry_bar": entry_bar, **params}, risk_parameters=risk,
    )


def _abort_after(n: int):
    calls = iter(range(10_000))
    return lambda: next(calls) >= n


class TestEndToEnd:
    def test_buy_and_hold_closed_at_end(self, rising_bars, seeded_config) -> None:
        result = run_backtest(_buy_and_hold(entry_bar=10), rising_bars, seeded_config)

        assert result.status is RunStatus.COMPLETED
        assert result.is_complete
        assert result.bars_processed == 100
        assert result.total_trades == 1
        entry, exit_ = result.trades
        assert entry.entry_exit is EntryExit.ENTRY
        assert entry.timestamp >= datetime_to_nanos(rising_bars[10].timestamp)
        assert exit_.entry_exit is EntryExit.EXIT
        assert exit_.reason is TradeReason.END_OF_BACKTEST
        assert exit_.price == rising_bars[99].close
        assert exit_.side is Side.SELL
        assert exit_.quantity == pytest.approx(entry.quantity)
        assert exit_.pnl > 0
        assert result.open_positions == []
        assert result.final_capital == pytest.approx(seeded_config.initial_capital + exit_.pnl)

    def test_period_bounds(self, rising_bars, seeded_config) -> None:
        result = run_backtest(_buy_and_hold(), rising_bars, seeded_config)
        assert result.start_time == rising_bars[0].timestamp
        assert result.end_time == rising_bars[-1].timestamp

    def test_no_orders_no_trades(self, flat_bars, seeded_config) -> None:
        spec = StrategySpec("idle", StrategyType.BUY_AND_HOLD, parameters={"entry_bar": 1_000})
        result = run_backtest(spec, flat_bars, seeded_config)
        assert result.trades == []
        assert result.total_trades == 0
        assert result.final_capital == seeded_config.initial_capital
        assert result.win_rate == 0
        assert result.sharpe_ratio == 0
        assert result.max_drawdown == 0

    def test_capital_is_initial_plus_realized(self, wave_bars, seeded_config) -> None:
        spec = StrategySpec(
            "trend", StrategyType.TREND_FOLLOWING, parameters={"fast_period": 5, "slow_period": 20},
        )
        result = run_backtest(spec, wave_bars, seeded_config)
        assert result.total_trades > 1
        realized = sum(t.pnl for t in result.trades)
        assert result.final_capital == pytest.approx(seeded_config.initial_capital + realized)
        assert result.total_commission == pytest.approx(sum(t.fee for t in result.trades))

    def test_engine_reaches_done(self, flat_bars, seeded_config) -> None:
        engine = BacktestEngine(seeded_config)
        assert engine.phase is RunPhase.INIT
        engine.run(_buy_and_hold(), flat_bars)
        assert engine.phase is RunPhase.DONE
        assert engine.clock.timestamp() == datetime_to_nanos(flat_bars[-1].timestamp)


class TestDeterminism:
    def _spec(self) -> StrategySpec:
        return StrategySpec(
            "trend", StrategyType.TREND_FOLLOWING, parameters={"fast_period": 5, "slow_period": 20},
        )

    def test_same_seed_identical_results(self, wave_bars, seeded_config) -> None:
        a = run_backtest(self._spec(), wave_bars, seeded_config)
        b = run_backtest(self._spec(), wave_bars, seeded_config)
        assert a.trades == b.trades
        assert a.fills == b.fills
        assert a.final_capital == b.final_capital
        assert a.metrics == b.metrics

    def test_engine_reuse_is_reproducible(self, wave_bars, seeded_config) -> None:
        engine = BacktestEngine(seeded_config)
        first = engine.run(self._spec(), wave_bars)
        second = engine.run(self._spec(), wave_bars)
        assert first.trades == second.trades

    def test_unseeded_run_reports_replayable_seed(self, wave_bars) -> None:
        first = run_backtest(self._spec(), wave_bars, BacktestConfig())
        replay = run_backtest(self._spec(), wave_bars, BacktestConfig(random_seed=first.random_seed))
        assert first.fills == replay.fills

    def test_bars_not_mutated(self, wave_bars, seeded_config) -> None:
        snapshot = list(wave_bars)
        run_backtest(self._spec(), wave_bars, seeded_config)
        assert wave_bars == snapshot


class TestFillProfiles:
    PRICEY = FillProfile("PRICEY", FillModelConfig(commission_rate=0.01, slippage_probability=0.0))

    def test_custom_profile_commission_applies(self, rising_bars) -> None:
        cfg = BacktestConfig(fill_model=self.PRICEY, random_seed=42)
        result = run_backtest(_buy_and_hold(quantity=1), rising_bars, cfg)
        entry_fill = result.fills[0]
        assert entry_fill.commission == pytest.approx(entry_fill.price * entry_fill.quantity * 0.01)
        (exit_,) = result.exit_trades
        assert exit_.reason is TradeReason.END_OF_BACKTEST
        assert exit_.fee == pytest.approx(exit_.price * exit_.quantity * 0.01)

    def test_config_override_beats_profile(self, rising_bars) -> None:
        cfg = BacktestConfig(fill_model=self.PRICEY, commission_rate=0.002, random_seed=42)
        result = run_backtest(_buy_and_hold(quantity=1), rising_bars, cfg)
        entry_fill = result.fills[0]
        assert entry_fill.commission == pytest.approx(entry_fill.price * entry_fill.quantity * 0.002)
        assert result.exit_trades[0].fee == pytest.approx(result.exit_trades[0].price * 0.002)


class TestExits:
    def test_stop_loss(self, seeded_config) -> None:
        bars = bars_from_closes([100.0, 100.0, 99.0, 94.0, 90.0, 95.0])
        result = run_backtest(_buy_and_hold(risk=RiskParameters(stop_loss_pct=5.0)), bars, seeded_config)
        exits = result.exit_trades
        assert len(exits) == 1
        assert exits[0].reason is TradeReason.STOP_LOSS
        assert exits[0].price == 94.0
        assert exits[0].timestamp == datetime_to_nanos(bars[3].timestamp)
        assert exits[0].pnl < 0
        assert exits[0].fee == pytest.approx(94.0 * exits[0].quantity * FILL_MODEL_PRESETS["STANDARD"].fill.commission_rate)

    def test_take_profit(self, seeded_config) -> None:
        bars = bars_from_closes([100.0, 104.0, 108.0, 112.0, 120.0])
        risk = RiskParameters(stop_loss_pct=5.0, take_profit_pct=10.0)
        result = run_backtest(_buy_and_hold(risk=risk), bars, seeded_config)
        (exit_,) = result.exit_trades
        assert exit_.reason is TradeReason.TAKE_PROFIT
        assert exit_.price == 112.0
        assert exit_.pnl > 0

    def test_no_risk_parameters_holds_to_end(self, seeded_config) -> None:
        bars = bars_from_closes([100.0, 50.0, 40.0])
        result = run_backtest(_buy_and_hold(), bars, seeded_config)
        (exit_,) = result.exit_trades
        assert exit_.reason is TradeReason.END_OF_BACKTEST

    def test_signal_flip_realizes_and_reopens(self, seeded_config) -> None:
        def flip(bar, state):
            if state.bar_index == 0:
                return [state.new_order(bar.symbol, Side.BUY, 10.0)]
            if state.bar_index == 2:
                return [state.new_order(bar.symbol, Side.SELL, 15.0)]
            return []

        bars = bars_from_closes([100.0, 105.0, 110.0, 108.0])
        engine = BacktestEngine(seeded_config)
        result = engine.run(StrategySpec("flip", StrategyType.BUY_AND_HOLD), bars, signal_source=CallbackSignalSource(flip))

        entry, flip_trade, final = result.trades
        assert entry.entry_exit is EntryExit.ENTRY
        assert flip_trade.entry_exit is EntryExit.EXIT
        assert flip_trade.reason is TradeReason.SIGNAL
        assert flip_trade.pnl > 0
        assert final.reason is TradeReason.END_OF_BACKTEST
        assert final.side is Side.BUY
        assert final.quantity == pytest.approx(5.0)

    def test_reduce_only_without_position_dropped(self, seeded_config, flat_bars) -> None:
        def sell_reduce(bar, state):
            return [state.new_order(bar.symbol, Side.SELL, 1.0, reduce_only=True)]

        result = BacktestEngine(seeded_config).run(
            _buy_and_hold(), flat_bars[:5], signal_source=CallbackSignalSource(sell_reduce),
        )
        assert result.fills == []

    def test_reduce_only_clipped_to_position(self, seeded_config, flat_bars) -> None:
        def orders(bar, state):
            if state.bar_index == 0:
                return [state.new_order(bar.symbol, Side.BUY, 2.0)]
            if state.bar_index == 1:
                return [state.new_order(bar.symbol, Side.SELL, 5.0, reduce_only=True)]
            return []

        engine = BacktestEngine(seeded_config)
        result = engine.run(_buy_and_hold(), flat_bars[:4], signal_source=CallbackSignalSource(orders))
        assert [f.quantity for f in result.fills] == [2.0, 2.0]
        assert result.open_positions == []
        assert engine.positions == {}


class TestBooks:
    def test_order_for_unknown_symbol_dropped(self, seeded_config, flat_bars) -> None:
        def other_symbol(bar, state):
            return [state.new_order("ETH", Side.BUY, 1.0)]

        result = BacktestEngine(seeded_config).run(
            _buy_and_hold(), flat_bars[:5], signal_source=CallbackSignalSource(other_symbol),
        )
        assert result.fills == []
        assert result.trades == []

    def test_book_tracks_latest_bar(self, seeded_config) -> None:
        bars = bars_from_closes([100.0, 120.0])
        engine = BacktestEngine(seeded_config)
        engine.run(_buy_and_hold(entry_bar=99), bars)
        book = engine.books["BTC"]
        assert book.mid_price == pytest.approx(120.0)
        assert book.best_bid < 120.0 < book.best_ask

    def test_multi_symbol_force_close_uses_each_last_close(self, seeded_config) -> None:
        bars = []
        for i in range(5):
            bars.append(make_bar(i, 100.0 + i, symbol="BTC"))
            bars.append(make_bar(i, 50.0 - i, symbol="ETH"))
        result = run_backtest(_buy_and_hold(), bars, seeded_config)
        closes = {t.symbol: t.price for t in result.exit_trades}
        assert closes == {"BTC": 104.0, "ETH": 46.0}


class TestAbort:
    def test_force_close_policy(self, rising_bars, seeded_config) -> None:
        result = BacktestEngine(seeded_config).run(
            _buy_and_hold(), rising_bars, should_abort=_abort_after(50), on_abort=AbortPolicy.FORCE_CLOSE,
        )
        assert result.status is RunStatus.ABORTED_FORCE_CLOSED
        assert result.is_complete
        assert result.bars_processed == 50
        (exit_,) = result.exit_trades
        assert exit_.reason is TradeReason.END_OF_BACKTEST
        assert exit_.price == rising_bars[49].close
        assert result.end_time == rising_bars[49].timestamp

    def test_exclude_policy_leaves_positions_open(self, rising_bars, seeded_config) -> None:
        result = BacktestEngine(seeded_config).run(
            _buy_and_hold(), rising_bars, should_abort=_abort_after(50), on_abort=AbortPolicy.EXCLUDE,
        )
        assert result.status is RunStatus.ABORTED_PARTIAL
        assert not result.is_complete
        assert result.total_trades == 0
        (pos,) = result.open_positions
        assert pos.side is PositionSide.LONG
        assert result.final_capital == seeded_config.initial_capital

    def test_event_object_accepted(self, rising_bars, seeded_config) -> None:
        stop = threading.Event()
        stop.set()
        result = BacktestEngine(seeded_config).run(_buy_and_hold(), rising_bars, should_abort=stop)
        assert result.bars_processed == 0
        assert result.trades == []


class TestFailures:
    def test_empty_series(self, seeded_config) -> None:
        with pytest.raises(InvalidInputError):
            run_backtest(_buy_and_hold(), [], seeded_config)

    def test_corrupt_bar(self, seeded_config) -> None:
        bars = bars_from_closes([100.0, 101.0])
        bars.append(replace(bars[-1], close=float("nan"), timestamp=bars[-1].timestamp + timedelta(hours=1)))
        with pytest.raises(InvalidInputError):
            run_backtest(_buy_and_hold(), bars, seeded_config)

    def test_out_of_order_bars(self, seeded_config) -> None:
        bars = bars_from_closes([100.0, 101.0, 102.0])
        with pytest.raises(ClockError):
            run_backtest(_buy_and_hold(), [bars[0], bars[2], bars[1]], seeded_config)

    def test_strategy_exception_aborts_run(self, flat_bars, seeded_config) -> None:
        def explode(bar, state):
            if state.bar_index == 3:
                raise ZeroDivisionError("bad indicator")
            return []

        with pytest.raises(BacktestRunError) as excinfo:
            BacktestEngine(seeded_config).run(
                _buy_and_hold(), flat_bars, signal_source=CallbackSignalSource(explode),
            )
        assert excinfo.value.bar_index == 3
        assert excinfo.value.strategy_id == "bh"
        assert isinstance(excinfo.value.__cause__, ZeroDivisionError)

    def test_internal_steps_need_an_active_run(self, seeded_config) -> None:
        engine = BacktestEngine(seeded_config)
        with pytest.raises(RuntimeError, match="no active run"):
            engine._close_position("BTC", 100.0, TradeReason.END_OF_BACKTEST)


class TestEvents:
    def test_event_sequence(self, rising_bars, seeded_config) -> None:
        events: list[str] = []
        run_backtest(
            _buy_and_hold(entry_bar=5),
            rising_bars,
            seeded_config,
            event_callback=lambda kind, payload: events.append(kind),
        )
        assert events[0] == "run_start"
        assert events[-1] == "run_complete"
        assert events.count("fill") == 1
        assert events.count("exit") == 1

    def test_abort_event(self, rising_bars, seeded_config) -> None:
        events: list[str] = []
        BacktestEngine(seeded_config).run(
            _buy_and_hold(), rising_bars, should_abort=_abort_after(3),
            event_callback=lambda kind, payload: events.append(kind),
        )
        assert "run_aborted" in events
