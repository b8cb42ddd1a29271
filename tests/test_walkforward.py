"""
tests/test_walkforward.py - Walk-forward evaluation

Validates:
- Window construction, overlap and exact coverage
- Each window is an independent engine run
- Short windows are skipped, not fatal
- Cancellation and parallel execution
"""

import threading

import pytest

from backtesting.backtest_engine import BacktestEngine
from backtesting.walkforward import (
    WalkForwardConfig,
    WalkForwardDriver,
    aggregate_window_summaries,
    build_windows,
    run_walk_forward,
)


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------

class TestBuildWindows:

    def test_default_shape(self):
        windows = build_windows(1000, 500, 100, 50)
        assert len(windows) == 9
        assert windows[0].train_start == 0
        assert windows[0].test_start == 500
        assert windows[-1].test_end == 1000

    def test_no_overlap_when_step_covers_test(self):
        windows = build_windows(1000, 100, 100, 150)
        for a, b in zip(windows, windows[1:]):
            assert a.test_end <= b.test_start

    def test_exact_coverage_when_step_equals_test(self):
        windows = build_windows(600, 100, 100, 100)
        covered = []
        for w in windows:
            covered.extend(range(w.test_start, w.test_end))
        assert covered == list(range(100, 600))

    def test_too_short_input(self):
        assert build_windows(150, 100, 100, 50) == []

    @pytest.mark.parametrize("train,test,step", [(-1, 10, 10), (10, 0, 10), (10, 10, 0)])
    def test_invalid_arguments(self, train, test, step):
        with pytest.raises(ValueError):
            build_windows(1000, train, test, step)


class TestAggregate:

    def test_empty(self):
        assert aggregate_window_summaries([]) is None

    def test_values(self):
        summaries = [
            {'total_return': 10.0, 'win_rate': 60.0, 'max_drawdown': 5.0},
            {'total_return': -2.0, 'win_rate': 40.0, 'max_drawdown': 8.0},
        ]
        agg = aggregate_window_summaries(summaries)
        assert agg['avg_return'] == 4.0
        assert agg['min_return'] == -2.0
        assert agg['max_return'] == 10.0
        assert agg['avg_win_rate'] == 50.0
        assert agg['avg_drawdown'] == 6.5
        assert agg['max_drawdown'] == 8.0
        assert agg['consistency'] == 50.0


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

class TestWalkForwardDriver:

    @pytest.fixture
    def config(self):
        return WalkForwardConfig(train_period=100, test_period=100, step=100)

    def test_runs_every_window(self, choppy_candles, alternating_signal_source, config):
        result = WalkForwardDriver(config).run(choppy_candles, alternating_signal_source)
        assert result.periods == 5
        assert result.skipped == 0
        assert not result.cancelled
        assert 0 <= result.aggregated['consistency'] <= 100
        assert result.results[0]['period'] == {
            'train_start': 0, 'train_end': 100, 'test_start': 100, 'test_end': 200,
        }

    def test_window_matches_standalone_run(self, choppy_candles, alternating_signal_source, config):
        result = WalkForwardDriver(config).run(choppy_candles, alternating_signal_source)
        standalone = BacktestEngine(start_index=100).run(
            choppy_candles[200:400], alternating_signal_source, strategy_name="wf_2"
        )
        assert result.results[2]['summary'] == standalone.summary

    def test_short_windows_are_skipped(self, choppy_candles, alternating_signal_source):
        config = WalkForwardConfig(train_period=100, test_period=40, step=40)
        result = WalkForwardDriver(config).run(choppy_candles, alternating_signal_source)
        assert result.periods == 0
        assert result.skipped == len(result.windows) > 0
        assert result.aggregated is None

    def test_cancel_before_start(self, choppy_candles, alternating_signal_source, config):
        cancel = threading.Event()
        cancel.set()
        result = WalkForwardDriver(config).run(choppy_candles, alternating_signal_source, cancel_event=cancel)
        assert result.cancelled
        assert result.periods == 0
        assert result.aggregated is None

    def test_cancel_mid_run_keeps_completed_windows(self, choppy_candles, config):
        cancel = threading.Event()
        calls = {'n': 0}

        def source(lookback):
            calls['n'] += 1
            # first window simulates 100 bars, then ask to stop
            if calls['n'] == 100:
                cancel.set()
            return None

        result = WalkForwardDriver(config).run(choppy_candles, source, cancel_event=cancel)
        assert result.cancelled
        assert result.periods == 1
        assert result.aggregated['avg_return'] == 0.0

    def test_parallel_matches_sequential(self, choppy_candles, alternating_signal_source):
        sequential = WalkForwardConfig(train_period=100, test_period=100, step=100, max_workers=1)
        parallel = WalkForwardConfig(train_period=100, test_period=100, step=100, max_workers=4)
        a = WalkForwardDriver(sequential).run(choppy_candles, alternating_signal_source)
        b = WalkForwardDriver(parallel).run(choppy_candles, alternating_signal_source)
        assert a.to_dict() == b.to_dict()

    def test_frame_output(self, choppy_candles, alternating_signal_source, config):
        result = run_walk_forward(choppy_candles, alternating_signal_source, config)
        frame = result.to_frame()
        assert len(frame) == result.periods
        assert {'test_start', 'total_return', 'win_rate'} <= set(frame.columns)
