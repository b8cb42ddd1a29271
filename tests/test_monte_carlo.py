"""
tests/test_monte_carlo.py - Trade-order Monte Carlo

Validates:
- Final capital is invariant under permutation
- R=1 equals the sequential sum
- Empty input yields a degenerate result
- Reproducibility across seeds and worker counts
- Cooperative cancellation
"""

import math
import threading

import numpy as np
import pytest

from backtesting.equity import compute_drawdown_stats
from backtesting.monte_carlo import MonteCarloConfig, MonteCarloResampler, replay_path, run_monte_carlo

PNLS = [120.0, -80.0, 45.5, -30.25, 210.0, -150.0, 60.0, -20.0, 95.0, -45.0] * 3


class TestReplayPath:

    def test_final_and_drawdown(self):
        final, dd = replay_path(np.array([100.0, -50.0, -50.0]), 1_000.0)
        assert final == 1_000.0
        assert dd == pytest.approx(100 / 1_100)

    def test_no_drawdown_on_winners(self):
        _, dd = replay_path(np.array([10.0, 20.0]), 1_000.0)
        assert dd == 0.0

    def test_drawdown_agrees_with_equity_tracker_stats(self):
        _, dd = replay_path(np.array(PNLS), 1_000.0)
        path = np.concatenate(([1_000.0], 1_000.0 + np.cumsum(PNLS)))
        assert dd == pytest.approx(compute_drawdown_stats(path.tolist()).max_drawdown)


class TestMonteCarlo:

    def test_final_capital_is_order_invariant(self):
        result = run_monte_carlo(PNLS, initial_capital=10_000, simulations=200, seed=7)
        expected = 10_000 + math.fsum(PNLS)
        assert result.completed == 200
        assert all(f == pytest.approx(expected) for f in result.final_capitals)
        assert result.final_capital == pytest.approx(expected)
        assert result.returns['min'] == result.returns['max']

    def test_drawdown_depends_on_order(self):
        result = run_monte_carlo(PNLS, initial_capital=10_000, simulations=200, seed=7)
        assert len(set(round(d, 8) for d in result.max_drawdowns)) > 1
        assert result.drawdowns['min'] <= result.drawdowns['median'] <= result.drawdowns['max']

    def test_single_resample_equals_sequential_sum(self, trade_factory):
        trades = [trade_factory(p, trade_id=i) for i, p in enumerate(PNLS, start=1)]
        result = run_monte_carlo(trades, initial_capital=10_000, simulations=1, seed=1)
        assert result.final_capital == 10_000 + math.fsum(PNLS)

    def test_empty_trade_list(self):
        result = run_monte_carlo([], initial_capital=10_000, simulations=100)
        assert result.trades == 0
        assert result.completed == 0
        assert result.probability_of_profit == 0.0
        assert result.probability_of_drawdown_over_threshold == 0.0
        assert result.final_capital == 10_000

    def test_probabilities(self):
        result = run_monte_carlo([100.0, 50.0, -20.0], initial_capital=1_000, simulations=50, seed=3)
        assert result.probability_of_profit == 100.0
        assert result.probability_of_drawdown_over_threshold == 0.0

    def test_reproducible_with_seed(self):
        a = run_monte_carlo(PNLS, simulations=100, seed=42)
        b = run_monte_carlo(PNLS, simulations=100, seed=42)
        assert a.max_drawdowns == b.max_drawdowns

    def test_worker_count_does_not_change_results(self):
        single = MonteCarloResampler(MonteCarloConfig(simulations=120, seed=11, max_workers=1)).run(PNLS)
        pooled = MonteCarloResampler(MonteCarloConfig(simulations=120, seed=11, max_workers=4)).run(PNLS)
        assert single.max_drawdowns == pooled.max_drawdowns
        assert single.to_dict() == pooled.to_dict()

    def test_cancelled_before_start(self):
        cancel = threading.Event()
        cancel.set()
        result = run_monte_carlo(PNLS, simulations=100, seed=1, cancel_event=cancel)
        assert result.cancelled
        assert result.completed == 0
        assert result.probability_of_profit == 0.0

    def test_rejects_non_positive_capital(self):
        with pytest.raises(ValueError):
            run_monte_carlo(PNLS, initial_capital=0)
