"""
tests/test_trade_statistics.py - Incremental trade statistics
"""

import math
from datetime import datetime, timedelta, timezone

import pytest

from core.contracts import Direction
from backtesting.statistics import BREAKEVEN, LOSS, WIN, TradeStatistics
from risk.advanced_metrics import AdvancedRiskMetrics


class TestClassification:

    def test_exact_zero_band(self, trade_factory):
        stats = TradeStatistics()
        assert stats.record(trade_factory(5.0)) == WIN
        assert stats.record(trade_factory(-5.0, trade_id=2)) == LOSS
        assert stats.record(trade_factory(0.0, trade_id=3)) == BREAKEVEN
        assert stats.win_rate == pytest.approx(1 / 3)

    def test_percent_band_on_leveraged_move(self, trade_factory):
        stats = TradeStatistics(breakeven_band=0.5, breakeven_basis="pnl_percent")
        # 100 -> 100.04 at 10x is +0.4%
        flat = trade_factory(0.04, leverage=10.0)
        win = trade_factory(0.1, trade_id=2, leverage=10.0)
        assert stats.record(flat) == BREAKEVEN
        assert stats.record(win) == WIN
        assert stats.breakeven_trades == 1


class TestAggregates:

    def test_counters_and_streaks(self, trade_factory):
        stats = TradeStatistics()
        for i, pnl in enumerate([10.0, 20.0, -5.0, -5.0, -5.0, 30.0], start=1):
            stats.record(trade_factory(pnl, trade_id=i))

        assert stats.total_trades == 6
        assert stats.winning_trades == 3
        assert stats.losing_trades == 3
        assert stats.gross_profit == pytest.approx(60.0)
        assert stats.gross_loss == pytest.approx(-15.0)
        assert stats.profit_factor == pytest.approx(4.0)
        assert stats.max_win_streak == 2
        assert stats.max_loss_streak == 3
        assert stats.current_win_streak == 1
        assert stats.largest_win == 30.0
        assert stats.largest_loss == -5.0
        assert stats.expectancy == pytest.approx(45.0 / 6)
        assert stats.best_trade.id == 6
        assert stats.worst_trade.net_pnl == -5.0

    def test_breakeven_neither_extends_nor_breaks_a_streak(self, trade_factory):
        pnls = [10.0, 0.0, 10.0, -4.0, 0.0, -4.0]
        stats = TradeStatistics()
        for i, pnl in enumerate(pnls, start=1):
            stats.record(trade_factory(pnl, trade_id=i))

        assert stats.max_win_streak == 2
        assert stats.max_loss_streak == 2
        assert stats.current_loss_streak == 2
        assert (stats.max_win_streak, stats.max_loss_streak) == AdvancedRiskMetrics.calculate_streaks(pnls)

    def test_averages_exclude_band_breakevens(self, trade_factory):
        stats = TradeStatistics(breakeven_band=0.5, breakeven_basis="pnl_percent")
        stats.record(trade_factory(5.0))
        stats.record(trade_factory(0.3, trade_id=2))
        stats.record(trade_factory(-0.2, trade_id=3))
        stats.record(trade_factory(-2.0, trade_id=4))

        assert stats.winning_trades == 1
        assert stats.losing_trades == 1
        assert stats.breakeven_trades == 2
        assert stats.avg_win == pytest.approx(5.0)
        assert stats.avg_loss == pytest.approx(-2.0)
        assert stats.expectancy == pytest.approx(0.25 * 5.0 - 0.75 * 2.0)
        # profit factor still counts every dollar
        assert stats.gross_profit == pytest.approx(5.3)
        assert stats.gross_loss == pytest.approx(-2.2)
        assert stats.profit_factor == pytest.approx(5.3 / 2.2)

        restored = TradeStatistics(breakeven_band=0.5, breakeven_basis="pnl_percent")
        restored.restore(stats.counters())
        assert restored.avg_win == pytest.approx(5.0)

    def test_profit_factor_edges(self, trade_factory):
        stats = TradeStatistics()
        assert stats.profit_factor == 0.0
        stats.record(trade_factory(10.0))
        assert math.isinf(stats.profit_factor)

    def test_summary_is_rounded(self, trade_factory):
        stats = TradeStatistics()
        stats.record(trade_factory(10.123))
        summary = stats.summary()
        assert summary['total_pnl'] == 10.12
        assert summary['win_rate'] == 100.0
        assert summary['long_trades'] == 1
        assert summary['short_trades'] == 0

    def test_recent_trades_newest_first(self, trade_factory):
        stats = TradeStatistics(recent_size=2)
        for i in range(1, 4):
            stats.record(trade_factory(1.0, trade_id=i))
        assert [t.id for t in stats.recent] == [3, 2]


class TestBreakdowns:

    def test_direction_buckets(self, trade_factory):
        stats = TradeStatistics()
        stats.record(trade_factory(5.0))
        stats.record(trade_factory(-5.0, trade_id=2, direction=Direction.SHORT))
        summary = stats.direction_summary()
        assert summary['long']['win_rate'] == 100.0
        assert summary['short']['trades'] == 1
        assert summary['short']['wins'] == 0

    def test_hour_ranking(self, trade_factory):
        stats = TradeStatistics()
        base = datetime(2024, 1, 1)
        outcomes = {
            9: [5.0, 5.0],
            10: [5.0, -5.0],
            11: [-5.0],
            12: [5.0],
        }
        trade_id = 1
        for hour, pnls in outcomes.items():
            for pnl in pnls:
                stats.record(trade_factory(pnl, trade_id=trade_id, entry_time=base + timedelta(hours=hour)))
                trade_id += 1

        assert [h['hour'] for h in stats.best_hours()] == [9, 12, 10, 11]
        assert [h['hour'] for h in stats.worst_hours()] == [11, 10, 12]

    def test_aware_times_bucket_by_utc_hour(self, trade_factory):
        stats = TradeStatistics()
        local = datetime(2024, 1, 1, 12, tzinfo=timezone(timedelta(hours=3)))
        stats.record(trade_factory(5.0, entry_time=local))
        assert list(stats.by_hour) == [9]

    def test_counters_restore(self, trade_factory):
        stats = TradeStatistics()
        stats.record(trade_factory(5.0))
        stats.record(trade_factory(-2.0, trade_id=2, direction=Direction.SHORT))

        restored = TradeStatistics()
        restored.restore(stats.counters())
        assert restored.summary()['total_pnl'] == stats.summary()['total_pnl']
        assert restored.direction_summary() == stats.direction_summary()
        assert restored.hourly_performance() == stats.hourly_performance()
