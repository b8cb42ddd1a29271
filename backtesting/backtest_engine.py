"""
backtesting/backtest_engine.py - Candle-by-candle historical simulation

Replays an ordered candle sequence through a PositionManager:
- Signal generation on a bounded lookback window (no lookahead)
- Intrabar stop-loss / take-profit fills
- Adverse slippage on entry, round-trip commission on capital at risk
- Forced close of open positions on the last candle
- Trade statistics and risk metrics
- Optional persistence through a ResultStore

The engine holds configuration only. Every run() builds a fresh
SimulationContext, so one engine can serve many runs, including concurrent
walk-forward windows.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from config import SimConfig
from core.contracts import (
    Candle,
    ClosedTrade,
    RunResult,
    SignalSourceLike,
    candles_from_frame,
    resolve_signal_source,
    validate_candles,
)
from core.exceptions import InsufficientDataError, PersistenceError
from backtesting.pnl import round_money
from backtesting.position_manager import PositionManager, SimulationContext
from backtesting.settings import SimulationSettings
from risk.advanced_metrics import calculate_all_metrics

logger = logging.getLogger(__name__)


class BacktestEngine:
    """
    Batch historical simulation over one instrument's candle series.
    """

    def __init__(
        self,
        settings: Optional[SimulationSettings] = None,
        start_index: int = SimConfig.START_INDEX,
        end_index: Optional[int] = None,
        min_steps: int = SimConfig.MIN_SIMULATED_STEPS,
        lookback_window: int = SimConfig.LOOKBACK_WINDOW,
        return_sample_every: int = SimConfig.RETURN_SAMPLE_EVERY,
        periods_per_year: int = SimConfig.PERIODS_PER_YEAR,
        sampled_trades: int = SimConfig.SAMPLED_TRADES,
        equity_sample_every: int = SimConfig.EQUITY_SAMPLE_EVERY,
        result_store=None,
    ):
        self.settings = settings or SimulationSettings.batch()
        self.start_index = max(0, start_index)
        self.end_index = end_index
        self.min_steps = min_steps
        self.lookback_window = lookback_window
        self.return_sample_every = return_sample_every
        self.periods_per_year = periods_per_year
        self.sampled_trades = sampled_trades
        self.equity_sample_every = max(1, equity_sample_every)
        self.result_store = result_store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        candles: Sequence[Candle],
        signal_source: SignalSourceLike,
        instrument: str = "DEFAULT",
        strategy_name: str = "default",
    ) -> RunResult:
        """
        Simulate ``candles[start_index:end_index]``.

        Candles before ``start_index`` only feed the signal lookback. A
        series too short to warm up and simulate returns an
        insufficient-data result instead of raising.
        """
        validate_candles(candles)
        generate = resolve_signal_source(signal_source)

        try:
            end = self._check_length(candles, instrument)
        except InsufficientDataError as e:
            logger.warning(
                "event=run_insufficient_data instrument=%s available=%d required=%d",
                instrument, e.available, e.required,
            )
            return RunResult.insufficient_data(self._settings_dict(0))

        ctx = SimulationContext.create(self.settings)
        manager = PositionManager(ctx)

        for i in range(self.start_index, end):
            candle = candles[i]
            lookback = candles[max(0, i - self.lookback_window):i + 1]
            signal = generate(lookback)
            outcome = manager.advance(instrument, candle, signal, final=(i == end - 1))
            if outcome.opened is None and outcome.entry_decision not in ("hold", "final_step"):
                logger.debug(
                    "event=entry_rejected step=%d instrument=%s reason=%s",
                    outcome.step_index, instrument, outcome.entry_decision,
                )

        result = self._build_result(ctx, instrument, strategy_name, end - self.start_index)
        logger.info(
            "event=run_completed instrument=%s strategy=%s steps=%d trades=%d "
            "return_pct=%.2f max_dd_pct=%.2f",
            instrument, strategy_name, ctx.steps_processed, len(ctx.closed_trades),
            result.summary['total_return'], result.summary['max_drawdown'],
        )

        self._persist(result, strategy_name)
        return result

    def run_frame(
        self,
        df: pd.DataFrame,
        signal_source: SignalSourceLike,
        instrument: str = "DEFAULT",
        strategy_name: str = "default",
    ) -> RunResult:
        """Convenience wrapper for an OHLCV DataFrame."""
        return self.run(candles_from_frame(df), signal_source, instrument, strategy_name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_length(self, candles: Sequence[Candle], instrument: str) -> int:
        required = self.start_index + self.min_steps
        end = len(candles) if self.end_index is None else min(self.end_index, len(candles))
        if len(candles) < required or end - self.start_index < 1:
            raise InsufficientDataError(len(candles), required, instrument)
        return end

    def _settings_dict(self, candles_processed: int) -> Dict[str, Any]:
        data = self.settings.to_dict()
        data.update({
            'start_index': self.start_index,
            'end_index': self.end_index,
            'lookback_window': self.lookback_window,
            'candles_processed': candles_processed,
        })
        return data

    def _build_result(
        self,
        ctx: SimulationContext,
        instrument: str,
        strategy_name: str,
        candles_processed: int,
    ) -> RunResult:
        initial = self.settings.initial_capital
        equity_values = ctx.equity.values()
        final_equity = equity_values[-1]
        trades = list(ctx.closed_trades)
        stats = ctx.statistics

        metrics = calculate_all_metrics(
            trades,
            equity_values,
            initial,
            sample_every=self.return_sample_every,
            periods_per_year=self.periods_per_year,
        )
        avg_trade_return = (
            sum(t.return_percent for t in trades) / len(trades) if trades else 0.0
        )
        stats_summary = stats.summary()
        long_bucket = stats_summary['long_trades']
        short_bucket = stats_summary['short_trades']
        stats_summary['long_win_rate'] = (
            round(stats_summary['long_wins'] / long_bucket * 100, 2) if long_bucket else 0.0
        )
        stats_summary['short_win_rate'] = (
            round(stats_summary['short_wins'] / short_bucket * 100, 2) if short_bucket else 0.0
        )

        summary = {
            'instrument': instrument,
            'strategy': strategy_name,
            'initial_capital': initial,
            'final_equity': round_money(final_equity),
            'total_return': round((final_equity - initial) / initial * 100, 2),
            'max_drawdown': metrics['max_drawdown'],
            'total_trades': stats.total_trades,
            'win_rate': stats_summary['win_rate'],
            'profit_factor': stats_summary['profit_factor'],
            'avg_trade_return': round(avg_trade_return, 2),
            'sharpe_ratio': metrics['sharpe_ratio'],
            'sortino_ratio': metrics['sortino_ratio'],
            'calmar_ratio': metrics['calmar_ratio'],
        }

        return RunResult(
            summary=summary,
            stats=stats_summary,
            metrics=metrics,
            sampled_trades=tuple(t.to_dict() for t in trades[-self.sampled_trades:]),
            sampled_equity=tuple(round_money(v) for v in equity_values[::self.equity_sample_every]),
            settings=self._settings_dict(candles_processed),
            trades=tuple(trades),
            equity_curve=tuple(ctx.equity.curve),
        )

    def _persist(self, result: RunResult, strategy_name: str) -> None:
        if self.result_store is None:
            return
        try:
            self.result_store.save(result, strategy_name)
        except PersistenceError as e:
            logger.warning("event=persistence_failed strategy=%s error=%s", strategy_name, e)


def trades_to_frame(trades: Sequence[ClosedTrade]) -> pd.DataFrame:
    """Closed trades as a DataFrame indexed by exit time."""
    rows: List[Dict[str, Any]] = [t.to_dict() for t in trades]
    if not rows:
        return pd.DataFrame()
    df = pd.DataFrame(rows)
    df['exit_time'] = pd.to_datetime(df['exit_time'])
    df['entry_time'] = pd.to_datetime(df['entry_time'])
    return df.set_index('exit_time').sort_index()
