"""
backtesting/walkforward.py

Walk-forward evaluation over rolling out-of-sample windows.

Each window replays ``candles[train_start:test_end]`` through a fresh
BacktestEngine run with ``start_index = train_period``: the train slice only
warms up the signal source, nothing carries over between windows. Windows
are independent and may run on a thread pool; a cancel event is checked
before each window starts.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from config import SimConfig
from core.contracts import Candle, RunResult, SignalSourceLike, validate_candles
from backtesting.backtest_engine import BacktestEngine
from backtesting.settings import SimulationSettings

logger = logging.getLogger(__name__)


@dataclass
class WalkForwardConfig:
    train_period: int = SimConfig.WF_TRAIN_PERIOD
    test_period: int = SimConfig.WF_TEST_PERIOD
    step: int = SimConfig.WF_STEP
    min_steps: int = SimConfig.MIN_SIMULATED_STEPS  # per-window floor, as in a single run
    max_workers: int = SimConfig.MAX_WORKERS


@dataclass(frozen=True)
class WalkForwardWindow:
    index: int
    train_start: int
    train_end: int
    test_start: int
    test_end: int

    def to_dict(self) -> Dict[str, int]:
        return {
            'train_start': self.train_start,
            'train_end': self.train_end,
            'test_start': self.test_start,
            'test_end': self.test_end,
        }


@dataclass
class WalkForwardResult:
    windows: List[WalkForwardWindow]
    results: List[Dict[str, Any]] = field(default_factory=list)  # completed windows only
    aggregated: Optional[Dict[str, float]] = None
    skipped: int = 0
    cancelled: bool = False

    @property
    def periods(self) -> int:
        return len(self.results)

    def to_frame(self) -> pd.DataFrame:
        """One row per completed window."""
        rows = [dict(r['period'], **r['summary']) for r in self.results]
        return pd.DataFrame(rows)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'periods': self.periods,
            'results': self.results,
            'aggregated': self.aggregated,
            'skipped': self.skipped,
            'cancelled': self.cancelled,
        }


def build_windows(total: int, train_period: int, test_period: int, step: int) -> List[WalkForwardWindow]:
    """Consecutive (train, test) pairs that fit entirely inside ``total`` candles."""
    if train_period < 0 or test_period <= 0 or step <= 0:
        raise ValueError("train_period must be >= 0, test_period and step must be positive")
    windows = []
    start = 0
    while start + train_period + test_period <= total:
        train_end = start + train_period
        windows.append(WalkForwardWindow(
            index=len(windows),
            train_start=start,
            train_end=train_end,
            test_start=train_end,
            test_end=train_end + test_period,
        ))
        start += step
    return windows


def aggregate_window_summaries(summaries: Sequence[Dict[str, Any]]) -> Optional[Dict[str, float]]:
    """Cross-window averages; None when no window completed."""
    if not summaries:
        return None
    returns = np.array([s['total_return'] for s in summaries], dtype=float)
    win_rates = np.array([s['win_rate'] for s in summaries], dtype=float)
    drawdowns = np.array([s['max_drawdown'] for s in summaries], dtype=float)
    return {
        'avg_return': round(float(returns.mean()), 2),
        'min_return': round(float(returns.min()), 2),
        'max_return': round(float(returns.max()), 2),
        'avg_win_rate': round(float(win_rates.mean()), 2),
        'avg_drawdown': round(float(drawdowns.mean()), 2),
        'max_drawdown': round(float(drawdowns.max()), 2),
        'consistency': round(float((returns > 0).sum() / returns.size * 100), 2),
    }


class WalkForwardDriver:
    """Runs a strategy over rolling windows and aggregates the outcomes."""

    def __init__(
        self,
        config: Optional[WalkForwardConfig] = None,
        settings: Optional[SimulationSettings] = None,
        **engine_options,
    ):
        self.config = config or WalkForwardConfig()
        self.engine = BacktestEngine(
            settings=settings,
            start_index=self.config.train_period,
            min_steps=self.config.min_steps,
            **engine_options,
        )

    def run(
        self,
        candles: Sequence[Candle],
        signal_source: SignalSourceLike,
        instrument: str = "DEFAULT",
        cancel_event: Optional[threading.Event] = None,
    ) -> WalkForwardResult:
        """
        Evaluate every window. With ``max_workers > 1`` the signal source is
        shared across threads and must be safe to call concurrently.
        """
        validate_candles(candles)
        cfg = self.config
        windows = build_windows(len(candles), cfg.train_period, cfg.test_period, cfg.step)
        cancel_event = cancel_event or threading.Event()

        def _run_window(window: WalkForwardWindow) -> Optional[RunResult]:
            if cancel_event.is_set():
                return None
            window_candles = candles[window.train_start:window.test_end]
            return self.engine.run(
                window_candles, signal_source, instrument, strategy_name=f"wf_{window.index}"
            )

        if cfg.max_workers > 1 and len(windows) > 1:
            with ThreadPoolExecutor(max_workers=cfg.max_workers) as pool:
                outcomes = list(pool.map(_run_window, windows))
        else:
            outcomes = []
            for window in windows:
                outcomes.append(_run_window(window))

        result = WalkForwardResult(windows=windows)
        for window, outcome in zip(windows, outcomes):
            if outcome is None:
                result.cancelled = True
                continue
            if not outcome.ok:
                result.skipped += 1
                logger.debug("event=walk_forward_skip window=%d error=%s", window.index, outcome.error)
                continue
            result.results.append({'period': window.to_dict(), 'summary': outcome.summary})

        result.aggregated = aggregate_window_summaries([r['summary'] for r in result.results])
        logger.info(
            "event=walk_forward windows=%d completed=%d skipped=%d cancelled=%s consistency=%s",
            len(windows), result.periods, result.skipped, result.cancelled,
            result.aggregated['consistency'] if result.aggregated else None,
        )
        return result


def run_walk_forward(
    candles: Sequence[Candle],
    signal_source: SignalSourceLike,
    config: Optional[WalkForwardConfig] = None,
    settings: Optional[SimulationSettings] = None,
    instrument: str = "DEFAULT",
    cancel_event: Optional[threading.Event] = None,
    **engine_options,
) -> WalkForwardResult:
    """Functional entry point around WalkForwardDriver."""
    driver = WalkForwardDriver(config, settings, **engine_options)
    return driver.run(candles, signal_source, instrument, cancel_event)
