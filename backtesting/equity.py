"""
backtesting/equity.py - Equity curve and drawdown tracking

EquityTracker keeps the running capital accumulator (full precision) and
the step-indexed equity curve. Drawdown statistics are computed in a single
pass over the curve.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from core.contracts import EquityPoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrawdownStats:
    """Peak-to-trough statistics of one equity curve."""
    peak_equity: float
    max_drawdown: float            # fraction of peak, >= 0
    max_drawdown_value: float      # currency
    max_drawdown_duration: int     # longest run of steps without a new peak
    current_drawdown: float

    def to_dict(self) -> Dict[str, float]:
        return {
            'peak_equity': self.peak_equity,
            'max_drawdown': self.max_drawdown,
            'max_drawdown_percent': self.max_drawdown * 100,
            'max_drawdown_value': self.max_drawdown_value,
            'max_drawdown_duration': self.max_drawdown_duration,
            'current_drawdown': self.current_drawdown,
        }


def compute_drawdown_stats(values: Sequence[float]) -> DrawdownStats:
    """
    Single pass: running peak, deepest drawdown and the longest stretch of
    steps spent below a previous peak.
    """
    if len(values) == 0:
        return DrawdownStats(0.0, 0.0, 0.0, 0, 0.0)

    peak = float(values[0])
    max_dd = 0.0
    max_dd_value = 0.0
    run = 0
    longest = 0
    dd = 0.0

    for value in values:
        value = float(value)
        if value >= peak:
            peak = value
            run = 0
        else:
            run += 1
            longest = max(longest, run)
        dd = (peak - value) / peak if peak > 0 else 0.0
        if dd > max_dd:
            max_dd = dd
            max_dd_value = peak - value

    return DrawdownStats(
        peak_equity=peak,
        max_drawdown=max_dd,
        max_drawdown_value=max_dd_value,
        max_drawdown_duration=longest,
        current_drawdown=dd,
    )


def drawdown_series(values: Sequence[float]) -> np.ndarray:
    """Vectorized drawdown fraction at every point (0 at new peaks)."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return arr
    peaks = np.maximum.accumulate(arr)
    with np.errstate(divide='ignore', invalid='ignore'):
        dd = np.where(peaks > 0, (peaks - arr) / peaks, 0.0)
    return dd


class EquityTracker:
    """
    Running capital plus the step-indexed equity curve.

    ``capital`` only moves on realized closes. Equity points add the open
    positions' unrealized P&L supplied by the caller.
    """

    def __init__(self, initial_capital: float):
        self.initial_capital = float(initial_capital)
        self.capital = float(initial_capital)
        self.peak_equity = float(initial_capital)
        self.curve: List[EquityPoint] = [EquityPoint(0, self.capital)]

    def realize(self, net_pnl: float) -> float:
        """Apply one close to the capital accumulator."""
        self.capital += net_pnl
        return self.capital

    def record(self, unrealized_pnl: float = 0.0) -> EquityPoint:
        """Append the next equity point."""
        point = EquityPoint(len(self.curve), self.capital + unrealized_pnl)
        self.curve.append(point)
        if point.equity_value > self.peak_equity:
            self.peak_equity = point.equity_value
        return point

    @property
    def current_equity(self) -> float:
        return self.curve[-1].equity_value

    @property
    def processed_steps(self) -> int:
        return len(self.curve) - 1

    def values(self) -> List[float]:
        return [p.equity_value for p in self.curve]

    def drawdown_stats(self) -> DrawdownStats:
        return compute_drawdown_stats(self.values())

    @classmethod
    def resume(cls, initial_capital: float, capital: float, peak_equity: float = 0.0) -> "EquityTracker":
        """Tracker continuing from saved live state."""
        tracker = cls(initial_capital)
        tracker.capital = float(capital)
        tracker.curve = [EquityPoint(0, tracker.capital)]
        tracker.peak_equity = max(float(peak_equity), tracker.capital)
        return tracker
