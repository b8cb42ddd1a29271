"""
Advanced Risk Metrics

Risk-adjusted performance of one simulation run, computed from its closed
trades and its equity curve:
- Periodic returns (equity resampled every N steps)
- Sharpe / Sortino / Calmar ratios
- Recovery factor
- Risk of ruin (simplified binary-outcome heuristic)
- Win/loss streaks recomputed from the trade list
- Probabilistic Sharpe ratio
- Tail risk (VaR / CVaR) of periodic returns

Every ratio resolves to 0 when its denominator is zero, never NaN.
"""
import math
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats

from config import SimConfig
from core.contracts import ClosedTrade
from backtesting.equity import compute_drawdown_stats


def _finite(value: float) -> float:
    value = float(value)
    return value if math.isfinite(value) else 0.0


class AdvancedRiskMetrics:
    """Risk and performance metrics calculator."""

    @staticmethod
    def periodic_returns(
        equity_values: Sequence[float],
        sample_every: int = SimConfig.RETURN_SAMPLE_EVERY
    ) -> np.ndarray:
        """
        Resample the equity curve at a fixed cadence and return simple returns.

        Args:
            equity_values: Equity value per step (seed value first)
            sample_every: Steps per period (24 hourly bars approximate a day)

        Returns:
            Array of period-over-period returns
        """
        values = np.asarray(equity_values, dtype=float)
        if values.size < 2 or sample_every < 1:
            return np.array([])
        sampled = values[::sample_every]
        if sampled.size < 2:
            return np.array([])
        prev = sampled[:-1]
        with np.errstate(divide='ignore', invalid='ignore'):
            returns = np.where(prev > 0, (sampled[1:] - prev) / prev, 0.0)
        return returns

    @staticmethod
    def calculate_sharpe_ratio(
        returns: Union[pd.Series, np.ndarray],
        periods_per_year: int = SimConfig.PERIODS_PER_YEAR
    ) -> float:
        """
        Calculate annualised Sharpe ratio (risk-free rate 0).

        Uses the population standard deviation. Returns 0 when the
        deviation is 0 or there are no returns.
        """
        returns_array = np.asarray(returns, dtype=float)
        if returns_array.size == 0:
            return 0.0
        std = returns_array.std()
        if std == 0:
            return 0.0
        return _finite(returns_array.mean() / std * np.sqrt(periods_per_year))

    @staticmethod
    def calculate_sortino_ratio(
        returns: Union[pd.Series, np.ndarray],
        periods_per_year: int = SimConfig.PERIODS_PER_YEAR
    ) -> float:
        """
        Calculate Sortino Ratio.

        Mean return over the population standard deviation of the negative
        returns only.

        Args:
            returns: Return series
            periods_per_year: Number of periods per year

        Returns:
            Sortino ratio, 0 when there are no negative periods
        """
        returns_array = np.asarray(returns, dtype=float)
        downside_returns = returns_array[returns_array < 0]

        if len(downside_returns) == 0:
            return 0.0

        downside_deviation = downside_returns.std()
        if downside_deviation == 0:
            return 0.0

        return _finite(returns_array.mean() / downside_deviation * np.sqrt(periods_per_year))

    @staticmethod
    def calculate_calmar_ratio(total_return: float, max_drawdown: float) -> float:
        """Total return over max drawdown (both fractions); 0 without drawdown."""
        if max_drawdown <= 0:
            return 0.0
        return _finite(total_return / max_drawdown)

    @staticmethod
    def calculate_recovery_factor(
        total_profit: float,
        max_drawdown: float,
        initial_capital: float
    ) -> float:
        """Net profit over the drawdown expressed in currency of initial capital."""
        denom = max_drawdown * initial_capital
        if denom <= 0:
            return 0.0
        return _finite(total_profit / denom)

    @staticmethod
    def calculate_risk_of_ruin(net_pnls: Sequence[float]) -> float:
        """
        Simplified risk of ruin, in percent.

        ((1 - p) / p) ** (avg_win / |avg_loss|) clipped to [0, 100]. This is a
        binary-outcome heuristic, not a rigorous ruin probability.

        Args:
            net_pnls: Net P&L per closed trade

        Returns:
            0 with no trades or no losses, 100 with no wins
        """
        if len(net_pnls) == 0:
            return 0.0
        wins = [p for p in net_pnls if p > 0]
        losses = [p for p in net_pnls if p < 0]
        if not losses:
            return 0.0
        if not wins:
            return 100.0

        win_rate = len(wins) / len(net_pnls)
        avg_win = sum(wins) / len(wins)
        avg_loss = abs(sum(losses) / len(losses))
        base = (1 - win_rate) / win_rate
        if base >= 1:
            return 100.0
        ruin = base ** (avg_win / avg_loss) * 100
        return float(min(max(ruin, 0.0), 100.0))

    @staticmethod
    def calculate_streaks(net_pnls: Sequence[float]) -> Tuple[int, int]:
        """
        Longest winning and losing runs over the trade list.

        Zero-P&L trades neither extend nor break a run.
        """
        current = 0
        max_win = 0
        max_loss = 0
        for pnl in net_pnls:
            if pnl > 0:
                current = current + 1 if current >= 0 else 1
                max_win = max(max_win, current)
            elif pnl < 0:
                current = current - 1 if current <= 0 else -1
                max_loss = max(max_loss, -current)
        return max_win, max_loss

    @staticmethod
    def calculate_volatility(
        returns: Union[pd.Series, np.ndarray],
        periods_per_year: int = SimConfig.PERIODS_PER_YEAR
    ) -> float:
        """Annualised population volatility of periodic returns."""
        returns_array = np.asarray(returns, dtype=float)
        if returns_array.size == 0:
            return 0.0
        return _finite(returns_array.std() * np.sqrt(periods_per_year))

    @staticmethod
    def calculate_probabilistic_sharpe(
        returns: Union[pd.Series, np.ndarray],
        sharpe_ratio: float,
        periods_per_year: int = SimConfig.PERIODS_PER_YEAR
    ) -> float:
        """
        Probability that the true Sharpe ratio exceeds zero.

        Adjusts the standard error of the per-period Sharpe for skewness and
        kurtosis, then evaluates the normal CDF. Needs at least 10 periods.
        """
        returns_array = np.asarray(returns, dtype=float)
        n_obs = returns_array.size
        if n_obs < 10 or sharpe_ratio <= 0 or returns_array.std() == 0:
            return 0.0

        skew = _finite(stats.skew(returns_array))
        kurt = _finite(stats.kurtosis(returns_array)) + 3
        sr_per = sharpe_ratio / np.sqrt(periods_per_year)
        se_denom = 1 - skew * sr_per + ((kurt - 1) / 4) * sr_per ** 2
        se_sr = np.sqrt(max(se_denom, 1e-10) / (n_obs - 1))
        return _finite(stats.norm.cdf(sr_per / se_sr)) if se_sr > 0 else 0.0

    @staticmethod
    def calculate_var(
        returns: Union[pd.Series, np.ndarray],
        confidence_level: float = 0.95
    ) -> float:
        """
        Calculate Value at Risk (VaR) of periodic returns.

        Args:
            returns: Return series
            confidence_level: Confidence level

        Returns:
            VaR value (negative number), 0 with no returns
        """
        returns_array = np.asarray(returns, dtype=float)
        if returns_array.size == 0:
            return 0.0
        return float(np.percentile(returns_array, (1 - confidence_level) * 100))

    @staticmethod
    def calculate_cvar(
        returns: Union[pd.Series, np.ndarray],
        confidence_level: float = 0.95
    ) -> float:
        """
        Calculate Conditional Value at Risk (CVaR).

        CVaR is the expected loss given that the loss exceeds VaR.
        Also known as Expected Shortfall (ES).
        """
        returns_array = np.asarray(returns, dtype=float)
        if returns_array.size == 0:
            return 0.0
        var_threshold = np.percentile(returns_array, (1 - confidence_level) * 100)
        tail = returns_array[returns_array <= var_threshold]
        return float(tail.mean()) if tail.size else 0.0


def calculate_all_metrics(
    trades: Sequence[ClosedTrade],
    equity_values: Sequence[float],
    initial_capital: float,
    sample_every: int = SimConfig.RETURN_SAMPLE_EVERY,
    periods_per_year: int = SimConfig.PERIODS_PER_YEAR
) -> Dict[str, float]:
    """
    Calculate every run-level risk metric at once.

    Args:
        trades: Closed trades in close order
        equity_values: Equity value per step (seed value first)
        initial_capital: Starting capital
        sample_every: Steps per periodic-return sample
        periods_per_year: Annualisation factor

    Returns:
        Dictionary of rounded metrics; all zero for an empty run
    """
    metrics = AdvancedRiskMetrics()
    returns = metrics.periodic_returns(equity_values, sample_every)
    net_pnls: List[float] = [t.net_pnl for t in trades]

    drawdown = compute_drawdown_stats(equity_values)
    final_equity = float(equity_values[-1]) if len(equity_values) else initial_capital
    total_profit = final_equity - initial_capital
    total_return = total_profit / initial_capital if initial_capital > 0 else 0.0

    sharpe = metrics.calculate_sharpe_ratio(returns, periods_per_year)
    max_win_streak, max_loss_streak = metrics.calculate_streaks(net_pnls)
    avg_return = float(returns.mean()) if returns.size else 0.0

    return {
        'sharpe_ratio': round(sharpe, 2),
        'sortino_ratio': round(metrics.calculate_sortino_ratio(returns, periods_per_year), 2),
        'calmar_ratio': round(metrics.calculate_calmar_ratio(total_return, drawdown.max_drawdown), 2),
        'max_drawdown': round(drawdown.max_drawdown * 100, 2),
        'max_drawdown_duration': drawdown.max_drawdown_duration,
        'recovery_factor': round(
            metrics.calculate_recovery_factor(total_profit, drawdown.max_drawdown, initial_capital), 2
        ),
        'risk_of_ruin': round(metrics.calculate_risk_of_ruin(net_pnls), 2),
        'max_win_streak': max_win_streak,
        'max_loss_streak': max_loss_streak,
        'volatility': round(metrics.calculate_volatility(returns, periods_per_year) * 100, 2),
        'average_period_return': round(avg_return * 100, 4),
        'probabilistic_sharpe': round(metrics.calculate_probabilistic_sharpe(returns, sharpe, periods_per_year), 4),
        'var_95': round(metrics.calculate_var(returns, 0.95) * 100, 4),
        'cvar_95': round(metrics.calculate_cvar(returns, 0.95) * 100, 4),
    }
