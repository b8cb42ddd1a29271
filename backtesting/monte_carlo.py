"""
backtesting/monte_carlo.py

Monte Carlo resampling of a realized trade list.

Each resample permutes the order of the net P&L values (the outcome multiset
never changes), replays the equity path and records final capital and max
drawdown. Final capital is therefore identical across resamples; only the
drawdown distribution reflects sequencing risk.

Every resample draws from its own generator spawned from one SeedSequence,
so results are reproducible and independent of the worker count.
"""

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from config import SimConfig
from core.contracts import ClosedTrade
from backtesting.equity import drawdown_series

logger = logging.getLogger(__name__)

PERCENTILES = (5, 25, 50, 75, 95)


@dataclass
class MonteCarloConfig:
    simulations: int = SimConfig.MC_SIMULATIONS
    drawdown_threshold_pct: float = SimConfig.MC_DRAWDOWN_THRESHOLD_PCT
    seed: Optional[int] = None
    max_workers: int = SimConfig.MAX_WORKERS


@dataclass
class MonteCarloResult:
    simulations: int
    completed: int
    trades: int
    returns: Dict[str, float] = field(default_factory=dict)
    drawdowns: Dict[str, float] = field(default_factory=dict)
    probability_of_profit: float = 0.0
    probability_of_drawdown_over_threshold: float = 0.0
    drawdown_threshold_pct: float = SimConfig.MC_DRAWDOWN_THRESHOLD_PCT
    final_capital: float = 0.0
    cancelled: bool = False

    # Per-resample outcomes, in resample order (not serialized)
    final_capitals: List[float] = field(default_factory=list)
    max_drawdowns: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'simulations': self.simulations,
            'completed': self.completed,
            'trades': self.trades,
            'returns': self.returns,
            'drawdowns': self.drawdowns,
            'probability_of_profit': self.probability_of_profit,
            'probability_of_drawdown_over_threshold': self.probability_of_drawdown_over_threshold,
            'drawdown_threshold_pct': self.drawdown_threshold_pct,
            'final_capital': self.final_capital,
            'cancelled': self.cancelled,
        }


def _distribution(values: np.ndarray) -> Dict[str, float]:
    if values.size == 0:
        return {'p5': 0.0, 'p25': 0.0, 'median': 0.0, 'p75': 0.0, 'p95': 0.0, 'min': 0.0, 'max': 0.0}
    p5, p25, p50, p75, p95 = np.percentile(values, PERCENTILES)
    return {
        'p5': round(float(p5), 2),
        'p25': round(float(p25), 2),
        'median': round(float(p50), 2),
        'p75': round(float(p75), 2),
        'p95': round(float(p95), 2),
        'min': round(float(values.min()), 2),
        'max': round(float(values.max()), 2),
    }


def replay_path(net_pnls: np.ndarray, initial_capital: float) -> Tuple[float, float]:
    """Final capital and max drawdown (fraction) of one trade ordering."""
    path = initial_capital + np.cumsum(net_pnls)
    path = np.concatenate(([initial_capital], path))
    final = initial_capital + math.fsum(net_pnls)
    return final, float(drawdown_series(path).max())


class MonteCarloResampler:
    """Trade-order permutation Monte Carlo."""

    def __init__(self, config: Optional[MonteCarloConfig] = None):
        self.config = config or MonteCarloConfig()

    def run(
        self,
        trades: Sequence[Union[ClosedTrade, float]],
        initial_capital: float = SimConfig.INITIAL_CAPITAL,
        cancel_event: Optional[threading.Event] = None,
    ) -> MonteCarloResult:
        """
        Resample ``trades`` (ClosedTrade objects or raw net P&L values).

        A cancelled run aggregates the resamples that finished. An empty
        trade list returns a zero-valued result.
        """
        cfg = self.config
        if initial_capital <= 0:
            raise ValueError("initial_capital must be positive")
        pnls = np.array(
            [t.net_pnl if isinstance(t, ClosedTrade) else float(t) for t in trades],
            dtype=float,
        )
        if pnls.size == 0 or cfg.simulations <= 0:
            logger.info("event=monte_carlo trades=0 simulations=%d degenerate=true", cfg.simulations)
            return MonteCarloResult(
                simulations=cfg.simulations,
                completed=0,
                trades=0,
                returns=_distribution(np.array([])),
                drawdowns=_distribution(np.array([])),
                drawdown_threshold_pct=cfg.drawdown_threshold_pct,
                final_capital=initial_capital,
            )

        cancel_event = cancel_event or threading.Event()
        children = np.random.SeedSequence(cfg.seed).spawn(cfg.simulations)
        outcomes: List[Optional[Tuple[float, float]]] = [None] * cfg.simulations

        def _run_chunk(indices: range) -> None:
            for i in indices:
                if cancel_event.is_set():
                    return
                rng = np.random.default_rng(children[i])
                outcomes[i] = replay_path(pnls[rng.permutation(pnls.size)], initial_capital)

        workers = max(1, cfg.max_workers)
        if workers > 1:
            chunk = math.ceil(cfg.simulations / workers)
            chunks = [range(s, min(s + chunk, cfg.simulations)) for s in range(0, cfg.simulations, chunk)]
            with ThreadPoolExecutor(max_workers=workers) as pool:
                list(pool.map(_run_chunk, chunks))
        else:
            _run_chunk(range(cfg.simulations))

        done = [o for o in outcomes if o is not None]
        finals = np.array([o[0] for o in done], dtype=float)
        drawdowns_pct = np.array([o[1] for o in done], dtype=float) * 100
        returns_pct = (finals - initial_capital) / initial_capital * 100

        completed = len(done)
        result = MonteCarloResult(
            simulations=cfg.simulations,
            completed=completed,
            trades=int(pnls.size),
            returns=_distribution(returns_pct),
            drawdowns=_distribution(drawdowns_pct),
            probability_of_profit=round(float((returns_pct > 0).sum()) / completed * 100, 2) if completed else 0.0,
            probability_of_drawdown_over_threshold=(
                round(float((drawdowns_pct > cfg.drawdown_threshold_pct).sum()) / completed * 100, 2)
                if completed else 0.0
            ),
            drawdown_threshold_pct=cfg.drawdown_threshold_pct,
            final_capital=float(finals[0]) if completed else initial_capital,
            cancelled=completed < cfg.simulations,
            final_capitals=finals.tolist(),
            max_drawdowns=drawdowns_pct.tolist(),
        )
        logger.info(
            "event=monte_carlo trades=%d simulations=%d completed=%d p_profit=%.2f median_dd=%.2f",
            result.trades, cfg.simulations, completed,
            result.probability_of_profit, result.drawdowns['median'],
        )
        return result


def run_monte_carlo(
    trades: Sequence[Union[ClosedTrade, float]],
    initial_capital: float = SimConfig.INITIAL_CAPITAL,
    simulations: int = SimConfig.MC_SIMULATIONS,
    seed: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> MonteCarloResult:
    """Functional entry point around MonteCarloResampler."""
    config = MonteCarloConfig(simulations=simulations, seed=seed)
    return MonteCarloResampler(config).run(trades, initial_capital, cancel_event)
