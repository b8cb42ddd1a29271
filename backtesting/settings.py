"""
backtesting/settings.py - Simulation settings

One settings object drives sizing, costs, entry filters and exit rules for
both execution modes. ``SimulationSettings.batch()`` mirrors the historical
backtester defaults, ``SimulationSettings.live()`` the paper-trading ones.
All defaults come from ``config.SimConfig``.
"""

from dataclasses import dataclass, asdict, replace
from datetime import timedelta
from typing import Any, Dict, Optional

from config import SimConfig
from core.exceptions import ConfigurationError


BREAKEVEN_BASES = ("net_pnl", "return_percent", "pnl_percent")
HOLDING_UNITS = ("steps", "seconds")


@dataclass(frozen=True)
class SimulationSettings:
    """Sizing, cost and exit configuration for one simulation context."""
    initial_capital: float = SimConfig.INITIAL_CAPITAL
    risk_fraction: float = SimConfig.BATCH_POSITION_SIZE_FRACTION
    max_open_positions: int = SimConfig.BATCH_MAX_OPEN_POSITIONS
    commission_rate: float = SimConfig.COMMISSION_RATE
    slippage: float = SimConfig.SLIPPAGE
    leverage: float = SimConfig.BATCH_LEVERAGE
    min_confidence: float = SimConfig.BATCH_MIN_CONFIDENCE

    # Fallback levels (percent from entry) when a signal omits them
    stop_loss_percent: Optional[float] = SimConfig.STOP_LOSS_PERCENT
    take_profit_percent: Optional[float] = SimConfig.TAKE_PROFIT_PERCENT

    # Size limits
    max_position_fraction: float = SimConfig.MAX_POSITION_FRACTION
    min_trade_capital: float = SimConfig.MIN_TRADE_CAPITAL
    min_quantity: float = 1e-8

    # Exit rules beyond SL/TP (leveraged P&L percent); None disables a rule.
    # Historical replay only honours the stop and target levels by default.
    reversal_exits: bool = False
    reversal_confidence: float = SimConfig.REVERSAL_CONFIDENCE
    trailing_activation_pct: Optional[float] = None
    trailing_retrace_pct: float = SimConfig.TRAILING_RETRACE_PCT
    emergency_stop_pct: Optional[float] = None
    stale_after: Optional[timedelta] = None
    stale_max_move_pct: float = SimConfig.STALE_MAX_MOVE_PCT

    # Trade classification
    breakeven_band: float = SimConfig.BATCH_BREAKEVEN_BAND
    breakeven_basis: str = "net_pnl"
    holding_period_unit: str = "steps"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if self.initial_capital <= 0:
            raise ConfigurationError("initial_capital must be positive", "initial_capital")
        if not 0 < self.risk_fraction <= 1:
            raise ConfigurationError("risk_fraction must be in (0, 1]", "risk_fraction")
        if self.max_open_positions < 1:
            raise ConfigurationError("max_open_positions must be >= 1", "max_open_positions")
        if not 1 <= self.leverage <= SimConfig.MAX_LEVERAGE:
            raise ConfigurationError(
                f"leverage must be in [1, {SimConfig.MAX_LEVERAGE:g}]", "leverage"
            )
        if self.commission_rate < 0 or self.slippage < 0:
            raise ConfigurationError("costs must be non-negative", "commission_rate")
        if not 0 < self.max_position_fraction <= 1:
            raise ConfigurationError("max_position_fraction must be in (0, 1]", "max_position_fraction")
        if self.breakeven_band < 0:
            raise ConfigurationError("breakeven_band must be non-negative", "breakeven_band")
        if self.breakeven_basis not in BREAKEVEN_BASES:
            raise ConfigurationError(f"breakeven_basis must be one of {BREAKEVEN_BASES}", "breakeven_basis")
        if self.holding_period_unit not in HOLDING_UNITS:
            raise ConfigurationError(f"holding_period_unit must be one of {HOLDING_UNITS}", "holding_period_unit")

    @classmethod
    def batch(cls, **overrides) -> "SimulationSettings":
        """Historical replay defaults."""
        return cls(**overrides)

    @classmethod
    def live(cls, **overrides) -> "SimulationSettings":
        """Paper-trading defaults: risk-per-trade sizing, leverage, reversal exits."""
        defaults = dict(
            risk_fraction=SimConfig.LIVE_RISK_PER_TRADE,
            max_open_positions=SimConfig.LIVE_MAX_OPEN_POSITIONS,
            leverage=SimConfig.LIVE_LEVERAGE,
            min_confidence=SimConfig.LIVE_MIN_CONFIDENCE,
            stop_loss_percent=None,
            take_profit_percent=None,
            reversal_exits=True,
            trailing_activation_pct=SimConfig.TRAILING_ACTIVATION_PCT,
            emergency_stop_pct=SimConfig.EMERGENCY_STOP_PCT,
            stale_after=timedelta(hours=SimConfig.STALE_AFTER_HOURS),
            breakeven_band=SimConfig.LIVE_BREAKEVEN_BAND_PCT,
            breakeven_basis="pnl_percent",
            holding_period_unit="seconds",
        )
        defaults.update(overrides)
        return cls(**defaults)

    def with_overrides(self, **overrides) -> "SimulationSettings":
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['stale_after'] = self.stale_after.total_seconds() if self.stale_after else None
        return data
