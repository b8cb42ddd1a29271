"""
config.py - Trade Simulation Engine Configuration

Central configuration hub for simulation parameters including:
- Capital and position sizing (batch and live presets)
- Transaction costs
- Exit rules (trailing, emergency, staleness)
- Walk-forward and Monte Carlo defaults
- Result persistence and logging paths

Environment variables can override defaults:
- SIM_INITIAL_BALANCE, SIM_RISK_PER_TRADE, SIM_MAX_POSITIONS
- SIM_LEVERAGE, SIM_MIN_CONFIDENCE
- SIM_RESULTS_DIR
"""

import os
import logging
from pathlib import Path

from dotenv import load_dotenv

# Load .env file automatically (allows overriding any setting without shell exports)
load_dotenv(Path(__file__).parent / ".env", override=False)

_config_logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        _config_logger.warning("Invalid float for %s=%r, using default %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        _config_logger.warning("Invalid int for %s=%r, using default %s", name, raw, default)
        return default


class SimConfig:
    """
    Central configuration for the trade simulation engine.

    All settings can be overridden via environment variables prefixed with SIM_.
    Example: SIM_LEVERAGE=5 runs live paper trading at 5x.
    """

    # ═══════════════════════════════════════════════════════════════
    # CAPITAL
    # ═══════════════════════════════════════════════════════════════
    INITIAL_CAPITAL: float = _env_float("SIM_INITIAL_BALANCE", 10_000.0)

    # ═══════════════════════════════════════════════════════════════
    # BATCH (HISTORICAL) SIZING
    # ═══════════════════════════════════════════════════════════════
    BATCH_POSITION_SIZE_FRACTION: float = _env_float("SIM_BATCH_POSITION_SIZE", 0.10)
    BATCH_MAX_OPEN_POSITIONS: int = _env_int("SIM_BATCH_MAX_POSITIONS", 3)
    BATCH_LEVERAGE: float = _env_float("SIM_BATCH_LEVERAGE", 1.0)
    BATCH_MIN_CONFIDENCE: float = _env_float("SIM_BATCH_MIN_CONFIDENCE", 0.0)
    STOP_LOSS_PERCENT: float = _env_float("SIM_STOP_LOSS_PERCENT", 2.0)
    TAKE_PROFIT_PERCENT: float = _env_float("SIM_TAKE_PROFIT_PERCENT", 4.0)
    START_INDEX: int = _env_int("SIM_START_INDEX", 100)      # Warm-up candles for indicators
    MIN_SIMULATED_STEPS: int = _env_int("SIM_MIN_STEPS", 50)
    LOOKBACK_WINDOW: int = _env_int("SIM_LOOKBACK_WINDOW", 200)

    # ═══════════════════════════════════════════════════════════════
    # LIVE (PAPER) SIZING
    # ═══════════════════════════════════════════════════════════════
    LIVE_RISK_PER_TRADE: float = _env_float("SIM_RISK_PER_TRADE", 3.0) / 100
    LIVE_MAX_OPEN_POSITIONS: int = _env_int("SIM_MAX_POSITIONS", 20)
    LIVE_LEVERAGE: float = _env_float("SIM_LEVERAGE", 10.0)
    LIVE_MIN_CONFIDENCE: float = _env_float("SIM_MIN_CONFIDENCE", 55.0) / 100

    # Hard cap on notional per trade (fraction of equity, before leverage)
    MAX_POSITION_FRACTION: float = _env_float("SIM_MAX_POSITION_FRACTION", 0.30)
    MIN_TRADE_CAPITAL: float = _env_float("SIM_MIN_TRADE_CAPITAL", 10.0)
    MAX_LEVERAGE: float = 10.0

    # ═══════════════════════════════════════════════════════════════
    # TRANSACTION COSTS
    # ═══════════════════════════════════════════════════════════════
    COMMISSION_RATE: float = _env_float("SIM_COMMISSION_RATE", 0.001)   # 0.1% per side
    SLIPPAGE: float = _env_float("SIM_SLIPPAGE", 0.0005)                # 0.05%

    # ═══════════════════════════════════════════════════════════════
    # EXIT RULES (percentages are leveraged P&L percent)
    # ═══════════════════════════════════════════════════════════════
    REVERSAL_CONFIDENCE: float = _env_float("SIM_REVERSAL_CONFIDENCE", 0.60)
    TRAILING_ACTIVATION_PCT: float = _env_float("SIM_TRAILING_ACTIVATION_PCT", 5.0)
    TRAILING_RETRACE_PCT: float = _env_float("SIM_TRAILING_RETRACE_PCT", 3.0)
    EMERGENCY_STOP_PCT: float = _env_float("SIM_EMERGENCY_STOP_PCT", -10.0)
    STALE_AFTER_HOURS: float = _env_float("SIM_STALE_AFTER_HOURS", 8.0)
    STALE_MAX_MOVE_PCT: float = _env_float("SIM_STALE_MAX_MOVE_PCT", 1.0)

    # Breakeven classification (see DESIGN.md: batch exact zero, live +/-0.5% band)
    BATCH_BREAKEVEN_BAND: float = 0.0
    LIVE_BREAKEVEN_BAND_PCT: float = _env_float("SIM_BREAKEVEN_BAND_PCT", 0.5)

    # ═══════════════════════════════════════════════════════════════
    # METRICS
    # ═══════════════════════════════════════════════════════════════
    RETURN_SAMPLE_EVERY: int = _env_int("SIM_RETURN_SAMPLE_EVERY", 24)  # hourly bars -> daily
    PERIODS_PER_YEAR: int = _env_int("SIM_PERIODS_PER_YEAR", 365)        # crypto trades every day
    SAMPLED_TRADES: int = 100
    EQUITY_SAMPLE_EVERY: int = 10
    RECENT_TRADES: int = 20

    # ═══════════════════════════════════════════════════════════════
    # WALK-FORWARD / MONTE CARLO
    # ═══════════════════════════════════════════════════════════════
    WF_TRAIN_PERIOD: int = _env_int("SIM_WF_TRAIN_PERIOD", 500)
    WF_TEST_PERIOD: int = _env_int("SIM_WF_TEST_PERIOD", 100)
    WF_STEP: int = _env_int("SIM_WF_STEP", 50)
    MC_SIMULATIONS: int = _env_int("SIM_MC_SIMULATIONS", 1000)
    MC_DRAWDOWN_THRESHOLD_PCT: float = _env_float("SIM_MC_DRAWDOWN_THRESHOLD_PCT", 20.0)
    MAX_WORKERS: int = _env_int("SIM_MAX_WORKERS", 1)

    # ═══════════════════════════════════════════════════════════════
    # PERSISTENCE & LOGGING
    # ═══════════════════════════════════════════════════════════════
    RESULTS_DIR: Path = Path(os.getenv("SIM_RESULTS_DIR", "data/backtests"))
    LIVE_STATE_FILE: Path = Path(os.getenv("SIM_LIVE_STATE_FILE", "data/simulation_state.json"))
    HISTORY_LIMIT: int = 20
    LOG_DIR: Path = Path(os.getenv("SIM_LOG_DIR", "logs"))
    LOG_LEVEL: str = os.getenv("SIM_LOG_LEVEL", "DEBUG")
