# tests/conftest.py - Pytest configuration and fixtures

from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import numpy as np
import pytest

from core.contracts import Candle, ClosedTrade, Direction, ExitReason, Signal, SignalAction

START = datetime(2024, 1, 1)


def make_candles(
    closes: Sequence[float],
    start: datetime = START,
    step: timedelta = timedelta(hours=1),
    wick: float = 0.001,
) -> List[Candle]:
    """Bars opening at the previous close with symmetric wicks."""
    candles = []
    prev = float(closes[0])
    for i, close in enumerate(closes):
        close = float(close)
        open_ = prev
        candles.append(Candle(
            open_time=start + i * step,
            open=open_,
            high=max(open_, close) * (1 + wick),
            low=min(open_, close) * (1 - wick),
            close=close,
            volume=1_000.0,
        ))
        prev = close
    return candles


def make_trade(
    net_pnl: float,
    trade_id: int = 1,
    direction: Direction = Direction.LONG,
    entry_time: datetime = START,
    entry_price: float = 100.0,
    exit_price: Optional[float] = None,
    leverage: float = 1.0,
    capital_at_risk: float = 100.0,
) -> ClosedTrade:
    """ClosedTrade with consistent prices for a given net P&L (no commission)."""
    if exit_price is None:
        exit_price = entry_price + direction.sign * net_pnl
    return ClosedTrade(
        id=trade_id,
        instrument="BTCUSDT",
        direction=direction,
        entry_time=entry_time,
        entry_price=entry_price,
        capital_at_risk=capital_at_risk,
        quantity=1.0,
        stop_loss=entry_price * 0.98,
        take_profit=entry_price * 1.04,
        peak_unrealized_pnl_percent=0.0,
        exit_time=entry_time + timedelta(hours=2),
        exit_price=exit_price,
        exit_reason=ExitReason.TAKE_PROFIT if net_pnl > 0 else ExitReason.STOP_LOSS,
        gross_pnl=net_pnl,
        net_pnl=net_pnl,
        commission=0.0,
        return_percent=net_pnl / capital_at_risk * 100,
        holding_period=2,
        leverage=leverage,
    )


@pytest.fixture
def candle_factory():
    return make_candles


@pytest.fixture
def trade_factory():
    return make_trade


@pytest.fixture
def uptrend_candles() -> List[Candle]:
    """200 hourly bars rising 0.5% per bar; every low sits just under the open."""
    closes = 100.0 * np.power(1.005, np.arange(200))
    return make_candles(closes)


@pytest.fixture
def choppy_candles() -> List[Candle]:
    """600 hourly bars of seeded random walk."""
    rng = np.random.default_rng(42)
    closes = 100.0 * np.exp(np.cumsum(rng.normal(0, 0.01, 600)))
    return make_candles(closes, wick=0.004)


def constant_long(lookback: Sequence[Candle]) -> Signal:
    close = lookback[-1].close
    return Signal(
        action=SignalAction.LONG,
        confidence=0.8,
        entry_price=close,
        stop_loss=close * 0.98,
        take_profit_levels=(close * 1.04,),
    )


@pytest.fixture
def long_signal_source():
    """Constant LONG/0.8 with stop 2% below and target 4% above the close."""
    return constant_long


@pytest.fixture
def alternating_signal_source():
    """LONG on even bar hours, SHORT on odd ones, all at 0.7 confidence."""
    def _source(lookback: Sequence[Candle]) -> Signal:
        candle = lookback[-1]
        action = SignalAction.LONG if candle.open_time.hour % 2 == 0 else SignalAction.SHORT
        return Signal(action=action, confidence=0.7)
    return _source
