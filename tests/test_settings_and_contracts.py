"""
tests/test_settings_and_contracts.py - Settings presets and data contracts
"""

from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from core.contracts import (
    Candle,
    ClosedTrade,
    Direction,
    Position,
    Signal,
    SignalAction,
    as_utc,
    candles_from_frame,
    resolve_signal_source,
    validate_signal,
)
from core.exceptions import ConfigurationError, ErrorCode, InsufficientDataError
from backtesting.settings import SimulationSettings


class TestSettings:

    def test_batch_preset(self):
        s = SimulationSettings.batch()
        assert s.leverage == 1.0
        assert s.risk_fraction == pytest.approx(0.10)
        assert not s.reversal_exits
        assert s.trailing_activation_pct is None
        assert s.breakeven_band == 0.0

    def test_live_preset(self):
        s = SimulationSettings.live()
        assert s.leverage == 10.0
        assert s.min_confidence == pytest.approx(0.55)
        assert s.reversal_exits
        assert s.stale_after == timedelta(hours=8)
        assert s.breakeven_basis == "pnl_percent"
        assert s.to_dict()['stale_after'] == 8 * 3600

    @pytest.mark.parametrize("override", [
        {'initial_capital': 0},
        {'risk_fraction': 1.5},
        {'leverage': 50},
        {'max_open_positions': 0},
        {'breakeven_basis': "pips"},
    ])
    def test_invalid_settings(self, override):
        with pytest.raises(ConfigurationError):
            SimulationSettings.batch(**override)

    def test_with_overrides_validates(self):
        with pytest.raises(ConfigurationError):
            SimulationSettings.batch().with_overrides(slippage=-1)


class TestContracts:

    def test_signal_accepts_string_action_and_caps_levels(self):
        signal = Signal("long", 0.7, take_profit_levels=[101, 102, 103, 104])
        assert signal.action is SignalAction.LONG
        assert signal.take_profit_levels == (101.0, 102.0, 103.0)
        assert signal.take_profit == 101.0
        assert not signal.has_levels

    def test_validate_signal(self):
        ok, errors = validate_signal(Signal(SignalAction.SHORT, 0.5, stop_loss=-1))
        assert not ok
        assert len(errors) == 1

    def test_position_round_trip(self):
        position = Position(
            id=7, instrument="SOLUSDT", direction=Direction.SHORT, entry_time=datetime(2024, 1, 1),
            entry_price=20.0, capital_at_risk=300.0, quantity=10.0, stop_loss=21.0, take_profit=18.0,
            leverage=10.0, origin_signal=Signal(SignalAction.SHORT, 0.9), current_price=19.5,
        )
        restored = Position.from_dict(position.to_dict())
        assert restored.direction is Direction.SHORT
        assert restored.origin_signal.confidence == 0.9
        assert restored.pnl_percent(19.0) == pytest.approx(50.0)

    def test_closed_trade_round_trip(self, trade_factory):
        trade = trade_factory(12.5)
        assert ClosedTrade.from_dict(trade.to_dict()) == trade

    def test_candles_from_frame(self):
        idx = pd.DatetimeIndex([datetime(2024, 1, 1, h) for h in range(3)])
        df = pd.DataFrame({
            "Open": [1, 2, 3], "High": [2, 3, 4], "Low": [0.5, 1.5, 2.5],
            "Close": [2, 3, 4], "Volume": [10, 20, 30],
        }, index=idx)
        candles = candles_from_frame(df)
        assert [c.close for c in candles] == [2.0, 3.0, 4.0]
        assert candles[1].open_time == datetime(2024, 1, 1, 1)

    def test_resolve_signal_source(self):
        fn = lambda lookback: None  # noqa: E731
        assert resolve_signal_source(fn) is fn
        with pytest.raises(TypeError):
            resolve_signal_source(42)

    def test_from_price_is_flat_bar(self):
        candle = Candle.from_price(101.5, datetime(2024, 1, 1))
        assert candle.open == candle.high == candle.low == candle.close == 101.5

    def test_as_utc_reads_naive_as_utc_and_converts_offsets(self):
        naive = datetime(2024, 1, 1, 12)
        assert as_utc(naive) == naive.replace(tzinfo=timezone.utc)
        tokyo = datetime(2024, 1, 1, 21, tzinfo=timezone(timedelta(hours=9)))
        assert as_utc(tokyo).hour == 12
        assert as_utc(tokyo).tzinfo is timezone.utc

        bar = Candle(open_time=naive, open=1.0, high=1.0, low=1.0, close=1.0).as_utc()
        assert bar.open_time.tzinfo is timezone.utc
        assert bar.close_time is None

    def test_insufficient_data_error_code(self):
        err = InsufficientDataError(10, 150, "BTCUSDT")
        assert err.error_code is ErrorCode.INSUFFICIENT_DATA
        assert err.to_dict()['context']['instrument'] == "BTCUSDT"
