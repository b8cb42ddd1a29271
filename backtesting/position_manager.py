"""
backtesting/position_manager.py - Step-driven position management

PositionManager advances one step at a time, either over a historical candle
sequence or over live ticks, and is the only component that mutates open
positions. All run state lives in a SimulationContext owned by the caller,
so independent runs (walk-forward windows, parallel backtests) never share
anything.

Per step:
1. Close checks for the instrument's open positions in ascending
   (entry_time, id) order, first match wins:
   stop-loss -> take-profit -> signal reversal -> trailing stop
   -> emergency stop -> staleness
2. Entry evaluation (unless a reversal consumed the signal)
3. Mark-to-market of the remaining positions
4. One equity point
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from core.contracts import (
    Candle,
    ClosedTrade,
    Direction,
    EquityPoint,
    ExitReason,
    Position,
    PositionState,
    Signal,
    SignalAction,
    TERMINAL_STATE,
    validate_signal,
)
from backtesting.equity import EquityTracker
from backtesting.pnl import apply_slippage, calculate_pnl, calculate_unrealized_pnl
from backtesting.settings import SimulationSettings
from backtesting.statistics import TradeStatistics

logger = logging.getLogger(__name__)

# Entry decisions
ENTRY_OK = "ok"
REJECT_HOLD = "hold"
REJECT_INVALID_SIGNAL = "invalid_signal"
REJECT_LOW_CONFIDENCE = "low_confidence"
REJECT_POSITION_EXISTS = "position_exists"
REJECT_MAX_POSITIONS = "max_positions"
REJECT_INVALID_LEVELS = "invalid_levels"
REJECT_BELOW_MIN_SIZE = "below_min_size"
REJECT_FINAL_STEP = "final_step"
REJECT_SIGNAL_CONSUMED = "signal_consumed"


@dataclass
class SimulationContext:
    """All mutable state of one simulation run."""
    settings: SimulationSettings
    equity: EquityTracker
    statistics: TradeStatistics
    positions: Dict[int, Position] = field(default_factory=dict)
    closed_trades: List[ClosedTrade] = field(default_factory=list)
    next_position_id: int = 1
    steps_processed: int = 0

    @classmethod
    def create(cls, settings: SimulationSettings) -> "SimulationContext":
        return cls(
            settings=settings,
            equity=EquityTracker(settings.initial_capital),
            statistics=TradeStatistics(
                breakeven_band=settings.breakeven_band,
                breakeven_basis=settings.breakeven_basis,
            ),
        )

    @property
    def capital(self) -> float:
        return self.equity.capital

    def open_positions(self, instrument: Optional[str] = None) -> List[Position]:
        """Open positions in deterministic (entry_time, id) order."""
        positions = [
            p for p in self.positions.values()
            if instrument is None or p.instrument == instrument
        ]
        return sorted(positions, key=lambda p: (p.entry_time, p.id))

    def position_for(self, instrument: str) -> Optional[Position]:
        for position in self.positions.values():
            if position.instrument == instrument:
                return position
        return None

    def unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self.positions.values())


@dataclass
class StepOutcome:
    """What one advance() call did."""
    step_index: int
    closed: List[ClosedTrade]
    opened: Optional[Position]
    entry_decision: str
    equity_point: EquityPoint


class PositionManager:
    """Drives a SimulationContext one step at a time."""

    def __init__(self, context: SimulationContext):
        self.ctx = context
        self.settings = context.settings

    # ------------------------------------------------------------------
    # Step
    # ------------------------------------------------------------------

    def advance(
        self,
        instrument: str,
        candle: Candle,
        signal: Optional[Signal] = None,
        final: bool = False,
    ) -> StepOutcome:
        """
        Process one step for ``instrument``.

        On the final step of a batch run every open position is closed at
        the candle close before the equity point is appended, so the last
        point equals final capital.
        """
        self.ctx.steps_processed += 1
        closed: List[ClosedTrade] = []
        signal_consumed = False

        for position in self.ctx.open_positions(instrument):
            exit_ = self._check_exit(position, candle, signal)
            if exit_ is None:
                continue
            reason, price = exit_
            closed.append(self._close(position, price, reason, candle.open_time))
            if reason is ExitReason.SIGNAL_REVERSAL:
                signal_consumed = True

        opened: Optional[Position] = None
        if final:
            decision = REJECT_FINAL_STEP
        elif signal_consumed:
            decision = REJECT_SIGNAL_CONSUMED
        else:
            decision, opened = self._try_open(instrument, candle, signal)

        self._mark(instrument, candle.close)

        if final:
            closed.extend(self.close_all(ExitReason.END_OF_RUN, candle.open_time))

        point = self.ctx.equity.record(self.ctx.unrealized_pnl())
        return StepOutcome(
            step_index=point.step_index,
            closed=closed,
            opened=opened,
            entry_decision=decision,
            equity_point=point,
        )

    def close_all(
        self,
        reason: ExitReason = ExitReason.END_OF_RUN,
        when: Optional[datetime] = None,
    ) -> List[ClosedTrade]:
        """Close every open position at its latest mark price."""
        closed = []
        for position in self.ctx.open_positions():
            exit_time = when if when is not None else position.entry_time
            exit_time = max(exit_time, position.entry_time)
            closed.append(self._close(position, position.current_price, reason, exit_time))
        return closed

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def _check_exit(
        self,
        position: Position,
        candle: Candle,
        signal: Optional[Signal],
    ) -> Optional[Tuple[ExitReason, float]]:
        s = self.settings
        is_long = position.direction is Direction.LONG

        # 1. Stop loss, intrabar, filled at the stop
        if (is_long and candle.low <= position.stop_loss) or \
                (not is_long and candle.high >= position.stop_loss):
            return ExitReason.STOP_LOSS, position.stop_loss

        # 2. Take profit, intrabar, filled at the target
        if (is_long and candle.high >= position.take_profit) or \
                (not is_long and candle.low <= position.take_profit):
            return ExitReason.TAKE_PROFIT, position.take_profit

        price = candle.close

        # 3. Signal reversal
        if s.reversal_exits and signal is not None and \
                signal.direction is position.direction.opposite and \
                signal.confidence >= s.reversal_confidence:
            return ExitReason.SIGNAL_REVERSAL, price

        pnl_pct = position.pnl_percent(price)
        position.peak_unrealized_pnl_percent = max(position.peak_unrealized_pnl_percent, pnl_pct)

        # 4. Trailing stop
        if s.trailing_activation_pct is not None and \
                position.peak_unrealized_pnl_percent >= s.trailing_activation_pct and \
                pnl_pct < position.peak_unrealized_pnl_percent - s.trailing_retrace_pct:
            return ExitReason.TRAILING_STOP, price

        # 5. Emergency stop
        if s.emergency_stop_pct is not None and pnl_pct <= s.emergency_stop_pct:
            return ExitReason.EMERGENCY_STOP, price

        # 6. Staleness
        if s.stale_after is not None and \
                candle.open_time - position.entry_time > s.stale_after and \
                abs(pnl_pct) < s.stale_max_move_pct:
            return ExitReason.STALE, price

        return None

    def _close(
        self,
        position: Position,
        exit_price: float,
        reason: ExitReason,
        exit_time: datetime,
    ) -> ClosedTrade:
        pnl = calculate_pnl(
            position.direction,
            position.entry_price,
            exit_price,
            position.quantity,
            position.capital_at_risk,
            self.settings.commission_rate,
        )
        if self.settings.holding_period_unit == "seconds":
            holding = (exit_time - position.entry_time).total_seconds()
        else:
            holding = self.ctx.steps_processed - position.entry_step

        trade = ClosedTrade(
            id=position.id,
            instrument=position.instrument,
            direction=position.direction,
            entry_time=position.entry_time,
            entry_price=position.entry_price,
            capital_at_risk=position.capital_at_risk,
            quantity=position.quantity,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            peak_unrealized_pnl_percent=position.peak_unrealized_pnl_percent,
            exit_time=exit_time,
            exit_price=exit_price,
            exit_reason=reason,
            gross_pnl=pnl.gross_pnl,
            net_pnl=pnl.net_pnl,
            commission=pnl.commission,
            return_percent=pnl.return_percent,
            holding_period=holding,
            leverage=position.leverage,
            confidence=position.origin_signal.confidence if position.origin_signal else 0.0,
            entry_step=position.entry_step,
            exit_step=self.ctx.steps_processed,
        )

        position.state = TERMINAL_STATE[reason]
        del self.ctx.positions[position.id]
        self.ctx.equity.realize(pnl.net_pnl)
        self.ctx.closed_trades.append(trade)
        outcome = self.ctx.statistics.record(trade)

        logger.info(
            "event=trade_closed id=%d instrument=%s direction=%s reason=%s "
            "exit=%.6f net_pnl=%.2f outcome=%s capital=%.2f",
            trade.id, trade.instrument, trade.direction.value, reason.value,
            exit_price, trade.net_pnl, outcome, self.ctx.capital,
        )
        return trade

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def _try_open(
        self,
        instrument: str,
        candle: Candle,
        signal: Optional[Signal],
    ) -> Tuple[str, Optional[Position]]:
        s = self.settings

        if signal is None or signal.action is SignalAction.HOLD:
            return REJECT_HOLD, None

        valid, errors = validate_signal(signal)
        if not valid:
            logger.debug("event=signal_rejected instrument=%s errors=%s", instrument, errors)
            return REJECT_INVALID_SIGNAL, None

        if signal.confidence < s.min_confidence:
            return REJECT_LOW_CONFIDENCE, None

        if self.ctx.position_for(instrument) is not None:
            return REJECT_POSITION_EXISTS, None

        if len(self.ctx.positions) >= s.max_open_positions:
            return REJECT_MAX_POSITIONS, None

        direction = signal.direction
        base_price = signal.entry_price if signal.entry_price is not None else candle.close
        entry_price = apply_slippage(base_price, direction, s.slippage)

        levels = self._resolve_levels(signal, direction, entry_price)
        if levels is None:
            logger.debug(
                "event=signal_ignored instrument=%s reason=invalid_levels action=%s",
                instrument, signal.action.value,
            )
            return REJECT_INVALID_LEVELS, None
        stop_loss, take_profit = levels

        sized = self.size_position(entry_price, stop_loss)
        if sized is None:
            return REJECT_BELOW_MIN_SIZE, None
        capital_at_risk, quantity = sized

        position = Position(
            id=self.ctx.next_position_id,
            instrument=instrument,
            direction=direction,
            entry_time=candle.open_time,
            entry_price=entry_price,
            capital_at_risk=capital_at_risk,
            quantity=quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            leverage=s.leverage,
            entry_step=self.ctx.steps_processed,
            origin_signal=signal,
            current_price=entry_price,
        )
        self.ctx.next_position_id += 1
        position.state = PositionState.OPEN
        self.ctx.positions[position.id] = position

        logger.info(
            "event=trade_opened id=%d instrument=%s direction=%s entry=%.6f "
            "sl=%.6f tp=%.6f qty=%.6f risk=%.2f confidence=%.2f",
            position.id, instrument, direction.value, entry_price,
            stop_loss, take_profit, quantity, capital_at_risk, signal.confidence,
        )
        return ENTRY_OK, position

    def _resolve_levels(
        self,
        signal: Signal,
        direction: Direction,
        entry_price: float,
    ) -> Optional[Tuple[float, float]]:
        """Signal levels, falling back to configured percentages when missing."""
        s = self.settings
        sign = direction.sign

        stop_loss = signal.stop_loss
        if stop_loss is None and s.stop_loss_percent is not None:
            stop_loss = entry_price * (1 - sign * s.stop_loss_percent / 100)

        take_profit = signal.take_profit
        if take_profit is None and s.take_profit_percent is not None:
            take_profit = entry_price * (1 + sign * s.take_profit_percent / 100)

        if stop_loss is None or take_profit is None:
            return None

        if direction is Direction.LONG:
            ok = stop_loss < entry_price < take_profit
        else:
            ok = take_profit < entry_price < stop_loss
        return (stop_loss, take_profit) if ok else None

    def size_position(self, entry_price: float, stop_loss: float) -> Optional[Tuple[float, float]]:
        """
        Risk-based sizing on realized capital.

        capital_at_risk = capital * risk_fraction
        quantity = capital_at_risk / |entry - stop| * leverage
        Notional is capped at capital * max_position_fraction * leverage.

        Returns (capital_at_risk, quantity) or None below the minimum size.
        """
        s = self.settings
        capital = self.ctx.capital
        capital_at_risk = capital * s.risk_fraction
        if capital_at_risk < s.min_trade_capital:
            return None

        risk_per_unit = abs(entry_price - stop_loss)
        if risk_per_unit <= 0 or entry_price <= 0:
            return None

        quantity = capital_at_risk / risk_per_unit * s.leverage
        max_notional = capital * s.max_position_fraction * s.leverage
        if quantity * entry_price > max_notional:
            quantity = max_notional / entry_price

        if quantity < s.min_quantity:
            return None
        return capital_at_risk, quantity

    # ------------------------------------------------------------------
    # Mark-to-market
    # ------------------------------------------------------------------

    def _mark(self, instrument: str, price: float) -> None:
        for position in self.ctx.open_positions(instrument):
            position.current_price = price
            position.unrealized_pnl = calculate_unrealized_pnl(
                position.direction, position.entry_price, price, position.quantity
            )
            position.peak_unrealized_pnl_percent = max(
                position.peak_unrealized_pnl_percent, position.pnl_percent(price)
            )
