"""
core/contracts.py

Data Contracts and Interfaces

Defines the canonical data structures shared by the position manager, the
analytics pipeline and the orchestrators (walk-forward, Monte Carlo, live
paper trading). Candles, signals, closed trades, equity points and run
results are immutable; a Position is the only mutable record and is owned
by exactly one PositionManager while it is open.
"""

from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import pandas as pd

from core.exceptions import CandleOrderError


MAX_TAKE_PROFIT_LEVELS = 3
INSUFFICIENT_DATA = "insufficient data"


# ═══════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════

class Direction(Enum):
    """Position direction."""
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1

    @property
    def opposite(self) -> "Direction":
        return Direction.SHORT if self is Direction.LONG else Direction.LONG


class SignalAction(Enum):
    """Action requested by a signal source."""
    LONG = "LONG"
    SHORT = "SHORT"
    HOLD = "HOLD"

    @property
    def direction(self) -> Optional[Direction]:
        if self is SignalAction.HOLD:
            return None
        return Direction(self.value)


class ExitReason(Enum):
    """Why a position was closed."""
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    SIGNAL_REVERSAL = "SIGNAL_REVERSAL"
    TRAILING_STOP = "TRAILING_STOP"
    EMERGENCY_STOP = "EMERGENCY_STOP"
    STALE = "STALE"
    END_OF_RUN = "END_OF_RUN"


class PositionState(Enum):
    """Lifecycle of a simulated position."""
    PENDING = "PENDING"
    OPEN = "OPEN"
    CLOSED_SL = "CLOSED_SL"
    CLOSED_TP = "CLOSED_TP"
    CLOSED_REVERSAL = "CLOSED_REVERSAL"
    CLOSED_TRAIL = "CLOSED_TRAIL"
    CLOSED_EMERGENCY = "CLOSED_EMERGENCY"
    CLOSED_STALE = "CLOSED_STALE"
    CLOSED_AT_RUN_END = "CLOSED_AT_RUN_END"

    @property
    def is_terminal(self) -> bool:
        return self not in (PositionState.PENDING, PositionState.OPEN)


TERMINAL_STATE = {
    ExitReason.STOP_LOSS: PositionState.CLOSED_SL,
    ExitReason.TAKE_PROFIT: PositionState.CLOSED_TP,
    ExitReason.SIGNAL_REVERSAL: PositionState.CLOSED_REVERSAL,
    ExitReason.TRAILING_STOP: PositionState.CLOSED_TRAIL,
    ExitReason.EMERGENCY_STOP: PositionState.CLOSED_EMERGENCY,
    ExitReason.STALE: PositionState.CLOSED_STALE,
    ExitReason.END_OF_RUN: PositionState.CLOSED_AT_RUN_END,
}


def as_utc(moment: datetime) -> datetime:
    """Aware UTC view of ``moment``; a naive datetime is taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# DATA CONTRACTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Candle:
    """Single OHLCV bar."""
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    close_time: Optional[datetime] = None

    @classmethod
    def from_price(cls, price: float, timestamp: datetime) -> "Candle":
        """Degenerate bar for a single live tick."""
        price = float(price)
        return cls(
            open_time=timestamp,
            open=price,
            high=price,
            low=price,
            close=price,
            close_time=timestamp,
        )

    def as_utc(self) -> "Candle":
        """Same bar with aware UTC times; naive times are read as UTC."""
        return replace(
            self,
            open_time=as_utc(self.open_time),
            close_time=as_utc(self.close_time) if self.close_time is not None else None,
        )

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.open_time,
            'Open': self.open,
            'High': self.high,
            'Low': self.low,
            'Close': self.close,
            'Volume': self.volume
        }


@dataclass(frozen=True)
class Signal:
    """Trading signal produced by an external signal source."""
    action: SignalAction
    confidence: float  # [0, 1]
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit_levels: Tuple[float, ...] = ()
    risk_reward_ratio: Optional[float] = None

    # Routing / metadata
    instrument: Optional[str] = None
    label: str = ""

    def __post_init__(self):
        if isinstance(self.action, str):
            object.__setattr__(self, 'action', SignalAction(self.action.upper()))
        levels = tuple(float(tp) for tp in (self.take_profit_levels or ()))
        object.__setattr__(self, 'take_profit_levels', levels[:MAX_TAKE_PROFIT_LEVELS])

    @property
    def direction(self) -> Optional[Direction]:
        return self.action.direction

    @property
    def take_profit(self) -> Optional[float]:
        return self.take_profit_levels[0] if self.take_profit_levels else None

    @property
    def has_levels(self) -> bool:
        return self.stop_loss is not None and self.take_profit is not None


@dataclass
class Position:
    """Open simulated position. Mutated every step by its PositionManager."""
    id: int
    instrument: str
    direction: Direction
    entry_time: datetime
    entry_price: float
    capital_at_risk: float
    quantity: float
    stop_loss: float
    take_profit: float
    leverage: float = 1.0
    entry_step: int = 0
    origin_signal: Optional[Signal] = None

    # Mark-to-market
    current_price: float = 0.0
    unrealized_pnl: float = 0.0
    peak_unrealized_pnl_percent: float = 0.0
    state: PositionState = PositionState.PENDING

    @property
    def notional(self) -> float:
        return abs(self.quantity) * self.entry_price

    def pnl_percent(self, price: float) -> float:
        """Leveraged percentage move from entry at ``price``."""
        if self.entry_price <= 0:
            return 0.0
        move = (price - self.entry_price) / self.entry_price
        return self.direction.sign * move * 100 * self.leverage

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'instrument': self.instrument,
            'direction': self.direction.value,
            'entry_time': self.entry_time.isoformat(),
            'entry_price': self.entry_price,
            'capital_at_risk': self.capital_at_risk,
            'quantity': self.quantity,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'leverage': self.leverage,
            'entry_step': self.entry_step,
            'confidence': self.origin_signal.confidence if self.origin_signal else 0.0,
            'current_price': self.current_price,
            'unrealized_pnl': self.unrealized_pnl,
            'peak_unrealized_pnl_percent': self.peak_unrealized_pnl_percent,
            'state': self.state.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        direction = Direction(data['direction'])
        return cls(
            id=int(data['id']),
            instrument=data['instrument'],
            direction=direction,
            entry_time=datetime.fromisoformat(data['entry_time']),
            entry_price=float(data['entry_price']),
            capital_at_risk=float(data['capital_at_risk']),
            quantity=float(data['quantity']),
            stop_loss=float(data['stop_loss']),
            take_profit=float(data['take_profit']),
            leverage=float(data.get('leverage', 1.0)),
            entry_step=int(data.get('entry_step', 0)),
            origin_signal=Signal(
                action=SignalAction(direction.value),
                confidence=float(data.get('confidence', 0.0)),
            ),
            current_price=float(data.get('current_price', data['entry_price'])),
            unrealized_pnl=float(data.get('unrealized_pnl', 0.0)),
            peak_unrealized_pnl_percent=float(data.get('peak_unrealized_pnl_percent', 0.0)),
            state=PositionState(data.get('state', PositionState.OPEN.value)),
        )


@dataclass(frozen=True)
class ClosedTrade:
    """Completed round trip. Append-only."""
    id: int
    instrument: str
    direction: Direction
    entry_time: datetime
    entry_price: float
    capital_at_risk: float
    quantity: float
    stop_loss: float
    take_profit: float
    peak_unrealized_pnl_percent: float

    exit_time: datetime
    exit_price: float
    exit_reason: ExitReason

    gross_pnl: float
    net_pnl: float
    commission: float
    return_percent: float
    holding_period: float  # steps in batch runs, seconds in live runs

    leverage: float = 1.0
    confidence: float = 0.0
    entry_step: int = 0
    exit_step: int = 0

    @property
    def holding_seconds(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds()

    @property
    def pnl_percent(self) -> float:
        """Leveraged price move at exit, the live simulator's headline figure."""
        if self.entry_price <= 0:
            return 0.0
        move = (self.exit_price - self.entry_price) / self.entry_price
        return self.direction.sign * move * 100 * self.leverage

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['direction'] = self.direction.value
        data['exit_reason'] = self.exit_reason.value
        data['entry_time'] = self.entry_time.isoformat()
        data['exit_time'] = self.exit_time.isoformat()
        data['holding_seconds'] = self.holding_seconds
        for key in ('gross_pnl', 'net_pnl', 'commission', 'return_percent', 'capital_at_risk'):
            data[key] = round(data[key], 2)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClosedTrade":
        values = dict(data)
        values['direction'] = Direction(values['direction'])
        values['exit_reason'] = ExitReason(values['exit_reason'])
        values['entry_time'] = datetime.fromisoformat(values['entry_time'])
        values['exit_time'] = datetime.fromisoformat(values['exit_time'])
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in values.items() if k in known})


@dataclass(frozen=True)
class EquityPoint:
    """One sample of the equity curve."""
    step_index: int
    equity_value: float


@dataclass(frozen=True)
class RunResult:
    """Immutable outcome of one simulation run.

    Callers must check ``error`` before reading any summary field: an
    insufficient-data result carries no trades and no metrics.
    """
    summary: Dict[str, Any]
    stats: Dict[str, Any]
    metrics: Dict[str, Any]
    sampled_trades: Tuple[Dict[str, Any], ...]
    sampled_equity: Tuple[float, ...]
    settings: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    # Full-resolution outputs for downstream resampling
    trades: Tuple[ClosedTrade, ...] = ()
    equity_curve: Tuple[EquityPoint, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def insufficient_data(cls, settings: Optional[Dict[str, Any]] = None) -> "RunResult":
        return cls(
            summary={},
            stats={},
            metrics={},
            sampled_trades=(),
            sampled_equity=(),
            settings=dict(settings or {}),
            error=INSUFFICIENT_DATA,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form (sampled outputs only)."""
        return {
            'summary': self.summary,
            'stats': self.stats,
            'metrics': self.metrics,
            'trades': list(self.sampled_trades),
            'equity': list(self.sampled_equity),
            'settings': self.settings,
            'timestamp': self.timestamp.isoformat(),
            'error': self.error,
        }


# ═══════════════════════════════════════════════════════════════════════════
# INTERFACES (PROTOCOLS)
# ═══════════════════════════════════════════════════════════════════════════

class ISignalSource(Protocol):
    """Interface for signal sources. The engine never builds its own."""

    def generate(self, lookback: Sequence[Candle]) -> Optional[Signal]:
        """Return a signal for the last candle of ``lookback``, or None."""
        ...


SignalSourceLike = Union[ISignalSource, Callable[[Sequence[Candle]], Optional[Signal]]]


def resolve_signal_source(source: SignalSourceLike) -> Callable[[Sequence[Candle]], Optional[Signal]]:
    """Accept either an ISignalSource or a plain callable."""
    generate = getattr(source, 'generate', None)
    if callable(generate):
        return generate
    if callable(source):
        return source
    raise TypeError(f"Signal source must be callable or expose generate(), got {type(source).__name__}")


# ═══════════════════════════════════════════════════════════════════════════
# VALIDATION FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════

def validate_signal(signal: Signal) -> Tuple[bool, List[str]]:
    """Validate signal data."""
    errors = []

    if not 0 <= signal.confidence <= 1:
        errors.append(f"Confidence must be in [0, 1], got {signal.confidence}")

    if signal.entry_price is not None and signal.entry_price <= 0:
        errors.append(f"Entry price must be positive, got {signal.entry_price}")

    if signal.stop_loss is not None and signal.stop_loss <= 0:
        errors.append(f"Stop loss must be positive, got {signal.stop_loss}")

    if any(tp <= 0 for tp in signal.take_profit_levels):
        errors.append("Take profit levels must be positive")

    return len(errors) == 0, errors


def validate_candles(candles: Sequence[Candle]) -> None:
    """Raise CandleOrderError unless open times strictly increase."""
    for i in range(1, len(candles)):
        if candles[i].open_time <= candles[i - 1].open_time:
            raise CandleOrderError(i, candles[i - 1].open_time, candles[i].open_time)


# ═══════════════════════════════════════════════════════════════════════════
# FACTORY FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════

def candles_from_frame(df: pd.DataFrame) -> List[Candle]:
    """Build candles from an OHLCV frame with a datetime index.

    Accepts ``Open/High/Low/Close/Volume`` (or lowercase) columns. An
    optional ``close_time`` column is carried through.
    """
    if df.empty:
        return []
    frame = df.rename(columns=str.lower).sort_index()
    has_close_time = 'close_time' in frame.columns
    has_volume = 'volume' in frame.columns

    candles = []
    for ts, row in frame.iterrows():
        close_time = row['close_time'] if has_close_time else None
        candles.append(Candle(
            open_time=pd.Timestamp(ts).to_pydatetime(),
            open=float(row['open']),
            high=float(row['high']),
            low=float(row['low']),
            close=float(row['close']),
            volume=float(row['volume']) if has_volume else 0.0,
            close_time=pd.Timestamp(close_time).to_pydatetime() if close_time is not None else None,
        ))
    return candles
