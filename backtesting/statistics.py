"""
backtesting/statistics.py - Incremental trade statistics

TradeStatistics is updated exactly once per ClosedTrade and never rescans
the trade history. Breakdowns by direction and by UTC hour of entry feed
the live status snapshot.
"""

import math
from collections import deque
from dataclasses import dataclass, asdict
from datetime import timezone
from typing import Any, Deque, Dict, List, Optional

from config import SimConfig
from core.contracts import ClosedTrade, Direction
from backtesting.pnl import round_money

WIN = "win"
LOSS = "loss"
BREAKEVEN = "breakeven"


@dataclass
class BucketStats:
    """Counters for one breakdown bucket (direction or hour)."""
    trades: int = 0
    wins: int = 0
    losses: int = 0
    pnl: float = 0.0
    pnl_percent: float = 0.0

    def add(self, outcome: str, trade: ClosedTrade) -> None:
        self.trades += 1
        if outcome == WIN:
            self.wins += 1
        elif outcome == LOSS:
            self.losses += 1
        self.pnl += trade.net_pnl
        self.pnl_percent += trade.pnl_percent

    @property
    def win_rate(self) -> float:
        return self.wins / self.trades if self.trades else 0.0

    def summary(self) -> Dict[str, float]:
        return {
            'trades': self.trades,
            'wins': self.wins,
            'win_rate': round(self.win_rate * 100, 2),
            'pnl': round_money(self.pnl),
            'avg_pnl_percent': round(self.pnl_percent / self.trades, 2) if self.trades else 0.0,
        }


class TradeStatistics:
    """
    Running aggregate over closed trades.

    Classification uses ``breakeven_basis`` (``net_pnl``, ``return_percent``
    or ``pnl_percent``): values inside ``[-band, +band]`` are breakeven.
    """

    def __init__(
        self,
        breakeven_band: float = 0.0,
        breakeven_basis: str = "net_pnl",
        recent_size: int = SimConfig.RECENT_TRADES,
    ):
        self.breakeven_band = breakeven_band
        self.breakeven_basis = breakeven_basis

        self.total_trades = 0
        self.winning_trades = 0
        self.losing_trades = 0
        self.breakeven_trades = 0

        self.gross_profit = 0.0
        self.gross_loss = 0.0
        # P&L of classified wins and losses only, for the averages
        self.win_pnl = 0.0
        self.loss_pnl = 0.0
        self.total_pnl = 0.0
        self.total_commission = 0.0
        self.largest_win = 0.0
        self.largest_loss = 0.0
        self.avg_holding_period = 0.0

        self.current_win_streak = 0
        self.current_loss_streak = 0
        self.max_win_streak = 0
        self.max_loss_streak = 0

        self.best_trade: Optional[ClosedTrade] = None
        self.worst_trade: Optional[ClosedTrade] = None

        self.by_direction: Dict[Direction, BucketStats] = {d: BucketStats() for d in Direction}
        self.by_hour: Dict[int, BucketStats] = {}
        self.recent: Deque[ClosedTrade] = deque(maxlen=recent_size)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def classify(self, trade: ClosedTrade) -> str:
        value = getattr(trade, self.breakeven_basis)
        if self.breakeven_band > 0:
            if value > self.breakeven_band:
                return WIN
            if value < -self.breakeven_band:
                return LOSS
            return BREAKEVEN
        if value > 0:
            return WIN
        if value < 0:
            return LOSS
        return BREAKEVEN

    def record(self, trade: ClosedTrade) -> str:
        outcome = self.classify(trade)
        net = trade.net_pnl

        self.total_trades += 1
        self.total_pnl += net
        self.total_commission += trade.commission
        # Incremental mean
        self.avg_holding_period += (trade.holding_period - self.avg_holding_period) / self.total_trades

        if outcome == WIN:
            self.winning_trades += 1
            self.current_win_streak += 1
            self.current_loss_streak = 0
            self.max_win_streak = max(self.max_win_streak, self.current_win_streak)
            self.win_pnl += net
        elif outcome == LOSS:
            self.losing_trades += 1
            self.current_loss_streak += 1
            self.current_win_streak = 0
            self.max_loss_streak = max(self.max_loss_streak, self.current_loss_streak)
            self.loss_pnl += net
        else:
            # Breakevens leave both streaks as they were
            self.breakeven_trades += 1

        if net > 0:
            self.gross_profit += net
            self.largest_win = max(self.largest_win, net)
        elif net < 0:
            self.gross_loss += net
            self.largest_loss = min(self.largest_loss, net)

        if self.best_trade is None or net > self.best_trade.net_pnl:
            self.best_trade = trade
        if self.worst_trade is None or net < self.worst_trade.net_pnl:
            self.worst_trade = trade

        self.by_direction[trade.direction].add(outcome, trade)
        entry_time = trade.entry_time
        if entry_time.tzinfo is not None:
            entry_time = entry_time.astimezone(timezone.utc)
        self.by_hour.setdefault(entry_time.hour, BucketStats()).add(outcome, trade)
        self.recent.appendleft(trade)
        return outcome

    # ------------------------------------------------------------------
    # Derived figures
    # ------------------------------------------------------------------

    @property
    def win_rate(self) -> float:
        return self.winning_trades / self.total_trades if self.total_trades else 0.0

    @property
    def avg_win(self) -> float:
        return self.win_pnl / self.winning_trades if self.winning_trades else 0.0

    @property
    def avg_loss(self) -> float:
        return self.loss_pnl / self.losing_trades if self.losing_trades else 0.0

    @property
    def expectancy(self) -> float:
        return self.win_rate * self.avg_win - (1 - self.win_rate) * abs(self.avg_loss)

    @property
    def profit_factor(self) -> float:
        """gross_profit / |gross_loss|; inf with no losses, 0 with neither."""
        if self.gross_loss == 0:
            return math.inf if self.gross_profit > 0 else 0.0
        return self.gross_profit / abs(self.gross_loss)

    def hourly_performance(self) -> List[Dict[str, Any]]:
        """Hour buckets ranked by win rate, best first."""
        rows = [dict(hour=hour, **bucket.summary()) for hour, bucket in self.by_hour.items()]
        rows.sort(key=lambda r: (-r['win_rate'], r['hour']))
        return rows

    def best_hours(self, n: int = 5) -> List[Dict[str, Any]]:
        return self.hourly_performance()[:n]

    def worst_hours(self, n: int = 3) -> List[Dict[str, Any]]:
        rows = self.hourly_performance()
        return list(reversed(rows[-n:])) if rows else []

    def direction_summary(self) -> Dict[str, Dict[str, float]]:
        return {d.value.lower(): bucket.summary() for d, bucket in self.by_direction.items()}

    def summary(self) -> Dict[str, Any]:
        """Public, rounded view."""
        profit_factor = self.profit_factor
        return {
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'breakeven_trades': self.breakeven_trades,
            'win_rate': round(self.win_rate * 100, 2),
            'total_pnl': round_money(self.total_pnl),
            'gross_profit': round_money(self.gross_profit),
            'gross_loss': round_money(self.gross_loss),
            'avg_win': round_money(self.avg_win),
            'avg_loss': round_money(self.avg_loss),
            'largest_win': round_money(self.largest_win),
            'largest_loss': round_money(self.largest_loss),
            'profit_factor': profit_factor if math.isinf(profit_factor) else round(profit_factor, 2),
            'expectancy': round_money(self.expectancy),
            'total_commission': round_money(self.total_commission),
            'avg_holding_period': round(self.avg_holding_period, 2),
            'max_win_streak': self.max_win_streak,
            'max_loss_streak': self.max_loss_streak,
            'current_win_streak': self.current_win_streak,
            'current_loss_streak': self.current_loss_streak,
            'long_trades': self.by_direction[Direction.LONG].trades,
            'short_trades': self.by_direction[Direction.SHORT].trades,
            'long_wins': self.by_direction[Direction.LONG].wins,
            'short_wins': self.by_direction[Direction.SHORT].wins,
            'best_trade': self.best_trade.to_dict() if self.best_trade else None,
            'worst_trade': self.worst_trade.to_dict() if self.worst_trade else None,
        }

    # ------------------------------------------------------------------
    # Persistence helpers (live state)
    # ------------------------------------------------------------------

    def counters(self) -> Dict[str, Any]:
        """Raw counters for state files. Trades themselves are not stored."""
        return {
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'breakeven_trades': self.breakeven_trades,
            'gross_profit': self.gross_profit,
            'gross_loss': self.gross_loss,
            'win_pnl': self.win_pnl,
            'loss_pnl': self.loss_pnl,
            'total_pnl': self.total_pnl,
            'total_commission': self.total_commission,
            'largest_win': self.largest_win,
            'largest_loss': self.largest_loss,
            'avg_holding_period': self.avg_holding_period,
            'current_win_streak': self.current_win_streak,
            'current_loss_streak': self.current_loss_streak,
            'max_win_streak': self.max_win_streak,
            'max_loss_streak': self.max_loss_streak,
            'by_direction': {d.value: asdict(b) for d, b in self.by_direction.items()},
            'by_hour': {str(h): asdict(b) for h, b in self.by_hour.items()},
        }

    def restore(self, counters: Dict[str, Any]) -> None:
        for key in (
            'total_trades', 'winning_trades', 'losing_trades', 'breakeven_trades',
            'gross_profit', 'gross_loss', 'win_pnl', 'loss_pnl', 'total_pnl', 'total_commission',
            'largest_win', 'largest_loss', 'avg_holding_period',
            'current_win_streak', 'current_loss_streak', 'max_win_streak', 'max_loss_streak',
        ):
            if key in counters:
                setattr(self, key, counters[key])
        for name, bucket in counters.get('by_direction', {}).items():
            self.by_direction[Direction(name)] = BucketStats(**bucket)
        self.by_hour = {int(h): BucketStats(**b) for h, b in counters.get('by_hour', {}).items()}
