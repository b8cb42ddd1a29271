"""
monitoring/live_simulator.py - Live paper-trading simulator

Feeds real-time prices (or bars) through the same PositionManager used by
the batch engine, with the live preset: 10x leverage, percentage exits
(trailing, emergency, staleness) and signal reversals.

Concurrency model:
- One asyncio.Queue and one worker task per instrument, so updates for an
  instrument are applied strictly in arrival order.
- A per-instrument asyncio.Lock serializes direct process_update() calls
  with the worker.
- PositionManager steps are synchronous, so updates for different
  instruments never interleave inside a step.

State can be persisted to a ResultStore after every trade and restored on
start().
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from config import SimConfig
from core.contracts import Candle, ClosedTrade, ExitReason, Position, Signal, as_utc
from core.exceptions import PersistenceError
from backtesting.equity import EquityTracker
from backtesting.position_manager import PositionManager, SimulationContext, StepOutcome
from backtesting.settings import SimulationSettings
from data.result_store import LiveStateRecord, ResultStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MarketUpdate:
    """One price or bar for one instrument, optionally with a signal."""
    instrument: str
    candle: Candle
    signal: Optional[Signal] = None


class LiveSimulator:
    """
    Paper-trading account driven by a stream of market updates.

    ``signal_source`` is optional: when an update arrives without a signal
    the source is called with the instrument's recent bars. It may be a
    plain function or a coroutine function.

    All times are held as aware UTC. Naive candle times and clock readings
    are read as UTC, so callers may feed either.
    """

    def __init__(
        self,
        settings: Optional[SimulationSettings] = None,
        signal_source: Optional[Callable[..., Any]] = None,
        store: Optional[ResultStore] = None,
        lookback_window: int = SimConfig.LOOKBACK_WINDOW,
        clock: Callable[[], datetime] = utc_now,
        autosave: bool = True,
    ):
        self.settings = settings or SimulationSettings.live()
        self.settings.validate()
        self.signal_source = signal_source
        self.store = store
        self.lookback_window = lookback_window
        self.clock = clock
        self.autosave = autosave

        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._running = False
        self._reset_state()

    def _reset_state(self) -> None:
        self.context = SimulationContext.create(self.settings)
        self.manager = PositionManager(self.context)
        self.history: Dict[str, Deque[Candle]] = {}
        self.started_at = self._now()
        self.max_drawdown = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, restore: bool = True) -> None:
        """Start accepting updates, resuming saved state when available."""
        if self._running:
            return
        if restore and self.store is not None:
            record = await asyncio.to_thread(self.store.load_state)
            if record is not None:
                self._restore(record)
        self._running = True
        logger.info(
            "event=live_started balance=%.2f positions=%d leverage=%.1f",
            self.context.capital, len(self.context.positions), self.settings.leverage,
        )

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers (after draining queued updates) and save state."""
        if drain:
            await self.join()
        self._running = False
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        for task in workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers.clear()
        self._queues.clear()
        await self._save_state_async()
        logger.info(
            "event=live_stopped balance=%.2f positions=%d trades=%d",
            self.context.capital, len(self.context.positions), self.context.statistics.total_trades,
        )

    async def reset(self) -> None:
        """Discard every position and statistic and start a fresh account."""
        for lock in list(self._locks.values()):
            await lock.acquire()
        try:
            self._reset_state()
        finally:
            for lock in list(self._locks.values()):
                lock.release()
        await self._save_state_async()
        logger.info("event=live_reset balance=%.2f", self.context.capital)

    async def join(self) -> None:
        """Wait until every queued update has been processed."""
        for queue in list(self._queues.values()):
            await queue.join()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def submit(
        self,
        instrument: str,
        price: Union[float, Candle],
        signal: Optional[Signal] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Queue an update for the instrument's worker."""
        if not self._running:
            raise RuntimeError("LiveSimulator is not running; call start() first")
        update = MarketUpdate(instrument, self._as_candle(price, timestamp), signal)
        queue = self._queues.get(instrument)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[instrument] = queue
            self._workers[instrument] = asyncio.create_task(self._worker(instrument, queue))
        await queue.put(update)

    async def on_tick(
        self,
        instrument: str,
        price: Union[float, Candle],
        signal: Optional[Signal] = None,
        timestamp: Optional[datetime] = None,
    ) -> StepOutcome:
        """Apply one update immediately and return what it did."""
        return await self.process_update(
            MarketUpdate(instrument, self._as_candle(price, timestamp), signal)
        )

    async def process_update(self, update: MarketUpdate) -> StepOutcome:
        update = replace(update, candle=update.candle.as_utc())
        lock = self._locks.setdefault(update.instrument, asyncio.Lock())
        async with lock:
            history = self.history.setdefault(
                update.instrument, deque(maxlen=max(1, self.lookback_window + 1))
            )
            history.append(update.candle)

            signal = update.signal
            if signal is None and self.signal_source is not None:
                signal = await self._generate_signal(list(history))

            outcome = self.manager.advance(update.instrument, update.candle, signal)
            self._update_drawdown()

        if outcome.closed or outcome.opened is not None:
            await self._save_state_async()
        return outcome

    async def close_all(self, reason: ExitReason = ExitReason.END_OF_RUN) -> List[ClosedTrade]:
        """Close every open position at its last mark."""
        closed = self.manager.close_all(reason, self._now())
        self.context.equity.record(self.context.unrealized_pnl())
        self._update_drawdown()
        if closed:
            await self._save_state_async()
        return closed

    async def _worker(self, instrument: str, queue: asyncio.Queue) -> None:
        try:
            while True:
                update = await queue.get()
                try:
                    await self.process_update(update)
                except Exception as e:
                    logger.error(
                        "event=live_update_failed instrument=%s error=%s", instrument, e, exc_info=True
                    )
                finally:
                    queue.task_done()
        except asyncio.CancelledError:
            pass

    async def _generate_signal(self, lookback: List[Candle]) -> Optional[Signal]:
        source = self.signal_source
        generate = getattr(source, 'generate', source)
        result = generate(lookback)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _as_candle(self, price: Union[float, Candle], timestamp: Optional[datetime]) -> Candle:
        if isinstance(price, Candle):
            return price
        if price is None or float(price) <= 0:
            raise ValueError(f"Price must be positive, got {price!r}")
        return Candle.from_price(price, timestamp or self._now())

    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _update_drawdown(self) -> None:
        equity = self.context.equity
        current = equity.capital + self.context.unrealized_pnl()
        if equity.peak_equity > 0:
            drawdown = (equity.peak_equity - current) / equity.peak_equity * 100
            self.max_drawdown = max(self.max_drawdown, drawdown)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Point-in-time account snapshot."""
        ctx = self.context
        stats = ctx.statistics
        now = self._now()
        initial = self.settings.initial_capital
        balance = ctx.capital
        unrealized = ctx.unrealized_pnl()
        runtime_seconds = max((now - self.started_at).total_seconds(), 0.0)
        runtime_days = runtime_seconds / SECONDS_PER_DAY

        positions = []
        for position in ctx.open_positions():
            positions.append({
                'id': position.id,
                'instrument': position.instrument,
                'direction': position.direction.value,
                'entry_price': position.entry_price,
                'current_price': position.current_price,
                'stop_loss': position.stop_loss,
                'take_profit': position.take_profit,
                'capital_at_risk': round(position.capital_at_risk, 2),
                'quantity': position.quantity,
                'notional': round(position.notional, 2),
                'pnl_percent': round(position.pnl_percent(position.current_price), 2),
                'unrealized_pnl': round(position.unrealized_pnl, 2),
                'hold_seconds': max((now - position.entry_time).total_seconds(), 0.0),
            })

        summary = stats.summary()
        summary['max_drawdown'] = round(self.max_drawdown, 2)
        summary['trades_per_day'] = round(stats.total_trades / runtime_days, 2) if runtime_days > 0 else 0.0

        return {
            'running': self._running,
            'balance': round(balance, 2),
            'initial_balance': initial,
            'equity': round(balance + unrealized, 2),
            'unrealized_pnl': round(unrealized, 2),
            'total_return': round((balance - initial) / initial * 100, 2),
            'open_positions': positions,
            'stats': summary,
            'by_direction': stats.direction_summary(),
            'best_hours': stats.best_hours(),
            'worst_hours': stats.worst_hours(),
            'recent_trades': [t.to_dict() for t in stats.recent],
            'started_at': self.started_at.isoformat(),
            'runtime_hours': round(runtime_seconds / 3600, 2),
            'settings': self.settings.to_dict(),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_record(self) -> LiveStateRecord:
        ctx = self.context
        return LiveStateRecord(
            balance=ctx.capital,
            initial_balance=self.settings.initial_capital,
            started_at=self.started_at.isoformat(),
            next_position_id=ctx.next_position_id,
            peak_balance=ctx.equity.peak_equity,
            max_drawdown=self.max_drawdown,
            positions=[p.to_dict() for p in ctx.open_positions()],
            stats=ctx.statistics.counters(),
            recent_trades=[t.to_dict() for t in ctx.statistics.recent],
        )

    def _restore(self, record: LiveStateRecord) -> None:
        ctx = self.context
        ctx.equity = EquityTracker.resume(record.initial_balance, record.balance, record.peak_balance)
        ctx.statistics.restore(record.stats)
        ctx.statistics.recent.clear()
        ctx.statistics.recent.extend(ClosedTrade.from_dict(t) for t in record.recent_trades)
        ctx.positions = {}
        for data in record.positions:
            position = Position.from_dict(data)
            position.entry_time = as_utc(position.entry_time)
            ctx.positions[position.id] = position
        ctx.next_position_id = max(
            [record.next_position_id] + [p.id + 1 for p in ctx.positions.values()]
        )
        if record.started_at:
            self.started_at = as_utc(datetime.fromisoformat(record.started_at))
        self.max_drawdown = record.max_drawdown

    def _write_state(self, record: LiveStateRecord) -> None:
        try:
            self.store.save_state(record)
        except PersistenceError as e:
            logger.warning("event=state_save_failed error=%s", e)

    async def _save_state_async(self) -> None:
        if self.store is None or not self.autosave:
            return
        await asyncio.to_thread(self._write_state, self.to_record())
