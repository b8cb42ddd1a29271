"""
data/result_store.py
JSON persistence for run results and live paper-trading state.

The simulation core never writes files itself: it hands an immutable
RunResult to a ResultStore. Save failures raise PersistenceError so the
caller can log them and still return the computed result.
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from config import SimConfig
from core.contracts import RunResult
from core.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class BacktestHistoryItem(BaseModel):
    """Summary view of one persisted run."""

    filename: str
    strategy: str = "default"
    timestamp: Optional[str] = None
    summary: Dict[str, Any] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class LiveStateRecord(BaseModel):
    """Persisted live simulator state."""

    balance: float
    initial_balance: float
    started_at: Optional[str] = None
    next_position_id: int = 1
    peak_balance: float = 0.0
    max_drawdown: float = 0.0
    positions: List[Dict[str, Any]] = Field(default_factory=list)
    stats: Dict[str, Any] = Field(default_factory=dict)
    recent_trades: List[Dict[str, Any]] = Field(default_factory=list)
    saved_at: Optional[str] = None


class ResultStore:
    """
    File-backed store.

    Results go to ``results_dir/backtest_<utc timestamp>_<strategy>.json`` so
    that lexical order is chronological.
    """

    def __init__(
        self,
        results_dir: Path = SimConfig.RESULTS_DIR,
        state_file: Path = SimConfig.LIVE_STATE_FILE,
        history_limit: int = SimConfig.HISTORY_LIMIT,
    ):
        self.results_dir = Path(results_dir)
        self.state_file = Path(state_file)
        self.history_limit = history_limit

    # ------------------------------------------------------------------
    # Run results
    # ------------------------------------------------------------------

    def save(self, result: RunResult, strategy_name: str = "default") -> Path:
        stamp = result.timestamp.strftime("%Y%m%dT%H%M%S%f")
        safe_name = "".join(c if c.isalnum() or c in "-_" else "_" for c in strategy_name) or "default"
        path = self.results_dir / f"backtest_{stamp}_{safe_name}.json"
        payload = result.to_dict()
        payload['strategy'] = strategy_name
        try:
            self.results_dir.mkdir(parents=True, exist_ok=True)
            with open(path, 'w') as f:
                json.dump(payload, f, indent=2, default=str)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not save results: {e}", str(path), e) from e
        logger.info("event=result_saved path=%s strategy=%s", path, strategy_name)
        return path

    def load_history(self, limit: Optional[int] = None) -> List[BacktestHistoryItem]:
        """Summaries of the most recent persisted runs, oldest first."""
        limit = self.history_limit if limit is None else limit
        if not self.results_dir.exists():
            return []

        files = sorted(self.results_dir.glob("backtest_*.json"))[-limit:] if limit > 0 else []
        history = []
        for path in files:
            try:
                with open(path, 'r') as f:
                    data = json.load(f)
                history.append(BacktestHistoryItem(
                    filename=path.name,
                    strategy=data.get('strategy') or "default",
                    timestamp=data.get('timestamp'),
                    summary=data.get('summary') or {},
                    settings=data.get('settings') or {},
                    error=data.get('error'),
                ))
            except (OSError, ValueError, ValidationError) as e:
                logger.warning("event=history_skip file=%s error=%s", path.name, e)
        return history

    # ------------------------------------------------------------------
    # Live state
    # ------------------------------------------------------------------

    def save_state(self, state: LiveStateRecord) -> Path:
        record = state.model_copy(update={'saved_at': datetime.now(timezone.utc).isoformat()})
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
            with open(tmp, 'w') as f:
                json.dump(record.model_dump(mode="json"), f, indent=2)
            tmp.replace(self.state_file)
        except OSError as e:
            raise PersistenceError(f"Could not save live state: {e}", str(self.state_file), e) from e
        logger.debug("event=state_saved path=%s balance=%.2f", self.state_file, record.balance)
        return self.state_file

    def load_state(self) -> Optional[LiveStateRecord]:
        """Last saved live state, or None when missing or unreadable."""
        if not self.state_file.exists():
            return None
        try:
            with open(self.state_file, 'r') as f:
                record = LiveStateRecord.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("event=state_load_failed path=%s error=%s", self.state_file, e)
            return None
        logger.info("event=state_loaded balance=%.2f positions=%d", record.balance, len(record.positions))
        return record
