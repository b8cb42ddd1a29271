"""
tests/test_result_store.py - JSON persistence of results and live state
"""

import json
import time

import pytest

from core.contracts import RunResult
from core.exceptions import PersistenceError
from data.result_store import LiveStateRecord, ResultStore
from backtesting.backtest_engine import BacktestEngine


@pytest.fixture
def store(tmp_path):
    return ResultStore(results_dir=tmp_path / "backtests", state_file=tmp_path / "state" / "live.json")


class TestResults:

    def test_save_writes_summary_and_samples(self, store, uptrend_candles, long_signal_source):
        result = BacktestEngine().run(uptrend_candles, long_signal_source)
        path = store.save(result, "trend follower")

        assert path.name.startswith("backtest_")
        assert path.name.endswith("_trend_follower.json")
        data = json.loads(path.read_text())
        assert data['strategy'] == "trend follower"
        assert data['summary']['total_trades'] == result.summary['total_trades']
        assert len(data['trades']) == len(result.sampled_trades)
        assert data['error'] is None

    def test_history_is_chronological_and_limited(self, store):
        for name in ("a", "b", "c"):
            store.save(RunResult.insufficient_data({'strategy': name}), name)
            time.sleep(0.001)

        history = store.load_history(limit=2)
        assert [h.strategy for h in history] == ["b", "c"]
        assert history[-1].error == "insufficient data"

    def test_history_skips_unreadable_files(self, store):
        store.save(RunResult.insufficient_data(), "ok")
        (store.results_dir / "backtest_99999999T999999999999_bad.json").write_text("{not json")
        history = store.load_history()
        assert [h.strategy for h in history] == ["ok"]

    def test_history_without_directory(self, store):
        assert store.load_history() == []

    def test_unwritable_directory_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        store = ResultStore(results_dir=blocker)
        with pytest.raises(PersistenceError):
            store.save(RunResult.insufficient_data(), "x")


class TestLiveState:

    def test_round_trip(self, store):
        record = LiveStateRecord(
            balance=10_250.5,
            initial_balance=10_000,
            next_position_id=4,
            peak_balance=10_400,
            positions=[{'id': 3, 'instrument': "BTCUSDT"}],
            stats={'total_trades': 3},
        )
        store.save_state(record)
        loaded = store.load_state()
        assert loaded.balance == 10_250.5
        assert loaded.next_position_id == 4
        assert loaded.positions == record.positions
        assert loaded.saved_at is not None
        assert not store.state_file.with_suffix(".json.tmp").exists()

    def test_missing_state(self, store):
        assert store.load_state() is None

    def test_corrupt_state(self, store):
        store.state_file.parent.mkdir(parents=True)
        store.state_file.write_text('{"balance": "lots"}')
        assert store.load_state() is None
