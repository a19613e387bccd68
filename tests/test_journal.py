"""
Test the trade journal.

Run with: python -m pytest tests/test_journal.py -v
"""

import csv
import io
from datetime import datetime

import pytest

from strategy.models import Regime, StrategyType
from validation.journal import CSV_COLUMNS, TradeJournal


@pytest.fixture
def journal(make_trade):
    return TradeJournal([
        make_trade(150.0, Regime.HIGH_CORRELATION, datetime(2021, 1, 4), 3, trade_id="trade_1"),
        make_trade(-80.0, Regime.LOW_CORRELATION, datetime(2021, 1, 20), 10, trade_id="trade_2", entry_zscore=2.1),
        make_trade(40.0, Regime.HIGH_CORRELATION, datetime(2021, 2, 8), 20, trade_id="trade_3", entry_zscore=-3.6),
    ])


class TestFilters:

    def test_by_regime_and_strategy(self, journal):
        assert len(journal.by_regime(Regime.HIGH_CORRELATION)) == 2
        assert [t.trade_id for t in journal.by_strategy(StrategyType.MOMENTUM)] == ["trade_2"]

    def test_winners_and_losers(self, journal):
        assert [t.trade_id for t in journal.winners()] == ["trade_1", "trade_3"]
        assert [t.trade_id for t in journal.losers()] == ["trade_2"]

    def test_date_range(self, journal):
        trades = journal.in_date_range(datetime(2021, 1, 10), datetime(2021, 2, 8))
        assert [t.trade_id for t in trades] == ["trade_2", "trade_3"]


class TestAnalysis:

    def test_summary(self, journal):
        summary = journal.summary_stats()
        assert summary["total_trades"] == 3
        assert summary["total_pnl"] == pytest.approx(110.0)
        assert summary["best_trade"] == 150.0
        assert summary["worst_trade"] == -80.0
        assert summary["win_rate"] == pytest.approx(200 / 3)

    def test_empty_summary(self):
        assert TradeJournal().summary_stats()["total_trades"] == 0
        assert TradeJournal().monthly_stats() == {}

    def test_patterns(self, journal):
        patterns = journal.analyze_patterns()
        assert patterns["by_regime"]["high-correlation"]["trades"] == 2
        assert patterns["by_regime"]["low-correlation"]["win_rate"] == 0.0
        assert patterns["by_holding_period"]["0-3d"]["trades"] == 1
        assert patterns["by_entry_zscore"]["3.5+"]["trades"] == 1

    def test_monthly_stats_by_exit_month(self, journal):
        monthly = journal.monthly_stats()
        assert list(monthly) == ["2021-01", "2021-02"]
        assert monthly["2021-01"]["trades"] == 2
        assert monthly["2021-02"]["total_pnl"] == pytest.approx(40.0)


class TestExport:

    def test_csv_layout(self, journal):
        rows = list(csv.reader(io.StringIO(journal.export_csv())))

        assert rows[0] == CSV_COLUMNS
        assert len(rows) == 4

        first = dict(zip(CSV_COLUMNS, rows[1]))
        assert first["Trade ID"] == "trade_1"
        assert first["Entry Date"] == "2021-01-04"
        assert first["P&L Dollar"] == "150.00"
        assert first["P&L Percent"] == "1.500"
        assert first["Entry Secondary Price"] == "49.975000"
        assert first["Entry Z-Score"] == "-2.800"
        assert first["Signal Strength"] == "0.800"
        assert first["Commission"] == "20.00"

    def test_save_csv(self, journal, tmp_path):
        path = journal.save_csv(tmp_path / "out" / "trades.csv")
        assert path.read_text().splitlines()[0].startswith("Trade ID,Entry Date")

    def test_dataframe(self, journal):
        frame = journal.to_dataframe()
        assert len(frame) == 3
        assert frame["pnl_dollar"].sum() == pytest.approx(110.0)
