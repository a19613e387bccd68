"""
TRADE JOURNAL - Ledger Analysis and Export

Keeps the closed trades of one or more backtests and answers questions
about them:
- Filters by regime, strategy, outcome and date range
- Pattern analysis (exit reasons, holding periods, entry z-scores)
- Summary and monthly statistics
- CSV export with a fixed column layout
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd
from loguru import logger

from strategy.models import Regime, StrategyType
from validation.models import Trade

CSV_COLUMNS = [
    "Trade ID",
    "Entry Date",
    "Exit Date",
    "Regime",
    "Strategy",
    "Entry Primary Price",
    "Entry Secondary Price",
    "Exit Primary Price",
    "Exit Secondary Price",
    "Primary Amount",
    "Secondary Amount",
    "Leverage",
    "Capital Allocated",
    "P&L Dollar",
    "P&L Percent",
    "Holding Period",
    "Entry Reason",
    "Exit Reason",
    "Entry Z-Score",
    "Signal Strength",
    "Commission",
    "Slippage",
]

# Decimal places per exported column; unlisted columns are written as-is
CSV_DECIMALS = {
    "Entry Primary Price": 2,
    "Entry Secondary Price": 6,
    "Exit Primary Price": 2,
    "Exit Secondary Price": 6,
    "Primary Amount": 2,
    "Secondary Amount": 2,
    "Leverage": 2,
    "Capital Allocated": 2,
    "P&L Dollar": 2,
    "P&L Percent": 3,
    "Holding Period": 2,
    "Entry Z-Score": 3,
    "Signal Strength": 3,
    "Commission": 2,
    "Slippage": 2,
}


def _fmt(value: Optional[float], decimals: int) -> str:
    if value is None:
        return ""
    return f"{value:.{decimals}f}"


def _date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


class TradeJournal:
    """Queryable ledger of trades."""

    def __init__(self, trades: Optional[Iterable[Trade]] = None):
        self._trades: List[Trade] = []
        if trades:
            self.add_trades(trades)

    def __len__(self) -> int:
        return len(self._trades)

    @property
    def trades(self) -> List[Trade]:
        return list(self._trades)

    def add_trade(self, trade: Trade) -> None:
        self._trades.append(trade)

    def add_trades(self, trades: Iterable[Trade]) -> None:
        for trade in trades:
            self.add_trade(trade)

    # ===== Filters =====

    def by_regime(self, regime: Regime) -> List[Trade]:
        return [t for t in self._trades if t.regime == regime]

    def by_strategy(self, strategy: StrategyType) -> List[Trade]:
        return [t for t in self._trades if t.strategy == strategy]

    def winners(self) -> List[Trade]:
        return [t for t in self._trades if t.pnl_dollar > 0]

    def losers(self) -> List[Trade]:
        return [t for t in self._trades if t.pnl_dollar <= 0]

    def in_date_range(self, start: datetime, end: datetime) -> List[Trade]:
        """Trades entered within [start, end]."""
        return [t for t in self._trades if start <= t.entry_date <= end]

    # ===== Analysis =====

    def summary_stats(self) -> Dict[str, Any]:
        """Headline statistics of the whole ledger."""
        if not self._trades:
            return {
                "total_trades": 0,
                "win_rate": 0.0,
                "total_pnl": 0.0,
                "avg_pnl": 0.0,
                "avg_pnl_percent": 0.0,
                "best_trade": 0.0,
                "worst_trade": 0.0,
                "avg_holding_period": 0.0,
                "total_costs": 0.0,
            }

        pnl = np.array([t.pnl_dollar for t in self._trades])
        return {
            "total_trades": len(self._trades),
            "win_rate": len(self.winners()) / len(self._trades) * 100,
            "total_pnl": float(pnl.sum()),
            "avg_pnl": float(pnl.mean()),
            "avg_pnl_percent": float(np.mean([t.pnl_percent for t in self._trades]) * 100),
            "best_trade": float(pnl.max()),
            "worst_trade": float(pnl.min()),
            "avg_holding_period": float(np.mean([t.holding_period for t in self._trades])),
            "total_costs": float(sum(t.total_costs for t in self._trades)),
        }

    def analyze_patterns(self) -> Dict[str, Any]:
        """
        Look for structure in the ledger.

        Groups outcomes by regime, exit reason, holding-period bucket and
        entry z-score bucket, so it is visible which conditions pay.
        """
        frame = self.to_dataframe()
        if frame.empty:
            return {"by_regime": {}, "by_exit_reason": {}, "by_holding_period": {}, "by_entry_zscore": {}}

        frame["win"] = frame["pnl_dollar"] > 0
        frame["holding_bucket"] = pd.cut(
            frame["holding_period"],
            bins=[-np.inf, 3, 7, 14, np.inf],
            labels=["0-3d", "3-7d", "7-14d", "14d+"],
        )
        frame["zscore_bucket"] = pd.cut(
            frame["entry_zscore"].abs(),
            bins=[-np.inf, 2.5, 3.0, 3.5, np.inf],
            labels=["<2.5", "2.5-3.0", "3.0-3.5", "3.5+"],
        )

        def grouped(column: str) -> Dict[str, Dict[str, float]]:
            stats = frame.groupby(column, observed=True).agg(
                trades=("trade_id", "count"),
                win_rate=("win", "mean"),
                avg_pnl=("pnl_dollar", "mean"),
                total_pnl=("pnl_dollar", "sum"),
            )
            stats["win_rate"] *= 100
            return {
                str(key): {k: float(v) for k, v in row.items()}
                for key, row in stats.to_dict(orient="index").items()
            }

        return {
            "by_regime": grouped("regime"),
            "by_exit_reason": grouped("exit_reason"),
            "by_holding_period": grouped("holding_bucket"),
            "by_entry_zscore": grouped("zscore_bucket"),
        }

    def monthly_stats(self) -> Dict[str, Dict[str, float]]:
        """Trade count, win rate and PnL per exit month (YYYY-MM)."""
        frame = self.to_dataframe()
        closed = frame.dropna(subset=["exit_date"]) if not frame.empty else frame
        if closed.empty:
            return {}

        months = pd.to_datetime(closed["exit_date"]).dt.to_period("M").astype(str)
        result = {}
        for month, group in closed.groupby(months, sort=True):
            result[month] = {
                "trades": int(len(group)),
                "win_rate": float((group["pnl_dollar"] > 0).mean() * 100),
                "total_pnl": float(group["pnl_dollar"].sum()),
                "avg_pnl_percent": float(group["pnl_percent"].mean() * 100),
            }
        return result

    # ===== Export =====

    def to_dataframe(self) -> pd.DataFrame:
        """One row per trade, raw values."""
        rows = [
            {
                "trade_id": t.trade_id,
                "entry_date": t.entry_date,
                "exit_date": t.exit_date,
                "regime": t.regime.value,
                "strategy": t.strategy.value,
                "entry_primary_price": t.entry_primary_price,
                "entry_secondary_price": t.entry_secondary_price,
                "exit_primary_price": t.exit_primary_price,
                "exit_secondary_price": t.exit_secondary_price,
                "primary_amount": t.primary_amount,
                "secondary_amount": t.secondary_amount,
                "leverage": t.leverage,
                "capital_allocated": t.capital_allocated,
                "pnl_dollar": t.pnl_dollar,
                "pnl_percent": t.pnl_percent,
                "holding_period": t.holding_period,
                "entry_reason": t.entry_reason,
                "exit_reason": t.exit_reason,
                "entry_zscore": t.entry_zscore,
                "signal_strength": t.entry_signal_strength,
                "commission": t.total_commission,
                "slippage": t.total_slippage,
            }
            for t in self._trades
        ]
        return pd.DataFrame(rows)

    def _export_frame(self) -> pd.DataFrame:
        rows = []
        for t in self._trades:
            raw = [
                t.trade_id,
                _date(t.entry_date),
                _date(t.exit_date),
                t.regime.value,
                t.strategy.value,
                t.entry_primary_price,
                t.entry_secondary_price,
                t.exit_primary_price,
                t.exit_secondary_price,
                t.primary_amount,
                t.secondary_amount,
                t.leverage,
                t.capital_allocated,
                t.pnl_dollar,
                t.pnl_percent * 100,
                t.holding_period,
                t.entry_reason,
                t.exit_reason or "",
                t.entry_zscore,
                t.entry_signal_strength,
                t.total_commission,
                t.total_slippage,
            ]
            rows.append([
                _fmt(value, CSV_DECIMALS[column]) if column in CSV_DECIMALS else value
                for column, value in zip(CSV_COLUMNS, raw)
            ])
        return pd.DataFrame(rows, columns=CSV_COLUMNS)

    def export_csv(self) -> str:
        """The ledger as CSV text, header included."""
        return self._export_frame().to_csv(index=False)

    def save_csv(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.export_csv())
        logger.info(f"Exported {len(self._trades)} trades to {path}")
        return path
