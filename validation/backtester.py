"""
BACKTESTER - Day-by-Day Pairs Trading Simulation

Simulates the regime-adaptive pairs strategy on historical prices.

Backtest Flow:
1. Validate the market data (fatal on any problem)
2. Run the analysis pipeline once: cointegration, log spread,
   rolling z-score, rolling return correlation
3. For each simulated day:
   a. Build the day context (z-score, correlation, volatility, regime)
   b. Mark every open trade to market
   c. Check exit rules, then close the matched trades
   d. Generate a signal and open a trade on entry
   e. Record an equity point
4. Force-close whatever is still open on the last day
5. Calculate performance metrics

Realistic Assumptions:
- Slippage on every fill price plus slippage and commission costs
  charged as fractions of allocated capital
- No look-ahead past end_date; rows before start_date are warm-up only
- Cash pays costs; gross PnL settles into cash when a trade closes
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np
from loguru import logger

from config.loader import BacktestConfiguration, RiskParameters, StrategyParameters
from core import stats
from core.events import Event, EventDispatcher, EventType, Listener
from core.invariants import INVARIANTS, InsufficientDataError, ValidationError
from perception.market_data import MarketData
from portfolio.sizer import PortfolioSnapshot, PositionSizer, RegimePerformance
from strategy.cointegration import engle_granger_test
from strategy.models import (
    REGIME_STRATEGY,
    CointegrationResult,
    Regime,
    RegimeState,
    SignalType,
    StrategyType,
    TradingSignal,
)
from strategy.regime import classify_regime, regime_transitions
from strategy.signals import SignalGenerator
from strategy.zscore import calculate_spread, rolling_zscore
from validation.metrics import PerformanceCalculator
from validation.models import (
    BacktestResult,
    EquityPoint,
    ExecutionSide,
    ExitReason,
    Trade,
    TradeExecution,
    TradeStatus,
)

SPREAD_METHOD = "log"
MIN_TRADES_FOR_KELLY = 10


@dataclass(frozen=True)
class DailyContext:
    """Everything the engine knows about one simulated day."""
    index: int
    date: datetime
    primary_price: float
    secondary_price: float
    zscore: float
    correlation: float
    volatility: float
    regime: RegimeState


class BacktestingEngine:
    """
    Pairs trading backtest engine.

    One instance owns the state of one run at a time. Concurrent runs need
    separate instances.
    """

    SOURCE = "backtester"

    def __init__(
        self,
        config: BacktestConfiguration,
        strategy_params: StrategyParameters,
        risk_params: RiskParameters,
        dispatcher: Optional[EventDispatcher] = None,
        quiet: bool = False
    ):
        self.config = config
        self.strategy_params = strategy_params
        self.risk_params = risk_params
        self.dispatcher = dispatcher or EventDispatcher()
        self._log_level = "DEBUG" if quiet else "INFO"

        self.signal_generator = SignalGenerator(strategy_params)
        self.sizer = PositionSizer(risk_params, strategy_params)
        self.calculator = PerformanceCalculator(config.risk_free_rate)

        self.reset()

    def subscribe(self, listener: Listener, event_type: Optional[EventType] = None) -> None:
        self.dispatcher.subscribe(listener, event_type)

    def reset(self) -> None:
        """Reset state for a new run."""
        self._cash = self.config.initial_capital
        self._active: Dict[str, Trade] = {}
        self._closed: List[Trade] = []
        self._equity_curve: List[EquityPoint] = []
        self._peak_equity = self.config.initial_capital
        self._previous_signal: Optional[TradingSignal] = None
        self._trade_counter = 0
        self._days_simulated = 0

    # ===== State =====

    @property
    def cash(self) -> float:
        return self._cash

    @property
    def open_trades(self) -> List[Trade]:
        return list(self._active.values())

    @property
    def closed_trades(self) -> List[Trade]:
        return list(self._closed)

    @property
    def equity_curve(self) -> List[EquityPoint]:
        return list(self._equity_curve)

    def _allocated_capital(self) -> float:
        return sum(t.capital_allocated for t in self._active.values())

    def _unrealized_pnl(self, ctx: DailyContext) -> float:
        return sum(t.gross_pnl(ctx.primary_price, ctx.secondary_price) for t in self._active.values())

    def _event(self, event_type: EventType, ctx: Optional[DailyContext], **payload) -> Event:
        return Event(event_type=event_type, date=ctx.date if ctx else None, source=self.SOURCE, payload=payload)

    # ===== Preparation =====

    def validate(self, market_data: MarketData) -> Tuple[MarketData, int]:
        """
        Check the data and locate the first simulated day.

        Returns the data trimmed to end_date and the index of the first
        simulated day. Raises ValidationError on any problem.
        """
        data = market_data.until(self.config.end_date)
        data.validate()

        window = self.strategy_params.correlation_window
        required = window + INVARIANTS.WARMUP_BUFFER
        if len(data) < required:
            raise InsufficientDataError(
                f"Need at least {required} days (correlation window {window} + {INVARIANTS.WARMUP_BUFFER}), got {len(data)}"
            )

        first_index = window
        if self.config.start_date is not None:
            first_trading = next((i for i, d in enumerate(data.dates) if d >= self.config.start_date), len(data))
            first_index = max(first_index, first_trading)
        if first_index >= len(data):
            raise ValidationError("No trading days between start_date and end_date after warm-up")

        return data, first_index

    def prepare(self, market_data: MarketData) -> Tuple[MarketData, List[DailyContext], CointegrationResult]:
        """Validate, run the analysis pipeline and build one context per simulated day."""
        data, first_index = self.validate(market_data)
        window = self.strategy_params.correlation_window

        log_primary = np.log(data.primary_prices)
        log_secondary = np.log(data.secondary_prices)
        try:
            cointegration = engle_granger_test(log_primary, log_secondary)
        except ValueError as e:
            raise ValidationError(f"Cointegration analysis failed: {e}") from e

        if not cointegration.is_cointegrated:
            logger.warning(
                f"Pair is not cointegrated (ADF {cointegration.test_statistic:.2f}, p={cointegration.p_value}) "
                f"- continuing with hedge ratio {cointegration.hedge_ratio:.4f}"
            )

        spread = calculate_spread(data.primary_prices, data.secondary_prices, cointegration.hedge_ratio, SPREAD_METHOD)
        zscores = rolling_zscore(spread, window)

        # correlation k covers returns into days k+1 .. k+window
        primary_returns = data.primary_returns[1:]
        secondary_returns = data.secondary_returns[1:]
        correlations = stats.rolling_correlation(primary_returns, secondary_returns, window)

        contexts = []
        lookback = self.config.lookback_window
        for i in range(first_index, len(data)):
            recent = data.primary_returns[max(1, i - lookback + 1):i + 1]
            volatility = stats.calculate_volatility(recent) if len(recent) > 0 else INVARIANTS.DEFAULT_VOLATILITY
            correlation = float(correlations[i - window])
            contexts.append(DailyContext(
                index=i,
                date=data.dates[i],
                primary_price=float(data.primary_prices[i]),
                secondary_price=float(data.secondary_prices[i]),
                zscore=zscores[i - window + 1].zscore,
                correlation=correlation,
                volatility=volatility,
                regime=classify_regime(
                    correlation,
                    self.strategy_params.high_correlation_threshold,
                    self.strategy_params.low_correlation_threshold,
                    volatility,
                ),
            ))

        return data, contexts, cointegration

    # ===== Simulation =====

    def run_backtest(self, market_data: MarketData) -> BacktestResult:
        """
        Run a full backtest.

        Raises:
            ValidationError: if the data cannot support a run
        """
        data, contexts, cointegration = self.prepare(market_data)
        self.reset()

        logger.debug(
            f"Starting backtest: {len(contexts)} days from {contexts[0].date.date()} "
            f"to {contexts[-1].date.date()}, hedge ratio {cointegration.hedge_ratio:.4f}"
        )
        self.dispatcher.dispatch([self._event(
            EventType.BACKTEST_STARTED, contexts[0],
            days=len(contexts), hedge_ratio=cointegration.hedge_ratio,
        )])

        for ctx in contexts:
            self.dispatcher.dispatch(self.step(ctx))
        self.dispatcher.dispatch(self.finalize(contexts[-1]))

        result = self._build_result(data, contexts, cointegration)

        self.dispatcher.dispatch([self._event(
            EventType.BACKTEST_COMPLETED, contexts[-1],
            total_return=result.metrics.total_return,
            sharpe_ratio=result.metrics.sharpe_ratio,
            total_trades=result.metrics.total_trades,
        )])
        logger.log(
            self._log_level,
            f"Backtest complete: Return {result.metrics.total_return:.2f}%, "
            f"Sharpe {result.metrics.sharpe_ratio:.2f}, MaxDD {result.metrics.max_drawdown:.2f}%, "
            f"Trades {result.metrics.total_trades}"
        )
        return result

    def step(self, ctx: DailyContext) -> List[Event]:
        """Advance the simulation by one day and return the events it produced."""
        events: List[Event] = []

        for trade in self._active.values():
            self._mark_to_market(trade, ctx)

        # mark, then remove: exit checks never see a half-updated book
        to_close = []
        for trade_id, trade in self._active.items():
            reason = self._exit_reason(trade, ctx)
            if reason is not None:
                to_close.append((trade_id, reason))

        for trade_id, reason in to_close:
            events.extend(self._close(trade_id, ctx, reason))

        signal = self.signal_generator.generate(
            ctx.zscore, ctx.regime, ctx.correlation, ctx.volatility,
            previous_signal=self._previous_signal, date=ctx.date,
        )
        self._previous_signal = signal
        if signal.is_actionable:
            events.append(self._event(EventType.SIGNAL_GENERATED, ctx, **signal.to_dict()))

        if signal.signal_type == SignalType.ENTRY:
            events.extend(self._try_entry(signal, ctx))

        self._days_simulated += 1
        if self._active and self._days_simulated % self.config.rebalance_frequency == 0:
            events.append(self._rebalance_check(ctx))

        self._record_equity(ctx)
        return events

    def finalize(self, ctx: DailyContext) -> List[Event]:
        """
        Close every remaining open trade at the last day's prices.

        A trade whose normal exit fails is settled at the unslipped close
        without exit costs, so every opened trade reaches the ledger.
        """
        events: List[Event] = []
        for trade_id in list(self._active):
            events.extend(self._close(trade_id, ctx, ExitReason.BACKTEST_END))
            if trade_id in self._active:
                events.append(self._settle_at_close(trade_id, ctx))
        return events

    # ===== Trade Lifecycle =====

    def _mark_to_market(self, trade: Trade, ctx: DailyContext) -> None:
        gross = trade.gross_pnl(ctx.primary_price, ctx.secondary_price)
        trade.pnl_dollar = gross - trade.total_costs
        trade.pnl_percent = trade.pnl_dollar / trade.capital_allocated
        trade.holding_period = (ctx.date - trade.entry_date).total_seconds() / 86400
        trade.max_favorable_excursion = max(trade.max_favorable_excursion, trade.pnl_percent)
        trade.max_adverse_excursion = min(trade.max_adverse_excursion, trade.pnl_percent)

    def _exit_reason(self, trade: Trade, ctx: DailyContext) -> Optional[ExitReason]:
        """First matching exit rule, or None to keep the trade open."""
        if trade.holding_period > INVARIANTS.MAX_HOLDING_DAYS:
            return ExitReason.MAX_HOLDING_PERIOD
        if trade.pnl_percent < -INVARIANTS.STOP_LOSS_PCT:
            return ExitReason.STOP_LOSS
        if trade.pnl_percent > INVARIANTS.PROFIT_TARGET_PCT:
            return ExitReason.PROFIT_TARGET
        if trade.strategy == StrategyType.MEAN_REVERSION and abs(ctx.zscore) < self.strategy_params.zscore_exit_threshold:
            return ExitReason.MEAN_REVERSION_TARGET
        if trade.strategy == StrategyType.MOMENTUM and ctx.zscore * trade.entry_zscore < 0:
            return ExitReason.MOMENTUM_REVERSAL
        return None

    def _slipped(self, price: float, buying: bool) -> float:
        slippage = price * self.config.slippage
        return price + slippage if buying else price - slippage

    def _try_entry(self, signal: TradingSignal, ctx: DailyContext) -> List[Event]:
        if len(self._active) >= self.config.max_positions:
            return [self._event(EventType.ENTRY_SKIPPED, ctx, reason="max_positions", open_positions=len(self._active))]

        try:
            trade = self._execute_entry(signal, ctx)
        except Exception as e:
            logger.error(f"Entry execution failed on {ctx.date.date()}: {e}")
            return [self._event(EventType.EXECUTION_FAILED, ctx, side=ExecutionSide.ENTRY.value, error=str(e))]

        if trade is None:
            return [self._event(EventType.ENTRY_SKIPPED, ctx, reason="insufficient_capital")]
        return [self._event(EventType.POSITION_OPENED, ctx, **trade.to_dict())]

    def _execute_entry(self, signal: TradingSignal, ctx: DailyContext) -> Optional[Trade]:
        """Size and open a trade. Returns None if the allocation is too small."""
        allocated = self._allocated_capital()
        snapshot = PortfolioSnapshot(
            total_capital=self._cash + self._unrealized_pnl(ctx),
            available_cash=self._cash - allocated,
            allocated_capital=allocated,
            equity_history=[p.equity for p in self._equity_curve],
        )
        position = self.sizer.size(signal, snapshot, self._regime_performance())

        if position.capital_allocated < INVARIANTS.MIN_TRADE_CAPITAL:
            logger.debug(f"Skipping entry on {ctx.date.date()}: allocation {position.capital_allocated:.2f} too small")
            return None

        primary_price = self._slipped(ctx.primary_price, buying=position.primary_amount > 0)
        secondary_price = self._slipped(ctx.secondary_price, buying=position.secondary_amount > 0)
        commission = position.capital_allocated * self.config.commission
        slippage_cost = position.capital_allocated * self.config.slippage

        self._trade_counter += 1
        trade_id = f"trade_{self._trade_counter}"
        reason = f"{signal.regime.value} regime entry (z-score: {ctx.zscore:.2f})"

        execution = TradeExecution(
            execution_id=f"{trade_id}_entry",
            date=ctx.date,
            side=ExecutionSide.ENTRY,
            direction=signal.direction,
            primary_price=primary_price,
            secondary_price=secondary_price,
            primary_amount=position.primary_amount,
            secondary_amount=position.secondary_amount,
            leverage=position.leverage,
            commission=commission,
            slippage=slippage_cost,
            reason=reason,
            signal_strength=signal.strength,
            regime=signal.regime,
        )
        trade = Trade(
            trade_id=trade_id,
            entry_execution=execution,
            regime=signal.regime,
            strategy=REGIME_STRATEGY[signal.regime],
            entry_date=ctx.date,
            entry_primary_price=primary_price,
            entry_secondary_price=secondary_price,
            entry_zscore=ctx.zscore,
            entry_signal_strength=signal.strength,
            entry_reason=reason,
            primary_amount=position.primary_amount,
            secondary_amount=position.secondary_amount,
            leverage=position.leverage,
            capital_allocated=position.capital_allocated,
            total_commission=commission,
            total_slippage=slippage_cost,
        )

        self._cash -= commission + slippage_cost
        self._mark_to_market(trade, ctx)
        self._active[trade_id] = trade

        logger.debug(
            f"Opened {trade_id} on {ctx.date.date()}: {signal.direction.value}, "
            f"capital {position.capital_allocated:.2f}, leverage {position.leverage:.2f}"
        )
        return trade

    def _close(self, trade_id: str, ctx: DailyContext, reason: ExitReason) -> List[Event]:
        trade = self._active[trade_id]
        try:
            self._execute_exit(trade, ctx, reason)
        except Exception as e:
            logger.error(f"Exit execution failed for {trade_id} on {ctx.date.date()}: {e}")
            return [self._event(EventType.EXECUTION_FAILED, ctx, side=ExecutionSide.EXIT.value, trade_id=trade_id, error=str(e))]

        del self._active[trade_id]
        self._closed.append(trade)
        return [self._event(EventType.POSITION_CLOSED, ctx, **trade.to_dict())]

    def _settle_at_close(self, trade_id: str, ctx: DailyContext) -> Event:
        trade = self._active[trade_id]
        logger.warning(f"Settling {trade_id} at the close of {ctx.date.date()} without exit costs")
        self._settle(trade, ctx, ExitReason.BACKTEST_END, ctx.primary_price, ctx.secondary_price, 0.0, 0.0)
        del self._active[trade_id]
        self._closed.append(trade)
        return self._event(EventType.POSITION_CLOSED, ctx, **trade.to_dict())

    def _execute_exit(self, trade: Trade, ctx: DailyContext, reason: ExitReason) -> None:
        # closing a long leg sells, closing a short leg buys
        primary_price = self._slipped(ctx.primary_price, buying=trade.primary_amount < 0)
        secondary_price = self._slipped(ctx.secondary_price, buying=trade.secondary_amount < 0)
        commission = trade.capital_allocated * self.config.commission
        slippage_cost = trade.capital_allocated * self.config.slippage
        self._settle(trade, ctx, reason, primary_price, secondary_price, commission, slippage_cost)

    def _settle(
        self,
        trade: Trade,
        ctx: DailyContext,
        reason: ExitReason,
        primary_price: float,
        secondary_price: float,
        commission: float,
        slippage_cost: float
    ) -> None:
        """Record the exit fill on the trade and move gross PnL net of exit costs into cash."""
        gross = trade.gross_pnl(primary_price, secondary_price)

        trade.exit_execution = TradeExecution(
            execution_id=f"{trade.trade_id}_exit",
            date=ctx.date,
            side=ExecutionSide.EXIT,
            direction=trade.entry_execution.direction,
            primary_price=primary_price,
            secondary_price=secondary_price,
            primary_amount=-trade.primary_amount,
            secondary_amount=-trade.secondary_amount,
            leverage=trade.leverage,
            commission=commission,
            slippage=slippage_cost,
            reason=reason.value,
            signal_strength=trade.entry_signal_strength,
            regime=ctx.regime.current,
        )
        trade.total_commission += commission
        trade.total_slippage += slippage_cost
        trade.pnl_dollar = gross - trade.total_costs
        trade.pnl_percent = trade.pnl_dollar / trade.capital_allocated
        trade.holding_period = (ctx.date - trade.entry_date).total_seconds() / 86400
        trade.max_favorable_excursion = max(trade.max_favorable_excursion, trade.pnl_percent)
        trade.max_adverse_excursion = min(trade.max_adverse_excursion, trade.pnl_percent)
        trade.exit_date = ctx.date
        trade.exit_primary_price = primary_price
        trade.exit_secondary_price = secondary_price
        trade.exit_zscore = ctx.zscore
        trade.exit_reason = reason.value
        trade.status = TradeStatus.CLOSED

        self._cash += gross - commission - slippage_cost

        logger.debug(
            f"Closed {trade.trade_id} on {ctx.date.date()} ({reason.value}): "
            f"PnL {trade.pnl_dollar:.2f} ({trade.pnl_percent:.2%})"
        )

    def _rebalance_check(self, ctx: DailyContext) -> Event:
        """Suggest leg adjustments for open trades whose notionals drifted from target."""
        adjustments = {}
        for trade in self._active.values():
            current_primary = trade.primary_amount * ctx.primary_price / trade.entry_primary_price
            current_secondary = trade.secondary_amount * ctx.secondary_price / trade.entry_secondary_price
            adjustments[trade.trade_id] = {
                "primary": self.sizer.rebalance_size(current_primary, trade.primary_amount),
                "secondary": self.sizer.rebalance_size(current_secondary, trade.secondary_amount),
            }
        return self._event(EventType.REBALANCE_CHECK, ctx, adjustments=adjustments)

    def _regime_performance(self) -> Dict[Regime, RegimePerformance]:
        """Closed-trade statistics per regime, once a regime has enough trades."""
        performance = {}
        for regime in Regime:
            returns = [t.pnl_percent for t in self._closed if t.regime == regime]
            if len(returns) < MIN_TRADES_FOR_KELLY:
                continue
            wins = [r for r in returns if r > 0]
            losses = [r for r in returns if r <= 0]
            performance[regime] = RegimePerformance(
                win_rate=len(wins) / len(returns),
                avg_win=float(np.mean(wins)) if wins else 0.0,
                avg_loss=float(np.mean(losses)) if losses else 0.0,
                total_trades=len(returns),
            )
        return performance

    def _record_equity(self, ctx: DailyContext) -> None:
        unrealized = self._unrealized_pnl(ctx)
        equity = self._cash + unrealized
        self._peak_equity = max(self._peak_equity, equity)
        drawdown = (self._peak_equity - equity) / self._peak_equity * 100 if self._peak_equity > 0 else 0.0

        self._equity_curve.append(EquityPoint(
            date=ctx.date,
            equity=equity,
            cash=self._cash,
            unrealized_pnl=unrealized,
            realized_pnl=self._cash - self.config.initial_capital,
            drawdown=min(100.0, max(0.0, drawdown)),
            regime=ctx.regime.current,
            active_positions=len(self._active),
        ))

    # ===== Results =====

    def _build_result(
        self,
        data: MarketData,
        contexts: List[DailyContext],
        cointegration: CointegrationResult
    ) -> BacktestResult:
        trades = list(self._closed)
        curve = list(self._equity_curve)
        initial = self.config.initial_capital

        benchmark_prices = [ctx.primary_price for ctx in contexts]
        return BacktestResult(
            config=self.config,
            strategy_params=self.strategy_params,
            trades=trades,
            equity_curve=curve,
            metrics=self.calculator.calculate_all(trades, curve, initial),
            cointegration=cointegration,
            monthly_returns=self.calculator.period_returns(curve, trades, initial, "M"),
            yearly_returns=self.calculator.period_returns(curve, trades, initial, "Y"),
            drawdown_periods=self.calculator.drawdown_periods(curve),
            benchmark_comparison=self.calculator.benchmark_comparison([p.equity for p in curve], benchmark_prices),
            regime_changes=len(regime_transitions([ctx.regime.current for ctx in contexts])),
        )
