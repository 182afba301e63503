"""Daily cycle: fetch snapshots, evaluate every position, persist state, write orders."""

import json
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytz

from .engine import evaluate
from .models import (
    FetchResult,
    MarketSnapshot,
    OrderSuggestion,
    PortfolioConfig,
    PortfolioState,
    Side,
)
from .state_store import StateStore, apply_fill

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """Everything a cycle produced, for display and export."""
    run_date: date
    capital: float
    assume_fills: bool
    snapshots: List[MarketSnapshot]
    orders: List[OrderSuggestion]
    warnings: List[str]
    state: PortfolioState
    fetch_errors: Dict[str, str] = field(default_factory=dict)
    orders_path: Optional[Path] = None

    @property
    def mtm(self) -> float:
        """Mark-to-market value of the evaluated positions at today's prices."""
        total = 0.0
        for snap in self.snapshots:
            position = self.state.positions.get(snap.ticker)
            if snap.has_price and position and position.shares:
                total += snap.price * position.shares
        return total

    @property
    def cash_estimate(self) -> float:
        return self.capital - self.mtm


def market_today(timezone: str) -> date:
    """Current date in the market's timezone."""
    return datetime.now(pytz.timezone(timezone)).date()


def fetch_snapshots(
    provider,
    tickers: Sequence[str],
    max_workers: int = 4,
    task_timeout: float = 30
) -> Dict[str, FetchResult]:
    """
    Fetch snapshots for all tickers on a bounded thread pool.

    A failed or timed-out fetch never aborts the batch; it yields an
    all-null snapshot carrying the error text.

    Args:
        provider: Object exposing fetch_snapshot(ticker) -> MarketSnapshot
        tickers: Tickers to fetch
        max_workers: Maximum concurrent fetches
        task_timeout: Seconds to wait on each fetch

    Returns:
        Dict mapping ticker to FetchResult
    """
    results: Dict[str, FetchResult] = {}

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [(ticker, executor.submit(provider.fetch_snapshot, ticker)) for ticker in tickers]

        for ticker, future in futures:
            try:
                results[ticker] = FetchResult.success(future.result(timeout=task_timeout))
            except FuturesTimeoutError:
                logger.warning(f"Timeout fetching {ticker} after {task_timeout}s")
                results[ticker] = FetchResult.failure(ticker, f"timeout after {task_timeout}s")
            except Exception as e:
                logger.warning(f"Error fetching {ticker}: {e}")
                results[ticker] = FetchResult.failure(ticker, str(e))

    return results


def run_cycle(
    portfolio: PortfolioConfig,
    store: StateStore,
    provider,
    today: date,
    out_dir: str,
    capital: Optional[float] = None,
    assume_fills: Optional[bool] = None,
    max_workers: int = 4,
    task_timeout: float = 30,
) -> CycleReport:
    """
    Run one daily cycle over every configured position.

    Positions are evaluated one at a time against the shared state. State
    and the orders file are only written once every position has been
    evaluated, and the orders file is written before the state file, so an
    exception at any point leaves the previous state file untouched.

    Args:
        portfolio: Validated portfolio configuration
        store: State store for load/save
        provider: Market-data provider (see fetch_snapshots)
        today: Run date
        out_dir: Directory for the orders file
        capital: Capital override for this run
        assume_fills: Paper-fill override; defaults to the configured mode
        max_workers: Maximum concurrent fetches
        task_timeout: Seconds to wait on each fetch

    Returns:
        CycleReport for display
    """
    capital = portfolio.capital if capital is None else capital
    assume_fills = portfolio.assume_fills if assume_fills is None else assume_fills

    state = store.load()
    state.capital = capital

    results = fetch_snapshots(provider, portfolio.tickers, max_workers, task_timeout)

    orders: List[OrderSuggestion] = []
    warnings: List[str] = []

    for cfg in portfolio.positions:
        market = results[cfg.ticker].snapshot
        evaluation = evaluate(
            cfg,
            state.positions[cfg.ticker],
            market,
            capital,
            today,
            microcap_limit=portfolio.microcap_limit,
            adv_pct_cap=portfolio.adv_pct_cap,
        )
        warnings.extend(evaluation.warnings)
        orders.extend(evaluation.orders)

        position = evaluation.next_state
        if assume_fills:
            for order in evaluation.orders:
                if order.side == Side.SELL:
                    if position.shares == 0:
                        continue
                    order = replace(order, shares=min(order.shares, position.shares))
                exec_price = market.price or order.price_hint or 0.0
                position = apply_fill(position, order, exec_price)

        state.positions[cfg.ticker] = position

    orders_path = write_orders(out_dir, today, assume_fills, orders)
    store.save(state)

    fetch_errors = {t: r.error for t, r in results.items() if not r.ok}
    logger.info(
        f"Cycle {today.isoformat()}: {len(orders)} orders, {len(warnings)} warnings, "
        f"{len(fetch_errors)} fetch errors"
    )

    return CycleReport(
        run_date=today,
        capital=capital,
        assume_fills=assume_fills,
        snapshots=[results[t].snapshot for t in portfolio.tickers],
        orders=orders,
        warnings=warnings,
        state=state,
        fetch_errors=fetch_errors,
        orders_path=orders_path,
    )


def write_orders(
    out_dir: str,
    run_date: date,
    assume_fills: bool,
    orders: Sequence[OrderSuggestion]
) -> Path:
    """
    Write the cycle's orders to `orders-<date>.json` atomically.

    Args:
        out_dir: Output directory
        run_date: Date keying the file name
        assume_fills: Whether fills were booked during the cycle
        orders: Suggested orders

    Returns:
        Path to the orders file
    """
    directory = Path(out_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"orders-{run_date.isoformat()}.json"
    temp_path = path.with_suffix('.tmp')

    payload = {
        'date': run_date.isoformat(),
        'assume_fills': assume_fills,
        'orders': [order.to_dict() for order in orders],
    }
    with open(temp_path, 'w') as f:
        json.dump(payload, f, indent=2)
    temp_path.replace(path)

    logger.info(f"Wrote {len(orders)} orders to {path}")
    return path
