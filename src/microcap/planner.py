"""One-off entry proposals: entry, stop and targets sized by the portfolio resolver."""

import logging
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from alpaca.common.exceptions import APIError as AlpacaAPIError

from .exceptions import DataError
from .models import MarketSnapshot, PortfolioState
from .sizing import resolve_size

logger = logging.getLogger(__name__)


class EntryProposal(NamedTuple):
    """A sized entry idea for one ticker; `skip_reason` is set when none is proposed."""
    ticker: str
    price: Optional[float]
    entry: Optional[float] = None
    stop: Optional[float] = None
    tp1: Optional[float] = None
    tp2: Optional[float] = None
    shares: int = 0
    cost: float = 0.0
    limiting_constraint: Optional[str] = None
    action: Optional[str] = None
    skip_reason: Optional[str] = None

    @property
    def risk(self) -> float:
        """Dollars lost if the stop is hit."""
        if self.entry is None or self.stop is None:
            return 0.0
        return (self.entry - self.stop) * self.shares


def compute_entry(price: float, ema: float, pullback_max_pct: float) -> float:
    # Pullback to the EMA, never more than pullback_max_pct below price
    return min(price, max(ema, price * (1 - pullback_max_pct)))


def compute_stop(entry: float, atr: float, stop_atr_mult: float) -> float:
    return max(0.01, entry - stop_atr_mult * atr)


def compute_take_profits(entry: float, stop: float) -> Tuple[float, float, float]:
    """Targets at 1.5R and 3R above entry; returns (tp1, tp2, R)."""
    r = entry - stop
    return entry + 1.5 * r, entry + 3 * r, r


def decide_action(price: Optional[float], entry: float, market_threshold_pct: float) -> str:
    """'MKT' when price is already within the threshold of entry, else 'LIMIT'."""
    if price is None:
        return 'LIMIT'
    if abs((price - entry) / entry) <= market_threshold_pct:
        return 'MKT'
    return 'LIMIT'


def available_cash(
    capital: float,
    state: PortfolioState,
    snapshots: Mapping[str, MarketSnapshot]
) -> float:
    """Capital minus the marked value of held positions, floored at zero."""
    mtm = 0.0
    for ticker, position in state.positions.items():
        snapshot = snapshots.get(ticker)
        if position.shares > 0 and snapshot and snapshot.has_price:
            mtm += snapshot.price * position.shares
    return max(0.0, capital - mtm)


def propose_entry(
    snapshot: MarketSnapshot,
    ema: float,
    atr: float,
    capital: float,
    cash: float,
    config: Dict[str, Any]
) -> EntryProposal:
    """
    Propose a sized entry for one ticker.

    Args:
        snapshot: Current market snapshot
        ema: Latest EMA of closes
        atr: Latest ATR
        capital: Portfolio capital in USD
        cash: Cash available for new entries
        config: Validated configuration (limits, sizing, planning sections)

    Returns:
        EntryProposal; check skip_reason before using the levels
    """
    ticker = snapshot.ticker
    if not snapshot.has_price:
        return EntryProposal(ticker=ticker, price=None, skip_reason="no price")

    limits = config['limits']
    if snapshot.market_cap and snapshot.market_cap > limits['microcap_limit']:
        return EntryProposal(ticker=ticker, price=snapshot.price, skip_reason="market cap above limit")

    planning = config['planning']
    sizing = config['sizing']
    price = snapshot.price

    entry = compute_entry(price, ema, planning['pullback_max_pct'])
    stop = compute_stop(entry, atr, planning['stop_atr_mult'])
    tp1, tp2, _ = compute_take_profits(entry, stop)

    size = resolve_size(
        capital=capital,
        available_cash=cash,
        entry=entry,
        stop=stop,
        adv3m=snapshot.adv3m,
        target_weight=sizing['target_weight'],
        risk_pct=sizing['risk_pct'],
        adv_pct_cap=limits['adv_pct_cap'],
    )
    logger.debug(f"{ticker}: sized {size.shares} shares, bound by {size.limiting_constraint}")

    proposal = EntryProposal(
        ticker=ticker,
        price=price,
        entry=round(entry, 4),
        stop=round(stop, 4),
        tp1=round(tp1, 4),
        tp2=round(tp2, 4),
        shares=size.shares,
        cost=size.cost,
        limiting_constraint=size.limiting_constraint,
        action=decide_action(price, entry, planning['market_threshold_pct']),
    )
    if size.shares <= 0:
        return proposal._replace(skip_reason=f"no capacity ({size.limiting_constraint})")
    return proposal


def plan_entries(
    provider,
    symbols: Sequence[str],
    snapshots: Mapping[str, MarketSnapshot],
    capital: float,
    cash: float,
    config: Dict[str, Any]
) -> List[EntryProposal]:
    """
    Propose entries for several tickers, skipping any whose indicators cannot be fetched.

    Args:
        provider: Object exposing fetch_indicators(ticker, ema_period, atr_period)
        symbols: Tickers to plan, in display order
        snapshots: Latest snapshot per ticker
        capital: Portfolio capital in USD
        cash: Cash available for new entries
        config: Validated configuration

    Returns:
        One EntryProposal per ticker that had indicators
    """
    planning = config['planning']
    proposals = []
    for symbol in symbols:
        try:
            ema, atr = provider.fetch_indicators(symbol, planning['ema_period'], planning['atr_period'])
        except (DataError, AlpacaAPIError, ConnectionError, TimeoutError) as e:
            logger.warning(f"Skipping {symbol}: {e}")
            continue
        snapshot = snapshots.get(symbol) or MarketSnapshot(ticker=symbol)
        proposals.append(propose_entry(snapshot, ema, atr, capital, cash, config))
    return proposals
