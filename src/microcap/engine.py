"""Per-position decision engine.

Turns (static position config, persisted position state, fresh market data)
into order suggestions and the next position state. Rules run in a fixed
priority order:

1. micro-cap gate
2. tranche entry
3. trailing-stop maintenance
4. spike tightening
5. hard stop (full exit, stops evaluation)
6. trailing-stop breach (full exit, stops evaluation)
7. pre-event trim
8. take-profit ladder

Suggesting an order never changes holdings or the tranche index; those only
move when a fill is applied by the state store.
"""

import logging
import math
from datetime import date
from typing import List, Optional

from .models import (
    Evaluation,
    MarketSnapshot,
    OrderSuggestion,
    PositionConfig,
    Side,
    StatePosition,
)
from .sizing import desired_shares_for_weight, max_shares_by_adv
from .trailing_stop import update_trailing_stop

logger = logging.getLogger(__name__)

DEFAULT_MICROCAP_LIMIT = 300_000_000
DEFAULT_ADV_PCT_CAP = 0.15


def fmt_usd(value: float) -> str:
    """Format a dollar amount with thousands separators, dropping empty cents."""
    text = f"${value:,.2f}"
    return text[:-3] if text.endswith('.00') else text


def pct_str(fraction: float) -> str:
    """Format a fraction as a percentage, e.g. 0.2 -> '20%', 0.125 -> '12.5%'."""
    return f"{round(fraction * 100, 1):g}%"


def make_order(
    side: Side,
    ticker: str,
    shares: float,
    price_hint: Optional[float],
    reason: str
) -> OrderSuggestion:
    return OrderSuggestion(
        side=side,
        ticker=ticker,
        shares=max(0, math.floor(shares)),
        price_hint=price_hint,
        reason=reason,
    )


def within_pre_event_window(
    event_date: Optional[date],
    min_days: int,
    max_days: int,
    today: date
) -> bool:
    """True when `today` lies in [event - max_days, event - min_days], inclusive."""
    if event_date is None:
        return False
    days_to_event = (event_date - today).days
    return min_days <= days_to_event <= max_days


def evaluate(
    cfg: PositionConfig,
    state: StatePosition,
    market: MarketSnapshot,
    capital: float,
    today: date,
    microcap_limit: float = DEFAULT_MICROCAP_LIMIT,
    adv_pct_cap: float = DEFAULT_ADV_PCT_CAP,
) -> Evaluation:
    """
    Evaluate one position against today's market snapshot.

    Args:
        cfg: Static configuration for the position
        state: Persisted state of the position at cycle start
        market: Market snapshot for the ticker (fields may be None)
        capital: Portfolio capital used for weight sizing
        today: Run date, used by the pre-event window
        microcap_limit: Market-cap ceiling for eligibility
        adv_pct_cap: Maximum order size as a fraction of 3-month ADV

    Returns:
        Evaluation with orders, warnings and the next position state
    """
    orders: List[OrderSuggestion] = []
    warnings: List[str] = []
    ticker = cfg.ticker

    if market.market_cap and market.market_cap > microcap_limit:
        warnings.append(
            f"{ticker}: market cap {fmt_usd(market.market_cap)} exceeds "
            f"{fmt_usd(microcap_limit)} - SKIP"
        )
        logger.debug(f"{ticker}: skipped by micro-cap gate")
        return Evaluation(orders=orders, warnings=warnings, next_state=state)

    if not market.has_price:
        logger.debug(f"{ticker}: no usable price, position left unchanged")
        return Evaluation(orders=orders, warnings=warnings, next_state=state)

    price = market.price

    # Tranche entry
    desired = desired_shares_for_weight(capital, cfg.target_weight, price)
    if desired > state.shares:
        next_index = state.tranche_index_filled + 1
        tranches = cfg.entry.tranches
        if next_index < len(tranches):
            tranche_shares = math.floor(desired * tranches[next_index])
            capped = min(tranche_shares, max_shares_by_adv(market.adv3m, adv_pct_cap))
            dips = cfg.entry.buy_dip_percents
            dip = dips[next_index] if next_index < len(dips) else 0.0
            if capped > 0:
                hint = round(price * (1 + dip / 100), 4)
                reason = "Initial tranche" if dip == 0 else f"Tranche on dip {dip:g}%"
                orders.append(make_order(Side.BUY, ticker, capped, hint, reason))
                logger.debug(
                    f"{ticker}: tranche {next_index} sized {capped} of desired {desired}"
                )

    # Trailing stop, from a spike-tightened percentage when one is already in state
    trailing_pct = state.trailing_stop_pct or cfg.stops.trailing_pct
    next_state = update_trailing_stop(state, price, trailing_pct)

    spike = cfg.spike_rule
    if spike and market.change_pct is not None and market.change_pct >= spike.pct_up_day * 100:
        # Tightened percentage stays in state for later cycles
        next_state = update_trailing_stop(next_state, price, spike.new_trailing_pct)
        logger.debug(
            f"{ticker}: up {market.change_pct:.1f}%, trailing stop tightened to "
            f"{pct_str(spike.new_trailing_pct)}"
        )

    hard_stop_pct = cfg.stops.hard_stop_pct
    if hard_stop_pct and state.shares > 0 and state.avg_cost > 0:
        hard_stop_price = state.avg_cost * (1 - hard_stop_pct)
        if price <= hard_stop_price:
            orders.append(make_order(
                Side.SELL, ticker, state.shares, price, f"Hard stop {pct_str(hard_stop_pct)}"
            ))
            return Evaluation(orders=orders, warnings=warnings, next_state=next_state)

    stop_price = next_state.trailing_stop_price
    if stop_price and state.shares > 0 and price <= stop_price:
        orders.append(make_order(
            Side.SELL, ticker, state.shares, price,
            f"Trailing stop {pct_str(next_state.trailing_stop_pct)}"
        ))
        return Evaluation(orders=orders, warnings=warnings, next_state=next_state)

    # Re-fires on every run while the window is open
    trim = cfg.pre_event_trim
    if trim and state.shares > 0 and within_pre_event_window(
        trim.event_date, trim.window_days_min, trim.window_days_max, today
    ):
        trim_shares = math.floor(state.shares * trim.trim_pct_of_position)
        if trim_shares > 0:
            orders.append(make_order(Side.SELL, ticker, trim_shares, price, "Pre-event risk trim"))

    # Every level at or below the price fires, harvested or not
    if state.shares > 0 and state.avg_cost > 0:
        for level in cfg.take_profit_levels:
            if price >= state.avg_cost * (1 + level):
                sell = max(1, state.shares // 3)
                orders.append(make_order(
                    Side.SELL, ticker, sell, price, f"Take-profit hit +{pct_str(level)}"
                ))

    return Evaluation(orders=orders, warnings=warnings, next_state=next_state)
