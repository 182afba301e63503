"""Per-ticker status and take-profit target views over the persisted state."""

from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .engine import within_pre_event_window
from .models import MarketSnapshot, PortfolioState, PositionConfig, StatePosition

# Take-profit legs shown per ticker
MAX_TP_COLUMNS = 3


def status_rows(
    positions: Sequence[PositionConfig],
    state: PortfolioState,
    snapshots: Mapping[str, MarketSnapshot],
    today: date
) -> List[Dict[str, Any]]:
    """
    Build one status row per configured ticker.

    Args:
        positions: Configured positions, in display order
        state: Current portfolio state
        snapshots: Latest snapshot per ticker (missing tickers show no price)
        today: Reference date for the pre-event window

    Returns:
        List of row dicts: ticker, last, avg_cost, trailing_pct, stop,
        take_profits (level/target/hit) and event (or None)
    """
    rows = []
    for cfg in positions:
        position = state.positions.get(cfg.ticker) or StatePosition.seed(cfg)
        snapshot = snapshots.get(cfg.ticker)
        last = snapshot.price if snapshot and snapshot.has_price else None

        take_profits = []
        for level in cfg.take_profit_levels[:MAX_TP_COLUMNS]:
            if not position.avg_cost:
                take_profits.append(None)
                continue
            target = position.avg_cost * (1 + level)
            take_profits.append({
                'level': level,
                'target': round(target, 4),
                'hit': last is not None and last >= target,
            })

        rows.append({
            'ticker': cfg.ticker,
            'last': last,
            'avg_cost': position.avg_cost or None,
            'trailing_pct': position.trailing_stop_pct or cfg.stops.trailing_pct,
            'stop': position.trailing_stop_price,
            'take_profits': take_profits,
            'event': _event_status(cfg, today),
        })
    return rows


def _event_status(cfg: PositionConfig, today: date) -> Optional[Dict[str, Any]]:
    trim = cfg.pre_event_trim
    if trim is None or trim.event_date is None:
        return None
    return {
        'event_date': trim.event_date.isoformat(),
        'days_to_event': max(0, (trim.event_date - today).days),
        'window_days_min': trim.window_days_min,
        'window_days_max': trim.window_days_max,
        'hold_through_event_pct': trim.hold_through_event_pct,
        'in_window': within_pre_event_window(
            trim.event_date, trim.window_days_min, trim.window_days_max, today
        ),
    }


def target_rows(
    positions: Sequence[PositionConfig],
    state: PortfolioState
) -> List[Dict[str, Any]]:
    """
    Take-profit legs to place as resting orders, one row per ticker.

    Each leg sells a third of what the previous legs leave behind
    (at least one share).
    """
    rows = []
    for cfg in positions:
        position = state.positions.get(cfg.ticker)
        shares = position.shares if position else 0
        avg_cost = position.avg_cost if position else 0.0
        levels = cfg.take_profit_levels

        legs = []
        if shares > 0 and avg_cost and levels:
            remaining = shares
            for level in levels[:MAX_TP_COLUMNS]:
                qty = max(1, remaining // 3)
                legs.append({
                    'level': level,
                    'price': round(avg_cost * (1 + level), 4),
                    'qty': qty,
                })
                remaining = max(0, remaining - qty)

        rows.append({
            'ticker': cfg.ticker,
            'shares': shares,
            'avg_cost': avg_cost or None,
            'legs': legs,
        })
    return rows
