"""Position sizing under weight, risk, cash and liquidity constraints."""

import math
from typing import NamedTuple, Optional

# Floor on per-share risk so a stop at or above entry never divides by zero
MIN_PER_SHARE_RISK = 0.0001

# Evaluation order doubles as the tie-break order
CONSTRAINTS = ('weight', 'risk', 'cash', 'adv')


class SizeResult(NamedTuple):
    """Resolved order size and the constraint that bound it."""
    shares: int
    cost: float
    limiting_constraint: str


def desired_shares_for_weight(capital: float, weight: float, price: Optional[float]) -> int:
    """Whole shares needed to hold `weight` of `capital` at `price` (0 without a price)."""
    if not price or price <= 0:
        return 0
    return max(0, math.floor(capital * weight / price))


def max_shares_by_adv(adv3m: Optional[float], adv_pct_cap: float) -> float:
    """Liquidity ceiling as a share count; unbounded when ADV is unknown."""
    if not adv3m or adv3m <= 0:
        return math.inf
    return math.floor(adv3m * adv_pct_cap)


def resolve_size(
    capital: float,
    available_cash: float,
    entry: float,
    stop: float,
    adv3m: Optional[float],
    target_weight: float,
    risk_pct: float,
    adv_pct_cap: float = 0.15,
) -> SizeResult:
    """
    Size a one-off entry as the smallest of four independent share counts.

    Candidates are evaluated in the order weight, risk, cash, adv and the
    first minimal candidate wins ties.

    Args:
        capital: Portfolio capital in USD
        available_cash: Cash available for the order in USD
        entry: Entry price per share (must be positive)
        stop: Stop price; may sit above entry
        adv3m: 3-month average daily volume, or None when unknown
        target_weight: Fraction of capital allotted to the position
        risk_pct: Fraction of capital risked between entry and stop
        adv_pct_cap: Maximum order size as a fraction of ADV

    Returns:
        SizeResult with shares, cost and the binding constraint name

    Raises:
        ValueError: If entry is not positive
    """
    if entry <= 0:
        raise ValueError(f"entry must be positive, got {entry}")

    per_share_risk = max(MIN_PER_SHARE_RISK, entry - stop)
    candidates = (
        math.floor(capital * target_weight / entry),
        math.floor(capital * risk_pct / per_share_risk),
        math.floor(available_cash / entry),
        max_shares_by_adv(adv3m, adv_pct_cap),
    )

    winner = 0
    for i, shares in enumerate(candidates):
        if shares < candidates[winner]:
            winner = i

    shares = max(0, int(candidates[winner]))
    return SizeResult(
        shares=shares,
        cost=shares * entry,
        limiting_constraint=CONSTRAINTS[winner],
    )
