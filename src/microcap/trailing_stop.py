"""Trailing-stop maintenance."""

import math
from typing import Optional

from .models import StatePosition


def update_trailing_stop(
    state: StatePosition,
    price: Optional[float],
    trailing_pct: float
) -> StatePosition:
    """
    Ratchet the high watermark and recompute the trailing stop.

    The watermark never moves down. The stop is rounded to 4 decimals and
    left as None when it cannot be computed, which keeps it disarmed.

    Args:
        state: Current position state
        price: Latest market price, or None when unknown
        trailing_pct: Trailing distance as a fraction of the watermark

    Returns:
        New position state carrying the watermark, percentage and stop price
    """
    px = float(price) if price is not None else math.nan
    if math.isfinite(px):
        high_watermark = max(state.high_watermark or 0.0, px)
    else:
        high_watermark = state.high_watermark or 0.0

    stop = high_watermark * (1 - trailing_pct) if math.isfinite(px) else math.nan
    stop_price = round(stop, 4) if math.isfinite(stop) else None

    return state.evolve(
        high_watermark=high_watermark,
        trailing_stop_pct=trailing_pct,
        trailing_stop_price=stop_price,
    )
