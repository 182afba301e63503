"""Portfolio state persistence and fill application."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Sequence

from .exceptions import StateError
from .models import (
    LastAction,
    OrderSuggestion,
    PortfolioState,
    PositionConfig,
    Side,
    StatePosition,
)

logger = logging.getLogger(__name__)


def apply_fill(state: StatePosition, order: OrderSuggestion, exec_price: float) -> StatePosition:
    """
    Apply an executed order to a position.

    A BUY moves the weighted average cost and advances the tranche index by
    one. A SELL books realized PnL against the average cost and clears the
    cost basis once the position is flat.

    Args:
        state: Position state before the fill
        order: The order that was filled
        exec_price: Execution price per share

    Returns:
        New position state
    """
    if order.side == Side.BUY:
        cost = exec_price * order.shares
        new_shares = state.shares + order.shares
        avg_cost = (state.avg_cost * state.shares + cost) / new_shares if new_shares else 0.0
        updated = state.evolve(
            shares=new_shares,
            avg_cost=avg_cost,
            invested=state.invested + cost,
            tranche_index_filled=state.tranche_index_filled + 1,
        )
    else:
        pnl = (exec_price - state.avg_cost) * order.shares
        new_shares = max(0, state.shares - order.shares)
        updated = state.evolve(
            shares=new_shares,
            avg_cost=state.avg_cost if new_shares > 0 else 0.0,
            realized_pnl=state.realized_pnl + pnl,
            invested=max(0.0, state.invested - state.avg_cost * order.shares),
        )

    logger.debug(
        f"{state.ticker}: applied {order.side.value} {order.shares} @ {exec_price}, "
        f"now {updated.shares} shares"
    )
    return updated.evolve(last_action=LastAction.from_order(order, exec_price))


class StateStore:
    """
    Reads and writes the portfolio state file.

    Features:
    - Seeds a zeroed state from config on first use
    - Seeds late-added tickers without touching existing entries
    - Quarantines an unreadable file and starts over from a fresh seed
    - Atomic writes through a temporary file
    """

    def __init__(self, state_file: str, positions: Sequence[PositionConfig], capital: float):
        """
        Initialize the state store.

        Args:
            state_file: Path of the JSON state file
            positions: Configured positions, used for seeding
            capital: Default portfolio capital for a fresh state
        """
        self.state_file = Path(state_file)
        self.positions = list(positions)
        self.capital = capital

    def seed(self) -> PortfolioState:
        """Build a fresh state with zeroed holdings for every configured ticker."""
        now = _timestamp()
        return PortfolioState(
            capital=self.capital,
            positions={cfg.ticker: StatePosition.seed(cfg) for cfg in self.positions},
            created_at=now,
            updated_at=now,
        )

    def load(self) -> PortfolioState:
        """
        Load the state file, seeding it when missing or unreadable.

        Returns:
            PortfolioState covering at least every configured ticker

        Raises:
            StateError: If a freshly seeded state cannot be written
        """
        if not self.state_file.exists():
            logger.info(f"No state file at {self.state_file}, seeding a new one")
            state = self.seed()
            self.save(state)
            return state

        try:
            with open(self.state_file, 'r') as f:
                state = PortfolioState.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            quarantine = self.state_file.with_name(self.state_file.name + '.corrupt')
            logger.warning(
                f"State file {self.state_file} is unreadable ({e}); "
                f"moved to {quarantine} and re-seeded"
            )
            self.state_file.replace(quarantine)
            state = self.seed()
            self.save(state)
            return state

        for cfg in self.positions:
            if cfg.ticker not in state.positions:
                logger.info(f"Seeding state for newly configured ticker {cfg.ticker}")
                state.positions[cfg.ticker] = StatePosition.seed(cfg)

        return state

    def save(self, state: PortfolioState) -> None:
        """
        Write the state atomically.

        Args:
            state: Portfolio state to persist

        Raises:
            StateError: If the file cannot be written
        """
        state.updated_at = _timestamp()
        if not state.created_at:
            state.created_at = state.updated_at

        temp_path = self.state_file.with_suffix('.tmp')
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w') as f:
                json.dump(state.to_dict(), f, indent=2)
            temp_path.replace(self.state_file)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise StateError(f"Cannot write state file {self.state_file}: {e}") from e

        logger.info(f"Saved state for {len(state.positions)} positions to {self.state_file}")


def _timestamp() -> str:
    return datetime.now().isoformat(timespec='seconds')
