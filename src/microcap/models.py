"""Typed records shared by the engine, the state store and the orchestrator.

Configuration records are frozen for the duration of a run. Position state
records are treated as values: every transition returns a new instance.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Side(str, Enum):
    """Order direction."""
    BUY = "BUY"
    SELL = "SELL"


# ---------------------------------------------------------------------------
# Static configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EntryPlan:
    """Tranche fractions of the target share count and their dip hints (in %)."""
    tranches: Tuple[float, ...]
    buy_dip_percents: Tuple[float, ...]


@dataclass(frozen=True)
class StopRules:
    trailing_pct: float
    hard_stop_pct: Optional[float] = None


@dataclass(frozen=True)
class SpikeRule:
    """Tighten the trailing stop after a large up day."""
    pct_up_day: float
    new_trailing_pct: float


@dataclass(frozen=True)
class PreEventTrim:
    """Partial exit scheduled ahead of a dated catalyst."""
    event_date: Optional[date] = None
    window_days_min: int = 3
    window_days_max: int = 10
    trim_pct_of_position: float = 0.4
    hold_through_event_pct: float = 0.6


@dataclass(frozen=True)
class PositionConfig:
    ticker: str
    target_weight: float
    entry: EntryPlan
    stops: StopRules
    spike_rule: Optional[SpikeRule] = None
    pre_event_trim: Optional[PreEventTrim] = None
    take_profit_levels: Tuple[float, ...] = ()
    notes: str = ""


@dataclass(frozen=True)
class PortfolioConfig:
    """Validated portfolio configuration, loaded once per process."""
    capital: float
    positions: Tuple[PositionConfig, ...]
    assume_fills: bool = False
    microcap_limit: float = 300_000_000
    adv_pct_cap: float = 0.15

    @property
    def tickers(self) -> List[str]:
        return [p.ticker for p in self.positions]


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MarketSnapshot:
    """Point-in-time market data for one ticker. Any field may be missing."""
    ticker: str
    price: Optional[float] = None
    change_pct: Optional[float] = None
    market_cap: Optional[float] = None
    adv3m: Optional[float] = None

    @property
    def has_price(self) -> bool:
        return self.price is not None and self.price > 0


@dataclass(frozen=True)
class FetchResult:
    """Outcome of fetching one ticker: a snapshot, or an all-null snapshot plus the error."""
    snapshot: MarketSnapshot
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, snapshot: MarketSnapshot) -> "FetchResult":
        return cls(snapshot=snapshot)

    @classmethod
    def failure(cls, ticker: str, error: str) -> "FetchResult":
        return cls(snapshot=MarketSnapshot(ticker=ticker), error=error)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OrderSuggestion:
    side: Side
    ticker: str
    shares: int
    price_hint: Optional[float]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ticker': self.ticker,
            'side': self.side.value,
            'shares': self.shares,
            'price_hint': self.price_hint,
            'reason': self.reason,
        }


@dataclass(frozen=True)
class LastAction:
    """The most recent order applied to a position and the price it filled at."""
    side: Side
    shares: int
    price_hint: Optional[float]
    reason: str
    executed_price: float

    @classmethod
    def from_order(cls, order: OrderSuggestion, executed_price: float) -> "LastAction":
        return cls(
            side=order.side,
            shares=order.shares,
            price_hint=order.price_hint,
            reason=order.reason,
            executed_price=executed_price,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'side': self.side.value,
            'shares': self.shares,
            'price_hint': self.price_hint,
            'reason': self.reason,
            'executed_price': self.executed_price,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LastAction":
        return cls(
            side=Side(data['side']),
            shares=int(data['shares']),
            price_hint=data.get('price_hint'),
            reason=data.get('reason', ''),
            executed_price=float(data['executed_price']),
        )


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StatePosition:
    ticker: str
    shares: int = 0
    avg_cost: float = 0.0
    invested: float = 0.0
    realized_pnl: float = 0.0
    high_watermark: float = 0.0
    trailing_stop_pct: float = 0.0
    trailing_stop_price: Optional[float] = None
    tranche_index_filled: int = -1
    last_action: Optional[LastAction] = None
    notes: str = ""

    @classmethod
    def seed(cls, cfg: PositionConfig) -> "StatePosition":
        """Zeroed holdings for a configured ticker."""
        return cls(
            ticker=cfg.ticker,
            trailing_stop_pct=cfg.stops.trailing_pct,
            notes=cfg.notes,
        )

    def evolve(self, **changes: Any) -> "StatePosition":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ticker': self.ticker,
            'shares': self.shares,
            'avg_cost': self.avg_cost,
            'invested': self.invested,
            'realized_pnl': self.realized_pnl,
            'high_watermark': self.high_watermark,
            'trailing_stop_pct': self.trailing_stop_pct,
            'trailing_stop_price': self.trailing_stop_price,
            'tranche_index_filled': self.tranche_index_filled,
            'last_action': self.last_action.to_dict() if self.last_action else None,
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatePosition":
        last_action = data.get('last_action')
        stop_price = data.get('trailing_stop_price')
        return cls(
            ticker=data['ticker'],
            shares=int(data.get('shares', 0)),
            avg_cost=float(data.get('avg_cost', 0.0)),
            invested=float(data.get('invested', 0.0)),
            realized_pnl=float(data.get('realized_pnl', 0.0)),
            high_watermark=float(data.get('high_watermark', 0.0)),
            trailing_stop_pct=float(data.get('trailing_stop_pct', 0.0)),
            trailing_stop_price=float(stop_price) if stop_price is not None else None,
            tranche_index_filled=int(data.get('tranche_index_filled', -1)),
            last_action=LastAction.from_dict(last_action) if last_action else None,
            notes=data.get('notes', ''),
        )


@dataclass
class PortfolioState:
    """Portfolio-level capital plus one position record per ticker ever configured."""
    capital: float
    positions: Dict[str, StatePosition] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'capital': self.capital,
            'positions': {t: p.to_dict() for t, p in self.positions.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortfolioState":
        positions = {
            ticker: StatePosition.from_dict(pos)
            for ticker, pos in data['positions'].items()
        }
        return cls(
            capital=float(data['capital']),
            positions=positions,
            created_at=data.get('created_at', ''),
            updated_at=data.get('updated_at', ''),
        )


@dataclass(frozen=True)
class Evaluation:
    """Decision engine output for one position."""
    orders: List[OrderSuggestion]
    warnings: List[str]
    next_state: StatePosition
