"""Tests for fill application and state persistence."""

import json

import pytest

from microcap.exceptions import StateError
from microcap.models import (
    EntryPlan,
    OrderSuggestion,
    PositionConfig,
    Side,
    StatePosition,
    StopRules,
)
from microcap.state_store import StateStore, apply_fill


def make_cfg(ticker, notes=""):
    return PositionConfig(
        ticker=ticker,
        target_weight=0.5,
        entry=EntryPlan(tranches=(0.5, 0.5), buy_dip_percents=(0.0, -3.0)),
        stops=StopRules(trailing_pct=0.2),
        notes=notes,
    )


def buy(shares, reason="Initial tranche"):
    return OrderSuggestion(side=Side.BUY, ticker='TEST', shares=shares, price_hint=None, reason=reason)


def sell(shares, reason="Take-profit hit +30%"):
    return OrderSuggestion(side=Side.SELL, ticker='TEST', shares=shares, price_hint=None, reason=reason)


@pytest.fixture
def store(tmp_path):
    positions = [make_cfg('OMER', notes='PDUFA'), make_cfg('MREO')]
    return StateStore(str(tmp_path / 'data' / 'state.json'), positions, 100000)


def test_buy_moves_average_cost():
    """Test weighted average cost, invested and tranche index on BUYs."""
    state = StatePosition(ticker='TEST')
    state = apply_fill(state, buy(100), 10.0)
    state = apply_fill(state, buy(100, reason="Tranche on dip -3%"), 8.0)

    assert state.shares == 200
    assert state.avg_cost == 9.0
    assert state.invested == 1800.0
    assert state.tranche_index_filled == 1
    assert state.last_action.executed_price == 8.0
    assert state.last_action.reason == "Tranche on dip -3%"


def test_buy_then_sell_round_trip_is_flat():
    """Test that buying and selling the same size at the same price nets out."""
    state = apply_fill(StatePosition(ticker='TEST'), buy(250), 4.2)
    state = apply_fill(state, sell(250), 4.2)

    assert state.shares == 0
    assert state.avg_cost == 0.0
    assert state.realized_pnl == 0.0
    assert state.invested == 0.0


def test_partial_sell_books_pnl():
    """Test realized PnL and the reduced cost basis on a partial SELL."""
    state = StatePosition(ticker='TEST', shares=300, avg_cost=10.0, invested=3000.0)
    state = apply_fill(state, sell(100), 13.0)

    assert state.shares == 200
    assert state.avg_cost == 10.0
    assert state.realized_pnl == 300.0
    assert state.invested == 2000.0
    assert state.last_action.side == Side.SELL


def test_full_sell_reduces_invested_at_prior_cost():
    """Test that invested drops by the pre-sale cost basis on a full exit."""
    state = StatePosition(ticker='TEST', shares=100, avg_cost=10.0, invested=1000.0)
    state = apply_fill(state, sell(100), 7.5)

    assert state.shares == 0
    assert state.avg_cost == 0.0
    assert state.invested == 0.0
    assert state.realized_pnl == -250.0


def test_oversell_floors_shares_at_zero():
    """Test that selling more than held never goes negative."""
    state = StatePosition(ticker='TEST', shares=50, avg_cost=10.0, invested=500.0)
    state = apply_fill(state, sell(80), 10.0)
    assert state.shares == 0
    assert state.invested == 0.0


def test_sell_does_not_touch_tranche_index():
    """Test that only BUYs advance the tranche index."""
    state = StatePosition(ticker='TEST', shares=100, avg_cost=10.0, tranche_index_filled=0)
    assert apply_fill(state, sell(50), 11.0).tranche_index_filled == 0


def test_load_seeds_missing_file(store):
    """Test that a first load seeds zeroed holdings and writes the file."""
    state = store.load()

    assert store.state_file.exists()
    assert state.capital == 100000
    assert set(state.positions) == {'OMER', 'MREO'}

    omer = state.positions['OMER']
    assert omer.shares == 0
    assert omer.tranche_index_filled == -1
    assert omer.trailing_stop_pct == 0.2
    assert omer.trailing_stop_price is None
    assert omer.notes == 'PDUFA'


def test_save_and_load_round_trip(store):
    """Test that a saved state loads back unchanged."""
    state = store.load()
    state.positions['OMER'] = apply_fill(state.positions['OMER'], buy(100), 3.5)
    store.save(state)

    loaded = store.load()
    assert loaded.positions['OMER'] == state.positions['OMER']
    assert loaded.created_at == state.created_at
    assert not store.state_file.with_suffix('.tmp').exists()


def test_corrupt_file_is_quarantined(store):
    """Test that an unreadable state file is moved aside and re-seeded."""
    store.state_file.parent.mkdir(parents=True)
    store.state_file.write_text("{not json")

    state = store.load()

    quarantine = store.state_file.with_name('state.json.corrupt')
    assert quarantine.read_text() == "{not json"
    assert set(state.positions) == {'OMER', 'MREO'}
    assert json.loads(store.state_file.read_text())['capital'] == 100000


def test_late_added_ticker_is_seeded(store, tmp_path):
    """Test that a ticker added to config after the state file exists gets seeded."""
    state = store.load()
    state.positions['OMER'] = apply_fill(state.positions['OMER'], buy(10), 3.0)
    store.save(state)

    wider = StateStore(
        str(store.state_file),
        store.positions + [make_cfg('ANIX')],
        100000
    )
    loaded = wider.load()

    assert loaded.positions['ANIX'].shares == 0
    assert loaded.positions['OMER'].shares == 10


def test_removed_ticker_kept(store):
    """Test that tickers dropped from config stay in the state file."""
    store.load()
    narrower = StateStore(str(store.state_file), store.positions[:1], 100000)
    assert 'MREO' in narrower.load().positions


def test_unwritable_state_raises(tmp_path):
    """Test that a write failure surfaces as StateError."""
    blocker = tmp_path / 'blocker'
    blocker.write_text("")
    store = StateStore(str(blocker / 'state.json'), [make_cfg('OMER')], 1000)

    with pytest.raises(StateError):
        store.save(store.seed())
