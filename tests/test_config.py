"""Tests for configuration validation."""

from datetime import date

import pytest
from microcap.config_validator import validate_config, build_portfolio_config
from microcap.exceptions import ConfigError


def make_position(ticker, weight, **overrides):
    position = {
        'ticker': ticker,
        'target_weight': weight,
        'entry': {'tranches': [0.5, 0.5], 'buy_dip_percents': [0, -3]},
        'stops': {'trailing_pct': 0.2},
    }
    position.update(overrides)
    return position


def make_config(positions=None, **sections):
    config = {
        'portfolio': {
            'capital': 100000,
            'positions': positions if positions is not None else [
                make_position('omer', 0.6),
                make_position('MREO', 0.4),
            ],
        },
        'data': {'feed': 'iex'},
    }
    config.update(sections)
    return config


def test_ticker_normalization():
    """Test that tickers are uppercased and stripped."""
    validated = validate_config(make_config([make_position(' anix ', 1.0)]))
    assert validated['portfolio']['positions'][0]['ticker'] == 'ANIX'


def test_missing_required_section():
    """Test that a config without the portfolio section is rejected."""
    with pytest.raises(ConfigError, match="portfolio"):
        validate_config({'data': {}})


def test_non_mapping_config():
    """Test that an empty YAML document is rejected."""
    with pytest.raises(ConfigError):
        validate_config(None)


def test_weight_sum_must_equal_one():
    """Test that target weights summing to 0.9 are rejected."""
    config = make_config([make_position('A', 0.5), make_position('B', 0.4)])
    with pytest.raises(ConfigError, match="Sum of target_weight must equal 1.0"):
        validate_config(config)


def test_weight_sum_tolerance():
    """Test that float noise in the weight sum is accepted."""
    config = make_config([
        make_position('A', 0.35),
        make_position('B', 0.25),
        make_position('C', 0.25),
        make_position('D', 0.15),
    ])
    validate_config(config)


def test_duplicate_tickers_rejected():
    """Test that the same ticker cannot appear twice, regardless of case."""
    config = make_config([make_position('omer', 0.5), make_position('OMER', 0.5)])
    with pytest.raises(ConfigError, match="Duplicate"):
        validate_config(config)


def test_empty_positions_rejected():
    """Test that a portfolio needs at least one position."""
    with pytest.raises(ConfigError, match="empty"):
        validate_config(make_config([]))


def test_capital_must_be_positive():
    """Test that zero capital is rejected."""
    config = make_config()
    config['portfolio']['capital'] = 0
    with pytest.raises(ConfigError, match="capital"):
        validate_config(config)


def test_tranche_and_dip_lengths_must_match():
    """Test that every tranche has a dip hint."""
    position = make_position(
        'A', 1.0, entry={'tranches': [0.34, 0.33, 0.33], 'buy_dip_percents': [0, -3]}
    )
    with pytest.raises(ConfigError, match="same length"):
        validate_config(make_config([position]))


def test_trailing_pct_range():
    """Test that trailing_pct outside [0.01, 0.8] is rejected."""
    position = make_position('A', 1.0, stops={'trailing_pct': 0.9})
    with pytest.raises(ConfigError, match="trailing_pct"):
        validate_config(make_config([position]))


def test_take_profit_level_range():
    """Test that take-profit levels above 5 are rejected."""
    position = make_position('A', 1.0, take_profit_levels=[0.3, 6])
    with pytest.raises(ConfigError, match="take-profit"):
        validate_config(make_config([position]))


def test_pre_event_trim_defaults_and_date():
    """Test that pre-event trim fills defaults and parses its date."""
    position = make_position('A', 1.0, pre_event_trim={'event_date': '2025-09-25'})
    validated = validate_config(make_config([position]))

    trim = validated['portfolio']['positions'][0]['pre_event_trim']
    assert trim['event_date'] == date(2025, 9, 25)
    assert trim['window_days_min'] == 3
    assert trim['window_days_max'] == 10
    assert trim['trim_pct_of_position'] == 0.4
    assert trim['hold_through_event_pct'] == 0.6


def test_pre_event_window_order():
    """Test that window_days_min cannot exceed window_days_max."""
    position = make_position(
        'A', 1.0, pre_event_trim={'event_date': None, 'window_days_min': 12, 'window_days_max': 10}
    )
    with pytest.raises(ConfigError, match="window_days_min"):
        validate_config(make_config([position]))


def test_bad_event_date():
    """Test that a malformed event date is rejected."""
    position = make_position('A', 1.0, pre_event_trim={'event_date': '25/09/2025'})
    with pytest.raises(ConfigError, match="event_date"):
        validate_config(make_config([position]))


def test_optional_sections_get_defaults():
    """Test that limits, sizing, planning and storage default when omitted."""
    validated = validate_config(make_config())

    assert validated['limits']['microcap_limit'] == 300_000_000
    assert validated['limits']['adv_pct_cap'] == 0.15
    assert validated['sizing']['risk_pct'] == 0.0075
    assert validated['planning']['ema_period'] == 20
    assert validated['storage']['state_file'] == 'data/state.json'
    assert validated['portfolio']['assume_fills'] is False


def test_invalid_feed():
    """Test that an unknown data feed is rejected."""
    with pytest.raises(ConfigError, match="Invalid feed"):
        validate_config(make_config(data={'feed': 'bogus'}))


def test_days_history_auto_adjustment():
    """Test that days_history is raised to cover indicator warmup."""
    config = make_config(
        data={'feed': 'iex', 'days_history': 10},
        planning={'ema_period': 50, 'atr_period': 14},
    )
    validated = validate_config(config)
    assert validated['data']['days_history'] == 70


def test_adv_pct_cap_range():
    """Test that adv_pct_cap must lie in (0, 1]."""
    with pytest.raises(ConfigError, match="adv_pct_cap"):
        validate_config(make_config(limits={'adv_pct_cap': 0}))


def test_build_portfolio_config():
    """Test construction of the typed portfolio configuration."""
    positions = [
        make_position(
            'omer', 0.6,
            stops={'trailing_pct': 0.2, 'hard_stop_pct': 0.3},
            spike_rule={'pct_up_day': 0.15, 'new_trailing_pct': 0.12},
            notes='PDUFA',
        ),
        make_position('MREO', 0.4, take_profit_levels=[0.35, 0.6]),
    ]
    portfolio = build_portfolio_config(validate_config(make_config(positions)))

    assert portfolio.capital == 100000.0
    assert portfolio.tickers == ['OMER', 'MREO']
    assert portfolio.microcap_limit == 300_000_000

    omer, mreo = portfolio.positions
    assert omer.entry.tranches == (0.5, 0.5)
    assert omer.entry.buy_dip_percents == (0.0, -3.0)
    assert omer.stops.hard_stop_pct == 0.3
    assert omer.spike_rule.new_trailing_pct == 0.12
    assert omer.notes == 'PDUFA'
    assert omer.pre_event_trim is None
    assert mreo.stops.hard_stop_pct is None
    assert mreo.spike_rule is None
    assert mreo.take_profit_levels == (0.35, 0.6)
