"""Configuration validation and normalization for the portfolio engine."""

import logging
from datetime import date, datetime
from typing import Any, Dict, Optional

from .exceptions import ConfigError
from .models import (
    EntryPlan,
    PortfolioConfig,
    PositionConfig,
    PreEventTrim,
    SpikeRule,
    StopRules,
)

logger = logging.getLogger(__name__)

WEIGHT_SUM_TOLERANCE = 1e-6

DEFAULT_LIMITS = {
    'microcap_limit': 300_000_000,
    'adv_pct_cap': 0.15,
}

DEFAULT_SIZING = {
    'target_weight': 0.06,
    'risk_pct': 0.0075,
}

DEFAULT_PLANNING = {
    'pullback_max_pct': 0.02,
    'market_threshold_pct': 0.005,
    'stop_atr_mult': 2.0,
    'ema_period': 20,
    'atr_period': 14,
}

DEFAULT_DATA = {
    'api_key_env': 'ALPACA_API_KEY',
    'api_secret_env': 'ALPACA_API_SECRET',
    'base_url': None,
    'feed': 'iex',
    'timezone': 'America/New_York',
    'max_workers': 4,
    'task_timeout': 30,
    'days_history': 120,
    'adv_lookback_days': 63,
}

DEFAULT_STORAGE = {
    'state_file': 'data/state.json',
    'out_dir': 'out',
}

VALID_FEEDS = ['iex', 'sip', 'otc']


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize the configuration.

    Checks the required sections, fills in defaults for the optional ones,
    normalizes tickers and enforces the target-weight invariant.

    Args:
        config: Raw configuration dictionary

    Returns:
        Validated and normalized configuration

    Raises:
        ConfigError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ConfigError("Configuration must be a mapping")

    required_sections = ['portfolio', 'data']
    for section in required_sections:
        if section not in config:
            raise ConfigError(f"Missing required configuration section: {section}")

    config = _validate_portfolio(config)
    config = _validate_limits(config)
    config = _validate_sizing(config)
    config = _validate_planning(config)
    config = _validate_data_settings(config)
    config = _validate_storage(config)

    return config


def build_portfolio_config(config: Dict[str, Any]) -> PortfolioConfig:
    """
    Build the typed portfolio configuration from a validated config dict.

    Args:
        config: Output of validate_config

    Returns:
        Frozen PortfolioConfig
    """
    portfolio = config['portfolio']
    positions = tuple(_build_position(p) for p in portfolio['positions'])
    return PortfolioConfig(
        capital=float(portfolio['capital']),
        positions=positions,
        assume_fills=bool(portfolio['assume_fills']),
        microcap_limit=float(config['limits']['microcap_limit']),
        adv_pct_cap=float(config['limits']['adv_pct_cap']),
    )


def _build_position(raw: Dict[str, Any]) -> PositionConfig:
    spike = raw.get('spike_rule')
    trim = raw.get('pre_event_trim')
    hard_stop = raw['stops'].get('hard_stop_pct')
    return PositionConfig(
        ticker=raw['ticker'],
        target_weight=float(raw['target_weight']),
        entry=EntryPlan(
            tranches=tuple(float(t) for t in raw['entry']['tranches']),
            buy_dip_percents=tuple(float(d) for d in raw['entry']['buy_dip_percents']),
        ),
        stops=StopRules(
            trailing_pct=float(raw['stops']['trailing_pct']),
            hard_stop_pct=float(hard_stop) if hard_stop is not None else None,
        ),
        spike_rule=SpikeRule(
            pct_up_day=float(spike['pct_up_day']),
            new_trailing_pct=float(spike['new_trailing_pct']),
        ) if spike else None,
        pre_event_trim=PreEventTrim(
            event_date=trim['event_date'],
            window_days_min=trim['window_days_min'],
            window_days_max=trim['window_days_max'],
            trim_pct_of_position=float(trim['trim_pct_of_position']),
            hold_through_event_pct=float(trim['hold_through_event_pct']),
        ) if trim else None,
        take_profit_levels=tuple(float(level) for level in raw.get('take_profit_levels') or ()),
        notes=raw.get('notes') or "",
    )


def _validate_portfolio(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate capital, fill mode and the position list."""
    portfolio = config['portfolio']
    if not isinstance(portfolio, dict):
        raise ConfigError("portfolio section must be a mapping")

    if 'capital' not in portfolio:
        raise ConfigError("Missing 'capital' in portfolio configuration")
    if not _is_number(portfolio['capital']) or portfolio['capital'] <= 0:
        raise ConfigError("capital must be a positive number")

    if 'assume_fills' not in portfolio:
        portfolio['assume_fills'] = False
    elif not isinstance(portfolio['assume_fills'], bool):
        raise ConfigError("assume_fills must be true or false")

    positions = portfolio.get('positions')
    if not isinstance(positions, list):
        raise ConfigError("portfolio positions must be a list")
    if not positions:
        raise ConfigError("portfolio positions list cannot be empty")

    seen = set()
    for raw in positions:
        _validate_position(raw)
        if raw['ticker'] in seen:
            raise ConfigError(f"Duplicate position for ticker {raw['ticker']}")
        seen.add(raw['ticker'])

    weight_sum = sum(p['target_weight'] for p in positions)
    if abs(weight_sum - 1.0) >= WEIGHT_SUM_TOLERANCE:
        raise ConfigError(
            f"Sum of target_weight must equal 1.0 (got {weight_sum:.6f})"
        )

    logger.debug(f"Validated {len(positions)} positions")
    return config


def _validate_position(raw: Dict[str, Any]) -> None:
    """Validate one position entry in place, normalizing its ticker and defaults."""
    if not isinstance(raw, dict):
        raise ConfigError("Each position must be a mapping")

    ticker = raw.get('ticker')
    if not isinstance(ticker, str) or not ticker.strip():
        raise ConfigError("Position ticker must be a non-empty string")
    ticker = ticker.upper().strip()
    raw['ticker'] = ticker

    _check_range(raw.get('target_weight'), 0, 1, f"{ticker}: target_weight")

    entry = raw.get('entry')
    if not isinstance(entry, dict):
        raise ConfigError(f"{ticker}: missing entry configuration")
    tranches = entry.get('tranches')
    dips = entry.get('buy_dip_percents')
    if not isinstance(tranches, list) or not tranches:
        raise ConfigError(f"{ticker}: entry.tranches must be a non-empty list")
    if not isinstance(dips, list) or not dips:
        raise ConfigError(f"{ticker}: entry.buy_dip_percents must be a non-empty list")
    if len(tranches) != len(dips):
        raise ConfigError(
            f"{ticker}: entry.tranches and entry.buy_dip_percents must have the same length"
        )
    for fraction in tranches:
        _check_range(fraction, 0, 1, f"{ticker}: tranche fraction")
    for dip in dips:
        if not _is_number(dip):
            raise ConfigError(f"{ticker}: buy dip percent must be a number, got {dip!r}")

    stops = raw.get('stops')
    if not isinstance(stops, dict):
        raise ConfigError(f"{ticker}: missing stops configuration")
    _check_range(stops.get('trailing_pct'), 0.01, 0.8, f"{ticker}: stops.trailing_pct")
    if stops.get('hard_stop_pct') is not None:
        _check_range(stops['hard_stop_pct'], 0.01, 0.9, f"{ticker}: stops.hard_stop_pct")

    spike = raw.get('spike_rule')
    if spike is not None:
        if not isinstance(spike, dict):
            raise ConfigError(f"{ticker}: spike_rule must be a mapping")
        _check_range(spike.get('pct_up_day'), 0.01, 1, f"{ticker}: spike_rule.pct_up_day")
        _check_range(
            spike.get('new_trailing_pct'), 0.01, 0.8, f"{ticker}: spike_rule.new_trailing_pct"
        )

    if raw.get('pre_event_trim') is not None:
        raw['pre_event_trim'] = _validate_pre_event_trim(ticker, raw['pre_event_trim'])

    levels = raw.get('take_profit_levels')
    if levels is not None:
        if not isinstance(levels, list):
            raise ConfigError(f"{ticker}: take_profit_levels must be a list")
        for level in levels:
            _check_range(level, 0.01, 5, f"{ticker}: take-profit level")

    notes = raw.get('notes')
    if notes is not None and not isinstance(notes, str):
        raise ConfigError(f"{ticker}: notes must be a string")


def _validate_pre_event_trim(ticker: str, trim: Any) -> Dict[str, Any]:
    if not isinstance(trim, dict):
        raise ConfigError(f"{ticker}: pre_event_trim must be a mapping")

    trim.setdefault('event_date', None)
    trim.setdefault('window_days_min', 3)
    trim.setdefault('window_days_max', 10)
    trim.setdefault('trim_pct_of_position', 0.4)
    trim.setdefault('hold_through_event_pct', 0.6)

    trim['event_date'] = _parse_event_date(ticker, trim['event_date'])

    for key in ('window_days_min', 'window_days_max'):
        value = trim[key]
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ConfigError(f"{ticker}: pre_event_trim.{key} must be a non-negative integer")
    if trim['window_days_min'] > trim['window_days_max']:
        raise ConfigError(
            f"{ticker}: pre_event_trim.window_days_min cannot exceed window_days_max"
        )

    _check_range(trim['trim_pct_of_position'], 0, 1, f"{ticker}: pre_event_trim.trim_pct_of_position")
    _check_range(
        trim['hold_through_event_pct'], 0, 1, f"{ticker}: pre_event_trim.hold_through_event_pct"
    )
    return trim


def _parse_event_date(ticker: str, value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        # PyYAML already turns unquoted YYYY-MM-DD into a date
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), '%Y-%m-%d').date()
        except ValueError:
            pass
    raise ConfigError(f"{ticker}: pre_event_trim.event_date must be YYYY-MM-DD or null")


def _validate_limits(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate portfolio risk knobs."""
    limits = _section_with_defaults(config, 'limits', DEFAULT_LIMITS)

    if not _is_number(limits['microcap_limit']) or limits['microcap_limit'] <= 0:
        raise ConfigError("limits.microcap_limit must be a positive number")

    cap = limits['adv_pct_cap']
    if not _is_number(cap) or not 0 < cap <= 1:
        raise ConfigError("limits.adv_pct_cap must be in (0, 1]")

    return config


def _validate_sizing(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate defaults used by one-off entry proposals."""
    sizing = _section_with_defaults(config, 'sizing', DEFAULT_SIZING)
    _check_range(sizing['target_weight'], 0, 1, "sizing.target_weight")
    _check_range(sizing['risk_pct'], 0, 1, "sizing.risk_pct")
    return config


def _validate_planning(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate entry-planner settings."""
    planning = _section_with_defaults(config, 'planning', DEFAULT_PLANNING)

    _check_range(planning['pullback_max_pct'], 0, 1, "planning.pullback_max_pct")
    _check_range(planning['market_threshold_pct'], 0, 1, "planning.market_threshold_pct")

    if not _is_number(planning['stop_atr_mult']) or planning['stop_atr_mult'] <= 0:
        raise ConfigError("planning.stop_atr_mult must be positive")

    for period in ('ema_period', 'atr_period'):
        if not isinstance(planning[period], int) or planning[period] < 1:
            raise ConfigError(f"planning.{period} must be at least 1")

    return config


def _validate_data_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate market-data collaborator settings."""
    data = _section_with_defaults(config, 'data', DEFAULT_DATA)

    if str(data['feed']).lower() not in VALID_FEEDS:
        raise ConfigError(f"Invalid feed: {data['feed']}. Must be one of {VALID_FEEDS}")
    data['feed'] = str(data['feed']).lower()

    if data['max_workers'] < 1:
        raise ConfigError("max_workers must be at least 1")

    if data['task_timeout'] < 1:
        raise ConfigError("task_timeout must be at least 1 second")

    if data['days_history'] < 1:
        raise ConfigError("days_history must be at least 1")

    if data['adv_lookback_days'] < 1:
        raise ConfigError("adv_lookback_days must be at least 1")

    # Indicators for the planner need warmup bars on top of their period
    planning = config['planning']
    min_needed = max(planning['ema_period'], planning['atr_period']) + 20
    if data['days_history'] < min_needed:
        logger.info(
            f"Adjusted days_history from {data['days_history']} to {min_needed} "
            f"(required by indicator warmup)"
        )
        data['days_history'] = min_needed

    return config


def _validate_storage(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate state and output locations."""
    storage = _section_with_defaults(config, 'storage', DEFAULT_STORAGE)
    for key in ('state_file', 'out_dir'):
        if not isinstance(storage[key], str) or not storage[key].strip():
            raise ConfigError(f"storage.{key} must be a non-empty path")
    return config


def _section_with_defaults(
    config: Dict[str, Any],
    name: str,
    defaults: Dict[str, Any]
) -> Dict[str, Any]:
    section = config.get(name)
    if section is None:
        section = {}
    if not isinstance(section, dict):
        raise ConfigError(f"{name} section must be a mapping")
    for key, value in defaults.items():
        section.setdefault(key, value)
    config[name] = section
    return section


def _check_range(value: Any, low: float, high: float, label: str) -> None:
    if not _is_number(value):
        raise ConfigError(f"{label} must be a number")
    if not low <= value <= high:
        raise ConfigError(f"{label} must be between {low} and {high}, got {value}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

