"""Main CLI entry point for the microcap portfolio engine."""

import sys
import logging
from typing import List, Optional

import yaml
import typer
from rich.console import Console
from dotenv import load_dotenv

from .config_validator import validate_config, build_portfolio_config
from .cycle import fetch_snapshots, market_today, run_cycle
from .data_provider import MarketDataProvider
from .planner import available_cash, plan_entries
from .reporter import Reporter
from .state_store import StateStore
from .status import status_rows, target_rows
from .exceptions import (
    ExceptionMapper,
    ConfigError,
    DataError,
    StateError,
    EXIT_SUCCESS,
    EXIT_CONFIG_ERROR,
    EXIT_DATA_ERROR,
    EXIT_STATE_ERROR
)

# Load environment variables (API credentials)
load_dotenv()

app = typer.Typer(
    name="mpb",
    help="Microcap portfolio engine: daily order suggestions for a fixed multi-position strategy.",
    add_completion=False
)

console = Console()

CONFIG_OPTION = typer.Option(
    "config.yaml",
    "--config-file", "-c",
    help="Path to configuration file"
)
DEBUG_OPTION = typer.Option(
    False,
    "--debug", "-d",
    help="Enable debug logging"
)


def setup_logging(debug: bool = False):
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Reduce noise from third-party libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('alpaca').setLevel(logging.WARNING)
    logging.getLogger('yfinance').setLevel(logging.WARNING)


def load_config(filepath: str) -> dict:
    """
    Load and validate configuration file.

    Args:
        filepath: Path to configuration YAML file

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigError: If configuration is invalid
    """
    try:
        with open(filepath, 'r') as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {filepath}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}")

    return validate_config(config)


def exit_on_error(e: Exception, debug: bool) -> None:
    """Report an exception and exit with its mapped code."""
    if isinstance(e, ConfigError):
        console.print(f"\n[red]Configuration error: {e}[/red]")
        sys.exit(EXIT_CONFIG_ERROR)

    if isinstance(e, StateError):
        console.print(f"\n[red]State error: {e}[/red]")
        sys.exit(EXIT_STATE_ERROR)

    if isinstance(e, DataError):
        console.print(f"\n[red]Data error: {e}[/red]")
        sys.exit(EXIT_DATA_ERROR)

    exit_code = ExceptionMapper.map_to_exit_code(e)
    if debug:
        console.print_exception()
    else:
        console.print(f"\n[red]Error: {e}[/red]")
        console.print(f"[dim]Exit code: {exit_code}[/dim]")
        console.print("[dim]Run with --debug for more details[/dim]")
    sys.exit(exit_code)


@app.command()
def run(
    config_file: str = CONFIG_OPTION,
    capital: Optional[float] = typer.Option(
        None,
        "--capital",
        help="Override capital (USD) for this run"
    ),
    assume_fills: bool = typer.Option(
        False,
        "--assume-fills",
        help="Book every suggested order as filled at today's price"
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Validate configuration only"
    ),
    debug: bool = DEBUG_OPTION
):
    """
    Run the daily decision cycle.

    Fetches market snapshots, evaluates every configured position,
    saves state and writes the day's suggested orders.
    """
    setup_logging(debug)

    try:
        console.print(f"[dim]Loading configuration from {config_file}...[/dim]")
        config = load_config(config_file)
        portfolio = build_portfolio_config(config)

        if capital is not None and capital <= 0:
            raise ConfigError("--capital must be positive")

        console.print(f"[cyan]Portfolio: {len(portfolio.positions)} positions[/cyan]")

        if dry_run:
            console.print("\n[green]✓ Configuration valid[/green]")
            console.print("[yellow]Dry run complete (use without --dry-run to run the cycle)[/yellow]")
            sys.exit(EXIT_SUCCESS)

        store = StateStore(config['storage']['state_file'], portfolio.positions, portfolio.capital)
        provider = MarketDataProvider(config)

        report = run_cycle(
            portfolio,
            store,
            provider,
            today=market_today(config['data']['timezone']),
            out_dir=config['storage']['out_dir'],
            capital=capital,
            assume_fills=True if assume_fills else None,
            max_workers=config['data']['max_workers'],
            task_timeout=config['data']['task_timeout'],
        )

        Reporter(console).display_cycle(report)
        console.print("\n[green]✓ Cycle complete[/green]")
        sys.exit(EXIT_SUCCESS)

    except KeyboardInterrupt:
        console.print("\n[yellow]Run interrupted by user; state not saved[/yellow]")
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        exit_on_error(e, debug)


@app.command()
def status(
    config_file: str = CONFIG_OPTION,
    debug: bool = DEBUG_OPTION
):
    """Show stops, take-profits and event windows per ticker, and export them as JSON."""
    setup_logging(debug)

    try:
        config = load_config(config_file)
        portfolio = build_portfolio_config(config)
        state = StateStore(config['storage']['state_file'], portfolio.positions, portfolio.capital).load()

        provider = MarketDataProvider(config)
        results = fetch_snapshots(
            provider,
            portfolio.tickers,
            config['data']['max_workers'],
            config['data']['task_timeout']
        )
        snapshots = {t: r.snapshot for t, r in results.items()}

        today = market_today(config['data']['timezone'])
        rows = status_rows(portfolio.positions, state, snapshots, today)

        reporter = Reporter(console)
        reporter.display_status(rows, today)
        reporter.export_status(rows, today, config['storage']['out_dir'])
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        exit_on_error(e, debug)


@app.command()
def targets(
    config_file: str = CONFIG_OPTION,
    debug: bool = DEBUG_OPTION
):
    """Show take-profit prices and share quantities per ticker."""
    setup_logging(debug)

    try:
        config = load_config(config_file)
        portfolio = build_portfolio_config(config)
        state = StateStore(config['storage']['state_file'], portfolio.positions, portfolio.capital).load()

        rows = target_rows(portfolio.positions, state)
        Reporter(console).display_targets(rows, market_today(config['data']['timezone']))
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        exit_on_error(e, debug)


@app.command()
def plan(
    tickers: List[str] = typer.Argument(..., help="Tickers to plan entries for"),
    config_file: str = CONFIG_OPTION,
    capital: Optional[float] = typer.Option(
        None,
        "--capital",
        help="Override capital (USD)"
    ),
    debug: bool = DEBUG_OPTION
):
    """Propose sized entries (entry, stop, targets) for the given tickers."""
    setup_logging(debug)

    try:
        config = load_config(config_file)
        portfolio = build_portfolio_config(config)
        state = StateStore(config['storage']['state_file'], portfolio.positions, portfolio.capital).load()
        capital_usd = capital if capital is not None else state.capital

        provider = MarketDataProvider(config)
        symbols = list(dict.fromkeys(t.upper().strip() for t in tickers))
        held = [t for t, p in state.positions.items() if p.shares > 0]
        results = fetch_snapshots(
            provider,
            list(dict.fromkeys(symbols + held)),
            config['data']['max_workers'],
            config['data']['task_timeout']
        )
        snapshots = {t: r.snapshot for t, r in results.items()}
        cash = available_cash(capital_usd, state, snapshots)

        proposals = plan_entries(provider, symbols, snapshots, capital_usd, cash, config)
        Reporter(console).display_proposals(proposals, capital_usd, cash)
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        exit_on_error(e, debug)


@app.command()
def version():
    """Show version information."""
    from . import __version__
    console.print(f"Microcap Portfolio Engine v{__version__}")


if __name__ == "__main__":
    app()
