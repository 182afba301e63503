"""Console display and file export for cycle, status, targets and plan results."""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from .cycle import CycleReport
from .engine import fmt_usd, pct_str
from .models import MarketSnapshot, OrderSuggestion, Side
from .planner import EntryProposal

logger = logging.getLogger(__name__)

MISSING = '—'


def fmt_price(value: Optional[float]) -> str:
    return MISSING if value is None else f"${value:.4f}"


def fmt_volume(value: Optional[float]) -> str:
    if value is None:
        return MISSING
    if value >= 1_000_000:
        return f"{value / 1_000_000:.2f}M"
    if value >= 1000:
        return f"{value / 1000:.1f}k"
    return f"{value:.0f}"


class Reporter:
    """
    Handles result display and export functionality.

    This class is responsible for:
    - The per-ticker market table and warning list after a cycle
    - The suggested orders and the capital / MTM summary line
    - Status, take-profit target and entry-plan tables
    - Exporting status rows to JSON
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def display_cycle(self, report: CycleReport) -> None:
        """
        Display everything a cycle produced.

        This is the main display contract after `run`.

        Args:
            report: Result of run_cycle
        """
        self.console.print(f"\n[bold]=== MICROCAP PORTFOLIO - {report.run_date.isoformat()} ===[/bold]")
        self.display_market(report.snapshots)
        self.display_warnings(report.warnings, report.fetch_errors)
        self.display_orders(report.orders, report.orders_path)
        self.print_summary(report)

    def display_market(self, snapshots: Sequence[MarketSnapshot]) -> None:
        table = Table(title="Market", show_header=True, header_style="bold cyan")
        table.add_column("Ticker", style="cyan", no_wrap=True)
        table.add_column("Price", justify="right")
        table.add_column("Change %", justify="right")
        table.add_column("Mkt Cap", justify="right")
        table.add_column("ADV 3m", justify="right")

        for snap in snapshots:
            change = MISSING
            if snap.change_pct is not None:
                style = "green" if snap.change_pct >= 0 else "red"
                change = f"[{style}]{snap.change_pct:+.2f}%[/{style}]"
            table.add_row(
                snap.ticker,
                fmt_price(snap.price),
                change,
                fmt_usd(snap.market_cap) if snap.market_cap else MISSING,
                fmt_volume(snap.adv3m),
            )

        self.console.print(table)

    def display_warnings(self, warnings: Sequence[str], fetch_errors: Dict[str, str]) -> None:
        if not warnings and not fetch_errors:
            return

        self.console.print("\n[bold yellow]WARNINGS:[/bold yellow]")
        for warning in warnings:
            self.console.print(f"  • {warning}")
        for ticker, error in fetch_errors.items():
            self.console.print(f"  • {ticker}: market data unavailable ({error})")

    def display_orders(self, orders: Sequence[OrderSuggestion], orders_path: Optional[Path]) -> None:
        if not orders:
            self.console.print("\n[dim]No orders suggested today.[/dim]")
            return

        table = Table(title=f"Suggested Orders ({len(orders)})", show_header=True, header_style="bold cyan")
        table.add_column("Side", no_wrap=True)
        table.add_column("Ticker", style="cyan", no_wrap=True)
        table.add_column("Shares", justify="right")
        table.add_column("Price Hint", justify="right")
        table.add_column("Reason")

        for order in orders:
            side_style = "green" if order.side == Side.BUY else "red"
            table.add_row(
                f"[{side_style}]{order.side.value}[/{side_style}]",
                order.ticker,
                str(order.shares),
                fmt_price(order.price_hint),
                order.reason,
            )

        self.console.print()
        self.console.print(table)
        if orders_path:
            self.console.print(f"[green]✓ Orders exported to {orders_path}[/green]")

    def print_summary(self, report: CycleReport) -> None:
        mode = "paper fills booked" if report.assume_fills else "suggestions only"
        self.console.print(
            f"\nCapital: {fmt_usd(report.capital)}  |  "
            f"MTM (positions): {fmt_usd(report.mtm)}  |  "
            f"Cash (est.): {fmt_usd(report.cash_estimate)}  |  "
            f"[dim]{mode}[/dim]"
        )

    def display_status(self, rows: List[Dict[str, Any]], run_date: date) -> None:
        """
        Display per-ticker stops, take-profits and event windows.

        Args:
            rows: Output of status.status_rows
            run_date: Date shown in the title
        """
        table = Table(title=f"Status - {run_date.isoformat()}", show_header=True, header_style="bold cyan")
        table.add_column("Ticker", style="cyan", no_wrap=True)
        table.add_column("Last", justify="right")
        table.add_column("Avg Cost", justify="right")
        table.add_column("Trail %", justify="right")
        table.add_column("Stop", justify="right")
        table.add_column("TP1")
        table.add_column("TP2")
        table.add_column("TP3")
        table.add_column("Event window")

        for row in rows:
            tp_cols = [self._format_take_profit(tp) for tp in row['take_profits']]
            tp_cols += [MISSING] * (3 - len(tp_cols))
            table.add_row(
                row['ticker'],
                fmt_price(row['last']),
                fmt_price(row['avg_cost']),
                pct_str(row['trailing_pct']),
                fmt_price(row['stop']),
                *tp_cols[:3],
                self._format_event(row['event']),
            )

        self.console.print(table)

    def export_status(self, rows: List[Dict[str, Any]], run_date: date, out_dir: str) -> Path:
        """
        Save status rows to `status-<date>.json`.

        Args:
            rows: Output of status.status_rows
            run_date: Date keying the file name
            out_dir: Output directory

        Returns:
            Path to the JSON file
        """
        directory = Path(out_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"status-{run_date.isoformat()}.json"

        with open(path, 'w') as f:
            json.dump({'date': run_date.isoformat(), 'rows': rows}, f, indent=2)

        logger.info(f"Saved status to {path}")
        self.console.print(f"\n[green]✓ Status exported to {path}[/green]")
        return path

    def display_targets(self, rows: List[Dict[str, Any]], run_date: date) -> None:
        table = Table(
            title=f"Take-profit targets (GTC) - {run_date.isoformat()}",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("Ticker", style="cyan", no_wrap=True)
        table.add_column("Shares", justify="right")
        table.add_column("Avg Cost", justify="right")
        table.add_column("TP1")
        table.add_column("TP2")
        table.add_column("TP3")

        for row in rows:
            legs = [
                f"{fmt_price(leg['price'])} | {pct_str(leg['level'])} | {leg['qty']} sh"
                for leg in row['legs']
            ]
            legs += [MISSING] * (3 - len(legs))
            table.add_row(row['ticker'], str(row['shares']), fmt_price(row['avg_cost']), *legs[:3])

        self.console.print(table)
        self.console.print("\n[dim]Place GTC limit orders at the prices above with the listed quantities.[/dim]")

    def display_proposals(self, proposals: Sequence[EntryProposal], capital: float, cash: float) -> None:
        self.console.print(f"\nCapital: {fmt_usd(capital)}  |  Cash approx: {fmt_usd(cash)}")

        table = Table(title="Entry plan", show_header=True, header_style="bold cyan")
        table.add_column("Ticker", style="cyan", no_wrap=True)
        table.add_column("Order")
        table.add_column("Stop", justify="right")
        table.add_column("TP1", justify="right")
        table.add_column("TP2", justify="right")
        table.add_column("Risk", justify="right")
        table.add_column("Bound by")

        for p in proposals:
            if p.skip_reason:
                table.add_row(p.ticker, f"[dim]skip: {p.skip_reason}[/dim]", *[MISSING] * 5)
                continue
            order = (
                f"BUY {p.shares} @ MKT" if p.action == 'MKT'
                else f"BUY {p.shares} LIMIT @ {fmt_price(p.entry)}"
            )
            table.add_row(
                p.ticker,
                order,
                fmt_price(p.stop),
                fmt_price(p.tp1),
                fmt_price(p.tp2),
                fmt_usd(p.risk),
                p.limiting_constraint,
            )

        self.console.print(table)

    @staticmethod
    def _format_take_profit(tp: Optional[Dict[str, Any]]) -> str:
        if tp is None:
            return MISSING
        marker = "[green]HIT[/green]" if tp['hit'] else "[dim]waiting[/dim]"
        return f"{pct_str(tp['level'])} @ {tp['target']:.4f} {marker}"

    @staticmethod
    def _format_event(event: Optional[Dict[str, Any]]) -> str:
        if event is None:
            return MISSING
        text = (
            f"{event['event_date']} ({event['days_to_event']} d), "
            f"hold {pct_str(event['hold_through_event_pct'])}"
        )
        if event['in_window']:
            text += (
                f" [yellow]in window D-{event['window_days_max']}..D-{event['window_days_min']}[/yellow]"
            )
        return text
