#!/usr/bin/env python3
"""Fund portfolio ledger CLI tool.

This script manages the transaction ledger and builds weekly buy plans:
- Record and remove transactions
- View holdings, category weights and week-to-date gains
- Sync NAV history from EastMoney
- Build, edit and confirm equal-weight buy plans
- Back up and restore the local store
- Project a savings plan with compound growth

Examples:
    # Record a buy with the cash actually paid
    python scripts/fund_portfolio.py add buy 000216 "Gold ETF Link" gold 120.5 \\
        --date 2024-03-11 --amount 300

    # Refresh NAV history and show holdings
    python scripts/fund_portfolio.py sync
    python scripts/fund_portfolio.py holdings --realtime

    # Plan a 300 budget, move the gold settlement date, then confirm
    python scripts/fund_portfolio.py plan --budget 300 \\
        --date 000216=2024-03-12 --confirm

    # Spread 1000 over all held bond funds
    python scripts/fund_portfolio.py inflow bond 1000

    # 20 years of 2000 a month at 8%
    python scripts/fund_portfolio.py project --monthly 2000 --rate 8 --years 20
"""

import sys
from datetime import date
from typing import Dict, Optional

import click
from rich.console import Console
from rich.table import Table

# Add project root to path
sys.path.append(".")

from fundledger.api.portfolio_api import PortfolioAPI
from fundledger.backup.transport import HttpBackupTransport
from fundledger.portfolio.decisions import DecisionSet
from fundledger.portfolio.models import CATEGORY_ORDER, Category, CostBasisStatus
from fundledger.portfolio.valuation import allocation_percentages
from fundledger.utils.config import load_backup_config, load_config
from fundledger.utils.exceptions import FundLedgerError
from fundledger.utils.logging import setup_logging_from_config

console = Console()


def parse_assignments(values: tuple, label: str) -> Dict[str, str]:
    """Parse ``CODE=VALUE`` option strings into a dictionary.

    Args:
        values: Tuple of "CODE=VALUE" strings
        label: Option name used in error messages

    Returns:
        Dictionary of code -> raw value
    """
    parsed = {}
    for item in values:
        if "=" not in item:
            raise click.BadParameter(f"expected CODE=VALUE, got '{item}'", param_hint=label)
        code, value = item.split("=", 1)
        parsed[code.strip()] = value.strip()
    return parsed


def fmt_money(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:,.2f}"


def fmt_signed(value: Optional[float]) -> str:
    if value is None:
        return "-"
    color = "green" if value >= 0 else "red"
    return f"[{color}]{value:+,.2f}[/{color}]"


def render_plan(plan: DecisionSet, api: PortfolioAPI) -> None:
    table = Table(title="🧾 Buy Plan", show_header=True, header_style="bold magenta")
    table.add_column("Code", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Cash", justify="right")
    table.add_column("Units", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Baseline", justify="right")
    table.add_column("Gap", justify="right")
    table.add_column("Date", justify="right")

    for decision in plan:
        table.add_row(
            decision.code,
            decision.name,
            decision.category.value,
            fmt_money(decision.cash_amount),
            f"{decision.settlement_units:,.2f}",
            f"{decision.current_price:.4f}" + (" [yellow](stale)[/yellow]" if decision.is_price_stale else ""),
            f"{decision.reference_baseline_price:.4f}",
            f"{decision.timing_gap:+.2%}",
            decision.settlement_date.isoformat(),
        )
    console.print(table)

    summary = api.get_summary()
    weights = Table(title="⚖️ Category Weights", show_header=True, header_style="bold magenta")
    weights.add_column("Category", style="cyan")
    weights.add_column("Now", justify="right")
    weights.add_column("After", justify="right")
    for category, (now_pct, after_pct) in plan.projected_weights(summary.category_values).items():
        weights.add_row(category.value, f"{now_pct:.1f}%", f"{after_pct:.1f}%")
    console.print(weights)

    signal = plan.timing_signal(api.strong_dip_threshold)
    console.print(f"Total cash: [bold]{fmt_money(plan.total_cash())}[/bold]   Timing: [bold]{signal.value}[/bold]")


def apply_edits(plan: DecisionSet, units: tuple, amounts: tuple, dates: tuple) -> None:
    for code, value in parse_assignments(amounts, "--amount").items():
        plan.override_cash_amount(code, float(value))
    for code, value in parse_assignments(dates, "--date").items():
        plan.override_settlement_date(code, date.fromisoformat(value))
    for code, value in parse_assignments(units, "--units").items():
        plan.override_units(code, float(value))


def finish_plan(api: PortfolioAPI, plan: DecisionSet, confirm: bool) -> None:
    if len(plan) == 0:
        console.print("[yellow]Nothing to buy.[/yellow]")
        return
    render_plan(plan, api)
    if confirm:
        transactions = api.confirm_decisions(plan)
        console.print(f"[bold green]✓ Recorded {len(transactions)} buys in the ledger[/bold green]")
    else:
        console.print("[dim]Dry run. Pass --confirm to record these buys.[/dim]")


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config YAML file")
@click.pass_context
def cli(ctx, config_path: Optional[str]):
    """Fund Ledger Portfolio Tool"""
    config = load_config(config_path)
    setup_logging_from_config(config)
    ctx.obj = {"config": config}


def get_api(ctx) -> PortfolioAPI:
    if "api" not in ctx.obj:
        ctx.obj["api"] = PortfolioAPI(config=ctx.obj["config"])
    return ctx.obj["api"]


@cli.command()
@click.argument("kind", type=click.Choice(["buy", "sell", "reinvest"]))
@click.argument("code")
@click.argument("name")
@click.argument("category", type=click.Choice([c.value for c in Category] + ["stock"]))
@click.argument("units", type=float)
@click.option("--date", "settlement_date", default=None, help="Settlement date (YYYY-MM-DD), default today")
@click.option("--amount", type=float, default=None, help="Cash actually settled")
@click.pass_context
def add(ctx, kind, code, name, category, units, settlement_date, amount):
    """Record a transaction in the ledger."""
    try:
        transaction = get_api(ctx).record_transaction(
            kind,
            code,
            name,
            category,
            units,
            settlement_date or date.today(),
            cash_amount=amount,
        )
    except (FundLedgerError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    console.print(f"[green]✓ Recorded {kind} {units} of {code} ({transaction.id})[/green]")


@cli.command()
@click.argument("transaction_id")
@click.pass_context
def remove(ctx, transaction_id):
    """Delete a transaction by id."""
    if get_api(ctx).remove_transaction(transaction_id):
        console.print(f"[green]✓ Removed {transaction_id}[/green]")
    else:
        console.print(f"[yellow]No transaction with id {transaction_id}[/yellow]")
        sys.exit(1)


@cli.command()
@click.option("--code", default=None, help="Only this instrument")
@click.pass_context
def history(ctx, code):
    """List ledger transactions."""
    table = Table(title="📒 Ledger", show_header=True, header_style="bold magenta")
    table.add_column("Id", style="dim", no_wrap=True)
    table.add_column("Date")
    table.add_column("Type")
    table.add_column("Code", style="cyan")
    table.add_column("Units", justify="right")
    table.add_column("Amount", justify="right")
    table.add_column("Alpha", justify="right")

    for t in get_api(ctx).transactions():
        if code and t.code != code:
            continue
        table.add_row(
            t.id,
            t.settlement_date.isoformat(),
            t.kind.value,
            t.code,
            f"{t.units:,.2f}",
            fmt_money(t.recorded_cash_amount),
            fmt_signed(t.timing_alpha),
        )
    console.print(table)


@cli.command()
@click.option("--realtime", is_flag=True, help="Value holdings at intraday estimates")
@click.option("--all", "show_all", is_flag=True, help="Include liquidated holdings")
@click.pass_context
def holdings(ctx, realtime, show_all):
    """Show holdings, category weights and weekly gains."""
    api = get_api(ctx)
    if realtime:
        api.refresh_realtime()

    table = Table(title="📈 Holdings", show_header=True, header_style="bold magenta")
    table.add_column("Code", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Units", justify="right")
    table.add_column("Avg Cost", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Market Value", justify="right")
    table.add_column("P&L", justify="right")

    for holding in api.get_holdings(include_liquidated=show_all):
        avg_cost = fmt_money(holding.weighted_average_cost)
        if holding.cost_basis_status is CostBasisStatus.PENDING:
            avg_cost = "[yellow]pending[/yellow]"
        elif holding.cost_basis_status is CostBasisStatus.STALE:
            avg_cost += " [yellow]*[/yellow]"
        price = "-" if holding.current_price is None else f"{holding.current_price:.4f}"
        if holding.price_is_live:
            price += " [dim]live[/dim]"
        table.add_row(
            holding.code,
            holding.name,
            holding.category.value,
            f"{holding.total_units:,.2f}",
            avg_cost,
            price,
            fmt_money(holding.market_value),
            fmt_signed(holding.profit),
        )
    console.print(table)

    summary = api.get_summary()
    gains = api.get_weekly_gains()
    percentages = allocation_percentages(summary.category_values)

    categories = Table(title="📊 Categories", show_header=True, header_style="bold magenta")
    categories.add_column("Category", style="cyan")
    categories.add_column("Value", justify="right")
    categories.add_column("Weight", justify="right")
    categories.add_column("This Week", justify="right")
    for category in CATEGORY_ORDER:
        categories.add_row(
            category.value,
            fmt_money(summary.category_values[category]),
            f"{percentages[category]:.1f}%",
            fmt_signed(gains.by_category[category]),
        )
    categories.add_row(
        "[bold]total[/bold]",
        fmt_money(summary.market_value),
        "",
        fmt_signed(gains.total),
    )
    console.print(categories)
    console.print(f"Profit: {fmt_signed(summary.profit)}")

    if summary.unpriced_codes:
        console.print(f"[yellow]No price for: {', '.join(summary.unpriced_codes)} (run sync)[/yellow]")
    if summary.pending_cost_codes:
        console.print(f"[yellow]Cost basis pending for: {', '.join(summary.pending_cost_codes)}[/yellow]")
    for error in api.load_errors:
        console.print(f"[bold red]Could not load {error.key}[/bold red]")


@cli.command()
@click.argument("codes", nargs=-1)
@click.pass_context
def sync(ctx, codes):
    """Refresh NAV history (all held instruments by default)."""
    report = get_api(ctx).sync_prices(list(codes) or None)
    for code, count in sorted(report.updated.items()):
        console.print(f"[green]✓ {code}: {count} points[/green]")
    for code, message in sorted(report.failed.items()):
        console.print(f"[red]✗ {code}: {message}[/red]")
    if not report.ok:
        sys.exit(1)


@cli.command()
@click.option("--budget", type=float, default=None, help="Cash to deploy")
@click.option("--realtime", is_flag=True, help="Price decisions at intraday estimates")
@click.option("--units", multiple=True, help="Override units (CODE=UNITS)")
@click.option("--amount", multiple=True, help="Override cash (CODE=AMOUNT)")
@click.option("--date", "dates", multiple=True, help="Override settlement date (CODE=YYYY-MM-DD)")
@click.option("--confirm", is_flag=True, help="Record the plan in the ledger")
@click.pass_context
def plan(ctx, budget, realtime, units, amount, dates, confirm):
    """Split a budget across categories toward equal weight."""
    api = get_api(ctx)
    try:
        if realtime:
            api.refresh_realtime()
        decision_set = api.plan_category_budget(budget)
        apply_edits(decision_set, units, amount, dates)
        finish_plan(api, decision_set, confirm)
    except FundLedgerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.argument("category", type=click.Choice([c.value for c in Category] + ["stock"]))
@click.argument("amount", type=float)
@click.option("--realtime", is_flag=True, help="Price decisions at intraday estimates")
@click.option("--units", multiple=True, help="Override units (CODE=UNITS)")
@click.option("--date", "dates", multiple=True, help="Override settlement date (CODE=YYYY-MM-DD)")
@click.option("--confirm", is_flag=True, help="Record the plan in the ledger")
@click.pass_context
def inflow(ctx, category, amount, realtime, units, dates, confirm):
    """Spread new cash over the held instruments of one category."""
    api = get_api(ctx)
    try:
        if realtime:
            api.refresh_realtime()
        decision_set = api.plan_inflow(category, amount)
        apply_edits(decision_set, units, (), dates)
        finish_plan(api, decision_set, confirm)
    except FundLedgerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.argument("category", type=click.Choice([c.value for c in Category] + ["stock"]))
@click.argument("code")
@click.pass_context
def prefer(ctx, category, code):
    """Choose which instrument receives a category's cash."""
    get_api(ctx).set_preferred_instrument(category, code)
    console.print(f"[green]✓ {Category(category).value} cash goes to {code}[/green]")


@cli.command()
@click.option("--initial", type=float, default=None, help="Starting principal")
@click.option("--monthly", type=float, default=None, help="Monthly contribution")
@click.option("--rate", type=float, default=None, help="Annual rate in percent")
@click.option("--years", type=int, default=None, help="Years to project")
@click.pass_context
def project(ctx, initial, monthly, rate, years):
    """Project a savings plan with monthly compounding."""
    try:
        result = get_api(ctx).project_growth(initial, monthly, rate, years)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    table = Table(title="📈 Compound Growth", show_header=True, header_style="bold magenta")
    table.add_column("Year", justify="right", style="cyan")
    table.add_column("Principal", justify="right")
    table.add_column("Interest", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Interest this year", justify="right")
    for row in result.yearly:
        style = "bold yellow" if row.year == result.crossover_year else None
        table.add_row(
            str(row.year),
            f"{row.total_principal:,}",
            f"{row.total_interest:,}",
            f"{row.balance:,}",
            f"{row.yearly_interest:,}",
            style=style,
        )
    console.print(table)

    console.print(
        f"Final balance: [bold]{result.final_balance:,}[/bold]   "
        f"Effective annual rate: [bold]{result.effective_annual_rate:.2f}%[/bold]"
    )
    if result.crossover_year is None:
        console.print("[dim]Interest never overtakes principal in this horizon.[/dim]")
    else:
        console.print(f"Interest overtakes principal in year [bold yellow]{result.crossover_year}[/bold yellow]")


@cli.group()
@click.pass_context
def backup(ctx):
    """Remote backup of the local store."""
    creds = load_backup_config()
    ctx.obj["transport"] = HttpBackupTransport(
        creds["base_url"],
        creds["token"],
        timeout=ctx.obj["config"].get("backup.timeout", 30),
    )


@backup.command("save")
@click.pass_context
def backup_save(ctx):
    """Upload the whole store."""
    backup_date = get_api(ctx).backup(ctx.obj["transport"])
    console.print(f"[green]✓ Backup saved as {backup_date}[/green]")


@backup.command("list")
@click.option("--month", default=None, help="Only backups in this month (YYYY-MM)")
@click.pass_context
def backup_list(ctx, month):
    """List remote backups."""
    for backup_date in ctx.obj["transport"].list_snapshots(month):
        console.print(backup_date)


@backup.command("restore")
@click.argument("backup_date")
@click.confirmation_option(prompt="Overwrite local data with this backup?")
@click.pass_context
def backup_restore(ctx, backup_date):
    """Replace local data with a remote backup."""
    count = get_api(ctx).restore(ctx.obj["transport"], backup_date)
    console.print(f"[green]✓ Restored {count} keys from {backup_date}[/green]")


@backup.command("delete")
@click.argument("backup_date")
@click.confirmation_option(prompt="Delete this backup?")
@click.pass_context
def backup_delete(ctx, backup_date):
    """Delete a remote backup."""
    ctx.obj["transport"].delete(backup_date)
    console.print(f"[green]✓ Deleted {backup_date}[/green]")


if __name__ == "__main__":
    cli()
