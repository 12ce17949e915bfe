"""
CLI interface for Novylist AI governance.

Provides command-line access to cost estimates, usage reports and admin resets.
"""

import logging
import sys
from enum import Enum
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from novylist_governance.config.loader import GovernanceConfig, load_governance_config
from novylist_governance.config.settings import get_settings, resolve_config
from novylist_governance.core.pricing import estimate_cost, select_model_for_tier
from novylist_governance.sdk.openai_client import CompletionOrchestrator
from novylist_governance.storage.db import get_store

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


class ResetScope(str, Enum):
    RATE_LIMIT = "rate-limit"
    TOKENS = "tokens"
    DAILY = "daily"
    MONTHLY = "monthly"
    ALL = "all"


def _config(ctx: typer.Context) -> GovernanceConfig:
    return ctx.obj["config"]


def _orchestrator(ctx: typer.Context) -> CompletionOrchestrator:
    return CompletionOrchestrator(get_store(ctx.obj["settings"]), config=_config(ctx))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Governance policy YAML (defaults to NOVYLIST_GOVERNANCE_CONFIG or built-in tables)"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
):
    """Novylist AI governance CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = get_settings()
    try:
        policy = resolve_config(config, settings)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading config:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    ctx.obj = {"settings": settings, "config": policy}
    if ctx.invoked_subcommand is None:
        console.print("Novylist AI governance - Use --help to see available commands")


@app.command()
def estimate(
    ctx: typer.Context,
    feature: str = typer.Option("writingContinuation", "--feature", "-f", help="Feature type"),
    tier: str = typer.Option("free", "--tier", "-t", help="Subscription tier"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model override"),
    input_tokens: int = typer.Option(500, "--input-tokens", "-i", min=0),
    output_tokens: int = typer.Option(500, "--output-tokens", "-o", min=0),
):
    """Estimate the cost of a request without touching any counters."""
    policy = _config(ctx)
    model_name = model or select_model_for_tier(tier, feature, policy)
    result = estimate_cost(model_name, input_tokens, output_tokens, policy)

    table = Table(title="Cost Estimate")
    table.add_column("Item")
    table.add_column("Value", justify="right")
    table.add_row("Model", result.model_name)
    table.add_row("Input tokens", f"{result.input_tokens:,}")
    table.add_row("Output tokens", f"{result.output_tokens:,}")
    table.add_row("Input cost", _format_currency(result.input_cost))
    table.add_row("Output cost", _format_currency(result.output_cost))
    table.add_row("Total cost", _format_currency(result.total_cost))
    console.print(table)


@app.command()
def usage(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    tier: str = typer.Option("free", "--tier", "-t", help="Subscription tier"),
):
    """Show a user's request, budget and per-feature usage."""
    stats = _orchestrator(ctx).get_user_usage_stats(user_id, tier)

    rate = stats["rateLimit"]
    console.print(f"\n[bold]Requests today:[/bold] {rate['limit'] - rate['remaining']} / {rate['limit']}"
                  f" (resets at {rate['reset']})")

    table = Table(title="Budget")
    table.add_column("Period")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("% Used", justify="right")
    for period in ("daily", "monthly"):
        row = stats["budget"][period]
        table.add_row(
            period.title(),
            _format_currency(row["usage"]),
            _format_currency(row["limit"]),
            _format_currency(row["remaining"]),
            f"{row['percentUsed']:.1f}%",
        )
    console.print(table)

    if stats["features"]:
        features = Table(title="Features")
        features.add_column("Feature")
        features.add_column("Today", justify="right")
        features.add_column("This month", justify="right")
        for name, row in stats["features"].items():
            features.add_row(name, _format_currency(row["dailyUsage"]), _format_currency(row["monthlyUsage"]))
        console.print(features)


@app.command()
def history(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, max=100),
):
    """List a user's most recent cost records."""
    records = _orchestrator(ctx).cost_tracker.get_user_cost_history(user_id, limit)
    if not records:
        console.print("\n[dim]No cost records found.[/]")
        return

    table = Table(title=f"Recent costs for {user_id}")
    table.add_column("Time (UTC)")
    table.add_column("Feature")
    table.add_column("Model")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for record in records:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.feature_type,
            record.model_name,
            f"{record.total_tokens:,}",
            _format_currency(record.total_cost),
        )
    console.print(table)


@app.command()
def reset(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    tier: str = typer.Option("free", "--tier", "-t", help="Subscription tier"),
    scope: ResetScope = typer.Option(ResetScope.ALL, "--scope", "-s", help="What to reset"),
):
    """Reset a user's counters (admin)."""
    orchestrator = _orchestrator(ctx)
    actions = {
        ResetScope.RATE_LIMIT: lambda: orchestrator.rate_limiter.reset_user_rate_limit(user_id, tier),
        ResetScope.TOKENS: lambda: orchestrator.token_budget.reset_user_token_budget(user_id, tier),
        ResetScope.DAILY: lambda: orchestrator.cost_tracker.reset_user_daily_costs(user_id, tier),
        ResetScope.MONTHLY: lambda: orchestrator.cost_tracker.reset_user_monthly_costs(user_id, tier),
    }
    selected = [s for s in actions if scope in (s, ResetScope.ALL)]

    failed = []
    for item in selected:
        if actions[item]():
            console.print(f"[green]✓[/] Reset {item.value} for {user_id}")
        else:
            failed.append(item.value)
            console.print(f"[red]✗[/] Could not reset {item.value} for {user_id}")

    sys.exit(EXIT_CODE_FAIL if failed else EXIT_CODE_PASS)


@app.command("check-config")
def check_config(path: str = typer.Argument(..., help="Governance policy YAML")):
    """Validate a governance policy file."""
    try:
        policy = load_governance_config(path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid config:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] {len(policy.tiers)} tiers, {len(policy.features)} features, "
        f"{len(policy.models)} models"
    )
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    """Format currency; sub-cent amounts keep four decimals."""
    if 0 < abs(amount) < 0.01:
        return f"${abs(amount):,.4f}"
    return f"${abs(amount):,.2f}"


if __name__ == "__main__":
    app()
