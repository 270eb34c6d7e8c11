"""
CLI interface for Storage Guard.

Offline operator commands: allowance sufficiency reports, destination
selection and configuration scaffolding. Nothing here talks to the chain.
"""

import logging
import math
import sys
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from storage_guard.chain.models import AllowanceSnapshot, StorageDestination
from storage_guard.config.loader import (
    GuardConfig,
    default_config,
    dump_default_config,
    load_guard_config,
)
from storage_guard.core.metrics import StorageRequest, SufficiencyReport, compute_metrics
from storage_guard.core.selector import select_destination
from storage_guard.core.units import bytes_to_gib, format_token_amount, gib_to_bytes

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DEFAULT_CONFIG_PATH = "storage-guard.yaml"


def _load_config(path: Optional[str]) -> GuardConfig:
    """Load config from path, or defaults when no path is given."""
    if path is None:
        return default_config()
    return load_guard_config(path)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Storage Guard CLI."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )
    if ctx.invoked_subcommand is None:
        console.print("Storage Guard - Use --help to see available commands")


@app.command()
def init(
    path: str = typer.Option(DEFAULT_CONFIG_PATH, "--path", "-p", help="Where to write the config"),
):
    """Write a default configuration file."""
    config_path = Path(path)
    if config_path.exists():
        console.print(f"[red]Error:[/] {path} already exists")
        sys.exit(EXIT_CODE_FAIL)
    config_path.write_text(dump_default_config(), encoding="utf-8")
    console.print(f"[green]✓[/] Configuration written to {path}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def status(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
):
    """Show the effective configuration."""
    try:
        guard_config = _load_config(config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading config:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    storage = guard_config.storage
    console.print(
        f"Capacity: {storage.capacity_gib} GiB, persistence: {storage.persistence_days} days, "
        f"minimum runway: {storage.min_days_threshold} days, CDN: {'yes' if storage.with_cdn else 'no'}"
    )
    console.print(f"Payment token: {guard_config.upload.token}")
    if not guard_config.networks:
        console.print("[yellow]No networks configured[/]")
    for name, network in guard_config.networks.items():
        console.print(f"[green]✓[/] {name}: storage service {network.storage_service_address}")


@app.command()
def metrics(
    rate_allowance: int = typer.Option(0, "--rate-allowance", help="Current rate allowance (base units/epoch)"),
    rate_used: int = typer.Option(0, "--rate-used", help="Current rate used (base units/epoch)"),
    lockup_allowance: int = typer.Option(0, "--lockup-allowance", help="Current lockup allowance (base units)"),
    lockup_used: int = typer.Option(0, "--lockup-used", help="Current lockup used (base units)"),
    rate_allowance_needed: int = typer.Option(
        0, "--rate-allowance-needed", help="Rate the capacity needs, as reported on chain"
    ),
    capacity_gib: Optional[int] = typer.Option(None, "--capacity-gib", "-g", help="Capacity to check"),
    cdn: Optional[bool] = typer.Option(None, "--cdn/--no-cdn", help="Price for CDN storage"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    enforced: bool = typer.Option(
        False, "--enforced", "-e", help="Exit with error code if allowances are insufficient"
    ),
):
    """
    Check whether allowances cover a storage capacity.

    Allowance figures are passed in directly; read them from your wallet or
    block explorer.
    """
    try:
        guard_config = _load_config(config)
        defaults = guard_config.storage_request()
        request = StorageRequest(
            capacity_bytes=gib_to_bytes(capacity_gib) if capacity_gib is not None else defaults.capacity_bytes,
            persistence_days=defaults.persistence_days,
            min_days_threshold=defaults.min_days_threshold,
            use_cdn=defaults.use_cdn if cdn is None else cdn,
        )
        snapshot = AllowanceSnapshot(
            rate_allowance_current=rate_allowance,
            rate_used=rate_used,
            lockup_allowance_current=lockup_allowance,
            lockup_used=lockup_used,
            rate_allowance_needed=rate_allowance_needed,
        )
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    report = compute_metrics(request, snapshot, guard_config.pricing)
    _display_report(request, report)

    if enforced and not report.is_sufficient:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def select(
    destinations_file: str = typer.Argument(..., help="YAML list of destination payloads"),
    cdn: bool = typer.Option(False, "--cdn/--no-cdn", help="Select among CDN destinations"),
):
    """Show which existing destination an upload would append to."""
    try:
        with open(destinations_file, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or []
        if not isinstance(raw, list):
            raise ValueError("Destinations file must contain a list")
        candidates = [StorageDestination.from_raw(item) for item in raw]
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    selected = select_destination(candidates, cdn)
    if selected is None:
        console.print(f"No {'CDN' if cdn else 'non-CDN'} destination to reuse; a new one would be created")
    else:
        console.print(
            f"[green]✓[/] Destination {selected.id} (payee {selected.payee_address}, "
            f"{selected.current_piece_count} pieces)"
        )
    sys.exit(EXIT_CODE_PASS)


def _format_days(days) -> str:
    """Format a day count; infinity means the runway cannot be estimated yet."""
    if days == math.inf:
        return "∞ (nothing charged yet)"
    return f"{float(days):,.1f}"


def _format_verdict(ok: bool) -> str:
    return "[green]sufficient[/]" if ok else "[red]insufficient[/]"


def _display_report(request: StorageRequest, report: SufficiencyReport) -> None:
    """Display the sufficiency report as a table."""
    console.print("\n[bold]Storage Allowance Report[/bold]")
    console.print(
        f"{bytes_to_gib(request.capacity_bytes):,.2f} GiB for {request.persistence_days} days "
        f"({'CDN' if request.use_cdn else 'no CDN'})"
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Rate needed (per epoch)", format_token_amount(report.rate_needed))
    table.add_row("Rate allowance", format_token_amount(report.rate_allowance_current))
    table.add_row("Lockup per day", format_token_amount(report.lockup_per_day))
    table.add_row("Lockup remaining", format_token_amount(report.lockup_remaining))
    table.add_row("Lockup needed", format_token_amount(report.lockup_needed))
    table.add_row("Days left", _format_days(report.persistence_days_left))
    table.add_row("Days left at current rate", _format_days(report.persistence_days_left_at_current_rate))
    table.add_row("Estimated storage used (GiB)", f"{bytes_to_gib(report.current_storage_bytes):,.2f}")
    table.add_row("Rate allowance covers (GiB)", f"{bytes_to_gib(report.rate_allowance_capacity_bytes):,.2f}")
    table.add_row("Rate", _format_verdict(report.is_rate_sufficient))
    table.add_row("Lockup", _format_verdict(report.is_lockup_sufficient))
    console.print(table)

    verdict = "[bold green]SUFFICIENT[/]" if report.is_sufficient else "[bold red]INSUFFICIENT[/]"
    console.print(f"\n[bold]Verdict:[/bold] {verdict}")


if __name__ == "__main__":
    app()
