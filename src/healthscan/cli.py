"""Command-line interface for the HealthScan waitlist."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from healthscan.api.deps import token_manager, waitlist_service
from healthscan.errors import InvalidInput
from healthscan.logging_config import configure_logging, get_logger
from healthscan.settings import settings
from healthscan.storage.db import db
from healthscan.waitlist.models import normalize_email

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="healthscan",
    help="HealthScan waitlist operations",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("list")
def list_entries(
    limit: Annotated[int, typer.Option("--limit", "-l", help="Maximum rows to show")] = 50,
    unconfirmed: Annotated[bool, typer.Option("--unconfirmed", help="Only unconfirmed entries")] = False,
) -> None:
    """List waitlist entries by position."""
    entries = waitlist_service.list_entries()
    if unconfirmed:
        entries = [entry for entry in entries if not entry.confirmed]

    if not entries:
        console.print("[yellow]No waitlist entries found[/yellow]")
        return

    table = Table(title=f"Waitlist ({len(entries)} entries)")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Email", style="green")
    table.add_column("Name")
    table.add_column("Source")
    table.add_column("Confirmed")
    table.add_column("Referral Code")
    table.add_column("Referrals", justify="right")
    table.add_column("Signed Up")

    for entry in entries[:limit]:
        table.add_row(
            str(entry.position),
            entry.email,
            entry.name or "",
            entry.source.value,
            "✓" if entry.confirmed else "",
            entry.referral_code,
            str(entry.referrals),
            entry.signup_date.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command("stats")
def show_stats() -> None:
    """Show signup statistics."""
    stats = waitlist_service.stats()

    console.print(f"[bold]Total users:[/bold] {stats['totalUsers']}")
    console.print(f"[bold]Confirmed users:[/bold] {stats['confirmedUsers']}")
    console.print(f"[bold]Signups (24h):[/bold] {stats['recentSignups']}")
    console.print(f"[bold]Conversion rate:[/bold] {stats['conversionRate']}%")
    console.print(f"[bold]Highest position:[/bold] {stats['highestPosition']}")

    leaders = waitlist_service.referral_leaderboard(limit=5)
    if leaders:
        console.print("\n[bold]Top referrers:[/bold]")
        table = Table()
        table.add_column("Rank", justify="right")
        table.add_column("Name", style="green")
        table.add_column("Code")
        table.add_column("Referrals", justify="right")
        for leader in leaders:
            table.add_row(
                str(leader["rank"]),
                leader["name"] or "",
                leader["referralCode"],
                str(leader["referrals"]),
            )
        console.print(table)


@app.command("issue-token")
def issue_token(
    email: Annotated[str, typer.Argument(help="Email address to confirm")],
) -> None:
    """Mint a confirmation token and print the confirmation link."""
    try:
        normalized = normalize_email(email)
    except InvalidInput as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    token = token_manager.issue(normalized)
    console.print(f"[bold]Token:[/bold] {token}")
    console.print(f"[bold]Link:[/bold] {settings.public_base_url}/confirm-email?token={token}")


@app.command("check-token")
def check_token(
    token: Annotated[str, typer.Argument(help="Confirmation token")],
) -> None:
    """Validate a confirmation token without confirming anything."""
    result = token_manager.validate(token)
    if result.valid:
        console.print(f"[bold green]✓[/bold green] Valid token for {result.email}")
        return
    console.print(f"[red]✗ Invalid token: {result.error.value}[/red]")
    raise typer.Exit(1)


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port")] = 8000,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes")] = False,
) -> None:
    """Run the API server."""
    import uvicorn

    console.print(f"[bold blue]Starting API on {host}:{port}[/bold blue]")
    uvicorn.run("healthscan.api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
