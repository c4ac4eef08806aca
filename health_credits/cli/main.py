"""
CLI interface for health credits.

Operator access to the credit ledger: accounts, balances, charges and top-ups.
"""

import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from health_credits.config.loader import LedgerConfig, load_ledger_config
from health_credits.core.errors import DuplicatePayment, InsufficientCredits, LedgerError
from health_credits.core.gate import ConsumptionGate
from health_credits.core.ledger import LedgerEngine
from health_credits.core.topup import TopUpApplier
from health_credits.storage.models import TransactionKind
from health_credits.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_INSUFFICIENT = 2  # Reported apart from generic failures

def _config(ctx: typer.Context) -> LedgerConfig:
    return ctx.obj or LedgerConfig.default()


def _engine(ctx: typer.Context) -> LedgerEngine:
    return LedgerEngine.from_config(_config(ctx))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML ledger configuration"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log ledger activity to stderr"
    )
):
    """Health credits CLI."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    try:
        ctx.obj = load_ledger_config(config) if config else LedgerConfig.default()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    if ctx.invoked_subcommand is None:
        console.print("Health Credits - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the credit ledger database."""
    try:
        initialize_schema(_config(ctx).storage.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("open-account")
def open_account(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    age: int = typer.Option(..., "--age", "-a", help="Account holder age in years")
):
    """Open an account with the starting grant."""
    try:
        account = _engine(ctx).open_account(account_id, age)
    except (LedgerError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Account {account.id} opened with {account.balance} credits")
    sys.exit(EXIT_CODE_OK)


@app.command()
def balance(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier")
):
    """Show the balance, applying a due recharge first."""
    try:
        result = _engine(ctx).get_effective_balance(account_id)
    except LedgerError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"Balance: [bold]{result.balance}[/] credits")
    console.print(f"Last renewal: {result.last_recharge_date.isoformat()}")
    if result.recharged:
        console.print("[green]Your credit allowance was renewed![/]")
    sys.exit(EXIT_CODE_OK)


@app.command()
def consume(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    cost: Optional[int] = typer.Option(
        None,
        "--cost",
        help="Credits to charge; defaults to the configured capability cost"
    ),
    capability: str = typer.Option(
        "generation",
        "--capability",
        help="Name of the consuming capability"
    )
):
    """Authorize and charge one metered consumption."""
    charge = cost if cost is not None else _config(ctx).costs.cost_for(capability)
    try:
        verdict = ConsumptionGate(_engine(ctx)).authorize_consumption(
            account_id, charge, capability=capability
        )
    except (LedgerError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if verdict.recharged:
        console.print("[green]Your credit allowance was renewed![/]")
    if not verdict.authorized:
        console.print(
            f"[yellow]Insufficient credits:[/] cost {charge}, balance {verdict.new_balance}. "
            "Top up to continue."
        )
        sys.exit(EXIT_CODE_INSUFFICIENT)
    console.print(f"[green]✓[/] Charged {charge} credits, balance {verdict.new_balance}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def topup(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    credits: int = typer.Option(..., "--credits", help="Credits purchased"),
    reference: str = typer.Option(..., "--reference", "-r", help="Payment reference")
):
    """Apply a confirmed payment as a credit top-up."""
    try:
        result = TopUpApplier(_engine(ctx)).apply_confirmed_payment(account_id, credits, reference)
    except DuplicatePayment as e:
        console.print(f"[yellow]Already applied:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except (LedgerError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Added {result.credits_added} credits, balance {result.new_balance}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def history(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    kind: Optional[str] = typer.Option(
        None,
        "--kind",
        "-k",
        help="Filter by kind: usage, recharge or topup"
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum records to show")
):
    """List an account's transactions, newest first."""
    try:
        kind_filter = TransactionKind(kind) if kind else None
        records = _engine(ctx).history(account_id, kind=kind_filter, limit=limit)
    except (LedgerError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not records:
        console.print("\n[dim]No transactions recorded.[/]")
        sys.exit(EXIT_CODE_OK)

    table = Table(title=f"Transactions for {account_id}")
    table.add_column("ID", justify="right")
    table.add_column("When")
    table.add_column("Kind")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    for record in records:
        table.add_row(
            str(record.id),
            record.created_at.strftime("%Y-%m-%d %H:%M"),
            record.kind.value,
            _format_amount(record.amount),
            record.description
        )
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command()
def reconcile(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier")
):
    """Verify the balance equals starting grant plus the ledger total."""
    try:
        result = _engine(ctx).reconcile(account_id)
    except LedgerError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if result.consistent:
        console.print(f"[green]✓[/] Ledger consistent: balance {result.balance}")
        sys.exit(EXIT_CODE_OK)
    console.print(
        f"[red]✗[/] Ledger mismatch: balance {result.balance}, "
        f"expected {result.expected_balance}"
    )
    sys.exit(EXIT_CODE_FAIL)


def _format_amount(amount: int) -> str:
    """Format a signed credit amount."""
    return f"{'+' if amount > 0 else ''}{amount}"


if __name__ == "__main__":
    app()
