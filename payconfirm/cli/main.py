"""payconfirm command line.

Developer tooling around the confirmation engine: parse a text, run a
simulated payment end to end, inspect the confirmation history and the
effective configuration.
"""

from datetime import UTC, datetime
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..confirmation.domain.enums import IngestionOutcome, SourceChannel
from ..confirmation.domain.events import (
    ManualReviewRequestedEvent,
    PaymentConfirmedEvent,
)
from ..confirmation.domain.models import to_amount
from ..confirmation.engine import ConfirmationEngine
from ..confirmation.ingestion import NOTIFICATION_TEMPLATES, SMS_TEMPLATES, SimulatedPaymentAdapter
from ..confirmation.parser import PaymentTextParser
from ..confirmation.storage import InMemoryConfirmationStore, JsonFileConfirmationStore
from ..exceptions import PayConfirmError
from ..utils.config import get_settings
from ..utils.logging import configure_from_settings, configure_logging, get_logger

app = typer.Typer(name="payconfirm", help="💸 Automatic UPI payment confirmation")
console = Console()
logger = get_logger(__name__)

OUTCOME_STYLES = {
    IngestionOutcome.CONFIRMED: "green",
    IngestionOutcome.REVIEW_REQUESTED: "yellow",
    IngestionOutcome.NO_MATCH: "red",
    IngestionOutcome.NO_CANDIDATE: "red",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    settings = get_settings()
    configure_from_settings(settings)
    if verbose:
        configure_logging(log_level="DEBUG", json_logs=settings.json_logs)


# ============================================================================
# COMMAND 1: parse
# ============================================================================


@app.command()
def parse(
    text: str = typer.Argument(..., help="Notification or SMS text"),
    channel: SourceChannel = typer.Option(
        SourceChannel.NOTIFICATION, "--channel", "-c", help="Source channel"
    ),
):
    """🔍 Show what the parser extracts from a text.

    Examples:
        payconfirm parse "You have received Rs. 250.00 via UPI. Txn successful."
        payconfirm parse "A/c XX1234 credited with INR 1,250.00" --channel sms
    """
    candidate = PaymentTextParser().parse(text, channel)
    if candidate is None:
        console.print("[yellow]⚠️  No payment signal found[/]")
        raise typer.Exit(1)

    table = Table(title="📄 Parsed Candidate", show_header=True)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="bold")

    table.add_row("Amount", f"[green]₹{candidate.amount}[/]")
    table.add_row("Confidence", str(candidate.content_confidence))
    table.add_row("Channel", candidate.source_channel.value)
    table.add_row("Reference", candidate.reference or "-")
    table.add_row("Payer", candidate.counterparty_label or "-")
    table.add_row("App", candidate.source_app or "-")

    console.print(table)


# ============================================================================
# COMMAND 2: simulate
# ============================================================================


@app.command()
def simulate(
    amount: str = typer.Argument(..., help="Amount the simulated customer pays"),
    app_name: str = typer.Option(
        "gpay",
        "--app",
        "-a",
        help=f"Notification app ({'|'.join(NOTIFICATION_TEMPLATES)}) or SMS sender "
        f"({'|'.join(SMS_TEMPLATES)})",
    ),
    expected: Optional[str] = typer.Option(
        None, "--expected", "-e", help="Expected amount (default: same as amount)"
    ),
    channel: SourceChannel = typer.Option(SourceChannel.NOTIFICATION, "--channel", "-c"),
    persist: bool = typer.Option(
        False, "--persist/--no-persist", help="Append the confirmation to the history file"
    ),
):
    """🧪 Track a payment, inject a simulated text and show the outcome.

    Examples:
        payconfirm simulate 250.00 --app phonepe
        payconfirm simulate 250.00 --expected 300.00
        payconfirm simulate 99.50 --channel sms --app Paytm
    """
    settings = get_settings()
    store = (
        JsonFileConfirmationStore(settings.confirmation_log_path, cap=settings.history_cap)
        if persist
        else InMemoryConfirmationStore(cap=settings.history_cap)
    )
    engine = ConfirmationEngine(settings, store=store)
    simulator = SimulatedPaymentAdapter()
    engine.register_adapter(simulator)

    def on_confirmed(event: PaymentConfirmedEvent) -> None:
        console.print(
            f"[green]✅ Payment {event.payment_id} confirmed "
            f"(₹{event.amount}, confidence {event.match_confidence})[/]"
        )

    def on_review(event: ManualReviewRequestedEvent) -> None:
        console.print(
            f"[yellow]⏳ Payment {event.payment_id} needs manual review "
            f"(confidence {event.match_confidence})[/]"
        )

    engine.subscribe(on_confirmed, PaymentConfirmedEvent)
    engine.subscribe(on_review, ManualReviewRequestedEvent)

    payment_id = f"SIM-{datetime.now(UTC):%H%M%S}"
    try:
        to_amount(amount)
        engine.track_payment(payment_id, expected or amount, "merchant@upi", "Simulated customer")
        with engine:
            if channel is SourceChannel.SMS:
                outcome = simulator.simulate_sms(amount, sender=app_name)
            else:
                outcome = simulator.simulate_notification(amount, app=app_name)
    except PayConfirmError as e:
        console.print(f"[red]✗ {e.message}[/]")
        raise typer.Exit(1)

    style = OUTCOME_STYLES.get(outcome, "dim")
    console.print(f"Outcome: [{style}]{outcome.value}[/]")
    if outcome is not IngestionOutcome.CONFIRMED:
        console.print(f"[dim]Still pending: {engine.active_payments_count()}[/]")


# ============================================================================
# COMMAND 3: history
# ============================================================================


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Records to show"),
):
    """📋 Show the most recent confirmations.

    Examples:
        payconfirm history
        payconfirm history --limit 50
    """
    settings = get_settings()
    store = JsonFileConfirmationStore(settings.confirmation_log_path, cap=settings.history_cap)

    try:
        records = store.read_recent_confirmations(limit)
    except PayConfirmError as e:
        console.print(f"[red]✗ {e}[/]")
        raise typer.Exit(1)

    if not records:
        console.print("[dim]No confirmations recorded yet[/]")
        return

    table = Table(title=f"📋 Confirmations ({len(records)})")
    table.add_column("Confirmed at", style="cyan")
    table.add_column("Payment")
    table.add_column("Amount", justify="right", style="green")
    table.add_column("Conf.", justify="right")
    table.add_column("Mode")
    table.add_column("App")
    table.add_column("Reference")

    for record in records:
        table.add_row(
            record.confirmed_at.strftime("%d/%m/%Y %H:%M:%S"),
            record.payment_id,
            f"₹{record.amount:.2f}",
            str(record.match_confidence),
            "manual" if record.manual else "auto",
            record.source_app or "-",
            record.reference or "-",
        )

    console.print(table)


# ============================================================================
# COMMAND 4: config
# ============================================================================


@app.command()
def config():
    """⚙️  Show the effective configuration."""
    settings = get_settings()

    table = Table(title="⚙️  payconfirm settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="bold")

    for name, value in settings.model_dump().items():
        table.add_row(name, str(value))
    table.add_row("confirmation_log_path", str(settings.confirmation_log_path))

    console.print(table)


if __name__ == "__main__":
    app()
