"""
Command-line interface for the member payment reconciliation engine.
"""

from pathlib import Path
from typing import Optional
import logging
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import ReconConfig, generate_default_config, load_config
from .matching.reconciler import Reconciler
from .models.transaction import BatchResult, MatchConfidence, RowPreview, TransactionView
from .parsers.statement_parser import StatementParser
from .store.json_store import JsonFileTransactionStore, YamlProfileDirectory
from .utils.exceptions import ReconciliationError
from .utils.logging_config import setup_logging

console = Console()


class _Context:
    """Options shared by every command."""

    def __init__(
        self,
        config_path: Optional[Path],
        store_path: Optional[Path],
        profiles_path: Optional[Path],
        verbose: bool,
    ):
        self.config_path = config_path
        self.store_path = store_path
        self.profiles_path = profiles_path
        self.verbose = verbose
        self._config: Optional[ReconConfig] = None

    @property
    def config(self) -> ReconConfig:
        if self._config is None:
            self._config = load_config(self.config_path)
        return self._config

    def reconciler(self) -> Reconciler:
        config = self.config
        store = JsonFileTransactionStore(
            self.store_path or Path(config.store.transactions_path)
        )
        profiles = YamlProfileDirectory(
            self.profiles_path or Path(config.store.profiles_path)
        )
        return Reconciler(store, profiles, config)


pass_context = click.make_pass_decorator(_Context)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option("--store", "store_path", type=click.Path(path_type=Path), help="Transaction store file")
@click.option(
    "--profiles", "profiles_path", type=click.Path(path_type=Path), help="Profile directory file (YAML)"
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[Path],
    store_path: Optional[Path],
    profiles_path: Optional[Path],
    verbose: bool,
):
    """Member payment reconciliation for imported bank statements."""
    state = _Context(config_path, store_path, profiles_path, verbose)
    ctx.obj = state

    if ctx.invoked_subcommand == "init-config":
        return

    try:
        log_config = state.config.logging
    except ReconciliationError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    level = logging.DEBUG if verbose else getattr(logging, log_config.level.upper(), logging.INFO)
    setup_logging(
        level,
        log_file=Path(log_config.file) if log_config.file else None,
        log_format=log_config.format,
    )


@main.command("import")
@click.argument("statement", type=click.Path(exists=True, path_type=Path))
@click.option("--actor", required=True, help="Id of the administrator uploading the statement")
@click.option("--dry-run", is_flag=True, help="Show what the import would do without writing it")
@pass_context
def import_statement(state: _Context, statement: Path, actor: str, dry_run: bool):
    """
    Import a bank statement CSV and auto-match its transactions.

    STATEMENT: Path to the bank statement CSV
    """
    try:
        extract = StatementParser(state.config).parse_file(statement)
        reconciler = state.reconciler()

        if dry_run:
            result, previews = reconciler.preview_batch(extract.rows)
        else:
            record, result = reconciler.import_statement(extract.rows, statement.name, actor)
    except ReconciliationError as e:
        _fail(state, e)
        return

    # Rows rejected while reading the file count as failed rows of the batch
    result.failed += len(extract.errors)
    result.errors[:0] = extract.errors

    if dry_run:
        _display_batch(result, title="Import Preview")
        _display_previews(previews)
        console.print("\n[yellow]Dry run - nothing imported[/yellow]")
        return

    _display_batch(result)
    console.print(f"\n[green]Import {escape(record.id)} {record.status.value}[/green]")


@main.command()
@click.option("--id", "transaction_ids", multiple=True, help="Limit the pass to these transactions")
@pass_context
def rerun(state: _Context, transaction_ids: tuple[str, ...]):
    """Re-run automatic matching over transactions that are not manually matched."""
    try:
        result = state.reconciler().rerun_auto_match(transaction_ids or None)
    except ReconciliationError as e:
        _fail(state, e)
        return

    table = Table(title="Re-match Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Examined", str(result.examined))
    table.add_row("Newly Matched", str(result.newly_matched))
    table.add_row("Re-matched", str(result.rematched))
    table.add_row("Unchanged", str(result.unchanged))
    table.add_row("Manual (skipped)", str(result.skipped_manual))
    table.add_row("Ambiguous", str(len(result.ambiguous)))
    table.add_row("Failed", str(result.failed))
    console.print(table)


@main.command()
@click.argument("transaction_id")
@click.argument("user_id")
@click.option("--actor", required=True, help="Id of the administrator making the match")
@pass_context
def match(state: _Context, transaction_id: str, user_id: str, actor: str):
    """Manually match TRANSACTION_ID to the member USER_ID."""
    try:
        state.reconciler().set_manual_match(transaction_id, user_id, actor)
    except ReconciliationError as e:
        _fail(state, e)
        return
    console.print(f"[green]Matched {escape(transaction_id)} to {escape(user_id)}[/green]")


@main.command()
@click.argument("transaction_id")
@click.option("--actor", required=True, help="Id of the administrator clearing the match")
@pass_context
def unmatch(state: _Context, transaction_id: str, actor: str):
    """Clear the match of TRANSACTION_ID."""
    try:
        cleared = state.reconciler().clear_match(transaction_id, actor)
    except ReconciliationError as e:
        _fail(state, e)
        return

    if cleared:
        console.print(f"[green]Cleared match of {escape(transaction_id)}[/green]")
    else:
        console.print(f"[yellow]{escape(transaction_id)} was already unmatched[/yellow]")


@main.command("list")
@click.option("--user", "user_id", help="Only transactions matched to this member")
@click.option(
    "--status",
    type=click.Choice([c.value for c in MatchConfidence]),
    help="Only transactions with this match state",
)
@click.option("--import-id", help="Only transactions from this import")
@click.option("--limit", type=int, default=50, show_default=True)
@pass_context
def list_transactions(
    state: _Context,
    user_id: Optional[str],
    status: Optional[str],
    import_id: Optional[str],
    limit: int,
):
    """List stored transactions, newest first."""
    try:
        views = state.reconciler().list_transactions(
            user_id=user_id,
            confidence=MatchConfidence(status) if status else None,
            import_id=import_id,
        )
    except ReconciliationError as e:
        _fail(state, e)
        return

    _display_transactions(views[:limit])
    if len(views) > limit:
        console.print(f"\n... and {len(views) - limit} more transactions")
    console.print(f"\nTotal transactions: {len(views)}")


@main.command()
@click.argument("transaction_id")
@pass_context
def history(state: _Context, transaction_id: str):
    """Show who set each match state of TRANSACTION_ID, and when."""
    try:
        events = state.reconciler().history(transaction_id)
    except ReconciliationError as e:
        _fail(state, e)
        return

    table = Table(title=f"Match History: {escape(transaction_id)}")
    table.add_column("When")
    table.add_column("State")
    table.add_column("Member")
    table.add_column("Set By")
    table.add_column("Signal")
    for event in events:
        table.add_row(
            event.matched_at.isoformat(timespec="seconds"),
            event.confidence.value,
            escape(event.user_id or "-"),
            escape(str(event.source)),
            event.signal.value if event.signal else "-",
        )
    console.print(table)


@main.command()
@click.argument("user_id")
@pass_context
def summary(state: _Context, user_id: str):
    """Show the payment summary of member USER_ID."""
    try:
        result = state.reconciler().payment_summary(user_id)
    except ReconciliationError as e:
        _fail(state, e)
        return

    console.print(f"Payments: {result.payment_count}")
    console.print(f"Total paid: £{result.total_paid:,.2f}")
    console.print(f"Last payment: {result.last_payment_date or '-'}")


@main.command()
@pass_context
def imports(state: _Context):
    """List statement imports, newest first."""
    try:
        records = state.reconciler().list_imports()
    except ReconciliationError as e:
        _fail(state, e)
        return

    table = Table(title="Statement Imports")
    table.add_column("Id")
    table.add_column("File")
    table.add_column("Uploaded")
    table.add_column("By")
    table.add_column("Rows", justify="right")
    table.add_column("Matched", justify="right")
    table.add_column("Status")
    for record in records:
        table.add_row(
            escape(record.id),
            escape(record.filename),
            record.uploaded_at.isoformat(timespec="seconds"),
            escape(record.uploaded_by),
            str(record.row_count),
            str(record.matched_count),
            record.status.value,
        )
    console.print(table)


@main.command("delete-import")
@click.argument("import_id")
@click.confirmation_option(prompt="Delete this import and all of its transactions?")
@pass_context
def delete_import(state: _Context, import_id: str):
    """Delete IMPORT_ID and every transaction it created."""
    try:
        removed = state.reconciler().delete_import(import_id)
    except ReconciliationError as e:
        _fail(state, e)
        return
    console.print(f"[green]Deleted import {escape(import_id)} ({removed} transactions)[/green]")


@main.command("parse-statement")
@click.argument("statement", type=click.Path(exists=True, path_type=Path))
@pass_context
def parse_statement(state: _Context, statement: Path):
    """
    Parse a statement CSV and display the extracted rows.

    STATEMENT: Path to the bank statement CSV
    """
    try:
        extract = StatementParser(state.config).parse_file(statement)
    except ReconciliationError as e:
        console.print(f"[red]Error parsing file: {escape(str(e))}[/red]")
        sys.exit(1)

    table = Table(title=f"Statement Rows: {escape(statement.name)}")
    table.add_column("Date")
    table.add_column("Reference")
    table.add_column("Amount", justify="right")
    table.add_column("Description")

    for row in extract.rows[:20]:  # Show first 20
        table.add_row(
            escape(row["transaction_date"]),
            escape(row["reference"] or "-"),
            escape(row["amount"]),
            _cell_text(row["description"]),
        )

    console.print(table)

    if len(extract.rows) > 20:
        console.print(f"\n... and {len(extract.rows) - 20} more rows")
    for error in extract.errors:
        console.print(f"[yellow]Line {error.row_number}: {escape(error.message)}[/yellow]")

    console.print(f"\nTotal rows: {len(extract.rows)}")


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {escape(str(output))}[/green]")


def _display_batch(result: BatchResult, title: str = "Import Summary") -> None:
    """Display import counters in console."""
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Inserted", str(result.inserted))
    table.add_row("Auto-matched", str(result.auto_matched))
    table.add_row("Unmatched", str(result.unmatched))
    table.add_row("Duplicates Skipped", str(result.skipped_duplicates))
    table.add_row("Failed", str(result.failed))
    table.add_row("Ambiguous", str(len(result.ambiguous)))

    console.print(table)

    for error in result.errors:
        console.print(f"[yellow]Row {error.row_number}: {escape(error.message)}[/yellow]")
    for transaction_id, candidates in result.ambiguous.items():
        names = ", ".join(f"{c.display_name} ({c.profile_id})" for c in candidates)
        console.print(
            f"[yellow]{escape(transaction_id)} needs manual review: {escape(names)}[/yellow]"
        )
    if result.aborted:
        console.print("[red]Store became unavailable; import stopped early[/red]")


def _display_previews(previews: list[RowPreview]) -> None:
    """Display what the import would do with each row."""
    table = Table(title="Row Preview")
    table.add_column("Line", justify="right")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    table.add_column("Outcome")
    table.add_column("Member")

    for preview in previews:
        draft = preview.draft
        candidate = preview.outcome.candidate
        if preview.duplicate:
            outcome, member = "duplicate", "-"
        elif candidate is not None:
            outcome, member = candidate.signal.value, candidate.display_name
        elif preview.outcome.is_ambiguous:
            outcome, member = "ambiguous", "-"
        else:
            outcome, member = "unmatched", "-"

        table.add_row(
            str(preview.row_number),
            str(draft.transaction_date),
            f"£{draft.amount:,.2f}",
            _cell_text(draft.description),
            outcome,
            escape(member),
        )

    console.print(table)


def _display_transactions(views: list[TransactionView]) -> None:
    table = Table(title="Transactions")
    table.add_column("Id")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    table.add_column("State")
    table.add_column("Member")

    for view in views:
        txn = view.transaction
        table.add_row(
            escape(txn.id),
            str(txn.transaction_date),
            f"£{txn.amount:,.2f}",
            _cell_text(txn.description),
            txn.match_confidence.value,
            escape(view.matched_user_name or txn.matched_user_id or "-"),
        )

    console.print(table)


def _cell_text(text: str, width: int = 40) -> str:
    """Statement text for a table cell: truncated, with rich markup escaped."""
    return escape(text[:width] + "..." if len(text) > width else text)


def _fail(state: _Context, error: Exception) -> None:
    console.print(f"[red]Error: {escape(str(error))}[/red]")
    if state.verbose:
        console.print_exception()
    sys.exit(1)


if __name__ == "__main__":
    main()
