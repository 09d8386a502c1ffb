import json
import logging
from dataclasses import asdict
from decimal import Decimal
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from tally.db import get_connection, init_db, load_rules
from tally.settings import get_db_path, is_configured, load_settings, resolve_data_dir, save_settings

app = typer.Typer(help="Tally: bank statement parsing and transaction classification.", invoke_without_command=True)

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show parser and classifier logging"),
):
    """Tally: bank statement parsing and transaction classification."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(message)s", datefmt="[%X]",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )


def _read_input(file: str) -> str:
    if file == "-":
        return typer.get_text_stream("stdin").read()
    path = Path(file)
    if not path.exists():
        typer.echo(f"File not found: {file}")
        raise typer.Exit(1)
    return path.read_text()


def _money(amount: Decimal) -> str:
    return f"${amount:,.2f}"


def _dump(data) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.command()
def init(
    data_dir: str = typer.Option(None, "--data-dir", help="Where to keep the rules database (default: ~/Documents/tally)"),
):
    """Create the rules database. The data directory is asked for on first use."""
    settings = load_settings()
    if data_dir is None and not is_configured():
        data_dir = typer.prompt("Data directory", default=settings["data_dir"])
    if data_dir is not None:
        settings["data_dir"] = resolve_data_dir(data_dir)
    save_settings(settings)

    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    init_db(conn)
    stored = len(load_rules(conn))
    conn.close()

    typer.echo(f"Rules database ready at {db_path} ({stored} stored rules)")


# --- Parse / classify ---

from tally.categorizer import DEFAULT_RULES, classify_all, tally_matches
from tally.db import record_matches
from tally.statement import StatementResult, parse_statement_text, reconcile_totals


def _active_rules(conn) -> list:
    rules = load_rules(conn)
    if load_settings()["use_default_rules"]:
        rules += DEFAULT_RULES
    return rules


def _open_rules_db():
    db_path = get_db_path()
    if not db_path.exists():
        typer.echo("No rules database found. Run `tally init` first.")
        raise typer.Exit(1)
    return get_connection(db_path)


def _print_transactions(title: str, transactions) -> None:
    table = Table(title=title)
    table.add_column("Date")
    table.add_column("Section", style="dim")
    table.add_column("Description")
    table.add_column("Payee")
    table.add_column("Amount", justify="right")
    table.add_column("Category")
    table.add_column("Conf.", justify="right")
    for txn in transactions:
        color = "green" if txn.kind.value == "income" else "red"
        category = txn.category if not txn.needs_review else f"[yellow]{txn.category}[/yellow]"
        table.add_row(
            txn.date, txn.section.value, txn.description, txn.payee,
            f"[{color}]{_money(txn.amount)}[/{color}]", category, f"{txn.confidence:.2f}",
        )
    console.print(table)


def _print_errors(errors) -> None:
    if not errors:
        return
    table = Table(title="Unparsed Lines")
    table.add_column("Line", style="dim")
    table.add_column("Section")
    table.add_column("Reason")
    table.add_column("Text")
    for err in errors:
        table.add_row(str(err.line_number), err.section.value, err.reason.value, err.text)
    console.print(table)


def _print_reconciliation(result: StatementResult) -> None:
    for code, check in reconcile_totals(result).items():
        if check["matches"]:
            typer.echo(f"{code.value}: {_money(check['parsed'])} matches statement total")
        else:
            typer.echo(
                f"{code.value}: DISCREPANCY parsed {_money(check['parsed'])}, "
                f"statement reports {_money(check['reported'])}"
            )


def _classified(file: Path, year: int | None, conn):
    result = parse_statement_text(_read_input(str(file)), reference_year=year)
    # Without a rules database only the built-in rules apply.
    rules = _active_rules(conn) if conn is not None else list(DEFAULT_RULES)
    transactions, events = classify_all(result.transactions, rules, load_settings()["review_threshold"])
    result.transactions = transactions
    return result, events


@app.command("parse")
def parse_cmd(
    file: Path = typer.Argument(help="Statement text file (text extracted from the PDF)"),
    year: int = typer.Option(None, "--year", help="Year for MM/DD dates (default: statement period)"),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
):
    """Parse a statement and preview classifications. Match counts are not recorded.

    Works before `tally init`, using the built-in rules only.
    """
    db_path = get_db_path()
    conn = get_connection(db_path) if db_path.exists() else None
    try:
        result, _ = _classified(file, year, conn)
    finally:
        if conn is not None:
            conn.close()

    if as_json:
        _dump({
            "account": asdict(result.account),
            "transactions": [asdict(t) for t in result.transactions],
            "errors": [asdict(e) for e in result.errors],
            "summary": result.summary,
            "debug": result.debug,
        })
        return

    _print_transactions("Transactions", result.transactions)
    _print_errors(result.errors)
    summary = result.summary
    typer.echo(
        f"{summary['total_transactions']} transactions, {len(result.errors)} errors, "
        f"{summary['needs_review']} need review"
    )
    typer.echo(
        f"Income {_money(summary['total_income'])}  Expenses {_money(summary['total_expenses'])}  "
        f"Net {_money(summary['net'])}"
    )
    _print_reconciliation(result)


@app.command("classify")
def classify_cmd(
    file: Path = typer.Argument(help="Statement text file (text extracted from the PDF)"),
    year: int = typer.Option(None, "--year", help="Year for MM/DD dates (default: statement period)"),
):
    """Parse and classify a statement, recording rule match counts."""
    conn = _open_rules_db()
    try:
        result, events = _classified(file, year, conn)
        record_matches(conn, tally_matches(events))
    finally:
        conn.close()

    _print_transactions("Classified Transactions", result.transactions)
    _print_errors(result.errors)
    matched = len(events)
    typer.echo(f"{matched} classified, {len(result.transactions) - matched} uncategorized")


# --- Bulk paste ---

from tally.bulk import parse_pasted_data


@app.command("paste")
def paste_cmd(
    file: str = typer.Argument(help="File of pasted receipt lines, or - for stdin"),
    category: str = typer.Option(None, "--category", help="Category for every entry"),
    vendor: str = typer.Option(None, "--vendor", help="Vendor when a line names none"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
):
    """Preview receipts pasted as `amount date [vendor]` or `date amount [vendor]`."""
    settings = load_settings()
    result = parse_pasted_data(
        _read_input(file),
        default_category=category if category is not None else settings["default_category"],
        default_vendor=vendor if vendor is not None else settings["default_vendor"],
    )

    if as_json:
        _dump({"entries": [asdict(e) for e in result.entries], "errors": result.errors, "stats": result.stats})
        return

    table = Table(title="Pasted Entries")
    table.add_column("Line", style="dim")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    table.add_column("Vendor")
    table.add_column("Category")
    for entry in result.entries:
        table.add_row(str(entry.line_number), entry.date, entry.amount, entry.vendor, entry.category)
    console.print(table)

    for err in result.errors:
        where = f"line {err['line_number']}" if err["line_number"] is not None else "input"
        typer.echo(f"{where}: {err['error']}")
    stats = result.stats
    typer.echo(f"{stats['parsed']} parsed, {stats['failed']} failed of {stats['total']}")


# --- Rules ---

from tally.categorizer import classify, order_rules
from tally.db import add_rule
from tally.models import (
    AmountDirection, ClassificationRule, Kind, ParsedTransaction, PatternType, RuleScope,
)

rules_app = typer.Typer(help="Manage classification rules.")
app.add_typer(rules_app, name="rules")


@rules_app.command("add")
def rules_add(
    pattern: str = typer.Argument(help="Pattern to match against transaction descriptions"),
    category: str = typer.Option(help="Category to assign"),
    subcategory: str = typer.Option(None, help="Optional subcategory"),
    vendor: str = typer.Option(None, help="Normalized vendor name"),
    type: str = typer.Option("contains", "--type", help="Match type: contains, exact, starts_with, ends_with, regex"),
    direction: str = typer.Option("any", help="Amount direction: positive (income), negative (expense), any"),
    scope: str = typer.Option("user", help="Rule scope: user or global"),
    priority: int = typer.Option(0, help="Rule priority (lower runs first)"),
    min_amount: str = typer.Option(None, "--min", help="Smallest amount the rule applies to"),
    max_amount: str = typer.Option(None, "--max", help="Largest amount the rule applies to"),
    high_trust: bool = typer.Option(False, "--high-trust", help="Score regex matches as high confidence"),
):
    """Add a classification rule."""
    try:
        rule = ClassificationRule(
            id=None,
            pattern=pattern,
            category=category,
            subcategory=subcategory,
            vendor=vendor,
            pattern_type=PatternType(type),
            amount_direction=AmountDirection(direction),
            scope=RuleScope(scope),
            priority=priority,
            amount_min=Decimal(min_amount) if min_amount is not None else None,
            amount_max=Decimal(max_amount) if max_amount is not None else None,
            high_trust=high_trust,
        )
    except (ValueError, ArithmeticError) as e:
        typer.echo(f"Invalid rule: {e}")
        raise typer.Exit(1)

    conn = _open_rules_db()
    try:
        rule_id = add_rule(conn, rule)
    except ValueError as e:
        typer.echo(f"Invalid rule: {e}")
        raise typer.Exit(1)
    finally:
        conn.close()
    typer.echo(f"Added rule {rule_id}: '{pattern}' → {category}")


@rules_app.command("list")
def rules_list():
    """List stored classification rules in evaluation order."""
    conn = _open_rules_db()
    rules = order_rules(load_rules(conn))
    conn.close()

    table = Table(title="Rules")
    table.add_column("ID", style="dim")
    table.add_column("Pattern")
    table.add_column("Type")
    table.add_column("Direction")
    table.add_column("Category")
    table.add_column("Scope")
    table.add_column("Priority")
    table.add_column("Matches")
    for rule in rules:
        category = rule.category if not rule.subcategory else f"{rule.category} / {rule.subcategory}"
        table.add_row(
            str(rule.id), rule.pattern, rule.pattern_type.value, rule.amount_direction.value,
            category, rule.scope.value, str(rule.priority), str(rule.match_count),
        )
    console.print(table)


@rules_app.command("test")
def rules_test(
    description: str = typer.Argument(help="Transaction description to classify"),
    kind: str = typer.Option("expense", help="Transaction kind: income, expense, transfer"),
    amount: str = typer.Option("1.00", help="Transaction amount"),
):
    """Show which rule would classify a description. Match counts are not changed."""
    try:
        txn = ParsedTransaction(date="", amount=Decimal(amount), kind=Kind(kind), description=description)
    except (ValueError, ArithmeticError) as e:
        typer.echo(f"Invalid input: {e}")
        raise typer.Exit(1)

    conn = _open_rules_db()
    result = classify(txn, _active_rules(conn))
    conn.close()

    if result.matched_rule_id is None:
        typer.echo("No rule matched → Uncategorized")
        return
    label = result.category if not result.subcategory else f"{result.category} / {result.subcategory}"
    typer.echo(f"Rule {result.matched_rule_id} → {label} (confidence {result.confidence:.2f})")
