"""Command-line interface for the CFO assistant."""

import argparse
import os
import sys
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from cfo_assistant import __version__
from cfo_assistant.config import Config, load_config
from cfo_assistant.exceptions import CFOAssistantError, UpstreamError
from cfo_assistant.models.anomaly import Severity
from cfo_assistant.models.batch import BatchResult
from cfo_assistant.models.kpi import HealthRecommendation
from cfo_assistant.output import ExcelWriter
from cfo_assistant.processing import (
    AnomalyDetector,
    CashFlowForecaster,
    Categorizer,
    KPICalculator,
    Reconciler,
    validate_conditions,
)
from cfo_assistant.sources import SnapshotProvider
from cfo_assistant.storage import (
    InMemoryCategoryRuleStore,
    InMemoryCategoryStore,
    InMemoryTransactionStore,
)
from cfo_assistant.utils.decimal_utils import format_currency
from cfo_assistant.utils.logging_config import get_logger, setup_logging

# Load environment variables from .env file (if it exists)
load_dotenv()

console = Console()
logger = get_logger(__name__)

DEFAULT_SNAPSHOT_DIR = "snapshots"
DEFAULT_STORE_FILE = "data/transactions.yaml"
RULE_COUNTERS_FILE = "rule_counters.yaml"

SEVERITY_STYLES = {
    Severity.HIGH: "bold red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "green",
}


def parse_iso_date(text: str) -> date:
    """Parse a YYYY-MM-DD argument."""
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{text}', expected YYYY-MM-DD") from None


def parse_amount(text: str) -> Decimal:
    """Parse a money argument."""
    try:
        amount = Decimal(text.replace(",", ""))
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid amount '{text}'") from None
    if not amount.is_finite():
        raise argparse.ArgumentTypeError(f"invalid amount '{text}'")
    return amount


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="cfo-assistant",
        description="Cash-flow forecasting, anomaly detection, KPIs and reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --snapshot-dir ./snapshots forecast --days 60
  %(prog)s anomalies --months 6 --output anomalies.xlsx
  %(prog)s -v sync --days 14
  %(prog)s reconcile TX-1 INV-001 INVOICE
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=Path("config"),
        help="Base config directory (default: ./config)",
    )
    parser.add_argument(
        "--snapshot-dir",
        type=Path,
        default=Path(os.environ.get("CFO_SNAPSHOT_DIR", DEFAULT_SNAPSHOT_DIR)),
        help="Directory of provider snapshot files (env: CFO_SNAPSHOT_DIR)",
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=Path(os.environ.get("CFO_STORE_FILE", DEFAULT_STORE_FILE)),
        help="Transaction store file (env: CFO_STORE_FILE)",
    )
    parser.add_argument(
        "--user",
        default=os.environ.get("CFO_USER_ID", "default"),
        help="User id (env: CFO_USER_ID)",
    )
    parser.add_argument(
        "--tenant",
        default=os.environ.get("CFO_TENANT_ID", "default"),
        help="Accounting organization id (env: CFO_TENANT_ID)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    def add_json(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--json", action="store_true", help="Print the result as JSON")

    def add_output(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "-o", "--output",
            type=Path,
            default=None,
            metavar="FILE",
            help="Also write an Excel workbook",
        )

    def add_forecast_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--days", type=int, default=None, help="Forecast horizon in days")
        sub.add_argument(
            "--start-date", type=parse_iso_date, default=None, help="First day (YYYY-MM-DD)"
        )
        sub.add_argument(
            "--balance", type=parse_amount, default=None,
            help="Opening balance (default: balance sheet Bank row)",
        )

    def add_window_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--months", type=int, default=None, help="Window length in months")
        sub.add_argument(
            "--to-date", type=parse_iso_date, default=None, help="Window end (YYYY-MM-DD)"
        )

    forecast = subparsers.add_parser("forecast", help="Generate a cash-flow forecast")
    add_forecast_args(forecast)
    add_output(forecast)
    add_json(forecast)

    issues = subparsers.add_parser("cash-issues", help="Detect cash-flow issues")
    add_forecast_args(issues)
    add_output(issues)
    add_json(issues)

    anomalies = subparsers.add_parser("anomalies", help="Detect financial anomalies")
    add_window_args(anomalies)
    add_output(anomalies)
    add_json(anomalies)

    health = subparsers.add_parser("health", help="Calculate the business health score")
    add_window_args(health)
    add_json(health)

    kpis = subparsers.add_parser("kpis", help="Calculate key performance indicators")
    add_window_args(kpis)
    add_output(kpis)
    add_json(kpis)

    sync = subparsers.add_parser("sync", help="Sync provider bank transactions to the store")
    sync.add_argument("--days", type=int, default=None, help="Days back to sync")
    add_json(sync)

    categorize = subparsers.add_parser("categorize", help="Apply automatic categorization rules")
    categorize.add_argument(
        "--limit", type=int, default=None, help="Maximum transactions to process"
    )
    add_json(categorize)

    matches = subparsers.add_parser("matches", help="Find invoices or bills matching a transaction")
    matches.add_argument("transaction_id", help="Stored transaction id")
    add_json(matches)

    reconcile = subparsers.add_parser("reconcile", help="Reconcile a transaction with a document")
    reconcile.add_argument("transaction_id", help="Stored transaction id")
    reconcile.add_argument("document_id", help="Invoice or bill id")
    reconcile.add_argument("document_type", choices=["INVOICE", "BILL"], help="Document type")
    add_json(reconcile)

    stats = subparsers.add_parser("stats", help="Show categorization and reconciliation stats")
    stats.add_argument("--days", type=int, default=None, help="Days back to include")
    add_json(stats)

    subparsers.add_parser("validate-config", help="Validate configuration files")

    return parser


def get_log_level(verbosity: int) -> str:
    """Convert verbosity count to log level.

    Args:
        verbosity: Number of -v flags.

    Returns:
        Log level string.
    """
    if verbosity >= 2:
        return "DEBUG"
    elif verbosity >= 1:
        return "INFO"
    else:
        return "WARNING"


def validate_output_path(path: Path, base_dir: Optional[Path] = None) -> Path:
    """Validate that output path is within allowed directory.

    Prevents path traversal by ensuring the resolved path is within the
    base directory (defaults to current working directory).

    Args:
        path: The path to validate.
        base_dir: Base directory to constrain paths within (default: cwd).

    Returns:
        The resolved, validated path.

    Raises:
        ValueError: If the path escapes the allowed directory.
    """
    if base_dir is None:
        base_dir = Path.cwd()

    resolved_base = base_dir.resolve()
    resolved_path = (base_dir / path).resolve()

    try:
        resolved_path.relative_to(resolved_base)
    except ValueError:
        raise ValueError(
            f"Invalid path: '{path}' escapes the allowed directory. "
            f"Paths must be within '{resolved_base}'"
        ) from None

    return resolved_path


@dataclass
class Services:
    """Engines wired to the snapshot provider and local stores."""

    config: Config
    user_id: str
    tenant_id: str
    snapshot_dir: Path
    store_path: Path

    @property
    def rule_counters_path(self) -> Path:
        """Rule match counters are kept beside the transaction store."""
        return self.store_path.with_name(RULE_COUNTERS_FILE)

    def provider(self) -> SnapshotProvider:
        if not self.snapshot_dir.is_dir():
            raise UpstreamError(
                f"Snapshot directory not found: {self.snapshot_dir}",
                operation="load_snapshots",
            )
        return SnapshotProvider(self.snapshot_dir)

    def forecaster(self) -> CashFlowForecaster:
        return CashFlowForecaster(self.provider(), self.config.forecast)

    def anomaly_detector(self) -> AnomalyDetector:
        return AnomalyDetector(self.provider(), self.config.anomaly)

    def kpi_calculator(self) -> KPICalculator:
        return KPICalculator(self.provider(), self.config.kpi)

    def reconciler(self) -> Reconciler:
        return Reconciler(
            self.provider(), InMemoryTransactionStore(self.store_path), self.config.reconciliation
        )

    def categorizer(self) -> Categorizer:
        # Categories and rules from categories.yaml belong to the current user and tenant
        for item in [*self.config.categories, *self.config.category_rules]:
            item.user_id = item.user_id or self.user_id
            item.tenant_id = item.tenant_id or self.tenant_id

        return Categorizer(
            InMemoryTransactionStore(self.store_path),
            InMemoryCategoryStore(self.config.categories),
            InMemoryCategoryRuleStore(
                self.config.category_rules, counters_path=self.rule_counters_path
            ),
            self.config.categorization,
        )


def print_json(data: object) -> None:
    """Print a JSON-friendly result."""
    console.print_json(data=data, default=str)


def write_workbook(output: Optional[Path], write: Callable[[Path], None]) -> int:
    """Validate ``output`` and call ``write(path)``; no-op without a path."""
    if output is None:
        return 0
    try:
        path = validate_output_path(output)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    write(path)
    console.print(f"[green]Workbook written to {path}[/green]")
    return 0


def forecast_command(args: argparse.Namespace, services: Services) -> int:
    """Generate and display a cash-flow forecast."""
    forecast = services.forecaster().generate(
        services.tenant_id,
        start_date=args.start_date,
        days=args.days,
        current_balance=args.balance,
    )

    if args.json:
        print_json(forecast.to_dict())
    else:
        summary = forecast.summary_dict()
        console.print(
            f"[bold]Cash flow forecast[/bold] {summary['startDate']} to {summary['endDate']}"
        )
        table = Table("Month", "Inflow", "Outflow", "Net", "Ending Balance")
        for month in forecast.monthly:
            table.add_row(
                f"{month.year}-{month.month:02d}",
                format_currency(month.total_inflow),
                format_currency(month.total_outflow),
                format_currency(month.net_cash_flow),
                format_currency(month.ending_balance),
            )
        console.print(table)
        console.print(f"  Starting balance: {summary['startingBalance']}")
        console.print(
            f"  Lowest balance: {summary['lowestBalance']} on {summary['lowestBalanceDate']}"
        )
        console.print(
            f"  Highest balance: {summary['highestBalance']} on {summary['highestBalanceDate']}"
        )

    writer = ExcelWriter(services.config.output)
    return write_workbook(args.output, lambda path: writer.write_forecast(path, forecast))


def cash_issues_command(args: argparse.Namespace, services: Services) -> int:
    """Detect and display cash-flow issues."""
    report = services.forecaster().detect_issues(
        services.tenant_id,
        start_date=args.start_date,
        days=args.days,
        current_balance=args.balance,
    )

    if args.json:
        print_json(report.to_dict())
    else:
        console.print(f"[bold]Cash flow trend:[/bold] {report.trend.value}")
        if not report.issues:
            console.print("[green]No cash-flow issues detected[/green]")
        for issue in report.issues:
            style = SEVERITY_STYLES[issue.severity]
            console.print(f"[{style}]{issue.severity.value}[/{style}] {issue.description}")
            for recommendation in issue.recommendations:
                console.print(f"    - {recommendation}")

    writer = ExcelWriter(services.config.output)
    return write_workbook(
        args.output, lambda path: writer.write_forecast(path, report.forecast, report.issues)
    )


def anomalies_command(args: argparse.Namespace, services: Services) -> int:
    """Detect and display anomalies."""
    report = services.anomaly_detector().generate_report(
        services.tenant_id, months=args.months, to_date=args.to_date
    )

    if args.json:
        print_json(report.to_dict())
    else:
        console.print(
            f"[bold]Anomalies[/bold] {report.scan.from_date} to {report.scan.to_date}: "
            f"{len(report.anomalies)} found "
            f"({report.count_by_severity(Severity.HIGH)} high severity)"
        )
        table = Table("Severity", "Type", "Date", "Description")
        for anomaly in report.anomalies:
            style = SEVERITY_STYLES[anomaly.severity]
            when = anomaly.sort_date.isoformat() if anomaly.sort_date else ""
            table.add_row(
                f"[{style}]{anomaly.severity.value}[/{style}]",
                anomaly.anomaly_type.value,
                when,
                anomaly.description,
            )
        console.print(table)
        for rec in report.recommendations:
            console.print(f"\n[bold]{rec.recommendation}[/bold] ({rec.priority.value})")
            for item in rec.action_items:
                console.print(f"  - {item}")

    writer = ExcelWriter(services.config.output)
    return write_workbook(args.output, lambda path: writer.write_anomaly_report(path, report))


def print_health_recommendations(recommendations: list[HealthRecommendation]) -> None:
    for rec in recommendations:
        console.print(f"\n[bold]{rec.category}:[/bold] {rec.issue}")
        console.print(f"  {rec.recommendation}")


def health_command(args: argparse.Namespace, services: Services) -> int:
    """Calculate and display the business health score."""
    health = services.kpi_calculator().calculate_health_score(
        services.tenant_id, months=args.months, to_date=args.to_date
    )

    if args.json:
        print_json(health.to_dict())
        return 0

    console.print(
        f"[bold]Business health:[/bold] {round(health.overall_score)}/100 "
        f"({health.status.value})"
    )
    table = Table("Component", "Score")
    for name, score in health.components.to_dict().items():
        table.add_row(name.capitalize(), str(score))
    console.print(table)
    print_health_recommendations(health.recommendations)
    return 0


def kpis_command(args: argparse.Namespace, services: Services) -> int:
    """Calculate and display KPIs."""
    report = services.kpi_calculator().calculate_kpis(
        services.tenant_id, months=args.months, to_date=args.to_date
    )

    if args.json:
        print_json(report.to_dict())
    else:
        ratios = report.health.ratios
        table = Table("KPI", "Value")
        table.add_row("Gross profit margin %", f"{ratios.gross_profit_margin:.1f}")
        table.add_row("Net profit margin %", f"{ratios.net_profit_margin:.1f}")
        table.add_row("Current ratio", f"{ratios.current_ratio:.2f}")
        table.add_row("Quick ratio", f"{ratios.quick_ratio:.2f}")
        table.add_row("Debt to equity", f"{ratios.debt_to_equity:.2f}")
        table.add_row("Return on equity %", f"{ratios.return_on_equity:.1f}")
        table.add_row("Total revenue", format_currency(report.revenue.total_revenue))
        table.add_row("Collection rate %", f"{report.revenue.collection_rate:.1f}")
        table.add_row("Average invoice", format_currency(report.revenue.average_invoice_value))
        table.add_row("Total expenses", format_currency(report.expenses.total_expenses))
        table.add_row("Expense to revenue %", f"{report.expenses.expense_to_revenue_ratio:.1f}")
        table.add_row("Cash conversion cycle (days)", f"{ratios.cash_conversion_cycle:.0f}")
        table.add_row(
            "Health score",
            f"{round(report.health.overall_score)} ({report.health.status.value})",
        )
        console.print(table)
        print_health_recommendations(report.health.recommendations)

    writer = ExcelWriter(services.config.output)
    return write_workbook(args.output, lambda path: writer.write_kpi_report(path, report))


def sync_command(args: argparse.Namespace, services: Services) -> int:
    """Sync provider bank transactions into the local store."""
    result = services.reconciler().sync_bank_transactions(
        services.user_id, services.tenant_id, days=args.days
    )
    if args.json:
        print_json(result.to_dict())
    else:
        console.print(
            f"[green]Synced {result.total} bank transactions[/green] "
            f"({result.created} created, {result.updated} updated, {result.skipped} skipped)"
        )
    return 0


def print_batch(result: BatchResult, action: str) -> None:
    console.print(
        f"{action} {result.succeeded}/{result.total} transactions "
        f"({result.skipped} skipped, {result.failed} failed)"
    )
    for error in result.errors:
        console.print(f"  [red]{error.item_id}: {error.kind} {error.message}[/red]")


def categorize_command(args: argparse.Namespace, services: Services) -> int:
    """Apply automatic categorization rules."""
    result = services.categorizer().apply_rules(
        services.user_id, services.tenant_id, limit=args.limit
    )
    if args.json:
        print_json(result.to_dict())
    else:
        print_batch(result, "Categorized")
    return 1 if result.has_failures else 0


def matches_command(args: argparse.Namespace, services: Services) -> int:
    """List documents that may settle a transaction."""
    matches = services.reconciler().find_potential_matches(
        services.user_id, services.tenant_id, args.transaction_id
    )
    if args.json:
        print_json(matches.to_dict())
        return 0

    record = matches.transaction
    console.print(
        f"[bold]{record.id}[/bold] {record.date} {format_currency(record.amount)} "
        f"{record.description or ''}"
    )
    candidates = matches.invoices or matches.bills
    if not candidates:
        console.print("[yellow]No matching documents found[/yellow]")
        return 0

    table = Table("Confidence", "Type", "Document", "Number", "Contact", "Amount Due")
    for candidate in candidates:
        table.add_row(
            str(candidate.confidence),
            candidate.document_type.value,
            candidate.document_id,
            candidate.number or "",
            candidate.contact_name or "",
            format_currency(candidate.amount_due) if candidate.amount_due is not None else "",
        )
    console.print(table)
    return 0


def reconcile_command(args: argparse.Namespace, services: Services) -> int:
    """Reconcile one transaction with a document."""
    record = services.reconciler().reconcile_transaction(
        services.user_id,
        services.tenant_id,
        args.transaction_id,
        args.document_id,
        args.document_type,
    )
    if args.json:
        print_json(record.to_dict())
    else:
        console.print(
            f"[green]Reconciled {record.id} with {args.document_type} {args.document_id}[/green]"
        )
    return 0


def stats_command(args: argparse.Namespace, services: Services) -> int:
    """Show categorization and reconciliation progress."""
    categorization = services.categorizer().get_stats(
        services.user_id, services.tenant_id, days=args.days
    )
    reconciliation = services.reconciler().get_stats(
        services.user_id, services.tenant_id, days=args.days
    )
    if args.json:
        print_json({
            "categorization": categorization.to_dict(),
            "reconciliation": reconciliation.to_dict(),
        })
        return 0

    console.print(
        f"Categorized: {categorization.categorized}/{categorization.total} "
        f"({categorization.categorized_percentage}%)"
    )
    console.print(
        f"Reconciled: {reconciliation.reconciled}/{reconciliation.total} "
        f"({reconciliation.reconciled_percentage}%)"
    )
    if categorization.top_categories:
        table = Table("Category", "Transactions", "Amount")
        for tally in categorization.top_categories:
            table.add_row(tally.name, str(tally.count), format_currency(tally.total))
        console.print(table)
    return 0


def validate_config(args: argparse.Namespace) -> int:
    """Validate configuration files.

    Args:
        args: Parsed command-line arguments.

    Returns:
        0 if valid, 1 if errors found.
    """
    console.print("[bold]Validating configuration files...[/bold]\n")

    errors = []
    warnings = []

    config_dir = args.config_dir
    if not config_dir.exists():
        warnings.append(f"Config directory not found: {config_dir}")

    settings_path = config_dir / "settings.yaml"
    if settings_path.exists():
        console.print(f"[green]✓[/green] Settings: {settings_path}")
    else:
        warnings.append(f"Settings file not found: {settings_path}")

    categories_path = config_dir / "categories.yaml"
    if categories_path.exists():
        console.print(f"[green]✓[/green] Categories: {categories_path}")
    else:
        warnings.append(f"Categories file not found: {categories_path}")

    try:
        config: Optional[Config] = load_config(config_dir=config_dir)
        console.print("\n[green]✓[/green] Configuration loaded successfully")
        console.print(f"  - {len(config.categories)} categories")
        console.print(f"  - {len(config.category_rules)} rules")
    except CFOAssistantError as e:
        errors.append(f"Failed to load configuration: {e.message}")
        config = None

    if config is not None:
        for rule in config.category_rules:
            try:
                validate_conditions(rule.conditions)
            except CFOAssistantError as e:
                errors.append(f"Rule '{rule.name}': {e.message}")

    if warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for w in warnings:
            console.print(f"  - {w}")

    if errors:
        console.print("\n[red]Errors:[/red]")
        for err in errors:
            console.print(f"  - {err}")
        return 1

    console.print("\n[green]Configuration is valid.[/green]")
    return 0


COMMANDS = {
    "forecast": forecast_command,
    "cash-issues": cash_issues_command,
    "anomalies": anomalies_command,
    "health": health_command,
    "kpis": kpis_command,
    "sync": sync_command,
    "categorize": categorize_command,
    "matches": matches_command,
    "reconcile": reconcile_command,
    "stats": stats_command,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    log_level = get_log_level(args.verbose)

    if args.command == "validate-config":
        setup_logging(level=log_level, console_output=args.verbose > 0)
        return validate_config(args)

    try:
        config = load_config(config_dir=args.config_dir)
        setup_logging(
            level=log_level if args.verbose else config.logging.level,
            log_file=config.logging.file,
            console_output=args.verbose > 0,
        )
        services = Services(
            config=config,
            user_id=args.user,
            tenant_id=args.tenant,
            snapshot_dir=args.snapshot_dir,
            store_path=args.store,
        )
        return COMMANDS[args.command](args, services)
    except CFOAssistantError as e:
        logger.error(f"{args.command} failed: {e}")
        console.print(f"[red]Error ({e.kind}): {e.message}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
