"""Command Line Interface for Record-Guard.

Typer commands for operators: run an integrity scan (optionally repairing),
check database health, decode a single stored value, initialize the
database schema and show the active configuration.

Security Impact:
    - `scan --repair` is destructive and asks for confirmation unless --yes
    - Every repair write is recorded in the storage audit trail
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from recordguard import __version__
from recordguard.domain.auditor import AuditAction, IntegrityAuditor, IntegrityReport
from recordguard.domain.kinds import ALL_KINDS, ClinicalSubRecordKind
from recordguard.domain.ports import CorruptionError, PatientStoragePort, StorageError
from recordguard.infrastructure.integrity_report import save_integrity_report
from recordguard.infrastructure.logging_config import setup_logging
from recordguard.infrastructure.settings import settings

app = typer.Typer(
    name="recordguard",
    help="Record-Guard: integrity pipeline for clinical patient fields",
    add_completion=False
)
console = Console()


def create_storage_adapter_cli() -> PatientStoragePort:
    """Create storage adapter based on configuration (CLI wrapper)."""
    try:
        from recordguard.main import create_storage_adapter
        return create_storage_adapter(settings.db_config)
    except Exception as e:
        console.print(f"[red]✗[/red] Failed to create storage adapter: {str(e)}")
        raise typer.Exit(code=1)


def print_report(report: IntegrityReport) -> None:
    summary_table = Table(show_header=False, box=None, padding=(0, 2))
    summary_table.add_row("Action:", report.action.value)
    summary_table.add_row("Patients scanned:", f"{report.total_patients:,}")
    summary_table.add_row("Fields scanned:", f"{report.total_fields_scanned:,}")
    summary_table.add_row(
        "Corrupted fields:",
        f"[red]{report.corrupted_fields:,}[/red]" if report.corrupted_fields else "0"
    )
    if report.action is AuditAction.RESET_TO_DEFAULT:
        summary_table.add_row("Reset to default:", f"[green]{report.fixed_fields:,}[/green]")
        if report.repair_failures:
            summary_table.add_row("Repair failures:", f"[red]{report.repair_failures:,}[/red]")
    if report.anomalous_fields:
        summary_table.add_row("Auto-corrected fields:", f"{report.anomalous_fields:,}")
    summary_table.add_row("Duration:", f"{report.duration_seconds:.3f}s")
    console.print(summary_table)

    if report.corrupted_patients:
        findings_table = Table(show_header=True, header_style="bold")
        findings_table.add_column("Patient", justify="right")
        findings_table.add_column("Name", style="cyan")
        findings_table.add_column("Field")
        findings_table.add_column("Reason")
        findings_table.add_column("Offset", justify="right")
        findings_table.add_column("Patterns")
        findings_table.add_column("Excerpt")
        for patient in report.corrupted_patients:
            for finding in patient.findings:
                findings_table.add_row(
                    str(patient.patient_id),
                    patient.name,
                    finding.kind.wire_key,
                    finding.reason,
                    "" if finding.offset is None else str(finding.offset),
                    ", ".join(finding.patterns),
                    repr(finding.excerpt) if finding.excerpt else "",
                )
        console.print()
        console.print(findings_table)


@app.command()
def scan(
    repair: bool = typer.Option(False, "--repair", help="Reset corrupted fields to their default (destructive)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation before repairing"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the JSON report to this path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Decode every stored clinical field and report corruption.

    Exits with status 1 when any corrupted field was found, including
    after a repair, so schedulers can alert on it.

    Examples:
        recordguard scan
        recordguard scan --output reports/latest.json
        recordguard scan --repair --yes
    """
    setup_logging(use_json=settings.json_logs, log_level="DEBUG" if verbose else "WARNING")

    if repair and not yes:
        typer.confirm("Reset every corrupted clinical field to its default?", abort=True)

    console.print(f"\n[bold blue]Record-Guard integrity {'repair' if repair else 'scan'}[/bold blue]")
    console.print(f"[dim]Database:[/dim] {settings.db_config.db_type}")
    console.print()

    storage = create_storage_adapter_cli()
    try:
        from recordguard.main import run_integrity_scan
        with console.status("[bold green]Scanning clinical fields..."):
            report = run_integrity_scan(repair=repair, storage=storage, app_settings=settings)
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠[/yellow] Scan interrupted by user")
        raise typer.Exit(code=130)
    except Exception as e:
        console.print(f"\n[red]✗[/red] Integrity scan failed: {str(e)}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1)
    finally:
        storage.close()

    print_report(report)

    if output or settings.save_integrity_report:
        save_result = save_integrity_report(
            report,
            output_path=str(output) if output else None,
            report_dir=settings.integrity_report_dir
        )
        if save_result.is_success():
            console.print(f"\n[green]✓[/green] Integrity report saved: {save_result.value}")
        else:
            console.print(f"\n[yellow]⚠[/yellow] Failed to save integrity report: {save_result.error}")

    if report.corrupted_fields:
        console.print(f"\n[yellow]⚠[/yellow] Status {report.status}: {report.corrupted_fields} corrupted fields")
        raise typer.Exit(code=1)
    console.print("\n[green]✓[/green] All clinical fields decode cleanly")


@app.command()
def check() -> None:
    """Check database connectivity and whether stored clinical fields decode.

    Read-only. Exits with status 1 when the database is unreachable or any
    stored field is corrupted.
    """
    from recordguard.main import create_codec

    console.print("[bold blue]Database Health Check[/bold blue]\n")

    storage = create_storage_adapter_cli()
    try:
        count_result = storage.count_patient_records()
        if not count_result.is_success():
            console.print(f"[red]✗[/red] Database unreachable: {count_result.error}")
            raise typer.Exit(code=1)
        console.print(f"[green]✓[/green] Connected to {settings.db_config.db_type}")
        console.print(f"[dim]Patients:[/dim] {count_result.value:,}")

        with console.status("[bold green]Decoding clinical fields..."):
            report = IntegrityAuditor(storage, codec=create_codec(settings)).scan()
    except StorageError as e:
        console.print(f"[red]✗[/red] Health check failed: {str(e)}")
        raise typer.Exit(code=1)
    finally:
        storage.close()

    if report.corrupted_fields:
        console.print(
            f"[red]✗[/red] {report.corrupted_fields} corrupted field(s) in "
            f"{len(report.corrupted_patients)} patient(s); run `recordguard scan` for details"
        )
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] All {report.total_fields_scanned:,} clinical fields decode cleanly")


@app.command()
def decode(
    kind: str = typer.Argument(..., help="Clinical field: " + ", ".join(k.wire_key for k in ALL_KINDS)),
    value: Optional[str] = typer.Argument(None, help="Stored text to decode (omit to use --file)"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read the stored text from a file", exists=True),
) -> None:
    """Decode one stored value and show corruption diagnostics if it fails.

    Examples:
        recordguard decode foodAndHabit '{"foodHabit": "Veg"}'
        recordguard decode medical_history --file dump.txt
    """
    try:
        clinical_kind = ClinicalSubRecordKind.from_wire_key(kind)
    except ValueError as e:
        console.print(f"[red]✗[/red] {str(e)}")
        raise typer.Exit(code=2)

    if file is not None:
        value = file.read_text(encoding="utf-8")
    if value is None:
        console.print("[red]✗[/red] Provide the stored text or --file")
        raise typer.Exit(code=2)

    from recordguard.main import create_codec
    codec = create_codec(settings)
    try:
        outcome = codec.decode_with_anomalies(value, clinical_kind)
    except CorruptionError as e:
        console.print(f"[red]✗[/red] Corrupted {clinical_kind.wire_key}: {e.reason}")
        details = Table(show_header=False, box=None, padding=(0, 2))
        details.add_row("Message:", str(e))
        if e.offset is not None:
            details.add_row("Offset:", str(e.offset))
        if e.excerpt:
            details.add_row("Excerpt:", repr(e.excerpt))
        if e.patterns:
            details.add_row("Patterns:", ", ".join(e.patterns))
        console.print(details)
        raise typer.Exit(code=1)

    console.print(f"[green]✓[/green] {clinical_kind.wire_key} decodes cleanly")
    for anomaly in outcome.anomalies:
        console.print(f"[yellow]⚠[/yellow] Auto-corrected: {anomaly}")


@app.command("init-db")
def init_db() -> None:
    """Create or migrate the database schema."""
    storage = create_storage_adapter_cli()
    try:
        result = storage.initialize_schema()
    finally:
        storage.close()

    if not result.is_success():
        console.print(f"[red]✗[/red] {result.error}")
        raise typer.Exit(code=1)
    console.print("[green]✓[/green] Database schema is up to date")


@app.command()
def info() -> None:
    """Display system information and configuration."""
    console.print("[bold blue]System Information[/bold blue]\n")

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", settings.app_name)
    info_table.add_row("Version:", __version__)
    info_table.add_row("Database Type:", settings.db_config.db_type)

    if settings.db_config.db_type == "duckdb":
        info_table.add_row("Database Path:", settings.db_config.db_path or ":memory:")
    elif settings.db_config.db_type == "postgresql":
        info_table.add_row("Database Host:", str(settings.db_config.host))
        info_table.add_row("Database Name:", str(settings.db_config.database))

    info_table.add_row(
        "Unparseable writes:",
        "Rejected" if settings.reject_parse_failures else "Stored as defaults"
    )
    info_table.add_row("Max encoded length:", f"{settings.max_encoded_length:,} bytes")
    info_table.add_row("Repair workers:", str(settings.repair_workers))
    info_table.add_row("Report directory:", settings.integrity_report_dir)

    console.print(info_table)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"Record-Guard v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", help="Show version information", callback=version_callback, is_eager=True
    )
) -> None:
    """Record-Guard: integrity pipeline for clinical patient fields."""


if __name__ == "__main__":
    app()
