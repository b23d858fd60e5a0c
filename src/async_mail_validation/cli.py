# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for async-mail-validation.

Usage:
    mail-validate run --config config.ini --templates templates.json
    mail-validate run --phase smtp_validation --phase template_validation
    mail-validate run --lenient --json
    mail-validate providers
    mail-validate check-template templates.json

Example:
    $ GMV_TEST_RECIPIENT=qa@example.com GMV_SMTP_PROVIDER=sendgrid \\
        GMV_SMTP_PASSWORD=SG.xxxxx mail-validate run --templates templates.json

The ``run`` command exits with status 1 when the validation fails, so it can
gate a deployment pipeline.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from .config_loader import (
    ConfigurationError,
    build_asset_store,
    build_tracker,
    load_settings,
    load_templates,
)
from .models import (
    ReportStatus,
    Severity,
    TestOutcome,
    ValidationOptions,
    ValidationPhase,
    ValidationReport,
)
from .orchestrator import EmailValidationOrchestrator
from .prometheus import ValidationMetrics
from .providers import PROVIDER_DEFAULTS
from .template_validator import TemplateValidator
from .transport import AiosmtplibTransport, LocalAssetStore

console = Console()
err_console = Console(stderr=True)

STATUS_STYLE = {
    "passed": "[green]passed[/green]",
    "failed": "[red]failed[/red]",
    "error": "[red]error[/red]",
    "skipped": "[dim]skipped[/dim]",
    "warning": "[yellow]warning[/yellow]",
}

SEVERITY_STYLE = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "dim",
}


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def configure_logging() -> None:
    log_level = os.getenv("GMV_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format='[%(asctime)s] [%(levelname)s] %(message)s',
        force=True,
    )


def _outcomes_table(outcomes: list[TestOutcome] | tuple[TestOutcome, ...], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Test", style="cyan")
    table.add_column("Category")
    table.add_column("Status", justify="center")
    table.add_column("Duration", justify="right")
    table.add_column("Result")

    for outcome in outcomes:
        table.add_row(
            outcome.name,
            outcome.category.value,
            STATUS_STYLE.get(outcome.status.value, outcome.status.value),
            f"{outcome.duration_ms:.0f}ms",
            outcome.actual or "-",
        )
    return table


def _print_report(report: ValidationReport) -> None:
    if report.test_outcomes:
        console.print(_outcomes_table(report.test_outcomes, "Validation Outcomes"))

    if report.issues:
        table = Table(title="Issues")
        table.add_column("Severity")
        table.add_column("Code", style="cyan")
        table.add_column("Description")
        table.add_column("Count", justify="right")
        table.add_column("Suggested fixes")
        for issue in report.issues:
            style = SEVERITY_STYLE.get(issue.severity, "")
            table.add_row(
                f"[{style}]{issue.severity.value}[/{style}]" if style else issue.severity.value,
                issue.code,
                issue.description,
                str(issue.occurrences),
                "\n".join(f"- {fix}" for fix in issue.suggested_fixes),
            )
        console.print(table)

    for recommendation in report.recommendations:
        console.print(f"[bold]→[/bold] {recommendation}")

    s = report.summary
    console.print(
        f"\n[bold]Summary:[/bold] {s.passed_tests}/{s.total_tests} passed, "
        f"{s.failed_tests} failed, {s.critical_issues} critical, {s.warnings} warnings"
    )
    status = STATUS_STYLE.get(report.status.value, report.status.value)
    console.print(f"[bold]Status:[/bold] {status}")


@click.group()
@click.version_option(package_name="async-mail-validation")
def main() -> None:
    """async-mail-validation CLI - Validate email infrastructure before deployment.

    Examples:

        mail-validate run --config config.ini --templates templates.json

        mail-validate providers

        mail-validate check-template templates.json
    """
    configure_logging()


@main.command("run")
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), default=None,
              help="INI configuration file (default: $GMV_CONFIG or config.ini).")
@click.option("--templates", "-t", "templates_path", type=click.Path(dir_okay=False), default=None,
              help="JSON file with the templates to validate.")
@click.option("--phase", "-p", "phases", multiple=True,
              type=click.Choice([p.value for p in ValidationPhase]),
              help="Run only this phase (repeatable). Default: all phases.")
@click.option("--recipient", "-r", default=None, help="Override the configured test recipient.")
@click.option("--strict/--lenient", default=None,
              help="Halt on critical failures and require every test to pass (strict), "
                   "or judge only critical tests (lenient).")
@click.option("--metrics", "metrics_path", type=click.Path(dir_okay=False), default=None,
              help="Write Prometheus metrics of the run to this file.")
@click.option("--json", "as_json", is_flag=True, help="Output the report as JSON.")
def run_command(
    config_path: str | None,
    templates_path: str | None,
    phases: tuple[str, ...],
    recipient: str | None,
    strict: bool | None,
    metrics_path: str | None,
    as_json: bool,
) -> None:
    """Run the validation pipeline and print the report."""
    try:
        settings = load_settings(config_path, recipient=recipient)
        templates = load_templates(templates_path) if templates_path else []
    except ConfigurationError as e:
        print_error(str(e))
        sys.exit(2)

    config = settings.validation
    if strict is not None:
        config = config.model_copy(update={"skip_non_critical_tests": not strict})

    metrics = ValidationMetrics() if metrics_path else None
    orchestrator = EmailValidationOrchestrator.from_boundaries(
        transport=AiosmtplibTransport(client_timeout=config.timeout_ms / 1000),
        tracker=build_tracker(settings.tracking),
        asset_store=build_asset_store(settings),
        timeout_ms=config.timeout_ms,
        probe_recipient=config.test_recipient,
        metrics=metrics,
    )
    options = ValidationOptions(
        phases=[ValidationPhase(p) for p in phases] or None,
        smtp_targets=settings.smtp_targets,
        templates=templates,
    )

    result = run_async(orchestrator.run_full_validation(config, options))
    report = orchestrator.generate_validation_report(result, config)

    if metrics is not None:
        Path(metrics_path).write_bytes(metrics.generate_latest())

    if as_json:
        print_json(report.model_dump(mode="json"))
    else:
        _print_report(report)
        if result.halted_after is not None:
            console.print(f"[yellow]Halted after {result.halted_after.value}[/yellow]")
        if result.error:
            print_error(result.error)

    if not result.passed:
        sys.exit(1)
    if not as_json and report.status == ReportStatus.PASSED:
        print_success("Email infrastructure validation passed")


@main.command("providers")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def providers_command(as_json: bool) -> None:
    """Show the built-in SMTP defaults per provider."""
    rows = {provider.value: dict(defaults) for provider, defaults in PROVIDER_DEFAULTS.items()}
    if as_json:
        print_json(rows)
        return

    table = Table(title="SMTP Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Host")
    table.add_column("Port", justify="right")
    table.add_column("TLS", justify="center")
    table.add_column("User")
    for name, defaults in rows.items():
        table.add_row(
            name,
            defaults.get("host") or "-",
            str(defaults.get("port", "-")),
            "[green]✓[/green]" if defaults.get("use_tls") else "[red]✗[/red]",
            defaults.get("user") or "-",
        )
    console.print(table)


@main.command("check-template")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--assets-dir", default=None, help="Base directory for relative asset paths.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def check_template_command(path: str, assets_dir: str | None, as_json: bool) -> None:
    """Run rendering, placeholder and asset checks on a templates file."""
    try:
        templates = load_templates(path)
    except ConfigurationError as e:
        print_error(str(e))
        sys.exit(2)

    validator = TemplateValidator(LocalAssetStore(assets_dir or Path(path).parent))

    async def _check() -> list[TestOutcome]:
        outcomes: list[TestOutcome] = []
        for template in templates:
            outcomes.extend(await validator.run_comprehensive_tests(template))
        return outcomes

    outcomes = run_async(_check())

    if as_json:
        print_json([o.model_dump(mode="json") for o in outcomes])
    else:
        console.print(_outcomes_table(outcomes, f"Template Checks ({len(templates)} templates)"))
        for outcome in outcomes:
            for error in outcome.errors:
                console.print(f"  [{SEVERITY_STYLE[error.severity]}]{error.code}[/] {error.message}")

    if not all(o.is_passed for o in outcomes):
        sys.exit(1)
    if not as_json:
        print_success("All template checks passed")
