# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for validation runs.

All metrics use the ``gmv_`` prefix (genro mail validation).

Metrics exposed:
    - ``gmv_outcomes_total``: Counter of test outcomes per category and status.
    - ``gmv_errors_total``: Counter of validation errors per severity and code.
    - ``gmv_runs_total``: Counter of completed runs per result (passed/failed).
    - ``gmv_last_run_passed``: Gauge, 1 if the last run passed, 0 otherwise.

Example:
    Exporting after a run::

        metrics = ValidationMetrics()
        orchestrator = EmailValidationOrchestrator.from_boundaries(metrics=metrics)
        await orchestrator.run_full_validation(config, options)
        payload = metrics.generate_latest()
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from .models import TestOutcome, ValidationResult


class ValidationMetrics:
    """Prometheus collector for the validation pipeline.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        outcomes: Counter of outcomes labeled by category and status.
        errors: Counter of validation errors labeled by severity and code.
        runs: Counter of runs labeled by result.
        last_run_passed: Gauge reflecting the most recent run.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Args:
            registry: Optional Prometheus CollectorRegistry. A new one is
                created when omitted, so several instances can coexist.
        """
        self.registry = registry or CollectorRegistry()
        self.outcomes = Counter(
            "gmv_outcomes_total",
            "Total test outcomes",
            ["category", "status"],
            registry=self.registry,
        )
        self.errors = Counter(
            "gmv_errors_total",
            "Total validation errors",
            ["severity", "code"],
            registry=self.registry,
        )
        self.runs = Counter(
            "gmv_runs_total",
            "Total validation runs",
            ["result"],
            registry=self.registry,
        )
        self.last_run_passed = Gauge(
            "gmv_last_run_passed",
            "1 if the last validation run passed, 0 otherwise",
            registry=self.registry,
        )

    def record_outcome(self, outcome: TestOutcome) -> None:
        self.outcomes.labels(category=outcome.category.value, status=outcome.status.value).inc()
        for error in outcome.errors:
            self.errors.labels(severity=error.severity.value, code=error.code).inc()

    def record_run(self, result: ValidationResult) -> None:
        """Record every outcome of ``result`` and the run verdict."""
        for outcome in result.outcomes:
            self.record_outcome(outcome)
        self.runs.labels(result="passed" if result.passed else "failed").inc()
        self.last_run_passed.set(1 if result.passed else 0)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
