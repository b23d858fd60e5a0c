from async_mail_validation.models import (
    ErrorCategory,
    Severity,
    TestCategory,
    TestOutcome,
    TestStatus,
    ValidationError,
    ValidationResult,
)
from async_mail_validation.prometheus import ValidationMetrics


def test_validation_metrics_counters_and_gauge():
    metrics = ValidationMetrics()
    failed = TestOutcome(
        name="SMTP Connectivity Test",
        category=TestCategory.SMTP_CONNECTIVITY,
        status=TestStatus.FAILED,
        errors=(ValidationError(
            code="SMTP_CONNECTION_FAILED",
            message="refused",
            severity=Severity.CRITICAL,
            category=ErrorCategory.SMTP_CONFIG,
        ),),
    )

    metrics.record_run(ValidationResult(passed=False, outcomes=(failed,)))

    output = metrics.generate_latest()
    assert b'gmv_outcomes_total{category="smtp_connectivity",status="failed"} 1.0' in output
    assert b'gmv_errors_total{severity="critical",code="SMTP_CONNECTION_FAILED"} 1.0' in output
    assert b'gmv_runs_total{result="failed"} 1.0' in output
    assert b"gmv_last_run_passed 0.0" in output


def test_instances_do_not_share_registries():
    first = ValidationMetrics()
    second = ValidationMetrics()

    first.record_run(ValidationResult(passed=True))

    assert b"gmv_last_run_passed 1.0" in first.generate_latest()
    assert b"gmv_last_run_passed 0.0" in second.generate_latest()
