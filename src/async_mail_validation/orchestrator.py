# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Top-level orchestration of the validation phases.

The orchestrator walks the phases in fixed order (SMTP, Template, Delivery,
Integration), collects every component's outcomes, decides the overall
verdict and turns the result into an operator report.

State machine::

    idle -> running_phase(SMTP) -> running_phase(Template)
         -> running_phase(Delivery) -> running_phase(Integration) -> complete

A phase follows the previous one unconditionally, except when
``skip_non_critical_tests`` is False and the phase just completed produced
a critical failure: the run then moves straight to ``complete`` and later
phases are absent from the result.

``run_full_validation`` never raises. Components convert their own
boundary errors into data; the catch-all here only turns an unexpected bug
into a failed result carrying the outcomes gathered so far.

Example:
    Running a full validation::

        orchestrator = EmailValidationOrchestrator.from_boundaries(
            transport=AiosmtplibTransport(),
            tracker=AcceptAllDeliveryTracker(),
        )
        result = await orchestrator.run_full_validation(
            ValidationConfig(test_recipient="qa@example.com"),
            ValidationOptions(smtp_targets=[target], templates=templates),
        )
        report = orchestrator.generate_validation_report(result, config)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from typing import Any

from .boundary import AssetStore, DeliveryTracker, SMTPTransport
from .delivery_validator import DeliveryValidator
from .integration_validator import IntegrationValidator
from .logger import get_logger
from .models import (
    PHASE_ORDER,
    ReportStatus,
    Severity,
    TestCategory,
    TestOutcome,
    ValidationConfig,
    ValidationIssue,
    ValidationOptions,
    ValidationPhase,
    ValidationReport,
    ValidationResult,
    ValidationSummary,
)
from .prometheus import ValidationMetrics
from .remediation import (
    DEFAULT_FIX_CATALOG,
    DEFAULT_SEVERITY_POLICY,
    SLOW_OUTCOME_THRESHOLD_MS,
    FixCatalog,
    SeverityPolicy,
    fixes_for,
)
from .smtp_validator import SMTPValidator
from .template_validator import TemplateValidator
from .transport import AiosmtplibTransport

CATEGORY_PHASE = {
    TestCategory.SMTP_CONNECTIVITY: ValidationPhase.SMTP_VALIDATION,
    TestCategory.SMTP_AUTHENTICATION: ValidationPhase.SMTP_VALIDATION,
    TestCategory.TEMPLATE_RENDERING: ValidationPhase.TEMPLATE_VALIDATION,
    TestCategory.PLACEHOLDER_SUBSTITUTION: ValidationPhase.TEMPLATE_VALIDATION,
    TestCategory.ASSET_VALIDATION: ValidationPhase.TEMPLATE_VALIDATION,
    TestCategory.EMAIL_DELIVERY: ValidationPhase.DELIVERY_VALIDATION,
    TestCategory.INTEGRATION_WORKFLOW: ValidationPhase.INTEGRATION_VALIDATION,
}


class OrchestratorState(str, Enum):
    IDLE = "idle"
    RUNNING_PHASE = "running_phase"
    COMPLETE = "complete"


def ordered_phases(phases: Iterable[ValidationPhase] | None) -> list[ValidationPhase]:
    """Requested phases, deduplicated and put in execution order."""
    if phases is None:
        return list(PHASE_ORDER)
    requested = {ValidationPhase(p) for p in phases}
    return [p for p in PHASE_ORDER if p in requested]


def determine_overall_status(outcomes: Iterable[TestOutcome], skip_non_critical: bool) -> bool:
    """Decide whether a run passed.

    Rules:
        - no outcomes at all: failed
        - any critical error anywhere: failed, regardless of strictness
        - ``skip_non_critical``: only passing outcomes and outcomes with a
          critical error are considered, and they must all pass
        - otherwise every outcome must have status ``passed``
    """
    outcomes = list(outcomes)
    if not outcomes:
        return False
    if any(o.has_critical_error for o in outcomes):
        return False
    if skip_non_critical:
        considered = [o for o in outcomes if o.is_passed or o.has_critical_error]
        return all(o.is_passed for o in considered)
    return all(o.is_passed for o in outcomes)


def generate_summary(outcomes: Iterable[TestOutcome]) -> ValidationSummary:
    outcomes = list(outcomes)
    errors = [e for o in outcomes for e in o.errors]
    return ValidationSummary(
        total_tests=len(outcomes),
        passed_tests=sum(1 for o in outcomes if o.is_passed),
        failed_tests=sum(1 for o in outcomes if not o.is_passed),
        critical_issues=sum(1 for e in errors if e.severity == Severity.CRITICAL),
        warnings=sum(1 for e in errors if e.severity in (Severity.MEDIUM, Severity.LOW)),
    )


class EmailValidationOrchestrator:
    """Sequences the validation phases and builds the final report.

    One orchestrator runs one validation at a time: ``state`` and
    ``current_phase`` describe the run in progress.

    Attributes:
        fix_catalog: Read-only ``error code -> fixes`` map used by reports.
        severity_policy: Severities for configurable delivery errors.
        metrics: Optional Prometheus collector fed after every run.
        state: Current ``OrchestratorState``.
        current_phase: Phase being executed, or None.
    """

    def __init__(
        self,
        smtp_validator: SMTPValidator,
        template_validator: TemplateValidator,
        delivery_validator: DeliveryValidator,
        integration_validator: IntegrationValidator | None = None,
        *,
        fix_catalog: FixCatalog = DEFAULT_FIX_CATALOG,
        metrics: ValidationMetrics | None = None,
        logger=None,
    ):
        self.smtp_validator = smtp_validator
        self.template_validator = template_validator
        self.delivery_validator = delivery_validator
        self.integration_validator = integration_validator or IntegrationValidator(
            smtp_validator, template_validator, delivery_validator
        )
        self.fix_catalog = fix_catalog
        self.metrics = metrics
        self.logger = logger or get_logger("EmailValidationOrchestrator")
        self.state = OrchestratorState.IDLE
        self.current_phase: ValidationPhase | None = None

    @property
    def severity_policy(self) -> SeverityPolicy:
        return self.delivery_validator.severity_policy

    @classmethod
    def from_boundaries(
        cls,
        transport: SMTPTransport | None = None,
        tracker: DeliveryTracker | None = None,
        asset_store: AssetStore | None = None,
        *,
        timeout_ms: int = 10000,
        probe_recipient: str | None = None,
        fix_catalog: FixCatalog = DEFAULT_FIX_CATALOG,
        severity_policy: SeverityPolicy = DEFAULT_SEVERITY_POLICY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: ValidationMetrics | None = None,
    ) -> "EmailValidationOrchestrator":
        """Build the full component stack on top of the given boundary adapters."""
        transport = transport or AiosmtplibTransport()
        smtp_kwargs = {"timeout_ms": timeout_ms}
        if probe_recipient:
            smtp_kwargs["probe_recipient"] = probe_recipient
        smtp_validator = SMTPValidator(transport, **smtp_kwargs)
        template_validator = TemplateValidator(asset_store)
        delivery_validator = DeliveryValidator(
            template_validator, transport, tracker, severity_policy=severity_policy, sleep=sleep
        )
        return cls(
            smtp_validator,
            template_validator,
            delivery_validator,
            fix_catalog=fix_catalog,
            metrics=metrics,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def validate_smtp_targets(self, options: ValidationOptions) -> list[TestOutcome]:
        outcomes: list[TestOutcome] = []
        for target in options.smtp_targets:
            outcomes.extend(await self.smtp_validator.run_all(target))
        return outcomes

    async def validate_templates(self, options: ValidationOptions) -> list[TestOutcome]:
        outcomes: list[TestOutcome] = []
        for template in options.templates:
            data = options.test_data_by_template_id.get(template.id)
            outcomes.extend(await self.template_validator.run_comprehensive_tests(template, data))
        return outcomes

    async def validate_delivery(self, config: ValidationConfig, options: ValidationOptions) -> list[TestOutcome]:
        if not options.smtp_targets or not options.templates:
            return []
        target = options.smtp_targets[0]
        delivery_config = config.delivery_config()
        outcomes = await self.delivery_validator.run_multiple_email_types(
            target, options.templates, delivery_config, options.test_data_by_template_id
        )
        if config.load_test_concurrency > 0:
            template = options.templates[0]
            outcomes.append(await self.delivery_validator.run_concurrent_load(
                target,
                template,
                delivery_config,
                config.load_test_concurrency,
                options.test_data_by_template_id.get(template.id),
            ))
        return outcomes

    async def validate_integration_workflows(
        self, config: ValidationConfig, options: ValidationOptions
    ) -> list[TestOutcome]:
        if not options.smtp_targets or not options.templates:
            return []
        return await self.integration_validator.run_all_workflows(
            options.smtp_targets[0], options.templates, config, options.test_data_by_template_id
        )

    async def run_phase(
        self, phase: ValidationPhase, config: ValidationConfig, options: ValidationOptions
    ) -> list[TestOutcome]:
        if phase == ValidationPhase.SMTP_VALIDATION:
            return await self.validate_smtp_targets(options)
        if phase == ValidationPhase.TEMPLATE_VALIDATION:
            return await self.validate_templates(options)
        if phase == ValidationPhase.DELIVERY_VALIDATION:
            return await self.validate_delivery(config, options)
        return await self.validate_integration_workflows(config, options)

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def run_full_validation(
        self, config: ValidationConfig, options: ValidationOptions | None = None
    ) -> ValidationResult:
        """Run the requested phases (all by default) and return the verdict."""
        options = options or ValidationOptions()
        outcomes: list[TestOutcome] = []
        executed: list[ValidationPhase] = []
        halted_after: ValidationPhase | None = None

        try:
            for phase in ordered_phases(options.phases):
                self.state = OrchestratorState.RUNNING_PHASE
                self.current_phase = phase
                self.logger.debug("Running phase %s", phase.value)
                phase_outcomes = await self.run_phase(phase, config, options)
                outcomes.extend(phase_outcomes)
                executed.append(phase)
                self.logger.info(
                    "Phase %s completed: %d outcomes, %d passed",
                    phase.value,
                    len(phase_outcomes),
                    sum(1 for o in phase_outcomes if o.is_passed),
                )
                if not config.skip_non_critical_tests and any(o.has_critical_failure for o in phase_outcomes):
                    halted_after = phase
                    self.logger.warning("Critical failure in %s, halting validation", phase.value)
                    break
        except Exception as exc:
            self.logger.exception("Validation run aborted during %s", self.current_phase)
            result = ValidationResult(
                passed=False,
                outcomes=tuple(outcomes),
                summary=generate_summary(outcomes),
                executed_phases=tuple(executed),
                error=str(exc) or type(exc).__name__,
            )
        else:
            result = ValidationResult(
                passed=determine_overall_status(outcomes, config.skip_non_critical_tests),
                outcomes=tuple(outcomes),
                summary=generate_summary(outcomes),
                executed_phases=tuple(executed),
                halted_after=halted_after,
            )
        finally:
            self.state = OrchestratorState.COMPLETE
            self.current_phase = None

        if self.metrics is not None:
            self.metrics.record_run(result)
        return result

    async def run_specific_tests(
        self,
        phases: Iterable[ValidationPhase],
        config: ValidationConfig,
        options: ValidationOptions | None = None,
    ) -> ValidationResult:
        """Run only ``phases`` (still in fixed order)."""
        options = options or ValidationOptions()
        return await self.run_full_validation(config, options.model_copy(update={"phases": list(phases)}))

    determine_overall_status = staticmethod(determine_overall_status)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def extract_issues(self, outcomes: Iterable[TestOutcome]) -> list[ValidationIssue]:
        """One issue per distinct error, keyed ``issue-<outcome>-<error>``.

        Repeats of the same code and message collapse into the first issue
        and bump its ``occurrences``.
        """
        issues: list[ValidationIssue] = []
        seen: dict[tuple[str, str], ValidationIssue] = {}
        for outcome_index, outcome in enumerate(outcomes):
            for error_index, error in enumerate(outcome.errors):
                key = (error.code, error.message)
                if key in seen:
                    seen[key].occurrences += 1
                    continue
                issue = ValidationIssue(
                    id=f"issue-{outcome_index}-{error_index}",
                    code=error.code,
                    category=error.category,
                    severity=error.severity,
                    description=error.message,
                    suggested_fixes=fixes_for(error.code, self.fix_catalog),
                )
                seen[key] = issue
                issues.append(issue)
        return issues

    @staticmethod
    def generate_recommendations(outcomes: list[TestOutcome], issues: list[ValidationIssue]) -> list[str]:
        recommendations: list[str] = []

        critical = [i for i in issues if i.severity == Severity.CRITICAL]
        if critical:
            recommendations.append(f"{len(critical)} critical issues must be resolved before deployment")

        slow = [o for o in outcomes if o.duration_ms > SLOW_OUTCOME_THRESHOLD_MS]
        if slow:
            recommendations.append(
                f"{len(slow)} tests exceeded {SLOW_OUTCOME_THRESHOLD_MS // 1000}s - consider a delivery performance review"
            )

        if any("Template" in o.name and not o.is_passed for o in outcomes):
            recommendations.append("Review and update email templates to fix rendering issues")

        if any("SMTP" in o.name and not o.is_passed for o in outcomes):
            recommendations.append("Verify SMTP configuration and credentials")

        if any(i.code == "DELIVERY_NOT_CONFIRMED" for i in issues):
            recommendations.append("Check delivery tracking configuration; sent emails could not be confirmed")

        if outcomes and not issues and all(o.is_passed for o in outcomes):
            recommendations.append("All email validation tests passed - system is ready for deployment")

        return recommendations

    @staticmethod
    def determine_report_phase(outcomes: Iterable[TestOutcome]) -> ValidationPhase:
        """The latest phase represented among the outcomes."""
        present = {CATEGORY_PHASE[o.category] for o in outcomes}
        for phase in reversed(PHASE_ORDER):
            if phase in present:
                return phase
        return ValidationPhase.SMTP_VALIDATION

    @staticmethod
    def determine_report_status(result: ValidationResult) -> ReportStatus:
        if result.passed:
            return ReportStatus.PASSED
        if result.summary.critical_issues > 0:
            return ReportStatus.FAILED
        if result.summary.warnings > 0:
            return ReportStatus.WARNING
        return ReportStatus.FAILED

    def generate_validation_report(self, result: ValidationResult, config: ValidationConfig) -> ValidationReport:
        """Turn ``result`` into an operator report; pure, no boundary calls.

        With ``config.generate_detailed_report`` off, passing outcomes are
        left out of ``test_outcomes``; issues and recommendations always
        cover the whole run.
        """
        outcomes = list(result.outcomes)
        issues = self.extract_issues(outcomes)
        shown = outcomes if config.generate_detailed_report else [o for o in outcomes if not o.is_passed]
        return ValidationReport(
            id=f"validation-{int(result.timestamp.timestamp() * 1000)}",
            generated_at=result.timestamp,
            phase=self.determine_report_phase(outcomes),
            status=self.determine_report_status(result),
            test_outcomes=tuple(shown),
            issues=tuple(issues),
            recommendations=tuple(self.generate_recommendations(outcomes, issues)),
            summary=result.summary,
        )
