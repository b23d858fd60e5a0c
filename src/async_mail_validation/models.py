# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for the mail validation pipeline.

Every entity produced during a validation run is a value object: it is
created fresh for the run and frozen afterwards. The only exception is
``ValidationIssue``, whose ``resolved`` flag an operator may flip once the
report has been generated.

Models:
    - SMTPTarget, SMTPCredentials: one transport endpoint under test
    - EmailTemplate, TemplateAsset: a template and its static assets
    - ValidationError, TestOutcome: the atomic result units
    - WorkflowStep, WorkflowResult: multi-step business workflows
    - DeliveryStep, EndToEndDeliveryResult: the delivery pipeline
    - ValidationConfig, ValidationOptions, ValidationResult: the run surface
    - ValidationIssue, ValidationReport: the operator-facing report
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TemplateType(str, Enum):
    """Business purpose of an email template."""

    WELCOME = "welcome"
    PASSWORD_RESET = "password_reset"
    LESSON_REMINDER = "lesson_reminder"
    ADMIN_NOTIFICATION = "admin_notification"


class AssetKind(str, Enum):
    IMAGE = "image"
    CSS = "css"
    FONT = "font"


class TestStatus(str, Enum):
    """Status of a single test outcome."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


class Severity(str, Enum):
    """Impact classification of a validation error.

    Severity drives pass/fail gating: a single ``CRITICAL`` error anywhere in
    a run fails the run.
    """

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is more severe."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 3,
    Severity.HIGH: 2,
    Severity.MEDIUM: 1,
    Severity.LOW: 0,
}


class ErrorCategory(str, Enum):
    """Error grouping used for remediation lookup and report grouping."""

    SMTP_CONFIG = "smtp_config"
    AUTHENTICATION = "authentication"
    TEMPLATE_RENDERING = "template_rendering"
    DELIVERY_FAILURE = "delivery_failure"
    ASSET_MISSING = "asset_missing"
    ENVIRONMENT = "environment"


class TestCategory(str, Enum):
    __test__ = False

    SMTP_CONNECTIVITY = "smtp_connectivity"
    SMTP_AUTHENTICATION = "smtp_authentication"
    EMAIL_DELIVERY = "email_delivery"
    TEMPLATE_RENDERING = "template_rendering"
    PLACEHOLDER_SUBSTITUTION = "placeholder_substitution"
    ASSET_VALIDATION = "asset_validation"
    INTEGRATION_WORKFLOW = "integration_workflow"


class ValidationPhase(str, Enum):
    """Top-level validation stages, declared in execution order."""

    SMTP_VALIDATION = "smtp_validation"
    TEMPLATE_VALIDATION = "template_validation"
    DELIVERY_VALIDATION = "delivery_validation"
    INTEGRATION_VALIDATION = "integration_validation"


PHASE_ORDER: tuple[ValidationPhase, ...] = tuple(ValidationPhase)


class ReportStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    IN_PROGRESS = "in_progress"


class EmailProvider(str, Enum):
    GMAIL = "gmail"
    OUTLOOK = "outlook"
    SENDGRID = "sendgrid"
    MAILGUN = "mailgun"
    SES = "ses"
    CUSTOM = "custom"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class SMTPCredentials(BaseModel):
    """Login credentials for an SMTP target."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    user: Annotated[str, Field(default="", description="SMTP username")]
    password: Annotated[str, Field(default="", description="SMTP password", repr=False)]

    @property
    def is_set(self) -> bool:
        return bool(self.user and self.password)


class SMTPTarget(BaseModel):
    """One SMTP transport endpoint, immutable for the duration of a run.

    An empty ``host`` is accepted; the connectivity probe reports it as a
    critical validation error.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: Annotated[str, Field(min_length=1, description="Target identifier")]
    name: Annotated[str | None, Field(default=None, description="Human-readable name")]
    host: Annotated[str, Field(default="", description="SMTP server hostname")]
    port: Annotated[int, Field(default=587, description="SMTP server port")]
    use_tls: Annotated[bool, Field(default=True, description="Implicit TLS on 465, STARTTLS elsewhere")]
    credentials: Annotated[
        SMTPCredentials,
        Field(default_factory=SMTPCredentials, description="Login credentials"),
    ]
    provider: Annotated[EmailProvider, Field(default=EmailProvider.CUSTOM)]


class TemplateAsset(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: AssetKind
    path: str
    required: bool = True


class EmailTemplate(BaseModel):
    """An email template and its placeholder contract.

    ``declared_placeholders`` is the template author's contract: the set of
    ``{{key}}`` tokens found in subject, HTML and text bodies must match it
    exactly.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: Annotated[str, Field(min_length=1)]
    type: TemplateType
    name: Annotated[str | None, Field(default=None)]
    subject: Annotated[str, Field(default="")]
    html_body: Annotated[str, Field(default="")]
    text_body: Annotated[str, Field(default="")]
    declared_placeholders: Annotated[frozenset[str], Field(default_factory=frozenset)]
    assets: Annotated[tuple[TemplateAsset, ...], Field(default_factory=tuple)]


class TestEmail(BaseModel):
    """A concrete message handed to the SMTP transport."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    to: str
    subject: str
    html_body: str = ""
    text_body: str = ""
    template_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Atomic results
# ---------------------------------------------------------------------------

class ValidationError(BaseModel):
    """A single classified problem found by a probe or checker.

    Not to be confused with ``pydantic.ValidationError``: this model is
    data carried inside a ``TestOutcome``, never raised.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    severity: Severity
    category: ErrorCategory
    details: dict[str, Any] = Field(default_factory=dict)


class TestOutcome(BaseModel):
    """The atomic unit of result emitted by every probe and checker."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    name: str
    category: TestCategory
    status: TestStatus
    duration_ms: float = 0.0
    description: str = ""
    expected: str = ""
    actual: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    errors: tuple[ValidationError, ...] = ()

    @property
    def is_passed(self) -> bool:
        return self.status == TestStatus.PASSED

    @property
    def has_critical_error(self) -> bool:
        return any(e.severity == Severity.CRITICAL for e in self.errors)

    @property
    def has_critical_failure(self) -> bool:
        """True for a non-passing outcome carrying a critical error."""
        return not self.is_passed and self.has_critical_error


class ConnectivityResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    connected: bool
    response_time_ms: float = 0.0
    error: str | None = None


class AuthResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    authenticated: bool
    error: str | None = None


class DeliveryResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    delivered: bool
    message_id: str | None = None
    delivery_time_ms: float = 0.0
    error: str | None = None


class RenderResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    rendered: bool
    subject_output: str | None = None
    html_output: str | None = None
    text_output: str | None = None
    error: str | None = None


class PlaceholderResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    all_matched: bool
    missing: list[str] = Field(default_factory=list)
    extraneous: list[str] = Field(default_factory=list)


class AssetResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    all_valid: bool
    missing: list[str] = Field(default_factory=list)
    invalid: list[str] = Field(default_factory=list)


class SendReceipt(BaseModel):
    """What an SMTP transport reports back for one send attempt."""

    model_config = ConfigDict(frozen=True)

    delivered: bool
    message_id: str | None = None
    error: str | None = None


class TrackingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    confirmed: bool
    error: str | None = None


# ---------------------------------------------------------------------------
# Delivery pipeline and workflows
# ---------------------------------------------------------------------------

class DeliveryTestConfig(BaseModel):
    """Per-call configuration of the delivery pipeline."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    recipient: Annotated[str, Field(min_length=1)]
    timeout_ms: Annotated[int, Field(default=30000, gt=0)]
    retry_attempts: Annotated[int, Field(default=3, ge=1)]
    track_delivery: bool = True


class DeliveryStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: str
    success: bool
    duration_ms: float
    detail: str = ""
    error: str | None = None


class EndToEndDeliveryResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    template_rendered: bool
    email_sent: bool
    delivery_confirmed: bool
    total_time_ms: float
    steps: tuple[DeliveryStep, ...] = ()
    message_id: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.email_sent and self.delivery_confirmed


class WorkflowStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    component_name: str
    success: bool
    duration_ms: float
    detail: str = ""
    error: str | None = None


class WorkflowResult(BaseModel):
    """Outcome of one business workflow.

    ``success`` is always the logical AND of the step outcomes; a value
    passed in that disagrees with the steps is overridden.
    """

    model_config = ConfigDict(frozen=True)

    workflow_name: str
    success: bool = False
    steps: tuple[WorkflowStep, ...] = ()
    total_time_ms: float = 0.0
    error: str | None = None

    @model_validator(mode="before")
    @classmethod
    def success_is_and_of_steps(cls, data: Any) -> Any:
        if isinstance(data, dict):
            steps = data.get("steps") or ()
            data = dict(data)
            data["success"] = all(
                (s.success if isinstance(s, WorkflowStep) else bool(s.get("success")))
                for s in steps
            )
        return data


# ---------------------------------------------------------------------------
# Run surface
# ---------------------------------------------------------------------------

class ValidationConfig(BaseModel):
    """Run-wide validation settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    test_recipient: Annotated[str, Field(min_length=1, description="Recipient for probe messages")]
    timeout_ms: Annotated[int, Field(default=30000, gt=0, description="Per-operation timeout budget")]
    validate_delivery: Annotated[bool, Field(default=True, description="Confirm delivery via tracker")]
    skip_non_critical_tests: Annotated[bool, Field(default=False)]
    generate_detailed_report: Annotated[bool, Field(default=True)]
    retry_attempts: Annotated[int, Field(default=3, ge=1, description="Send attempts per message")]
    load_test_concurrency: Annotated[
        int, Field(default=0, ge=0, description="Concurrent deliveries for the load test (0 = off)")
    ]

    def delivery_config(self, recipient: str | None = None) -> DeliveryTestConfig:
        return DeliveryTestConfig(
            recipient=recipient or self.test_recipient,
            timeout_ms=self.timeout_ms,
            retry_attempts=self.retry_attempts,
            track_delivery=self.validate_delivery,
        )


class ValidationOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    phases: list[ValidationPhase] | None = None
    smtp_targets: list[SMTPTarget] = Field(default_factory=list)
    templates: list[EmailTemplate] = Field(default_factory=list)
    test_data_by_template_id: dict[str, dict[str, Any]] = Field(default_factory=dict)


class ValidationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    critical_issues: int = 0
    warnings: int = 0


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: bool
    outcomes: tuple[TestOutcome, ...] = ()
    summary: ValidationSummary = Field(default_factory=ValidationSummary)
    timestamp: datetime = Field(default_factory=utc_now)
    executed_phases: tuple[ValidationPhase, ...] = ()
    halted_after: ValidationPhase | None = None
    error: str | None = None


class ValidationIssue(BaseModel):
    """Report-level, remediation-annotated view of a validation error.

    The ``resolved`` flag is the only mutable state in the data model.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str
    code: str
    category: ErrorCategory
    severity: Severity
    description: str
    suggested_fixes: list[str] = Field(default_factory=list)
    occurrences: int = 1
    resolved: bool = False

    def resolve(self) -> None:
        self.resolved = True


class ValidationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    generated_at: datetime
    phase: ValidationPhase
    status: ReportStatus
    test_outcomes: tuple[TestOutcome, ...] = ()
    issues: tuple[ValidationIssue, ...] = ()
    recommendations: tuple[str, ...] = ()
    summary: ValidationSummary = Field(default_factory=ValidationSummary)
