# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Business workflows assembled from the SMTP, template and delivery checks.

Each workflow is a fixed list of named steps. Steps run sequentially and a
failed step never stops the ones after it: the workflow is a diagnostic
report, and an operator wants to see every stage. ``WorkflowResult.success``
is the AND of the step outcomes.

Workflows:
    - registration: SMTP configuration, welcome template, welcome delivery
    - password_reset: reset template, reset delivery, reset link format
    - lesson_reminder: reminder template, lesson schedule, reminder delivery
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any
from urllib.parse import parse_qs, urlparse

from . import timing
from .delivery_validator import DeliveryValidator
from .logger import get_logger
from .models import (
    EmailTemplate,
    ErrorCategory,
    Severity,
    SMTPTarget,
    TemplateType,
    TestCategory,
    TestOutcome,
    TestStatus,
    ValidationConfig,
    ValidationError,
    WorkflowResult,
    WorkflowStep,
)
from .smtp_validator import SMTPValidator
from .template_validator import TemplateValidator, generate_default_test_data

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d.%m.%Y", "%B %d, %Y", "%b %d, %Y")
TIME_FORMATS = ("%I:%M %p", "%H:%M", "%H:%M:%S", "%I %p")


class WorkflowName(str, Enum):
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"
    LESSON_REMINDER = "lesson_reminder"


# workflow -> (template type, outcome name, description, expected, error code, severity)
WORKFLOW_CATALOG: Mapping[WorkflowName, tuple[TemplateType, str, str, str, str, Severity]] = {
    WorkflowName.REGISTRATION: (
        TemplateType.WELCOME,
        "User Registration Integration Test",
        "Tests complete user registration email workflow",
        "User registration email sent and delivered successfully",
        "REGISTRATION_WORKFLOW_FAILED",
        Severity.CRITICAL,
    ),
    WorkflowName.PASSWORD_RESET: (
        TemplateType.PASSWORD_RESET,
        "Password Reset Integration Test",
        "Tests complete password reset email workflow",
        "Password reset email sent with valid reset link",
        "PASSWORD_RESET_WORKFLOW_FAILED",
        Severity.HIGH,
    ),
    WorkflowName.LESSON_REMINDER: (
        TemplateType.LESSON_REMINDER,
        "Lesson Reminder Integration Test",
        "Tests complete lesson reminder email workflow",
        "Lesson reminder email sent with correct scheduling",
        "LESSON_REMINDER_WORKFLOW_FAILED",
        Severity.MEDIUM,
    ),
}


def validate_reset_link(reset_link: str | None) -> bool:
    """A reset link must be HTTPS, have "reset" in its path and a ``token`` parameter."""
    if not reset_link:
        return False
    try:
        url = urlparse(reset_link)
    except ValueError:
        return False
    return (
        url.scheme == "https"
        and bool(url.netloc)
        and "reset" in url.path
        and "token" in parse_qs(url.query, keep_blank_values=True)
    )


def parse_lesson_datetime(lesson_date: str, lesson_time: str | None = None) -> datetime | None:
    """Combine a lesson date and time string, or return None if unparsable."""
    if not lesson_date:
        return None
    lesson_date = lesson_date.strip()
    try:
        parsed = datetime.fromisoformat(lesson_date)
    except ValueError:
        parsed = None
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(lesson_date, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if not lesson_time:
        return parsed

    for fmt in TIME_FORMATS:
        try:
            t = datetime.strptime(lesson_time.strip().upper(), fmt).time()
        except ValueError:
            continue
        return parsed.replace(hour=t.hour, minute=t.minute, second=t.second)
    return None


def validate_lesson_schedule(lesson_date: str, lesson_time: str | None, now: datetime | None = None) -> bool:
    """True when the lesson date/time parses and lies strictly in the future."""
    when = parse_lesson_datetime(lesson_date, lesson_time)
    if when is None:
        return False
    if now is None:
        now = datetime.now(when.tzinfo) if when.tzinfo else datetime.now()
    return when > now


def registration_test_data() -> dict[str, Any]:
    return {
        "userName": "Test User",
        "userEmail": "test@example.com",
        "activationLink": "https://example.com/activate?token=test-token-123",
        "companyName": "Example",
        "supportEmail": "support@example.com",
    }


def password_reset_test_data() -> dict[str, Any]:
    return {
        "userName": "Test User",
        "resetLink": "https://example.com/reset-password?token=reset-token-456",
        "expirationTime": "24 hours",
        "supportEmail": "support@example.com",
    }


def lesson_reminder_test_data() -> dict[str, Any]:
    return {
        "studentName": "Test Student",
        "tutorName": "Test Tutor",
        "lessonDate": (date.today() + timedelta(days=1)).isoformat(),
        "lessonTime": "10:00 AM",
        "lessonDuration": "60 minutes",
        "lessonTopic": "English Conversation",
        "meetingLink": "https://meet.example.com/lesson-123",
    }


WORKFLOW_TEST_DATA: Mapping[WorkflowName, Callable[[], dict[str, Any]]] = {
    WorkflowName.REGISTRATION: registration_test_data,
    WorkflowName.PASSWORD_RESET: password_reset_test_data,
    WorkflowName.LESSON_REMINDER: lesson_reminder_test_data,
}


def _failed_messages(outcomes: list[TestOutcome]) -> str:
    return "; ".join(
        ", ".join(e.message for e in o.errors) or "Unknown error"
        for o in outcomes
        if not o.is_passed
    )


class IntegrationValidator:
    """Runs the fixed business workflows against one SMTP target."""

    def __init__(
        self,
        smtp_validator: SMTPValidator,
        template_validator: TemplateValidator,
        delivery_validator: DeliveryValidator,
        *,
        logger=None,
    ):
        self.smtp_validator = smtp_validator
        self.template_validator = template_validator
        self.delivery_validator = delivery_validator
        self.logger = logger or get_logger("IntegrationValidator")

    async def _step(
        self,
        name: str,
        component: str,
        check: Callable[[], Awaitable[tuple[bool, str, str | None]]],
    ) -> WorkflowStep:
        start = timing.now()
        try:
            success, detail, error = await check()
        except Exception as exc:
            self.logger.exception("Workflow step %r raised", name)
            success, detail, error = False, f"{name} raised an error", str(exc) or type(exc).__name__
        return WorkflowStep(
            name=name,
            component_name=component,
            success=success,
            duration_ms=timing.elapsed_ms(start),
            detail=detail,
            error=None if success else error,
        )

    def _template_check(self, template: EmailTemplate, data: Mapping[str, Any], label: str):
        async def check():
            outcomes = await self.template_validator.run_comprehensive_tests(template, data)
            ok = all(o.is_passed for o in outcomes)
            return ok, f"{label} template valid" if ok else f"{label} template issues found", _failed_messages(outcomes)
        return check

    def _delivery_check(self, target, template, data, config: ValidationConfig, *, require_confirmation: bool):
        async def check():
            result = await self.delivery_validator.run_end_to_end(target, template, data, config.delivery_config())
            ok = result.succeeded if require_confirmation else result.email_sent
            detail = (
                f"Template rendered: {result.template_rendered}, Email sent: {result.email_sent}, "
                f"Delivery confirmed: {result.email_sent and result.delivery_confirmed}, "
                f"Total time: {result.total_time_ms:.0f}ms"
            )
            return ok, detail, result.error or ("Delivery could not be confirmed" if not ok else None)
        return check

    async def run_registration_workflow(
        self, target: SMTPTarget, template: EmailTemplate, config: ValidationConfig, data: Mapping[str, Any]
    ) -> list[WorkflowStep]:
        async def smtp_check():
            outcomes = await self.smtp_validator.run_all(target)
            ok = all(o.is_passed for o in outcomes)
            return ok, "SMTP configuration valid" if ok else "SMTP configuration issues found", _failed_messages(outcomes)

        return [
            await self._step("SMTP Configuration Validation", "SMTPValidator", smtp_check),
            await self._step(
                "Welcome Template Validation", "TemplateValidator", self._template_check(template, data, "Welcome")
            ),
            await self._step(
                "Welcome Email Delivery",
                "DeliveryValidator",
                self._delivery_check(target, template, data, config, require_confirmation=True),
            ),
        ]

    async def run_password_reset_workflow(
        self, target: SMTPTarget, template: EmailTemplate, config: ValidationConfig, data: Mapping[str, Any]
    ) -> list[WorkflowStep]:
        async def link_check():
            ok = validate_reset_link(data.get("resetLink"))
            return ok, "Reset link format valid" if ok else "Reset link format invalid", "Invalid reset link format"

        return [
            await self._step(
                "Password Reset Template Validation",
                "TemplateValidator",
                self._template_check(template, data, "Reset"),
            ),
            await self._step(
                "Password Reset Email Delivery",
                "DeliveryValidator",
                self._delivery_check(target, template, data, config, require_confirmation=False),
            ),
            await self._step("Reset Link Validation", "IntegrationValidator", link_check),
        ]

    async def run_lesson_reminder_workflow(
        self, target: SMTPTarget, template: EmailTemplate, config: ValidationConfig, data: Mapping[str, Any]
    ) -> list[WorkflowStep]:
        async def schedule_check():
            ok = validate_lesson_schedule(str(data.get("lessonDate", "")), data.get("lessonTime"))
            return ok, "Schedule timing valid" if ok else "Schedule timing invalid", "Invalid lesson schedule"

        return [
            await self._step(
                "Lesson Reminder Template Validation",
                "TemplateValidator",
                self._template_check(template, data, "Reminder"),
            ),
            await self._step("Scheduled Delivery Validation", "IntegrationValidator", schedule_check),
            await self._step(
                "Lesson Reminder Email Delivery",
                "DeliveryValidator",
                self._delivery_check(target, template, data, config, require_confirmation=False),
            ),
        ]

    async def run_workflow(
        self,
        name: WorkflowName | str,
        target: SMTPTarget,
        template: EmailTemplate,
        config: ValidationConfig,
        data: Mapping[str, Any] | None = None,
    ) -> WorkflowResult:
        """Run one named workflow; every step runs regardless of earlier failures.

        Raises:
            ValueError: If ``name`` is not a known workflow.
        """
        workflow = WorkflowName(name)
        if data is None:
            data = {
                **generate_default_test_data(template.declared_placeholders),
                **WORKFLOW_TEST_DATA[workflow](),
            }
        runner = {
            WorkflowName.REGISTRATION: self.run_registration_workflow,
            WorkflowName.PASSWORD_RESET: self.run_password_reset_workflow,
            WorkflowName.LESSON_REMINDER: self.run_lesson_reminder_workflow,
        }[workflow]

        start = timing.now()
        steps = await runner(target, template, config, data)
        failed = [s.name for s in steps if not s.success]
        result = WorkflowResult(
            workflow_name=workflow.value,
            steps=tuple(steps),
            total_time_ms=timing.elapsed_ms(start),
            error=("Failed steps: " + ", ".join(failed)) if failed else None,
        )
        self.logger.info(
            "Workflow %s %s (%d/%d steps passed)",
            workflow.value,
            "succeeded" if result.success else "failed",
            len(steps) - len(failed),
            len(steps),
        )
        return result

    @staticmethod
    def format_result(result: WorkflowResult) -> str:
        summary = ", ".join(f"{s.name}: {'PASS' if s.success else 'FAIL'}" for s in result.steps)
        return f"{'SUCCESS' if result.success else 'FAILED'} - {summary} ({result.total_time_ms:.0f}ms)"

    async def run_all_workflows(
        self,
        target: SMTPTarget,
        templates: list[EmailTemplate],
        config: ValidationConfig,
        data_by_template_id: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> list[TestOutcome]:
        """Run every workflow whose template type is present in ``templates``.

        A workflow without a matching template is left out silently.
        """
        by_type: dict[TemplateType, EmailTemplate] = {}
        for template in templates:
            by_type.setdefault(template.type, template)

        outcomes: list[TestOutcome] = []
        for workflow, (template_type, name, description, expected, code, severity) in WORKFLOW_CATALOG.items():
            template = by_type.get(template_type)
            if template is None:
                self.logger.debug("No %s template, skipping %s workflow", template_type.value, workflow.value)
                continue
            data = None
            if data_by_template_id and template.id in data_by_template_id:
                data = {**WORKFLOW_TEST_DATA[workflow](), **data_by_template_id[template.id]}

            start = timing.now()
            result = await self.run_workflow(workflow, target, template, config, data)
            outcomes.append(TestOutcome(
                name=name,
                category=TestCategory.INTEGRATION_WORKFLOW,
                status=TestStatus.PASSED if result.success else TestStatus.FAILED,
                duration_ms=timing.elapsed_ms(start),
                description=description,
                expected=expected,
                actual=self.format_result(result),
                metadata={
                    "workflow_name": result.workflow_name,
                    "template_id": template.id,
                    "steps": [s.model_dump() for s in result.steps],
                    "total_time_ms": result.total_time_ms,
                },
                errors=() if result.success else (ValidationError(
                    code=code,
                    message=result.error or f"{name} failed",
                    severity=severity,
                    category=ErrorCategory.DELIVERY_FAILURE,
                    details={"workflow_name": result.workflow_name},
                ),),
            ))
        return outcomes
