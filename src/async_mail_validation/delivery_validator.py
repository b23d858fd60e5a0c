# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""End-to-end delivery pipeline: render, send with retry, confirm delivery.

``DeliveryValidator.run_end_to_end`` runs three timed steps in order:

1. **Template Rendering** via ``TemplateValidator.render``. On failure the
   pipeline returns at once and later steps are absent from ``steps``.
2. **Email Sending** with up to ``retry_attempts`` attempts. After failed
   attempt ``n`` (numbered from 1) the pipeline sleeps ``2**n`` seconds if
   another attempt follows. Only the last attempt's error is kept.
3. **Delivery Tracking**, only when ``track_delivery`` is set: one call to
   the tracking boundary within the ``timeout_ms`` budget.

``run_concurrent_load`` fans out N independent pipelines with
``asyncio.gather`` and fans them back in; partial success is a medium
severity finding, since a load test is diagnostic rather than a gate.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from datetime import date, timedelta
from typing import Any

from . import timing
from .boundary import DeliveryTracker, SMTPTransport
from .logger import get_logger
from .models import (
    DeliveryResult,
    DeliveryStep,
    DeliveryTestConfig,
    EmailTemplate,
    EndToEndDeliveryResult,
    ErrorCategory,
    Severity,
    SMTPTarget,
    TemplateType,
    TestCategory,
    TestEmail,
    TestOutcome,
    TestStatus,
    TrackingResult,
    ValidationError,
)
from .remediation import DEFAULT_SEVERITY_POLICY, SeverityPolicy, severity_for
from .template_validator import TemplateValidator
from .transport import AcceptAllDeliveryTracker

DEFAULT_BACKOFF_BASE = 2


def backoff_delay(attempt: int, base: int = DEFAULT_BACKOFF_BASE) -> int:
    """Seconds to wait after failed attempt ``attempt`` (1-based)."""
    return base ** attempt


class DeliveryValidator:
    """Composes rendering, sending and tracking into one timed operation.

    Attributes:
        template_validator: Renders templates for the first step.
        transport: SMTP boundary used for sends.
        tracker: Delivery-status boundary used for confirmation.
        severity_policy: Severities for send/confirmation/render failures.
        sleep: Awaitable used for backoff waits; ``asyncio.sleep`` by default.
    """

    def __init__(
        self,
        template_validator: TemplateValidator,
        transport: SMTPTransport,
        tracker: DeliveryTracker | None = None,
        *,
        severity_policy: SeverityPolicy = DEFAULT_SEVERITY_POLICY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        backoff_base: int = DEFAULT_BACKOFF_BASE,
        logger=None,
    ):
        self.template_validator = template_validator
        self.transport = transport
        self.tracker = tracker or AcceptAllDeliveryTracker()
        self.severity_policy = severity_policy
        self.sleep = sleep
        self.backoff_base = backoff_base
        self.logger = logger or get_logger("DeliveryValidator")

    async def run_end_to_end(
        self,
        target: SMTPTarget,
        template: EmailTemplate,
        data: Mapping[str, Any],
        config: DeliveryTestConfig,
    ) -> EndToEndDeliveryResult:
        """Render ``template``, send it to ``config.recipient`` and confirm delivery."""
        start = timing.now()
        steps: list[DeliveryStep] = []

        try:
            render_start = timing.now()
            rendered = await self.template_validator.render(template, data)
            steps.append(DeliveryStep(
                step="Template Rendering",
                success=rendered.rendered,
                duration_ms=timing.elapsed_ms(render_start),
                detail="Template rendered successfully" if rendered.rendered else "Template rendering failed",
                error=rendered.error,
            ))
            if not rendered.rendered:
                return EndToEndDeliveryResult(
                    template_rendered=False,
                    email_sent=False,
                    delivery_confirmed=False,
                    total_time_ms=timing.elapsed_ms(start),
                    steps=tuple(steps),
                    error=f"Template rendering failed: {rendered.error}",
                )

            send_start = timing.now()
            email = TestEmail(
                to=config.recipient,
                subject=rendered.subject_output or "",
                html_body=rendered.html_output or "",
                text_body=rendered.text_output or "",
                template_id=template.id,
                data=dict(data),
            )
            sent = await self.send_email_with_retry(target, email, config.retry_attempts, timeout_ms=config.timeout_ms)
            steps.append(DeliveryStep(
                step="Email Sending",
                success=sent.delivered,
                duration_ms=timing.elapsed_ms(send_start),
                detail=(
                    f"Email sent successfully (ID: {sent.message_id})" if sent.delivered else "Email sending failed"
                ),
                error=sent.error,
            ))
            if not sent.delivered:
                return EndToEndDeliveryResult(
                    template_rendered=True,
                    email_sent=False,
                    delivery_confirmed=False,
                    total_time_ms=timing.elapsed_ms(start),
                    steps=tuple(steps),
                    error=f"Email sending failed: {sent.error}",
                )

            confirmed = True
            if config.track_delivery:
                track_start = timing.now()
                tracking = await self.track_delivery(sent.message_id or "", config.timeout_ms)
                steps.append(DeliveryStep(
                    step="Delivery Tracking",
                    success=tracking.confirmed,
                    duration_ms=timing.elapsed_ms(track_start),
                    detail="Delivery confirmed" if tracking.confirmed else "Delivery could not be confirmed",
                    error=tracking.error,
                ))
                confirmed = tracking.confirmed

            return EndToEndDeliveryResult(
                template_rendered=True,
                email_sent=True,
                delivery_confirmed=confirmed,
                total_time_ms=timing.elapsed_ms(start),
                steps=tuple(steps),
                message_id=sent.message_id,
            )
        except Exception as exc:
            self.logger.exception("Unexpected error in delivery pipeline for template %s", template.id)
            return EndToEndDeliveryResult(
                template_rendered=any(s.step == "Template Rendering" and s.success for s in steps),
                email_sent=False,
                delivery_confirmed=False,
                total_time_ms=timing.elapsed_ms(start),
                steps=tuple(steps),
                error=str(exc) or "Unknown delivery error",
            )

    async def send_email_with_retry(
        self,
        target: SMTPTarget,
        email: TestEmail,
        retry_attempts: int,
        *,
        timeout_ms: int = 30000,
    ) -> DeliveryResult:
        """Send ``email``, retrying with exponential backoff.

        Makes at most ``retry_attempts`` attempts. In the all-fail case the
        total backoff is ``2**1 + ... + 2**(retry_attempts - 1)`` seconds.
        """
        last_error: str | None = None
        attempts = max(1, retry_attempts)
        for attempt in range(1, attempts + 1):
            attempt_start = timing.now()
            try:
                receipt = await self.transport.send_message(target, email, timeout=timeout_ms / 1000)
            except Exception as exc:
                last_error = str(exc) or type(exc).__name__
            else:
                if receipt.delivered:
                    return DeliveryResult(
                        delivered=True,
                        message_id=receipt.message_id,
                        delivery_time_ms=timing.elapsed_ms(attempt_start),
                    )
                last_error = receipt.error or "Send failed"

            if attempt < attempts:
                delay = backoff_delay(attempt, self.backoff_base)
                self.logger.warning(
                    "Send to %s failed (attempt %d/%d): %s - retrying in %ds",
                    email.to,
                    attempt,
                    attempts,
                    last_error,
                    delay,
                )
                await self.sleep(delay)

        self.logger.error("Send to %s failed after %d attempts: %s", email.to, attempts, last_error)
        return DeliveryResult(
            delivered=False,
            delivery_time_ms=0,
            error=f"Failed after {attempts} attempts. Last error: {last_error}",
        )

    async def track_delivery(self, message_id: str, timeout_ms: int) -> TrackingResult:
        """Ask the tracking boundary once whether ``message_id`` was delivered."""
        try:
            return await self.tracker.query_delivery_status(message_id, timeout_ms)
        except Exception as exc:
            self.logger.warning("Delivery tracking failed for %s: %s", message_id, exc)
            return TrackingResult(confirmed=False, error=str(exc) or "Tracking failed")

    def delivery_errors(self, result: EndToEndDeliveryResult, template: EmailTemplate) -> list[ValidationError]:
        """Classify a pipeline result; severities come from the severity policy.

        Each run reports the first stage that broke: rendering, sending or
        confirmation.
        """
        details = {"template_id": template.id, "template_type": template.type.value, "error": result.error}
        if not result.template_rendered:
            return [ValidationError(
                code="TEMPLATE_RENDER_FAILED",
                message="Template rendering failed during delivery test",
                severity=severity_for("TEMPLATE_RENDER_FAILED", self.severity_policy, Severity.HIGH),
                category=ErrorCategory.TEMPLATE_RENDERING,
                details=details,
            )]
        if not result.email_sent:
            return [ValidationError(
                code="EMAIL_SEND_FAILED",
                message=f"Email sending failed during delivery test: {result.error}",
                severity=severity_for("EMAIL_SEND_FAILED", self.severity_policy, Severity.CRITICAL),
                category=ErrorCategory.DELIVERY_FAILURE,
                details=details,
            )]
        if not result.delivery_confirmed:
            tracking_error = next((s.error for s in result.steps if s.step == "Delivery Tracking"), None)
            return [ValidationError(
                code="DELIVERY_NOT_CONFIRMED",
                message="Email delivery could not be confirmed"
                + (f": {tracking_error}" if tracking_error else ""),
                severity=severity_for("DELIVERY_NOT_CONFIRMED", self.severity_policy, Severity.MEDIUM),
                category=ErrorCategory.DELIVERY_FAILURE,
                details=details,
            )]
        return []

    @staticmethod
    def format_result(result: EndToEndDeliveryResult) -> str:
        done = []
        if result.template_rendered:
            done.append("Template rendered")
        if result.email_sent:
            done.append("Email sent")
        if result.email_sent and result.delivery_confirmed:
            done.append("Delivery confirmed")
        text = f"{', '.join(done) or 'Nothing completed'}. Total time: {result.total_time_ms:.0f}ms"
        if result.error:
            text += f". Error: {result.error}"
        return text

    async def run_multiple_email_types(
        self,
        target: SMTPTarget,
        templates: list[EmailTemplate],
        config: DeliveryTestConfig,
        data_by_template_id: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> list[TestOutcome]:
        """Run the pipeline once per template, sequentially."""
        outcomes: list[TestOutcome] = []
        for template in templates:
            start = timing.now()
            data = (data_by_template_id or {}).get(template.id) or self.generate_test_data_for_template(template)
            result = await self.run_end_to_end(target, template, data, config)
            errors = self.delivery_errors(result, template)
            outcomes.append(TestOutcome(
                name=f"End-to-End Delivery Test - {template.type.value}",
                category=TestCategory.EMAIL_DELIVERY,
                status=TestStatus.PASSED if result.succeeded else TestStatus.FAILED,
                duration_ms=timing.elapsed_ms(start),
                description=f"Tests complete email delivery workflow for {template.type.value} emails",
                expected="Email rendered, sent, and delivery confirmed",
                actual=self.format_result(result),
                metadata={
                    "template_id": template.id,
                    "template_type": template.type.value,
                    "message_id": result.message_id,
                    "steps": [s.model_dump() for s in result.steps],
                    "total_time_ms": result.total_time_ms,
                },
                errors=tuple(errors),
            ))
        return outcomes

    async def run_concurrent_load(
        self,
        target: SMTPTarget,
        template: EmailTemplate,
        config: DeliveryTestConfig,
        concurrency: int = 5,
        data: Mapping[str, Any] | None = None,
    ) -> TestOutcome:
        """Fire ``concurrency`` independent pipelines at once and await them all.

        Each run gets its own synthetic recipient (``test<i>@<domain>``) and
        its own copy of the data.

        Raises:
            ValueError: If ``concurrency`` is less than 1.
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        start = timing.now()
        base_data = dict(data) if data is not None else self.generate_test_data_for_template(template)
        domain = config.recipient.rsplit("@", 1)[-1] if "@" in config.recipient else "example.com"
        description = f"Tests email delivery performance with {concurrency} concurrent emails"
        expected = "All emails delivered successfully within acceptable time"

        try:
            results = await asyncio.gather(*(
                self.run_end_to_end(
                    target,
                    template,
                    {**base_data, "recipientIndex": index},
                    config.model_copy(update={"recipient": f"test{index}@{domain}"}),
                )
                for index in range(concurrency)
            ))
        except Exception as exc:
            self.logger.exception("Concurrent delivery load test failed")
            return TestOutcome(
                name="Delivery Performance Test",
                category=TestCategory.EMAIL_DELIVERY,
                status=TestStatus.ERROR,
                duration_ms=timing.elapsed_ms(start),
                description=description,
                expected=expected,
                actual=f"Test failed with error: {exc}",
                metadata={"concurrency": concurrency, "error": str(exc)},
                errors=(ValidationError(
                    code="DELIVERY_TEST_ERROR",
                    message=str(exc) or "Delivery performance test failed",
                    severity=Severity.HIGH,
                    category=ErrorCategory.DELIVERY_FAILURE,
                ),),
            )

        successes = sum(1 for r in results if r.succeeded)
        mean_time = sum(r.total_time_ms for r in results) / len(results) if results else 0.0
        all_ok = successes == concurrency
        self.logger.info("Load test: %d/%d deliveries succeeded, mean %.0fms", successes, concurrency, mean_time)
        return TestOutcome(
            name="Delivery Performance Test",
            category=TestCategory.EMAIL_DELIVERY,
            status=TestStatus.PASSED if all_ok else TestStatus.FAILED,
            duration_ms=timing.elapsed_ms(start),
            description=description,
            expected=expected,
            actual=(
                f"{successes}/{concurrency} emails delivered successfully. "
                f"Average delivery time: {mean_time:.0f}ms"
            ),
            metadata={
                "concurrency": concurrency,
                "successful_deliveries": successes,
                "average_delivery_time_ms": mean_time,
                "results": [{"success": r.succeeded, "total_time_ms": r.total_time_ms} for r in results],
            },
            errors=() if all_ok else (ValidationError(
                code="DELIVERY_PERFORMANCE_ISSUE",
                message=f"Only {successes}/{concurrency} emails delivered successfully",
                severity=Severity.MEDIUM,
                category=ErrorCategory.DELIVERY_FAILURE,
                details={"concurrency": concurrency, "successful_deliveries": successes},
            ),),
        )

    @staticmethod
    def generate_test_data_for_template(template: EmailTemplate) -> dict[str, Any]:
        """Type-specific sample data, plus ``Test <key>`` for other declared keys."""
        data: dict[str, Any]
        if template.type == TemplateType.WELCOME:
            data = {
                "userName": "Test User",
                "userEmail": "test@example.com",
                "activationLink": "https://example.com/activate",
            }
        elif template.type == TemplateType.PASSWORD_RESET:
            data = {
                "userName": "Test User",
                "resetLink": "https://example.com/reset",
                "expirationTime": "24 hours",
            }
        elif template.type == TemplateType.LESSON_REMINDER:
            data = {
                "studentName": "Test Student",
                "lessonDate": (date.today() + timedelta(days=1)).isoformat(),
                "lessonTime": "10:00 AM",
                "tutorName": "Test Tutor",
            }
        else:
            data = {
                "adminName": "Test Admin",
                "notificationType": "System Alert",
                "message": "Test notification message",
            }
        for placeholder in sorted(template.declared_placeholders):
            if not data.get(placeholder):
                data[placeholder] = f"Test {placeholder}"
        return data
