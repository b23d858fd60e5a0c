# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMTP transport probes: connectivity, authentication and delivery.

``SMTPValidator.run_all`` executes the probes in dependency order and stops
at the first failure: authentication is only attempted on a reachable
server, and a delivery probe only with accepted credentials. A failed
connectivity probe therefore yields a single outcome, so an unreachable
server is never misreported as an authentication problem.

Example:
    Probing a target::

        validator = SMTPValidator(AiosmtplibTransport())
        outcomes = await validator.run_all(target)
        for outcome in outcomes:
            print(outcome.name, outcome.status)
"""

from __future__ import annotations

from . import timing
from .boundary import SMTPTransport
from .logger import get_logger
from .models import (
    AuthResult,
    ConnectivityResult,
    DeliveryResult,
    ErrorCategory,
    Severity,
    SMTPTarget,
    TestCategory,
    TestEmail,
    TestOutcome,
    TestStatus,
    ValidationError,
)

DEFAULT_PROBE_RECIPIENT = "test@example.com"


def _error_text(exc: BaseException, fallback: str) -> str:
    return str(exc) or f"{fallback} ({type(exc).__name__})"


class SMTPValidator:
    """Runs connectivity, authentication and delivery probes against one target.

    Attributes:
        transport: The SMTP boundary adapter.
        timeout_ms: Budget handed to connect/authenticate calls.
        probe_recipient: Recipient of the delivery probe message.
    """

    def __init__(
        self,
        transport: SMTPTransport,
        *,
        timeout_ms: int = 10000,
        probe_recipient: str = DEFAULT_PROBE_RECIPIENT,
        logger=None,
    ):
        self.transport = transport
        self.timeout_ms = timeout_ms
        self.probe_recipient = probe_recipient
        self.logger = logger or get_logger("SMTPValidator")

    @property
    def _timeout(self) -> float:
        return self.timeout_ms / 1000

    async def probe_connectivity(self, target: SMTPTarget) -> ConnectivityResult:
        """Check that the target accepts a connection."""
        start = timing.now()
        if not target.host or target.port <= 0:
            return ConnectivityResult(
                connected=False,
                response_time_ms=timing.elapsed_ms(start),
                error="Invalid host or port",
            )
        try:
            await self.transport.open_connection(
                target.host, target.port, use_tls=target.use_tls, timeout=self._timeout
            )
        except Exception as exc:
            self.logger.warning("Connectivity probe failed for %s:%s: %s", target.host, target.port, exc)
            return ConnectivityResult(
                connected=False,
                response_time_ms=timing.elapsed_ms(start),
                error=_error_text(exc, "Connection failed"),
            )
        return ConnectivityResult(connected=True, response_time_ms=timing.elapsed_ms(start))

    async def probe_authentication(self, target: SMTPTarget) -> AuthResult:
        """Check that the target accepts the configured credentials."""
        try:
            await self.transport.authenticate(target, timeout=self._timeout)
        except Exception as exc:
            self.logger.warning("Authentication probe failed for %s: %s", target.id, exc)
            return AuthResult(authenticated=False, error=_error_text(exc, "Authentication failed"))
        return AuthResult(authenticated=True)

    async def probe_delivery(self, target: SMTPTarget, message: TestEmail) -> DeliveryResult:
        """Send ``message`` once through the target."""
        start = timing.now()
        try:
            receipt = await self.transport.send_message(target, message, timeout=self._timeout)
        except Exception as exc:
            self.logger.warning("Delivery probe failed for %s: %s", target.id, exc)
            return DeliveryResult(
                delivered=False,
                delivery_time_ms=timing.elapsed_ms(start),
                error=_error_text(exc, "Delivery error"),
            )
        return DeliveryResult(
            delivered=receipt.delivered,
            message_id=receipt.message_id,
            delivery_time_ms=timing.elapsed_ms(start),
            error=None if receipt.delivered else (receipt.error or "Delivery failed"),
        )

    def probe_message(self) -> TestEmail:
        return TestEmail(
            to=self.probe_recipient,
            subject="SMTP Validation Test",
            html_body="<p>This is a test email for SMTP validation.</p>",
            text_body="This is a test email for SMTP validation.",
        )

    async def run_all(self, target: SMTPTarget) -> list[TestOutcome]:
        """Run all probes in dependency order, stopping at the first failure.

        Returns:
            One to three outcomes. Probes after a failed one are absent, not
            reported as skipped.
        """
        outcomes: list[TestOutcome] = []

        start = timing.now()
        connectivity = await self.probe_connectivity(target)
        outcomes.append(TestOutcome(
            name="SMTP Connectivity Test",
            category=TestCategory.SMTP_CONNECTIVITY,
            status=TestStatus.PASSED if connectivity.connected else TestStatus.FAILED,
            duration_ms=timing.elapsed_ms(start),
            description="Tests basic TCP connection to SMTP server",
            expected="Successful connection established",
            actual=(
                f"Connected in {connectivity.response_time_ms:.0f}ms"
                if connectivity.connected
                else f"Failed: {connectivity.error}"
            ),
            metadata={
                "target_id": target.id,
                "host": target.host,
                "port": target.port,
                "response_time_ms": connectivity.response_time_ms,
            },
            errors=() if connectivity.connected else (ValidationError(
                code="SMTP_CONNECTION_FAILED",
                message=connectivity.error or "Connection failed",
                severity=Severity.CRITICAL,
                category=ErrorCategory.SMTP_CONFIG,
                details={"target_id": target.id},
            ),),
        ))
        if not connectivity.connected:
            return outcomes

        start = timing.now()
        auth = await self.probe_authentication(target)
        outcomes.append(TestOutcome(
            name="SMTP Authentication Test",
            category=TestCategory.SMTP_AUTHENTICATION,
            status=TestStatus.PASSED if auth.authenticated else TestStatus.FAILED,
            duration_ms=timing.elapsed_ms(start),
            description="Tests SMTP server authentication",
            expected="Successful authentication",
            actual="Authentication successful" if auth.authenticated else f"Failed: {auth.error}",
            metadata={"target_id": target.id, "provider": target.provider.value},
            errors=() if auth.authenticated else (ValidationError(
                code="SMTP_AUTH_FAILED",
                message=auth.error or "Authentication failed",
                severity=Severity.CRITICAL,
                category=ErrorCategory.AUTHENTICATION,
                details={"target_id": target.id},
            ),),
        ))
        if not auth.authenticated:
            return outcomes

        start = timing.now()
        delivery = await self.probe_delivery(target, self.probe_message())
        outcomes.append(TestOutcome(
            name="Email Delivery Test",
            category=TestCategory.EMAIL_DELIVERY,
            status=TestStatus.PASSED if delivery.delivered else TestStatus.FAILED,
            duration_ms=timing.elapsed_ms(start),
            description="Tests actual email delivery through SMTP",
            expected="Email delivered successfully",
            actual=(
                f"Delivered (ID: {delivery.message_id}) in {delivery.delivery_time_ms:.0f}ms"
                if delivery.delivered
                else f"Failed: {delivery.error}"
            ),
            metadata={
                "target_id": target.id,
                "message_id": delivery.message_id,
                "delivery_time_ms": delivery.delivery_time_ms,
            },
            errors=() if delivery.delivered else (ValidationError(
                code="EMAIL_DELIVERY_FAILED",
                message=delivery.error or "Delivery failed",
                severity=Severity.HIGH,
                category=ErrorCategory.DELIVERY_FAILURE,
                details={"target_id": target.id},
            ),),
        ))
        self.logger.debug("SMTP probes for %s completed: %d outcomes", target.id, len(outcomes))
        return outcomes
