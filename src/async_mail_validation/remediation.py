# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Remediation catalog and severity policy.

Both tables are read-only mappings. The orchestrator and the delivery
validator receive them at construction time, so a caller (or a test suite)
can substitute its own catalog or rank tracking failures differently.

Attributes:
    DEFAULT_FIX_CATALOG: ``error code -> suggested fixes``.
    DEFAULT_FIXES: Fallback fixes for codes absent from the catalog.
    DEFAULT_SEVERITY_POLICY: ``error code -> Severity`` for the errors whose
        severity is a product decision rather than a fixed property.
    SLOW_OUTCOME_THRESHOLD_MS: Outcomes slower than this trigger a
        performance recommendation.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from .models import Severity

FixCatalog = Mapping[str, tuple[str, ...]]
SeverityPolicy = Mapping[str, Severity]

DEFAULT_FIXES: tuple[str, ...] = (
    "Review error details and system logs",
    "Contact system administrator if issue persists",
)

DEFAULT_FIX_CATALOG: FixCatalog = MappingProxyType({
    "SMTP_CONNECTION_FAILED": (
        "Verify SMTP server host and port configuration",
        "Check network connectivity to SMTP server",
        "Ensure firewall allows SMTP traffic",
    ),
    "SMTP_AUTH_FAILED": (
        "Verify SMTP username and password",
        "Check if two-factor authentication is required",
        "Ensure account has SMTP access enabled",
    ),
    "EMAIL_DELIVERY_FAILED": (
        "Check SMTP configuration and authentication",
        "Verify recipient email address format",
        "Check email content for spam triggers",
    ),
    "EMAIL_SEND_FAILED": (
        "Check SMTP configuration and authentication",
        "Inspect the last send error for transient provider limits",
        "Increase retry attempts if the provider throttles",
    ),
    "DELIVERY_NOT_CONFIRMED": (
        "Verify the delivery tracking endpoint and credentials",
        "Check the recipient mailbox and spam folder",
        "Increase the tracking timeout",
    ),
    "DELIVERY_PERFORMANCE_ISSUE": (
        "Check provider rate limits for concurrent sends",
        "Review SMTP server capacity and connection limits",
    ),
    "DELIVERY_TEST_ERROR": (
        "Review error details and system logs",
        "Re-run the load test with lower concurrency",
    ),
    "TEMPLATE_RENDER_FAILED": (
        "Check template syntax for errors",
        "Verify all required data is provided",
        "Test template with sample data",
    ),
    "MISSING_PLACEHOLDER": (
        "Remove the unused placeholder from the declared list",
        "Reference the placeholder in the subject or body",
    ),
    "INVALID_PLACEHOLDER": (
        "Declare the placeholder in the template definition",
        "Remove the token from the template body",
        "Ensure callers always supply a value for it",
    ),
    "MISSING_ASSET": (
        "Upload the asset to the configured asset location",
        "Fix the asset path in the template definition",
    ),
    "INVALID_ASSET": (
        "Use a file extension matching the declared asset kind",
        "Correct the declared asset kind",
    ),
    "REGISTRATION_WORKFLOW_FAILED": (
        "Inspect the failed workflow steps in the report",
        "Validate the welcome template and SMTP target separately",
    ),
    "PASSWORD_RESET_WORKFLOW_FAILED": (
        "Inspect the failed workflow steps in the report",
        "Check the reset link format (HTTPS, reset path, token parameter)",
    ),
    "LESSON_REMINDER_WORKFLOW_FAILED": (
        "Inspect the failed workflow steps in the report",
        "Check lesson scheduling data and reminder template",
    ),
})

DEFAULT_SEVERITY_POLICY: SeverityPolicy = MappingProxyType({
    "TEMPLATE_RENDER_FAILED": Severity.HIGH,
    "EMAIL_SEND_FAILED": Severity.CRITICAL,
    "DELIVERY_NOT_CONFIRMED": Severity.MEDIUM,
})

SLOW_OUTCOME_THRESHOLD_MS = 5000


def fixes_for(code: str, catalog: FixCatalog = DEFAULT_FIX_CATALOG) -> list[str]:
    """Return the suggested fixes for ``code``, falling back to ``DEFAULT_FIXES``."""
    return list(catalog.get(code, DEFAULT_FIXES))


def severity_for(code: str, policy: SeverityPolicy, default: Severity) -> Severity:
    return policy.get(code, default)
