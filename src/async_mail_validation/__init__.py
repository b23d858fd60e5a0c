"""Asynchronous validation of email infrastructure before deployment.

This package checks that a product's outbound email stack works end to end:

- SMTP connectivity, authentication and delivery probes per target
- Template rendering, placeholder contract and static asset checks
- End-to-end delivery with retry, backoff and delivery confirmation
- Business workflows (registration, password reset, lesson reminder)
- A phased orchestrator producing a pass/fail verdict and a remediation report
- Prometheus metrics and a ``mail-validate`` CLI

Example:
    Running every phase against one SMTP target::

        from async_mail_validation import (
            EmailValidationOrchestrator,
            ValidationConfig,
            ValidationOptions,
        )

        orchestrator = EmailValidationOrchestrator.from_boundaries()
        config = ValidationConfig(test_recipient="qa@example.com")
        result = await orchestrator.run_full_validation(
            config, ValidationOptions(smtp_targets=[target], templates=templates)
        )
        report = orchestrator.generate_validation_report(result, config)

Authors:
    Softwell S.r.l.
    Giovanni Porcari
"""

from .delivery_validator import DeliveryValidator
from .integration_validator import IntegrationValidator, WorkflowName
from .models import (
    EmailTemplate,
    SMTPCredentials,
    SMTPTarget,
    ValidationConfig,
    ValidationOptions,
    ValidationReport,
    ValidationResult,
)
from .orchestrator import EmailValidationOrchestrator
from .smtp_validator import SMTPValidator
from .template_validator import TemplateValidator

__all__ = [
    "DeliveryValidator",
    "EmailTemplate",
    "EmailValidationOrchestrator",
    "IntegrationValidator",
    "SMTPCredentials",
    "SMTPTarget",
    "SMTPValidator",
    "TemplateValidator",
    "ValidationConfig",
    "ValidationOptions",
    "ValidationReport",
    "ValidationResult",
    "WorkflowName",
]
