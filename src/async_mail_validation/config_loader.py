# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for validation runs.

Settings come from an INI file with environment variables as fallbacks.
A value present in the file always wins over the environment.

Environment variables (all prefixed with GMV_):
    GMV_CONFIG - Path to config.ini file (default: config.ini)
    GMV_LOG_LEVEL - Logging level used by the CLI (default: INFO)
    GMV_TEST_RECIPIENT - Recipient for probe and delivery messages
    GMV_TIMEOUT_MS - Per-operation timeout in milliseconds (default: 30000)
    GMV_VALIDATE_DELIVERY - Confirm delivery via the tracker (default: true)
    GMV_SKIP_NON_CRITICAL - Lenient mode (default: false)
    GMV_DETAILED_REPORT - Keep passing outcomes in reports (default: true)
    GMV_RETRY_ATTEMPTS - Send attempts per message (default: 3)
    GMV_LOAD_TEST_CONCURRENCY - Concurrent deliveries for the load test (default: 0)
    GMV_SMTP_HOST, GMV_SMTP_PORT, GMV_SMTP_USER, GMV_SMTP_PASSWORD,
    GMV_SMTP_USE_TLS, GMV_SMTP_PROVIDER - A single ``default`` target, used
        only when the file defines no ``[smtp.<id>]`` section
    GMV_TRACKING_ENDPOINT, GMV_TRACKING_TOKEN - Delivery tracking service
    GMV_ASSETS_DIR - Base directory for relative asset paths

Example:
    Configuration file format (config.ini)::

        [validation]
        test_recipient = qa@example.com
        timeout_ms = 20000
        retry_attempts = 3
        skip_non_critical_tests = false

        [smtp.primary]
        provider = sendgrid
        password = SG.xxxxx

        [smtp.fallback]
        host = mail.example.com
        port = 465
        user = noreply@example.com
        password = secret

        [tracking]
        endpoint = https://status.example.com/messages
        auth_method = bearer
        auth_token = my-secret-token

        [assets]
        base_dir = /srv/mail/assets

    Loading it::

        settings = load_settings("config.ini")
        templates = load_templates("templates.json")
"""

from __future__ import annotations

import configparser
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .boundary import AssetStore, DeliveryTracker
from .logger import get_logger
from .models import EmailProvider, EmailTemplate, SMTPCredentials, SMTPTarget, ValidationConfig
from .providers import provider_defaults
from .transport import AcceptAllDeliveryTracker, HttpDeliveryTracker, LocalAssetStore

logger = get_logger("ConfigLoader")

DEFAULT_CONFIG_PATH = "config.ini"
SMTP_SECTION_PREFIX = "smtp."


class ConfigurationError(ValueError):
    """Raised when the configuration is missing required values or is malformed."""


@dataclass
class TrackingConfig:
    """Delivery tracking service settings.

    Attributes:
        endpoint: Base URL of the status service; None disables HTTP tracking.
        auth_method: Authentication method (none, bearer, basic).
        auth_token: Bearer token.
        auth_user: Username for basic auth.
        auth_password: Password for basic auth.
    """

    endpoint: str | None = None
    auth_method: str = "none"
    auth_token: str | None = None
    auth_user: str | None = None
    auth_password: str | None = None

    @property
    def http_auth_config(self) -> dict[str, str] | None:
        """Build the auth config dict for HttpDeliveryTracker."""
        if self.auth_method == "none":
            return None
        config = {"method": self.auth_method}
        if self.auth_method == "bearer" and self.auth_token:
            config["token"] = self.auth_token
        elif self.auth_method == "basic":
            if self.auth_user:
                config["user"] = self.auth_user
            if self.auth_password:
                config["password"] = self.auth_password
        return config


@dataclass
class ValidationSettings:
    validation: ValidationConfig
    smtp_targets: list[SMTPTarget] = field(default_factory=list)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    assets_base_dir: str | None = None


def _parse_bool(value: Any, option: str) -> bool:
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Invalid boolean for {option}: {value!r}")


def _parse_int(value: Any, option: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ConfigurationError(f"Invalid integer for {option}: {value!r}") from e


class _Reader:
    """Typed access to an INI parser with a per-option fallback."""

    def __init__(self, parser: configparser.ConfigParser):
        self.parser = parser

    def get(self, section: str, option: str, fallback: str | None = None) -> str | None:
        if self.parser.has_option(section, option):
            value = self.parser.get(section, option).strip()
            return value if value else fallback
        return fallback

    def get_int(self, section: str, option: str, fallback: str | None = None, default: int | None = None) -> int | None:
        value = self.get(section, option, fallback)
        if value is None:
            return default
        return _parse_int(value, f"[{section}] {option}")

    def get_bool(
        self, section: str, option: str, fallback: str | None = None, default: bool | None = None
    ) -> bool | None:
        value = self.get(section, option, fallback)
        if value is None:
            return default
        return _parse_bool(value, f"[{section}] {option}")


def _read_parser(config_path: str | Path | None) -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
    else:
        path = Path(os.getenv("GMV_CONFIG", DEFAULT_CONFIG_PATH))
        if not path.exists():
            logger.debug("No config file at %s, using environment only", path)
            return parser
    try:
        parser.read(path)
    except configparser.Error as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}") from e
    return parser


def _validation_config(reader: _Reader, recipient_override: str | None) -> ValidationConfig:
    section = "validation"
    recipient = recipient_override or reader.get(section, "test_recipient", os.getenv("GMV_TEST_RECIPIENT"))
    if not recipient:
        raise ConfigurationError(
            "No test recipient configured: set [validation] test_recipient or GMV_TEST_RECIPIENT"
        )
    try:
        return ValidationConfig(
            test_recipient=recipient,
            timeout_ms=reader.get_int(section, "timeout_ms", os.getenv("GMV_TIMEOUT_MS"), 30000),
            validate_delivery=reader.get_bool(
                section, "validate_delivery", os.getenv("GMV_VALIDATE_DELIVERY"), True
            ),
            skip_non_critical_tests=reader.get_bool(
                section, "skip_non_critical_tests", os.getenv("GMV_SKIP_NON_CRITICAL"), False
            ),
            generate_detailed_report=reader.get_bool(
                section, "generate_detailed_report", os.getenv("GMV_DETAILED_REPORT"), True
            ),
            retry_attempts=reader.get_int(section, "retry_attempts", os.getenv("GMV_RETRY_ATTEMPTS"), 3),
            load_test_concurrency=reader.get_int(
                section, "load_test_concurrency", os.getenv("GMV_LOAD_TEST_CONCURRENCY"), 0
            ),
        )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid [validation] settings: {e}") from e


def build_smtp_target(target_id: str, values: dict[str, Any]) -> SMTPTarget:
    """Build a target from raw option values, filling gaps from provider defaults.

    Raises:
        ConfigurationError: On an unknown provider or malformed values.
    """
    provider_tag = (values.get("provider") or EmailProvider.CUSTOM.value).strip().lower()
    try:
        defaults = provider_defaults(provider_tag)
    except ValueError as e:
        raise ConfigurationError(f"Unknown provider {provider_tag!r} for SMTP target {target_id!r}") from e

    option = f"[smtp.{target_id}]"
    port = values.get("port")
    use_tls = values.get("use_tls")
    try:
        return SMTPTarget(
            id=target_id,
            name=values.get("name") or target_id,
            host=values.get("host") or defaults.get("host", ""),
            port=_parse_int(port, f"{option} port") if port else defaults["port"],
            use_tls=_parse_bool(use_tls, f"{option} use_tls") if use_tls else defaults["use_tls"],
            credentials=SMTPCredentials(
                user=values.get("user") or defaults.get("user", ""),
                password=values.get("password") or "",
            ),
            provider=EmailProvider(provider_tag),
        )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid SMTP target {target_id!r}: {e}") from e


def _smtp_targets(parser: configparser.ConfigParser) -> list[SMTPTarget]:
    targets: list[SMTPTarget] = []
    for section in parser.sections():
        if not section.startswith(SMTP_SECTION_PREFIX):
            continue
        target_id = section[len(SMTP_SECTION_PREFIX):].strip()
        if not target_id:
            logger.warning("Ignoring SMTP section without an id: [%s]", section)
            continue
        values = {key: value.strip() for key, value in parser.items(section)}
        targets.append(build_smtp_target(target_id, values))

    if not targets and (os.getenv("GMV_SMTP_HOST") or os.getenv("GMV_SMTP_PROVIDER")):
        targets.append(build_smtp_target("default", {
            "host": os.getenv("GMV_SMTP_HOST"),
            "port": os.getenv("GMV_SMTP_PORT"),
            "use_tls": os.getenv("GMV_SMTP_USE_TLS"),
            "user": os.getenv("GMV_SMTP_USER"),
            "password": os.getenv("GMV_SMTP_PASSWORD"),
            "provider": os.getenv("GMV_SMTP_PROVIDER"),
        }))
    return targets


def _tracking_config(reader: _Reader) -> TrackingConfig:
    section = "tracking"
    token = reader.get(section, "auth_token", os.getenv("GMV_TRACKING_TOKEN"))
    method = reader.get(section, "auth_method", "bearer" if token else "none").lower()
    if method not in {"none", "bearer", "basic"}:
        raise ConfigurationError(f"Invalid [tracking] auth_method: {method!r}")
    return TrackingConfig(
        endpoint=reader.get(section, "endpoint", os.getenv("GMV_TRACKING_ENDPOINT")),
        auth_method=method,
        auth_token=token,
        auth_user=reader.get(section, "auth_user"),
        auth_password=reader.get(section, "auth_password"),
    )


def load_settings(config_path: str | Path | None = None, *, recipient: str | None = None) -> ValidationSettings:
    """Load validation settings from an INI file and the environment.

    Args:
        config_path: INI file to read. When omitted, ``GMV_CONFIG`` (default
            ``config.ini``) is read if it exists.
        recipient: Overrides the configured test recipient.

    Raises:
        ConfigurationError: If an explicit file is missing, no test
            recipient is configured, or a value is malformed.
    """
    parser = _read_parser(config_path)
    reader = _Reader(parser)
    settings = ValidationSettings(
        validation=_validation_config(reader, recipient),
        smtp_targets=_smtp_targets(parser),
        tracking=_tracking_config(reader),
        assets_base_dir=reader.get("assets", "base_dir", os.getenv("GMV_ASSETS_DIR")),
    )
    logger.info(
        "Loaded settings: %d SMTP targets, tracking %s",
        len(settings.smtp_targets),
        settings.tracking.endpoint or "disabled",
    )
    return settings


def load_templates(path: str | Path) -> list[EmailTemplate]:
    """Load a JSON list of templates.

    Each entry follows ``EmailTemplate``; ``declared_placeholders`` and
    ``assets`` may be plain JSON lists.

    Raises:
        ConfigurationError: If the file is missing, is not a JSON list, or
            an entry is not a valid template.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Templates file not found: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        raise ConfigurationError(f"{path} must contain a JSON list of templates")

    templates: list[EmailTemplate] = []
    for index, entry in enumerate(raw):
        try:
            templates.append(EmailTemplate.model_validate(entry))
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid template #{index} in {path}: {e}") from e
    logger.info("Loaded %d templates from %s", len(templates), path)
    return templates


def build_tracker(tracking: TrackingConfig) -> DeliveryTracker:
    if tracking.endpoint:
        return HttpDeliveryTracker(tracking.endpoint, tracking.http_auth_config)
    return AcceptAllDeliveryTracker()


def build_asset_store(settings: ValidationSettings) -> AssetStore:
    return LocalAssetStore(settings.assets_base_dir)
