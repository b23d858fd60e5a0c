# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Template checks: rendering, placeholder contract and static assets.

Rendering is a single pass of ``{{key}}`` substitution. A token without a
matching key stays in the output verbatim, and any token left after the
pass fails the render: a template counts as rendered only when no
placeholder remains unresolved.

The placeholder contract check is a set comparison between the tokens used
in subject/HTML/text and the template's ``declared_placeholders``; it does
not render anything. Asset checks are independent of both.

``run_comprehensive_tests`` always runs all three checks.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date
from typing import Any

from . import timing
from .boundary import AssetStore
from .logger import get_logger
from .models import (
    AssetKind,
    AssetResult,
    EmailTemplate,
    ErrorCategory,
    PlaceholderResult,
    RenderResult,
    Severity,
    TemplateAsset,
    TestCategory,
    TestOutcome,
    TestStatus,
    ValidationError,
)
from .transport import LocalAssetStore

PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")
UNRESOLVED_RE = re.compile(r"\{\{.*?\}\}", re.DOTALL)

ASSET_EXTENSIONS: Mapping[AssetKind, frozenset[str]] = {
    AssetKind.IMAGE: frozenset({"jpg", "jpeg", "png", "gif", "svg", "webp"}),
    AssetKind.CSS: frozenset({"css"}),
    AssetKind.FONT: frozenset({"woff", "woff2", "ttf", "otf"}),
}

BALANCED_TAGS = ("div", "p", "span", "table", "tr", "td", "th", "tbody", "thead")


def render_string(content: str, data: Mapping[str, Any]) -> str:
    """Substitute every ``{{ key }}`` token whose key is present in ``data``."""

    def _replace(match: re.Match) -> str:
        key = match.group(1).strip()
        if key in data and data[key] is not None:
            return str(data[key])
        return match.group(0)

    return PLACEHOLDER_RE.sub(_replace, content)


def extract_placeholders(content: str) -> list[str]:
    """Return the keys of all ``{{key}}`` tokens in ``content``, in order."""
    return [m.group(1).strip() for m in PLACEHOLDER_RE.finditer(content)]


def unbalanced_tags(html: str) -> list[str]:
    """Common block/table tags whose open and close counts differ."""
    bad = []
    for tag in BALANCED_TAGS:
        opened = len(re.findall(rf"<{tag}(?:\s[^>]*)?>", html, re.IGNORECASE))
        closed = len(re.findall(rf"</{tag}\s*>", html, re.IGNORECASE))
        if opened != closed:
            bad.append(tag)
    return bad


def asset_type_matches(asset: TemplateAsset) -> bool:
    path = asset.path.split("?", 1)[0].split("#", 1)[0]
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return extension in ASSET_EXTENSIONS.get(asset.kind, frozenset())


def generate_default_test_data(placeholders) -> dict[str, str]:
    """Sample values for ``placeholders``, guessed from each key's name."""
    data: dict[str, str] = {}
    for placeholder in sorted(placeholders):
        lowered = placeholder.lower()
        if "name" in lowered:
            data[placeholder] = "Test User"
        elif "email" in lowered:
            data[placeholder] = "test@example.com"
        elif "date" in lowered:
            data[placeholder] = date.today().isoformat()
        elif "url" in lowered or "link" in lowered:
            data[placeholder] = "https://example.com"
        else:
            data[placeholder] = f"Test {placeholder}"
    return data


class TemplateValidator:
    """Renders templates and checks their placeholder and asset contracts."""

    def __init__(self, asset_store: AssetStore | None = None, *, logger=None):
        """
        Args:
            asset_store: Boundary used for asset existence checks. Defaults
                to a ``LocalAssetStore`` rooted at the working directory.
            logger: Custom logger instance.
        """
        self.asset_store = asset_store if asset_store is not None else LocalAssetStore()
        self.logger = logger or get_logger("TemplateValidator")

    render_string = staticmethod(render_string)
    extract_placeholders = staticmethod(extract_placeholders)
    generate_default_test_data = staticmethod(generate_default_test_data)

    async def render(self, template: EmailTemplate, data: Mapping[str, Any]) -> RenderResult:
        """Render subject, HTML and text of ``template`` with ``data``.

        Returns:
            ``rendered=True`` only when no ``{{...}}`` token survives in any
            output and the HTML has balanced common tags.
        """
        try:
            subject = render_string(template.subject, data)
            html = render_string(template.html_body, data)
            text = render_string(template.text_body, data)
        except Exception as exc:
            self.logger.warning("Rendering template %s raised: %s", template.id, exc)
            return RenderResult(rendered=False, error=str(exc) or "Template rendering failed")

        problems: list[str] = []
        for label, output in (("subject", subject), ("HTML", html), ("text", text)):
            unresolved = UNRESOLVED_RE.findall(output)
            if unresolved:
                tokens = ", ".join(unresolved)
                problems.append(f"Unresolved {label} placeholders: {tokens}")
        if "<" in html:
            bad = unbalanced_tags(html)
            if bad:
                problems.append("Invalid HTML structure detected: unbalanced " + ", ".join(bad))

        if problems:
            return RenderResult(rendered=False, error="Rendering errors: " + "; ".join(problems))
        return RenderResult(rendered=True, subject_output=subject, html_output=html, text_output=text)

    def check_placeholders(self, template: EmailTemplate) -> PlaceholderResult:
        """Compare the tokens used in the template with its declared set."""
        used = set(extract_placeholders(template.subject))
        used.update(extract_placeholders(template.html_body))
        used.update(extract_placeholders(template.text_body))
        declared = set(template.declared_placeholders)

        missing = sorted(declared - used)
        extraneous = sorted(used - declared)
        return PlaceholderResult(
            all_matched=not missing and not extraneous,
            missing=missing,
            extraneous=extraneous,
        )

    async def check_assets(self, template: EmailTemplate) -> AssetResult:
        """Check that every asset exists and has an extension matching its kind."""
        missing: list[str] = []
        invalid: list[str] = []
        for asset in template.assets:
            try:
                exists = await self.asset_store.asset_exists(asset.path)
            except Exception as exc:
                self.logger.warning("Asset lookup failed for %s: %s", asset.path, exc)
                exists = False
            if not exists:
                missing.append(asset.path)
            if not asset_type_matches(asset):
                invalid.append(asset.path)
        return AssetResult(all_valid=not missing and not invalid, missing=missing, invalid=invalid)

    async def run_comprehensive_tests(
        self, template: EmailTemplate, data: Mapping[str, Any] | None = None
    ) -> list[TestOutcome]:
        """Run rendering, placeholder and asset checks; none short-circuits."""
        if data is None:
            data = generate_default_test_data(template.declared_placeholders)
        outcomes: list[TestOutcome] = []
        base_meta = {"template_id": template.id, "template_type": template.type.value}

        start = timing.now()
        rendered = await self.render(template, data)
        outcomes.append(TestOutcome(
            name="Template Rendering Test",
            category=TestCategory.TEMPLATE_RENDERING,
            status=TestStatus.PASSED if rendered.rendered else TestStatus.FAILED,
            duration_ms=timing.elapsed_ms(start),
            description="Tests template rendering with provided data",
            expected="Template renders without errors",
            actual="Template rendered successfully" if rendered.rendered else f"Rendering failed: {rendered.error}",
            metadata={**base_meta, "data_keys": sorted(data)},
            errors=() if rendered.rendered else (ValidationError(
                code="TEMPLATE_RENDER_FAILED",
                message=rendered.error or "Template rendering failed",
                severity=Severity.HIGH,
                category=ErrorCategory.TEMPLATE_RENDERING,
                details=base_meta,
            ),),
        ))

        start = timing.now()
        placeholders = self.check_placeholders(template)
        placeholder_errors = [
            ValidationError(
                code="MISSING_PLACEHOLDER",
                message=f"Placeholder '{name}' is declared but not used in template",
                severity=Severity.MEDIUM,
                category=ErrorCategory.TEMPLATE_RENDERING,
                details={**base_meta, "placeholder": name},
            )
            for name in placeholders.missing
        ] + [
            ValidationError(
                code="INVALID_PLACEHOLDER",
                message=f"Placeholder '{name}' is used but not declared",
                severity=Severity.HIGH,
                category=ErrorCategory.TEMPLATE_RENDERING,
                details={**base_meta, "placeholder": name},
            )
            for name in placeholders.extraneous
        ]
        outcomes.append(TestOutcome(
            name="Placeholder Substitution Test",
            category=TestCategory.PLACEHOLDER_SUBSTITUTION,
            status=TestStatus.PASSED if placeholders.all_matched else TestStatus.FAILED,
            duration_ms=timing.elapsed_ms(start),
            description="Validates all placeholders are properly defined and used",
            expected="All placeholders correctly defined and substituted",
            actual=(
                "All placeholders valid"
                if placeholders.all_matched
                else "Issues found - Missing: {}, Invalid: {}".format(
                    ", ".join(placeholders.missing), ", ".join(placeholders.extraneous)
                )
            ),
            metadata={
                **base_meta,
                "declared_placeholders": sorted(template.declared_placeholders),
                "missing_placeholders": placeholders.missing,
                "extraneous_placeholders": placeholders.extraneous,
            },
            errors=tuple(placeholder_errors),
        ))

        start = timing.now()
        assets = await self.check_assets(template)
        optional = {a.path for a in template.assets if not a.required}
        asset_errors = [
            ValidationError(
                code="MISSING_ASSET",
                message=f"Template asset '{path}' is missing",
                severity=Severity.LOW if path in optional else Severity.HIGH,
                category=ErrorCategory.ASSET_MISSING,
                details={**base_meta, "path": path},
            )
            for path in assets.missing
        ] + [
            ValidationError(
                code="INVALID_ASSET",
                message=f"Template asset '{path}' is invalid",
                severity=Severity.MEDIUM,
                category=ErrorCategory.ASSET_MISSING,
                details={**base_meta, "path": path},
            )
            for path in assets.invalid
        ]
        outcomes.append(TestOutcome(
            name="Template Asset Validation",
            category=TestCategory.ASSET_VALIDATION,
            status=TestStatus.PASSED if assets.all_valid else TestStatus.FAILED,
            duration_ms=timing.elapsed_ms(start),
            description="Validates all template assets are available and valid",
            expected="All template assets are accessible and valid",
            actual=(
                "All assets valid"
                if assets.all_valid
                else "Asset issues - Missing: {}, Invalid: {}".format(
                    ", ".join(assets.missing), ", ".join(assets.invalid)
                )
            ),
            metadata={
                **base_meta,
                "total_assets": len(template.assets),
                "missing_assets": assets.missing,
                "invalid_assets": assets.invalid,
            },
            errors=tuple(asset_errors),
        ))

        self.logger.debug(
            "Template %s checks: %s",
            template.id,
            ", ".join(f"{o.name}={o.status.value}" for o in outcomes),
        )
        return outcomes
