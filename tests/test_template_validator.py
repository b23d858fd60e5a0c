import pytest

from async_mail_validation.models import AssetKind, Severity, TemplateAsset, TestStatus
from async_mail_validation.template_validator import (
    TemplateValidator,
    asset_type_matches,
    extract_placeholders,
    generate_default_test_data,
    render_string,
    unbalanced_tags,
)

from fakes import DummyAssetStore, image_asset, welcome_template


def test_render_string_leaves_unknown_tokens():
    assert render_string("Hi {{ name }} {{other}}", {"name": "Ann"}) == "Hi Ann {{other}}"
    assert render_string("{{x}}", {"x": None}) == "{{x}}"
    assert render_string("{{n}}", {"n": 3}) == "3"


def test_extract_placeholders_in_order():
    assert extract_placeholders("{{a}} and {{ b }} and {{a}}") == ["a", "b", "a"]


def test_unbalanced_tags():
    assert unbalanced_tags("<div><p>x</p></div>") == []
    assert unbalanced_tags("<div><p>x</div>") == ["p"]


def test_asset_type_matches_by_extension():
    assert asset_type_matches(TemplateAsset(kind=AssetKind.IMAGE, path="img/logo.PNG"))
    assert asset_type_matches(TemplateAsset(kind=AssetKind.CSS, path="https://cdn/x.css?v=2"))
    assert not asset_type_matches(TemplateAsset(kind=AssetKind.FONT, path="fonts/brand.png"))
    assert not asset_type_matches(TemplateAsset(kind=AssetKind.IMAGE, path="noext"))


def test_generate_default_test_data_guesses_from_names():
    data = generate_default_test_data({"userName", "userEmail", "resetLink", "code"})
    assert data["userName"] == "Test User"
    assert data["userEmail"] == "test@example.com"
    assert data["resetLink"] == "https://example.com"
    assert data["code"] == "Test code"


@pytest.mark.asyncio
async def test_render_success():
    validator = TemplateValidator(DummyAssetStore())
    result = await validator.render(welcome_template(), {"userName": "Ann", "activationLink": "https://x"})

    assert result.rendered is True
    assert result.subject_output == "Welcome Ann"
    assert "{{" not in result.html_output


@pytest.mark.asyncio
async def test_render_fails_when_a_token_survives():
    validator = TemplateValidator(DummyAssetStore())
    result = await validator.render(welcome_template(), {"userName": "Ann"})

    assert result.rendered is False
    assert "Rendering errors" in result.error
    assert "{{activationLink}}" in result.error


@pytest.mark.asyncio
async def test_render_fails_on_empty_and_brace_broken_tokens():
    validator = TemplateValidator(DummyAssetStore())
    template = welcome_template().model_copy(update={
        "subject": "Welcome",
        "html_body": "<p>Hi {{}}</p>",
        "text_body": "Hi {{a}b}}",
    })

    result = await validator.render(template, {"name": "Ann"})

    assert result.rendered is False
    assert "{{}}" in result.error
    assert "{{a}b}}" in result.error


@pytest.mark.asyncio
async def test_render_fails_on_unbalanced_html():
    template = welcome_template(html_body="<div><p>Hello {{userName}} {{activationLink}}</div>")
    validator = TemplateValidator(DummyAssetStore())

    result = await validator.render(template, {"userName": "Ann", "activationLink": "x"})

    assert result.rendered is False
    assert "Invalid HTML structure" in result.error


def test_check_placeholders_set_law():
    template = welcome_template(
        subject="Hi {{userName}}",
        html_body="<p>{{userName}} {{unknownKey}}</p>",
        text_body="",
        declared_placeholders=frozenset({"userName", "activationLink"}),
    )
    result = TemplateValidator(DummyAssetStore()).check_placeholders(template)

    assert result.all_matched is False
    assert result.missing == ["activationLink"]
    assert result.extraneous == ["unknownKey"]


@pytest.mark.asyncio
async def test_check_assets_reports_missing_and_invalid():
    template = welcome_template(assets=(
        image_asset("logo.png"),
        image_asset("banner.css"),
        image_asset("gone.png"),
    ))
    store = DummyAssetStore(existing={"logo.png", "banner.css"})

    result = await TemplateValidator(store).check_assets(template)

    assert result.all_valid is False
    assert result.missing == ["gone.png"]
    assert result.invalid == ["banner.css"]


@pytest.mark.asyncio
async def test_asset_lookup_errors_count_as_missing():
    store = DummyAssetStore(raises=OSError("permission denied"))
    template = welcome_template(assets=(image_asset("logo.png"),))

    result = await TemplateValidator(store).check_assets(template)

    assert result.missing == ["logo.png"]


@pytest.mark.asyncio
async def test_comprehensive_tests_all_pass():
    store = DummyAssetStore(existing={"logo.png"})
    template = welcome_template(assets=(image_asset("logo.png"),))

    outcomes = await TemplateValidator(store).run_comprehensive_tests(template)

    assert [o.name for o in outcomes] == [
        "Template Rendering Test",
        "Placeholder Substitution Test",
        "Template Asset Validation",
    ]
    assert all(o.status == TestStatus.PASSED for o in outcomes)


@pytest.mark.asyncio
async def test_comprehensive_tests_do_not_short_circuit():
    template = welcome_template(
        html_body="<p>{{userName}} {{undeclared}}</p>",
        assets=(image_asset("missing.png"), image_asset("optional.png", required=False)),
    )

    outcomes = await TemplateValidator(DummyAssetStore()).run_comprehensive_tests(
        template, {"userName": "Ann", "activationLink": "x"}
    )

    assert len(outcomes) == 3
    assert all(o.status == TestStatus.FAILED for o in outcomes)

    render_error = outcomes[0].errors[0]
    assert render_error.code == "TEMPLATE_RENDER_FAILED"
    assert render_error.severity == Severity.HIGH

    codes = {e.code: e.severity for e in outcomes[1].errors}
    assert codes == {"INVALID_PLACEHOLDER": Severity.HIGH}

    asset_errors = {e.details["path"]: e.severity for e in outcomes[2].errors}
    assert asset_errors == {"missing.png": Severity.HIGH, "optional.png": Severity.LOW}


@pytest.mark.asyncio
async def test_subject_only_template_with_unused_declared_placeholder():
    template = welcome_template(
        subject="Hi {{name}}",
        html_body="",
        text_body="",
        declared_placeholders=frozenset({"name", "missing"}),
    )
    validator = TemplateValidator(DummyAssetStore())

    rendered = await validator.render(template, {"name": "Ann"})
    placeholders = validator.check_placeholders(template)

    assert rendered.rendered is True
    assert rendered.subject_output == "Hi Ann"
    assert placeholders.missing == ["missing"]
    assert placeholders.extraneous == []
    assert placeholders.all_matched is False
