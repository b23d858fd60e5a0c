import pytest

from async_mail_validation.delivery_validator import DeliveryValidator, backoff_delay
from async_mail_validation.models import (
    DeliveryTestConfig,
    EndToEndDeliveryResult,
    SendReceipt,
    Severity,
    TestEmail,
    TestStatus,
)
from async_mail_validation.remediation import DEFAULT_SEVERITY_POLICY
from async_mail_validation.template_validator import TemplateValidator

from fakes import (
    DummyAssetStore,
    DummyTracker,
    DummyTransport,
    SleepRecorder,
    make_target,
    reset_template,
    welcome_template,
)

WELCOME_DATA = {"userName": "Ann", "activationLink": "https://example.com/activate"}


def make_validator(transport=None, tracker=None, **kwargs):
    sleep = SleepRecorder()
    validator = DeliveryValidator(
        TemplateValidator(DummyAssetStore()),
        transport or DummyTransport(),
        tracker or DummyTracker(),
        sleep=sleep,
        **kwargs,
    )
    return validator, sleep


def test_backoff_delay():
    assert [backoff_delay(n) for n in (1, 2, 3)] == [2, 4, 8]


@pytest.mark.asyncio
async def test_end_to_end_success():
    tracker = DummyTracker()
    validator, sleep = make_validator(tracker=tracker)
    config = DeliveryTestConfig(recipient="qa@example.com", timeout_ms=5000)

    result = await validator.run_end_to_end(make_target(), welcome_template(), WELCOME_DATA, config)

    assert result.template_rendered and result.email_sent and result.delivery_confirmed
    assert [s.step for s in result.steps] == ["Template Rendering", "Email Sending", "Delivery Tracking"]
    assert result.message_id == "<msg-1@test>"
    assert tracker.queries == [("<msg-1@test>", 5000)]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_render_failure_returns_before_sending():
    transport = DummyTransport()
    validator, _ = make_validator(transport=transport)
    config = DeliveryTestConfig(recipient="qa@example.com")

    result = await validator.run_end_to_end(make_target(), welcome_template(), {"userName": "Ann"}, config)

    assert result.template_rendered is False
    assert result.email_sent is False
    assert [s.step for s in result.steps] == ["Template Rendering"]
    assert result.error.startswith("Template rendering failed")
    assert transport.sent == []


@pytest.mark.asyncio
async def test_retry_bound_and_backoff_schedule():
    transport = DummyTransport(send_results=[
        SendReceipt(delivered=False, error="421 try later"),
        SendReceipt(delivered=False, error="421 try later"),
        SendReceipt(delivered=False, error="421 still busy"),
    ])
    validator, sleep = make_validator(transport=transport)
    config = DeliveryTestConfig(recipient="qa@example.com", retry_attempts=3)

    result = await validator.run_end_to_end(make_target(), welcome_template(), WELCOME_DATA, config)

    assert len(transport.sent) == 3
    assert sleep.delays == [2, 4]
    assert result.email_sent is False
    sending = [s for s in result.steps if s.step == "Email Sending"]
    assert len(sending) == 1
    assert sending[0].error.startswith("Failed after 3 attempts.")
    assert "421 still busy" in sending[0].error
    assert "Delivery Tracking" not in [s.step for s in result.steps]


@pytest.mark.asyncio
async def test_retry_recovers_after_exception():
    transport = DummyTransport(send_results=[ConnectionResetError("reset"), SendReceipt(delivered=True, message_id="<ok>")])
    validator, sleep = make_validator(transport=transport)

    email = TestEmail(to="qa@example.com", subject="Hello")

    delivery = await validator.send_email_with_retry(make_target(), email, retry_attempts=3)

    assert delivery.delivered is True
    assert delivery.message_id == "<ok>"
    assert sleep.delays == [2]


@pytest.mark.asyncio
async def test_tracking_disabled_skips_tracker():
    tracker = DummyTracker(confirmed=False)
    validator, _ = make_validator(tracker=tracker)
    config = DeliveryTestConfig(recipient="qa@example.com", track_delivery=False)

    result = await validator.run_end_to_end(make_target(), welcome_template(), WELCOME_DATA, config)

    assert result.succeeded
    assert tracker.queries == []


@pytest.mark.asyncio
async def test_tracker_exception_is_unconfirmed():
    validator, _ = make_validator(tracker=DummyTracker(raises=TimeoutError("tracking timed out")))
    config = DeliveryTestConfig(recipient="qa@example.com")

    result = await validator.run_end_to_end(make_target(), welcome_template(), WELCOME_DATA, config)

    assert result.email_sent is True
    assert result.delivery_confirmed is False
    assert result.steps[-1].error == "tracking timed out"


def test_delivery_errors_report_first_broken_stage():
    validator, _ = make_validator()
    template = welcome_template()

    not_rendered = EndToEndDeliveryResult(
        template_rendered=False, email_sent=False, delivery_confirmed=False, total_time_ms=1
    )
    not_sent = EndToEndDeliveryResult(
        template_rendered=True, email_sent=False, delivery_confirmed=False, total_time_ms=1, error="boom"
    )
    unconfirmed = EndToEndDeliveryResult(
        template_rendered=True, email_sent=True, delivery_confirmed=False, total_time_ms=1
    )

    assert [e.code for e in validator.delivery_errors(not_rendered, template)] == ["TEMPLATE_RENDER_FAILED"]
    sent_errors = validator.delivery_errors(not_sent, template)
    assert [(e.code, e.severity) for e in sent_errors] == [("EMAIL_SEND_FAILED", Severity.CRITICAL)]
    confirm_errors = validator.delivery_errors(unconfirmed, template)
    assert [(e.code, e.severity) for e in confirm_errors] == [("DELIVERY_NOT_CONFIRMED", Severity.MEDIUM)]


def test_severity_policy_is_injectable():
    policy = {**DEFAULT_SEVERITY_POLICY, "DELIVERY_NOT_CONFIRMED": Severity.HIGH}
    validator, _ = make_validator(severity_policy=policy)
    unconfirmed = EndToEndDeliveryResult(
        template_rendered=True, email_sent=True, delivery_confirmed=False, total_time_ms=1
    )

    errors = validator.delivery_errors(unconfirmed, welcome_template())

    assert errors[0].severity == Severity.HIGH


@pytest.mark.asyncio
async def test_run_multiple_email_types_one_outcome_per_template():
    validator, _ = make_validator()
    config = DeliveryTestConfig(recipient="qa@example.com")

    outcomes = await validator.run_multiple_email_types(
        make_target(), [welcome_template(), reset_template()], config
    )

    assert [o.name for o in outcomes] == [
        "End-to-End Delivery Test - welcome",
        "End-to-End Delivery Test - password_reset",
    ]
    assert all(o.status == TestStatus.PASSED for o in outcomes)


@pytest.mark.asyncio
async def test_concurrent_load_partial_success_is_medium():
    transport = DummyTransport(send_results=[SendReceipt(delivered=False, error="throttled")] * 3)
    validator, _ = make_validator(transport=transport)
    config = DeliveryTestConfig(recipient="qa@example.com", retry_attempts=1)

    outcome = await validator.run_concurrent_load(make_target(), welcome_template(), config, concurrency=5, data=WELCOME_DATA)

    assert outcome.status == TestStatus.FAILED
    assert outcome.metadata["successful_deliveries"] == 2
    assert outcome.errors[0].code == "DELIVERY_PERFORMANCE_ISSUE"
    assert outcome.errors[0].severity == Severity.MEDIUM
    assert sorted(m.to for m in transport.sent) == [f"test{i}@example.com" for i in range(5)]
    assert sorted(m.data["recipientIndex"] for m in transport.sent) == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrency", [0, -2])
async def test_concurrent_load_rejects_non_positive_concurrency(concurrency):
    transport = DummyTransport()
    validator, _ = make_validator(transport=transport)
    config = DeliveryTestConfig(recipient="qa@example.com")

    with pytest.raises(ValueError):
        await validator.run_concurrent_load(make_target(), welcome_template(), config, concurrency=concurrency)
    assert transport.sent == []


@pytest.mark.asyncio
async def test_concurrent_load_all_delivered():
    validator, _ = make_validator()
    config = DeliveryTestConfig(recipient="qa@example.com")

    outcome = await validator.run_concurrent_load(make_target(), welcome_template(), config, concurrency=3)

    assert outcome.status == TestStatus.PASSED
    assert outcome.errors == ()


def test_generate_test_data_for_template_fills_declared_keys():
    template = welcome_template(declared_placeholders=frozenset({"userName", "activationLink", "promoCode"}))

    data = DeliveryValidator.generate_test_data_for_template(template)

    assert data["userName"] == "Test User"
    assert data["promoCode"] == "Test promoCode"


@pytest.mark.asyncio
async def test_concurrent_load_four_of_five_is_not_critical():
    transport = DummyTransport(send_results=[SendReceipt(delivered=False, error="rejected")])
    validator, _ = make_validator(transport=transport)
    config = DeliveryTestConfig(recipient="qa@example.com", retry_attempts=1)

    outcome = await validator.run_concurrent_load(make_target(), welcome_template(), config, concurrency=5)

    assert outcome.status == TestStatus.FAILED
    assert outcome.metadata["successful_deliveries"] == 4
    assert [e.severity for e in outcome.errors] == [Severity.MEDIUM]
    assert not outcome.has_critical_error
