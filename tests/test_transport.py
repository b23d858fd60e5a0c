import aiosmtplib
import pytest

from async_mail_validation.models import SMTPCredentials, TestEmail
from async_mail_validation.transport import (
    AcceptAllDeliveryTracker,
    AiosmtplibTransport,
    HttpDeliveryTracker,
    LocalAssetStore,
    _auth_headers,
)

from fakes import make_target


class DummySMTP:
    def __init__(self, hostname, port, start_tls=True, use_tls=False, timeout=None):
        self.hostname = hostname
        self.port = port
        self.start_tls = start_tls
        self.use_tls = use_tls
        self.timeout = timeout
        self.login_credentials = None
        self.connected = False
        self.closed = False
        self.sent = []
        self.refused = {}
        self.send_error = None

    async def connect(self):
        self.connected = True

    async def login(self, user, password):
        self.login_credentials = (user, password)

    async def send_message(self, msg):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(msg)
        return self.refused, "OK"

    async def quit(self):
        self.closed = True


@pytest.fixture
def smtp_clients(monkeypatch):
    created = []
    setup = {}

    def factory(**kwargs):
        smtp = DummySMTP(**kwargs)
        for key, value in setup.items():
            setattr(smtp, key, value)
        created.append(smtp)
        return smtp

    monkeypatch.setattr("async_mail_validation.transport.aiosmtplib.SMTP", factory)
    return created, setup


@pytest.mark.asyncio
@pytest.mark.parametrize("port, use_tls, expected", [
    (465, True, (False, True)),
    (587, True, (True, False)),
    (25, False, (False, False)),
])
async def test_tls_mode_depends_on_port(smtp_clients, port, use_tls, expected):
    created, _ = smtp_clients
    transport = AiosmtplibTransport(client_timeout=3.0)

    await transport.open_connection("smtp.example.com", port, use_tls=use_tls)

    smtp = created[0]
    assert (smtp.start_tls, smtp.use_tls) == expected
    assert smtp.timeout == 3.0
    assert smtp.connected is True
    assert smtp.closed is True


@pytest.mark.asyncio
async def test_authenticate_logs_in(smtp_clients):
    created, _ = smtp_clients

    await AiosmtplibTransport().authenticate(make_target())

    assert created[0].login_credentials == ("mailer@example.com", "secret")
    assert created[0].closed is True


@pytest.mark.asyncio
async def test_authenticate_without_credentials_raises(smtp_clients):
    created, _ = smtp_clients
    target = make_target(credentials=SMTPCredentials())

    with pytest.raises(aiosmtplib.SMTPAuthenticationError):
        await AiosmtplibTransport().authenticate(target)
    assert created == []


@pytest.mark.asyncio
async def test_send_message_returns_message_id(smtp_clients):
    created, _ = smtp_clients
    email = TestEmail(to="qa@example.com", subject="Hi", html_body="<p>Hi</p>", text_body="Hi", template_id="w1")

    receipt = await AiosmtplibTransport(sender="noreply@example.com").send_message(make_target(), email)

    assert receipt.delivered is True
    msg = created[0].sent[0]
    assert receipt.message_id == msg["Message-ID"]
    assert msg["From"] == "noreply@example.com"
    assert msg["X-Template-Id"] == "w1"
    assert msg.get_content_type() == "multipart/alternative"


@pytest.mark.asyncio
async def test_send_message_refused_recipients(smtp_clients):
    _, setup = smtp_clients
    setup["refused"] = {"qa@example.com": (550, "no such user")}

    receipt = await AiosmtplibTransport().send_message(make_target(), TestEmail(to="qa@example.com", subject="Hi"))

    assert receipt.delivered is False
    assert "qa@example.com" in receipt.error


@pytest.mark.asyncio
async def test_send_message_smtp_error_is_receipt(smtp_clients):
    created, setup = smtp_clients
    setup["send_error"] = aiosmtplib.SMTPResponseException(421, "Service not available")

    receipt = await AiosmtplibTransport().send_message(make_target(), TestEmail(to="qa@example.com", subject="Hi"))

    assert receipt.delivered is False
    assert "421" in receipt.error
    assert created[0].closed is True


def test_auth_headers():
    assert _auth_headers({"method": "bearer", "token": "abc"}) == {"Authorization": "Bearer abc"}
    assert _auth_headers({"method": "basic", "user": "u", "password": "p"}) == {"Authorization": "Basic dTpw"}
    assert _auth_headers({}) == {}


class DummyResponse:
    def __init__(self, status, payload=None):
        self.status = status
        self.payload = payload or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self):
        return self.payload


class DummySession:
    def __init__(self, response):
        self.response = response
        self.requested = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def get(self, url, headers=None):
        self.requested.append((url, headers))
        return self.response

    def head(self, url, allow_redirects=True):
        self.requested.append((url, None))
        return self.response


def patch_session(monkeypatch, response):
    session = DummySession(response)
    monkeypatch.setattr("async_mail_validation.transport.aiohttp.ClientSession", lambda **kwargs: session)
    return session


@pytest.mark.asyncio
@pytest.mark.parametrize("status, payload, confirmed", [
    (200, {"status": "delivered"}, True),
    (200, {"status": "OPENED"}, True),
    (200, {"status": "queued"}, False),
    (404, None, False),
    (500, None, False),
])
async def test_http_tracker_statuses(monkeypatch, status, payload, confirmed):
    session = patch_session(monkeypatch, DummyResponse(status, payload))
    tracker = HttpDeliveryTracker("https://status.example.com/", {"method": "bearer", "token": "t"})

    result = await tracker.query_delivery_status("<abc@host>", 1000)

    assert result.confirmed is confirmed
    url, headers = session.requested[0]
    assert url == "https://status.example.com/%3Cabc%40host%3E"
    assert headers == {"Authorization": "Bearer t"}
    if not confirmed:
        assert result.error


@pytest.mark.asyncio
async def test_accept_all_tracker():
    tracker = AcceptAllDeliveryTracker()
    assert (await tracker.query_delivery_status("<id>", 10)).confirmed is True
    assert (await tracker.query_delivery_status("", 10)).confirmed is False


@pytest.mark.asyncio
async def test_local_asset_store_files(tmp_path):
    (tmp_path / "logo.png").write_bytes(b"png")
    store = LocalAssetStore(tmp_path)

    assert await store.asset_exists("logo.png") is True
    assert await store.asset_exists(str(tmp_path / "logo.png")) is True
    assert await store.asset_exists("missing.png") is False
    assert await store.asset_exists("") is False


@pytest.mark.asyncio
async def test_local_asset_store_urls(monkeypatch):
    session = patch_session(monkeypatch, DummyResponse(200))

    assert await LocalAssetStore().asset_exists("https://cdn.example.com/logo.png") is True
    assert session.requested[0][0] == "https://cdn.example.com/logo.png"

    patch_session(monkeypatch, DummyResponse(404))
    assert await LocalAssetStore().asset_exists("https://cdn.example.com/gone.png") is False
