# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Real boundary adapters: SMTP over aiosmtplib, HTTP tracking, asset lookup.

These are the production implementations of the interfaces declared in
``async_mail_validation.boundary``. Each adapter enforces its own timeout
budget; the validators above them never impose a wall-clock limit.

Example:
    Wiring the adapters into an orchestrator::

        transport = AiosmtplibTransport()
        tracker = HttpDeliveryTracker(
            endpoint="https://api.example.com/delivery-status",
            auth_config={"method": "bearer", "token": "secret"},
        )
        assets = LocalAssetStore(base_dir="/srv/mail/assets")

        orchestrator = EmailValidationOrchestrator.from_boundaries(
            transport=transport, tracker=tracker, asset_store=assets
        )
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
from email.message import EmailMessage
from email.utils import make_msgid
from pathlib import Path
from urllib.parse import quote

import aiohttp
import aiosmtplib

from .boundary import AssetStore, DeliveryTracker, SMTPTransport
from .logger import get_logger
from .models import SendReceipt, SMTPTarget, TestEmail, TrackingResult

logger = get_logger("Transport")

CONFIRMED_STATUSES = frozenset({"delivered", "confirmed", "opened", "clicked"})


class AiosmtplibTransport(SMTPTransport):
    """SMTP transport backed by aiosmtplib.

    TLS behavior based on port and ``use_tls``:
        - Port 465 with use_tls=True: direct (implicit) TLS
        - Any other port with use_tls=True: STARTTLS
        - use_tls=False: plain SMTP

    Every operation opens its own connection and closes it afterwards.
    """

    def __init__(self, *, sender: str | None = None, client_timeout: float = 10.0):
        """
        Args:
            sender: Envelope/From address for probe messages. Defaults to the
                target's SMTP user.
            client_timeout: Socket-level timeout handed to aiosmtplib.
        """
        self.sender = sender
        self.client_timeout = client_timeout

    def _client(self, host: str, port: int, use_tls: bool) -> aiosmtplib.SMTP:
        if use_tls and port == 465:
            return aiosmtplib.SMTP(hostname=host, port=port, start_tls=False, use_tls=True, timeout=self.client_timeout)
        if use_tls:
            return aiosmtplib.SMTP(hostname=host, port=port, start_tls=True, use_tls=False, timeout=self.client_timeout)
        return aiosmtplib.SMTP(hostname=host, port=port, start_tls=False, use_tls=False, timeout=self.client_timeout)

    async def _close(self, smtp: aiosmtplib.SMTP) -> None:
        with contextlib.suppress(aiosmtplib.SMTPException, OSError, asyncio.TimeoutError):
            await smtp.quit()

    async def open_connection(self, host: str, port: int, *, use_tls: bool = False, timeout: float = 10.0) -> None:
        smtp = self._client(host, port, use_tls)
        await asyncio.wait_for(smtp.connect(), timeout=timeout)
        await self._close(smtp)

    async def authenticate(self, target: SMTPTarget, *, timeout: float = 10.0) -> None:
        if not target.credentials.is_set:
            raise aiosmtplib.SMTPAuthenticationError(530, "No SMTP credentials configured")
        smtp = self._client(target.host, target.port, target.use_tls)

        async def _do_login():
            await smtp.connect()
            await smtp.login(target.credentials.user, target.credentials.password)

        try:
            await asyncio.wait_for(_do_login(), timeout=timeout)
        finally:
            await self._close(smtp)

    def build_message(self, target: SMTPTarget, message: TestEmail) -> EmailMessage:
        """Build a multipart/alternative message for ``message``."""
        sender = self.sender or target.credentials.user or f"mail-validation@{target.host}"
        msg = EmailMessage()
        msg["From"] = sender
        msg["To"] = message.to
        msg["Subject"] = message.subject
        msg["Message-ID"] = make_msgid(domain=target.host or None)
        if message.template_id:
            msg["X-Template-Id"] = message.template_id
        msg.set_content(message.text_body or "")
        if message.html_body:
            msg.add_alternative(message.html_body, subtype="html")
        return msg

    async def send_message(self, target: SMTPTarget, message: TestEmail, *, timeout: float = 30.0) -> SendReceipt:
        msg = self.build_message(target, message)
        smtp = self._client(target.host, target.port, target.use_tls)

        async def _do_send():
            await smtp.connect()
            if target.credentials.is_set:
                await smtp.login(target.credentials.user, target.credentials.password)
            return await smtp.send_message(msg)

        try:
            refused, _response = await asyncio.wait_for(_do_send(), timeout=timeout)
        except aiosmtplib.SMTPException as exc:
            code = getattr(exc, "code", None)
            error = f"{exc} (SMTP {code})" if code else str(exc)
            logger.warning("Send through %s:%s failed: %s", target.host, target.port, error)
            return SendReceipt(delivered=False, error=error)
        finally:
            await self._close(smtp)

        if refused:
            return SendReceipt(
                delivered=False,
                error="Recipients refused: " + ", ".join(sorted(refused)),
            )
        return SendReceipt(delivered=True, message_id=msg["Message-ID"])


def _auth_headers(auth_config: dict[str, str]) -> dict[str, str]:
    method = auth_config.get("method", "none")
    if method == "bearer":
        return {"Authorization": f"Bearer {auth_config.get('token', '')}"}
    if method == "basic":
        user = auth_config.get("user", "")
        password = auth_config.get("password", "")
        credentials = base64.b64encode(f"{user}:{password}".encode()).decode()
        return {"Authorization": f"Basic {credentials}"}
    return {}


class HttpDeliveryTracker(DeliveryTracker):
    """Delivery tracker querying a provider's HTTP status endpoint.

    Issues ``GET <endpoint>/<message_id>`` and expects a JSON body with a
    ``status`` field. ``delivered``, ``confirmed``, ``opened`` and
    ``clicked`` count as confirmed; a 404 means the provider has not seen the
    message (yet).
    """

    def __init__(self, endpoint: str, auth_config: dict[str, str] | None = None):
        """
        Args:
            endpoint: Base URL of the status service.
            auth_config: Authentication configuration with keys:
                - method: "none", "bearer", or "basic"
                - token: Bearer token (for method="bearer")
                - user / password: Credentials (for method="basic")
        """
        self.endpoint = endpoint.rstrip("/")
        self.auth_config = auth_config or {}

    async def query_delivery_status(self, message_id: str, timeout_ms: int) -> TrackingResult:
        url = f"{self.endpoint}/{quote(message_id, safe='')}"
        timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers=_auth_headers(self.auth_config)) as response:
                if response.status == 404:
                    return TrackingResult(confirmed=False, error="Message not found by tracking service")
                if response.status >= 400:
                    return TrackingResult(confirmed=False, error=f"Tracking service returned HTTP {response.status}")
                payload = await response.json()

        status = str(payload.get("status", "")).lower()
        if status in CONFIRMED_STATUSES:
            return TrackingResult(confirmed=True)
        return TrackingResult(confirmed=False, error=f"Delivery status: {status or 'unknown'}")


class AcceptAllDeliveryTracker(DeliveryTracker):
    """Tracker for stacks without a tracking service.

    Treats an accepted send (a non-empty message id) as delivered.
    """

    async def query_delivery_status(self, message_id: str, timeout_ms: int) -> TrackingResult:
        if message_id:
            return TrackingResult(confirmed=True)
        return TrackingResult(confirmed=False, error="No message id to track")


class LocalAssetStore(AssetStore):
    """Asset lookup on the local file system, with HTTP(S) URLs checked remotely.

    Relative paths resolve against ``base_dir``; ``http://`` and ``https://``
    paths get a HEAD request and exist when the server answers below 400.
    """

    def __init__(self, base_dir: str | Path | None = None, *, http_timeout: float = 10.0):
        self.base_dir = Path(base_dir) if base_dir else None
        self.http_timeout = http_timeout

    def _resolve(self, path: str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute() or self.base_dir is None:
            return candidate
        return self.base_dir / candidate

    async def _url_exists(self, url: str) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.http_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.head(url, allow_redirects=True) as response:
                return response.status < 400

    async def asset_exists(self, path: str) -> bool:
        if not path:
            return False
        if path.startswith(("http://", "https://")):
            return await self._url_exists(path)
        return await asyncio.to_thread(self._resolve(path).is_file)
