# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Boundary interfaces between the validation core and the outside world.

The validators never open sockets or touch the file system themselves.
Every effectful operation goes through one of the base classes below, so a
real adapter (see ``async_mail_validation.transport``) and a test double are
interchangeable.

Contract for implementations:
    - ``open_connection`` and ``authenticate`` raise on failure; the
      exception message becomes the probe's error text.
    - ``send_message`` returns a ``SendReceipt``; it may also raise.
    - ``query_delivery_status`` returns a ``TrackingResult``; it may raise.
    - ``asset_exists`` returns a bool; exceptions count as "missing".
"""

from __future__ import annotations

from .models import SendReceipt, SMTPTarget, TestEmail, TrackingResult


class SMTPTransport:
    """Abstract SMTP transport: connect, authenticate and send."""

    async def open_connection(self, host: str, port: int, *, use_tls: bool = False, timeout: float = 10.0) -> None:
        """Open (and close) a connection to ``host:port``.

        Raises:
            Exception: Any error describing why the server is unreachable.
        """
        raise NotImplementedError

    async def authenticate(self, target: SMTPTarget, *, timeout: float = 10.0) -> None:
        """Log in to ``target`` with its credentials.

        Raises:
            Exception: Any error describing why the login was refused.
        """
        raise NotImplementedError

    async def send_message(self, target: SMTPTarget, message: TestEmail, *, timeout: float = 30.0) -> SendReceipt:
        """Send ``message`` through ``target`` and report the outcome."""
        raise NotImplementedError


class DeliveryTracker:
    """Abstract delivery-status lookup service."""

    async def query_delivery_status(self, message_id: str, timeout_ms: int) -> TrackingResult:
        """Report whether the message identified by ``message_id`` arrived."""
        raise NotImplementedError


class AssetStore:
    """Abstract lookup for template static assets."""

    async def asset_exists(self, path: str) -> bool:
        raise NotImplementedError
