# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Static SMTP defaults per provider.

Configuration data only: the config loader uses it to fill in host, port
and TLS settings an ``[smtp.<id>]`` section leaves out.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any

from .models import EmailProvider

PROVIDER_DEFAULTS = MappingProxyType({
    EmailProvider.GMAIL: MappingProxyType({"host": "smtp.gmail.com", "port": 587, "use_tls": True}),
    EmailProvider.OUTLOOK: MappingProxyType({"host": "smtp.office365.com", "port": 587, "use_tls": True}),
    EmailProvider.SENDGRID: MappingProxyType({"host": "smtp.sendgrid.net", "port": 587, "use_tls": True, "user": "apikey"}),
    EmailProvider.MAILGUN: MappingProxyType({"host": "smtp.mailgun.org", "port": 587, "use_tls": True}),
    EmailProvider.SES: MappingProxyType({"host": "email-smtp.us-east-1.amazonaws.com", "port": 587, "use_tls": True}),
    EmailProvider.CUSTOM: MappingProxyType({"port": 587, "use_tls": True}),
})


def provider_defaults(provider: EmailProvider | str) -> dict[str, Any]:
    """Return a mutable copy of the defaults for ``provider``.

    Raises:
        ValueError: If ``provider`` is not a known provider tag.
    """
    return dict(PROVIDER_DEFAULTS[EmailProvider(provider)])
