# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the mail validation pipeline.

The library never installs handlers. Level, handlers and format belong to
the host application (or to ``mail-validate``, which calls
``logging.basicConfig()`` once at startup).

Example:
    Typical usage in a module::

        from async_mail_validation.logger import get_logger

        logger = get_logger("SMTPValidator")
        logger.info("Connectivity probe completed")
"""

import logging


def get_logger(name: str = "AsyncMailValidation") -> logging.Logger:
    """Return the standard library logger bound to ``name``.

    Args:
        name: The logger name. Defaults to "AsyncMailValidation".

    Returns:
        A ``logging.Logger`` instance.
    """
    return logging.getLogger(name)
