# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Monotonic timing helpers shared by the validators."""

import time


def now() -> float:
    return time.perf_counter()


def elapsed_ms(start: float) -> float:
    """Milliseconds elapsed since ``start`` (a value returned by ``now()``)."""
    return round((time.perf_counter() - start) * 1000, 3)
