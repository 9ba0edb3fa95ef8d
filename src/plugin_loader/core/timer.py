"""Millisecond timer and per-plugin performance records.

Timestamps are integer milliseconds measured from a process-wide origin, the
server-side counterpart of a page's ``performance.now()``.
"""

import time
from dataclasses import asdict, dataclass
from typing import Any, Dict

_ORIGIN = time.perf_counter()

# Sentinel for error/timeout timestamps that have not happened.
UNSET = -1


def timer() -> int:
    """Return milliseconds elapsed since the process-wide origin."""
    return round((time.perf_counter() - _ORIGIN) * 1000)


@dataclass
class PerformanceRecord:
    """Timestamps collected while a plugin moves through its lifecycle.

    Attributes:
        status: Mirrors the owning descriptor's status.
        init: When the record was created (descriptor normalisation).
        preload: When the preload hook ran.
        requested: When the script was handed to the executor.
        received: When the executor reported success.
        error: When the executor reported failure, or ``UNSET``.
        timeout: When the timeout alarm fired, or ``UNSET``.
        latency: Terminal timestamp minus ``init``.
    """

    status: str = "init"
    init: int = 0
    requested: int = 0
    received: int = 0
    preload: int = 0
    error: int = UNSET
    timeout: int = UNSET
    latency: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def create_performance_tracker() -> PerformanceRecord:
    """Create a fresh record stamped with the current time."""
    return PerformanceRecord(status="init", init=timer())


def calculate_latency(record: PerformanceRecord) -> int:
    """Return milliseconds between the record's ``init`` and now."""
    return timer() - record.init
