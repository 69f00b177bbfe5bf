"""Shared types and errors for the scan engine."""

from __future__ import annotations

import enum
from typing import Callable, Tuple


class FreeIpError(RuntimeError):
    """Base class for errors raised by the scan engine."""


class LaunchError(FreeIpError):
    """Raised when the probe executable cannot be started."""


class ProbeRuntimeError(FreeIpError):
    """Raised when a running probe fails (bad exit status, signal, I/O error)."""


class PersistenceError(FreeIpError):
    """Raised when the cache cannot be read from or written to its store."""


class ScanState(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class CacheStatus(enum.Enum):
    """What the cached results mean, independent of their age."""

    NEVER_SCANNED = "never-scanned"
    EMPTY = "empty"
    HAS_RESULTS = "has-results"


Snapshot = Tuple[str, ...]

# Receives the ordered address list and whether a scan is still running.
Observer = Callable[[Snapshot, bool], None]
