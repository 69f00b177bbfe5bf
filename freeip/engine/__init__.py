"""Incremental scan and cache engine exposed by the :mod:`freeip` package."""

from .base import (
    CacheStatus,
    FreeIpError,
    LaunchError,
    PersistenceError,
    ProbeRuntimeError,
    ScanState,
)
from .cache import CACHE_TTL_MS, ScanCache
from .parser import classify, last_octet
from .probe import ProbeProcess, is_executable
from .results import ResultSet
from .session import Engine, EngineSnapshot, ScanSession, epoch_ms
from .store import JsonFileStore, MemoryStore, Store, default_store_path

__all__ = [
    "CACHE_TTL_MS",
    "CacheStatus",
    "Engine",
    "EngineSnapshot",
    "FreeIpError",
    "JsonFileStore",
    "LaunchError",
    "MemoryStore",
    "PersistenceError",
    "ProbeProcess",
    "ProbeRuntimeError",
    "ResultSet",
    "ScanCache",
    "ScanSession",
    "ScanState",
    "Store",
    "classify",
    "default_store_path",
    "epoch_ms",
    "is_executable",
    "last_octet",
]
