"""Probe settings kept alongside the scan cache.

The engine never reads these; the probe loads them from the same store
file. Keys and limits match the preferences the probe understands.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

from .engine.store import Store

logger = logging.getLogger(__name__)

NET_CLASS_DIR = Path("/sys/class/net")


@dataclass(frozen=True, slots=True)
class SettingSpec:
    key: str
    label: str
    kind: str = "string"
    upper: int = 255


SETTINGS: tuple[SettingSpec, ...] = (
    SettingSpec("iface", "Network Interface"),
    SettingSpec("netmask", "Netmask"),
    SettingSpec("gateway", "Gateway"),
    SettingSpec("dns", "DNS"),
    SettingSpec("prefix", "IP Prefix (e.g., 192.168.1)"),
    SettingSpec("candidate-start", "Start Host Number", kind="uint"),
    SettingSpec("candidate-end", "End Host Number", kind="uint"),
)

_BY_KEY: Dict[str, SettingSpec] = {spec.key: spec for spec in SETTINGS}


def setting_keys() -> List[str]:
    return [spec.key for spec in SETTINGS]


def parse_setting(key: str, value: str) -> object:
    """Validate ``value`` for ``key`` and convert it to its stored type."""

    spec = _BY_KEY.get(key)
    if spec is None:
        raise ValueError(f"unknown setting '{key}'")

    value = value.strip()
    if spec.kind == "uint":
        try:
            number = int(value)
        except ValueError as exc:
            raise ValueError(f"{key} must be a whole number") from exc
        if not 0 <= number <= spec.upper:
            raise ValueError(f"{key} must be between 0 and {spec.upper}")
        return number

    if key in {"netmask", "gateway", "dns"} and value:
        try:
            ipaddress.IPv4Address(value)
        except ValueError as exc:
            raise ValueError(f"{key} must be an IPv4 address") from exc
    if key == "prefix" and value:
        parts = value.split(".")
        if len(parts) != 3 or not all(p.isdigit() and int(p) <= 255 for p in parts):
            raise ValueError("prefix must be three dotted octets, e.g. 192.168.1")
    return value


def read_settings(store: Store) -> Dict[str, object]:
    return {
        spec.key: store.get(spec.key, 0 if spec.kind == "uint" else "")
        for spec in SETTINGS
    }


def write_setting(store: Store, key: str, value: str) -> object:
    parsed = parse_setting(key, value)
    store.set(key, parsed)
    return parsed


def list_interfaces(net_dir: Path = NET_CLASS_DIR) -> List[str]:
    """Names of the network interfaces on this host, loopback excluded."""

    try:
        names = [entry.name for entry in net_dir.iterdir()]
    except OSError as exc:
        logger.error("Failed to list interfaces in %s: %s", net_dir, exc)
        return []
    return sorted(name for name in names if name != "lo")


__all__ = [
    "SETTINGS",
    "SettingSpec",
    "list_interfaces",
    "parse_setting",
    "read_settings",
    "setting_keys",
    "write_setting",
]
