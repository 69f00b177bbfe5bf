"""Classification of probe output lines."""

from __future__ import annotations

import re
from typing import Optional

# Digit count only; the probe is trusted to emit real addresses.
_ADDRESS_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")


def classify(line: str) -> Optional[str]:
    """Return the address carried by ``line`` or ``None`` for anything else."""

    candidate = line.strip()
    if _ADDRESS_RE.fullmatch(candidate):
        return candidate
    return None


def last_octet(address: str) -> int:
    return int(address.rsplit(".", 1)[-1])


__all__ = ["classify", "last_octet"]
