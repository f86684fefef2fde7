"""
Sysctl helpers: per-key kernel apply, read-back and legacy cleanup.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Tuple

from ..protocol.tuning import normalize_value
from .sysfs import read_knob, write_knob, sysctl_path

logger = logging.getLogger(__name__)

# Comment lines written by the earlier /etc/sysctl.conf-appending revision
LEGACY_MARKERS = (
    "# VM Hosting Optimizations",
    "# Network Performance Tuning",
)


def read_sysctl(proc_sys: Path, key: str) -> Optional[str]:
    """Read a sysctl key; None when the running kernel does not expose it."""
    value = read_knob(sysctl_path(proc_sys, key))
    if value is None:
        return None
    return normalize_value(value)


def write_sysctl(proc_sys: Path, key: str, value: str):
    """Write a sysctl key immediately; raises OSError on rejection."""
    write_knob(sysctl_path(proc_sys, key), value)


def is_supported(proc_sys: Path, key: str) -> bool:
    return sysctl_path(proc_sys, key).exists()


def strip_legacy_lines(text: str, owned_keys: Iterable[str]) -> Tuple[str, int]:
    """
    Remove legacy marker comments and owned key assignments from sysctl.conf text.

    Lines for keys not owned by the policy, and all other comments, are
    kept untouched.

    Returns:
        (new_text, removed_line_count)
    """
    owned = set(owned_keys)
    kept = []
    removed = 0

    for line in text.splitlines(keepends=True):
        stripped = line.strip()
        if stripped.startswith(LEGACY_MARKERS):
            removed += 1
            continue
        if stripped and not stripped.startswith(("#", ";")) and "=" in stripped:
            key = stripped.lstrip("-").split("=", 1)[0].strip()
            if key in owned:
                removed += 1
                continue
        kept.append(line)

    return "".join(kept), removed


def clean_legacy_sysctl_conf(path: Path, owned_keys: Iterable[str]) -> int:
    """
    Drop owned keys from a shared sysctl.conf so they cannot override the drop-in.

    The file is rewritten only when something was removed.

    Returns:
        Number of lines removed (0 if the file is absent)
    """
    try:
        text = path.read_text()
    except FileNotFoundError:
        return 0

    new_text, removed = strip_legacy_lines(text, owned_keys)
    if removed:
        path.write_text(new_text)
        logger.info("Removed %d legacy line(s) from %s", removed, path)
    return removed
