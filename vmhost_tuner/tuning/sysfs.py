"""
Helpers for single-value kernel knobs under /sys and /proc/sys.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


def read_knob(path: Path) -> Optional[str]:
    """Read a knob, returning None if it is absent or unreadable."""
    try:
        return path.read_text().strip()
    except OSError:
        return None


def write_knob(path: Path, value: str):
    """
    Write a value to an existing knob.

    Kernel knobs cannot be created, so a missing path raises
    FileNotFoundError instead of creating a regular file.
    """
    if not path.exists():
        raise FileNotFoundError(f"No such kernel control: {path}")
    logger.debug("Writing %r to %s", value, path)
    with open(path, "w") as f:
        f.write(value)


def parse_options(content: Optional[str]) -> Tuple[List[str], Optional[str]]:
    """
    Parse a bracketed option list.

    Schedulers and THP knobs list every option with the selected one in
    brackets, e.g. "always [madvise] never". A plain value is treated as
    the only option and the selected one.

    Returns:
        (options, selected)
    """
    if not content:
        return [], None

    options = []
    selected = None
    for token in content.split():
        if token.startswith("[") and token.endswith("]"):
            token = token[1:-1]
            selected = token
        options.append(token)

    if selected is None and len(options) == 1:
        selected = options[0]

    return options, selected


def selected_option(content: Optional[str]) -> Optional[str]:
    """Return the bracketed (active) option of a knob."""
    return parse_options(content)[1]


def sysctl_path(proc_sys: Path, key: str) -> Path:
    """Map a dotted sysctl key to its /proc/sys file."""
    return proc_sys.joinpath(*key.split("."))
