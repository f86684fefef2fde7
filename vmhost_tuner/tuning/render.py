"""
Render - Generate the configuration files owned by vmhost_tuner.

Every file is rendered in full from the policy on each run. Content is
deterministic (no timestamps, fixed ordering), so re-running produces
byte-identical files.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Iterable

from ..config import SYSCTL_SECTION_TITLES, IoSchedulerRule

logger = logging.getLogger(__name__)

MANAGED_HEADER = "Managed by vmhost-tuner (policy v{version}). Local edits are overwritten."


def render_sysctl_dropin(sections: Dict[str, Dict[str, str]], version: str) -> str:
    """Render the sysctl.d drop-in, one commented block per namespace."""
    lines = [f"# {MANAGED_HEADER.format(version=version)}"]
    for namespace, values in sections.items():
        if not values:
            continue
        lines.append("")
        lines.append(f"# {SYSCTL_SECTION_TITLES.get(namespace, namespace)}")
        for key, value in values.items():
            lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n"


def render_cpufreq_default(governor: str) -> str:
    return f'GOVERNOR="{governor}"\n'


def render_thp_unit(enabled_path: Path, defrag_path: Path, enabled: str, defrag: str) -> str:
    """Render the one-shot unit that re-applies THP knobs after boot."""
    return f"""[Unit]
Description=Configure Transparent Hugepages for VM Hosting
After=multi-user.target

[Service]
Type=oneshot
ExecStart=/bin/sh -c 'echo {enabled} > {enabled_path}'
ExecStart=/bin/sh -c 'echo {defrag} > {defrag_path}'

[Install]
WantedBy=multi-user.target
"""


def render_udev_rules(rules: Iterable[IoSchedulerRule], version: str) -> str:
    """Render the udev rule file; one line per device pattern."""
    lines = [f"# {MANAGED_HEADER.format(version=version)}"]
    for rule in rules:
        lines.append(
            f'ACTION=="add|change", SUBSYSTEM=="block", KERNEL=="{rule.pattern}", '
            f'ATTR{{queue/scheduler}}="{rule.scheduler}"'
        )
    return "\n".join(lines) + "\n"


def render_modules_load(modules: List[str], version: str) -> str:
    lines = [f"# {MANAGED_HEADER.format(version=version)}"]
    lines.extend(modules)
    return "\n".join(lines) + "\n"


def write_owned_file(path: Path, content: str) -> bool:
    """
    Replace a file this tool owns with new content.

    The write goes through a temporary file in the same directory and
    an atomic rename, so a killed run never leaves a half-written file.

    Returns:
        True if the file content changed
    """
    try:
        if path.read_text() == content:
            logger.debug("%s unchanged", path)
            return False
    except OSError:
        pass

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    logger.debug("Wrote %s", path)
    return True
