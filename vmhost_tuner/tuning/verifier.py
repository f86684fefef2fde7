"""
TuningVerifier - Reads back effective host values after tuning.

Never mutates state. Anything that cannot be read is reported as None
and rendered as "N/A" by the caller.
"""

from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional

from ..config import HostPaths
from .sysfs import read_knob, parse_options, selected_option
from .sysctl import read_sysctl


class TuningVerifier:
    """
    Verifies that tuning changes took effect.

    Supports:
    - sysctl parameter checks (/proc/sys)
    - CPU governor, THP and I/O scheduler sysfs knobs
    - Owned file presence
    """

    def __init__(self, paths: Optional[HostPaths] = None):
        self.paths = paths or HostPaths()

    def get_sysctl(self, key: str) -> Optional[str]:
        return read_sysctl(self.paths.proc_sys, key)

    def get_governor(self, cpu: str = "cpu0") -> Optional[str]:
        return read_knob(self.paths.cpu_dir / cpu / "cpufreq" / "scaling_governor")

    def has_cpufreq(self) -> bool:
        return (self.paths.cpu_dir / "cpu0" / "cpufreq").is_dir()

    def has_thp(self) -> bool:
        return (self.paths.thp_dir / "enabled").exists()

    def get_thp(self, knob: str) -> Optional[str]:
        return selected_option(read_knob(self.paths.thp_dir / knob))

    def block_devices(self, pattern: str) -> List[str]:
        """Names of block devices matching a glob, sorted."""
        try:
            names = [p.name for p in self.paths.block_dir.iterdir()]
        except OSError:
            return []
        return sorted(n for n in names if fnmatch(n, pattern))

    def get_scheduler_options(self, device: str) -> List[str]:
        return parse_options(read_knob(self._scheduler_path(device)))[0]

    def get_scheduler(self, device: str) -> Optional[str]:
        return selected_option(read_knob(self._scheduler_path(device)))

    def file_present(self, path: Path) -> bool:
        return path.is_file()

    def _scheduler_path(self, device: str) -> Path:
        return self.paths.block_dir / device / "queue" / "scheduler"

