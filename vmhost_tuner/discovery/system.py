"""
SystemScanner - Scans the host before tuning.

Reads /proc, /sys and /etc directly (no external tools), so it works
against a fake root in tests and never needs privileges.
"""

import re
from typing import List, Optional
from dataclasses import dataclass, field

from ..config import HostPaths
from ..tuning.sysfs import read_knob, parse_options, selected_option


@dataclass
class BlockDevice:
    """A whole-disk block device and its scheduler state."""
    name: str
    type: str                        # nvme, ssd, hdd, virtual
    scheduler: Optional[str] = None
    schedulers: List[str] = field(default_factory=list)


@dataclass
class HostFacts:
    """What the scanner found on the host."""
    os_version: str = "Unknown"
    kernel_version: str = "Unknown"
    cpu_count: int = 0
    cpu_model: str = "Unknown"
    virtualization: Optional[str] = None   # vmx, svm or None
    ram_total_gb: float = 0.0
    cpufreq_available: bool = False
    cpu_governor: Optional[str] = None
    thp_available: bool = False
    thp_enabled: Optional[str] = None
    thp_defrag: Optional[str] = None
    block_devices: List[BlockDevice] = field(default_factory=list)


class SystemScanner:
    """
    Scans system hardware and kernel features relevant to tuning.
    """

    def __init__(self, paths: Optional[HostPaths] = None):
        self.paths = paths or HostPaths()

    def scan(self) -> HostFacts:
        """Perform full system scan."""
        facts = HostFacts()
        self._get_os_info(facts)
        self._get_cpu_info(facts)
        self._get_memory_info(facts)
        self._get_thp_info(facts)
        facts.block_devices = self.get_block_devices()
        return facts

    def _get_os_info(self, facts: HostFacts):
        """Get OS and kernel information."""
        os_release = read_knob(self.paths.etc / "os-release")
        if os_release:
            pretty_name = re.search(r'PRETTY_NAME="?([^"\n]+)"?', os_release)
            if pretty_name:
                facts.os_version = pretty_name.group(1)

        kernel = read_knob(self.paths.proc_sys / "kernel" / "osrelease")
        if kernel:
            facts.kernel_version = kernel

    def _get_cpu_info(self, facts: HostFacts):
        """Get CPU information."""
        cpu_dir = self.paths.cpu_dir
        try:
            cpus = [p for p in cpu_dir.iterdir() if re.match(r"^cpu\d+$", p.name)]
        except OSError:
            cpus = []
        facts.cpu_count = len(cpus)

        cpuinfo = read_knob(self.paths.proc / "cpuinfo")
        if cpuinfo:
            model_match = re.search(r'model name\s*:\s*(.+)', cpuinfo)
            if model_match:
                facts.cpu_model = model_match.group(1).strip()

            flags_match = re.search(r'^flags\s*:\s*(.+)$', cpuinfo, re.MULTILINE)
            if flags_match:
                flags = flags_match.group(1).split()
                if "vmx" in flags:
                    facts.virtualization = "vmx"
                elif "svm" in flags:
                    facts.virtualization = "svm"

            if not facts.cpu_count:
                facts.cpu_count = len(re.findall(r'^processor\s*:', cpuinfo, re.MULTILINE))

        cpufreq = cpu_dir / "cpu0" / "cpufreq"
        facts.cpufreq_available = cpufreq.is_dir()
        if facts.cpufreq_available:
            facts.cpu_governor = read_knob(cpufreq / "scaling_governor")

    def _get_memory_info(self, facts: HostFacts):
        """Get memory information."""
        meminfo = read_knob(self.paths.proc / "meminfo")
        if meminfo:
            total_match = re.search(r'MemTotal:\s*(\d+)\s*kB', meminfo)
            if total_match:
                facts.ram_total_gb = round(int(total_match.group(1)) / (1024 ** 2), 2)

    def _get_thp_info(self, facts: HostFacts):
        thp_dir = self.paths.thp_dir
        facts.thp_available = (thp_dir / "enabled").exists()
        if facts.thp_available:
            facts.thp_enabled = selected_option(read_knob(thp_dir / "enabled"))
            facts.thp_defrag = selected_option(read_knob(thp_dir / "defrag"))

    def get_block_devices(self) -> List[BlockDevice]:
        """List whole-disk block devices with their scheduler options."""
        devices = []
        try:
            entries = sorted(self.paths.block_dir.iterdir(), key=lambda p: p.name)
        except OSError:
            return devices

        for entry in entries:
            name = entry.name
            if name.startswith(("loop", "ram", "zram", "dm-", "md", "sr")):
                continue
            options, current = parse_options(read_knob(entry / "queue" / "scheduler"))
            devices.append(BlockDevice(
                name=name,
                type=self._device_type(entry.name, read_knob(entry / "queue" / "rotational")),
                scheduler=current,
                schedulers=options,
            ))
        return devices

    @staticmethod
    def _device_type(name: str, rotational: Optional[str]) -> str:
        if name.startswith("nvme"):
            return "nvme"
        if name.startswith(("vd", "xvd")):
            return "virtual"
        if rotational == "1":
            return "hdd"
        return "ssd"
