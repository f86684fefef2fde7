"""
Fake host root for testing.

Builds a directory tree that mimics the parts of /sys, /proc and /etc
the tuner touches, so HostTuner can run unprivileged against tmp_path.
"""

from pathlib import Path
from typing import Dict, Optional

from vmhost_tuner.config import Config, HostPaths

# Stock values of a fresh Ubuntu 22.04 host for every key the policy owns
STOCK_SYSCTL: Dict[str, str] = {
    "vm.swappiness": "60",
    "vm.dirty_background_ratio": "10",
    "vm.dirty_ratio": "20",
    "vm.vfs_cache_pressure": "100",
    "vm.overcommit_memory": "0",
    "vm.min_free_kbytes": "67584",
    "net.core.netdev_max_backlog": "1000",
    "net.core.default_qdisc": "fq_codel",
    "net.ipv4.tcp_congestion_control": "cubic",
    "net.core.rmem_max": "212992",
    "net.core.wmem_max": "212992",
    "net.ipv4.tcp_rmem": "4096\t131072\t6291456",
    "net.ipv4.tcp_wmem": "4096\t16384\t4194304",
    "net.ipv4.tcp_mtu_probing": "0",
    "net.ipv4.tcp_slow_start_after_idle": "1",
}


class FakeHost:
    """A fake sysfs/procfs/etc tree under a temporary root."""

    def __init__(self, root: Path):
        self.root = root
        self.paths = HostPaths(
            sys_root=str(root / "sys"),
            proc_root=str(root / "proc"),
            etc_root=str(root / "etc"),
        )
        for path in (self.paths.sys, self.paths.proc_sys, self.paths.etc, self.paths.block_dir):
            path.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def add_cpus(
        self,
        count: int = 2,
        governor: str = "powersave",
        available: Optional[str] = "performance powersave",
        cpufreq: bool = True,
    ) -> "FakeHost":
        for n in range(count):
            cpu = self.paths.cpu_dir / f"cpu{n}"
            cpu.mkdir(parents=True, exist_ok=True)
            if cpufreq:
                freq = cpu / "cpufreq"
                freq.mkdir(exist_ok=True)
                (freq / "scaling_governor").write_text(governor + "\n")
                if available is not None:
                    (freq / "scaling_available_governors").write_text(available + "\n")
        # Non-CPU siblings that must be ignored
        (self.paths.cpu_dir / "cpuidle").mkdir(exist_ok=True)
        return self

    def add_thp(
        self,
        enabled: str = "[always] madvise never",
        defrag: str = "always defer defer+madvise [madvise] never",
    ) -> "FakeHost":
        thp = self.paths.thp_dir
        thp.mkdir(parents=True, exist_ok=True)
        (thp / "enabled").write_text(enabled + "\n")
        (thp / "defrag").write_text(defrag + "\n")
        return self

    def add_block_device(
        self,
        name: str,
        scheduler: str = "[mq-deadline] kyber bfq none",
        rotational: str = "0",
    ) -> "FakeHost":
        queue = self.paths.block_dir / name / "queue"
        queue.mkdir(parents=True, exist_ok=True)
        (queue / "scheduler").write_text(scheduler + "\n")
        (queue / "rotational").write_text(rotational + "\n")
        return self

    def add_sysctl(self, key: str, value: str) -> "FakeHost":
        path = self.paths.proc_sys.joinpath(*key.split("."))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(value + "\n")
        return self

    def add_stock_sysctls(self, exclude=()) -> "FakeHost":
        for key, value in STOCK_SYSCTL.items():
            if key not in exclude:
                self.add_sysctl(key, value)
        return self

    def add_proc_info(self) -> "FakeHost":
        (self.paths.proc / "cpuinfo").write_text(
            "processor\t: 0\nmodel name\t: AMD EPYC 7443P 24-Core Processor\n"
            "flags\t\t: fpu vme de pse svm sse sse2\n\n"
            "processor\t: 1\nmodel name\t: AMD EPYC 7443P 24-Core Processor\n"
            "flags\t\t: fpu vme de pse svm sse sse2\n"
        )
        (self.paths.proc / "meminfo").write_text(
            "MemTotal:       263840252 kB\nMemFree:        200000000 kB\n"
        )
        self.add_sysctl("kernel.osrelease", "5.15.0-91-generic")
        (self.paths.etc / "os-release").write_text(
            'NAME="Ubuntu"\nPRETTY_NAME="Ubuntu 22.04.3 LTS"\n'
        )
        return self

    def full(self) -> "FakeHost":
        """A bare-metal host with every feature present."""
        self.add_cpus()
        self.add_thp()
        self.add_block_device("nvme0n1", "[none] mq-deadline")
        self.add_block_device("nvme1n1", "[mq-deadline] none")
        self.add_block_device("sda", "[bfq] mq-deadline none", rotational="1")
        self.add_block_device("loop0", "[none]")
        self.add_stock_sysctls()
        self.add_proc_info()
        return self

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def config(self, **policy_overrides) -> Config:
        config = Config(paths=self.paths)
        for key, value in policy_overrides.items():
            setattr(config.policy, key, value)
        return config

    def read(self, path: Path) -> str:
        return Path(path).read_text()

    def sysctl(self, key: str) -> str:
        return self.paths.proc_sys.joinpath(*key.split(".")).read_text().strip()

    def governor(self, cpu: str = "cpu0") -> str:
        return (self.paths.cpu_dir / cpu / "cpufreq" / "scaling_governor").read_text().strip()

    def scheduler(self, device: str) -> str:
        return (self.paths.block_dir / device / "queue" / "scheduler").read_text().strip()

    def thp(self, knob: str) -> str:
        return (self.paths.thp_dir / knob).read_text().strip()

    def etc_files(self) -> Dict[str, bytes]:
        """Every file under etc/, relative path -> bytes."""
        etc = self.paths.etc
        return {
            str(p.relative_to(etc)): p.read_bytes()
            for p in sorted(etc.rglob("*")) if p.is_file()
        }
