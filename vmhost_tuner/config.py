"""
Configuration management for vmhost_tuner.

Supports:
- TOML config files
- Command-line overrides
- The built-in hypervisor host policy as defaults

Priority (highest to lowest):
1. Command-line arguments
2. Config file
3. Defaults
"""

import re
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib

from .protocol.errors import ConfigError


POLICY_VERSION = "2"

# Default config file locations (searched in order)
CONFIG_SEARCH_PATHS = [
    Path("/etc/vmhost-tuner/config.toml"),
    Path.home() / ".config" / "vmhost-tuner" / "config.toml",
    Path.cwd() / "vmhost-tuner.toml",
]

THP_ENABLED_MODES = ("always", "madvise", "never")
THP_DEFRAG_MODES = ("always", "defer", "defer+madvise", "madvise", "never")

SYSCTL_KEY_RE = re.compile(r"^[a-z0-9_\-]+(\.[A-Za-z0-9_\-]+)+$")
MODULE_NAME_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

# Top-level sections that must be TOML tables
TABLE_SECTIONS = ("cpu", "sysctl", "thp", "modules", "legacy", "paths", "commands", "output")

DEFAULT_VM_SYSCTL = {
    "vm.swappiness": "10",
    "vm.dirty_background_ratio": "5",
    "vm.dirty_ratio": "10",
    "vm.vfs_cache_pressure": "50",
    "vm.overcommit_memory": "0",
    "vm.min_free_kbytes": "131072",
}

DEFAULT_NET_SYSCTL = {
    "net.core.netdev_max_backlog": "5000",
    "net.core.default_qdisc": "fq",
    "net.ipv4.tcp_congestion_control": "bbr",
    "net.core.rmem_max": "16777216",
    "net.core.wmem_max": "16777216",
    "net.ipv4.tcp_rmem": "4096 87380 16777216",
    "net.ipv4.tcp_wmem": "4096 65536 16777216",
    "net.ipv4.tcp_mtu_probing": "1",
    "net.ipv4.tcp_slow_start_after_idle": "0",
}

# Section titles written above each namespace in the sysctl drop-in
SYSCTL_SECTION_TITLES = {
    "vm": "VM Hosting Optimizations (KVM/QEMU)",
    "net": "Network Performance Tuning (host stack)",
}


@dataclass
class HostPaths:
    """Roots of the kernel and configuration trees being tuned."""
    sys_root: str = "/sys"
    proc_root: str = "/proc"
    etc_root: str = "/etc"

    @property
    def sys(self) -> Path:
        return Path(self.sys_root)

    @property
    def proc(self) -> Path:
        return Path(self.proc_root)

    @property
    def etc(self) -> Path:
        return Path(self.etc_root)

    @property
    def cpu_dir(self) -> Path:
        return self.sys / "devices" / "system" / "cpu"

    @property
    def thp_dir(self) -> Path:
        return self.sys / "kernel" / "mm" / "transparent_hugepage"

    @property
    def block_dir(self) -> Path:
        return self.sys / "block"

    @property
    def proc_sys(self) -> Path:
        return self.proc / "sys"

    @property
    def sysctl_dropin(self) -> Path:
        return self.etc / "sysctl.d" / "99-vm-host-tuning.conf"

    @property
    def sysctl_conf(self) -> Path:
        return self.etc / "sysctl.conf"

    @property
    def cpufreq_default(self) -> Path:
        return self.etc / "default" / "cpufrequtils"

    @property
    def thp_unit(self) -> Path:
        return self.etc / "systemd" / "system" / "configure-thp.service"

    @property
    def udev_rule(self) -> Path:
        return self.etc / "udev" / "rules.d" / "60-vm-host-io-scheduler.rules"

    @property
    def modules_load(self) -> Path:
        return self.etc / "modules-load.d" / "vm-host-tuning.conf"


@dataclass
class CpuPolicy:
    """CPU frequency governor policy."""
    governor: str = "performance"
    install_helper: bool = True
    helper_package: str = "cpufrequtils"
    helper_service: str = "cpufrequtils"
    disable_services: List[str] = field(default_factory=lambda: ["ondemand"])


@dataclass
class ThpPolicy:
    """Transparent hugepage policy."""
    enabled: str = "madvise"
    defrag: str = "never"
    unit_name: str = "configure-thp.service"


@dataclass
class IoSchedulerRule:
    """Device name glob mapped to an I/O scheduler."""
    pattern: str
    scheduler: str


def _default_io_rules() -> List[IoSchedulerRule]:
    return [
        IoSchedulerRule(pattern="nvme*n1", scheduler="none"),
        IoSchedulerRule(pattern="sd[a-z]", scheduler="mq-deadline"),
    ]


def _default_sysctl() -> Dict[str, Dict[str, str]]:
    return {
        "vm": dict(DEFAULT_VM_SYSCTL),
        "net": dict(DEFAULT_NET_SYSCTL),
    }


@dataclass
class TuningPolicy:
    """The versioned set of settings applied to the host."""
    version: str = POLICY_VERSION
    cpu: CpuPolicy = field(default_factory=CpuPolicy)
    sysctl: Dict[str, Dict[str, str]] = field(default_factory=_default_sysctl)
    thp: ThpPolicy = field(default_factory=ThpPolicy)
    io_schedulers: List[IoSchedulerRule] = field(default_factory=_default_io_rules)
    kernel_modules: List[str] = field(default_factory=lambda: ["tcp_bbr"])
    clean_legacy_sysctl_conf: bool = True

    def sysctl_keys(self) -> List[str]:
        """All sysctl keys owned by the policy, in file order."""
        keys = []
        for values in self.sysctl.values():
            keys.extend(values.keys())
        return keys


@dataclass
class CommandConfig:
    """External command execution."""
    timeout: int = 60


@dataclass
class OutputConfig:
    """Output configuration."""
    verbose: int = 0
    quiet: bool = False


@dataclass
class Config:
    """Main configuration container."""
    policy: TuningPolicy = field(default_factory=TuningPolicy)
    paths: HostPaths = field(default_factory=HostPaths)
    commands: CommandConfig = field(default_factory=CommandConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Source tracking
    _config_file: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """
        Load configuration from file.

        Args:
            config_path: Explicit path to config file. If None, searches default locations.

        Returns:
            Config instance with loaded values
        """
        config = cls()

        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise ConfigError(f"Config file not found: {config_path}")
        else:
            path = cls._find_config_file()

        if path:
            config = cls._load_from_file(path)
            config._config_file = path

        return config

    @classmethod
    def _find_config_file(cls) -> Optional[Path]:
        """Find config file in default locations."""
        for path in CONFIG_SEARCH_PATHS:
            if path.exists():
                return path
        return None

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Load config from TOML file."""
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Cannot read config file {path}: {e}")

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        config = cls()
        policy = config.policy

        for section in TABLE_SECTIONS:
            if section in data and not isinstance(data[section], dict):
                raise ConfigError(f"[{section}] must be a table")
        rules = data.get("io_scheduler", [])
        if not isinstance(rules, list) or not all(isinstance(rule, dict) for rule in rules):
            raise ConfigError("io_scheduler must be an array of tables ([[io_scheduler]])")

        # CPU
        if "cpu" in data:
            cpu = data["cpu"]
            policy.cpu = CpuPolicy(
                governor=cpu.get("governor", policy.cpu.governor),
                install_helper=cpu.get("install_helper", policy.cpu.install_helper),
                helper_package=cpu.get("helper_package", policy.cpu.helper_package),
                helper_service=cpu.get("helper_service", policy.cpu.helper_service),
                disable_services=cpu.get("disable_services", list(policy.cpu.disable_services)),
            )

        # Sysctl namespaces merge over the defaults
        if "sysctl" in data:
            for namespace, values in data["sysctl"].items():
                if not isinstance(values, dict):
                    raise ConfigError(f"[sysctl.{namespace}] must be a table of key = value")
                merged = policy.sysctl.setdefault(namespace, {})
                for key, value in values.items():
                    merged[key] = value

        # THP
        if "thp" in data:
            thp = data["thp"]
            policy.thp = ThpPolicy(
                enabled=thp.get("enabled", policy.thp.enabled),
                defrag=thp.get("defrag", policy.thp.defrag),
            )

        # I/O schedulers replace the default list
        if "io_scheduler" in data:
            policy.io_schedulers = [
                IoSchedulerRule(pattern=rule.get("pattern", ""), scheduler=rule.get("scheduler", ""))
                for rule in data["io_scheduler"]
            ]

        # Kernel modules
        if "modules" in data:
            policy.kernel_modules = data["modules"].get("load", policy.kernel_modules)

        if "legacy" in data:
            policy.clean_legacy_sysctl_conf = data["legacy"].get(
                "clean_sysctl_conf", policy.clean_legacy_sysctl_conf
            )

        # Paths
        if "paths" in data:
            paths = data["paths"]
            config.paths = HostPaths(
                sys_root=paths.get("sys_root", config.paths.sys_root),
                proc_root=paths.get("proc_root", config.paths.proc_root),
                etc_root=paths.get("etc_root", config.paths.etc_root),
            )

        # Commands
        if "commands" in data:
            config.commands = CommandConfig(
                timeout=data["commands"].get("timeout", config.commands.timeout),
            )

        # Output
        if "output" in data:
            out = data["output"]
            config.output = OutputConfig(
                verbose=out.get("verbose", config.output.verbose),
                quiet=out.get("quiet", config.output.quiet),
            )

        return config

    def override_from_args(self, args) -> "Config":
        """
        Override config values from argparse namespace.

        Args with value None are ignored (keeping config file values).
        """
        if getattr(args, "no_install", False):
            self.policy.cpu.install_helper = False
        if getattr(args, "governor", None):
            self.policy.cpu.governor = args.governor

        if getattr(args, "verbose", None):
            self.output.verbose = args.verbose
        if getattr(args, "quiet", None):
            self.output.quiet = args.quiet

        return self

    def validate(self) -> list:
        """
        Validate configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []
        policy = self.policy
        cpu = policy.cpu

        if not isinstance(cpu.governor, str):
            errors.append(f"CPU governor must be a string: got {cpu.governor!r}")
        elif not cpu.governor:
            errors.append("CPU governor must not be empty")
        if not isinstance(cpu.install_helper, bool):
            errors.append(f"cpu.install_helper must be true or false: got {cpu.install_helper!r}")
        if not _is_str_list(cpu.disable_services):
            errors.append(f"cpu.disable_services must be a list of unit names: got {cpu.disable_services!r}")

        for namespace, values in policy.sysctl.items():
            for key, value in values.items():
                if not SYSCTL_KEY_RE.match(key):
                    errors.append(f"Invalid sysctl key in [sysctl.{namespace}]: {key!r}")
                elif not isinstance(value, (str, int, float, list)):
                    errors.append(f"Invalid value for {key} in [sysctl.{namespace}]: {value!r}")

        for knob, mode, modes in (
            ("enabled", policy.thp.enabled, THP_ENABLED_MODES),
            ("defrag", policy.thp.defrag, THP_DEFRAG_MODES),
        ):
            if not isinstance(mode, str) or mode not in modes:
                errors.append(f"THP {knob} mode must be one of {', '.join(modes)}: got {mode!r}")

        for rule in policy.io_schedulers:
            if not isinstance(rule.pattern, str) or not isinstance(rule.scheduler, str):
                errors.append(f"I/O scheduler rule pattern and scheduler must be strings: {rule}")
            elif not rule.pattern or not rule.scheduler:
                errors.append(f"I/O scheduler rule needs pattern and scheduler: {rule}")
            elif '"' in rule.pattern or '"' in rule.scheduler:
                errors.append(f"I/O scheduler rule must not contain quotes: {rule}")

        if not _is_str_list(policy.kernel_modules):
            errors.append(f"modules.load must be a list of module names: got {policy.kernel_modules!r}")
        else:
            for module in policy.kernel_modules:
                if not MODULE_NAME_RE.match(module):
                    errors.append(f"Invalid kernel module name: {module!r}")

        if not isinstance(policy.clean_legacy_sysctl_conf, bool):
            errors.append("legacy.clean_sysctl_conf must be true or false")

        for name in ("sys_root", "proc_root", "etc_root"):
            if not isinstance(getattr(self.paths, name), str):
                errors.append(f"paths.{name} must be a string")

        timeout = self.commands.timeout
        if not _is_int(timeout):
            errors.append(f"Command timeout must be an integer: got {timeout!r}")
        elif timeout < 1:
            errors.append("Command timeout must be at least 1 second")

        if not _is_int(self.output.verbose):
            errors.append(f"output.verbose must be an integer: got {self.output.verbose!r}")

        return errors

    def summary(self, include_config_path: bool = True) -> str:
        """Generate human-readable config summary."""
        lines = []

        if include_config_path:
            if self._config_file:
                lines.append(f"Config: {self._config_file}")
            else:
                lines.append("Config: (defaults)")

        policy = self.policy
        lines.append(f"Policy: v{policy.version}")
        lines.append(f"CPU governor: {policy.cpu.governor}")
        lines.append(f"Sysctl keys: {len(policy.sysctl_keys())} ({', '.join(policy.sysctl)})")
        lines.append(f"THP: enabled={policy.thp.enabled}, defrag={policy.thp.defrag}")
        io = ", ".join(f"{r.pattern}={r.scheduler}" for r in policy.io_schedulers)
        lines.append(f"I/O schedulers: {io or '(none)'}")
        if self.paths != HostPaths():
            lines.append(f"Roots: sys={self.paths.sys_root} proc={self.paths.proc_root} etc={self.paths.etc_root}")

        return "\n".join(lines)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)
