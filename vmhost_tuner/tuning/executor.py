"""
HostTuner - Applies the hypervisor host tuning policy.

Runs the steps in order:
1. CPU    - scaling governor, persisted via cpufrequtils
2. VM     - vm.* sysctl keys
3. NET    - tcp_bbr autoload and net.* sysctl keys
4. THP    - transparent hugepage knobs, persisted via a one-shot unit
5. IO     - block device schedulers, persisted via a udev rule
6. VERIFY - read every value back

Each step collects SettingResults instead of raising, so one failing
write never stops the rest of the run. Only missing root is fatal.
"""

import logging
import os
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from ..config import Config, IoSchedulerRule
from ..protocol.errors import CommandError, PrivilegeError
from ..protocol.tuning import (
    Status,
    StepName,
    StepReport,
    TuningReport,
    VerificationReport,
    normalize_value,
)
from .render import (
    render_cpufreq_default,
    render_modules_load,
    render_sysctl_dropin,
    render_thp_unit,
    render_udev_rules,
    write_owned_file,
)
from .service import ServiceController, ServiceConfig
from .sysctl import clean_legacy_sysctl_conf, is_supported, write_sysctl
from .sysfs import parse_options, read_knob, write_knob
from .verifier import TuningVerifier

logger = logging.getLogger(__name__)

STEP_TITLES = {
    StepName.CPU: "CPU Governor",
    StepName.VM: "Memory Management",
    StepName.NET: "Network Stack",
    StepName.THP: "Transparent Hugepages",
    StepName.IO: "Disk I/O Schedulers",
}


def require_root():
    """Raise PrivilegeError unless running as root."""
    if os.geteuid() != 0:
        raise PrivilegeError("Please run as root")


class HostTuner:
    """
    Applies the tuning policy to the host and reports what landed.

    Safe to run any number of times: every owned file is rendered in
    full from the policy and every kernel write is a plain overwrite.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        service_controller: Optional[ServiceController] = None,
        verifier: Optional[TuningVerifier] = None,
    ):
        self.config = config or Config()
        self.policy = self.config.policy
        self.paths = self.config.paths

        self.service_controller = service_controller or ServiceController(
            ServiceConfig(timeout=self.config.commands.timeout)
        )
        self.verifier = verifier or TuningVerifier(self.paths)

        # The drop-in always holds the whole policy; apply_sysctl only
        # replaces its own namespace. Device rules accumulate as registered.
        self._sysctl_sections: Dict[str, Dict[str, str]] = {
            namespace: {key: normalize_value(value) for key, value in values.items()}
            for namespace, values in self.policy.sysctl.items()
        }
        self._io_rules: List[IoSchedulerRule] = []

    # =========================================================================
    # Full run
    # =========================================================================

    def run(
        self,
        skip: Iterable[str] = (),
        on_step: Optional[Callable[[StepReport], None]] = None,
    ) -> TuningReport:
        """
        Apply every step not listed in skip, then verify.

        Args:
            skip: Step names (cpu, vm, net, thp, io) to leave alone
            on_step: Called with each StepReport as soon as it completes

        Returns:
            TuningReport with every step and the verification read-back

        Raises:
            PrivilegeError: not running as root (before any mutation)
        """
        require_root()

        skip = {StepName(s) for s in skip}
        policy = self.policy
        report = TuningReport(policy_version=policy.version)

        steps = [
            (StepName.CPU, lambda: self.set_cpu_governor(policy.cpu.governor)),
            (StepName.VM, lambda: self.apply_sysctl("vm", policy.sysctl.get("vm", {}))),
            (StepName.NET, self._tune_network),
            (StepName.THP, lambda: self.configure_thp(policy.thp.enabled, policy.thp.defrag)),
            (StepName.IO, self._tune_io_schedulers),
        ]

        for name, func in steps:
            if name in skip:
                logger.info("Skipping %s step on request", name.value)
                continue
            step = self._run_step(name, func)
            report.steps.append(step)
            if on_step:
                on_step(step)

        report.verification = self.verify()
        return report

    def _run_step(self, name: StepName, func: Callable[[], StepReport]) -> StepReport:
        """Run one step; an unexpected exception becomes a failed result."""
        try:
            step = func()
        except Exception as e:
            logger.exception("Step %s failed unexpectedly", name.value)
            step = StepReport(name=name.value)
            step.add(name.value, Status.FAILED, message=f"{type(e).__name__}: {e}")
        step.name = name.value
        step.title = STEP_TITLES[name]
        return step

    def _tune_network(self) -> StepReport:
        step = self.load_kernel_modules(self.policy.kernel_modules)
        step.extend(self.apply_sysctl("net", self.policy.sysctl.get("net", {})))
        # Namespaces beyond vm/net from the config file ride along here
        for namespace, values in self.policy.sysctl.items():
            if namespace not in ("vm", "net"):
                step.extend(self.apply_sysctl(namespace, values))
        return step

    def _tune_io_schedulers(self) -> StepReport:
        step = StepReport(name=StepName.IO.value)
        for rule in self.policy.io_schedulers:
            step.extend(self._apply_io_rule(rule.pattern, rule.scheduler))
        self._persist_io_rules(step)
        return step

    # =========================================================================
    # CPU governor
    # =========================================================================

    def set_cpu_governor(self, name: str) -> StepReport:
        """
        Write the governor for every CPU exposing cpufreq, then persist it.

        Skips everything (including persistence) when the host has no
        frequency scaling, e.g. inside a guest.
        """
        step = StepReport(name=StepName.CPU.value)
        governor_files = self._governor_files()

        if not governor_files:
            logger.warning("CPU frequency scaling not available")
            step.add("cpufreq", Status.SKIPPED, name, "CPU frequency scaling not available")
            return step

        for path in governor_files:
            cpu = path.parent.parent.name
            available = read_knob(path.parent / "scaling_available_governors")
            if available is not None and name not in available.split():
                logger.warning("%s does not offer governor %s (available: %s)", cpu, name, available)
                step.add(cpu, Status.SKIPPED, name, f"not available (offers: {available})")
                continue
            self._write(step, cpu, path, name)

        self._persist_governor(step, name)
        return step

    def _governor_files(self) -> List[Path]:
        cpu_dir = self.paths.cpu_dir
        files = [
            p for p in cpu_dir.glob("cpu*/cpufreq/scaling_governor")
            if p.parent.parent.name[3:].isdigit()
        ]
        return sorted(files, key=lambda p: int(p.parent.parent.name[3:]))

    def _persist_governor(self, step: StepReport, name: str):
        cpu = self.policy.cpu
        svc = self.service_controller

        if cpu.install_helper:
            if svc.has_package_manager():
                self._attempt(step, "apt-get update", svc.update_packages)
                self._attempt(step, f"install {cpu.helper_package}", svc.install_package, cpu.helper_package)
            else:
                step.add(f"install {cpu.helper_package}", Status.SKIPPED, message="apt-get not found")

        self._install(step, self.paths.cpufreq_default, render_cpufreq_default(name), desired=f'GOVERNOR="{name}"')

        for unit in cpu.disable_services:
            self._attempt(step, f"disable {unit}", svc.disable, unit)
        self._attempt(step, f"enable {cpu.helper_service}", svc.enable, cpu.helper_service)
        self._attempt(step, f"restart {cpu.helper_service}", svc.restart, cpu.helper_service)

    # =========================================================================
    # Sysctl
    # =========================================================================

    def apply_sysctl(self, namespace: str, key_values: Dict[str, str]) -> StepReport:
        """
        Persist a sysctl namespace in the drop-in and apply it now.

        The drop-in is rewritten with every namespace registered so far.
        Keys the running kernel does not expose are skipped, keys it
        rejects are failed; both leave the rest of the namespace alone.
        """
        step = StepReport(name=namespace)
        values = {key: normalize_value(value) for key, value in key_values.items()}
        self._sysctl_sections[namespace] = values

        content = render_sysctl_dropin(self._sysctl_sections, self.policy.version)
        self._install(step, self.paths.sysctl_dropin, content)

        if self.policy.clean_legacy_sysctl_conf:
            self._clean_legacy(step)

        proc_sys = self.paths.proc_sys
        for key, value in values.items():
            if not is_supported(proc_sys, key):
                logger.warning("%s not supported by the running kernel", key)
                step.add(key, Status.SKIPPED, value, "not supported by running kernel")
                continue
            try:
                write_sysctl(proc_sys, key, value)
            except OSError as e:
                logger.error("Kernel rejected %s=%s: %s", key, value, e)
                step.add(key, Status.FAILED, value, str(e))
                continue
            step.add(key, Status.APPLIED, value)

        self._attempt(step, "sysctl --system", self.service_controller.reload_sysctl)
        return step

    def _clean_legacy(self, step: StepReport):
        path = self.paths.sysctl_conf
        try:
            removed = clean_legacy_sysctl_conf(path, self.policy.sysctl_keys())
        except OSError as e:
            logger.error("Cannot clean %s: %s", path, e)
            step.add(str(path), Status.FAILED, message=str(e))
            return
        if removed:
            step.add(str(path), Status.APPLIED, message=f"removed {removed} legacy line(s)")

    def load_kernel_modules(self, modules: List[str]) -> StepReport:
        """Make modules load at boot and load them now."""
        step = StepReport(name="modules")
        if not modules:
            return step

        content = render_modules_load(modules, self.policy.version)
        self._install(step, self.paths.modules_load, content)
        for module in modules:
            self._attempt(step, f"modprobe {module}", self.service_controller.load_module, module)
        return step

    # =========================================================================
    # Transparent hugepages
    # =========================================================================

    def configure_thp(self, enabled_mode: str, defrag_mode: str) -> StepReport:
        """
        Write the THP knobs and install the boot unit that re-applies them.

        sysfs hugepage state resets on reboot, hence the unit.
        """
        step = StepReport(name=StepName.THP.value)
        thp_dir = self.paths.thp_dir
        enabled_path = thp_dir / "enabled"
        defrag_path = thp_dir / "defrag"

        if not enabled_path.exists():
            logger.warning("Transparent hugepages not available on this kernel")
            step.add("transparent_hugepage", Status.SKIPPED, message="not available on this kernel")
            return step

        for knob, path, mode in (("enabled", enabled_path, enabled_mode), ("defrag", defrag_path, defrag_mode)):
            content = read_knob(path)
            if content is None:
                step.add(knob, Status.SKIPPED, mode, "knob not present")
                continue
            options, _ = parse_options(content)
            if mode not in options:
                logger.warning("THP %s does not offer %s (offers: %s)", knob, mode, " ".join(options))
                step.add(knob, Status.SKIPPED, mode, f"not available (offers: {' '.join(options)})")
                continue
            self._write(step, knob, path, mode)

        unit = self.policy.thp.unit_name
        content = render_thp_unit(enabled_path, defrag_path, enabled_mode, defrag_mode)
        if self._install(step, self.paths.thp_unit, content):
            svc = self.service_controller
            self._attempt(step, "daemon-reload", svc.daemon_reload)
            self._attempt(step, f"enable {unit}", svc.enable, unit)
        return step

    # =========================================================================
    # I/O schedulers
    # =========================================================================

    def set_io_scheduler(self, device_pattern: str, scheduler_name: str) -> StepReport:
        """
        Set a scheduler on matching block devices and persist it as a udev rule.

        Devices whose scheduler list lacks the scheduler keep their
        current one. The rule covers devices that appear later too.
        """
        step = self._apply_io_rule(device_pattern, scheduler_name)
        self._persist_io_rules(step)
        return step

    def _apply_io_rule(self, device_pattern: str, scheduler_name: str) -> StepReport:
        step = StepReport(name=StepName.IO.value)
        self._register_io_rule(device_pattern, scheduler_name)

        devices = self.verifier.block_devices(device_pattern)
        if not devices:
            step.add(device_pattern, Status.SKIPPED, scheduler_name, "no matching block devices")

        for device in devices:
            path = self.paths.block_dir / device / "queue" / "scheduler"
            content = read_knob(path)
            if content is None:
                step.add(device, Status.SKIPPED, scheduler_name, "no scheduler control")
                continue
            options, current = parse_options(content)
            if scheduler_name not in options:
                logger.warning("%s does not offer %s, keeping %s", device, scheduler_name, current)
                step.add(device, Status.SKIPPED, scheduler_name, f"not available, kept {current}")
                continue
            self._write(step, device, path, scheduler_name)
        return step

    def _persist_io_rules(self, step: StepReport):
        content = render_udev_rules(self._io_rules, self.policy.version)
        self._install(step, self.paths.udev_rule, content)

        svc = self.service_controller
        self._attempt(step, "udev reload", svc.reload_udev_rules)
        self._attempt(step, "udev trigger", svc.trigger_block_devices)

    def _register_io_rule(self, pattern: str, scheduler: str):
        for rule in self._io_rules:
            if rule.pattern == pattern:
                rule.scheduler = scheduler
                return
        self._io_rules.append(IoSchedulerRule(pattern=pattern, scheduler=scheduler))

    # =========================================================================
    # Verification and planning
    # =========================================================================

    def verify(self) -> VerificationReport:
        """Read back every setting the policy touches. Never mutates."""
        report = VerificationReport()
        policy = self.policy
        v = self.verifier

        if v.has_cpufreq():
            report.add("cpu", "CPU governor", v.get_governor(), policy.cpu.governor)
        else:
            report.add("cpu", "CPU governor", None)

        for values in self._sysctl_sections.values():
            for key, value in values.items():
                report.add("sysctl", key, v.get_sysctl(key), value)

        if v.has_thp():
            report.add("thp", "THP enabled", v.get_thp("enabled"), policy.thp.enabled)
            report.add("thp", "THP defrag", v.get_thp("defrag"), policy.thp.defrag)
        else:
            report.add("thp", "THP enabled", None)

        for rule in self._all_io_rules():
            for device in v.block_devices(rule.pattern):
                desired = rule.scheduler if rule.scheduler in v.get_scheduler_options(device) else None
                report.add("io", device, v.get_scheduler(device), desired)

        for path in self._owned_files():
            report.add("files", str(path), "present" if v.file_present(path) else None)

        return report

    def plan(self) -> Dict[Path, str]:
        """Render every owned file for the full policy without touching the host."""
        policy = self.policy
        paths = self.paths
        sections = {ns: {k: normalize_value(val) for k, val in values.items()}
                    for ns, values in policy.sysctl.items()}

        files = {
            paths.sysctl_dropin: render_sysctl_dropin(sections, policy.version),
            paths.cpufreq_default: render_cpufreq_default(policy.cpu.governor),
            paths.modules_load: render_modules_load(policy.kernel_modules, policy.version),
            paths.thp_unit: render_thp_unit(
                paths.thp_dir / "enabled", paths.thp_dir / "defrag",
                policy.thp.enabled, policy.thp.defrag,
            ),
            paths.udev_rule: render_udev_rules(policy.io_schedulers, policy.version),
        }
        if not policy.kernel_modules:
            del files[paths.modules_load]
        return files

    def _all_io_rules(self) -> List[IoSchedulerRule]:
        rules = list(self._io_rules)
        known = {r.pattern for r in rules}
        rules.extend(r for r in self.policy.io_schedulers if r.pattern not in known)
        return rules

    def _owned_files(self) -> List[Path]:
        paths = self.paths
        files = [paths.sysctl_dropin, paths.udev_rule]
        if self.policy.kernel_modules:
            files.append(paths.modules_load)
        if self.verifier.has_cpufreq():
            files.append(paths.cpufreq_default)
        if self.verifier.has_thp():
            files.append(paths.thp_unit)
        return files

    # =========================================================================
    # Result-collecting primitives
    # =========================================================================

    def _write(self, step: StepReport, target: str, path: Path, value: str):
        try:
            write_knob(path, value)
        except OSError as e:
            logger.error("Cannot write %s to %s: %s", value, path, e)
            step.add(target, Status.FAILED, value, str(e))
            return
        step.add(target, Status.APPLIED, value)

    def _install(self, step: StepReport, path: Path, content: str, desired: str = "") -> bool:
        try:
            changed = write_owned_file(path, content)
        except OSError as e:
            logger.error("Cannot write %s: %s", path, e)
            step.add(str(path), Status.FAILED, desired, str(e))
            return False
        step.add(str(path), Status.APPLIED, desired, "written" if changed else "unchanged")
        return True

    def _attempt(self, step: StepReport, target: str, func: Callable, *args) -> bool:
        try:
            func(*args)
        except CommandError as e:
            logger.warning("%s failed: %s", target, e)
            step.add(target, Status.FAILED, message=str(e))
            return False
        step.add(target, Status.APPLIED)
        return True
