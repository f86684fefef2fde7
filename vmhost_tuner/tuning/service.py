"""
ServiceController - Drives the host's external collaborators.

Provides:
- Service enable/disable/restart and unit reload (systemctl)
- Best-effort helper package install (apt-get)
- Sysctl reload (sysctl --system)
- Kernel module load (modprobe)
- Device rule reload and re-trigger (udevadm)
"""

import logging
import shutil
import subprocess
from typing import List, Optional
from dataclasses import dataclass

from ..protocol.errors import CommandError

logger = logging.getLogger(__name__)


@dataclass
class ServiceConfig:
    """Configuration for service controller."""
    timeout: int = 60  # seconds


class CommandRunner:
    """Runs external commands without a shell and raises CommandError on failure."""

    def __init__(self, timeout: int = 60):
        self.timeout = timeout

    def run(self, argv: List[str]) -> subprocess.CompletedProcess:
        logger.debug("Running: %s", " ".join(argv))
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            raise CommandError(argv, 127, f"{argv[0]}: command not found")
        except subprocess.TimeoutExpired:
            raise CommandError(argv, -1, f"timed out after {self.timeout}s")

        if result.returncode != 0:
            raise CommandError(argv, result.returncode, result.stderr or "")
        return result

    def available(self, program: str) -> bool:
        return shutil.which(program) is not None


class ServiceController:
    """
    Wraps the init system, package manager, sysctl, modprobe and udev.

    Every method raises CommandError when the command fails; callers
    decide whether that is fatal (it never is for tuning steps).
    """

    def __init__(self, config: Optional[ServiceConfig] = None, runner: Optional[CommandRunner] = None):
        self.config = config or ServiceConfig()
        self.runner = runner or CommandRunner(timeout=self.config.timeout)

    # ------------------------------------------------------------------
    # systemd
    # ------------------------------------------------------------------

    def enable(self, unit: str):
        self.runner.run(["systemctl", "enable", unit])

    def disable(self, unit: str):
        self.runner.run(["systemctl", "disable", unit])

    def restart(self, unit: str):
        self.runner.run(["systemctl", "restart", unit])

    def daemon_reload(self):
        self.runner.run(["systemctl", "daemon-reload"])

    # ------------------------------------------------------------------
    # Package manager
    # ------------------------------------------------------------------

    def has_package_manager(self) -> bool:
        return self.runner.available("apt-get")

    def update_packages(self):
        self.runner.run(["apt-get", "update", "-y"])

    def install_package(self, package: str):
        self.runner.run(["apt-get", "install", "-y", package])

    # ------------------------------------------------------------------
    # Kernel
    # ------------------------------------------------------------------

    def reload_sysctl(self):
        """Reload every sysctl source (sysctl.d drop-ins and /etc/sysctl.conf)."""
        self.runner.run(["sysctl", "--system"])

    def load_module(self, module: str):
        self.runner.run(["modprobe", module])

    # ------------------------------------------------------------------
    # udev
    # ------------------------------------------------------------------

    def reload_udev_rules(self):
        self.runner.run(["udevadm", "control", "--reload-rules"])

    def trigger_block_devices(self):
        self.runner.run(["udevadm", "trigger", "--subsystem-match=block", "--action=change"])
