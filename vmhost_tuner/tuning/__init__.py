"""
Tuning module - Applies the hypervisor host policy.

Components:
- HostTuner: Runs the steps and collects per-setting results
- ServiceController: Drives systemctl, apt-get, sysctl, modprobe and udevadm
- TuningVerifier: Reads back effective values
"""

from .executor import HostTuner, require_root
from .service import ServiceController, ServiceConfig, CommandRunner
from .verifier import TuningVerifier

__all__ = [
    "HostTuner",
    "require_root",
    "ServiceController",
    "ServiceConfig",
    "CommandRunner",
    "TuningVerifier",
]
