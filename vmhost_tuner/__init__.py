"""
vmhost_tuner - Kernel & device tuning for KVM/QEMU hypervisor hosts

Applies a fixed, versioned policy: performance CPU governor, vm.* and
net.* sysctls (BBR + fq), THP madvise/never and per-device I/O
schedulers, each persisted across reboots. Safe to run repeatedly.

Usage:
    # As a module
    sudo python -m vmhost_tuner

    # Programmatically
    from vmhost_tuner import HostTuner, Config

    tuner = HostTuner(config=Config.load())
    report = tuner.run()
"""

__version__ = "2.0.0"

# Main exports
from .config import Config, TuningPolicy, HostPaths
from .tuning.executor import HostTuner

# Protocol exports
from .protocol.tuning import Status, StepReport, TuningReport, VerificationReport

__all__ = [
    # Version
    "__version__",
    # Config
    "Config",
    "TuningPolicy",
    "HostPaths",
    # Tuner
    "HostTuner",
    # Protocol
    "Status",
    "StepReport",
    "TuningReport",
    "VerificationReport",
]
