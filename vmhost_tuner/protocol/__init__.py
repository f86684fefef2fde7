"""
Protocol definitions for vmhost_tuner.

- SettingResult/StepReport/TuningReport: outcome of applying the policy
- VerificationReport: effective values read back from the host
- Error types raised at the precondition boundary
"""

from .tuning import (
    NOT_AVAILABLE,
    Status,
    StepName,
    SettingResult,
    StepReport,
    VerifiedValue,
    VerificationReport,
    TuningReport,
    normalize_value,
)
from .errors import (
    TunerError,
    PrivilegeError,
    ConfigError,
    CommandError,
)

__all__ = [
    # Results
    "NOT_AVAILABLE",
    "Status",
    "StepName",
    "SettingResult",
    "StepReport",
    "VerifiedValue",
    "VerificationReport",
    "TuningReport",
    "normalize_value",
    # Errors
    "TunerError",
    "PrivilegeError",
    "ConfigError",
    "CommandError",
]
