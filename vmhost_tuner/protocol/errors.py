"""
Error types for vmhost_tuner.

Only PrivilegeError and ConfigError abort a run. Everything else is
recorded as a failed SettingResult and the run continues.
"""

from typing import List, Optional


class TunerError(Exception):
    """Base class for vmhost_tuner errors."""
    pass


class PrivilegeError(TunerError):
    """The tool was started without root privileges."""
    pass


class ConfigError(TunerError):
    """Configuration file is unreadable or describes an invalid policy."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class CommandError(TunerError):
    """An external command exited non-zero or could not be started."""

    def __init__(self, argv: List[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"'{' '.join(self.argv)}' exited with {returncode}{detail}")
