"""
UI module - Rich console interface.

Provides:
- Step progress display
- Verification and summary formatting
- Logging through rich
"""

from .console import ConsoleUI, setup_logging

__all__ = [
    "ConsoleUI",
    "setup_logging",
]
