"""
Discovery module - Gathers context about the host before tuning.

Components:
- SystemScanner: Scans CPU, memory, THP and block devices
"""

from .system import SystemScanner, HostFacts, BlockDevice

__all__ = ["SystemScanner", "HostFacts", "BlockDevice"]
