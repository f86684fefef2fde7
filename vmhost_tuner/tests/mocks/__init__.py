"""
Mock components for testing vmhost_tuner.

FakeHost builds a fake /sys, /proc and /etc tree; RecordingRunner
stands in for systemctl, apt-get, sysctl, modprobe and udevadm.
"""

from .fake_host import FakeHost, STOCK_SYSCTL
from .mock_runner import RecordingRunner

__all__ = [
    'FakeHost',
    'STOCK_SYSCTL',
    'RecordingRunner',
]
