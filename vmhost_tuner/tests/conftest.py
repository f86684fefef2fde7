"""
Pytest configuration for vmhost_tuner tests.

Every test runs against a FakeHost under tmp_path with a RecordingRunner,
so nothing touches the real kernel or needs root.
"""

import pytest

from vmhost_tuner.tuning.executor import HostTuner
from vmhost_tuner.tuning.service import ServiceController

from .mocks import FakeHost, RecordingRunner


@pytest.fixture
def host(tmp_path):
    """A bare-metal host with cpufreq, THP, NVMe/SATA disks and stock sysctls."""
    return FakeHost(tmp_path).full()


@pytest.fixture
def bare_host(tmp_path):
    """An empty host; tests add only what they need."""
    return FakeHost(tmp_path)


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def make_tuner(runner):
    def _make(fake_host, config=None):
        return HostTuner(
            config=config or fake_host.config(),
            service_controller=ServiceController(runner=runner),
        )
    return _make


@pytest.fixture
def tuner(host, make_tuner):
    return make_tuner(host)


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr("os.geteuid", lambda: 0)


@pytest.fixture
def as_user(monkeypatch):
    monkeypatch.setattr("os.geteuid", lambda: 1000)
