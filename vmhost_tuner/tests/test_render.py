from pathlib import Path

from vmhost_tuner.config import IoSchedulerRule
from vmhost_tuner.tuning.render import (
    render_cpufreq_default,
    render_modules_load,
    render_sysctl_dropin,
    render_thp_unit,
    render_udev_rules,
    write_owned_file,
)


class TestRenderers:
    """Test owned file rendering"""

    def test_sysctl_dropin_sections(self):
        content = render_sysctl_dropin(
            {
                "vm": {"vm.swappiness": "10"},
                "net": {"net.ipv4.tcp_congestion_control": "bbr"},
            },
            version="2",
        )
        assert content == (
            "# Managed by vmhost-tuner (policy v2). Local edits are overwritten.\n"
            "\n"
            "# VM Hosting Optimizations (KVM/QEMU)\n"
            "vm.swappiness=10\n"
            "\n"
            "# Network Performance Tuning (host stack)\n"
            "net.ipv4.tcp_congestion_control=bbr\n"
        )

    def test_sysctl_dropin_skips_empty_namespace(self):
        content = render_sysctl_dropin({"vm": {}}, version="2")
        assert "VM Hosting" not in content

    def test_cpufreq_default(self):
        assert render_cpufreq_default("performance") == 'GOVERNOR="performance"\n'

    def test_thp_unit(self):
        unit = render_thp_unit(
            Path("/sys/kernel/mm/transparent_hugepage/enabled"),
            Path("/sys/kernel/mm/transparent_hugepage/defrag"),
            "madvise",
            "never",
        )
        assert "Type=oneshot" in unit
        assert "After=multi-user.target" in unit
        assert "WantedBy=multi-user.target" in unit
        assert "ExecStart=/bin/sh -c 'echo madvise > /sys/kernel/mm/transparent_hugepage/enabled'" in unit
        assert "ExecStart=/bin/sh -c 'echo never > /sys/kernel/mm/transparent_hugepage/defrag'" in unit

    def test_udev_rules_one_line_per_pattern(self):
        content = render_udev_rules(
            [IoSchedulerRule("nvme*n1", "none"), IoSchedulerRule("sd[a-z]", "mq-deadline")],
            version="2",
        )
        lines = content.splitlines()
        assert len(lines) == 3
        assert lines[1] == (
            'ACTION=="add|change", SUBSYSTEM=="block", KERNEL=="nvme*n1", '
            'ATTR{queue/scheduler}="none"'
        )
        assert 'KERNEL=="sd[a-z]"' in lines[2]
        assert 'ATTR{queue/scheduler}="mq-deadline"' in lines[2]

    def test_modules_load(self):
        assert render_modules_load(["tcp_bbr"], version="2").splitlines()[1:] == ["tcp_bbr"]


class TestWriteOwnedFile:
    """Test atomic owned file replacement"""

    def test_creates_parents_and_reports_change(self, tmp_path):
        path = tmp_path / "etc" / "sysctl.d" / "99-test.conf"

        assert write_owned_file(path, "a=1\n") is True
        assert path.read_text() == "a=1\n"

    def test_unchanged_content_is_not_rewritten(self, tmp_path):
        path = tmp_path / "file.conf"
        write_owned_file(path, "a=1\n")
        mtime = path.stat().st_mtime_ns

        assert write_owned_file(path, "a=1\n") is False
        assert path.stat().st_mtime_ns == mtime

    def test_overwrites_in_full(self, tmp_path):
        path = tmp_path / "file.conf"
        path.write_text("stale=1\nother=2\n")

        write_owned_file(path, "a=1\n")

        assert path.read_text() == "a=1\n"
        assert [p.name for p in tmp_path.iterdir()] == ["file.conf"]
