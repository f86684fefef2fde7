from vmhost_tuner.config import DEFAULT_NET_SYSCTL, DEFAULT_VM_SYSCTL
from vmhost_tuner.protocol.tuning import Status
from vmhost_tuner.tuning.sysctl import strip_legacy_lines, clean_legacy_sysctl_conf


LEGACY_CONF = (
    "# /etc/sysctl.conf - Configuration file for setting system variables\n"
    "net.ipv4.ip_forward=1\n"
    "\n"
    "# VM Hosting Optimizations (KVM/QEMU)\n"
    "vm.swappiness=10\n"
    "vm.dirty_ratio = 10\n"
    "# Network Performance Tuning\n"
    "net.ipv4.tcp_congestion_control=bbr\n"
)


class TestApplySysctl:
    """Test sysctl drop-in persistence and immediate apply"""

    def test_writes_dropin_and_kernel_values(self, host, tuner, runner):
        step = tuner.apply_sysctl("vm", DEFAULT_VM_SYSCTL)

        dropin = host.read(host.paths.sysctl_dropin)
        assert "# VM Hosting Optimizations (KVM/QEMU)\n" in dropin
        for key, value in DEFAULT_VM_SYSCTL.items():
            assert f"{key}={value}\n" in dropin
            assert host.sysctl(key) == value

        assert step.count(Status.FAILED) == 0
        assert runner.ran("sysctl --system")

    def test_reading_back_yields_target(self, host, tuner):
        tuner.apply_sysctl("net", DEFAULT_NET_SYSCTL)

        for key, value in DEFAULT_NET_SYSCTL.items():
            assert tuner.verifier.get_sysctl(key) == value
        assert host.sysctl("net.ipv4.tcp_rmem") == "4096 87380 16777216"

    def test_both_namespaces_share_one_dropin(self, host, tuner):
        tuner.apply_sysctl("vm", DEFAULT_VM_SYSCTL)
        tuner.apply_sysctl("net", DEFAULT_NET_SYSCTL)

        dropin = host.read(host.paths.sysctl_dropin)
        assert dropin.index("vm.swappiness=10") < dropin.index("net.core.default_qdisc=fq")
        assert dropin.count("vm.swappiness") == 1

    def test_single_namespace_keeps_the_others(self, host, tuner):
        tuner.apply_sysctl("net", DEFAULT_NET_SYSCTL)

        dropin = host.read(host.paths.sysctl_dropin)
        assert "vm.swappiness=10\n" in dropin
        assert "net.core.default_qdisc=fq\n" in dropin
        assert host.sysctl("vm.swappiness") == "60"

    def test_unsupported_key_is_skipped_and_reads_na(self, bare_host, make_tuner):
        bare_host.add_stock_sysctls(exclude={"vm.min_free_kbytes"})
        tuner = make_tuner(bare_host)

        step = tuner.apply_sysctl("vm", DEFAULT_VM_SYSCTL)

        skipped = [r for r in step.results if r.status == Status.SKIPPED]
        assert [r.target for r in skipped] == ["vm.min_free_kbytes"]
        assert "vm.min_free_kbytes=131072" in bare_host.read(bare_host.paths.sysctl_dropin)
        assert tuner.verify().get("vm.min_free_kbytes") == "N/A"

    def test_rejected_key_fails_without_stopping(self, bare_host, make_tuner):
        bare_host.add_stock_sysctls(exclude={"vm.swappiness"})
        # A directory where the knob should be makes the write fail
        (bare_host.paths.proc_sys / "vm" / "swappiness").mkdir(parents=True)
        tuner = make_tuner(bare_host)

        step = tuner.apply_sysctl("vm", DEFAULT_VM_SYSCTL)

        statuses = {r.target: r.status for r in step.results}
        assert statuses["vm.swappiness"] == Status.FAILED
        assert statuses["vm.dirty_ratio"] == Status.APPLIED
        assert bare_host.sysctl("vm.dirty_ratio") == "10"

    def test_reload_failure_is_recorded(self, host, tuner, runner):
        runner.fail("sysctl --system")

        step = tuner.apply_sysctl("vm", DEFAULT_VM_SYSCTL)

        assert step.results[-1].target == "sysctl --system"
        assert step.results[-1].status == Status.FAILED
        assert host.sysctl("vm.swappiness") == "10"


class TestLegacyCleanup:
    """Test removal of the blocks older revisions appended to sysctl.conf"""

    def test_strip_owned_keys_and_markers(self):
        owned = list(DEFAULT_VM_SYSCTL) + list(DEFAULT_NET_SYSCTL)

        text, removed = strip_legacy_lines(LEGACY_CONF, owned)

        assert removed == 5
        assert text == (
            "# /etc/sysctl.conf - Configuration file for setting system variables\n"
            "net.ipv4.ip_forward=1\n"
            "\n"
        )

    def test_nothing_to_remove_leaves_file_alone(self, tmp_path):
        conf = tmp_path / "sysctl.conf"
        conf.write_text("net.ipv4.ip_forward=1\n")
        mtime = conf.stat().st_mtime_ns

        assert clean_legacy_sysctl_conf(conf, ["vm.swappiness"]) == 0
        assert conf.stat().st_mtime_ns == mtime

    def test_missing_file(self, tmp_path):
        assert clean_legacy_sysctl_conf(tmp_path / "sysctl.conf", ["vm.swappiness"]) == 0

    def test_apply_sysctl_cleans_shared_file(self, host, tuner):
        host.paths.sysctl_conf.write_text(LEGACY_CONF)

        step = tuner.apply_sysctl("vm", DEFAULT_VM_SYSCTL)

        assert "vm.swappiness" not in host.read(host.paths.sysctl_conf)
        assert "net.ipv4.tcp_congestion_control" not in host.read(host.paths.sysctl_conf)
        assert "net.ipv4.ip_forward=1" in host.read(host.paths.sysctl_conf)
        assert any(r.target == str(host.paths.sysctl_conf) for r in step.results)

    def test_cleanup_can_be_disabled(self, host, make_tuner):
        host.paths.sysctl_conf.write_text(LEGACY_CONF)
        tuner = make_tuner(host, host.config(clean_legacy_sysctl_conf=False))

        tuner.apply_sysctl("vm", DEFAULT_VM_SYSCTL)

        assert host.read(host.paths.sysctl_conf) == LEGACY_CONF
