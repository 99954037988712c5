"""Tests for the concrete installation steps and the storage helpers they drive."""

from __future__ import annotations

from dataclasses import replace
from unittest.mock import patch

import pytest

from lowlevel_installer.config import freeze
from lowlevel_installer.lib.bootloader import install_grub
from lowlevel_installer.lib.command import CmdResult, CommandError
from lowlevel_installer.lib.storage import is_mounted, plan_layout
from lowlevel_installer.steps import (
    DEFAULT_REGISTRY,
    ConfigureBootloaderStep,
    DeployStep,
    Failure,
    FinalizeStep,
    FormatStep,
    PartitionStep,
    SelectDiskStep,
    Step,
    StepContext,
    StepRegistry,
    Success,
)
from tests.conftest import VALID_CONFIG


class Recorder:
    """Stand-in for run_cmd that records argv lists and answers blkid with a fixed UUID."""

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def __call__(self, argv, **kwargs):
        argv = list(argv)
        self.calls.append(argv)
        if self.fail_on and argv[0] == self.fail_on:
            raise CommandError(CmdResult(argv=argv, returncode=1, stdout="", stderr="boom"))
        stdout = "1234-ABCD\n" if argv[0] == "blkid" else ""
        return CmdResult(argv=argv, returncode=0, stdout=stdout, stderr="")

    def programs(self):
        return [argv[0] for argv in self.calls]


def _ctx(snapshot, target_root, *, dry_run=True, **overrides):
    return StepContext(
        config=freeze(dict(VALID_CONFIG, **overrides)),
        snapshot=snapshot,
        target_root=str(target_root),
        dry_run=dry_run,
    )


class TestLayout:
    def test_efi_layout(self):
        layout = plan_layout(disk="/dev/sda", boot_type="efi")
        assert [p.device for p in layout.partitions] == ["/dev/sda1", "/dev/sda2"]
        assert layout.esp.typecode == "ef00"
        assert layout.esp.size_mib == 512
        assert layout.bios_boot is None
        assert layout.root.size_mib is None

    def test_bios_layout_with_swap(self):
        layout = plan_layout(disk="/dev/sda", boot_type="bios", swap_size_gib=2, root_size_gib=10)
        assert [p.typecode for p in layout.partitions] == ["ef02", "8200", "8300"]
        assert layout.swap.size_mib == 2048
        assert layout.root.size_mib == 10240
        assert layout.esp is None

    def test_nvme_partition_suffix(self):
        layout = plan_layout(disk="/dev/nvme0n1", boot_type="efi")
        assert layout.root.device == "/dev/nvme0n1p2"

    def test_unknown_boot_type(self):
        with pytest.raises(ValueError):
            plan_layout(disk="/dev/sda", boot_type="coreboot")

    def test_context_layout_uses_hdsize_minus_swap(self, snapshot, tmp_path):
        ctx = _ctx(snapshot, tmp_path, hdsize=16, swapsize=4)
        assert ctx.layout.swap.size_mib == 4096
        assert ctx.layout.root.size_mib == 12 * 1024


class TestStorage:
    def test_is_mounted_matches_partitions_only(self, tmp_path):
        mounts = tmp_path / "mounts"
        mounts.write_text(
            "/dev/sdb2 /mnt ext4 rw 0 0\n/dev/nvme0n1p1 /boot/efi vfat rw 0 0\nproc /proc proc rw 0 0\n",
            encoding="utf-8",
        )
        assert is_mounted("/dev/sdb", mounts_file=str(mounts))
        assert is_mounted("/dev/nvme0n1", mounts_file=str(mounts))
        assert not is_mounted("/dev/sda", mounts_file=str(mounts))
        assert not is_mounted("/dev/sd", mounts_file=str(mounts))

    def test_is_mounted_without_mounts_file(self, tmp_path):
        assert not is_mounted("/dev/sda", mounts_file=str(tmp_path / "absent"))


class TestRegistry:
    def test_default_order(self):
        assert DEFAULT_REGISTRY.names == [
            "select-disk",
            "partition",
            "format",
            "deploy",
            "configure-bootloader",
            "finalize",
        ]

    def test_describe_reports_flags(self):
        flags = {d["name"]: (d["idempotent"], d["destructive"]) for d in DEFAULT_REGISTRY.describe()}
        assert flags["partition"] == (False, True)
        assert flags["select-disk"] == (True, False)
        assert flags["finalize"] == (True, False)

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            StepRegistry([SelectDiskStep, SelectDiskStep])


class TestExecuteContract:
    def test_none_from_run_is_success(self, snapshot, tmp_path):
        class Quiet(Step):
            name = "quiet"

            def run(self):
                return None

        assert Quiet(_ctx(snapshot, tmp_path)).execute() == Success()

    @pytest.mark.parametrize("touched", [False, True])
    def test_unexpected_exception_is_internal_error(self, snapshot, tmp_path, touched):
        class Broken(Step):
            name = "broken"
            destructive = True

            def run(self):
                if touched:
                    self.touch_disk()
                raise KeyError("layout")

        result = Broken(_ctx(snapshot, tmp_path)).execute()
        assert isinstance(result, Failure)
        assert result.kind == "InternalError"
        assert result.was_destructive is touched

    def test_layout_error_before_partitioning_is_not_destructive(self, snapshot, tmp_path):
        snap = replace(snapshot, run_env=dict(snapshot.run_env, boot_type="coreboot"))
        rec = Recorder()
        with patch("lowlevel_installer.lib.storage.run_cmd", rec):
            result = PartitionStep(_ctx(snap, tmp_path, dry_run=False)).execute()

        assert result.kind == "InternalError"
        assert "coreboot" in result.detail
        assert result.was_destructive is False
        assert rec.calls == []

    def test_missing_tool_after_disk_touched_is_destructive(self, snapshot, tmp_path):
        with patch("lowlevel_installer.lib.storage.run_cmd", Recorder(fail_on="sgdisk")):
            result = PartitionStep(_ctx(snapshot, tmp_path, dry_run=False)).execute()
        assert result.kind == "IOFault"
        assert result.was_destructive is True

    def test_fail_only_destructive_when_step_is(self, snapshot, tmp_path):
        ctx = _ctx(snapshot, tmp_path)
        assert SelectDiskStep(ctx).fail("X", "y", touched_disk=True).was_destructive is False
        assert PartitionStep(ctx).fail("X", "y", touched_disk=True).was_destructive is True
        assert PartitionStep(ctx).fail("X", "y").was_destructive is False


class TestSelectDisk:
    def test_dry_run_accepts_snapshot_disk(self, snapshot, tmp_path):
        result = SelectDiskStep(_ctx(snapshot, tmp_path)).execute()
        assert result == Success({"disk": "/dev/sda", "size": 32.0, "model": "QEMU HARDDISK"})

    def test_disk_vanished(self, snapshot, tmp_path):
        gone = str(tmp_path / "gone")
        snap = replace(snapshot, run_env=dict(snapshot.run_env, disks=[{"path": gone, "size": 32.0}]))
        result = SelectDiskStep(_ctx(snap, tmp_path, dry_run=False, disk=gone)).execute()
        assert result.kind == "DiskMissing"
        assert result.was_destructive is False

    def test_disk_in_use(self, snapshot, tmp_path):
        dev = tmp_path / "disk"
        dev.write_bytes(b"")
        snap = replace(snapshot, run_env=dict(snapshot.run_env, disks=[{"path": str(dev), "size": 32.0}]))
        with patch("lowlevel_installer.steps.step_10_select_disk.is_mounted", return_value=True):
            result = SelectDiskStep(_ctx(snap, tmp_path, dry_run=False, disk=str(dev))).execute()
        assert result.kind == "DiskInUse"

    def test_disk_too_small(self, snapshot, tmp_path):
        snap = replace(snapshot, run_env=dict(snapshot.run_env, disks=[{"path": "/dev/sda", "size": 1.5}]))
        result = SelectDiskStep(_ctx(snap, tmp_path)).execute()
        assert result.kind == "DiskTooSmall"


class TestPartitionAndFormat:
    def test_partition_commands(self, snapshot, tmp_path):
        rec = Recorder()
        with patch("lowlevel_installer.lib.storage.run_cmd", rec):
            result = PartitionStep(_ctx(snapshot, tmp_path, dry_run=False, swapsize=2)).execute()

        assert isinstance(result, Success)
        assert rec.calls[0] == ["sgdisk", "--zap-all", "/dev/sda"]
        assert rec.calls[-1] == ["partprobe", "/dev/sda"]
        new = [argv for argv in rec.calls if argv[1].startswith("--new=")]
        assert [argv[2] for argv in new] == ["--typecode=1:ef00", "--typecode=2:8200", "--typecode=3:8300"]
        assert new[-1][1] == "--new=3:0:0"
        assert [p["device"] for p in result.detail["partitions"]] == ["/dev/sda1", "/dev/sda2", "/dev/sda3"]

    def test_format_and_mount(self, snapshot, tmp_path):
        rec = Recorder()
        with patch("lowlevel_installer.lib.storage.run_cmd", rec):
            result = FormatStep(_ctx(snapshot, tmp_path, dry_run=False, filesystem="xfs")).execute()

        assert isinstance(result, Success)
        assert ["mkfs.vfat", "-F", "32", "/dev/sda1"] in rec.calls
        assert ["mkfs.xfs", "-f", "/dev/sda2"] in rec.calls
        assert ["mount", "/dev/sda2", str(tmp_path)] in rec.calls

    def test_command_failure_is_destructive_io_fault(self, snapshot, tmp_path):
        with patch("lowlevel_installer.lib.storage.run_cmd", Recorder(fail_on="mkfs.ext4")):
            result = FormatStep(_ctx(snapshot, tmp_path, dry_run=False)).execute()

        assert result.kind == "IOFault"
        assert result.was_destructive is True
        assert "mkfs.ext4" in result.detail

    def test_progress_reported(self, snapshot, tmp_path):
        reports = []
        ctx = replace(_ctx(snapshot, tmp_path), report=lambda ratio, text=None: reports.append(ratio))
        FormatStep(ctx).execute()
        assert reports == [0.0, 0.8]


class TestDeployAndBootloader:
    def test_missing_image(self, snapshot, tmp_path):
        snap = replace(snapshot, locations=dict(snapshot.locations, iso=str(tmp_path / "iso")))
        result = DeployStep(_ctx(snap, tmp_path / "target", dry_run=False)).execute()
        assert result.kind == "ImageMissing"

    def test_unsquashfs_into_target(self, snapshot, tmp_path):
        iso = tmp_path / "iso"
        iso.mkdir()
        (iso / "base.squashfs").write_bytes(b"hsqs")
        snap = replace(snapshot, locations=dict(snapshot.locations, iso=str(iso)))

        rec = Recorder()
        with patch("lowlevel_installer.steps.step_40_deploy.run_cmd", rec):
            result = DeployStep(_ctx(snap, tmp_path / "target", dry_run=False)).execute()

        assert isinstance(result, Success)
        assert rec.calls == [["unsquashfs", "-f", "-n", "-d", str(tmp_path / "target"), str(iso / "base.squashfs")]]
        assert "openssh-server" in result.detail["packages"]

    def test_efi_grub(self, snapshot, tmp_path):
        rec = Recorder()
        with patch("lowlevel_installer.lib.chroot.run_cmd", rec):
            result = ConfigureBootloaderStep(_ctx(snapshot, "/t", dry_run=False)).execute()

        assert isinstance(result, Success)
        grub = next(argv for argv in rec.calls if "grub-install" in argv)
        assert grub[:3] == ["chroot", "/t", "grub-install"]
        assert "--target=x86_64-efi" in grub
        assert "--bootloader-id=generic" in grub
        assert ["umount", "-lf", "/t/dev"] == rec.calls[-1]

    def test_bios_grub_targets_disk(self):
        rec = Recorder()
        with patch("lowlevel_installer.lib.chroot.run_cmd", rec):
            install_grub(target_root="/t", disk="/dev/sdb", boot_type="bios")
        assert ["chroot", "/t", "grub-install", "--target=i386-pc", "--recheck", "/dev/sdb"] in rec.calls

    def test_binds_released_when_grub_fails(self):
        rec = Recorder(fail_on="chroot")
        with patch("lowlevel_installer.lib.chroot.run_cmd", rec):
            with pytest.raises(CommandError):
                install_grub(target_root="/t", disk="/dev/sda", boot_type="efi")
        assert [argv[-1] for argv in rec.calls if argv[0] == "umount"] == ["/t/sys", "/t/proc", "/t/dev"]


class TestFinalize:
    def test_dry_run_writes_nothing(self, snapshot, tmp_path):
        result = FinalizeStep(_ctx(snapshot, tmp_path / "target")).execute()
        assert isinstance(result, Success)
        assert "/etc/fstab" in result.detail["files"]
        assert not (tmp_path / "target").exists()

    def test_writes_target_configuration(self, snapshot, tmp_path):
        target = tmp_path / "target"
        network = {
            "mode": "static",
            "interface": "ens18",
            "cidr": "192.0.2.10/24",
            "gateway": "192.0.2.1",
            "dns": "192.0.2.53",
        }
        ctx = _ctx(
            snapshot,
            target,
            dry_run=False,
            locale="de_AT",
            hostname="pve.example.invalid",
            timezone="Europe/Vienna",
            network=network,
            swapsize=2,
        )
        rec = Recorder()
        with patch("lowlevel_installer.lib.block.run_cmd", rec), patch(
            "lowlevel_installer.lib.storage.run_cmd", rec
        ), patch("lowlevel_installer.steps.step_90_finalize.run_cmd", rec):
            result = FinalizeStep(ctx).execute()

        assert isinstance(result, Success), result
        fstab = (target / "etc/fstab").read_text(encoding="utf-8").splitlines()
        assert fstab[1] == "UUID=1234-ABCD / ext4 defaults 0 1"
        assert "UUID=1234-ABCD /boot/efi vfat umask=0077 0 1" in fstab
        assert "UUID=1234-ABCD none swap sw 0 0" in fstab

        assert (target / "etc/default/locale").read_text(encoding="utf-8") == "LANG=de_AT.UTF-8\n"
        assert (target / "etc/default/keyboard").read_text(encoding="utf-8") == 'XKBLAYOUT="de"\n'
        assert (target / "etc/hostname").read_text(encoding="utf-8") == "pve\n"
        assert (target / "etc/timezone").read_text(encoding="utf-8") == "Europe/Vienna\n"
        interfaces = (target / "etc/network/interfaces").read_text(encoding="utf-8")
        assert "iface ens18 inet static" in interfaces
        assert "    address 192.0.2.10/24" in interfaces
        assert (target / "etc/resolv.conf").read_text(encoding="utf-8") == "nameserver 192.0.2.53\n"

        assert ["ln", "-sf", "/usr/share/zoneinfo/Europe/Vienna", str(target / "etc/localtime")] in rec.calls
        assert rec.programs()[-2:] == ["umount", "umount"]

    def test_dhcp_on_first_interface(self, snapshot, tmp_path):
        target = tmp_path / "target"
        rec = Recorder()
        with patch("lowlevel_installer.lib.block.run_cmd", rec), patch(
            "lowlevel_installer.lib.storage.run_cmd", rec
        ), patch("lowlevel_installer.steps.step_90_finalize.run_cmd", rec):
            FinalizeStep(_ctx(snapshot, target, dry_run=False)).execute()

        interfaces = (target / "etc/network/interfaces").read_text(encoding="utf-8")
        assert "iface ens18 inet dhcp" in interfaces
        assert (target / "etc/default/keyboard").read_text(encoding="utf-8") == 'XKBLAYOUT="us"\n'
        assert not (target / "etc/resolv.conf").exists()
        assert not (target / "etc/hostname").exists()
