from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .command import run_cmd

logger = logging.getLogger(__name__)

MKFS_BY_FILESYSTEM = {
    "ext4": ["mkfs.ext4", "-F"],
    "xfs": ["mkfs.xfs", "-f"],
    "btrfs": ["mkfs.btrfs", "-f"],
}


@dataclass(frozen=True)
class Partition:
    number: int
    device: str
    typecode: str
    label: str
    size_mib: Optional[int]  # None: rest of the disk


@dataclass(frozen=True)
class PartitionLayout:
    disk: str
    boot_type: str  # efi|bios
    bios_boot: Optional[Partition]
    esp: Optional[Partition]
    swap: Optional[Partition]
    root: Partition

    @property
    def partitions(self) -> list[Partition]:
        return [p for p in (self.bios_boot, self.esp, self.swap, self.root) if p is not None]


def _part_suffix(disk: str, n: int) -> str:
    # nvme/mmcblk devices use p suffix
    if disk.endswith(tuple("0123456789")):
        return f"{disk}p{n}"
    return f"{disk}{n}"


def _gib_to_mib(gib: float) -> int:
    return int(gib * 1024)


def plan_layout(
    *,
    disk: str,
    boot_type: str,
    swap_size_gib: Optional[float] = None,
    root_size_gib: Optional[float] = None,
    esp_size_mib: int = 512,
) -> PartitionLayout:
    """Compute the GPT layout for a target disk.

    Pure: every step derives the same layout from the frozen config, so
    nothing about partition device names has to be carried between steps.

    Layout:
    - BIOS: 1 MiB BIOS boot partition (grub core image)
    - EFI: ESP (FAT32) mounted at /boot/efi
    - optional swap
    - root gets the rest, or root_size_gib when given
    """

    if boot_type not in {"efi", "bios"}:
        raise ValueError(f"boot_type must be 'efi' or 'bios', got: {boot_type}")

    n = 1
    bios_boot = esp = swap = None

    if boot_type == "bios":
        bios_boot = Partition(n, _part_suffix(disk, n), "ef02", "BIOSBOOT", 1)
        n += 1
    else:
        esp = Partition(n, _part_suffix(disk, n), "ef00", "EFI", esp_size_mib)
        n += 1

    if swap_size_gib:
        swap = Partition(n, _part_suffix(disk, n), "8200", "SWAP", _gib_to_mib(swap_size_gib))
        n += 1

    root_size = _gib_to_mib(root_size_gib) if root_size_gib else None
    root = Partition(n, _part_suffix(disk, n), "8300", "ROOT", root_size)

    return PartitionLayout(disk=disk, boot_type=boot_type, bios_boot=bios_boot, esp=esp, swap=swap, root=root)


def create_partitions(layout: PartitionLayout, *, dry_run: bool = False) -> None:
    disk = layout.disk
    logger.info("Partitioning disk=%s boot_type=%s", disk, layout.boot_type)

    # Wipe + GPT
    run_cmd(["sgdisk", "--zap-all", disk], dry_run=dry_run)
    run_cmd(["sgdisk", "--clear", disk], dry_run=dry_run)

    for part in layout.partitions:
        end = f"+{part.size_mib}MiB" if part.size_mib else "0"
        run_cmd(
            [
                "sgdisk",
                f"--new={part.number}:0:{end}",
                f"--typecode={part.number}:{part.typecode}",
                f"--change-name={part.number}:{part.label}",
                disk,
            ],
            dry_run=dry_run,
        )

    # Inform kernel
    run_cmd(["partprobe", disk], dry_run=dry_run)


def format_partitions(layout: PartitionLayout, *, filesystem: str, dry_run: bool = False) -> None:
    mkfs = MKFS_BY_FILESYSTEM.get(filesystem)
    if mkfs is None:
        raise ValueError(f"Unsupported root filesystem: {filesystem}")

    if layout.esp:
        run_cmd(["mkfs.vfat", "-F", "32", layout.esp.device], dry_run=dry_run)
    if layout.swap:
        run_cmd(["mkswap", layout.swap.device], dry_run=dry_run)
    run_cmd([*mkfs, layout.root.device], dry_run=dry_run)


def mount_target(layout: PartitionLayout, *, target_root: str, dry_run: bool = False) -> None:
    run_cmd(["mkdir", "-p", target_root], dry_run=dry_run)
    run_cmd(["mount", layout.root.device, target_root], dry_run=dry_run)

    if layout.esp:
        run_cmd(["mkdir", "-p", f"{target_root}/boot/efi"], dry_run=dry_run)
        run_cmd(["mount", layout.esp.device, f"{target_root}/boot/efi"], dry_run=dry_run)


def unmount_target(layout: PartitionLayout, *, target_root: str, dry_run: bool = False) -> None:
    if layout.esp:
        run_cmd(["umount", "-lf", f"{target_root}/boot/efi"], check=False, dry_run=dry_run)
    run_cmd(["umount", "-lf", target_root], check=False, dry_run=dry_run)


def is_mounted(device: str, *, mounts_file: str = "/proc/mounts") -> bool:
    """True if the device or any of its partitions shows up as mounted."""

    try:
        with open(mounts_file, encoding="utf-8") as f:
            sources = [line.split(" ", 1)[0] for line in f if line.strip()]
    except FileNotFoundError:
        return False
    part = re.compile(re.escape(device) + r"p?\d*$")
    return any(part.fullmatch(src) for src in sources)
