from __future__ import annotations

import logging

from .chroot import chroot_binds, chroot_cmd

logger = logging.getLogger(__name__)

GRUB_EFI_TARGET_BY_ARCH = {
    "amd64": "x86_64-efi",
    "arm64": "arm64-efi",
}


def install_grub(
    *,
    target_root: str,
    disk: str,
    boot_type: str,
    arch: str = "amd64",
    bootloader_id: str = "install-low-level",
    dry_run: bool = False,
) -> None:
    """Install GRUB into the target, for EFI or legacy BIOS boot."""

    if boot_type == "efi":
        target = GRUB_EFI_TARGET_BY_ARCH.get(arch)
        if target is None:
            raise RuntimeError(f"Unsupported arch for EFI grub: {arch}")
        argv = [
            "grub-install",
            f"--target={target}",
            "--efi-directory=/boot/efi",
            f"--bootloader-id={bootloader_id}",
            "--recheck",
        ]
    else:
        argv = ["grub-install", "--target=i386-pc", "--recheck", disk]

    # Assumes root (and /boot/efi on EFI) is mounted in target.
    with chroot_binds(target_root, dry_run=dry_run):
        chroot_cmd(target_root, argv, dry_run=dry_run)
        chroot_cmd(target_root, ["update-grub"], dry_run=dry_run)
    logger.info("GRUB installed (boot_type=%s disk=%s)", boot_type, disk)
