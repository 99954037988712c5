from __future__ import annotations

from .command import run_cmd


def get_uuid(dev: str, *, dry_run: bool = False) -> str:
    """Filesystem UUID of a block device ("" in dry-run)."""

    r = run_cmd(["blkid", "-s", "UUID", "-o", "value", dev], dry_run=dry_run)
    uuid = (r.stdout or "").strip()
    if not uuid and not dry_run:
        raise RuntimeError(f"Unable to determine UUID for {dev}")
    return uuid


def fs_spec(dev: str, *, dry_run: bool = False) -> str:
    """fstab source for a device: UUID= when known, else the device path."""

    uuid = get_uuid(dev, dry_run=dry_run)
    return f"UUID={uuid}" if uuid else dev
