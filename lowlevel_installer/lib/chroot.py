from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Sequence

from .command import CmdResult, run_cmd

logger = logging.getLogger(__name__)

BIND_MOUNTS = ("/dev", "/proc", "/sys")


def chroot_cmd(target_root: str, argv: Sequence[str], *, dry_run: bool = False) -> CmdResult:
    """Run a command inside target root."""

    return run_cmd(["chroot", target_root, *argv], dry_run=dry_run)


@contextmanager
def chroot_binds(target_root: str, *, dry_run: bool = False) -> Iterator[None]:
    """Bind-mount the pseudo filesystems bootloader tooling needs, for the duration of the block."""

    mounted: list[str] = []
    try:
        for src in BIND_MOUNTS:
            dst = f"{target_root}{src}"
            run_cmd(["mkdir", "-p", dst], dry_run=dry_run)
            run_cmd(["mount", "--bind", src, dst], dry_run=dry_run)
            mounted.append(dst)
        yield
    finally:
        for dst in reversed(mounted):
            run_cmd(["umount", "-lf", dst], check=False, dry_run=dry_run)
