from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class FstabEntry:
    spec: str
    mountpoint: str
    fstype: str
    options: str = "defaults"
    dump: int = 0
    passno: int = 0


def render_fstab(entries: Iterable[FstabEntry]) -> str:
    lines = ["# <file system> <mount point> <type> <options> <dump> <pass>"]
    for e in entries:
        lines.append(f"{e.spec} {e.mountpoint} {e.fstype} {e.options} {e.dump} {e.passno}")
    return "\n".join(lines) + "\n"
