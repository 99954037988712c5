from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping

from ..lib.block import fs_spec
from ..lib.command import run_cmd
from ..lib.fstab import FstabEntry, render_fstab
from ..lib.storage import unmount_target
from .base import Step, StepResult, Success

logger = logging.getLogger(__name__)


def _render_interfaces(network: Mapping[str, Any], default_iface: str | None) -> str:
    lines = ["auto lo", "iface lo inet loopback", ""]
    if network.get("mode") == "static":
        iface = network["interface"]
        lines += [
            f"auto {iface}",
            f"iface {iface} inet static",
            f"    address {network['cidr']}",
            f"    gateway {network['gateway']}",
        ]
    elif default_iface:
        lines += [f"auto {default_iface}", f"iface {default_iface} inet dhcp"]
    return "\n".join(lines) + "\n"


class FinalizeStep(Step):
    name = "finalize"
    idempotent = True
    destructive = False

    def _files(self) -> Dict[str, str]:
        cfg = self.ctx.config
        snap = self.ctx.snapshot
        layout = self.ctx.layout
        dry_run = self.ctx.dry_run

        entries: List[FstabEntry] = [
            FstabEntry(fs_spec(layout.root.device, dry_run=dry_run), "/", cfg["filesystem"], "defaults", 0, 1)
        ]
        if layout.esp:
            entries.append(FstabEntry(fs_spec(layout.esp.device, dry_run=dry_run), "/boot/efi", "vfat", "umask=0077", 0, 1))
        if layout.swap:
            entries.append(FstabEntry(fs_spec(layout.swap.device, dry_run=dry_run), "none", "swap", "sw", 0, 0))

        files = {
            "etc/fstab": render_fstab(entries),
            "etc/default/locale": f"LANG={cfg['locale']}.UTF-8\n",
        }

        keyboard = cfg.get("keyboard")
        if keyboard is None:
            keyboards = (snap.locale(cfg["locale"]) or {}).get("keyboards") or []
            keyboard = keyboards[0] if keyboards else None
        if keyboard:
            files["etc/default/keyboard"] = f'XKBLAYOUT="{keyboard}"\n'

        hostname = cfg.get("hostname")
        if hostname:
            files["etc/hostname"] = hostname.split(".", 1)[0] + "\n"

        timezone = cfg.get("timezone")
        if timezone:
            files["etc/timezone"] = timezone + "\n"

        network = cfg.get("network") or {"mode": "dhcp"}
        first_iface = next(iter(sorted(snap.interfaces)), None)
        files["etc/network/interfaces"] = _render_interfaces(network, first_iface)
        if network.get("mode") == "static":
            files["etc/resolv.conf"] = f"nameserver {network['dns']}\n"

        return files

    def run(self) -> StepResult:
        target = Path(self.ctx.target_root)
        files = self._files()

        for i, (rel, contents) in enumerate(sorted(files.items())):
            p = target / rel
            if self.ctx.dry_run:
                logger.info("Would write %s", p)
            else:
                p.parent.mkdir(parents=True, exist_ok=True)
                p.write_text(contents, encoding="utf-8")
            self.ctx.report((i + 1) / (len(files) + 1), f"Wrote /{rel}")

        timezone = self.ctx.config.get("timezone")
        if timezone:
            run_cmd(
                ["ln", "-sf", f"/usr/share/zoneinfo/{timezone}", str(target / "etc/localtime")],
                dry_run=self.ctx.dry_run,
            )

        run_cmd(["sync"], dry_run=self.ctx.dry_run)
        unmount_target(self.ctx.layout, target_root=str(target), dry_run=self.ctx.dry_run)

        logger.info("Finalized target %s", target)
        return Success({"files": sorted("/" + rel for rel in files)})
