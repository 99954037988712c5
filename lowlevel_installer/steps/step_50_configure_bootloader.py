from __future__ import annotations

import logging

from ..lib.bootloader import install_grub
from .base import Step, StepResult, Success

logger = logging.getLogger(__name__)


class ConfigureBootloaderStep(Step):
    name = "configure-bootloader"
    idempotent = True
    destructive = True

    def run(self) -> StepResult:
        snap = self.ctx.snapshot
        disk = self.ctx.config["disk"]
        arch = str(snap.run_env.get("arch") or "amd64")

        self.touch_disk()

        install_grub(
            target_root=self.ctx.target_root,
            disk=disk,
            boot_type=snap.boot_type,
            arch=arch,
            bootloader_id=str(snap.product_config.get("product") or "install-low-level"),
            dry_run=self.ctx.dry_run,
        )
        return Success({"bootloader": "grub", "boot_type": snap.boot_type, "secure_boot": snap.run_env.get("secure_boot")})
