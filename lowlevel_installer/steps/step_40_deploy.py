from __future__ import annotations

import logging
from pathlib import Path

from ..lib.command import run_cmd
from .base import Step, StepResult, Success

logger = logging.getLogger(__name__)

DEFAULT_BASE_IMAGE = "base.squashfs"


class DeployStep(Step):
    name = "deploy"
    idempotent = True
    destructive = True

    def run(self) -> StepResult:
        snap = self.ctx.snapshot
        image = Path(snap.locations.get("iso") or "/cdrom") / str(
            snap.product_config.get("base_image") or DEFAULT_BASE_IMAGE
        )
        if not self.ctx.dry_run and not image.is_file():
            return self.fail("ImageMissing", f"Base image not found: {image}")

        self.ctx.report(0.0, f"Extracting {image.name}")
        self.touch_disk()
        run_cmd(["unsquashfs", "-f", "-n", "-d", self.ctx.target_root, str(image)], dry_run=self.ctx.dry_run)
        self.ctx.report(1.0, "Base system extracted")

        packages = list(snap.product_config.get("default_packages") or [])
        logger.info("Deployed %s into %s", image, self.ctx.target_root)
        return Success({"image": str(image), "packages": packages})
