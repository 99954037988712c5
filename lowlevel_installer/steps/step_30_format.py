from __future__ import annotations

import logging

from ..lib.storage import format_partitions, mount_target
from .base import Step, StepResult, Success

logger = logging.getLogger(__name__)


class FormatStep(Step):
    name = "format"
    idempotent = True
    destructive = True

    def run(self) -> StepResult:
        layout = self.ctx.layout
        filesystem = self.ctx.config["filesystem"]

        self.ctx.report(0.0, f"Creating {filesystem} filesystem on {layout.root.device}")
        self.touch_disk()
        format_partitions(layout, filesystem=filesystem, dry_run=self.ctx.dry_run)

        self.ctx.report(0.8, f"Mounting target at {self.ctx.target_root}")
        mount_target(layout, target_root=self.ctx.target_root, dry_run=self.ctx.dry_run)

        logger.info("Formatted root=%s as %s", layout.root.device, filesystem)
        return Success({"filesystem": filesystem, "root": layout.root.device, "target_root": self.ctx.target_root})
