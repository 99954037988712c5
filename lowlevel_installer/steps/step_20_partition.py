from __future__ import annotations

import logging

from ..lib.storage import create_partitions
from .base import Step, StepResult, Success

logger = logging.getLogger(__name__)


class PartitionStep(Step):
    name = "partition"
    idempotent = False
    destructive = True

    def run(self) -> StepResult:
        layout = self.ctx.layout
        self.ctx.report(0.0, f"Partitioning {layout.disk}")
        self.touch_disk()
        create_partitions(layout, dry_run=self.ctx.dry_run)

        logger.info("Partitioned %s: %s", layout.disk, ", ".join(p.device for p in layout.partitions))
        return Success(
            {
                "disk": layout.disk,
                "boot_type": layout.boot_type,
                "partitions": [{"device": p.device, "label": p.label} for p in layout.partitions],
            }
        )
