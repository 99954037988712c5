from __future__ import annotations

import logging
from pathlib import Path

from ..config import MIN_DISK_SIZE_GIB
from ..lib.storage import is_mounted
from .base import Step, StepResult, Success

logger = logging.getLogger(__name__)


class SelectDiskStep(Step):
    name = "select-disk"
    idempotent = True
    destructive = False

    def run(self) -> StepResult:
        path = self.ctx.config["disk"]
        disk = self.ctx.snapshot.disk(path)
        if disk is None:
            return self.fail("DiskMissing", f"{path} is not part of the environment snapshot")

        size = float(disk.get("size") or 0)
        if size < MIN_DISK_SIZE_GIB:
            return self.fail("DiskTooSmall", f"{path} has {size} GiB, need at least {MIN_DISK_SIZE_GIB} GiB")

        if not self.ctx.dry_run:
            if not Path(path).exists():
                return self.fail("DiskMissing", f"{path} disappeared since the environment was probed")
            if is_mounted(path):
                return self.fail("DiskInUse", f"{path} or one of its partitions is mounted")

        logger.info("Selected target disk %s (%s GiB, model=%s)", path, size, disk.get("model"))
        return Success({"disk": path, "size": size, "model": disk.get("model")})
