from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Sequence, Type

from .base import Failure, Step, StepContext, StepResult, Success
from .step_10_select_disk import SelectDiskStep
from .step_20_partition import PartitionStep
from .step_30_format import FormatStep
from .step_40_deploy import DeployStep
from .step_50_configure_bootloader import ConfigureBootloaderStep
from .step_90_finalize import FinalizeStep


class StepKind(str, Enum):
    SELECT_DISK = "select-disk"
    PARTITION = "partition"
    FORMAT = "format"
    DEPLOY = "deploy"
    CONFIGURE_BOOTLOADER = "configure-bootloader"
    FINALIZE = "finalize"


STEP_CLASSES: Dict[StepKind, Type[Step]] = {
    StepKind.SELECT_DISK: SelectDiskStep,
    StepKind.PARTITION: PartitionStep,
    StepKind.FORMAT: FormatStep,
    StepKind.DEPLOY: DeployStep,
    StepKind.CONFIGURE_BOOTLOADER: ConfigureBootloaderStep,
    StepKind.FINALIZE: FinalizeStep,
}


class StepRegistry:
    """Fixed, ordered list of step classes; instances are built only when a step is reached."""

    def __init__(self, steps: Sequence[Type[Step]]) -> None:
        names = [s.name for s in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names in registry: {names}")
        self._steps = tuple(steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __getitem__(self, index: int) -> Type[Step]:
        return self._steps[index]

    @property
    def names(self) -> List[str]:
        return [s.name for s in self._steps]

    def build(self, index: int, ctx: StepContext) -> Step:
        return self._steps[index](ctx)

    def describe(self) -> List[Dict[str, Any]]:
        return [s.describe() for s in self._steps]


DEFAULT_REGISTRY = StepRegistry([STEP_CLASSES[kind] for kind in StepKind])

__all__ = [
    "ConfigureBootloaderStep",
    "DEFAULT_REGISTRY",
    "DeployStep",
    "Failure",
    "FinalizeStep",
    "FormatStep",
    "PartitionStep",
    "STEP_CLASSES",
    "SelectDiskStep",
    "Step",
    "StepContext",
    "StepKind",
    "StepRegistry",
    "StepResult",
    "Success",
]
